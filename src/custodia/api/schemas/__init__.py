"""Pydantic request and response schemas for the Custodia API."""
