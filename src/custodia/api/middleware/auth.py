"""Actor identity supplied by the trusted gateway.

Authentication happens upstream; the gateway forwards the authenticated
actor in two headers:

    X-Actor-Id    opaque actor identifier (required)
    X-Actor-Role  role name (optional, informational)

The core enforces segregation of duties on the actor ID only; role
permissions belong to the gateway.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header

from custodia.api.middleware.errors import AuthenticationError

logger = logging.getLogger(__name__)

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"

MAX_ACTOR_ID_LENGTH = 255


@dataclass(frozen=True, slots=True)
class ActorContext:
    """Authenticated actor of the current request."""

    actor_id: str
    role: str | None = None


async def require_actor(
    x_actor_id: Annotated[str | None, Header(alias=ACTOR_ID_HEADER)] = None,
    x_actor_role: Annotated[str | None, Header(alias=ACTOR_ROLE_HEADER)] = None,
) -> ActorContext:
    """FastAPI dependency returning the calling actor.

    Raises:
        AuthenticationError: If the actor header is missing or malformed.
    """
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise AuthenticationError(f"Missing {ACTOR_ID_HEADER} header")
    if len(actor_id) > MAX_ACTOR_ID_LENGTH:
        raise AuthenticationError(f"{ACTOR_ID_HEADER} header is too long")

    role = x_actor_role.strip().lower() if x_actor_role else None
    return ActorContext(actor_id=actor_id, role=role or None)


CurrentActor = Annotated[ActorContext, Depends(require_actor)]
