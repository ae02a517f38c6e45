"""Tests for the read-only delivery and inventory projections."""

from __future__ import annotations

from uuid import uuid4

import pytest

from custodia.db.models import DeliveryStatus, MovementType
from custodia.services.errors import NotFoundError, ValidationError
from custodia.services.projections import DeliveryProjections, InventoryProjections, Page
from tests.factories import (
    advance_to_ready,
    create_delivery,
    create_kit,
    create_product,
    create_request,
    receive_stock,
)


class TestPage:
    """Tests for the Page container."""

    def test_pages_rounds_up(self):
        """A partial last page still counts."""
        assert Page(items=[], total=41, page=1, limit=20).pages == 3

    def test_empty_listing(self):
        """No rows means no pages."""
        assert Page(items=[], total=0, page=1, limit=20).pages == 0


class TestDeliveryProjections:
    """Tests for DeliveryProjections."""

    async def test_list_filters_by_status_and_request(self, session, workflow):
        """Listings can be narrowed by status and request."""
        product = await create_product(session)
        await receive_stock(session, product, 20)
        first_request = await create_request(session, [(product, 5)])
        second_request = await create_request(session, [(product, 5)])
        ready = await create_delivery(workflow, first_request, [(product, 5)])
        await advance_to_ready(workflow, ready)
        await create_delivery(workflow, second_request, [(product, 5)])
        projections = DeliveryProjections(session)

        pending = await projections.list_deliveries(status=DeliveryStatus.PENDING_AUTHORIZATION)
        by_request = await projections.list_deliveries(request_id=first_request.request_id)
        everything = await projections.list_deliveries()

        assert pending.total == 1
        assert pending.items[0].request_id == second_request.request_id
        assert [d.status for d in by_request.items] == [DeliveryStatus.READY]
        assert everything.total == 2

    async def test_list_paging(self, session, workflow):
        """Pages split the listing."""
        product = await create_product(session)
        for _ in range(3):
            request = await create_request(session, [(product, 1)])
            await create_delivery(workflow, request, [(product, 1)])
        projections = DeliveryProjections(session)

        page = await projections.list_deliveries(page=2, limit=2)

        assert page.total == 3
        assert page.pages == 2
        assert len(page.items) == 1

    @pytest.mark.parametrize(("page", "limit"), [(0, 20), (1, 0), (1, 101)])
    async def test_invalid_paging(self, session, page, limit):
        """Page numbers start at 1 and limits are bounded."""
        with pytest.raises(ValidationError):
            await DeliveryProjections(session).list_deliveries(page=page, limit=limit)

    async def test_status_summary(self, session, workflow):
        """Every status is reported, including empty ones."""
        product = await create_product(session)
        for _ in range(2):
            request = await create_request(session, [(product, 1)])
            await create_delivery(workflow, request, [(product, 1)])

        summary = await DeliveryProjections(session).status_summary()

        assert summary["pending_authorization"] == 2
        assert summary["delivered"] == 0
        assert summary["total"] == 2

    async def test_detail_includes_history(self, session, workflow):
        """Detail carries line items and the timeline."""
        product = await create_product(session)
        request = await create_request(session, [(product, 4)])
        delivery = await create_delivery(workflow, request, [(product, 4)])

        detail = await DeliveryProjections(session).detail(delivery.delivery_id)

        assert detail.delivery.code == delivery.code
        assert detail.delivery.line_items[0].quantity == 4
        assert [h.to_status for h in detail.history] == [DeliveryStatus.PENDING_AUTHORIZATION]

    async def test_unknown_delivery(self, session):
        """Unknown deliveries raise NotFoundError."""
        projections = DeliveryProjections(session)

        with pytest.raises(NotFoundError):
            await projections.detail(uuid4())
        with pytest.raises(NotFoundError):
            await projections.history(uuid4())


class TestInventoryProjections:
    """Tests for InventoryProjections."""

    async def test_movements_filtered_by_type_and_reference(self, session, workflow, ledger):
        """Exits of one delivery can be listed by reference."""
        product = await create_product(session)
        await receive_stock(session, product, 10)
        await receive_stock(session, product, 5)
        request = await create_request(session, [(product, 12)])
        delivery = await create_delivery(workflow, request, [(product, 12)])
        await advance_to_ready(workflow, delivery)
        projections = InventoryProjections(session, ledger)

        entries = await projections.list_movements(movement_type=MovementType.ENTRY)
        exits = await projections.list_movements(reference=str(delivery.delivery_id))

        assert entries.total == 2
        assert exits.total == 2
        assert all(m.movement_type == MovementType.EXIT for m in exits.items)
        assert sum(m.quantity for m in exits.items) == -12

    async def test_movements_filtered_by_lot(self, session, ledger):
        """Movements can be listed per lot."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10)
        await receive_stock(session, product, 5)

        page = await InventoryProjections(session, ledger).list_movements(lot_id=lot.lot_id)

        assert [m.quantity for m in page.items] == [10]

    async def test_kit_availability(self, session, ledger):
        """Availability is limited by the scarcest component."""
        rice = await create_product(session)
        beans = await create_product(session)
        await receive_stock(session, rice, 10)
        await receive_stock(session, beans, 3)
        kit = await create_kit(session, [(rice, 2), (beans, 1)])
        projections = InventoryProjections(session, ledger)

        availability = await projections.kit_availability(kit.kit_id, 4)

        assert not availability.can_deliver
        assert availability.max_available == 3
        assert {c.product_id: c.sufficient for c in availability.components} == {
            rice.product_id: True,
            beans.product_id: False,
        }

    async def test_kit_availability_errors(self, session, ledger):
        """Unknown kits and non-positive quantities are rejected."""
        projections = InventoryProjections(session, ledger)

        with pytest.raises(NotFoundError):
            await projections.kit_availability(uuid4())
        with pytest.raises(ValidationError):
            await projections.kit_availability(uuid4(), 0)
