"""
Append-only and frozen-field enforcement tests.

Verifies:
- AuditEvent rows can be neither updated nor deleted
- Finished transfers never change; request fields never change
- Allocation rows cannot be deleted
- SKU and owning business freeze once a product holds stock
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from stock_kernel.domain.transfer_state import TransferStatus
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.models.audit_event import AuditEvent
from stock_kernel.models.product import Product
from stock_kernel.models.stock_allocation import StockAllocation
from stock_kernel.models.stock_transfer import StockTransfer
from stock_kernel.services.transfer_service import TransferCoordinator


@pytest.fixture
def completed_transfer(session, deterministic_clock, widget_scenario, test_actor_id):
    product, wh_a, wh_b = widget_scenario
    result = TransferCoordinator(session, deterministic_clock).transfer(
        product.id, wh_a.id, wh_b.id, 5, test_actor_id
    )
    return session.get(StockTransfer, result.transfer.id)


class TestAuditEventImmutability:
    def test_update_blocked(self, session, widget_scenario):
        event = session.scalars(select(AuditEvent).limit(1)).one()
        event.entity_type = "Tampered"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, session, widget_scenario):
        event = session.scalars(select(AuditEvent).limit(1)).one()
        session.delete(event)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestTransferImmutability:
    def test_completed_transfer_cannot_change_status(self, session, completed_transfer):
        completed_transfer.status = TransferStatus.FAILED

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_request_fields_are_fixed(self, session, completed_transfer):
        completed_transfer.quantity = 500

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, session, completed_transfer):
        session.delete(completed_transfer)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestAllocationImmutability:
    def test_delete_blocked(self, session, widget_scenario):
        row = session.scalars(select(StockAllocation).limit(1)).one()
        session.delete(row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestProductIdentity:
    def test_sku_frozen_once_stocked(self, session, widget_scenario):
        product, _, _ = widget_scenario
        model = session.get(Product, product.id)
        model.sku = "WIDGET-9"
        model.sku_key = "widget-9"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_sku_editable_before_stocking(self, session, make_product):
        product = make_product("DRAFT-1")
        model = session.get(Product, product.id)
        model.business_id = uuid4()

        session.flush()
        session.rollback()
