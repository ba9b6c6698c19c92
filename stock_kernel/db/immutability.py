"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Stock history must be reconstructible.  Auditors reconcile the allocation
ledger against the audit trail and the transfer log; that only works if
those records cannot be rewritten after the fact.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, we raise ImmutabilityViolationError and the flush is
aborted.  The database is never modified.

Ledger quantity writes are Core UPDATE statements issued by AllocationLedger
and do not pass through these listeners; they are guarded by conditional
WHERE clauses and CHECK constraints instead.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule
----------------|---------------------------------------------------------------
AuditEvent      | ALWAYS immutable, never deleted
StockTransfer   | Request fields frozen from creation; terminal records frozen;
                | never deleted
StockAllocation | Never deleted (a drained row stays at zero)
Product         | sku, sku_key, business_id frozen once an allocation row exists

===============================================================================
USAGE
===============================================================================

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    from stock_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, exists, select
from sqlalchemy.orm.attributes import get_history

from stock_kernel.domain.transfer_state import TERMINAL_STATUSES, TransferStatus
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields of a transfer fixed by the request that created it
TRANSFER_REQUEST_FIELDS = (
    "seq",
    "product_id",
    "from_warehouse_id",
    "to_warehouse_id",
    "quantity",
    "requested_by_id",
    "notes",
    "created_at",
)

PRODUCT_IDENTITY_FIELDS = ("sku", "sku_key", "business_id")


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_audit_event_immutability(mapper, connection, target):
    """Prevent any updates to AuditEvent records."""
    raise _blocked(
        "AuditEvent",
        target.id,
        "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    """Prevent deletion of AuditEvent records."""
    raise _blocked(
        "AuditEvent",
        target.id,
        "DELETE",
        "Audit events cannot be deleted",
    )


def _check_stock_transfer_immutability(mapper, connection, target):
    """
    Allow only lifecycle fields to change, and only while PENDING.

    The previous status is read from attribute history: ``deleted`` holds
    the loaded value when status is being changed, ``unchanged`` otherwise.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    elif status_history.unchanged:
        previous = status_history.unchanged[0]
    else:
        previous = None

    if previous is not None and TransferStatus(previous) in TERMINAL_STATUSES:
        raise _blocked(
            "StockTransfer",
            target.id,
            "UPDATE",
            f"Transfer is {TransferStatus(previous).value} and can no longer change",
        )

    for field_name in TRANSFER_REQUEST_FIELDS:
        if get_history(target, field_name).has_changes():
            raise _blocked(
                "StockTransfer",
                target.id,
                "UPDATE",
                f"Field '{field_name}' is fixed at creation",
            )


def _check_stock_transfer_delete(mapper, connection, target):
    raise _blocked(
        "StockTransfer",
        target.id,
        "DELETE",
        "Transfer records cannot be deleted",
    )


def _check_stock_allocation_delete(mapper, connection, target):
    raise _blocked(
        "StockAllocation",
        target.id,
        "DELETE",
        "Allocation rows are never deleted; set quantities to zero instead",
    )


def _product_has_allocations(connection, product_id) -> bool:
    from stock_kernel.models.stock_allocation import StockAllocation

    return bool(
        connection.execute(
            select(exists().where(StockAllocation.product_id == product_id))
        ).scalar()
    )


def _check_product_identity_immutability(mapper, connection, target):
    """Freeze SKU and owning business once the product holds stock anywhere."""
    changed = [
        name for name in PRODUCT_IDENTITY_FIELDS if get_history(target, name).has_changes()
    ]
    if not changed:
        return

    if _product_has_allocations(connection, target.id):
        raise _blocked(
            "Product",
            target.id,
            "UPDATE",
            f"Fields {', '.join(changed)} are frozen once allocation rows reference the product",
        )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is harmless.
    """
    from stock_kernel.models.audit_event import AuditEvent
    from stock_kernel.models.product import Product
    from stock_kernel.models.stock_allocation import StockAllocation
    from stock_kernel.models.stock_transfer import StockTransfer

    for target, event_name, listener_fn in _listeners(
        AuditEvent, Product, StockAllocation, StockTransfer
    ):
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from stock_kernel.models.audit_event import AuditEvent
    from stock_kernel.models.product import Product
    from stock_kernel.models.stock_allocation import StockAllocation
    from stock_kernel.models.stock_transfer import StockTransfer

    for target, event_name, listener_fn in _listeners(
        AuditEvent, Product, StockAllocation, StockTransfer
    ):
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)


def _listeners(audit_event, product, stock_allocation, stock_transfer):
    return (
        (audit_event, "before_update", _check_audit_event_immutability),
        (audit_event, "before_delete", _check_audit_event_delete),
        (stock_transfer, "before_update", _check_stock_transfer_immutability),
        (stock_transfer, "before_delete", _check_stock_transfer_delete),
        (stock_allocation, "before_delete", _check_stock_allocation_delete),
        (product, "before_update", _check_product_identity_immutability),
    )
