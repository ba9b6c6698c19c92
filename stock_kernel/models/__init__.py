"""ORM models for the stock kernel."""

from stock_kernel.models.audit_event import AuditAction, AuditEvent
from stock_kernel.models.product import Product
from stock_kernel.models.sequence_counter import SequenceCounter
from stock_kernel.models.stock_allocation import StockAllocation
from stock_kernel.models.stock_transfer import StockTransfer
from stock_kernel.models.warehouse import Warehouse

__all__ = [
    "AuditAction",
    "AuditEvent",
    "Product",
    "SequenceCounter",
    "StockAllocation",
    "StockTransfer",
    "Warehouse",
]
