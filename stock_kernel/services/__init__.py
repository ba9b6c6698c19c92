"""Kernel services: the only code that writes to the database."""

from stock_kernel.services.allocation_ledger import AllocationLedger
from stock_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from stock_kernel.services.fulfillment_service import OrderFulfillmentService
from stock_kernel.services.order_validation_service import BulkOrderValidator
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_admin_service import StockAdminService
from stock_kernel.services.transfer_service import TransferCoordinator

__all__ = [
    "AllocationLedger",
    "AuditorService",
    "AuditTrace",
    "AuditTraceEntry",
    "BulkOrderValidator",
    "OrderFulfillmentService",
    "SequenceService",
    "StockAdminService",
    "TransferCoordinator",
]
