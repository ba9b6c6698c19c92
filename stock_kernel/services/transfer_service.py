"""
TransferCoordinator -- move stock between two warehouses.

Responsibility:
    Validates a transfer request, records it, and moves the units in one
    atomic step: the source decrement, the destination increment and the
    COMPLETED status commit together or not at all.  A request that gets
    as far as a record but cannot be executed leaves a FAILED record with
    its reason.

Architecture position:
    Kernel > Services -- entry point called by the admin UI.  Owns its
    transaction when ``auto_commit=True``.

Lifecycle (domain/transfer_state.py):
    PENDING --> COMPLETED
       |
       +------> FAILED

Invariants enforced:
    - Conservation: source decrease == destination increase.
    - The source decrement is conditional (never below safety stock).
    - Rows are touched in warehouse-id order so two opposite transfers of
      the same product cannot deadlock.
    - A failed attempt changes no allocation row.

Failure modes:
    - InvalidTransferError: same warehouse at both ends or quantity <= 0
      (no record is written).
    - ProductNotFoundError / WarehouseNotFoundError (no record is written).
    - NoAllocationAtSourceError, InsufficientStockError: record FAILED.
    - StorageFailureError / AuditEmissionError: record FAILED if it can
      still be written, otherwise nothing is.
"""

import time
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import TransferRecordDTO, TransferResult, WarehouseAvailability
from stock_kernel.domain.transfer_state import TransferStatus, validate_transition
from stock_kernel.exceptions import (
    InsufficientStockError,
    InvalidDeltaError,
    InvalidTransferError,
    NoAllocationAtSourceError,
    StockKernelError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.models.stock_transfer import StockTransfer
from stock_kernel.selectors.catalog_selector import CatalogSelector
from stock_kernel.services.allocation_ledger import AllocationLedger
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transfer")


class TransferCoordinator(BaseService):
    """
    Executes warehouse-to-warehouse transfers.

    Contract:
        ``transfer()`` returns the COMPLETED record and post-transfer
        availability at both ends, or raises after persisting a FAILED
        record (when the request was well-formed and referenced known
        entities).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, auto_commit)
        self._clock = clock or SystemClock()
        self._ledger = AllocationLedger(session, self._clock)
        self._catalog = CatalogSelector(session)
        self._auditor = auditor or AuditorService(session, self._clock)
        self._sequence = SequenceService(session)

    def transfer(
        self,
        product_id: UUID,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        quantity: int,
        requested_by: UUID,
        notes: str | None = None,
        approved_by: UUID | None = None,
    ) -> TransferResult:
        """Move ``quantity`` units of a product from one warehouse to another."""
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(requested_by),
            product_id=str(product_id),
        ):
            logger.info(
                "transfer_requested",
                extra={
                    "from_warehouse_id": str(from_warehouse_id),
                    "to_warehouse_id": str(to_warehouse_id),
                    "quantity": quantity,
                },
            )
            t0 = time.monotonic()

            try:
                self._validate_request(from_warehouse_id, to_warehouse_id, quantity)
                self._catalog.require_product(product_id)
                self._catalog.require_warehouse(from_warehouse_id)
                self._catalog.require_warehouse(to_warehouse_id)

                record = self._stage(
                    product_id,
                    from_warehouse_id,
                    to_warehouse_id,
                    quantity,
                    requested_by,
                    notes,
                    approved_by,
                )
                with LogContext.bind(transfer_id=str(record.id)):
                    result = self._execute(record, requested_by)
                self._commit()
            except StockKernelError as exc:
                self._rollback()
                logger.warning(
                    "transfer_rejected",
                    extra={
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise
            except DBAPIError as exc:
                self._rollback()
                logger.error("transfer_storage_failure", exc_info=True)
                raise self._storage_failure("transfer", exc) from exc
            except Exception:
                self._rollback()
                logger.error("transfer_storage_failure", exc_info=True)
                raise

            logger.info(
                "transfer_completed",
                extra={
                    "transfer_id": str(result.transfer.id),
                    "source_available": result.source_available,
                    "destination_available": result.destination_available,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    @staticmethod
    def _validate_request(from_warehouse_id: UUID, to_warehouse_id: UUID, quantity: int) -> None:
        if from_warehouse_id == to_warehouse_id:
            raise InvalidTransferError("source and destination warehouse are the same")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidTransferError("quantity must be a positive integer")

    def _stage(
        self,
        product_id: UUID,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        quantity: int,
        requested_by: UUID,
        notes: str | None,
        approved_by: UUID | None,
    ) -> StockTransfer:
        now = self._clock.now()
        record = StockTransfer(
            seq=self._sequence.next_value(SequenceService.STOCK_TRANSFER),
            product_id=product_id,
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            quantity=quantity,
            status=TransferStatus.PENDING,
            requested_by_id=requested_by,
            approved_by_id=approved_by,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def _execute(self, record: StockTransfer, actor_id: UUID) -> TransferResult:
        source = self._ledger.get(record.product_id, record.from_warehouse_id)
        if source is None:
            raise self._fail(
                record,
                NoAllocationAtSourceError(str(record.product_id), str(record.from_warehouse_id)),
                actor_id,
            )
        if record.quantity > source.available_quantity:
            raise self._fail(
                record,
                InsufficientStockError(
                    requested=record.quantity,
                    available=source.available_quantity,
                    product_id=str(record.product_id),
                    warehouse_id=str(record.from_warehouse_id),
                    breakdown=[WarehouseAvailability.from_row(source).as_dict()],
                ),
                actor_id,
            )

        try:
            with self.session.begin_nested():
                source_mutation, destination_mutation = self._move(record)

                now = self._clock.now()
                record.status = validate_transition(
                    str(record.id), record.status, TransferStatus.COMPLETED
                )
                record.completed_at = now
                record.updated_at = now
                self.session.flush()

                self._auditor.emit(
                    entity_type="StockTransfer",
                    entity_id=record.id,
                    action=AuditAction.TRANSFER_COMPLETED,
                    details={
                        "product_id": record.product_id,
                        "from_warehouse_id": record.from_warehouse_id,
                        "to_warehouse_id": record.to_warehouse_id,
                        "quantity": record.quantity,
                        "source_before": source_mutation.before.snapshot(),
                        "source_after": source_mutation.after.snapshot(),
                        "destination_before": (
                            destination_mutation.before.snapshot()
                            if destination_mutation.before is not None
                            else None
                        ),
                        "destination_after": destination_mutation.after.snapshot(),
                        "approved_by_id": record.approved_by_id,
                        "notes": record.notes,
                    },
                    actor_id=actor_id,
                )
        except InvalidDeltaError as exc:
            # Stock left the source between the check above and the update.
            raise self._fail(
                record,
                InsufficientStockError(
                    requested=record.quantity,
                    available=exc.available,
                    product_id=str(record.product_id),
                    warehouse_id=str(record.from_warehouse_id),
                ),
                actor_id,
            ) from exc
        except StockKernelError as exc:
            raise self._fail(record, exc, actor_id) from exc
        except DBAPIError as exc:
            raise self._fail(record, self._storage_failure("transfer", exc), actor_id) from exc

        return TransferResult(
            transfer=TransferRecordDTO.from_model(record),
            source_available=source_mutation.after.available_quantity,
            destination_available=destination_mutation.after.available_quantity,
        )

    def _move(self, record: StockTransfer):
        """Apply both ledger writes in warehouse-id order; returns (source, destination)."""
        mutations = {}
        for warehouse_id in sorted(
            (record.from_warehouse_id, record.to_warehouse_id), key=str
        ):
            if warehouse_id == record.from_warehouse_id:
                mutations["source"] = self._ledger.upsert_add(
                    record.product_id, warehouse_id, -record.quantity
                )
            else:
                mutations["destination"] = self._ledger.upsert_add(
                    record.product_id, warehouse_id, record.quantity
                )
        return mutations["source"], mutations["destination"]

    def _fail(
        self,
        record: StockTransfer,
        error: StockKernelError,
        actor_id: UUID,
    ) -> StockKernelError:
        """Mark the record FAILED, audit it, commit, and hand back the error to raise."""
        now = self._clock.now()
        record.status = validate_transition(str(record.id), record.status, TransferStatus.FAILED)
        record.failure_reason = f"{error.code}: {error}"
        record.updated_at = now
        self.session.flush()

        self._auditor.emit(
            entity_type="StockTransfer",
            entity_id=record.id,
            action=AuditAction.TRANSFER_FAILED,
            details={
                "product_id": record.product_id,
                "from_warehouse_id": record.from_warehouse_id,
                "to_warehouse_id": record.to_warehouse_id,
                "quantity": record.quantity,
                "error_code": error.code,
                "reason": str(error),
            },
            actor_id=actor_id,
        )
        self._commit()

        logger.warning(
            "transfer_failed",
            extra={"transfer_id": str(record.id), "error_code": error.code},
        )
        return error
