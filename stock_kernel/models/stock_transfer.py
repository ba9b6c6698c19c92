"""
Module: stock_kernel.models.stock_transfer
Responsibility: ORM persistence for warehouse-to-warehouse transfer records.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure transfer state machine in domain/transfer_state.py.

Invariants enforced:
    - from_warehouse_id != to_warehouse_id and quantity > 0 (CHECK constraints).
    - Only status, failure_reason, approved_by_id, completed_at and
      updated_at change after creation; terminal records never change
      (ORM listener in db/immutability.py).
    - seq is unique and monotonic (SequenceService), giving a stable
      newest-first ordering.

Audit relevance:
    A transfer record exists for every attempt that passed request
    validation, including failed ones, so the admin UI can show rejected
    transfers with their failure_reason.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.transfer_state import TransferStatus


class StockTransfer(Base):
    """Transfer record with a PENDING -> COMPLETED | FAILED lifecycle."""

    __tablename__ = "stock_transfers"

    __table_args__ = (
        CheckConstraint(
            "from_warehouse_id <> to_warehouse_id", name="ck_transfer_distinct_ends"
        ),
        CheckConstraint("quantity > 0", name="ck_transfer_positive_quantity"),
        Index("idx_transfer_product", "product_id"),
        Index("idx_transfer_from", "from_warehouse_id"),
        Index("idx_transfer_to", "to_warehouse_id"),
        Index("idx_transfer_status", "status"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )

    from_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    to_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[TransferStatus] = mapped_column(
        String(20), nullable=False, default=TransferStatus.PENDING
    )

    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockTransfer {self.quantity} x {self.product_id} "
            f"{self.from_warehouse_id}->{self.to_warehouse_id} [{self.status}]>"
        )
