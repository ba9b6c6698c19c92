"""
Module: stock_kernel.models.stock_allocation
Responsibility: ORM persistence for the allocation ledger: one row per
    (product, warehouse) pair holding allocated units and safety stock.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one row per (product_id, warehouse_id) (uq_allocation_pair).
    - allocated_quantity >= 0 and safety_stock >= 0 (CHECK constraints).
    - safety_stock <= allocated_quantity (CHECK constraint; every write path
      also rejects it before reaching the database).
    - version increments on every write.

Failure modes:
    - IntegrityError on a duplicate pair insert.  AllocationLedger catches
      it inside a savepoint and falls back to an update.

Audit relevance:
    Rows are never deleted; a warehouse that runs dry keeps its row at zero.
    Every change is audited by the service that made it.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class StockAllocation(Base):
    """
    Allocation row.

    Rows are written only through AllocationLedger, which uses single
    conditional UPDATE statements so concurrent writers cannot oversell.
    """

    __tablename__ = "stock_allocations"

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_allocation_pair"),
        CheckConstraint("allocated_quantity >= 0", name="ck_allocation_nonnegative"),
        CheckConstraint("safety_stock >= 0", name="ck_safety_nonnegative"),
        CheckConstraint(
            "safety_stock <= allocated_quantity",
            name="ck_safety_within_allocation",
        ),
        Index("idx_allocation_warehouse", "warehouse_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    allocated_quantity: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    safety_stock: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockAllocation {self.product_id}@{self.warehouse_id}: "
            f"{self.allocated_quantity} (safety {self.safety_stock})>"
        )
