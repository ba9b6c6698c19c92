"""
Module: stock_kernel.models.product
Responsibility: ORM persistence for sellable products, the "what" of every
    allocation row.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (business_id, sku_key) is unique: SKUs are unique per business,
      compared case-insensitively through the normalized ``sku_key``.
    - sku, sku_key and business_id are immutable once any StockAllocation
      references the product (ORM listener in db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate (business_id, sku_key) insert; the admin
      service checks first and raises DuplicateSkuError.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class Product(TrackedBase):
    """
    Product catalog entry.

    ``business_id`` identifies the owning business, which lives outside
    this kernel and is never dereferenced here.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("business_id", "sku_key", name="uq_product_business_sku"),
        Index("idx_product_sku_key", "sku_key"),
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # SKU exactly as entered
    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    # Normalized SKU (stripped, case-folded) used for lookups
    sku_key: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    unit_weight: Mapped[Decimal | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Product {self.sku}: {self.name}>"
