"""
Module: stock_kernel.models.warehouse
Responsibility: ORM persistence for physical stock locations.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from sqlalchemy import BigInteger, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class Warehouse(TrackedBase):
    """
    A warehouse that can hold allocation rows.

    ``capacity`` is a unit count used only for utilization reporting;
    0 means unknown.
    """

    __tablename__ = "warehouses"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    region: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    capacity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Warehouse {self.name} ({self.region})>"
