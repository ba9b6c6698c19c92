"""
Module: stock_kernel.selectors.catalog_selector
Responsibility: Product and warehouse lookups, including SKU resolution
    for incoming orders.
Architecture position: Kernel > Selectors.

Failure modes:
    - ProductNotFoundError / WarehouseNotFoundError from the ``require_*``
      and ``resolve_sku`` methods.
    - AmbiguousSkuError when a SKU matches products of several businesses
      and the caller gave no business scope.
"""

from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import ProductInfo, WarehouseInfo
from stock_kernel.domain.selection import normalize_sku
from stock_kernel.exceptions import (
    AmbiguousSkuError,
    ProductNotFoundError,
    WarehouseNotFoundError,
)
from stock_kernel.models.product import Product
from stock_kernel.models.warehouse import Warehouse
from stock_kernel.selectors.base import BaseSelector


class CatalogSelector(BaseSelector):
    """Read access to products and warehouses."""

    def get_product(self, product_id: UUID) -> ProductInfo | None:
        product = self.session.get(Product, product_id)
        return ProductInfo.from_model(product) if product is not None else None

    def require_product(self, product_id: UUID) -> ProductInfo:
        product = self.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def get_warehouse(self, warehouse_id: UUID) -> WarehouseInfo | None:
        warehouse = self.session.get(Warehouse, warehouse_id)
        return WarehouseInfo.from_model(warehouse) if warehouse is not None else None

    def require_warehouse(self, warehouse_id: UUID) -> WarehouseInfo:
        warehouse = self.get_warehouse(warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def list_warehouses(self, active_only: bool = False) -> list[WarehouseInfo]:
        stmt = select(Warehouse).order_by(Warehouse.name, Warehouse.id)
        if active_only:
            stmt = stmt.where(Warehouse.is_active.is_(True))
        return [WarehouseInfo.from_model(w) for w in self.session.scalars(stmt)]

    def find_products_by_sku(
        self,
        sku: str,
        business_id: UUID | None = None,
    ) -> list[ProductInfo]:
        """Case-insensitive SKU lookup, optionally scoped to one business."""
        stmt = select(Product).where(Product.sku_key == normalize_sku(sku))
        if business_id is not None:
            stmt = stmt.where(Product.business_id == business_id)
        stmt = stmt.order_by(Product.business_id)
        return [ProductInfo.from_model(p) for p in self.session.scalars(stmt)]

    def resolve_sku(self, sku: str, business_id: UUID | None = None) -> ProductInfo:
        """
        Resolve an order-line SKU to exactly one product.

        Raises:
            ProductNotFoundError: no product carries the SKU.
            AmbiguousSkuError: several businesses carry it and no scope given.
        """
        matches = self.find_products_by_sku(sku, business_id)
        if not matches:
            raise ProductNotFoundError(sku)
        if len(matches) > 1:
            raise AmbiguousSkuError(sku, [str(p.business_id) for p in matches])
        return matches[0]
