from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from shopcart.cart.engine import Product
from shopcart.db import sqlite


def product_from_row(row: Dict[str, Any]) -> Product:
    return Product(
        id=int(row["id"]),
        unit_price=Decimal(str(row["price"])),
        stock=int(row["stock"]),
        name=row.get("name") or "",
        sku=row.get("sku"),
        image_url=row.get("image_url"),
        category=row.get("category"),
        discount_percentage=Decimal(str(row.get("discount_percentage") or "0")),
    )


class SqliteCatalog:
    """Read-only product lookup over the local database."""

    def get_product(self, product_id: int) -> Optional[Product]:
        row = sqlite.get_product(product_id)
        return product_from_row(row) if row else None

    def list_products(self, search: Optional[str] = None, in_stock_only: bool = True) -> List[Product]:
        return [product_from_row(r) for r in sqlite.list_products(search, in_stock_only=in_stock_only)]
