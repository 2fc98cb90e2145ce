"""Shared pytest fixtures for shopcart tests."""

import dataclasses
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from shopcart.cart.engine import Product
from shopcart.db import sqlite
from shopcart.services import invoice_pdf
from shopcart.services.orders import LocalOrderService
from shopcart.web.main import create_app


def make_product(id=1, price="10.00", stock=3, name=None, discount="0") -> Product:
    return Product(
        id=id,
        unit_price=Decimal(price),
        stock=stock,
        name=name or f"Product {id}",
        sku=f"SKU-{id}",
        discount_percentage=Decimal(discount),
    )


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the storage layer at a fresh SQLite file."""
    monkeypatch.setattr(sqlite, "DB_PATH", str(tmp_path / "shop.db"))
    sqlite.init_db()
    return tmp_path / "shop.db"


@pytest.fixture
def export_dir(tmp_path, monkeypatch):
    path = tmp_path / "exports"
    monkeypatch.setattr(
        invoice_pdf, "settings", dataclasses.replace(invoice_pdf.settings, export_dir=str(path))
    )
    return path


@pytest.fixture
def products(db):
    """Seed the catalog: ids map to (price, stock)."""
    return {
        "tea": sqlite.add_product("Green Tea", "10.00", stock=3, sku="TEA-1", category="Drinks"),
        "mug": sqlite.add_product("Mug", "5.50", stock=10, sku="MUG-1", category="Kitchen"),
        "honey": sqlite.add_product("Honey", "2.00", stock=4, sku="HON-1"),
        "gone": sqlite.add_product("Sold Out Jam", "3.00", stock=0, sku="JAM-1"),
        "sale": sqlite.add_product("Cookies", "8.00", stock=5, sku="COO-1", discount_percentage="25"),
    }


@pytest.fixture
def app(db, export_dir):
    return create_app(order_service=LocalOrderService())


@pytest.fixture
def test_client(app):
    with TestClient(app) as client:
        yield client
