from __future__ import annotations

import os
import sqlite3
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from shopcart.config import settings
from shopcart.constants import (
    ORDER_STATUSES,
    PAYMENT_METHODS,
    REASON_INVALID_ORDER,
    REASON_INSUFFICIENT_STOCK,
    REASON_PRODUCT_NOT_FOUND,
    REASON_TOTAL_MISMATCH,
)
from shopcart.services.pricing import line_total, to_money
from shopcart.utils.validators import require_positive_number

DB_PATH = settings.db_path


def _connect() -> sqlite3.Connection:
    db_dir = os.path.dirname(DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def init_db() -> None:
    conn = _connect()
    try:
        with open(os.path.join(os.path.dirname(__file__), "schema.sql"), "r", encoding="utf-8") as f:
            conn.executescript(f.read())
        conn.commit()
    finally:
        conn.close()


# ---------------- products ----------------

def add_product(
    name: str,
    price,
    stock: int = 0,
    sku: Optional[str] = None,
    category: Optional[str] = None,
    image_url: Optional[str] = None,
    discount_percentage=0,
) -> int:
    price = to_money(price)
    require_positive_number(price, "price")
    if stock < 0:
        raise ValueError("stock must be >= 0")
    conn = _connect()
    try:
        cur = conn.execute(
            """
            INSERT INTO products(name, sku, category, image_url, price, discount_percentage, stock, updated_at)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (name, sku, category, image_url, str(price), str(Decimal(str(discount_percentage))), int(stock), _now()),
        )
        conn.commit()
        return int(cur.lastrowid)
    finally:
        conn.close()


def list_products(search: Optional[str] = None, in_stock_only: bool = False) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM products WHERE is_active = 1"
    params: list = []
    if search:
        sql += " AND (name LIKE ? OR sku LIKE ?)"
        params += [f"%{search}%", f"%{search}%"]
    if in_stock_only:
        sql += " AND stock > 0"
    sql += " ORDER BY name"

    conn = _connect()
    try:
        rows = conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def get_product(product_id: int) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        row = conn.execute(
            "SELECT * FROM products WHERE id = ? AND is_active = 1",
            (product_id,),
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def set_stock(product_id: int, stock: int) -> bool:
    if stock < 0:
        raise ValueError("stock must be >= 0")
    conn = _connect()
    try:
        cur = conn.execute(
            "UPDATE products SET stock = ?, updated_at = ? WHERE id = ?",
            (int(stock), _now(), product_id),
        )
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


# ---------------- orders ----------------

def _next_order_number(conn: sqlite3.Connection, now: datetime) -> str:
    # MMDDYY-N, N: порядковый номер за день
    prefix = now.strftime("%m%d%y")
    rows = conn.execute(
        "SELECT order_number FROM orders WHERE order_number LIKE ?",
        (prefix + "-%",),
    ).fetchall()
    seq = 0
    for r in rows:
        parts = r["order_number"].split("-")
        if len(parts) == 2 and parts[1].isdigit():
            seq = max(seq, int(parts[1]))
    return f"{prefix}-{seq + 1}"


def _reject(reason: str, message: str, errors: Optional[List[str]] = None) -> Tuple[bool, Dict[str, Any]]:
    return False, {"reason": reason, "message": message, "errors": errors or []}


def _parse_items(items: List[Dict[str, Any]]) -> Tuple[Optional[List[Tuple[int, int, Decimal]]], List[str]]:
    parsed = []
    errors = []
    for i, it in enumerate(items, start=1):
        try:
            pid = int(it["product_id"])
            qty = it["quantity"]
            price = to_money(it["unit_price"])
        except (KeyError, TypeError, ValueError, InvalidOperation):
            errors.append(f"Item #{i} is malformed")
            continue
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
            errors.append(f"Item #{i}: quantity must be a positive integer")
            continue
        parsed.append((pid, qty, price))
    return (parsed if not errors else None), errors


def create_order(order: Dict[str, Any], items: List[Dict[str, Any]]) -> Tuple[bool, Any]:
    """
    Делает:
    - проверка остатков по каждой позиции
    - сверка суммы с тем, что видел покупатель
    - запись orders + order_items
    - списание остатков
    """
    if not items:
        return _reject(REASON_INVALID_ORDER, "Order has no items")
    customer_name = (order.get("customer_name") or "").strip()
    if not customer_name:
        return _reject(REASON_INVALID_ORDER, "Customer name is required")
    payment_method = order.get("payment_method") or PAYMENT_METHODS[0]
    if payment_method not in PAYMENT_METHODS:
        return _reject(REASON_INVALID_ORDER, f"Unknown payment method: {payment_method}")
    try:
        expected_total = to_money(order["total"])
    except (KeyError, TypeError, ValueError, InvalidOperation):
        return _reject(REASON_INVALID_ORDER, "Order total is missing or malformed")

    parsed, errors = _parse_items(items)
    if parsed is None:
        return _reject(REASON_INVALID_ORDER, "Invalid order data", errors)

    conn = _connect()
    try:
        conn.execute("BEGIN IMMEDIATE")

        # 1) проверить, что всё есть на складе
        products = {}
        missing = False
        for pid, qty, _price in parsed:
            prod = conn.execute(
                "SELECT id, name, sku, stock FROM products WHERE id = ? AND is_active = 1",
                (pid,),
            ).fetchone()
            if not prod:
                missing = True
                errors.append(f"Product with ID {pid} not found")
                continue
            if int(prod["stock"]) < qty:
                errors.append(
                    f"Insufficient stock for {prod['name']}. Available: {prod['stock']}, Requested: {qty}"
                )
                continue
            products[pid] = prod

        if errors:
            conn.rollback()
            reason = REASON_PRODUCT_NOT_FOUND if missing else REASON_INSUFFICIENT_STOCK
            return _reject(reason, "Order cannot be processed due to stock issues", errors)

        # 2) сумма
        total = to_money(sum((line_total(price, qty) for _pid, qty, price in parsed), Decimal(0)))
        if total != expected_total:
            conn.rollback()
            return _reject(
                REASON_TOTAL_MISMATCH,
                f"Order total mismatch: expected {expected_total}, items add up to {total}",
            )

        # 3) создать заказ
        now = datetime.now()
        created_at = now.strftime("%Y-%m-%d %H:%M:%S")
        order_number = _next_order_number(conn, now)
        cur = conn.execute(
            """
            INSERT INTO orders(order_number, customer_name, customer_email, customer_phone,
                               shipping_address, total, status, payment_method, notes,
                               created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                order_number,
                customer_name,
                order.get("customer_email") or "",
                order.get("customer_phone") or "",
                order.get("shipping_address") or "",
                str(total),
                "pending",
                payment_method,
                order.get("notes") or None,
                created_at,
                created_at,
            ),
        )
        order_id = int(cur.lastrowid)

        # 4) позиции + списание
        for pid, qty, price in parsed:
            prod = products[pid]
            conn.execute(
                """
                INSERT INTO order_items(order_id, product_id, product_name, product_sku,
                                        product_price, quantity, subtotal)
                VALUES(?,?,?,?,?,?,?)
                """,
                (order_id, pid, prod["name"], prod["sku"], str(price), qty, str(line_total(price, qty))),
            )
            conn.execute(
                "UPDATE products SET stock = stock - ?, updated_at = ? WHERE id = ?",
                (qty, created_at, pid),
            )

        conn.commit()
        return True, {
            "id": order_id,
            "order_number": order_number,
            "total": str(total),
            "status": "pending",
            "created_at": created_at,
        }
    except sqlite3.Error as e:
        conn.rollback()
        return _reject(REASON_INVALID_ORDER, str(e))
    finally:
        conn.close()


def get_order(order_number: str) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        row = conn.execute("SELECT * FROM orders WHERE order_number = ?", (order_number,)).fetchone()
        if not row:
            return None
        order = dict(row)
        items = conn.execute(
            """
            SELECT product_id, product_name, product_sku, product_price, quantity, subtotal
            FROM order_items
            WHERE order_id = ?
            ORDER BY id
            """,
            (order["id"],),
        ).fetchall()
        order["items"] = [dict(r) for r in items]
        return order
    finally:
        conn.close()


def list_orders(status: Optional[str] = None) -> List[Dict[str, Any]]:
    conn = _connect()
    try:
        if status:
            rows = conn.execute(
                "SELECT * FROM orders WHERE status = ? ORDER BY id DESC", (status,)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM orders ORDER BY id DESC").fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def update_order_status(order_number: str, status: str) -> Tuple[bool, str]:
    if status not in ORDER_STATUSES:
        return False, f"unknown status: {status}"

    conn = _connect()
    try:
        conn.execute("BEGIN IMMEDIATE")
        row = conn.execute(
            "SELECT id, status FROM orders WHERE order_number = ?", (order_number,)
        ).fetchone()
        if not row:
            conn.rollback()
            return False, "order not found"

        # отмена: вернуть остатки
        if status == "cancelled" and row["status"] != "cancelled":
            items = conn.execute(
                "SELECT product_id, quantity FROM order_items WHERE order_id = ?",
                (row["id"],),
            ).fetchall()
            for it in items:
                if it["product_id"] is None:
                    continue
                conn.execute(
                    "UPDATE products SET stock = stock + ?, updated_at = ? WHERE id = ?",
                    (it["quantity"], _now(), it["product_id"]),
                )

        conn.execute(
            "UPDATE orders SET status = ?, updated_at = ? WHERE id = ?",
            (status, _now(), row["id"]),
        )
        conn.commit()
        return True, "ok"
    except sqlite3.Error as e:
        conn.rollback()
        return False, str(e)
    finally:
        conn.close()
