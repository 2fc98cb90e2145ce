from __future__ import annotations

import os

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from shopcart.config import settings
from shopcart.constants import ORDER_STATUSES
from shopcart.db import sqlite


def generate_invoice_pdf(order_number: str) -> str:
    order = sqlite.get_order(order_number)
    if order is None:
        raise LookupError(f"order {order_number} not found")

    os.makedirs(settings.export_dir, exist_ok=True)
    filename = f"invoice_{order_number}.pdf"
    path = os.path.join(settings.export_dir, filename)

    c = canvas.Canvas(path, pagesize=A4)
    w, h = A4

    y = h - 50
    c.setFont("Helvetica-Bold", 14)
    c.drawString(40, y, f"ORDER #{order['order_number']}")
    y -= 20

    c.setFont("Helvetica", 11)
    c.drawString(40, y, f"Customer: {order['customer_name']}")
    y -= 16
    if order["customer_phone"]:
        c.drawString(40, y, f"Phone: {order['customer_phone']}")
        y -= 16
    if order["shipping_address"]:
        c.drawString(40, y, f"Ship to: {order['shipping_address'][:70]}")
        y -= 16
    c.drawString(40, y, f"Date: {order['created_at']}")
    y -= 16
    c.drawString(40, y, f"Status: {ORDER_STATUSES.get(order['status'], order['status'])}")
    y -= 16
    c.drawString(40, y, f"Payment: {order['payment_method'].upper()}")
    y -= 24

    # header
    c.setFont("Helvetica-Bold", 10)
    c.drawString(40, y, "Item")
    c.drawString(310, y, "Qty")
    c.drawString(360, y, "Price")
    c.drawString(440, y, "Subtotal")
    y -= 10
    c.line(40, y, 550, y)
    y -= 16

    c.setFont("Helvetica", 10)
    for it in order["items"]:
        item_name = it["product_name"]
        if it["product_sku"]:
            item_name = f"{item_name} ({it['product_sku']})"
        c.drawString(40, y, item_name[:45])
        c.drawRightString(340, y, str(it["quantity"]))
        c.drawRightString(420, y, it["product_price"])
        c.drawRightString(550, y, it["subtotal"])
        y -= 14
        if y < 80:
            c.showPage()
            y = h - 50
            c.setFont("Helvetica", 10)

    y -= 10
    c.line(40, y, 550, y)
    y -= 18
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(550, y, f"TOTAL: {order['total']} {settings.currency}")

    c.save()
    return path
