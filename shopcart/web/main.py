from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from shopcart.cart.engine import CartEngine, CartError, ErrorKind
from shopcart.cart.sessions import CartSessions
from shopcart.config import settings
from shopcart.constants import ORDER_STATUSES, PAYMENT_COD, SESSION_COOKIE
from shopcart.db import sqlite
from shopcart.services.catalog import SqliteCatalog
from shopcart.services.invoice_pdf import generate_invoice_pdf
from shopcart.services.orders import Customer, OrderService, build_order_service
from shopcart.utils.formatters import money

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

ERROR_STATUS = {
    ErrorKind.EMPTY_CART: 400,
    ErrorKind.CHECKOUT_IN_PROGRESS: 409,
    ErrorKind.PRODUCT_NOT_FOUND: 404,
    ErrorKind.STOCK_EXCEEDED: 409,
    ErrorKind.SUBMISSION_FAILED: 502,
}


# ---------------- schemas ----------------

class AddItemIn(BaseModel):
    product_id: int
    quantity: int = 1


class SetQuantityIn(BaseModel):
    quantity: int


class CustomerIn(BaseModel):
    name: str = Field(min_length=1)
    email: str = ""
    phone: str = ""
    shipping_address: str = ""
    payment_method: str = PAYMENT_COD
    notes: str = ""


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal


class OrderIn(BaseModel):
    customer_name: str
    customer_email: str = ""
    customer_phone: str = ""
    shipping_address: str = ""
    payment_method: str = PAYMENT_COD
    notes: str = ""
    total: Decimal


class CreateOrderIn(BaseModel):
    order: OrderIn
    items: List[OrderItemIn]


class StatusIn(BaseModel):
    status: str


def _cart_out(session: str, cart: CartEngine) -> dict[str, Any]:
    return {
        "session": session,
        "items": [
            {
                "product_id": it.product_id,
                "name": it.name,
                "sku": it.sku,
                "quantity": it.quantity,
                "stock": it.stock,
                "unit_price": str(it.unit_price),
                "subtotal": str(it.subtotal),
            }
            for it in cart.items
        ],
        "item_count": cart.item_count,
        "total": str(cart.total),
        "checkout_state": cart.checkout_state.value,
    }


def _product_out(p) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "sku": p.sku,
        "category": p.category,
        "image_url": p.image_url,
        "price": str(p.unit_price),
        "effective_price": str(p.effective_price),
        "discount_percentage": str(p.discount_percentage),
        "stock": p.stock,
    }


# ---------------- app ----------------

def create_app(
    sessions: Optional[CartSessions] = None,
    catalog: Optional[SqliteCatalog] = None,
    order_service: Optional[OrderService] = None,
) -> FastAPI:
    app = FastAPI(title="Shop Cart")

    if order_service is None:
        order_service = build_order_service(settings.order_service_url, timeout=settings.checkout_timeout)
    app.state.sessions = sessions or CartSessions(order_service, timeout=settings.checkout_timeout)
    app.state.catalog = catalog or SqliteCatalog()

    @app.on_event("startup")
    def _startup() -> None:
        sqlite.init_db()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.sessions.close_all()

    @app.exception_handler(CartError)
    async def _cart_error(request: Request, exc: CartError):
        body = {"detail": exc.message, "kind": exc.kind.value}
        if exc.detail:
            body["reason"] = exc.detail
        return JSONResponse(status_code=ERROR_STATUS.get(exc.kind, 400), content=body)

    def session_key(request: Request, response: Response) -> str:
        key = request.cookies.get(SESSION_COOKIE)
        if not key:
            key = uuid.uuid4().hex
            response.set_cookie(SESSION_COOKIE, key, httponly=True, samesite="lax")
        return key

    def current_cart(key: str = Depends(session_key)) -> CartEngine:
        return app.state.sessions.get(key)

    # ---------------- pages ----------------

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request, key: str = Depends(session_key), cart: CartEngine = Depends(current_cart)):
        ctx = {
            "products": app.state.catalog.list_products(),
            "cart": _cart_out(key, cart),
            "money": money,
        }
        return templates.TemplateResponse(request, "cart.html", ctx)

    # ---------------- catalog ----------------

    @app.get("/api/products")
    def products(search: Optional[str] = None, in_stock_only: bool = True):
        return [_product_out(p) for p in app.state.catalog.list_products(search, in_stock_only=in_stock_only)]

    # ---------------- cart ----------------

    @app.get("/api/cart")
    def cart_get(key: str = Depends(session_key), cart: CartEngine = Depends(current_cart)):
        return _cart_out(key, cart)

    @app.post("/api/cart/items")
    def cart_add(
        body: AddItemIn,
        key: str = Depends(session_key),
        cart: CartEngine = Depends(current_cart),
    ):
        product = app.state.catalog.get_product(body.product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product {body.product_id} not found in catalog")
        cart.add_item(product, body.quantity)
        return _cart_out(key, cart)

    @app.put("/api/cart/items/{product_id}")
    def cart_set_quantity(
        product_id: int,
        body: SetQuantityIn,
        key: str = Depends(session_key),
        cart: CartEngine = Depends(current_cart),
    ):
        cart.set_quantity(product_id, body.quantity)
        return _cart_out(key, cart)

    @app.delete("/api/cart/items/{product_id}", status_code=204)
    def cart_remove(product_id: int, cart: CartEngine = Depends(current_cart)):
        cart.remove_item(product_id)

    @app.delete("/api/cart", status_code=204)
    def cart_clear(cart: CartEngine = Depends(current_cart)):
        cart.clear()

    @app.post("/api/cart/refresh")
    def cart_refresh(key: str = Depends(session_key), cart: CartEngine = Depends(current_cart)):
        changed = cart.refresh_stock(app.state.catalog)
        data = _cart_out(key, cart)
        data["changed"] = changed
        return data

    @app.post("/api/cart/checkout")
    async def cart_checkout(
        body: Optional[CustomerIn] = None,
        key: str = Depends(session_key),
        cart: CartEngine = Depends(current_cart),
    ):
        customer = Customer(**body.model_dump()) if body else None
        ack = await cart.begin_checkout(customer)
        return {
            "order_number": ack.order_number,
            "total": str(ack.total),
            "checkout_state": cart.checkout_state.value,
            "cart": _cart_out(key, cart),
        }

    @app.post("/api/cart/checkout/ack")
    def cart_checkout_ack(key: str = Depends(session_key), cart: CartEngine = Depends(current_cart)):
        cart.acknowledge()
        return _cart_out(key, cart)

    # ---------------- orders ----------------

    @app.post("/api/orders", status_code=201)
    def orders_create(body: CreateOrderIn):
        order = body.order.model_dump()
        order["total"] = str(body.order.total)
        items = [
            {"product_id": it.product_id, "quantity": it.quantity, "unit_price": str(it.unit_price)}
            for it in body.items
        ]
        ok, result = sqlite.create_order(order, items)
        if not ok:
            return JSONResponse(status_code=400, content=result)
        logger.info("Order %s created via API", result["order_number"])
        return result

    @app.get("/api/orders")
    def orders_list(status: Optional[str] = None):
        return sqlite.list_orders(status)

    @app.get("/api/orders/{order_number}")
    def orders_get(order_number: str):
        order = sqlite.get_order(order_number)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    @app.put("/api/orders/{order_number}/status")
    def orders_set_status(order_number: str, body: StatusIn):
        if body.status not in ORDER_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {body.status}")
        ok, err = sqlite.update_order_status(order_number, body.status)
        if not ok:
            raise HTTPException(status_code=404, detail=err)
        return sqlite.get_order(order_number)

    @app.get("/orders/{order_number}/invoice.pdf", response_class=FileResponse)
    def orders_invoice(order_number: str):
        try:
            path = generate_invoice_pdf(order_number)
        except LookupError:
            raise HTTPException(status_code=404, detail="Order not found")
        return FileResponse(path, filename=Path(path).name, media_type="application/pdf")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    uvicorn.run(app, host="127.0.0.1", port=8000)
