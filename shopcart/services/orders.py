"""Order submission collaborators for the cart checkout.

The cart engine hands an immutable ``OrderSnapshot`` to an order service and
awaits an ``OrderAck``. Two services are provided:

* ``LocalOrderService`` writes the order into the local SQLite database
  (stock is re-validated and decremented inside one transaction).
* ``HttpOrderService`` posts the snapshot to a remote ``/api/orders``
  endpoint using httpx.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import httpx

from shopcart.constants import (
    PAYMENT_COD,
    REASON_INVALID_ORDER,
    REASON_UNAVAILABLE,
)
from shopcart.db import sqlite

logger = logging.getLogger(__name__)


class OrderRejected(Exception):
    """The order service refused the order."""

    def __init__(self, reason_code: str, message: str, errors: list[str] | None = None):
        self.reason_code = reason_code
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class OrderServiceUnavailable(Exception):
    """The order service could not be reached."""

    pass


@dataclass(frozen=True)
class Customer:
    name: str
    email: str = ""
    phone: str = ""
    shipping_address: str = ""
    payment_method: str = PAYMENT_COD
    notes: str = ""


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class OrderSnapshot:
    items: tuple[OrderLine, ...]
    expected_total: Decimal
    customer: Customer | None = None

    def to_payload(self) -> dict[str, Any]:
        customer = self.customer or Customer(name="Guest")
        return {
            "order": {
                "customer_name": customer.name,
                "customer_email": customer.email,
                "customer_phone": customer.phone,
                "shipping_address": customer.shipping_address,
                "payment_method": customer.payment_method,
                "notes": customer.notes,
                "total": str(self.expected_total),
            },
            "items": [
                {
                    "product_id": it.product_id,
                    "quantity": it.quantity,
                    "unit_price": str(it.unit_price),
                }
                for it in self.items
            ],
        }


@dataclass(frozen=True)
class OrderAck:
    order_number: str
    total: Decimal
    order_id: int | None = None
    extra: dict = field(default_factory=dict)


class OrderService(Protocol):
    async def submit(self, snapshot: OrderSnapshot) -> OrderAck: ...


class LocalOrderService:
    """Order service backed by the local SQLite database."""

    async def submit(self, snapshot: OrderSnapshot) -> OrderAck:
        payload = snapshot.to_payload()
        ok, result = await asyncio.to_thread(
            sqlite.create_order, payload["order"], payload["items"]
        )
        if not ok:
            raise OrderRejected(
                reason_code=result.get("reason", REASON_INVALID_ORDER),
                message=result.get("message", "Order rejected"),
                errors=result.get("errors"),
            )
        logger.info("Order %s stored locally (total=%s)", result["order_number"], result["total"])
        return OrderAck(
            order_number=result["order_number"],
            total=Decimal(str(result["total"])),
            order_id=int(result["id"]),
        )


class HttpOrderService:
    """Order service reached over HTTP (``POST {base_url}/api/orders``)."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _get_async_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def submit(self, snapshot: OrderSnapshot) -> OrderAck:
        try:
            async with self._get_async_client() as client:
                response = await client.post("/api/orders", json=snapshot.to_payload())
        except httpx.RequestError as e:
            logger.error("Order service unavailable: %s", e)
            raise OrderServiceUnavailable(str(e)) from e

        data = _handle_response(response)
        try:
            return OrderAck(
                order_number=str(data["order_number"]),
                total=Decimal(str(data["total"])),
                order_id=data.get("id"),
            )
        except (KeyError, ArithmeticError) as e:
            logger.error("Malformed order service response: %r", data)
            raise OrderRejected(
                reason_code=REASON_INVALID_ORDER,
                message=f"Malformed order service response: missing or invalid {e}",
            ) from e


def _handle_response(response: httpx.Response) -> dict:
    if response.status_code in (200, 201):
        try:
            data = response.json()
        except ValueError as e:
            raise OrderRejected(
                reason_code=REASON_INVALID_ORDER,
                message=f"Order service returned non-JSON body (HTTP {response.status_code})",
            ) from e
        if not isinstance(data, dict):
            raise OrderRejected(
                reason_code=REASON_INVALID_ORDER,
                message="Order service returned an unexpected body",
            )
        return data

    try:
        error_data = response.json()
    except ValueError:
        error_data = None

    if not isinstance(error_data, dict):
        raise OrderRejected(
            reason_code=REASON_UNAVAILABLE if response.status_code >= 500 else REASON_INVALID_ORDER,
            message=f"Order service returned HTTP {response.status_code}",
        )

    raise OrderRejected(
        reason_code=error_data.get("reason", REASON_INVALID_ORDER),
        message=error_data.get("message") or error_data.get("detail") or "Order rejected",
        errors=error_data.get("errors"),
    )


def build_order_service(order_service_url: str = "", timeout: float = 30.0) -> OrderService:
    if order_service_url:
        return HttpOrderService(order_service_url, timeout=timeout)
    return LocalOrderService()
