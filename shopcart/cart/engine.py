"""Shopping cart state and checkout lifecycle.

A ``CartEngine`` owns the line items of one shopper session. Every mutation
keeps ``1 <= quantity <= stock`` for each line and recomputes the derived
``item_count`` and ``total`` with a single pass over the items.

Checkout is a small state machine::

    idle --begin_checkout--> submitting --ok--> succeeded --ack--> idle
                                        --error/timeout--> failed --ack--> idle

Only one submission may be in flight per engine. The live cart stays
editable while the order service is awaited; the snapshot taken at the start
of ``begin_checkout`` is what gets submitted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Iterable, Protocol

from shopcart.config import settings
from shopcart.constants import REASON_TIMEOUT, REASON_UNAVAILABLE
from shopcart.services.orders import (
    Customer,
    OrderAck,
    OrderLine,
    OrderRejected,
    OrderService,
    OrderServiceUnavailable,
    OrderSnapshot,
)
from shopcart.services.pricing import discounted_price, line_total, to_money

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    EMPTY_CART = "empty_cart"
    CHECKOUT_IN_PROGRESS = "checkout_in_progress"
    PRODUCT_NOT_FOUND = "product_not_found"
    STOCK_EXCEEDED = "stock_exceeded"
    SUBMISSION_FAILED = "submission_failed"


class CartError(Exception):
    def __init__(self, kind: ErrorKind, message: str, detail: str | None = None):
        self.kind = kind
        self.message = message
        self.detail = detail
        super().__init__(message)


class CheckoutState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class Product:
    """Catalog fields the cart depends on."""

    id: int
    unit_price: Decimal
    stock: int
    name: str = ""
    sku: str | None = None
    image_url: str | None = None
    category: str | None = None
    discount_percentage: Decimal = Decimal("0")

    @property
    def effective_price(self) -> Decimal:
        return discounted_price(self.unit_price, self.discount_percentage)


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int
    unit_price: Decimal
    stock: int
    name: str = ""
    sku: str | None = None

    @property
    def subtotal(self) -> Decimal:
        return line_total(self.unit_price, self.quantity)


@dataclass
class CheckoutAttempt:
    snapshot: tuple[LineItem, ...]
    expected_total: Decimal
    state: CheckoutState = CheckoutState.SUBMITTING
    customer: Customer | None = None
    order_number: str | None = None
    error: CartError | None = None

    def to_order(self) -> OrderSnapshot:
        return OrderSnapshot(
            items=tuple(
                OrderLine(product_id=it.product_id, quantity=it.quantity, unit_price=it.unit_price)
                for it in self.snapshot
            ),
            expected_total=self.expected_total,
            customer=self.customer,
        )


class CatalogLookup(Protocol):
    def get_product(self, product_id: int) -> Product | None: ...


def _require_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    return value


def _clamp(qty: int, stock: int) -> int:
    return max(1, min(qty, stock))


class CartEngine:
    def __init__(
        self,
        order_service: OrderService,
        timeout: float | None = None,
        session_key: str | None = None,
    ):
        self.order_service = order_service
        self.timeout = settings.checkout_timeout if timeout is None else timeout
        self.session_key = session_key
        self._items: dict[int, LineItem] = {}
        self._item_count = 0
        self._total = to_money(0)
        self._attempt: CheckoutAttempt | None = None
        self._generation = 0
        self._disposed = False

    # ---------------- state ----------------

    @property
    def items(self) -> tuple[LineItem, ...]:
        return tuple(self._items.values())

    @property
    def item_count(self) -> int:
        return self._item_count

    @property
    def total(self) -> Decimal:
        return self._total

    @property
    def checkout_state(self) -> CheckoutState:
        if self._attempt is None:
            return CheckoutState.IDLE
        return self._attempt.state

    @property
    def last_attempt(self) -> CheckoutAttempt | None:
        return self._attempt

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __len__(self) -> int:
        return len(self._items)

    def _recompute(self) -> None:
        self._item_count, self._total = totals_of(self._items.values())

    # ---------------- mutations ----------------

    def add_item(self, product: Product, quantity: int = 1) -> LineItem | None:
        _require_int(quantity, "quantity")
        if product.stock < 1:
            raise CartError(
                ErrorKind.STOCK_EXCEEDED,
                f"{product.name or product.id} is out of stock",
            )

        existing = self._items.get(product.id)
        if existing is not None:
            # свежий остаток из каталога, цена остаётся той, что была при добавлении
            self._items[product.id] = replace(existing, stock=product.stock)
            return self.set_quantity(product.id, existing.quantity + quantity)

        qty = _clamp(quantity, product.stock)
        if qty != quantity:
            logger.debug("Clamped product %s quantity %s -> %s", product.id, quantity, qty)

        item = LineItem(
            product_id=product.id,
            quantity=qty,
            unit_price=product.effective_price,
            stock=product.stock,
            name=product.name,
            sku=product.sku,
        )
        self._items[product.id] = item
        self._recompute()
        return item

    def remove_item(self, product_id: int) -> bool:
        if self._items.pop(product_id, None) is None:
            return False
        self._recompute()
        return True

    def set_quantity(self, product_id: int, quantity: int) -> LineItem | None:
        _require_int(quantity, "quantity")
        existing = self._items.get(product_id)
        if existing is None:
            raise CartError(ErrorKind.PRODUCT_NOT_FOUND, f"Product {product_id} is not in the cart")

        if quantity < 1:
            self.remove_item(product_id)
            return None

        qty = min(quantity, existing.stock)
        if qty != quantity:
            logger.debug("Clamped product %s quantity %s -> %s", product_id, quantity, qty)

        item = replace(existing, quantity=qty)
        self._items[product_id] = item
        self._recompute()
        return item

    def clear(self) -> None:
        self._items.clear()
        self._recompute()

    def refresh_stock(self, catalog: CatalogLookup) -> list[int]:
        """Re-read stock ceilings and re-clamp.

        Lines whose product disappeared or ran out of stock are removed.
        Returns ids of lines that changed.
        """
        changed: list[int] = []
        for pid, item in list(self._items.items()):
            product = catalog.get_product(pid)
            if product is None or product.stock < 1:
                del self._items[pid]
                changed.append(pid)
                continue
            qty = min(item.quantity, product.stock)
            if qty != item.quantity or product.stock != item.stock:
                self._items[pid] = replace(item, quantity=qty, stock=product.stock)
                if qty != item.quantity:
                    changed.append(pid)
        self._recompute()
        return changed

    # ---------------- checkout ----------------

    async def begin_checkout(self, customer: Customer | None = None) -> OrderAck:
        if self.checkout_state is CheckoutState.SUBMITTING:
            raise CartError(ErrorKind.CHECKOUT_IN_PROGRESS, "Checkout is already in progress")
        if not self._items:
            raise CartError(
                ErrorKind.EMPTY_CART,
                "Cart is empty. Add some items to your cart before checking out.",
            )

        attempt = CheckoutAttempt(
            snapshot=self.items,
            expected_total=self._total,
            customer=customer,
        )
        self._attempt = attempt
        generation = self._generation
        logger.info(
            "Checkout started (session=%s, items=%s, total=%s)",
            self.session_key, self._item_count, self._total,
        )

        try:
            ack = await asyncio.wait_for(self.order_service.submit(attempt.to_order()), self.timeout)
        except asyncio.TimeoutError as e:
            raise self._failure(
                attempt, generation, REASON_TIMEOUT, f"Order submission timed out after {self.timeout:g}s"
            ) from e
        except OrderRejected as e:
            detail = e.message
            if e.errors:
                detail = f"{e.message}: {'; '.join(e.errors)}"
            raise self._failure(attempt, generation, e.reason_code, detail) from e
        except OrderServiceUnavailable as e:
            raise self._failure(
                attempt, generation, REASON_UNAVAILABLE, f"Order service unavailable: {e}"
            ) from e
        except asyncio.CancelledError:
            attempt.state = CheckoutState.FAILED
            raise
        except Exception as e:
            logger.exception("Unexpected order service error (session=%s)", self.session_key)
            raise self._failure(attempt, generation, REASON_UNAVAILABLE, str(e) or type(e).__name__) from e

        if not self._is_current(attempt, generation):
            logger.info("Dropping checkout result for order %s: session closed", ack.order_number)
            return ack

        attempt.state = CheckoutState.SUCCEEDED
        attempt.order_number = ack.order_number
        self.clear()
        logger.info("Checkout succeeded (session=%s, order=%s)", self.session_key, ack.order_number)
        return ack

    def _is_current(self, attempt: CheckoutAttempt, generation: int) -> bool:
        return not self._disposed and generation == self._generation and self._attempt is attempt

    def _failure(self, attempt: CheckoutAttempt, generation: int, reason: str, detail: str) -> CartError:
        error = CartError(ErrorKind.SUBMISSION_FAILED, "Checkout failed", detail=f"{reason}: {detail}")
        if self._is_current(attempt, generation):
            attempt.state = CheckoutState.FAILED
            attempt.error = error
            logger.warning("Checkout failed (session=%s): %s", self.session_key, error.detail)
        else:
            logger.info("Dropping checkout failure: session closed")
        return error

    def acknowledge(self) -> None:
        """Collapse a finished checkout back to idle."""
        if self.checkout_state in (CheckoutState.SUCCEEDED, CheckoutState.FAILED):
            self._attempt = None

    def dispose(self) -> None:
        """Tear down the engine; in-flight checkout results are dropped."""
        self._disposed = True
        self._generation += 1


def totals_of(items: Iterable[LineItem]) -> tuple[int, Decimal]:
    count = 0
    total = Decimal(0)
    for it in items:
        count += it.quantity
        total += it.unit_price * it.quantity
    return count, to_money(total)
