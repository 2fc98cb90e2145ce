from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Hashable, Optional

from shopcart.cart.engine import CartEngine, CheckoutState
from shopcart.config import settings
from shopcart.services.orders import OrderService

logger = logging.getLogger(__name__)


class CartSessions:
    """Owns one CartEngine per shopper session (telegram user id / web cookie).

    Carts untouched for ``ttl`` seconds are disposed on the next ``get``;
    a cart with a checkout in flight is never evicted. ``ttl=0`` keeps
    carts until ``close``.
    """

    def __init__(
        self,
        order_service: OrderService,
        timeout: float | None = None,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.order_service = order_service
        self.timeout = timeout
        self.ttl = settings.session_ttl if ttl is None else ttl
        self._clock = clock
        self._carts: Dict[Hashable, CartEngine] = {}
        self._touched: Dict[Hashable, float] = {}

    def get(self, key: Hashable) -> CartEngine:
        now = self._clock()
        self.evict_idle(now)
        cart = self._carts.get(key)
        if cart is None:
            cart = CartEngine(self.order_service, timeout=self.timeout, session_key=str(key))
            self._carts[key] = cart
            logger.debug("Cart session opened: %s", key)
        self._touched[key] = now
        return cart

    def peek(self, key: Hashable) -> Optional[CartEngine]:
        return self._carts.get(key)

    def evict_idle(self, now: float | None = None) -> int:
        if not self.ttl:
            return 0
        if now is None:
            now = self._clock()
        stale = [
            key for key, touched in self._touched.items()
            if now - touched > self.ttl
            and self._carts[key].checkout_state is not CheckoutState.SUBMITTING
        ]
        for key in stale:
            self.close(key)
        if stale:
            logger.info("Evicted %s idle cart session(s)", len(stale))
        return len(stale)

    def close(self, key: Hashable) -> None:
        cart = self._carts.pop(key, None)
        self._touched.pop(key, None)
        if cart is not None:
            cart.dispose()
            logger.debug("Cart session closed: %s", key)

    def close_all(self) -> None:
        for key in list(self._carts):
            self.close(key)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._carts

    def __len__(self) -> int:
        return len(self._carts)
