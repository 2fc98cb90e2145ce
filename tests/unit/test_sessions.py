from unittest.mock import Mock

from shopcart.cart.engine import CheckoutAttempt
from shopcart.cart.sessions import CartSessions
from tests.conftest import make_product


def test_get_creates_one_cart_per_key():
    sessions = CartSessions(Mock(), timeout=5)

    a = sessions.get(1)
    b = sessions.get(2)

    assert sessions.get(1) is a
    assert a is not b
    assert a.timeout == 5
    assert a.session_key == "1"
    assert len(sessions) == 2


def test_close_disposes_cart():
    sessions = CartSessions(Mock())
    cart = sessions.get("web-session")
    cart.add_item(make_product())

    sessions.close("web-session")
    sessions.close("web-session")

    assert cart.disposed
    assert "web-session" not in sessions
    assert sessions.peek("web-session") is None
    assert sessions.get("web-session").items == ()


def test_close_all():
    sessions = CartSessions(Mock())
    carts = [sessions.get(k) for k in range(3)]

    sessions.close_all()

    assert len(sessions) == 0
    assert all(c.disposed for c in carts)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_idle_carts_are_evicted_and_disposed():
    clock = FakeClock()
    sessions = CartSessions(Mock(), ttl=60, clock=clock)
    stale = sessions.get("a")
    clock.now = 30
    fresh = sessions.get("b")

    clock.now = 70
    sessions.get("b")

    assert "a" not in sessions
    assert stale.disposed
    assert sessions.get("b") is fresh
    assert not fresh.disposed


def test_touching_a_cart_keeps_it_alive():
    clock = FakeClock()
    sessions = CartSessions(Mock(), ttl=60, clock=clock)
    cart = sessions.get("a")

    for t in (50, 100, 150):
        clock.now = t
        assert sessions.get("a") is cart

    assert not cart.disposed


def test_cart_with_checkout_in_flight_is_not_evicted():
    clock = FakeClock()
    sessions = CartSessions(Mock(), ttl=60, clock=clock)
    cart = sessions.get("a")
    cart.add_item(make_product())
    cart._attempt = CheckoutAttempt(snapshot=cart.items, expected_total=cart.total)

    clock.now = 600

    assert sessions.evict_idle() == 0
    assert "a" in sessions


def test_zero_ttl_disables_eviction():
    clock = FakeClock()
    sessions = CartSessions(Mock(), ttl=0, clock=clock)
    sessions.get("a")

    clock.now = 10 ** 6
    sessions.get("b")

    assert len(sessions) == 2
