from shopcart.config import load_settings


def test_zero_decimals_is_respected(monkeypatch):
    monkeypatch.setenv("DECIMALS", "0")

    assert load_settings().decimals == 0


def test_defaults(monkeypatch):
    for key in ("DECIMALS", "SESSION_TTL", "CHECKOUT_TIMEOUT"):
        monkeypatch.delenv(key, raising=False)

    s = load_settings()

    assert s.decimals == 2
    assert s.session_ttl == 3600.0
    assert s.checkout_timeout == 30.0
