from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]  # .../shopcart repo root
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int | None = None) -> int | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


def _get_path(*keys: str, default: str) -> str:
    v = _get_env(*keys, default=default)
    return str(v)


@dataclass(frozen=True)
class Settings:
    bot_token: str
    db_path: str
    export_dir: str
    currency: str
    decimals: int
    session_ttl: float
    checkout_timeout: float
    order_service_url: str
    log_level: str


def load_settings() -> Settings:
    return Settings(
        bot_token=_get_env("BOT_TOKEN", "TELEGRAM_BOT_TOKEN", default="") or "",
        db_path=_get_path("DB_PATH", "DATABASE_PATH", default=str(ROOT_DIR / "data" / "shop.db")),
        export_dir=_get_path("EXPORT_DIR", default=str(ROOT_DIR / "exports")),
        currency=_get_env("CURRENCY", default="USD") or "USD",
        decimals=_get_int("DECIMALS", default=2),
        session_ttl=_get_float("SESSION_TTL", default=3600.0),
        checkout_timeout=_get_float("CHECKOUT_TIMEOUT", default=30.0),
        order_service_url=_get_env("ORDER_SERVICE_URL", default="") or "",
        log_level=(_get_env("LOG_LEVEL", default="INFO") or "INFO").upper(),
    )


settings = load_settings()


def require_bot_settings() -> None:
    if not settings.bot_token:
        raise RuntimeError("BOT_TOKEN is empty. Set BOT_TOKEN in .env")
