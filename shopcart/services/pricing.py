from decimal import Decimal, ROUND_HALF_UP

from shopcart.config import settings


def to_money(v) -> Decimal:
    quant = Decimal(1).scaleb(-settings.decimals)
    return Decimal(str(v)).quantize(quant, rounding=ROUND_HALF_UP)


def discounted_price(price, discount_percentage=0) -> Decimal:
    """Цена за единицу со скидкой (0-100%), округлённая до копеек."""
    price = Decimal(str(price))
    pct = Decimal(str(discount_percentage or 0))
    if pct <= 0:
        return to_money(price)
    if pct >= 100:
        return to_money(0)
    return to_money(price * (Decimal(100) - pct) / Decimal(100))


def line_total(unit_price: Decimal, qty: int) -> Decimal:
    return to_money(unit_price * qty)
