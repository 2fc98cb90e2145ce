ORDER_STATUSES = {
    "pending": "Pending",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",

    # отмена возвращает остаток на склад
    "cancelled": "Cancelled",
}

PAYMENT_COD = "cod"
PAYMENT_CARD = "card"
PAYMENT_METHODS = (PAYMENT_COD, PAYMENT_CARD)

# причины отказа сервиса заказов
REASON_PRODUCT_NOT_FOUND = "product_not_found"
REASON_INSUFFICIENT_STOCK = "insufficient_stock"
REASON_TOTAL_MISMATCH = "total_mismatch"
REASON_INVALID_ORDER = "invalid_order"
REASON_UNAVAILABLE = "unavailable"
REASON_TIMEOUT = "timeout"

SESSION_COOKIE = "cart_session"
