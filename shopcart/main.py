import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from shopcart.bot.handlers import router
from shopcart.cart.sessions import CartSessions
from shopcart.config import require_bot_settings, settings
from shopcart.db.sqlite import init_db
from shopcart.services.catalog import SqliteCatalog
from shopcart.services.orders import build_order_service


async def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    require_bot_settings()
    init_db()

    order_service = build_order_service(settings.order_service_url, timeout=settings.checkout_timeout)
    carts = CartSessions(order_service, timeout=settings.checkout_timeout)

    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher(carts=carts, catalog=SqliteCatalog())
    dp.include_router(router)

    try:
        await dp.start_polling(bot)
    finally:
        carts.close_all()
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
