import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import FSInputFile, Message, ReplyKeyboardRemove
from aiogram.utils.text_decorations import html_decoration as hd

from shopcart.bot.keyboards import main_kb
from shopcart.bot.states import CheckoutForm
from shopcart.cart.engine import CartEngine, CartError, CheckoutState, ErrorKind
from shopcart.cart.sessions import CartSessions
from shopcart.services.catalog import SqliteCatalog
from shopcart.services.invoice_pdf import generate_invoice_pdf
from shopcart.services.orders import Customer
from shopcart.utils.formatters import money
from shopcart.utils.validators import parse_int

logger = logging.getLogger(__name__)

router = Router()


def _cart_text(cart: CartEngine) -> str:
    if not cart.items:
        return "🧺 Корзина пуста. /products — каталог"

    lines = [f"<b>🧺 Корзина</b> ({cart.item_count} шт.)"]
    for it in cart.items:
        ceiling = " (max)" if it.quantity >= it.stock else ""
        lines.append(
            f"• #{it.product_id} {hd.quote(it.name)} × {it.quantity}{ceiling} — {money(it.subtotal)}"
        )
    lines.append("")
    lines.append(f"<b>Итого: {money(cart.total)}</b>")
    return "\n".join(lines)


def _args(message: Message) -> list[str]:
    return (message.text or "").split()[1:]


@router.message(Command("start"))
async def cmd_start(message: Message):
    await message.answer("✅ Магазин открыт. /help — команды", reply_markup=main_kb())


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext):
    await state.clear()
    await message.answer("❎ Отменено. Можно вводить команды заново.", reply_markup=main_kb())


@router.message(Command("help"))
async def cmd_help(message: Message):
    text = (
        "<b>Команды</b>\n\n"
        "/products — товары в наличии\n"
        "/add ID [QTY] — добавить в корзину\n"
        "/qty ID QTY — изменить количество (0 — удалить)\n"
        "/remove ID — удалить позицию\n"
        "/cart — показать корзину\n"
        "/clear — очистить корзину\n"
        "/checkout — оформить заказ\n"
        "/cancel — отмена ввода\n"
    )
    await message.answer(text)


@router.message(Command("products"))
async def cmd_products(message: Message, catalog: SqliteCatalog):
    rows = catalog.list_products()
    if not rows:
        await message.answer("Товаров в наличии нет.")
        return
    lines = ["<b>Товары:</b>"]
    for p in rows:
        price = money(p.effective_price)
        if p.discount_percentage > 0:
            price = f"<s>{money(p.unit_price)}</s> {price}"
        lines.append(f"• #{p.id} {hd.quote(p.name)} — {price} | в наличии: {p.stock}")
    await message.answer("\n".join(lines))


@router.message(Command("add"))
async def cmd_add(message: Message, carts: CartSessions, catalog: SqliteCatalog):
    args = _args(message)
    if len(args) not in (1, 2):
        await message.answer("Формат: /add ID [QTY]")
        return
    try:
        product_id = parse_int(args[0], "ID")
        qty = parse_int(args[1], "QTY") if len(args) == 2 else 1
    except ValueError:
        await message.answer("ID и QTY должны быть целыми числами, пример: /add 3 2")
        return

    product = catalog.get_product(product_id)
    if product is None:
        await message.answer(f"❌ Товар #{product_id} не найден")
        return

    cart = carts.get(message.from_user.id)
    try:
        item = cart.add_item(product, qty)
    except CartError as e:
        await message.answer(f"❌ {hd.quote(e.message)}")
        return

    if item is None:
        await message.answer(f"✅ {hd.quote(product.name)} удалён из корзины\n\n{_cart_text(cart)}")
        return
    await message.answer(f"✅ {hd.quote(item.name)} × {item.quantity} в корзине\n\n{_cart_text(cart)}")


@router.message(Command("qty"))
async def cmd_qty(message: Message, carts: CartSessions):
    args = _args(message)
    if len(args) != 2:
        await message.answer("Формат: /qty ID QTY")
        return
    try:
        product_id = parse_int(args[0], "ID")
        qty = parse_int(args[1], "QTY")
    except ValueError:
        await message.answer("ID и QTY должны быть целыми числами, пример: /qty 3 1")
        return

    cart = carts.get(message.from_user.id)
    try:
        cart.set_quantity(product_id, qty)
    except CartError as e:
        await message.answer(f"❌ {hd.quote(e.message)}")
        return
    await message.answer(_cart_text(cart))


@router.message(Command("remove"))
async def cmd_remove(message: Message, carts: CartSessions):
    args = _args(message)
    if len(args) != 1:
        await message.answer("Формат: /remove ID")
        return
    try:
        product_id = parse_int(args[0], "ID")
    except ValueError:
        await message.answer("ID должен быть целым числом")
        return

    cart = carts.get(message.from_user.id)
    cart.remove_item(product_id)
    await message.answer(_cart_text(cart))


@router.message(Command("cart"))
async def cmd_cart(message: Message, carts: CartSessions, catalog: SqliteCatalog):
    cart = carts.get(message.from_user.id)
    changed = cart.refresh_stock(catalog)
    text = _cart_text(cart)
    if changed:
        text = "⚠️ Остатки изменились, корзина обновлена.\n\n" + text
    await message.answer(text)


@router.message(Command("clear"))
async def cmd_clear(message: Message, carts: CartSessions):
    carts.get(message.from_user.id).clear()
    await message.answer("🧺 Корзина очищена")


@router.message(Command("checkout"))
async def cmd_checkout(message: Message, state: FSMContext, carts: CartSessions):
    cart = carts.get(message.from_user.id)
    if cart.checkout_state is CheckoutState.SUBMITTING:
        await message.answer("⏳ Заказ уже оформляется, подождите.")
        return
    if not cart.items:
        await message.answer("⚠️ Корзина пуста. Добавьте товары перед оформлением.")
        return

    await state.set_state(CheckoutForm.waiting_name)
    await message.answer(
        f"{_cart_text(cart)}\n\nВведите имя получателя.\n\nОтмена: /cancel",
        reply_markup=ReplyKeyboardRemove(),
    )


@router.message(CheckoutForm.waiting_name)
async def checkout_wait_name(message: Message, state: FSMContext):
    name = (message.text or "").strip()
    if not name or name.startswith("/"):
        await message.answer("Введите имя текстом. Отмена: /cancel")
        return
    await state.update_data(name=name)
    await state.set_state(CheckoutForm.waiting_phone)
    await message.answer("Телефон для связи:")


@router.message(CheckoutForm.waiting_phone)
async def checkout_wait_phone(message: Message, state: FSMContext):
    phone = (message.text or "").strip().replace(" ", "")
    if not phone or phone.startswith("/"):
        await message.answer("Введите телефон. Отмена: /cancel")
        return
    await state.update_data(phone=phone)
    await state.set_state(CheckoutForm.waiting_address)
    await message.answer("Адрес доставки:")


@router.message(CheckoutForm.waiting_address)
async def checkout_wait_address(message: Message, state: FSMContext, carts: CartSessions):
    address = (message.text or "").strip()
    if not address or address.startswith("/"):
        await message.answer("Введите адрес текстом. Отмена: /cancel")
        return

    data = await state.get_data()
    await state.clear()

    customer = Customer(name=data["name"], phone=data["phone"], shipping_address=address)
    cart = carts.get(message.from_user.id)
    try:
        ack = await cart.begin_checkout(customer)
    except CartError as e:
        if e.kind is ErrorKind.SUBMISSION_FAILED:
            await message.answer(
                f"❌ Заказ не оформлен: {hd.quote(e.detail or '')}\nКорзина сохранена, попробуйте ещё раз: /checkout",
                reply_markup=main_kb(),
            )
        else:
            await message.answer(f"❌ {hd.quote(e.message)}", reply_markup=main_kb())
        return
    finally:
        cart.acknowledge()

    try:
        pdf_path = generate_invoice_pdf(ack.order_number)
        await message.answer_document(FSInputFile(pdf_path))
    except Exception as e:
        logger.exception("Invoice PDF failed for order %s", ack.order_number)
        await message.answer(f"⚠️ Заказ создан, но PDF не сгенерировался: {hd.quote(str(e))}")

    await message.answer(
        f"✅ Заказ оформлен. Номер: <b>{ack.order_number}</b>\n"
        f"Сумма: {money(ack.total)}",
        reply_markup=main_kb(),
    )
