"""
Customer and admin message texts sent through the messaging sink.

Plain text only; the transport decides how to present it.
"""

from decimal import Decimal
from typing import Optional, Sequence

from services.storefront_service.models import GCOIN_CURRENCY, Order, Product


def short_order_id(order: Order) -> str:
    return str(order.id).replace("-", "")[-6:].upper()


def format_amount(amount: Decimal, currency: str) -> str:
    if currency == GCOIN_CURRENCY:
        return f"{int(amount)} GCoins"
    return f"{amount:.2f} {currency}"


def split_credential(item: str) -> Optional[tuple[str, str]]:
    """Split ``login:password`` on the first colon.

    Returns ``None`` when the item does not look like a credential pair, so the
    caller can show it raw instead of failing.
    """
    login, sep, password = item.partition(":")
    if not sep or not login.strip() or not password.strip():
        return None
    return login.strip(), password.strip()


def render_item(index: int, item: str) -> str:
    pair = split_credential(item)
    if pair is None:
        return f"Item {index}: {item}"
    login, password = pair
    return f"Item {index}:\nLogin: {login}\nPassword: {password}"


def delivery_message(order: Order, product: Product, items: Sequence[str]) -> str:
    rendered = "\n\n".join(
        render_item(index, item) for index, item in enumerate(items, start=1)
    )
    return (
        "YOUR ORDER IS FULFILLED!\n\n"
        f"Order: #{short_order_id(order)}\n"
        f"Product: {product.name}\n"
        f"Quantity: {order.quantity}\n"
        f"Total: {format_amount(order.total_amount, order.currency)}\n\n"
        "Your digital product details:\n\n"
        f"{rendered}"
    )


def preorder_message(order: Order, product: Product) -> str:
    lines = [
        "PREORDER RECEIVED",
        "",
        f"Order: #{short_order_id(order)}",
        f"Product: {product.name}",
        f"Quantity: {order.quantity}",
        f"Total: {format_amount(order.total_amount, order.currency)}",
        "",
        "You will receive your items as soon as the product is back in stock.",
    ]
    if product.preorder_note:
        lines.extend(["", product.preorder_note])
    return "\n".join(lines)


def awaiting_stock_message(order: Order, product: Product) -> str:
    return (
        "PAYMENT RECEIVED\n\n"
        f"Order: #{short_order_id(order)}\n"
        f"Product: {product.name}\n\n"
        "The product sold out while your payment was confirming. Your order is "
        "queued and will be delivered as soon as stock is replenished."
    )


def refund_message(product_name: str, amount: int, reason: str) -> str:
    return (
        "ORDER CANCELLED\n\n"
        f"Product: {product_name}\n"
        f"Reason: {reason}\n\n"
        f"{amount} GCoins have been returned to your balance."
    )


def cancellation_message(order: Order, reason: str) -> str:
    return (
        "ORDER CANCELLED\n\n"
        f"Order: #{short_order_id(order)}\n"
        f"Reason: {reason}"
    )


def payment_failed_message(amount: Decimal, currency: str, status: str) -> str:
    return (
        "PAYMENT NOT COMPLETED\n\n"
        f"Your payment of {amount:.2f} {currency} ended with status '{status}'. "
        "No order was placed and nothing was charged to your GCoin balance."
    )


def coins_credited_message(coins: int, balance: int) -> str:
    return f"{coins} GCoins were added to your account. New balance: {balance} GCoins."


def referral_bonus_message(bonus: int, reason: str) -> str:
    return f"You earned {bonus} GCoins: {reason}."


def admin_new_order_message(order: Order, product: Product, external_id: str) -> str:
    return (
        f"New {order.kind.value} order #{short_order_id(order)}\n"
        f"Customer: {external_id}\n"
        f"Product: {product.name} x{order.quantity}\n"
        f"Total: {format_amount(order.total_amount, order.currency)}\n"
        f"Status: {order.status.value}"
    )
