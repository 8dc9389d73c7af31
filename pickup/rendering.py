"""Rendering helpers for carts, orders and status badges."""

from __future__ import annotations

from rich.text import Text

from pickup.models import CartItem, Category, Menu, MenuOption, Order, OrderStatus, Review, Store, User
from pickup.order_actions import TERMINAL_STATES, can_customer_cancel, owner_actions

STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PAYMENT_PENDING: "Awaiting payment",
    OrderStatus.PENDING: "Received",
    OrderStatus.ACCEPTED: "Accepted",
    OrderStatus.REJECTED: "Rejected",
    OrderStatus.COOKING: "Cooking",
    OrderStatus.READY: "Ready for pickup",
    OrderStatus.COMPLETED: "Picked up",
    OrderStatus.CANCELLED: "Cancelled",
    OrderStatus.PAYMENT_FAILED: "Payment failed",
}

_STATUS_STYLES: dict[OrderStatus, str] = {
    OrderStatus.PAYMENT_PENDING: "bold #3b2f00 on #f2c94c",
    OrderStatus.PENDING: "bold #ffffff on #2f6db5",
    OrderStatus.ACCEPTED: "bold #0b1f0f on #5fbf72",
    OrderStatus.COOKING: "bold #ffffff on #d9822b",
    OrderStatus.READY: "bold #ffffff on #7b4bb5",
    OrderStatus.COMPLETED: "bold #1f1f1f on #bdbdbd",
}


def badge_style(status: OrderStatus) -> str:
    """Return a consistent badge style for an order status."""
    return _STATUS_STYLES.get(status, "bold #ffffff on #b23a48")


def format_money(amount: int) -> str:
    return f"{amount:,} KRW"


def format_status_badge(status: OrderStatus) -> Text:
    return Text(f" {STATUS_LABELS[status]} ", style=badge_style(status))


def format_store_label(store: Store) -> Text:
    text = Text(store.name, style="bold")
    if store.category_names:
        text.append(f"  {', '.join(store.category_names)}", style="dim")
    if store.open_time and store.close_time:
        text.append(f"  {store.open_time}-{store.close_time}", style="dim")
    return text


def format_menu_label(menu: Menu) -> Text:
    text = Text()
    text.append(menu.name)
    text.append(f"  {format_money(menu.price)}", style="dim")
    if not menu.is_available:
        text.append("  sold out", style="bold #b23a48")
    if menu.is_hidden:
        text.append("  hidden", style="italic")
    return text


def format_option_label(option: MenuOption) -> Text:
    text = Text(option.name)
    text.append(f"  +{format_money(option.price)}", style="dim")
    if option.detail:
        text.append(f"  {option.detail}", style="italic")
    return text


def format_cart_line(item: CartItem) -> Text:
    text = Text()
    text.append(f"{item.menu.name} x{item.quantity}")
    text.append(f"  {format_money(item.line_total)}", style="bold")
    if item.selected_options:
        text.append("\n      ")
        text.append(", ".join(opt.name for opt in item.selected_options), style="dim")
    return text


def format_order_label(order: Order, *, owner: bool = False) -> Text:
    """One order row: number, store, badge, authoritative total and allowed actions."""
    text = Text()
    text.append(f"#{order.order_number or order.id} ")
    text.append(order.store_name, style="dim" if order.status in TERMINAL_STATES else "")
    text.append(" ")
    text.append_text(format_status_badge(order.status))
    text.append(f"  {format_money(order.total_amount)}")
    if order.pickup_time:
        text.append(f"\n      pickup {order.pickup_time}", style="dim")
    if order.estimated_time:
        text.append(f"  ~{order.estimated_time} min", style="dim")
    if order.reason:
        label = "Cancel reason" if order.cancelled_by == "CUSTOMER" else "Reason"
        text.append(f"\n      {label}: {order.reason}", style="italic")

    hints = owner_actions(order.status) if owner else (["cancel"] if can_customer_cancel(order.status) else [])
    if hints:
        text.append(f"\n      [{' / '.join(hints)}]", style="#5fbf72")
    return text


def format_category_label(category: Category) -> Text:
    return Text(category.name, style="bold")


def format_review_label(review: Review, *, own: bool = False) -> Text:
    text = Text()
    text.append("★" * review.rating, style="#f2c94c")
    text.append("☆" * (5 - review.rating), style="dim")
    text.append(f"  {review.user_nickname or review.user_id}")
    if own:
        text.append("  (yours)", style="#5fbf72")
    if review.content:
        text.append(f"\n      {review.content}", style="dim")
    return text


def format_user_label(user: User) -> Text:
    text = Text(f"{user.username}", style="bold")
    if user.nickname:
        text.append(f" ({user.nickname})")
    text.append(f"  [{user.role.value}]", style="dim")
    if user.email:
        text.append(f"  {user.email}", style="dim")
    return text


_STORE_STATUS_STYLES = {
    "PENDING": "bold #3b2f00 on #f2c94c",
    "APPROVED": "bold #0b1f0f on #5fbf72",
    "REJECTED": "bold #ffffff on #b23a48",
}


def format_admin_store_label(store: Store) -> Text:
    text = format_store_label(store)
    if store.status:
        text.append(" ")
        text.append(f" {store.status} ", style=_STORE_STATUS_STYLES.get(store.status, "bold"))
    return text
