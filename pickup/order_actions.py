"""
ORDER LIFECYCLE ACTIONS

Which transitions the client may request for an order, and the boards that
perform them. The backend owns the state machine: a board never predicts the
next status, it reloads the authoritative list after every mutation.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from pickup.errors import ActionInputError, ActionNotAllowedError, PickupError
from pickup.models import Order, OrderStatus
from pickup.resources import Backend

logger = logging.getLogger(__name__)

# ============================================================
# ALLOWED ACTIONS
# ============================================================

CUSTOMER_CANCELLABLE = {OrderStatus.PAYMENT_PENDING, OrderStatus.PENDING}
OWNER_ACCEPTABLE = {OrderStatus.PENDING}
OWNER_REJECTABLE = {OrderStatus.PENDING}
OWNER_COMPLETABLE = {OrderStatus.READY}
OWNER_CANCELLABLE = {OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.COOKING}

TERMINAL_STATES = {
    OrderStatus.REJECTED,
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
    OrderStatus.PAYMENT_FAILED,
}


def can_customer_cancel(status: OrderStatus) -> bool:
    return status in CUSTOMER_CANCELLABLE


def can_owner_accept(status: OrderStatus) -> bool:
    return status in OWNER_ACCEPTABLE


def can_owner_reject(status: OrderStatus) -> bool:
    return status in OWNER_REJECTABLE


def can_owner_complete(status: OrderStatus) -> bool:
    return status in OWNER_COMPLETABLE


def can_owner_cancel(status: OrderStatus) -> bool:
    return status in OWNER_CANCELLABLE


def owner_actions(status: OrderStatus) -> list[str]:
    actions = []
    if can_owner_accept(status):
        actions.append("accept")
    if can_owner_reject(status):
        actions.append("reject")
    if can_owner_cancel(status):
        actions.append("cancel")
    if can_owner_complete(status):
        actions.append("complete")
    return actions


def parse_estimated_time(raw: str | int | None) -> int:
    """Minutes until pickup; must be a positive integer."""
    text = str(raw if raw is not None else "").strip()
    if not text.isdigit() or int(text) <= 0:
        raise ActionInputError("Enter the estimated cooking time as a whole number of minutes.")
    return int(text)


def require_reason(reason: str | None) -> str:
    text = (reason or "").strip()
    if not text:
        raise ActionInputError("Please enter a reason.")
    return text


def _ensure(allowed: bool, order: Order, action: str) -> None:
    if not allowed:
        raise ActionNotAllowedError(f"Order {order.order_number or order.id} cannot be {action} while {order.status.value}")


# ============================================================
# BOARDS
# ============================================================


class _Board:
    """Holds the last authoritative order list and the last error."""

    def __init__(self, backend: Backend) -> None:
        self.backend = backend
        self.orders: list[Order] = []
        self.error: str | None = None

    def find(self, order_id: str) -> Order:
        for order in self.orders:
            if order.id == order_id:
                return order
        raise ActionNotAllowedError(f"Order {order_id} is not on this board")

    async def _fetch(self) -> list[Order]:
        raise NotImplementedError

    async def reload(self) -> list[Order]:
        try:
            self.orders = await self._fetch()
        except PickupError as exc:
            self.error = getattr(exc, "message", None) or str(exc)
            logger.warning("orders_reload_failed error=%s", exc)
            raise
        self.error = None
        return self.orders

    async def _mutate(self, order_id: str, action: str, call: Callable[[], Awaitable[object]]) -> list[Order]:
        try:
            await call()
        except PickupError as exc:
            # Prior list stays as the last known state.
            self.error = getattr(exc, "message", None) or str(exc)
            logger.warning("order_action_failed action=%s order_id=%s error=%s", action, order_id, exc)
            raise
        logger.info("order_action action=%s order_id=%s", action, order_id)
        return await self.reload()


class CustomerOrderBoard(_Board):
    """The customer's order history plus the active orders."""

    def __init__(self, backend: Backend) -> None:
        super().__init__(backend)
        self.active: list[Order] = []

    async def _fetch(self) -> list[Order]:
        page = await self.backend.orders.my_orders()
        self.active = await self.backend.orders.my_active_orders()
        return page.content

    async def cancel(self, order_id: str, reason: str) -> list[Order]:
        order = self.find(order_id)
        _ensure(can_customer_cancel(order.status), order, "cancelled")
        text = require_reason(reason)
        return await self._mutate(order_id, "customer_cancel", lambda: self.backend.orders.customer_cancel(order_id, text))


class OwnerOrderBoard(_Board):
    """Orders for the owner's store, optionally filtered by status."""

    def __init__(self, backend: Backend) -> None:
        super().__init__(backend)
        self.status_filter: OrderStatus | None = None

    async def _fetch(self) -> list[Order]:
        page = await self.backend.owner_orders.store_orders(status=self.status_filter)
        return page.content

    async def accept(self, order_id: str, estimated_time: str | int) -> list[Order]:
        order = self.find(order_id)
        _ensure(can_owner_accept(order.status), order, "accepted")
        minutes = parse_estimated_time(estimated_time)
        return await self._mutate(order_id, "accept", lambda: self.backend.owner_orders.accept(order_id, minutes))

    async def reject(self, order_id: str, reason: str) -> list[Order]:
        order = self.find(order_id)
        _ensure(can_owner_reject(order.status), order, "rejected")
        text = require_reason(reason)
        return await self._mutate(order_id, "reject", lambda: self.backend.owner_orders.reject(order_id, text))

    async def cancel(self, order_id: str, reason: str) -> list[Order]:
        order = self.find(order_id)
        _ensure(can_owner_cancel(order.status), order, "cancelled")
        text = require_reason(reason)
        return await self._mutate(order_id, "store_cancel", lambda: self.backend.owner_orders.store_cancel(order_id, text))

    async def complete(self, order_id: str) -> list[Order]:
        order = self.find(order_id)
        _ensure(can_owner_complete(order.status), order, "completed")
        return await self._mutate(order_id, "complete", lambda: self.backend.owner_orders.complete(order_id))
