"""
CHECKOUT ORCHESTRATOR

Purpose:
- Turn the persisted cart into a backend order and drive its payment.
- Branch on whether the user already has a billing key.
- Reconcile the provider's redirect back into a paid order.

Hard rules:
- Validation happens before any network call.
- The cart is cleared only after the order is created AND paid.
- Initiating the billing redirect and reconciling it are two separate entry
  points; the only thing linking them is the orderId carried in the callback URL.
- Totals shown after creation come from the backend, never from the cart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Mapping
from urllib.parse import parse_qsl, urlparse

from pickup.cart_store import CartStore
from pickup.config import GENERIC_ERROR_MESSAGE, MIN_PICKUP_LEAD_MINUTES, REDIRECT_DELAY_SECONDS
from pickup.errors import (
    CartCorruptedError,
    CheckoutBusyError,
    EmptyCartError,
    PickupError,
    PickupTimeError,
    ProviderConfigError,
    UserNotLoadedError,
)
from pickup.models import Cart, Order, PaymentMethod
from pickup.provider import BillingAuthRequest, BillingProvider, customer_key_for, fail_url, success_url
from pickup.resources import Backend
from pickup.session import SessionStore

logger = logging.getLogger(__name__)

ROUTE_ORDERS = "orders"
ROUTE_CART = "cart"
ROUTE_BILLING = "billing"

CART_CORRUPTED_PROMPT = "Your cart contains invalid items. Clear the cart and start over?"


class CheckoutStep(str, Enum):
    CART = "CART"
    REVIEWING = "REVIEWING"
    ORDER_CREATED = "ORDER_CREATED"
    AWAITING_BILLING_AUTH = "AWAITING_BILLING_AUTH"
    DIRECT_PAYMENT = "DIRECT_PAYMENT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class CheckoutForm:
    pickup_time: datetime | None = None
    need_disposables: bool = False
    request: str = ""
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD


@dataclass(frozen=True)
class CheckoutResult:
    step: CheckoutStep
    message: str = ""
    order: Order | None = None
    next_route: str | None = None
    redirect_delay: float = 0
    authorization_url: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Naive values come from the form and are local wall-clock times.
    if value.tzinfo is None:
        return value.astimezone()
    return value


def min_pickup_time(now: datetime | None = None) -> datetime:
    """Earliest pickup time the form may offer."""
    return (now or _now()) + timedelta(minutes=MIN_PICKUP_LEAD_MINUTES)


def earliest_pickup_slot(now: datetime | None = None) -> datetime:
    """First whole local minute at or after :func:`min_pickup_time`."""
    earliest = min_pickup_time(now).astimezone()
    slot = earliest.replace(second=0, microsecond=0)
    if slot < earliest:
        slot += timedelta(minutes=1)
    return slot


def validate_pickup_time(pickup_time: datetime | None, now: datetime | None = None) -> datetime:
    if pickup_time is None:
        raise PickupTimeError("Please choose a pickup time.")
    current = now or _now()
    pickup = _aware(pickup_time)
    if pickup <= current:
        raise PickupTimeError("Pickup time must be later than the current time.")
    if pickup < min_pickup_time(current):
        raise PickupTimeError(f"Pickup is available from {MIN_PICKUP_LEAD_MINUTES} minutes from now.")
    return pickup


def _iso_instant(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def build_order_payload(cart: Cart, form: CheckoutForm, pickup: datetime) -> dict[str, Any]:
    """Order-creation body. Options are sent as ``{menuOptionId}`` only."""
    order_items = []
    for item in cart.items:
        line: dict[str, Any] = {"menuId": item.menu.id, "quantity": item.quantity}
        if item.selected_options:
            line["options"] = [{"menuOptionId": opt.id} for opt in item.selected_options]
        order_items.append(line)

    payload: dict[str, Any] = {
        "storeId": cart.store_id,
        "orderItems": order_items,
        "pickupTime": _iso_instant(pickup),
        "needDisposables": form.need_disposables,
    }
    request_text = form.request.strip()
    if request_text:
        payload["request"] = request_text
    return payload


def _failure_message(exc: Exception) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or GENERIC_ERROR_MESSAGE


class CheckoutOrchestrator:
    def __init__(
        self,
        cart_store: CartStore,
        session: SessionStore,
        backend: Backend,
        provider: BillingProvider,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.cart_store = cart_store
        self.session = session
        self.backend = backend
        self.provider = provider
        self.clock = clock
        self.step = CheckoutStep.CART
        self.busy = False

    def begin_review(self) -> None:
        """Move from the cart to the checkout form; requires a hydrated, logged-in session."""
        if not self.session.has_hydrated:
            raise UserNotLoadedError("Still checking your login. Please try again in a moment.")
        if not self.session.is_authenticated:
            raise UserNotLoadedError("Please log in to place an order.")
        if self.cart_store.cart is None or not self.cart_store.cart.items:
            raise EmptyCartError("Your cart is empty.")
        self.step = CheckoutStep.REVIEWING

    def back_to_cart(self) -> None:
        self.step = CheckoutStep.CART

    def validate(self, form: CheckoutForm) -> tuple[Cart, datetime]:
        cart = self.cart_store.cart
        if cart is None or not cart.items:
            raise EmptyCartError("Your cart is empty.")
        if self.session.user is None:
            raise UserNotLoadedError("Your account is still loading. Please try again shortly.")
        pickup = validate_pickup_time(form.pickup_time, self.clock())
        invalid = self.cart_store.find_invalid_items()
        if invalid:
            logger.error("cart_invalid_items count=%d", len(invalid))
            raise CartCorruptedError(CART_CORRUPTED_PROMPT)
        return cart, pickup

    async def submit(self, form: CheckoutForm) -> CheckoutResult:
        """Create the order and pay it, or hand off to the billing provider.

        Validation failures raise; backend failures come back as a FAILED result
        with the order (if any) left unpaid.
        """
        if self.busy:
            raise CheckoutBusyError("Your order is already being submitted.")
        self.busy = True
        try:
            return await self._submit(form)
        finally:
            self.busy = False

    async def _submit(self, form: CheckoutForm) -> CheckoutResult:
        cart, pickup = self.validate(form)
        user = self.session.user
        if user is None:
            raise UserNotLoadedError("Your account is still loading. Please try again shortly.")
        self.step = CheckoutStep.REVIEWING

        try:
            has_billing_key = await self.backend.payments.billing_key_exists()
            if not has_billing_key and not self.provider.client_key:
                raise ProviderConfigError("The billing provider client key is not configured.")
            order = await self.backend.orders.create_order(build_order_payload(cart, form, pickup))
        except ProviderConfigError as exc:
            logger.error("checkout_aborted reason=provider_config")
            self.step = CheckoutStep.FAILED
            return CheckoutResult(step=CheckoutStep.FAILED, message=str(exc), next_route=ROUTE_CART)
        except PickupError as exc:
            logger.warning("order_create_failed error=%s", exc)
            return CheckoutResult(step=CheckoutStep.FAILED, message=_failure_message(exc))

        self.step = CheckoutStep.ORDER_CREATED
        logger.info("order_created order_id=%s billing_key=%s", order.id, has_billing_key)

        if has_billing_key:
            return await self._pay_directly(cart, order, user.id, form.payment_method)
        return self._launch_billing_auth(order, user.id, user.username, form.payment_method)

    async def _pay_directly(
        self, cart: Cart, order: Order, user_id: int, payment_method: PaymentMethod
    ) -> CheckoutResult:
        self.step = CheckoutStep.DIRECT_PAYMENT
        try:
            await self.backend.payments.confirm_payment(
                order.id,
                title=f"{cart.store_name} order",
                content=", ".join(item.menu.name for item in cart.items),
                user_id=user_id,
                payment_method=payment_method,
                amount=self.cart_store.get_total(),
            )
        except PickupError as exc:
            logger.warning("payment_confirm_failed order_id=%s error=%s", order.id, exc)
            self.step = CheckoutStep.REVIEWING
            return CheckoutResult(step=CheckoutStep.FAILED, message=_failure_message(exc), order=order)

        self.cart_store.clear_cart()
        self.step = CheckoutStep.COMPLETED
        logger.info("order_paid order_id=%s", order.id)
        return CheckoutResult(
            step=CheckoutStep.COMPLETED,
            message="Your order has been placed!",
            order=order,
            next_route=ROUTE_ORDERS,
        )

    def _launch_billing_auth(
        self, order: Order, user_id: int, username: str, payment_method: PaymentMethod
    ) -> CheckoutResult:
        request = BillingAuthRequest(
            customer_key=customer_key_for(user_id),
            customer_name=username,
            success_url=success_url(order.id, payment_method),
            fail_url=fail_url(),
        )
        try:
            url = self.provider.request_billing_auth(request)
        except ProviderConfigError as exc:
            self.step = CheckoutStep.FAILED
            return CheckoutResult(step=CheckoutStep.FAILED, message=str(exc), order=order, next_route=ROUTE_CART)

        self.step = CheckoutStep.AWAITING_BILLING_AUTH
        return CheckoutResult(
            step=CheckoutStep.AWAITING_BILLING_AUTH,
            message="Complete card registration in your browser to finish the payment.",
            order=order,
            authorization_url=url,
        )


# =========================================================
# REDIRECT CALLBACKS
# =========================================================


@dataclass(frozen=True)
class BillingCallback:
    auth_key: str | None
    customer_key: str | None
    order_id: str | None
    payment_method: PaymentMethod

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> BillingCallback:
        raw_method = params.get("paymentMethod") or ""
        try:
            method = PaymentMethod(raw_method)
        except ValueError:
            method = PaymentMethod.CREDIT_CARD
        return cls(
            auth_key=params.get("authKey") or None,
            customer_key=params.get("customerKey") or None,
            order_id=params.get("orderId") or None,
            payment_method=method,
        )


def callback_route(url: str) -> tuple[str, dict[str, str]]:
    """Split a callback URL into its route (``billing/success``) and query parameters."""
    parsed = urlparse(url)
    route = "/".join(part for part in (parsed.netloc, parsed.path) if part).strip("/")
    # Custom schemes put the first segment in netloc; drop the callback host name.
    segments = route.split("/")
    if len(segments) > 2:
        route = "/".join(segments[-2:])
    return route, dict(parse_qsl(parsed.query))


async def reconcile_billing_callback(
    callback: BillingCallback, session: SessionStore, backend: Backend
) -> CheckoutResult:
    """Save the newly issued billing key and pay the order that triggered it."""
    if not callback.auth_key or not callback.customer_key:
        logger.error("billing_callback_rejected reason=missing_keys")
        return CheckoutResult(
            step=CheckoutStep.FAILED, message="Billing key information is missing.", next_route=ROUTE_CART
        )
    user = session.user
    if user is None:
        logger.error("billing_callback_rejected reason=no_user")
        return CheckoutResult(
            step=CheckoutStep.FAILED, message="Could not load your account information.", next_route=ROUTE_CART
        )

    try:
        await backend.payments.save_billing_key(
            user_id=user.id, auth_key=callback.auth_key, customer_key=callback.customer_key
        )
        logger.info("billing_key_saved user_id=%s", user.id)

        if callback.order_id is None:
            return CheckoutResult(
                step=CheckoutStep.COMPLETED,
                message="Your card has been registered.",
                next_route=ROUTE_BILLING,
                redirect_delay=REDIRECT_DELAY_SECONDS,
            )

        # The amount is resolved server-side; the cart may already be gone.
        await backend.payments.confirm_payment(
            callback.order_id,
            title="Order payment",
            content="Payment after card registration",
            user_id=user.id,
            payment_method=callback.payment_method,
            amount=0,
        )
    except PickupError as exc:
        logger.warning("billing_reconcile_failed order_id=%s error=%s", callback.order_id, exc)
        return CheckoutResult(step=CheckoutStep.FAILED, message=_failure_message(exc), next_route=ROUTE_CART)

    logger.info("order_paid order_id=%s via=billing_callback", callback.order_id)
    return CheckoutResult(
        step=CheckoutStep.COMPLETED,
        message="Your payment is complete!",
        next_route=ROUTE_ORDERS,
        redirect_delay=REDIRECT_DELAY_SECONDS,
    )


BILLING_ERROR_MARKERS = ("BILLING", "BILL_KEY")


@dataclass(frozen=True)
class PaymentFailure:
    title: str
    message: str
    code: str | None
    is_billing_error: bool
    actions: tuple[str, ...]


def classify_payment_failure(code: str | None, message: str | None) -> PaymentFailure:
    is_billing = bool(code) and any(marker in code for marker in BILLING_ERROR_MARKERS)
    if is_billing:
        return PaymentFailure(
            title="Payment method error",
            message="There is a problem with your registered card. Please register it again.",
            code=code,
            is_billing_error=True,
            actions=(ROUTE_BILLING, ROUTE_CART),
        )
    return PaymentFailure(
        title="Payment failed",
        message=message or "An unknown error occurred. Please try again later.",
        code=code,
        is_billing_error=False,
        actions=(ROUTE_CART,),
    )
