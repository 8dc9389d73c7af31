"""Hand-off to the external billing-authorization page."""

from __future__ import annotations

import logging
import time
import webbrowser
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

from pickup.config import BILLING_PROVIDER_AUTH_URL, BILLING_PROVIDER_CLIENT_KEY, CALLBACK_BASE_URL
from pickup.errors import ProviderConfigError
from pickup.models import PaymentMethod

logger = logging.getLogger(__name__)

BILLING_SUCCESS_ROUTE = "billing/success"
PAYMENT_FAIL_ROUTE = "payments/fail"


def customer_key_for(user_id: int, *, now: float | None = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    return f"customer_{user_id}_{millis}"


def success_url(order_id: str | None, payment_method: PaymentMethod, base: str = CALLBACK_BASE_URL) -> str:
    params = {"paymentMethod": payment_method.value}
    if order_id:
        params = {"orderId": order_id, **params}
    return f"{base}/{BILLING_SUCCESS_ROUTE}?{urlencode(params)}"


def fail_url(base: str = CALLBACK_BASE_URL) -> str:
    return f"{base}/{PAYMENT_FAIL_ROUTE}"


@dataclass(frozen=True)
class BillingAuthRequest:
    customer_key: str
    customer_name: str
    success_url: str
    fail_url: str


class BillingProvider:
    """Builds the provider's authorization URL and opens it in the user's browser.

    Nothing returns from here: the provider later calls back one of the URLs.
    """

    def __init__(
        self,
        client_key: str = BILLING_PROVIDER_CLIENT_KEY,
        auth_url: str = BILLING_PROVIDER_AUTH_URL,
        opener: Callable[[str], object] = webbrowser.open,
    ) -> None:
        self.client_key = client_key
        self.auth_url = auth_url
        self.opener = opener

    def authorization_url(self, request: BillingAuthRequest) -> str:
        if not self.client_key:
            raise ProviderConfigError("The billing provider client key is not configured.")
        query = urlencode(
            {
                "clientKey": self.client_key,
                "method": "CARD",
                "customerKey": request.customer_key,
                "customerName": request.customer_name,
                "successUrl": request.success_url,
                "failUrl": request.fail_url,
            }
        )
        return f"{self.auth_url}?{query}"

    def request_billing_auth(self, request: BillingAuthRequest) -> str:
        url = self.authorization_url(request)
        logger.info("billing_auth_launched customer_key=%s", request.customer_key)
        self.opener(url)
        return url
