"""
CLIENT ERRORS

Domain errors raised by the backend client, the stores and the checkout flow.
Every failure shown to the user maps to one of these.
"""

from __future__ import annotations


class PickupError(Exception):
    """Base exception for all client failures."""


# =========================================================
# BACKEND
# =========================================================


class ApiError(PickupError):
    """The backend answered with an error status or a failed envelope."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class AuthenticationError(ApiError):
    """401 that survived the refresh-and-retry, or a refresh that failed."""


class PublicAccessDenied(ApiError):
    """401 on a public browsing path. Callers treat it as "no additional data"."""


class TransportError(PickupError):
    """The request never produced an HTTP response."""


# =========================================================
# CHECKOUT
# =========================================================


class CheckoutError(PickupError):
    """Base checkout exception"""


class CheckoutValidationError(CheckoutError):
    """Raised before any network call when the checkout form is not submittable."""


class EmptyCartError(CheckoutValidationError):
    pass


class UserNotLoadedError(CheckoutValidationError):
    pass


class PickupTimeError(CheckoutValidationError):
    pass


class CartCorruptedError(CheckoutError):
    """A cart line lost its menu reference. Recovery is a confirmed full reset."""


class CheckoutBusyError(CheckoutError):
    pass


class ProviderConfigError(CheckoutError):
    """The billing provider cannot be launched (no client key)."""


# =========================================================
# ORDER ACTIONS
# =========================================================


class OrderActionError(PickupError):
    pass


class ActionNotAllowedError(OrderActionError):
    """The order status does not allow the requested transition."""


class ActionInputError(OrderActionError):
    """Reason text or estimated time is missing or malformed."""


# =========================================================
# FORMS
# =========================================================


class FormError(PickupError):
    """User-entered form values failed validation; nothing was sent."""
