"""
errors.py — Error taxonomy of the checkout flow.

Fatal errors are raised and caught at the orchestration boundary; non-fatal
stock and cart-clear problems never become exceptions, they are recorded on the
FinalizationResult instead.
"""

from typing import Dict, Optional


class CheckoutError(Exception):
    """Base class for every error surfaced by the checkout flow."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    """
    Client-side form or cart precondition failure.

    Never sent to the server. `field_errors` maps form field names to the
    message shown next to the field (empty for cart-level failures).
    """

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.field_errors = field_errors or {}


class AuthError(CheckoutError):
    """Missing or expired identity token."""


class PaymentSessionError(CheckoutError):
    """The hosted checkout session could not be obtained."""


class PaymentRedirectError(CheckoutError):
    """The browser could not be sent to the hosted payment page."""


class OrderCreationError(CheckoutError):
    """Order creation failed; aborts the whole finalization sequence."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
