"""
outcome.py — Success and failure outcome pages.

An OutcomePage mounts with staged order data (return from the hosted payment
page) or with data passed in memory (cash on delivery), runs the finalization
workflow and exposes its progress:

    LOADING → PROCESSING → SUCCEEDED | PARTIALLY_SUCCEEDED | FAILED
    FAILED  → PROCESSING (manual retry)

Partial success means the order exists but stock or cart cleanup needs a
follow-up; it is rendered as a success with a warning banner.
"""

import datetime
import logging
from typing import Callable, List, Optional

import httpx

from .auth import AuthContext
from .errors import OrderCreationError
from .models import (
    CURRENCY,
    CheckoutFailure,
    FinalizationResult,
    OutcomeState,
    PaymentMethod,
    PendingOrder,
    ProcessingSteps,
)
from .staging import StagingStore
from .workflow import OrderFinalizer, finalize_staged

SUPPORT_PHONE = "+971 56 418 0500"
SUPPORT_EMAIL = "petsgallery033@gmail.com"
DELIVERY_DAYS = 6
HOME_ROUTE = "/"
CART_ROUTE = "/cart"

log = logging.getLogger(__name__)


class OutcomeTransitionError(Exception):
    """Raised for a transition the outcome page does not allow."""


def support_contacts() -> dict:
    return {"phone": SUPPORT_PHONE, "email": SUPPORT_EMAIL}


def partial_warnings(result: FinalizationResult) -> List[str]:
    """Banner texts naming each cleanup step that did not complete."""
    warnings = []
    steps = result.processing_steps
    if not steps.order_created:
        return warnings
    if not steps.stock_updated:
        warnings.append(
            f"Your order was placed, but updating stock did not complete ({result.stock_update_message}). "
            "Our support team may need to follow up."
        )
    if not steps.cart_cleared:
        warnings.append(
            f"Your order was placed, but your cart could not be fully cleared ({result.cart_clear_message}). "
            "Our support team may need to follow up."
        )
    return warnings


def render_success(result: FinalizationResult, order: Optional[PendingOrder] = None,
                   today: Optional[datetime.date] = None) -> dict:
    today = today or datetime.date.today()
    cod = result.payment_method == PaymentMethod.CASH_ON_DELIVERY
    view = {
        "state": result.state.value,
        "title": "Order Confirmed!" if cod else "Payment Successful!",
        "description": (
            "Your cash on delivery order has been confirmed and is being processed."
            if cod else
            "Your payment has been processed successfully and your order is confirmed."
        ),
        "order_id": result.order_id,
        "amount": result.amount,
        "currency": CURRENCY,
        "payment_method": result.payment_method.value,
        "processing_steps": result.processing_steps.model_dump(),
        "warnings": partial_warnings(result),
        "estimated_delivery": (today + datetime.timedelta(days=DELIVERY_DAYS)).isoformat(),
    }
    if order is not None:
        view["delivery_address"] = order.delivery_address.model_dump()
        view["items"] = [
            {**item.model_dump(), "quantity": order.resolved_quantity(item)} for item in order.cart_items
        ]
    return view


def render_failure(failure: CheckoutFailure, result: Optional[FinalizationResult] = None) -> dict:
    cod = failure.payment_method == PaymentMethod.CASH_ON_DELIVERY
    return {
        "state": OutcomeState.FAILED.value,
        "title": "Order Creation Failed" if cod else "Payment Failed",
        "description": (
            "We were unable to create your cash on delivery order. Please try again or contact support."
            if cod else
            "Your payment could not be processed. Please check your payment details and try again."
        ),
        "error_message": failure.error_message,
        "order_id": result.order_id if result else None,
        "amount": failure.amount,
        "currency": CURRENCY,
        "payment_method": failure.payment_method.value,
        "retry": failure.retry_state(),
        "support": support_contacts(),
    }


def failure_from_order(order: PendingOrder, message: str) -> CheckoutFailure:
    return CheckoutFailure(
        error_message=message,
        amount=order.total_amount,
        cart_items=order.cart_items,
        quantities=order.quantities,
        delivery_address=order.delivery_address,
        order_summary=order.order_summary,
        payment_method=order.payment_method,
        user_id=order.user_id,
    )


class OutcomePage:
    """
    Drives finalization for one return to the storefront and renders the result.

    Args:
        finalizer (OrderFinalizer): Runs the three-step workflow.
        auth (AuthContext): Identity of the current session, if any.
        today (callable): Returns the confirmation date, for delivery estimates.
    """

    def __init__(self, finalizer: OrderFinalizer, auth: Optional[AuthContext] = None,
                 today: Callable[[], datetime.date] = datetime.date.today):
        self.finalizer = finalizer
        self.auth = auth
        self.today = today
        self.state = OutcomeState.LOADING
        self.order: Optional[PendingOrder] = None
        self.steps = ProcessingSteps()
        self.result: Optional[FinalizationResult] = None
        self.fallback_route: Optional[str] = None
        self.order_details: Optional[dict] = None

    def _on_progress(self, steps: ProcessingSteps):
        self.steps = steps

    def _settle(self, result: FinalizationResult) -> OutcomeState:
        self.result = result
        self.steps = result.processing_steps
        self.state = result.state
        return self.state

    async def mount(self, order: Optional[PendingOrder]) -> OutcomeState:
        """Mounts with in-memory order data and finalizes it. No data falls back to home."""
        if order is None:
            log.warning("[Outcome] No order data found, redirecting to home.")
            self.fallback_route = HOME_ROUTE
            return self.state
        self.order = order
        self.state = OutcomeState.PROCESSING
        result = await self.finalizer.finalize(order, self.auth, on_progress=self._on_progress)
        return self._settle(result)

    async def mount_staged(self, store: StagingStore) -> OutcomeState:
        """Mounts after the return from the hosted payment page."""
        self.state = OutcomeState.PROCESSING
        order, result = await finalize_staged(store, self.finalizer, self.auth, on_progress=self._on_progress)
        if order is None:
            log.warning("[Outcome] No staged order found, redirecting to home.")
            self.state = OutcomeState.LOADING
            self.fallback_route = HOME_ROUTE
            return self.state
        self.order = order
        return self._settle(result)

    def show(self, result: FinalizationResult, order: Optional[PendingOrder] = None) -> OutcomeState:
        """Mounts with a result already produced in-line (cash on delivery)."""
        self.order = order
        return self._settle(result)

    async def retry(self, auth: Optional[AuthContext] = None) -> OutcomeState:
        """
        Re-runs the whole finalization for the same order data.

        There is no per-step resume: all three steps run again. The order keeps
        its idempotency key, so an order endpoint that honors the key will not
        create a duplicate.

        Args:
            auth (AuthContext): Identity of the retrying request. Replaces the
                page's identity when it carries a token, e.g. after a new login.

        Raises:
            OutcomeTransitionError: If the page is not in FAILED or holds no order data.
        """
        if self.state != OutcomeState.FAILED:
            raise OutcomeTransitionError(f"Retry is not available in state {self.state.value}")
        if self.order is None:
            raise OutcomeTransitionError("No order data left to retry")
        if auth is not None and auth.token:
            self.auth = auth
        log.info(f"[Outcome] Retrying finalization for user {self.order.user_id}.")
        return await self.mount(self.order)

    async def load_order_details(self):
        """Fetches the created order for display. A failure only loses the extra details."""
        if self.result is None or not self.result.processing_steps.order_created:
            return
        auth = self.auth
        if (auth is None or not auth.token) and self.order is not None:
            auth = AuthContext(user_id=self.order.user_id, token=self.order.token)
        if auth is None:
            return
        try:
            self.order_details = await self.finalizer.api.get_order(self.result.order_id, auth)
        except (httpx.HTTPError, OrderCreationError) as e:
            log.info(f"[Order: {self.result.order_id}] Order details unavailable: {e}")

    def render(self) -> dict:
        if self.fallback_route:
            return {"state": self.state.value, "redirect": self.fallback_route}
        if self.state in (OutcomeState.LOADING, OutcomeState.PROCESSING):
            return {"state": self.state.value, "processing_steps": self.steps.model_dump()}
        if self.state == OutcomeState.FAILED:
            if self.order is not None:
                failure = failure_from_order(self.order, self.result.processing_error)
            else:
                failure = CheckoutFailure(error_message=self.result.processing_error, amount=self.result.amount,
                                          payment_method=self.result.payment_method)
            return render_failure(failure, self.result)
        view = render_success(self.result, self.order, self.today())
        if self.order_details:
            view["order_status"] = self.order_details.get("status")
        return view
