"""
payment.py — Payment initiation for the two checkout paths.

Card:
    validate → request hosted checkout session → stage PendingOrder → redirect.
    Nothing is mutated remotely before the redirect, so every failure on this
    path is safe to retry.

Cash on delivery:
    validate → finalize the order in-line (no redirect, nothing staged).
"""

import logging
import os
from typing import List, Optional

from .auth import AuthContext
from .clients import HostedCheckoutRedirector, StorefrontApiClient
from .errors import AuthError, CheckoutError, PaymentRedirectError, PaymentSessionError, ValidationError
from .forms import clean_checkout_form
from .models import (
    CURRENCY,
    CartLineItem,
    CheckoutFailure,
    CheckoutRequest,
    ContactInfo,
    DeliveryAddress,
    PaymentMethod,
    PaymentOutcome,
    PendingOrder,
    resolve_quantity,
)
from .staging import StagingStore
from .workflow import OrderFinalizer

APP_BASE_URL = os.environ.get("STOREFRONT_APP_URL", "http://localhost:8000")
CHECKOUT_SHIPPING_FEE = float(os.environ.get("CHECKOUT_SHIPPING_FEE", "0"))

SUCCESS_ROUTE = "payment-success"
FAILURE_ROUTE = "payment-failed"
REDIRECT_ROUTE = "redirect"

log = logging.getLogger(__name__)


def check_cart(cart_items: List[CartLineItem]):
    """
    Raises:
        ValidationError: If the cart is empty or a row lacks its id, name or a positive price.
    """
    if not cart_items:
        raise ValidationError("No items in cart")
    invalid = [
        item for item in cart_items
        if not item.cart_item_id or not item.name or not item.unit_price or item.unit_price <= 0
    ]
    if invalid:
        log.error(f"[Checkout] Invalid cart items: {[item.model_dump() for item in invalid]}")
        raise ValidationError("Some cart items are missing required information")


class PaymentInitiator:
    """
    Starts payment for a validated checkout.

    Args:
        api (StorefrontApiClient): Remote API client.
        finalizer (OrderFinalizer): Used by the cash-on-delivery path.
        redirector (callable): Maps a hosted checkout session to the URL the
            browser is sent to; raises on failure.
        app_base_url (str): Origin of this storefront for the return URLs.
        shipping_fee (float): Shipping added on top of the cart total at checkout.
    """

    def __init__(self, api: StorefrontApiClient, finalizer: Optional[OrderFinalizer] = None,
                 redirector=None, app_base_url: str = APP_BASE_URL, shipping_fee: Optional[float] = None):
        self.api = api
        self.finalizer = finalizer or OrderFinalizer(api)
        self.redirector = redirector or HostedCheckoutRedirector()
        self.app_base_url = app_base_url.rstrip("/")
        self.shipping_fee = CHECKOUT_SHIPPING_FEE if shipping_fee is None else shipping_fee

    @property
    def success_url(self) -> str:
        return f"{self.app_base_url}/{SUCCESS_ROUTE}"

    @property
    def cancel_url(self) -> str:
        return f"{self.app_base_url}/{FAILURE_ROUTE}"

    def final_total(self, request: CheckoutRequest) -> float:
        return round(request.order_summary.total + self.shipping_fee, 2)

    def build_session_payload(self, request: CheckoutRequest) -> dict:
        items = []
        for item in request.cart_items:
            quantity = resolve_quantity(item, request.quantities)
            items.append({
                "id": item.cart_item_id,
                "name": item.name,
                "totalAmount": round(item.unit_price * quantity, 2),
                "quantity": quantity,
            })
        return {
            "items": items,
            "shippingCost": self.shipping_fee,
            "finalTotal": self.final_total(request),
            "currency": CURRENCY.lower(),
            "successUrl": self.success_url,
            "cancelUrl": self.cancel_url,
        }

    def build_pending_order(self, request: CheckoutRequest, address: DeliveryAddress, contact: ContactInfo,
                            auth: AuthContext, payment_method: PaymentMethod,
                            session_id: Optional[str] = None) -> PendingOrder:
        return PendingOrder(
            cart_items=request.cart_items,
            quantities=request.quantities,
            delivery_address=address,
            user_id=auth.user_id,
            total_amount=self.final_total(request),
            token=auth.token,
            order_summary=request.order_summary.with_checkout_shipping(self.shipping_fee),
            customer_info=contact,
            payment_method=payment_method,
            session_id=session_id,
        )

    async def initiate(self, request: CheckoutRequest, auth: AuthContext,
                       store: StagingStore) -> PaymentOutcome:
        """
        Validates the checkout and starts the selected payment path.

        Returns:
            PaymentOutcome: Redirect instruction (card) or the outcome route
            with the finalization result (cash on delivery).

        Raises:
            ValidationError: Invalid form (with field_errors) or cart precondition failure.
            AuthError: Missing user id or token.
            PaymentSessionError: The hosted checkout session could not be obtained or the order could not be staged.
            PaymentRedirectError: The redirect to the hosted payment page failed.
        """
        address, contact = clean_checkout_form(request.form)
        check_cart(request.cart_items)
        auth.require()

        if request.payment_method == PaymentMethod.CASH_ON_DELIVERY:
            return await self._cash_on_delivery(request, address, contact, auth)
        return await self._card(request, address, contact, auth, store)

    async def _card(self, request, address, contact, auth, store) -> PaymentOutcome:
        log.info(f"[Checkout: {auth.user_id}] Requesting hosted checkout session "
                 f"({self.final_total(request):.2f} {CURRENCY}).")
        session = await self.api.create_checkout_session(self.build_session_payload(request), auth)

        # Only way the order data survives the navigation to the payment domain
        try:
            store.put(self.build_pending_order(request, address, contact, auth, PaymentMethod.CARD, session.id))
        except Exception as e:
            log.error(f"[Checkout: {auth.user_id}] Could not stage order data: {e}")
            raise PaymentSessionError(f"Could not save order data before payment: {e}") from e

        try:
            redirect_url = self.redirector(session)
        except PaymentRedirectError:
            store.discard()
            raise
        except Exception as e:
            store.discard()
            raise PaymentRedirectError(f"Failed to redirect to hosted checkout: {e}") from e

        log.info(f"[Checkout: {auth.user_id}] Redirecting to hosted checkout (session {session.id}).")
        return PaymentOutcome(route=REDIRECT_ROUTE, redirect_url=redirect_url, session_id=session.id)

    async def _cash_on_delivery(self, request, address, contact, auth) -> PaymentOutcome:
        log.info(f"[Checkout: {auth.user_id}] Processing cash on delivery order.")
        order = self.build_pending_order(request, address, contact, auth, PaymentMethod.CASH_ON_DELIVERY)
        result = await self.finalizer.finalize(order, auth)
        if result.processing_steps.order_created:
            return PaymentOutcome(route=SUCCESS_ROUTE, order=order, finalization=result)
        failure = self.failure_state(request, result.processing_error, auth, address)
        return PaymentOutcome(route=FAILURE_ROUTE, order=order, finalization=result, failure=failure)

    def failure_state(self, request: CheckoutRequest, message: str, auth: AuthContext,
                      address: Optional[DeliveryAddress] = None) -> CheckoutFailure:
        return CheckoutFailure(
            error_message=message,
            amount=self.final_total(request),
            cart_items=request.cart_items,
            quantities=request.quantities,
            delivery_address=address,
            order_summary=request.order_summary,
            payment_method=request.payment_method,
            user_id=auth.user_id,
        )

    async def checkout(self, request: CheckoutRequest, auth: AuthContext, store: StagingStore) -> PaymentOutcome:
        """
        Page-level handler for the pay button.

        Form errors and auth errors are raised for inline display and re-login;
        every other failure before the redirect routes to the failure page.
        """
        try:
            return await self.initiate(request, auth, store)
        except ValidationError as e:
            if e.field_errors:
                raise
            return self._failed(request, e, auth)
        except AuthError:
            raise
        except CheckoutError as e:
            return self._failed(request, e, auth)

    def _failed(self, request, error: CheckoutError, auth: AuthContext) -> PaymentOutcome:
        log.error(f"[Checkout: {auth.user_id}] Payment could not be started: {error.message}")
        # Only reached after the form validated
        address = request.form.delivery_address()
        return PaymentOutcome(route=FAILURE_ROUTE, failure=self.failure_state(request, error.message, auth, address))
