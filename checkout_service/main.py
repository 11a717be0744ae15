"""
main.py — FastAPI Entry Point for the Checkout Service

This module exposes the checkout flow to the storefront in the browser. It sits
between the storefront pages and the remote storefront API and owns the
per-browser state the flow needs across the hosted payment redirect.

Responsibilities:
    • Accept the checkout form and start card or cash-on-delivery payment
    • Stage order data before redirecting to the hosted payment page
    • Finalize the order when the browser returns on /payment-success
    • Render the failure page for /payment-failed (cancellation)
    • Retry a failed finalization
    • Provide system health information
"""

import uuid
from typing import Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse, RedirectResponse

from .auth import AuthContext
from .cart import build_snapshot
from .clients import HostedCheckoutRedirector, StorefrontApiClient, server_message
from .errors import AuthError, ValidationError
from .logging_config import get_logger, setup_logging
from .models import CheckoutRequest, OutcomeState
from .outcome import (
    CART_ROUTE,
    HOME_ROUTE,
    OutcomePage,
    OutcomeTransitionError,
    failure_from_order,
    render_failure,
)
from .payment import FAILURE_ROUTE, REDIRECT_ROUTE, SUCCESS_ROUTE, PaymentInitiator
from .staging import StagingRegistry
from .workflow import OrderFinalizer

# Initialization
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="Pets Gallery Checkout")

SESSION_COOKIE = "checkout_session"

staging_registry = StagingRegistry()
outcome_pages: Dict[str, OutcomePage] = {}
_api_client: Optional[StorefrontApiClient] = None


@app.on_event("shutdown")
async def on_shutdown():
    """Closes the shared API client."""
    global _api_client
    if _api_client is not None:
        await _api_client.aclose()
        _api_client = None


def get_api_client() -> StorefrontApiClient:
    global _api_client
    if _api_client is None:
        _api_client = StorefrontApiClient()
    return _api_client


def get_redirector() -> HostedCheckoutRedirector:
    return HostedCheckoutRedirector()


def get_auth(authorization: Optional[str] = Header(None),
             x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> AuthContext:
    return AuthContext.from_headers(authorization, x_user_id)


def browser_session(request: Request) -> str:
    return request.cookies.get(SESSION_COOKIE) or str(uuid.uuid4())


def with_session(response, session_id: str):
    response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return response


def keep_for_retry(session_id: str, page: OutcomePage):
    """Only a FAILED page can be retried; any other outcome releases the entry."""
    if page.state == OutcomeState.FAILED:
        outcome_pages[session_id] = page
    else:
        outcome_pages.pop(session_id, None)


# Cart page → checkout handoff
@app.get("/cart/snapshot")
async def cart_snapshot(
        auth: AuthContext = Depends(get_auth),
        api: StorefrontApiClient = Depends(get_api_client),
):
    """Reads the remote cart and returns the snapshot the checkout page is started with."""
    if not auth.token:
        return JSONResponse(status_code=401, content={"message": "Authentication required"})
    try:
        rows = await api.get_cart(auth)
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        return JSONResponse(status_code=status if status == 401 else 502,
                            content={"message": server_message(e.response)})
    except httpx.RequestError as e:
        log.error(f"[Cart: {auth.user_id}] Storefront API unreachable: {e}")
        return JSONResponse(status_code=502, content={"message": "Storefront API unreachable"})
    snapshot = build_snapshot(rows)
    return {
        "items": [item.model_dump() for item in snapshot.items],
        "quantities": snapshot.quantities,
        "order_summary": snapshot.order_summary.model_dump(),
    }


# API Endpoint: checkout page → payment
@app.post("/checkout")
async def checkout(
        body: CheckoutRequest,
        request: Request,
        auth: AuthContext = Depends(get_auth),
        api: StorefrontApiClient = Depends(get_api_client),
        redirector: HostedCheckoutRedirector = Depends(get_redirector),
):
    """
    Starts payment for the submitted checkout.

    Returns:
        - 303 redirect to the hosted payment page (card)
        - the success or failure page (cash on delivery, or a failure before redirect)
        - 422 with the field map when the form is invalid
        - 401 when the customer has to log in again
    """
    session_id = browser_session(request)
    finalizer = OrderFinalizer(api)
    initiator = PaymentInitiator(api, finalizer=finalizer, redirector=redirector)

    try:
        outcome = await initiator.checkout(body, auth, staging_registry.for_session(session_id))
    except ValidationError as e:
        return JSONResponse(status_code=422, content={"message": e.message, "errors": e.field_errors})
    except AuthError as e:
        return JSONResponse(status_code=401, content={"message": e.message})
    finally:
        staging_registry.prune(session_id)

    if outcome.route == REDIRECT_ROUTE:
        return with_session(RedirectResponse(outcome.redirect_url, status_code=303), session_id)

    if outcome.finalization is not None:
        page = OutcomePage(finalizer, auth)
        page.show(outcome.finalization, outcome.order)
        keep_for_retry(session_id, page)
        return with_session(JSONResponse(content=page.render()), session_id)

    return with_session(JSONResponse(content=render_failure(outcome.failure)), session_id)


# Return routes from the hosted payment page
@app.get(f"/{SUCCESS_ROUTE}")
async def payment_success(
        request: Request,
        auth: AuthContext = Depends(get_auth),
        api: StorefrontApiClient = Depends(get_api_client),
):
    """Finalizes the staged order. Without staged data the browser is sent home."""
    session_id = browser_session(request)
    store = staging_registry.pop(session_id)
    if store is None:
        return RedirectResponse(HOME_ROUTE, status_code=303)
    page = OutcomePage(OrderFinalizer(api), auth)
    await page.mount_staged(store)
    if page.fallback_route:
        return RedirectResponse(HOME_ROUTE, status_code=303)
    await page.load_order_details()
    keep_for_retry(session_id, page)
    return with_session(JSONResponse(content=page.render()), session_id)


@app.get(f"/{FAILURE_ROUTE}")
async def payment_failed(request: Request):
    """Hosted payment was cancelled or failed. Consumes the staged order."""
    session_id = browser_session(request)
    store = staging_registry.pop(session_id)
    order = store.take_once() if store is not None else None
    if order is None:
        return RedirectResponse(CART_ROUTE, status_code=303)
    log.info(f"[Checkout: {order.user_id}] Hosted payment cancelled (session {order.session_id}).")
    return JSONResponse(content=render_failure(failure_from_order(order, "Payment was cancelled")))


@app.post(f"/{SUCCESS_ROUTE}/retry")
async def retry_finalization(request: Request, auth: AuthContext = Depends(get_auth)):
    """
    Re-runs the whole finalization for the last failed outcome of this browser.

    A token on the retry request (e.g. after a new login) replaces the one the
    failed attempt used.
    """
    session_id = browser_session(request)
    page = outcome_pages.get(session_id)
    if page is None:
        return JSONResponse(status_code=404, content={"message": "Nothing to retry"})
    try:
        await page.retry(auth)
    except OutcomeTransitionError as e:
        return JSONResponse(status_code=409, content={"message": str(e)})
    keep_for_retry(session_id, page)
    return JSONResponse(content=page.render())


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok"}
