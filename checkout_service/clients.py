"""
This module provides the communication layer between the checkout flow and the
remote storefront REST API:
- StorefrontApiClient: hosted payment sessions, orders, stock and cart rows (httpx, async)
- Response normalization for the loosely specified order payloads
- HostedCheckoutRedirector: turns a hosted checkout session into the redirect target
Each piece encapsulates its protocol details and maps transport errors to the
checkout error taxonomy where the caller needs a typed failure.
"""

import logging
import os
from typing import List, Optional

import httpx

from .auth import AuthContext
from .errors import OrderCreationError, PaymentRedirectError, PaymentSessionError
from .models import HostedCheckoutSession

# Service addresses (normally from env vars)
API_BASE_URL = os.environ.get("STOREFRONT_API_URL", "https://backend.petsgallerydubai.com/api")
HOSTED_CHECKOUT_URL = os.environ.get("HOSTED_CHECKOUT_URL", "https://checkout.stripe.com/c/pay")
PAYMENT_PUBLISHABLE_KEY = os.environ.get("PAYMENT_PUBLISHABLE_KEY", "")
CONNECT_TIMEOUT = float(os.environ.get("STOREFRONT_API_TIMEOUT", "5.0"))
READ_TIMEOUT = float(os.environ.get("STOREFRONT_API_READ_TIMEOUT", "8.0"))

ORDER_ERROR_MESSAGES = {
    404: "Order endpoint not found",
    401: "Authentication failed, please login again",
    422: "Invalid order data",
    500: "Server error",
}

log = logging.getLogger(__name__)


# --- Response normalization ---
def response_json(response: httpx.Response):
    """Decoded JSON body, or None for an empty or non-JSON body."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def server_message(response: httpx.Response) -> str:
    """Message the server put in an error body: `message`, then `error`, then the status."""
    body = response_json(response)
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return f"Server error: {response.status_code}"


def order_error_message(response: httpx.Response) -> str:
    return ORDER_ERROR_MESSAGES.get(response.status_code) or server_message(response)


def normalize_order(body) -> dict:
    """
    Extracts the order object from a create/read order response.

    The order service answers with the order nested under `order`, under
    `data`, or at the root, depending on the endpoint version.

    Raises:
        OrderCreationError: If the body is empty or not an object.
    """
    if not body:
        raise OrderCreationError("Empty response from order service")
    if not isinstance(body, dict):
        raise OrderCreationError("Unexpected response from order service")
    for key in ("order", "data"):
        nested = body.get(key)
        if isinstance(nested, dict) and nested:
            return nested
    return body


def extract_order_id(order: dict) -> Optional[str]:
    for key in ("id", "order_id", "order_number"):
        value = order.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def normalize_rows(body) -> List[dict]:
    """Rows of a list response, which may be bare or wrapped in `data`/`items`."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ("data", "items", "cart_items"):
            rows = body.get(key)
            if isinstance(rows, list):
                return rows
    return []


# --- Storefront API Client (REST) ---
class StorefrontApiClient:
    """
    Client for the remote storefront REST API.

    Every call takes the AuthContext of the customer so the bearer token is
    attached per request; a 401 answer discards the cached token.
    """

    def __init__(self, base_url: str = API_BASE_URL, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: Optional[httpx.Timeout] = None):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            base_url (str): API base URL.
            transport (httpx.AsyncBaseTransport): Optional transport (tests, ASGI apps).
            timeout (httpx.Timeout): Overrides the configured connect/read timeouts.
        """
        timeout_config = timeout or httpx.Timeout(CONNECT_TIMEOUT, read=READ_TIMEOUT)
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_config,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        """Closes the HTTP client session."""
        await self.client.aclose()

    async def _request(self, method: str, path: str, auth: AuthContext, **kwargs) -> httpx.Response:
        headers = {**auth.headers(), **kwargs.pop("headers", {})}
        response = await self.client.request(method, path, headers=headers, **kwargs)
        if response.status_code == 401:
            log.warning(f"[Auth: {auth.user_id}] API answered 401 on {method} {path}. Discarding token.")
            auth.invalidate()
        response.raise_for_status()  # HTTPStatusError on 4xx/5xx
        return response

    async def create_checkout_session(self, payload: dict, auth: AuthContext) -> HostedCheckoutSession:
        """
        Requests a hosted checkout session.

        Args:
            payload (dict): Line items, shipping, total and the return URLs.
            auth (AuthContext): Customer identity.

        Returns:
            HostedCheckoutSession: Session id (and hosted page URL when the API provides one).

        Raises:
            PaymentSessionError: On any HTTP or network error, or when the response has no id.
        """
        try:
            response = await self._request("POST", "/stripe/checkout", auth, json=payload)
        except httpx.HTTPStatusError as e:
            log.error(f"[Checkout: {auth.user_id}] Session request failed (HTTP {e.response.status_code}).")
            raise PaymentSessionError(server_message(e.response)) from e
        except httpx.RequestError as e:
            log.error(f"[Checkout: {auth.user_id}] Payment session service unreachable: {e}")
            raise PaymentSessionError(f"Payment service unreachable: {e}") from e

        body = response_json(response)
        if not isinstance(body, dict) or not body.get("id"):
            raise PaymentSessionError("Invalid checkout session response - missing session ID")
        return HostedCheckoutSession(id=str(body["id"]), url=body.get("url"))

    async def create_order(self, payload: dict, auth: AuthContext,
                           idempotency_key: Optional[str] = None) -> dict:
        """
        Creates the order record.

        Returns:
            dict: The normalized order object.

        Raises:
            OrderCreationError: On any HTTP or network error and on an empty body.
                Carries the HTTP status when there was one.
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        try:
            response = await self._request("POST", "/orders", auth, json=payload, headers=headers)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise OrderCreationError(order_error_message(e.response), status_code=status) from e
        except httpx.RequestError as e:
            raise OrderCreationError(f"Network error: {e}") from e
        return normalize_order(response_json(response))

    async def update_stock(self, items: List[dict], auth: AuthContext) -> str:
        """
        Decrements inventory for the ordered items.

        Returns:
            str: Message returned by the service.

        Raises:
            httpx.HTTPStatusError: If the service returns an error status.
            httpx.RequestError: If the service is unreachable.
        """
        response = await self._request("POST", "/products/update-stock", auth, json={"items": items})
        body = response_json(response)
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return "Stock updated"

    async def delete_cart_item(self, cart_item_id: str, auth: AuthContext) -> None:
        """
        Raises:
            httpx.HTTPStatusError / httpx.RequestError: If the row could not be removed.
        """
        await self._request("DELETE", f"/cart/delete/{cart_item_id}", auth)

    async def get_cart(self, auth: AuthContext) -> List[dict]:
        response = await self._request("GET", "/cart/get", auth)
        return normalize_rows(response_json(response))

    async def get_order(self, order_id: str, auth: AuthContext) -> dict:
        response = await self._request("GET", f"/orders/{order_id}", auth)
        return normalize_order(response_json(response))


# --- Hosted payment page ---
class HostedCheckoutRedirector:
    """
    Resolves where the browser has to go for a hosted checkout session.

    The publishable key must be configured; the hosted page URL comes from the
    session when the API returns one, otherwise it is built from the session id.
    """

    def __init__(self, publishable_key: str = PAYMENT_PUBLISHABLE_KEY, base_url: str = HOSTED_CHECKOUT_URL):
        self.publishable_key = publishable_key
        self.base_url = base_url

    def __call__(self, session: HostedCheckoutSession) -> str:
        """
        Returns:
            str: URL of the hosted payment page.

        Raises:
            PaymentRedirectError: If the redirect cannot be performed.
        """
        if not self.publishable_key:
            raise PaymentRedirectError("Payment publishable key is not configured")
        if session.url:
            return session.url
        if not self.base_url:
            raise PaymentRedirectError("Hosted checkout URL is not configured")
        return f"{self.base_url.rstrip('/')}/{session.id}"
