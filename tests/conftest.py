import json

import httpx
import pytest
import pytest_asyncio

from checkout_service.auth import AuthContext
from checkout_service.clients import StorefrontApiClient
from checkout_service.models import (
    CartLineItem,
    CheckoutForm,
    CheckoutRequest,
    ContactInfo,
    DeliveryAddress,
    OrderSummary,
    PaymentMethod,
    PendingOrder,
)

API_URL = "https://api.test"


class FakeStorefront:
    """
    Scripted stand-in for the remote storefront API, served through
    httpx.MockTransport. Every request is recorded.
    """

    def __init__(self):
        self.requests = []
        self.session_status = 200
        self.session_body = {"id": "cs_test_123"}
        self.order_status = 201
        self.order_body = {"message": "Order created", "order": {"id": 42, "status": "pending"}}
        self.stock_status = 200
        self.stock_body = {"message": "Stock updated"}
        self.failing_deletes = set()
        self.delete_error = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        if method == "POST" and path == "/stripe/checkout":
            return httpx.Response(self.session_status, json=self.session_body)
        if method == "POST" and path == "/orders":
            if self.order_body is None:
                return httpx.Response(self.order_status)
            return httpx.Response(self.order_status, json=self.order_body)
        if method == "GET" and path.startswith("/orders/"):
            return httpx.Response(200, json={"data": {"id": path.rsplit("/", 1)[1], "status": "pending"}})
        if method == "POST" and path == "/products/update-stock":
            return httpx.Response(self.stock_status, json=self.stock_body)
        if method == "DELETE" and path.startswith("/cart/delete/"):
            cart_item_id = path.rsplit("/", 1)[1]
            if cart_item_id in self.failing_deletes:
                if self.delete_error is not None:
                    raise self.delete_error
                return httpx.Response(500, json={"message": "Could not remove item"})
            return httpx.Response(200, json={"message": "Item removed"})
        if method == "GET" and path == "/cart/get":
            return httpx.Response(200, json={"data": []})
        return httpx.Response(404, json={"message": "Not found"})

    def calls(self, method: str, prefix: str) -> list:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(prefix)]

    def body(self, request: httpx.Request) -> dict:
        return json.loads(request.content)


@pytest.fixture
def fake_api():
    return FakeStorefront()


@pytest_asyncio.fixture
async def api_client(fake_api):
    client = StorefrontApiClient(base_url=API_URL, transport=httpx.MockTransport(fake_api.handler))
    yield client
    await client.aclose()


@pytest.fixture
def auth():
    return AuthContext(user_id="7", token="tok-123")


@pytest.fixture
def cart_items():
    return [CartLineItem(cart_item_id="a", product_id=1, name="Cat Tree", unit_price=50, quantity=2)]


@pytest.fixture
def order_summary():
    return OrderSummary(subtotal=100, shipping=0, vat=0, total=100)


@pytest.fixture
def checkout_form():
    return CheckoutForm(
        full_name="Layla Haddad",
        email="layla@example.com",
        phone="+971 50 123 4567",
        address_line1="Al Wasl Road 12",
        address_line2="Villa 4",
        city="Dubai",
        postal_code="00000",
        country="United Arab Emirates",
    )


@pytest.fixture
def checkout_request(checkout_form, cart_items, order_summary):
    return CheckoutRequest(
        form=checkout_form,
        cart_items=cart_items,
        quantities={"a": 2},
        order_summary=order_summary,
        payment_method=PaymentMethod.CARD,
    )


def make_pending_order(cart_items, payment_method=PaymentMethod.CARD, **overrides) -> PendingOrder:
    fields = dict(
        cart_items=cart_items,
        quantities={item.cart_item_id: item.quantity for item in cart_items},
        delivery_address=DeliveryAddress(
            full_name="Layla Haddad",
            phone="+971 50 123 4567",
            address_line1="Al Wasl Road 12",
            city="Dubai",
            country="United Arab Emirates",
        ),
        user_id="7",
        total_amount=100,
        token="tok-123",
        order_summary=OrderSummary(subtotal=100, total=100, final_total=100),
        customer_info=ContactInfo(name="Layla Haddad", email="layla@example.com", phone="+971 50 123 4567"),
        payment_method=payment_method,
    )
    fields.update(overrides)
    return PendingOrder(**fields)


@pytest.fixture
def pending_order(cart_items):
    return make_pending_order(cart_items)


@pytest.fixture
def order_factory():
    return make_pending_order
