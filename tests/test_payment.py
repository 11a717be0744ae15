import pytest

from checkout_service.auth import AuthContext
from checkout_service.clients import HostedCheckoutRedirector
from checkout_service.errors import AuthError, PaymentRedirectError, ValidationError
from checkout_service.models import CartLineItem, CheckoutFailure, CheckoutForm, OutcomeState, PaymentMethod
from checkout_service.payment import FAILURE_ROUTE, REDIRECT_ROUTE, SUCCESS_ROUTE, PaymentInitiator
from checkout_service.staging import InMemoryStagingStore


@pytest.fixture
def store():
    return InMemoryStagingStore()


@pytest.fixture
def initiator(api_client):
    return PaymentInitiator(
        api_client,
        redirector=HostedCheckoutRedirector(publishable_key="pk_test", base_url="https://pay.example"),
        app_base_url="https://shop.example/",
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_item", [
    CartLineItem(cart_item_id="b", product_id=2, name="Leash", unit_price=0),
    CartLineItem(cart_item_id="b", product_id=2, name="Leash", unit_price=None),
    CartLineItem(cart_item_id=None, product_id=2, name="Leash", unit_price=10),
    CartLineItem(cart_item_id="b", product_id=2, name="", unit_price=10),
])
async def test_incomplete_items_are_rejected_before_any_call(initiator, fake_api, checkout_request, auth,
                                                             store, bad_item):
    request = checkout_request.model_copy(update={"cart_items": checkout_request.cart_items + [bad_item]})

    with pytest.raises(ValidationError) as exc_info:
        await initiator.initiate(request, auth, store)

    assert exc_info.value.message == "Some cart items are missing required information"
    assert fake_api.requests == []
    assert store.peek() is None


@pytest.mark.asyncio
async def test_empty_cart_is_rejected(initiator, fake_api, checkout_request, auth, store):
    request = checkout_request.model_copy(update={"cart_items": []})

    with pytest.raises(ValidationError):
        await initiator.initiate(request, auth, store)
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_missing_user_is_an_auth_error(initiator, fake_api, checkout_request, store):
    with pytest.raises(AuthError) as exc_info:
        await initiator.initiate(checkout_request, AuthContext(token="tok-123"), store)

    assert "User ID is missing" in exc_info.value.message
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_invalid_form_is_raised_for_inline_display(initiator, fake_api, checkout_request, auth, store):
    request = checkout_request.model_copy(update={"form": CheckoutForm(full_name="Layla")})

    with pytest.raises(ValidationError) as exc_info:
        await initiator.checkout(request, auth, store)

    assert "city" in exc_info.value.field_errors
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_card_payment_stages_order_and_redirects(initiator, fake_api, checkout_request, auth, store):
    outcome = await initiator.initiate(checkout_request, auth, store)

    assert outcome.route == REDIRECT_ROUTE
    assert outcome.redirect_url == "https://pay.example/cs_test_123"
    assert outcome.session_id == "cs_test_123"

    session_body = fake_api.body(fake_api.calls("POST", "/stripe/checkout")[0])
    assert session_body["items"] == [{"id": "a", "name": "Cat Tree", "totalAmount": 100.0, "quantity": 2}]
    assert session_body["finalTotal"] == 100.0
    assert session_body["successUrl"] == "https://shop.example/payment-success"
    assert session_body["cancelUrl"] == "https://shop.example/payment-failed"

    staged = store.peek()
    assert staged.session_id == "cs_test_123"
    assert staged.user_id == "7"
    assert staged.token == "tok-123"
    assert staged.total_amount == 100.0
    assert staged.quantities == {"a": 2}
    assert staged.customer_info.email == "layla@example.com"
    assert staged.order_summary.final_total == 100.0
    assert fake_api.calls("POST", "/orders") == []


@pytest.mark.asyncio
async def test_checkout_shipping_is_added_to_the_total(api_client, fake_api, checkout_request, auth, store):
    initiator = PaymentInitiator(
        api_client, redirector=HostedCheckoutRedirector(publishable_key="pk_test"), shipping_fee=15,
    )

    await initiator.initiate(checkout_request, auth, store)

    session_body = fake_api.body(fake_api.calls("POST", "/stripe/checkout")[0])
    assert session_body["shippingCost"] == 15
    assert session_body["finalTotal"] == 115.0
    assert store.peek().order_summary.total == 115.0
    assert store.peek().total_amount == 115.0


@pytest.mark.asyncio
async def test_session_without_id_routes_to_failure(initiator, fake_api, checkout_request, auth, store):
    fake_api.session_body = {}

    outcome = await initiator.checkout(checkout_request, auth, store)

    assert outcome.route == FAILURE_ROUTE
    assert outcome.failure.payment_method == PaymentMethod.CARD
    assert outcome.failure.amount == 100.0
    assert outcome.failure.cart_items == checkout_request.cart_items
    assert outcome.failure.delivery_address.city == "Dubai"
    assert "missing session ID" in outcome.failure.error_message
    assert store.peek() is None


@pytest.mark.asyncio
async def test_redirect_failure_discards_staged_order(api_client, checkout_request, auth, store):
    initiator = PaymentInitiator(api_client, redirector=HostedCheckoutRedirector(publishable_key=""))

    with pytest.raises(PaymentRedirectError):
        await initiator.initiate(checkout_request, auth, store)

    assert store.peek() is None


@pytest.mark.asyncio
async def test_unexpected_redirect_error_is_wrapped(api_client, checkout_request, auth, store):
    def broken(session):
        raise RuntimeError("window closed")

    initiator = PaymentInitiator(api_client, redirector=broken)

    outcome = await initiator.checkout(checkout_request, auth, store)

    assert outcome.route == FAILURE_ROUTE
    assert outcome.failure.error_message == "Failed to redirect to hosted checkout: window closed"


@pytest.mark.asyncio
async def test_cash_on_delivery_finalizes_in_line(initiator, fake_api, checkout_request, auth, store):
    request = checkout_request.model_copy(update={"payment_method": PaymentMethod.CASH_ON_DELIVERY})

    outcome = await initiator.checkout(request, auth, store)

    assert outcome.route == SUCCESS_ROUTE
    assert outcome.finalization.state == OutcomeState.SUCCEEDED
    assert outcome.finalization.payment_method == PaymentMethod.CASH_ON_DELIVERY
    assert outcome.order.payment_method == PaymentMethod.CASH_ON_DELIVERY
    assert fake_api.calls("POST", "/stripe/checkout") == []
    assert fake_api.body(fake_api.calls("POST", "/orders")[0])["payment_method"] == "cod"
    assert store.peek() is None


@pytest.mark.asyncio
async def test_cash_on_delivery_with_stock_failure(initiator, fake_api, checkout_request, auth, store):
    fake_api.stock_status = 500
    fake_api.stock_body = {"message": "Stock service unavailable"}
    request = checkout_request.model_copy(update={"payment_method": PaymentMethod.CASH_ON_DELIVERY})

    outcome = await initiator.checkout(request, auth, store)

    result = outcome.finalization
    assert outcome.route == SUCCESS_ROUTE
    assert result.state == OutcomeState.PARTIALLY_SUCCEEDED
    assert result.stock_update_message == "Stock update failed: Stock service unavailable"
    assert result.processing_steps.cart_cleared is True
    assert len(fake_api.calls("DELETE", "/cart/delete/")) == 1


@pytest.mark.asyncio
async def test_cash_on_delivery_order_failure_routes_to_failure(initiator, fake_api, checkout_request, auth, store):
    fake_api.order_status = 404
    fake_api.order_body = {"message": "Not Found"}
    request = checkout_request.model_copy(update={"payment_method": PaymentMethod.CASH_ON_DELIVERY})

    outcome = await initiator.checkout(request, auth, store)

    assert outcome.route == FAILURE_ROUTE
    assert outcome.failure.error_message == "Failed to create order: Order endpoint not found"
    assert outcome.failure.payment_method == PaymentMethod.CASH_ON_DELIVERY
    assert outcome.finalization.state == OutcomeState.FAILED


def test_failure_retry_state_rebuilds_quantities(cart_items, order_summary):
    failure = CheckoutFailure(error_message="x", cart_items=cart_items, order_summary=order_summary, user_id="7")

    state = failure.retry_state()

    assert state["quantities"] == {"a": 2}
    assert state["user_id"] == "7"
    assert state["order_summary"]["total"] == 100.0


@pytest.mark.asyncio
async def test_staging_failure_routes_to_failure(initiator, fake_api, checkout_request, auth):
    class FullDiskStore(InMemoryStagingStore):
        def put(self, order):
            raise OSError("disk full")

    outcome = await initiator.checkout(checkout_request, auth, FullDiskStore())

    assert outcome.route == FAILURE_ROUTE
    assert outcome.failure.error_message == "Could not save order data before payment: disk full"
    assert fake_api.calls("POST", "/orders") == []
