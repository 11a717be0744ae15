"""
models.py — Data Models for the Checkout Flow

This module defines the data structures handed between the cart, the checkout
form, the payment initiator, the staging store and the order finalization
workflow. Pydantic models give type safety and validation for data that crosses
the redirect to the hosted payment page and back.

Models:
    - CartLineItem: One row of the user's persisted cart.
    - OrderSummary: Subtotal, shipping, VAT and total in AED.
    - DeliveryAddress / ContactInfo: Validated shipping and contact details.
    - CheckoutForm: Raw form state before validation.
    - PendingOrder: Order data staged across the hosted payment redirect.
    - ProcessingSteps / FinalizationResult: Per-step outcome of finalization.
    - CheckoutFailure: State carried to the failure page.
    - CheckoutRequest / PaymentOutcome: Payment initiator input and result.
"""

import uuid
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CURRENCY = "AED"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH_ON_DELIVERY = "cod"


class OutcomeState(str, Enum):
    """States of the outcome pages."""
    LOADING = "loading"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILED = "failed"


class CartLineItem(BaseModel):
    """
    Represents a single row of the user's persisted cart.

    Price and cart-item id are optional at the model level because the remote
    cart occasionally returns incomplete rows; the payment initiator rejects
    those before any payment call.

    Attributes:
        cart_item_id (str): Identifier of the cart row (not the product).
        product_id (int | str): Catalog identifier of the product.
        name (str): Display name.
        unit_price (float): Price per unit in AED. Must not be negative.
        quantity (int): Quantity in the cart. At least 1.
        image_ref (str): Optional image path.
    """
    model_config = ConfigDict(frozen=True)

    cart_item_id: Optional[str] = None
    product_id: Union[int, str]
    name: str = ""
    unit_price: Optional[float] = Field(None, ge=0)
    quantity: int = Field(1, ge=1)
    image_ref: Optional[str] = None

    @field_validator("cart_item_id", mode="before")
    @classmethod
    def _cart_item_id_as_str(cls, value):
        if value is None or value == "":
            return None
        return str(value)


def resolve_quantity(item: CartLineItem, quantities: Dict[str, int]) -> int:
    """Quantity chosen on the cart page, falling back to the item's own quantity."""
    return quantities.get(item.cart_item_id) or item.quantity or 1


class OrderSummary(BaseModel):
    """
    Order totals in AED. `total` always equals subtotal + shipping + vat.

    `final_total` is only set on summaries that went through checkout and had
    the checkout shipping fee applied.
    """
    model_config = ConfigDict(frozen=True)

    subtotal: float = Field(0.0, ge=0)
    shipping: float = Field(0.0, ge=0)
    vat: float = Field(0.0, ge=0)
    total: float = Field(0.0, ge=0)
    final_total: Optional[float] = Field(None, ge=0)
    total_quantity: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _total_matches_parts(self):
        if round(self.subtotal + self.shipping + self.vat, 2) != round(self.total, 2):
            raise ValueError("total must equal subtotal + shipping + vat")
        return self

    def with_checkout_shipping(self, shipping_fee: float) -> "OrderSummary":
        """Returns the summary with the checkout shipping fee folded into shipping and total."""
        total = round(self.total + shipping_fee, 2)
        return self.model_copy(update={
            "shipping": round(self.shipping + shipping_fee, 2),
            "total": total,
            "final_total": total,
        })


class DeliveryAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_name: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    postal_code: Optional[str] = None
    country: str

    def formatted(self) -> str:
        """Single-line address as sent to the order endpoint."""
        parts = [
            self.full_name,
            self.address_line1,
            self.address_line2,
            self.city,
            self.postal_code,
            self.country,
        ]
        return ", ".join(part.strip() for part in parts if part and part.strip())


class ContactInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: str


class CheckoutForm(BaseModel):
    """
    Raw delivery/contact form state as typed by the customer.

    Field names follow the storefront form: street is address_line1, house
    number is address_line2, zip code is postal_code.
    """
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address_line1: str = ""
    address_line2: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""

    def delivery_address(self) -> DeliveryAddress:
        return DeliveryAddress(
            full_name=self.full_name.strip(),
            phone=self.phone.strip(),
            address_line1=self.address_line1.strip(),
            address_line2=self.address_line2.strip() or None,
            city=self.city.strip(),
            postal_code=self.postal_code.strip() or None,
            country=self.country.strip(),
        )

    def contact_info(self) -> ContactInfo:
        return ContactInfo(
            name=self.full_name.strip(),
            email=self.email.strip(),
            phone=self.phone.strip(),
        )


class PendingOrder(BaseModel):
    """
    Order data needed to finalize an order once payment has succeeded.

    Written to the staging store right before the redirect to the hosted
    payment page and read back exactly once on return. The cash-on-delivery
    path builds the same record in memory without staging it.

    Attributes:
        cart_items (List[CartLineItem]): Snapshot of the cart at checkout.
        quantities (Dict[str, int]): Quantity per cart_item_id chosen on the cart page.
        delivery_address (DeliveryAddress): Validated shipping address.
        user_id (str): Identity of the paying customer.
        total_amount (float): Amount charged including checkout shipping.
        token (str): Bearer token captured at checkout.
        order_summary (OrderSummary): Summary with checkout shipping applied.
        customer_info (ContactInfo): Contact details for the order record.
        payment_method (PaymentMethod): card or cod.
        session_id (str): Hosted checkout session id (card only).
        idempotency_key (str): Sent with every create-order attempt for this order.
    """
    cart_items: List[CartLineItem]
    quantities: Dict[str, int] = Field(default_factory=dict)
    delivery_address: DeliveryAddress
    user_id: str
    total_amount: float = Field(..., ge=0)
    token: Optional[str] = None
    order_summary: OrderSummary
    customer_info: Optional[ContactInfo] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    session_id: Optional[str] = None
    idempotency_key: str = Field(default_factory=lambda: str(uuid.uuid4()))

    def resolved_quantity(self, item: CartLineItem) -> int:
        return resolve_quantity(item, self.quantities)


class ProcessingSteps(BaseModel):
    """The three finalization flags. Each one only ever moves from False to True."""
    order_created: bool = False
    stock_updated: bool = False
    cart_cleared: bool = False


class FinalizationResult(BaseModel):
    """
    Outcome of one run of the order finalization workflow.

    Attributes:
        order_id (str): Order id returned by the API, or a synthesized
            FAILED-<timestamp> id when order creation failed.
        processing_steps (ProcessingSteps): Per-step success flags.
        stock_update_message (str): Outcome message of the stock step.
        cart_clear_message (str): Outcome message of the cart-clear step.
        failed_cart_item_ids (List[str]): Cart rows whose delete call failed.
        processing_error (str): Set only when order creation failed.
        payment_method (PaymentMethod): Payment path that led here.
        amount (float): Amount of the order.
    """
    order_id: Optional[str] = None
    processing_steps: ProcessingSteps = Field(default_factory=ProcessingSteps)
    stock_update_message: Optional[str] = None
    cart_clear_message: Optional[str] = None
    failed_cart_item_ids: List[str] = Field(default_factory=list)
    processing_error: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    amount: float = 0.0

    @property
    def state(self) -> OutcomeState:
        steps = self.processing_steps
        if not steps.order_created:
            return OutcomeState.FAILED
        if steps.stock_updated and steps.cart_cleared:
            return OutcomeState.SUCCEEDED
        return OutcomeState.PARTIALLY_SUCCEEDED


class CheckoutFailure(BaseModel):
    """State carried to the failure page when checkout could not complete."""
    error_message: str
    amount: float = 0.0
    cart_items: List[CartLineItem] = Field(default_factory=list)
    quantities: Dict[str, int] = Field(default_factory=dict)
    delivery_address: Optional[DeliveryAddress] = None
    order_summary: Optional[OrderSummary] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    user_id: Optional[str] = None

    def retry_state(self) -> dict:
        """
        Builds the checkout state used to re-enter the payment initiator.

        Quantities are rebuilt from the items themselves, as the cart page would.
        """
        return {
            "cart_items": [item.model_dump() for item in self.cart_items],
            "quantities": {item.cart_item_id: item.quantity for item in self.cart_items if item.cart_item_id},
            "order_summary": self.order_summary.model_dump() if self.order_summary else None,
            "user_id": self.user_id,
        }


class CheckoutRequest(BaseModel):
    """Everything the checkout page submits when the customer presses pay."""
    form: CheckoutForm
    cart_items: List[CartLineItem] = Field(default_factory=list)
    quantities: Dict[str, int] = Field(default_factory=dict)
    order_summary: OrderSummary = Field(default_factory=OrderSummary)
    payment_method: PaymentMethod = PaymentMethod.CARD


class HostedCheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None


class PaymentOutcome(BaseModel):
    """
    Where the payment initiator sends the browser next.

    route is one of 'redirect' (hosted payment page), 'payment-success' or
    'payment-failed'.
    """
    route: str
    redirect_url: Optional[str] = None
    session_id: Optional[str] = None
    order: Optional[PendingOrder] = None
    finalization: Optional[FinalizationResult] = None
    failure: Optional[CheckoutFailure] = None
