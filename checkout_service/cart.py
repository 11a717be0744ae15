"""
cart.py — Cart snapshot and order-summary pricing.

The cart page turns the remote per-user cart into an immutable snapshot
(line items plus computed totals) that is handed forward to checkout.
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .models import CartLineItem, OrderSummary, resolve_quantity

# The storefront currently ships everything free and charges no VAT
SHIPPING_FEE = float(os.environ.get("SHIPPING_FEE", "0"))
FREE_SHIPPING_THRESHOLD = float(os.environ.get("FREE_SHIPPING_THRESHOLD", "0"))
VAT_RATE = float(os.environ.get("VAT_RATE", "0"))

log = logging.getLogger(__name__)


class CartSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: Tuple[CartLineItem, ...] = ()
    quantities: Dict[str, int] = Field(default_factory=dict)
    order_summary: OrderSummary = Field(default_factory=OrderSummary)

    @property
    def is_empty(self) -> bool:
        return not self.items


def calculate_shipping(subtotal: float, shipping_fee: Optional[float] = None,
                       free_shipping_threshold: Optional[float] = None) -> float:
    """Shipping is free once the subtotal exceeds the threshold, otherwise the fixed fee."""
    fee = SHIPPING_FEE if shipping_fee is None else shipping_fee
    threshold = FREE_SHIPPING_THRESHOLD if free_shipping_threshold is None else free_shipping_threshold
    if subtotal > threshold:
        return 0.0
    return fee


def summarize(items: List[CartLineItem], quantities: Dict[str, int],
              shipping_fee: Optional[float] = None,
              free_shipping_threshold: Optional[float] = None,
              vat_rate: Optional[float] = None) -> OrderSummary:
    """
    Computes the order summary for a list of cart rows.

    Args:
        items (List[CartLineItem]): Rows of the cart.
        quantities (Dict[str, int]): Quantity per cart_item_id as edited on the cart page.
        shipping_fee (float): Override of SHIPPING_FEE.
        free_shipping_threshold (float): Override of FREE_SHIPPING_THRESHOLD.
        vat_rate (float): Override of VAT_RATE.

    Returns:
        OrderSummary: Totals rounded to fils (two decimals).
    """
    rate = VAT_RATE if vat_rate is None else vat_rate
    subtotal = round(sum((item.unit_price or 0) * resolve_quantity(item, quantities) for item in items), 2)
    shipping = calculate_shipping(subtotal, shipping_fee, free_shipping_threshold) if items else 0.0
    vat = round(subtotal * rate, 2)
    return OrderSummary(
        subtotal=subtotal,
        shipping=shipping,
        vat=vat,
        total=round(subtotal + shipping + vat, 2),
        total_quantity=sum(resolve_quantity(item, quantities) for item in items),
    )


def parse_cart_rows(rows: List[dict]) -> List[CartLineItem]:
    """
    Maps raw rows of the remote cart to CartLineItem.

    The cart endpoint returns `cart_item_id` (older responses: `id`), `price`
    and `image`; rows that cannot be parsed are skipped and logged.
    """
    items = []
    for row in rows:
        try:
            items.append(CartLineItem(
                cart_item_id=row.get("cart_item_id") or row.get("id"),
                product_id=row["product_id"],
                name=row.get("name") or row.get("product_name") or "",
                unit_price=float(row["price"]) if row.get("price") is not None else None,
                quantity=int(row.get("quantity") or 1),
                image_ref=row.get("image"),
            ))
        except (KeyError, TypeError, ValueError) as e:
            log.warning(f"[Cart] Skipping unreadable cart row {row!r}: {e}")
    return items


def build_snapshot(rows: List[dict], quantities: Optional[Dict[str, int]] = None, **pricing) -> CartSnapshot:
    """Builds the immutable cart snapshot handed to checkout."""
    items = parse_cart_rows(rows)
    resolved = {item.cart_item_id: resolve_quantity(item, quantities or {})
                for item in items if item.cart_item_id}
    return CartSnapshot(
        items=tuple(items),
        quantities=resolved,
        order_summary=summarize(items, resolved, **pricing),
    )
