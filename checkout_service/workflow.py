"""
workflow.py — Core Orchestration Logic for Order Finalization

This module contains the workflow that turns a paid (or cash-on-delivery) cart
into an order. It coordinates the three remote operations in a fixed order:

Workflow Overview:
1. Create the order via the order endpoint (fatal on failure)
2. Decrement stock for the ordered items (non-fatal)
3. Remove every cart row, all deletes in flight at once (non-fatal)

Each step returns a StepOutcome; the outcomes are folded into one
FinalizationResult. Network and HTTP errors never escape finalize().
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

import httpx

from .auth import AuthContext
from .clients import StorefrontApiClient, extract_order_id, server_message
from .errors import OrderCreationError
from .models import CURRENCY, FinalizationResult, PendingOrder, ProcessingSteps
from .staging import StagingStore

log = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessingSteps], None]


@dataclass(frozen=True)
class StepOutcome:
    """Result of one finalization step."""
    ok: bool
    message: Optional[str] = None
    value: Any = None
    failed_ids: Tuple[str, ...] = ()


def build_order_payload(order: PendingOrder) -> dict:
    """
    Builds the create-order request body.

    The shipping address is flattened into one formatted line; contact details
    fall back to the delivery address when the checkout captured none.
    """
    contact = order.customer_info
    summary = order.order_summary
    return {
        "user_id": order.user_id,
        "shipping_address": order.delivery_address.formatted(),
        "items": [
            {
                "product_id": item.product_id,
                "cart_item_id": item.cart_item_id,
                "name": item.name,
                "quantity": order.resolved_quantity(item),
                "price": item.unit_price,
            }
            for item in order.cart_items
        ],
        "order_summary": {
            "subtotal": summary.subtotal,
            "shipping": summary.shipping,
            "vat": summary.vat,
            "total": summary.total,
        },
        "total_amount": order.total_amount,
        "currency": CURRENCY,
        "payment_method": order.payment_method.value,
        "payment_session_id": order.session_id,
        "customer": {
            "name": contact.name if contact else order.delivery_address.full_name,
            "email": contact.email if contact else None,
            "phone": contact.phone if contact else order.delivery_address.phone,
        },
    }


def build_stock_items(order: PendingOrder) -> list:
    return [
        {
            "product_id": item.product_id,
            "cart_item_id": item.cart_item_id,
            "quantity": order.resolved_quantity(item),
        }
        for item in order.cart_items
    ]


def failed_order_id() -> str:
    return f"FAILED-{int(time.time() * 1000)}"


def forget_rejected_token(order: PendingOrder, auth: AuthContext, token: Optional[str]):
    """Drops the token captured at checkout once the API has rejected it with 401."""
    if token and auth.token is None and order.token == token:
        log.warning(f"[Checkout: {order.user_id}] Staged token was rejected. A new login is needed to retry.")
        order.token = None


class OrderFinalizer:
    """
    Runs the create order → update stock → clear cart sequence.

    The same finalizer serves both entry points: the return from the hosted
    payment page and the cash-on-delivery checkout.
    """

    def __init__(self, api: StorefrontApiClient):
        self.api = api

    async def create_order(self, order: PendingOrder, auth: AuthContext) -> StepOutcome:
        try:
            created = await self.api.create_order(
                build_order_payload(order), auth, idempotency_key=order.idempotency_key
            )
        except OrderCreationError as e:
            log.error(f"[Checkout: {order.user_id}] Order creation failed (HTTP {e.status_code}): {e.message}")
            return StepOutcome(ok=False, message=e.message)

        order_id = extract_order_id(created)
        if order_id is None:
            order_id = f"ORD-{int(time.time() * 1000)}"
            log.warning(f"[Checkout: {order.user_id}] Order service returned no id. Using {order_id}.")
        return StepOutcome(ok=True, value=order_id)

    async def update_stock(self, order: PendingOrder, auth: AuthContext, order_id: str) -> StepOutcome:
        try:
            message = await self.api.update_stock(build_stock_items(order), auth)
        except httpx.HTTPStatusError as e:
            log.warning(f"[Order: {order_id}] Stock update failed (HTTP {e.response.status_code}).")
            return StepOutcome(ok=False, message=f"Stock update failed: {server_message(e.response)}")
        except httpx.RequestError as e:
            log.warning(f"[Order: {order_id}] Stock service unreachable: {e}")
            return StepOutcome(ok=False, message=f"Stock update failed: network error ({e})")
        return StepOutcome(ok=True, message=message)

    async def clear_cart(self, order: PendingOrder, auth: AuthContext, order_id: str) -> StepOutcome:
        cart_item_ids = [item.cart_item_id for item in order.cart_items if item.cart_item_id]
        if not cart_item_ids:
            return StepOutcome(ok=True, message="Cart already empty")

        results = await asyncio.gather(
            *(self.api.delete_cart_item(cart_item_id, auth) for cart_item_id in cart_item_ids),
            return_exceptions=True,
        )
        failed = tuple(
            cart_item_id for cart_item_id, result in zip(cart_item_ids, results)
            if isinstance(result, BaseException)
        )
        if failed:
            log.warning(f"[Order: {order_id}] Could not remove cart items {list(failed)}.")
            return StepOutcome(
                ok=False,
                message=f"{len(failed)} of {len(cart_item_ids)} cart items could not be removed",
                failed_ids=failed,
            )
        return StepOutcome(ok=True, message=f"Removed {len(cart_item_ids)} items from cart")

    async def finalize(self, order: PendingOrder, auth: Optional[AuthContext] = None,
                       on_progress: Optional[ProgressCallback] = None) -> FinalizationResult:
        """
        Executes the complete finalization workflow for one order.

        Args:
            order (PendingOrder): Staged or in-memory order data.
            auth (AuthContext): Customer identity. Defaults to the identity
                captured in the order at checkout.
            on_progress (ProgressCallback): Called with the step flags after each step.

        Returns:
            FinalizationResult: Always returned. When order creation fails the
            result carries processing_error and a FAILED-<timestamp> order id,
            and the other two steps are not attempted.

        Workflow Steps:
            Step 1 – Create order:
                - Fatal on failure; aborts the workflow.
            Step 2 – Update stock:
                - Only after step 1 succeeded. Failure is recorded, not raised.
            Step 3 – Clear cart:
                - One delete per cart row, dispatched concurrently.
                - Successful only if every delete succeeded.
        """
        if auth is None or not auth.token:
            auth = AuthContext(user_id=order.user_id, token=order.token)
        token = auth.token
        result = FinalizationResult(payment_method=order.payment_method, amount=order.total_amount)
        steps = result.processing_steps

        def report():
            if on_progress is not None:
                on_progress(steps.model_copy())

        log.info(f"[Checkout: {order.user_id}] Step 1: Creating order ({order.payment_method.value}).")
        created = await self.create_order(order, auth)
        if not created.ok:
            forget_rejected_token(order, auth, token)
            result.order_id = failed_order_id()
            result.processing_error = f"Failed to create order: {created.message}"
            report()
            return result

        order_id = created.value
        result.order_id = order_id
        steps.order_created = True
        report()
        log.info(f"[Order: {order_id}] Order created.")

        log.info(f"[Order: {order_id}] Step 2: Updating stock...")
        stock = await self.update_stock(order, auth, order_id)
        steps.stock_updated = stock.ok
        result.stock_update_message = stock.message
        report()

        log.info(f"[Order: {order_id}] Step 3: Clearing cart...")
        cleared = await self.clear_cart(order, auth, order_id)
        steps.cart_cleared = cleared.ok
        result.cart_clear_message = cleared.message
        result.failed_cart_item_ids = list(cleared.failed_ids)
        report()

        if steps.stock_updated and steps.cart_cleared:
            log.info(f"[Order: {order_id}] Finalization completed.")
        else:
            log.warning(f"[Order: {order_id}] Finalized with follow-up needed: "
                        f"stock_updated={steps.stock_updated}, cart_cleared={steps.cart_cleared}.")
        forget_rejected_token(order, auth, token)
        return result


async def finalize_staged(store: StagingStore, finalizer: OrderFinalizer, auth: Optional[AuthContext] = None,
                          on_progress: Optional[ProgressCallback] = None
                          ) -> Tuple[Optional[PendingOrder], Optional[FinalizationResult]]:
    """
    Finalizes the order staged before the hosted payment redirect.

    The staged entry is taken before the first remote call, so a second return
    racing this one finds the slot empty. The caller keeps the returned order
    for retry.

    Returns:
        (PendingOrder, FinalizationResult), or (None, None) when nothing was staged.
    """
    order = store.take_once()
    if order is None:
        return None, None
    result = await finalizer.finalize(order, auth, on_progress=on_progress)
    return order, result
