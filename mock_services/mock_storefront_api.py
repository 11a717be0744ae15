"""
mock_storefront_api.py — Mock Implementation of the Storefront REST API

This module provides a simulated storefront backend for testing the checkout
workflow. It exposes a FastAPI application that mimics the remote API the
checkout service talks to: hosted checkout sessions, orders, stock and cart rows.

Simulation Scenarios (driven by markers in the request data):
    • Item name contains "SESSION-ERROR"   → session creation fails (HTTP 500)
    • Item name contains "INVALID-ORDER"   → order creation rejected (HTTP 422)
    • Cart item id contains "stock-error"  → stock update fails (HTTP 500)
    • Cart item id contains "delete-error" → deleting that cart row fails (HTTP 500)
    • Missing bearer token                  → HTTP 401 on every authenticated endpoint
    • Token listed in REVOKED_TOKENS         → HTTP 401 (expired login)
    • Repeated Idempotency-Key on /orders   → the original order is returned again

Endpoints:
    POST   /stripe/checkout
    POST   /orders
    GET    /orders/{order_id}
    POST   /products/update-stock
    GET    /cart/get
    DELETE /cart/delete/{cart_item_id}

Port:
    Default: 8002 (HTTP)
"""

import itertools
import logging
import time
import uuid
from typing import Dict, List, Optional, Set, Union

from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

app = FastAPI(title="Mock Storefront API")
logging.basicConfig(level=logging.INFO)

ORDERS: Dict[str, dict] = {}
IDEMPOTENCY_KEYS: Dict[str, str] = {}
CARTS: Dict[str, List[dict]] = {}
REVOKED_TOKENS: Set[str] = set()
_order_numbers = itertools.count(1001)


def reset(carts: Optional[Dict[str, List[dict]]] = None):
    """Clears all simulated state and seeds the carts, keyed by bearer token."""
    global _order_numbers
    _order_numbers = itertools.count(1001)
    ORDERS.clear()
    IDEMPOTENCY_KEYS.clear()
    CARTS.clear()
    REVOKED_TOKENS.clear()
    CARTS.update({token: [dict(row) for row in rows] for token, rows in (carts or {}).items()})


def require_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer ") or not authorization[7:].strip():
        raise HTTPException(status_code=401, detail="Unauthenticated.")
    token = authorization[7:].strip()
    if token in REVOKED_TOKENS:
        raise HTTPException(status_code=401, detail="Unauthenticated.")
    return token


class SessionItem(BaseModel):
    id: str
    name: str
    totalAmount: float
    quantity: int


class CheckoutSessionRequest(BaseModel):
    items: List[SessionItem]
    shippingCost: float = 0
    finalTotal: float
    currency: str = "aed"
    successUrl: str
    cancelUrl: str


class OrderItem(BaseModel):
    product_id: Union[int, str]
    cart_item_id: Optional[str] = None
    name: str = ""
    quantity: int
    price: Optional[float] = None


class OrderRequest(BaseModel):
    user_id: str
    shipping_address: str
    items: List[OrderItem]
    order_summary: dict
    total_amount: float
    currency: str = "AED"
    payment_method: str
    payment_session_id: Optional[str] = None
    customer: dict


class StockItem(BaseModel):
    product_id: Union[int, str]
    cart_item_id: Optional[str] = None
    quantity: int


class StockUpdateRequest(BaseModel):
    items: List[StockItem]


@app.post("/stripe/checkout")
def create_checkout_session(request: CheckoutSessionRequest, authorization: Optional[str] = Header(None)):
    """
    Creates a hosted checkout session.

    Returns:
        dict: `id` of the session and the hosted page `url`.

    Raises:
        HTTPException(401): If no bearer token was sent.
        HTTPException(500): If an item name carries the SESSION-ERROR marker.
    """
    require_token(authorization)
    if any("SESSION-ERROR" in item.name for item in request.items):
        logging.error("[API] Simulating payment provider failure.")
        return JSONResponse(status_code=500, content={"error": "Payment provider unavailable"})

    session_id = f"cs_test_{uuid.uuid4().hex}"
    logging.info(f"[API] Checkout session {session_id} for {request.finalTotal} {request.currency}.")
    return {"id": session_id, "url": f"https://checkout.stripe.com/c/pay/{session_id}"}


@app.post("/orders", status_code=201)
def create_order(request: OrderRequest, authorization: Optional[str] = Header(None),
                 idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")):
    """
    Creates an order. A repeated Idempotency-Key returns the order created first.

    Raises:
        HTTPException(401): If no bearer token was sent.
        HTTPException(422): If an item name carries the INVALID-ORDER marker.
    """
    require_token(authorization)
    if idempotency_key and idempotency_key in IDEMPOTENCY_KEYS:
        order = ORDERS[IDEMPOTENCY_KEYS[idempotency_key]]
        logging.info(f"[API] Replaying order {order['id']} for key {idempotency_key}.")
        return {"message": "Order already created", "order": order}

    if any("INVALID-ORDER" in item.name for item in request.items):
        return JSONResponse(status_code=422, content={"message": "The given data was invalid."})

    order_id = str(next(_order_numbers))
    order = {
        "id": order_id,
        "status": "pending",
        "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        **request.model_dump(),
    }
    ORDERS[order_id] = order
    if idempotency_key:
        IDEMPOTENCY_KEYS[idempotency_key] = order_id
    logging.info(f"[API] Order {order_id} created ({request.payment_method}).")
    return {"message": "Order created", "order": order}


@app.get("/orders/{order_id}")
def get_order(order_id: str, authorization: Optional[str] = Header(None)):
    require_token(authorization)
    order = ORDERS.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"data": order}


@app.post("/products/update-stock")
def update_stock(request: StockUpdateRequest, authorization: Optional[str] = Header(None)):
    require_token(authorization)
    if any(item.cart_item_id and "stock-error" in item.cart_item_id for item in request.items):
        logging.error("[API] Simulating stock service failure.")
        return JSONResponse(status_code=500, content={"message": "Stock service unavailable"})
    return {"message": f"Stock updated for {len(request.items)} products"}


@app.get("/cart/get")
def get_cart(authorization: Optional[str] = Header(None)):
    token = require_token(authorization)
    return {"data": CARTS.get(token, [])}


@app.delete("/cart/delete/{cart_item_id}")
def delete_cart_item(cart_item_id: str, authorization: Optional[str] = Header(None)):
    token = require_token(authorization)
    if "delete-error" in cart_item_id:
        return JSONResponse(status_code=500, content={"message": "Could not remove item"})
    rows = CARTS.get(token, [])
    CARTS[token] = [row for row in rows if str(row.get("cart_item_id")) != cart_item_id]
    return {"message": "Item removed"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8002)
