"""
Checkout and order lifecycle

An order is a priced snapshot of a cart taken at checkout. Totals are
computed once here and never recomputed. Order creation and the cart clear
that follows it are separate writes: a failure in between leaves the cart
populated next to a valid order, and nothing tries to repair that.

Status moves pending -> processing -> shipped -> delivered, or to cancelled
while still pending or processing.
"""

import secrets
import time
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from artworks import assert_purchasable, get_artwork_doc
from cart import cart_items, clear_cart
from database import create_document, get_db, get_documents, serialize_doc, to_object_id, utcnow
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import (
    ORDER_STATUSES, PAYMENT_METHODS, CartItem, Order, OrderItem, Payment, ShippingAddress,
)
from users import get_current_user, users_by_ids

logger = structlog.get_logger(__name__)

CANCELLABLE = ("pending", "processing")
ADDRESS_FIELDS = ("full_name", "phone", "address", "city", "state", "zip_code")


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.randbelow(10000):04d}"


def _is_admin(actor: Optional[Dict[str, Any]]) -> bool:
    return bool(actor) and actor.get("role") == "admin"


def _is_owner(order: Dict[str, Any], actor: Optional[Dict[str, Any]]) -> bool:
    return bool(actor) and order.get("user_id") == actor.get("id")


def _require_admin(actor: Optional[Dict[str, Any]]):
    if not _is_admin(actor):
        raise AuthorizationError("Admin access required")


def validate_shipping_address(data: Union[ShippingAddress, Dict[str, Any], None]) -> ShippingAddress:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    data = dict(data or {})
    cleaned = {}
    for field in ADDRESS_FIELDS:
        value = str(data.get(field) or "").strip()
        if not value:
            raise ValidationError(f"Shipping address field '{field}' is required")
        cleaned[field] = value
    country = str(data.get("country") or "").strip()
    if country:
        cleaned["country"] = country
    return ShippingAddress(**cleaned)


def _merge_lines(lines: Iterable[Any]) -> List[Dict[str, Any]]:
    merged: Dict[str, int] = {}
    for line in lines:
        if isinstance(line, BaseModel):
            line = line.model_dump()
        quantity = int(line.get("quantity", 1))
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        merged[line["artwork_id"]] = merged.get(line["artwork_id"], 0) + quantity
    return [{"artwork_id": k, "quantity": v} for k, v in merged.items()]


def present_orders(db: Database, docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    docs = list(docs)
    users = users_by_ids(db, [d.get("user_id") for d in docs])
    out = []
    for d in docs:
        item = serialize_doc(d)
        item["user"] = users.get(d.get("user_id"))
        out.append(item)
    return out


def get_order_doc(db: Database, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise NotFoundError("Order not found")
    return order


def _reload(db: Database, order: Dict[str, Any]) -> Dict[str, Any]:
    return present_orders(db, [db["order"].find_one({"_id": order["_id"]})])[0]


def create_order(db: Database, user_id: str, shipping_address: Union[ShippingAddress, Dict[str, Any]],
                 payment_method: str, items: Optional[List[Any]] = None,
                 notes: Optional[str] = None) -> Dict[str, Any]:
    """Price a cart snapshot and store it as an order, then clear the user's cart.

    `items` defaults to the user's persisted cart. Unit prices always come
    from the catalog, never from the caller.
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
    lines = _merge_lines(items if items is not None else cart_items(db, user_id))
    if not lines:
        raise ValidationError("Cart is empty")
    address = validate_shipping_address(shipping_address)

    order_items = []
    for line in lines:
        artwork = get_artwork_doc(db, line["artwork_id"])
        assert_purchasable(artwork)
        price = float(artwork["price"])
        order_items.append(OrderItem(
            artwork_id=str(artwork["_id"]),
            title=artwork["title"],
            quantity=line["quantity"],
            price=price,
            subtotal=round(price * line["quantity"], 2),
            seller_id=artwork["artist_id"],
        ))

    subtotal = round(sum(i.subtotal for i in order_items), 2)
    shipping_cost = round(settings.SHIPPING_COST, 2)
    tax = round(subtotal * settings.TAX_RATE, 2)
    total = round(subtotal + shipping_cost + tax, 2)

    order_id = None
    for _ in range(3):
        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            items=order_items,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax=tax,
            total=total,
            shipping_address=address,
            payment_method=payment_method,
            notes=notes,
        )
        try:
            order_id = create_document(db, "order", order)
            break
        except DuplicateKeyError:
            logger.warning("order_number_collision", order_number=order.order_number)
    if order_id is None:
        raise ConflictError("Could not allocate an order number, please retry")

    create_document(db, "payment", Payment(order_id=order_id, user_id=user_id, amount=total, method=payment_method))
    clear_cart(db, user_id)
    logger.info("order_created", order_id=order_id, order_number=order.order_number, user_id=user_id,
                total=total, payment_method=payment_method)
    return present_orders(db, [db["order"].find_one({"_id": to_object_id(order_id)})])[0]


def get_order(db: Database, order_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
    order = get_order_doc(db, order_id)
    if not (_is_owner(order, actor) or _is_admin(actor)):
        raise AuthorizationError("Not allowed to view this order")
    return present_orders(db, [order])[0]


def list_for_user(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return present_orders(db, get_documents(db, "order", {"user_id": user_id}, sort=[("created_at", DESCENDING)]))


def list_all(db: Database, actor: Dict[str, Any]) -> List[Dict[str, Any]]:
    _require_admin(actor)
    return present_orders(db, get_documents(db, "order", sort=[("created_at", DESCENDING)]))


def mark_paid(db: Database, order_id: str, transaction_ref: Optional[str] = None,
              actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Record a captured payment. Capture itself happens outside this service."""
    order = get_order_doc(db, order_id)
    if actor is not None and not (_is_owner(order, actor) or _is_admin(actor)):
        raise AuthorizationError("Not allowed to update this order")
    now = utcnow()
    update: Dict[str, Any] = {"payment_status": "paid", "paid_at": now, "updated_at": now}
    if transaction_ref:
        update["payment_transaction_id"] = transaction_ref
    db["order"].update_one({"_id": order["_id"]}, {"$set": update})
    db["payment"].update_one(
        {"order_id": str(order["_id"])},
        {"$set": {"status": "paid", "transaction_id": transaction_ref, "paid_at": now, "updated_at": now}},
    )
    logger.info("order_paid", order_id=order_id, order_number=order["order_number"])
    return _reload(db, order)


def update_status(db: Database, order_id: str, new_status: str, actor: Dict[str, Any]) -> Dict[str, Any]:
    _require_admin(actor)
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ORDER_STATUSES)}")
    order = get_order_doc(db, order_id)
    now = utcnow()
    update: Dict[str, Any] = {"status": new_status, "updated_at": now}
    if new_status == "shipped" and not order.get("shipped_at"):
        update["shipped_at"] = now
    if new_status == "delivered" and not order.get("delivered_at"):
        update["delivered_at"] = now
    if new_status == "cancelled" and not order.get("cancelled_at"):
        update["cancelled_at"] = now
    db["order"].update_one({"_id": order["_id"]}, {"$set": update})
    logger.info("order_status_updated", order_id=order_id, old=order.get("status"), new=new_status)
    return _reload(db, order)


def cancel_order(db: Database, order_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
    order = get_order_doc(db, order_id)
    if not (_is_owner(order, actor) or _is_admin(actor)):
        raise AuthorizationError("Not allowed to cancel this order")
    if order.get("status") not in CANCELLABLE:
        raise ConflictError(f"Cannot cancel an order that is {order.get('status')}")
    now = utcnow()
    result = db["order"].update_one(
        {"_id": order["_id"], "status": {"$in": list(CANCELLABLE)}},
        {"$set": {"status": "cancelled", "cancelled_at": now, "updated_at": now}},
    )
    if result.modified_count == 0:
        raise ConflictError("Order can no longer be cancelled")
    logger.info("order_cancelled", order_id=order_id, by=actor.get("id"))
    return _reload(db, order)


def add_tracking(db: Database, order_id: str, tracking_number: str, actor: Dict[str, Any]) -> Dict[str, Any]:
    _require_admin(actor)
    tracking_number = (tracking_number or "").strip()
    if not tracking_number:
        raise ValidationError("Tracking number is required")
    order = get_order_doc(db, order_id)
    now = utcnow()
    update: Dict[str, Any] = {"tracking_number": tracking_number, "updated_at": now}
    if order.get("status") in CANCELLABLE:
        update["status"] = "shipped"
        update["shipped_at"] = now
    db["order"].update_one({"_id": order["_id"]}, {"$set": update})
    logger.info("order_tracking_added", order_id=order_id)
    return _reload(db, order)


# Routes

router = APIRouter(prefix="/orders", tags=["orders"])


class CreateOrderIn(BaseModel):
    shipping_address: Dict[str, Any]
    payment_method: str
    items: Optional[List[CartItem]] = None
    notes: Optional[str] = None


class PaymentIn(BaseModel):
    transaction_ref: Optional[str] = None


class StatusIn(BaseModel):
    status: str


class TrackingIn(BaseModel):
    tracking_number: str


@router.post("", status_code=201)
def create_route(payload: CreateOrderIn, current_user: dict = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    return create_order(db, current_user["id"], payload.shipping_address, payload.payment_method,
                        payload.items, payload.notes)


@router.get("")
def list_mine(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return list_for_user(db, current_user["id"])


@router.get("/all")
def list_all_route(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return list_all(db, current_user)


@router.get("/{order_id}")
def get_route(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return get_order(db, order_id, current_user)


@router.put("/{order_id}/cancel")
def cancel_route(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cancel_order(db, order_id, current_user)


@router.put("/{order_id}/payment")
def payment_route(order_id: str, payload: PaymentIn, current_user: dict = Depends(get_current_user),
                  db: Database = Depends(get_db)):
    return mark_paid(db, order_id, payload.transaction_ref, current_user)


@router.put("/{order_id}/status")
def status_route(order_id: str, payload: StatusIn, current_user: dict = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    return update_status(db, order_id, payload.status, current_user)


@router.put("/{order_id}/tracking")
def tracking_route(order_id: str, payload: TrackingIn, current_user: dict = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    return add_tracking(db, order_id, payload.tracking_number, current_user)
