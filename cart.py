"""
Per-user cart persisted server-side

One document per user: {user_id, items: [{artwork_id, quantity}]}. An artwork
appears at most once; adding it again sums the quantity.
"""

from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.database import Database

from artworks import assert_purchasable, get_artwork_doc, populate_artworks
from database import get_db, to_object_id, utcnow
from errors import NotFoundError, ValidationError
from schemas import Cart
from users import get_current_user

logger = structlog.get_logger(__name__)


def total_price(lines: List[Dict[str, Any]]) -> float:
    return round(sum((line["artwork"].get("price") or 0) * line["quantity"] for line in lines), 2)


def total_items(lines: List[Dict[str, Any]]) -> int:
    return sum(line["quantity"] for line in lines)


def _load_cart(db: Database, user_id: str) -> Dict[str, Any]:
    # Concurrent first requests converge on the one document the unique index allows.
    doc = Cart(user_id=user_id).model_dump()
    doc["created_at"] = doc["updated_at"] = utcnow()
    db["cart"].update_one({"user_id": user_id}, {"$setOnInsert": doc}, upsert=True)
    return db["cart"].find_one({"user_id": user_id})


def _save_items(db: Database, cart: Dict[str, Any], items: List[Dict[str, Any]]):
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": utcnow()}})


def cart_items(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """Raw {artwork_id, quantity} lines, as stored."""
    cart = db["cart"].find_one({"user_id": user_id})
    return list(cart.get("items", [])) if cart else []


def get_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = _load_cart(db, user_id)
    items = cart.get("items", [])
    oids = [to_object_id(it["artwork_id"], "artwork id") for it in items]
    artworks = {a["id"]: a for a in populate_artworks(db, db["artwork"].find({"_id": {"$in": oids}}))} if oids else {}
    # Lines whose artwork has been deleted are left out of the view.
    lines = [
        {"artwork": artworks[it["artwork_id"]], "quantity": int(it["quantity"])}
        for it in items if it["artwork_id"] in artworks
    ]
    return {
        "id": str(cart["_id"]),
        "user_id": user_id,
        "items": lines,
        "total_price": total_price(lines),
        "total_items": total_items(lines),
    }


def add_item(db: Database, user_id: str, artwork_id: str, quantity: int = 1) -> Dict[str, Any]:
    if quantity is None or quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    artwork = get_artwork_doc(db, artwork_id)
    assert_purchasable(artwork)
    artwork_id = str(artwork["_id"])

    cart = _load_cart(db, user_id)
    items = cart.get("items", [])
    for it in items:
        if it["artwork_id"] == artwork_id:
            it["quantity"] = int(it.get("quantity", 1)) + int(quantity)
            break
    else:
        items.append({"artwork_id": artwork_id, "quantity": int(quantity)})
    _save_items(db, cart, items)
    logger.info("cart_item_added", user_id=user_id, artwork_id=artwork_id, quantity=quantity)
    return get_cart(db, user_id)


def update_quantity(db: Database, user_id: str, artwork_id: str, quantity: int) -> Dict[str, Any]:
    if quantity is None or quantity <= 0:
        return remove_item(db, user_id, artwork_id)
    cart = _load_cart(db, user_id)
    items = cart.get("items", [])
    for it in items:
        if it["artwork_id"] == artwork_id:
            it["quantity"] = int(quantity)
            break
    else:
        raise NotFoundError("Item not found in cart")
    _save_items(db, cart, items)
    return get_cart(db, user_id)


def remove_item(db: Database, user_id: str, artwork_id: str) -> Dict[str, Any]:
    cart = _load_cart(db, user_id)
    items = [it for it in cart.get("items", []) if it["artwork_id"] != artwork_id]
    if len(items) != len(cart.get("items", [])):
        _save_items(db, cart, items)
        logger.info("cart_item_removed", user_id=user_id, artwork_id=artwork_id)
    return get_cart(db, user_id)


def clear_cart(db: Database, user_id: str) -> Dict[str, Any]:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": [], "updated_at": utcnow()}, "$setOnInsert": {"created_at": utcnow()}},
        upsert=True,
    )
    return get_cart(db, user_id)


# Routes

router = APIRouter(prefix="/cart", tags=["cart"])


class AddCartItem(BaseModel):
    artwork_id: str
    quantity: int = 1


class UpdateCartItem(BaseModel):
    quantity: int


@router.get("")
def get_cart_route(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return get_cart(db, current_user["id"])


@router.post("/items")
def add_item_route(item: AddCartItem, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return add_item(db, current_user["id"], item.artwork_id, item.quantity)


@router.put("/items/{artwork_id}")
def update_item_route(artwork_id: str, item: UpdateCartItem, current_user: dict = Depends(get_current_user),
                      db: Database = Depends(get_db)):
    return update_quantity(db, current_user["id"], artwork_id, item.quantity)


@router.delete("/items/{artwork_id}")
def remove_item_route(artwork_id: str, current_user: dict = Depends(get_current_user),
                      db: Database = Depends(get_db)):
    return remove_item(db, current_user["id"], artwork_id)


@router.delete("")
def clear_cart_route(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return clear_cart(db, current_user["id"])
