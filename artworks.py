"""
Artwork catalog

Listings, likes, comments and the for-sale/sold transitions. `buy` is the
immediate single-artwork sale; the cart/order checkout lives in orders.py.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import Artwork, Purchase
from users import get_current_user, users_by_ids

logger = structlog.get_logger(__name__)


def populate_artworks(db: Database, docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize artworks with artist, owner and comment authors filled in."""
    docs = list(docs)
    user_ids = set()
    for d in docs:
        user_ids.add(d.get("artist_id"))
        user_ids.add(d.get("owner_id"))
        user_ids.update(c.get("user_id") for c in d.get("comments", []))
    users = users_by_ids(db, user_ids)

    out = []
    for d in docs:
        item = serialize_doc(d)
        item["artist"] = users.get(d.get("artist_id"))
        item["owner"] = users.get(d.get("owner_id"))
        item["comments"] = [
            {"user": users.get(c.get("user_id")), "user_id": c.get("user_id"),
             "text": c.get("text"), "created_at": serialize_doc(c.get("created_at"))}
            for c in d.get("comments", [])
        ]
        out.append(item)
    return out


def populate_artwork(db: Database, doc: Dict[str, Any]) -> Dict[str, Any]:
    return populate_artworks(db, [doc])[0]


def get_artwork_doc(db: Database, artwork_id: str) -> Dict[str, Any]:
    doc = db["artwork"].find_one({"_id": to_object_id(artwork_id, "artwork id")})
    if not doc:
        raise NotFoundError("Artwork not found")
    return doc


def assert_purchasable(doc: Dict[str, Any]):
    if doc.get("sold"):
        raise ConflictError(f"Artwork '{doc.get('title')}' is already sold")
    if not doc.get("for_sale") or not doc.get("price"):
        raise ConflictError(f"Artwork '{doc.get('title')}' is not for sale")


def create_artwork(db: Database, artist_id: str, title: str, description: str, image_url: str,
                   price: Optional[float] = None) -> Dict[str, Any]:
    title, description, image_url = (title or "").strip(), (description or "").strip(), (image_url or "").strip()
    if not title or not description or not image_url:
        raise ValidationError("Title, description and image are required")
    listed = price is not None and price > 0
    artwork = Artwork(
        title=title,
        description=description,
        image_url=image_url,
        artist_id=artist_id,
        price=float(price) if listed else None,
        for_sale=listed,
    )
    artwork_id = create_document(db, "artwork", artwork)
    logger.info("artwork_created", artwork_id=artwork_id, artist_id=artist_id, for_sale=listed)
    return get_artwork(db, artwork_id)


def list_artworks(db: Database, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    docs = db["artwork"].find(filter_dict or {}).sort("created_at", DESCENDING)
    return populate_artworks(db, docs)


def list_for_sale(db: Database) -> List[Dict[str, Any]]:
    return list_artworks(db, {"for_sale": True, "sold": False})


def get_artwork(db: Database, artwork_id: str) -> Dict[str, Any]:
    return populate_artwork(db, get_artwork_doc(db, artwork_id))


def toggle_like(db: Database, artwork_id: str, user_id: str) -> Dict[str, Any]:
    doc = get_artwork_doc(db, artwork_id)
    # Each branch only matches when the membership is as expected, so the
    # counter and the set cannot drift apart.
    result = db["artwork"].update_one(
        {"_id": doc["_id"], "liked_by": user_id},
        {"$pull": {"liked_by": user_id}, "$inc": {"likes": -1}},
    )
    if result.modified_count == 0:
        db["artwork"].update_one(
            {"_id": doc["_id"], "liked_by": {"$ne": user_id}},
            {"$addToSet": {"liked_by": user_id}, "$inc": {"likes": 1}},
        )
    return get_artwork(db, artwork_id)


def add_comment(db: Database, artwork_id: str, user_id: str, text: str) -> Dict[str, Any]:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text is required")
    doc = get_artwork_doc(db, artwork_id)
    db["artwork"].update_one(
        {"_id": doc["_id"]},
        {"$push": {"comments": {"user_id": user_id, "text": text, "created_at": utcnow()}}},
    )
    return get_artwork(db, artwork_id)


def put_for_sale(db: Database, artwork_id: str, owner_id: str, price: Optional[float]) -> Dict[str, Any]:
    doc = get_artwork_doc(db, artwork_id)
    if doc["artist_id"] != owner_id:
        raise AuthorizationError("Only the artist can sell this artwork")
    if price is None or price <= 0:
        raise ValidationError("Price must be a positive number")
    if doc.get("sold"):
        raise ConflictError("Artwork already sold")
    db["artwork"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"for_sale": True, "price": float(price), "updated_at": utcnow()}},
    )
    logger.info("artwork_listed", artwork_id=artwork_id, price=price)
    return get_artwork(db, artwork_id)


def remove_from_sale(db: Database, artwork_id: str, owner_id: str) -> Dict[str, Any]:
    doc = get_artwork_doc(db, artwork_id)
    if doc["artist_id"] != owner_id:
        raise AuthorizationError("Only the artist can modify this artwork")
    if doc.get("sold"):
        raise ConflictError("Artwork already sold")
    db["artwork"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"for_sale": False, "price": None, "updated_at": utcnow()}},
    )
    logger.info("artwork_unlisted", artwork_id=artwork_id)
    return get_artwork(db, artwork_id)


def buy_artwork(db: Database, artwork_id: str, buyer_id: str) -> Dict[str, Any]:
    doc = get_artwork_doc(db, artwork_id)
    if doc["artist_id"] == buyer_id:
        raise AuthorizationError("Cannot buy your own artwork")
    assert_purchasable(doc)

    now = utcnow()
    # Conditional write: of two racing buyers only one matches.
    updated = db["artwork"].find_one_and_update(
        {"_id": doc["_id"], "for_sale": True, "sold": False},
        {"$set": {"sold": True, "for_sale": False, "owner_id": buyer_id, "sold_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Artwork already sold")

    purchase = Purchase(artwork_id=artwork_id, buyer_id=buyer_id, seller_id=doc["artist_id"], price=doc["price"])
    purchase_id = create_document(db, "purchase", purchase)
    logger.info("artwork_bought", artwork_id=artwork_id, buyer_id=buyer_id, purchase_id=purchase_id)
    return populate_artwork(db, updated)


def _populate_purchases(db: Database, docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    docs = list(docs)
    users = users_by_ids(db, [d["buyer_id"] for d in docs] + [d["seller_id"] for d in docs])
    art_ids = [to_object_id(d["artwork_id"], "artwork id") for d in docs]
    artworks = {a["id"]: a for a in populate_artworks(db, db["artwork"].find({"_id": {"$in": art_ids}}))}
    out = []
    for d in docs:
        item = serialize_doc(d)
        item["artwork"] = artworks.get(d["artwork_id"])
        item["buyer"] = users.get(d["buyer_id"])
        item["seller"] = users.get(d["seller_id"])
        out.append(item)
    return out


def user_purchases(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return _populate_purchases(db, db["purchase"].find({"buyer_id": user_id}).sort("created_at", DESCENDING))


def user_sales(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return _populate_purchases(db, db["purchase"].find({"seller_id": user_id}).sort("created_at", DESCENDING))


# Routes

router = APIRouter(prefix="/artworks", tags=["artworks"])


class ArtworkIn(BaseModel):
    title: str
    description: str
    image_url: str
    price: Optional[float] = None


class CommentIn(BaseModel):
    text: str


class SellIn(BaseModel):
    price: Optional[float] = None


@router.post("", status_code=201)
def create_route(data: ArtworkIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return create_artwork(db, current_user["id"], data.title, data.description, data.image_url, data.price)


@router.get("")
def list_route(db: Database = Depends(get_db)):
    return list_artworks(db)


@router.get("/for-sale")
def for_sale_route(db: Database = Depends(get_db)):
    return list_for_sale(db)


@router.get("/my-purchases")
def my_purchases(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return user_purchases(db, current_user["id"])


@router.get("/my-sales")
def my_sales(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return user_sales(db, current_user["id"])


@router.get("/{artwork_id}")
def get_route(artwork_id: str, db: Database = Depends(get_db)):
    return get_artwork(db, artwork_id)


@router.put("/{artwork_id}/like")
def like_route(artwork_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return toggle_like(db, artwork_id, current_user["id"])


@router.post("/{artwork_id}/comment")
def comment_route(artwork_id: str, data: CommentIn, current_user: dict = Depends(get_current_user),
                  db: Database = Depends(get_db)):
    return add_comment(db, artwork_id, current_user["id"], data.text)


@router.put("/{artwork_id}/sell")
def sell_route(artwork_id: str, data: SellIn, current_user: dict = Depends(get_current_user),
               db: Database = Depends(get_db)):
    return put_for_sale(db, artwork_id, current_user["id"], data.price)


@router.put("/{artwork_id}/remove-sale")
def remove_sale_route(artwork_id: str, current_user: dict = Depends(get_current_user),
                      db: Database = Depends(get_db)):
    return remove_from_sale(db, artwork_id, current_user["id"])


@router.post("/{artwork_id}/buy")
def buy_route(artwork_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return buy_artwork(db, artwork_id, current_user["id"])
