"""
Admin operations

Privileged reads, updates and hard deletes across users, artworks and orders,
plus reporting. Every route requires role admin.

Delete policy: removing a user drops their cart, saved addresses and reset
tokens; their artworks, purchases and orders stay as provenance. Removing an
artwork drops it from every cart; orders and purchases keep their snapshots.
"""

from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from artworks import get_artwork, get_artwork_doc, list_artworks
from database import as_utc, get_db, utcnow
from errors import ConflictError, ValidationError
from orders import get_order, list_all, present_orders
from schemas import ROLES, DashboardStats, SalesReport
from users import PROFILE_FIELDS, get_user, require_admin, user_profile, username_taken

logger = structlog.get_logger(__name__)


# Users

def list_users(db: Database) -> List[Dict[str, Any]]:
    return [user_profile(u) for u in db["user"].find().sort("created_at", DESCENDING)]


def get_user_profile(db: Database, user_id: str) -> Dict[str, Any]:
    return user_profile(get_user(db, user_id))


def update_user(db: Database, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    user = get_user(db, user_id)
    update = {k: v for k, v in data.items() if k in PROFILE_FIELDS or k == "role"}
    if "role" in update and update["role"] not in ROLES:
        raise ValidationError("Invalid role")
    if "username" in update:
        username = (update["username"] or "").strip()
        if not username:
            raise ValidationError("Username cannot be empty")
        if username_taken(db, username, exclude_id=user["_id"]):
            raise ValidationError("Username already taken")
        update["username"] = username
    if not update:
        raise ValidationError("No fields to update")
    update["updated_at"] = utcnow()
    try:
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise ValidationError("Username already taken")
    logger.info("admin_user_updated", user_id=user_id, fields=sorted(update))
    return get_user_profile(db, user_id)


def update_user_role(db: Database, user_id: str, role: str) -> Dict[str, Any]:
    if role not in ROLES:
        raise ValidationError("Invalid role")
    user = get_user(db, user_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role, "updated_at": utcnow()}})
    logger.info("admin_role_changed", user_id=user_id, role=role)
    return get_user_profile(db, user_id)


def delete_user(db: Database, user_id: str) -> Dict[str, str]:
    user = get_user(db, user_id)
    db["user"].delete_one({"_id": user["_id"]})
    db["cart"].delete_many({"user_id": user_id})
    db["shippingaddress"].delete_many({"user_id": user_id})
    db["passwordreset"].delete_many({"user_id": user_id})
    logger.info("admin_user_deleted", user_id=user_id)
    return {"message": "User deleted successfully"}


# Artworks

def update_artwork(db: Database, artwork_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = get_artwork_doc(db, artwork_id)
    update: Dict[str, Any] = {}
    for field in ("title", "description", "image_url"):
        if data.get(field) is not None:
            value = str(data[field]).strip()
            if not value:
                raise ValidationError(f"{field} cannot be empty")
            update[field] = value
    price = data.get("price", doc.get("price"))
    for_sale = data.get("for_sale", doc.get("for_sale"))
    if "price" in data or "for_sale" in data:
        if for_sale and doc.get("sold"):
            raise ConflictError("Artwork already sold")
        if for_sale and (price is None or price <= 0):
            raise ValidationError("Price must be a positive number")
        if price is not None and price <= 0:
            raise ValidationError("Price must be a positive number")
        update["for_sale"] = bool(for_sale)
        update["price"] = float(price) if price is not None else None
    if not update:
        raise ValidationError("No fields to update")
    update["updated_at"] = utcnow()
    db["artwork"].update_one({"_id": doc["_id"]}, {"$set": update})
    logger.info("admin_artwork_updated", artwork_id=artwork_id, fields=sorted(update))
    return get_artwork(db, artwork_id)


def delete_artwork(db: Database, artwork_id: str) -> Dict[str, str]:
    doc = get_artwork_doc(db, artwork_id)
    artwork_id = str(doc["_id"])
    db["artwork"].delete_one({"_id": doc["_id"]})
    for cart in db["cart"].find({"items.artwork_id": artwork_id}):
        items = [it for it in cart.get("items", []) if it["artwork_id"] != artwork_id]
        db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": utcnow()}})
    logger.info("admin_artwork_deleted", artwork_id=artwork_id)
    return {"message": "Artwork deleted successfully"}


# Reporting

def _revenue(orders: List[Dict[str, Any]]) -> float:
    return round(sum(o.get("total", 0) for o in orders), 2)


def _paid_revenue(orders: List[Dict[str, Any]]) -> float:
    return round(sum(o.get("total", 0) for o in orders if o.get("payment_status") == "paid"), 2)


def dashboard_stats(db: Database) -> Dict[str, Any]:
    orders = list(db["order"].find({}, {"total": 1, "status": 1, "payment_status": 1}))
    return {
        "total_users": db["user"].count_documents({}),
        "total_artworks": db["artwork"].count_documents({}),
        "total_orders": len(orders),
        "pending_orders": sum(1 for o in orders if o.get("status") == "pending"),
        "completed_orders": sum(1 for o in orders if o.get("status") == "delivered"),
        "total_revenue": _revenue(orders),
        "paid_revenue": _paid_revenue(orders),
    }


def sales_report(db: Database, start_date: Optional[datetime] = None,
                 end_date: Optional[datetime] = None) -> Dict[str, Any]:
    """Orders created within [start_date, end_date] with aggregate figures.

    An end date given at midnight covers that whole day.
    """
    start = as_utc(start_date)
    end = as_utc(end_date)
    if end is not None and end.time() == time(0, 0):
        end = end + timedelta(days=1) - timedelta(microseconds=1)
    if start and end and start > end:
        raise ValidationError("start_date must be before end_date")

    orders = []
    for o in db["order"].find().sort("created_at", DESCENDING):
        created = as_utc(o.get("created_at"))
        if start and created < start:
            continue
        if end and created > end:
            continue
        orders.append(o)
    return {
        "total_orders": len(orders),
        "pending_orders": sum(1 for o in orders if o.get("status") == "pending"),
        "completed_orders": sum(1 for o in orders if o.get("status") == "delivered"),
        "total_revenue": _revenue(orders),
        "paid_revenue": _paid_revenue(orders),
        "orders": present_orders(db, orders),
    }


# Routes

router = APIRouter(prefix="/admin", tags=["admin"])


class RoleIn(BaseModel):
    role: str


class UserUpdate(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    phone: Optional[str] = None
    studio: Optional[str] = None
    role: Optional[str] = None


class ArtworkUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[float] = None
    for_sale: Optional[bool] = None


@router.get("/dashboard", response_model=DashboardStats)
def dashboard_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return dashboard_stats(db)


@router.get("/users")
def users_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return list_users(db)


@router.get("/users/{user_id}")
def user_route(user_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return get_user_profile(db, user_id)


@router.put("/users/{user_id}")
def update_user_route(user_id: str, data: UserUpdate, admin: dict = Depends(require_admin),
                      db: Database = Depends(get_db)):
    return update_user(db, user_id, data.model_dump(exclude_unset=True))


@router.put("/users/{user_id}/role")
def role_route(user_id: str, data: RoleIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return update_user_role(db, user_id, data.role)


@router.delete("/users/{user_id}")
def delete_user_route(user_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return delete_user(db, user_id)


@router.get("/artworks")
def artworks_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return list_artworks(db)


@router.get("/artworks/{artwork_id}")
def artwork_route(artwork_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return get_artwork(db, artwork_id)


@router.put("/artworks/{artwork_id}")
def update_artwork_route(artwork_id: str, data: ArtworkUpdate, admin: dict = Depends(require_admin),
                         db: Database = Depends(get_db)):
    return update_artwork(db, artwork_id, data.model_dump(exclude_unset=True))


@router.delete("/artworks/{artwork_id}")
def delete_artwork_route(artwork_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return delete_artwork(db, artwork_id)


@router.get("/orders")
def orders_route(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return list_all(db, admin)


@router.get("/orders/{order_id}")
def order_route(order_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return get_order(db, order_id, admin)


@router.get("/reports/sales", response_model=SalesReport)
def sales_route(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return sales_report(db, start_date, end_date)
