"""
Saved shipping addresses

A user's address book for checkout. At most one address per user is flagged
as the default.
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from errors import NotFoundError, ValidationError
from orders import ADDRESS_FIELDS, validate_shipping_address
from schemas import SavedAddress
from users import get_current_user

logger = structlog.get_logger(__name__)


def _get_doc(db: Database, address_id: str, user_id: str) -> Dict[str, Any]:
    doc = db["shippingaddress"].find_one({"_id": to_object_id(address_id, "address id"), "user_id": user_id})
    if not doc:
        raise NotFoundError("Address not found")
    return doc


def _clear_default(db: Database, user_id: str, keep_id=None):
    query: Dict[str, Any] = {"user_id": user_id}
    if keep_id is not None:
        query["_id"] = {"$ne": keep_id}
    db["shippingaddress"].update_many(query, {"$set": {"is_default": False}})


def create_address(db: Database, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    address = validate_shipping_address(data)
    is_default = bool(data.get("is_default"))
    if is_default:
        _clear_default(db, user_id)
    saved = SavedAddress(**address.model_dump(), user_id=user_id, is_default=is_default, label=data.get("label"))
    address_id = create_document(db, "shippingaddress", saved)
    logger.info("address_saved", user_id=user_id, address_id=address_id)
    return get_address(db, address_id, user_id)


def list_addresses(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["shippingaddress"].find({"user_id": user_id}).sort([("is_default", DESCENDING), ("created_at", DESCENDING)])
    return [serialize_doc(d) for d in cursor]


def get_address(db: Database, address_id: str, user_id: str) -> Dict[str, Any]:
    return serialize_doc(_get_doc(db, address_id, user_id))


def default_address(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    doc = db["shippingaddress"].find_one({"user_id": user_id, "is_default": True})
    return serialize_doc(doc) if doc else None


def update_address(db: Database, address_id: str, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = _get_doc(db, address_id, user_id)
    update: Dict[str, Any] = {}
    for field in ADDRESS_FIELDS + ("country",):
        if field in data and data[field] is not None:
            value = str(data[field]).strip()
            if not value:
                raise ValidationError(f"Shipping address field '{field}' is required")
            update[field] = value
    if "label" in data:
        update["label"] = data["label"]
    if data.get("is_default") is not None:
        update["is_default"] = bool(data["is_default"])
        if update["is_default"]:
            _clear_default(db, user_id, keep_id=doc["_id"])
    if not update:
        raise ValidationError("No fields to update")
    update["updated_at"] = utcnow()
    db["shippingaddress"].update_one({"_id": doc["_id"]}, {"$set": update})
    return get_address(db, address_id, user_id)


def delete_address(db: Database, address_id: str, user_id: str) -> Dict[str, Any]:
    doc = _get_doc(db, address_id, user_id)
    db["shippingaddress"].delete_one({"_id": doc["_id"]})
    logger.info("address_deleted", user_id=user_id, address_id=address_id)
    return serialize_doc(doc)


# Routes

router = APIRouter(prefix="/orders/addresses", tags=["addresses"])


class AddressIn(BaseModel):
    full_name: str
    phone: str
    address: str
    city: str
    state: str
    zip_code: str
    country: Optional[str] = None
    is_default: bool = False
    label: Optional[str] = None


class AddressUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None
    label: Optional[str] = None


@router.post("", status_code=201)
def create_route(data: AddressIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return create_address(db, current_user["id"], data.model_dump())


@router.get("")
def list_route(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return list_addresses(db, current_user["id"])


@router.get("/default")
def default_route(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    address = default_address(db, current_user["id"])
    if address is None:
        raise NotFoundError("No default address")
    return address


@router.get("/{address_id}")
def get_route(address_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return get_address(db, address_id, current_user["id"])


@router.put("/{address_id}")
def update_route(address_id: str, data: AddressUpdate, current_user: dict = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    return update_address(db, address_id, current_user["id"], data.model_dump(exclude_unset=True))


@router.delete("/{address_id}")
def delete_route(address_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return delete_address(db, address_id, current_user["id"])
