"""
User records

Identity lookups shared by every component, the request dependencies that
resolve the caller, and the /users profile routes.
"""

from typing import Any, Dict, Iterable, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db, serialize_doc, to_object_id, utcnow
from errors import AuthError, AuthorizationError, NotFoundError, ValidationError
from schemas import UserProfile

logger = structlog.get_logger(__name__)

PROFILE_FIELDS = ("name", "username", "bio", "profile_picture", "phone", "studio")


def user_profile(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Full profile of a user document; the password hash never leaves."""
    user = serialize_doc(doc)
    user.pop("password_hash", None)
    return user


def public_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    return {
        "id": str(doc["_id"]),
        "email": doc.get("email"),
        "username": doc.get("username"),
        "name": doc.get("name"),
    }


def find_by_email(db: Database, email: str) -> Optional[Dict[str, Any]]:
    return db["user"].find_one({"email": (email or "").strip().lower()})


def find_by_id(db: Database, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not user_id or not ObjectId.is_valid(user_id):
        return None
    return db["user"].find_one({"_id": ObjectId(user_id)})


def get_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": to_object_id(user_id, "user id")})
    if not user:
        raise NotFoundError("User not found")
    return user


def users_by_ids(db: Database, user_ids: Iterable[Optional[str]]) -> Dict[str, Dict[str, Any]]:
    """Batch lookup used to populate artist/buyer/comment references."""
    oids = {ObjectId(u) for u in user_ids if u and ObjectId.is_valid(u)}
    if not oids:
        return {}
    return {str(u["_id"]): public_user(u) for u in db["user"].find({"_id": {"$in": list(oids)}})}


def username_taken(db: Database, username: str, exclude_id: Optional[ObjectId] = None) -> bool:
    query: Dict[str, Any] = {"username": username}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["user"].find_one(query) is not None


def update_profile(db: Database, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    user = get_user(db, user_id)
    update = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
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
    logger.info("profile_updated", user_id=user_id, fields=sorted(update))
    return user_profile(db["user"].find_one({"_id": user["_id"]}))


# Dependencies

def get_current_user(request: Request, db: Database = Depends(get_db)) -> Dict[str, Any]:
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise AuthError(getattr(request.state, "auth_error", None) or "Not authenticated")
    user = find_by_id(db, identity.user_id)
    if not user:
        raise AuthError("User not found")
    return user_profile(user)


def require_admin(current_user: dict = Depends(get_current_user)) -> Dict[str, Any]:
    if current_user.get("role") != "admin":
        raise AuthorizationError("Admin access required")
    return current_user


# Routes

router = APIRouter(prefix="/users", tags=["users"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    phone: Optional[str] = None
    studio: Optional[str] = None


@router.get("/profile", response_model=UserProfile)
def get_profile(current_user: dict = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=UserProfile)
def put_profile(data: ProfileUpdate, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return update_profile(db, current_user["id"], data.model_dump(exclude_unset=True))
