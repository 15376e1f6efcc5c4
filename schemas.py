"""
Database Schemas

Each Pydantic model in the first half represents a MongoDB collection; the
model name lowercased is the collection name. References to other documents
are stored as id strings.

The second half holds the public shapes returned by the API, which the typed
client validates responses against.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["card", "mobile_banking", "cash_on_delivery"]
PaymentStatus = Literal["pending", "paid"]

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("card", "mobile_banking", "cash_on_delivery")
ROLES = ("user", "admin")


# -----------------
# Core Collections
# -----------------

class User(BaseModel):
    email: EmailStr = Field(..., description="Lowercased, unique")
    password_hash: str = Field(..., description="BCrypt hashed password")
    name: Optional[str] = Field(None, description="Display name")
    username: Optional[str] = Field(None, description="Unique handle")
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    phone: Optional[str] = None
    studio: Optional[str] = Field(None, description="Studio address")
    role: Role = "user"


class Comment(BaseModel):
    user_id: str
    text: str
    created_at: datetime


class Artwork(BaseModel):
    title: str
    description: str
    image_url: str
    artist_id: str = Field(..., description="Creator; never changes")
    owner_id: Optional[str] = Field(None, description="Buyer once sold")
    price: Optional[float] = Field(None, gt=0)
    for_sale: bool = False
    sold: bool = False
    sold_at: Optional[datetime] = None
    likes: int = Field(0, ge=0)
    liked_by: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)


class Purchase(BaseModel):
    """Immediate single-artwork sale recorded by the buy flow."""
    artwork_id: str
    buyer_id: str
    seller_id: str
    price: float = Field(..., gt=0)
    status: str = "completed"


class CartItem(BaseModel):
    artwork_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field("Ethiopia", min_length=1)


class SavedAddress(ShippingAddress):
    """Collection: "shippingaddress" """
    user_id: str
    is_default: bool = False
    label: Optional[str] = Field(None, description="e.g. Home, Work, Studio")


class OrderItem(BaseModel):
    artwork_id: str
    title: str = Field(..., description="Title snapshot")
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at time of order")
    subtotal: float = Field(..., ge=0)
    seller_id: str


class Order(BaseModel):
    order_number: str
    user_id: str
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    payment_transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    status: OrderStatus = "pending"
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None


class Payment(BaseModel):
    order_id: str
    user_id: str
    amount: float = Field(..., ge=0)
    method: PaymentMethod
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class PasswordReset(BaseModel):
    user_id: str
    token_hash: str = Field(..., description="SHA-256 of the emailed token")
    expires_at: datetime
    used: bool = False


# --------------------
# API response shapes
# --------------------

class UserPublic(BaseModel):
    id: str
    email: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None


class UserProfile(UserPublic):
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    phone: Optional[str] = None
    studio: Optional[str] = None
    role: Role = "user"
    created_at: Optional[datetime] = None


class CommentOut(BaseModel):
    user: Optional[UserPublic] = None
    text: str
    created_at: datetime


class ArtworkOut(BaseModel):
    id: str
    title: str
    description: str
    image_url: str
    artist: Optional[UserPublic] = None
    owner: Optional[UserPublic] = None
    price: Optional[float] = None
    for_sale: bool = False
    sold: bool = False
    likes: int = 0
    liked_by: List[str] = Field(default_factory=list)
    comments: List[CommentOut] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class CartLineOut(BaseModel):
    artwork: ArtworkOut
    quantity: int = Field(..., ge=1)


class CartOut(BaseModel):
    user_id: str
    items: List[CartLineOut] = Field(default_factory=list)
    total_price: float = 0
    total_items: int = 0


class OrderOut(Order):
    id: str
    created_at: Optional[datetime] = None


class SavedAddressOut(SavedAddress):
    id: str


class PurchaseOut(BaseModel):
    id: str
    artwork: Optional[ArtworkOut] = None
    buyer: Optional[UserPublic] = None
    seller: Optional[UserPublic] = None
    price: float
    status: str
    created_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserProfile


class DashboardStats(BaseModel):
    total_users: int
    total_artworks: int
    total_orders: int
    pending_orders: int
    completed_orders: int
    total_revenue: float
    paid_revenue: float = 0


class SalesReport(BaseModel):
    total_orders: int
    pending_orders: int
    completed_orders: int
    total_revenue: float
    paid_revenue: float = 0
    orders: List[OrderOut]
