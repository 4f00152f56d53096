"""
Database Schemas for the shop checkout & profile backend

Each Pydantic model represents a MongoDB collection.
Class name lowercased = collection name (e.g., Account -> "account"),
except Order, which lives in "orders".
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, EmailStr


class Account(BaseModel):
    """Sign-in identity. Holds the display name/photo shown across the app."""
    email: EmailStr
    password_hash: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class Session(BaseModel):
    token: str
    user_id: str
    created_at: Optional[datetime] = None


class SavedAddress(BaseModel):
    id: str = Field(..., description="Time-based id, milliseconds since epoch")
    address: str


class User(BaseModel):
    """
    Profile document, _id equal to the account _id
    Collection name: "user"
    """
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    points: int = Field(0, ge=0)
    addresses: List[SavedAddress] = []


class CartItem(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []


class OrderItem(BaseModel):
    id: int
    name: str
    description: str
    quantity: int
    price: str


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    items: List[OrderItem]
    total: str
    delivery: str
    payment_method: str
    address: str
    user_id: str
    user_name: str
    status: Literal["Pending", "Paid", "Shipped", "Delivered", "Cancelled"] = "Pending"
    checkout_url: Optional[str] = None


class Photo(BaseModel):
    """
    Profile photo bytes, _id equal to the user id
    Collection name: "photo"
    """
    content_type: str = "image/jpeg"
    data: bytes
