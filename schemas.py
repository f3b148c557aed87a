"""
Database Schemas for the baby store

Each Pydantic model represents a MongoDB collection.
Collection name is the snake_case of the class name (CartItem -> "cart_item").
References to other documents are stored as string ids.
"""
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, PlainSerializer

from pricing import format_money

Money = Annotated[
    Decimal,
    Field(ge=0, max_digits=10, decimal_places=2),
    PlainSerializer(format_money, return_type=str),
]

# Computed order amounts; quantity times price can exceed a catalog price
Amount = Annotated[
    Decimal,
    Field(ge=0, decimal_places=2),
    PlainSerializer(format_money, return_type=str),
]

MAX_QUANTITY = 999

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["stripe", "paypal"]


class User(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    sub: Optional[str] = None
    is_admin: bool = False


class Category(BaseModel):
    slug: str = Field(..., min_length=1, description="URL-safe identifier")
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    display_order: int = 0


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Money
    stock_quantity: int = Field(0, ge=0)
    category_id: Optional[str] = None
    image_urls: List[str] = []
    featured: bool = False
    bestseller: bool = False
    safety_certifications: List[str] = []
    age_range: Optional[str] = None
    average_rating: float = 0
    review_count: int = 0


class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1, le=MAX_QUANTITY)


class WishlistItem(BaseModel):
    user_id: str
    product_id: str


class ShippingAddress(BaseModel):
    full_name: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str = "United States"


class OrderItem(BaseModel):
    product_id: str
    product_name: str
    product_price: Money
    quantity: int = Field(..., ge=1)
    subtotal: Amount


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    subtotal: Amount
    shipping: Amount
    tax: Amount
    total_amount: Amount
    status: OrderStatus = "pending"
    payment_method: PaymentMethod
    payment_status: str = "pending"
    shipping_address: ShippingAddress
