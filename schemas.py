"""
Database Schemas

Storefront collections, one Pydantic model per collection:
- Product -> "products" collection
- Order -> "orders" collection
- Subscriber -> "subscribers" collection
- StoreSettings -> "settings" collection (single "store" document)
- MailMessage -> "mail" collection (outgoing notification queue)

Money is always an integer number of cents.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

UNLIMITED_INVENTORY = -1

ProductCategory = Literal["physical", "digital", "service"]
OrderStatus = Literal["paid", "fulfilled", "shipped", "delivered", "refunded"]
ORDER_STATUSES = ("paid", "fulfilled", "shipped", "delivered", "refunded")


class Product(BaseModel):
    """
    Items for sale
    Collection: products
    """
    name: str = Field(..., description="Product name")
    slug: Optional[str] = Field(None, description="URL slug derived from the name")
    price: int = Field(..., ge=0, description="Price in cents")
    compare_at_price: Optional[int] = Field(None, ge=0, description="Original price in cents")
    category: ProductCategory = Field("physical", description="physical | digital | service")
    subcategory: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Ordered image URLs")
    inventory: int = Field(UNLIMITED_INVENTORY, description="Units on hand, -1 for unlimited")
    digital_file_url: Optional[str] = Field(None, description="Download URL for digital goods")
    is_active: bool = Field(True, description="Visible and purchasable")
    is_featured: bool = False

    @field_validator("inventory")
    @classmethod
    def _inventory_floor(cls, v: int) -> int:
        if v != UNLIMITED_INVENTORY and v < 0:
            raise ValueError("inventory must be -1 (unlimited) or >= 0")
        return v


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: int = Field(..., ge=0, description="Unit price in cents")
    quantity: int = Field(..., ge=1)
    category: ProductCategory = "physical"


class Address(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class Order(BaseModel):
    """
    Paid orders, one per payment session
    Collection: orders
    """
    payment_session_id: str = Field(..., description="Payment provider session id")
    payment_intent_id: Optional[str] = None
    customer_email: str = ""
    customer_name: str = ""
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: int = Field(0, ge=0, description="Subtotal in cents")
    shipping: int = Field(0, ge=0, description="Shipping in cents")
    total: int = Field(0, ge=0, description="Total in cents")
    status: OrderStatus = "paid"
    shipping_address: Optional[Address] = None
    shipping_name: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_carrier: Optional[str] = None
    digital_delivered: bool = False
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Subscriber(BaseModel):
    """
    Newsletter / SMS subscribers
    Collection: subscribers
    """
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    active: bool = True
    sms_opt_in: bool = False


class StoreSettings(BaseModel):
    """
    Store-wide settings
    Collection: settings (document id "store")
    """
    shipping_rate: int = Field(0, ge=0, description="Flat shipping in cents")
    free_shipping_threshold: int = Field(0, ge=0, description="Free shipping from this subtotal, 0 = never")
    tax_rate: float = Field(0, ge=0)
    store_enabled: bool = True


class MailMessage(BaseModel):
    """
    Queued outgoing email
    Collection: mail
    """
    to: str
    subject: str
    html: str
    delivered: bool = False
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None


# Collections the admin surface may manage through the generic CRUD routes.
# Orders are excluded: they are only created by payment reconciliation.
ADMIN_COLLECTIONS = {
    "products": Product,
    "events": None,
    "gallery": None,
    "partners": None,
    "subscribers": Subscriber,
}
