"""
Database Schemas

MongoDB collection schemas for the marketplace, defined as Pydantic models.
Each top-level model represents a collection; the model name lowercased is
the collection name (User -> "user", Order -> "order").
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    role: str = Field("user", description="Role: user | admin")
    phone: Optional[str] = None
    village: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# -------
# Product
# -------

class ProductCategory(str, Enum):
    seeds = "seeds"
    fertilizers = "fertilizers"
    pesticides = "pesticides"
    equipment = "equipment"
    saplings = "saplings"
    crops = "crops"
    organic_products = "organic-products"
    used_equipment = "used-equipment"
    other = "other"


class ProductType(str, Enum):
    buy = "buy"    # farming essentials
    sell = "sell"  # farm produce


class Unit(str, Enum):
    kg = "kg"
    g = "g"
    piece = "piece"
    liter = "liter"
    packet = "packet"
    ton = "ton"
    quintal = "quintal"
    bundle = "bundle"


class Discount(BaseModel):
    percentage: float = Field(0, ge=0, le=100)
    valid_till: Optional[datetime] = None


class Location(BaseModel):
    village: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class Product(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    title: str = Field(..., min_length=1)
    description: str
    category: ProductCategory
    type: ProductType
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(1, ge=0, description="Units available; never negative")
    unit: Unit
    images: List[str] = Field(default_factory=list)
    seller_id: str = Field(..., description="Owning user _id (string)")
    location: Location = Field(default_factory=Location)
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    views: int = 0
    discount: Discount = Field(default_factory=Discount)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ----
# Cart
# ----

class SelectedVariant(BaseModel):
    weight: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    selected_variant: SelectedVariant = Field(default_factory=SelectedVariant)
    added_at: datetime = Field(default_factory=utcnow)


class Cart(BaseModel):
    user_id: str = Field(..., description="Owner; one cart per user")
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    estimated_total: float = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# -----
# Order
# -----

class OrderStatus(str, Enum):
    placed = "placed"
    confirmed = "confirmed"
    processing = "processing"
    ready_to_ship = "ready_to_ship"
    shipped = "shipped"
    out_for_delivery = "out_for_delivery"
    delivered = "delivered"
    cancelled = "cancelled"
    returned = "returned"


class PaymentMethod(str, Enum):
    cod = "cod"
    upi = "upi"
    razorpay = "razorpay"
    bank_transfer = "bank_transfer"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class OrderItem(BaseModel):
    product_id: str
    title: str = Field(..., description="Product title snapshot")
    price: float = Field(..., ge=0, description="Final unit price at checkout")
    quantity: int = Field(..., ge=1)
    unit: Optional[str] = None
    image: str = ""
    total_price: float = Field(..., ge=0)


class OrderSummary(BaseModel):
    subtotal: float
    delivery_charges: float = 0
    taxes: float = 0
    discount: float = 0
    total_amount: float


class DeliveryAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    village: Optional[str] = None
    district: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    landmark: Optional[str] = None


class PaymentDetails(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.pending
    transaction_id: Optional[str] = None
    upi_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    amount: Optional[float] = None


class StatusEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    status: OrderStatus
    timestamp: datetime = Field(default_factory=utcnow)
    note: str = ""
    updated_by: Optional[str] = None


class OrderStatusBlock(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    current: OrderStatus = OrderStatus.placed
    history: List[StatusEntry] = Field(default_factory=list)


class DeliveryDetails(BaseModel):
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    delivery_partner: Optional[str] = None


class Order(BaseModel):
    order_id: str = Field(..., description="Human readable id, e.g. ORD1718000000000AB12C")
    buyer_id: str
    seller_id: str = Field(..., description="Every order belongs to exactly one seller")
    items: List[OrderItem] = Field(..., min_length=1)
    order_summary: OrderSummary
    delivery_address: DeliveryAddress
    payment_details: PaymentDetails
    order_status: OrderStatusBlock = Field(default_factory=OrderStatusBlock)
    delivery_details: DeliveryDetails = Field(default_factory=DeliveryDetails)
    special_instructions: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
