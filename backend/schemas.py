from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, validator


STAFF_ROLES = ["admin", "cashier", "waiter", "kitchen"]


class UserCreate(BaseModel):
    username: str
    password: str
    name: str
    role: str

    @validator("username")
    def validate_username(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Username cannot be empty")
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Username cannot exceed 50 characters")
        return v.strip()

    @validator("password")
    def validate_password(cls, v: str) -> str:
        if not v or len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        return v

    @validator("role")
    def validate_role(cls, v: str) -> str:
        if v not in STAFF_ROLES:
            raise ValueError(f"Role must be one of: {', '.join(STAFF_ROLES)}")
        return v


class CustomerRegister(BaseModel):
    username: str
    password: str
    name: str

    @validator("username", "name")
    def validate_not_blank(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Field cannot be empty")
        return v.strip()

    @validator("password")
    def validate_password(cls, v: str) -> str:
        if not v or len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        return v


class UserResponse(BaseModel):
    id: int
    username: str
    name: str
    role: str


class UserLogin(BaseModel):
    username: str
    password: str


class MenuItemCreate(BaseModel):
    name: str
    price: Decimal
    category: str
    description: Optional[str] = None
    is_available: bool = True

    @validator("name", "category")
    def validate_text(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Field cannot be empty")
        if len(v) > 100:
            raise ValueError("Field cannot exceed 100 characters")
        return v.strip()

    @validator("price")
    def validate_price(cls, v: Decimal) -> Decimal:
        if v < Decimal("0.01"):
            raise ValueError("Price must be at least 0.01")
        if v > Decimal("1000"):
            raise ValueError("Price cannot exceed 1000")
        return v.quantize(Decimal("0.01"))


class MenuItemUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[Decimal] = None
    category: Optional[str] = None
    description: Optional[str] = None
    is_available: Optional[bool] = None

    @validator("price")
    def validate_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is None:
            return v
        if v < Decimal("0.01") or v > Decimal("1000"):
            raise ValueError("Price must be between 0.01 and 1000")
        return v.quantize(Decimal("0.01"))


class MenuItemResponse(BaseModel):
    id: int
    name: str
    price: Decimal
    category: str
    description: Optional[str] = None
    is_available: bool


class CartItemAdd(BaseModel):
    menu_item_id: int
    quantity: int = 1

    @validator("quantity")
    def validate_quantity(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be greater than 0")
        if v > 100:
            raise ValueError("Quantity cannot exceed 100")
        return v


class CartItemAdjust(BaseModel):
    delta: int


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    user_id: Optional[int] = None


class OrderSubmit(BaseModel):
    order_type: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    table_id: Optional[int] = None
    notes: Optional[str] = None


class DeliveryOrderPlace(BaseModel):
    phone: str
    address: str
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str


class PaymentComplete(BaseModel):
    payment_method: str


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: int
    name: str
    price: Decimal
    quantity: int
    line_total: Decimal


class OrderResponse(BaseModel):
    id: int
    order_number: str
    order_type: str
    status: str
    total: Decimal
    customer_name: str
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    table_id: Optional[int] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items: List[OrderItemResponse]


class TableCreate(BaseModel):
    capacity: int
    location: str = "Main Dining"
    table_type: str = "Regular"
    name: Optional[str] = None
    notes: Optional[str] = None
    table_id: Optional[int] = None

    @validator("capacity")
    def validate_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Capacity must be at least 1")
        if v > 50:
            raise ValueError("Capacity cannot exceed 50")
        return v


class TableAssign(BaseModel):
    order_id: int


class TableResponse(BaseModel):
    id: int
    name: Optional[str] = None
    capacity: Optional[int] = None
    location: Optional[str] = None
    table_type: Optional[str] = None
    status: str
    current_order_id: Optional[int] = None


class ReservationCreate(BaseModel):
    customer_name: str
    customer_phone: str
    reserved_for: datetime
    party_size: int = 2
    special_requests: Optional[str] = None

    @validator("party_size")
    def validate_party_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Party size must be at least 1")
        return v
