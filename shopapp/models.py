"""Request payload models for the JSON API."""

from __future__ import annotations

import re
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["unpaid", "paid", "refunded", "failed"]
Role = Literal["admin", "customer"]


# ---------------------------------------------------------------------------
# Catalog / inventory
# ---------------------------------------------------------------------------
class ProductModel(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: str = ""
    category: str = ""
    stock: int = Field(0, ge=0)
    image_url: Optional[str] = None
    is_active: bool = True


class ProductUpdateModel(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class StockModel(BaseModel):
    stock: int = Field(..., ge=0)


class InventoryModel(BaseModel):
    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    product_category: str = ""
    quantity: int = Field(0, ge=0)
    min_stock: int = Field(10, ge=0)
    max_stock: int = Field(1000, ge=0)


class InventoryUpdateModel(BaseModel):
    product_name: Optional[str] = Field(None, min_length=1)
    product_category: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    min_stock: Optional[int] = Field(None, ge=0)
    max_stock: Optional[int] = Field(None, ge=0)


class QuantityModel(BaseModel):
    quantity: int = Field(..., ge=0)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderItemModel(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class ShippingAddressModel(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    address: str = Field(..., min_length=1, max_length=400)
    city: str = Field(..., min_length=1, max_length=120)
    postal_code: str = Field(..., min_length=1, max_length=20)
    phone: str = Field(..., min_length=1, max_length=30)


class OrderCreateModel(BaseModel):
    items: list[OrderItemModel] = Field(..., min_length=1)
    shipping_address: ShippingAddressModel
    payment_method: str = "transfer"
    notes: str = ""


class OrderUpdateModel(BaseModel):
    shipping_address: Optional[ShippingAddressModel] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class OrderStatusModel(BaseModel):
    status: OrderStatus


class PaymentStatusModel(BaseModel):
    payment_status: PaymentStatus


class ConfirmPaymentModel(BaseModel):
    transaction_id: str = ""
    bank_account: str = ""
    slip_image_url: str = ""
    notes: str = ""


# ---------------------------------------------------------------------------
# Payment slips
# ---------------------------------------------------------------------------
class PaymentSlipModel(BaseModel):
    slip_image_url: str = Field(..., min_length=1)
    amount: Optional[float] = Field(None, ge=0)
    transfer_date: str = ""
    transfer_time: str = ""
    from_account: str = ""
    to_account: str = ""
    bank_name: str = ""
    reference_number: str = ""
    transaction_id: str = ""
    notes: str = Field("", max_length=1000)

    @field_validator("from_account", "to_account", mode="before")
    @classmethod
    def keep_account_digits(cls, value) -> str:
        # banking apps print masked numbers such as "xxx-x-x1234-x"
        return re.sub(r"[^0-9xX]", "", str(value or ""))


class SlipRejectModel(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
class RegisterModel(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = ""

    @field_validator("password", mode="before")
    @classmethod
    def normalise_password(cls, value):
        return str(value or "").strip()


class LoginModel(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserUpdateModel(BaseModel):
    name: Optional[str] = None
    is_active: Optional[bool] = None


class RoleModel(BaseModel):
    role: Role
