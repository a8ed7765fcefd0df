"""Pydantic schemas shared by the service core and the API."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class QuantityType(str, Enum):
    UNIT = "unit"
    KG = "kg"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PREPARING = "In Preparation"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


_REQUIRED_COLUMNS = frozenset({"name", "image_url", "quantity_type", "is_visible"})


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ProductBase(CamelModel):
    name: str
    description: str | None = None
    price: float | None = Field(default=None, ge=0, description="Per item or per kilogram.")
    image_url: str = Field(..., description="Remote URL or inlined data URL.")
    barcode: str | None = None
    quantity_type: QuantityType = QuantityType.UNIT
    stock: float | None = Field(default=None, ge=0, description="Absent means untracked.")
    is_visible: bool = True

    @field_validator("is_visible", mode="before")
    @classmethod
    def _default_visible(cls, value: object) -> object:
        return True if value is None else value

    @field_validator("quantity_type", mode="before")
    @classmethod
    def _default_quantity_type(cls, value: object) -> object:
        return QuantityType.UNIT if value is None else value


class ProductCreate(ProductBase):
    pass


class Product(ProductBase):
    id: str


class ProductPatch(CamelModel):
    """Partial product; only explicitly set fields are applied."""

    id: str | None = None
    name: str | None = None
    description: str | None = None
    price: float | None = Field(default=None, ge=0)
    image_url: str | None = None
    barcode: str | None = None
    quantity_type: QuantityType | None = None
    stock: float | None = Field(default=None, ge=0)
    is_visible: bool | None = None

    def changes(self) -> dict:
        """Return the set fields, excluding ``id``, keyed by column name."""

        changes = self.model_dump(mode="json", exclude_unset=True, exclude={"id"})
        return {
            key: value
            for key, value in changes.items()
            if value is not None or key not in _REQUIRED_COLUMNS
        }


class OrderItem(CamelModel):
    product: Product
    quantity: float = Field(..., gt=0)

    @model_validator(mode="after")
    def _whole_units(self) -> "OrderItem":
        if self.product.quantity_type == QuantityType.UNIT and not float(self.quantity).is_integer():
            raise ValueError("quantity must be a whole number for unit products")
        return self


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Order(CamelModel):
    id: str
    store_name: str
    user_email: str
    items: list[OrderItem] = Field(..., min_length=1)
    order_date: datetime
    status: OrderStatus = OrderStatus.PENDING
    total_amount: float | None = None

    @field_validator("order_date")
    @classmethod
    def _normalize_order_date(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def computed_total(self) -> float:
        if self.total_amount is not None:
            return self.total_amount
        return round(
            sum((item.product.price or 0) * item.quantity for item in self.items), 2
        )


class OrderLine(CamelModel):
    """A requested product and quantity; the snapshot is taken from the catalog."""

    product_id: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)


class OrderSubmission(CamelModel):
    items: list[OrderLine] = Field(..., min_length=1)


class StatusUpdate(CamelModel):
    status: OrderStatus


class ReconciliationSummary(CamelModel):
    updated: dict[str, float] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class StatusChangeOut(CamelModel):
    order: Order
    reconciliation: ReconciliationSummary | None = None


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1)
    store_name: str = Field(..., min_length=1)


class UserSession(CamelModel):
    email: str
    store_name: str
    is_admin: bool = False


class NotificationStatus(CamelModel):
    has_new_pending_orders: bool
    last_viewed_at: datetime | None = None


class ImportSummary(CamelModel):
    imported: int
    total_products: int


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "QuantityType",
    "OrderStatus",
    "ProductCreate",
    "Product",
    "ProductPatch",
    "OrderItem",
    "Order",
    "OrderLine",
    "OrderSubmission",
    "StatusUpdate",
    "ReconciliationSummary",
    "StatusChangeOut",
    "LoginRequest",
    "UserSession",
    "NotificationStatus",
    "ImportSummary",
    "HealthStatus",
]
