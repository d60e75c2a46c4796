"""
Database Schemas

MongoDB collection schemas for the storefront, defined as Pydantic models.
Model name lowercased is the collection name:
- Product -> "product" collection
- DiscountCode -> "discount_code" collection
- Order -> "order" collection

Money is stored as whole currency units (integers).
"""

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator

import config

StockStatus = Literal["In Stock", "Low Stock", "Out of Stock"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


def stock_status(stock: int, low_threshold: Optional[int] = None) -> str:
    """Derive the inventory status from a stock level. Never stored."""
    if low_threshold is None:
        low_threshold = config.LOW_STOCK_THRESHOLD
    if stock <= 0:
        return "Out of Stock"
    if stock < low_threshold:
        return "Low Stock"
    return "In Stock"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive datetimes unless the client is tz aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


def _reject_null(value):
    # Update models: omitted means "leave as is", an explicit null is not allowed
    if value is None:
        raise ValueError("may not be null")
    return value


def _unique(values: Optional[List[str]]) -> List[str]:
    out: List[str] = []
    for v in values or []:
        v = v.strip()
        if v and v not in out:
            out.append(v)
    return out


# ---------------------- Catalog ----------------------
class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., min_length=1, description="Product name")
    category: str = Field(..., min_length=1, description="Category, e.g. Running, Casual, Basketball, Hiking")
    price: int = Field(..., ge=0, description="Unit price in whole currency units")
    stock: int = Field(0, ge=0, description="Units on hand")
    image: Optional[str] = Field(None, description="Primary image URL")
    description: Optional[str] = Field("", description="Product description")
    target_audience: Optional[Literal["Men", "Women", "Kids", "Unisex"]] = None
    images: List[str] = Field(default_factory=list, description="Gallery image URLs")
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    discount: Optional[float] = Field(0, ge=0, le=100, description="Always-on sale percentage")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    price: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    description: Optional[str] = None
    target_audience: Optional[Literal["Men", "Women", "Kids", "Unisex"]] = None
    images: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    discount: Optional[float] = Field(None, ge=0, le=100)

    @field_validator("name", "category", "price", "stock", "images", "sizes", "colors")
    @classmethod
    def _not_null(cls, v):
        return _reject_null(v)


class ProductOut(Product):
    id: str
    status: StockStatus

    @classmethod
    def from_document(cls, doc: dict) -> "ProductOut":
        data = {k: v for k, v in doc.items() if k not in ("_id", "status")}
        data["id"] = str(doc.get("_id", doc.get("id")))
        data["status"] = stock_status(int(doc.get("stock", 0)))
        return cls(**data)


class CartItem(BaseModel):
    """A product snapshot held in the shopping session, plus a quantity."""
    product_id: str
    name: str = ""
    category: str = ""
    price: int = Field(..., ge=0)
    discount: Optional[float] = Field(None, ge=0, le=100)
    quantity: int = Field(1, ge=1)

    @classmethod
    def from_product(cls, product: ProductOut, quantity: int = 1) -> "CartItem":
        return cls(
            product_id=product.id,
            name=product.name,
            category=product.category,
            price=product.price,
            discount=product.discount,
            quantity=quantity,
        )

    def with_quantity(self, quantity: int) -> "CartItem":
        # Decrements clamp at one; removing a line is a separate action
        return self.model_copy(update={"quantity": max(1, quantity)})


# ---------------------- Discount codes ----------------------
class DiscountCode(BaseModel):
    """
    Discount codes collection schema
    Collection name: "discount_code"
    """
    id: Optional[str] = None
    code: str = Field(..., description="Unique code, stored uppercase")
    discount_percentage: float = Field(..., ge=1, le=100)
    description: Optional[str] = None
    max_uses: Optional[int] = Field(None, ge=1, description="Maximum redemptions, None for unlimited")
    uses_count: int = Field(0, ge=0)
    is_active: bool = Field(True, description="False once soft-deleted")
    expires_at: Optional[UTCDateTime] = Field(None, description="UTC expiry datetime")
    minimum_amount: Optional[int] = Field(None, ge=0, description="Minimum cart subtotal")
    applicable_products: List[str] = Field(default_factory=list)
    applicable_categories: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[UTCDateTime] = None

    @field_validator("applicable_products", "applicable_categories", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return v or []

    @property
    def is_store_wide(self) -> bool:
        return not self.applicable_products and not self.applicable_categories

    @classmethod
    def from_document(cls, doc: dict) -> "DiscountCode":
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["id"] = str(doc.get("_id", doc.get("id")))
        return cls(**data)


class DiscountCodeCreate(BaseModel):
    """Everything an admin may supply when issuing a code."""
    code: Optional[str] = Field(None, max_length=32, description="Leave empty to auto-generate")
    discount_percentage: float = Field(..., ge=1, le=100)
    description: Optional[str] = None
    max_uses: Optional[int] = Field(None, ge=1)
    expires_at: Optional[UTCDateTime] = None
    minimum_amount: Optional[int] = Field(None, ge=0)
    applicable_products: List[str] = Field(default_factory=list)
    applicable_categories: List[str] = Field(default_factory=list)
    created_by: str = Field(..., min_length=1)

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        if v and not v.isalnum():
            raise ValueError("Code may only contain letters and digits")
        return v or None

    @field_validator("applicable_products", "applicable_categories", mode="before")
    @classmethod
    def _dedupe(cls, v):
        return _unique(v)


class DiscountCodeUpdate(BaseModel):
    discount_percentage: Optional[float] = Field(None, ge=1, le=100)
    description: Optional[str] = None
    max_uses: Optional[int] = Field(None, ge=1)
    expires_at: Optional[UTCDateTime] = None
    minimum_amount: Optional[int] = Field(None, ge=0)
    applicable_products: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @field_validator("discount_percentage", "is_active")
    @classmethod
    def _not_null(cls, v):
        return _reject_null(v)


# ---------------------- Orders ----------------------
class ShippingDetails(BaseModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    zip_code: Optional[str] = None
    country: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    product_id: str
    name: str = ""
    quantity: int = Field(..., ge=1)
    price_at_purchase: int = Field(..., ge=0, description="Effective unit price charged at checkout")


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    user_id: str
    items: List[OrderItem]
    subtotal: int = Field(..., ge=0)
    discount_amount: int = Field(0, ge=0)
    discount_code: Optional[str] = None
    total_amount: int = Field(..., ge=0)
    status: OrderStatus = "pending"
    shipping_details: ShippingDetails
