"""
Product schemas for validation and serialization.
"""

from pydantic import Field
from typing import Optional
from enum import Enum

from models.base import BaseSchema, PaginatedResponse, TimestampMixin


class RejectionReason(str, Enum):
    """Why a CSV row was not imported (checked in this order)."""
    MISSING_SKU = "missing_sku"
    MISSING_NAME = "missing_name"
    INVALID_PRICE = "invalid_price"
    INVALID_STOCK = "invalid_stock"


class ProductResponse(BaseSchema, TimestampMixin):
    """
    Product row as stored.

    Products are only written by imports; each import replaces the whole
    catalog of its supplier.
    """

    id: str = Field(..., description="Product UUID")
    supplier_id: str = Field(..., description="Owning supplier")
    sku: str = Field(..., min_length=1, description="Supplier SKU")
    name: str = Field(..., min_length=1, description="Product name")
    price_ht: float = Field(..., ge=0, description="Price excluding tax")
    stock: int = Field(..., ge=0, description="Quantity on hand")


class ProductListResponse(PaginatedResponse):
    """One page of a supplier's products."""

    data: list[ProductResponse]
    supplier_id: Optional[str] = None
