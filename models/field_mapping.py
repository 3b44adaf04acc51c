"""
Field mapping schemas.

A mapping binds each canonical product field to the column name a supplier
uses in its files. Stored as one field_mappings row per target field.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class TargetField(str, Enum):
    """Canonical product fields every mapping must resolve."""
    SKU = "sku"
    NAME = "name"
    PRICE_HT = "price_ht"
    STOCK = "stock"


CANONICAL_FIELDS: tuple[str, ...] = tuple(f.value for f in TargetField)


class FieldMapping(BaseModel):
    """Complete mapping: canonical field -> source column name."""

    sku: str = Field(..., min_length=1, description="Column holding the SKU")
    name: str = Field(..., min_length=1, description="Column holding the product name")
    price_ht: str = Field(..., min_length=1, description="Column holding the ex-tax price")
    stock: str = Field(..., min_length=1, description="Column holding the quantity")

    def source_columns(self) -> list[str]:
        """Source columns in canonical field order."""
        return [getattr(self, f) for f in CANONICAL_FIELDS]

    def to_rows(self, supplier_id: str) -> list[dict]:
        """Rows for the field_mappings table."""
        return [
            {
                "supplier_id": supplier_id,
                "source_column": getattr(self, target),
                "target_field": target,
            }
            for target in CANONICAL_FIELDS
        ]


class FieldMappingUpdate(BaseModel):
    """
    Mapping payload as sent by clients: {target_field: source_column}.

    Kept loose so validation can report every problem at once instead of
    failing on the first missing key.
    """

    mappings: dict[str, Optional[str]] = Field(
        ...,
        description="Canonical field to source column",
        examples=[{"sku": "Ref", "name": "Designation", "price_ht": "Prix HT", "stock": "Qte"}]
    )


class FieldMappingResponse(BaseModel):
    """Mapping of one supplier."""

    supplier_id: str
    mapping: FieldMapping


class FilePreviewResponse(BaseModel):
    """Headers and first rows of a file, shown while building a mapping."""

    file_name: str
    headers: list[str]
    sample_rows: list[dict[str, str]] = Field(default_factory=list)
    row_count: int = 0
    encoding: str
    separator: str
