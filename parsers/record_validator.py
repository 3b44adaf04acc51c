"""
Row-level validation for supplier catalog files.

Applies a supplier's field mapping to parsed CSV rows and turns each row into
either a product record ready for insertion or a rejection with a reason.
Rejections are counted, never raised.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional
import math

from models.field_mapping import FieldMapping
from models.product import RejectionReason
from utils.text_utils import clean_value, is_blank_row, parse_number

# Largest value of the products.stock integer column
MAX_STOCK = 2_147_483_647


@dataclass
class ProductRecord:
    """Accepted product ready for database insertion."""
    sku: str
    name: str
    price_ht: float
    stock: int

    def to_row(self, supplier_id: str) -> dict:
        return {
            "supplier_id": supplier_id,
            "sku": self.sku,
            "name": self.name,
            "price_ht": self.price_ht,
            "stock": self.stock,
        }


@dataclass
class RowRejection:
    """A rejected row. row_number is 1-based over data rows."""
    row_number: int
    reason: RejectionReason


@dataclass
class RowValidation:
    """Outcome for one row: exactly one of record/reason is set."""
    record: Optional[ProductRecord] = None
    reason: Optional[RejectionReason] = None

    @property
    def accepted(self) -> bool:
        return self.record is not None


@dataclass
class RowPartition:
    """Result of validating every row of a file."""
    accepted: list[ProductRecord] = field(default_factory=list)
    rejections_by_reason: Counter = field(default_factory=Counter)
    rejected_sample: list[RowRejection] = field(default_factory=list)
    blank_rows: int = 0

    @property
    def rejected_count(self) -> int:
        return sum(self.rejections_by_reason.values())

    @property
    def total_rows(self) -> int:
        """Rows considered, blank lines excluded."""
        return len(self.accepted) + self.rejected_count


def _raw(row: Mapping[str, Optional[str]], column: str) -> Optional[str]:
    value = row.get(column)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def validate_row(row: Mapping[str, Optional[str]], mapping: FieldMapping) -> RowValidation:
    """
    Validate one parsed row against a field mapping.

    Rules:
    - sku and name must be non-empty after cleaning
    - price_ht must coerce to a finite number >= 0
    - stock must coerce to a finite number >= 0 that fits the stock
      column; fractions are truncated

    Example:
        {"Ref": " ABC-1 ", "Designation": "Widget", "Prix": "$12.50", "Qte": "10"}
        -> ProductRecord(sku="ABC-1", name="Widget", price_ht=12.5, stock=10)

    Args:
        row: Source column -> raw text
        mapping: Supplier's field mapping

    Returns:
        RowValidation with either record or reason set
    """
    sku = clean_value(_raw(row, mapping.sku))
    if not sku:
        return RowValidation(reason=RejectionReason.MISSING_SKU)

    name = clean_value(_raw(row, mapping.name))
    if not name:
        return RowValidation(reason=RejectionReason.MISSING_NAME)

    price = parse_number(_raw(row, mapping.price_ht))
    if price is None or price < 0:
        return RowValidation(reason=RejectionReason.INVALID_PRICE)

    stock = parse_number(_raw(row, mapping.stock))
    if stock is None or stock < 0 or stock > MAX_STOCK:
        return RowValidation(reason=RejectionReason.INVALID_STOCK)

    return RowValidation(
        record=ProductRecord(
            sku=sku,
            name=name,
            price_ht=price,
            stock=math.trunc(stock),
        )
    )


def partition_rows(
    rows: Iterable[Mapping[str, Optional[str]]],
    mapping: FieldMapping,
    sample_size: int = 20,
) -> RowPartition:
    """
    Validate every row, keeping source order of accepted records.

    Fully blank rows are dropped before validation and only counted in
    blank_rows. Row numbers in rejected_sample count data rows as they
    appear in the input, blank ones included.

    Args:
        rows: Parsed rows (source column -> raw text)
        mapping: Supplier's field mapping
        sample_size: How many rejected rows to keep for reporting

    Returns:
        RowPartition
    """
    partition = RowPartition()

    for row_number, row in enumerate(rows, start=1):
        if is_blank_row(row):
            partition.blank_rows += 1
            continue

        outcome = validate_row(row, mapping)
        if outcome.accepted:
            partition.accepted.append(outcome.record)
            continue

        partition.rejections_by_reason[outcome.reason] += 1
        if len(partition.rejected_sample) < sample_size:
            partition.rejected_sample.append(
                RowRejection(row_number=row_number, reason=outcome.reason)
            )

    return partition
