"""
File parsers module.

csv_parser turns supplier files into header-keyed rows; record_validator
turns those rows into product records.
"""

from parsers.csv_parser import parse_csv, ParsedCsv
from parsers.record_validator import (
    ProductRecord,
    RowRejection,
    RowValidation,
    RowPartition,
    validate_row,
    partition_rows,
)

__all__ = [
    "parse_csv",
    "ParsedCsv",
    "ProductRecord",
    "RowRejection",
    "RowValidation",
    "RowPartition",
    "validate_row",
    "partition_rows",
]
