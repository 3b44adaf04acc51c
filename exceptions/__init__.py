"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,

    # Suppliers
    SupplierNotFoundError,
    FtpNotConfiguredError,

    # Field mappings
    MappingIncompleteError,
    InvalidMappingError,

    # File sources
    SourceUnavailableError,
    CsvParseError,
    FileTooLargeError,

    # Import runs
    ImportRunNotFoundError,
    ImportAlreadyRunningError,
    ImportCancelledError,
    WriteFailureError,
    InvalidStatusTransitionError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",

    # Suppliers
    "SupplierNotFoundError",
    "FtpNotConfiguredError",

    # Field mappings
    "MappingIncompleteError",
    "InvalidMappingError",

    # File sources
    "SourceUnavailableError",
    "CsvParseError",
    "FileTooLargeError",

    # Import runs
    "ImportRunNotFoundError",
    "ImportAlreadyRunningError",
    "ImportCancelledError",
    "WriteFailureError",
    "InvalidStatusTransitionError",
]
