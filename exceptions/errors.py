"""
Custom exception classes for the application.

Every error carries a stable code, an HTTP status and a details dict so
routes can return it as-is and import runs can persist it as error_details.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "SUPPLIER_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# SUPPLIER ERRORS
# ===================

class SupplierNotFoundError(NotFoundError):
    """Supplier not found."""

    def __init__(self, supplier_id: str):
        super().__init__(
            resource="Supplier",
            identifier=supplier_id,
            code="SUPPLIER_NOT_FOUND"
        )


class FtpNotConfiguredError(ValidationError):
    """Supplier has no FTP descriptor."""

    def __init__(self, supplier_id: str):
        super().__init__(
            code="FTP_NOT_CONFIGURED",
            message="Supplier has no FTP source configured",
            details={"supplier_id": supplier_id}
        )


# ===================
# FIELD MAPPING ERRORS
# ===================

class MappingIncompleteError(ValidationError):
    """One or more canonical fields have no source column."""

    def __init__(
        self,
        missing_fields: list[str],
        message: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="MAPPING_INCOMPLETE",
            message=message or f"Missing field mapping for: {', '.join(missing_fields)}",
            details={"missing_fields": missing_fields, **(details or {})}
        )
        self.missing_fields = missing_fields


class InvalidMappingError(ValidationError):
    """Mapping payload references unknown target fields or blank columns."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="INVALID_MAPPING",
            message=message,
            details=details
        )


# ===================
# FILE SOURCE ERRORS
# ===================

class SourceUnavailableError(AppError):
    """The file source could not deliver rows (503)."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        code: str = "SOURCE_UNAVAILABLE",
        status_code: int = 503
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=details
        )


class CsvParseError(SourceUnavailableError):
    """The file was delivered but is not a readable CSV (422)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            details=details,
            code="CSV_PARSE_ERROR",
            status_code=422
        )


class FileTooLargeError(AppError):
    """Uploaded file exceeds the configured size limit (413)."""

    def __init__(self, size_bytes: int, max_bytes: int):
        super().__init__(
            code="FILE_TOO_LARGE",
            message=f"File is {size_bytes} bytes, limit is {max_bytes} bytes",
            status_code=413,
            details={"size_bytes": size_bytes, "max_bytes": max_bytes}
        )


# ===================
# IMPORT RUN ERRORS
# ===================

class ImportRunNotFoundError(NotFoundError):
    """Import run not found."""

    def __init__(self, run_id: str):
        super().__init__(
            resource="Import run",
            identifier=run_id,
            code="IMPORT_RUN_NOT_FOUND"
        )


class ImportAlreadyRunningError(ConflictError):
    """Another import holds the supplier's product set."""

    def __init__(self, supplier_id: str, run_id: Optional[str] = None):
        super().__init__(
            code="IMPORT_ALREADY_RUNNING",
            message="An import is already running for this supplier",
            details={"supplier_id": supplier_id, "import_run_id": run_id}
        )


class ImportCancelledError(ConflictError):
    """Import was cancelled between chunks."""

    def __init__(self, run_id: str, imported_rows: int = 0):
        super().__init__(
            code="IMPORT_CANCELLED",
            message="Import was cancelled",
            details={"import_run_id": run_id, "imported_rows": imported_rows}
        )


class WriteFailureError(AppError):
    """Bulk delete/insert against the products table failed (500)."""

    def __init__(self, operation: str, message: str, details: Optional[dict] = None):
        super().__init__(
            code="IMPORT_WRITE_FAILED",
            message=f"Product {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


class InvalidStatusTransitionError(ValidationError):
    """Invalid status transition."""

    def __init__(self, current_status: str, new_status: str, terminal_status: str = "completed/failed"):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
                "reason": f"{terminal_status} is terminal"
            }
        )
