"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
    PaginatedResponse
)
from models.supplier import (
    FtpDescriptor,
    SupplierCreate,
    SupplierUpdate,
    SupplierResponse,
    SupplierDeleteResponse,
    SupplierOnboard,
    OnboardResponse,
)
from models.field_mapping import (
    TargetField,
    CANONICAL_FIELDS,
    FieldMapping,
    FieldMappingUpdate,
    FieldMappingResponse,
    FilePreviewResponse,
)
from models.import_run import (
    ImportStatus,
    TERMINAL_STATUSES,
    ImportRunResponse,
    ImportRunListResponse,
    ProgressEvent,
    ReconcileResponse,
)
from models.product import (
    RejectionReason,
    ProductResponse,
    ProductListResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",
    "PaginatedResponse",
    # Supplier
    "FtpDescriptor",
    "SupplierCreate",
    "SupplierUpdate",
    "SupplierResponse",
    "SupplierDeleteResponse",
    "SupplierOnboard",
    "OnboardResponse",
    # Field mapping
    "TargetField",
    "CANONICAL_FIELDS",
    "FieldMapping",
    "FieldMappingUpdate",
    "FieldMappingResponse",
    "FilePreviewResponse",
    # Import run
    "ImportStatus",
    "TERMINAL_STATUSES",
    "ImportRunResponse",
    "ImportRunListResponse",
    "ProgressEvent",
    "ReconcileResponse",
    # Product
    "RejectionReason",
    "ProductResponse",
    "ProductListResponse",
]
