"""
Business logic services.

Each service handles one domain area.
"""

from services.product_service import ProductService, get_product_service
from services.supplier_service import SupplierService, get_supplier_service
from services.field_mapping_service import FieldMappingService, get_field_mapping_service
from services.import_run_service import ImportRunService, get_import_run_service
from services.batch_import_service import (
    BatchImportService,
    BatchImportResult,
    get_batch_import_service,
)
from services.import_locks import SupplierLockRegistry, get_lock_registry
from services.file_source_service import RowSource, UploadSource, FtpSource
from services.ingestion_service import (
    IngestionService,
    ImportHandle,
    get_ingestion_service,
)

__all__ = [
    "ProductService",
    "get_product_service",
    "SupplierService",
    "get_supplier_service",
    "FieldMappingService",
    "get_field_mapping_service",
    "ImportRunService",
    "get_import_run_service",
    "BatchImportService",
    "BatchImportResult",
    "get_batch_import_service",
    "SupplierLockRegistry",
    "get_lock_registry",
    "RowSource",
    "UploadSource",
    "FtpSource",
    "IngestionService",
    "ImportHandle",
    "get_ingestion_service",
]
