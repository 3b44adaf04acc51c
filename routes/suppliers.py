"""
Supplier API routes.

Onboarding, supplier maintenance, field mappings and import triggers.
Imports run in a background task; the response carries the run to poll
or stream from /api/imports/{run_id}.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
import structlog

from models.supplier import (
    OnboardResponse,
    SupplierDeleteResponse,
    SupplierOnboard,
    SupplierResponse,
    SupplierUpdate,
)
from models.field_mapping import (
    FieldMappingResponse,
    FieldMappingUpdate,
    FilePreviewResponse,
)
from models.import_run import ImportRunResponse
from models.product import ProductListResponse
from services.supplier_service import get_supplier_service
from services.field_mapping_service import get_field_mapping_service
from services.product_service import get_product_service
from services.ingestion_service import get_ingestion_service
from services.file_source_service import UploadSource, preview_source
from exceptions import AppError, FileTooLargeError, ValidationError
from config import settings

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# SUPPLIERS
# ===================

@router.get("", response_model=list[SupplierResponse])
async def list_suppliers(
    active_only: bool = Query(False, description="Only active suppliers")
):
    """List suppliers ordered by name."""
    try:
        return get_supplier_service().get_all(active_only=active_only)
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=OnboardResponse, status_code=201)
async def onboard_supplier(data: SupplierOnboard):
    """
    Onboard a supplier: create it and store its field mapping.

    The mapping must bind all four canonical fields (sku, name, price_ht,
    stock). Upload the first file with POST /{supplier_id}/imports, or
    onboard through POST /onboard to send it along.

    Raises:
        422: Invalid or incomplete mapping
    """
    try:
        result = get_ingestion_service().onboard_supplier(data, data.mappings)
        return OnboardResponse(supplier=result.supplier, mapping=result.mapping)
    except Exception as e:
        return handle_error(e)


@router.post("/onboard", response_model=OnboardResponse, status_code=201)
async def onboard_supplier_with_file(
    background_tasks: BackgroundTasks,
    supplier: str = Form(..., description="Supplier and mappings as JSON"),
    file: Optional[UploadFile] = File(None, description="First catalog file")
):
    """
    Onboard a supplier and import its first file in one request.

    The supplier and mapping are created synchronously; the import runs in
    the background and import_run is the run to poll or stream.

    Raises:
        409: Mapping stored but the first import could not start
        413: File too large
        422: Invalid supplier JSON or mapping
    """
    try:
        try:
            data = SupplierOnboard.model_validate_json(supplier)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid supplier data",
                details={"errors": e.errors(include_url=False, include_context=False)}
            ) from e

        content = None
        if file is not None:
            content = await file.read()
            if len(content) > settings.max_upload_bytes:
                raise FileTooLargeError(len(content), settings.max_upload_bytes)

        service = get_ingestion_service()
        result = service.onboard_supplier(
            data,
            data.mappings,
            filename=file.filename if file is not None else None,
            content=content,
            wait=False
        )
        if result.handle:
            background_tasks.add_task(service.run_in_background, result.handle)
        return OnboardResponse(
            supplier=result.supplier,
            mapping=result.mapping,
            import_run=result.run
        )
    except Exception as e:
        return handle_error(e)


@router.post("/preview", response_model=FilePreviewResponse)
async def preview_file(
    file: UploadFile = File(...),
    sample_size: int = Query(5, ge=1, le=50, description="Rows to return")
):
    """
    Read a CSV file's headers and first rows without importing it.

    Used while building a mapping for a new supplier.
    """
    try:
        content = await file.read()
        if len(content) > settings.max_upload_bytes:
            raise FileTooLargeError(len(content), settings.max_upload_bytes)
        return preview_source(UploadSource(file.filename, content), sample_size=sample_size)
    except Exception as e:
        return handle_error(e)


@router.get("/{supplier_id}", response_model=SupplierResponse)
async def get_supplier(supplier_id: str):
    """Get a single supplier."""
    try:
        return get_supplier_service().get_by_id(supplier_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/{supplier_id}", response_model=SupplierResponse)
async def update_supplier(supplier_id: str, data: SupplierUpdate):
    """Update a supplier. Only provided fields change."""
    try:
        return get_supplier_service().update(supplier_id, data)
    except Exception as e:
        return handle_error(e)


@router.delete("/{supplier_id}", response_model=SupplierDeleteResponse)
async def delete_supplier(supplier_id: str):
    """
    Delete a supplier with its products, mapping and import history.

    Raises:
        404: Supplier not found
        409: An import is running for the supplier
    """
    try:
        return get_supplier_service().delete(supplier_id)
    except Exception as e:
        return handle_error(e)


@router.get("/{supplier_id}/products", response_model=ProductListResponse)
async def list_supplier_products(
    supplier_id: str,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page")
):
    """Products stored by the supplier's last import, ordered by SKU."""
    try:
        get_supplier_service().get_by_id(supplier_id)
        products, total = get_product_service().get_for_supplier(
            supplier_id,
            page=page,
            page_size=page_size
        )
        return ProductListResponse.create(
            products, total, page, page_size, supplier_id=supplier_id
        )
    except Exception as e:
        return handle_error(e)


# ===================
# FIELD MAPPING
# ===================

@router.get("/{supplier_id}/mapping", response_model=FieldMappingResponse)
async def get_mapping(supplier_id: str):
    """
    Get the supplier's field mapping.

    Raises:
        422: Mapping incomplete
    """
    try:
        get_supplier_service().get_by_id(supplier_id)
        mapping = get_field_mapping_service().get_mapping(supplier_id)
        return FieldMappingResponse(supplier_id=supplier_id, mapping=mapping)
    except Exception as e:
        return handle_error(e)


@router.put("/{supplier_id}/mapping", response_model=FieldMappingResponse)
async def replace_mapping(supplier_id: str, data: FieldMappingUpdate):
    """
    Replace the supplier's mapping as a whole.

    Existing products are kept; the next import uses the new mapping.

    Raises:
        409: An import is running for the supplier
        422: Invalid or incomplete mapping
    """
    try:
        get_supplier_service().get_by_id(supplier_id)
        mapping = get_field_mapping_service().set_mapping(supplier_id, data.mappings)
        return FieldMappingResponse(supplier_id=supplier_id, mapping=mapping)
    except Exception as e:
        return handle_error(e)


# ===================
# IMPORTS
# ===================

@router.post("/{supplier_id}/imports", response_model=ImportRunResponse, status_code=202)
async def upload_import(
    supplier_id: str,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...)
):
    """
    Upload a CSV file and import it in the background.

    Replaces every product of the supplier.

    Raises:
        404: Supplier not found
        409: An import is already running
        413: File too large
    """
    logger.info(
        "import_upload_received",
        supplier_id=supplier_id,
        filename=file.filename,
        content_type=file.content_type
    )

    try:
        content = await file.read()
        service = get_ingestion_service()
        source = service.upload_source(supplier_id, file.filename, content)
        handle = service.start_import(supplier_id, source)
        background_tasks.add_task(service.run_in_background, handle)
        return handle.run
    except Exception as e:
        return handle_error(e)


@router.post("/{supplier_id}/imports/ftp", response_model=ImportRunResponse, status_code=202)
async def ftp_import(supplier_id: str, background_tasks: BackgroundTasks):
    """
    Fetch the supplier's file from its FTP server and import it.

    Raises:
        404: Supplier not found
        409: An import is already running
        422: Supplier has no FTP source
    """
    try:
        service = get_ingestion_service()
        source = service.ftp_source(supplier_id)
        handle = service.start_import(supplier_id, source)
        background_tasks.add_task(service.run_in_background, handle)
        return handle.run
    except Exception as e:
        return handle_error(e)
