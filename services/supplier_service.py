"""
Supplier service for business logic operations.

Suppliers own their field mapping, products and import runs; deleting a
supplier removes all of them.
"""

from typing import Optional
import structlog

from config import get_supabase_client, settings
from models.supplier import (
    SupplierCreate,
    SupplierUpdate,
    SupplierResponse,
    SupplierDeleteResponse,
    EMPTY_FTP_COLUMNS,
)
from exceptions import SupplierNotFoundError, ImportAlreadyRunningError, DatabaseError
from services.product_service import get_product_service
from services.field_mapping_service import get_field_mapping_service
from services.import_run_service import get_import_run_service
from services.import_locks import get_lock_registry

logger = structlog.get_logger(__name__)


class SupplierService:
    """
    Supplier business logic.

    Handles CRUD operations for suppliers.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "suppliers"

    # ===================
    # READ OPERATIONS
    # ===================

    def get_all(self, active_only: bool = False) -> list[SupplierResponse]:
        """Get all suppliers ordered by name."""
        try:
            query = self.db.table(self.table).select("*")
            if active_only:
                query = query.eq("is_active", True)
            result = query.order("name").execute()
            return [SupplierResponse(**row) for row in result.data]

        except Exception as e:
            logger.error("get_suppliers_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, supplier_id: str) -> SupplierResponse:
        """
        Get a single supplier by ID.

        Raises:
            SupplierNotFoundError: If supplier doesn't exist
        """
        logger.debug("getting_supplier", supplier_id=supplier_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", supplier_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "get_supplier_failed",
                supplier_id=supplier_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            raise SupplierNotFoundError(supplier_id)

        return SupplierResponse(**result.data[0])

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(self, data: SupplierCreate) -> SupplierResponse:
        """
        Create a new supplier.

        Args:
            data: Supplier creation data (ftp set selects the FTP path)

        Returns:
            Created SupplierResponse
        """
        logger.info("creating_supplier", name=data.name, uses_ftp=data.ftp is not None)

        row = {
            "name": data.name,
            "contact_email": data.contact_email,
            "is_active": data.is_active,
        }
        if data.ftp:
            row.update(data.ftp.to_columns())

        try:
            result = self.db.table(self.table).insert(row).execute()
        except Exception as e:
            logger.error("create_supplier_failed", name=data.name, error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No data returned")

        supplier = SupplierResponse(**result.data[0])
        logger.info("supplier_created", supplier_id=supplier.id, name=supplier.name)
        return supplier

    def update(self, supplier_id: str, data: SupplierUpdate) -> SupplierResponse:
        """
        Update an existing supplier.

        Only provided fields are updated.

        Raises:
            SupplierNotFoundError: If supplier doesn't exist
        """
        self.get_by_id(supplier_id)

        update_data = data.model_dump(
            exclude_unset=True,
            exclude_none=True,
            exclude={"ftp", "clear_ftp"}
        )
        if data.clear_ftp:
            update_data.update(EMPTY_FTP_COLUMNS)
        elif data.ftp:
            update_data.update(data.ftp.to_columns())

        if not update_data:
            return self.get_by_id(supplier_id)

        logger.info(
            "updating_supplier",
            supplier_id=supplier_id,
            fields=sorted(update_data.keys())
        )

        try:
            self.db.table(self.table).update(update_data).eq("id", supplier_id).execute()
        except Exception as e:
            logger.error("update_supplier_failed", supplier_id=supplier_id, error=str(e))
            raise DatabaseError("update", str(e))

        return self.get_by_id(supplier_id)

    def delete(self, supplier_id: str) -> SupplierDeleteResponse:
        """
        Delete a supplier with its products, mapping and import runs.

        Refused while an import holds the supplier's lock, or while the store
        shows a recent processing run started by another worker.

        Raises:
            SupplierNotFoundError: If supplier doesn't exist
            ImportAlreadyRunningError: If an import is running
        """
        self.get_by_id(supplier_id)

        with get_lock_registry().hold(supplier_id, holder="supplier_delete"):
            active = get_import_run_service().find_active_run(
                supplier_id,
                stale_after_minutes=settings.import_stale_after_minutes
            )
            if active is not None:
                raise ImportAlreadyRunningError(supplier_id, active.id)

            logger.info("deleting_supplier", supplier_id=supplier_id)

            products_deleted = get_product_service().delete_for_supplier(supplier_id)
            mappings_deleted = get_field_mapping_service().delete_mapping(supplier_id)
            runs_deleted = get_import_run_service().delete_runs_for_supplier(supplier_id)

            try:
                self.db.table(self.table).delete().eq("id", supplier_id).execute()
            except Exception as e:
                logger.error("delete_supplier_failed", supplier_id=supplier_id, error=str(e))
                raise DatabaseError("delete", str(e))

        logger.info(
            "supplier_deleted",
            supplier_id=supplier_id,
            products_deleted=products_deleted,
            mappings_deleted=mappings_deleted,
            import_runs_deleted=runs_deleted
        )

        return SupplierDeleteResponse(
            supplier_id=supplier_id,
            products_deleted=products_deleted,
            mappings_deleted=mappings_deleted,
            import_runs_deleted=runs_deleted,
        )


_supplier_service: Optional[SupplierService] = None


def get_supplier_service() -> SupplierService:
    """Get or create SupplierService instance."""
    global _supplier_service
    if _supplier_service is None:
        _supplier_service = SupplierService()
    return _supplier_service
