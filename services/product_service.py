"""
Product service: access to a supplier's product set.

Products are only written by imports (bulk delete + chunked bulk insert),
so this service exposes set-level operations rather than per-row CRUD.
"""

from typing import Optional
import structlog

from config import get_supabase_client
from models.product import ProductResponse
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class ProductService:
    """
    Product store access.

    Every operation is scoped to one supplier.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "products"

    # ===================
    # READ OPERATIONS
    # ===================

    def get_for_supplier(
        self,
        supplier_id: str,
        page: int = 1,
        page_size: int = 50
    ) -> tuple[list[ProductResponse], int]:
        """
        Get a page of a supplier's products ordered by SKU.

        Returns:
            Tuple of (products list, total count)
        """
        logger.info(
            "getting_supplier_products",
            supplier_id=supplier_id,
            page=page,
            page_size=page_size
        )

        try:
            offset = (page - 1) * page_size
            result = (
                self.db.table(self.table)
                .select("*", count="exact")
                .eq("supplier_id", supplier_id)
                .order("sku")
                .range(offset, offset + page_size - 1)
                .execute()
            )

            products = [ProductResponse(**row) for row in result.data]
            return products, result.count or 0

        except Exception as e:
            logger.error(
                "get_supplier_products_failed",
                supplier_id=supplier_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

    def count_for_supplier(self, supplier_id: str) -> int:
        """Number of products currently stored for a supplier."""
        try:
            result = (
                self.db.table(self.table)
                .select("id", count="exact")
                .eq("supplier_id", supplier_id)
                .limit(1)
                .execute()
            )
            return result.count or 0

        except Exception as e:
            logger.error(
                "count_supplier_products_failed",
                supplier_id=supplier_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def delete_for_supplier(self, supplier_id: str) -> int:
        """
        Delete every product of a supplier.

        Returns:
            Number of rows deleted

        Raises:
            DatabaseError: If the delete fails
        """
        logger.info("deleting_supplier_products", supplier_id=supplier_id)

        try:
            result = (
                self.db.table(self.table)
                .delete(count="exact")
                .eq("supplier_id", supplier_id)
                .execute()
            )
            deleted = result.count if result.count is not None else len(result.data or [])

            logger.info(
                "supplier_products_deleted",
                supplier_id=supplier_id,
                deleted=deleted
            )
            return deleted

        except Exception as e:
            logger.error(
                "delete_supplier_products_failed",
                supplier_id=supplier_id,
                error=str(e)
            )
            raise DatabaseError("delete", str(e), {"supplier_id": supplier_id})

    def insert_batch(self, rows: list[dict]) -> int:
        """
        Insert product rows in one bulk write.

        Args:
            rows: Rows ready for the products table

        Returns:
            Number of rows inserted

        Raises:
            DatabaseError: If the insert fails
        """
        if not rows:
            return 0

        try:
            self.db.table(self.table).insert(rows).execute()
            return len(rows)

        except Exception as e:
            logger.error(
                "insert_products_failed",
                rows=len(rows),
                error=str(e)
            )
            raise DatabaseError("insert", str(e), {"rows": len(rows)})


_product_service: Optional[ProductService] = None


def get_product_service() -> ProductService:
    """Get or create ProductService instance."""
    global _product_service
    if _product_service is None:
        _product_service = ProductService()
    return _product_service
