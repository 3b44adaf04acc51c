"""
Field mapping service.

Resolves a supplier's canonical field -> source column mapping and replaces
it as a whole. Mappings are never merged: a leftover row from an old
mapping could silently bind an obsolete column.
"""

from typing import Mapping, Optional
import structlog

from config import get_supabase_client
from models.field_mapping import CANONICAL_FIELDS, FieldMapping
from exceptions import (
    DatabaseError,
    InvalidMappingError,
    MappingIncompleteError,
)
from services.import_locks import get_lock_registry
from utils.text_utils import clean_header

logger = structlog.get_logger(__name__)


class FieldMappingService:
    """
    Field mapping resolver.

    Stores one field_mappings row per canonical field.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "field_mappings"

    # ===================
    # READ OPERATIONS
    # ===================

    def _get_rows(self, supplier_id: str) -> list[dict]:
        try:
            result = (
                self.db.table(self.table)
                .select("source_column, target_field")
                .eq("supplier_id", supplier_id)
                .execute()
            )
            return result.data or []

        except Exception as e:
            logger.error(
                "get_field_mappings_failed",
                supplier_id=supplier_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

    def get_mapping(self, supplier_id: str) -> FieldMapping:
        """
        Get the supplier's complete mapping.

        Args:
            supplier_id: Supplier UUID

        Returns:
            FieldMapping with all four canonical fields

        Raises:
            MappingIncompleteError: If any canonical field has no source column
        """
        rows = self._get_rows(supplier_id)

        resolved: dict[str, str] = {}
        for row in rows:
            target = row.get("target_field")
            source = clean_header(row.get("source_column"))
            if target in CANONICAL_FIELDS and source:
                resolved[target] = source

        missing = [f for f in CANONICAL_FIELDS if f not in resolved]
        if missing:
            logger.warning(
                "field_mapping_incomplete",
                supplier_id=supplier_id,
                missing_fields=missing
            )
            raise MappingIncompleteError(missing, details={"supplier_id": supplier_id})

        return FieldMapping(**resolved)

    # ===================
    # WRITE OPERATIONS
    # ===================

    def build_mapping(self, mappings: Mapping[str, Optional[str]]) -> FieldMapping:
        """
        Validate a {target_field: source_column} payload.

        Raises:
            InvalidMappingError: If it names fields outside the canonical set
            MappingIncompleteError: If a canonical field is absent or blank
        """
        unknown = sorted(k for k in mappings if k not in CANONICAL_FIELDS)
        if unknown:
            raise InvalidMappingError(
                f"Unknown target field(s): {', '.join(unknown)}",
                details={"unknown_fields": unknown, "valid": list(CANONICAL_FIELDS)}
            )

        cleaned = {target: clean_header(mappings.get(target)) for target in CANONICAL_FIELDS}
        missing = [target for target, source in cleaned.items() if not source]
        if missing:
            raise MappingIncompleteError(missing)

        return FieldMapping(**cleaned)

    def set_mapping(
        self,
        supplier_id: str,
        mappings: Mapping[str, Optional[str]] | FieldMapping
    ) -> FieldMapping:
        """
        Replace the supplier's mapping with a new complete one.

        The payload is validated before anything is written. Old rows are
        deleted and the four new rows inserted; if the insert fails the old
        rows are written back so the supplier never keeps a partial mapping.

        Raises:
            InvalidMappingError, MappingIncompleteError: Invalid payload
            ImportAlreadyRunningError: If an import is running for the supplier
            DatabaseError: If the replacement failed
        """
        if isinstance(mappings, FieldMapping):
            mapping = self.build_mapping(mappings.model_dump())
        else:
            mapping = self.build_mapping(mappings)

        with get_lock_registry().hold(supplier_id, holder="mapping_update"):
            previous = self._get_rows(supplier_id)

            self.delete_mapping(supplier_id)

            try:
                self.db.table(self.table).insert(mapping.to_rows(supplier_id)).execute()
            except Exception as e:
                logger.error(
                    "insert_field_mappings_failed",
                    supplier_id=supplier_id,
                    error=str(e)
                )
                self._restore(supplier_id, previous)
                raise DatabaseError("insert", str(e), {"supplier_id": supplier_id})

        logger.info(
            "field_mapping_replaced",
            supplier_id=supplier_id,
            previous_rows=len(previous),
            mapping=mapping.model_dump()
        )
        return mapping

    def _restore(self, supplier_id: str, previous: list[dict]) -> None:
        """Write back the rows of the mapping being replaced."""
        if not previous:
            return
        rows = [
            {
                "supplier_id": supplier_id,
                "source_column": row.get("source_column"),
                "target_field": row.get("target_field"),
            }
            for row in previous
        ]
        try:
            self.delete_mapping(supplier_id)
            self.db.table(self.table).insert(rows).execute()
            logger.info("field_mapping_restored", supplier_id=supplier_id, rows=len(rows))
        except Exception as e:
            logger.error(
                "field_mapping_restore_failed",
                supplier_id=supplier_id,
                error=str(e)
            )

    def delete_mapping(self, supplier_id: str) -> int:
        """
        Remove every mapping row of a supplier.

        Returns:
            Number of rows deleted
        """
        try:
            result = (
                self.db.table(self.table)
                .delete(count="exact")
                .eq("supplier_id", supplier_id)
                .execute()
            )
            return result.count if result.count is not None else len(result.data or [])

        except Exception as e:
            logger.error(
                "delete_field_mappings_failed",
                supplier_id=supplier_id,
                error=str(e)
            )
            raise DatabaseError("delete", str(e), {"supplier_id": supplier_id})

    # ===================
    # HELPERS
    # ===================

    @staticmethod
    def missing_columns(mapping: FieldMapping, headers: list[str]) -> list[str]:
        """Mapped source columns that a file does not contain."""
        present = set(headers)
        return [col for col in dict.fromkeys(mapping.source_columns()) if col not in present]


_field_mapping_service: Optional[FieldMappingService] = None


def get_field_mapping_service() -> FieldMappingService:
    """Get or create FieldMappingService instance."""
    global _field_mapping_service
    if _field_mapping_service is None:
        _field_mapping_service = FieldMappingService()
    return _field_mapping_service
