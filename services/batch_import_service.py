"""
Batch importer: replace-all import of a supplier's product set.

Order of operations:
1. Validate every row (blank rows dropped, rejected rows counted)
2. Delete the supplier's existing products
3. Insert accepted records in fixed-size chunks, in source order
4. Push cumulative counts to the run tracker as chunks complete

Known limitation: step 2 is not undone when step 3 fails. A write failure
part way through leaves the supplier with a partial (possibly empty)
catalog rather than the previous one.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence
import threading
import structlog

from config import settings
from models.field_mapping import FieldMapping
from parsers.record_validator import RowRejection, partition_rows
from exceptions import DatabaseError, ImportCancelledError, WriteFailureError
from services.product_service import get_product_service

logger = structlog.get_logger(__name__)

# (imported_rows, skipped_rows) so far
ProgressHook = Callable[[int, int], None]


@dataclass
class BatchImportResult:
    """Outcome of one batch import."""
    total_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    blank_rows: int = 0
    chunks_written: int = 0
    products_deleted: int = 0
    rejections_by_reason: Counter = field(default_factory=Counter)
    rejected_sample: list[RowRejection] = field(default_factory=list)

    def rejection_summary(self) -> dict[str, int]:
        return {reason.value: count for reason, count in self.rejections_by_reason.items()}


def chunked(items: Sequence, size: int):
    """Yield successive slices of at most size items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BatchImportService:
    """
    Batch importer.

    Stateless apart from its settings; one instance serves every run.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        progress_every_chunks: Optional[int] = None,
        rejection_sample_size: Optional[int] = None
    ):
        self.products = get_product_service()
        self.chunk_size = chunk_size or settings.import_chunk_size
        self.progress_every_chunks = progress_every_chunks or settings.import_progress_every_chunks
        self.rejection_sample_size = (
            settings.import_rejection_sample_size
            if rejection_sample_size is None else rejection_sample_size
        )

    def run(
        self,
        supplier_id: str,
        rows: Sequence[Mapping[str, Optional[str]]],
        mapping: FieldMapping,
        run_id: Optional[str] = None,
        progress: Optional[ProgressHook] = None,
        cancel_event: Optional[threading.Event] = None,
        on_validated: Optional[Callable[[int], None]] = None
    ) -> BatchImportResult:
        """
        Replace a supplier's products with the accepted rows of a file.

        Args:
            supplier_id: Supplier UUID
            rows: Parsed rows (source column -> raw text)
            mapping: Supplier's complete field mapping
            run_id: Import run being processed (for logs and errors)
            progress: Called with cumulative (imported, skipped) counts
            cancel_event: Checked between chunks
            on_validated: Called once with the row total (blank rows excluded)

        Returns:
            BatchImportResult

        Raises:
            WriteFailureError: If the delete or a chunk insert fails
            ImportCancelledError: If cancel_event is set between chunks
        """
        partition = partition_rows(rows, mapping, sample_size=self.rejection_sample_size)
        result = BatchImportResult(
            total_rows=partition.total_rows,
            skipped_rows=partition.rejected_count,
            blank_rows=partition.blank_rows,
            rejections_by_reason=partition.rejections_by_reason,
            rejected_sample=partition.rejected_sample,
        )

        logger.info(
            "batch_import_validated",
            import_run_id=run_id,
            supplier_id=supplier_id,
            total_rows=result.total_rows,
            accepted=len(partition.accepted),
            skipped=result.skipped_rows,
            blank_rows=result.blank_rows,
            rejections=result.rejection_summary()
        )
        if on_validated:
            on_validated(result.total_rows)

        result.products_deleted = self._replace_existing(supplier_id, len(partition.accepted))

        chunks = list(chunked(partition.accepted, self.chunk_size))
        for index, chunk in enumerate(chunks, start=1):
            if cancel_event is not None and cancel_event.is_set():
                raise ImportCancelledError(run_id or "", imported_rows=result.imported_rows)

            try:
                result.imported_rows += self.products.insert_batch(
                    [record.to_row(supplier_id) for record in chunk]
                )
            except DatabaseError as e:
                logger.error(
                    "import_chunk_failed",
                    import_run_id=run_id,
                    supplier_id=supplier_id,
                    chunk=index,
                    chunks=len(chunks),
                    imported_rows=result.imported_rows,
                    error=e.message
                )
                raise WriteFailureError(
                    "insert",
                    e.message,
                    {
                        "chunk": index,
                        "chunks": len(chunks),
                        "imported_rows": result.imported_rows,
                    }
                ) from e

            result.chunks_written = index
            logger.debug(
                "import_chunk_inserted",
                supplier_id=supplier_id,
                chunk=index,
                chunks=len(chunks),
                rows=len(chunk)
            )

            if progress and (index % self.progress_every_chunks == 0 or index == len(chunks)):
                progress(result.imported_rows, result.skipped_rows)

        logger.info(
            "batch_import_finished",
            import_run_id=run_id,
            supplier_id=supplier_id,
            imported_rows=result.imported_rows,
            skipped_rows=result.skipped_rows,
            chunks=result.chunks_written
        )
        return result

    def _replace_existing(self, supplier_id: str, accepted: int) -> int:
        """Delete existing products unless there is nothing to replace."""
        try:
            existing = self.products.count_for_supplier(supplier_id)
            if accepted == 0 and existing == 0:
                logger.info("product_delete_skipped", supplier_id=supplier_id)
                return 0
            return self.products.delete_for_supplier(supplier_id)

        except DatabaseError as e:
            raise WriteFailureError("delete", e.message, {"supplier_id": supplier_id}) from e


_batch_import_service: Optional[BatchImportService] = None


def get_batch_import_service() -> BatchImportService:
    """Get or create BatchImportService instance."""
    global _batch_import_service
    if _batch_import_service is None:
        _batch_import_service = BatchImportService()
    return _batch_import_service
