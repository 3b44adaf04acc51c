"""
Ingestion orchestrator.

Runs one import end to end:

    lock supplier -> create run -> resolve mapping -> fetch rows
    -> check mapped columns -> batch import -> complete run

Any fatal error marks the run failed and is re-raised. The supplier lock is
released whatever happens.

HTTP handlers use start_import (synchronous: lock + run row) followed by
execute in a background task, so the caller gets the run id immediately.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
import threading
import structlog

from config import settings
from models.field_mapping import CANONICAL_FIELDS, FieldMapping
from models.import_run import ImportRunResponse
from models.supplier import SupplierCreate, SupplierResponse
from exceptions import (
    AppError,
    DatabaseError,
    FileTooLargeError,
    FtpNotConfiguredError,
    ImportAlreadyRunningError,
    ImportRunNotFoundError,
    InvalidStatusTransitionError,
    MappingIncompleteError,
)
from services.batch_import_service import BatchImportResult, get_batch_import_service
from services.field_mapping_service import get_field_mapping_service
from services.file_source_service import FtpSource, RowSource, UploadSource
from services.import_locks import get_lock_registry
from services.import_run_service import get_import_run_service
from services.supplier_service import get_supplier_service

logger = structlog.get_logger(__name__)


@dataclass
class ImportHandle:
    """A started import: its run, source and cancellation flag."""
    run: ImportRunResponse
    supplier_id: str
    source: RowSource
    cancel_event: threading.Event = field(default_factory=threading.Event)
    result: Optional[BatchImportResult] = None

    @property
    def run_id(self) -> str:
        return self.run.id


@dataclass
class OnboardingResult:
    supplier: SupplierResponse
    mapping: FieldMapping
    handle: Optional[ImportHandle] = None

    @property
    def run(self) -> Optional[ImportRunResponse]:
        return self.handle.run if self.handle else None


class IngestionService:
    """Coordinates suppliers, mappings, sources, batch import and run tracking."""

    def __init__(self):
        self.suppliers = get_supplier_service()
        self.mappings = get_field_mapping_service()
        self.runs = get_import_run_service()
        self.importer = get_batch_import_service()
        self.locks = get_lock_registry()
        self._active: dict[str, ImportHandle] = {}
        self._guard = threading.Lock()

    # ===================
    # SOURCES
    # ===================

    def upload_source(self, supplier_id: str, filename: str, content: bytes) -> UploadSource:
        """
        Source for a manual upload.

        Raises:
            SupplierNotFoundError: If supplier doesn't exist
            FileTooLargeError: If content exceeds max_upload_mb
        """
        self.suppliers.get_by_id(supplier_id)
        if len(content) > settings.max_upload_bytes:
            raise FileTooLargeError(len(content), settings.max_upload_bytes)
        return UploadSource(filename, content)

    def ftp_source(self, supplier_id: str) -> FtpSource:
        """
        Source for the supplier's FTP file.

        Raises:
            SupplierNotFoundError: If supplier doesn't exist
            FtpNotConfiguredError: If the supplier uploads manually
        """
        supplier = self.suppliers.get_by_id(supplier_id)
        if supplier.ftp is None:
            raise FtpNotConfiguredError(supplier_id)
        return FtpSource(supplier.ftp)

    # ===================
    # IMPORT LIFECYCLE
    # ===================

    def start_import(self, supplier_id: str, source: RowSource) -> ImportHandle:
        """
        Take the supplier lock and create the run.

        Nothing is written when another import is active.

        Raises:
            ImportAlreadyRunningError: If an import is running for the supplier
        """
        self.locks.acquire(supplier_id, holder="import_start")
        try:
            active = self.runs.find_active_run(
                supplier_id,
                stale_after_minutes=settings.import_stale_after_minutes
            )
            if active is not None:
                # Started by another worker process
                raise ImportAlreadyRunningError(supplier_id, active.id)
            run = self.runs.create_run(supplier_id, source.file_name)
        except Exception:
            self.locks.release(supplier_id)
            raise

        self.locks.set_holder(supplier_id, run.id)
        handle = ImportHandle(run=run, supplier_id=supplier_id, source=source)
        with self._guard:
            self._active[run.id] = handle

        logger.info(
            "import_started",
            import_run_id=run.id,
            supplier_id=supplier_id,
            file_name=source.file_name
        )
        return handle

    def execute(self, handle: ImportHandle) -> ImportRunResponse:
        """
        Process a started import to a terminal state.

        Returns:
            The completed run

        Raises:
            AppError: Whatever failed the run (the run is marked failed first)
        """
        run_id = handle.run_id
        supplier_id = handle.supplier_id

        try:
            mapping = self.mappings.get_mapping(supplier_id)
            parsed = handle.source.fetch()
            self._check_columns(mapping, parsed.headers)

            result = self.importer.run(
                supplier_id,
                parsed.rows,
                mapping,
                run_id=run_id,
                progress=lambda imported, skipped: self.runs.record_progress(
                    run_id, imported, skipped
                ),
                cancel_event=handle.cancel_event,
                on_validated=lambda total: self.runs.set_total(run_id, total),
            )
            handle.result = result

            handle.run = self.runs.complete(
                run_id,
                total_rows=result.total_rows,
                imported_rows=result.imported_rows,
                skipped_rows=result.skipped_rows
            )

        except AppError as e:
            self._fail(handle, e.message, e.code, e.details)
            raise
        except Exception as e:
            logger.exception("import_crashed", import_run_id=run_id, supplier_id=supplier_id)
            self._fail(handle, str(e), "INTERNAL_ERROR", {"error_type": type(e).__name__})
            raise

        finally:
            with self._guard:
                self._active.pop(run_id, None)
            self.locks.release(supplier_id)

        logger.info(
            "import_finished",
            import_run_id=run_id,
            supplier_id=supplier_id,
            total_rows=handle.run.total_rows,
            imported_rows=handle.run.imported_rows,
            skipped_rows=handle.run.skipped_rows,
            rejections=handle.result.rejection_summary() if handle.result else {}
        )
        return handle.run

    def run_in_background(self, handle: ImportHandle) -> None:
        """Background task entry point; failures are already on the run."""
        try:
            self.execute(handle)
        except AppError as e:
            logger.warning(
                "background_import_failed",
                import_run_id=handle.run_id,
                code=e.code,
                error=e.message
            )

    def run_import(self, supplier_id: str, source: RowSource) -> ImportRunResponse:
        """Blocking import: start and execute in the calling thread."""
        return self.execute(self.start_import(supplier_id, source))

    def import_upload(self, supplier_id: str, filename: str, content: bytes) -> ImportRunResponse:
        """Import a manually uploaded file."""
        return self.run_import(supplier_id, self.upload_source(supplier_id, filename, content))

    def refresh_from_ftp(self, supplier_id: str) -> ImportRunResponse:
        """Download the supplier's FTP file and import it."""
        return self.run_import(supplier_id, self.ftp_source(supplier_id))

    def cancel(self, run_id: str) -> ImportRunResponse:
        """
        Ask a running import to stop after its current chunk.

        Raises:
            ImportRunNotFoundError: If no such run is active in this process
            InvalidStatusTransitionError: If the run already finished
        """
        with self._guard:
            handle = self._active.get(run_id)

        if handle is None:
            run = self.runs.get_run(run_id)
            if run.is_terminal:
                raise InvalidStatusTransitionError(
                    current_status=run.status.value,
                    new_status="failed"
                )
            raise ImportRunNotFoundError(run_id)

        handle.cancel_event.set()
        logger.info("import_cancel_requested", import_run_id=run_id, supplier_id=handle.supplier_id)
        return handle.run

    def is_active(self, run_id: str) -> bool:
        with self._guard:
            return run_id in self._active

    # ===================
    # ONBOARDING
    # ===================

    def onboard_supplier(
        self,
        data: SupplierCreate,
        mappings: Mapping[str, Optional[str]],
        filename: Optional[str] = None,
        content: Optional[bytes] = None,
        wait: bool = True
    ) -> OnboardingResult:
        """
        Create a supplier with its mapping, optionally importing a first file.

        The mapping is validated before the supplier is created. If storing
        the mapping fails the supplier is removed again. With wait=False the
        first import is only started; pass result.handle to
        run_in_background.

        Raises:
            InvalidMappingError, MappingIncompleteError: Invalid mapping
            AppError: From the first import (supplier and mapping are kept)
        """
        mapping = self.mappings.build_mapping(mappings)
        supplier = self.suppliers.create(data)

        try:
            mapping = self.mappings.set_mapping(supplier.id, mapping)
        except AppError:
            logger.error("onboarding_mapping_failed", supplier_id=supplier.id)
            self.suppliers.delete(supplier.id)
            raise

        logger.info("supplier_onboarded", supplier_id=supplier.id, name=supplier.name)

        result = OnboardingResult(supplier=supplier, mapping=mapping)
        if content is not None:
            source = self.upload_source(supplier.id, filename, content)
            result.handle = self.start_import(supplier.id, source)
            if wait:
                self.execute(result.handle)

        return result

    # ===================
    # HELPERS
    # ===================

    def _check_columns(self, mapping: FieldMapping, headers: list[str]) -> None:
        """Refuse files that lack a mapped column before anything is deleted."""
        missing = self.mappings.missing_columns(mapping, headers)
        if not missing:
            return
        fields = [f for f in CANONICAL_FIELDS if getattr(mapping, f) in missing]
        raise MappingIncompleteError(
            fields,
            message=f"File is missing mapped column(s): {', '.join(missing)}",
            details={"missing_columns": missing, "headers": headers}
        )

    def _fail(
        self,
        handle: ImportHandle,
        message: str,
        code: Optional[str],
        details: Optional[dict[str, Any]]
    ) -> None:
        """Mark the run failed; the original error is what the caller sees."""
        try:
            handle.run = self.runs.fail(handle.run_id, message, code=code, details=details)
        except InvalidStatusTransitionError:
            logger.warning("import_run_already_terminal", import_run_id=handle.run_id)
        except DatabaseError as e:
            logger.error(
                "import_run_fail_not_recorded",
                import_run_id=handle.run_id,
                error=e.message
            )


_ingestion_service: Optional[IngestionService] = None


def get_ingestion_service() -> IngestionService:
    """Get or create IngestionService instance."""
    global _ingestion_service
    if _ingestion_service is None:
        _ingestion_service = IngestionService()
    return _ingestion_service
