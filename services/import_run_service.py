"""
Import run tracker.

Owns the lifecycle of import runs (import_logs table) and the progress
event stream consumed by UIs.

State machine:
    create              -> processing (started_at set, counts zero)
    record_progress     processing -> processing (counts never decrease)
    complete            processing -> completed (completed_at set)
    fail                processing -> failed (completed_at, error_details)

Every write that changes a run is filtered on status=processing at the
store, so a terminal run is never modified again even if two workers race.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
import threading
import structlog

from config import get_supabase_client, get_admin_client
from models.import_run import (
    ImportRunResponse,
    ImportStatus,
    ProgressEvent,
)
from exceptions import (
    DatabaseError,
    ImportRunNotFoundError,
    InvalidStatusTransitionError,
)

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ImportRunService:
    """
    Import run tracker.

    Keeps the last published counts of each active run in memory so
    progress updates are monotonic without re-reading the row.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "import_logs"
        self._subscribers: list[ProgressCallback] = []
        self._counts: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    # ===================
    # PROGRESS STREAM
    # ===================

    def subscribe(self, callback: ProgressCallback) -> None:
        """Register a progress consumer."""
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: ProgressCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _publish(self, run: ImportRunResponse) -> None:
        event = ProgressEvent.from_run(run)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                # A broken consumer must not fail the import
                logger.warning(
                    "progress_subscriber_failed",
                    import_run_id=run.id,
                    error=str(e),
                    error_type=type(e).__name__
                )

    # ===================
    # READ OPERATIONS
    # ===================

    def get_run(self, run_id: str) -> ImportRunResponse:
        """
        Get a single import run.

        Raises:
            ImportRunNotFoundError: If run doesn't exist
        """
        try:
            result = self.db.table(self.table).select("*").eq("id", run_id).execute()
        except Exception as e:
            logger.error("get_import_run_failed", import_run_id=run_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportRunNotFoundError(run_id)
        return ImportRunResponse(**result.data[0])

    def list_runs(
        self,
        supplier_id: Optional[str] = None,
        status: Optional[ImportStatus] = None,
        page: int = 1,
        page_size: int = 20
    ) -> tuple[list[ImportRunResponse], int]:
        """
        List import runs, newest first.

        Returns:
            Tuple of (runs list, total count)
        """
        try:
            query = self.db.table(self.table).select("*", count="exact")
            if supplier_id:
                query = query.eq("supplier_id", supplier_id)
            if status:
                query = query.eq("status", status.value)

            offset = (page - 1) * page_size
            result = (
                query.order("started_at", desc=True)
                .range(offset, offset + page_size - 1)
                .execute()
            )
            return [ImportRunResponse(**row) for row in result.data], result.count or 0

        except Exception as e:
            logger.error("list_import_runs_failed", supplier_id=supplier_id, error=str(e))
            raise DatabaseError("select", str(e))

    def find_active_run(
        self,
        supplier_id: str,
        stale_after_minutes: Optional[int] = None
    ) -> Optional[ImportRunResponse]:
        """
        Latest processing run of a supplier.

        Runs started before the stale cutoff are ignored; they are orphans
        for reconcile_stale_runs, not live imports.
        """
        try:
            query = (
                self.db.table(self.table)
                .select("*")
                .eq("supplier_id", supplier_id)
                .eq("status", ImportStatus.PROCESSING.value)
            )
            if stale_after_minutes is not None:
                cutoff = datetime.now(timezone.utc) - timedelta(minutes=stale_after_minutes)
                query = query.gte("started_at", cutoff.isoformat())
            result = query.order("started_at", desc=True).limit(1).execute()

        except Exception as e:
            logger.error("find_active_run_failed", supplier_id=supplier_id, error=str(e))
            raise DatabaseError("select", str(e))

        return ImportRunResponse(**result.data[0]) if result.data else None

    # ===================
    # LIFECYCLE
    # ===================

    def create_run(self, supplier_id: str, file_name: str) -> ImportRunResponse:
        """
        Create a run in processing state.

        Args:
            supplier_id: Supplier UUID
            file_name: Uploaded file name or remote path

        Returns:
            Created ImportRunResponse
        """
        row = {
            "supplier_id": supplier_id,
            "file_name": file_name,
            "status": ImportStatus.PROCESSING.value,
            "started_at": _now(),
            "completed_at": None,
            "total_rows": 0,
            "imported_rows": 0,
            "skipped_rows": 0,
            "error_details": None,
        }

        try:
            result = self.db.table(self.table).insert(row).execute()
        except Exception as e:
            logger.error("create_import_run_failed", supplier_id=supplier_id, error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No data returned")

        run = ImportRunResponse(**result.data[0])
        with self._lock:
            self._counts[run.id] = {"total_rows": 0, "imported_rows": 0, "skipped_rows": 0}

        logger.info(
            "import_run_created",
            import_run_id=run.id,
            supplier_id=supplier_id,
            file_name=file_name
        )
        self._publish(run)
        return run

    def _update_processing(
        self,
        run_id: str,
        data: dict[str, Any],
        new_status: ImportStatus
    ) -> ImportRunResponse:
        """Apply an update only while the run is still processing."""
        try:
            result = (
                self.db.table(self.table)
                .update(data)
                .eq("id", run_id)
                .eq("status", ImportStatus.PROCESSING.value)
                .execute()
            )
        except Exception as e:
            logger.error(
                "update_import_run_failed",
                import_run_id=run_id,
                new_status=new_status.value,
                error=str(e)
            )
            raise DatabaseError("update", str(e), {"import_run_id": run_id})

        if not result.data:
            current = self.get_run(run_id)
            raise InvalidStatusTransitionError(
                current_status=current.status.value,
                new_status=new_status.value
            )

        return ImportRunResponse(**result.data[0])

    def _merge_counts(self, run_id: str, **counts: Optional[int]) -> dict[str, int]:
        """Merge new counts into the last known ones without going backwards."""
        with self._lock:
            known = self._counts.setdefault(
                run_id,
                {"total_rows": 0, "imported_rows": 0, "skipped_rows": 0}
            )
            for key, value in counts.items():
                if value is not None:
                    known[key] = max(known[key], value)
            return dict(known)

    def set_total(self, run_id: str, total_rows: int) -> ImportRunResponse:
        """Record the number of rows the import will consider."""
        counts = self._merge_counts(run_id, total_rows=total_rows)
        run = self._update_processing(
            run_id,
            {"total_rows": counts["total_rows"]},
            ImportStatus.PROCESSING
        )
        self._publish(run)
        return run

    def record_progress(
        self,
        run_id: str,
        imported_rows: int,
        skipped_rows: int
    ) -> ImportRunResponse:
        """
        Refresh cumulative counts of a processing run.

        Counts lower than the last recorded ones are ignored.

        Raises:
            InvalidStatusTransitionError: If the run is already terminal
        """
        counts = self._merge_counts(
            run_id,
            imported_rows=imported_rows,
            skipped_rows=skipped_rows
        )
        run = self._update_processing(
            run_id,
            {
                "imported_rows": counts["imported_rows"],
                "skipped_rows": counts["skipped_rows"],
            },
            ImportStatus.PROCESSING
        )
        logger.debug(
            "import_progress_recorded",
            import_run_id=run_id,
            imported_rows=run.imported_rows,
            skipped_rows=run.skipped_rows
        )
        self._publish(run)
        return run

    def complete(
        self,
        run_id: str,
        total_rows: int,
        imported_rows: int,
        skipped_rows: int
    ) -> ImportRunResponse:
        """
        Mark a run completed with its final counts.

        Raises:
            InvalidStatusTransitionError: If the run is already terminal
        """
        counts = self._merge_counts(
            run_id,
            total_rows=total_rows,
            imported_rows=imported_rows,
            skipped_rows=skipped_rows
        )
        run = self._update_processing(
            run_id,
            {
                "status": ImportStatus.COMPLETED.value,
                "completed_at": _now(),
                **counts,
            },
            ImportStatus.COMPLETED
        )
        self._forget(run_id)

        logger.info(
            "import_run_completed",
            import_run_id=run_id,
            total_rows=run.total_rows,
            imported_rows=run.imported_rows,
            skipped_rows=run.skipped_rows,
            duration_seconds=run.duration_seconds
        )
        self._publish(run)
        return run

    def fail(
        self,
        run_id: str,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None
    ) -> ImportRunResponse:
        """
        Mark a run failed with a structured error payload.

        Counts recorded so far are kept as they are.

        Raises:
            InvalidStatusTransitionError: If the run is already terminal
        """
        error_details: dict[str, Any] = {"message": message[:2000] if message else "Unknown error"}
        if code:
            error_details["code"] = code
        if details:
            error_details["details"] = details

        run = self._update_processing(
            run_id,
            {
                "status": ImportStatus.FAILED.value,
                "completed_at": _now(),
                "error_details": error_details,
            },
            ImportStatus.FAILED
        )
        self._forget(run_id)

        logger.warning(
            "import_run_failed",
            import_run_id=run_id,
            code=code,
            error=error_details["message"][:200]
        )
        self._publish(run)
        return run

    def _forget(self, run_id: str) -> None:
        with self._lock:
            self._counts.pop(run_id, None)

    # ===================
    # MAINTENANCE
    # ===================

    def reconcile_stale_runs(self, older_than_minutes: int) -> list[str]:
        """
        Fail processing runs started before the cutoff.

        A worker that crashed mid-import leaves its run in processing
        forever; this sweep gives those runs a terminal state.

        Returns:
            IDs of the runs marked failed
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        client = get_admin_client() or self.db

        try:
            result = (
                client.table(self.table)
                .select("id")
                .eq("status", ImportStatus.PROCESSING.value)
                .lt("started_at", cutoff.isoformat())
                .execute()
            )
        except Exception as e:
            logger.error("find_stale_runs_failed", error=str(e))
            raise DatabaseError("select", str(e))

        failed: list[str] = []
        for row in result.data or []:
            try:
                self.fail(
                    row["id"],
                    f"Import did not finish within {older_than_minutes} minutes",
                    code="IMPORT_TIMED_OUT",
                    details={"cutoff": cutoff.isoformat()}
                )
                failed.append(row["id"])
            except InvalidStatusTransitionError:
                # Finished between the select and the update
                continue

        logger.info("stale_runs_reconciled", failed=len(failed), cutoff=cutoff.isoformat())
        return failed

    def delete_runs_for_supplier(self, supplier_id: str) -> int:
        """Remove every run of a supplier (supplier delete cascade)."""
        try:
            result = (
                self.db.table(self.table)
                .delete(count="exact")
                .eq("supplier_id", supplier_id)
                .execute()
            )
            return result.count if result.count is not None else len(result.data or [])

        except Exception as e:
            logger.error("delete_import_runs_failed", supplier_id=supplier_id, error=str(e))
            raise DatabaseError("delete", str(e), {"supplier_id": supplier_id})


_import_run_service: Optional[ImportRunService] = None


def get_import_run_service() -> ImportRunService:
    """Get or create ImportRunService instance."""
    global _import_run_service
    if _import_run_service is None:
        _import_run_service = ImportRunService()
    return _import_run_service
