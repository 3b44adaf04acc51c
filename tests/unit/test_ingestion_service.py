"""
Unit tests for IngestionService (end-to-end imports over the in-memory store).

Run: pytest tests/unit/test_ingestion_service.py -v
"""

from unittest.mock import patch
import ftplib

import pytest

from config import settings
from models.import_run import ImportStatus
from models.supplier import SupplierCreate
from services.ingestion_service import IngestionService
from services.file_source_service import UploadSource
from services.import_locks import get_lock_registry
from services.import_run_service import get_import_run_service
from exceptions import (
    CsvParseError,
    DatabaseError,
    FileTooLargeError,
    FtpNotConfiguredError,
    ImportAlreadyRunningError,
    ImportCancelledError,
    ImportRunNotFoundError,
    InvalidMappingError,
    InvalidStatusTransitionError,
    MappingIncompleteError,
    SourceUnavailableError,
    SupplierNotFoundError,
    WriteFailureError,
)
from tests.factories import CsvFactory, ImportRunFactory, MappingFactory, SupplierFactory


@pytest.fixture
def service(mock_db):
    return IngestionService()


def only_run(mock_db) -> dict:
    runs = mock_db.rows("import_logs")
    assert len(runs) == 1
    return runs[0]


class TestImportUpload:
    """Tests for IngestionService.import_upload()"""

    def test_completes_run_with_counts(self, service, mock_db, supplier_with_mapping):
        """Should import accepted rows and record final counts."""
        # Arrange
        content = CsvFactory.build([
            CsvFactory.row(sku=" ABC-1 ", name="Widget", price="$12.50", stock="10"),
            CsvFactory.row(sku="", name="Widget", price="5", stock="1"),
            CsvFactory.row(sku="ABC-2", name="Gadget", price="3", stock="0"),
        ])

        # Act
        run = service.import_upload(supplier_with_mapping["id"], "stock.csv", content)

        # Assert
        assert run.status == ImportStatus.COMPLETED
        assert run.file_name == "stock.csv"
        assert (run.total_rows, run.imported_rows, run.skipped_rows) == (3, 2, 1)
        assert run.imported_rows + run.skipped_rows == run.total_rows
        products = mock_db.rows("products")
        assert [p["sku"] for p in products] == ["ABC-1", "ABC-2"]
        assert products[0]["price_ht"] == 12.5
        assert products[0]["stock"] == 10

    def test_releases_lock(self, service, supplier_with_mapping):
        """Should free the supplier for the next import."""
        run = service.import_upload(supplier_with_mapping["id"], "stock.csv", CsvFactory.valid_rows(3))

        assert not get_lock_registry().is_locked(supplier_with_mapping["id"])
        assert not service.is_active(run.id)

    def test_second_import_replaces_first(self, service, mock_db, supplier_with_mapping):
        """Should leave only the latest file's products."""
        supplier_id = supplier_with_mapping["id"]
        service.import_upload(supplier_id, "a.csv", CsvFactory.valid_rows(5))

        service.import_upload(supplier_id, "b.csv", CsvFactory.build([CsvFactory.row(sku="ONLY")]))

        assert [p["sku"] for p in mock_db.rows("products")] == ["ONLY"]

    def test_publishes_progress_until_completed(self, service, supplier_with_mapping):
        """Should stream non-decreasing counts ending in completed."""
        events = []
        get_import_run_service().subscribe(events.append)

        service.import_upload(supplier_with_mapping["id"], "stock.csv", CsvFactory.valid_rows(250))

        imported = [e.imported_rows for e in events]
        assert imported == sorted(imported)
        assert events[-1].status == ImportStatus.COMPLETED
        assert events[-1].imported_rows == 250
        assert events[-1].total_rows == 250

    def test_unknown_supplier_raises(self, service, mock_db):
        """Should refuse before creating a run."""
        with pytest.raises(SupplierNotFoundError):
            service.import_upload("missing", "stock.csv", CsvFactory.valid_rows(1))

        assert mock_db.rows("import_logs") == []

    def test_too_large_file_raises(self, service, mock_db, supplier_with_mapping, monkeypatch):
        """Should refuse uploads above max_upload_mb."""
        monkeypatch.setattr(settings, "max_upload_mb", 0)

        with pytest.raises(FileTooLargeError):
            service.import_upload(supplier_with_mapping["id"], "stock.csv", CsvFactory.valid_rows(1))

        assert mock_db.rows("import_logs") == []


class TestFailedImports:
    """Fatal errors end the run failed and reach the caller."""

    def test_incomplete_mapping_fails_run(self, service, mock_db):
        """Should fail with MAPPING_INCOMPLETE and keep existing products."""
        # Arrange
        supplier = SupplierFactory.create()
        mock_db.set_table_data("suppliers", [supplier])
        mock_db.set_table_data("products", [{"id": "p1", "supplier_id": supplier["id"], "sku": "KEEP",
                                             "name": "Keep", "price_ht": 1.0, "stock": 1}])

        # Act
        with pytest.raises(MappingIncompleteError):
            service.import_upload(supplier["id"], "stock.csv", CsvFactory.valid_rows(3))

        # Assert
        run = only_run(mock_db)
        assert run["status"] == "failed"
        assert run["error_details"]["code"] == "MAPPING_INCOMPLETE"
        assert run["completed_at"] is not None
        assert [p["sku"] for p in mock_db.rows("products")] == ["KEEP"]
        assert not get_lock_registry().is_locked(supplier["id"])

    def test_file_without_mapped_column_fails_before_delete(self, service, mock_db, supplier_with_mapping):
        """Should refuse a file missing a mapped column without touching products."""
        content = CsvFactory.build(
            [{"Ref": "A1", "Designation": "Widget", "Prix HT": "3"}],
            headers=["Ref", "Designation", "Prix HT"]
        )

        with pytest.raises(MappingIncompleteError) as exc_info:
            service.import_upload(supplier_with_mapping["id"], "stock.csv", content)

        assert exc_info.value.missing_fields == ["stock"]
        assert exc_info.value.details["missing_columns"] == ["Qte"]
        assert ("products", "delete") not in mock_db.calls
        assert only_run(mock_db)["status"] == "failed"

    def test_unreadable_file_fails_run(self, service, mock_db, supplier_with_mapping):
        """Should fail with CSV_PARSE_ERROR."""
        with pytest.raises(CsvParseError):
            service.import_upload(supplier_with_mapping["id"], "empty.csv", b"")

        assert only_run(mock_db)["error_details"]["code"] == "CSV_PARSE_ERROR"

    def test_write_failure_fails_run(self, service, mock_db, supplier_with_mapping):
        """Should fail with IMPORT_WRITE_FAILED and keep progress counts."""
        mock_db.fail_on("products", "insert", after=1)

        with pytest.raises(WriteFailureError):
            service.import_upload(supplier_with_mapping["id"], "stock.csv", CsvFactory.valid_rows(250))

        run = only_run(mock_db)
        assert run["status"] == "failed"
        assert run["error_details"]["code"] == "IMPORT_WRITE_FAILED"
        assert run["imported_rows"] == 100
        assert run["total_rows"] == 250

    def test_unexpected_error_fails_run(self, service, mock_db, supplier_with_mapping):
        """Should fail the run on non-application errors too."""
        with patch.object(UploadSource, "fetch", side_effect=KeyError("boom")):
            with pytest.raises(KeyError):
                service.import_upload(supplier_with_mapping["id"], "stock.csv", b"x")

        run = only_run(mock_db)
        assert run["status"] == "failed"
        assert run["error_details"]["code"] == "INTERNAL_ERROR"
        assert not get_lock_registry().is_locked(supplier_with_mapping["id"])


class TestConcurrentImports:
    """At most one active run per supplier."""

    def test_second_import_rejected_while_first_processing(self, service, mock_db, supplier_with_mapping):
        """Should fail fast and leave the first run untouched."""
        # Arrange
        supplier_id = supplier_with_mapping["id"]
        first = service.start_import(supplier_id, UploadSource("a.csv", CsvFactory.valid_rows(3)))
        before = dict(only_run(mock_db))

        # Act
        with pytest.raises(ImportAlreadyRunningError) as exc_info:
            service.start_import(supplier_id, UploadSource("b.csv", CsvFactory.valid_rows(3)))

        # Assert
        assert exc_info.value.status_code == 409
        assert only_run(mock_db) == before
        assert service.execute(first).status == ImportStatus.COMPLETED

    def test_processing_run_in_store_blocks_import(self, service, mock_db, supplier_with_mapping):
        """Should honour a recent processing run started elsewhere."""
        supplier_id = supplier_with_mapping["id"]
        mock_db.set_table_data("import_logs", [ImportRunFactory.create(supplier_id, id="elsewhere")])

        with pytest.raises(ImportAlreadyRunningError) as exc_info:
            service.import_upload(supplier_id, "stock.csv", CsvFactory.valid_rows(1))

        assert exc_info.value.details["import_run_id"] == "elsewhere"
        assert not get_lock_registry().is_locked(supplier_id)

    def test_stale_processing_run_does_not_block(self, service, mock_db, supplier_with_mapping):
        """Should ignore processing runs older than the stale cutoff."""
        supplier_id = supplier_with_mapping["id"]
        mock_db.set_table_data("import_logs", [
            ImportRunFactory.create(supplier_id, started_minutes_ago=settings.import_stale_after_minutes + 5)
        ])

        run = service.import_upload(supplier_id, "stock.csv", CsvFactory.valid_rows(1))

        assert run.status == ImportStatus.COMPLETED

    def test_other_supplier_not_blocked(self, service, mock_db, supplier_with_mapping):
        """Should lock per supplier only."""
        other = SupplierFactory.create()
        mock_db.set_table_data("suppliers", [supplier_with_mapping, other])
        mock_db.set_table_data(
            "field_mappings",
            mock_db.rows("field_mappings") + MappingFactory.rows(other["id"])
        )
        service.start_import(supplier_with_mapping["id"], UploadSource("a.csv", CsvFactory.valid_rows(1)))

        run = service.import_upload(other["id"], "b.csv", CsvFactory.valid_rows(1))

        assert run.status == ImportStatus.COMPLETED


class TestCancel:
    """Tests for IngestionService.cancel()"""

    def test_cancelled_run_ends_failed(self, service, mock_db, supplier_with_mapping):
        """Should stop the import and fail the run with IMPORT_CANCELLED."""
        handle = service.start_import(supplier_with_mapping["id"], UploadSource("a.csv", CsvFactory.valid_rows(10)))

        service.cancel(handle.run_id)
        with pytest.raises(ImportCancelledError):
            service.execute(handle)

        run = only_run(mock_db)
        assert run["status"] == "failed"
        assert run["error_details"]["code"] == "IMPORT_CANCELLED"
        assert not get_lock_registry().is_locked(supplier_with_mapping["id"])

    def test_unknown_run_raises(self, service):
        """Should raise ImportRunNotFoundError."""
        with pytest.raises(ImportRunNotFoundError):
            service.cancel("missing")

    def test_finished_run_raises(self, service, supplier_with_mapping):
        """Should refuse to cancel a completed run."""
        run = service.import_upload(supplier_with_mapping["id"], "a.csv", CsvFactory.valid_rows(1))

        with pytest.raises(InvalidStatusTransitionError):
            service.cancel(run.id)


class TestRefreshFromFtp:
    """Tests for IngestionService.refresh_from_ftp()"""

    def test_manual_supplier_raises(self, service, supplier_with_mapping):
        """Should refuse suppliers without an FTP source."""
        with pytest.raises(FtpNotConfiguredError):
            service.refresh_from_ftp(supplier_with_mapping["id"])

    def test_imports_downloaded_file(self, service, mock_db):
        """Should download the remote file and import it."""
        # Arrange
        supplier = SupplierFactory.create(ftp_host="ftp.supplier.test", ftp_path="/export/stock.csv")
        mock_db.set_table_data("suppliers", [supplier])
        mock_db.set_table_data("field_mappings", MappingFactory.rows(supplier["id"]))
        content = CsvFactory.valid_rows(4)

        # Act
        with patch("services.file_source_service.ftplib.FTP") as mock_ftp:
            ftp = mock_ftp.return_value.__enter__.return_value
            ftp.retrbinary.side_effect = lambda cmd, callback: callback(content)
            run = service.refresh_from_ftp(supplier["id"])

        # Assert
        assert run.status == ImportStatus.COMPLETED
        assert run.file_name == "stock.csv"
        assert run.imported_rows == 4
        ftp.connect.assert_called_once_with("ftp.supplier.test", 21)
        ftp.login.assert_called_once_with("anonymous", "")

    def test_download_failure_fails_run(self, service, mock_db):
        """Should fail the run with SOURCE_UNAVAILABLE."""
        supplier = SupplierFactory.create(ftp_host="ftp.supplier.test", ftp_path="/export/stock.csv")
        mock_db.set_table_data("suppliers", [supplier])
        mock_db.set_table_data("field_mappings", MappingFactory.rows(supplier["id"]))

        with patch("services.file_source_service.ftplib.FTP") as mock_ftp:
            ftp = mock_ftp.return_value.__enter__.return_value
            ftp.login.side_effect = ftplib.error_perm("530 Login incorrect")
            with pytest.raises(SourceUnavailableError):
                service.refresh_from_ftp(supplier["id"])

        run = only_run(mock_db)
        assert run["status"] == "failed"
        assert run["error_details"]["code"] == "SOURCE_UNAVAILABLE"


class TestOnboardSupplier:
    """Tests for IngestionService.onboard_supplier()"""

    def test_creates_supplier_mapping_and_first_import(self, service, mock_db):
        """Should create everything and import the first file."""
        result = service.onboard_supplier(
            SupplierCreate(name="Carrelages Dupont"),
            MappingFactory.columns(),
            filename="first.csv",
            content=CsvFactory.valid_rows(5)
        )

        assert result.supplier.name == "Carrelages Dupont"
        assert result.mapping.sku == "Ref"
        assert result.run.status == ImportStatus.COMPLETED
        assert len(mock_db.rows("field_mappings")) == 4
        assert len(mock_db.rows("products")) == 5

    def test_started_import_runs_later(self, service, mock_db):
        """Should leave the first import processing until it is executed."""
        result = service.onboard_supplier(
            SupplierCreate(name="Dupont"),
            MappingFactory.columns(),
            content=CsvFactory.valid_rows(3),
            wait=False
        )

        assert result.run.status == ImportStatus.PROCESSING
        assert result.run.file_name == "upload.csv"
        assert service.is_active(result.run.id)

        service.run_in_background(result.handle)

        assert result.run.status == ImportStatus.COMPLETED
        assert len(mock_db.rows("products")) == 3

    def test_without_file_creates_no_run(self, service, mock_db):
        """Should stop after the mapping when no file is given."""
        result = service.onboard_supplier(SupplierCreate(name="Dupont"), MappingFactory.columns())

        assert result.run is None
        assert mock_db.rows("import_logs") == []

    def test_invalid_mapping_creates_nothing(self, service, mock_db):
        """Should validate the mapping before creating the supplier."""
        with pytest.raises(InvalidMappingError):
            service.onboard_supplier(SupplierCreate(name="Dupont"), {**MappingFactory.columns(), "ean": "EAN"})

        assert mock_db.rows("suppliers") == []

    def test_mapping_store_failure_removes_supplier(self, service, mock_db):
        """Should not leave a supplier without mapping behind."""
        mock_db.fail_on("field_mappings", "insert")

        with pytest.raises(DatabaseError):
            service.onboard_supplier(SupplierCreate(name="Dupont"), MappingFactory.columns())

        assert mock_db.rows("suppliers") == []
