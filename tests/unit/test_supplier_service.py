"""
Unit tests for SupplierService.

Run: pytest tests/unit/test_supplier_service.py -v
"""

import pytest

from models.supplier import FtpDescriptor, SupplierCreate, SupplierUpdate
from services.supplier_service import SupplierService
from services.import_locks import get_lock_registry
from exceptions import ImportAlreadyRunningError, SupplierNotFoundError
from tests.factories import ImportRunFactory, MappingFactory, SupplierFactory


class TestSupplierRead:
    """Tests for get_all() and get_by_id()"""

    def test_get_all_ordered_by_name(self, mock_db):
        """Should return suppliers sorted by name."""
        mock_db.set_table_data("suppliers", [
            SupplierFactory.create(name="Zeta"),
            SupplierFactory.create(name="Alpha", is_active=False),
        ])

        suppliers = SupplierService().get_all()

        assert [s.name for s in suppliers] == ["Alpha", "Zeta"]

    def test_get_all_active_only(self, mock_db):
        """Should filter out inactive suppliers."""
        mock_db.set_table_data("suppliers", [
            SupplierFactory.create(name="Zeta"),
            SupplierFactory.create(name="Alpha", is_active=False),
        ])

        assert [s.name for s in SupplierService().get_all(active_only=True)] == ["Zeta"]

    def test_get_missing_raises(self, mock_db):
        """Should raise SupplierNotFoundError."""
        with pytest.raises(SupplierNotFoundError) as exc_info:
            SupplierService().get_by_id("missing")

        assert exc_info.value.status_code == 404

    def test_ftp_descriptor_rebuilt(self, mock_db):
        """Should expose the flat ftp columns as a descriptor."""
        row = SupplierFactory.create(ftp_host="ftp.test", ftp_path="/out/stock.csv", ftp_port=2121)
        mock_db.set_table_data("suppliers", [row])

        supplier = SupplierService().get_by_id(row["id"])

        assert supplier.uses_ftp
        assert supplier.ftp.port == 2121
        assert supplier.ftp.file_name == "stock.csv"


class TestSupplierWrite:
    """Tests for create() and update()"""

    def test_create_flattens_ftp(self, mock_db):
        """Should store the FTP descriptor in the supplier row."""
        data = SupplierCreate(
            name="Dupont",
            contact_email="Sales@Dupont.TEST",
            ftp=FtpDescriptor(host="ftp.dupont.test", path="/stock.csv", username="dupont")
        )

        supplier = SupplierService().create(data)

        row = mock_db.rows("suppliers")[0]
        assert row["ftp_host"] == "ftp.dupont.test"
        assert row["ftp_port"] == 21
        assert supplier.contact_email == "sales@dupont.test"

    def test_password_not_serialized(self, mock_db):
        """Should never return the FTP password."""
        supplier = SupplierService().create(
            SupplierCreate(name="Dupont", ftp=FtpDescriptor(host="h", path="/p.csv", password="secret"))
        )

        assert "ftp_password" not in supplier.model_dump()

    def test_update_only_given_fields(self, mock_db):
        """Should leave other fields unchanged."""
        row = SupplierFactory.create(name="Old", contact_email="a@b.test")
        mock_db.set_table_data("suppliers", [row])

        supplier = SupplierService().update(row["id"], SupplierUpdate(name="New"))

        assert supplier.name == "New"
        assert supplier.contact_email == "a@b.test"

    def test_clear_ftp_switches_to_manual(self, mock_db):
        """Should clear every FTP column."""
        row = SupplierFactory.create(ftp_host="ftp.test", ftp_path="/stock.csv")
        mock_db.set_table_data("suppliers", [row])

        supplier = SupplierService().update(row["id"], SupplierUpdate(clear_ftp=True))

        assert not supplier.uses_ftp
        assert mock_db.rows("suppliers")[0]["ftp_host"] is None


class TestSupplierDelete:
    """Tests for SupplierService.delete()"""

    def test_cascades_to_owned_rows(self, mock_db):
        """Should remove products, mapping and runs of the supplier only."""
        # Arrange
        keep, drop = SupplierFactory.create(), SupplierFactory.create()
        mock_db.set_table_data("suppliers", [keep, drop])
        mock_db.set_table_data("field_mappings", MappingFactory.rows(keep["id"]) + MappingFactory.rows(drop["id"]))
        mock_db.set_table_data("products", [
            {"id": "p1", "supplier_id": drop["id"], "sku": "A", "name": "A", "price_ht": 1, "stock": 1},
            {"id": "p2", "supplier_id": keep["id"], "sku": "B", "name": "B", "price_ht": 1, "stock": 1},
        ])
        mock_db.set_table_data("import_logs", [ImportRunFactory.create(drop["id"], status="completed")])

        # Act
        result = SupplierService().delete(drop["id"])

        # Assert
        assert (result.products_deleted, result.mappings_deleted, result.import_runs_deleted) == (1, 4, 1)
        assert [s["id"] for s in mock_db.rows("suppliers")] == [keep["id"]]
        assert {r["supplier_id"] for r in mock_db.rows("field_mappings")} == {keep["id"]}
        assert [p["id"] for p in mock_db.rows("products")] == ["p2"]
        assert mock_db.rows("import_logs") == []

    def test_refused_during_import(self, mock_db):
        """Should not delete a supplier whose import is running."""
        row = SupplierFactory.create()
        mock_db.set_table_data("suppliers", [row])
        get_lock_registry().acquire(row["id"], holder="run-1")

        with pytest.raises(ImportAlreadyRunningError):
            SupplierService().delete(row["id"])

        assert len(mock_db.rows("suppliers")) == 1

    def test_refused_while_another_worker_imports(self, mock_db):
        """Should not delete a supplier with a recent processing run in the store."""
        # Arrange
        row = SupplierFactory.create()
        mock_db.set_table_data("suppliers", [row])
        mock_db.set_table_data("import_logs", [
            ImportRunFactory.create(row["id"], started_minutes_ago=1, id="run-elsewhere")
        ])

        # Act
        with pytest.raises(ImportAlreadyRunningError) as exc_info:
            SupplierService().delete(row["id"])

        # Assert
        assert exc_info.value.details["import_run_id"] == "run-elsewhere"
        assert len(mock_db.rows("suppliers")) == 1
        assert not get_lock_registry().is_locked(row["id"])

    def test_stale_processing_run_does_not_block(self, mock_db):
        """Should delete when the only processing run is an orphan."""
        row = SupplierFactory.create()
        mock_db.set_table_data("suppliers", [row])
        mock_db.set_table_data("import_logs", [
            ImportRunFactory.create(row["id"], started_minutes_ago=600)
        ])

        result = SupplierService().delete(row["id"])

        assert result.import_runs_deleted == 1
        assert mock_db.rows("suppliers") == []

    def test_missing_supplier_raises(self, mock_db):
        """Should raise SupplierNotFoundError."""
        with pytest.raises(SupplierNotFoundError):
            SupplierService().delete("missing")
