"""
Supplier schemas for validation and serialization.

A supplier either uploads CSV files manually or publishes them on an FTP
server. The FTP descriptor is stored flat on the suppliers row
(ftp_host, ftp_username, ftp_password, ftp_path, ftp_port).
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from models.base import BaseSchema, TimestampMixin
from models.field_mapping import FieldMapping
from models.import_run import ImportRunResponse


class FtpDescriptor(BaseSchema):
    """Where a supplier's catalog file lives on a remote FTP server."""

    host: str = Field(..., min_length=1, description="FTP host name")
    username: Optional[str] = Field(None, description="FTP user (anonymous if empty)")
    password: Optional[str] = Field(None, description="FTP password")
    path: str = Field(..., min_length=1, description="Remote path of the CSV file")
    port: int = Field(default=21, ge=1, le=65535, description="FTP port")

    @property
    def file_name(self) -> str:
        """Last path segment, used as the import run's file name."""
        return self.path.rstrip("/").rsplit("/", 1)[-1] or self.path

    def to_columns(self) -> dict:
        """Flatten to the suppliers table columns."""
        return {
            "ftp_host": self.host,
            "ftp_username": self.username,
            "ftp_password": self.password,
            "ftp_path": self.path,
            "ftp_port": self.port,
        }


# Columns cleared when a supplier switches back to manual uploads
EMPTY_FTP_COLUMNS = {
    "ftp_host": None,
    "ftp_username": None,
    "ftp_password": None,
    "ftp_path": None,
    "ftp_port": None,
}


class SupplierCreate(BaseSchema):
    """
    Create a new supplier.

    Required: name
    Optional: contact_email, ftp (selects the FTP ingestion path)
    """

    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    contact_email: Optional[str] = Field(None, max_length=255, description="Contact address")
    is_active: bool = Field(default=True, description="Whether supplier is active")
    ftp: Optional[FtpDescriptor] = Field(None, description="FTP file source")

    @field_validator("contact_email")
    @classmethod
    def email_lowercase(cls, v: Optional[str]) -> Optional[str]:
        """Store contact addresses lowercase, empty strings as None."""
        if not v:
            return None
        return v.lower()


class SupplierUpdate(BaseSchema):
    """
    Update existing supplier.

    All fields optional - only provided fields are updated.
    Set clear_ftp to switch the supplier back to manual uploads.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    contact_email: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None
    ftp: Optional[FtpDescriptor] = None
    clear_ftp: bool = False


class SupplierResponse(BaseSchema, TimestampMixin):
    """Supplier row as stored."""

    id: str = Field(..., description="Supplier UUID")
    name: str
    contact_email: Optional[str] = None
    is_active: bool = True
    ftp_host: Optional[str] = None
    ftp_username: Optional[str] = None
    ftp_password: Optional[str] = Field(None, exclude=True)
    ftp_path: Optional[str] = None
    ftp_port: Optional[int] = None

    @property
    def ftp(self) -> Optional[FtpDescriptor]:
        """FTP descriptor, or None for manual-upload suppliers."""
        if not self.ftp_host or not self.ftp_path:
            return None
        return FtpDescriptor(
            host=self.ftp_host,
            username=self.ftp_username,
            password=self.ftp_password,
            path=self.ftp_path,
            port=self.ftp_port or 21,
        )

    @property
    def uses_ftp(self) -> bool:
        return self.ftp is not None


class SupplierDeleteResponse(BaseModel):
    """Counts removed by a cascading supplier delete."""

    supplier_id: str
    products_deleted: int = 0
    mappings_deleted: int = 0
    import_runs_deleted: int = 0


class SupplierOnboard(SupplierCreate):
    """Supplier plus its initial mapping ({target_field: source_column})."""

    mappings: dict[str, Optional[str]] = Field(..., description="Canonical field to source column")


class OnboardResponse(BaseModel):
    """Supplier created by onboarding, with its mapping and first import."""

    supplier: SupplierResponse
    mapping: FieldMapping
    import_run: Optional[ImportRunResponse] = None
