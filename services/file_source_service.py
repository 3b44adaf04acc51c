"""
File sources for supplier imports.

A source knows the file name to record on the import run and how to fetch
the file's rows. Manual uploads carry their bytes; FTP sources download the
file from the supplier's server when fetched.
"""

from io import BytesIO
from typing import Optional, Protocol
import ftplib
import structlog

from config import settings
from models.field_mapping import FilePreviewResponse
from models.supplier import FtpDescriptor
from parsers.csv_parser import ParsedCsv, parse_csv
from exceptions import SourceUnavailableError

logger = structlog.get_logger(__name__)


class RowSource(Protocol):
    """Anything that can deliver a supplier file as parsed rows."""

    file_name: str

    def fetch(self) -> ParsedCsv:
        ...


class UploadSource:
    """CSV bytes received from a manual upload."""

    def __init__(self, file_name: str, content: bytes):
        self.file_name = file_name or "upload.csv"
        self.content = content

    def fetch(self) -> ParsedCsv:
        return parse_csv(self.content, file_name=self.file_name)


class FtpSource:
    """CSV file published by the supplier on an FTP server."""

    def __init__(self, descriptor: FtpDescriptor, timeout: Optional[int] = None):
        self.descriptor = descriptor
        self.file_name = descriptor.file_name
        self.timeout = timeout or settings.ftp_timeout_seconds

    def download(self) -> bytes:
        """
        Download the remote file.

        Raises:
            SourceUnavailableError: On connection, login or transfer errors
        """
        d = self.descriptor
        details = {"host": d.host, "port": d.port, "path": d.path}
        logger.info("ftp_download_started", **details)

        buffer = BytesIO()
        try:
            with ftplib.FTP(timeout=self.timeout) as ftp:
                ftp.connect(d.host, d.port)
                ftp.login(d.username or "anonymous", d.password or "")
                ftp.retrbinary(f"RETR {d.path}", buffer.write)
        except ftplib.all_errors as e:
            logger.error(
                "ftp_download_failed",
                error=str(e),
                error_type=type(e).__name__,
                **details
            )
            raise SourceUnavailableError(
                f"FTP download failed: {e}",
                details={**details, "error_type": type(e).__name__}
            ) from e

        content = buffer.getvalue()
        logger.info("ftp_download_finished", bytes=len(content), **details)
        return content

    def fetch(self) -> ParsedCsv:
        return parse_csv(self.download(), file_name=self.file_name)


def preview_source(source: RowSource, sample_size: int = 5) -> FilePreviewResponse:
    """Headers and first rows of a file, without importing it."""
    parsed = source.fetch()
    return FilePreviewResponse(
        file_name=source.file_name,
        headers=parsed.headers,
        sample_rows=parsed.rows[:sample_size],
        row_count=parsed.row_count,
        encoding=parsed.encoding,
        separator=parsed.separator,
    )
