"""
CSV parser for supplier catalog files.

Reads raw bytes into header-keyed rows of raw text. Nothing is interpreted
here: values stay strings (dtype=str, no NA conversion) so the record
validator sees exactly what the supplier sent.

Handles:
- UTF-8 (with or without BOM), Windows-1252 and Latin-1 files
- Comma, semicolon and tab separators (detected from the header line)
- Lines with too many fields (extra fields dropped) or too few (padded)
- Fully blank lines (skipped, counted)
"""

from dataclasses import dataclass, field
from io import StringIO
from typing import Optional
import csv
import warnings
import structlog

import pandas as pd

from exceptions import CsvParseError
from utils.text_utils import clean_header, is_blank_row

logger = structlog.get_logger(__name__)

ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")
SEPARATORS = (",", ";", "\t")


@dataclass
class ParsedCsv:
    """Parsed file: observed headers plus one dict per data row."""
    headers: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)
    encoding: str = "utf-8-sig"
    separator: str = ","
    blank_lines_skipped: int = 0
    malformed_lines: int = 0

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _decode(content: bytes) -> tuple[str, str]:
    """Decode bytes with the first encoding that accepts them."""
    for encoding in ENCODINGS:
        try:
            return content.decode(encoding), encoding
        except UnicodeDecodeError:
            continue
    # latin-1 accepts every byte, so this is unreachable in practice
    raise CsvParseError("File encoding is not supported")


def _detect_separator(text: str) -> str:
    """Pick the separator that splits the header line into the most columns."""
    header_line = next((line for line in text.splitlines() if line.strip()), "")
    counts = {sep: header_line.count(sep) for sep in SEPARATORS}
    best = max(SEPARATORS, key=lambda sep: counts[sep])
    return best if counts[best] > 0 else ","


def _count_long_lines(text: str, separator: str) -> int:
    """Count data lines with more fields than the header (blank lines ignored)."""
    lines = (r for r in csv.reader(StringIO(text), delimiter=separator) if r)
    header = next(lines, [])
    return sum(1 for fields in lines if len(fields) > len(header))


def parse_csv(content: bytes, file_name: Optional[str] = None) -> ParsedCsv:
    """
    Parse CSV bytes into header-keyed rows.

    Args:
        content: Raw file bytes
        file_name: Used for logging and error details only

    Returns:
        ParsedCsv with cleaned headers and raw string values

    Raises:
        CsvParseError: If the file is empty or cannot be read as CSV
    """
    details = {"file_name": file_name}

    if not content or not content.strip():
        raise CsvParseError("CSV file is empty", details=details)

    text, encoding = _decode(content)
    separator = _detect_separator(text)
    try:
        malformed = _count_long_lines(text, separator)
        with warnings.catch_warnings():
            # index_col=False truncates long lines and warns; they are counted above
            warnings.simplefilter("ignore", pd.errors.ParserWarning)
            df = pd.read_csv(
                StringIO(text),
                sep=separator,
                dtype=str,
                keep_default_na=False,
                na_filter=False,
                skip_blank_lines=True,
                index_col=False,
                engine="python",
                on_bad_lines=lambda fields: fields,
            )
    except pd.errors.EmptyDataError as e:
        raise CsvParseError("CSV file has no header row", details=details) from e
    except (pd.errors.ParserError, csv.Error, ValueError) as e:
        logger.warning(
            "csv_parse_failed",
            file_name=file_name,
            encoding=encoding,
            separator=separator,
            error=str(e)
        )
        raise CsvParseError(f"Could not parse CSV file: {e}", details=details) from e

    headers = [clean_header(str(col)) for col in df.columns]
    df.columns = headers
    df = df.fillna("")

    rows: list[dict[str, str]] = []
    blank = 0
    for record in df.to_dict(orient="records"):
        if is_blank_row(record):
            blank += 1
            continue
        rows.append({key: str(value) for key, value in record.items()})

    logger.info(
        "csv_parsed",
        file_name=file_name,
        encoding=encoding,
        separator=separator,
        columns=len(headers),
        rows=len(rows),
        blank_lines_skipped=blank,
        malformed_lines=malformed
    )

    return ParsedCsv(
        headers=headers,
        rows=rows,
        encoding=encoding,
        separator=separator,
        blank_lines_skipped=blank,
        malformed_lines=malformed,
    )
