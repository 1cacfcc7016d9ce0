from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

"""Spreadsheet reader for bulk grade uploads.

Row 0 of the first sheet is the header and is always discarded. Columns are
positional: student_code, student_name, national_id, grade.

Two failure modes are kept apart:
- UnsupportedFileTypeError: name / media type is not a spreadsheet. Raised
  before any byte is read.
- SpreadsheetDecodeError: the bytes could not be decoded. ``load_grid``
  turns this into an empty grid for the preview; the import path surfaces it.
"""

__all__ = [
    "ACCEPTED_EXTENSIONS",
    "ACCEPTED_MEDIA_TYPES",
    "EXPECTED_COLUMNS",
    "SheetGrid",
    "SpreadsheetDecodeError",
    "UnsupportedFileTypeError",
    "UploadedFile",
    "check_spreadsheet_format",
    "load_grid",
    "normalize_cell",
    "read_first_sheet",
]

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = frozenset({".xlsx", ".xls"})
ACCEPTED_MEDIA_TYPES = frozenset({
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
})
EXPECTED_COLUMNS = 4  # code, name, national id, grade

_MEDIA_TYPES_BY_EXTENSION = {
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
}


class UnsupportedFileTypeError(Exception):
    """Raised when the uploaded file is not an .xlsx/.xls spreadsheet."""


class SpreadsheetDecodeError(Exception):
    """Raised when the workbook bytes cannot be decoded into a sheet."""


@dataclass(frozen=True)
class UploadedFile:
    """A file handed over by the UI (bytes in memory) or the CLI (a path)."""
    name: str
    content: bytes | None = None
    media_type: str | None = None
    path: Path | None = None

    @staticmethod
    def from_path(path: Path) -> UploadedFile:
        # 中身は読まない (形式チェック前に I/O しない)
        return UploadedFile(
            name=path.name,
            media_type=_MEDIA_TYPES_BY_EXTENSION.get(path.suffix.lower()),
            path=path,
        )

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.path is None:
            raise SpreadsheetDecodeError(f"no content for file '{self.name}'")
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise SpreadsheetDecodeError(f"cannot read '{self.name}': {e}") from e


@dataclass
class SheetGrid:
    sheet_name: str
    rows: list[list[Any]] = field(default_factory=list)
    row_numbers: list[int] = field(default_factory=list)  # 人間向け行番号 (index + 2)

    def __len__(self) -> int:
        return len(self.rows)

    @staticmethod
    def empty(sheet_name: str = "") -> SheetGrid:
        return SheetGrid(sheet_name=sheet_name)


def check_spreadsheet_format(file: UploadedFile) -> None:
    """Reject anything that is neither declared nor named as a spreadsheet."""
    if file.media_type in ACCEPTED_MEDIA_TYPES or file.extension in ACCEPTED_EXTENSIONS:
        return
    raise UnsupportedFileTypeError(
        f"'{file.name}' is not an Excel file; please choose a .xlsx or .xls file"
    )


def normalize_cell(value: Any) -> Any:
    """Map a raw pandas cell to str | int | float | None.

    Blank cells (NaN/NaT) become None and integral floats become int, so a
    student code typed as 1001 does not come back as "1001.0".
    """
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        # numpy scalar -> python scalar
        return normalize_cell(value.item())
    return value


def _is_empty_row(cells: list[Any]) -> bool:
    return all(c is None for c in cells)


def read_first_sheet(file: UploadedFile) -> SheetGrid:
    """Decode the first sheet of ``file`` into a grid of data rows.

    Every data row is kept, blank ones included, so the validator can flag
    them; only empty rows trailing the last filled one are trimmed. Rows are
    padded to four cells.

    Raises:
        UnsupportedFileTypeError: before reading when the format is wrong
        SpreadsheetDecodeError: when the workbook cannot be decoded
    """
    check_spreadsheet_format(file)
    data = file.read_bytes()
    try:
        xls = pd.ExcelFile(io.BytesIO(data))
        if not xls.sheet_names:
            raise SpreadsheetDecodeError(f"'{file.name}' has no sheets")
        sheet_name = str(xls.sheet_names[0])
        df = xls.parse(xls.sheet_names[0], header=None, dtype=object)
    except SpreadsheetDecodeError:
        raise
    except Exception as e:
        raise SpreadsheetDecodeError(f"cannot decode '{file.name}': {e}") from e

    # 先頭行はヘッダとして無条件に破棄
    rows = [[normalize_cell(v) for v in raw] for raw in df.iloc[1:].itertuples(index=False, name=None)]
    while rows and _is_empty_row(rows[-1]):
        rows.pop()

    grid = SheetGrid(sheet_name=sheet_name)
    for index, cells in enumerate(rows):
        if len(cells) < EXPECTED_COLUMNS:
            cells.extend([None] * (EXPECTED_COLUMNS - len(cells)))
        grid.rows.append(cells)
        grid.row_numbers.append(index + 2)
    logger.debug("read %d data rows from sheet '%s' of %s", len(grid), sheet_name, file.name)
    return grid


def load_grid(file: UploadedFile) -> SheetGrid:
    """Tolerant variant of read_first_sheet used by the preview.

    A decode failure yields an empty grid ("nothing to preview") instead of
    an error. Format errors still propagate.
    """
    try:
        return read_first_sheet(file)
    except SpreadsheetDecodeError as e:
        logger.warning("preview: %s", e)
        return SheetGrid.empty()
