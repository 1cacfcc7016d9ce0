from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from grade_portal.models.error_record import FILE_LEVEL_ROW, ErrorRecord

"""Upload error log buffering.

- JSON Lines, fixed schema (no extra keys)
- One file per process: ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC), created on
  first flush that has records
- Records are buffered during an upload and flushed once at the end
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "FILE_LEVEL_SHEET",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"
FILE_LEVEL_SHEET = "<FILE_LEVEL>"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush appends JSON Lines.

    Not thread safe; one buffer belongs to one service instance.
    """
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir if logs_dir is not None else LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._records)

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def append_file_error(self, file: str, error_type: str, message: str) -> None:
        self.append(
            ErrorRecord.create(
                file=file,
                sheet=FILE_LEVEL_SHEET,
                row=FILE_LEVEL_ROW,
                error_type=error_type,
                message=message,
            )
        )

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records and clear the buffer.

        Returns the log path, or None when there was nothing to write.
        """
        if not self._records:
            return None
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
