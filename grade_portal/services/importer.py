from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from ..db.store import Store, StoreError
from ..excel.reader import (
    SheetGrid,
    SpreadsheetDecodeError,
    UnsupportedFileTypeError,
    UploadedFile,
    load_grid,
    read_first_sheet,
)
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.config_models import ImportSettings
from ..models.outcome import UploadOutcome, UploadRejected, UploadSuccess
from ..models.rows import InvalidRow, PreviewRow, ValidatedRow, ValidRow
from .reconciler import (
    GRADE_CONFLICT_COLUMNS,
    GRADES_TABLE,
    STUDENTS_TABLE,
    build_grade_upserts,
    fetch_snapshot,
    plan_new_students,
)
from .validator import BatchState, build_preview, summarize_errors, validate_rows

"""Bulk grade import: read -> validate -> reconcile -> write -> report.

Write order follows the foreign keys: students first (one batch insert),
then grades (one batch upsert on (student_id, course_id)). The two calls are
separate transactions; students inserted before a failed upsert stay.

Any invalid row blocks the whole import before the first write.
"""

__all__ = [
    "MSG_NO_COURSE",
    "MSG_COURSE_UNAVAILABLE",
    "MSG_NO_VALID_ROWS",
    "load_preview",
    "run_import",
    "validate_grid",
]

logger = logging.getLogger(__name__)

MSG_NO_COURSE = "a course must be selected before uploading"
MSG_COURSE_UNAVAILABLE = "the selected course is not available"
MSG_NO_VALID_ROWS = "the file contains no valid data rows; check the first four columns"


def validate_grid(grid: SheetGrid, settings: ImportSettings) -> list[ValidatedRow]:
    # 呼び出しごとに新しい BatchState (ファイル間で状態を持ち越さない)
    return validate_rows(grid.rows, BatchState(), settings, row_numbers=grid.row_numbers)


def load_preview(file: UploadedFile, settings: ImportSettings | None = None) -> list[PreviewRow]:
    """Validate ``file`` without touching the store.

    A workbook that cannot be decoded previews as zero rows. An unsupported
    file type raises UnsupportedFileTypeError.
    """
    settings = settings or ImportSettings()
    grid = load_grid(file)
    return build_preview(validate_grid(grid, settings))


def _reject_file(
    error_log: ErrorLogBuffer | None, file: UploadedFile, error_type: str, message: str
) -> UploadRejected:
    if error_log is not None:
        error_log.append_file_error(file.name, error_type, message)
    return UploadRejected.single(message)


def _reject_rows(
    rows: list[ValidatedRow],
    grid: SheetGrid,
    file: UploadedFile,
    settings: ImportSettings,
    error_log: ErrorLogBuffer | None,
) -> UploadRejected:
    invalid = [r for r in rows if isinstance(r, InvalidRow)]
    if error_log is not None:
        for r in invalid:
            for reason, message in zip(r.reasons, r.messages, strict=False):
                error_log.append(ErrorRecord.create(
                    file=file.name,
                    sheet=grid.sheet_name,
                    row=r.row_number,
                    error_type=reason.error_type,
                    message=message,
                ))
    messages, remaining = summarize_errors(rows, settings.error_summary_limit)
    logger.warning("rejected %s: %d invalid of %d rows", file.name, len(invalid), len(rows))
    return UploadRejected(messages=messages, remaining=remaining)


def run_import(
    store: Store,
    file: UploadedFile,
    course_id: Any,
    settings: ImportSettings | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> UploadOutcome:
    """Import ``file`` into the grades of course ``course_id``.

    Never raises for expected failures; every failure is an UploadRejected.
    """
    settings = settings or ImportSettings()
    start_time = datetime.now(UTC)

    try:
        grid = read_first_sheet(file)
    except UnsupportedFileTypeError as e:
        return _reject_file(error_log, file, "UNSUPPORTED_FILE_TYPE", str(e))
    except SpreadsheetDecodeError as e:
        return _reject_file(error_log, file, "DECODE_ERROR", str(e))

    rows = validate_grid(grid, settings)
    if any(isinstance(r, InvalidRow) for r in rows):
        return _reject_rows(rows, grid, file, settings, error_log)

    valid_rows = [r for r in rows if isinstance(r, ValidRow)]
    if not valid_rows:
        return _reject_file(error_log, file, "NO_DATA", MSG_NO_VALID_ROWS)

    if course_id is None or str(course_id).strip() == "":
        return UploadRejected.single(MSG_NO_COURSE)

    try:
        snapshot = fetch_snapshot(store)
    except StoreError as e:
        logger.error("snapshot failed: %s", e)
        return _reject_file(error_log, file, "STORE_ERROR", str(e))

    course = snapshot.find_course(course_id)
    if course is None:
        return UploadRejected.single(MSG_COURSE_UNAVAILABLE)
    logger.info("importing %d rows from %s into course '%s'", len(valid_rows), file.name, course.name)

    plan = plan_new_students(valid_rows, snapshot, course)
    if plan.new_students:
        try:
            store.insert(STUDENTS_TABLE, [s.as_record() for s in plan.new_students])
        except StoreError as e:
            logger.error("student insert failed: %s", e)
            return _reject_file(error_log, file, "STUDENT_INSERT_ERROR", str(e))
        logger.info("inserted %d new students", len(plan.new_students))

    build_grade_upserts(store, valid_rows, plan)
    upserts = list(plan.grade_upserts.values())
    if upserts:
        try:
            store.upsert(GRADES_TABLE, [u.as_record() for u in upserts], GRADE_CONFLICT_COLUMNS)
        except StoreError as e:
            # 学生 INSERT 済み分はロールバックしない
            logger.error("grade upsert failed: %s", e)
            return _reject_file(error_log, file, "GRADE_UPSERT_ERROR", str(e))

    elapsed = (datetime.now(UTC) - start_time).total_seconds()
    return UploadSuccess(
        rows_processed=len(valid_rows),
        new_students=len(plan.new_students),
        grades_written=len(upserts),
        skipped_rows=len(plan.unresolved),
        course_name=course.name,
        elapsed_seconds=elapsed,
    )
