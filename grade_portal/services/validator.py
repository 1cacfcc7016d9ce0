from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.config_models import ImportSettings
from ..models.rows import InvalidRow, PreviewRow, ReasonCode, ValidatedRow, ValidRow

"""Row validation for bulk grade uploads.

Each data row goes through an accumulating cascade of checks: independent
field-level failures are collected into one combined message instead of
stopping at the first one.

  1. code + name present                    -> MISSING_FIELDS
  2. old 3-column layout suspected          -> MISSING_GRADE (layout message)
  3. national id present / unique in batch  -> MISSING_NATIONAL_ID / DUPLICATE_NATIONAL_ID
  4. grade present / numeric / integral     -> MISSING_GRADE / INVALID_GRADE
     (+ range when strict_grade_range)      -> GRADE_OUT_OF_RANGE
  5. student code unique in batch           -> DUPLICATE_STUDENT_CODE

Uniqueness is checked against a caller-owned BatchState that grows as rows
are processed, so of two colliding rows only the later one is flagged.
"""

__all__ = [
    "COL_CODE",
    "COL_NAME",
    "COL_NATIONAL_ID",
    "COL_GRADE",
    "BatchState",
    "build_preview",
    "cell_text",
    "parse_number",
    "preview_page",
    "summarize_errors",
    "validate_row",
    "validate_rows",
]

COL_CODE = 0
COL_NAME = 1
COL_NATIONAL_ID = 2
COL_GRADE = 3

MSG_MISSING_FIELDS = "student code and student name are required (columns 1 and 2)"
MSG_MISSING_NATIONAL_ID = "national id is required (column 3)"
MSG_DUPLICATE_NATIONAL_ID = "duplicate national id '{}' already appears in this file"
MSG_MISSING_GRADE = "grade is required (column 4)"
MSG_INVALID_GRADE = "grade must be a whole number"
MSG_GRADE_OUT_OF_RANGE = "grade {} is outside the allowed range {}-{}"
MSG_DUPLICATE_STUDENT_CODE = "duplicate student '{}' already appears in this file"
MSG_LEGACY_LAYOUT = (
    "the old 3-column layout (code, name, grade) is no longer supported; "
    "use code, name, national id, grade"
)


@dataclass
class BatchState:
    """Identifiers already seen earlier in the current batch (mutated in place)."""
    seen_codes: set[str] = field(default_factory=set)
    seen_national_ids: set[str] = field(default_factory=set)


def cell_text(cells: Sequence[Any], index: int) -> str:
    """Trimmed string form of a cell; missing/blank cells give ''."""
    if index >= len(cells):
        return ""
    value = cells[index]
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_number(text: str) -> float | None:
    """Parse a finite number from trimmed cell text; None when not numeric."""
    if text == "":
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _looks_like_legacy_layout(national_id: str, grade_text: str, threshold: float) -> bool:
    if grade_text != "":
        return False
    number = parse_number(national_id)
    return number is not None and number <= threshold


def validate_row(
    cells: Sequence[Any],
    row_number: int,
    state: BatchState,
    settings: ImportSettings | None = None,
) -> ValidatedRow:
    """Validate one data row and record its identifiers in ``state``."""
    settings = settings or ImportSettings()
    code = cell_text(cells, COL_CODE)
    name = cell_text(cells, COL_NAME)
    national_id = cell_text(cells, COL_NATIONAL_ID)
    grade_text = cell_text(cells, COL_GRADE)

    reasons: list[ReasonCode] = []
    messages: list[str] = []

    def fail(reason: ReasonCode, message: str) -> None:
        reasons.append(reason)
        messages.append(message)

    if not code or not name:
        fail(ReasonCode.MISSING_FIELDS, MSG_MISSING_FIELDS)

    grade_value = parse_number(grade_text)
    legacy = _looks_like_legacy_layout(national_id, grade_text, settings.legacy_grade_threshold)
    if legacy:
        fail(ReasonCode.MISSING_GRADE, MSG_LEGACY_LAYOUT)
        # 3列目は実際には成績なので、ID 重複判定には使わない
        grade_value = parse_number(national_id)
    else:
        # presence before uniqueness
        if not national_id:
            fail(ReasonCode.MISSING_NATIONAL_ID, MSG_MISSING_NATIONAL_ID)
        else:
            if national_id in state.seen_national_ids:
                fail(ReasonCode.DUPLICATE_NATIONAL_ID, MSG_DUPLICATE_NATIONAL_ID.format(national_id))
            state.seen_national_ids.add(national_id)

        if grade_text == "":
            fail(ReasonCode.MISSING_GRADE, MSG_MISSING_GRADE)
        elif grade_value is None or not grade_value.is_integer():
            fail(ReasonCode.INVALID_GRADE, MSG_INVALID_GRADE)
        elif settings.strict_grade_range and not (
            settings.grade_min <= grade_value <= settings.grade_max
        ):
            fail(
                ReasonCode.GRADE_OUT_OF_RANGE,
                MSG_GRADE_OUT_OF_RANGE.format(int(grade_value), settings.grade_min, settings.grade_max),
            )

    if code:
        if code in state.seen_codes:
            fail(ReasonCode.DUPLICATE_STUDENT_CODE, MSG_DUPLICATE_STUDENT_CODE.format(code))
        state.seen_codes.add(code)

    if reasons:
        return InvalidRow(
            row_number=row_number,
            student_code=code,
            student_name=name,
            national_id=national_id,
            grade=grade_value,
            reasons=tuple(reasons),
            messages=tuple(messages),
        )
    return ValidRow(
        row_number=row_number,
        student_code=code,
        student_name=name,
        national_id=national_id,
        grade=int(grade_value),  # type: ignore[arg-type]
    )


def validate_rows(
    rows: Sequence[Sequence[Any]],
    state: BatchState | None = None,
    settings: ImportSettings | None = None,
    row_numbers: Sequence[int] | None = None,
) -> list[ValidatedRow]:
    """Validate every row in order; exactly one result per input row.

    ``row_numbers`` carries the human row numbers from the reader; when
    omitted the row number is ``index + 2``.
    """
    if row_numbers is not None and len(row_numbers) != len(rows):
        raise ValueError(
            f"row_numbers length {len(row_numbers)} does not match rows length {len(rows)}"
        )
    state = state if state is not None else BatchState()
    results: list[ValidatedRow] = []
    for index, cells in enumerate(rows):
        row_number = row_numbers[index] if row_numbers is not None else index + 2
        results.append(validate_row(cells, row_number, state, settings))
    return results


def summarize_errors(rows: Sequence[ValidatedRow], limit: int = 5) -> tuple[list[str], int]:
    """First ``limit`` row messages plus the count of the remainder."""
    messages = [r.message for r in rows if isinstance(r, InvalidRow)]
    return messages[:limit], max(0, len(messages) - limit)


def build_preview(rows: Sequence[ValidatedRow]) -> list[PreviewRow]:
    preview: list[PreviewRow] = []
    for r in rows:
        if isinstance(r, ValidRow):
            preview.append(PreviewRow(
                row_number=r.row_number,
                code=r.student_code,
                name=r.student_name,
                grade=r.grade,
                is_valid=True,
            ))
        else:
            preview.append(PreviewRow(
                row_number=r.row_number,
                code=r.student_code,
                name=r.student_name,
                grade=r.grade,
                is_valid=False,
                error_message="; ".join(r.messages),
            ))
    return preview


def preview_page(rows: Sequence[PreviewRow], page: int, page_size: int) -> list[PreviewRow]:
    """1-based page slice. Pages past the end are empty."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    start = (page - 1) * page_size
    return list(rows[start:start + page_size])
