from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

"""Row-level domain models for the bulk grade upload pipeline.

A spreadsheet data row passes through the validator exactly once and comes
out as either a ValidRow or an InvalidRow. Both carry the human row number
(data-row index + 2: one for the discarded header, one for 1-based counting)
so that messages point at the line the administrator sees in the workbook.
"""

__all__ = [
    "ReasonCode",
    "ValidRow",
    "InvalidRow",
    "ValidatedRow",
    "PreviewRow",
]


class ReasonCode(Enum):
    """Why a row was rejected. Codes are additive; a row may carry several."""
    MISSING_FIELDS = "missing_fields"
    MISSING_NATIONAL_ID = "missing_national_id"
    DUPLICATE_NATIONAL_ID = "duplicate_national_id"
    MISSING_GRADE = "missing_grade"
    INVALID_GRADE = "invalid_grade"
    DUPLICATE_STUDENT_CODE = "duplicate_student_code"
    GRADE_OUT_OF_RANGE = "grade_out_of_range"  # strict_grade_range 有効時のみ

    @property
    def error_type(self) -> str:
        """UPPER_SNAKE label used in the JSON Lines error log."""
        return self.value.upper()


@dataclass(frozen=True)
class ValidRow:
    row_number: int
    student_code: str
    student_name: str
    national_id: str
    grade: int

    @property
    def is_valid(self) -> bool:
        return True


@dataclass(frozen=True)
class InvalidRow:
    """A row that failed one or more checks.

    The raw fields hold whatever could be parsed (trimmed strings, numeric
    grade) so the preview can still display the row. ``reasons`` and
    ``messages`` are parallel, in check order; a reason appears at most once.
    """
    row_number: int
    student_code: str
    student_name: str
    national_id: str
    grade: float | None
    reasons: tuple[ReasonCode, ...]
    messages: tuple[str, ...] = field(default_factory=tuple)

    @property
    def reason_set(self) -> frozenset[ReasonCode]:
        return frozenset(self.reasons)

    @property
    def is_valid(self) -> bool:
        return False

    @property
    def message(self) -> str:
        """Combined human-readable message, e.g. ``Row 4: a; b``."""
        return f"Row {self.row_number}: " + "; ".join(self.messages)


ValidatedRow = Union[ValidRow, InvalidRow]


@dataclass(frozen=True)
class PreviewRow:
    """Read-only projection of a validated row for the upload preview table."""
    row_number: int
    code: str
    name: str
    grade: float | None
    is_valid: bool
    error_message: str | None = None
