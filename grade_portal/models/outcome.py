from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

"""Terminal results of one bulk upload invocation.

An upload either succeeds with counts or is rejected with an ordered list of
messages. Row-level rejections are truncated to the configured limit (5 by
default) with a count of what was left out; fatal write errors produce a
single message.
"""

__all__ = [
    "UploadSuccess",
    "UploadRejected",
    "UploadOutcome",
]


@dataclass(frozen=True)
class UploadSuccess:
    rows_processed: int  # 検証済み行数
    new_students: int  # 新規登録学生数
    grades_written: int  # upsert したグレード数
    skipped_rows: int = 0  # 学生 ID 解決に失敗した行 (エラー扱いしない)
    course_name: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class UploadRejected:
    messages: list[str] = field(default_factory=list)
    remaining: int = 0  # messages に含まれなかった件数

    @property
    def ok(self) -> bool:
        return False

    @property
    def total_errors(self) -> int:
        return len(self.messages) + self.remaining

    @property
    def summary(self) -> str:
        lines = list(self.messages)
        if self.remaining > 0:
            lines.append(f"... and {self.remaining} more errors")
        return "\n".join(lines)

    @classmethod
    def single(cls, message: str) -> UploadRejected:
        return cls(messages=[message], remaining=0)


UploadOutcome = Union[UploadSuccess, UploadRejected]
