from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Reconciliation models: persisted snapshot and the computed write plan.

Nothing here is persisted. A ReconciliationPlan lives for one import run and
describes the minimal writes needed to bring the store in line with the
validated batch.
"""

__all__ = [
    "Course",
    "StoreSnapshot",
    "NewStudent",
    "GradeUpsert",
    "StudentLookup",
    "ReconciliationPlan",
]


@dataclass(frozen=True)
class Course:
    id: Any
    name: str


@dataclass(frozen=True)
class StoreSnapshot:
    """Read-only view of persisted students and courses taken at import time.

    No lock is held; concurrent admins may change the store after this is taken.
    """
    student_ids: dict[str, Any]  # student_code -> id
    courses: list[Course]

    @property
    def student_codes(self) -> set[str]:
        return set(self.student_ids)

    @property
    def course_names(self) -> set[str]:
        return {c.name for c in self.courses}

    def find_course(self, course_id: Any) -> Course | None:
        for course in self.courses:
            if str(course.id) == str(course_id):
                return course
        return None


@dataclass(frozen=True)
class NewStudent:
    student_code: str
    student_name: str
    national_id: str

    def as_record(self) -> dict[str, Any]:
        return {
            "student_code": self.student_code,
            "student_name": self.student_name,
            "national_id": self.national_id,
        }


@dataclass(frozen=True)
class GradeUpsert:
    student_id: Any
    course_id: Any
    grade: int

    @property
    def key(self) -> tuple[str, str]:
        return (str(self.student_id), str(self.course_id))

    def as_record(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "course_id": self.course_id,
            "grade": self.grade,
        }


@dataclass(frozen=True)
class StudentLookup:
    """Outcome of resolving one student code to its id.

    Exactly one of ``student_id`` / ``error`` is set. A failed lookup covers
    zero matches, several matches and store errors alike.
    """
    student_code: str
    student_id: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.student_id is not None


@dataclass
class ReconciliationPlan:
    course: Course
    new_students: list[NewStudent] = field(default_factory=list)
    grade_upserts: dict[tuple[str, str], GradeUpsert] = field(default_factory=dict)
    unresolved: list[StudentLookup] = field(default_factory=list)

    def add_upsert(self, upsert: GradeUpsert) -> None:
        # 同一 (student, course) は後勝ち
        self.grade_upserts[upsert.key] = upsert
