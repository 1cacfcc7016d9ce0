from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ..db.store import Store, StoreError
from ..models.plan import (
    Course,
    GradeUpsert,
    NewStudent,
    ReconciliationPlan,
    StoreSnapshot,
    StudentLookup,
)
from ..models.rows import ValidRow
from .progress import ProgressTracker

"""Reconciliation of validated rows against persisted students and courses.

Flow (driven by services.importer):
1. fetch_snapshot: read student codes and courses once, without locking
2. plan_new_students: codes absent from the snapshot become inserts
3. (importer inserts the new students)
4. build_grade_upserts: resolve every row's student id with a point lookup,
   one at a time, and key the upserts by (student_id, course_id)

A failed lookup (e.g. a student deleted by another admin in between) drops
that row from the upserts and is recorded on the plan, never raised.
"""

__all__ = [
    "STUDENTS_TABLE",
    "COURSES_TABLE",
    "GRADES_TABLE",
    "GRADE_CONFLICT_COLUMNS",
    "build_grade_upserts",
    "fetch_snapshot",
    "plan_new_students",
    "resolve_student_id",
]

logger = logging.getLogger(__name__)

STUDENTS_TABLE = "students"
COURSES_TABLE = "courses"
GRADES_TABLE = "grades"
GRADE_CONFLICT_COLUMNS = ("student_id", "course_id")


def fetch_snapshot(store: Store) -> StoreSnapshot:
    """Read persisted student codes and the course list.

    Raises:
        StoreError: propagated; without a snapshot nothing can be planned
    """
    students = store.select(STUDENTS_TABLE, ["id", "student_code"])
    courses = store.select(COURSES_TABLE, ["id", "course_name"])
    return StoreSnapshot(
        student_ids={str(s["student_code"]): s["id"] for s in students},
        courses=[Course(id=c["id"], name=str(c["course_name"])) for c in courses],
    )


def plan_new_students(
    rows: Sequence[ValidRow], snapshot: StoreSnapshot, course: Course
) -> ReconciliationPlan:
    """Partition rows into students to insert; existing ones need no write."""
    plan = ReconciliationPlan(course=course)
    existing = snapshot.student_codes
    queued: set[str] = set()
    for row in rows:
        if row.student_code in existing or row.student_code in queued:
            continue
        queued.add(row.student_code)
        plan.new_students.append(NewStudent(
            student_code=row.student_code,
            student_name=row.student_name,
            national_id=row.national_id,
        ))
    return plan


def resolve_student_id(store: Store, student_code: str) -> StudentLookup:
    """Single-row lookup of a student id; failures come back as a value."""
    try:
        record = store.select_single(STUDENTS_TABLE, ["id"], {"student_code": student_code})
    except StoreError as e:
        return StudentLookup(student_code=student_code, error=str(e))
    student_id: Any = record.get("id")
    if student_id is None:
        return StudentLookup(student_code=student_code, error="lookup returned no id")
    return StudentLookup(student_code=student_code, student_id=student_id)


def build_grade_upserts(
    store: Store,
    rows: Sequence[ValidRow],
    plan: ReconciliationPlan,
) -> ReconciliationPlan:
    """Resolve each row's student id and add its grade upsert to ``plan``.

    Must run after the new students were inserted so they are queryable.
    """
    with ProgressTracker(len(rows), description="Resolving students") as progress:
        for row in rows:
            lookup = resolve_student_id(store, row.student_code)
            progress.advance()
            if not lookup.ok:
                logger.debug("skip row %d: student '%s' not resolved: %s",
                             row.row_number, row.student_code, lookup.error)
                plan.unresolved.append(lookup)
                continue
            plan.add_upsert(GradeUpsert(
                student_id=lookup.student_id,
                course_id=plan.course.id,
                grade=row.grade,
            ))
        progress.set_postfix(resolved=len(plan.grade_upserts), skipped=len(plan.unresolved))
    return plan
