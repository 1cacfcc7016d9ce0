from __future__ import annotations

import logging
from typing import Any

from ..db.store import Store
from .reconciler import COURSES_TABLE, GRADES_TABLE, STUDENTS_TABLE

"""Destructive resets. Irreversible, no dry run.

reset_all deletes grades before students and courses because grades
reference both. Each delete is its own transaction; a failure part-way
leaves the earlier tables emptied.
"""

logger = logging.getLogger(__name__)

RESET_ORDER = (GRADES_TABLE, STUDENTS_TABLE, COURSES_TABLE)


def reset_all(store: Store) -> dict[str, int]:
    """Delete every grade, then every student, then every course.

    Returns:
        deleted row count per table

    Raises:
        StoreError: the first failing delete; later tables are left untouched
    """
    deleted: dict[str, int] = {}
    for table in RESET_ORDER:
        deleted[table] = store.delete(table)
        logger.info("deleted %d rows from %s", deleted[table], table)
    return deleted


def reset_course(store: Store, course_id: Any) -> int:
    """Delete only the grades that reference ``course_id``."""
    count = store.delete(GRADES_TABLE, {"course_id": course_id})
    logger.info("deleted %d grades of course %s", count, course_id)
    return count
