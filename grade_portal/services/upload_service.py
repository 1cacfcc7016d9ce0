from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from ..db.store import Store
from ..excel.reader import UploadedFile
from ..logging.audit import log_admin_action
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary
from ..models.config_models import ImportSettings
from ..models.outcome import UploadOutcome, UploadRejected, UploadSuccess
from ..models.plan import Course
from ..models.rows import PreviewRow
from ..models.session import AdminSession
from . import importer, reset
from .reconciler import COURSES_TABLE, GRADES_TABLE
from .summary import render_summary_body
from .validator import preview_page

"""Entry points the admin UI (or the CLI) calls for bulk uploads.

- load_preview / preview_page: read-only, no session needed
- run_import: the single mutating import entry; one at a time per service
- reset_all / reset_course: destructive, need an explicit confirmation

The admin session is passed in by the caller on every mutating call; the
service holds no ambient identity.
"""

__all__ = [
    "BulkUploadService",
    "ResetNotConfirmedError",
    "SessionExpiredError",
    "MSG_IMPORT_RUNNING",
]

logger = logging.getLogger(__name__)

MSG_IMPORT_RUNNING = "an import is already running; wait for it to finish"


class SessionExpiredError(Exception):
    """Raised when a mutating call comes with a missing or expired session."""


class ResetNotConfirmedError(Exception):
    """Raised when a destructive reset was not explicitly acknowledged."""


def _require_session(session: AdminSession | None) -> AdminSession:
    if session is None or session.is_expired():
        raise SessionExpiredError("admin session expired; please log in again")
    return session


class BulkUploadService:
    def __init__(
        self,
        store: Store,
        settings: ImportSettings | None = None,
        logs_dir: Path | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or ImportSettings()
        self.error_log = ErrorLogBuffer(logs_dir)
        self._import_lock = threading.Lock()
        self._preview: list[PreviewRow] = []

    # -- preview -----------------------------------------------------------

    def load_preview(self, file: UploadedFile) -> list[PreviewRow]:
        """Validate ``file`` for display. Replaces any earlier preview."""
        self._preview = []
        self._preview = importer.load_preview(file, self.settings)
        return list(self._preview)

    def preview_page(self, page: int, page_size: int | None = None) -> list[PreviewRow]:
        return preview_page(self._preview, page, page_size or self.settings.preview_page_size)

    def clear_preview(self) -> None:
        self._preview = []

    def list_courses(self) -> list[Course]:
        rows = self.store.select(COURSES_TABLE, ["id", "course_name"])
        return [Course(id=r["id"], name=str(r["course_name"])) for r in rows]

    # -- import ------------------------------------------------------------

    def run_import(self, file: UploadedFile, course_id: Any, session: AdminSession | None) -> UploadOutcome:
        """Run one import; a concurrent second call is rejected, not queued.

        Raises:
            SessionExpiredError: missing or expired admin session
        """
        session = _require_session(session)
        if not self._import_lock.acquire(blocking=False):
            logger.warning("import of %s refused: another import is running", file.name)
            return UploadRejected.single(MSG_IMPORT_RUNNING)
        try:
            outcome = importer.run_import(
                self.store, file, course_id, self.settings, self.error_log
            )
        finally:
            self._import_lock.release()
            log_path = self.error_log.flush()
            if log_path is not None:
                logger.info("error details written to %s", log_path)

        log_summary(render_summary_body(outcome))
        if isinstance(outcome, UploadSuccess):
            log_admin_action(session, GRADES_TABLE, "BULK_UPLOAD", {
                "file": file.name,
                "course": outcome.course_name,
                "rows": outcome.rows_processed,
                "new_students": outcome.new_students,
                "grades": outcome.grades_written,
            })
            # 成功後はプレビューを破棄 (呼び出し側は自前のキャッシュを無効化する)
            self.clear_preview()
        return outcome

    # -- destructive resets ------------------------------------------------

    def reset_all(self, session: AdminSession | None, *, confirmed: bool = False) -> dict[str, int]:
        session = _require_session(session)
        if not confirmed:
            raise ResetNotConfirmedError("deleting all students, courses and grades must be confirmed")
        deleted = reset.reset_all(self.store)
        log_admin_action(session, "*", "DELETE_ALL", deleted)
        return deleted

    def reset_course(
        self, course_id: Any, session: AdminSession | None, *, confirmed: bool = False
    ) -> int:
        session = _require_session(session)
        if not confirmed:
            raise ResetNotConfirmedError(f"deleting the grades of course {course_id} must be confirmed")
        count = reset.reset_course(self.store, course_id)
        log_admin_action(session, GRADES_TABLE, "DELETE_COURSE_GRADES", {
            "course_id": course_id,
            "deleted": count,
        })
        return count
