from __future__ import annotations

import argparse
import getpass
import os
import secrets
import sys
from pathlib import Path
from typing import Any

from grade_portal.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from grade_portal.db.connection import load_env_file, open_store
from grade_portal.db.store import StoreError
from grade_portal.excel.reader import UnsupportedFileTypeError, UploadedFile
from grade_portal.logging.init import setup_logging
from grade_portal.models.config_models import PortalConfig
from grade_portal.models.outcome import UploadRejected
from grade_portal.models.session import AdminSession
from grade_portal.services.importer import load_preview
from grade_portal.services.upload_service import BulkUploadService, SessionExpiredError
from grade_portal.services.validator import preview_page

"""Command line entry point.

    python -m grade_portal.cli preview grades.xlsx [--page 2]
    python -m grade_portal.cli courses
    python -m grade_portal.cli import grades.xlsx --course Math
    python -m grade_portal.cli reset-course Math [--yes]
    python -m grade_portal.cli reset-all [--yes]

Exit codes: 0 success, 1 fatal (config / connection / session / bad file),
2 import rejected or reset not confirmed.
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_REJECTED = 2

CONFIRM_WORD = "DELETE"


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="grade_portal", description="Grade portal bulk upload tool")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to portal.yml")
    p.add_argument(
        "--admin-code",
        default=os.getenv("GRADE_PORTAL_ADMIN"),
        help="Admin code recorded in audit lines (default: $GRADE_PORTAL_ADMIN or OS user)",
    )
    sub = p.add_subparsers(dest="command", required=True)

    pv = sub.add_parser("preview", help="Validate a workbook without writing anything")
    pv.add_argument("file", type=Path)
    pv.add_argument("--page", type=int, default=1)
    pv.add_argument("--page-size", type=int, default=None)

    sub.add_parser("courses", help="List courses")

    im = sub.add_parser("import", help="Import grades for one course")
    im.add_argument("file", type=Path)
    im.add_argument("--course", required=True, help="Course id or course name")

    rc = sub.add_parser("reset-course", help="Delete all grades of one course")
    rc.add_argument("course", help="Course id or course name")
    rc.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    ra = sub.add_parser("reset-all", help="Delete all grades, students and courses")
    ra.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    return p.parse_args(argv)


def _cli_session(admin_code: str | None) -> AdminSession:
    code = admin_code or getpass.getuser()
    return AdminSession.start(
        admin_id=code,
        admin_code=code,
        admin_name=code,
        token=secrets.token_hex(32),
    )


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    try:
        answer = input(f"{prompt} This cannot be undone. Type {CONFIRM_WORD} to continue: ")
    except EOFError:
        return False
    return answer.strip() == CONFIRM_WORD


def _find_course_id(service: BulkUploadService, ref: str) -> Any:
    for course in service.list_courses():
        if str(course.id) == ref or course.name == ref:
            return course.id
    return None


def _print_preview(cfg: PortalConfig, args: argparse.Namespace, logger: Any) -> int:
    try:
        rows = load_preview(UploadedFile.from_path(args.file), cfg.import_settings)
    except UnsupportedFileTypeError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL
    if not rows:
        print("preview: nothing to preview")
        return EXIT_SUCCESS
    page_size = args.page_size or cfg.import_settings.preview_page_size
    try:
        page = preview_page(rows, args.page, page_size)
    except ValueError as e:
        logger.error(f"preview: {e}")
        return EXIT_FATAL
    invalid = sum(1 for r in rows if not r.is_valid)
    pages = (len(rows) + page_size - 1) // page_size
    print(f"preview: {len(rows)} rows, {invalid} invalid (page {args.page}/{pages})")
    for r in page:
        grade = "-" if r.grade is None else (int(r.grade) if float(r.grade).is_integer() else r.grade)
        status = "OK" if r.is_valid else f"INVALID {r.error_message}"
        print(f"  row={r.row_number} code={r.code or '-'} name={r.name or '-'} grade={grade} {status}")
    return EXIT_SUCCESS


def _run_with_store(cfg: PortalConfig, args: argparse.Namespace, logger: Any) -> int:
    session = _cli_session(args.admin_code)
    with open_store(cfg.database) as store:
        service = BulkUploadService(store, cfg.import_settings, Path(cfg.logs_directory))

        if args.command == "courses":
            for course in service.list_courses():
                print(f"{course.id}\t{course.name}")
            return EXIT_SUCCESS

        if args.command == "import":
            course_id = _find_course_id(service, args.course)
            if course_id is None:
                logger.error(f"course not found: {args.course}")
                return EXIT_FATAL
            outcome = service.run_import(UploadedFile.from_path(args.file), course_id, session)
            if isinstance(outcome, UploadRejected):
                logger.error("upload rejected:\n" + outcome.summary)
                return EXIT_REJECTED
            logger.info(
                f"uploaded {outcome.rows_processed} rows "
                f"({outcome.new_students} new students, {outcome.grades_written} grades) "
                f"for course {outcome.course_name}"
            )
            return EXIT_SUCCESS

        if args.command == "reset-course":
            course_id = _find_course_id(service, args.course)
            if course_id is None:
                logger.error(f"course not found: {args.course}")
                return EXIT_FATAL
            if not _confirm(f"Delete all grades of course '{args.course}'?", args.yes):
                logger.info("reset-course cancelled")
                return EXIT_REJECTED
            count = service.reset_course(course_id, session, confirmed=True)
            logger.info(f"deleted {count} grades")
            return EXIT_SUCCESS

        if args.command == "reset-all":
            if not _confirm("Delete ALL students, courses and grades?", args.yes):
                logger.info("reset-all cancelled")
                return EXIT_REJECTED
            deleted = service.reset_all(session, confirmed=True)
            logger.info("deleted " + " ".join(f"{t}={n}" for t, n in deleted.items()))
            return EXIT_SUCCESS

    logger.error(f"unknown command: {args.command}")  # pragma: no cover
    return EXIT_FATAL  # pragma: no cover


def main(argv: list[str] | None = None) -> int:
    # NOTE: None のときのみ sys.argv を読む ([] を渡すテストで pytest の引数を拾わないため)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "preview":
        return _print_preview(cfg, args, logger)

    try:
        return _run_with_store(cfg, args, logger)
    except StoreError as e:
        logger.error(f"store: {e}")
        return EXIT_FATAL
    except SessionExpiredError as e:
        logger.error(f"session: {e}")
        return EXIT_FATAL
