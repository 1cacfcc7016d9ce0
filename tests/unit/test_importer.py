from __future__ import annotations

from pathlib import Path

from grade_portal.excel.reader import UploadedFile
from grade_portal.logging.error_log import FILE_LEVEL_SHEET, ErrorLogBuffer
from grade_portal.models.config_models import ImportSettings
from grade_portal.models.outcome import UploadRejected, UploadSuccess
from grade_portal.services.importer import (
    MSG_COURSE_UNAVAILABLE,
    MSG_NO_COURSE,
    MSG_NO_VALID_ROWS,
    load_preview,
    run_import,
)

GOOD_ROWS = [
    ["S1", "Ali", "11111111111111", 25],
    ["S2", "Sara", "22222222222222", 30],
]


def test_import_creates_students_and_grades(memory_store, math_course_id, workbook):
    outcome = run_import(memory_store, workbook(GOOD_ROWS), math_course_id)
    assert isinstance(outcome, UploadSuccess)
    assert outcome.rows_processed == 2
    assert outcome.new_students == 2
    assert outcome.grades_written == 2
    assert outcome.skipped_rows == 0
    assert outcome.course_name == "Math"
    assert {s["student_code"] for s in memory_store.tables["students"]} == {"S1", "S2"}
    assert sorted(g["grade"] for g in memory_store.tables["grades"]) == [25, 30]
    assert memory_store.writes() == [("insert", "students"), ("upsert", "grades")]


def test_reimport_updates_grades_without_new_students(memory_store, math_course_id, workbook):
    run_import(memory_store, workbook(GOOD_ROWS), math_course_id)
    second = run_import(
        memory_store,
        workbook([["S1", "Ali", "11111111111111", 27], ["S2", "Sara", "22222222222222", 30]],
                 name="again.xlsx"),
        math_course_id,
    )
    assert isinstance(second, UploadSuccess)
    assert second.new_students == 0
    assert second.grades_written == 2
    assert len(memory_store.tables["students"]) == 2
    assert len(memory_store.tables["grades"]) == 2
    assert sorted(g["grade"] for g in memory_store.tables["grades"]) == [27, 30]


def test_same_students_in_another_course(memory_store, math_course_id, workbook):
    physics = next(c["id"] for c in memory_store.tables["courses"] if c["course_name"] == "Physics")
    run_import(memory_store, workbook(GOOD_ROWS), math_course_id)
    outcome = run_import(memory_store, workbook(GOOD_ROWS, name="p.xlsx"), physics)
    assert outcome.new_students == 0
    assert len(memory_store.tables["grades"]) == 4


def test_any_invalid_row_blocks_all_writes(memory_store, math_course_id, workbook):
    rows = GOOD_ROWS + [["S1", "Dup", "33333333333333", 20]]
    log = ErrorLogBuffer()
    outcome = run_import(memory_store, workbook(rows), math_course_id, error_log=log)
    assert isinstance(outcome, UploadRejected)
    assert outcome.messages == ["Row 4: duplicate student 'S1' already appears in this file"]
    assert memory_store.writes() == []
    assert memory_store.calls == []  # rejected before the store is touched
    [record] = log.records
    assert record.row == 4
    assert record.sheet == "Grades"
    assert record.error_type == "DUPLICATE_STUDENT_CODE"


def test_error_log_has_one_record_per_reason(memory_store, math_course_id, workbook):
    log = ErrorLogBuffer()
    run_import(memory_store, workbook([["S1", "", "", "abc"]]), math_course_id, error_log=log)
    assert [r.error_type for r in log.records] == [
        "MISSING_FIELDS",
        "MISSING_NATIONAL_ID",
        "INVALID_GRADE",
    ]
    assert {r.row for r in log.records} == {2}


def test_rejection_summary_is_truncated(memory_store, math_course_id, workbook):
    rows = [[f"S{i}", "", str(i), 10] for i in range(7)]
    outcome = run_import(memory_store, workbook(rows), math_course_id)
    assert isinstance(outcome, UploadRejected)
    assert len(outcome.messages) == 5
    assert outcome.remaining == 2
    assert outcome.summary.endswith("... and 2 more errors")


def test_summary_limit_follows_settings(memory_store, math_course_id, workbook):
    rows = [[f"S{i}", "", str(i), 10] for i in range(4)]
    outcome = run_import(memory_store, workbook(rows), math_course_id,
                         ImportSettings(error_summary_limit=1))
    assert len(outcome.messages) == 1
    assert outcome.remaining == 3


def test_unsupported_file_type(tmp_path: Path, memory_store, math_course_id):
    path = tmp_path / "grades.txt"
    path.write_text("S1,Ali,1,10", encoding="utf-8")
    log = ErrorLogBuffer()
    outcome = run_import(memory_store, UploadedFile.from_path(path), math_course_id, error_log=log)
    assert isinstance(outcome, UploadRejected)
    assert "not an Excel file" in outcome.messages[0]
    assert memory_store.calls == []
    [record] = log.records
    assert record.error_type == "UNSUPPORTED_FILE_TYPE"
    assert record.row == -1
    assert record.sheet == FILE_LEVEL_SHEET


def test_corrupt_workbook_is_rejected(tmp_path: Path, memory_store, math_course_id):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a workbook")
    log = ErrorLogBuffer()
    outcome = run_import(memory_store, UploadedFile.from_path(path), math_course_id, error_log=log)
    assert isinstance(outcome, UploadRejected)
    assert log.records[0].error_type == "DECODE_ERROR"
    assert memory_store.calls == []


def test_header_only_file_has_no_data(memory_store, math_course_id, workbook):
    log = ErrorLogBuffer()
    outcome = run_import(memory_store, workbook([]), math_course_id, error_log=log)
    assert outcome == UploadRejected.single(MSG_NO_VALID_ROWS)
    assert log.records[0].error_type == "NO_DATA"


def test_missing_course_is_rejected_before_store(memory_store, workbook):
    outcome = run_import(memory_store, workbook(GOOD_ROWS), "")
    assert outcome == UploadRejected.single(MSG_NO_COURSE)
    assert memory_store.calls == []


def test_unknown_course_is_rejected_before_writes(memory_store, workbook):
    outcome = run_import(memory_store, workbook(GOOD_ROWS), "course-999")
    assert outcome == UploadRejected.single(MSG_COURSE_UNAVAILABLE)
    assert memory_store.writes() == []


def test_snapshot_failure(memory_store, math_course_id, workbook):
    memory_store.fail_on["select:courses"] = "server closed the connection"
    log = ErrorLogBuffer()
    outcome = run_import(memory_store, workbook(GOOD_ROWS), math_course_id, error_log=log)
    assert isinstance(outcome, UploadRejected)
    assert outcome.messages == ["server closed the connection"]
    assert log.records[0].error_type == "STORE_ERROR"
    assert memory_store.writes() == []


def test_student_insert_failure_stops_before_grades(memory_store, math_course_id, workbook):
    memory_store.add_student("X9", "Someone", "11111111111111")  # national id clash
    outcome = run_import(memory_store, workbook(GOOD_ROWS), math_course_id)
    assert isinstance(outcome, UploadRejected)
    assert "national_id" in outcome.messages[0]
    assert [s["student_code"] for s in memory_store.tables["students"]] == ["X9"]
    assert ("upsert", "grades") not in memory_store.calls


def test_grade_upsert_failure_keeps_inserted_students(memory_store, math_course_id, workbook):
    memory_store.fail_on["upsert:grades"] = "deadlock detected"
    log = ErrorLogBuffer()
    outcome = run_import(memory_store, workbook(GOOD_ROWS), math_course_id, error_log=log)
    assert outcome == UploadRejected.single("deadlock detected")
    assert len(memory_store.tables["students"]) == 2
    assert memory_store.tables["grades"] == []
    assert log.records[0].error_type == "GRADE_UPSERT_ERROR"


def test_lookup_miss_is_counted_as_skipped(memory_store, math_course_id, workbook, monkeypatch):
    memory_store.add_student("S1", "Ali", "11111111111111")
    memory_store.add_student("S2", "Sara", "22222222222222")
    original = memory_store.select_single

    def racing_select_single(table, columns, filters):
        # another admin deleted S2 between snapshot and lookup
        if filters.get("student_code") == "S2":
            memory_store.tables["students"] = [
                s for s in memory_store.tables["students"] if s["student_code"] != "S2"
            ]
        return original(table, columns, filters)

    monkeypatch.setattr(memory_store, "select_single", racing_select_single)
    outcome = run_import(memory_store, workbook(GOOD_ROWS), math_course_id)
    assert isinstance(outcome, UploadSuccess)
    assert outcome.grades_written == 1
    assert outcome.skipped_rows == 1


def test_load_preview_never_touches_store(workbook):
    rows = load_preview(workbook(GOOD_ROWS + [["S3", "", "3", "x"]]))
    assert [r.is_valid for r in rows] == [True, True, False]
    assert rows[2].row_number == 4


def test_load_preview_of_corrupt_file_is_empty(tmp_path: Path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"garbage")
    assert load_preview(UploadedFile.from_path(path)) == []


def test_blank_rows_block_the_import(memory_store, math_course_id, workbook):
    rows = [GOOD_ROWS[0], [None, None, None, None], [" ", None, None, None], GOOD_ROWS[1]]
    log = ErrorLogBuffer()
    outcome = run_import(memory_store, workbook(rows), math_course_id, error_log=log)
    assert isinstance(outcome, UploadRejected)
    assert [m.split(":")[0] for m in outcome.messages] == ["Row 3", "Row 4"]
    assert {r.row for r in log.records if r.error_type == "MISSING_FIELDS"} == {3, 4}
    assert memory_store.writes() == []


def test_load_preview_shows_blank_rows_as_invalid(workbook):
    rows = load_preview(workbook([GOOD_ROWS[0], [None, None, None, None], GOOD_ROWS[1]]))
    assert [r.row_number for r in rows] == [2, 3, 4]
    assert [r.is_valid for r in rows] == [True, False, True]


def test_import_from_legacy_xls(memory_store, math_course_id, xls_workbook):
    outcome = run_import(memory_store, xls_workbook(GOOD_ROWS), math_course_id)
    assert isinstance(outcome, UploadSuccess)
    assert outcome.grades_written == 2
    assert sorted(g["grade"] for g in memory_store.tables["grades"]) == [25, 30]
