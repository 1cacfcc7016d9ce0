# Shared pytest fixtures
from __future__ import annotations

import itertools
import struct
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from grade_portal.db.store import StoreError
from grade_portal.excel.reader import UploadedFile
from grade_portal.logging.init import reset_logging
from grade_portal.models.session import AdminSession

HEADER = ["student_code", "student_name", "national_id", "grade"]


class InMemoryStore:
    """Store double with the same verbs and failure modes as PostgresStore.

    - unique student_code / national_id on students, (student_id, course_id) on grades
    - each verb is atomic: a failing batch writes nothing
    - ``fail_on["insert:students"] = "msg"`` makes that verb raise StoreError
    - every call is recorded in ``calls`` as (verb, table)
    """

    UNIQUE = {
        "students": [("student_code",), ("national_id",)],
        "courses": [("course_name",)],
        "grades": [("student_id", "course_id")],
    }

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {"students": [], "courses": [], "grades": []}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[str, str] = {}
        self._ids = itertools.count(1)

    # -- helpers -----------------------------------------------------------
    def _check_fail(self, verb: str, table: str) -> None:
        self.calls.append((verb, table))
        key = f"{verb}:{table}"
        if key in self.fail_on:
            raise StoreError(self.fail_on[key])

    def _next_id(self, table: str) -> str:
        return f"{table[:-1]}-{next(self._ids)}"

    @staticmethod
    def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    def _violates_unique(self, table: str, rows: list[dict[str, Any]]) -> str | None:
        for cols in self.UNIQUE.get(table, []):
            seen: set[tuple[Any, ...]] = set()
            for r in rows:
                key = tuple(r.get(c) for c in cols)
                if any(v is None for v in key):
                    continue
                if key in seen:
                    return f"duplicate key value violates unique constraint {table}_{'_'.join(cols)}_key"
                seen.add(key)
        return None

    def add_course(self, name: str) -> str:
        cid = self._next_id("courses")
        self.tables["courses"].append({"id": cid, "course_name": name})
        return cid

    def add_student(self, code: str, name: str, national_id: str | None = None) -> str:
        sid = self._next_id("students")
        self.tables["students"].append(
            {"id": sid, "student_code": code, "student_name": name, "national_id": national_id}
        )
        return sid

    def writes(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in {"insert", "upsert", "delete"}]

    # -- Store verbs -------------------------------------------------------
    def select(self, table: str, columns: Sequence[str], filters: Mapping[str, Any] | None = None):
        self._check_fail("select", table)
        return [
            {c: r.get(c) for c in columns}
            for r in self.tables[table]
            if self._matches(r, filters)
        ]

    def select_single(self, table: str, columns: Sequence[str], filters: Mapping[str, Any]):
        rows = self.select(table, columns, filters)
        if len(rows) != 1:
            raise StoreError(f"expected exactly one row, got {len(rows)}")
        return rows[0]

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        self._check_fail("insert", table)
        new_rows = [{"id": self._next_id(table), **dict(r)} for r in rows]
        problem = self._violates_unique(table, self.tables[table] + new_rows)
        if problem:
            raise StoreError(problem)
        self.tables[table].extend(new_rows)
        return len(new_rows)

    def upsert(self, table: str, rows: Sequence[Mapping[str, Any]], conflict_columns: Sequence[str]) -> int:
        self._check_fail("upsert", table)
        merged = [dict(r) for r in self.tables[table]]
        for r in rows:
            key = tuple(r[c] for c in conflict_columns)
            existing = next(
                (m for m in merged if tuple(m.get(c) for c in conflict_columns) == key), None
            )
            if existing is not None:
                existing.update(r)
            else:
                merged.append({"id": self._next_id(table), **dict(r)})
        self.tables[table] = merged
        return len(rows)

    def delete(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        self._check_fail("delete", table)
        before = len(self.tables[table])
        self.tables[table] = [r for r in self.tables[table] if not self._matches(r, filters)]
        return before - len(self.tables[table])


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """timezone: UTC
logs_directory: ./logs
database:
  host: localhost
  port: 5432
  user: portal
  password: secret
  database: grade_portal
import:
  strict_grade_range: false
  error_summary_limit: 5
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "portal.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def memory_store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_course("Math")
    store.add_course("Physics")
    return store


@pytest.fixture()
def math_course_id(memory_store: InMemoryStore) -> str:
    return next(c["id"] for c in memory_store.tables["courses"] if c["course_name"] == "Math")


@pytest.fixture()
def admin_session() -> AdminSession:
    return AdminSession.start(admin_id="a-1", admin_code="admin01", admin_name="Admin", token="t" * 64)


def make_workbook(path: Path, rows: list[list[object]], header: list[str] | None = None) -> Path:
    """Write an .xlsx whose first sheet has ``header`` then ``rows``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = [header if header is not None else HEADER] + rows
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame(data).to_excel(writer, sheet_name="Grades", header=False, index=False)
    return path


@pytest.fixture()
def xlsx_path(tmp_path: Path):
    """Factory: xlsx_path(rows, name=..., header=None) -> Path of a written workbook."""
    def _make(rows: list[list[object]], name: str = "grades.xlsx", header: list[str] | None = None) -> Path:
        return make_workbook(tmp_path / name, rows, header)
    return _make


@pytest.fixture()
def workbook(tmp_path: Path):
    """Factory: workbook(rows, name='grades.xlsx') -> UploadedFile."""
    def _make(rows: list[list[object]], name: str = "grades.xlsx", header: list[str] | None = None) -> UploadedFile:
        return UploadedFile.from_path(make_workbook(tmp_path / name, rows, header))
    return _make


def make_biff2_bytes(rows: list[list[object]], header: list[str] | None = None) -> bytes:
    """Encode a single-sheet legacy .xls (BIFF2 worksheet stream).

    Strings become LABEL records, numbers NUMBER records, None is left empty.
    """
    out = [struct.pack("<HHHH", 0x0009, 4, 0x0007, 0x0010)]  # BOF, worksheet
    data = [header if header is not None else HEADER] + rows
    for rowx, row in enumerate(data):
        for colx, value in enumerate(row):
            if value is None:
                continue
            if isinstance(value, (int, float)):
                out.append(struct.pack("<HHHH3sd", 0x0003, 15, rowx, colx, b"\x00\x00\x00", float(value)))
            else:
                text = str(value).encode("latin-1")
                out.append(struct.pack("<HHHH3sB", 0x0004, 8 + len(text), rowx, colx, b"\x00\x00\x00", len(text)))
                out.append(text)
    out.append(struct.pack("<HH", 0x000A, 0))  # EOF
    return b"".join(out)


@pytest.fixture()
def xls_workbook():
    """Factory: xls_workbook(rows, name='grades.xls') -> UploadedFile held in memory."""
    def _make(rows: list[list[object]], name: str = "grades.xls", header: list[str] | None = None) -> UploadedFile:
        return UploadedFile(name=name, content=make_biff2_bytes(rows, header))
    return _make
