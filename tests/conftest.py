"""
Shared fixtures: in-memory database fake, workbook builder, settings.
"""

import io
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

import pytest
from openpyxl import Workbook

from rulesync.error_aggregator import ErrorAggregator
from rulesync.parser import Sheet, build_column_mapping


def sql_text(statement) -> str:
    """Flatten a psycopg2.sql composable into plain text without a connection."""
    if hasattr(statement, "seq"):
        return "".join(sql_text(part) for part in statement.seq)
    if hasattr(statement, "strings"):
        return ".".join(f'"{name}"' for name in statement.strings)
    if hasattr(statement, "string"):
        return statement.string
    return str(statement)


class FakeCursor:
    def __init__(self, db: "FakeDatabase"):
        self.db = db
        self.rowcount = -1

    def execute(self, query, params=None):
        self.db.statements.append((query, params))

    def fetchall(self):
        return []

    def close(self):
        pass


class FakeDatabase:
    """Stands in for DatabaseConnection; records every statement."""

    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.statements: List[Any] = []
        self.query_results: List[Any] = []
        self.closed = False

    @contextmanager
    def get_cursor(self, commit: bool = True):
        yield FakeCursor(self)

    def execute_update(self, query, params=None) -> int:
        self.statements.append((query, params))
        return 0

    def execute_query(self, query, params=None) -> list:
        self.statements.append((query, params))
        return self.query_results.pop(0) if self.query_results else []

    def health_check(self) -> bool:
        return self.healthy

    def close_all(self) -> None:
        self.closed = True

    @property
    def statement_texts(self) -> List[str]:
        return [sql_text(query) for query, _ in self.statements]


def build_workbook(sheets: Dict[str, Sequence[Sequence[Any]]]) -> bytes:
    """Build XLSX bytes with one worksheet per entry, rows appended in order."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        worksheet = workbook.create_sheet(name)
        for row in rows:
            worksheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def make_sheet(header: List[str], rows: List[List[Any]], name: str = "Sheet1") -> Sheet:
    return Sheet(name=name, header=header, rows=rows, column_mapping=build_column_mapping(header))


def make_records(count: int) -> List[Dict[str, str]]:
    return [{"code": f"R{i}", "description": f"rule {i}", "type": "text"} for i in range(1, count + 1)]


@pytest.fixture
def errors() -> ErrorAggregator:
    return ErrorAggregator()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def settings(monkeypatch):
    """Real Settings object built from a controlled environment."""
    monkeypatch.setenv("DB_USER", "tester")
    monkeypatch.setenv("DB_PASSWORD", "secret")
    for name in (
        "DB_NAME", "BATCH_SIZE", "STREAMING_BATCH_SIZE", "LARGE_DATASET_THRESHOLD", "DB_POOL_MIN", "DB_POOL_MAX",
    ):
        monkeypatch.delenv(name, raising=False)

    from config.settings import Settings

    return Settings()


@pytest.fixture
def workbook_bytes():
    return build_workbook
