"""
Tests for batched rule loading.
"""

import math
from unittest.mock import patch

import psycopg2
import pytest

from db.schema import create_rule_table_sql, index_name, insert_rules_sql, is_valid_table_name
from rulesync.errors import BatchInsertFailure
from rulesync.load import RuleLoader, iter_batches
from rulesync.models import RULE_FIELDS, RunOptions
from rulesync.transform import StreamingStrategy, TransformResult
from tests.conftest import make_records, make_sheet, sql_text


class RecordingExecuteValues:
    """Replacement for psycopg2.extras.execute_values."""

    def __init__(self, fail_on=(), rowcount_offset=0):
        self.calls = []
        self.fail_on = set(fail_on)
        self.rowcount_offset = rowcount_offset

    def __call__(self, cursor, statement, values, page_size=100):
        self.calls.append((statement, list(values), page_size))
        if len(self.calls) in self.fail_on:
            raise psycopg2.DataError("value too long")
        cursor.rowcount = len(values) - self.rowcount_offset


@pytest.fixture
def loader(fake_db, errors):
    return RuleLoader(fake_db, errors)


class TestBatching:
    """Batch boundaries."""

    @pytest.mark.parametrize("count, size", [(25, 10), (30, 10), (1, 1000), (1000, 1000), (1001, 1000)])
    def test_batch_count_and_last_size(self, count, size):
        batches = list(iter_batches(make_records(count), size))

        assert len(batches) == math.ceil(count / size)
        assert len(batches[-1]) == (count % size or size)

    def test_transform_result_is_chunked(self):
        batches = list(iter_batches(TransformResult(records=make_records(5)), 2))

        assert [len(batch) for batch in batches] == [2, 2, 1]

    def test_cursor_keeps_its_batch_size(self, errors):
        sheet = make_sheet(["code"], [[f"R{i}"] for i in range(23)])
        cursor = StreamingStrategy(errors, batch_size=10).transform([sheet], "t")

        assert [len(batch) for batch in iter_batches(cursor, 1000)] == [10, 10, 3]


class TestRuleLoader:
    """Inserts, failures and run options."""

    def test_one_statement_per_batch(self, loader, fake_db):
        execute_values = RecordingExecuteValues()

        with patch("rulesync.load.execute_values", execute_values):
            result = loader.load("rules_worten_pt", make_records(25), RunOptions(batch_size=10))

        assert result.inserted == 25
        assert result.skipped == 0
        assert result.batches == 3
        assert [len(values) for _, values, _ in execute_values.calls] == [10, 10, 5]
        assert [page_size for _, _, page_size in execute_values.calls] == [10, 10, 5]

    def test_values_follow_column_order(self, loader):
        execute_values = RecordingExecuteValues()

        with patch("rulesync.load.execute_values", execute_values):
            loader.load("t", [{"code": "R1", "type": "text"}], RunOptions())

        values = execute_values.calls[0][1][0]
        assert len(values) == len(RULE_FIELDS)
        assert values[RULE_FIELDS.index("code")] == "R1"
        assert values[RULE_FIELDS.index("type")] == "text"
        assert values[RULE_FIELDS.index("label")] == ""

    def test_failed_batch_is_skipped_and_load_continues(self, loader, errors):
        execute_values = RecordingExecuteValues(fail_on={7})

        with patch("rulesync.load.execute_values", execute_values):
            result = loader.load("t", make_records(200), RunOptions(batch_size=10))

        assert result.batches == 20
        assert result.inserted == 190
        assert result.skipped == 10
        assert len(result.errors) == 1
        failures = errors.errors_by_source(BatchInsertFailure.source)
        assert len(failures) == 1
        assert failures[0].context["batch_number"] == 7

    def test_dry_run_executes_nothing(self, loader, fake_db):
        execute_values = RecordingExecuteValues()

        with patch("rulesync.load.execute_values", execute_values):
            result = loader.load("t", make_records(500), RunOptions(dry_run=True, truncate=True))

        assert result.inserted == 500
        assert result.batches == 1
        assert execute_values.calls == []
        assert fake_db.statements == []

    def test_table_created_before_insert(self, loader, fake_db):
        with patch("rulesync.load.execute_values", RecordingExecuteValues()):
            loader.load("t", make_records(1), RunOptions())

        assert "CREATE TABLE IF NOT EXISTS" in fake_db.statement_texts[0]

    def test_truncate_runs_after_create(self, loader, fake_db):
        with patch("rulesync.load.execute_values", RecordingExecuteValues()):
            loader.load("t", make_records(1), RunOptions(truncate=True))

        texts = fake_db.statement_texts
        assert "CREATE TABLE" in texts[0]
        assert "TRUNCATE TABLE" in texts[1]
        assert "RESTART IDENTITY" in texts[1]

    def test_skip_existing_counts_conflicts_as_skipped(self, loader):
        execute_values = RecordingExecuteValues(rowcount_offset=1)

        with patch("rulesync.load.execute_values", execute_values):
            result = loader.load("t", make_records(10), RunOptions(batch_size=5, skip_existing=True))

        assert "ON CONFLICT DO NOTHING" in sql_text(execute_values.calls[0][0])
        assert result.inserted == 8
        assert result.skipped == 2

    def test_ensure_table_is_repeatable(self, loader, fake_db):
        loader.ensure_table("t")
        loader.ensure_table("t")

        assert len(fake_db.statements) == 2

    def test_count_rows(self, loader, fake_db):
        fake_db.query_results.append([(42,)])

        assert loader.count_rows("t") == 42

    def test_count_rows_on_error(self, loader, fake_db):
        with patch.object(fake_db, "execute_query", side_effect=psycopg2.OperationalError("gone")):
            assert loader.count_rows("t") == 0


class TestSchemaStatements:
    """Generated SQL."""

    def test_rule_table_ddl(self):
        text = sql_text(create_rule_table_sql("rules_carrefour_fr"))

        assert 'CREATE TABLE IF NOT EXISTS "rules_carrefour_fr"' in text
        assert "id SERIAL PRIMARY KEY" in text
        assert '"codigo-categoria-mirakl" TEXT' in text
        assert 'CREATE INDEX IF NOT EXISTS "idx_rules_carrefour_fr_code"' in text
        assert 'CREATE INDEX IF NOT EXISTS "idx_rules_carrefour_fr_type"' in text

    def test_long_table_names_get_distinct_index_names(self):
        table = "rules_" + "x" * 54

        code_index = index_name(table, "code")
        type_index = index_name(table, "type")

        assert code_index != type_index
        assert len(code_index) <= 63
        assert len(type_index) <= 63
        assert code_index.startswith("idx_rules_")

    def test_long_table_ddl_uses_shortened_indexes(self):
        table = "rules_" + "x" * 57

        text = sql_text(create_rule_table_sql(table))

        assert f'"{index_name(table, "code")}"' in text
        assert f'"{index_name(table, "type")}"' in text
        assert f"idx_{table}_code" not in text

    def test_short_index_name_unchanged(self):
        assert index_name("rules_worten_pt", "type") == "idx_rules_worten_pt_type"

    @pytest.mark.parametrize(
        "name, valid",
        [
            ("rules_worten_pt", True),
            ("r" * 63, True),
            ("r" * 64, False),
            ("Rules_pt", False),
            ("rules-pt", False),
            ("2rules", False),
            ("_rules", False),
            ("", False),
        ],
    )
    def test_table_name_validation(self, name, valid):
        assert is_valid_table_name(name) is valid

    def test_insert_statement(self):
        text = sql_text(insert_rules_sql("t"))

        assert text.startswith('INSERT INTO "t" ("code", "description"')
        assert text.endswith("VALUES %s")
