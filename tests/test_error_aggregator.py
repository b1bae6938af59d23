"""
Tests for run-wide error collection and reporting.
"""

import logging

from rulesync.error_aggregator import ErrorAggregator
from rulesync.errors import DownloadTimeout, NetworkFailure, ParseFailure


class TestErrorAggregator:
    """Recording, counting and reporting."""

    def test_empty_report(self):
        aggregator = ErrorAggregator()

        assert not aggregator.has_errors()
        assert aggregator.count() == 0
        assert aggregator.report() == "No errors occurred during migration."

    def test_add_logs_immediately(self, caplog):
        aggregator = ErrorAggregator()

        with caplog.at_level(logging.ERROR, logger="rulesync.error_aggregator"):
            aggregator.add("RuleLoader", "batch failed", {"batch_number": 3})

        assert "batch failed" in caplog.text
        assert aggregator.count() == 1

    def test_warnings_do_not_count(self):
        aggregator = ErrorAggregator()
        aggregator.add_warning("TabularParser", "unmapped column")

        assert not aggregator.has_errors()
        assert aggregator.count() == 0
        assert len(aggregator.entries) == 1
        assert len(aggregator.warnings) == 1

    def test_add_exception_uses_error_source(self):
        aggregator = ErrorAggregator()

        entry = aggregator.add_exception(DownloadTimeout("too slow", {"url": "u"}), {"table": "t"})

        assert entry.source == NetworkFailure.source
        assert entry.context == {"url": "u", "table": "t", "error_type": "DownloadTimeout"}

    def test_add_exception_for_foreign_error(self):
        entry = ErrorAggregator().add_exception(KeyError("x"))

        assert entry.source == "KeyError"

    def test_errors_by_source(self):
        aggregator = ErrorAggregator()
        aggregator.add("A", "one")
        aggregator.add("B", "two")
        aggregator.add("A", "three")

        assert [entry.message for entry in aggregator.errors_by_source("A")] == ["one", "three"]

    def test_report_groups_by_first_seen_source(self):
        aggregator = ErrorAggregator()
        aggregator.add_exception(ParseFailure("bad workbook"))
        aggregator.add("RuleLoader", "batch 1 failed", {"batch_number": 1})
        aggregator.add_exception(ParseFailure("second bad workbook"))

        report = aggregator.report()

        assert report.index("TabularParser (2 errors") < report.index("RuleLoader (1 errors")
        assert report.index("bad workbook") < report.index("second bad workbook")
        assert '"batch_number": 1' in report
        assert "Time:" in report

    def test_entries_are_never_discarded(self):
        aggregator = ErrorAggregator()
        for index in range(50):
            aggregator.add("RuleLoader", f"failure {index}")

        aggregator.report()

        assert aggregator.count() == 50

    def test_final_report_goes_through_logging(self, caplog):
        aggregator = ErrorAggregator()
        aggregator.add("RuleLoader", "batch failed")

        with caplog.at_level(logging.INFO):
            aggregator.log_final_report()

        assert "MIGRATION ERROR REPORT" in caplog.text
