"""
Tests for workbook parsing and column mapping.
"""

import pytest

from rulesync.errors import ParseFailure
from rulesync.models import RULE_FIELDS
from rulesync.parser import TabularParser, build_column_mapping, is_blank_row
from tests.conftest import build_workbook


class TestColumnMapping:
    """Header cells to canonical fields."""

    def test_exact_canonical_headers(self):
        mapping = build_column_mapping(list(RULE_FIELDS))

        assert mapping == {name: index for index, name in enumerate(RULE_FIELDS)}

    def test_case_insensitive_and_multilingual(self):
        mapping = build_column_mapping(["Código", "Descrição", "TIPO", "Obrigatoriedade"])

        assert mapping["code"] == 0
        assert mapping["description"] == 1
        assert mapping["type"] == 2
        assert mapping["requirement_level"] == 3

    def test_short_alias_does_not_match_inside_other_headers(self):
        mapping = build_column_mapping(["validations", "id"])

        assert mapping["validations"] == 0
        assert mapping["code"] == 1

    def test_substring_match_for_long_aliases(self):
        mapping = build_column_mapping(["Product Code", "Long Description"])

        assert mapping["code"] == 0
        assert mapping["description"] == 1

    def test_column_is_never_shared(self):
        mapping = build_column_mapping(["code", "codigo-categoria-mirakl", "nome-categoria-mirakl"])

        assert mapping["code"] == 0
        assert mapping["codigo-categoria-mirakl"] == 1
        assert mapping["nome-categoria-mirakl"] == 2
        assert "label" not in mapping

    def test_unmatched_fields_are_absent(self):
        mapping = build_column_mapping(["something", None, ""])

        assert mapping == {}


class TestBlankRows:
    """Blank row detection."""

    @pytest.mark.parametrize("row", [[], None, [None, None], ["", "   "], [float("nan"), None]])
    def test_blank(self, row):
        assert is_blank_row(row)

    @pytest.mark.parametrize("row", [["x"], [None, 0], ["", " a "]])
    def test_not_blank(self, row):
        assert not is_blank_row(row)


class TestTabularParser:
    """Workbook bytes to sheets."""

    def test_parses_sheets_in_order(self, errors):
        data = build_workbook(
            {
                "PT": [["code", "description", "type"], ["R1", "First", "Texto"], ["R2", "Second", "Número"]],
                "ES": [["código", "descripción"], ["R3", "Tercera"]],
            }
        )

        sheets = TabularParser(errors).parse(data, "rules_pccomp_pt")

        assert [sheet.name for sheet in sheets] == ["PT", "ES"]
        assert sheets[0].row_count == 2
        assert sheets[0].rows[0][:2] == ["R1", "First"]
        assert sheets[1].column_mapping == {"code": 0, "description": 1}

    def test_unmapped_fields_are_warnings_only(self, errors):
        data = build_workbook({"Rules": [["code"], ["R1"]]})

        sheets = TabularParser(errors).parse(data)

        assert not errors.has_errors()
        assert len(errors.warnings) == len(RULE_FIELDS) - 1
        assert all(entry.context["warning_type"] == "MappingIncomplete" for entry in errors.warnings)
        assert set(sheets[0].unmapped_fields) == set(RULE_FIELDS) - {"code"}

    def test_empty_sheet_is_a_warning(self, errors):
        data = build_workbook({"Empty": [], "Rules": [list(RULE_FIELDS), ["R1"]]})

        sheets = TabularParser(errors).parse(data)

        assert sheets[0].row_count == 0
        assert sheets[1].row_count == 1
        assert not errors.has_errors()
        assert any("is empty" in entry.message for entry in errors.warnings)

    def test_blank_cells_become_none(self, errors):
        data = build_workbook({"Rules": [["code", "label"], ["R1", None], ["R2", "Two"]]})

        sheets = TabularParser(errors).parse(data)

        assert sheets[0].rows[0] == ["R1", None]

    def test_invalid_bytes_raise_parse_failure(self, errors):
        with pytest.raises(ParseFailure):
            TabularParser(errors).parse(b"definitely not a workbook", "broken")

    def test_empty_bytes_raise_parse_failure(self, errors):
        with pytest.raises(ParseFailure):
            TabularParser(errors).parse(b"")

    def test_validate_structure(self, errors):
        parser = TabularParser(errors)

        report = parser.validate_structure(build_workbook({"Rules": [["code"]]}))
        assert report["is_valid"] is True
        assert report["warnings"]

        report = parser.validate_structure(b"junk")
        assert report["is_valid"] is False
        assert report["errors"]
