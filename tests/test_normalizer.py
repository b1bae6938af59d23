"""
Tests for requirement level and type normalization.
"""

import pytest

from rulesync.normalizer import RequirementLevelNormalizer, RuleRecordNormalizer, TypeNormalizer


class TestRequirementLevelNormalizer:
    """Multilingual requirement levels."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("Required", "required"),
            ("Obrigatório", "required"),
            ("obligatoire", "required"),
            ("Mandatory field", "required"),
            ("Opcional", "optional"),
            ("facultatif", "optional"),
            ("Non obligatoire", "optional"),
            ("Recomendado", "recommended"),
            ("recommandé", "recommended"),
            ("Condicional", "conditional"),
        ],
    )
    def test_known_values(self, value, expected):
        assert RequirementLevelNormalizer().normalize(value) == expected

    @pytest.mark.parametrize(
        "value",
        ["No obligatorio", "nao obrigatorio", "Não obrigatório", "Not required", "Non-mandatory"],
    )
    def test_negated_required_is_optional(self, value):
        assert RequirementLevelNormalizer().normalize(value) == "optional"

    def test_negation_needs_a_required_keyword(self):
        assert RequirementLevelNormalizer().normalize("Obligatorio (no aplica a kits)") == "required"

    def test_unknown_value_unchanged(self):
        assert RequirementLevelNormalizer().normalize("Sometimes") == "Sometimes"

    def test_empty_value(self):
        assert RequirementLevelNormalizer().normalize("") == ""


class TestTypeNormalizer:
    """Field type vocabulary."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("Texto", "text"),
            ("STRING", "text"),
            ("Número", "number"),
            ("decimal", "number"),
            ("Fecha", "date"),
            ("Booleano", "boolean"),
        ],
    )
    def test_known_values(self, value, expected):
        assert TypeNormalizer().normalize(value) == expected

    def test_unknown_value_unchanged(self):
        assert TypeNormalizer().normalize("Media") == "Media"


class TestRuleRecordNormalizer:
    """Whole-record normalization."""

    def test_normalizes_only_known_fields(self):
        record = {"code": "R1", "requirement_level": "Obrigatório", "type": "Texto", "label": "Texto"}

        RuleRecordNormalizer().normalize_record(record)

        assert record == {"code": "R1", "requirement_level": "required", "type": "text", "label": "Texto"}

    def test_batch_keeps_every_record(self):
        records = [{"code": "R1", "type": "Texto"}, {"code": "R1", "type": "Texto"}]

        result = RuleRecordNormalizer().normalize_batch(records)

        assert result is records
        assert len(result) == 2
