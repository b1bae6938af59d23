"""
Business-Rule Normalization

Maps free-text requirement levels and field types onto a small canonical
vocabulary. Values that match no keyword pass through unchanged.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

from rulesync.models import RuleRecord

logger = logging.getLogger(__name__)


class Normalizer(ABC):
    """Abstract base class for field normalizers."""

    @abstractmethod
    def normalize(self, value: str) -> str:
        """
        Normalize a value.

        Returns:
            Canonical value, or the input when nothing matches
        """
        pass


class KeywordNormalizer(Normalizer):
    """
    Keyword-containment normalizer.

    Rules are checked in order; the first canonical value with a keyword
    contained in the lower-cased input wins.
    """

    RULES: Sequence[Tuple[str, Sequence[str]]] = ()

    def normalize(self, value: str) -> str:
        if not value:
            return ""

        lowered = value.lower().strip()
        for canonical, keywords in self.RULES:
            if any(keyword in lowered for keyword in keywords):
                return canonical

        return value


class RequirementLevelNormalizer(KeywordNormalizer):
    """Normalizes requirement_level values across pt/es/fr/en."""

    # A negation in front of a "required" keyword means optional.
    NEGATED_REQUIRED = re.compile(
        r"\b(?:no|não|nao|not|non)[\s-]*(?:obrigat|obligat|requir|requer|mandat)"
    )

    RULES = (
        ("optional", ("optional", "opcional", "facultatif", "facultativo", "optionnel")),
        ("conditional", ("conditional", "condicional", "conditionnel")),
        ("recommended", ("recommended", "recomendado", "recommandé", "recommande")),
        ("required", ("required", "mandatory", "obrigatório", "obrigatorio", "obligatoire", "obligatorio", "requerido")),
    )

    def normalize(self, value: str) -> str:
        if value and self.NEGATED_REQUIRED.search(value.lower()):
            return "optional"
        return super().normalize(value)


class TypeNormalizer(KeywordNormalizer):
    """Normalizes type values to text/number/date/boolean."""

    RULES = (
        ("boolean", ("boolean", "booleano", "booléen", "bool")),
        ("date", ("date", "data", "fecha")),
        ("number", ("number", "numeric", "numero", "número", "numérico", "integer", "decimal")),
        ("text", ("text", "texto", "texte", "string")),
    )


class RuleRecordNormalizer:
    """
    Applies field normalizers to complete rule records.
    """

    def __init__(self):
        """Initialize normalizers for each field."""
        self.normalizers: Dict[str, Normalizer] = {
            "requirement_level": RequirementLevelNormalizer(),
            "type": TypeNormalizer(),
        }

    def normalize_record(self, record: RuleRecord) -> RuleRecord:
        """Normalize one record in place and return it."""
        for field_name, normalizer in self.normalizers.items():
            record[field_name] = normalizer.normalize(record.get(field_name, ""))
        return record

    def normalize_batch(self, records: List[RuleRecord]) -> List[RuleRecord]:
        """
        Normalize a list of records in one pass.

        Args:
            records: Rule records

        Returns:
            The same list, normalized
        """
        changed = 0
        for record in records:
            before = (record.get("requirement_level"), record.get("type"))
            self.normalize_record(record)
            if before != (record.get("requirement_level"), record.get("type")):
                changed += 1

        logger.info(f"Normalization complete: {changed} of {len(records)} records adjusted")

        return records
