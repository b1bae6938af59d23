"""
Rule record shape and run-level value objects.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

# Canonical output columns, in table order.
RULE_FIELDS: Tuple[str, ...] = (
    "code",
    "description",
    "label",
    "requirement_level",
    "roles",
    "type",
    "validations",
    "variant",
    "codigo-categoria-mirakl",
    "nome-categoria-mirakl",
    "parent_code-categoria-mirakl",
)

# Maximum stored length per field.
FIELD_LIMITS: Dict[str, int] = {
    "code": 100,
    "description": 500,
    "label": 200,
    "requirement_level": 50,
    "roles": 200,
    "type": 50,
    "validations": 500,
    "variant": 100,
    "codigo-categoria-mirakl": 100,
    "nome-categoria-mirakl": 200,
    "parent_code-categoria-mirakl": 100,
}

# Header synonyms accepted for each canonical field (case-insensitive).
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "code": ("code", "codigo", "código", "id"),
    "description": ("description", "descricao", "descrição", "descripcion", "descripción", "desc"),
    "label": ("label", "rotulo", "rótulo", "etiqueta", "libelle", "libellé", "nome", "name"),
    "requirement_level": (
        "requirement_level", "requirement level", "nivel_requisito", "nivel_requerimiento",
        "obrigatoriedade", "required",
    ),
    "roles": ("roles", "papeis", "papéis", "funcoes", "funções", "functions"),
    "type": ("type", "tipo", "category"),
    "validations": ("validations", "validacoes", "validações", "validaciones", "rules"),
    "variant": ("variant", "variante", "version"),
    "codigo-categoria-mirakl": ("codigo-categoria-mirakl", "mirakl_category_code"),
    "nome-categoria-mirakl": ("nome-categoria-mirakl", "mirakl_category_name"),
    "parent_code-categoria-mirakl": ("parent_code-categoria-mirakl", "parent_mirakl_code"),
}

# A rule record is a plain mapping keyed by RULE_FIELDS.
RuleRecord = Dict[str, str]
Batch = List[RuleRecord]


@dataclass(frozen=True)
class TableSource:
    """One configured table and the spreadsheet it is loaded from."""
    table_name: str
    source_url: str


@dataclass
class RunOptions:
    """Per-run switches supplied by the caller."""
    dry_run: bool = False
    batch_size: int = 1000
    streaming_batch_size: int = 10
    target_table: Optional[str] = None
    truncate: bool = False
    skip_existing: bool = False
    config_only: bool = False

    def __post_init__(self) -> None:
        if self.batch_size < 1 or self.streaming_batch_size < 1:
            raise ValueError("Batch sizes must be positive integers")


def empty_record() -> RuleRecord:
    return {field: "" for field in RULE_FIELDS}
