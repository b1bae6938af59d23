"""
Database Schema

DDL for the rule tables and the migration configuration table.
Table names are user configuration, so every identifier is composed with
psycopg2.sql instead of string formatting.
"""

import hashlib
import re
from typing import List

from psycopg2 import sql

from rulesync.models import RULE_FIELDS, TableSource

CONFIG_TABLE = "migration_configuration"

# PostgreSQL truncates longer identifiers silently.
MAX_IDENTIFIER_LENGTH = 63
TABLE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

# Marketplace rule tables loaded by default.
DEFAULT_TABLE_SOURCES: List[TableSource] = [
    TableSource(
        "rules_worten_pt",
        "https://docs.google.com/spreadsheets/d/13NijIiZQpwKbLndz76Mj7-MkNurehiNu/edit?usp=sharing&ouid=108323945213256378916&rtpof=true&sd=true",
    ),
    TableSource(
        "rules_pccomp_pt",
        "https://docs.google.com/spreadsheets/d/1EiycfU4p87g5bwP1lF0rS1kSZTLfq8Pj/edit?usp=drive_link&ouid=108323945213256378916&rtpof=true&sd=true",
    ),
    TableSource(
        "rules_pccomp_es",
        "https://docs.google.com/spreadsheets/d/1fVX8KA_SK0kW1TD-wSrRs0U6ahoP7DQI/edit?usp=drive_link&ouid=108323945213256378916&rtpof=true&sd=true",
    ),
    TableSource(
        "rules_carrefour_fr",
        "https://docs.google.com/spreadsheets/d/1C33ky1xGnfwvFYCGl6mbve6hmtxr_7Hf/edit?usp=drive_link&ouid=108323945213256378916&rtpof=true&sd=true",
    ),
    TableSource(
        "rules_carrefour_es",
        "https://docs.google.com/spreadsheets/d/1C2qm-ccZnhDMaXTVvrtr4VB-CbS0UD5l/edit?usp=drive_link&ouid=108323945213256378916&rtpof=true&sd=true",
    ),
]

CREATE_CONFIG_TABLE = sql.SQL(
    """
    CREATE TABLE IF NOT EXISTS {table} (
        id SERIAL PRIMARY KEY,
        table_name TEXT UNIQUE NOT NULL,
        source_url TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """
).format(table=sql.Identifier(CONFIG_TABLE))

UPSERT_CONFIG_SOURCE = sql.SQL(
    """
    INSERT INTO {table} (table_name, source_url)
    VALUES (%s, %s)
    ON CONFLICT (table_name)
    DO UPDATE SET
        source_url = EXCLUDED.source_url,
        updated_at = CURRENT_TIMESTAMP;
    """
).format(table=sql.Identifier(CONFIG_TABLE))

SELECT_CONFIG_SOURCES = sql.SQL(
    "SELECT table_name, source_url FROM {table} ORDER BY table_name;"
).format(table=sql.Identifier(CONFIG_TABLE))


def is_valid_table_name(table_name: str) -> bool:
    """Lowercase letters, digits and underscores, starting with a letter, at most 63 characters."""
    return (
        bool(table_name)
        and len(table_name) <= MAX_IDENTIFIER_LENGTH
        and TABLE_NAME_PATTERN.match(table_name) is not None
    )


def index_name(table_name: str, column: str) -> str:
    """
    Index name for a rule table column, unique within the identifier limit.

    Names that would be truncated keep a prefix of the table name and gain a
    short digest of the full name.

    Example:
        index_name("rules_worten_pt", "code")  # -> "idx_rules_worten_pt_code"
    """
    name = f"idx_{table_name}_{column}"
    if len(name) <= MAX_IDENTIFIER_LENGTH:
        return name
    digest = hashlib.md5(name.encode("utf-8")).hexdigest()[:8]
    prefix = f"idx_{table_name}"[: MAX_IDENTIFIER_LENGTH - len(column) - len(digest) - 2]
    return f"{prefix}_{column}_{digest}"


def rule_columns() -> sql.Composed:
    """Comma-separated quoted rule column list."""
    return sql.SQL(", ").join(sql.Identifier(name) for name in RULE_FIELDS)


def create_rule_table_sql(table_name: str) -> sql.Composed:
    """
    Build idempotent DDL for one rule table and its indexes.

    Args:
        table_name: Target table

    Returns:
        Composed statement (table plus code/type indexes)
    """
    columns = sql.SQL(",\n        ").join(
        sql.SQL("{} TEXT").format(sql.Identifier(name)) for name in RULE_FIELDS
    )
    return sql.SQL(
        """
        CREATE TABLE IF NOT EXISTS {table} (
            id SERIAL PRIMARY KEY,
            {columns},
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS {code_index} ON {table} ({code});
        CREATE INDEX IF NOT EXISTS {type_index} ON {table} ({type});
        """
    ).format(
        table=sql.Identifier(table_name),
        columns=columns,
        code_index=sql.Identifier(index_name(table_name, "code")),
        type_index=sql.Identifier(index_name(table_name, "type")),
        code=sql.Identifier("code"),
        type=sql.Identifier("type"),
    )


def truncate_rule_table_sql(table_name: str) -> sql.Composed:
    return sql.SQL("TRUNCATE TABLE {} RESTART IDENTITY;").format(sql.Identifier(table_name))


def insert_rules_sql(table_name: str, skip_existing: bool = False) -> sql.Composed:
    """
    Build the multi-row INSERT used with execute_values.

    Args:
        table_name: Target table
        skip_existing: Append ON CONFLICT DO NOTHING

    Returns:
        Composed statement with a single VALUES %s placeholder
    """
    statement = sql.SQL("INSERT INTO {table} ({columns}) VALUES %s").format(
        table=sql.Identifier(table_name),
        columns=rule_columns(),
    )
    if skip_existing:
        statement = statement + sql.SQL(" ON CONFLICT DO NOTHING")
    return statement


def count_rules_sql(table_name: str) -> sql.Composed:
    return sql.SQL("SELECT COUNT(*) FROM {};").format(sql.Identifier(table_name))
