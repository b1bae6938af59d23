"""
Migration Configuration Store

Reads and seeds the table -> spreadsheet mapping kept in PostgreSQL.
"""

import logging
from typing import Iterable, List, Optional

from psycopg2.extras import execute_batch

from db.connection import DatabaseConnection
from db.schema import (
    CREATE_CONFIG_TABLE,
    DEFAULT_TABLE_SOURCES,
    SELECT_CONFIG_SOURCES,
    UPSERT_CONFIG_SOURCE,
)
from rulesync.models import TableSource

logger = logging.getLogger(__name__)


class TableSourceRepository:
    """
    Access to the migration_configuration table.
    """

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def ensure_table(self) -> None:
        """Create the configuration table if it does not exist."""
        self.db.execute_update(CREATE_CONFIG_TABLE)
        logger.info("Configuration table ready")

    def seed(self, sources: Optional[Iterable[TableSource]] = None) -> int:
        """
        Upsert table sources by table_name.

        Existing rows get their source_url and updated_at refreshed.

        Args:
            sources: Sources to write (defaults to the built-in marketplace tables)

        Returns:
            Number of sources written
        """
        rows = [
            (source.table_name, source.source_url)
            for source in (DEFAULT_TABLE_SOURCES if sources is None else sources)
        ]
        if not rows:
            return 0

        with self.db.get_cursor() as cursor:
            execute_batch(cursor, UPSERT_CONFIG_SOURCE, rows)

        logger.info(f"Seeded {len(rows)} table source(s)")
        return len(rows)

    def list_sources(self) -> List[TableSource]:
        """
        Load all configured sources.

        Returns:
            TableSource list ordered by table_name
        """
        rows = self.db.execute_query(SELECT_CONFIG_SOURCES)
        sources = [TableSource(table_name=row[0], source_url=row[1]) for row in rows]
        logger.info(f"Loaded {len(sources)} table source(s) from configuration")
        return sources
