"""Column mapping and header label stores.

A mapping binds spreadsheet header references (column letters) to the
destination columns of one table. Mappings are written by an administrative
step and only read during ingestion.
"""

import logging
from typing import Any

from sqlalchemy import func, insert, select
from sqlalchemy.engine import Engine

from backend.core.db import data_mapping, table_headers
from backend.core.errors import MappingNotFound
from backend.core.models import ColumnKind, ColumnMapping, HeadersRecord, MappingEntry

logger = logging.getLogger(__name__)


class MappingStore:
    """Reads and writes header-to-column mappings."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def get_mapping(self, table_id: str) -> list[MappingEntry]:
        """Mapping entries for a table in the order they were registered."""
        stmt = (
            select(
                data_mapping.c.header_cell,
                data_mapping.c.column_name,
                data_mapping.c.column_kind,
            )
            .where(data_mapping.c.table_name == table_id)
            .order_by(data_mapping.c.id)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [
            MappingEntry(
                header_ref=row.header_cell,
                column_name=row.column_name,
                kind=ColumnKind(row.column_kind) if row.column_kind else None,
            )
            for row in rows
        ]

    def resolve_mapping(self, table_id: str) -> ColumnMapping:
        entries = self.get_mapping(table_id)
        if not entries:
            raise MappingNotFound(table_id)
        return ColumnMapping(table_id=table_id, entries=entries)

    def put_mapping(self, table_id: str, entries: list[MappingEntry]) -> int:
        """Store a batch of entries in one transaction.

        Entries are appended as given; duplicate header references are not
        merged.
        """
        if not entries:
            raise ValueError("A mapping needs at least one entry")
        values = [
            {
                "table_name": table_id,
                "header_cell": entry.header_ref,
                "column_name": entry.column_name,
                "column_kind": entry.kind.value if entry.kind else None,
            }
            for entry in entries
        ]
        with self._engine.begin() as conn:
            conn.execute(insert(data_mapping), values)
        logger.info(f"Stored {len(values)} mapping entries for table '{table_id}'")
        return len(values)

    def list_mapped_tables(self) -> list[str]:
        stmt = select(data_mapping.c.table_name).distinct().order_by(data_mapping.c.table_name)
        with self._engine.connect() as conn:
            return [row[0] for row in conn.execute(stmt)]

    def has_mapping(self, table_id: str) -> bool:
        stmt = select(func.count()).select_from(data_mapping).where(
            data_mapping.c.table_name == table_id
        )
        with self._engine.connect() as conn:
            return conn.execute(stmt).scalar_one() > 0


class HeaderStore:
    """Keeps the display header labels uploaded for each table."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def put_headers(self, table_id: str, headers: list[Any]) -> int:
        stmt = insert(table_headers).values(table_name=table_id, headers=headers)
        with self._engine.begin() as conn:
            result = conn.execute(stmt)
            header_id = result.inserted_primary_key[0]
        logger.info(f"Stored {len(headers)} header labels for table '{table_id}'")
        return header_id

    def get_headers(self, table_id: str) -> list[HeadersRecord]:
        stmt = (
            select(table_headers.c.id, table_headers.c.headers, table_headers.c.created_at)
            .where(table_headers.c.table_name == table_id)
            .order_by(table_headers.c.created_at, table_headers.c.id)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [
            HeadersRecord(id=row.id, headers=row.headers, created_at=row.created_at)
            for row in rows
        ]
