"""Destination Schema Introspector: live view of destination tables.

Destination tables are created outside this service, so their columns and
constraints are read from the database on every call rather than cached.
The introspector is also the identifier allow-list: table and column names
from callers are only accepted when the database reports them.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.engine import Engine

from backend.core.config import settings
from backend.core.errors import UnknownColumn, UnknownTable
from backend.core.models import DestinationTableSchema

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    """Answers schema questions about destination tables."""

    def __init__(
        self,
        engine: Engine,
        schema: Optional[str] = None,
        system_columns: Optional[Iterable[str]] = None,
        date_column: Optional[str] = None,
    ):
        self._engine = engine
        self._schema = schema if schema is not None else settings.database_schema
        self.system_columns = tuple(
            system_columns if system_columns is not None else settings.system_columns
        )
        self.date_column = date_column or settings.date_column
        self._internal_tables = {settings.mapping_table, settings.headers_table}

    def list_tables(self) -> list[str]:
        """Destination tables, excluding this service's own bookkeeping tables."""
        names = inspect(self._engine).get_table_names(schema=self._schema)
        return sorted(n for n in names if n not in self._internal_tables)

    def resolve_table(self, table_id: str) -> str:
        """Return the table name as the database knows it, or raise UnknownTable."""
        if table_id in self._internal_tables or table_id not in self.list_tables():
            raise UnknownTable(table_id)
        return table_id

    def all_columns(self, table_id: str) -> list[str]:
        self.resolve_table(table_id)
        columns = inspect(self._engine).get_columns(table_id, schema=self._schema)
        return [c["name"] for c in columns]

    def list_columns(
        self,
        table_id: str,
        excluding: Optional[Iterable[str]] = None,
    ) -> list[str]:
        """Column names in ordinal order, minus the excluded ones."""
        excluded = set(self.system_columns if excluding is None else excluding)
        return [c for c in self.all_columns(table_id) if c not in excluded]

    def resolve_columns(self, table_id: str, names: Iterable[str]) -> list[str]:
        """Check that every name is a column of the table."""
        known = set(self.all_columns(table_id))
        resolved = []
        for name in names:
            if name not in known:
                raise UnknownColumn(table_id, name)
            resolved.append(name)
        return resolved

    def has_unique_constraint(self, table_id: str, column_name: str) -> bool:
        """True when the column alone is unique.

        A unique constraint, a unique index or a primary key on exactly this
        column all count.
        """
        self.resolve_table(table_id)
        inspector = inspect(self._engine)
        target = [column_name]

        for constraint in inspector.get_unique_constraints(table_id, schema=self._schema):
            if list(constraint.get("column_names") or []) == target:
                return True

        for index in inspector.get_indexes(table_id, schema=self._schema):
            if index.get("unique") and list(index.get("column_names") or []) == target:
                return True

        pk = inspector.get_pk_constraint(table_id, schema=self._schema) or {}
        return list(pk.get("constrained_columns") or []) == target

    def describe(self, table_id: str) -> DestinationTableSchema:
        columns = self.all_columns(table_id)
        system = [c for c in columns if c in self.system_columns]
        business = [c for c in columns if c not in self.system_columns]
        unique = self.date_column in columns and self.has_unique_constraint(
            table_id, self.date_column
        )
        return DestinationTableSchema(
            table_id=table_id,
            system_columns=system,
            business_columns=business,
            date_column=self.date_column,
            date_column_unique=unique,
        )

    def reflect(self, table_id: str) -> Table:
        """Reflect the table so statements are built from database identifiers."""
        self.resolve_table(table_id)
        return Table(table_id, MetaData(), schema=self._schema, autoload_with=self._engine)
