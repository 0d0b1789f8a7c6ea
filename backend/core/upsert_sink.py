"""Upsert Sink: writes a normalized batch into a destination table.

The write mode is chosen once per batch from a fresh look at the table:
if the business-date column alone is unique, rows are upserted on it (last
write for a date wins); otherwise they are plainly inserted and repeated
uploads accumulate. Either way the whole batch goes out as one multi-row
statement inside one transaction.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Iterable, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import Date, DateTime, Integer, Table, Time, Uuid, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from uuid_extensions import uuid7

from backend.core.config import settings
from backend.core.errors import EmptyBatch, UnknownColumn, WriteFailure
from backend.core.models import DestinationTableSchema, IngestionBatch, NormalizedRow
from backend.core.schema_introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlainInsert:
    """Insert every row; no conflict handling."""

    @property
    def label(self) -> str:
        return "insert"


@dataclass(frozen=True)
class UpsertOnConflict:
    """Insert, or overwrite the row that already holds the same key."""
    column: str

    @property
    def label(self) -> str:
        return f"upsert:{self.column}"


WriteMode = Union[PlainInsert, UpsertOnConflict]

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass
class UpsertResult:
    table_id: str
    row_count: int
    affected_count: int
    mode: WriteMode


def generate_row_id(native: bool = False) -> Union[str, UUID]:
    """Time-sortable UUID v7; canonical string unless a native uuid is wanted."""
    value = uuid7()
    return value if native else str(value)


def coerce_for_column(column_type, value: Any) -> Any:
    """Turn ISO date and time text into the objects a temporal column binds.

    Text that does not parse is left as it is.
    """
    if not isinstance(value, str):
        return value
    try:
        if isinstance(column_type, DateTime):
            return datetime.fromisoformat(value)
        if isinstance(column_type, Date):
            return date.fromisoformat(value)
        if isinstance(column_type, Time):
            return time.fromisoformat(value)
    except ValueError:
        logger.debug(f"Cannot bind {value!r} as {column_type}; keeping text")
    return value


def select_write_mode(schema: DestinationTableSchema) -> WriteMode:
    if schema.date_column_unique:
        return UpsertOnConflict(column=schema.date_column)
    return PlainInsert()


def collapse_duplicate_keys(rows: Sequence[NormalizedRow], column: str) -> list[NormalizedRow]:
    """Keep only the last row per key value.

    Rows without a key value are kept as they are.
    """
    seen: set[Any] = set()
    kept: list[NormalizedRow] = []
    for row in reversed(rows):
        key = row.get(column)
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        kept.append(row)
    kept.reverse()
    return kept


def build_statement(
    table: Table,
    mode: WriteMode,
    values: list[dict[str, Any]],
    dialect_name: str,
    update_columns: Iterable[str],
):
    """Build the single multi-row INSERT for a batch."""
    if isinstance(mode, PlainInsert):
        return insert(table).values(values)

    insert_fn = _UPSERT_INSERTS.get(dialect_name)
    if insert_fn is None:
        raise ValueError(f"ON CONFLICT upserts are not supported on '{dialect_name}'")
    stmt = insert_fn(table).values(values)
    return stmt.on_conflict_do_update(
        index_elements=[table.c[mode.column]],
        set_={name: stmt.excluded[name] for name in update_columns},
    )


class UpsertSink:
    """Writes batches to destination tables resolved through the introspector."""

    def __init__(
        self,
        engine: Engine,
        introspector: SchemaIntrospector,
        id_column: Optional[str] = None,
        audit_column: Optional[str] = None,
    ):
        self._engine = engine
        self._introspector = introspector
        self.id_column = id_column or settings.id_column
        self.audit_column = audit_column or settings.audit_column

    def write_batch(self, batch: IngestionBatch) -> UpsertResult:
        return self.upsert(batch.table_id, batch.actor_id, batch.rows, columns=batch.columns)

    def upsert(
        self,
        table_id: str,
        actor_id: str,
        rows: Sequence[NormalizedRow],
        columns: Optional[Sequence[str]] = None,
    ) -> UpsertResult:
        if not rows:
            raise EmptyBatch(table_id)

        schema = self._introspector.describe(table_id)
        columns = list(columns or rows[0].keys())
        for name in columns:
            if name not in schema.business_columns:
                raise UnknownColumn(table_id, name)

        mode = select_write_mode(schema)
        table = self._introspector.reflect(table_id)

        if isinstance(mode, UpsertOnConflict) and mode.column in columns:
            collapsed = collapse_duplicate_keys(rows, mode.column)
            if len(collapsed) < len(rows):
                logger.warning(
                    f"Batch for '{table_id}' repeats {len(rows) - len(collapsed)} "
                    f"'{mode.column}' values; keeping the last row for each"
                )
            rows = collapsed

        values = [self._row_values(table, actor_id, row, columns) for row in rows]
        update_columns = list(columns)
        if self.audit_column in table.c:
            update_columns.append(self.audit_column)

        logger.info(
            f"Writing {len(values)} rows to '{table_id}' for '{actor_id}' ({mode.label})"
        )
        try:
            stmt = build_statement(
                table, mode, values, self._engine.dialect.name, update_columns,
            )
            with self._engine.begin() as conn:
                result = conn.execute(stmt)
        except (SQLAlchemyError, ValueError) as e:
            logger.error(
                f"Write to '{table_id}' by '{actor_id}' failed for {len(values)} rows: {e}"
            )
            raise WriteFailure(table_id, actor_id, len(values), str(e)) from e

        affected = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(values)
        return UpsertResult(
            table_id=table_id,
            row_count=len(values),
            affected_count=affected,
            mode=mode,
        )

    def _row_values(
        self,
        table: Table,
        actor_id: str,
        row: NormalizedRow,
        columns: Sequence[str],
    ) -> dict[str, Any]:
        values: dict[str, Any] = {}
        id_col = table.c.get(self.id_column)
        if id_col is not None and not isinstance(id_col.type, Integer):
            values[self.id_column] = generate_row_id(native=isinstance(id_col.type, Uuid))
        if self.audit_column in table.c:
            values[self.audit_column] = actor_id
        for name in columns:
            values[name] = coerce_for_column(table.c[name].type, row.get(name))
        return values
