"""Ingestion error taxonomy.

Routers translate these into HTTP responses; the core raises them and never
swallows them, except NormalizationAmbiguous which the normalizer degrades to
a pass-through of the original cell value.
"""

from typing import Any, Optional


class IngestionError(Exception):
    """Base class for all ingestion failures."""


class MappingNotFound(IngestionError):
    def __init__(self, table_id: str):
        self.table_id = table_id
        super().__init__(f"No column mapping registered for table '{table_id}'")


class EmptyBatch(IngestionError):
    def __init__(self, table_id: str, detail: str = "no rows to write"):
        self.table_id = table_id
        super().__init__(f"Empty batch for table '{table_id}': {detail}")


class NormalizationAmbiguous(IngestionError):
    def __init__(self, column_name: str, value: Any, expected: str):
        self.column_name = column_name
        self.value = value
        self.expected = expected
        super().__init__(
            f"Cannot read {value!r} in column '{column_name}' as {expected}"
        )


class WriteFailure(IngestionError):
    def __init__(
        self,
        table_id: str,
        actor_id: str,
        row_count: int,
        reason: Optional[str] = None,
    ):
        self.table_id = table_id
        self.actor_id = actor_id
        self.row_count = row_count
        msg = f"Write of {row_count} rows to '{table_id}' by '{actor_id}' failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnknownTable(IngestionError):
    def __init__(self, table_id: str):
        self.table_id = table_id
        super().__init__(f"Table '{table_id}' does not exist")


class UnknownColumn(IngestionError):
    def __init__(self, table_id: str, column_name: str):
        self.table_id = table_id
        self.column_name = column_name
        super().__init__(f"Table '{table_id}' has no column '{column_name}'")
