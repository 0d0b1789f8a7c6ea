"""Pydantic models for column mappings, table schemas and API request/response bodies."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# Untyped cells keyed by header reference, and typed values keyed by column name.
RawRow = dict[str, Any]
NormalizedRow = dict[str, Any]


class ColumnKind(str, Enum):
    DATE = "date"
    TIME = "time"
    NUMERIC = "numeric"
    TEXT = "text"


class SourceKind(str, Enum):
    SPREADSHEET = "spreadsheet"
    DELIMITED = "delimited"


# --- Mapping entities ---


class MappingEntry(BaseModel):
    header_ref: str = Field(..., pattern=r"^[A-Za-z]{1,3}$")  # spreadsheet column letter
    column_name: str = Field(..., min_length=1, max_length=63)
    kind: Optional[ColumnKind] = None


class ColumnMapping(BaseModel):
    table_id: str
    entries: list[MappingEntry]

    def header_refs(self) -> list[str]:
        return [e.header_ref for e in self.entries]

    def column_names(self) -> list[str]:
        return [e.column_name for e in self.entries]

    def entry_for_column(self, column_name: str) -> Optional[MappingEntry]:
        for entry in self.entries:
            if entry.column_name == column_name:
                return entry
        return None


class DestinationTableSchema(BaseModel):
    table_id: str
    system_columns: list[str] = []
    business_columns: list[str] = []
    date_column: str
    date_column_unique: bool = False


@dataclass
class IngestionBatch:
    """Normalized rows bound for one destination table.

    Every row carries exactly one value per entry in `columns`, in that order.
    """
    table_id: str
    actor_id: str
    columns: tuple[str, ...]
    rows: list[NormalizedRow] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def as_tuples(self) -> list[tuple]:
        return [tuple(row[c] for c in self.columns) for row in self.rows]


# --- API request/response models ---


class MappingCreate(BaseModel):
    entries: list[MappingEntry] = Field(..., min_length=1)


class MappingResponse(BaseModel):
    table_id: str
    entries: list[MappingEntry]


class HeadersCreate(BaseModel):
    headers: list[Any] = Field(..., min_length=1)


class HeadersRecord(BaseModel):
    id: int
    headers: list[Any]
    created_at: Optional[datetime] = None


class HeadersResponse(BaseModel):
    table_id: str
    records: list[HeadersRecord] = []


class TableColumnsResponse(BaseModel):
    table_id: str
    columns: list[str]
    date_column_unique: bool


class UploadResponse(BaseModel):
    table_id: str
    source_kind: SourceKind
    row_count: int
    inserted_count: int
    write_mode: str
    message: str
