"""Ingestion Engine: turns one uploaded file into one destination-table write.

Resolves the table's column mapping, extracts raw rows, normalizes every
mapped cell and hands the ordered batch to the upsert sink. The uploaded
file is removed on every exit path.

Synchronous: runs inline in the request handler and issues a single write
statement per upload.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

from backend.core.errors import EmptyBatch
from backend.core.extractor import (
    SheetLayout,
    excel_serial_to_date,
    extract_delimited_rows,
    extract_sheet_rows,
)
from backend.core.mapping_store import MappingStore
from backend.core.models import (
    ColumnKind,
    ColumnMapping,
    IngestionBatch,
    NormalizedRow,
    RawRow,
    SourceKind,
)
from backend.core.normalizer import PlannedColumn, build_column_plan, infer_kind, normalize
from backend.core.upsert_sink import UpsertSink

logger = logging.getLogger(__name__)


@dataclass
class SpreadsheetUpload:
    """An uploaded workbook; cells are addressed by column letter."""
    path: Path
    layout: SheetLayout = field(default_factory=SheetLayout)


@dataclass
class DelimitedUpload:
    """An uploaded CSV; cells are addressed by position."""
    path: Path
    start_row: int
    end_row: int
    columns: Optional[list[str]] = None  # defaults to the mapping's column order
    delimiter: str = ","
    encoding: str = "utf-8"


Upload = Union[SpreadsheetUpload, DelimitedUpload]


@dataclass
class IngestResult:
    """Result of one ingestion."""
    table_id: str
    source_kind: SourceKind
    row_count: int
    inserted_count: int
    write_mode: str


def delimited_column_plan(mapping: ColumnMapping, columns: Iterable[str]) -> list[PlannedColumn]:
    """Plan positional columns, taking kinds from same-named mapping entries."""
    plan = []
    for name in columns:
        entry = mapping.entry_for_column(name)
        kind = entry.kind if entry is not None and entry.kind else infer_kind(name)
        plan.append(PlannedColumn(header_ref=name, column_name=name, kind=kind))
    return plan


def normalize_row(
    plan: list[PlannedColumn],
    raw_row: RawRow,
    serial_dates: bool = True,
) -> NormalizedRow:
    row: NormalizedRow = {}
    for col in plan:
        value = raw_row.get(col.header_ref)
        if serial_dates and col.kind == ColumnKind.DATE:
            value = excel_serial_to_date(value)
        row[col.column_name] = normalize(col.column_name, value, col.kind)
    return row


def build_batch(
    actor_id: str,
    table_id: str,
    plan: list[PlannedColumn],
    raw_rows: list[RawRow],
    serial_dates: bool = True,
) -> IngestionBatch:
    """Normalize raw rows into a batch with one fixed column order."""
    return IngestionBatch(
        table_id=table_id,
        actor_id=actor_id,
        columns=tuple(col.column_name for col in plan),
        rows=[normalize_row(plan, raw, serial_dates) for raw in raw_rows],
    )


def _discard_upload(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove upload artifact {path}: {e}")


def run_ingest(
    actor_id: str,
    table_id: str,
    upload: Upload,
    record_bound: Optional[int] = None,
    *,
    mapping_store: MappingStore,
    sink: UpsertSink,
) -> IngestResult:
    """Ingest one uploaded file into a destination table.

    Steps:
    1. Resolve the table's column mapping (MappingNotFound if absent)
    2. Extract raw rows, bounded by `record_bound`
    3. Normalize every mapped cell into a batch
    4. Write the batch with a single upsert statement
    The upload file is deleted afterwards, whatever the outcome.
    """
    is_sheet = isinstance(upload, SpreadsheetUpload)
    source_kind = SourceKind.SPREADSHEET if is_sheet else SourceKind.DELIMITED
    row_count = 0
    logger.info(
        f"Ingesting {upload.path.name} into '{table_id}' for '{actor_id}' ({source_kind.value})"
    )

    try:
        mapping = mapping_store.resolve_mapping(table_id)

        if is_sheet:
            plan = build_column_plan(mapping.entries)
            raw_rows = extract_sheet_rows(
                upload.path, mapping.header_refs(), upload.layout, record_bound,
            )
        else:
            plan = delimited_column_plan(mapping, upload.columns or mapping.column_names())
            raw_rows = extract_delimited_rows(
                upload.path,
                [col.column_name for col in plan],
                upload.start_row,
                upload.end_row,
                delimiter=upload.delimiter,
                encoding=upload.encoding,
            )
            if record_bound is not None:
                raw_rows = raw_rows[:record_bound]

        row_count = len(raw_rows)
        if not raw_rows:
            raise EmptyBatch(table_id, "no rows extracted from upload")

        batch = build_batch(actor_id, table_id, plan, raw_rows, serial_dates=is_sheet)
        result = sink.write_batch(batch)

    except Exception as e:
        logger.error(
            f"Ingestion into '{table_id}' for '{actor_id}' failed after {row_count} rows: {e}"
        )
        raise
    finally:
        _discard_upload(upload.path)

    logger.info(
        f"Ingested {result.row_count} rows into '{table_id}' for '{actor_id}' "
        f"({result.mode.label}, {result.affected_count} affected)"
    )
    return IngestResult(
        table_id=table_id,
        source_kind=source_kind,
        row_count=result.row_count,
        inserted_count=result.affected_count,
        write_mode=result.mode.label,
    )
