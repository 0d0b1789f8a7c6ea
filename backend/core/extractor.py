"""Row Extractor: reads uploaded spreadsheets and delimited text into raw rows.

Spreadsheet rows are addressed by column letter (the header references of a
mapping); delimited rows are addressed by position against an ordered list
of column names. Cell values are returned untyped; normalization happens
later, per destination column.
"""

import calendar
import csv
import logging
from datetime import date, datetime
from itertools import islice
from pathlib import Path
from typing import Any, Iterable, Optional

import openpyxl
from openpyxl.utils.cell import range_boundaries
from openpyxl.utils.datetime import from_excel
from pydantic import BaseModel

from backend.core.config import settings
from backend.core.models import RawRow

logger = logging.getLogger(__name__)


class SheetLayout(BaseModel):
    """Where the data region of a sheet starts and how far it may extend."""
    sheet_name: Optional[str] = None
    start_row: int = settings.default_start_row  # 0-based: rows above are skipped
    cell_range: Optional[str] = None  # e.g. "A8:GS38"; overrides start_row


def column_letter_to_index(letters: str) -> int:
    """Convert a column letter to a 0-based index: A -> 0, Z -> 25, AA -> 26."""
    letters = letters.strip().upper()
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"Invalid column reference: '{letters}'")
    index = 0
    for ch in letters:
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def excel_serial_to_date(value: Any, threshold: Optional[float] = None) -> Any:
    """Convert an Excel date serial to YYYY-MM-DD.

    Only numbers above the threshold are treated as dates; anything else is
    returned unchanged.
    """
    limit = settings.excel_serial_date_threshold if threshold is None else threshold
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    if value <= limit:
        return value
    try:
        converted = from_excel(value)
    except (OverflowError, ValueError) as e:
        logger.debug(f"Serial {value!r} is not a representable date: {e}; keeping original value")
        return value
    if isinstance(converted, datetime):
        return converted.date().isoformat()
    if isinstance(converted, date):
        return converted.isoformat()
    return value


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _project_row(
    values: tuple,
    header_indexes: list[tuple[str, int]],
    first_col: int,
    last_col: Optional[int],
) -> RawRow:
    """Pick the mapped cells out of one sheet row."""
    row: RawRow = {}
    for header_ref, index in header_indexes:
        if index < first_col or (last_col is not None and index > last_col):
            row[header_ref] = None
            continue
        pos = index - first_col
        value = values[pos] if pos < len(values) else None
        row[header_ref] = None if _is_empty(value) else value
    return row


def _select_sheet(wb, sheet_name: Optional[str]):
    if sheet_name:
        if sheet_name not in wb.sheetnames:
            logger.warning(f"Sheet '{sheet_name}' not found in workbook")
            return None
        return wb[sheet_name]
    return wb.worksheets[0] if wb.worksheets else None


def extract_sheet_rows(
    file_path: Path,
    header_refs: Iterable[str],
    layout: Optional[SheetLayout] = None,
    record_bound: Optional[int] = None,
) -> list[RawRow]:
    """Read the data region of a sheet into raw rows keyed by header reference.

    Rows start at the layout's offset (or the top of its cell range) and are
    truncated to `record_bound`. Rows where every mapped cell is empty are
    dropped.
    """
    layout = layout or SheetLayout()
    header_indexes = [(ref, column_letter_to_index(ref)) for ref in header_refs]

    if layout.cell_range:
        min_col, min_row, max_col, max_row = range_boundaries(layout.cell_range)
        first_col, last_col = min_col - 1, max_col - 1
    else:
        min_row, max_row = layout.start_row + 1, None
        first_col, last_col = 0, None
        min_col, max_col = None, None

    wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)
    try:
        ws = _select_sheet(wb, layout.sheet_name)
        if ws is None:
            return []
        rows_iter = ws.iter_rows(
            min_row=min_row,
            max_row=max_row,
            min_col=min_col,
            max_col=max_col,
            values_only=True,
        )
        if record_bound is not None:
            rows_iter = islice(rows_iter, record_bound)

        raw_rows: list[RawRow] = []
        for values in rows_iter:
            row = _project_row(values or (), header_indexes, first_col, last_col)
            if all(v is None for v in row.values()):
                continue
            raw_rows.append(row)
    finally:
        wb.close()

    logger.info(f"Extracted {len(raw_rows)} rows from {Path(file_path).name}")
    return raw_rows


def extract_delimited_rows(
    file_path: Path,
    columns: list[str],
    start_row: int,
    end_row: int,
    delimiter: str = ",",
    encoding: str = "utf-8",
) -> list[RawRow]:
    """Read rows whose 1-based ordinal lies in [start_row, end_row].

    Cells are matched to `columns` by position; missing trailing cells become
    None, extra cells are ignored and blank lines are dropped.
    """
    if start_row < 1 or end_row < start_row:
        raise ValueError(f"Invalid row range {start_row}..{end_row}")

    raw_rows: list[RawRow] = []
    with open(file_path, newline="", encoding=encoding) as f:
        reader = csv.reader(f, delimiter=delimiter)
        for ordinal, cells in enumerate(reader, start=1):
            if ordinal < start_row:
                continue
            if ordinal > end_row:
                break
            row: RawRow = {}
            for pos, name in enumerate(columns):
                value = cells[pos] if pos < len(cells) else None
                row[name] = None if _is_empty(value) else value
            if all(v is None for v in row.values()):
                continue
            raw_rows.append(row)

    logger.info(f"Extracted {len(raw_rows)} rows from {Path(file_path).name}")
    return raw_rows
