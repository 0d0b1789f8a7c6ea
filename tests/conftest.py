"""Shared test fixtures for the ingest service test suite."""

from pathlib import Path
from typing import Optional

import openpyxl
import pytest
from sqlalchemy import Column, Date, Float, Integer, MetaData, String, Table, Time

from backend.core.db import build_engine, init_db
from backend.core.mapping_store import HeaderStore, MappingStore
from backend.core.models import ColumnKind, MappingEntry
from backend.core.schema_introspector import SchemaIntrospector
from backend.core.upsert_sink import UpsertSink

WEATHER_MAPPING = [
    MappingEntry(header_ref="B", column_name="date"),
    MappingEntry(header_ref="C", column_name="temperature"),
    MappingEntry(header_ref="D", column_name="rainfall"),
    MappingEntry(header_ref="E", column_name="sunrise_time"),
    MappingEntry(header_ref="F", column_name="remarks", kind=ColumnKind.TEXT),
]


def create_destination_table(
    engine,
    name: str,
    unique_date: bool = True,
    integer_id: bool = False,
    typed: bool = False,
) -> Table:
    """Create a weather-style destination table the way an operator would."""
    md = MetaData()
    if integer_id:
        id_col = Column("id", Integer, primary_key=True, autoincrement=True)
    else:
        id_col = Column("id", String(36), primary_key=True)
    table = Table(
        name,
        md,
        id_col,
        Column("date", Date if typed else String(10), unique=unique_date),
        Column("temperature", Float),
        Column("rainfall", Float),
        Column("sunrise_time", Time if typed else String(8)),
        Column("remarks", String(200)),
        Column("inserted_by", String(64)),
    )
    md.create_all(engine)
    return table


def make_workbook(
    path: Path,
    rows: list[list],
    first_row: int = 8,
    sheet_name: str = "Data",
    extra_sheets: Optional[dict[str, list[list]]] = None,
) -> Path:
    """Write rows into a workbook starting at 1-based `first_row`, column A.

    Rows above `first_row` get a title line, like a report header block.
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name
    ws.cell(row=1, column=1, value="Monthly report")
    for r, row in enumerate(rows, start=first_row):
        for c, value in enumerate(row, start=1):
            if value is not None:
                ws.cell(row=r, column=c, value=value)
    for title, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(title)
        for r, row in enumerate(sheet_rows, start=first_row):
            for c, value in enumerate(row, start=1):
                if value is not None:
                    extra.cell(row=r, column=c, value=value)
    wb.save(path)
    wb.close()
    return path


def make_csv(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'ingest.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def weather_table(engine) -> Table:
    """Destination table whose date column is unique (upsert mode)."""
    return create_destination_table(engine, "weather_daily")


@pytest.fixture
def readings_table(engine) -> Table:
    """Destination table without a date constraint (plain insert mode)."""
    return create_destination_table(engine, "readings_log", unique_date=False)


@pytest.fixture
def typed_table(engine) -> Table:
    """Destination table with real DATE and TIME columns."""
    return create_destination_table(engine, "typed_daily", typed=True)


@pytest.fixture
def mapping_store(engine) -> MappingStore:
    return MappingStore(engine)


@pytest.fixture
def header_store(engine) -> HeaderStore:
    return HeaderStore(engine)


@pytest.fixture
def introspector(engine) -> SchemaIntrospector:
    return SchemaIntrospector(engine)


@pytest.fixture
def sink(engine, introspector) -> UpsertSink:
    return UpsertSink(engine, introspector)
