"""Tests for the ingestion engine: end to end against SQLite, mocks for failure paths."""

from datetime import date, datetime, time
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import select

from backend.core.errors import EmptyBatch, MappingNotFound, WriteFailure
from backend.core.extractor import SheetLayout
from backend.core.ingestion_engine import (
    DelimitedUpload,
    SpreadsheetUpload,
    build_batch,
    delimited_column_plan,
    run_ingest,
)
from backend.core.models import ColumnKind, ColumnMapping, MappingEntry, SourceKind
from backend.core.normalizer import build_column_plan
from tests.conftest import WEATHER_MAPPING, make_csv, make_workbook


def _fetch(engine, table):
    with engine.connect() as conn:
        return conn.execute(select(table).order_by(table.c.date)).mappings().all()


class TestBuildBatch:
    def test_mapped_cells_are_normalized(self):
        plan = build_column_plan([
            MappingEntry(header_ref="C", column_name="temperature"),
            MappingEntry(header_ref="D", column_name="date"),
        ])
        batch = build_batch("alice", "weather_daily", plan, [{"C": "23,5", "D": "01/02/2024"}])

        assert batch.columns == ("temperature", "date")
        assert batch.rows == [{"temperature": 23.5, "date": "2024-02-01"}]
        assert batch.as_tuples() == [(23.5, "2024-02-01")]

    def test_every_row_has_every_column(self):
        plan = build_column_plan(WEATHER_MAPPING)
        batch = build_batch("alice", "weather_daily", plan, [{"B": "01/02/2024"}, {}])
        for row in batch.rows:
            assert tuple(row) == batch.columns

    def test_serial_dates_converted_for_spreadsheets(self):
        plan = build_column_plan([MappingEntry(header_ref="A", column_name="date")])
        assert build_batch("a", "t", plan, [{"A": 45323}]).rows[0]["date"] == "2024-02-01"
        assert build_batch("a", "t", plan, [{"A": 45323}], serial_dates=False).rows[0]["date"] == 45323

    def test_out_of_range_serial_does_not_abort_batch(self):
        plan = build_column_plan([MappingEntry(header_ref="B", column_name="date")])
        batch = build_batch("alice", "t", plan, [{"B": 3_000_000}, {"B": 45323}])
        assert [row["date"] for row in batch.rows] == [3_000_000, "2024-02-01"]

    def test_delimited_plan_uses_mapping_kinds(self):
        mapping = ColumnMapping(table_id="t", entries=WEATHER_MAPPING)
        plan = delimited_column_plan(mapping, ["remarks", "rainfall"])
        assert [(p.header_ref, p.kind) for p in plan] == [
            ("remarks", ColumnKind.TEXT),
            ("rainfall", ColumnKind.NUMERIC),
        ]


class TestRunIngestSpreadsheet:
    def test_end_to_end(self, tmp_path, engine, mapping_store, sink, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_workbook(tmp_path / "feb.xlsx", [
            [1, "01/02/2024", "23,5", "-", 0.25, " sunny "],
            [2, datetime(2024, 2, 2), 21, None, "06.45", None],
            [3, 45325, "19,25", "1,5", None, 12],
        ])

        result = run_ingest(
            "alice", "weather_daily", SpreadsheetUpload(path=path),
            record_bound=29, mapping_store=mapping_store, sink=sink,
        )

        assert result.row_count == 3
        assert result.source_kind == SourceKind.SPREADSHEET
        assert result.write_mode == "upsert:date"
        rows = _fetch(engine, weather_table)
        assert [r["date"] for r in rows] == ["2024-02-01", "2024-02-02", "2024-02-03"]
        assert [r["temperature"] for r in rows] == [23.5, 21, 19.25]
        assert [r["rainfall"] for r in rows] == [None, 0, 1.5]
        assert [r["sunrise_time"] for r in rows] == ["06:00:00", "06:45", "00:00:00"]
        assert [r["remarks"] for r in rows] == ["sunny", None, "12"]
        assert {r["inserted_by"] for r in rows} == {"alice"}
        assert not path.exists()

    def test_record_bound_limits_rows(self, tmp_path, mapping_store, sink, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_workbook(tmp_path / "feb.xlsx", [
            [day, f"{day:02d}/02/2024", day] for day in range(1, 32)
        ])
        result = run_ingest(
            "alice", "weather_daily", SpreadsheetUpload(path=path),
            record_bound=29, mapping_store=mapping_store, sink=sink,
        )
        assert result.row_count == 29

    def test_reupload_overwrites(self, tmp_path, engine, mapping_store, sink, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        for temp in ("20", "23,5"):
            path = make_workbook(tmp_path / "feb.xlsx", [[1, "01/02/2024", temp]])
            run_ingest(
                "alice", "weather_daily", SpreadsheetUpload(path=path),
                mapping_store=mapping_store, sink=sink,
            )
        rows = _fetch(engine, weather_table)
        assert len(rows) == 1
        assert rows[0]["temperature"] == 23.5

    def test_reupload_accumulates_without_constraint(
        self, tmp_path, engine, mapping_store, sink, readings_table,
    ):
        mapping_store.put_mapping("readings_log", WEATHER_MAPPING)
        for _ in range(2):
            path = make_workbook(tmp_path / "feb.xlsx", [[1, "01/02/2024", "20"]])
            result = run_ingest(
                "alice", "readings_log", SpreadsheetUpload(path=path),
                mapping_store=mapping_store, sink=sink,
            )
        assert result.write_mode == "insert"
        assert len(_fetch(engine, readings_table)) == 2

    def test_layout_offset_and_sheet(self, tmp_path, engine, mapping_store, sink, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_workbook(
            tmp_path / "feb.xlsx",
            [[1, "01/01/2024", "1"]],
            first_row=3,
            extra_sheets={"Feb": [[1, "01/02/2024", "2"]]},
        )
        upload = SpreadsheetUpload(path=path, layout=SheetLayout(sheet_name="Feb", start_row=2))
        run_ingest("alice", "weather_daily", upload, mapping_store=mapping_store, sink=sink)
        assert [r["date"] for r in _fetch(engine, weather_table)] == ["2024-02-01"]


    def test_typed_date_and_time_columns(self, tmp_path, engine, mapping_store, sink, typed_table):
        mapping_store.put_mapping("typed_daily", WEATHER_MAPPING)
        path = make_workbook(tmp_path / "feb.xlsx", [
            [1, "01/02/2024", "23,5", "-", 0.25, "ok"],
            [2, 45324, "21", None, "06.45", None],
        ])

        result = run_ingest(
            "alice", "typed_daily", SpreadsheetUpload(path=path),
            mapping_store=mapping_store, sink=sink,
        )

        assert result.row_count == 2
        rows = _fetch(engine, typed_table)
        assert [r["date"] for r in rows] == [date(2024, 2, 1), date(2024, 2, 2)]
        assert [r["sunrise_time"] for r in rows] == [time(6, 0), time(6, 45)]


class TestRunIngestDelimited:
    def test_columns_default_to_mapping_order(self, tmp_path, engine, mapping_store, sink, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_csv(tmp_path / "feb.csv", [
            "date,temperature,rainfall,sunrise_time,remarks",
            '01/02/2024,"23,5",-,06.10,ok',
            "02/02/2024,21,,,",
        ])
        result = run_ingest(
            "bob", "weather_daily", DelimitedUpload(path=path, start_row=2, end_row=3),
            mapping_store=mapping_store, sink=sink,
        )
        assert result.source_kind == SourceKind.DELIMITED
        rows = _fetch(engine, weather_table)
        assert [(r["date"], r["temperature"], r["rainfall"]) for r in rows] == [
            ("2024-02-01", 23.5, None),
            ("2024-02-02", 21, 0),
        ]
        assert rows[0]["sunrise_time"] == "06:10"
        assert rows[1]["remarks"] is None
        assert not path.exists()

    def test_explicit_columns(self, tmp_path, engine, mapping_store, sink, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_csv(tmp_path / "feb.csv", ["12;01/02/2024"])
        upload = DelimitedUpload(
            path=path, start_row=1, end_row=1, columns=["rainfall", "date"], delimiter=";",
        )
        run_ingest("bob", "weather_daily", upload, mapping_store=mapping_store, sink=sink)
        row = _fetch(engine, weather_table)[0]
        assert (row["date"], row["rainfall"]) == ("2024-02-01", 12)


class TestFailurePaths:
    def test_missing_mapping(self, tmp_path, mapping_store, sink, weather_table):
        path = make_workbook(tmp_path / "feb.xlsx", [[1, "01/02/2024"]])
        with pytest.raises(MappingNotFound):
            run_ingest(
                "alice", "weather_daily", SpreadsheetUpload(path=path),
                mapping_store=mapping_store, sink=sink,
            )
        assert not path.exists()

    def test_empty_sheet_issues_no_write(self, tmp_path, mapping_store, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_workbook(tmp_path / "feb.xlsx", [])
        mock_sink = MagicMock()
        with pytest.raises(EmptyBatch):
            run_ingest(
                "alice", "weather_daily", SpreadsheetUpload(path=path),
                mapping_store=mapping_store, sink=mock_sink,
            )
        mock_sink.write_batch.assert_not_called()
        mock_sink.upsert.assert_not_called()
        assert not path.exists()

    def test_write_failure_still_cleans_up(self, tmp_path, mapping_store, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_workbook(tmp_path / "feb.xlsx", [[1, "01/02/2024", "1"]])
        mock_sink = MagicMock()
        mock_sink.write_batch.side_effect = WriteFailure("weather_daily", "alice", 1, "boom")
        with pytest.raises(WriteFailure):
            run_ingest(
                "alice", "weather_daily", SpreadsheetUpload(path=path),
                mapping_store=mapping_store, sink=mock_sink,
            )
        assert not path.exists()

    def test_failed_cleanup_is_logged_not_raised(self, tmp_path, mapping_store, sink, weather_table):
        mapping_store.put_mapping("weather_daily", WEATHER_MAPPING)
        path = make_workbook(tmp_path / "feb.xlsx", [[1, "01/02/2024", "1"]])
        with patch("pathlib.Path.unlink", side_effect=PermissionError("busy")):
            result = run_ingest(
                "alice", "weather_daily", SpreadsheetUpload(path=path),
                mapping_store=mapping_store, sink=sink,
            )
        assert result.row_count == 1
