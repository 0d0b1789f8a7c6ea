"""Table-scoped upload endpoints.

Handles file upload and runs the ingestion synchronously; the saved file is
removed by the ingestion engine once the write has finished or failed.
"""

import csv
import logging
import zipfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from openpyxl.utils.exceptions import InvalidFileException
from uuid_extensions import uuid7

from backend.api.deps import get_actor, get_table_id, http_error, require_table
from backend.core.config import settings
from backend.core.errors import IngestionError
from backend.core.extractor import SheetLayout, days_in_month
from backend.core.ingestion_engine import (
    DelimitedUpload,
    SpreadsheetUpload,
    Upload,
    run_ingest,
)
from backend.core.models import UploadResponse

logger = logging.getLogger(__name__)

router = APIRouter()

SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm")
DELIMITED_SUFFIXES = (".csv", ".txt")


async def _save_upload(file: UploadFile, suffix: str) -> Path:
    upload_dir = settings.resolve_path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = upload_dir / f"{uuid7()}{suffix}"
    content = await file.read()
    file_path.write_bytes(content)
    return file_path


def _ingest(
    request: Request,
    actor_id: str,
    table_id: str,
    upload: Upload,
    record_bound: Optional[int] = None,
) -> UploadResponse:
    state = request.app.state
    try:
        result = run_ingest(
            actor_id,
            table_id,
            upload,
            record_bound,
            mapping_store=state.mapping_store,
            sink=state.upsert_sink,
        )
    except IngestionError as e:
        raise http_error(e)
    except (ValueError, csv.Error, zipfile.BadZipFile, InvalidFileException) as e:
        raise HTTPException(status_code=400, detail=f"Unreadable upload: {e}")

    return UploadResponse(
        table_id=result.table_id,
        source_kind=result.source_kind,
        row_count=result.row_count,
        inserted_count=result.inserted_count,
        write_mode=result.write_mode,
        message=f"Ingested {result.row_count} rows into '{table_id}'",
    )


@router.post("/tables/{table_id}/uploads", response_model=UploadResponse)
async def upload_spreadsheet(
    request: Request,
    file: UploadFile = File(...),
    year: int = Form(..., ge=1900, le=9999),
    month: int = Form(..., ge=1, le=12),
    sheet_name: Optional[str] = Form(None),
    start_row: int = Form(settings.default_start_row, ge=0),
    cell_range: Optional[str] = Form(None),
    table_id: str = Depends(get_table_id),
    actor_id: str = Depends(get_actor),
):
    """Upload a monthly workbook and ingest it.

    - **file**: Excel file (.xlsx)
    - **year**, **month**: period covered; at most one row per day is read
    - **sheet_name**: sheet to read (defaults to the first sheet)
    - **start_row**: 0-based offset of the first data row
    - **cell_range**: A1 range such as "A8:GS38"; overrides start_row
    """
    if not file.filename or not file.filename.lower().endswith(SPREADSHEET_SUFFIXES):
        raise HTTPException(status_code=400, detail="Only Excel files (.xlsx, .xlsm) are supported")

    require_table(request, table_id)

    layout = SheetLayout(
        sheet_name=sheet_name or None,
        start_row=start_row,
        cell_range=cell_range or None,
    )
    suffix = Path(file.filename).suffix.lower()
    file_path = await _save_upload(file, suffix)

    return _ingest(
        request,
        actor_id,
        table_id,
        SpreadsheetUpload(path=file_path, layout=layout),
        record_bound=days_in_month(year, month),
    )


@router.post("/tables/{table_id}/uploads/csv", response_model=UploadResponse)
async def upload_delimited(
    request: Request,
    file: UploadFile = File(...),
    start_row: int = Form(1, ge=1),
    end_row: int = Form(..., ge=1),
    columns: Optional[str] = Form(None),
    delimiter: str = Form(",", min_length=1, max_length=1),
    table_id: str = Depends(get_table_id),
    actor_id: str = Depends(get_actor),
):
    """Upload a delimited text file and ingest rows start_row..end_row.

    - **columns**: comma-separated destination columns, in file order
      (defaults to the table's mapping order)
    """
    if not file.filename or not file.filename.lower().endswith(DELIMITED_SUFFIXES):
        raise HTTPException(status_code=400, detail="Only CSV files (.csv, .txt) are supported")
    if end_row < start_row:
        raise HTTPException(status_code=400, detail="end_row must not be before start_row")

    require_table(request, table_id)

    column_list = [c.strip() for c in columns.split(",") if c.strip()] if columns else None
    suffix = Path(file.filename).suffix.lower()
    file_path = await _save_upload(file, suffix)

    upload = DelimitedUpload(
        path=file_path,
        start_row=start_row,
        end_row=end_row,
        columns=column_list,
        delimiter=delimiter,
    )
    return _ingest(request, actor_id, table_id, upload)
