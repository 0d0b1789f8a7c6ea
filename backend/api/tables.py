"""Destination table endpoints (read-only schema views)."""

from fastapi import APIRouter, Depends, Request

from backend.api.deps import get_table_id, http_error
from backend.core.errors import UnknownTable
from backend.core.models import TableColumnsResponse

router = APIRouter()


@router.get("/tables")
async def list_tables(request: Request):
    """List the destination tables available for ingestion."""
    introspector = request.app.state.schema_introspector
    return {"tables": introspector.list_tables()}


@router.get("/tables/{table_id}/columns", response_model=TableColumnsResponse)
async def get_table_columns(request: Request, table_id: str = Depends(get_table_id)):
    """Business columns of a table, in ordinal order, without system columns."""
    introspector = request.app.state.schema_introspector
    try:
        schema = introspector.describe(table_id)
    except UnknownTable as e:
        raise http_error(e)

    return TableColumnsResponse(
        table_id=table_id,
        columns=schema.business_columns,
        date_column_unique=schema.date_column_unique,
    )

