"""Table-scoped mapping and header label endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from backend.api.deps import get_table_id, http_error, require_table
from backend.core.errors import MappingNotFound, UnknownColumn
from backend.core.models import (
    HeadersCreate,
    HeadersResponse,
    MappingCreate,
    MappingResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tables/{table_id}/mapping", response_model=MappingResponse)
async def get_mapping(request: Request, table_id: str = Depends(get_table_id)):
    """Get the header-to-column mapping registered for a table."""
    require_table(request, table_id)
    try:
        mapping = request.app.state.mapping_store.resolve_mapping(table_id)
    except MappingNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MappingResponse(table_id=table_id, entries=mapping.entries)


@router.post("/tables/{table_id}/mapping", response_model=MappingResponse, status_code=201)
async def create_mapping(
    body: MappingCreate,
    request: Request,
    table_id: str = Depends(get_table_id),
):
    """Register mapping entries for a table.

    Every target column must exist on the table. Entries are appended to any
    already registered.
    """
    require_table(request, table_id)
    introspector = request.app.state.schema_introspector
    store = request.app.state.mapping_store
    try:
        introspector.resolve_columns(table_id, [e.column_name for e in body.entries])
    except UnknownColumn as e:
        raise http_error(e)

    store.put_mapping(table_id, body.entries)
    return MappingResponse(table_id=table_id, entries=store.get_mapping(table_id))


@router.get("/tables/{table_id}/headers", response_model=HeadersResponse)
async def get_headers(request: Request, table_id: str = Depends(get_table_id)):
    """List header label sets stored for a table, oldest first."""
    require_table(request, table_id)
    records = request.app.state.header_store.get_headers(table_id)
    return HeadersResponse(table_id=table_id, records=records)


@router.post("/tables/{table_id}/headers", response_model=HeadersResponse, status_code=201)
async def create_headers(
    body: HeadersCreate,
    request: Request,
    table_id: str = Depends(get_table_id),
):
    """Store a set of display header labels for a table."""
    require_table(request, table_id)
    store = request.app.state.header_store
    store.put_headers(table_id, body.headers)
    return HeadersResponse(table_id=table_id, records=store.get_headers(table_id))
