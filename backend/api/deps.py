"""FastAPI dependencies for table/actor extraction and error translation."""

from typing import Optional

from fastapi import Header, HTTPException, Path, Request

from backend.core.errors import (
    EmptyBatch,
    IngestionError,
    MappingNotFound,
    UnknownColumn,
    UnknownTable,
    WriteFailure,
)

_STATUS_BY_ERROR = {
    UnknownTable: 404,
    MappingNotFound: 400,
    EmptyBatch: 400,
    UnknownColumn: 400,
    WriteFailure: 500,
}


async def get_table_id(
    table_id: str = Path(..., description="Destination table", min_length=1, max_length=63)
) -> str:
    """Extract and validate the destination table name from the URL path.

    Raises 400 if the name is not a plain identifier.
    """
    if not table_id.replace("_", "").isalnum() or table_id[0].isdigit():
        raise HTTPException(
            status_code=400,
            detail=f"Invalid table name: '{table_id}'. "
                   f"Must be alphanumeric with underscores."
        )
    return table_id


async def get_actor(x_actor: Optional[str] = Header(None, max_length=128)) -> str:
    """Identity of the uploading user, as set by the authenticating gateway."""
    if not x_actor or not x_actor.strip():
        raise HTTPException(status_code=401, detail="Missing X-Actor header")
    return x_actor.strip()


def http_error(exc: IngestionError) -> HTTPException:
    """Translate an ingestion error into the matching HTTP response."""
    status = _STATUS_BY_ERROR.get(type(exc), 400)
    return HTTPException(status_code=status, detail=str(exc))


def require_table(request: Request, table_id: str) -> str:
    """Resolve a table through the live schema, raising 404 when it is absent."""
    try:
        return request.app.state.schema_introspector.resolve_table(table_id)
    except UnknownTable as e:
        raise http_error(e)
