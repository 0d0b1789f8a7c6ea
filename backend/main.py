"""Tabular Ingest Service: FastAPI application entry point.

Initializes the database engine and ingestion collaborators on startup and
registers API routers.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from backend.core import db
from backend.core.config import settings
from backend.core.mapping_loader import seed_mappings
from backend.core.mapping_store import HeaderStore, MappingStore
from backend.core.schema_introspector import SchemaIntrospector
from backend.core.upsert_sink import UpsertSink
from backend.api import health, mappings, tables, uploads

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the engine and stores on startup, close on shutdown."""
    logger.info("Starting ingest backend...")

    engine = db.init_engine()

    # Create system tables
    try:
        db.init_db(engine)
    except Exception as e:
        logger.error(f"Failed to create system tables: {e}")

    mapping_store = MappingStore(engine)

    # Register YAML mapping documents for unmapped tables
    try:
        seed_mappings(mapping_store)
    except Exception as e:
        logger.error(f"Failed to seed mappings: {e}")

    introspector = SchemaIntrospector(engine)
    app.state.mapping_store = mapping_store
    app.state.header_store = HeaderStore(engine)
    app.state.schema_introspector = introspector
    app.state.upsert_sink = UpsertSink(engine, introspector)

    logger.info("Ingest backend ready")
    yield

    # Shutdown
    logger.info("Shutting down ingest backend...")
    db.close_engine()
    logger.info("Ingest backend stopped")


app = FastAPI(
    title="Tabular Ingest Service",
    version="0.1.0",
    description="Loads monthly spreadsheets and delimited files into "
                "relational tables through per-table column mappings.",
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(tables.router, prefix="/api", tags=["tables"])
app.include_router(mappings.router, prefix="/api", tags=["mappings"])
app.include_router(uploads.router, prefix="/api", tags=["uploads"])


if __name__ == "__main__":
    uvicorn.run(app, host=settings.backend_host, port=settings.backend_port)
