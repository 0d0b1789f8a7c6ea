"""Mapping Loader: loads column mapping documents from YAML files.

A document names a destination table and lists its columns:

    table_id: weather_daily
    columns:
      - {header_ref: C, column_name: temperature}
      - {header_ref: D, column_name: date, kind: date}
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from backend.core.config import settings
from backend.core.mapping_store import MappingStore
from backend.core.models import MappingEntry

logger = logging.getLogger(__name__)


class MappingDocument(BaseModel):
    table_id: str = Field(..., min_length=1, max_length=63)
    columns: list[MappingEntry] = Field(..., min_length=1)


def _mappings_dir() -> Path:
    return settings.resolve_path(settings.mappings_dir)


def load_mapping(name: str) -> MappingDocument:
    """Load a mapping document from {mappings_dir}/{name}.yaml."""
    path = _mappings_dir() / f"{name}.yaml"

    if not path.exists():
        raise FileNotFoundError(f"Mapping document not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Invalid mapping format in {path}: expected a YAML mapping")

    return MappingDocument(**data)


def list_mappings() -> list[str]:
    """List available mapping document names (without .yaml extension)."""
    mappings_dir = _mappings_dir()
    if not mappings_dir.exists():
        return []
    return sorted(p.stem for p in mappings_dir.glob("*.yaml") if not p.stem.startswith("_"))


def seed_mappings(store: MappingStore) -> list[str]:
    """Register every listed document whose table has no mapping yet.

    Returns the table ids that were seeded. Existing mappings are never
    touched, so repeated start-ups are idempotent.
    """
    seeded = []
    for name in list_mappings():
        doc = load_mapping(name)
        if store.has_mapping(doc.table_id):
            logger.debug(f"Mapping for '{doc.table_id}' already present; skipping {name}.yaml")
            continue
        store.put_mapping(doc.table_id, doc.columns)
        seeded.append(doc.table_id)
    if seeded:
        logger.info(f"Seeded mappings for {len(seeded)} tables: {', '.join(seeded)}")
    return seeded
