"""Cell Normalizer: converts one raw spreadsheet cell into a typed value.

The destination column decides the target shape. An explicit ColumnKind on
the mapping entry wins; otherwise the column name is matched
case-insensitively against "date", then "time", falling back to numeric.

Every public normalize_* function is total: a cell that does not fit its
expected shape is passed through unchanged (and logged) rather than failing
the batch.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional, Union

from backend.core.errors import NormalizationAmbiguous
from backend.core.models import ColumnKind, MappingEntry

logger = logging.getLogger(__name__)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
NUMERIC_TOKEN_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")

MIDNIGHT = "00:00:00"
NO_DATA = "-"


@dataclass(frozen=True)
class PlannedColumn:
    """A mapping entry with its kind resolved once for the whole batch."""
    header_ref: str
    column_name: str
    kind: ColumnKind


def infer_kind(column_name: str) -> ColumnKind:
    name = column_name.lower()
    if "date" in name:
        return ColumnKind.DATE
    if "time" in name:
        return ColumnKind.TIME
    return ColumnKind.NUMERIC


def build_column_plan(entries: Iterable[MappingEntry]) -> list[PlannedColumn]:
    """Classify every mapped column once, preserving mapping order."""
    return [
        PlannedColumn(
            header_ref=entry.header_ref,
            column_name=entry.column_name,
            kind=entry.kind or infer_kind(entry.column_name),
        )
        for entry in entries
    ]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _pass_through(exc: NormalizationAmbiguous) -> Any:
    logger.debug(f"{exc}; keeping original value")
    return exc.value


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def parse_dmy_date(value: str, column_name: str = "date") -> str:
    """Render DD/MM/YYYY or DD/MM/YY as YYYY-MM-DD.

    Two-digit years are read as 20YY.
    """
    parts = [p.strip() for p in value.strip().split("/")]
    # Every part must be digits; anything else passes through unchanged.
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise NormalizationAmbiguous(column_name, value, "DD/MM/YYYY date")
    day, month, year = parts
    if len(year) == 2:
        year = "20" + year
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def normalize_date(value: Any, column_name: str = "date") -> Any:
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        if not isinstance(value, str):
            raise NormalizationAmbiguous(column_name, value, "date")
        stripped = value.strip()
        if ISO_DATE_RE.match(stripped):
            return stripped
        return parse_dmy_date(value, column_name)
    except NormalizationAmbiguous as exc:
        return _pass_through(exc)


# ---------------------------------------------------------------------------
# Times
# ---------------------------------------------------------------------------

def time_from_serial(value: float) -> str:
    """Render the fractional-day part of an Excel serial as HH:MM:00.

    Minutes are rounded half up; a rounded 60 carries into the hour and the
    result never passes 23:59.
    """
    fraction = value - math.floor(value)
    day_hours = fraction * 24
    hours = math.floor(day_hours)
    minutes = math.floor((day_hours - hours) * 60 + 0.5)
    if minutes == 60:
        hours += 1
        minutes = 0
    if hours > 23:
        hours, minutes = 23, 59
    return f"{hours:02d}:{minutes:02d}:00"


def _format_seconds(total: int) -> str:
    total %= 86400
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def normalize_time(value: Any, column_name: str = "time") -> Any:
    if _is_blank(value):
        return MIDNIGHT
    if _is_number(value):
        return time_from_serial(value)
    if isinstance(value, datetime):
        return value.time().strftime("%H:%M:%S")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, timedelta):
        return _format_seconds(int(value.total_seconds()))
    if isinstance(value, str):
        if "." in value:
            return value.replace(".", ":")
        return value
    return _pass_through(NormalizationAmbiguous(column_name, value, "time"))


# ---------------------------------------------------------------------------
# Numbers and text
# ---------------------------------------------------------------------------

def to_decimal_point(token: str) -> str:
    """Rewrite locale-formatted numbers to plain dot-decimal notation.

    "12,5" -> "12.5", "1.234,5" -> "1234.5", "1,234.5" -> "1234.5".
    """
    if "," not in token:
        return token
    if "." in token:
        if token.rfind(",") > token.rfind("."):
            return token.replace(".", "").replace(",", ".")
        return token.replace(",", "")
    if token.count(",") == 1:
        return token.replace(",", ".")
    return token.replace(",", "")


def parse_number(token: str) -> Optional[Union[int, float]]:
    """Parse a plain numeric token, or return None when it is not one."""
    if not NUMERIC_TOKEN_RE.match(token):
        return None
    if any(c in token for c in ".eE"):
        return float(token)
    return int(token)


def normalize_numeric(value: Any, column_name: str = "value") -> Any:
    if _is_blank(value):
        return 0
    if not isinstance(value, str):
        return value
    stripped = value.strip()
    if stripped == NO_DATA:
        return None
    number = parse_number(to_decimal_point(stripped))
    if number is None:
        # Free-text business columns keep their trimmed text.
        return stripped
    return number


def normalize_text(value: Any, column_name: str = "text") -> Optional[str]:
    if _is_blank(value):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return None if stripped == NO_DATA else stripped
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


_NORMALIZERS = {
    ColumnKind.DATE: normalize_date,
    ColumnKind.TIME: normalize_time,
    ColumnKind.NUMERIC: normalize_numeric,
    ColumnKind.TEXT: normalize_text,
}


def normalize(column_name: str, raw_value: Any, kind: Optional[ColumnKind] = None) -> Any:
    """Normalize one cell for its destination column."""
    resolved = kind or infer_kind(column_name)
    return _NORMALIZERS[resolved](raw_value, column_name)
