"""
Shared utility functions for Timesheet application.
"""

import os
import re
import time
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Union

from platformdirs import user_data_dir

APP_NAME = "Timesheet"

HEX_COLOR_RE = re.compile(r'^#[0-9a-fA-F]{6}$')
MS_PER_HOUR = 3600000


def get_data_path(relative_path: str) -> Path:
    """Get absolute path to writable data files (databases, logs, reports)

    ``TIMESHEET_DATA_DIR`` overrides the location; otherwise the per-user data
    directory returned by ``platformdirs.user_data_dir`` is used.
    """
    override = os.getenv('TIMESHEET_DATA_DIR')
    if override:
        base_path = Path(override).expanduser()
    else:
        base_path = Path(user_data_dir(APP_NAME))

    base_path.mkdir(parents=True, exist_ok=True)
    return base_path / relative_path


def new_id() -> str:
    """Generate a fresh record identifier"""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def ms_to_local_date(ms: int) -> date:
    """Local calendar date of an epoch-millisecond timestamp"""
    return datetime.fromtimestamp(ms / 1000).date()


def to_int_optional(value: Union[str, int, None]) -> Optional[int]:
    """Convert string to int, return None if invalid"""
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def to_float_optional(value: Union[str, float, None]) -> Optional[float]:
    """Convert string to float, return None if invalid"""
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def format_datetime(dt: datetime) -> str:
    """Format datetime to standard string format"""
    return dt.strftime('%Y-%m-%d %H:%M:%S')


def parse_date(date_str: str) -> Optional[date]:
    """Parse YYYY-MM-DD date string, return None if invalid"""
    if not date_str or not isinstance(date_str, str) or len(date_str) != 10:
        return None
    try:
        return date.fromisoformat(date_str)
    except ValueError:
        return None


def validate_color(color: str) -> bool:
    """Validate hex RGB color (#RRGGBB)"""
    return bool(color and isinstance(color, str) and HEX_COLOR_RE.match(color))
