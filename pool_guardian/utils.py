"""
Common utilities and helper functions for the pool guardian.

Timestamp formatting, JSON serialization of ints/Decimals and atomic state
file writes.
"""

import json
import os
import tempfile
import time
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Union


def get_current_timestamp() -> float:
    """Get current Unix timestamp as float."""
    return time.time()


def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """Cooldown style duration: '45s', '4m 30s', '2h 05m'."""
    seconds = max(0, int(round(seconds)))
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def format_pct(ratio: float) -> str:
    """0.1234 -> '12.34%'"""
    return f"{ratio * 100:.2f}%"


def safe_json_dump(data: Any, **kwargs) -> str:
    """
    Serialize CLI and state output.

    Base-unit amounts are plain ints; Decimals become strings so no precision
    is lost, enums their value and domain objects their to_dict().
    """
    kwargs.setdefault("indent", 2)
    return json.dumps(data, default=_to_json, **kwargs)


def _to_json(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if is_dataclass(obj):
        return asdict(obj)
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def atomic_write_json(path: Union[str, Path], data: Any) -> Path:
    """Write JSON to `path` via a temp file and os.replace."""
    state_path = Path(path)
    state_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        dir=state_path.parent, prefix=f".{state_path.stem}_", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w") as f:
            f.write(safe_json_dump(data))
        os.replace(temp_path, state_path)
    except OSError:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
    return state_path


def short_address(address: str, length: int = 10) -> str:
    """Truncate an address for log lines."""
    if len(address) <= length:
        return address
    return f"{address[:length]}..."
