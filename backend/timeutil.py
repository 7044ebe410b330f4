import math
import time
from datetime import datetime, timezone
from typing import Any, Optional

# numbers below this are read as epoch seconds rather than milliseconds
_SECONDS_CUTOFF = 100_000_000_000
# anything past this (around the year 5138) is not a real timestamp
MAX_EPOCH_MS = 100_000_000_000_000


def now_ms() -> int:
    return int(time.time() * 1000)


def to_epoch_ms(value: Any) -> Optional[int]:
    """Best-effort conversion of a vendor timestamp to epoch milliseconds.

    Accepts epoch seconds or milliseconds (numbers or digit strings) and ISO-8601
    strings; naive ISO values are read as UTC. Returns None when the value is not
    a usable timestamp.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if (isinstance(value, float) and not math.isfinite(value)) or value <= 0:
            return None
        ms = int(value * 1000) if value < _SECONDS_CUTOFF else int(value)
        return ms if ms <= MAX_EPOCH_MS else None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        ms = int(value.timestamp() * 1000)
        return ms if 0 < ms <= MAX_EPOCH_MS else None
    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").replace(".", "", 1).isdigit():
        return to_epoch_ms(float(text))
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_epoch_ms(parsed)


def is_valid_timestamp(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return 0 < value <= MAX_EPOCH_MS
