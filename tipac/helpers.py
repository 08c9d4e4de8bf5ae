import time
import re
import uuid
import hmac
import random
from datetime import datetime, timezone
from typing import Any, Dict, Optional, List, TypeVar

from .errors import InvalidInput

T = TypeVar("T")


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def round_half_up(value: float) -> int:
    # 2.5 -> 3, not banker's rounding
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def shuffled(items: List[T], k: Optional[int] = None) -> List[T]:
    out = list(items)
    random.shuffle(out)
    return out if k is None else out[:k]


def text_field(payload: Dict[str, Any], key: str) -> str:
    """Stripped string value of ``key``; missing or null reads as ""."""
    v = payload.get(key)
    if v is None:
        return ""
    if not isinstance(v, str):
        raise InvalidInput(f"{key} must be a string")
    return v.strip()
