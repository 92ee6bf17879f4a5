"""
Small shared utilities: hashing, ids, timestamps and retried I/O.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from .errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PERMANENT_IO_ERRORS = (FileNotFoundError, IsADirectoryError, NotADirectoryError, PermissionError)

_CROCKFORD32 = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def canonical_json(data: Any) -> str:
    """Serialize to JSON with sorted keys and no whitespace (stable for hashing)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_hash(content: bytes | str | dict[str, Any] | list[Any]) -> str:
    """
    Compute sha256 hash of content.

    Dicts and lists are hashed through their canonical JSON form.
    """
    if isinstance(content, (dict, list)):
        content = canonical_json(content)
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def new_ulid(at: datetime | None = None) -> str:
    """Sortable id: 48-bit millisecond timestamp then 80 random bits, 26 Crockford base32 chars."""
    millis = int((at or utc_now()).timestamp() * 1000)
    if not 0 <= millis < 1 << 48:
        raise ValueError("timestamp out of range for ULID")
    value = (millis << 80) | int.from_bytes(os.urandom(10), "big")
    digits: list[str] = []
    for _ in range(26):
        value, digit = divmod(value, 32)
        digits.append(_CROCKFORD32[digit])
    return "".join(reversed(digits))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def retry_io(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    what: str = "I/O operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run an I/O callable, retrying OSError with bounded exponential backoff.

    Raises StorageError once all attempts are exhausted, or at once for errors
    that retrying cannot fix (missing path, wrong file type, permissions).
    Only I/O goes through here; checker logic is never retried.
    """
    attempts = max(1, attempts)
    last_error: OSError | None = None
    for attempt in range(attempts):
        try:
            return fn()
        except PERMANENT_IO_ERRORS as e:
            raise StorageError(f"{what} failed: {e}") from e
        except OSError as e:
            last_error = e
            if attempt + 1 >= attempts:
                break
            delay = min(max_delay, base_delay * (2**attempt))
            logger.warning("%s failed (attempt %d/%d): %s; retrying in %.2fs", what, attempt + 1, attempts, e, delay)
            sleep(delay)
    raise StorageError(f"{what} failed after {attempts} attempts: {last_error}") from last_error
