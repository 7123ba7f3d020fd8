import functools
import inspect
import logging
import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

_NUMERIC_TS_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
_FRACTION_RE = re.compile(r"(?<=:\d\d)\.(\d+)")


def utc_now_iso() -> str:
    """Current instant as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _epoch_seconds(value: float) -> float:
    """Scale a unix epoch given in ns, us, ms or s down to seconds."""
    for threshold, divisor in ((1e17, 1e9), (1e14, 1e6), (1e11, 1e3)):
        if abs(value) >= threshold:
            return value / divisor
    return value


def _six_digit_fraction(match: re.Match) -> str:
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or unix epoch into an aware UTC datetime.

    Naive values are taken as UTC. Returns None for anything unparsable.
    """
    raw = str(value or "").strip()
    if not raw:
        return None

    if _NUMERIC_TS_RE.fullmatch(raw):
        try:
            return datetime.fromtimestamp(_epoch_seconds(float(raw)), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None

    text = _FRACTION_RE.sub(_six_digit_fraction, raw.replace("Z", "+00:00"))
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def atomic_write(path: str | Path, payload: str | bytes) -> None:
    """Atomically write text/bytes by writing a sibling temp file then rename.

    The parent directory must already exist.
    """
    target = Path(path)

    tmp_name = f".{target.name}.{os.getpid()}.tmp"
    tmp_path = target.with_name(tmp_name)

    try:
        if isinstance(payload, bytes):
            tmp_path.write_bytes(payload)
        else:
            tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, target)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# Latency tracking
# ---------------------------------------------------------------------------

def _log_latency(logger: logging.Logger, service: str, operation: str, start: float) -> float:
    ms = (time.monotonic() - start) * 1000
    logger.debug("%s.%s latency=%.1fms", service, operation, ms)
    return ms


class LatencyTracker:
    """Async context manager that logs the wall-clock latency of a block.

    Usage::

        async with LatencyTracker("checks", "goal_quality") as lt:
            result = await run_goal_quality_check(cfg, llm)
        # lt.elapsed_ms is set; logged at DEBUG to ``latency.checks``
    """

    __slots__ = ("service", "operation", "elapsed_ms", "_start", "_logger")

    def __init__(self, service: str, operation: str):
        self.service = service
        self.operation = operation
        self.elapsed_ms: float = 0.0
        self._start: float = 0.0
        self._logger = logging.getLogger(f"latency.{service}")

    async def __aenter__(self) -> "LatencyTracker":
        self._start = time.monotonic()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.elapsed_ms = _log_latency(self._logger, self.service, self.operation, self._start)


def track_latency(service: str, operation: str | None = None):
    """Decorator for coroutine functions; logs latency to ``latency.<service>``.

    *operation* defaults to the function name.
    """

    def decorator(fn: Any) -> Any:
        if not inspect.iscoroutinefunction(fn):
            raise TypeError(f"track_latency needs a coroutine function, got {fn!r}")
        op = operation or fn.__name__
        logger = logging.getLogger(f"latency.{service}")

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            try:
                return await fn(*args, **kwargs)
            finally:
                _log_latency(logger, service, op, start)

        return wrapper

    return decorator
