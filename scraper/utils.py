from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Callable, Optional, Tuple, TypeVar
from urllib.parse import urlparse

import tldextract

logger = logging.getLogger(__name__)

# Bundled suffix snapshot only; no network fetch at import time.
_TLD = tldextract.TLDExtract(suffix_list_urls=())

_N = TypeVar("_N", int, float)

# ========== Environment ==========

_TRUTHY = frozenset({"1", "true", "t", "yes", "y", "on"})


def _bounded(val: _N, lo: Optional[_N], hi: Optional[_N]) -> _N:
    if lo is not None and val < lo:
        val = lo
    if hi is not None and val > hi:
        val = hi
    return val


def _getenv_number(name: str, default: _N, cast: Callable[[str], _N], lo: Optional[_N], hi: Optional[_N]) -> _N:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = cast(raw.strip())
    except ValueError:
        logger.warning("Ignoring %s=%r (not a number), using %s", name, raw, default)
        return default
    return _bounded(parsed, lo, hi)


def getenv_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    return raw.strip() if raw and raw.strip() else default


def getenv_int(name: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Integer env knob, clamped into [min_val, max_val]. Garbage falls back to `default`."""
    return _getenv_number(name, default, int, min_val, max_val)


def getenv_float(name: str, default: float, min_val: Optional[float] = None, max_val: Optional[float] = None) -> float:
    return _getenv_number(name, default, float, min_val, max_val)


def getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY

# ========== Exceptions ==========

class HarvestError(Exception):
    """Base class for every error raised by the harvester."""

class ConfigurationError(HarvestError):
    """Invalid range expression, concurrency or timing knobs."""

class AdapterNotFound(HarvestError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"No adapter found for URL: {url}")

class ExtractionError(HarvestError):
    """Adapter could not resolve a mandatory field. `phase` is metadata | listing | content."""

    def __init__(self, phase: str, message: str = ""):
        self.phase = phase
        super().__init__(f"{phase} extraction failed: {message}" if message else f"{phase} extraction failed")

class NavigationError(HarvestError):
    """Retryable navigation failure (driver error, timeout, non-2xx status)."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(f"Navigation to {url} failed: {reason}")

class QuiescenceTimeout(HarvestError):
    """Page never reached network idle. Logged and ignored by callers."""

class CheckpointCorrupt(HarvestError):
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Checkpoint {path} is unreadable: {reason}")

class TaskExhausted(HarvestError):
    """One item's retry budget ran out. Recorded on its TaskResult, never raised across tasks."""

    def __init__(self, item_id: str, attempts: int, last_error: BaseException):
        self.item_id = item_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{item_id} failed after {attempts} attempt(s): {last_error}")

class CrawlCancelled(HarvestError):
    """Raised inside a task when the stop signal is observed between attempts."""

def is_ok_status(status: Optional[int]) -> bool:
    # Playwright returns no response for same-document navigations; treat as fine.
    return status is None or 200 <= status < 400

# ========== URL & domain helpers ==========

def is_http_url(url: str) -> bool:
    try:
        parts = urlparse(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def get_base_domain(host: str) -> str:
    """eTLD+1 of `host` (``reader.mtlbooks.com`` -> ``mtlbooks.com``)."""
    host = (host or "").strip().lower()
    if not host:
        return "unknown-host"
    host = host.removeprefix("www.")
    ext = _TLD(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return host


def url_matches_domain(url: str, domain: str) -> bool:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return False
    return bool(host) and get_base_domain(host) == domain.lower()

# ========== Timing helpers ==========

_DELAY_RE = re.compile(r"^\s*(\d+)(?:\s*-\s*(\d+))?\s*$")


def parse_delay(text: str, default: Tuple[int, int] = (1200, 2200)) -> Tuple[int, int]:
    """Parse "1500" or "1000-2000" (milliseconds) into a (min, max) pair."""
    m = _DELAY_RE.match(text or "")
    if not m:
        return default
    lo = int(m.group(1))
    hi = int(m.group(2)) if m.group(2) else lo
    return (lo, hi) if lo <= hi else (hi, lo)


def format_duration(seconds: float) -> str:
    total = int(max(0, seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"

# ========== File I/O ==========

def atomic_write_text(path: Path, data: str, encoding: str = "utf-8") -> None:
    """
    Replace `path` with `data` in one step: the text goes to a sibling temp
    file which is fsynced and then renamed over the target. Readers see the
    old file or the new one, never a prefix.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding=encoding) as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def slugify(text: str, max_len: int = 80) -> str:
    text = (text or "").strip().lower()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text).strip("-")
    return text[:max_len] or "untitled"

# ========== Playwright helpers ==========

async def try_close_page(page, timeout_ms: int = 1500) -> None:
    """Close `page` but give up after `timeout_ms`; errors are logged at debug."""
    if page is None:
        return
    try:
        await asyncio.wait_for(page.close(), timeout=max(0.1, (timeout_ms or 1) / 1000.0))
    except Exception as e:
        logger.debug("Page close failed: %s", e)
