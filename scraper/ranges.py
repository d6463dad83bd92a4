from __future__ import annotations

import logging
import re
from typing import List, Optional, Set, Tuple

from .utils import ConfigurationError

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"^\d+$")
_INTERVAL_RE = re.compile(r"^(\d+)\s*-\s*(\d*)$")


def _parse_token(token: str, total: int) -> Optional[Tuple[int, int, bool]]:
    """Return (start, end, is_interval) or None when the token is malformed."""
    if _INT_RE.match(token):
        n = int(token)
        return n, n, False
    m = _INTERVAL_RE.match(token)
    if m:
        start = int(m.group(1))
        end = int(m.group(2)) if m.group(2) else total
        return start, end, True
    return None


def resolve_range(expr: Optional[str], total: int, *, strict: bool = False) -> List[int]:
    """
    Turn a chapter range like "1-50,75,120-" into sorted, unique indices in [1, total].

    Intervals are clamped into [1, total]; bare numbers outside it are dropped.
    Malformed tokens are ignored unless strict=True, which raises ConfigurationError.
    """
    total = max(0, int(total))
    text = (expr or "").strip()
    if total == 0 or not text or text.lower() == "all":
        return list(range(1, total + 1))

    picked: Set[int] = set()
    for raw in text.split(","):
        token = raw.strip()
        if not token:
            continue
        parsed = _parse_token(token, total)
        if parsed is None:
            if strict:
                raise ConfigurationError(f"Malformed range token: {token!r}")
            logger.debug("Ignoring malformed range token %r", token)
            continue

        start, end, is_interval = parsed
        if not is_interval:
            if 1 <= start <= total:
                picked.add(start)
            continue

        start = min(max(start, 1), total)
        end = min(max(end, 1), total)
        if start <= end:
            picked.update(range(start, end + 1))

    return sorted(picked)
