from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .utils import ConfigurationError, getenv_bool, getenv_float, getenv_int, getenv_str

# ---------- Paths ----------
DEFAULT_OUTPUT_ROOT: Path = Path("downloads")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10


# ---------- Config dataclass ----------
@dataclass(frozen=True)
class Config:
    # Concurrency & politeness
    concurrency: int
    min_delay_ms: int
    max_delay_ms: int

    # Retry / backoff
    retries: int
    backoff_initial_ms: int
    backoff_growth: float
    backoff_max_ms: int

    # Timeouts (navigation and quiescence are independent)
    navigation_timeout_ms: int
    idle_window_ms: int
    quiescence_timeout_ms: int

    # Checkpointing
    checkpoint_every: int

    # Extraction knobs handed to adapters
    max_load_attempts: int
    load_more_wait_ms: int
    min_content_chars: int

    # Browser
    headless: bool
    user_agent: str
    block_heavy_resources: bool
    page_close_timeout_ms: int

    # Paths / logging
    output_root: Path
    log_level: str

    @property
    def delay_range_s(self) -> tuple[float, float]:
        return self.min_delay_ms / 1000.0, self.max_delay_ms / 1000.0


# ---------- Loader ----------
def load_config() -> Config:
    return Config(
        concurrency=getenv_int("HARVEST_CONCURRENCY", 2, MIN_CONCURRENCY, MAX_CONCURRENCY),
        min_delay_ms=getenv_int("HARVEST_MIN_DELAY_MS", 1200, 0, 60_000),
        max_delay_ms=getenv_int("HARVEST_MAX_DELAY_MS", 2200, 0, 60_000),

        retries=getenv_int("HARVEST_RETRIES", 3, 0, 10),
        backoff_initial_ms=getenv_int("HARVEST_BACKOFF_INITIAL_MS", 1000, 0, 60_000),
        backoff_growth=getenv_float("HARVEST_BACKOFF_GROWTH", 2.0, 1.0, 10.0),
        backoff_max_ms=getenv_int("HARVEST_BACKOFF_MAX_MS", 5000, 0, 300_000),

        navigation_timeout_ms=getenv_int("HARVEST_NAV_TIMEOUT_MS", 30_000, 1000, 180_000),
        # A 500ms quiet period is the usual "network idle" heuristic.
        idle_window_ms=getenv_int("HARVEST_IDLE_WINDOW_MS", 500, 50, 10_000),
        quiescence_timeout_ms=getenv_int("HARVEST_QUIESCENCE_TIMEOUT_MS", 30_000, 100, 180_000),

        checkpoint_every=getenv_int("HARVEST_CHECKPOINT_EVERY", 5, 1, 1000),

        max_load_attempts=getenv_int("HARVEST_MAX_LOAD_ATTEMPTS", 10, 0, 100),
        load_more_wait_ms=getenv_int("HARVEST_LOAD_MORE_WAIT_MS", 2000, 0, 30_000),
        min_content_chars=getenv_int("HARVEST_MIN_CONTENT_CHARS", 100, 1, 100_000),

        headless=getenv_bool("HARVEST_HEADLESS", True),
        user_agent=getenv_str("HARVEST_USER_AGENT", DEFAULT_USER_AGENT),
        block_heavy_resources=getenv_bool("HARVEST_BLOCK_HEAVY_RESOURCES", True),
        page_close_timeout_ms=getenv_int("HARVEST_PAGE_CLOSE_TIMEOUT_MS", 1500, 100, 10_000),

        output_root=Path(getenv_str("HARVEST_OUTPUT_ROOT", str(DEFAULT_OUTPUT_ROOT))),
        log_level=getenv_str("HARVEST_LOG_LEVEL", "INFO").upper(),
    )


def validate_config(cfg: Config) -> Config:
    """Reject values the env clamps cannot catch (CLI overrides go through dataclasses.replace)."""
    if not MIN_CONCURRENCY <= cfg.concurrency <= MAX_CONCURRENCY:
        raise ConfigurationError(
            f"concurrency must be within [{MIN_CONCURRENCY}, {MAX_CONCURRENCY}], got {cfg.concurrency}"
        )
    if cfg.min_delay_ms < 0 or cfg.min_delay_ms > cfg.max_delay_ms:
        raise ConfigurationError(f"invalid delay range {cfg.min_delay_ms}-{cfg.max_delay_ms}ms")
    if cfg.retries < 0:
        raise ConfigurationError(f"retries must be >= 0, got {cfg.retries}")
    if cfg.backoff_growth < 1.0:
        raise ConfigurationError(f"backoff growth must be >= 1.0, got {cfg.backoff_growth}")
    for name in ("navigation_timeout_ms", "idle_window_ms", "quiescence_timeout_ms", "checkpoint_every"):
        if getattr(cfg, name) <= 0:
            raise ConfigurationError(f"{name} must be positive")
    return cfg
