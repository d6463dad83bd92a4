from __future__ import annotations
import logging
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

from .output_paths import ensure_crawl_dirs

LOG_FILENAME = "crawl.log"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(item_id)s] %(message)s"

# Item id of the fetch the current task is working on.
_CURRENT_ITEM_ID: ContextVar[Optional[str]] = ContextVar("_CURRENT_ITEM_ID", default=None)


class _ItemContextFilter(logging.Filter):
    """
    Stamp every record with the item id of the task that emitted it
    (`-` outside item tasks) so interleaved concurrent fetches stay readable.
    """
    def filter(self, record: logging.LogRecord) -> bool:
        record.item_id = _CURRENT_ITEM_ID.get() or "-"
        return True


class LoggingExtension:
    """
    Owns the root logger for one crawl: a terse console handler at
    `global_level` plus, once the output directory is known, a detailed
    per-novel log file at `file_level`.
    """

    def __init__(
        self,
        *,
        global_level: int = logging.INFO,
        file_level: Optional[int] = None,
    ) -> None:
        self.global_level = global_level
        self.file_level = global_level if file_level is None else file_level
        self._file_handler: Optional[logging.Handler] = None
        self.log_path: Optional[Path] = None

        root = logging.getLogger()
        for existing in list(root.handlers):
            root.removeHandler(existing)
        console = logging.StreamHandler()
        console.setLevel(self.global_level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(console)
        # handlers do the filtering
        root.setLevel(logging.DEBUG)

    # ---------------- Crawl log file ----------------

    def attach_crawl_log(self, output_dir: Path) -> Path:
        """
        Route every module's records into <output_dir>/logs/crawl.log.
        Appends across resumed runs. Idempotent.
        """
        log_path = ensure_crawl_dirs(output_dir)["logs"] / LOG_FILENAME
        if self._file_handler is not None:
            return self.log_path or log_path

        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        handler.setLevel(self.file_level)
        handler.addFilter(_ItemContextFilter())
        handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logging.getLogger().addHandler(handler)
        self._file_handler = handler
        self.log_path = log_path
        return log_path

    # ---------------- Item context ----------------

    @staticmethod
    def set_item_context(item_id: str):
        """Tag this task's records with `item_id`; pass the token to reset_item_context."""
        return _CURRENT_ITEM_ID.set(str(item_id))

    @staticmethod
    def reset_item_context(token) -> None:
        _CURRENT_ITEM_ID.reset(token)

    def close(self) -> None:
        handler, self._file_handler = self._file_handler, None
        if handler is None:
            return
        logging.getLogger().removeHandler(handler)
        handler.flush()
        handler.close()
