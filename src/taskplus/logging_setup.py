# src/taskplus/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "taskplus.log"

_FILE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s [%(threadName)s]: %(message)s"
_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while the REPL is open:
    - taskplus logs pass, except per-trigger scheduling chatter and the
      background delivery thread (WARNING+ only)
    - per-mutation store logs are WARNING+ only; they stay in the file
    - captured Python warnings and any third-party logger: ERROR+ only
    """

    _QUIET_PREFIXES = ("taskplus.notifications.", "taskplus.tasks.task_store")

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("taskplus."):
            if name.startswith(self._QUIET_PREFIXES):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def console_level_for(log_level: str | None, *, one_shot: bool) -> int:
    """
    Map TASKPLUS_LOG_LEVEL to a console level.

    One-shot commands print their own result to stdout, so the console
    never drops below WARNING for them. Unknown names fall back to INFO.
    """
    level = logging.getLevelName(str(log_level or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    if one_shot:
        level = max(level, logging.WARNING)
    return level


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskplus",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure root logging with a filtered stderr handler and a full file
    handler. Returns the log file path.

    Call this once, before the first log line. Calling it again replaces the
    handlers instead of stacking them.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(fh)

    # warnings.warn(...) -> 'py.warnings' logger
    logging.captureWarnings(True)
    return log_file
