# src/vetwatch/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

APP_LOGGER = "vetwatch"
LOG_FILE_NAME = "vetwatch.log"

# Minimum console level per logger prefix. Checked in order; first match wins.
_CONSOLE_FLOORS: tuple[tuple[str, int], ...] = (
    # Every collection load/save is logged; the REPL only needs storage problems.
    (f"{APP_LOGGER}.storage.", logging.WARNING),
    (f"{APP_LOGGER}.", logging.NOTSET),
    ("py.warnings", logging.ERROR),
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console-side filter for the REPL.

    Engine, dashboard and CLI records pass at the handler level. Storage adapters show
    WARNING and up. Captured Python warnings and anything from other packages show ERROR
    and up. The file handler is not filtered.
    """

    def __init__(self, default_floor: int = logging.ERROR) -> None:
        super().__init__()
        self._default_floor = default_floor

    def floor_for(self, name: str) -> int:
        for prefix, floor in _CONSOLE_FLOORS:
            if name == prefix or name.startswith(prefix):
                return floor
        return self._default_floor

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.floor_for(record.name)


def _formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    *,
    log_dir: str | Path = ".local/vetwatch",
    console_level: int | str = logging.INFO,
    file_level: int | str = logging.DEBUG,
) -> Path:
    """
    Install the vetwatch handlers on the root logger and return the log file path.

    stderr gets the filtered REPL view at `console_level`; `<log_dir>/vetwatch.log` gets
    everything at `file_level`. Handlers installed earlier are replaced, so calling this
    twice does not duplicate output.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(_level(console_level))
    console.setFormatter(_formatter())
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(_level(file_level))
    file_handler.setFormatter(_formatter())
    root.addHandler(file_handler)

    # warnings.warn(...) arrives as the "py.warnings" logger.
    logging.captureWarnings(True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file
