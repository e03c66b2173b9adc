# src/vetwatch/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs the console REPL on an asyncio loop.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        store = getattr(state, "store", None)
        if store is not None and hasattr(store, "close"):
            store.close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vetwatch", description="Follow-up task console.")
    parser.add_argument("--as", dest="actor", default=None, help="educator/student id to act as")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = get_settings()

    log_file = setup_logging(
        log_dir=getattr(settings, "data_dir", ".local/vetwatch"),
        console_level=getattr(settings, "log_level", "INFO"),
    )

    logger.info("Starting %s (log file %s)", getattr(settings, "app_name", "vetwatch"), log_file)

    # Reuse the same settings object everywhere.
    state = create_initial_state(settings=settings)
    state.actor_id = args.actor

    try:
        asyncio.run(run_console_loop(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
