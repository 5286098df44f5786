# src/taskplus/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then either:
- runs one command from the argument vector and exits with its code, or
- (no arguments) starts the console REPL with the delivery loop running in
  a background thread so reminders print as they fire.
"""

from __future__ import annotations

import logging
import sys

from ..cli.bootstrap import create_initial_state, save_document
from ..cli.commands import EXIT_ERROR, EXIT_OK, registry
from ..config import get_settings
from ..connectors.console_connector import run_console_loop, start_delivery_in_background
from ..core.errors import TaskPlusError
from ..logging_setup import console_level_for, setup_logging

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown: persist the store."""
    if not save_document(state):
        logger.error("Tasks were NOT saved; see the log file for details.")


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    settings = get_settings()

    console_level = console_level_for(getattr(settings, "log_level", "INFO"), one_shot=bool(argv))
    setup_logging(log_dir=settings.data_dir, console_level=console_level)
    logger.info("Starting %s...", settings.app_name)

    try:
        state = create_initial_state(settings=settings)
    except TaskPlusError as e:
        print(f"Error: cannot load {settings.document_path}: {e}", file=sys.stderr)
        return EXIT_ERROR

    if argv:
        result = registry.run(state, argv)
        print(result.text, file=sys.stdout if result.exit_code == EXIT_OK else sys.stderr)
        if result.exit_code == EXIT_OK and result.mutated and not save_document(state):
            return EXIT_ERROR
        return result.exit_code

    runner = start_delivery_in_background(state)
    try:
        run_console_loop(state, on_change=lambda: save_document(state))
    finally:
        if runner is not None:
            runner.stop()
            runner.join(timeout=5.0)
        _shutdown(state)
        logger.info("Bye.")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
