# src/taskplus/connectors/console_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
import threading
from dataclasses import dataclass
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..notifications.delivery_loop import run_delivery_loop
from ..notifications.notification_scheduler import NotificationSpec

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleSink:
    """NotificationSink that prints fired triggers into the terminal."""

    def __init__(self, stream=None) -> None:
        self._stream = stream

    async def deliver(self, spec: NotificationSpec) -> None:
        line = f"[{_ts_local()}] [{spec.action_category}] {spec.title}: {spec.body}"
        print(line, file=self._stream or sys.stdout, flush=True)


@dataclass
class DeliveryBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Delivery loop already closed.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


async def _run_until_stopped(state: AppState, sink: ConsoleSink, stop_event: asyncio.Event) -> None:
    settings = state.settings
    task = asyncio.create_task(
        run_delivery_loop(
            state.registry,
            sink,
            state.clock,
            interval_seconds=settings.delivery_interval_seconds,
            retry_delay_seconds=settings.delivery_retry_seconds,
        )
    )
    try:
        await stop_event.wait()
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


def start_delivery_in_background(state: AppState, sink: ConsoleSink | None = None) -> DeliveryBackgroundRunner | None:
    """
    Run the notification delivery loop in a background thread.

    The console REPL blocks on input(), so the async loop gets its own
    event loop in a daemon thread. Only the trigger registry (which has its
    own lock) is touched from that thread.
    """
    sink = sink or ConsoleSink()
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_until_stopped(state, sink, stop_event))
        finally:
            loop.close()

    t = threading.Thread(target=runner, name="taskplus-delivery", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Delivery thread did not initialize properly.")
        return None

    logger.info("Delivery loop started (every %.0fs).", state.settings.delivery_interval_seconds)
    return DeliveryBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)


def run_console_loop(state: AppState, on_change=None) -> None:
    """
    Interactive REPL over the command registry.

    on_change() is called after every successful mutating command (the CLI
    uses it to save the document).
    """
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Type a command. Use help for commands. Use exit to quit.\n")

    while True:
        try:
            user_input = input("taskplus> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower().lstrip("/") in ("exit", "quit"):
            logger.info("Console exit command received.")
            break

        try:
            result = command_registry.handle(state, user_input)
        except Exception:
            logger.exception("Command handler crashed.")
            _print_ts("Internal error while handling a command.")
            continue

        if result is None:
            continue

        print(result.text, flush=True)
        if result.exit_code == 0 and result.mutated and on_change is not None:
            on_change()

    logger.info("Console connector finished.")
