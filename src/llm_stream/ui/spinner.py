from __future__ import annotations
from typing import Optional

from rich.console import Console
from rich.status import Status


class Spinner:
    """Busy indicator shown until the first visible fragment arrives."""

    def __init__(self, console: Optional[Console] = None, message: str = "Loading...", spinner: str = "dots"):
        self._status: Status = (console or Console()).status(message, spinner=spinner)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if not self._running:
            self._status.start()
            self._running = True

    def stop(self) -> None:
        if self._running:
            self._status.stop()
            self._running = False
