"""File-backed activity log shared by the services and the UI log pane."""
from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Callable

LogCallback = Callable[[str], None]


def null_log(message: str) -> None:
    return None


class ActivityLog:
    """Timestamps messages, appends them to a log file and fans them out.

    Safe to call from worker threads; listeners are invoked on the calling
    thread, so UI listeners must marshal to the UI thread themselves.
    """

    def __init__(self, path: Path | str, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: list[LogCallback] = []

    @property
    def path(self) -> Path:
        return self._path

    def subscribe(self, listener: LogCallback) -> None:
        self._listeners.append(listener)

    def __call__(self, message: str) -> None:
        line = f"{self._clock():%Y-%m-%d %H:%M:%S} {message}"
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError:
                pass
        for listener in list(self._listeners):
            listener(message)
