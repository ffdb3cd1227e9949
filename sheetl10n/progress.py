from __future__ import annotations

import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol, TextIO


class Progress(Protocol):
    def info(self, message: str) -> None: ...

    def progress(self, label: str, current: int, total: int) -> None: ...


def _elapsed(seconds: float) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


@dataclass
class ConsoleProgress:
    """Single-line batch progress on stderr; safe to call from worker threads."""

    enabled: bool = True
    stream: TextIO = sys.stderr
    _started: float = field(default_factory=time.time, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _open_line: bool = field(default=False, init=False)

    def _write(self, text: str, *, newline: bool) -> None:
        encoding = getattr(self.stream, "encoding", None) or "utf-8"
        text = text.encode(encoding, errors="backslashreplace").decode(encoding)
        print(text, end="\n" if newline else "", file=self.stream, flush=True)

    def info(self, message: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            if self._open_line:
                self._write("", newline=True)
                self._open_line = False
            self._write(f"[{_elapsed(time.time() - self._started)}] {message}", newline=True)

    def progress(self, label: str, current: int, total: int) -> None:
        if not self.enabled:
            return
        total = max(total, 1)
        current = max(0, min(current, total))
        line = f"\r[{_elapsed(time.time() - self._started)}] {label} {current}/{total}"
        with self._lock:
            self._write(line, newline=current >= total)
            self._open_line = current < total


@dataclass(frozen=True)
class NullProgress:
    def info(self, message: str) -> None:  # noqa: ARG002
        return

    def progress(self, label: str, current: int, total: int) -> None:  # noqa: ARG002
        return
