from __future__ import annotations

import json
import threading
import time
import traceback
from collections import deque
from dataclasses import dataclass
from typing import Any

CONSOLE_LEVELS = ("log", "info", "warn", "error", "debug")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class ConsoleEntry:
    level: str
    ts: int
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "ts": self.ts, "text": self.text}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ConsoleEntry:
        try:
            ts = int(raw.get("ts") or 0)
        except Exception:
            ts = 0
        return cls(level=str(raw.get("level") or "log"), ts=ts, text=str(raw.get("text") or ""))


def format_console_arg(arg: Any) -> str:
    if isinstance(arg, str):
        return arg
    if isinstance(arg, BaseException):
        stack = "".join(traceback.format_exception(type(arg), arg, arg.__traceback__)).rstrip()
        return f"{type(arg).__name__}: {arg}\n{stack}"
    try:
        return json.dumps(arg, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(arg)


class ConsoleBuffer:
    """Bounded page console: keeps the newest ``max_entries`` messages."""

    def __init__(self, *, max_entries: int = 1000) -> None:
        self._lock = threading.Lock()
        self._entries: deque[ConsoleEntry] = deque(maxlen=max(1, int(max_entries)))

    def capture(self, level: str, *args: Any) -> ConsoleEntry:
        lvl = level if level in CONSOLE_LEVELS else "log"
        entry = ConsoleEntry(level=lvl, ts=_now_ms(), text=" ".join(format_console_arg(a) for a in args))
        with self._lock:
            self._entries.append(entry)
        return entry

    def log(self, *args: Any) -> ConsoleEntry:
        return self.capture("log", *args)

    def info(self, *args: Any) -> ConsoleEntry:
        return self.capture("info", *args)

    def warn(self, *args: Any) -> ConsoleEntry:
        return self.capture("warn", *args)

    def error(self, *args: Any) -> ConsoleEntry:
        return self.capture("error", *args)

    def debug(self, *args: Any) -> ConsoleEntry:
        return self.capture("debug", *args)

    def entries(self) -> list[ConsoleEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
