"""Durable, append-only record of completed steps and carried values."""

from __future__ import annotations

import os
import re
from typing import Dict, Iterable, Optional

from .executil import trace

PASSED = "PASSED"
_KEY_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")


def flag_name(step: str) -> str:
    """``format-filesystems`` -> ``PASSED_FORMAT_FILESYSTEMS``."""

    norm = re.sub(r"[^A-Za-z0-9]+", "_", step).strip("_").upper()
    return f"PASSED_{norm}"


def _quote(value: str) -> str:
    if value == "" or re.search(r"[\s\"'#=$`\\]", value):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return value


def _unquote(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        return re.sub(r'\\(["\\])', r"\1", raw[1:-1])
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    return raw


class CheckpointStore:
    """One store per script identity; lines are ``KEY=VALUE``, later lines win.

    The file is never rewritten in place. ``mark_complete`` appends carried
    values first and the step flag last, then fsyncs, so a crash mid-write
    leaves the step incomplete.
    """

    def __init__(self, path: str):
        self.path = path
        self._values: Dict[str, str] = {}
        self._loaded = False

    def load(self) -> "CheckpointStore":
        self._values = {}
        self._loaded = True
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                lines = fh.read().splitlines()
        except FileNotFoundError:
            trace("checkpoint.load.missing", path=self.path)
            return self
        for lineno, line in enumerate(lines, 1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            key, sep, value = stripped.partition("=")
            key = key.strip()
            if not sep or not _KEY_RE.match(key):
                trace("checkpoint.load.skip_line", path=self.path, lineno=lineno, line=line)
                continue
            self._values[key] = _unquote(value)
        trace(
            "checkpoint.load",
            path=self.path,
            completed=sorted(self.completed()),
            carried={k: v for k, v in self._values.items() if not k.startswith("PASSED_")},
        )
        return self

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    @property
    def values(self) -> Dict[str, str]:
        self._ensure_loaded()
        return dict(self._values)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        self._ensure_loaded()
        return self._values.get(key, default)

    def completed(self) -> set[str]:
        self._ensure_loaded()
        return {k for k, v in self._values.items() if k.startswith("PASSED_") and v == PASSED}

    def is_complete(self, step: str) -> bool:
        self._ensure_loaded()
        return self._values.get(flag_name(step)) == PASSED

    def _append(self, items: Iterable[tuple[str, str]]) -> None:
        items = list(items)
        for key, _ in items:
            if not _KEY_RE.match(key):
                raise ValueError(f"invalid checkpoint key {key!r}")
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as fh:
            for key, value in items:
                fh.write(f"{key}={_quote(str(value))}\n")
            fh.flush()
            os.fsync(fh.fileno())
        for key, value in items:
            self._values[key] = str(value)

    def record(self, **carried: object) -> None:
        """Persist carried values without marking any step."""

        self._ensure_loaded()
        items = [(k, str(v)) for k, v in carried.items() if v is not None]
        if items:
            self._append(items)
            trace("checkpoint.record", path=self.path, keys=[k for k, _ in items])

    def mark_complete(self, step: str, **carried: object) -> None:
        self._ensure_loaded()
        items = [(k, str(v)) for k, v in carried.items() if v is not None]
        items.append((flag_name(step), PASSED))
        self._append(items)
        trace("checkpoint.mark_complete", path=self.path, step=step, carried=dict(items[:-1]))

    def reset(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        self._values = {}
        self._loaded = True
        trace("checkpoint.reset", path=self.path)
