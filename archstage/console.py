"""Operator-facing messages and the terminal-to-log mirror."""

from __future__ import annotations

import os
import subprocess
import sys

from .executil import trace

GREEN = "\033[0;32m"; YELLOW = "\033[0;33m"; RED = "\033[0;31m"; CLR = "\033[0m"


def _color_enabled() -> bool:
    return os.environ.get("NO_COLOR") is None and sys.stdout.isatty()


def _emit(tag: str, color: str, msg: str, stream=None) -> None:
    out = stream or sys.stdout
    label = f"{color}[{tag}]{CLR}" if color and _color_enabled() else f"[{tag}]"
    print(f"{label} {msg}", file=out, flush=True)
    trace("console." + tag.lower(), message=msg)


def info(msg: str) -> None:
    _emit("INFO", "", msg)


def ok(msg: str = "DONE") -> None:
    _emit("OK", GREEN, msg)


def warn(msg: str) -> None:
    _emit("WARN", YELLOW, msg)


def fail(msg: str) -> None:
    _emit("FAIL", RED, msg, stream=sys.stderr)


def ask(prompt: str) -> str:
    """Read one line from the operator; EOF reads as an empty answer."""

    try:
        return input(prompt)
    except EOFError:
        return ""


def ask_choice(prompt: str, choices: tuple[str, ...], reader=ask) -> str:
    answer = ""
    while answer not in choices:
        answer = reader(f"{prompt} ({'/'.join(choices)}): ").strip()
        if answer == "" and not sys.stdin.isatty():
            # No operator to keep asking; treat silence as the last (negative) choice.
            return choices[-1]
    return answer


class LogMirror:
    """Copy everything written to fds 1 and 2 into ``path`` via ``tee``.

    Works at the descriptor level so child processes are captured too.
    ``stop()`` restores the original descriptors; it is safe to call twice.
    """

    def __init__(self, path: str):
        self.path = path
        self._saved_out: int | None = None
        self._saved_err: int | None = None
        self._tee: subprocess.Popen | None = None

    @property
    def active(self) -> bool:
        return self._tee is not None

    def start(self) -> "LogMirror":
        if self.active:
            return self
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        sys.stdout.flush()
        sys.stderr.flush()
        self._saved_out = os.dup(1)
        self._saved_err = os.dup(2)
        self._tee = subprocess.Popen(["tee", "--append", self.path], stdin=subprocess.PIPE, stdout=self._saved_out)
        os.dup2(self._tee.stdin.fileno(), 1)
        os.dup2(self._tee.stdin.fileno(), 2)
        trace("console.mirror.start", path=self.path)
        return self

    def stop(self) -> None:
        if not self.active:
            return
        sys.stdout.flush()
        sys.stderr.flush()
        os.dup2(self._saved_out, 1)
        os.dup2(self._saved_err, 2)
        tee, self._tee = self._tee, None
        tee.stdin.close()
        tee.wait()
        os.close(self._saved_out)
        os.close(self._saved_err)
        self._saved_out = self._saved_err = None
        trace("console.mirror.stop", path=self.path)

    def __enter__(self) -> "LogMirror":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()
