from __future__ import annotations

"""Subprocess wrapper with JSONL tracing and a dry-run hook."""

import datetime as _dt
import json
import os
import shlex
import subprocess
import time
from typing import Sequence

from .errors import ExecutionError

LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return [
        os.getcwd(),
        "/tmp/archstage-logs",
    ]


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, exist_ok=True)
            LOG_PATH = os.path.join(d_expanded, "archstage.jsonl")
            return LOG_PATH
        except OSError:
            continue
    LOG_PATH = None
    return None


def configure(path: str) -> str | None:
    """Point trace output at ``path`` (one file per script identity)."""

    global LOG_PATH
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        LOG_PATH = path
    except OSError:
        LOG_PATH = None
    return _ensure_logger()


def resolve_log_path() -> str | None:
    """Return the active trace path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("ARCHSTAGE_LOG_LEVEL", "TRACE").upper()


def append_jsonl(path: str, obj: dict) -> None:
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    except OSError:
        # Trace output must never take the install down with it.
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z")
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    path = _ensure_logger()
    if path:
        append_jsonl(path, rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def fmt_cmd(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(c) for c in cmd)


def run(
    cmd: Sequence[str],
    check: bool = True,
    dry_run: bool = False,
    timeout: float | None = None,
    input_text: str | None = None,
    env: dict | None = None,
) -> Result:
    """Run ``cmd`` capturing output.

    Non-zero exits raise :class:`ExecutionError` when ``check`` is set.
    ``dry_run`` records the command and returns success without executing.
    """

    argv = list(cmd)
    trace("exec.start", cmd=argv, dry_run=dry_run)
    if dry_run:
        return Result(0, "DRY-RUN: " + fmt_cmd(argv), "", 0.0)
    started = time.time()
    env2 = (env or os.environ).copy()
    env2.setdefault("ARCHSTAGE_LOG_LEVEL", LOG_LEVEL)
    try:
        proc = subprocess.run(
            argv,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env2,
        )
    except FileNotFoundError as exc:
        trace("exec.missing", cmd=argv, error=str(exc))
        raise ExecutionError(127, argv, "", str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        trace("exec.timeout", cmd=argv, timeout=timeout)
        raise ExecutionError(124, argv, exc.stdout or "", f"timed out after {timeout}s") from exc
    dur = time.time() - started
    trace("exec.done", cmd=argv, rc=proc.returncode, dur=dur, out=proc.stdout, err=proc.stderr)
    if check and proc.returncode != 0:
        raise ExecutionError(proc.returncode, argv, proc.stdout, proc.stderr)
    return Result(proc.returncode, proc.stdout, proc.stderr, dur)


def run_interactive(
    cmd: Sequence[str],
    check: bool = True,
    dry_run: bool = False,
    input_text: str | None = None,
) -> Result:
    """Run ``cmd`` attached to the terminal.

    Used for commands that prompt a human (passphrases, passwords) and for
    the chroot handoff, whose output must reach the operator directly.
    When ``input_text`` is given it is fed on stdin instead of the terminal.
    """

    argv = list(cmd)
    trace("exec.interactive.start", cmd=argv, dry_run=dry_run, stdin="pipe" if input_text is not None else "tty")
    if dry_run:
        return Result(0, "DRY-RUN: " + fmt_cmd(argv), "", 0.0)
    started = time.time()
    try:
        proc = subprocess.run(argv, input=input_text, text=True)
    except FileNotFoundError as exc:
        trace("exec.missing", cmd=argv, error=str(exc))
        raise ExecutionError(127, argv, "", str(exc)) from exc
    dur = time.time() - started
    trace("exec.interactive.done", cmd=argv, rc=proc.returncode, dur=dur)
    if check and proc.returncode != 0:
        raise ExecutionError(proc.returncode, argv, "", "")
    return Result(proc.returncode, "", "", dur)


def udev_settle(dry_run: bool = False):
    if dry_run:
        return
    try:
        subprocess.run(["udevadm", "settle"], check=False)
    except FileNotFoundError:
        trace("exec.udevadm_missing")
