"""Retry-until-success for operations that wait on a human-entered secret."""

from __future__ import annotations

import sys
import time
from typing import Callable, Optional, TypeVar

from . import console
from .errors import ExecutionError, InteractiveDeficiency
from .executil import trace

T = TypeVar("T")

SecretSource = Callable[[str], str]

HEADLESS_MAX_ATTEMPTS = 3


def static_secret(value: str) -> SecretSource:
    """Secret source for unattended runs and tests."""

    def _source(label: str) -> str:
        return value

    return _source


def default_max_attempts(secret: Optional[SecretSource]) -> Optional[int]:
    # only a human at a terminal can correct a failed attempt indefinitely
    if secret is None and sys.stdin.isatty():
        return None
    return HEADLESS_MAX_ATTEMPTS


def retry_until_success(
    operation: Callable[[], T],
    *,
    label: str,
    delay: float = 1.0,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds.

    ``InteractiveDeficiency`` and ``ExecutionError`` (the prompting command
    exited non-zero, e.g. mismatched passphrase) are retried after ``delay``.
    Unbounded when ``max_attempts`` is None; otherwise the last failure is
    re-raised as ``ExecutionError`` once the bound is reached. Interrupts
    propagate untouched.
    """

    attempt = 0
    while True:
        attempt += 1
        try:
            result = operation()
        except (InteractiveDeficiency, ExecutionError) as exc:
            trace("retry.failed_attempt", label=label, attempt=attempt, error=str(exc))
            if max_attempts is not None and attempt >= max_attempts:
                if isinstance(exc, ExecutionError):
                    exc.action = exc.action or label
                    raise
                raise ExecutionError(1, [label], "", str(exc), action=label) from exc
            console.warn(f"{label} failed ({exc}); try again")
            sleep(delay)
            continue
        if attempt > 1:
            trace("retry.succeeded", label=label, attempts=attempt)
        return result
