"""Failure taxonomy and the result codes the CLI exits with."""

from __future__ import annotations

import subprocess
from typing import Dict, Optional

RESULT_CODES: Dict[str, int] = {
    "STAGE1_OK": 0,
    "STAGE2_OK": 0,
    "LIST_OK": 0,
    "CLEAN_OK": 0,
    "FAIL_CONFIG": 1,
    "FAIL_PRECONDITION": 1,
    "FAIL_EXECUTION": 1,
    "FAIL_INTERRUPTED": 1,
    "FAIL_UNHANDLED": 1,
}


class InstallError(Exception):
    """Base class for failures that terminate the run."""

    result = "FAIL_UNHANDLED"
    # name of the step or operation that failed, filled in as the error propagates
    action: Optional[str] = None


class ConfigError(InstallError):
    """A configuration field is missing, empty or outside its allowed set."""

    result = "FAIL_CONFIG"

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key
        self.message = message


class PreconditionError(InstallError):
    """Raised before any destructive action when the environment is unfit."""

    result = "FAIL_PRECONDITION"


class ExecutionError(subprocess.CalledProcessError, InstallError):
    """An external command returned non-zero.

    Subclassing ``CalledProcessError`` keeps ``returncode``/``stdout``/``stderr``
    available to callers that inspect the failed process.
    """

    result = "FAIL_EXECUTION"

    def __init__(self, returncode, cmd, output=None, stderr=None, *, action: Optional[str] = None) -> None:
        subprocess.CalledProcessError.__init__(self, returncode, cmd, output, stderr)
        self.action = action

    def __str__(self) -> str:
        base = subprocess.CalledProcessError.__str__(self)
        detail = (self.stderr or "").strip() if isinstance(self.stderr, str) else ""
        if detail:
            base = f"{base}\n{detail}"
        return base


class InteractiveDeficiency(Exception):
    """A human-entered secret was rejected; only retry_until_success handles it."""


def result_for(exc: BaseException) -> str:
    if isinstance(exc, InstallError):
        return exc.result
    if isinstance(exc, KeyboardInterrupt):
        return "FAIL_INTERRUPTED"
    return "FAIL_UNHANDLED"
