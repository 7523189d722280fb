from types import SimpleNamespace

import pytest

from archstage import retry
from archstage.errors import ExecutionError, InteractiveDeficiency


@pytest.fixture(autouse=True)
def _quiet(monkeypatch):
    monkeypatch.setattr(retry.console, "warn", lambda msg: None)


def test_retries_until_success_without_bound():
    attempts = {"n": 0}
    sleeps = []

    def flaky():
        attempts["n"] += 1
        if attempts["n"] < 5:
            raise InteractiveDeficiency("passphrases do not match")
        return "opened"

    assert retry.retry_until_success(flaky, label="unlock", sleep=sleeps.append) == "opened"
    assert attempts["n"] == 5
    assert sleeps == [1.0] * 4


def test_command_failures_are_retried():
    attempts = {"n": 0}

    def passwd():
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise ExecutionError(10, ["passwd"])

    retry.retry_until_success(passwd, label="Root password", sleep=lambda _: None)
    assert attempts["n"] == 2


def test_bound_raises_execution_error():
    def always():
        raise InteractiveDeficiency("empty")

    with pytest.raises(ExecutionError) as excinfo:
        retry.retry_until_success(always, label="User password", max_attempts=3, sleep=lambda _: None)
    assert excinfo.value.action == "User password"


def test_other_errors_and_interrupts_propagate():
    calls = {"n": 0}

    def broken():
        calls["n"] += 1
        raise ValueError("not interactive")

    with pytest.raises(ValueError):
        retry.retry_until_success(broken, label="x", sleep=lambda _: None)
    assert calls["n"] == 1

    def interrupted():
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        retry.retry_until_success(interrupted, label="x", sleep=lambda _: None)


def test_default_bound_unless_operator_at_terminal(monkeypatch):
    monkeypatch.setattr(retry.sys, "stdin", SimpleNamespace(isatty=lambda: False))
    assert retry.default_max_attempts(None) == retry.HEADLESS_MAX_ATTEMPTS
    assert retry.default_max_attempts(retry.static_secret("x")) == retry.HEADLESS_MAX_ATTEMPTS
    monkeypatch.setattr(retry.sys, "stdin", SimpleNamespace(isatty=lambda: True))
    assert retry.default_max_attempts(None) is None
    # a fixed secret fails the same way every time, terminal or not
    assert retry.default_max_attempts(retry.static_secret("x")) == retry.HEADLESS_MAX_ATTEMPTS
