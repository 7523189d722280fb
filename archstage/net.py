from __future__ import annotations

from .errors import ExecutionError
from .executil import run, trace

PROBE_HOST = "8.8.8.8"


def is_online(host: str = PROBE_HOST, timeout_s: int = 1) -> bool:
    """Single ping with a hard deadline; the only bounded wait of a run."""

    try:
        r = run(["ping", "-c", "1", "-w", str(timeout_s), host], check=False, timeout=timeout_s + 5)
    except ExecutionError as exc:
        trace("net.probe_error", host=host, error=str(exc))
        return False
    trace("net.probe", host=host, rc=r.rc)
    return r.rc == 0
