"""Script identity and the files named after it."""

from __future__ import annotations

import os
from pathlib import Path

TARGET_ROOT = "/mnt"
TEMP_DIR_NAME = "temp_install_dir"
STAGE2_SCRIPT = "stage2_install.py"
CONFIG_RELPATH = os.path.join("config", "installation_config.conf")
PACKAGES_RELDIR = "packages"
CONTEXT_FILENAME = "stage_context.json"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def script_dir(script_path: str) -> str:
    """Directory holding the invoking script.

    ``ARCHSTAGE_BASE_PATH`` overrides it so a run can keep its state
    elsewhere (for example on a writable overlay of read-only media).
    """

    override = os.environ.get("ARCHSTAGE_BASE_PATH")
    if override:
        return _expand(override)
    return os.path.dirname(_expand(script_path)) or "."


def script_name(script_path: str) -> str:
    return os.path.basename(script_path)


def checkpoint_path_for(script_path: str) -> str:
    return os.path.join(script_dir(script_path), f".{script_name(script_path)}.env")


def log_path_for(script_path: str) -> str:
    return os.path.join(script_dir(script_path), f"{script_name(script_path)}.log")


def trace_path_for(script_path: str) -> str:
    return os.path.join(script_dir(script_path), f"{script_name(script_path)}.jsonl")


def config_path_for(tree: str) -> str:
    return os.path.join(tree, CONFIG_RELPATH)


def packages_path_for(tree: str, name: str) -> str:
    return os.path.join(tree, PACKAGES_RELDIR, f"{name}-packages.csv")


def handoff_dir(mnt: str = TARGET_ROOT) -> str:
    """Where the working tree lands inside the mounted target root."""

    return os.path.join(mnt, TEMP_DIR_NAME)


def chroot_script_path() -> str:
    """Phase-two script path as seen from inside the new root."""

    return "/" + "/".join((TEMP_DIR_NAME, STAGE2_SCRIPT))
