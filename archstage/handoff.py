"""Context switch from the installation media into the new root."""

from __future__ import annotations

import json
import os
import re
from typing import Optional, Sequence

from . import console
from .errors import ConfigError
from .executil import run, run_interactive, trace
from .model import FirmwareMode, StageContext
from .paths import CONTEXT_FILENAME, TARGET_ROOT, chroot_script_path, handoff_dir

_DISK_NAME = re.compile(r"^[A-Za-z0-9._-]+$")


def copy_tree(src_dir: str, mnt: str = TARGET_ROOT, dry_run: bool = False) -> str:
    """Copy the working tree (scripts, data, checkpoint files) into the target."""

    dest = handoff_dir(mnt)
    run(["mkdir", "--parents", dest], check=True, dry_run=dry_run)
    run(["cp", "--archive", os.path.join(src_dir, "."), dest + "/"], check=True, dry_run=dry_run)
    trace("handoff.copied", src=src_dir, dest=dest)
    return dest


def write_context(ctx: StageContext, tree: str, dry_run: bool = False) -> str:
    path = os.path.join(tree, CONTEXT_FILENAME)
    if dry_run:
        trace("handoff.context.dry_run", path=path, ctx=ctx.as_dict())
        return path
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(ctx.as_dict(), fh, indent=2, sort_keys=True)
        fh.write("\n")
    trace("handoff.context.written", path=path)
    return path


def restore_streams(mirror: Optional[console.LogMirror]) -> None:
    # the child owns the terminal from here on
    if mirror is not None:
        mirror.stop()


def enter(ctx: StageContext, mnt: str = TARGET_ROOT, dry_run: bool = False):
    """Run phase two inside ``mnt`` attached to the terminal."""

    cmd = ["arch-chroot", mnt, "python3", chroot_script_path(), *ctx.argv()]
    console.info(f"Entering the new environment ({ctx.firmware.value}, {ctx.disk})")
    return run_interactive(cmd, check=True, dry_run=dry_run)


def _read_context(tree: str) -> dict:
    path = os.path.join(tree, CONTEXT_FILENAME)
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError("CONTEXT", f"unreadable {path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def context_from_argv(argv: Sequence[str], tree: str) -> StageContext:
    """Phase-two context from ``MODE DISK``, falling back to the written context."""

    saved = _read_context(tree)
    mode = argv[0] if len(argv) >= 1 else saved.get("firmware")
    disk = argv[1] if len(argv) >= 2 else saved.get("disk")
    if not mode:
        raise ConfigError("MODE", "missing firmware mode argument (UEFI or BIOS)")
    try:
        firmware = FirmwareMode(mode)
    except ValueError:
        raise ConfigError("MODE", f"invalid firmware mode {mode!r} (expected UEFI or BIOS)") from None
    if not disk:
        raise ConfigError("DISK", "missing target disk argument")
    disk = disk[len("/dev/"):] if disk.startswith("/dev/") else disk
    if not _DISK_NAME.match(disk):
        raise ConfigError("DISK", f"invalid disk name {disk!r}")
    return StageContext(firmware=firmware, disk=disk, admin_user=saved.get("admin_user"))
