"""LUKS container + LVM lifecycle."""

from __future__ import annotations

import os
from typing import Optional

from .executil import run, run_interactive, trace, udev_settle
from .model import DiskLayout
from .planner import CONTAINER_NAME, VOLUME_GROUP
from .retry import SecretSource

CONTAINER_LABEL = "Disk encryption passphrase"


def mapper_path(name: str = CONTAINER_NAME) -> str:
    return f"/dev/mapper/{name}"


def mapper_exists(name: str = CONTAINER_NAME) -> bool:
    return os.path.exists(mapper_path(name))


def volume_path(role: str, vg: str = VOLUME_GROUP) -> str:
    return f"/dev/{vg}/{role}"


def is_luks(part: str, dry_run: bool = False) -> bool:
    if dry_run:
        return False
    return run(["cryptsetup", "isLuks", part], check=False).rc == 0


def format_container(part: str, secret: Optional[SecretSource] = None, dry_run: bool = False):
    """luksFormat ``part``; prompts on the terminal unless ``secret`` is given."""

    # A header here means an earlier attempt formatted it but never got marked.
    if is_luks(part, dry_run=dry_run):
        trace("luks.format.skip_existing", part=part)
        return
    cmd = ["cryptsetup", "--batch-mode", "--type", "luks2", "--verify-passphrase", "luksFormat", part]
    if secret is not None:
        cmd[-1:-1] = ["--key-file", "-"]
        run(cmd, check=True, dry_run=dry_run, input_text=secret(CONTAINER_LABEL))
    else:
        run_interactive(cmd, check=True, dry_run=dry_run)
    udev_settle(dry_run=dry_run)


def open_container(part: str, name: str = CONTAINER_NAME, secret: Optional[SecretSource] = None, dry_run: bool = False):
    if not dry_run and mapper_exists(name):
        trace("luks.open.skip_mapped", part=part, name=name)
        return
    cmd = ["cryptsetup", "open", part, name]
    if secret is not None:
        cmd += ["--key-file", "-"]
        run(cmd, check=True, dry_run=dry_run, input_text=secret(CONTAINER_LABEL))
    else:
        run_interactive(cmd, check=True, dry_run=dry_run)
    udev_settle(dry_run=dry_run)


def create_volume_group(vg: str = VOLUME_GROUP, name: str = CONTAINER_NAME, dry_run: bool = False):
    pv = mapper_path(name)
    run(["pvcreate", "--yes", pv], check=True, dry_run=dry_run, timeout=120.0)
    run(["vgcreate", vg, pv], check=True, dry_run=dry_run, timeout=120.0)
    udev_settle(dry_run=dry_run)


def lvcreate_commands(layout: DiskLayout, vg: str = VOLUME_GROUP) -> list[list[str]]:
    cmds = []
    for spec in layout.volumes:
        size = ["--extents", "100%FREE"] if spec.takes_remainder else ["--size", f"{spec.size_mib}M"]
        cmds.append(["lvcreate", "--yes", *size, "--name", spec.role, vg])
    return cmds


def create_logical_volumes(layout: DiskLayout, vg: str = VOLUME_GROUP, dry_run: bool = False) -> dict[str, str]:
    """Create the layout's volumes and return their paths keyed by role."""

    for cmd in lvcreate_commands(layout, vg):
        run(cmd, check=True, dry_run=dry_run, timeout=120.0)
    udev_settle(dry_run=dry_run)
    return {spec.role: volume_path(spec.role, vg) for spec in layout.volumes}


def activate_vg(vg: str = VOLUME_GROUP, dry_run: bool = False):
    """Activate logical volumes for ``vg`` if present."""

    run(["vgchange", "--activate", "y", vg], check=True, dry_run=dry_run, timeout=60.0)
    udev_settle(dry_run=dry_run)


def deactivate_vg(vg: str = VOLUME_GROUP, dry_run: bool = False):
    run(["vgchange", "--activate", "n", vg], check=False, dry_run=dry_run, timeout=60.0)


def close_container(name: str = CONTAINER_NAME, dry_run: bool = False):
    run(["cryptsetup", "close", name], check=False, dry_run=dry_run, timeout=60.0)
