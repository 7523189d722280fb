"""Partition table creation from a DiskLayout."""
from __future__ import annotations

import json
import re

from .devices import dev_path, partition_path
from .errors import ExecutionError, PreconditionError
from .executil import run, trace, udev_settle
from .model import DiskLayout, FirmwareMode
from .planner import ALIGN_MIB

PARTED_FS = {"fat32": "fat32", "swap": "linux-swap", "ext4": "ext4", "luks": None}


_PSEP_DISK = re.compile(r"(nvme\d+n\d+|mmcblk\d+|loop\d+)(p\d+)?$")


def _base_device(dev: str) -> str:
    # strip the trailing partition number: nvme0n1p3 -> nvme0n1, sda2 -> sda
    m = _PSEP_DISK.search(dev)
    if m:
        return dev[: m.end(1)]
    return re.sub(r"\d+$", "", dev)


def guard_not_live_root(disk: str):
    root_src = run(["findmnt", "-no", "SOURCE", "/"], check=False).out.strip()
    target = dev_path(disk)
    if root_src and _base_device(root_src) == _base_device(target):
        raise PreconditionError(f"target {target} shares base device with live root {root_src}")


def reread(disk: str, dry_run: bool = False):
    run(["partprobe", dev_path(disk)], check=False, dry_run=dry_run)
    udev_settle(dry_run=dry_run)


def wipe(disk: str, dry_run: bool = False):
    run(["wipefs", "--all", dev_path(disk)], check=True, dry_run=dry_run)
    udev_settle(dry_run=dry_run)


def make_table(disk: str, table: str, dry_run: bool = False):
    if table not in ("gpt", "msdos"):
        raise ValueError(f"unsupported partition table {table!r}")
    run(["parted", "--script", dev_path(disk), "mklabel", table], check=True, dry_run=dry_run)


def _bound(mib: int, capacity_end: bool) -> str:
    return "100%" if capacity_end else f"{mib}MiB"


def mkpart_commands(layout: DiskLayout, disk: str) -> list[list[str]]:
    """parted invocations for every partition of ``layout``, in order."""

    device = dev_path(disk)
    # the real capacity is unknown here; remainder partitions end at 100%
    open_end = 1 << 40
    extents = layout.extents(open_end, first_mib=ALIGN_MIB)
    cmds: list[list[str]] = []
    for spec, ext in zip(layout.partitions, extents):
        cmd = ["parted", "--script", device, "mkpart"]
        cmd.append(spec.role if layout.table == "gpt" else "primary")
        fs = PARTED_FS[spec.fs]
        if fs:
            cmd.append(fs)
        cmd += [_bound(ext.start_mib, False), _bound(ext.end_mib, spec.takes_remainder)]
        cmds.append(cmd)
    flag = "esp" if layout.firmware is FirmwareMode.UEFI else "boot"
    cmds.append(["parted", "--script", device, "set", "1", flag, "on"])
    return cmds


def create_partitions(layout: DiskLayout, disk: str, dry_run: bool = False) -> dict[str, str]:
    """Create the partitions and return their device paths keyed by role."""

    for cmd in mkpart_commands(layout, disk):
        run(cmd, check=True, dry_run=dry_run)
    run(["parted", "--script", dev_path(disk), "align-check", "optimal", "1"], check=False, dry_run=dry_run)
    reread(disk, dry_run=dry_run)
    paths = {spec.role: partition_path(disk, idx) for idx, spec in enumerate(layout.partitions, 1)}
    if not dry_run:
        verify_partitions(disk, len(layout.partitions))
    # stale signatures from an earlier install survive at identical offsets
    for path in paths.values():
        run(["wipefs", "--all", path], check=True, dry_run=dry_run)
    trace("partitioning.created", disk=disk, paths=paths)
    return paths


def partition_count(disk: str) -> int:
    r = run(["lsblk", "--json", "--output", "NAME,TYPE", dev_path(disk)], check=True)
    try:
        payload = json.loads(r.out or "{}")
    except json.JSONDecodeError:
        return 0
    count = 0
    for node in payload.get("blockdevices") or []:
        count += sum(1 for c in node.get("children") or [] if c.get("type") == "part")
    return count


def verify_partitions(disk: str, expected: int):
    found = partition_count(disk)
    if found != expected:
        raise ExecutionError(
            1,
            ["lsblk", dev_path(disk)],
            "",
            f"expected {expected} partitions on {dev_path(disk)}, found {found}",
            action="create-partitions",
        )
