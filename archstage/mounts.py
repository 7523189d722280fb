"""Filesystem creation and mounting for the target root."""
from __future__ import annotations

import os

from .executil import run, trace, udev_settle
from .model import DeviceMap, DiskLayout, PartitionSpec
from .paths import TARGET_ROOT

# Mount order; parents before children.
MOUNT_ORDER = ("root", "boot", "home")
MOUNT_POINTS = {"root": "", "boot": "boot", "home": "home"}


def mkfs_command(spec: PartitionSpec, dev: str) -> list[str]:
    if spec.fs == "fat32":
        return ["mkfs.fat", "-F", "32", "-n", "BOOT", dev]
    if spec.fs == "swap":
        return ["mkswap", "--label", "swap", dev]
    if spec.fs == "ext4":
        return ["mkfs.ext4", "-F", "-L", spec.role, dev]
    raise ValueError(f"no filesystem command for {spec.fs!r} ({spec.role})")


def format_all(layout: DiskLayout, devmap: DeviceMap, dry_run: bool = False):
    for spec in layout.filesystems():
        dev = devmap.path(spec.role)
        run(mkfs_command(spec, dev), check=True, dry_run=dry_run, timeout=600.0)
        trace("mounts.formatted", role=spec.role, device=dev, fs=spec.fs)
    udev_settle(dry_run=dry_run)


def target_of(role: str, mnt: str = TARGET_ROOT) -> str:
    sub = MOUNT_POINTS[role]
    return os.path.join(mnt, sub) if sub else mnt


def _is_mounted(target: str) -> bool:
    return run(["findmnt", "--noheadings", "--mountpoint", target], check=False).rc == 0


def _is_active_swap(dev: str) -> bool:
    r = run(["swapon", "--show=NAME", "--noheadings"], check=False)
    active = {os.path.realpath(line.strip()) for line in (r.out or "").splitlines() if line.strip()}
    return os.path.realpath(dev) in active or dev in active


def mount_all(layout: DiskLayout, devmap: DeviceMap, mnt: str = TARGET_ROOT, dry_run: bool = False) -> list[str]:
    """Activate swap, then mount root first and boot/home beneath it."""

    mounted: list[str] = []
    swap = devmap.path("swap")
    if dry_run or not _is_active_swap(swap):
        run(["swapon", swap], check=True, dry_run=dry_run)
    roles = set(layout.roles())
    for role in MOUNT_ORDER:
        if role not in roles:
            continue
        target = target_of(role, mnt)
        if not dry_run and _is_mounted(target):
            trace("mounts.already_mounted", role=role, target=target)
            mounted.append(target)
            continue
        run(["mkdir", "--parents", target], check=True, dry_run=dry_run)
        run(["mount", devmap.path(role), target], check=True, dry_run=dry_run)
        mounted.append(target)
    trace("mounts.mounted", targets=mounted)
    return mounted


def unmount_all(mnt: str = TARGET_ROOT, dry_run: bool = False):
    run(["umount", "--recursive", mnt], check=False, dry_run=dry_run)
    udev_settle(dry_run=dry_run)
