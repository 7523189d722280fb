"""Block device discovery, sizing and firmware detection (read-only)."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass

from .errors import ExecutionError, PreconditionError
from .executil import run, trace
from .model import FirmwareMode

EFIVARS_DIR = "/sys/firmware/efi/efivars"


@dataclass(frozen=True)
class Disk:
    name: str
    size_bytes: int
    model: str = ""


def dev_path(name: str) -> str:
    return name if name.startswith("/dev/") else f"/dev/{name}"


def disk_name(name_or_path: str) -> str:
    return name_or_path[len("/dev/"):] if name_or_path.startswith("/dev/") else name_or_path


def partition_path(disk: str, index: int) -> str:
    # NVMe and MMC need a ``p`` separator before the partition index (``nvme0n1p1``).
    base = dev_path(disk).rstrip("/")
    suffix = "p" if base[-1:].isdigit() else ""
    return f"{base}{suffix}{index}"


def detect_firmware(efivars_dir: str = EFIVARS_DIR) -> FirmwareMode:
    try:
        entries = os.listdir(efivars_dir)
    except OSError:
        entries = []
    mode = FirmwareMode.UEFI if entries else FirmwareMode.BIOS
    trace("devices.firmware", mode=mode.value, efivars=efivars_dir)
    return mode


def list_disks() -> list[Disk]:
    """Whole disks, loop devices (major 7) excluded, in ``lsblk`` order."""

    result = run(
        ["lsblk", "--json", "--bytes", "--nodeps", "--exclude", "7", "--output", "NAME,SIZE,TYPE,MODEL"],
        check=True,
    )
    try:
        payload = json.loads(result.out or "{}")
    except json.JSONDecodeError as exc:
        raise PreconditionError(f"failed to parse lsblk output: {exc}") from exc
    disks: list[Disk] = []
    for entry in payload.get("blockdevices") or []:
        if entry.get("type") not in (None, "disk"):
            continue
        try:
            size = int(entry.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        disks.append(Disk(name=entry.get("name", ""), size_bytes=size, model=(entry.get("model") or "").strip()))
    return disks


def format_disks(disks: list[Disk]) -> str:
    lines = []
    for d in disks:
        gib = d.size_bytes / 1024 ** 3
        lines.append(f"{d.name:<12} {gib:>8.1f}G  {d.model}".rstrip())
    return "\n".join(lines)


def default_disk(disks: list[Disk], min_bytes: int) -> Disk | None:
    """Smallest disk that meets the minimum capacity."""

    fitting = [d for d in disks if d.size_bytes >= min_bytes]
    if not fitting:
        return None
    return min(fitting, key=lambda d: d.size_bytes)


def disk_exists(name: str) -> bool:
    try:
        run(["lsblk", "--nodeps", "--noheadings", "--output", "NAME,SIZE", dev_path(name)], check=True)
    except ExecutionError:
        return False
    return True


def disk_size_bytes(name: str) -> int:
    r = run(["lsblk", "--bytes", "--nodeps", "--noheadings", "--output", "SIZE", dev_path(name)], check=True)
    text = (r.out or "").strip().splitlines()
    try:
        return int(text[0].strip())
    except (IndexError, ValueError) as exc:
        raise PreconditionError(f"unable to read size of {dev_path(name)}: {r.out!r}") from exc


def uuid_of(path: str, dry_run: bool = False) -> str:
    r = run(["blkid", "-s", "UUID", "-o", "value", path], check=False, dry_run=dry_run)
    return (r.out or "").strip()


def swapoff(path: str, dry_run: bool = False):
    run(["swapoff", path], check=False, dry_run=dry_run)
