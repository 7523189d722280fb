"""Disk layout decisions; pure, never touches hardware."""

from __future__ import annotations

from collections import Counter

from .model import DiskLayout, FirmwareMode, PartitionSpec

GIB = 1024  # in MiB

BOOT_MIB = 1 * GIB
SWAP_MIB = 4 * GIB
ROOT_MIB = 30 * GIB
ALIGN_MIB = 1

MIN_DISK_BYTES = 40 * 1024 ** 3

VOLUME_GROUP = "vgroup"
CONTAINER_NAME = "cryptlvm"


def plan(firmware: FirmwareMode, encryption_enabled: bool, dual_partition: bool) -> DiskLayout:
    """Return the ordered layout for the given choices.

    This table is the only place layout is decided; the engine executes it.
    """

    firmware = FirmwareMode(firmware)
    boot = PartitionSpec("boot", "fat32", BOOT_MIB)
    swap_kind = "volume" if encryption_enabled else "partition"
    tail = [PartitionSpec("swap", "swap", SWAP_MIB, swap_kind)]
    if dual_partition:
        tail += [
            PartitionSpec("root", "ext4", ROOT_MIB, swap_kind),
            PartitionSpec("home", "ext4", None, swap_kind),
        ]
    else:
        tail.append(PartitionSpec("root", "ext4", None, swap_kind))

    if encryption_enabled:
        layout = DiskLayout(
            firmware=firmware,
            encrypted=True,
            partitions=(boot, PartitionSpec("container", "luks", None)),
            volumes=tuple(tail),
        )
    else:
        layout = DiskLayout(firmware=firmware, encrypted=False, partitions=(boot, *tail))
    validate_layout(layout)
    return layout


def validate_layout(layout: DiskLayout, capacity_mib: int | None = None) -> None:
    counts = Counter(layout.roles())
    for role in ("boot", "swap", "root"):
        if counts[role] != 1:
            raise ValueError(f"layout must contain exactly one {role} role, found {counts[role]}")
    if counts["home"] > 1:
        raise ValueError("layout may contain at most one home role")
    if layout.partitions[0].role != "boot":
        raise ValueError("boot must be the first partition")
    containers = [p for p in layout.partitions if p.role == "container"]
    if layout.encrypted != bool(containers) or len(containers) > 1:
        raise ValueError("encrypted layouts need exactly one container partition")
    if layout.volumes and not layout.encrypted:
        raise ValueError("logical volumes require an encrypted container")
    for group in (layout.partitions, layout.volumes):
        for spec in group[:-1]:
            if spec.takes_remainder:
                raise ValueError(f"{spec.role} takes the remainder but is not last")

    capacity = capacity_mib if capacity_mib is not None else MIN_DISK_BYTES // (1024 * 1024)
    extents = layout.extents(capacity, first_mib=ALIGN_MIB)
    groups = [extents]
    if layout.encrypted:
        container = extents[-1]
        groups.append(layout.volume_extents(container.end_mib - container.start_mib))
    for group in groups:
        for prev, cur in zip(group, group[1:]):
            if not prev.start_mib < prev.end_mib <= cur.start_mib < cur.end_mib:
                raise ValueError(
                    f"{prev.role} [{prev.start_mib},{prev.end_mib}) overlaps or precedes "
                    f"{cur.role} [{cur.start_mib},{cur.end_mib})"
                )
        last = group[-1]
        if last.start_mib >= last.end_mib:
            raise ValueError(f"{last.role} has no space left")
