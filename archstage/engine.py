"""Executes a DiskLayout against the target device as checkpointed sub-steps."""

from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

from . import console, devices, luks_lvm, mounts, partitioning
from .checkpoint import CheckpointStore
from .errors import PreconditionError
from .executil import trace
from .model import DeviceMap, DiskLayout, Step
from .paths import TARGET_ROOT
from .planner import MIN_DISK_BYTES
from .retry import SecretSource, default_max_attempts, retry_until_success

ROLE_KEYS = {"boot": "BOOT_P", "swap": "SWAP_P", "root": "ROOT_P", "home": "HOME_P", "container": "CONTAINER_P"}


def carried_paths(paths: Dict[str, str]) -> Dict[str, str]:
    return {ROLE_KEYS[role]: path for role, path in paths.items()}


class PartitionEngine:
    """Wipe, partition, [encrypt + LVM], format and mount, one checkpoint each.

    The target disk is read from the store's carried ``DISK`` value when the
    steps run, so the engine can be built before the disk is selected.
    Layout decisions come only from ``layout``.
    """

    def __init__(
        self,
        layout: DiskLayout,
        store: CheckpointStore,
        *,
        disk: Optional[str] = None,
        secret: Optional[SecretSource] = None,
        dry_run: bool = False,
        mnt: str = TARGET_ROOT,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.layout = layout
        self.store = store
        self._disk = disk
        self.secret = secret
        self.dry_run = dry_run
        self.mnt = mnt
        self.max_attempts = max_attempts if max_attempts is not None else default_max_attempts(secret)
        self.sleep = sleep

    @property
    def disk(self) -> str:
        disk = self._disk or self.store.get("DISK")
        if not disk:
            raise PreconditionError("no installation disk selected")
        return disk

    def devmap(self) -> DeviceMap:
        paths = {}
        for role, key in ROLE_KEYS.items():
            value = self.store.get(key)
            if value:
                paths[role] = value
        return DeviceMap(disk=self.disk, paths=paths)

    def preflight(self, confirmed: bool, disk: Optional[str] = None) -> int:
        """Refuse before any destructive command unless the disk is fit and confirmed."""

        disk = disk or self.disk
        if not confirmed:
            raise PreconditionError(f"installation disk {disk} was not confirmed")
        if not devices.disk_exists(disk):
            raise PreconditionError(f"disk {devices.dev_path(disk)} does not exist")
        size = devices.disk_size_bytes(disk)
        if size < MIN_DISK_BYTES:
            raise PreconditionError(
                f"disk {disk} should be at least {MIN_DISK_BYTES // 1024 ** 3}GiB "
                f"(has {size / 1024 ** 3:.1f}GiB)"
            )
        partitioning.guard_not_live_root(disk)
        trace("engine.preflight_ok", disk=disk, size=size)
        return size

    def steps(self) -> List[Step]:
        enc = self.layout.encrypted
        return [
            Step("wipe-device", self.wipe_device),
            Step("create-partition-table", self.create_partition_table),
            Step("create-partitions", self.create_partitions),
            Step("format-container", self.format_container, when=enc),
            Step("open-container", self.open_container, when=enc),
            Step("create-volume-group", self.create_volume_group, when=enc),
            Step("create-logical-volumes", self.create_logical_volumes, when=enc),
            Step("format-filesystems", self.format_filesystems),
            Step("mount-filesystems", self.mount_filesystems),
        ]

    def wipe_device(self):
        console.info(f"Wiping the data on disk {self.disk}")
        # release anything an interrupted earlier run left holding the disk
        clean(self.mnt, self.store.get("SWAP_P"), container=luks_lvm.mapper_exists(), dry_run=self.dry_run)
        partitioning.wipe(self.disk, dry_run=self.dry_run)

    def create_partition_table(self):
        console.info(f"Creating {self.layout.table} partition table ({self.layout.firmware.value})")
        partitioning.make_table(self.disk, self.layout.table, dry_run=self.dry_run)
        return {"MODE": self.layout.firmware.value}

    def create_partitions(self):
        console.info("Creating partitions")
        paths = partitioning.create_partitions(self.layout, self.disk, dry_run=self.dry_run)
        return carried_paths(paths)

    def format_container(self):
        part = self.devmap().path("container")
        console.info(f"Setting up encryption on {part}")
        retry_until_success(
            lambda: luks_lvm.format_container(part, secret=self.secret, dry_run=self.dry_run),
            label="Encryption container setup",
            max_attempts=self.max_attempts,
            sleep=self.sleep,
        )

    def open_container(self):
        part = self.devmap().path("container")
        console.info(f"Opening encrypted container {part}")
        retry_until_success(
            lambda: luks_lvm.open_container(part, secret=self.secret, dry_run=self.dry_run),
            label="Encryption container unlock",
            max_attempts=self.max_attempts,
            sleep=self.sleep,
        )

    def create_volume_group(self):
        console.info(f"Creating volume group {luks_lvm.VOLUME_GROUP}")
        luks_lvm.create_volume_group(dry_run=self.dry_run)

    def create_logical_volumes(self):
        console.info("Creating logical volumes")
        paths = luks_lvm.create_logical_volumes(self.layout, dry_run=self.dry_run)
        return carried_paths(paths)

    def format_filesystems(self):
        console.info("Formatting filesystems")
        mounts.format_all(self.layout, self.devmap(), dry_run=self.dry_run)

    def _ensure_container_active(self):
        # a reboot between runs closes the container and deactivates the group
        if self.dry_run or luks_lvm.mapper_exists():
            return
        self.open_container()
        luks_lvm.activate_vg(dry_run=self.dry_run)

    def mount_filesystems(self):
        console.info(f"Mounting filesystems under {self.mnt}")
        if self.layout.encrypted:
            self._ensure_container_active()
        mounts.mount_all(self.layout, self.devmap(), self.mnt, dry_run=self.dry_run)


def clean(mnt: str = TARGET_ROOT, swap_path: Optional[str] = None, *, container: bool = False, dry_run: bool = False):
    """Undo mounts and swap so the next run starts from a quiet device."""

    mounts.unmount_all(mnt, dry_run=dry_run)
    if swap_path:
        devices.swapoff(swap_path, dry_run=dry_run)
    if container:
        luks_lvm.deactivate_vg(dry_run=dry_run)
        luks_lvm.close_container(dry_run=dry_run)
