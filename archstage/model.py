from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class FirmwareMode(str, Enum):
    UEFI = "UEFI"
    BIOS = "BIOS"


class DesktopEnvironment(str, Enum):
    I3 = "i3"
    GNOME = "gnome"


@dataclass(frozen=True)
class Configuration:
    timezone: str
    locale: str
    hostname: str
    luks_and_lvm: bool
    single_partition: bool
    desktop: bool
    desktop_environment: Optional[DesktopEnvironment] = None


@dataclass(frozen=True)
class PartitionSpec:
    role: str
    fs: str
    size_mib: Optional[int]  # None: takes the remainder
    kind: str = "partition"  # partition|volume

    @property
    def takes_remainder(self) -> bool:
        return self.size_mib is None


@dataclass(frozen=True)
class Extent:
    role: str
    start_mib: int
    end_mib: int


@dataclass(frozen=True)
class DiskLayout:
    firmware: FirmwareMode
    encrypted: bool
    partitions: tuple[PartitionSpec, ...]
    volumes: tuple[PartitionSpec, ...] = ()

    @property
    def table(self) -> str:
        return "gpt" if self.firmware is FirmwareMode.UEFI else "msdos"

    def roles(self) -> list[str]:
        """Filesystem roles in order; the container itself is not a filesystem."""

        specs = [p for p in self.partitions if p.role != "container"] + list(self.volumes)
        return [s.role for s in specs]

    def filesystems(self) -> list[PartitionSpec]:
        return [p for p in self.partitions if p.role != "container"] + list(self.volumes)

    def extents(self, capacity_mib: int, first_mib: int = 1) -> list[Extent]:
        """Concrete partition boundaries for a disk of ``capacity_mib``."""

        return _pack(self.partitions, first_mib, capacity_mib)

    def volume_extents(self, container_mib: int) -> list[Extent]:
        """Volume boundaries relative to the start of the container."""

        return _pack(self.volumes, 0, container_mib)


def _pack(specs, start: int, end: int) -> list[Extent]:
    # Boundaries sit on whole-size marks counted from offset 0; only the first
    # extent is shifted to ``start`` (the alignment gap), so boot spans 1MiB-1GiB.
    out: list[Extent] = []
    mark = 0
    for s in specs:
        stop = end if s.takes_remainder else mark + s.size_mib
        out.append(Extent(role=s.role, start_mib=max(mark, start), end_mib=stop))
        mark = stop
    return out


@dataclass
class DeviceMap:
    """Device paths by role, filled in as partitions and volumes are created."""

    disk: str
    paths: dict[str, str] = field(default_factory=dict)

    def path(self, role: str) -> str:
        try:
            return self.paths[role]
        except KeyError:
            raise KeyError(f"no device recorded for role {role!r} on {self.disk}") from None


@dataclass(frozen=True)
class StageContext:
    firmware: FirmwareMode
    disk: str
    admin_user: Optional[str] = None

    def argv(self) -> list[str]:
        return [self.firmware.value, self.disk]

    def as_dict(self) -> dict:
        return {"firmware": self.firmware.value, "disk": self.disk, "admin_user": self.admin_user}


@dataclass
class Step:
    name: str
    body: Callable[[], object]
    when: bool = True
    checkpoint: bool = True


@dataclass
class Flags:
    dry_run: bool = False
    assume_yes: bool = False
