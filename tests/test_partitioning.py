import pytest

from archstage import partitioning
from archstage.errors import ExecutionError, PreconditionError
from archstage.model import FirmwareMode
from archstage.planner import plan


def test_mkpart_commands_uefi_dual():
    cmds = partitioning.mkpart_commands(plan(FirmwareMode.UEFI, False, True), "sda")
    assert cmds == [
        ["parted", "--script", "/dev/sda", "mkpart", "boot", "fat32", "1MiB", "1024MiB"],
        ["parted", "--script", "/dev/sda", "mkpart", "swap", "linux-swap", "1024MiB", "5120MiB"],
        ["parted", "--script", "/dev/sda", "mkpart", "root", "ext4", "5120MiB", "35840MiB"],
        ["parted", "--script", "/dev/sda", "mkpart", "home", "ext4", "35840MiB", "100%"],
        ["parted", "--script", "/dev/sda", "set", "1", "esp", "on"],
    ]


def test_mkpart_commands_bios_encrypted():
    cmds = partitioning.mkpart_commands(plan(FirmwareMode.BIOS, True, False), "nvme0n1")
    assert cmds == [
        ["parted", "--script", "/dev/nvme0n1", "mkpart", "primary", "fat32", "1MiB", "1024MiB"],
        ["parted", "--script", "/dev/nvme0n1", "mkpart", "primary", "1024MiB", "100%"],
        ["parted", "--script", "/dev/nvme0n1", "set", "1", "boot", "on"],
    ]


def test_create_partitions_returns_paths_by_layout_index(fake_system):
    layout = plan(FirmwareMode.UEFI, True, True)
    paths = partitioning.create_partitions(layout, "nvme0n1")
    assert paths == {"boot": "/dev/nvme0n1p1", "container": "/dev/nvme0n1p2"}
    # new partitions are cleared of stale signatures
    assert ["wipefs", "--all", "/dev/nvme0n1p2"] in fake_system.calls


def test_create_partitions_verifies_count(fake_system, monkeypatch):
    monkeypatch.setattr(partitioning, "partition_count", lambda disk: 1)
    with pytest.raises(ExecutionError) as excinfo:
        partitioning.create_partitions(plan(FirmwareMode.UEFI, False, False), "sda")
    assert excinfo.value.action == "create-partitions"


def test_make_table_rejects_unknown_label(fake_system):
    partitioning.make_table("sda", "gpt")
    assert fake_system.calls[-1] == ["parted", "--script", "/dev/sda", "mklabel", "gpt"]
    with pytest.raises(ValueError):
        partitioning.make_table("sda", "apm")


@pytest.mark.parametrize(
    "dev, base",
    [("/dev/nvme0n1p3", "/dev/nvme0n1"), ("/dev/sda2", "/dev/sda"), ("/dev/mmcblk0p1", "/dev/mmcblk0"),
     ("/dev/nvme0n1", "/dev/nvme0n1"), ("/dev/sdb", "/dev/sdb")],
)
def test_base_device(dev, base):
    assert partitioning._base_device(dev) == base


def test_guard_refuses_live_root_disk(fake_system):
    partitioning.guard_not_live_root("sda")
    with pytest.raises(PreconditionError):
        partitioning.guard_not_live_root("sdz")
