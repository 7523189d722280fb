import json

import pytest

from archstage import handoff
from archstage.errors import ConfigError
from archstage.model import FirmwareMode, StageContext

from conftest import DummyResult


@pytest.fixture
def calls(monkeypatch):
    seen = []

    def fake_run(cmd, check=True, dry_run=False, **kwargs):
        seen.append(list(cmd))
        return DummyResult()

    monkeypatch.setattr(handoff, "run", fake_run)
    monkeypatch.setattr(handoff, "run_interactive", fake_run)
    monkeypatch.setattr(handoff.console, "info", lambda msg: None)
    return seen


def test_copy_tree_into_target(calls):
    dest = handoff.copy_tree("/root/archstage", "/mnt")
    assert dest == "/mnt/temp_install_dir"
    assert calls == [
        ["mkdir", "--parents", "/mnt/temp_install_dir"],
        ["cp", "--archive", "/root/archstage/.", "/mnt/temp_install_dir/"],
    ]


def test_enter_runs_phase_two_in_chroot(calls):
    handoff.enter(StageContext(FirmwareMode.UEFI, "nvme0n1"), "/mnt")
    assert calls == [
        ["arch-chroot", "/mnt", "python3", "/temp_install_dir/stage2_install.py", "UEFI", "nvme0n1"]
    ]


def test_context_written_and_read_back(tmp_path):
    handoff.write_context(StageContext(FirmwareMode.BIOS, "sda", "alice"), str(tmp_path))
    data = json.loads((tmp_path / "stage_context.json").read_text())
    assert data == {"firmware": "BIOS", "disk": "sda", "admin_user": "alice"}

    ctx = handoff.context_from_argv([], str(tmp_path))
    assert ctx == StageContext(FirmwareMode.BIOS, "sda", "alice")
    # explicit arguments win over the saved context
    ctx = handoff.context_from_argv(["UEFI", "/dev/vda"], str(tmp_path))
    assert ctx.firmware is FirmwareMode.UEFI
    assert ctx.disk == "vda"


def test_dry_run_context_is_not_written(tmp_path):
    handoff.write_context(StageContext(FirmwareMode.BIOS, "sda"), str(tmp_path), dry_run=True)
    assert not (tmp_path / "stage_context.json").exists()


@pytest.mark.parametrize(
    "argv, key",
    [([], "MODE"), (["EFI", "sda"], "MODE"), (["UEFI"], "DISK"), (["UEFI", "sda;reboot"], "DISK")],
)
def test_bad_arguments_name_the_key(tmp_path, argv, key):
    with pytest.raises(ConfigError) as excinfo:
        handoff.context_from_argv(argv, str(tmp_path))
    assert excinfo.value.key == key


def test_corrupt_context_file(tmp_path):
    (tmp_path / "stage_context.json").write_text("{not json")
    with pytest.raises(ConfigError):
        handoff.context_from_argv([], str(tmp_path))


def test_restore_streams_stops_mirror():
    stopped = []

    class Mirror:
        def stop(self):
            stopped.append(True)

    handoff.restore_streams(Mirror())
    handoff.restore_streams(None)
    assert stopped == [True]
