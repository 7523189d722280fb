from types import SimpleNamespace

import pytest

from archstage import console, handoff, packages, pipeline, stage1
from archstage.checkpoint import CheckpointStore
from archstage.devices import Disk
from archstage.errors import PreconditionError
from archstage.model import Configuration, FirmwareMode, Flags
from archstage.retry import static_secret

from conftest import DummyResult

GIB = 1024 ** 3

CFG = Configuration(
    timezone="Europe/Bucharest",
    locale="en_US.UTF-8",
    hostname="archbox",
    luks_and_lvm=False,
    single_partition=False,
    desktop=False,
)


@pytest.fixture
def env(tmp_path, fake_system, monkeypatch):
    commands = []

    def fake_run(cmd, check=True, dry_run=False, **kwargs):
        commands.append(list(cmd))
        if cmd[0] == "genfstab":
            return DummyResult("UUID=abcd / ext4 rw,relatime 0 1\n")
        return DummyResult()

    for module in (stage1, handoff, packages):
        monkeypatch.setattr(module, "run", fake_run)
    monkeypatch.setattr(handoff, "run_interactive", fake_run)
    monkeypatch.setattr(stage1.net, "is_online", lambda: True)
    monkeypatch.setattr(stage1.system_conf, "configure_pacman", lambda **kw: 3)
    for name in ("info", "ok", "warn"):
        monkeypatch.setattr(console, name, lambda msg="": None)

    mnt = tmp_path / "mnt"
    (mnt / "etc").mkdir(parents=True)
    (mnt / "temp_install_dir").mkdir()
    tree = tmp_path / "tree"
    (tree / "packages").mkdir(parents=True)
    (tree / "packages" / "core-packages.csv").write_text("base,repo,core\npython,repo,core\n")
    store = CheckpointStore(str(tree / ".stage1_install.py.env"))
    return SimpleNamespace(commands=commands, mnt=mnt, tree=tree, store=store, system=fake_system)


def _phase(env, **kwargs):
    kwargs.setdefault("firmware", FirmwareMode.UEFI)
    return stage1.PhaseOne(
        CFG, env.store, str(env.tree), mnt=str(env.mnt), secret=static_secret("pw"), sleep=lambda s: None, **kwargs
    )


def test_full_phase_one_with_disk_argument(env):
    env.store.record(DISK="sda")
    phase = _phase(env)
    result = pipeline.run_steps(phase.steps(), env.store, phase="stage1")
    assert result.ran_steps[:3] == ["check-internet", "configuring-pacman", "select-disk"]
    assert result.ran_steps[-4:] == ["install-core-packages", "generate-fstab", "enter-environment", "reboot"]

    mnt = str(env.mnt)
    assert ["pacstrap", "-K", mnt, "base", "python"] in env.commands
    assert ["arch-chroot", mnt, "python3", "/temp_install_dir/stage2_install.py", "UEFI", "sda"] in env.commands
    assert env.commands[-1] == ["reboot"]
    assert "UUID=abcd" in (env.mnt / "etc" / "fstab").read_text()
    assert '"disk": "sda"' in (env.mnt / "temp_install_dir" / "stage_context.json").read_text()


def test_rerun_after_handoff_only_reenters(env):
    env.store.record(DISK="sda")
    pipeline.run_steps(_phase(env).steps(), env.store, phase="stage1")
    env.commands.clear()
    env.system.calls.clear()

    store = CheckpointStore(env.store.path)
    phase = stage1.PhaseOne(CFG, store, str(env.tree), mnt=str(env.mnt), sleep=lambda s: None)
    result = pipeline.run_steps(phase.steps(), store, phase="stage1")
    assert result.ran_steps == ["check-internet", "enter-environment", "reboot"]
    assert env.system.mutating() == []
    assert not any(c[0] in ("pacstrap", "genfstab") for c in env.commands)


def test_offline_aborts_before_anything(env, monkeypatch):
    monkeypatch.setattr(stage1.net, "is_online", lambda: False)
    with pytest.raises(PreconditionError) as excinfo:
        pipeline.run_steps(_phase(env).steps(), env.store, phase="stage1")
    assert excinfo.value.action == "check-internet"
    assert env.system.calls == []


def test_interactive_selection_declined(env, monkeypatch):
    monkeypatch.setattr(stage1.devices, "list_disks", lambda: [Disk("sda", 64 * GIB), Disk("sdb", 20 * GIB)])
    phase = _phase(env, reader=lambda prompt: "no")
    with pytest.raises(PreconditionError):
        phase.select_disk()
    assert env.system.mutating() == []


def test_interactive_selection_confirmed(env, monkeypatch):
    monkeypatch.setattr(stage1.devices, "list_disks", lambda: [Disk("sda", 64 * GIB), Disk("sdb", 20 * GIB)])
    phase = _phase(env, reader=lambda prompt: "yes")
    assert phase.select_disk() == {"DISK": "sda"}


def test_assume_yes_skips_prompt(env, monkeypatch):
    monkeypatch.setattr(stage1.devices, "list_disks", lambda: [Disk("vda", 80 * GIB)])

    def reader(prompt):
        raise AssertionError("prompted")

    phase = _phase(env, reader=reader, flags=Flags(assume_yes=True))
    assert phase.select_disk() == {"DISK": "vda"}


def test_no_fitting_disk(env, monkeypatch):
    monkeypatch.setattr(stage1.devices, "list_disks", lambda: [Disk("sda", 20 * GIB)])
    with pytest.raises(PreconditionError):
        _phase(env).select_disk()


def test_carried_mode_wins_over_detection(env):
    env.store.record(MODE="BIOS")
    phase = _phase(env, firmware=FirmwareMode.UEFI)
    assert phase.firmware is FirmwareMode.BIOS
    assert phase.layout.table == "msdos"


def test_dry_run_never_reboots(env):
    phase = _phase(env, flags=Flags(dry_run=True))
    assert "reboot" not in [s.name for s in pipeline.active_steps(phase.steps())]


def test_validate_disk_argument(env):
    assert stage1.validate_disk_argument("/dev/sda", env.store) == "sda"
    env.store.record(DISK="sda")
    with pytest.raises(PreconditionError):
        stage1.validate_disk_argument("sdb", env.store)
    env.system.fail[("lsblk", "--nodeps")] = 32
    with pytest.raises(PreconditionError):
        stage1.validate_disk_argument("sda", env.store)
