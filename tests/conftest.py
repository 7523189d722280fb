import ast
import json
import sys
import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, Set

import pytest

from archstage import devices, engine, executil, luks_lvm, mounts, partitioning
from archstage.errors import ExecutionError

_ROOT_DIR = Path(__file__).absolute().parent.parent
_PACKAGE_DIR = (_ROOT_DIR / "archstage").absolute()

_EXECUTED: Dict[Path, Set[int]] = defaultdict(set)
_CANDIDATES: Dict[Path, Set[int]] = {}
_PREVIOUS_TRACE = None


def _statement_lines(path: Path) -> Set[int]:
    source = path.read_text(encoding="utf-8")
    try:
        tree = ast.parse(source, filename=str(path))
    except SyntaxError:
        return set()
    text = source.splitlines()
    lines = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.stmt):
            stripped = text[node.lineno - 1].strip()
            if stripped and not stripped.startswith("#"):
                lines.add(node.lineno)
    return lines


for _file in _PACKAGE_DIR.glob("*.py"):
    _CANDIDATES[_file.absolute()] = _statement_lines(_file)


def _trace(frame, event, arg):
    if event == "line":
        filename = Path(frame.f_code.co_filename)
        if filename in _CANDIDATES:
            _EXECUTED[filename].add(frame.f_lineno)
    return _trace


def pytest_sessionstart(session):
    global _PREVIOUS_TRACE
    _PREVIOUS_TRACE = sys.gettrace()
    sys.settrace(_trace)
    threading.settrace(_trace)


def pytest_sessionfinish(session, exitstatus):
    sys.settrace(_PREVIOUS_TRACE)
    threading.settrace(None)
    terminal = session.config.pluginmanager.get_plugin("terminalreporter")
    write_line = terminal.write_line if terminal else print
    write_line("")
    write_line("Statement coverage for 'archstage':")
    total = hit = 0
    for path in sorted(_CANDIDATES):
        stmts = _CANDIDATES[path]
        if not stmts:
            continue
        covered = len(_EXECUTED.get(path, set()) & stmts)
        total += len(stmts)
        hit += covered
        write_line(f"{str(path.relative_to(_ROOT_DIR)):<40} {len(stmts):>5} {covered / len(stmts) * 100:>6.1f}%")
    if total:
        write_line(f"{'TOTAL':<40} {total:>5} {hit / total * 100:>6.1f}%")


@pytest.fixture(autouse=True)
def _trace_log(tmp_path, monkeypatch):
    # keep JSONL trace output inside the test's temp dir
    monkeypatch.setattr(executil, "LOG_PATH", str(tmp_path / "trace.jsonl"))


class DummyResult:
    def __init__(self, out: str = "", rc: int = 0, err: str = "") -> None:
        self.out = out
        self.rc = rc
        self.err = err
        self.duration = 0.0


# Commands that change the state of a disk, a mapping or a mount.
MUTATING = {
    "wipefs", "parted", "pvcreate", "vgcreate", "lvcreate", "vgchange", "mkfs.fat", "mkfs.ext4",
    "mkswap", "swapon", "swapoff", "mount", "umount", "mkdir",
}


class FakeSystem:
    """Records every command and answers read-only probes for one disk."""

    def __init__(self, disk_bytes: int = 64 * 1024 ** 3, partitions: int = 0):
        self.disk_bytes = disk_bytes
        self.partitions = partitions
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.mapper_open = False
        self.luks_headers: set[str] = set()
        self.fail: dict[tuple, int] = {}

    def _answer(self, cmd: list[str]) -> DummyResult:
        for prefix, rc in self.fail.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                return DummyResult("", rc, "boom")
        head = cmd[0]
        if head == "lsblk" and "--json" in cmd and "NAME,TYPE" in cmd:
            children = [{"name": f"p{i}", "type": "part"} for i in range(self.partitions)]
            return DummyResult(json.dumps({"blockdevices": [{"name": "disk", "children": children}]}))
        if head == "lsblk" and "SIZE" in cmd and "--bytes" in cmd:
            return DummyResult(f"{self.disk_bytes}\n")
        if head == "findmnt" and "SOURCE" in cmd:
            return DummyResult("/dev/sdz1\n")
        if head == "findmnt":
            return DummyResult("", 1)
        if cmd[:2] == ["cryptsetup", "isLuks"]:
            return DummyResult("", 0 if cmd[2] in self.luks_headers else 1)
        if head == "parted" and "mkpart" in cmd:
            self.partitions += 1
        if head == "parted" and "mklabel" in cmd:
            self.partitions = 0
        if cmd[:2] == ["cryptsetup", "open"]:
            self.mapper_open = True
        if head == "cryptsetup" and "luksFormat" in cmd:
            self.luks_headers.add(cmd[-1])
        return DummyResult("")

    def run(self, cmd, check=True, dry_run=False, timeout=None, input_text=None, env=None):
        argv = list(cmd)
        self.calls.append(argv)
        self.inputs.append(input_text)
        if dry_run:
            return DummyResult("DRY-RUN")
        result = self._answer(argv)
        if check and result.rc != 0:
            raise ExecutionError(result.rc, argv, result.out, result.err)
        return result

    def run_interactive(self, cmd, check=True, dry_run=False, input_text=None):
        return self.run(cmd, check=check, dry_run=dry_run, input_text=input_text)

    def mutating(self) -> list[list[str]]:
        out = []
        for cmd in self.calls:
            if cmd[0] == "swapon" and "--show=NAME" in cmd:
                continue
            if cmd[0] in MUTATING:
                out.append(cmd)
            elif cmd[0] == "cryptsetup" and cmd[1] != "isLuks":
                out.append(cmd)
        return out

    def programs(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def fake_system(monkeypatch):
    system = FakeSystem()
    for module in (devices, partitioning, luks_lvm, mounts):
        monkeypatch.setattr(module, "run", system.run)
        if hasattr(module, "udev_settle"):
            monkeypatch.setattr(module, "udev_settle", lambda dry_run=False: None)
    monkeypatch.setattr(luks_lvm, "run_interactive", system.run_interactive)
    monkeypatch.setattr(luks_lvm, "mapper_exists", lambda name=luks_lvm.CONTAINER_NAME: system.mapper_open)
    monkeypatch.setattr(engine.console, "info", lambda msg: None)
    return system
