from pathlib import Path

import pytest

from archstage import packages

PACKAGES_DIR = Path(__file__).absolute().parent.parent / "packages"


def test_core_list_keeps_first_column(tmp_path):
    csv_path = tmp_path / "core-packages.csv"
    csv_path.write_text("base,repo,core\n\n# comment,repo\nlinux ,repo,kernel\nyay,aur,helper\n")
    assert packages.read_package_list(str(csv_path)) == ["base", "linux", "yay"]
    assert packages.read_package_list(str(csv_path), source="repo") == ["base", "linux"]


def test_shipped_lists_are_readable():
    core = packages.read_package_list(str(PACKAGES_DIR / "core-packages.csv"))
    assert "base" in core and "python" in core
    for name in ("i3", "gnome"):
        rows = packages.read_package_list(str(PACKAGES_DIR / f"{name}-packages.csv"))
        repo_rows = packages.read_package_list(str(PACKAGES_DIR / f"{name}-packages.csv"), source="repo")
        assert 0 < len(repo_rows) < len(rows)


def test_pacstrap_and_pacman(monkeypatch):
    calls = []
    monkeypatch.setattr(packages, "run", lambda cmd, **kw: calls.append(cmd))
    packages.pacstrap(["base", "linux"], "/mnt")
    packages.pacman_install(["i3-wm"])
    packages.pacman_install([])
    assert calls == [
        ["pacstrap", "-K", "/mnt", "base", "linux"],
        ["pacman", "--noconfirm", "--sync", "--refresh", "--needed", "i3-wm"],
    ]
    with pytest.raises(ValueError):
        packages.pacstrap([], "/mnt")
