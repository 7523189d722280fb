"""Package lists shipped as CSV payloads beside the scripts."""

from __future__ import annotations

import csv
from typing import List, Optional

from .executil import run, trace
from .paths import TARGET_ROOT

REPO_SOURCE = "repo"
PACMAN_TIMEOUT = 3600


def read_package_list(path: str, source: Optional[str] = None) -> List[str]:
    """First column of each row; ``source`` keeps only rows tagged with it.

    Blank rows and ``#`` comments are ignored. Order and duplicates are
    preserved as written.
    """

    names: List[str] = []
    with open(path, newline="", encoding="utf-8") as fh:
        for row in csv.reader(fh):
            cells = [c.strip() for c in row]
            if not cells or not cells[0] or cells[0].startswith("#"):
                continue
            if source is not None and (len(cells) < 2 or cells[1] != source):
                continue
            names.append(cells[0])
    trace("packages.read", path=path, source=source, count=len(names))
    return names


def pacstrap(packages: List[str], mnt: str = TARGET_ROOT, dry_run: bool = False):
    if not packages:
        raise ValueError("empty core package list")
    run(["pacstrap", "-K", mnt, *packages], check=True, dry_run=dry_run, timeout=PACMAN_TIMEOUT)


def pacman_install(packages: List[str], dry_run: bool = False):
    if not packages:
        trace("packages.nothing_to_install")
        return
    run(["pacman", "--noconfirm", "--sync", "--refresh", "--needed", *packages],
        check=True, dry_run=dry_run, timeout=PACMAN_TIMEOUT)
