"""System configuration applied inside the new root (and pacman on both sides)."""

from __future__ import annotations

import os
import re
from typing import Iterable, Optional

from .executil import run, run_interactive, trace
from .retry import SecretSource

PACMAN_CONF = "etc/pacman.conf"
ZONEINFO = "/usr/share/zoneinfo"
SUDOERS_DROPIN = "etc/sudoers.d/01-wheel_group"
WHEEL_RULE = "%wheel ALL=(ALL:ALL) ALL\n"
DEFAULT_SERVICES = ("NetworkManager", "sshd")
DESKTOP_SERVICES = {"i3": "lightdm", "gnome": "gdm"}

_PARALLEL_RE = re.compile(r"^#?\s*ParallelDownloads\s*=.*$", re.MULTILINE)


def target_path(root: str, rel: str) -> str:
    return os.path.join(root, rel.lstrip("/"))


def read_text(path: str) -> str:
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def write_text(path: str, data: str, mode: Optional[int] = None, dry_run: bool = False):
    if dry_run:
        trace("system.write.dry_run", path=path, bytes=len(data))
        return
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())
    if mode is not None:
        os.chmod(path, mode)
    trace("system.write", path=path, bytes=len(data))


def parallel_downloads(cores: Optional[int] = None) -> int:
    cores = cores or os.cpu_count() or 1
    return cores - 1 if cores > 1 else 1


def set_parallel_downloads(text: str, count: int) -> str:
    line = f"ParallelDownloads = {count}"
    if _PARALLEL_RE.search(text):
        return _PARALLEL_RE.sub(line, text, count=1)
    # no commented template to replace; put it under [options]
    if "[options]" in text:
        return text.replace("[options]", f"[options]\n{line}", 1)
    return text.rstrip("\n") + f"\n[options]\n{line}\n"


def configure_pacman(root: str = "/", cores: Optional[int] = None, keyring: bool = False, dry_run: bool = False) -> int:
    """Raise ParallelDownloads to cores-1, refresh the databases, optionally the keyring."""

    count = parallel_downloads(cores)
    conf = target_path(root, PACMAN_CONF)
    write_text(conf, set_parallel_downloads(read_text(conf), count), dry_run=dry_run)
    run(["pacman", "--noconfirm", "--sync", "--refresh"], check=True, dry_run=dry_run, timeout=900.0)
    if keyring:
        run(["pacman", "--noconfirm", "--sync", "--refresh", "archlinux-keyring"],
            check=True, dry_run=dry_run, timeout=900.0)
    return count


def set_time(timezone: str, root: str = "/", dry_run: bool = False):
    zone = os.path.join(ZONEINFO, timezone)
    run(["ln", "--symbolic", "--force", zone, target_path(root, "etc/localtime")], check=True, dry_run=dry_run)
    run(["hwclock", "--systohc"], check=True, dry_run=dry_run)


def enable_locale(text: str, lang: str) -> str:
    """Uncomment every locale.gen line that starts with ``lang``."""

    pattern = re.compile(rf"^#\s*({re.escape(lang)}(?:\s.*)?)$", re.MULTILINE)
    return pattern.sub(r"\1", text)


def set_locale(lang: str, root: str = "/", dry_run: bool = False):
    gen = target_path(root, "etc/locale.gen")
    write_text(gen, enable_locale(read_text(gen), lang), dry_run=dry_run)
    write_text(target_path(root, "etc/locale.conf"), f"LANG={lang}\n", dry_run=dry_run)
    run(["locale-gen"], check=True, dry_run=dry_run, timeout=600.0)


def hosts_entries(hostname: str) -> str:
    return (
        "127.0.0.1\tlocalhost\n"
        "::1\t\tlocalhost\n"
        f"127.0.1.1\t{hostname}.localdomain\t{hostname}\n"
    )


def set_hostname(hostname: str, root: str = "/", dry_run: bool = False):
    write_text(target_path(root, "etc/hostname"), f"{hostname}\n", dry_run=dry_run)
    hosts = target_path(root, "etc/hosts")
    existing = read_text(hosts) if os.path.exists(hosts) else ""
    if f"\t{hostname}\n" not in existing:
        write_text(hosts, existing + hosts_entries(hostname), dry_run=dry_run)


def set_password(user: str, secret: Optional[SecretSource] = None, dry_run: bool = False):
    """``passwd`` on the terminal, or ``chpasswd`` when a secret source is given."""

    if secret is not None:
        pw = secret(f"Password for {user}")
        run(["chpasswd"], check=True, dry_run=dry_run, input_text=f"{user}:{pw}\n")
        return
    run_interactive(["passwd", user], check=True, dry_run=dry_run)


def user_exists(name: str) -> bool:
    return run(["id", "--user", name], check=False).rc == 0


def create_admin_user(name: str, root: str = "/", dry_run: bool = False):
    if not dry_run and user_exists(name):
        trace("system.user.exists", user=name)
    else:
        run(["useradd", "--create-home", "--groups", "wheel", "--shell", "/bin/bash", name],
            check=True, dry_run=dry_run)
    write_text(target_path(root, SUDOERS_DROPIN), WHEEL_RULE, mode=0o440, dry_run=dry_run)


def enable_services(names: Iterable[str], dry_run: bool = False):
    for name in names:
        run(["systemctl", "enable", name], check=True, dry_run=dry_run)
