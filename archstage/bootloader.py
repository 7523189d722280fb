"""mkinitcpio hooks, kernel command line and GRUB installation."""

from __future__ import annotations

import re

from .devices import dev_path, uuid_of
from .errors import ExecutionError
from .executil import run, trace
from .model import FirmwareMode
from .planner import CONTAINER_NAME, VOLUME_GROUP
from .system_conf import read_text, target_path, write_text

MKINITCPIO_CONF = "etc/mkinitcpio.conf"
GRUB_DEFAULTS = "etc/default/grub"
GRUB_CFG = "/boot/grub/grub.cfg"
CRYPT_HOOKS = ("encrypt", "lvm2")

_HOOKS_RE = re.compile(r"^HOOKS=\((?P<body>[^)]*)\)", re.MULTILINE)
_CMDLINE_RE = re.compile(r'^GRUB_CMDLINE_LINUX_DEFAULT="(?P<body>[^"]*)"', re.MULTILINE)


def add_crypt_hooks(text: str) -> str:
    """Insert ``encrypt lvm2`` before ``filesystems`` in the HOOKS array."""

    m = _HOOKS_RE.search(text)
    if not m:
        raise ValueError("no HOOKS=(...) line in mkinitcpio.conf")
    hooks = [h for h in m.group("body").split() if h not in CRYPT_HOOKS]
    at = hooks.index("filesystems") if "filesystems" in hooks else len(hooks)
    hooks[at:at] = list(CRYPT_HOOKS)
    return text[: m.start()] + f"HOOKS=({' '.join(hooks)})" + text[m.end():]


def crypt_cmdline(uuid: str, name: str = CONTAINER_NAME, vg: str = VOLUME_GROUP) -> list[str]:
    return [f"cryptdevice=UUID={uuid}:{name}", f"root=/dev/{vg}/root"]


def add_kernel_args(text: str, args: list[str]) -> str:
    m = _CMDLINE_RE.search(text)
    if not m:
        return text.rstrip("\n") + f'\nGRUB_CMDLINE_LINUX_DEFAULT="{" ".join(args)}"\n'
    keys = {a.split("=", 1)[0] for a in args}
    kept = [a for a in m.group("body").split() if a.split("=", 1)[0] not in keys]
    body = " ".join(kept + args)
    return text[: m.start()] + f'GRUB_CMDLINE_LINUX_DEFAULT="{body}"' + text[m.end():]


def container_uuid(container_path: str, dry_run: bool = False) -> str:
    uuid = uuid_of(container_path, dry_run=dry_run)
    if not uuid:
        if dry_run:
            return "DRY-RUN-UUID"
        raise ExecutionError(2, ["blkid", container_path], "", "no UUID on encrypted container",
                             action="configure-luks-and-lvm")
    return uuid


def configure_encrypted_boot(container_path: str, root: str = "/", dry_run: bool = False) -> str:
    """Hook the initramfs and kernel command line up to the LUKS/LVM root."""

    conf = target_path(root, MKINITCPIO_CONF)
    write_text(conf, add_crypt_hooks(read_text(conf)), dry_run=dry_run)
    run(["mkinitcpio", "-P"], check=True, dry_run=dry_run, timeout=900.0)

    uuid = container_uuid(container_path, dry_run=dry_run)
    grub = target_path(root, GRUB_DEFAULTS)
    write_text(grub, add_kernel_args(read_text(grub), crypt_cmdline(uuid)), dry_run=dry_run)
    trace("bootloader.crypt_configured", container=container_path, uuid=uuid)
    return uuid


def grub_install_command(firmware: FirmwareMode, disk: str) -> list[str]:
    if firmware is FirmwareMode.UEFI:
        return ["grub-install", "--target=x86_64-efi", "--efi-directory=/boot", "--bootloader-id=GRUB"]
    return ["grub-install", "--target=i386-pc", dev_path(disk)]


def install_grub(firmware: FirmwareMode, disk: str, dry_run: bool = False):
    if firmware is FirmwareMode.UEFI:
        run(["pacman", "--noconfirm", "--sync", "--needed", "efibootmgr"], check=True, dry_run=dry_run, timeout=900.0)
    run(grub_install_command(firmware, disk), check=True, dry_run=dry_run, timeout=300.0)
    run(["grub-mkconfig", f"--output={GRUB_CFG}"], check=True, dry_run=dry_run, timeout=300.0)
