"""Phase two: configure the installed system from inside the new root."""

from __future__ import annotations

import os
import re
import time
from typing import Callable, List, Optional

from . import bootloader, console, executil, handoff, packages, system_conf
from .checkpoint import CheckpointStore
from .devices import partition_path
from .errors import InteractiveDeficiency
from .executil import run, trace
from .model import Configuration, Flags, StageContext, Step
from .paths import packages_path_for
from .planner import plan
from .retry import SecretSource, default_max_attempts, retry_until_success

PRESERVED_LOG_DIR = "/var/log/archstage"
# names useradd accepts without --badname
USER_NAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")


class PhaseTwo:
    """Step catalog for the chroot side of the install."""

    def __init__(
        self,
        ctx: StageContext,
        cfg: Configuration,
        store: CheckpointStore,
        tree: str,
        *,
        flags: Optional[Flags] = None,
        secret: Optional[SecretSource] = None,
        mirror: Optional[console.LogMirror] = None,
        reader: Callable[[str], str] = console.ask,
        root: str = "/",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx
        self.cfg = cfg
        self.store = store
        self.tree = tree
        self.flags = flags or Flags()
        self.secret = secret
        self.mirror = mirror
        self.reader = reader
        self.root = root
        self.sleep = sleep
        self.max_attempts = default_max_attempts(secret)

    @property
    def dry_run(self) -> bool:
        return self.flags.dry_run

    def steps(self) -> List[Step]:
        desktop = self.cfg.desktop and self.cfg.desktop_environment is not None
        return [
            Step("configuring-pacman", self.configure_pacman),
            Step("set-time", self.set_time),
            Step("change-language", self.change_language),
            Step("set-hostname", self.set_hostname),
            Step("change-root-password", self.change_root_password),
            Step("set-user", self.set_user),
            Step("install-additional-packages", self.install_additional_packages, when=desktop),
            Step("configure-additional-packages", self.configure_additional_packages, when=desktop),
            Step("configure-luks-and-lvm", self.configure_luks_and_lvm, when=self.cfg.luks_and_lvm),
            Step("grub-configuration", self.grub_configuration),
            Step("enable-services", self.enable_services),
            Step("cleanup", self.cleanup, checkpoint=False),
        ]

    def _retry(self, operation, label: str):
        return retry_until_success(operation, label=label, max_attempts=self.max_attempts, sleep=self.sleep)

    def configure_pacman(self):
        console.info("Configuring pacman")
        count = system_conf.configure_pacman(self.root, dry_run=self.dry_run)
        console.ok(f"pacman uses up to {count} parallel downloads")

    def set_time(self):
        console.info(f"Setting up time ({self.cfg.timezone})")
        system_conf.set_time(self.cfg.timezone, self.root, dry_run=self.dry_run)
        console.ok()

    def change_language(self):
        console.info(f"Setting up language ({self.cfg.locale})")
        system_conf.set_locale(self.cfg.locale, self.root, dry_run=self.dry_run)
        console.ok()

    def set_hostname(self):
        console.info(f"Setting hostname to {self.cfg.hostname}")
        system_conf.set_hostname(self.cfg.hostname, self.root, dry_run=self.dry_run)
        console.ok()

    def change_root_password(self):
        console.info("Change root password")
        self._retry(lambda: system_conf.set_password("root", self.secret, dry_run=self.dry_run), "Root password")
        console.ok()

    def _prompt_user_name(self) -> str:
        name = self.reader("Enter name for the local user: ").strip()
        if not name:
            raise InteractiveDeficiency("user name cannot be empty")
        if not USER_NAME_RE.match(name):
            raise InteractiveDeficiency(f"{name!r} is not a valid user name")
        return name

    def set_user(self):
        console.info("Setting administrator account")
        name = self.store.get("ADMIN_USER") or self.ctx.admin_user
        if not name:
            name = self._retry(self._prompt_user_name, "Administrator name")
        console.info(f"Creating {name} user and adding it to wheel group")
        system_conf.create_admin_user(name, self.root, dry_run=self.dry_run)
        # the account exists now; a retry after a crash in the password prompt reuses it
        self.store.record(ADMIN_USER=name)
        console.info("Setting up user password")
        self._retry(lambda: system_conf.set_password(name, self.secret, dry_run=self.dry_run), "User password")
        console.ok()
        return {"ADMIN_USER": name}

    def install_additional_packages(self):
        de = self.cfg.desktop_environment.value
        console.info(f"Installing additional packages for {de}")
        names = packages.read_package_list(packages_path_for(self.tree, de), source=packages.REPO_SOURCE)
        packages.pacman_install(names, dry_run=self.dry_run)
        console.ok()

    def configure_additional_packages(self):
        de = self.cfg.desktop_environment.value
        service = system_conf.DESKTOP_SERVICES[de]
        console.info(f"Enabling {service} for {de}")
        system_conf.enable_services([service], dry_run=self.dry_run)
        console.ok()

    def container_path(self) -> str:
        layout = plan(self.ctx.firmware, True, not self.cfg.single_partition)
        index = [p.role for p in layout.partitions].index("container") + 1
        return partition_path(self.ctx.disk, index)

    def configure_luks_and_lvm(self):
        console.info("Configuring LUKS and LVM")
        bootloader.configure_encrypted_boot(self.container_path(), self.root, dry_run=self.dry_run)
        console.ok()

    def grub_configuration(self):
        console.info("Installing and configuring grub")
        bootloader.install_grub(self.ctx.firmware, self.ctx.disk, dry_run=self.dry_run)
        console.ok()

    def enable_services(self):
        names = system_conf.DEFAULT_SERVICES
        console.info(f"Enabling {' and '.join(names)}")
        system_conf.enable_services(names, dry_run=self.dry_run)
        console.ok()

    def cleanup(self):
        console.ok("Installation finished")
        handoff.restore_streams(self.mirror)
        preserved = os.path.join(self.root, PRESERVED_LOG_DIR.lstrip("/"))
        logs = [
            os.path.join(self.tree, name)
            for name in sorted(os.listdir(self.tree))
            if name.endswith((".log", ".jsonl"))
        ] if os.path.isdir(self.tree) else []
        run(["mkdir", "--parents", preserved], check=True, dry_run=self.dry_run)
        if logs:
            run(["cp", "--archive", *logs, preserved + "/"], check=True, dry_run=self.dry_run)
        trace_path = executil.resolve_log_path()
        if trace_path and not self.dry_run:
            executil.configure(os.path.join(preserved, os.path.basename(trace_path)))
        console.info("Removing installation scripts")
        run(["rm", "--recursive", "--force", self.tree], check=True, dry_run=self.dry_run)
        trace("stage2.cleanup", tree=self.tree, preserved=preserved, logs=len(logs))
