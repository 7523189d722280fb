"""Phase one: prepare the target disk from the installation media."""

from __future__ import annotations

import os
import time
from typing import Callable, List, Optional

from . import console, devices, handoff, net, packages, system_conf
from .checkpoint import CheckpointStore
from .engine import PartitionEngine
from .errors import PreconditionError
from .executil import run, trace
from .model import Configuration, FirmwareMode, Flags, StageContext, Step
from .paths import TARGET_ROOT, packages_path_for
from .planner import MIN_DISK_BYTES, plan
from .retry import SecretSource

NETWORK_HELP = "https://wiki.archlinux.org/title/Installation_guide#Connect_to_the_internet"
REBOOT_DELAY = 5


class PhaseOne:
    """Step catalog for the media side of the install.

    ``tree`` is the directory holding the scripts, data payloads and the
    checkpoint file; it is what gets copied into the new root.
    """

    def __init__(
        self,
        cfg: Configuration,
        store: CheckpointStore,
        tree: str,
        *,
        flags: Optional[Flags] = None,
        firmware: Optional[FirmwareMode] = None,
        secret: Optional[SecretSource] = None,
        mirror: Optional[console.LogMirror] = None,
        reader: Callable[[str], str] = console.ask,
        mnt: str = TARGET_ROOT,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cfg = cfg
        self.store = store
        self.tree = tree
        self.flags = flags or Flags()
        carried_mode = store.get("MODE")
        self.firmware = FirmwareMode(carried_mode) if carried_mode else (firmware or devices.detect_firmware())
        self.mirror = mirror
        self.reader = reader
        self.mnt = mnt
        self.sleep = sleep
        self.layout = plan(self.firmware, cfg.luks_and_lvm, not cfg.single_partition)
        self.engine = PartitionEngine(
            self.layout,
            store,
            secret=secret,
            dry_run=self.flags.dry_run,
            mnt=mnt,
            sleep=sleep,
        )

    @property
    def dry_run(self) -> bool:
        return self.flags.dry_run

    def steps(self) -> List[Step]:
        return [
            Step("check-internet", self.check_internet, checkpoint=False),
            Step("configuring-pacman", self.configure_pacman),
            Step("select-disk", self.select_disk),
            *self.engine.steps(),
            Step("install-core-packages", self.install_core_packages),
            Step("generate-fstab", self.generate_fstab),
            Step("enter-environment", self.enter_environment, checkpoint=False),
            Step("reboot", self.reboot, when=not self.dry_run, checkpoint=False),
        ]

    def check_internet(self):
        console.info("Check Internet")
        if not net.is_online():
            console.info(f"Visit {NETWORK_HELP}")
            raise PreconditionError("no internet connection")
        console.ok("Connected to internet")

    def configure_pacman(self):
        console.info("Configuring pacman")
        count = system_conf.configure_pacman(keyring=True, dry_run=self.dry_run)
        console.ok(f"pacman uses up to {count} parallel downloads")

    def select_disk(self):
        carried = self.store.get("DISK")
        if carried:
            # --disk names the device explicitly; no prompt
            self.engine.preflight(confirmed=True, disk=carried)
            return {"DISK": carried}

        disks = devices.list_disks()
        console.warn("From this point there is no going back! Proceed with caution.")
        console.info("Available disks:")
        print(devices.format_disks(disks), flush=True)
        choice = devices.default_disk(disks, MIN_DISK_BYTES)
        if choice is None:
            raise PreconditionError("no disk of at least 40GiB found; pass one with -d, --disk DISK")
        console.info(f"Disk chosen: {choice.name}")
        if self.flags.assume_yes:
            answer = "yes"
        else:
            answer = console.ask_choice("Select disk for installation", ("yes", "no"), reader=self.reader)
        if answer != "yes":
            raise PreconditionError("disk not confirmed; pass the installation disk with -d, --disk DISK")
        self.engine.preflight(confirmed=True, disk=choice.name)
        console.ok()
        return {"DISK": choice.name}

    def install_core_packages(self):
        console.info("Installing core packages on the new system")
        names = packages.read_package_list(packages_path_for(self.tree, "core"))
        packages.pacstrap(names, self.mnt, dry_run=self.dry_run)
        console.ok()

    def generate_fstab(self):
        console.info("Generating fstab")
        r = run(["genfstab", "-U", self.mnt], check=True, dry_run=self.dry_run)
        if self.dry_run:
            return
        fstab = os.path.join(self.mnt, "etc", "fstab")
        with open(fstab, "a", encoding="utf-8") as fh:
            fh.write(r.out)
            fh.flush()
            os.fsync(fh.fileno())
        trace("stage1.fstab", path=fstab, lines=len(r.out.splitlines()))
        console.ok()

    def context(self) -> StageContext:
        return StageContext(firmware=self.firmware, disk=self.engine.disk)

    def enter_environment(self):
        console.info("Copying all information to installation disk")
        ctx = self.context()
        dest = handoff.copy_tree(self.tree, self.mnt, dry_run=self.dry_run)
        handoff.write_context(ctx, dest, dry_run=self.dry_run)
        console.info("(STAGE 2) Entering new environment")
        handoff.restore_streams(self.mirror)
        handoff.enter(ctx, self.mnt, dry_run=self.dry_run)

    def reboot(self):
        console.info("Take out the installation media after rebooting is finished")
        console.info("Rebooting")
        self.sleep(REBOOT_DELAY)
        run(["reboot"], check=True)


def validate_disk_argument(name: str, store: CheckpointStore) -> str:
    """Check ``--disk`` against lsblk and any disk already carried by the store."""

    name = devices.disk_name(name)
    if not devices.disk_exists(name):
        raise PreconditionError(f"wrong disk choice: {name}; list available disks with -l, --list")
    carried = store.get("DISK")
    if carried and carried != name:
        raise PreconditionError(
            f"checkpoint file {store.path} belongs to disk {carried}; run with -c, --clean to start over"
        )
    return name
