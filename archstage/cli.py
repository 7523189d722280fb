"""Command line entry points for both installer phases."""

from __future__ import annotations

import argparse
import json
import sys
import time
from typing import Any, Dict, Iterable, Optional

from . import console, devices, executil, paths
from .checkpoint import CheckpointStore
from .config import hint_values, load_configuration
from .engine import clean
from .errors import RESULT_CODES, ConfigError, ExecutionError, result_for
from .executil import append_jsonl, fmt_cmd, resolve_log_path, trace
from .handoff import context_from_argv
from .model import Flags
from .pipeline import run_steps
from .retry import SecretSource, static_secret
from .stage1 import PhaseOne, validate_disk_argument
from .stage2 import PhaseTwo

HINT_LIMIT = 20

USAGE_EPILOG = """\
Configuration is read from config/installation_config.conf beside the
script. Completed steps are recorded in .<script>.env so a re-run resumes
where the previous one stopped; use -c, --clean to start over.

Example:
  ./stage1_install.py --disk sda
"""


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        console.fail(message)
        raise SystemExit(RESULT_CODES["FAIL_CONFIG"])


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="stage1_install.py",
        description="Prepare the disk and install the base system (phase one).",
        epilog=USAGE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-l", "--list", action="store_true", help="list the available disks")
    parser.add_argument("-c", "--clean", action="store_true",
                        help="clean the environment for a fresh usage of the script")
    parser.add_argument("-d", "--disk", metavar="DISK", help="provide the disk for installation")
    parser.add_argument("--config", metavar="PATH", default=None, help="alternative configuration file")
    parser.add_argument("--passphrase-file", metavar="PATH", default=None,
                        help="read the disk encryption passphrase from PATH instead of prompting")
    parser.add_argument("--yes", dest="assume_yes", action="store_true", help="accept the proposed disk")
    parser.add_argument("--dry-run", action="store_true", help="record commands without running them")
    return parser


def build_stage2_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="stage2_install.py", description="Configure the installed system (phase two).")
    parser.add_argument("mode", nargs="?", help="firmware mode chosen by phase one (UEFI or BIOS)")
    parser.add_argument("disk", nargs="?", help="disk the system was installed on")
    parser.add_argument("--config", metavar="PATH", default=None, help="alternative configuration file")
    parser.add_argument("--dry-run", action="store_true", help="record commands without running them")
    return parser


def _emit_result(kind: str, extra: Optional[Dict[str, Any]] = None) -> int:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    log_path = resolve_log_path()
    if log_path:
        payload.setdefault("log_path", log_path)
        append_jsonl(log_path, payload)
    if not kind.endswith("_OK"):
        print(json.dumps(payload, sort_keys=True, separators=(",", ":")), file=sys.stderr)
    return RESULT_CODES.get(kind, 1)


def describe_failure(exc: BaseException) -> str:
    """``<action>: <message>`` for the operator."""

    if isinstance(exc, ExecutionError):
        cmd = exc.cmd if isinstance(exc.cmd, (list, tuple)) else [str(exc.cmd)]
        message = f"command `{fmt_cmd(cmd)}` exited with status {exc.returncode}"
        detail = (exc.stderr or "").strip() if isinstance(exc.stderr, str) else ""
        if detail:
            message = f"{message}: {detail.splitlines()[-1]}"
    elif isinstance(exc, KeyboardInterrupt):
        message = "interrupted"
    else:
        message = str(exc) or type(exc).__name__
    action = getattr(exc, "action", None)
    if isinstance(exc, ConfigError):
        action = action or "configuration"
    return f"{action}: {message}" if action else message


def _show_hints(values: Iterable[str]):
    values = list(values)
    if not values:
        return
    console.info("Examples:")
    for value in values[:HINT_LIMIT]:
        print(f"  {value}", flush=True)
    if len(values) > HINT_LIMIT:
        print(f"  ... and {len(values) - HINT_LIMIT} more", flush=True)


def _fail(exc: BaseException) -> int:
    kind = result_for(exc)
    line = describe_failure(exc)
    console.fail(line)
    if isinstance(exc, ConfigError):
        _show_hints(hint_values(exc.key))
    trace("cli.failed", result=kind, error=line, kind=type(exc).__name__)
    return _emit_result(kind, {"error": line, "action": getattr(exc, "action", None)})


def _secret_from_file(path: Optional[str]) -> Optional[SecretSource]:
    if not path:
        return None
    try:
        with open(path, encoding="utf-8") as fh:
            value = fh.read().rstrip("\n")
    except OSError as exc:
        raise ConfigError("PASSPHRASE_FILE", f"cannot read {path}: {exc.strerror}") from exc
    if not value:
        raise ConfigError("PASSPHRASE_FILE", f"{path} is empty")
    return static_secret(value)


def _list_disks() -> int:
    console.info("Listing disks")
    print(devices.format_disks(devices.list_disks()), flush=True)
    console.ok()
    return _emit_result("LIST_OK")


def _clean(store: CheckpointStore, dry_run: bool) -> int:
    console.info("Starting cleaning")
    clean(paths.TARGET_ROOT, store.get("SWAP_P"), container=bool(store.get("CONTAINER_P")), dry_run=dry_run)
    if not dry_run:
        store.reset()
    console.ok()
    return _emit_result("CLEAN_OK", {"checkpoint": store.path})


def _phase_one(args, script: str, store: CheckpointStore, mirror: console.LogMirror) -> int:
    tree = paths.script_dir(script)
    cfg = load_configuration(args.config or paths.config_path_for(tree))
    secret = _secret_from_file(args.passphrase_file)
    if args.disk:
        disk = validate_disk_argument(args.disk, store)
        if store.get("DISK") != disk:
            store.record(DISK=disk)
    console.info("(STAGE 1) Preparing the new installation")
    phase = PhaseOne(
        cfg,
        store,
        tree,
        flags=Flags(dry_run=args.dry_run, assume_yes=args.assume_yes),
        secret=secret,
        mirror=mirror,
    )
    result = run_steps(phase.steps(), store, phase="stage1")
    return _emit_result("STAGE1_OK", {"ran": result.ran_steps, "skipped": result.skipped_steps})


def main(argv: Optional[list[str]] = None, script: Optional[str] = None) -> int:
    script = script or sys.argv[0]
    args = build_parser().parse_args(argv)
    executil.configure(paths.trace_path_for(script))
    store = CheckpointStore(paths.checkpoint_path_for(script))
    mirror = console.LogMirror(paths.log_path_for(script))
    try:
        if args.list:
            return _list_disks()
        if args.clean:
            return _clean(store, args.dry_run)
        mirror.start()
        return _phase_one(args, script, store, mirror)
    except (Exception, KeyboardInterrupt) as exc:
        return _fail(exc)
    finally:
        mirror.stop()


def stage2_main(argv: Optional[list[str]] = None, script: Optional[str] = None) -> int:
    script = script or sys.argv[0]
    args = build_stage2_parser().parse_args(argv)
    tree = paths.script_dir(script)
    executil.configure(paths.trace_path_for(script))
    store = CheckpointStore(paths.checkpoint_path_for(script))
    mirror = console.LogMirror(paths.log_path_for(script))
    try:
        mirror.start()
        ctx = context_from_argv([a for a in (args.mode, args.disk) if a], tree)
        cfg = load_configuration(args.config or paths.config_path_for(tree))
        phase = PhaseTwo(ctx, cfg, store, tree, flags=Flags(dry_run=args.dry_run), mirror=mirror)
        result = run_steps(phase.steps(), store, phase="stage2")
        return _emit_result("STAGE2_OK", {"ran": result.ran_steps, "skipped": result.skipped_steps})
    except (Exception, KeyboardInterrupt) as exc:
        return _fail(exc)
    finally:
        mirror.stop()


if __name__ == "__main__":
    sys.exit(main())
