"""Load and validate the installation configuration before anything destructive."""

from __future__ import annotations

import os
import re
import shlex
from typing import Dict, Iterable, Mapping

from .errors import ConfigError
from .executil import trace
from .model import Configuration, DesktopEnvironment

ZONEINFO_DIR = "/usr/share/zoneinfo"
LOCALE_GEN = "/etc/locale.gen"

YES_NO = ("yes", "no")
_TZ_EXCLUDED_TREES = ("posix", "right", "Etc")
_HOSTNAME_LABEL = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


def read_config_file(path: str) -> Dict[str, str]:
    """Parse shell-style ``KEY=value`` assignments; comments and blanks ignored."""

    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read()
    except FileNotFoundError:
        raise ConfigError("CONFIG", f"configuration file not found: {path}") from None

    raw: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), 1):
        try:
            tokens = shlex.split(line, comments=True)
        except ValueError as exc:
            raise ConfigError("CONFIG", f"{path}:{lineno}: {exc}") from None
        if tokens and tokens[0] == "export":
            tokens = tokens[1:]
        if not tokens:
            continue
        key, sep, value = tokens[0].partition("=")
        if not sep or not key:
            trace("config.skip_line", path=path, lineno=lineno)
            continue
        raw[key] = value
    return raw


def _is_tzif(path: str) -> bool:
    try:
        with open(path, "rb") as fh:
            return fh.read(4) == b"TZif"
    except OSError:
        return False


def available_timezones(zoneinfo_dir: str = ZONEINFO_DIR) -> list[str]:
    zones: list[str] = []
    for root, dirs, files in os.walk(zoneinfo_dir):
        rel_root = os.path.relpath(root, zoneinfo_dir)
        if rel_root == ".":
            dirs[:] = [d for d in dirs if d not in _TZ_EXCLUDED_TREES]
        for name in files:
            full = os.path.join(root, name)
            if _is_tzif(full):
                zones.append(os.path.normpath(os.path.relpath(full, zoneinfo_dir)))
    return sorted(zones)


def is_timezone(value: str, zoneinfo_dir: str = ZONEINFO_DIR) -> bool:
    norm = os.path.normpath(value)
    if norm.startswith(("/", "..")) or norm.split(os.sep, 1)[0] in _TZ_EXCLUDED_TREES:
        return False
    return _is_tzif(os.path.join(zoneinfo_dir, norm))


def available_locales(locale_gen: str = LOCALE_GEN) -> list[str]:
    locales: list[str] = []
    try:
        with open(locale_gen, "r", encoding="utf-8") as fh:
            for line in fh:
                entry = line.strip().lstrip("#").strip()
                parts = entry.split()
                # real entries are "<name> <charset>"
                if len(parts) == 2 and parts[1].isupper():
                    locales.append(parts[0])
    except FileNotFoundError:
        trace("config.locale_gen_missing", path=locale_gen)
    return locales


def _require(raw: Mapping[str, str], key: str) -> str:
    if key not in raw:
        raise ConfigError(key, "not found in configuration file")
    value = raw[key].strip()
    if not value:
        raise ConfigError(key, "cannot be empty")
    return value


def _yes_no(raw: Mapping[str, str], key: str) -> bool:
    value = _require(raw, key)
    if value not in YES_NO:
        raise ConfigError(key, f"must be either 'yes' or 'no', got {value!r}")
    return value == "yes"


def _valid_hostname(value: str) -> bool:
    if len(value) > 253:
        return False
    return all(_HOSTNAME_LABEL.match(label) for label in value.split("."))


def validate(
    raw: Mapping[str, str],
    *,
    zoneinfo_dir: str = ZONEINFO_DIR,
    locale_gen: str = LOCALE_GEN,
) -> Configuration:
    """Return a Configuration or raise ConfigError naming the first bad key."""

    timezone = _require(raw, "TIMEZONE")
    if not is_timezone(timezone, zoneinfo_dir):
        raise ConfigError("TIMEZONE", f"must name a zone under {zoneinfo_dir}, got {timezone!r}")

    locale = _require(raw, "LANG")
    if locale not in available_locales(locale_gen):
        raise ConfigError("LANG", f"must be listed in {locale_gen}, got {locale!r}")

    hostname = _require(raw, "HOSTNAME")
    if not _valid_hostname(hostname):
        raise ConfigError("HOSTNAME", f"not a valid hostname: {hostname!r}")

    luks = _yes_no(raw, "LUKS_AND_LVM")
    single = _yes_no(raw, "SINGLE_PARTITION")
    desktop = _yes_no(raw, "DESKTOP")

    de = None
    if desktop or raw.get("DE", "").strip():
        value = _require(raw, "DE")
        try:
            de = DesktopEnvironment(value)
        except ValueError:
            choices = ", ".join(repr(d.value) for d in DesktopEnvironment)
            raise ConfigError("DE", f"must be one of {choices}, got {value!r}") from None

    cfg = Configuration(
        timezone=timezone,
        locale=locale,
        hostname=hostname,
        luks_and_lvm=luks,
        single_partition=single,
        desktop=desktop,
        desktop_environment=de if desktop else None,
    )
    trace("config.valid", **{k: (v.value if hasattr(v, "value") else v) for k, v in vars(cfg).items()})
    return cfg


def load_configuration(
    path: str,
    *,
    zoneinfo_dir: str = ZONEINFO_DIR,
    locale_gen: str = LOCALE_GEN,
) -> Configuration:
    return validate(read_config_file(path), zoneinfo_dir=zoneinfo_dir, locale_gen=locale_gen)


def hint_values(key: str, *, zoneinfo_dir: str = ZONEINFO_DIR, locale_gen: str = LOCALE_GEN) -> Iterable[str]:
    """Reference values worth showing the operator after a failure on ``key``."""

    if key == "TIMEZONE":
        return available_timezones(zoneinfo_dir)
    if key == "LANG":
        return available_locales(locale_gen)
    if key == "DE":
        return [d.value for d in DesktopEnvironment]
    if key in ("LUKS_AND_LVM", "SINGLE_PARTITION", "DESKTOP"):
        return list(YES_NO)
    return []
