"""Host preparation run while the daemon boots: user, directories, log rotation, timezone."""

from __future__ import annotations

import logging
import os
import pwd
import re
import stat
import subprocess
import zoneinfo
from pathlib import Path

from wings.config import Configuration, SystemConfiguration, get_config, update_config

log = logging.getLogger(__name__)

_OS_RELEASE_PATHS = ("/etc/os-release", "/usr/lib/os-release")
_TIMEZONE_FILE = "/etc/timezone"
_TIMEDATECTL_ZONE = re.compile(rb"Time zone: ([\w/]+)")
_TIMEZONE_JUNK = re.compile(r"[^a-z_/]+", re.IGNORECASE)

_LOGROTATE_TEMPLATE = """{log_directory}/wings.log {{
    size 10M
    compress
    delaycompress
    dateext
    maxage 7
    missingok
    notifempty
    postrotate
        /usr/bin/systemctl kill -s HUP wings.service >/dev/null 2>&1 || true
    endscript
}}"""


def _parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def get_system_name(os_release_path: str | None = None) -> str:
    """Return the ID field of the os-release file, or an empty string if it has none."""
    paths = [os_release_path] if os_release_path else list(_OS_RELEASE_PATHS)
    for path in paths:
        try:
            with open(path, encoding="utf-8") as handle:
                text = handle.read()
        except FileNotFoundError:
            continue
        return _parse_os_release(text).get("ID", "")
    raise FileNotFoundError(f"no os-release file found in {', '.join(paths)}")


def _store_user(username: str, uid: int, gid: int) -> None:
    def apply(config: Configuration) -> None:
        config.system.username = username
        config.system.user.uid = uid
        config.system.user.gid = gid

    update_config(apply)


def ensure_pterodactyl_user() -> None:
    """Make sure the system user owning server files exists and record its ids."""
    sys_name = get_system_name()
    config = get_config()

    # Running inside a container image: the user is described by the environment.
    if sys_name == "distroless":
        _store_user(
            os.environ.get("WINGS_USERNAME") or "pterodactyl",
            int(os.environ.get("WINGS_UID") or "988"),
            int(os.environ.get("WINGS_GID") or "988"),
        )
        return

    if config.system.user.rootless.enabled:
        log.info("rootless mode is enabled, skipping user creation...")
        entry = pwd.getpwuid(os.getuid())
        _store_user(entry.pw_name, entry.pw_uid, entry.pw_gid)
        return

    username = config.system.username
    log.info("checking for pterodactyl system user", extra={"fields": {"username": username}})
    try:
        entry = pwd.getpwnam(username)
    except KeyError:
        pass
    else:
        _store_user(username, entry.pw_uid, entry.pw_gid)
        return

    command = ["useradd", "--system", "--no-create-home", "--shell", "/usr/sbin/nologin", username]
    if sys_name.startswith("alpine"):
        command = ["adduser", "-S", "-D", "-H", "-G", username, "-s", "/sbin/nologin", username]
        subprocess.run(["addgroup", "-S", username], check=True, capture_output=True)
    subprocess.run(command, check=True, capture_output=True)

    entry = pwd.getpwnam(username)
    _store_user(username, entry.pw_uid, entry.pw_gid)


def configure_directories() -> None:
    """Create the root, data, archive and backup directories readable only by the owner.

    A data directory that is a symlink is replaced in the configuration by its
    resolved location.
    """
    system = get_config().system
    log.debug("ensuring root data directory exists", extra={"fields": {"path": system.root_directory}})
    os.makedirs(system.root_directory, 0o700, exist_ok=True)

    data = system.data
    try:
        resolved = str(Path(data).resolve(strict=True))
    except FileNotFoundError:
        resolved = data
    if resolved != data:
        data = resolved
        update_config(lambda c: setattr(c.system, "data", resolved))

    for directory in (data, system.archive_directory, system.backup_directory):
        log.debug("ensuring data directory exists", extra={"fields": {"path": directory}})
        os.makedirs(directory, 0o700, exist_ok=True)


def render_logrotate(system: SystemConfiguration) -> str:
    """Return the logrotate configuration for the daemon's log file."""
    return _LOGROTATE_TEMPLATE.format(log_directory=system.log_directory)


def enable_log_rotation(directory: str = "/etc/logrotate.d") -> bool:
    """Write a logrotate file for the daemon if the directory exists and has none.

    Returns True when a file was written.
    """
    system = get_config().system
    if not system.enable_log_rotate:
        log.info("skipping log rotate configuration, disabled in wings config file")
        return False

    try:
        info = os.stat(directory)
    except FileNotFoundError:
        return False
    if not stat.S_ISDIR(info.st_mode):
        return False

    target = os.path.join(directory, "wings")
    try:
        os.stat(target)
    except FileNotFoundError:
        pass
    else:
        return False

    log.info("no log rotation configuration found: adding file now")
    try:
        with open(target, "w", encoding="utf-8") as handle:
            handle.write(render_logrotate(system))
    except OSError as exc:
        raise OSError(f"config: failed to write logrotate to disk: {exc}") from exc
    return True


def _validate_timezone(name: str) -> None:
    if name in ("", "UTC", "Local"):
        return
    try:
        zoneinfo.ZoneInfo(name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"the supplied timezone {name} is invalid") from exc


def _store_timezone(name: str) -> None:
    update_config(lambda c: setattr(c.system, "timezone", name))


def configure_timezone() -> None:
    """Fill in the timezone if it is missing, then validate the value in use."""
    timezone = get_config().system.timezone
    env = os.environ.get("TZ", "")
    if not timezone and env:
        timezone = env

    if not timezone:
        try:
            with open(_TIMEZONE_FILE, encoding="utf-8") as handle:
                timezone = handle.read()
        except FileNotFoundError:
            _store_timezone("UTC")
            try:
                out = subprocess.run(
                    ["timedatectl"], capture_output=True, timeout=5, check=True
                ).stdout
            except (OSError, subprocess.SubprocessError) as exc:
                log.warning(
                    'failed to execute "timedatectl" to determine system timezone, falling back to UTC',
                    extra={"fields": {"error": exc}},
                )
                return
            match = _TIMEDATECTL_ZONE.search(out)
            if match is None or not match.group(1):
                log.warning('failed to parse timezone from "timedatectl" output, falling back to UTC')
                return
            timezone = match.group(1).decode()
        except OSError as exc:
            raise OSError(f"config: failed to open timezone file: {exc}") from exc

    timezone = _TIMEZONE_JUNK.sub("", timezone)
    _store_timezone(timezone)
    _validate_timezone(timezone)