"""Host inspection helpers: OS identity, privileges, packages and accounts."""

import datetime
import logging
import os
import platform
import pwd
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .commands import CommandRunner
from .log import LOGGER_NAME

# Default NAME_REGEX of adduser/useradd on Debian and Ubuntu.
USERNAME_PATTERN = re.compile(r"[a-z_][a-z0-9_-]*\$?")
USERNAME_MAX_LENGTH = 32

INSTALLED_STATES = ("ii", "hi")


@dataclass(frozen=True)
class UserAccount:
    """A local account as recorded in the password database."""

    name: str
    uid: int
    gid: int
    home: Path


def get_os_name(runner: CommandRunner) -> str:
    """
    Return the distributor ID of the running system.

    `lsb_release -si` is authoritative; /etc/os-release is consulted when
    lsb_release is unavailable.
    """
    result = runner.run(["lsb_release", "-si"], capture_output=True)
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    try:
        return platform.freedesktop_os_release().get("NAME", "")
    except OSError:
        return ""


def is_root() -> bool:
    return os.geteuid() == 0


def has_internet_connection(runner: CommandRunner, host: str, timeout: int) -> bool:
    """Send a single ping to host and report whether it answered."""
    return runner.succeeds(
        ["ping", "-c", "1", "-W", str(timeout), host],
        capture_output=True,
        timeout=timeout + 5,
    )


def is_package_installed(runner: CommandRunner, package: str) -> bool:
    """Check the dpkg database for an installed package of exactly that name."""
    result = runner.run(["dpkg", "-l"], capture_output=True)
    if result.returncode != 0:
        return False
    for line in result.stdout.splitlines():
        fields = line.split()
        if len(fields) < 2 or fields[0] not in INSTALLED_STATES:
            continue
        if fields[1].split(":", 1)[0] == package:
            return True
    return False


def is_valid_username(username: str) -> bool:
    return (
        0 < len(username) <= USERNAME_MAX_LENGTH
        and USERNAME_PATTERN.fullmatch(username) is not None
    )


def lookup_user(username: str) -> Optional[UserAccount]:
    """Return the account for username, or None if it does not exist."""
    try:
        record = pwd.getpwnam(username)
    except KeyError:
        return None
    return UserAccount(
        name=record.pw_name,
        uid=record.pw_uid,
        gid=record.pw_gid,
        home=Path(record.pw_dir),
    )


def backup_file(file_path: Union[str, Path]) -> Optional[Path]:
    """Create a timestamped copy of a file next to it."""
    logger = logging.getLogger(LOGGER_NAME)
    file_path = Path(file_path)
    if not file_path.is_file():
        logger.debug(f"File {file_path} not found; skipping backup.")
        return None

    timestamp = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    backup_path = file_path.with_name(f"{file_path.name}.bak.{timestamp}")
    try:
        shutil.copy2(file_path, backup_path)
        logger.info(f"Backed up {file_path} to {backup_path}")
        return backup_path
    except OSError as e:
        logger.warning(f"Failed to backup {file_path}: {e}")
        return None
