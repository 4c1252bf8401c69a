"""
Ubuntu Host Hardening Workflow

Runs the hardening stages in a fixed order:

  - Preflight (Ubuntu only, root only; failure here exits with status 1)
  - System update and installation of fail2ban, net-tools and ufw
  - UFW firewall enablement with SSH allowed
  - Privileged user creation or selection with passwordless sudo
  - SSH key installation, key-only login and root login lockout
  - Fail2Ban SSH jail

Every stage after preflight is best effort: a failure is reported and
recorded, and the next stage still runs. Nothing is retried or rolled back.
"""

import base64
import binascii
import logging
import os
import sys
import tempfile
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from . import system
from .commands import CommandRunner
from .config import Config
from .fail2ban import write_ssh_jail
from .log import LOGGER_NAME
from .prompts import ConsoleInputProvider, InputProvider
from .sshd_config import apply_sshd_settings
from .system import UserAccount
from .ui import (
    NordColors,
    console,
    display_panel,
    print_error,
    print_section,
    print_status_report,
    print_step,
    print_success,
    print_warning,
)

# Key types accepted by OpenSSH in authorized_keys.
PUBLIC_KEY_TYPES = (
    "ssh-ed25519",
    "ssh-rsa",
    "ssh-dss",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-nistp256@openssh.com",
    "ssh-ed25519-cert-v01@openssh.com",
    "ssh-rsa-cert-v01@openssh.com",
    "ssh-dss-cert-v01@openssh.com",
    "ecdsa-sha2-nistp256-cert-v01@openssh.com",
    "ecdsa-sha2-nistp384-cert-v01@openssh.com",
    "ecdsa-sha2-nistp521-cert-v01@openssh.com",
    "sk-ssh-ed25519-cert-v01@openssh.com",
    "sk-ecdsa-sha2-nistp256-cert-v01@openssh.com",
)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
APT_CONFFILE_OPTIONS = [
    "-o",
    "Dpkg::Options::=--force-confdef",
    "-o",
    "Dpkg::Options::=--force-confold",
]


# ----------------------------------------------------------------
# Data Structures
# ----------------------------------------------------------------
class StageStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StageOutcome:
    """How one hardening stage ended."""

    name: str
    status: StageStatus
    message: str = ""


@dataclass(frozen=True)
class SshPolicy:
    """
    SSH posture as changed by this run.

    These flags only report what was configured; enforcement lives in the
    daemon configuration.
    """

    password_authentication: bool = True
    pubkey_authentication: bool = False
    root_login: bool = True


@dataclass(frozen=True)
class HardeningReport:
    """Everything the summary needs, produced once at the end of a run."""

    username: Optional[str]
    ssh: SshPolicy
    stages: Tuple[StageOutcome, ...]


def status_label(enabled: bool) -> str:
    return "Enabled" if enabled else "Disabled"


def _blob_matches_type(key_type: str, blob: str) -> bool:
    """
    Check a base64 key blob against its declared type.

    In the OpenSSH wire format a key blob opens with its own type name,
    prefixed by a 4-byte big-endian length, and key material follows. A
    plain key's material is a run of length-prefixed fields that fills the
    blob exactly, so a truncated paste fails the check.
    """
    try:
        data = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError):
        return False
    name = key_type.encode()
    header = len(name).to_bytes(4, "big") + name
    if not data.startswith(header) or len(data) == len(header):
        return False
    if key_type.endswith("-cert-v01@openssh.com"):
        return True

    offset = len(header)
    while offset < len(data):
        if offset + 4 > len(data):
            return False
        offset += 4 + int.from_bytes(data[offset : offset + 4], "big")
    return offset == len(data)


def looks_like_public_key(key: str) -> bool:
    """True if key is one authorized_keys line holding a well-formed public key."""
    if not key or "\n" in key:
        return False
    parts = key.split()
    # Options may precede the key type, so any position can start the key.
    for i, part in enumerate(parts[:-1]):
        if part in PUBLIC_KEY_TYPES and _blob_matches_type(part, parts[i + 1]):
            return True
    return False


def handle_error(msg: str, code: int = 1) -> None:
    """
    Report a fatal error and exit the script.

    :param msg: Error message to print and log.
    :param code: Exit code.
    """
    print_error(msg)
    logging.getLogger(LOGGER_NAME).error(f"{msg} (Exit Code: {code})")
    sys.exit(code)


# ----------------------------------------------------------------
# Main Hardening Class
# ----------------------------------------------------------------
class UbuntuHardening:
    """Sequential hardening of a fresh Ubuntu host."""

    def __init__(
        self,
        config: Optional[Config] = None,
        prompts: Optional[InputProvider] = None,
        runner: Optional[CommandRunner] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or Config()
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.prompts = prompts or ConsoleInputProvider()
        self.runner = runner or CommandRunner(self.logger)

    def run(self) -> HardeningReport:
        """
        Run every stage after preflight and return the resulting report.

        Preflight is a separate step so the caller can refuse to touch the
        host, the log file included, before anything else happens.
        """
        self.logger.debug(f"Configuration: {self.config.to_dict()}")
        stages: List[StageOutcome] = [
            self.phase_system_update(),
            self.phase_firewall(),
        ]

        user_outcome, account = self.phase_user_setup()
        stages.append(user_outcome)

        ssh_outcome, ssh_policy = self.phase_ssh_hardening(account)
        stages.append(ssh_outcome)

        stages.append(self.phase_fail2ban())

        for outcome in stages:
            self.logger.info(
                f"Stage {outcome.name}: {outcome.status.value} {outcome.message}".rstrip()
            )

        return HardeningReport(
            username=account.name if account else None,
            ssh=ssh_policy,
            stages=tuple(stages),
        )

    # ----------------------------------------------------------------
    # Phase 0: Preflight
    # ----------------------------------------------------------------
    def phase_preflight(self) -> None:
        """Exit with status 1 unless this is an Ubuntu host and we are root."""
        print_section("Preflight Checks")
        os_name = system.get_os_name(self.runner)
        if os_name != self.config.SUPPORTED_OS:
            handle_error(
                f"This script is only for {self.config.SUPPORTED_OS} "
                f"(detected: {os_name or 'unknown'}). Exiting."
            )
        if not system.is_root():
            handle_error("This script must be run as root. Exiting.")
        print_success(f"{os_name} host detected, running as root.")

    # ----------------------------------------------------------------
    # Phase 1: System Update & Package Installation
    # ----------------------------------------------------------------
    def phase_system_update(self) -> StageOutcome:
        print_section("System Update & Package Installation")
        name = "system_update"

        with console.status("Checking network connectivity..."):
            online = system.has_internet_connection(
                self.runner,
                self.config.CONNECTIVITY_HOST,
                self.config.CONNECTIVITY_TIMEOUT,
            )
        if not online:
            print_warning(
                "No internet connectivity. Skipping system update and package installation."
            )
            return StageOutcome(name, StageStatus.SKIPPED, "No internet connectivity")

        problems = []
        print_step("Updating package index...")
        if self.runner.succeeds(["apt-get", "update"], env=APT_ENV):
            print_step("Upgrading system packages...")
            if not self.runner.succeeds(
                ["apt-get", "upgrade", "-y", *APT_CONFFILE_OPTIONS], env=APT_ENV
            ):
                problems.append("Package upgrade failed")
        else:
            problems.append("Package index refresh failed; upgrade skipped")

        packages = self.config.SECURITY_PACKAGES
        print_step(f"Installing {', '.join(packages)}...")
        if not self.runner.succeeds(
            ["apt-get", "install", "-y", *APT_CONFFILE_OPTIONS, *packages],
            env=APT_ENV,
        ):
            problems.append(f"Installation of {', '.join(packages)} failed")

        if problems:
            for problem in problems:
                print_warning(problem)
            return StageOutcome(name, StageStatus.FAILED, "; ".join(problems))

        print_success("System updated and essential security tools installed.")
        return StageOutcome(name, StageStatus.SUCCESS, "Packages updated and installed")

    # ----------------------------------------------------------------
    # Phase 2: UFW Firewall
    # ----------------------------------------------------------------
    def phase_firewall(self) -> StageOutcome:
        print_section("Configure UFW Firewall")
        name = "firewall"

        if not system.is_package_installed(self.runner, "ufw"):
            print_error(
                "UFW is not installed. Skipping UFW configuration due to missing package."
            )
            return StageOutcome(name, StageStatus.SKIPPED, "ufw not installed")

        print_step("Configuring UFW firewall...")
        for cmd in (["ufw", "--force", "enable"], ["ufw", "allow", "ssh"]):
            if not self.runner.succeeds(cmd, capture_output=True):
                print_error(f"Firewall command failed: {' '.join(cmd)}")
                return StageOutcome(name, StageStatus.FAILED, f"{' '.join(cmd)} failed")

        print_success("[SECURE] Firewall setup complete. UFW is enabled.")
        return StageOutcome(name, StageStatus.SUCCESS, "UFW enabled, SSH allowed")

    # ----------------------------------------------------------------
    # Phase 3: Privileged User
    # ----------------------------------------------------------------
    def phase_user_setup(self) -> Tuple[StageOutcome, Optional[UserAccount]]:
        print_section("Add or Configure a Privileged User")
        name = "user_setup"

        create = self.prompts.confirm(
            "Would you like to create a new privileged user?", default=False
        )
        username = self._ask_username(
            "Enter the new username"
            if create
            else "Enter the existing username to grant privileges"
        )
        if username is None:
            print_error("No valid username provided. Skipping privileged user setup.")
            return StageOutcome(name, StageStatus.FAILED, "No valid username"), None

        account = system.lookup_user(username)
        if create:
            if account is not None:
                print_warning(
                    f"User {username} already exists; "
                    "granting privileges to the existing account."
                )
            else:
                account = self._create_user(username)
                if account is None:
                    message = f"Could not create {username}"
                    return StageOutcome(name, StageStatus.FAILED, message), None
        elif account is None:
            print_error(
                f"User {username} does not exist. Skipping privileged user setup."
            )
            message = f"{username} does not exist"
            return StageOutcome(name, StageStatus.FAILED, message), None

        if not self._grant_sudo(account.name):
            return StageOutcome(name, StageStatus.FAILED, "sudo grant failed"), account
        message = f"{account.name} has passwordless sudo"
        return StageOutcome(name, StageStatus.SUCCESS, message), account

    def _ask_username(self, question: str) -> Optional[str]:
        for _ in range(self.config.USERNAME_ATTEMPTS):
            username = self.prompts.ask(question)
            if system.is_valid_username(username):
                return username
            print_error(
                f"'{username}' is not a valid username "
                "(lowercase letters, digits, '_' and '-', starting with a letter or '_')."
            )
        return None

    def _create_user(self, username: str) -> Optional[UserAccount]:
        print_step(f"Creating user {username}...")
        if not self.runner.succeeds(
            ["useradd", "-m", "-s", self.config.DEFAULT_SHELL, username]
        ):
            print_error(f"Failed to create user {username}.")
            return None

        account = system.lookup_user(username)
        if account is None:
            print_error(f"User {username} was not found after creation.")
            return None

        self._set_password(username)
        print_success(f"User {username} created.")
        return account

    def _set_password(self, username: str) -> bool:
        password = self.prompts.ask_secret(f"Enter a password for {username}")
        retyped = self.prompts.ask_secret("Retype the password")

        if not password:
            print_warning(f"Empty password; the password for {username} was left unset.")
            return False
        if password != retyped:
            print_warning(
                f"Passwords do not match; the password for {username} was left unset. "
                f"Set it later with 'passwd {username}'."
            )
            return False

        result = self.runner.run(
            ["chpasswd"], input=f"{username}:{password}\n", capture_output=True
        )
        if result.returncode != 0:
            print_warning(f"Failed to set the password for {username}.")
            return False
        print_success(f"Password set for {username}.")
        return True

    def _grant_sudo(self, username: str) -> bool:
        """Install a validated NOPASSWD rule for username under the sudoers directory."""
        sudoers_dir = self.config.SUDOERS_DIR
        target = sudoers_dir / username
        tmp_path = None
        try:
            sudoers_dir.mkdir(mode=0o750, parents=True, exist_ok=True)
            # sudo ignores files in sudoers.d whose names contain a dot.
            fd, tmp_path = tempfile.mkstemp(dir=sudoers_dir, prefix=f".{username}.")
            with os.fdopen(fd, "w") as f:
                f.write(f"{username} ALL=(ALL) NOPASSWD:ALL\n")
            os.chmod(tmp_path, 0o440)

            if not self.runner.succeeds(["visudo", "-cf", tmp_path], capture_output=True):
                print_error(
                    f"Generated sudoers rule for {username} failed validation. "
                    "No privileges granted."
                )
                return False

            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as e:
            print_error(f"Failed to write {target}: {e}")
            return False
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        self.logger.info(f"Wrote sudoers rule {target}")
        print_success(f"[SECURE] {username} now has passwordless sudo access.")
        return True

    # ----------------------------------------------------------------
    # Phase 4: SSH Hardening
    # ----------------------------------------------------------------
    def phase_ssh_hardening(
        self, account: Optional[UserAccount]
    ) -> Tuple[StageOutcome, SshPolicy]:
        print_section("SSH Configuration")
        name = "ssh_hardening"
        policy = SshPolicy()
        problems: List[str] = []

        if account is None:
            print_warning("No privileged user was provisioned. Skipping SSH key setup.")
        elif self.prompts.confirm(
            f"Would you like to set up SSH key authentication for {account.name}?",
            default=True,
        ):
            if self._install_public_key(account):
                policy = replace(policy, pubkey_authentication=True)
            else:
                problems.append("Public key not installed")
        else:
            print_warning("You have chosen password authentication. This is less secure.")

        settings = {}
        # Key-only login is never offered without an installed key.
        if policy.pubkey_authentication:
            if self.prompts.confirm(
                "Would you like to enforce PUBKEY SSH login (disabling SSH password login)?",
                default=True,
            ):
                settings["PasswordAuthentication"] = "no"
                settings["PubkeyAuthentication"] = "yes"
            else:
                print_warning("Password authentication remains enabled. This is not secure.")

        if self.prompts.confirm("Would you like to disable root SSH login?", default=True):
            settings["PermitRootLogin"] = "no"

        if settings:
            try:
                apply_sshd_settings(
                    self.config.SSHD_CONFIG, self.config.SSHD_CONFIG_DIR, settings
                )
            except OSError as e:
                print_error(f"Failed to update {self.config.SSHD_CONFIG}: {e}")
                problems.append("sshd_config not updated")
            else:
                if "PasswordAuthentication" in settings:
                    policy = replace(policy, password_authentication=False)
                    print_success("[SECURE] SSH Password authentication disabled.")
                    print_success("[SECURE] SSH Public key authentication enforced.")
                if "PermitRootLogin" in settings:
                    policy = replace(policy, root_login=False)
                    print_success("[SECURE] Root login disabled.")

        if self.runner.succeeds(["systemctl", "restart", self.config.SSH_SERVICE]):
            print_success("SSH service restarted successfully.")
        else:
            print_error("Failed to restart SSH service.")
            problems.append("SSH service restart failed")

        if problems:
            return StageOutcome(name, StageStatus.FAILED, "; ".join(problems)), policy
        return StageOutcome(name, StageStatus.SUCCESS, "SSH daemon reconfigured"), policy

    def _install_public_key(self, account: UserAccount) -> bool:
        """Append a pasted key to the account's authorized_keys with strict permissions."""
        ssh_dir = account.home / ".ssh"
        authorized_keys = ssh_dir / "authorized_keys"
        key = self.prompts.ask(
            f"Paste the public key for {account.name}, then press Enter"
        ).strip()
        if not looks_like_public_key(key):
            print_error("That does not look like an SSH public key. Skipping key installation.")
            return False

        if not account.home.is_dir():
            print_error(f"Home directory {account.home} does not exist. Skipping key installation.")
            return False

        try:
            ssh_dir.mkdir(mode=0o700, exist_ok=True)
            os.chmod(ssh_dir, 0o700)
            os.chown(ssh_dir, account.uid, account.gid)

            existing = authorized_keys.read_text() if authorized_keys.exists() else ""
            if key in existing.splitlines():
                print_step(f"Key already present in {authorized_keys}.")
            else:
                with authorized_keys.open("a") as f:
                    if existing and not existing.endswith("\n"):
                        f.write("\n")
                    f.write(f"{key}\n")
            os.chmod(authorized_keys, 0o600)
            os.chown(authorized_keys, account.uid, account.gid)
        except OSError as e:
            print_error(f"Failed to install public key for {account.name}: {e}")
            return False

        self.logger.info(f"Installed public key in {authorized_keys}")
        print_success("[SECURE] Public key authentication configured.")
        return True

    # ----------------------------------------------------------------
    # Phase 5: Fail2Ban
    # ----------------------------------------------------------------
    def phase_fail2ban(self) -> StageOutcome:
        print_section("Fail2Ban Configuration")
        name = "fail2ban"

        if not system.is_package_installed(self.runner, "fail2ban"):
            print_error("Skipping Fail2Ban configuration due to missing package.")
            return StageOutcome(name, StageStatus.SKIPPED, "fail2ban not installed")

        print_step("Configuring Fail2Ban for SSH protection...")
        try:
            write_ssh_jail(self.config.JAIL_LOCAL)
        except OSError as e:
            print_error(f"Failed to write {self.config.JAIL_LOCAL}: {e}")
            return StageOutcome(name, StageStatus.FAILED, "jail.local not written")

        if not self.runner.succeeds(["systemctl", "restart", self.config.FAIL2BAN_SERVICE]):
            print_error("Failed to restart Fail2Ban.")
            return StageOutcome(name, StageStatus.FAILED, "fail2ban restart failed")

        print_success("Fail2Ban setup complete. SSH is now protected.")
        return StageOutcome(name, StageStatus.SUCCESS, "SSH jail active")


# ----------------------------------------------------------------
# Summary
# ----------------------------------------------------------------
def summary_lines(report: HardeningReport) -> Iterable[str]:
    yield f"Privileged user: {report.username or 'None'}"
    yield f"SSH Password Authentication: {status_label(report.ssh.password_authentication)}"
    yield f"SSH Public Key Authentication: {status_label(report.ssh.pubkey_authentication)}"
    yield f"SSH Root Login: {status_label(report.ssh.root_login)}"


def print_summary(report: HardeningReport) -> None:
    """Print the security posture and per-stage results of a run."""
    print_section("Summary of Security Measures")
    display_panel(
        "\n".join(summary_lines(report)),
        style=NordColors.GREEN,
        title="Security Posture",
    )
    print_status_report(
        (outcome.name, outcome.status.value, outcome.message)
        for outcome in report.stages
    )
    print_success("System hardening is complete!")
