"""Shared fixtures: a recording command runner, temporary system paths and fake accounts."""

import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from ubuntu_hardening import system
from ubuntu_hardening.commands import CommandRunner
from ubuntu_hardening.config import Config
from ubuntu_hardening.system import UserAccount

UBUNTU_SSHD_CONFIG = """\
# This is the sshd server system-wide configuration file.  See
# sshd_config(5) for more information.

Include /etc/ssh/sshd_config.d/*.conf

#Port 22
#AddressFamily any

#LoginGraceTime 2m
#PermitRootLogin prohibit-password
#StrictModes yes
#MaxAuthTries 6
#MaxSessions 10

#PubkeyAuthentication yes

# To disable tunneled clear text passwords, change to no here!
#PasswordAuthentication yes
#PermitEmptyPasswords no

KbdInteractiveAuthentication no

UsePAM yes

X11Forwarding yes
PrintMotd no

AcceptEnv LANG LC_*

Subsystem\tsftp\t/usr/lib/openssh/sftp-server

# Example of overriding settings on a per-user basis
#Match User anoncvs
#\tX11Forwarding no
#\tAllowTcpForwarding no
#\tPermitTTY no
#\tForceCommand cvs server
"""

ED25519_KEY = (
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGb1Fq0Yk3m8y5m0eDqJtq7t6m4b6ZbC0t3pZb0mN2x1 alice@laptop"
)


def dpkg_listing(*packages: str) -> str:
    """Render `dpkg -l` output with the given packages installed."""
    lines = [
        "Desired=Unknown/Install/Remove/Purge/Hold",
        "| Status=Not/Inst/Conf-files/Unpacked/halF-conf/Half-inst/trig-aWait/Trig-pend",
        "|/ Err?=(none)/Reinst-required (Status,Err: uppercase=bad)",
        "||/ Name           Version      Architecture Description",
        "+++-==============-============-============-=================================",
        "ii  adduser        3.118ubuntu5 all          add and remove users and groups",
        "ii  libc6:amd64    2.35-0ubuntu3 amd64       GNU C Library: Shared libraries",
    ]
    for package in packages:
        lines.append(f"ii  {package:<14} 1.0-1        all          {package} package")
    return "\n".join(lines) + "\n"


class FakeRunner(CommandRunner):
    """
    Records every command instead of executing it.

    `responses` maps a command prefix to (returncode, stdout); the longest
    matching prefix wins and unmatched commands succeed with no output.
    `hooks` maps a prefix to a callable run before the response is returned.
    """

    def __init__(
        self,
        responses: Optional[Dict[Tuple[str, ...], Tuple[int, str]]] = None,
        hooks: Optional[Dict[Tuple[str, ...], Callable[[List[str]], None]]] = None,
    ) -> None:
        super().__init__()
        self.responses = dict(responses or {})
        self.hooks = dict(hooks or {})
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []

    @staticmethod
    def _longest_prefix(mapping, cmd):
        best = None
        for prefix in mapping:
            if tuple(cmd[: len(prefix)]) == prefix:
                if best is None or len(prefix) > len(best):
                    best = prefix
        return best

    def run(self, cmd, check=False, capture_output=False, input=None, timeout=None, env=None):
        self.calls.append(list(cmd))
        self.inputs.append(input)
        hook = self._longest_prefix(self.hooks, cmd)
        if hook is not None:
            self.hooks[hook](list(cmd))
        prefix = self._longest_prefix(self.responses, cmd)
        returncode, stdout = self.responses.get(prefix, (0, "")) if prefix else (0, "")
        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, cmd)
        return subprocess.CompletedProcess(cmd, returncode, stdout, "")

    def called(self, *prefix: str) -> bool:
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    ssh_dir = tmp_path / "etc" / "ssh"
    (ssh_dir / "sshd_config.d").mkdir(parents=True)
    (ssh_dir / "sshd_config").write_text(UBUNTU_SSHD_CONFIG)
    return Config(
        LOG_FILE=tmp_path / "log" / "ubuntu_hardening.log",
        SUDOERS_DIR=tmp_path / "etc" / "sudoers.d",
        SSHD_CONFIG=ssh_dir / "sshd_config",
        SSHD_CONFIG_DIR=ssh_dir / "sshd_config.d",
        JAIL_LOCAL=tmp_path / "etc" / "fail2ban" / "jail.local",
    )


class FakeAccounts:
    """In-memory password database rooted under a temporary /home."""

    def __init__(self, home_root: Path) -> None:
        self.home_root = home_root
        self.accounts: Dict[str, UserAccount] = {}

    def add(self, name: str) -> UserAccount:
        home = self.home_root / name
        home.mkdir(parents=True, exist_ok=True)
        account = UserAccount(name=name, uid=os.getuid(), gid=os.getgid(), home=home)
        self.accounts[name] = account
        return account

    def lookup(self, name: str) -> Optional[UserAccount]:
        return self.accounts.get(name)

    def useradd_hook(self, cmd: List[str]) -> None:
        self.add(cmd[-1])


@pytest.fixture
def accounts(monkeypatch, tmp_path: Path) -> FakeAccounts:
    fake = FakeAccounts(tmp_path / "home")
    monkeypatch.setattr(system, "lookup_user", fake.lookup)
    return fake
