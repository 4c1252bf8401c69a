from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List


@dataclass
class Config:
    """Configuration for the Ubuntu hardening run."""

    LOG_FILE: Path = field(
        default_factory=lambda: Path("/var/log/ubuntu_hardening.log")
    )
    SUPPORTED_OS: str = "Ubuntu"

    # Connectivity check
    CONNECTIVITY_HOST: str = "8.8.8.8"
    CONNECTIVITY_TIMEOUT: int = 5  # seconds

    SECURITY_PACKAGES: List[str] = field(
        default_factory=lambda: ["fail2ban", "net-tools", "ufw"]
    )

    # User provisioning
    DEFAULT_SHELL: str = "/bin/bash"
    SUDOERS_DIR: Path = field(default_factory=lambda: Path("/etc/sudoers.d"))
    USERNAME_ATTEMPTS: int = 3

    # SSH daemon
    SSHD_CONFIG: Path = field(default_factory=lambda: Path("/etc/ssh/sshd_config"))
    SSHD_CONFIG_DIR: Path = field(
        default_factory=lambda: Path("/etc/ssh/sshd_config.d")
    )
    SSH_SERVICE: str = "ssh"

    # Fail2Ban
    JAIL_LOCAL: Path = field(
        default_factory=lambda: Path("/etc/fail2ban/jail.local")
    )
    FAIL2BAN_SERVICE: str = "fail2ban"

    def to_dict(self) -> Dict[str, Any]:
        """Convert the config to a dictionary."""
        return asdict(self)
