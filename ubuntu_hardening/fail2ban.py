from pathlib import Path
from typing import Union

from .system import backup_file

# Five failures within twelve hours earn a one-day ban.
MAX_RETRY = 5
FIND_TIME = 43200
BAN_TIME = 86400

SSH_JAIL_TEMPLATE = """\
[ssh]
enabled  = true
banaction = iptables-multiport
port     = ssh
filter   = sshd
logpath  = /var/log/auth.log
maxretry = {maxretry}
findtime = {findtime}
bantime  = {bantime}
"""


def render_ssh_jail() -> str:
    """Return the local jail policy protecting the SSH daemon."""
    return SSH_JAIL_TEMPLATE.format(
        maxretry=MAX_RETRY, findtime=FIND_TIME, bantime=BAN_TIME
    )


def write_ssh_jail(jail_path: Union[str, Path]) -> Path:
    """Overwrite jail_path with the SSH jail policy, keeping a backup of the old file."""
    jail_path = Path(jail_path)
    jail_path.parent.mkdir(parents=True, exist_ok=True)
    backup_file(jail_path)
    jail_path.write_text(render_ssh_jail())
    return jail_path
