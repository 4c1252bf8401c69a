import logging
import os
import subprocess
from typing import Dict, List, Optional

from .log import LOGGER_NAME

# Exit status reported when the executable itself cannot be found.
COMMAND_NOT_FOUND = 127


class CommandRunner:
    """Runs external commands and logs every invocation."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def run(
        self,
        cmd: List[str],
        check: bool = False,
        capture_output: bool = False,
        input: Optional[str] = None,
        timeout: Optional[int] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        """
        Execute a command.

        :param cmd: Command to execute as a list.
        :param check: If True, raise CalledProcessError on non-zero exit.
        :param capture_output: Capture stdout and stderr if True.
        :param input: Text fed to the command's stdin.
        :param timeout: Seconds before the command is abandoned.
        :param env: Extra environment variables merged over os.environ.
        :return: CompletedProcess instance.
        """
        # Secrets fed on stdin are never logged.
        self.logger.debug(f"Executing command: {' '.join(cmd)}")
        full_env = {**os.environ, **env} if env else None
        try:
            result = subprocess.run(
                cmd,
                check=check,
                capture_output=capture_output,
                text=True,
                input=input,
                timeout=timeout,
                env=full_env,
            )
        except FileNotFoundError:
            self.logger.error(f"Command not found: {cmd[0]}")
            if check:
                raise subprocess.CalledProcessError(COMMAND_NOT_FOUND, cmd)
            return subprocess.CompletedProcess(cmd, COMMAND_NOT_FOUND, "", "")

        if result.returncode != 0:
            self.logger.debug(
                f"Command exited with status {result.returncode}: {' '.join(cmd)}"
            )
        return result

    def succeeds(self, cmd: List[str], **kwargs) -> bool:
        """Return True when the command exits with status 0."""
        try:
            return self.run(cmd, **kwargs).returncode == 0
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Command timed out: {' '.join(cmd)}")
            return False
