"""
Command line entry point.

Usage:
  Run with root privileges:
      sudo ubuntu-hardening
      sudo python3 -m ubuntu_hardening --verbose
"""

import logging
import sys
from pathlib import Path

import click
from rich.traceback import install as install_rich_traceback

from . import APP_NAME, VERSION
from .config import Config
from .hardening import UbuntuHardening, print_summary
from .log import LOGGER_NAME, setup_logger
from .ui import console, create_header, print_error, print_warning


@click.command()
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=str(Config().LOG_FILE),
    show_default=True,
    help="Where to write the detailed run log.",
)
@click.option(
    "-v", "--verbose", is_flag=True, help="Mirror the detailed log on the console."
)
@click.version_option(VERSION, prog_name=APP_NAME)
def main(log_file: Path, verbose: bool) -> None:
    """
    Harden a freshly installed Ubuntu host.

    Updates packages, enables UFW, provisions a passwordless-sudo user,
    tightens SSH and configures a Fail2Ban SSH jail. Exits 1 if the host
    is not Ubuntu or the script is not run as root.
    """
    install_rich_traceback(show_locals=False)
    console.print(create_header())

    config = Config(LOG_FILE=Path(log_file))
    hardening = UbuntuHardening(config)

    try:
        hardening.phase_preflight()

        try:
            setup_logger(config.LOG_FILE, verbose)
        except OSError as e:
            print_warning(f"Cannot write log file {config.LOG_FILE} ({e}); continuing without it.")
            logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())

        report = hardening.run()
    except KeyboardInterrupt:
        console.print()
        print_warning("Hardening interrupted by user.")
        sys.exit(130)
    except EOFError:
        console.print()
        print_error("Input closed before all questions were answered.")
        sys.exit(1)

    print_summary(report)

