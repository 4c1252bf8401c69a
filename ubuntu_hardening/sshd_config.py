"""
Structured editing of OpenSSH daemon configuration.

sshd_config is a list of `Keyword value` directives. Keywords are
case-insensitive, `Keyword=value` is accepted, and the first value obtained
for a keyword wins. Everything after the first `Match` line is conditional,
so global edits only ever touch the lines before it.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from .log import LOGGER_NAME
from .system import backup_file

DIRECTIVE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9]*)(?:\s*=\s*|\s+)(.*?)\s*$")
COMMENTED_RE = re.compile(r"^\s*#\s*([A-Za-z][A-Za-z0-9]*)(?:\s*=\s*|\s+)\S")

MATCH_KEYWORD = "match"


class SshdConfig:
    """An editable, order-preserving model of an sshd configuration file."""

    def __init__(self, lines: Optional[List[str]] = None) -> None:
        self.lines: List[str] = list(lines or [])

    @classmethod
    def parse(cls, text: str) -> "SshdConfig":
        return cls(text.splitlines())

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SshdConfig":
        return cls.parse(Path(path).read_text())

    def render(self) -> str:
        return "\n".join(self.lines) + "\n" if self.lines else ""

    def save(self, path: Union[str, Path]) -> None:
        Path(path).write_text(self.render())

    @staticmethod
    def _directive(line: str) -> Optional[tuple]:
        """Return (lowercase keyword, value) for an active directive line."""
        if not line.strip() or line.lstrip().startswith("#"):
            return None
        match = DIRECTIVE_RE.match(line)
        if match is None:
            return None
        return match.group(1).lower(), match.group(2)

    @staticmethod
    def _commented_keyword(line: str) -> Optional[str]:
        match = COMMENTED_RE.match(line)
        return match.group(1).lower() if match else None

    def _global_end(self) -> int:
        """Index of the first Match line, or the end of the file."""
        for i, line in enumerate(self.lines):
            directive = self._directive(line)
            if directive and directive[0] == MATCH_KEYWORD:
                return i
        return len(self.lines)

    def get(self, keyword: str) -> Optional[str]:
        """Value sshd would use for keyword outside any Match block."""
        key = keyword.lower()
        for line in self.lines[: self._global_end()]:
            directive = self._directive(line)
            if directive and directive[0] == key:
                return directive[1]
        return None

    def set(self, keyword: str, value: str) -> bool:
        """
        Make `keyword value` the effective global setting.

        Rewrites the first active occurrence and drops later duplicates;
        otherwise replaces the commented default, otherwise inserts the
        directive ahead of the first Match block. Returns True if the
        file content changed.
        """
        key = keyword.lower()
        new_line = f"{keyword} {value}"
        before = list(self.lines)
        end = self._global_end()

        active = [
            i
            for i in range(end)
            if (directive := self._directive(self.lines[i])) and directive[0] == key
        ]
        if active:
            first, duplicates = active[0], active[1:]
            if self._directive(self.lines[first])[1] != value:
                self.lines[first] = new_line
            for i in reversed(duplicates):
                del self.lines[i]
        else:
            commented = next(
                (i for i in range(end) if self._commented_keyword(self.lines[i]) == key),
                None,
            )
            if commented is not None:
                self.lines[commented] = new_line
            else:
                self.lines.insert(end, new_line)

        return self.lines != before


def apply_sshd_settings(
    config_path: Union[str, Path],
    dropin_dir: Union[str, Path],
    settings: Dict[str, str],
) -> List[Path]:
    """
    Enforce settings in the main sshd_config and in any drop-in that sets them.

    Drop-ins under sshd_config.d are included ahead of the main file's own
    directives, so one that already sets a keyword would override the main
    file. Those are rewritten to the same value; drop-ins that do not mention
    a keyword are left alone. Each changed file is backed up first.
    Returns the files that were changed.
    """
    logger = logging.getLogger(LOGGER_NAME)
    changed: List[Path] = []

    config_path = Path(config_path)
    main = SshdConfig.load(config_path)
    if any([main.set(keyword, value) for keyword, value in settings.items()]):
        backup_file(config_path)
        main.save(config_path)
        changed.append(config_path)

    dropin_dir = Path(dropin_dir)
    if dropin_dir.is_dir():
        for dropin_path in sorted(dropin_dir.glob("*.conf")):
            dropin = SshdConfig.load(dropin_path)
            updates = [
                dropin.set(keyword, value)
                for keyword, value in settings.items()
                if dropin.get(keyword) is not None
            ]
            if any(updates):
                backup_file(dropin_path)
                dropin.save(dropin_path)
                changed.append(dropin_path)

    for path in changed:
        logger.info(f"Updated SSH daemon settings in {path}")
    return changed
