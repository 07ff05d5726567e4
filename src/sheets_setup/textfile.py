"""Line-oriented config files mutated by idempotent appends."""

import re
from enum import Enum
from pathlib import Path
from typing import Optional

from .tracker import StepError


class LineStatus(str, Enum):
    APPENDED = "appended"
    PRESENT = "present"
    # Same key with a different value; left untouched
    CONFLICT = "conflict"


class LineFile:
    """A text file viewed as a list of lines.

    The file's newline style is kept on write; a missing file reads as empty.
    """

    def __init__(self, path, encoding: str = "utf-8"):
        self.path = Path(path)
        self.encoding = encoding

    def read_text(self) -> str:
        if not self.path.exists():
            return ""
        try:
            with self.path.open("r", encoding=self.encoding, newline="") as fh:
                return fh.read()
        except UnicodeDecodeError as e:
            raise StepError(f"{self.path} is not valid {self.encoding} text (byte {e.start})")

    def write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding=self.encoding, newline="") as fh:
            fh.write(text)

    def read_lines(self) -> list:
        return self.read_text().splitlines()

    def contains(self, pattern) -> bool:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        return any(regex.search(line) for line in self.read_lines())

    def append_line(self, text: str) -> None:
        """Append ``text`` (one line or a block) on its own line(s)."""
        current = self.read_text()
        nl = "\r\n" if "\r\n" in current else "\n"
        if current and not current.endswith(("\n", "\r")):
            current += nl
        block = nl.join(text.splitlines())
        self.write_text(current + block + nl)


def literal_line(line: str) -> str:
    """Pattern matching ``line`` exactly, ignoring surrounding whitespace."""
    return r"^\s*" + re.escape(line.strip()) + r"\s*$"


def ensure_line(
    file: LineFile,
    line: str,
    present: Optional[str] = None,
    conflict: Optional[str] = None,
) -> LineStatus:
    """Append ``line`` unless a line matching ``present`` or ``conflict`` exists."""
    if file.contains(present or literal_line(line)):
        return LineStatus.PRESENT
    if conflict and file.contains(conflict):
        return LineStatus.CONFLICT
    file.append_line(line)
    return LineStatus.APPENDED
