"""
Append-only, diff-based text history for a single document.

A VersionedText holds the current text and an ordered list of versions.
Each version carries a delta that turns the previous version's text into
its own, so replaying every delta from the empty string reproduces the
current text.

Invariants:
    - versions are only ever appended, never rewritten or dropped
    - replaying all deltas from "" yields current_text exactly
    - updating with unchanged text appends nothing
    - version timestamps are strictly increasing

Delta format (JSON friendly):
    ["=", n]     keep the next n characters of the source
    ["-", n]     drop the next n characters of the source
    ["+", text]  insert text

How to change safely:
    - New fields must have defaults; stored histories are decoded leniently
    - Never change the meaning of an existing opcode
"""

from __future__ import annotations

import difflib
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

KEEP = "="
DELETE = "-"
INSERT = "+"


def compute_delta(old: str, new: str) -> list[list[Any]]:
    """Compute the delta turning ``old`` into ``new``."""
    delta: list[list[Any]] = []
    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            delta.append([KEEP, i2 - i1])
        elif tag == "delete":
            delta.append([DELETE, i2 - i1])
        elif tag == "insert":
            delta.append([INSERT, new[j1:j2]])
        else:  # replace
            delta.append([DELETE, i2 - i1])
            delta.append([INSERT, new[j1:j2]])
    return delta


def apply_delta(source: str, delta: list[list[Any]]) -> str:
    """Apply a delta to ``source``.

    Raises:
        ValueError: If the delta is malformed or doesn't span the source
    """
    out: list[str] = []
    pos = 0
    for op, arg in delta:
        if op == KEEP:
            out.append(source[pos : pos + arg])
            pos += arg
        elif op == DELETE:
            pos += arg
        elif op == INSERT:
            out.append(arg)
        else:
            raise ValueError(f"Unknown delta opcode: {op!r}")
    if pos != len(source):
        raise ValueError(f"Delta consumed {pos} of {len(source)} characters")
    return "".join(out)


class Version(BaseModel):
    """One entry in a text history.

    Attributes:
        timestamp_ns: When the version was recorded (Unix ns)
        delta: Edit script from the previous version
    """

    model_config = ConfigDict(extra="ignore")

    timestamp_ns: int
    delta: list[list[Any]] = Field(default_factory=list)


class VersionedText(BaseModel):
    """Current text plus the deltas needed to rebuild every prior version.

    Example:
        >>> vt = VersionedText.new("hello")
        >>> vt.update("hello world")
        True
        >>> vt.snapshot(0)
        'hello'
        >>> vt.current
        'hello world'
    """

    model_config = ConfigDict(extra="ignore")

    current_text: str = ""
    versions: list[Version] = Field(default_factory=list)

    @classmethod
    def new(cls, text: str) -> VersionedText:
        """Start a history whose first version is ``text``."""
        vt = cls()
        vt._append(compute_delta("", text), text)
        return vt

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> VersionedText:
        """Decode a stored history. Empty input gives an empty history.

        Raises:
            ValueError: If ``raw`` isn't a valid encoded history
        """
        if not raw:
            return cls()
        return cls.model_validate_json(raw)

    def to_json(self) -> str:
        """Encode for storage."""
        return self.model_dump_json()

    @property
    def current(self) -> str:
        return self.current_text

    def __len__(self) -> int:
        return len(self.versions)

    def update(self, new_text: str) -> bool:
        """Record ``new_text`` as the newest version.

        Returns:
            True if a version was appended, False if the text was unchanged
        """
        if self.versions and new_text == self.current_text:
            return False
        self._append(compute_delta(self.current_text, new_text), new_text)
        return True

    def _append(self, delta: list[list[Any]], text: str) -> None:
        ts = time.time_ns()
        if self.versions and ts <= self.versions[-1].timestamp_ns:
            ts = self.versions[-1].timestamp_ns + 1
        self.versions.append(Version(timestamp_ns=ts, delta=delta))
        self.current_text = text

    def timestamps(self) -> list[int]:
        return [v.timestamp_ns for v in self.versions]

    def snapshot(self, index: int) -> str:
        """Rebuild the text as of version ``index``.

        Negative indexes count from the newest version.

        Raises:
            IndexError: If there is no such version
        """
        if index < 0:
            index += len(self.versions)
        if not 0 <= index < len(self.versions):
            raise IndexError(f"No version {index} (have {len(self.versions)})")
        text = ""
        for version in self.versions[: index + 1]:
            text = apply_delta(text, version.delta)
        return text

    def snapshot_at(self, timestamp_ns: int) -> str:
        """Text in force at ``timestamp_ns``.

        Raises:
            IndexError: If the timestamp precedes the first version
        """
        index = -1
        for i, version in enumerate(self.versions):
            if version.timestamp_ns > timestamp_ns:
                break
            index = i
        if index < 0:
            raise IndexError(f"No version at or before {timestamp_ns}")
        return self.snapshot(index)

    def diff(self, from_index: int, to_index: int = -1) -> str:
        """Unified diff between two versions."""
        n = len(self.versions)
        a = self.snapshot(from_index)
        b = self.snapshot(to_index)
        lines = difflib.unified_diff(
            a.splitlines(),
            b.splitlines(),
            fromfile=f"v{from_index % n}",
            tofile=f"v{to_index % n}",
            lineterm="",
        )
        return "\n".join(lines)

    def verify(self) -> bool:
        """Check that replaying every delta reproduces the current text."""
        if not self.versions:
            return self.current_text == ""
        try:
            return self.snapshot(-1) == self.current_text
        except ValueError:
            return False
