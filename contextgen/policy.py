from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, List, Optional, Union

from .constants import (
    BINARY_NONPRINTABLE_RATIO,
    BINARY_SNIFF_BYTES,
    DEFAULT_MAX_SIZE,
    DEFAULT_SKIP_EXTENSIONS,
)
from .records import FileRecord


Progress = Optional[Callable[[], None]]


def tick(progress: Progress) -> None:
    if progress is not None:
        progress()


def file_extension(path: str) -> str:
    """Lowercased extension including the leading dot, or ''."""
    return os.path.splitext(path)[1].lower()


def looks_binary(sample: bytes) -> bool:
    """Heuristic binary check over the leading bytes of a file.

    A NUL byte, or more than 30% control bytes outside of tab/newline/CR/FF,
    marks the sample as binary. Empty input is text.
    """
    sample = sample[:BINARY_SNIFF_BYTES]
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    nonprintable = sum(1 for b in sample if b < 9 or 13 < b < 32 or b == 127)
    return nonprintable / len(sample) > BINARY_NONPRINTABLE_RATIO


@dataclass
class AdmissionPolicy:
    max_size: int = DEFAULT_MAX_SIZE
    skip_extensions: FrozenSet[str] = field(default_factory=lambda: frozenset(DEFAULT_SKIP_EXTENSIONS))
    sniff_binary: bool = True

    def __post_init__(self):
        self.skip_extensions = frozenset(
            (e if e.startswith(".") else "." + e).lower() for e in self.skip_extensions
        )

    def skip_reason(self, size: int, extension: str) -> Optional[str]:
        """Return a human-readable reason to skip, or None to admit."""
        if extension and extension.lower() in self.skip_extensions:
            return f"extension `{extension}` not supported"
        if size > self.max_size:
            return f"file too large ({size} bytes > {self.max_size} bytes)"
        return None


@dataclass
class Admitted:
    record: FileRecord

    @property
    def path(self) -> str:
        return self.record.path


@dataclass
class Skipped:
    path: str
    reason: str


Outcome = Union[Admitted, Skipped]


def admit_file(root: str, rel_path: str, policy: AdmissionPolicy) -> Outcome:
    """Stat, filter and read one file relative to ``root``."""
    try:
        rel_path.encode("utf-8")
    except UnicodeEncodeError:
        # undecodable bytes in a file name arrive as lone surrogates
        return Skipped(rel_path, "path is not valid UTF-8")
    full = os.path.join(root, *rel_path.split("/"))
    try:
        size = os.stat(full).st_size
    except OSError as exc:
        return Skipped(rel_path, f"unreadable ({exc.strerror or exc})")
    reason = policy.skip_reason(size, file_extension(rel_path))
    if reason is not None:
        return Skipped(rel_path, reason)
    try:
        with open(full, "rb") as f:
            data = f.read()
    except OSError as exc:
        return Skipped(rel_path, f"unreadable ({exc.strerror or exc})")
    if policy.sniff_binary and looks_binary(data):
        return Skipped(rel_path, "binary content")
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return Skipped(rel_path, "not valid UTF-8 text")
    return Admitted(FileRecord.from_bytes(rel_path, data, size=size))


def collect(
    root: str,
    paths: Iterable[str],
    policy: Optional[AdmissionPolicy] = None,
    progress: Progress = None,
) -> List[Outcome]:
    """Run the admission policy over ``paths`` in the order given.

    One progress unit is signalled per path, admitted or skipped.
    """
    policy = policy or AdmissionPolicy()
    outcomes: List[Outcome] = []
    seen = set()
    for rel in paths:
        if rel in seen:
            outcomes.append(Skipped(rel, "duplicate path"))
        else:
            seen.add(rel)
            outcomes.append(admit_file(root, rel, policy))
        tick(progress)
    return outcomes


def admitted_records(outcomes: Iterable[Outcome]) -> List[FileRecord]:
    return [o.record for o in outcomes if isinstance(o, Admitted)]
