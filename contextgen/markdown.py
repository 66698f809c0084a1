"""
Markdown snapshot container.

A snapshot is a human-readable Markdown document. Every file sits in its own
section bounded by ``###==AICG_FILE==###`` delimiter lines::

    # AI-ContextGen Snapshot

    ###==AICG_FILE==###

    ## `src/app.py` (checksum: <sha256>)

    ```py
    <content>
    ```

    ###==AICG_FILE==###


    Global checksum: <sha256>

A file's block is closed by the last fence line before a delimiter line, so
content that itself contains triple backticks round-trips unchanged. When the
content also contains a literal delimiter line, the block is extended to the
first later delimiter at which the embedded checksum verifies.

Documents without delimiter lines are parsed with the older heading/fence
layout; only the checksums such a document carries are verified.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .constants import FENCE, FILE_DELIMITER, GLOBAL_CHECKSUM_PREFIX, MARKDOWN_TITLE
from .errors import DuplicatePathError, FormatError
from .hashutil import (
    global_checksum,
    text_checksum,
    verify_global_checksum,
    verify_text_checksum,
)
from .pathutil import display_path, restore_target
from .policy import AdmissionPolicy, Admitted, Outcome, Progress, Skipped, collect, tick
from .records import FileRecord


_HEADING_RE = re.compile(r"^## `([^`]+)`(?: \(checksum: ([^)\s]*)\))?$")


@dataclass
class ParsedEntry:
    path: str
    content: str
    checksum: Optional[str] = None


@dataclass
class ParsedDocument:
    entries: List[ParsedEntry] = field(default_factory=list)
    global_checksum: Optional[str] = None
    legacy: bool = False

    @property
    def has_checksums(self) -> bool:
        return self.global_checksum is not None or any(e.checksum is not None for e in self.entries)


@dataclass
class MarkdownReport:
    file_count: int
    global_checksum: str
    verified: bool


# -------- Encoding --------

def language_tag(path: str) -> str:
    return os.path.splitext(path)[1][1:]


def heading_safe(path: str) -> bool:
    """Whether ``path`` survives a round trip through a file heading."""
    return bool(path) and not any(c in path for c in "`\r\n")


def render_record(record: FileRecord) -> str:
    return (
        f"## `{record.path}` (checksum: {record.checksum})\n\n"
        f"{FENCE}{language_tag(record.path)}\n{record.content}\n{FENCE}\n\n"
    )


def render_skipped(skipped: Skipped) -> str:
    return f"## `{display_path(skipped.path)}`\n\n_(Skipped: {skipped.reason})_\n\n"


def render_markdown(outcomes: Iterable[Outcome]) -> str:
    """Render admission outcomes, in order, as a snapshot document.

    Skipped files get a placeholder section and do not take part in the
    global checksum.
    """
    parts = [MARKDOWN_TITLE, "\n\n"]
    pairs: List[Tuple[str, str]] = []
    for outcome in outcomes:
        parts.append(FILE_DELIMITER + "\n\n")
        if isinstance(outcome, Admitted) and not heading_safe(outcome.path):
            outcome = Skipped(outcome.path, "path cannot be written in a Markdown heading")
        if isinstance(outcome, Admitted):
            parts.append(render_record(outcome.record))
            pairs.append((outcome.record.path, outcome.record.checksum))
        else:
            parts.append(render_skipped(outcome))
    parts.append(FILE_DELIMITER + "\n\n")
    parts.append(f"\n{GLOBAL_CHECKSUM_PREFIX}{global_checksum(pairs)}\n")
    return "".join(parts)


def encode_markdown(
    start_dir: str,
    files: Iterable[str],
    policy: Optional[AdmissionPolicy] = None,
    progress: Progress = None,
) -> str:
    """Snapshot ``files`` (relative to ``start_dir``) in the order given."""
    return render_markdown(collect(start_dir, files, policy, progress))


# -------- Parsing --------

def _structural(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line


def _next_nonblank(lines: List[str], lo: int, hi: int) -> Optional[int]:
    for i in range(lo, hi):
        if _structural(lines[i]).strip():
            return i
    return None


def _block_content(lines: List[str], fence_open: int, delim: int) -> Optional[str]:
    """Content of a block opened at ``fence_open`` and closed just before ``delim``."""
    close = delim - 2
    if close <= fence_open:
        return None
    if _structural(lines[delim - 1]) != "" or _structural(lines[close]) != FENCE:
        return None
    content = "\n".join(lines[fence_open + 1:close])
    # CRLF-framed document: the newline ahead of the closing fence was "\r\n"
    if lines[close].endswith("\r") and content.endswith("\r"):
        content = content[:-1]
    return content


def _find_global_checksum(lines: Iterable[str]) -> Optional[str]:
    found = None
    for line in lines:
        line = _structural(line)
        if line.startswith(GLOBAL_CHECKSUM_PREFIX):
            found = line[len(GLOBAL_CHECKSUM_PREFIX):].strip()
    return found


def _close_block(
    lines: List[str], fence_open: int, delims: List[int], first: int, checksum: Optional[str], search: bool
) -> Tuple[Optional[int], bool]:
    """Pick the delimiter that closes the block opened at ``fence_open``.

    Returns ``(index into delims, verified)``. The first candidate at which the
    content matches ``checksum`` wins; otherwise the first well-formed one.
    The content hashes are extended line by line as candidates are passed, so
    a block that never verifies costs one pass over the rest of the document.
    """
    raw, norm = hashlib.sha256(), hashlib.sha256()
    start = fed = fence_open + 1
    fallback: Optional[int] = None
    for j in range(first, len(delims)):
        close = delims[j] - 2
        if close <= fence_open:
            continue
        if _structural(lines[delims[j] - 1]) != "" or _structural(lines[close]) != FENCE:
            continue
        if checksum is None:
            return j, True
        if fallback is None:
            fallback = j
            if not search:
                break
        last = close - 1
        while fed < last:
            line = lines[fed]
            sep = b"\n" if fed > start else b""
            raw.update(sep + line.encode("utf-8"))
            # CRLF normalized to LF; only whole line breaks are rewritten
            norm.update(sep + _structural(line).encode("utf-8"))
            fed += 1
        r, n = raw.copy(), norm.copy()
        if last >= start:
            tail = lines[last]
            if lines[close].endswith("\r") and tail.endswith("\r"):
                tail = tail[:-1]
            data = (b"\n" if last > start else b"") + tail.encode("utf-8")
            r.update(data)
            n.update(data)
        if checksum in (r.hexdigest(), n.hexdigest()):
            return j, True
    return fallback, False


def _parse_delimited(lines: List[str], delims: List[int]) -> ParsedDocument:
    doc = ParsedDocument()
    # once one block fails to verify the document is corrupt; stop searching
    search = True
    k = 0
    while k < len(delims) - 1:
        hi = delims[k + 1]
        h = _next_nonblank(lines, delims[k] + 1, hi)
        m = _HEADING_RE.match(_structural(lines[h])) if h is not None else None
        if m is None:
            k += 1
            continue
        f = _next_nonblank(lines, h + 1, hi)
        if f is None or not _structural(lines[f]).startswith(FENCE):
            # placeholder for a skipped file
            k += 1
            continue
        path, checksum = m.group(1), m.group(2)

        j, verified = _close_block(lines, f, delims, k + 1, checksum, search)
        if j is None:
            raise FormatError(f"Unterminated code block for {path}")
        search = search and verified
        k = j
        doc.entries.append(ParsedEntry(path=path, content=_block_content(lines, f, delims[j]), checksum=checksum))

    # a file block after the final delimiter was never closed
    h = _next_nonblank(lines, delims[-1] + 1, len(lines))
    m = _HEADING_RE.match(_structural(lines[h])) if h is not None else None
    if m is not None:
        f = _next_nonblank(lines, h + 1, len(lines))
        if f is not None and _structural(lines[f]).startswith(FENCE):
            raise FormatError(f"Unterminated code block for {m.group(1)}")

    doc.global_checksum = _find_global_checksum(lines[delims[-1] + 1:])
    return doc


def _parse_legacy(lines: List[str]) -> ParsedDocument:
    doc = ParsedDocument(legacy=True)
    i, n = 0, len(lines)
    while i < n:
        m = _HEADING_RE.match(_structural(lines[i]))
        if m is None or i + 2 >= n or _structural(lines[i + 1]) != "" or not _structural(lines[i + 2]).startswith(FENCE):
            i += 1
            continue
        close = next((j for j in range(i + 3, n) if _structural(lines[j]) == FENCE), None)
        if close is None:
            raise FormatError(f"Unterminated code block for {m.group(1)}")
        content = "\n".join(lines[i + 3:close])
        if lines[close].endswith("\r") and content.endswith("\r"):
            content = content[:-1]
        doc.entries.append(ParsedEntry(path=m.group(1), content=content, checksum=m.group(2)))
        i = close + 1
    doc.global_checksum = _find_global_checksum(lines)
    return doc


def parse_markdown(markdown: str) -> ParsedDocument:
    lines = markdown.split("\n")
    delims = [i for i, line in enumerate(lines) if _structural(line) == FILE_DELIMITER]
    if not delims:
        return _parse_legacy(lines)
    return _parse_delimited(lines, delims)


# -------- Verification and restore --------

def verify_document(doc: ParsedDocument) -> str:
    """Check per-file checksums, then the global checksum.

    Entries without an embedded checksum contribute a freshly computed one.
    Returns the global checksum of the document's entries.
    """
    pairs: List[Tuple[str, str]] = []
    seen = set()
    for entry in doc.entries:
        if entry.path in seen:
            raise DuplicatePathError(f"Duplicate path in snapshot: {entry.path}")
        seen.add(entry.path)
        if entry.checksum is not None:
            verify_text_checksum(entry.path, entry.content, entry.checksum)
            pairs.append((entry.path, entry.checksum))
        else:
            pairs.append((entry.path, text_checksum(entry.content)))
    if doc.global_checksum is not None:
        return verify_global_checksum(pairs, doc.global_checksum)
    return global_checksum(pairs)


def verify_markdown(markdown: str) -> MarkdownReport:
    doc = parse_markdown(markdown)
    if doc.has_checksums:
        checksum = verify_document(doc)
    else:
        checksum = global_checksum((e.path, text_checksum(e.content)) for e in doc.entries)
    return MarkdownReport(file_count=len(doc.entries), global_checksum=checksum, verified=doc.has_checksums)


def decode_markdown(markdown: str, target_dir: str, progress: Progress = None) -> int:
    """Restore every file of a snapshot document under ``target_dir``.

    The document is parsed and verified in full before the first write;
    existing files are overwritten. Returns the number of files written.
    """
    doc = parse_markdown(markdown)
    if doc.has_checksums:
        verify_document(doc)

    outdir = Path(target_dir)
    targets = [(restore_target(outdir, e.path), e) for e in doc.entries]

    written = 0
    for target, entry in targets:
        target.parent.mkdir(parents=True, exist_ok=True)
        # bytes keep the captured line endings
        target.write_bytes(entry.content.encode("utf-8"))
        written += 1
        tick(progress)
    return written
