from __future__ import annotations

import os
from pathlib import Path

from .errors import UnsafePathError


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes on Windows (elsewhere they are legal name characters)
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    if os.name == "nt":
        p = p.replace("\\", "/")
    p = p.strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)


def _is_absolute(p: str) -> bool:
    if p.startswith("/"):
        return True
    if os.name == "nt":
        return p.startswith("\\") or (len(p) > 1 and p[1] == ":")
    return False


def restore_target(outdir: Path, archive_path: str) -> Path:
    """Resolve an archive path to a destination under ``outdir``.

    Raises UnsafePathError for paths that are empty, absolute, or climb out of
    the output directory.
    """
    if _is_absolute(archive_path):
        raise UnsafePathError(f"Refusing to restore absolute path: {archive_path}")
    try:
        rel = norm_path(archive_path)
    except ValueError as exc:
        raise UnsafePathError(f"Refusing to restore {archive_path}: {exc}") from exc
    if not rel:
        raise UnsafePathError(f"Refusing to restore empty path: {archive_path!r}")
    return outdir.joinpath(*rel.split("/"))


def display_path(p: str) -> str:
    """Printable form of a path; undecodable bytes and line breaks are escaped."""
    return p.encode("utf-8", "backslashreplace").decode("utf-8").replace("\r", "\\r").replace("\n", "\\n")
