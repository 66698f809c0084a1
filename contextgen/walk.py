from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern

from .constants import ALWAYS_IGNORE, IGNORE_FILES
from .policy import Progress, tick


def _translate(pattern: str) -> str:
    """Translate a gitignore glob into a regular expression body.

    ``*`` and ``?`` never cross a slash; ``**`` does.
    """
    i, n = 0, len(pattern)
    out: List[str] = []
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
                continue
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = pattern.find("]", i + 1)
            if j == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:j]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append("[" + body.replace("\\", "\\\\") + "]")
                i = j + 1
                continue
        elif c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


@dataclass
class IgnoreRule:
    regex: Pattern[str]
    negate: bool
    dir_only: bool
    anchored: bool

    @classmethod
    def parse(cls, line: str) -> Optional["IgnoreRule"]:
        line = line.rstrip("\r")
        if not line.strip() or line.startswith("#"):
            return None
        line = line.rstrip(" ")
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        elif line.startswith("\\"):
            line = line[1:]
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        anchored = line.startswith("/") or "/" in line
        line = line.lstrip("/")
        if not line:
            return None
        return cls(re.compile(_translate(line) + r"\Z"), negate, dir_only, anchored)

    def matches(self, rel: str, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        target = rel if self.anchored else rel.rsplit("/", 1)[-1]
        return self.regex.match(target) is not None


class IgnoreFilter:
    """gitignore-style path filter; the last matching rule wins."""

    def __init__(self, patterns: Iterable[str] = ()):
        self.rules: List[IgnoreRule] = []
        self.add(patterns)

    def add(self, patterns: Iterable[str]) -> "IgnoreFilter":
        if isinstance(patterns, str):
            patterns = patterns.splitlines()
        for line in patterns:
            rule = IgnoreRule.parse(line)
            if rule is not None:
                self.rules.append(rule)
        return self

    @classmethod
    def from_directory(cls, root: str, output_name: Optional[str] = None) -> "IgnoreFilter":
        """Load ``.gitignore`` and ``.ai-ignore`` from ``root`` plus built-in exclusions."""
        ig = cls()
        for name in IGNORE_FILES:
            path = os.path.join(root, name)
            if os.path.isfile(path):
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    ig.add(f.read().splitlines())
        ig.add(ALWAYS_IGNORE)
        if output_name:
            ig.add(["/" + output_name.replace("\\", "/").lstrip("/")])
        return ig

    def _match(self, rel: str, is_dir: bool) -> bool:
        ignored = False
        for rule in self.rules:
            if rule.matches(rel, is_dir):
                ignored = not rule.negate
        return ignored

    def ignores(self, rel: str, is_dir: bool = False) -> bool:
        rel = rel.replace("\\", "/").strip("/")
        if not rel:
            return False
        parts = rel.split("/")
        # An excluded parent directory cannot be re-included by its children
        for k in range(1, len(parts)):
            if self._match("/".join(parts[:k]), True):
                return True
        return self._match(rel, is_dir)


def list_files(root: str, ignore: Optional[IgnoreFilter] = None, progress: Progress = None) -> List[str]:
    """List files under ``root`` as sorted, forward-slash relative paths.

    Ignored directories are pruned. Symlinked directories are listed as
    entries but not descended into.
    """
    results: List[str] = []

    def _walk(dir_path: str, prefix: str) -> None:
        with os.scandir(dir_path) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            rel = prefix + entry.name
            is_dir = entry.is_dir(follow_symlinks=False)
            if ignore is not None and ignore.ignores(rel, is_dir):
                continue
            if is_dir:
                _walk(entry.path, rel + "/")
            else:
                results.append(rel)
                tick(progress)

    _walk(root, "")
    return results
