from __future__ import annotations

import os
import sys
import tempfile
import time
import unittest
from pathlib import Path
from typing import Dict

from contextgen.constants import FILE_DELIMITER, GLOBAL_CHECKSUM_PREFIX, MARKDOWN_TITLE
from contextgen.errors import (
    ChecksumMismatch,
    DuplicatePathError,
    FormatError,
    GlobalChecksumMismatch,
    UnsafePathError,
)
from contextgen.hashutil import global_checksum, text_checksum
from contextgen.markdown import (
    decode_markdown,
    encode_markdown,
    parse_markdown,
    render_markdown,
    verify_markdown,
)
from contextgen.policy import AdmissionPolicy, Admitted
from contextgen.records import FileRecord
from contextgen.walk import list_files


TRICKY_FILES: Dict[str, str] = {
    "README.md": "# Title\n\n```python\nprint('x')\n```\n",
    "src/app.py": "def main():\n    return 1\n",
    "docs/delim.md": (
        "before\n"
        f"{FILE_DELIMITER}\n"
        "after\n"
        "```\n"
        "\n"
        f"{FILE_DELIMITER}\n"
        "\n"
        "## `fake.txt` (checksum: abc)\n"
    ),
    "crlf.txt": "a\r\nb\r\n",
    "empty.txt": "",
    "unicode.txt": "héllo wörld ✓\n",
    "noext": "no trailing newline",
    "trailing/fence.txt": "x\n```\n",
}


def _write_tree(root: Path, files: Dict[str, str]) -> None:
    for rel, content in files.items():
        p = root.joinpath(*rel.split("/"))
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(content.encode("utf-8"))


def _flip_hex(ch: str) -> str:
    return "0" if ch != "0" else "1"


class MarkdownEncodeTests(unittest.TestCase):
    def test_generates_markdown_and_skips_large_and_unsupported_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "a.txt").write_text("hello", encoding="utf-8")
            (root / "b.png").write_bytes(b"binary")
            (root / "c.txt").write_text("x" * (1024 * 1024), encoding="utf-8")
            ticks = []
            md = encode_markdown(
                str(root),
                ["a.txt", "b.png", "c.txt"],
                AdmissionPolicy(max_size=1024, skip_extensions=[".png"]),
                lambda: ticks.append(1),
            )
        self.assertTrue(md.startswith(MARKDOWN_TITLE + "\n\n" + FILE_DELIMITER + "\n\n"))
        self.assertIn("```txt\nhello", md)
        self.assertIn(f"## `a.txt` (checksum: {text_checksum('hello')})", md)
        self.assertRegex(md, r"\(Skipped: extension `\.png` not supported\)")
        self.assertRegex(md, r"\(Skipped: file too large")
        self.assertEqual(len(ticks), 3)
        expected_global = global_checksum([("a.txt", text_checksum("hello"))])
        self.assertTrue(md.endswith(f"{FILE_DELIMITER}\n\n\n{GLOBAL_CHECKSUM_PREFIX}{expected_global}\n"))

    def test_exact_layout_of_single_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "a.py").write_text("x = 1\n", encoding="utf-8")
            md = encode_markdown(str(root), ["a.py"])
        c = text_checksum("x = 1\n")
        g = global_checksum([("a.py", c)])
        expected = (
            "# AI-ContextGen Snapshot\n\n"
            "###==AICG_FILE==###\n\n"
            f"## `a.py` (checksum: {c})\n\n"
            "```py\nx = 1\n\n```\n\n"
            "###==AICG_FILE==###\n\n"
            f"\nGlobal checksum: {g}\n"
        )
        self.assertEqual(md, expected)

    def test_admission_limits_exclude_from_global_checksum(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "at_limit.txt").write_text("y" * 1024, encoding="utf-8")
            (root / "over.txt").write_text("y" * 1025, encoding="utf-8")
            (root / "pic.png").write_text("tiny", encoding="utf-8")
            md = encode_markdown(
                str(root),
                ["at_limit.txt", "over.txt", "pic.png"],
                AdmissionPolicy(max_size=1024, skip_extensions=[".png"]),
            )
        report = verify_markdown(md)
        self.assertEqual(report.file_count, 1)
        self.assertEqual(report.global_checksum, global_checksum([("at_limit.txt", text_checksum("y" * 1024))]))

    def test_encoding_is_deterministic(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _write_tree(root, TRICKY_FILES)
            paths = list(TRICKY_FILES)
            self.assertEqual(encode_markdown(str(root), paths), encode_markdown(str(root), paths))


class MarkdownRoundTripTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.base = Path(self._tmp.name)
        self.src = self.base / "src"
        self.src.mkdir()
        _write_tree(self.src, TRICKY_FILES)
        self.md = encode_markdown(str(self.src), list(TRICKY_FILES))

    def assertTreeEqual(self, out: Path):
        for rel, content in TRICKY_FILES.items():
            self.assertEqual(out.joinpath(*rel.split("/")).read_bytes(), content.encode("utf-8"), rel)

    def test_round_trip_is_byte_exact(self):
        out = self.base / "out"
        ticks = []
        written = decode_markdown(self.md, str(out), lambda: ticks.append(1))
        self.assertEqual(written, len(TRICKY_FILES))
        self.assertEqual(len(ticks), len(TRICKY_FILES))
        self.assertTreeEqual(out)

    def test_parse_recovers_embedded_delimiters(self):
        doc = parse_markdown(self.md)
        self.assertFalse(doc.legacy)
        self.assertEqual([e.path for e in doc.entries], list(TRICKY_FILES))
        self.assertEqual([e.content for e in doc.entries], list(TRICKY_FILES.values()))

    def test_overwrites_existing_files(self):
        out = self.base / "out"
        (out / "src").mkdir(parents=True)
        (out / "src" / "app.py").write_text("stale", encoding="utf-8")
        decode_markdown(self.md, str(out))
        self.assertTreeEqual(out)

    def test_content_tamper_names_path_and_writes_nothing(self):
        tampered = self.md.replace("return 1", "return 2")
        out = self.base / "out"
        with self.assertRaises(ChecksumMismatch) as ctx:
            decode_markdown(tampered, str(out))
        self.assertEqual(ctx.exception.path, "src/app.py")
        self.assertFalse(out.exists())

    def test_heading_checksum_tamper_names_path(self):
        marker = "## `unicode.txt` (checksum: "
        i = self.md.index(marker) + len(marker)
        tampered = self.md[:i] + _flip_hex(self.md[i]) + self.md[i + 1:]
        with self.assertRaises(ChecksumMismatch) as ctx:
            decode_markdown(tampered, str(self.base / "out"))
        self.assertEqual(ctx.exception.path, "unicode.txt")

    def test_global_checksum_tamper(self):
        i = self.md.index(GLOBAL_CHECKSUM_PREFIX) + len(GLOBAL_CHECKSUM_PREFIX)
        tampered = self.md[:i] + _flip_hex(self.md[i]) + self.md[i + 1:]
        out = self.base / "out"
        with self.assertRaises(GlobalChecksumMismatch):
            decode_markdown(tampered, str(out))
        self.assertFalse(out.exists())

    def test_renamed_path_breaks_global_checksum(self):
        tampered = self.md.replace("## `noext` (", "## `noext2` (")
        with self.assertRaises(GlobalChecksumMismatch):
            verify_markdown(tampered)

    def test_crlf_rewritten_content_still_verifies(self):
        tampered = self.md.replace("def main():\n    return 1", "def main():\r\n    return 1")
        self.assertNotEqual(tampered, self.md)
        out = self.base / "out"
        decode_markdown(tampered, str(out))
        self.assertEqual((out / "src" / "app.py").read_bytes(), b"def main():\r\n    return 1\n")

    def test_fully_crlf_document_restores_crlf_content(self):
        converted = self.md.replace("\r\n", "\n").replace("\n", "\r\n")
        report = verify_markdown(converted)
        self.assertEqual(report.file_count, len(TRICKY_FILES))
        out = self.base / "out"
        decode_markdown(converted, str(out))
        self.assertEqual((out / "src" / "app.py").read_bytes(), b"def main():\r\n    return 1\r\n")
        self.assertEqual((out / "empty.txt").read_bytes(), b"")

    def test_truncated_document_is_rejected(self):
        cut = self.md[: self.md.rindex(FILE_DELIMITER)]
        with self.assertRaises(FormatError):
            decode_markdown(cut, str(self.base / "out"))


class MarkdownLegacyTests(unittest.TestCase):
    def test_restores_plain_document_without_checksums(self):
        md = "\n".join(
            [
                "# AI-ContextGen Snapshot",
                "",
                "---",
                "",
                "## `a.txt`",
                "",
                "```txt",
                "content",
                "```",
                "",
                "---",
                "",
                "## `nested/b.md`",
                "",
                "```md",
                "line one",
                "line two",
                "```",
                "",
            ]
        )
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "out"
            self.assertEqual(decode_markdown(md, str(out)), 2)
            self.assertEqual((out / "a.txt").read_text(encoding="utf-8"), "content")
            self.assertEqual((out / "nested" / "b.md").read_text(encoding="utf-8"), "line one\nline two")
        self.assertFalse(verify_markdown(md).verified)

    def test_unsafe_path_writes_nothing(self):
        md = "## `ok.txt`\n\n```\nfine\n```\n\n## `../evil.txt`\n\n```\nbad\n```\n"
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "out"
            with self.assertRaises(UnsafePathError):
                decode_markdown(md, str(out))
            self.assertFalse(out.exists())
            self.assertFalse(os.path.exists(os.path.join(tmp, "evil.txt")))

    def test_duplicate_paths_rejected(self):
        c = text_checksum("x")
        block = f"{FILE_DELIMITER}\n\n## `a.txt` (checksum: {c})\n\n```txt\nx\n```\n\n"
        md = MARKDOWN_TITLE + "\n\n" + block + block + FILE_DELIMITER + "\n\n"
        with self.assertRaises(DuplicatePathError):
            verify_markdown(md)


class MarkdownFileNameTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.base = Path(self._tmp.name)
        self.src = self.base / "src"
        self.src.mkdir()

    @unittest.skipIf(os.name == "nt", "':' and '\\' are not file name characters on Windows")
    def test_colon_and_backslash_names_round_trip(self):
        names = ["a:b.txt", "a\\b.txt"]
        for name in names:
            (self.src / name).write_text(name, encoding="utf-8")
        out = self.base / "out"
        self.assertEqual(decode_markdown(encode_markdown(str(self.src), names), str(out)), 2)
        self.assertEqual(sorted(os.listdir(out)), sorted(names))
        for name in names:
            self.assertEqual((out / name).read_text(encoding="utf-8"), name)

    def test_backtick_name_is_skipped_with_reason(self):
        (self.src / "a`b.txt").write_text("odd", encoding="utf-8")
        (self.src / "ok.txt").write_text("fine", encoding="utf-8")
        md = encode_markdown(str(self.src), ["a`b.txt", "ok.txt"])
        self.assertIn("_(Skipped: path cannot be written in a Markdown heading)_", md)
        self.assertIn(global_checksum([("ok.txt", text_checksum("fine"))]), md)
        out = self.base / "out"
        self.assertEqual(decode_markdown(md, str(out)), 1)
        self.assertEqual(os.listdir(out), ["ok.txt"])

    @unittest.skipUnless(sys.platform.startswith("linux"), "needs a file system that accepts arbitrary name bytes")
    def test_undecodable_name_does_not_abort_snapshot(self):
        with open(os.path.join(os.fsencode(self.src), b"bad\xff.txt"), "wb") as f:
            f.write(b"x")
        (self.src / "good.txt").write_text("good", encoding="utf-8")
        md = encode_markdown(str(self.src), list_files(str(self.src)))
        md.encode("utf-8")
        self.assertIn("## `bad\\udcff.txt`", md)
        self.assertIn("_(Skipped: path is not valid UTF-8)_", md)
        self.assertEqual([e.path for e in parse_markdown(md).entries], ["good.txt"])
        self.assertTrue(verify_markdown(md).verified)


class MarkdownTamperCostTests(unittest.TestCase):
    def test_tampered_decode_of_many_files_stays_linear(self):
        body = "".join(f"line {i} of a fairly ordinary source file\n" for i in range(300))
        outcomes = [Admitted(FileRecord.from_text(f"pkg/mod{i:04d}.py", body)) for i in range(1000)]
        md = render_markdown(outcomes)
        tampered = md.replace("line 7 of", "line 8 of", 1)

        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "out"
            started = time.perf_counter()
            with self.assertRaises(ChecksumMismatch) as ctx:
                decode_markdown(tampered, str(out))
            elapsed = time.perf_counter() - started
            self.assertFalse(out.exists())
        self.assertEqual(ctx.exception.path, "pkg/mod0000.py")
        self.assertLess(elapsed, 5.0)

    def test_tampered_document_reports_first_bad_file(self):
        embedded = f"top\n```\n\n{FILE_DELIMITER}\n\ntail\n"
        outcomes = [
            Admitted(FileRecord.from_text("a.txt", "alpha\n")),
            Admitted(FileRecord.from_text("b.md", embedded)),
        ]
        tampered = render_markdown(outcomes).replace("alpha", "alphA")
        doc = parse_markdown(tampered)
        self.assertEqual([e.path for e in doc.entries], ["a.txt", "b.md"])
        with self.assertRaises(ChecksumMismatch) as ctx:
            verify_markdown(tampered)
        self.assertEqual(ctx.exception.path, "a.txt")


if __name__ == "__main__":
    unittest.main()
