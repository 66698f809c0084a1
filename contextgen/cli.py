from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List, Optional

from contextgen.constants import (
    CRYPTIC_VERSION_TAG,
    DEFAULT_COMPRESSION_LEVEL,
    DEFAULT_CRYPTIC_OUTPUT_NAME,
    DEFAULT_MAX_SIZE,
    DEFAULT_OUTPUT_NAME,
    DEFAULT_SKIP_EXTENSIONS,
)
from contextgen.cryptic import decode_cryptic, encode_records, validate_format
from contextgen.errors import ContextGenError, IntegrityError
from contextgen.markdown import decode_markdown, render_markdown, verify_markdown
from contextgen.pathutil import display_path
from contextgen.policy import AdmissionPolicy, Skipped, admitted_records, collect
from contextgen.walk import IgnoreFilter, list_files


class _ProgressPrinter:
    """Per-item progress lines in the style ' 42.00% verb (n/total)'."""

    def __init__(self, total: int, verb: str, quiet: bool = False):
        self.total = max(1, total)
        self.verb = verb
        self.quiet = quiet
        self.done = 0

    def __call__(self) -> None:
        self.done += 1
        if not self.quiet:
            pct = self.done * 100.0 / self.total
            print(f" {pct:6.2f}% {self.verb} ({self.done}/{self.total})")


def _read_text(path: str) -> str:
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Archive file not found: {path}")
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def _is_cryptic(content: str) -> bool:
    first = content.split("\n", 1)[0].rstrip("\r")
    return first == CRYPTIC_VERSION_TAG


def cmd_snapshot(
    input_dir: str,
    *,
    output: Optional[str] = None,
    cryptic: bool = False,
    max_size: int = DEFAULT_MAX_SIZE,
    skip_extensions: Optional[List[str]] = None,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    quiet: bool = False,
) -> bool:
    """Snapshot a directory into a Markdown or compressed container.

    Args:
        input_dir: Directory to scan.
        output: Output filename, written inside ``input_dir``.
        cryptic: Write the compressed container instead of Markdown.
        max_size: Largest file size (bytes) admitted into the snapshot.
        skip_extensions: Extensions to leave out (defaults to common binary types).
        compression_level: gzip level 1-9 for the compressed container.
    """
    start_dir = os.path.abspath(input_dir)
    if not os.path.isdir(start_dir):
        raise FileNotFoundError(f"Input folder does not exist or is not a directory: {start_dir}")
    out_name = output or (DEFAULT_CRYPTIC_OUTPUT_NAME if cryptic else DEFAULT_OUTPUT_NAME)
    policy = AdmissionPolicy(
        max_size=max_size,
        skip_extensions=frozenset(DEFAULT_SKIP_EXTENSIONS if skip_extensions is None else skip_extensions),
    )

    t0 = time.time()
    ignore = IgnoreFilter.from_directory(start_dir, out_name)
    if not quiet:
        print(f"Scanning files in {start_dir} (skipping per .gitignore, .ai-ignore, .git/, and output)...")
    files = list_files(start_dir, ignore)
    if cryptic:
        files = sorted(files)

    outcomes = collect(start_dir, files, policy, _ProgressPrinter(len(files), "reading", quiet))
    skipped = [o for o in outcomes if isinstance(o, Skipped)]
    if cryptic:
        text = encode_records(admitted_records(outcomes), start_dir, compression_level)
    else:
        text = render_markdown(outcomes)

    target = os.path.join(start_dir, out_name)
    with open(target, "w", encoding="utf-8", newline="") as f:
        f.write(text)

    if not quiet:
        for s in skipped:
            print(f"skipped: {display_path(s.path)} ({s.reason})")
    dt = max(0.000001, time.time() - t0)
    print(
        f"Done: {len(outcomes) - len(skipped)} files, {len(skipped)} skipped; "
        f"{len(text.encode('utf-8')) / 1024.0:.1f} KiB in {dt:.1f}s; saved to {target}"
    )
    return True


def cmd_restore(archive: str, *, outdir: str = ".", quiet: bool = False) -> bool:
    """Restore files from a Markdown or compressed snapshot.

    The container type is detected from the first line. Every checksum is
    verified before the first file is written.
    """
    content = _read_text(archive)
    t0 = time.time()
    if _is_cryptic(content):
        header_report = validate_format(archive)
        progress = _ProgressPrinter(header_report.file_count or 0, "restoring", quiet)
        result = decode_cryptic(content, outdir, progress=progress)
        count = result.files_restored
    else:
        progress = _ProgressPrinter(content.count("\n## `"), "restoring", quiet)
        count = decode_markdown(content, outdir, progress=progress)
    dt = max(0.000001, time.time() - t0)
    print(f"Done: restored {count} files to {os.path.abspath(outdir)} in {dt:.1f}s")
    return True


def cmd_verify(archive: str) -> bool:
    """Verify a snapshot without writing anything.

    Prints:
        "OK" on success, "FAIL: <reason>" on an integrity failure.
    """
    content = _read_text(archive)
    try:
        if _is_cryptic(content):
            result = decode_cryptic(content, ".", verify_only=True)
            count, checksum, verified = result.file_count, result.global_checksum, True
        else:
            report = verify_markdown(content)
            count, checksum, verified = report.file_count, report.global_checksum, report.verified
    except IntegrityError as exc:
        print(f"FAIL: {exc}")
        return False
    if not verified:
        print("Warning: snapshot carries no checksums; nothing to verify against.", file=sys.stderr)
    print(f"OK: {count} files, global checksum {checksum}")
    return True


def cmd_info(archive: str) -> bool:
    """Show snapshot header information without decompressing."""
    content = _read_text(archive)
    print(f"Snapshot: {archive}")
    if _is_cryptic(content):
        report = validate_format(archive)
        if not report.is_valid:
            raise ContextGenError(report.error)
        print("  Format: cryptic")
        print(f"  Files: {report.file_count}")
        print(f"  Compression level: {report.compression_level}")
        print(f"  Global checksum: {report.global_checksum}")
    else:
        report = verify_markdown(content)
        print("  Format: markdown")
        print(f"  Files: {report.file_count}")
        print(f"  Global checksum: {report.global_checksum}")
        print(f"  Checksums embedded: {'yes' if report.verified else 'no'}")
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="contextgen",
        description="Snapshot a source tree into a single portable document and restore it bit-for-bit",
        epilog="The cryptic format is compression, not encryption.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_snap = sub.add_parser("snapshot", help="Snapshot a directory")
    ap_snap.add_argument("-i", "--input", default=".", help="Input folder to scan (default: .)")
    ap_snap.add_argument("-o", "--output", help="Output filename, written inside the input folder")
    ap_snap.add_argument("--cryptic", action="store_true", help="Write the compressed container instead of Markdown")
    ap_snap.add_argument("--max-size", type=int, default=DEFAULT_MAX_SIZE, help="Skip files larger than this many bytes (default 1 MiB)")
    ap_snap.add_argument(
        "--skip-ext",
        action="append",
        dest="skip_ext",
        help="Extension to skip (repeatable); replaces the default binary extension list",
    )
    ap_snap.add_argument(
        "--compression-level",
        type=int,
        default=DEFAULT_COMPRESSION_LEVEL,
        help="gzip level 1-9 for --cryptic (default 6)",
    )
    ap_snap.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_restore = sub.add_parser("restore", help="Restore files from a snapshot")
    ap_restore.add_argument("archive", help="Snapshot path (.md or cryptic)")
    ap_restore.add_argument("--outdir", default=".", help="Output directory")
    ap_restore.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_verify = sub.add_parser("verify", help="Verify snapshot integrity without writing files")
    ap_verify.add_argument("archive", help="Snapshot path")

    ap_info = sub.add_parser("info", help="Show snapshot information")
    ap_info.add_argument("archive", help="Snapshot path")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "snapshot":
            cmd_snapshot(
                args.input,
                output=args.output,
                cryptic=args.cryptic,
                max_size=args.max_size,
                skip_extensions=args.skip_ext,
                compression_level=args.compression_level,
                quiet=args.quiet,
            )
        elif args.cmd == "restore":
            cmd_restore(args.archive, outdir=args.outdir, quiet=args.quiet)
        elif args.cmd == "verify":
            ok = cmd_verify(args.archive)
            sys.exit(0 if ok else 1)
        elif args.cmd == "info":
            cmd_info(args.archive)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (ContextGenError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
