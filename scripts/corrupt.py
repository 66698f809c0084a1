from __future__ import annotations

import argparse
import random
import sys
from typing import Optional

from contextgen.constants import CRYPTIC_VERSION_TAG, HEADER_END_MARKER


def _read(path: str) -> str:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def _write(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


def _flip_char(ch: str) -> str:
    if ch in "0123456789abcdef":
        return "0123456789abcdef"[("0123456789abcdef".index(ch) + 1) % 16]
    if ch.isalpha():
        return ch.swapcase()
    return "x" if ch != "x" else "y"


def flip_at(text: str, offset: int) -> str:
    if offset < 0 or offset >= len(text):
        raise ValueError(f"Offset must be within the snapshot (0..{len(text) - 1})")
    if text[offset] in "\r\n":
        raise ValueError("Refusing to flip a line break")
    return text[:offset] + _flip_char(text[offset]) + text[offset + 1:]


def set_header_field(text: str, key: str, value: str) -> str:
    lines = text.split("\n")
    if not lines or lines[0].rstrip("\r") != CRYPTIC_VERSION_TAG:
        raise ValueError("Not a cryptic snapshot")
    for i, line in enumerate(lines):
        if line.rstrip("\r") == HEADER_END_MARKER:
            break
        if line.startswith(key + ": "):
            lines[i] = f"{key}: {value}"
            return "\n".join(lines)
    raise ValueError(f"Header field not found: {key}")


def cmd_by_offset(args: argparse.Namespace) -> None:
    _write(args.snapshot, flip_at(_read(args.snapshot), args.offset))
    print(f"Flipped 1 character at offset {args.offset}")


def cmd_header(args: argparse.Namespace) -> None:
    _write(args.snapshot, set_header_field(_read(args.snapshot), args.key, args.value))
    print(f"Set header {args.key} to {args.value}")


def cmd_random(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    text = _read(args.snapshot)
    candidates = [i for i, ch in enumerate(text) if ch not in "\r\n"]
    if not candidates:
        raise ValueError("Snapshot has no characters to flip")
    flips = 0
    for _ in range(args.count):
        text = flip_at(text, rng.choice(candidates))
        flips += 1
    _write(args.snapshot, text)
    print(f"Flipped {flips} character(s) at random offsets")


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="contextgen.corrupt", description="Corrupt snapshots for testing")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_off = sub.add_parser("by-offset", help="Flip one character at an absolute offset")
    p_off.add_argument("snapshot", help="Path to snapshot")
    p_off.add_argument("--offset", type=int, required=True, help="Character offset in the snapshot")
    p_off.set_defaults(func=cmd_by_offset)

    p_hdr = sub.add_parser("header", help="Rewrite one cryptic header field, leaving the payload untouched")
    p_hdr.add_argument("snapshot", help="Path to cryptic snapshot")
    p_hdr.add_argument("--key", required=True, help="Header key, e.g. FILE-COUNT")
    p_hdr.add_argument("--value", required=True, help="New value")
    p_hdr.set_defaults(func=cmd_header)

    p_rand = sub.add_parser("random", help="Flip N random characters anywhere in the snapshot")
    p_rand.add_argument("snapshot", help="Path to snapshot")
    p_rand.add_argument("--count", type=int, default=1, help="Number of random flips (default 1)")
    p_rand.add_argument("--seed", type=int, default=None, help="PRNG seed for reproducibility")
    p_rand.set_defaults(func=cmd_random)

    args = ap.parse_args(argv)
    try:
        args.func(args)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
