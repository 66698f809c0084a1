from __future__ import annotations

import hashlib
from typing import Iterable, Optional, Tuple

from .errors import ChecksumMismatch, GlobalChecksumMismatch


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def text_checksum(content: str) -> str:
    """Checksum of text content, taken over its UTF-8 encoding."""
    return sha256_hex(content.encode("utf-8"))


def global_checksum(pairs: Iterable[Tuple[str, str]]) -> str:
    """Checksum-of-checksums over ordered ``(path, checksum)`` pairs.

    Each pair contributes ``"{path}:{checksum}\\n"``; the order of ``pairs``
    is significant.
    """
    listing = "".join(f"{path}:{checksum}\n" for path, checksum in pairs)
    return sha256_hex(listing.encode("utf-8"))


def verify_file_checksum(path: str, data: bytes, expected: str) -> str:
    actual = sha256_hex(data)
    if actual != expected:
        raise ChecksumMismatch(path, expected, actual)
    return actual


def _text_digests(content: str) -> Tuple[str, ...]:
    as_is = text_checksum(content)
    if "\r\n" not in content:
        return (as_is,)
    return (as_is, text_checksum(content.replace("\r\n", "\n")))


def text_checksum_matches(content: str, expected: Optional[str]) -> bool:
    if expected is None:
        return True
    return expected in _text_digests(content)


def verify_text_checksum(path: str, content: str, expected: str) -> None:
    """Verify text content allowing for CRLF rewriting in transit.

    The checksum is accepted when it matches the content as captured or the
    content with CRLF normalized to LF.
    """
    digests = _text_digests(content)
    if expected not in digests:
        raise ChecksumMismatch(path, expected, digests[0])


def verify_global_checksum(pairs: Iterable[Tuple[str, str]], expected: str) -> str:
    actual = global_checksum(pairs)
    if actual != expected:
        raise GlobalChecksumMismatch(expected, actual)
    return actual
