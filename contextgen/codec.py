from __future__ import annotations

import base64
import binascii
import gzip
import json
import zlib
from typing import Any, Dict, Optional

from .constants import DEFAULT_COMPRESSION_LEVEL, MAX_COMPRESSION_LEVEL, MIN_COMPRESSION_LEVEL
from .errors import (
    DecodeError,
    InvalidBase64Error,
    InvalidCompressedStreamError,
    InvalidCompressionLevel,
    InvalidPayloadError,
)


def check_compression_level(level: int) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidCompressionLevel(f"Compression level must be an integer, got {level!r}")
    if level < MIN_COMPRESSION_LEVEL or level > MAX_COMPRESSION_LEVEL:
        raise InvalidCompressionLevel(
            f"Compression level must be between {MIN_COMPRESSION_LEVEL} and {MAX_COMPRESSION_LEVEL}, got {level}"
        )
    return level


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    # Payloads pasted through text channels may pick up wrapping whitespace
    compact = "".join(text.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidBase64Error(f"Invalid base64 encoding: {exc}") from exc


class Codec:
    """gzip + base64 framing for the compressed container payload."""

    def __init__(self, level: Optional[int] = None):
        self.level = DEFAULT_COMPRESSION_LEVEL if level is None else level

    def compress(self, data: bytes) -> bytes:
        level = check_compression_level(self.level)
        # mtime=0 keeps the gzip header free of wall-clock time
        return gzip.compress(data, compresslevel=level, mtime=0)

    def decompress(self, data: bytes) -> bytes:
        try:
            return gzip.decompress(data)
        except (gzip.BadGzipFile, zlib.error, EOFError) as exc:
            raise InvalidCompressedStreamError(f"Invalid compressed data: not a valid gzip stream ({exc})") from exc

    def encode_document(self, doc: Dict[str, Any]) -> bytes:
        """Serialize ``doc`` as compact JSON and compress it."""
        raw = json.dumps(doc, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return self.compress(raw)

    def decode_document(self, payload: str) -> Dict[str, Any]:
        """Reverse of ``b64encode(encode_document(doc))``.

        Failures are classified as InvalidBase64Error, InvalidCompressedStreamError
        or InvalidPayloadError; anything else surfaces as a generic DecodeError.
        """
        compressed = b64decode(payload)
        raw = self.decompress(compressed)
        try:
            doc = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidPayloadError(f"Invalid JSON data after decompression: {exc}") from exc
        except (RecursionError, MemoryError) as exc:
            raise DecodeError(f"Decoding failed: {exc}") from exc
        if not isinstance(doc, dict):
            raise InvalidPayloadError("Invalid JSON data after decompression: expected an object")
        return doc
