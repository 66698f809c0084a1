"""
Compressed ("cryptic") snapshot container.

Layout (UTF-8 text)::

    CRYPTIC-SNAPSHOT-V1
    GLOBAL-CHECKSUM: <sha256>
    COMPRESSION-LEVEL: <1-9>
    FILE-COUNT: <n>
    ---HEADER-END---
    <base64(gzip(json))>

The JSON document carries ``metadata``, ``files`` (path, checksum, size and
base64 content) and ``global_checksum``. Decoding verifies every file
checksum, the global checksum and the header/payload agreement before any
file is written. The format obfuscates; it does not protect content.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .codec import Codec, b64encode
from .constants import (
    CRYPTIC_VERSION_TAG,
    DEFAULT_COMPRESSION_LEVEL,
    HDR_COMPRESSION_LEVEL,
    HDR_FILE_COUNT,
    HDR_GLOBAL_CHECKSUM,
    HEADER_END_MARKER,
)
from .errors import (
    ContextGenError,
    FileCountMismatch,
    HeaderMismatch,
    InvalidPayloadError,
    MissingHeaderEndError,
    MissingHeaderFieldError,
    MissingPayloadError,
    MissingVersionError,
)
from .hashutil import verify_file_checksum, verify_global_checksum
from .pathutil import restore_target
from .policy import AdmissionPolicy, Progress, admitted_records, collect, tick
from .records import Archive, ArchiveMetadata, FileRecord, utc_timestamp


@dataclass
class CrypticHeader:
    global_checksum: str
    compression_level: int
    file_count: int


@dataclass
class DecodeResult:
    file_count: int
    metadata: ArchiveMetadata
    global_checksum: str
    files_restored: int = 0
    verify_only: bool = False


@dataclass
class FormatReport:
    is_valid: bool
    file_count: Optional[int] = None
    compression_level: Optional[int] = None
    global_checksum: Optional[str] = None
    has_encoded_data: bool = False
    error: Optional[str] = None


# -------- Encoding --------

def _payload_document(archive: Archive, checksum: str) -> Dict[str, Any]:
    return {
        "metadata": archive.metadata.to_dict(),
        "files": [f.to_payload() for f in archive.files],
        "global_checksum": checksum,
    }


def render_header(header: CrypticHeader) -> str:
    return "\n".join(
        [
            CRYPTIC_VERSION_TAG,
            f"{HDR_GLOBAL_CHECKSUM}: {header.global_checksum}",
            f"{HDR_COMPRESSION_LEVEL}: {header.compression_level}",
            f"{HDR_FILE_COUNT}: {header.file_count}",
            HEADER_END_MARKER,
        ]
    )


def encode_records(
    records: List[FileRecord],
    source_directory: str,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
) -> str:
    """Build the compressed container for already-admitted records.

    The payload is produced twice: the first pass measures the compressed
    size, which is then recorded in the metadata of the final payload.
    """
    archive = Archive(files=list(records))
    archive.check_unique_paths()
    checksum = archive.global_checksum
    archive.metadata = ArchiveMetadata(
        generated=utc_timestamp(),
        source_directory=source_directory,
        file_count=len(archive.files),
        compression_level=compression_level,
        total_size_original=archive.total_size,
    )

    codec = Codec(compression_level)
    first_pass = codec.encode_document(_payload_document(archive, checksum))
    archive.metadata.total_size_compressed = len(first_pass)
    payload = b64encode(codec.encode_document(_payload_document(archive, checksum)))

    header = CrypticHeader(
        global_checksum=checksum,
        compression_level=compression_level,
        file_count=len(archive.files),
    )
    return f"{render_header(header)}\n{payload}"


def encode_cryptic(
    start_dir: str,
    files: Iterable[str],
    policy: Optional[AdmissionPolicy] = None,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    progress: Progress = None,
) -> str:
    """Snapshot ``files`` (relative to ``start_dir``) into a compressed container.

    Files that are unreadable, too large, excluded by extension or not text
    are left out silently; one progress unit is signalled per path.
    """
    outcomes = collect(start_dir, files, policy, progress)
    return encode_records(admitted_records(outcomes), os.path.abspath(start_dir), compression_level)


# -------- Decoding --------

def _parse_int(key: str, value: str) -> int:
    try:
        return int(value.strip(), 10)
    except ValueError as exc:
        raise MissingHeaderFieldError(f"Invalid cryptic file format: {key} is not an integer: {value!r}") from exc


def parse_cryptic(content: str) -> Tuple[CrypticHeader, str]:
    """Split a container into its parsed header and the raw payload text.

    Returns ``(header, payload)``; raises a FormatError subclass when the
    version tag, header end marker, a required header field or the payload is
    missing.
    """
    lines = [line[:-1] if line.endswith("\r") else line for line in content.split("\n")]
    if not lines or lines[0] != CRYPTIC_VERSION_TAG:
        raise MissingVersionError("Invalid cryptic file format: missing or incorrect version header")

    try:
        end = lines.index(HEADER_END_MARKER)
    except ValueError:
        raise MissingHeaderEndError("Invalid cryptic file format: missing header end marker") from None

    fields: Dict[str, str] = {}
    for line in lines[1:end]:
        key, sep, value = line.partition(": ")
        if sep:
            fields[key] = value

    missing = [k for k in (HDR_GLOBAL_CHECKSUM, HDR_COMPRESSION_LEVEL, HDR_FILE_COUNT) if not fields.get(k, "").strip()]
    if missing:
        raise MissingHeaderFieldError(
            f"Invalid cryptic file format: missing required header fields ({', '.join(missing)})"
        )
    header = CrypticHeader(
        global_checksum=fields[HDR_GLOBAL_CHECKSUM].strip(),
        compression_level=_parse_int(HDR_COMPRESSION_LEVEL, fields[HDR_COMPRESSION_LEVEL]),
        file_count=_parse_int(HDR_FILE_COUNT, fields[HDR_FILE_COUNT]),
    )

    payload = "\n".join(lines[end + 1:]).strip()
    if not payload:
        raise MissingPayloadError("Invalid cryptic file format: missing encoded data")
    return header, payload


def decode_payload(payload: str) -> Archive:
    """Decode and decompress the payload into an unverified Archive."""
    doc = Codec().decode_document(payload)
    if "metadata" not in doc or "files" not in doc or "global_checksum" not in doc:
        raise InvalidPayloadError("Invalid data structure: missing required fields")
    if not isinstance(doc["files"], list) or not isinstance(doc["global_checksum"], str):
        raise InvalidPayloadError("Invalid data structure: malformed files or global_checksum")
    archive = Archive(
        files=[FileRecord.from_payload(item) for item in doc["files"]],
        metadata=ArchiveMetadata.from_dict(doc["metadata"]),
        stored_checksum=doc["global_checksum"],
    )
    return archive


def verify_integrity(archive: Archive) -> str:
    """Verify file count, each file checksum (fail-fast) and the global checksum."""
    expected = archive.metadata.file_count
    if len(archive.files) != expected:
        raise FileCountMismatch(f"File count mismatch: expected {expected}, got {len(archive.files)}")
    archive.check_unique_paths()
    for f in archive.files:
        verify_file_checksum(f.path, f.data, f.checksum)
    return verify_global_checksum(archive.pairs(), archive.stored_checksum)


def verify_header_consistency(header: CrypticHeader, archive: Archive) -> None:
    if header.file_count != len(archive.files):
        raise HeaderMismatch("file count", header.file_count, len(archive.files))
    if header.global_checksum != archive.stored_checksum:
        raise HeaderMismatch("global checksum", header.global_checksum, archive.stored_checksum)
    if header.compression_level != archive.metadata.compression_level:
        raise HeaderMismatch("compression level", header.compression_level, archive.metadata.compression_level)


def decode_cryptic(
    content: str,
    output_dir: str,
    verify_only: bool = False,
    progress: Progress = None,
) -> DecodeResult:
    """Verify a compressed container and, unless ``verify_only``, restore it.

    Nothing is written until every integrity check has passed.
    """
    header, payload = parse_cryptic(content)
    archive = decode_payload(payload)
    verify_integrity(archive)
    verify_header_consistency(header, archive)

    result = DecodeResult(
        file_count=len(archive.files),
        metadata=archive.metadata,
        global_checksum=archive.stored_checksum,
        verify_only=verify_only,
    )
    if verify_only:
        return result

    outdir = Path(output_dir)
    targets = [(restore_target(outdir, f.path), f) for f in archive.files]
    outdir.mkdir(parents=True, exist_ok=True)
    for target, record in targets:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(record.data)
        result.files_restored += 1
        tick(progress)
    return result


def decode_cryptic_file(path: str, output_dir: str, verify_only: bool = False, progress: Progress = None) -> DecodeResult:
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Cryptic file not found: {path}")
    with open(path, "r", encoding="utf-8", newline="") as f:
        content = f.read()
    return decode_cryptic(content, output_dir, verify_only=verify_only, progress=progress)


def validate_format(path: str) -> FormatReport:
    """Header-only check of a container file; never raises for bad input."""
    if not os.path.isfile(path):
        return FormatReport(is_valid=False, error="File not found")
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            header, payload = parse_cryptic(f.read())
    except (ContextGenError, OSError, UnicodeDecodeError) as exc:
        return FormatReport(is_valid=False, error=str(exc))
    return FormatReport(
        is_valid=True,
        file_count=header.file_count,
        compression_level=header.compression_level,
        global_checksum=header.global_checksum,
        has_encoded_data=bool(payload),
    )
