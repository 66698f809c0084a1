from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .codec import b64decode, b64encode
from .constants import PAYLOAD_VERSION
from .errors import DuplicatePathError, InvalidBase64Error, InvalidPayloadError
from .hashutil import global_checksum, sha256_hex


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass
class FileRecord:
    path: str
    data: bytes
    checksum: str
    size: int = 0

    @classmethod
    def from_bytes(cls, path: str, data: bytes, size: Optional[int] = None) -> "FileRecord":
        return cls(path=path, data=data, checksum=sha256_hex(data), size=len(data) if size is None else size)

    @classmethod
    def from_text(cls, path: str, content: str) -> "FileRecord":
        return cls.from_bytes(path, content.encode("utf-8"))

    @property
    def content(self) -> str:
        return self.data.decode("utf-8")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "checksum": self.checksum,
            "size": self.size,
            "content": b64encode(self.data),
        }

    @classmethod
    def from_payload(cls, item: Any) -> "FileRecord":
        """Rebuild a record from its payload entry without verifying it.

        The stored checksum is kept as-is so that integrity checks can compare
        it against the decoded content.
        """
        if not isinstance(item, dict):
            raise InvalidPayloadError("Invalid data structure: file entry is not an object")
        path = item.get("path")
        checksum = item.get("checksum")
        content = item.get("content")
        if not isinstance(path, str) or not isinstance(checksum, str) or not isinstance(content, str):
            raise InvalidPayloadError(f"Invalid data structure: incomplete file entry {path!r}")
        try:
            data = b64decode(content)
        except InvalidBase64Error as exc:
            raise InvalidBase64Error(f"Invalid base64 content for {path}: {exc}") from exc
        size = item.get("size")
        return cls(path=path, data=data, checksum=checksum, size=size if isinstance(size, int) else len(data))


@dataclass
class ArchiveMetadata:
    generated: str
    source_directory: str
    file_count: int
    version: str = PAYLOAD_VERSION
    compression_level: Optional[int] = None
    total_size_original: Optional[int] = None
    total_size_compressed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "version": self.version,
            "generated": self.generated,
            "source_directory": self.source_directory,
            "file_count": self.file_count,
        }
        if self.compression_level is not None:
            out["compression_level"] = self.compression_level
        if self.total_size_original is not None:
            out["total_size_original"] = self.total_size_original
        if self.total_size_compressed is not None:
            out["total_size_compressed"] = self.total_size_compressed
        return out

    @classmethod
    def from_dict(cls, meta: Any) -> "ArchiveMetadata":
        if not isinstance(meta, dict):
            raise InvalidPayloadError("Invalid data structure: metadata is not an object")
        file_count = meta.get("file_count")
        if not isinstance(file_count, int) or isinstance(file_count, bool):
            raise InvalidPayloadError("Invalid data structure: metadata.file_count missing or not an integer")
        return cls(
            generated=str(meta.get("generated", "")),
            source_directory=str(meta.get("source_directory", "")),
            file_count=file_count,
            version=str(meta.get("version", PAYLOAD_VERSION)),
            compression_level=meta.get("compression_level"),
            total_size_original=meta.get("total_size_original"),
            total_size_compressed=meta.get("total_size_compressed"),
        )


@dataclass
class Archive:
    files: List[FileRecord] = field(default_factory=list)
    metadata: Optional[ArchiveMetadata] = None
    # global checksum as carried by a decoded payload
    stored_checksum: Optional[str] = None

    def pairs(self) -> List[Tuple[str, str]]:
        return [(f.path, f.checksum) for f in self.files]

    @property
    def global_checksum(self) -> str:
        return global_checksum(self.pairs())

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    def check_unique_paths(self) -> None:
        seen = set()
        for f in self.files:
            if f.path in seen:
                raise DuplicatePathError(f"Duplicate path in archive: {f.path}")
            seen.add(f.path)
