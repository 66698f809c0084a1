class ContextGenError(Exception):
    """Base class for contextgen-specific errors."""


# Container framing
class FormatError(ContextGenError):
    pass


class MissingVersionError(FormatError):
    pass


class MissingHeaderEndError(FormatError):
    pass


class MissingHeaderFieldError(FormatError):
    pass


class MissingPayloadError(FormatError):
    pass


class UnsafePathError(FormatError):
    pass


# Payload decoding
class DecodeError(ContextGenError):
    pass


class InvalidBase64Error(DecodeError):
    pass


class InvalidCompressedStreamError(DecodeError):
    pass


class InvalidPayloadError(DecodeError):
    pass


# Integrity
class IntegrityError(ContextGenError):
    pass


class FileCountMismatch(IntegrityError):
    pass


class DuplicatePathError(IntegrityError):
    pass


class ChecksumMismatch(IntegrityError):
    def __init__(self, path: str, expected: str, actual: str):
        super().__init__(f"File checksum mismatch for {path}: expected {expected}, got {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class GlobalChecksumMismatch(IntegrityError):
    def __init__(self, expected: str, actual: str):
        super().__init__(f"Global checksum verification failed: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class HeaderMismatch(IntegrityError):
    """Header field disagrees with the value carried inside the payload."""

    def __init__(self, field: str, header_value, payload_value):
        super().__init__(
            f"Header {field} mismatch: header says {header_value}, data says {payload_value}"
        )
        self.field = field
        self.header_value = header_value
        self.payload_value = payload_value


# Encode-time policy
class PolicyError(ContextGenError):
    pass


class InvalidCompressionLevel(PolicyError):
    pass
