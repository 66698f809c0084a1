"""
contextgen: deterministic, tamper-evident snapshots of a source tree.

Features:

- Markdown container: one fenced block per file between ``###==AICG_FILE==###``
  delimiter lines, a SHA-256 checksum in every file heading, and a trailing
  global checksum over the ordered ``path:checksum`` listing.
- Cryptic container: a five-line plaintext header followed by a single
  base64(gzip(JSON)) payload carrying the same two checksum layers plus
  archive metadata.
- Restores verify both checksum layers before the first file is written and
  reproduce captured content byte-for-byte, line endings included.
- Directory traversal honouring ``.gitignore`` and ``.ai-ignore``, and an
  admission policy that skips large, binary or excluded files.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "hashutil",
    "markdown",
    "cryptic",
    "walk",
    "policy",
]

# Programmatic API: contextgen.markdown (encode_markdown/decode_markdown) and
# contextgen.cryptic (encode_cryptic/decode_cryptic/validate_format); the CLI
# functions in contextgen.cli (cmd_snapshot/cmd_restore) take normal parameters.
