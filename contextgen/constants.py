# Text container
MARKDOWN_TITLE = "# AI-ContextGen Snapshot"
FILE_DELIMITER = "###==AICG_FILE==###"
FENCE = "```"
GLOBAL_CHECKSUM_PREFIX = "Global checksum: "

# Compressed container
CRYPTIC_VERSION_TAG = "CRYPTIC-SNAPSHOT-V1"
HEADER_END_MARKER = "---HEADER-END---"
HDR_GLOBAL_CHECKSUM = "GLOBAL-CHECKSUM"
HDR_COMPRESSION_LEVEL = "COMPRESSION-LEVEL"
HDR_FILE_COUNT = "FILE-COUNT"
PAYLOAD_VERSION = "1.0"

MIN_COMPRESSION_LEVEL = 1
MAX_COMPRESSION_LEVEL = 9
DEFAULT_COMPRESSION_LEVEL = 6


# Admission policy defaults
DEFAULT_MAX_SIZE = 1024 * 1024  # 1 MiB
DEFAULT_SKIP_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".gif", ".svg",
    ".ico", ".exe", ".dll", ".zip", ".tar", ".gz",
    ".mp4", ".mp3", ".ogg", ".mov", ".pdf", ".webp",
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
)
BINARY_SNIFF_BYTES = 1024
BINARY_NONPRINTABLE_RATIO = 0.3


# Traversal
IGNORE_FILES = (".gitignore", ".ai-ignore")
ALWAYS_IGNORE = (".git/",)
DEFAULT_OUTPUT_NAME = "__aicontextgen.md"
DEFAULT_CRYPTIC_OUTPUT_NAME = "__aicontextgen.cryptic"
