"""Fixed marker lines of the dump artifact format."""

FORMAT_VERSION = 1

HEADER_MARKER = "-- sqlvault database backup"
HEADER_LINE = f"{HEADER_MARKER} (format {FORMAT_VERSION})"
COMPLETION_MARKER = "-- Backup completed"

# Header comment prefixes
GENERATED_PREFIX = "-- Generated: "
DIALECT_PREFIX = "-- Dialect: "
DESCRIPTION_PREFIX = "-- Description: "
OPTIONS_PREFIX = "-- Options: "

GZIP_MAGIC = b"\x1f\x8b"
