"""
Error taxonomy for the photo index.

Every component raises ImageIndexError with a Kind discriminator so callers
can tell recoverable conditions from fatal ones without matching on text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Discriminator for ImageIndexError and sidecar issues."""
    NOT_FOUND = "not_found"                        # Sidecar stream absent (not fatal)
    PARSE_ERROR = "parse_error"                    # Malformed sidecar JSON (not fatal)
    PARTIAL_LANGUAGE = "partial_language"          # Requested language missing, default used
    SCHEMA_ERROR = "schema_error"                  # Schema creation failed (fatal)
    INVALID_SPEC = "invalid_spec"                  # Query rejected before execution
    REBUILD_IN_PROGRESS = "rebuild_in_progress"    # Another writer holds the rebuild lock
    DATABASE_UNAVAILABLE = "database_unavailable"  # No usable database and rebuild not allowed


class ImageIndexError(Exception):
    """Typed error raised by the indexing and query components."""

    def __init__(self, kind: ErrorKind, detail: str = "", cause: Optional[BaseException] = None):
        self.kind = kind
        self.detail = detail
        self.cause = cause
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def is_fatal(self) -> bool:
        return self.kind in (ErrorKind.SCHEMA_ERROR, ErrorKind.DATABASE_UNAVAILABLE)


def invalid_spec(detail: str) -> ImageIndexError:
    return ImageIndexError(ErrorKind.INVALID_SPEC, detail)
