"""Error taxonomy for backup and recovery operations.

Engine internals raise ``SqlVaultError`` subclasses.  Public engine
operations never let them escape: they are converted at the operation
boundary into an ``OperationError`` carried by the result model, so callers
branch on ``result.error.kind`` instead of catching exceptions.

Usage:
    result = await engine.create_backup()
    if not result.success:
        if result.error.kind is ErrorKind.INTEGRITY:
            ...
"""

from enum import StrEnum

from pydantic import BaseModel


class ErrorKind(StrEnum):
    """Tag identifying which part of the taxonomy an error belongs to."""

    IO = "io"
    INTEGRITY = "integrity"
    CODEC = "codec"
    EXECUTION = "execution"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    VERIFICATION = "verification"


class OperationError(BaseModel):
    """Serializable description of a failed operation.

    Attributes:
        kind: Taxonomy tag.
        message: Human-readable description.
        position: 1-based ordinal of the failing statement (execution errors).
        line: Artifact line on which the failing statement starts.
    """

    kind: ErrorKind
    message: str
    position: int | None = None
    line: int | None = None

    @property
    def is_fatal(self) -> bool:
        """False only for post-restore verification failures (data committed)."""
        return self.kind is not ErrorKind.VERIFICATION


class SqlVaultError(Exception):
    """Base class for all backup/recovery errors."""

    kind: ErrorKind = ErrorKind.IO

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_error(self, prefix: str = "") -> OperationError:
        """Convert to the result-level ``OperationError``."""
        return OperationError(kind=self.kind, message=f"{prefix}{self.message}")


class StorageIOError(SqlVaultError):
    """Read, write or permission failure on artifacts or the catalog."""

    kind = ErrorKind.IO


class IntegrityError(SqlVaultError):
    """Checksum, header, footer or structure mismatch."""

    kind = ErrorKind.INTEGRITY


class CodecError(SqlVaultError):
    """Malformed statement stream."""

    kind = ErrorKind.CODEC


class ExecutionError(SqlVaultError):
    """A replayed statement was rejected by the database."""

    kind = ErrorKind.EXECUTION

    def __init__(
        self,
        message: str,
        position: int | None = None,
        line: int | None = None,
    ) -> None:
        super().__init__(message)
        self.position = position
        self.line = line

    def to_error(self, prefix: str = "") -> OperationError:
        return OperationError(
            kind=self.kind,
            message=f"{prefix}{self.message}",
            position=self.position,
            line=self.line,
        )


class NotFoundError(SqlVaultError):
    """Unknown backup id or missing artifact file."""

    kind = ErrorKind.NOT_FOUND


class ValidationError(SqlVaultError):
    """Bad caller input (e.g. an empty table list)."""

    kind = ErrorKind.VALIDATION


class VerificationFailed(SqlVaultError):
    """Post-restore sanity check failed after the restore was committed."""

    kind = ErrorKind.VERIFICATION


def error_from(error: OperationError, prefix: str = "") -> SqlVaultError:
    """Rebuild the exception for an ``OperationError`` returned by a nested operation."""
    if error.kind is ErrorKind.EXECUTION:
        return ExecutionError(f"{prefix}{error.message}", error.position, error.line)
    for cls in SqlVaultError.__subclasses__():
        if cls.kind is error.kind:
            return cls(f"{prefix}{error.message}")
    return SqlVaultError(f"{prefix}{error.message}")
