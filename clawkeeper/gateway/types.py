"""Result models returned by the gateway supervision and storage operations."""

from enum import Enum

from pydantic import BaseModel

from .errors import GatewayError


class Outcome(str, Enum):
    """Tri-state outcome of every public operation."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class BackupKind(str, Enum):
    VERSIONED = "versioned"
    GOLDEN = "golden"


class IdentityState(str, Enum):
    """Classification of the identity document."""

    MISSING = "missing"
    EMPTY = "empty"
    MINIMAL = "minimal"
    HEALTHY = "healthy"


class HealthStatus(BaseModel):
    healthy: bool
    reason: str | None = None


class SyncResult(BaseModel):
    success: bool
    last_sync: str | None = None
    error: str | None = None
    details: str | None = None
    skipped_reason: str | None = None
    error_kind: str | None = None
    hint: str | None = None

    @classmethod
    def from_error(cls, error: GatewayError) -> "SyncResult":
        return cls(
            success=False,
            error=str(error),
            details=error.details,
            error_kind=error.kind,
            hint=error.hint,
        )

    @property
    def outcome(self) -> Outcome:
        if self.success:
            return Outcome.SUCCESS
        if self.skipped_reason:
            return Outcome.SKIPPED
        return Outcome.FAILED


class VersionedBackupResult(BaseModel):
    success: bool
    path: str | None = None
    error: str | None = None


class GoldenBackupResult(BaseModel):
    success: bool
    path: str | None = None
    timestamp: str | None = None
    error: str | None = None
    skipped_reason: str | None = None

    @property
    def outcome(self) -> Outcome:
        if self.success:
            return Outcome.SUCCESS
        if self.skipped_reason:
            return Outcome.SKIPPED
        return Outcome.FAILED


class BackupListing(BaseModel):
    versioned: list[str] = []
    golden: list[str] = []
    error: str | None = None


class RestartResult(BaseModel):
    killed_previous: bool
    previous_process_id: str | None = None
