"""
Error taxonomy for auditchain.

Validation stages report failures as ``StageFailure`` values; fatal
conditions raise ``AuditChainError`` subclasses. Both are turned into
signed error responses at the pipeline boundary, and every HTTP status
code comes from ``STATUS_CODES``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSPORT_MISMATCH = "TRANSPORT_MISMATCH"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    UNPRIVILEGED = "UNPRIVILEGED"
    TIMESTAMP = "TIMESTAMP"
    BODY_FORMAT = "BODY_FORMAT"
    FIELD_VALIDATION = "FIELD_VALIDATION"
    KEY_DECODE = "KEY_DECODE"
    PERSISTENCE = "PERSISTENCE"
    RATE_LIMITED = "RATE_LIMITED"


# A malformed client key is reported as 500, matching the deployed
# behavior of the registration endpoint. Change FIELD_VALIDATION and
# KEY_DECODE here to move them to a 4xx code.
STATUS_CODES = {
    ErrorKind.TRANSPORT_MISMATCH: 500,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.UNPRIVILEGED: 403,
    ErrorKind.TIMESTAMP: 401,
    ErrorKind.BODY_FORMAT: 406,
    ErrorKind.FIELD_VALIDATION: 500,
    ErrorKind.KEY_DECODE: 500,
    ErrorKind.PERSISTENCE: 500,
    ErrorKind.RATE_LIMITED: 429,
}


@dataclass(frozen=True)
class StageFailure:
    """Outcome of a pipeline stage that refused the request."""
    kind: ErrorKind
    message: str
    # Only set when a collaborator dictates its own status (timestamps)
    status_override: Optional[int] = None

    @property
    def status_code(self) -> int:
        if self.status_override is not None:
            return self.status_override
        return STATUS_CODES[self.kind]


class AuditChainError(Exception):
    """Base class for fatal auditchain errors."""
    kind = ErrorKind.PERSISTENCE

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_failure(self) -> StageFailure:
        return StageFailure(self.kind, self.message)


class PersistenceCommitError(AuditChainError):
    """Raised when a client row could not be committed (after rollback)."""


class IdentityExhaustedError(AuditChainError):
    """Raised when no unused client identifier was found within the attempt bound."""


class DuplicateClientIdError(Exception):
    """Raised by a store when an insert violates the client id uniqueness constraint."""

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"client id already exists: {client_id}")


class TimestampValidationError(Exception):
    """Raised by a timestamp validator; carries the status code to respond with."""

    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class LedgerError(AuditChainError):
    """Raised when the ledger cannot append an entry."""
