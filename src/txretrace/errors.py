"""
Exception hierarchy for txretrace.

All txretrace exceptions inherit from TxRetraceError, allowing callers to catch
every reconstruction failure with a single except clause.

Exception Categories:
    - NotFoundError: A chain object (transaction, block) does not exist
    - IntegrityViolationError: Cross-checked identifiers disagree
    - LibraryUnavailableError: No provider could supply a library cell
    - EngineFailureError: The emulator reported non-success
    - UnsupportedTransactionShapeError: Transaction kind cannot be traced
    - ProviderError: Transport or payload failure from a chain-data provider
    - ConfigError: Invalid configuration file
    - BackendUnavailableError: Codec or emulator backend cannot be loaded

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors carry context (stage, lt, hashes) where available
    - Only the missing-library signature is recovered locally; every error
      here propagates to the caller unchanged
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Lookup errors: 1xxx
ERROR_NOT_FOUND = 1001
ERROR_TRANSACTION_NOT_FOUND = 1002
ERROR_BLOCK_NOT_FOUND = 1003
ERROR_INTEGRITY_VIOLATION = 1101

# Library errors: 2xxx
ERROR_LIBRARY_UNAVAILABLE = 2001

# Engine errors: 3xxx
ERROR_ENGINE_FAILURE = 3001

# Assembly errors: 4xxx
ERROR_UNSUPPORTED_TRANSACTION = 4001

# Provider errors: 5xxx
ERROR_PROVIDER = 5001

# Configuration errors: 6xxx
ERROR_CONFIG = 6001
ERROR_BACKEND_UNAVAILABLE = 6002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class TxRetraceError(Exception):
    """
    Base exception for all txretrace errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Lookup Errors
# =============================================================================


@dataclass
class NotFoundError(TxRetraceError):
    """
    Raised when a chain object cannot be located.

    Attributes:
        stage: Pipeline stage that performed the lookup
    """

    stage: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Chain object not found during {self.stage or 'lookup'}"
        if self.code == 0:
            self.code = ERROR_NOT_FOUND
        self.context["stage"] = self.stage


@dataclass
class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction hash or handle yields zero records."""

    tx_hash: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot find transaction info: {self.tx_hash}"
        if self.code == 0:
            self.code = ERROR_TRANSACTION_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check the hash and whether it belongs to mainnet or testnet"
        if not self.stage:
            self.stage = "locate"
        super().__post_init__()
        self.context["tx_hash"] = self.tx_hash


@dataclass
class BlockNotFoundError(NotFoundError):
    """Raised when the shard block containing a transaction is missing."""

    workchain: int = 0
    shard: str = ""
    seqno: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Cannot find shard block for transaction "
                f"({self.workchain}:{self.shard}:{self.seqno})"
            )
        if self.code == 0:
            self.code = ERROR_BLOCK_NOT_FOUND
        if not self.stage:
            self.stage = "resolve_round"
        super().__post_init__()
        self.context.update({
            "workchain": self.workchain,
            "shard": self.shard,
            "seqno": self.seqno,
        })


@dataclass
class IntegrityViolationError(TxRetraceError):
    """
    Raised when two identifiers that must agree do not.

    Never retried: a mismatch means the located chain objects cannot be
    trusted as a replay basis.
    """

    stage: str = ""
    expected: str = ""
    actual: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Integrity violation: expected {self.expected}, got {self.actual}"
        if self.code == 0:
            self.code = ERROR_INTEGRITY_VIOLATION
        self.context.update({
            "stage": self.stage,
            "expected": self.expected,
            "actual": self.actual,
        })


# =============================================================================
# Library Errors
# =============================================================================


@dataclass
class LibraryUnavailableError(TxRetraceError):
    """
    Raised when every library provider failed for a required hash.

    Attributes:
        library_hash: Hex hash of the library cell
        provider_errors: Provider name -> failure description
    """

    library_hash: str = ""
    provider_errors: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            tried = ", ".join(self.provider_errors) or "no providers"
            self.message = f"Library {self.library_hash} unavailable (tried: {tried})"
        if self.code == 0:
            self.code = ERROR_LIBRARY_UNAVAILABLE
        if not self.suggestion:
            self.suggestion = "Configure an API key for toncenter or dton, or retry later"
        self.context.update({
            "library_hash": self.library_hash,
            "provider_errors": self.provider_errors,
        })


# =============================================================================
# Engine Errors
# =============================================================================


@dataclass
class EngineFailureError(TxRetraceError):
    """
    Raised when the emulator reports non-success for a transaction.

    Attributes:
        stage: "replay" for preceding transactions, "emulate" for the target
        lt: Logical time of the failing transaction
        reason: Error reported by the emulator
        logs: Executor log stream
        debug_logs: Debug log stream
    """

    stage: str = ""
    lt: int | None = None
    reason: str = ""
    logs: str = ""
    debug_logs: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Transaction failed for lt: {self.lt}, reason: {self.reason or 'unknown'}, "
                f"logs: {self.logs}, debugLogs: {self.debug_logs}"
            )
        if self.code == 0:
            self.code = ERROR_ENGINE_FAILURE
        self.context.update({
            "stage": self.stage,
            "lt": self.lt,
            "reason": self.reason,
        })


# =============================================================================
# Assembly Errors
# =============================================================================


@dataclass
class UnsupportedTransactionShapeError(TxRetraceError):
    """Raised for transactions the tracer cannot describe (non-generic, no in-message)."""

    kind: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Non-generic transactions are not supported. Given type: {self.kind}"
        if self.code == 0:
            self.code = ERROR_UNSUPPORTED_TRANSACTION
        self.context["kind"] = self.kind


# =============================================================================
# Provider Errors
# =============================================================================


@dataclass
class ProviderError(TxRetraceError):
    """
    Raised when a chain-data provider request fails.

    Attributes:
        provider: Provider name (e.g., "toncenter", "tonhub", "dton")
        url: Request URL
        status_code: HTTP status if a response was received
        underlying_error: Transport or payload error text
    """

    provider: str = ""
    url: str = ""
    status_code: int | None = None
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            detail = self.underlying_error or f"HTTP {self.status_code}"
            self.message = f"{self.provider} request failed ({self.url}): {detail}"
        if self.code == 0:
            self.code = ERROR_PROVIDER
        self.context.update({
            "provider": self.provider,
            "url": self.url,
            "status_code": self.status_code,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(TxRetraceError):
    """Raised when a configuration file cannot be loaded or validated."""

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG
        self.context["path"] = self.path


@dataclass
class BackendUnavailableError(TxRetraceError):
    """Raised when the codec/emulator backend cannot be loaded."""

    backend: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Backend '{self.backend}' is not available"
        if self.code == 0:
            self.code = ERROR_BACKEND_UNAVAILABLE
        self.context["backend"] = self.backend
