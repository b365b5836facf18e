"""
Unit tests for error hierarchy.

Tests cover:
- Base TxRetraceError behavior
- Lookup errors with context
- Library, engine and provider errors
- Error serialization
"""

import pytest

from txretrace.errors import (
    ERROR_BACKEND_UNAVAILABLE,
    ERROR_BLOCK_NOT_FOUND,
    ERROR_CONFIG,
    ERROR_ENGINE_FAILURE,
    ERROR_INTEGRITY_VIOLATION,
    ERROR_LIBRARY_UNAVAILABLE,
    ERROR_NOT_FOUND,
    ERROR_PROVIDER,
    ERROR_TRANSACTION_NOT_FOUND,
    ERROR_UNSUPPORTED_TRANSACTION,
    BackendUnavailableError,
    BlockNotFoundError,
    ConfigError,
    EngineFailureError,
    IntegrityViolationError,
    LibraryUnavailableError,
    NotFoundError,
    ProviderError,
    TransactionNotFoundError,
    TxRetraceError,
    UnsupportedTransactionShapeError,
)


class TestTxRetraceError:
    """Tests for base TxRetraceError."""

    def test_basic_error(self) -> None:
        """Create a basic error with message."""
        err = TxRetraceError(message="Something went wrong", code=9999)
        assert err.message == "Something went wrong"
        assert err.code == 9999
        assert err.suggestion is None
        assert err.context == {}

    def test_error_with_suggestion(self) -> None:
        err = TxRetraceError(message="Failed", code=1, suggestion="Try again")
        assert "Suggestion: Try again" in str(err)

    def test_str_format(self) -> None:
        """String format includes code and message."""
        err = TxRetraceError(message="Test error", code=1234)
        assert str(err) == "[E1234] Test error"

    def test_repr_format(self) -> None:
        err = TxRetraceError(message="Test", code=1)
        assert "TxRetraceError" in repr(err)
        assert "message='Test'" in repr(err)

    def test_is_exception(self) -> None:
        with pytest.raises(TxRetraceError):
            raise TxRetraceError(message="boom", code=1)

    def test_to_dict(self) -> None:
        err = TxRetraceError(message="Test", code=42, context={"a": 1})
        assert err.to_dict() == {
            "error_type": "TxRetraceError",
            "message": "Test",
            "code": 42,
            "suggestion": None,
            "context": {"a": 1},
        }


class TestLookupErrors:
    """Tests for NotFoundError and its subclasses."""

    def test_not_found_defaults(self) -> None:
        err = NotFoundError(stage="library")
        assert err.code == ERROR_NOT_FOUND
        assert err.context["stage"] == "library"
        assert "library" in err.message

    def test_transaction_not_found(self) -> None:
        err = TransactionNotFoundError(tx_hash="ab" * 32)
        assert err.code == ERROR_TRANSACTION_NOT_FOUND
        assert err.message == f"Cannot find transaction info: {'ab' * 32}"
        assert err.stage == "locate"
        assert err.context["tx_hash"] == "ab" * 32
        assert err.suggestion is not None

    def test_transaction_not_found_is_not_found(self) -> None:
        assert isinstance(TransactionNotFoundError(tx_hash="x"), NotFoundError)

    def test_block_not_found(self) -> None:
        err = BlockNotFoundError(workchain=0, shard="0x8000000000000000", seqno=7)
        assert err.code == ERROR_BLOCK_NOT_FOUND
        assert "0:0x8000000000000000:7" in err.message
        assert err.context["seqno"] == 7
        assert err.context["stage"] == "resolve_round"

    def test_integrity_violation(self) -> None:
        err = IntegrityViolationError(stage="resolve_round", expected="A", actual="B")
        assert err.code == ERROR_INTEGRITY_VIOLATION
        assert err.message == "Integrity violation: expected A, got B"
        assert err.context == {"stage": "resolve_round", "expected": "A", "actual": "B"}


class TestPipelineErrors:
    """Tests for library, engine, shape and provider errors."""

    def test_library_unavailable_lists_providers(self) -> None:
        err = LibraryUnavailableError(
            library_hash="AA" * 32,
            provider_errors={"toncenter": "HTTP 500", "dton": "not found"},
        )
        assert err.code == ERROR_LIBRARY_UNAVAILABLE
        assert "toncenter, dton" in err.message
        assert err.context["provider_errors"]["dton"] == "not found"

    def test_engine_failure_message(self) -> None:
        err = EngineFailureError(stage="emulate", lt=123, reason="oops", logs="L", debug_logs="D")
        assert err.code == ERROR_ENGINE_FAILURE
        assert err.message == "Transaction failed for lt: 123, reason: oops, logs: L, debugLogs: D"
        assert err.context["lt"] == 123

    def test_unsupported_shape(self) -> None:
        err = UnsupportedTransactionShapeError(kind="tick_tock")
        assert err.code == ERROR_UNSUPPORTED_TRANSACTION
        assert err.message == "Non-generic transactions are not supported. Given type: tick_tock"

    def test_provider_error_status(self) -> None:
        err = ProviderError(provider="tonhub", url="https://x/block/1", status_code=503)
        assert err.code == ERROR_PROVIDER
        assert "HTTP 503" in err.message
        assert err.context["provider"] == "tonhub"

    def test_provider_error_underlying(self) -> None:
        err = ProviderError(provider="toncenter", url="u", underlying_error="Timed out after 20s")
        assert err.message.endswith("Timed out after 20s")

    def test_config_error(self) -> None:
        err = ConfigError(path="/tmp/c.yaml")
        assert err.code == ERROR_CONFIG
        assert err.context["path"] == "/tmp/c.yaml"

    def test_backend_unavailable(self) -> None:
        err = BackendUnavailableError(backend="tonpy")
        assert err.code == ERROR_BACKEND_UNAVAILABLE
        assert "tonpy" in err.message
