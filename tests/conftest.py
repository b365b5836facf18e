"""
Pytest configuration and fixtures for txretrace tests.

This module provides shared fixtures used across unit and integration tests.
The fakes themselves live in tests/fakes.py.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from fakes import ACCOUNT, FakeCodec, FakeEmulator, code_cell
from txretrace.schema import AccountSnapshot, AccountStateType


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def emulator() -> FakeEmulator:
    return FakeEmulator()


@pytest.fixture
def wallet_account() -> AccountSnapshot:
    """An active account with 10 TON and plain code."""
    return AccountSnapshot(
        address=ACCOUNT,
        balance=10_000_000_000,
        state=AccountStateType.ACTIVE,
        code=code_cell("wallet"),
        data=b'{"seen": []}',
        last_trans_lt=46_999_999_000_000,
        last_trans_hash=b"\x11" * 32,
        storage_last_trans_lt=46_999_999_000_000,
    )


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a configuration YAML for testing."""
    return """
testnet: true
toncenter_api_key: "tc-key"
timeout_seconds: 5
library_fallback_delay_seconds: 0
"""
