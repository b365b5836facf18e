"""
Schema definitions for txretrace.

This module defines the Pydantic models used throughout txretrace:
- TransactionHandle/ConsensusRoundBound: Coordinates of a transaction to replay
- BlockId/ShardBlock/TopBlock: Normalized chain objects returned by providers
- AccountSnapshot: Decoded account state as of a block
- TraceReport: The final, immutable result of a reconstruction
- RetraceConfig: Endpoints, keys and pacing for providers

Design Decisions:
    - Models are immutable (frozen=True); a reconstruction never edits a record
    - Binary values (hashes, BOCs) are kept as bytes; rendering converts to hex
    - Provider payloads are validated by provider-local models and converted
      into these types at the boundary
"""

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from txretrace.errors import ConfigError


# =============================================================================
# Enums
# =============================================================================


class AccountStateType(str, Enum):
    """Lifecycle state of an account."""

    UNINIT = "uninit"
    ACTIVE = "active"
    FROZEN = "frozen"


class RetraceState(str, Enum):
    """States of the retry controller."""

    LOCATING = "locating"
    RECONSTRUCTING = "reconstructing"
    EMULATING = "emulating"
    DIAGNOSING = "diagnosing"
    RETRYING = "retrying"
    VERIFIED = "verified"
    UNRESOLVED = "unresolved"
    FAILED = "failed"


# =============================================================================
# Chain Coordinates
# =============================================================================


def normalize_raw_address(address: str) -> str:
    """Normalize a raw "workchain:hex" address to upper-case, zero-padded form."""
    workchain, sep, account = address.partition(":")
    if not sep:
        msg = f"Not a raw address: {address}"
        raise ValueError(msg)
    return f"{int(workchain)}:{int(account, 16):064X}"


def unsigned_shard(value: Any) -> int:
    """Normalize a signed, unsigned or string shard id to unsigned 64-bit form."""
    shard = int(value, 0) if isinstance(value, str) else int(value)
    if shard < 0:
        shard += 1 << 64
    return shard


class TransactionHandle(BaseModel):
    """
    Minimal handle locating a transaction on the ledger.

    The (lt, hash, address) triple is unique and can be passed to the
    account-transaction endpoints to retrieve the full record.

    Attributes:
        lt: Logical time of the transaction
        hash: Raw 256-bit hash of the transaction cell
        address: Raw address ("workchain:HEX") of the account
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    lt: int = Field(..., description="Logical time", ge=0)
    hash: bytes = Field(..., description="Transaction hash (32 bytes)")
    address: str = Field(..., description="Raw account address")

    @field_validator("hash")
    @classmethod
    def validate_hash(cls, v: bytes) -> bytes:
        """Transaction hashes are exactly 256 bits."""
        if len(v) != 32:
            msg = f"Transaction hash must be 32 bytes, got {len(v)}"
            raise ValueError(msg)
        return v

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Store addresses in canonical raw form."""
        return normalize_raw_address(v)


class BlockId(BaseModel):
    """
    Identifier of a shard or masterchain block.

    The shard is always stored as an unsigned 64-bit integer; providers that
    report it as a signed value are normalized on construction.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    workchain: int
    shard: int
    seqno: int = Field(..., ge=0)
    root_hash: str | None = None
    file_hash: str | None = None

    @field_validator("shard", mode="before")
    @classmethod
    def normalize_shard(cls, v: Any) -> int:
        """Convert signed or string shard ids to unsigned 64-bit form."""
        return unsigned_shard(v)

    @property
    def shard_hex(self) -> str:
        """Shard as a 0x-prefixed hex string (toncenter query format)."""
        return f"0x{self.shard:x}"


class ShardBlock(BaseModel):
    """A shard block header with the masterchain block that references it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    block: BlockId
    root_hash: str
    masterchain_seqno: int = Field(..., ge=0)
    rand_seed: bytes


class ShardTransactionRef(BaseModel):
    """A transaction listed in a shard summary of a masterchain block."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    account: str
    lt: int
    hash: str


class ShardSummary(BaseModel):
    """One shard entry of a full masterchain block."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    workchain: int
    shard: int
    seqno: int
    root_hash: str | None = None
    file_hash: str | None = None
    transactions: list[ShardTransactionRef] = Field(default_factory=list)

    @field_validator("shard", mode="before")
    @classmethod
    def normalize_shard(cls, v: Any) -> int:
        """Convert signed or string shard ids to unsigned 64-bit form."""
        return unsigned_shard(v)


class TopBlock(BaseModel):
    """A full masterchain block, including every shard summary."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    seqno: int = Field(..., ge=0)
    shards: list[ShardSummary] = Field(default_factory=list)


class ConsensusRoundBound(BaseModel):
    """
    Execution context shared by an account's transactions in one masterchain block.

    Attributes:
        top_block_seqno: Masterchain block sequence number
        random_seed: Block random seed, mandatory for deterministic replay
        min_lt: Earliest logical time for the account inside the block
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    top_block_seqno: int = Field(..., ge=0)
    random_seed: bytes
    min_lt: int = Field(..., ge=0)


class FetchedTransaction(BaseModel):
    """
    A single encoded transaction with the shard block that holds it.

    Attributes:
        boc: Single-root transaction BOC, None when no record was returned
        block: Shard block containing the transaction, when known
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    boc: bytes | None = None
    block: BlockId | None = None


class ListedTransaction(BaseModel):
    """An encoded transaction returned by an account-history listing."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    lt: int
    hash: bytes
    boc: bytes


# =============================================================================
# Account State
# =============================================================================


class AccountSnapshot(BaseModel):
    """
    Decoded account state as stored in a ShardAccount.

    Attributes:
        address: Raw account address
        balance: Balance in nanotons
        state: Lifecycle state
        code: Code cell BOC (active accounts)
        data: Data cell BOC (active accounts)
        frozen_state_hash: State hash of a frozen account
        last_trans_lt: Logical time of the last transaction
        last_trans_hash: Hash of the last transaction
        storage_last_trans_lt: Logical time recorded in the account storage
        storage_used_bits: Storage statistics, bits
        storage_used_cells: Storage statistics, cells
        storage_last_paid: Unix time storage was last paid
        due_payment: Outstanding storage fee, if any
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str
    balance: int = Field(default=0, ge=0)
    state: AccountStateType = AccountStateType.UNINIT
    code: bytes | None = None
    data: bytes | None = None
    frozen_state_hash: bytes | None = None
    last_trans_lt: int = 0
    last_trans_hash: bytes = b"\x00" * 32
    storage_last_trans_lt: int = 0
    storage_used_bits: int = 0
    storage_used_cells: int = 0
    storage_last_paid: int = 0
    due_payment: int | None = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Store addresses in canonical raw form."""
        return normalize_raw_address(v)


# =============================================================================
# Report Models
# =============================================================================


class ComputePhaseSummary(BaseModel):
    """
    Compute phase of the emulated transaction.

    Attributes:
        success: Whether the phase succeeded
        exit_code: Exit code (action-phase result code when compute reported 0)
        vm_steps: Number of VM steps executed
        gas_used: Gas consumed
        gas_fees: Gas fees charged
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    exit_code: int
    vm_steps: int
    gas_used: int
    gas_fees: int


ComputeInfo = ComputePhaseSummary | Literal["skipped"]


class OutAction(BaseModel):
    """One decoded action from the c5 register."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str
    mode: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class TraceInMessage(BaseModel):
    """
    Incoming message of the traced transaction.

    sender and amount are None for external messages.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    sender: str | None = None
    contract: str
    amount: int | None = None
    opcode: int | None = None


class TraceMoney(BaseModel):
    """Money flow of the traced transaction, in nanotons."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    balance_before: int
    sent_total: int
    total_fees: int
    balance_after: int


class TraceEmulatedTx(BaseModel):
    """
    Emulated transaction details.

    Attributes:
        raw: Hex BOC of the on-chain transaction that was traced
        utime: Unix time of the emulated transaction
        lt: Logical time of the emulated transaction
        compute_info: Compute-phase summary or "skipped"
        executor_logs: Executor log stream
        actions: Decoded c5 actions
        c5: Raw c5 cell BOC, None when the register was absent
        vm_logs: Verbose TVM log
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    raw: str = ""
    utime: int
    lt: int
    compute_info: ComputeInfo
    executor_logs: str = ""
    actions: list[OutAction] = Field(default_factory=list)
    c5: bytes | None = None
    vm_logs: str = ""


class EmulatorVersion(BaseModel):
    """
    Build information of the emulator used.

    Attributes:
        commit_hash: Commit of the emulator library, when the backend exposes it
        commit_date: Date of that commit
        release: Released package that ships the emulator, e.g. "tonpy 0.0.0.5.2b0"
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    commit_hash: str = ""
    commit_date: str = ""
    release: str = ""


class TraceReport(BaseModel):
    """
    Final result of a reconstruction.

    Attributes:
        state_update_hash_ok: True when the emulated new state hash equals the on-chain one
        code_cell: Code that actually ran (library content when code is a library cell)
        original_code_cell: Code as stored on-chain
        in_msg: Incoming message summary
        money: Money flow
        emulated_tx: Emulated transaction details
        emulator_version: Emulator build information
        library_hashes: Hex hashes of every library supplied to the emulator
        retries: Number of retry rounds taken to resolve missing libraries
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    state_update_hash_ok: bool
    code_cell: bytes | None = None
    original_code_cell: bytes | None = None
    in_msg: TraceInMessage
    money: TraceMoney
    emulated_tx: TraceEmulatedTx
    emulator_version: EmulatorVersion = Field(default_factory=EmulatorVersion)
    library_hashes: list[str] = Field(default_factory=list)
    retries: int = 0


# =============================================================================
# Configuration
# =============================================================================


class RetraceConfig(BaseModel):
    """
    Provider configuration for one or more reconstructions.

    Endpoints are derived from `testnet` unless explicitly overridden.

    Attributes:
        testnet: Work against testnet endpoints
        toncenter_api_key: API key sent as X-API-Key to toncenter
        dton_api_key: API key embedded in the dton GraphQL URL
        timeout_seconds: HTTP timeout for every provider request
        library_fallback_delay_seconds: Pause before each fallback library provider
        transactions_page_limit: Page size for account-history listings
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    testnet: bool = False
    toncenter_api_key: str | None = None
    dton_api_key: str | None = None
    timeout_seconds: float = Field(default=20.0, gt=0)
    library_fallback_delay_seconds: float = Field(default=1.0, ge=0)
    transactions_page_limit: int = Field(default=1000, gt=0, le=1000)
    toncenter_url: str | None = None
    tonhub_url: str | None = None
    dton_url: str | None = None
    account_fallback_url: str | None = None

    @property
    def toncenter_endpoint(self) -> str:
        """Base URL of toncenter (v2 and v3 APIs live below it)."""
        if self.toncenter_url:
            return self.toncenter_url.rstrip("/")
        return f"https://{'testnet.' if self.testnet else ''}toncenter.com"

    @property
    def tonhub_endpoint(self) -> str:
        """Base URL of the tonhub v4 API."""
        if self.tonhub_url:
            return self.tonhub_url.rstrip("/")
        return f"https://{'sandbox' if self.testnet else 'mainnet'}-v4.tonhubapi.com"

    @property
    def account_fallback_endpoint(self) -> str:
        """Base URL used when the primary account lookup fails."""
        if self.account_fallback_url:
            return self.account_fallback_url.rstrip("/")
        return self.tonhub_endpoint

    @property
    def dton_endpoint(self) -> str | None:
        """GraphQL URL of dton, None when no key is configured."""
        if self.dton_url:
            return self.dton_url
        if not self.dton_api_key:
            return None
        return f"https://{'testnet.' if self.testnet else ''}dton.io/{self.dton_api_key}/graphql"

    def with_env(self, environ: Mapping[str, str]) -> "RetraceConfig":
        """Fill API keys missing from the config from TONCENTER_API_KEY / DTON_API_KEY."""
        updates: dict[str, Any] = {}
        if self.toncenter_api_key is None and environ.get("TONCENTER_API_KEY"):
            updates["toncenter_api_key"] = environ["TONCENTER_API_KEY"]
        if self.dton_api_key is None and environ.get("DTON_API_KEY"):
            updates["dton_api_key"] = environ["DTON_API_KEY"]
        return self.model_copy(update=updates) if updates else self


def load_config(path: Path | str) -> RetraceConfig:
    """
    Load a configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated RetraceConfig

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the YAML is malformed or doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(path=str(path), message=f"Invalid YAML in {path}: {e}") from e

    return _validate_config(data, str(path))


def load_config_from_string(content: str) -> RetraceConfig:
    """Load a configuration from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(path="<string>", message=f"Invalid YAML: {e}") from e
    return _validate_config(data, "<string>")


def _validate_config(data: Any, source: str) -> RetraceConfig:
    try:
        return RetraceConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(path=source, message=f"Invalid configuration in {source}: {e}") from e
