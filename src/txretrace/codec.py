"""
Ledger codec interface.

The reconstruction pipeline never reads serialized ledger structures
directly. Every field it needs (balances, code references, message values,
state hashes) is obtained through a LedgerCodec, which converts between
bag-of-cells (BOC) bytes and the normalized records defined here.

Design Principles:
    - Snapshots and transactions stay opaque BOC bytes between steps
    - Decoding is explicit and side-effect free
    - Records here carry only what the pipeline consumes, nothing more
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from txretrace.schema import AccountSnapshot, OutAction

if TYPE_CHECKING:
    from txretrace.libraries import LibraryTable


class MessageKind(str, Enum):
    """Message header variants."""

    INTERNAL = "internal"
    EXTERNAL_IN = "external_in"
    EXTERNAL_OUT = "external_out"


@dataclass(frozen=True)
class CellBits:
    """
    Root cell of a BOC, as seen by the library detection rule.

    Attributes:
        bit_length: Number of data bits in the cell
        data: Data bits, left-aligned and padded to whole bytes
        exotic: Whether the cell is an exotic (special) cell
    """

    bit_length: int
    data: bytes
    exotic: bool = False


@dataclass(frozen=True)
class DecodedMessage:
    """
    A decoded message (incoming or outgoing).

    Attributes:
        kind: Header variant
        src: Raw source address (internal and external-out messages)
        dest: Raw destination address (internal and external-in messages)
        value: Attached nanotons, 0 for external messages
        bounced: Whether the internal message is a bounce
        init_code: Code cell BOC of the attached StateInit, if any
        body_bit_length: Number of bits in the body's root cell
        body_head: Leading bytes of the body (at least 8 when available)
    """

    kind: MessageKind
    src: str | None = None
    dest: str | None = None
    value: int = 0
    bounced: bool = False
    init_code: bytes | None = None
    body_bit_length: int = 0
    body_head: bytes = b""


@dataclass(frozen=True)
class ComputePhase:
    """Compute phase of an ordinary transaction; skipped phases carry no stats."""

    skipped: bool
    success: bool = False
    exit_code: int = 0
    vm_steps: int = 0
    gas_used: int = 0
    gas_fees: int = 0
    skip_reason: str | None = None


@dataclass(frozen=True)
class ActionPhase:
    """Action phase summary."""

    success: bool
    result_code: int


@dataclass(frozen=True)
class TransactionDescription:
    """
    Transaction description.

    kind is "generic" for ordinary transactions; any other value (tick-tock,
    split, merge, storage) is carried verbatim for error reporting.
    """

    kind: str
    compute: ComputePhase | None = None
    action: ActionPhase | None = None
    aborted: bool = False


@dataclass(frozen=True)
class DecodedTransaction:
    """
    A decoded transaction.

    Attributes:
        account: Raw address of the account
        lt: Logical time
        now: Unix time the transaction ran at
        hash: Hash of the transaction cell
        in_msg: Decoded incoming message, None for messageless transactions
        in_msg_boc: Incoming message cell as a BOC, fed to the emulator
        out_msgs: Decoded outgoing messages
        total_fees: Total fees in nanotons
        old_state_hash: Account state hash before the transaction
        new_state_hash: Account state hash after the transaction
        description: Description with phase summaries
    """

    account: str
    lt: int
    now: int
    hash: bytes
    in_msg: DecodedMessage | None
    in_msg_boc: bytes | None
    out_msgs: list[DecodedMessage] = field(default_factory=list)
    total_fees: int = 0
    old_state_hash: bytes = b""
    new_state_hash: bytes = b""
    description: TransactionDescription = field(
        default_factory=lambda: TransactionDescription(kind="generic")
    )


class LedgerCodec(Protocol):
    """
    Canonical encoding and decoding of ledger structures.

    Implementations:
        - TonpyCodec: backed by the tonpy cell library
        - (tests) FakeCodec: in-memory JSON "BOCs"
    """

    def inspect_cell(self, boc: bytes) -> CellBits:
        """Return the bits and exotic flag of the BOC's root cell."""
        ...

    def decode_transaction(self, boc: bytes) -> DecodedTransaction:
        """Decode a transaction cell."""
        ...

    def decode_shard_account(self, boc: bytes) -> AccountSnapshot:
        """Decode a ShardAccount cell into an AccountSnapshot."""
        ...

    def encode_shard_account(self, account: AccountSnapshot) -> bytes:
        """Encode an AccountSnapshot as a ShardAccount BOC."""
        ...

    def decode_out_actions(self, c5: bytes) -> list[OutAction]:
        """Decode the out-action list held in a c5 register cell."""
        ...

    def encode_library_dict(self, libraries: "LibraryTable") -> bytes:
        """Encode a library table as a 256-bit-keyed dictionary BOC."""
        ...

    def parse_address(self, text: str) -> str:
        """Normalize a raw or user-friendly address to raw form."""
        ...
