"""
State Replayer for txretrace.

The StateReplayer rebuilds an account's exact pre-transaction state by
re-executing, oldest first, every transaction the account ran earlier in the
same masterchain block. Each engine result becomes the input of the next
step.

Design Principles:
    - Bit-exact: Snapshots are opaque bytes handed from one step to the next
    - Append-only: Every step produces a new versioned snapshot
    - Fail-fast: The first non-success result aborts the replay
    - Re-derived balance: The balance is decoded from each new snapshot,
      never accumulated arithmetically
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from txretrace.codec import DecodedTransaction, LedgerCodec
from txretrace.emulator import EmulationFailure, EmulationSession
from txretrace.errors import (
    EngineFailureError,
    IntegrityViolationError,
    UnsupportedTransactionShapeError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateSnapshot:
    """
    Opaque, versioned ShardAccount BOC.

    Attributes:
        boc: Serialized ShardAccount
        version: 0 for the state fetched from the chain, +1 per replayed step
        lt: Logical time of the transaction that produced it (None for version 0)
    """

    boc: bytes
    version: int = 0
    lt: int | None = None

    def successor(self, boc: bytes, lt: int) -> "StateSnapshot":
        """Return the snapshot produced by running one more transaction."""
        return StateSnapshot(boc=boc, version=self.version + 1, lt=lt)


@dataclass
class SnapshotChain:
    """
    Every snapshot produced during one replay, oldest first.

    Kept for debugging only; the replay result is always the last entry.
    """

    snapshots: list[StateSnapshot] = field(default_factory=list)

    def append(self, snapshot: StateSnapshot) -> None:
        if self.snapshots and snapshot.version != self.snapshots[-1].version + 1:
            raise ValueError(
                f"Snapshot version {snapshot.version} does not follow "
                f"{self.snapshots[-1].version}"
            )
        self.snapshots.append(snapshot)

    @property
    def head(self) -> StateSnapshot:
        return self.snapshots[-1]

    def __iter__(self) -> Iterator[StateSnapshot]:
        return iter(self.snapshots)

    def __len__(self) -> int:
        return len(self.snapshots)


@dataclass(frozen=True)
class ReplayOutcome:
    """
    Result of a replay.

    Attributes:
        snapshot: State right before the target transaction
        balance: Balance decoded from that state
        chain: Every intermediate snapshot, starting with the input
    """

    snapshot: StateSnapshot
    balance: int
    chain: SnapshotChain


class StateReplayer:
    """
    Replays preceding transactions through the emulator.

    Usage:
        replayer = StateReplayer(codec)
        outcome = await replayer.replay(start, balance, previous, session)
        target_result = await session.run(msg, outcome.snapshot.boc, ...)
    """

    def __init__(self, codec: LedgerCodec) -> None:
        self.codec = codec

    async def replay(
        self,
        start: StateSnapshot,
        start_balance: int,
        transactions: Sequence[DecodedTransaction],
        session: EmulationSession,
    ) -> ReplayOutcome:
        """
        Replay `transactions` (oldest first) starting from `start`.

        Returns:
            ReplayOutcome with the final snapshot and balance; the inputs
            unchanged when `transactions` is empty

        Raises:
            IntegrityViolationError: If logical times are not strictly increasing
            UnsupportedTransactionShapeError: If a transaction has no incoming message
            EngineFailureError: On the first non-success engine result
        """
        in_messages = self._check_sequence(transactions)

        chain = SnapshotChain([start])
        snapshot = start
        balance = start_balance

        for tx, in_msg in zip(transactions, in_messages):
            result = await session.run(in_msg, snapshot.boc, lt=tx.lt, now=tx.now)

            if isinstance(result, EmulationFailure):
                raise EngineFailureError(
                    stage="replay",
                    lt=tx.lt,
                    reason=result.error,
                    logs=result.logs,
                    debug_logs=result.debug_logs,
                )

            snapshot = snapshot.successor(result.shard_account, tx.lt)
            chain.append(snapshot)
            balance = self.codec.decode_shard_account(snapshot.boc).balance
            logger.debug("Replayed lt=%d -> snapshot v%d, balance=%d", tx.lt, snapshot.version, balance)

        return ReplayOutcome(snapshot=snapshot, balance=balance, chain=chain)

    @staticmethod
    def _check_sequence(transactions: Sequence[DecodedTransaction]) -> list[bytes]:
        """Reject sequences the engine must never see; return the incoming messages."""
        in_messages: list[bytes] = []
        previous_lt: int | None = None
        for tx in transactions:
            if previous_lt is not None and tx.lt <= previous_lt:
                raise IntegrityViolationError(
                    stage="replay",
                    message=f"Preceding transactions out of order: lt {tx.lt} after {previous_lt}",
                    expected=f"lt > {previous_lt}",
                    actual=str(tx.lt),
                )
            if tx.in_msg_boc is None:
                raise UnsupportedTransactionShapeError(
                    kind=tx.description.kind,
                    message=f"Cannot replay transaction at lt {tx.lt} without an incoming message",
                )
            previous_lt = tx.lt
            in_messages.append(tx.in_msg_boc)
        return in_messages
