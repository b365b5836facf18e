"""
Execution engine interface.

The emulator is a black box: it takes a ShardAccount snapshot, a message and
the round context, and returns either the new snapshot with the produced
transaction or a failure. This module defines the request/result types and
EmulationSession, which binds the per-round context (config, libraries,
random seed) so callers only pass what changes per transaction.

Design Principles:
    - One engine invocation produces exactly one result
    - Results are tagged: EmulationSuccess or EmulationFailure
    - Engines never raise for a non-success run; they return EmulationFailure
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from txretrace.libraries import LibraryTable
from txretrace.schema import EmulatorVersion


@dataclass(frozen=True)
class EmulationRequest:
    """
    Everything the engine needs to run one transaction.

    Attributes:
        shard_account: ShardAccount BOC the transaction starts from
        message: Incoming message BOC
        config: Global config cell BOC
        libraries: Library table, None when no libraries are needed
        random_seed: 32-byte block random seed
        lt: Logical time of the transaction
        now: Unix time of the transaction
    """

    shard_account: bytes
    message: bytes
    config: bytes
    libraries: LibraryTable | None
    random_seed: bytes
    lt: int
    now: int


@dataclass(frozen=True)
class EmulationSuccess:
    """
    Successful engine run.

    Attributes:
        shard_account: Resulting ShardAccount BOC
        transaction: Produced transaction BOC
        logs: Executor log stream
        debug_logs: Debug log stream
        vm_log: Verbose VM log
        actions: c5 register cell BOC, None when absent
    """

    shard_account: bytes
    transaction: bytes
    logs: str = ""
    debug_logs: str = ""
    vm_log: str = ""
    actions: bytes | None = None

    success = True


@dataclass(frozen=True)
class EmulationFailure:
    """Non-success engine run."""

    error: str
    logs: str = ""
    debug_logs: str = ""

    success = False


EmulationResult = EmulationSuccess | EmulationFailure


class Emulator(ABC):
    """
    Abstract transaction emulator.

    Implementations:
        - TonpyEmulator: emulator shared library through tonpy
        - (tests) FakeEmulator: scripted results
    """

    @abstractmethod
    async def run_transaction(self, request: EmulationRequest) -> EmulationResult:
        """Execute one transaction."""

    def version(self) -> EmulatorVersion:
        """Return build information of the engine."""
        return EmulatorVersion()


class EmulationSession:
    """
    Round-scoped emulator binding.

    Holds the config, library table and random seed shared by every
    transaction of the round.

    Example:
        session = EmulationSession(emulator, config_boc, libraries, seed)
        result = await session.run(message_boc, snapshot_boc, lt=lt, now=now)
    """

    def __init__(
        self,
        emulator: Emulator,
        config: bytes,
        libraries: LibraryTable | None,
        random_seed: bytes,
    ):
        self.emulator = emulator
        self.config = config
        self.libraries = libraries
        self.random_seed = random_seed

    async def run(self, message: bytes, shard_account: bytes, *, lt: int, now: int) -> EmulationResult:
        """Run one transaction against the given snapshot."""
        return await self.emulator.run_transaction(
            EmulationRequest(
                shard_account=shard_account,
                message=message,
                config=self.config,
                libraries=self.libraries,
                random_seed=self.random_seed,
                lt=lt,
                now=now,
            )
        )
