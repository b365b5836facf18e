"""
Retry Controller for txretrace.

RetraceEngine orchestrates one reconstruction: locate the chain objects,
resolve libraries, replay the earlier transactions of the round, emulate the
target and assemble the report. When the target fails with the
missing-library signature, the library named in the VM log is fetched and
the pipeline runs again with it.

States:
    LOCATING -> RECONSTRUCTING -> EMULATING -> VERIFIED
    EMULATING -> DIAGNOSING -> RETRYING -> LOCATING
    DIAGNOSING -> UNRESOLVED (exit code 9 the controller cannot act on)
    any -> FAILED (error re-raised)

Design Principles:
    - The retry is an explicit loop over an accumulating LibraryTable
    - Each round adds exactly one new library hash; a hash that is already
      present ends the loop, so the number of rounds is bounded
    - Every error other than the missing-library signature propagates
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from txretrace.codec import LedgerCodec
from txretrace.emulator import EmulationFailure, EmulationSession, Emulator
from txretrace.errors import EngineFailureError, TxRetraceError, UnsupportedTransactionShapeError
from txretrace.libraries import LibraryResolver, LibraryTable
from txretrace.locator import ChainLocator
from txretrace.replay import StateReplayer, StateSnapshot
from txretrace.report.assembler import AssembledTrace, TraceAssembler, message_opcode
from txretrace.schema import (
    AccountStateType,
    RetraceState,
    TraceEmulatedTx,
    TraceReport,
    TransactionHandle,
)
from txretrace.vmlog import find_missing_library_cell, parse_vm_log

logger = logging.getLogger(__name__)

LIBRARY_LOAD_EXIT_CODE = 9


@dataclass
class RetraceRun:
    """
    Bookkeeping for one reconstruction.

    Attributes:
        tx_hash: Hex hash being traced
        state: Current controller state
        history: Every state entered, in order
        retries: Number of completed retry rounds
    """

    tx_hash: str
    state: RetraceState = RetraceState.LOCATING
    history: list[RetraceState] = field(default_factory=list)
    retries: int = 0

    def enter(self, state: RetraceState) -> None:
        logger.debug("%s: %s -> %s", self.tx_hash, self.state.value, state.value)
        self.state = state
        self.history.append(state)


@dataclass(frozen=True)
class Attempt:
    """Outcome of one pass through the pipeline."""

    report: TraceReport
    trace: AssembledTrace
    libraries: LibraryTable


class RetraceEngine:
    """
    Reconstructs and verifies historical transactions.

    Usage:
        engine = RetraceEngine(locator, resolver, emulator, codec)
        report = await engine.retrace("9f2c...")
        print(report.state_update_hash_ok)
    """

    def __init__(
        self,
        locator: ChainLocator,
        resolver: LibraryResolver,
        emulator: Emulator,
        codec: LedgerCodec,
    ):
        self.locator = locator
        self.resolver = resolver
        self.emulator = emulator
        self.codec = codec
        self.replayer = StateReplayer(codec)
        self.assembler = TraceAssembler(codec)
        self.last_run: RetraceRun | None = None

    async def retrace(self, tx_hash: str | bytes) -> TraceReport:
        """
        Retrace a transaction by hash.

        Raises:
            TxRetraceError: Any fatal error, with `failed_stage` in its context
        """
        label = tx_hash.hex() if isinstance(tx_hash, bytes) else tx_hash
        run = self.last_run = RetraceRun(tx_hash=label)
        run.enter(RetraceState.LOCATING)
        try:
            handle = await self.locator.locate(tx_hash)
        except TxRetraceError as e:
            self._fail(run, e)
            raise
        return await self._run(run, handle, None)

    async def retrace_handle(
        self,
        handle: TransactionHandle,
        additional_libraries: Mapping[bytes, bytes] | None = None,
    ) -> TraceReport:
        """Retrace an already located transaction, seeding the library table."""
        run = self.last_run = RetraceRun(tx_hash=handle.hash.hex())
        run.enter(RetraceState.LOCATING)
        return await self._run(run, handle, additional_libraries)

    async def _run(
        self,
        run: RetraceRun,
        handle: TransactionHandle,
        additional_libraries: Mapping[bytes, bytes] | None,
    ) -> TraceReport:
        additional = LibraryTable(additional_libraries)

        while True:
            try:
                attempt = await self._attempt(run, handle, additional)
            except TxRetraceError as e:
                self._fail(run, e)
                raise

            if attempt.trace.exit_code != LIBRARY_LOAD_EXIT_CODE:
                run.enter(RetraceState.VERIFIED)
                return attempt.report

            run.enter(RetraceState.DIAGNOSING)
            cell = find_missing_library_cell(parse_vm_log(attempt.report.emulated_tx.vm_logs))
            if cell is None:
                logger.debug("Exit code 9 without the missing-library signature")
                run.enter(RetraceState.UNRESOLVED)
                return attempt.report

            lib_hash = self.resolver.classify(cell)
            if lib_hash is None or lib_hash in attempt.libraries:
                logger.debug("Stack cell is not a new library reference, giving up")
                run.enter(RetraceState.UNRESOLVED)
                return attempt.report

            try:
                content = await self.resolver.fetch(lib_hash)
            except TxRetraceError as e:
                self._fail(run, e)
                raise

            additional = additional.with_entry(lib_hash, content)
            run.retries += 1
            run.enter(RetraceState.RETRYING)
            logger.info(
                "Retrying %s with library %s (round %d)",
                run.tx_hash,
                lib_hash.hex().upper(),
                run.retries,
            )
            run.enter(RetraceState.LOCATING)

    async def _attempt(
        self,
        run: RetraceRun,
        handle: TransactionHandle,
        additional: LibraryTable,
    ) -> Attempt:
        """Run the whole pipeline once."""
        record = await self.locator.transaction_details(handle)
        bound = await self.locator.resolve_round(record)
        siblings = await self.locator.sibling_transactions(handle, bound.min_lt)
        target, previous = siblings[0], list(reversed(siblings[1:]))

        config = await self.locator.round_config(bound)
        account = await self.locator.account_before_round(handle.address, bound)

        run.enter(RetraceState.RECONSTRUCTING)
        deploy_code = target.tx.in_msg.init_code if target.tx.in_msg else None
        scan = await self.resolver.scan(account, deploy_code, additional)
        original_code = account.code if account.state == AccountStateType.ACTIVE else deploy_code

        # the executor must not know about the account's last transaction
        initial = account.model_copy(update={"last_trans_lt": 0, "last_trans_hash": b"\x00" * 32})
        session = EmulationSession(self.emulator, config, scan.libraries, bound.random_seed)
        outcome = await self.replayer.replay(
            StateSnapshot(boc=self.codec.encode_shard_account(initial)),
            account.balance,
            [sibling.tx for sibling in previous],
            session,
        )

        run.enter(RetraceState.EMULATING)
        if target.tx.in_msg_boc is None:
            raise UnsupportedTransactionShapeError(
                kind=target.tx.description.kind,
                message="No in_message was found in transaction",
            )
        result = await session.run(
            target.tx.in_msg_boc,
            outcome.snapshot.boc,
            lt=target.tx.lt,
            now=target.tx.now,
        )
        if isinstance(result, EmulationFailure):
            raise EngineFailureError(
                stage="emulate",
                lt=target.tx.lt,
                reason=result.error,
                logs=result.logs,
                debug_logs=result.debug_logs,
            )

        trace = self.assembler.assemble(result, outcome.balance)
        libraries = scan.libraries or LibraryTable()

        report = TraceReport(
            state_update_hash_ok=trace.transaction.new_state_hash == target.tx.new_state_hash,
            code_cell=scan.resolved_self_code or original_code,
            original_code_cell=original_code,
            in_msg=trace.in_msg.model_copy(update={"opcode": message_opcode(target.tx.in_msg)}),
            money=trace.money,
            emulated_tx=TraceEmulatedTx(
                raw=target.boc.hex(),
                utime=trace.transaction.now,
                lt=trace.transaction.lt,
                compute_info=trace.compute_info,
                executor_logs=result.logs,
                actions=trace.actions,
                c5=trace.c5,
                vm_logs=result.vm_log,
            ),
            emulator_version=self.emulator.version(),
            library_hashes=libraries.hex_hashes(),
            retries=run.retries,
        )
        return Attempt(report=report, trace=trace, libraries=libraries)

    @staticmethod
    def _fail(run: RetraceRun, error: TxRetraceError) -> None:
        error.context.setdefault("failed_stage", run.state.value)
        run.enter(RetraceState.FAILED)
        logger.debug("%s failed: %s", run.tx_hash, error.message)
