"""
Trace Assembler for txretrace.

Turns one successful emulation into the structured parts of a TraceReport:
in-message summary, money flow, compute-phase summary and decoded actions.
The state-hash comparison is left to the caller, which owns the on-chain
transaction.

Design Principles:
    - Everything is decoded from the emulator's output through the codec
    - Only ordinary ("generic") transactions with an incoming message are
      described; anything else raises UnsupportedTransactionShapeError
    - A missing c5 register yields an empty action list, not an error
"""

from dataclasses import dataclass, field

from txretrace.codec import DecodedMessage, DecodedTransaction, LedgerCodec, MessageKind
from txretrace.emulator import EmulationSuccess
from txretrace.errors import UnsupportedTransactionShapeError
from txretrace.schema import (
    ComputeInfo,
    ComputePhaseSummary,
    OutAction,
    TraceInMessage,
    TraceMoney,
)

BOUNCE_PREFIX_BITS = 32
OPCODE_BITS = 32


@dataclass(frozen=True)
class AssembledTrace:
    """
    Report parts derived from one emulation.

    Attributes:
        transaction: Decoded emulated transaction
        in_msg: Incoming message summary (opcode filled by the caller)
        money: Money flow
        compute_info: Compute summary or "skipped"
        actions: Decoded c5 actions
        c5: Raw c5 cell BOC
    """

    transaction: DecodedTransaction
    in_msg: TraceInMessage
    money: TraceMoney
    compute_info: ComputeInfo
    actions: list[OutAction] = field(default_factory=list)
    c5: bytes | None = None

    @property
    def exit_code(self) -> int | None:
        """Reported exit code, None when the compute phase was skipped."""
        if isinstance(self.compute_info, ComputePhaseSummary):
            return self.compute_info.exit_code
        return None


def calculate_sent_total(tx: DecodedTransaction) -> int:
    """Sum the value of outgoing internal messages; external ones carry none."""
    return sum(msg.value for msg in tx.out_msgs if msg.kind == MessageKind.INTERNAL)


def compute_info(tx: DecodedTransaction) -> ComputeInfo:
    """
    Summarize the compute phase.

    A zero compute exit code is replaced by the action-phase result code
    when an action phase exists.
    """
    compute = tx.description.compute
    if compute is None or compute.skipped:
        return "skipped"

    exit_code = compute.exit_code
    if exit_code == 0 and tx.description.action is not None:
        exit_code = tx.description.action.result_code

    return ComputePhaseSummary(
        success=compute.success,
        exit_code=exit_code,
        vm_steps=compute.vm_steps,
        gas_used=compute.gas_used,
        gas_fees=compute.gas_fees,
    )


def message_opcode(msg: DecodedMessage | None) -> int | None:
    """First 32 body bits, after the 0xFFFFFFFF prefix of bounced messages."""
    if msg is None:
        return None

    skip = BOUNCE_PREFIX_BITS if msg.kind == MessageKind.INTERNAL and msg.bounced else 0
    if msg.body_bit_length - skip < OPCODE_BITS:
        return None

    start = skip // 8
    head = msg.body_head[start : start + OPCODE_BITS // 8]
    if len(head) < OPCODE_BITS // 8:
        return None
    return int.from_bytes(head, "big")


class TraceAssembler:
    """
    Builds report parts from an EmulationSuccess.

    Usage:
        assembler = TraceAssembler(codec)
        trace = assembler.assemble(result, balance_before)
    """

    def __init__(self, codec: LedgerCodec) -> None:
        self.codec = codec

    def assemble(self, success: EmulationSuccess, balance_before: int) -> AssembledTrace:
        """
        Decode an emulation result.

        Raises:
            UnsupportedTransactionShapeError: For non-generic transactions or
                transactions without an incoming message
        """
        tx = self.codec.decode_transaction(success.transaction)
        if tx.description.kind != "generic":
            raise UnsupportedTransactionShapeError(kind=tx.description.kind)
        if tx.in_msg is None:
            raise UnsupportedTransactionShapeError(
                kind=tx.description.kind,
                message="No in_message was found in result tx",
            )

        balance_after = self.codec.decode_shard_account(success.shard_account).balance
        internal = tx.in_msg.kind == MessageKind.INTERNAL

        in_msg = TraceInMessage(
            sender=tx.in_msg.src if internal else None,
            contract=tx.in_msg.dest or tx.account,
            amount=tx.in_msg.value if internal else None,
        )
        money = TraceMoney(
            balance_before=balance_before,
            sent_total=calculate_sent_total(tx),
            total_fees=tx.total_fees,
            balance_after=balance_after,
        )
        actions = self.codec.decode_out_actions(success.actions) if success.actions else []

        return AssembledTrace(
            transaction=tx,
            in_msg=in_msg,
            money=money,
            compute_info=compute_info(tx),
            actions=actions,
            c5=success.actions,
        )
