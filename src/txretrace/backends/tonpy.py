"""
tonpy-backed codec and emulator.

TonpyCodec decodes Transaction, Message, ShardAccount and out-action cells
with tonpy's generated TL-B types (tonpy.autogen.block) and builds library
dictionaries with VmDict. TonpyEmulator drives tonpy's native transaction
emulator in a worker thread so the event loop stays free.

Requirements:
    - pip install "txretrace[tonpy]"

Usage:
    from txretrace.backends.tonpy import TonpyCodec, TonpyEmulator

    codec = TonpyCodec()
    emulator = TonpyEmulator(codec)
"""

import asyncio
import base64
import logging
from collections.abc import Mapping
from importlib.metadata import PackageNotFoundError, version

from tonpy import Address, Cell, CellSlice, VmDict, begin_cell
from tonpy.autogen.block import (
    Account,
    AccountState,
    CommonMsgInfo,
    CommonMsgInfoRelaxed,
    Either,
    LibRef,
    Maybe,
    Message,
    MsgAddressInt,
    OutAction as OutActionTLB,
    ShardAccount,
    Transaction,
    TransactionDescr,
    TrComputePhase,
)
from tonpy.tvm.emulator import Emulator as NativeEmulator
from tonpy.types.tlb_types.reft import tAny

from txretrace.codec import (
    ActionPhase,
    CellBits,
    ComputePhase,
    DecodedMessage,
    DecodedTransaction,
    MessageKind,
    TransactionDescription,
)
from txretrace.emulator import (
    EmulationFailure,
    EmulationRequest,
    EmulationResult,
    EmulationSuccess,
    Emulator,
)
from txretrace.schema import (
    AccountSnapshot,
    AccountStateType,
    EmulatorVersion,
    OutAction,
    normalize_raw_address,
)

logger = logging.getLogger(__name__)

OUT_MSGS_KEY_BITS = 15
LIBRARY_KEY_BITS = 256

_SKIP_REASONS = {0b00: "no_state", 0b01: "bad_state", 0b10: "no_gas", 0b110: "suspended"}


# =============================================================================
# Cell helpers
# =============================================================================


def to_cell(boc: bytes) -> Cell:
    return Cell(base64.b64encode(boc).decode())


def from_cell(cell: Cell) -> bytes:
    return base64.b64decode(cell.to_boc())


def _hash(cell: Cell) -> bytes:
    return bytes.fromhex(cell.get_hash())


def _bits_to_bytes(bits: str) -> bytes:
    return int(bits, 2).to_bytes(len(bits) // 8, "big") if bits else b""


def _just(maybe):
    """Value of a Maybe record, None for nothing$0."""
    return maybe.value if isinstance(maybe, Maybe.Record_just) else None


def _either(either):
    """Value of an Either record, whichever side holds it."""
    if isinstance(either, (Either.Record_left, Either.Record_right)):
        return either.value
    return None


def _grams(grams) -> int:
    return grams.amount.value


def _int_address(record) -> str | None:
    """Raw form of a MsgAddressInt record; None for anything else."""
    if record is None or record.get_type_class() is not MsgAddressInt:
        return None
    if isinstance(record, MsgAddressInt.Record_addr_std):
        return f"{record.workchain_id}:{int(record.address, 2):064X}"
    width = max(1, record.addr_len // 4)
    return f"{record.workchain_id}:{int(record.address or '0', 2):0{width}X}"


def _unpack(tlb, cell: Cell, what: str):
    record = tlb.cell_unpack(cell, True)
    if record is None:
        raise ValueError(f"Not a {what} cell")
    return record


# =============================================================================
# Codec
# =============================================================================


class TonpyCodec:
    """LedgerCodec implementation over tonpy."""

    def inspect_cell(self, boc: bytes) -> CellBits:
        cs = to_cell(boc).begin_parse()
        bits = cs.to_bitstring()
        padded = bits + "0" * (-len(bits) % 8)
        return CellBits(bit_length=cs.bits, data=_bits_to_bytes(padded), exotic=cs.is_special())

    def decode_transaction(self, boc: bytes) -> DecodedTransaction:
        cell = to_cell(boc)
        tx = _unpack(Transaction(), cell, "Transaction")

        messages = cell.begin_parse().load_ref(as_cs=True)
        in_msg_cell = messages.load_ref() if messages.load_bool() else None
        out_msgs: list[DecodedMessage] = []
        if messages.load_bool():
            for _, value in VmDict(OUT_MSGS_KEY_BITS, cell_root=messages.load_ref()):
                out_msgs.append(self._decode_message(value.load_ref()))

        in_msg = self._decode_message(in_msg_cell) if in_msg_cell is not None else None
        workchain = 0
        for address in (in_msg.dest if in_msg else None, *(m.src for m in out_msgs)):
            if address:
                workchain = int(address.split(":")[0])
                break

        return DecodedTransaction(
            account=f"{workchain}:{int(tx.account_addr, 2):064X}",
            lt=tx.lt,
            now=tx.now,
            hash=_hash(cell),
            in_msg=in_msg,
            in_msg_boc=from_cell(in_msg_cell) if in_msg_cell is not None else None,
            out_msgs=out_msgs,
            total_fees=_grams(tx.total_fees.grams),
            old_state_hash=_bits_to_bytes(tx.state_update.old_hash),
            new_state_hash=_bits_to_bytes(tx.state_update.new_hash),
            description=self._decode_description(tx.description),
        )

    def _decode_message(self, cell: Cell) -> DecodedMessage:
        msg = _unpack(Message(tAny()), cell, "Message")
        info = msg.info
        fields: dict = {}

        if isinstance(info, CommonMsgInfo.Record_int_msg_info):
            fields.update(
                kind=MessageKind.INTERNAL,
                src=_int_address(info.src),
                dest=_int_address(info.dest),
                value=_grams(info.value.grams),
                bounced=info.bounced,
            )
        elif isinstance(info, CommonMsgInfo.Record_ext_in_msg_info):
            fields.update(kind=MessageKind.EXTERNAL_IN, dest=_int_address(info.dest))
        else:
            fields.update(kind=MessageKind.EXTERNAL_OUT, src=_int_address(info.src))

        state_init = _either(_just(msg.init))
        if state_init is not None:
            code = _just(state_init.code)
            fields["init_code"] = from_cell(code) if code is not None else None

        body = _either(msg.body)
        if isinstance(body, Cell):
            body = body.begin_parse()
        body_bits = body.bits if body is not None else 0
        head_bytes = min(body_bits, 64) // 8
        if head_bytes:
            fields["body_head"] = body.preload_uint(head_bytes * 8).to_bytes(head_bytes, "big")

        return DecodedMessage(body_bit_length=body_bits, **fields)

    @staticmethod
    def _decode_description(descr) -> TransactionDescription:
        tag = descr.get_tag_enum()
        if tag != TransactionDescr.Tag.trans_ord:
            return TransactionDescription(kind=tag.name.removeprefix("trans_"))

        phase = descr.compute_ph
        if isinstance(phase, TrComputePhase.Record_tr_phase_compute_skipped):
            compute = ComputePhase(skipped=True, skip_reason=_SKIP_REASONS.get(phase.reason, "unknown"))
        else:
            vm = phase.r1
            compute = ComputePhase(
                skipped=False,
                success=phase.success,
                exit_code=vm.exit_code,
                vm_steps=vm.vm_steps,
                gas_used=vm.gas_used.value,
                gas_fees=_grams(phase.gas_fees),
            )

        action = None
        action_phase = _just(descr.action)
        if action_phase is not None:
            action = ActionPhase(success=action_phase.success, result_code=action_phase.result_code)

        return TransactionDescription(kind="generic", compute=compute, action=action, aborted=descr.aborted)

    def decode_shard_account(self, boc: bytes) -> AccountSnapshot:
        shard_account = _unpack(ShardAccount(), to_cell(boc), "ShardAccount")
        last_hash = _bits_to_bytes(shard_account.last_trans_hash)
        last_lt = shard_account.last_trans_lt

        account = shard_account.account
        if isinstance(account, Account.Record_account_none):
            return AccountSnapshot(address="0:0", last_trans_lt=last_lt, last_trans_hash=last_hash)

        stat = account.storage_stat
        storage = account.storage
        state = storage.state
        fields: dict = {}
        if isinstance(state, AccountState.Record_account_active):
            code = _just(state.x.code)
            data = _just(state.x.data)
            fields.update(
                state=AccountStateType.ACTIVE,
                code=from_cell(code) if code is not None else None,
                data=from_cell(data) if data is not None else None,
            )
        elif isinstance(state, AccountState.Record_account_frozen):
            fields.update(state=AccountStateType.FROZEN, frozen_state_hash=_bits_to_bytes(state.state_hash))
        else:
            fields["state"] = AccountStateType.UNINIT

        due = _just(stat.due_payment)
        return AccountSnapshot(
            address=_int_address(account.addr) or "0:0",
            balance=_grams(storage.balance.grams),
            last_trans_lt=last_lt,
            last_trans_hash=last_hash,
            storage_last_trans_lt=storage.last_trans_lt,
            storage_used_bits=stat.used.bits.value,
            storage_used_cells=stat.used.cells.value,
            storage_last_paid=stat.last_paid,
            due_payment=_grams(due) if due is not None else None,
            **fields,
        )

    def encode_shard_account(self, account: AccountSnapshot) -> bytes:
        builder = (
            begin_cell()
            .store_uint(1, 1)
            .store_address(account.address)
            .store_var_uint(account.storage_used_cells, 7)
            .store_var_uint(account.storage_used_bits, 7)
            .store_uint(0, 3)  # storage_extra_none
            .store_uint(account.storage_last_paid, 32)
        )
        if account.due_payment is None:
            builder = builder.store_bool(False)
        else:
            builder = builder.store_bool(True).store_grams(account.due_payment)

        builder = builder.store_uint(account.storage_last_trans_lt, 64).store_grams(account.balance).store_bool(False)

        if account.state == AccountStateType.ACTIVE:
            builder = builder.store_bool(True).store_bool(False).store_bool(False)
            for part in (account.code, account.data):
                builder = builder.store_bool(part is not None)
                if part is not None:
                    builder = builder.store_ref(to_cell(part))
            builder = builder.store_bool(False)
        elif account.state == AccountStateType.FROZEN:
            frozen = int.from_bytes(account.frozen_state_hash or b"\x00" * 32, "big")
            builder = builder.store_uint(0b01, 2).store_uint(frozen, 256)
        else:
            builder = builder.store_uint(0b00, 2)

        shard_account = (
            begin_cell()
            .store_ref(builder.end_cell())
            .store_uint(int.from_bytes(account.last_trans_hash, "big"), 256)
            .store_uint(account.last_trans_lt, 64)
            .end_cell()
        )
        return from_cell(shard_account)

    def decode_out_actions(self, c5: bytes) -> list[OutAction]:
        actions: list[OutAction] = []
        cs = to_cell(c5).begin_parse()
        while cs.bits or cs.refs:
            prev = cs.load_ref()
            actions.append(self._decode_action(cs))
            cs = prev.begin_parse()
        actions.reverse()
        return actions

    def _decode_action(self, cs: CellSlice) -> OutAction:
        tag = cs.preload_uint(32) if cs.bits >= 32 else None
        try:
            action = OutActionTLB().fetch(cs, True)
        except (RuntimeError, ValueError):
            action = None

        if isinstance(action, OutActionTLB.Record_action_send_msg):
            info = action.out_msg.info
            dest = value = None
            if isinstance(info, CommonMsgInfoRelaxed.Record_int_msg_info):
                dest = _int_address(info.dest)
                value = _grams(info.value.grams)
            kind = MessageKind.INTERNAL if dest is not None else MessageKind.EXTERNAL_OUT
            return OutAction(
                type="send_msg",
                mode=action.mode,
                details={"kind": kind.value, "dest": dest, "value": value or 0},
            )
        if isinstance(action, OutActionTLB.Record_action_set_code):
            return OutAction(type="set_code", details={"new_code_hash": action.new_code.get_hash().upper()})
        if isinstance(action, OutActionTLB.Record_action_reserve_currency):
            return OutAction(
                type="reserve_currency",
                mode=action.mode,
                details={"amount": _grams(action.currency.grams)},
            )
        if isinstance(action, OutActionTLB.Record_action_change_library):
            libref = action.libref
            if isinstance(libref, LibRef.Record_libref_ref):
                lib_hash = libref.library.get_hash().upper()
            else:
                lib_hash = f"{int(libref.lib_hash, 2):064X}"
            return OutAction(type="change_library", mode=action.mode, details={"library_hash": lib_hash})

        return OutAction(type="unknown", details={"tag": f"0x{tag:08x}" if tag is not None else None})

    def encode_library_dict(self, libraries: Mapping[bytes, bytes]) -> bytes:
        return from_cell(self.library_dict(libraries).get_cell())

    @staticmethod
    def library_dict(libraries: Mapping[bytes, bytes]) -> VmDict:
        """Build the 256-bit-keyed dictionary of library cells the emulator expects."""
        if not libraries:
            raise ValueError("Cannot encode an empty library table")
        libs = VmDict(LIBRARY_KEY_BITS)
        for lib_hash, content in libraries.items():
            libs.set_ref(int.from_bytes(lib_hash, "big"), to_cell(content))
        return libs

    def parse_address(self, text: str) -> str:
        try:
            address = Address(text.strip())
        except (RuntimeError, ValueError) as e:
            raise ValueError(f"Not a TON address: {text}") from e
        if address.raw is None:
            raise ValueError(f"Not a TON address: {text}")
        return normalize_raw_address(address.raw)


# =============================================================================
# Emulator
# =============================================================================


class TonpyEmulator(Emulator):
    """
    Emulator backed by tonpy's native transaction emulator.

    A fresh native emulator is built per request from the request's config,
    seed and library table.

    Attributes:
        codec: Codec used to build library dictionaries
    """

    def __init__(self, codec: TonpyCodec | None = None):
        self.codec = codec or TonpyCodec()

    async def run_transaction(self, request: EmulationRequest) -> EmulationResult:
        return await asyncio.to_thread(self._run, request)

    def _run(self, request: EmulationRequest) -> EmulationResult:
        emulator = NativeEmulator(to_cell(request.config))
        emulator.set_rand_seed(int.from_bytes(request.random_seed, "big"))
        emulator.set_ignore_chksig(False)
        emulator.set_debug_enabled(True)
        if request.libraries:
            emulator.set_libs(self.codec.library_dict(request.libraries))

        try:
            accepted = emulator.emulate_transaction(
                to_cell(request.shard_account),
                to_cell(request.message),
                request.now,
                request.lt,
            )
        except (RuntimeError, ValueError) as e:
            logger.debug("Emulator rejected lt=%d: %s", request.lt, e)
            return EmulationFailure(error=str(e), logs=emulator.emulator.vm_log or "")

        vm_log = emulator.emulator.vm_log or ""
        if not accepted:
            logger.debug("External message not accepted at lt=%d", request.lt)
            return EmulationFailure(error="External message was not accepted", logs=vm_log)

        actions = Cell(emulator.emulator.actions_cell)
        return EmulationSuccess(
            shard_account=from_cell(emulator.account.to_cell()),
            transaction=from_cell(emulator.transaction.to_cell()),
            logs=f"elapsed_time: {emulator.elapsed_time}",
            vm_log=vm_log,
            actions=None if actions.cell.is_null() else from_cell(actions),
        )

    def version(self) -> EmulatorVersion:
        try:
            release = f"tonpy {version('tonpy')}"
        except PackageNotFoundError:
            release = "tonpy"
        return EmulatorVersion(release=release)
