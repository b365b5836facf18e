"""
In-memory fakes shared by unit and integration tests.

FakeCodec stores every "BOC" as sorted JSON, so tests can build ledger
structures by hand. FakeEmulator executes a tiny contract model against
those structures deterministically, and build_round() runs the same model
to produce an on-chain history that a correct reconstruction reproduces
exactly.

Contract model:
    - Balance grows by the message value minus FEE
    - Data records every processed lt, so state depends on ordering
    - A message with "forward" sends that value on to another address
    - Code that is a library cell needs the library in the table
    - Code content with "needs_library" loads another library at runtime
    - Code content with "underflow" always fails with exit code 9
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

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
from txretrace.errors import NotFoundError, ProviderError
from txretrace.providers.base import ChainDataProvider, LibraryProvider
from txretrace.schema import (
    AccountSnapshot,
    AccountStateType,
    BlockId,
    EmulatorVersion,
    FetchedTransaction,
    ListedTransaction,
    OutAction,
    ShardBlock,
    ShardSummary,
    ShardTransactionRef,
    TopBlock,
    TransactionHandle,
    normalize_raw_address,
)

FEE = 1_000_000
ACCOUNT = "0:" + "AB" * 32
SENDER = "0:" + "CD" * 32
RECIPIENT = "0:" + "EF" * 32
RANDOM_SEED = bytes(range(32))
CONFIG_BOC = b'{"type": "config"}'


# =============================================================================
# Serialization helpers
# =============================================================================


def dump(obj: dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True).encode()


def load(boc: bytes) -> dict[str, Any]:
    return json.loads(boc.decode())


def sha(boc: bytes) -> bytes:
    return hashlib.sha256(boc).digest()


def code_cell(name: str, **flags: Any) -> bytes:
    """An ordinary code cell."""
    return dump({"type": "cell", "bits": name.encode().hex(), **flags})


def library_cell(lib_hash: bytes) -> bytes:
    """A library reference cell pointing at `lib_hash`."""
    return dump({"type": "library", "hash": lib_hash.hex()})


def message(
    value: int = 0,
    *,
    kind: str = "internal",
    src: str | None = SENDER,
    dest: str = ACCOUNT,
    opcode: int | None = 0x0F8A7EA5,
    bounced: bool = False,
    init_code: bytes | None = None,
    forward: tuple[str, int] | None = None,
) -> dict[str, Any]:
    """Build a message dict; `forward` asks the contract to pass value on."""
    head = b""
    if bounced:
        head += b"\xff\xff\xff\xff"
    if opcode is not None:
        head += opcode.to_bytes(4, "big") + b"\x00" * 4
    return {
        "kind": kind,
        "src": src if kind != "external_in" else None,
        "dest": dest,
        "value": value if kind == "internal" else 0,
        "bounced": bounced,
        "init_code": init_code.decode() if init_code else None,
        "body_bits": len(head) * 8,
        "body_head": head.hex(),
        "forward": list(forward) if forward else None,
    }


def account_to_dict(account: AccountSnapshot) -> dict[str, Any]:
    data = account.model_dump()
    for key in ("code", "data", "frozen_state_hash", "last_trans_hash"):
        if data[key] is not None:
            data[key] = data[key].hex()
    data["state"] = account.state.value
    return data


def account_from_dict(data: dict[str, Any]) -> AccountSnapshot:
    fields = {k: v for k, v in data.items() if k != "type"}
    for key in ("code", "data", "frozen_state_hash", "last_trans_hash"):
        if fields.get(key) is not None:
            fields[key] = bytes.fromhex(fields[key])
    return AccountSnapshot(**fields)


def state_hash(account: AccountSnapshot) -> bytes:
    """Hash of the account itself, excluding the ShardAccount wrapper fields."""
    data = account_to_dict(account)
    del data["last_trans_lt"], data["last_trans_hash"]
    return sha(dump(data))


# =============================================================================
# Codec
# =============================================================================


class FakeCodec:
    """LedgerCodec over JSON "BOCs"."""

    def inspect_cell(self, boc: bytes) -> CellBits:
        cell = load(boc)
        if cell["type"] == "library":
            return CellBits(bit_length=264, data=b"\x02" + bytes.fromhex(cell["hash"]), exotic=True)
        data = bytes.fromhex(cell.get("bits", ""))
        return CellBits(bit_length=len(data) * 8, data=data)

    def decode_transaction(self, boc: bytes) -> DecodedTransaction:
        tx = load(boc)
        in_msg = tx["in_msg"]
        compute = tx["compute"]
        action = tx["action"]
        return DecodedTransaction(
            account=tx["account"],
            lt=tx["lt"],
            now=tx["now"],
            hash=bytes.fromhex(tx["hash"]),
            in_msg=self._message(in_msg) if in_msg else None,
            in_msg_boc=dump(in_msg) if in_msg else None,
            out_msgs=[self._message(m) for m in tx["out_msgs"]],
            total_fees=tx["total_fees"],
            old_state_hash=bytes.fromhex(tx["old_hash"]),
            new_state_hash=bytes.fromhex(tx["new_hash"]),
            description=TransactionDescription(
                kind=tx["kind"],
                compute=ComputePhase(**compute) if compute else None,
                action=ActionPhase(**action) if action else None,
            ),
        )

    @staticmethod
    def _message(msg: dict[str, Any]) -> DecodedMessage:
        return DecodedMessage(
            kind=MessageKind(msg["kind"]),
            src=msg["src"],
            dest=msg["dest"],
            value=msg["value"],
            bounced=msg["bounced"],
            init_code=msg["init_code"].encode() if msg["init_code"] else None,
            body_bit_length=msg["body_bits"],
            body_head=bytes.fromhex(msg["body_head"]),
        )

    def decode_shard_account(self, boc: bytes) -> AccountSnapshot:
        return account_from_dict(load(boc))

    def encode_shard_account(self, account: AccountSnapshot) -> bytes:
        return dump({"type": "shard_account", **account_to_dict(account)})

    def decode_out_actions(self, c5: bytes) -> list[OutAction]:
        return [OutAction(**action) for action in load(c5)["actions"]]

    def encode_library_dict(self, libraries) -> bytes:
        return dump({k.hex(): v.decode() for k, v in libraries.items()})

    def parse_address(self, text: str) -> str:
        return normalize_raw_address(text)


# =============================================================================
# Emulator
# =============================================================================


def _signature_log(cell: bytes) -> str:
    return "\n".join([
        "execute SETCP 0",
        f"stack: [ 1 C{{{cell.hex().upper()}}} ]",
        "code cell hash: 4F5F0E4BA9A3D8C64A13B1F0E2A48D6E6A0F4F2B3A1E1C8D9B7A6F5E4D3C2B1A offset: 120",
        "execute CTOS",
        "handling exception code 9: failed to load library cell",
        "default exception handler, terminating vm with exit code 9",
    ])


UNDERFLOW_LOG = "\n".join([
    "execute SETCP 0",
    "stack: [ 0 ]",
    "execute LDU 32",
    "handling exception code 9: cell underflow",
    "default exception handler, terminating vm with exit code 9",
])


def execute(
    shard_account: bytes,
    message_boc: bytes,
    libraries: dict[bytes, bytes],
    lt: int,
    now: int,
) -> EmulationSuccess:
    """Run one message through the contract model."""
    codec = FakeCodec()
    account = codec.decode_shard_account(shard_account)
    msg = load(message_boc)
    old_hash = state_hash(account)

    code = account.code if account.state == AccountStateType.ACTIVE else None
    if code is None and msg["init_code"]:
        code = msg["init_code"].encode()

    exit_code, vm_log = 0, "execute SETCP 0\nexecute ACCEPT\ngas remaining: 9000"
    if code is not None:
        cell = load(code)
        if cell["type"] == "library":
            lib_hash = bytes.fromhex(cell["hash"])
            if lib_hash in libraries:
                cell = load(libraries[lib_hash])
            else:
                exit_code, vm_log = 9, _signature_log(code)
        if exit_code == 0 and cell.get("needs_library"):
            runtime = bytes.fromhex(cell["needs_library"])
            if runtime not in libraries:
                exit_code, vm_log = 9, _signature_log(library_cell(runtime))
        if exit_code == 0 and cell.get("underflow"):
            exit_code, vm_log = 9, UNDERFLOW_LOG

    value = msg["value"]
    out_msgs: list[dict[str, Any]] = []
    actions: list[dict[str, Any]] = []
    fields: dict[str, Any] = {"balance": account.balance + value - FEE}

    if code is None:
        compute = None
    else:
        compute = {
            "skipped": False,
            "success": exit_code == 0,
            "exit_code": exit_code,
            "vm_steps": 7,
            "gas_used": 700,
            "gas_fees": FEE,
        }
    if exit_code == 0 and code is not None:
        seen = load(account.data)["seen"] if account.data else []
        fields.update(state=AccountStateType.ACTIVE, code=code, data=dump({"seen": [*seen, lt]}))
        if msg["forward"]:
            dest, amount = msg["forward"]
            fields["balance"] -= amount
            out_msgs.append(message(amount, src=account.address, dest=dest, opcode=None))
            actions.append({"type": "send_msg", "mode": 1, "details": {"dest": dest, "value": amount}})

    new_account = account.model_copy(update={**fields, "storage_last_trans_lt": lt})
    tx = {
        "type": "tx",
        "account": account.address,
        "lt": lt,
        "now": now,
        "in_msg": msg,
        "out_msgs": out_msgs,
        "total_fees": FEE,
        "old_hash": old_hash.hex(),
        "new_hash": state_hash(new_account).hex(),
        "kind": "generic",
        "compute": compute,
        "action": {"success": True, "result_code": 0} if exit_code == 0 and code is not None else None,
    }
    tx["hash"] = sha(dump(tx)).hex()
    new_account = new_account.model_copy(
        update={"last_trans_lt": lt, "last_trans_hash": bytes.fromhex(tx["hash"])}
    )

    return EmulationSuccess(
        shard_account=codec.encode_shard_account(new_account),
        transaction=dump(tx),
        logs="executor: ok",
        vm_log=vm_log,
        actions=dump({"type": "actions", "actions": actions}),
    )


class FakeEmulator(Emulator):
    """
    Emulator running the contract model.

    `fail_at` lists logical times that return EmulationFailure instead.
    Every request is recorded in `requests`.
    """

    def __init__(self, fail_at: set[int] | None = None):
        self.fail_at = fail_at or set()
        self.requests: list[EmulationRequest] = []

    async def run_transaction(self, request: EmulationRequest) -> EmulationResult:
        self.requests.append(request)
        if request.lt in self.fail_at:
            return EmulationFailure(error="scripted failure", logs="executor: failed", debug_logs="dbg")
        return execute(
            request.shard_account,
            request.message,
            dict(request.libraries or {}),
            request.lt,
            request.now,
        )

    def version(self) -> EmulatorVersion:
        return EmulatorVersion(commit_hash="0123456789abcdef", commit_date="2026-01-01")


# =============================================================================
# Providers
# =============================================================================


class FakeLibraryProvider(LibraryProvider):
    """Serves libraries from a dict; unknown hashes raise NotFoundError."""

    def __init__(self, name: str, libraries: dict[bytes, bytes] | None = None, fail: bool = False):
        self.name = name
        self.libraries = libraries or {}
        self.fail = fail
        self.calls: list[bytes] = []

    async def fetch_library(self, lib_hash: bytes) -> bytes:
        self.calls.append(lib_hash)
        if self.fail:
            raise ProviderError(provider=self.name, url="fake://", status_code=500)
        if lib_hash not in self.libraries:
            raise NotFoundError(stage="library", message=f"{lib_hash.hex()} not found")
        return self.libraries[lib_hash]


@dataclass
class FakeChainProvider(ChainDataProvider):
    """In-memory chain: transactions, blocks, configs and account states."""

    handles: dict[bytes, TransactionHandle] = field(default_factory=dict)
    fetched: dict[bytes, FetchedTransaction] = field(default_factory=dict)
    shard_blocks: dict[tuple[int, int, int], ShardBlock] = field(default_factory=dict)
    top_blocks: dict[int, TopBlock] = field(default_factory=dict)
    accounts: dict[tuple[str, int], AccountSnapshot] = field(default_factory=dict)
    history: dict[str, list[ListedTransaction]] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    async def find_transaction(self, tx_hash: bytes) -> TransactionHandle | None:
        self.calls.append("find_transaction")
        return self.handles.get(tx_hash)

    async def fetch_transaction(self, handle: TransactionHandle) -> FetchedTransaction:
        self.calls.append("fetch_transaction")
        return self.fetched.get(handle.hash, FetchedTransaction())

    async def find_shard_block(self, block: BlockId) -> ShardBlock | None:
        self.calls.append("find_shard_block")
        return self.shard_blocks.get((block.workchain, block.shard, block.seqno))

    async def fetch_top_block(self, seqno: int) -> TopBlock:
        self.calls.append("fetch_top_block")
        if seqno not in self.top_blocks:
            raise NotFoundError(stage="top_block")
        return self.top_blocks[seqno]

    async def fetch_config(self, seqno: int) -> bytes:
        self.calls.append("fetch_config")
        return CONFIG_BOC

    async def fetch_account(self, address: str, seqno: int) -> AccountSnapshot:
        self.calls.append("fetch_account")
        return self.accounts[(address, seqno)]

    async def list_transactions(
        self,
        address: str,
        lt: int,
        tx_hash: bytes,
        to_lt: int,
        limit: int,
    ) -> list[ListedTransaction]:
        self.calls.append("list_transactions")
        items = sorted(self.history.get(address, []), key=lambda item: item.lt, reverse=True)
        start = next(i for i, item in enumerate(items) if item.lt == lt and item.hash == tx_hash)
        return [item for item in items[start:] if item.lt > to_lt][:limit]

    async def aclose(self) -> None:
        self.calls.append("aclose")


# =============================================================================
# Round builder
# =============================================================================

MC_SEQNO = 500
SHARD = 0x8000000000000000
SHARD_SEQNO = 41_000
ROOT_HASH = "ROOTHASH"


@dataclass
class FakeRound:
    """A masterchain round built by running the contract model."""

    provider: FakeChainProvider
    transactions: list[bytes]
    initial: AccountSnapshot

    def decoded(self, index: int) -> DecodedTransaction:
        return FakeCodec().decode_transaction(self.transactions[index])

    def hash(self, index: int) -> bytes:
        return self.decoded(index).hash


def build_round(
    initial: AccountSnapshot,
    messages: list[dict[str, Any]],
    *,
    libraries: dict[bytes, bytes] | None = None,
    start_lt: int = 47_000_000_000_000,
    now: int = 1_760_000_000,
    earlier: list[dict[str, Any]] | None = None,
) -> FakeRound:
    """
    Run `messages` against `initial` and publish the results as one round.

    `earlier` messages are executed first, in the previous round, so the
    account has history the listing window must exclude.
    """
    codec = FakeCodec()
    provider = FakeChainProvider()
    libraries = libraries or {}
    address = initial.address

    account_boc = codec.encode_shard_account(initial)
    lt = start_lt - 10_000
    history: list[bytes] = []
    for msg in earlier or []:
        result = execute(account_boc, dump(msg), libraries, lt, now - 60)
        account_boc, lt = result.shard_account, lt + 10
        history.append(result.transaction)

    provider.accounts[(address, MC_SEQNO - 1)] = codec.decode_shard_account(account_boc)

    lt = start_lt
    transactions: list[bytes] = []
    for msg in messages:
        result = execute(account_boc, dump(msg), libraries, lt, now)
        account_boc, lt = result.shard_account, lt + 10
        transactions.append(result.transaction)

    block = BlockId(workchain=0, shard=SHARD, seqno=SHARD_SEQNO, root_hash=ROOT_HASH)
    provider.shard_blocks[(0, SHARD, SHARD_SEQNO)] = ShardBlock(
        block=block,
        root_hash=ROOT_HASH,
        masterchain_seqno=MC_SEQNO,
        rand_seed=RANDOM_SEED,
    )

    refs = []
    for boc in history + transactions:
        tx = codec.decode_transaction(boc)
        provider.history.setdefault(address, []).append(
            ListedTransaction(lt=tx.lt, hash=tx.hash, boc=boc)
        )
        if boc in transactions:
            refs.append(ShardTransactionRef(account=address, lt=tx.lt, hash=tx.hash.hex()))
            provider.handles[tx.hash] = TransactionHandle(lt=tx.lt, hash=tx.hash, address=address)
            provider.fetched[tx.hash] = FetchedTransaction(boc=boc, block=block)

    other = ShardTransactionRef(account=RECIPIENT, lt=start_lt - 5, hash="00" * 32)
    provider.top_blocks[MC_SEQNO] = TopBlock(
        seqno=MC_SEQNO,
        shards=[
            ShardSummary(workchain=0, shard=SHARD, seqno=SHARD_SEQNO, transactions=[other, *refs]),
        ],
    )
    return FakeRound(provider=provider, transactions=transactions, initial=initial)
