"""
tonhub v4 adapter.

Serves the shard blocks of account transactions, full masterchain blocks, block configs and account states as of a block.
"""

import base64
from typing import Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field

from txretrace.errors import NotFoundError
from txretrace.providers.http import JsonHttpProvider
from txretrace.schema import (
    AccountSnapshot,
    AccountStateType,
    BlockId,
    ShardSummary,
    ShardTransactionRef,
    TopBlock,
    TransactionHandle,
)


# =============================================================================
# Response Models
# =============================================================================


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class V4BlockRef(_Lenient):
    workchain: int
    seqno: int
    shard: str
    rootHash: str
    fileHash: str


class V4TransactionsResponse(_Lenient):
    blocks: list[V4BlockRef] = Field(default_factory=list)


class V4ShardTransaction(_Lenient):
    account: str
    hash: str
    lt: str


class V4Shard(_Lenient):
    workchain: int
    seqno: int
    shard: str
    rootHash: str
    fileHash: str
    transactions: list[V4ShardTransaction] = Field(default_factory=list)


class V4Block(_Lenient):
    shards: list[V4Shard] = Field(default_factory=list)


class V4BlockResponse(_Lenient):
    exist: bool
    block: V4Block | None = None


class V4Config(_Lenient):
    cell: str


class V4ConfigResponse(_Lenient):
    config: V4Config


class V4Coins(_Lenient):
    coins: str


class V4StateUninit(_Lenient):
    type: Literal["uninit"]


class V4StateActive(_Lenient):
    type: Literal["active"]
    code: str | None = None
    data: str | None = None


class V4StateFrozen(_Lenient):
    type: Literal["frozen"]
    stateHash: str


class V4Last(_Lenient):
    lt: str
    hash: str


class V4StorageUsed(_Lenient):
    bits: int
    cells: int
    publicCells: int = 0


class V4StorageStat(_Lenient):
    lastPaid: int
    duePayment: str | None = None
    used: V4StorageUsed


class V4Account(_Lenient):
    balance: V4Coins
    state: V4StateUninit | V4StateActive | V4StateFrozen = Field(discriminator="type")
    last: V4Last | None = None
    storageStat: V4StorageStat | None = None


class V4AccountResponse(_Lenient):
    account: V4Account


# =============================================================================
# Provider
# =============================================================================


class TonhubProvider(JsonHttpProvider):
    """tonhub v4 adapter."""

    name = "tonhub"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(base_url, timeout_seconds, client=client)

    async def fetch_transaction_blocks(self, handle: TransactionHandle) -> list[BlockId]:
        """
        Shard blocks of the transactions listed from a handle backwards.

        The first block holds the transaction at the handle itself.
        """
        tx_hash = base64.urlsafe_b64encode(handle.hash).decode()
        data = await self._request(
            "GET",
            f"/account/{handle.address}/tx/{handle.lt}/{tx_hash}",
            V4TransactionsResponse,
        )
        return [
            BlockId(
                workchain=ref.workchain,
                shard=ref.shard,
                seqno=ref.seqno,
                root_hash=ref.rootHash,
                file_hash=ref.fileHash,
            )
            for ref in data.blocks
        ]

    async def fetch_top_block(self, seqno: int) -> TopBlock:
        """Fetch a full masterchain block."""
        data = await self._request("GET", f"/block/{seqno}", V4BlockResponse)
        if not data.exist or data.block is None:
            raise NotFoundError(
                stage="resolve_round",
                message=f"Masterchain block {seqno} does not exist",
            )

        return TopBlock(
            seqno=seqno,
            shards=[
                ShardSummary(
                    workchain=shard.workchain,
                    shard=shard.shard,
                    seqno=shard.seqno,
                    root_hash=shard.rootHash,
                    file_hash=shard.fileHash,
                    transactions=[
                        ShardTransactionRef(account=tx.account, lt=int(tx.lt), hash=tx.hash)
                        for tx in shard.transactions
                    ],
                )
                for shard in data.block.shards
            ],
        )

    async def fetch_config(self, seqno: int) -> bytes:
        """Fetch the config cell valid for a masterchain block."""
        data = await self._request("GET", f"/block/{seqno}/config", V4ConfigResponse)
        return base64.b64decode(data.config.cell)

    async def fetch_account(
        self,
        address: str,
        seqno: int,
        base_url: str | None = None,
    ) -> AccountSnapshot:
        """Fetch an account as of a masterchain block."""
        data = await self._request(
            "GET",
            f"/block/{seqno}/{address}",
            V4AccountResponse,
            base_url=base_url,
        )
        return account_snapshot(address, data.account)


def account_snapshot(address: str, account: V4Account) -> AccountSnapshot:
    """Convert a v4 account payload into an AccountSnapshot."""
    state = account.state
    fields: dict = {
        "address": address,
        "balance": int(account.balance.coins),
        "state": AccountStateType(state.type),
    }

    if isinstance(state, V4StateActive):
        fields["code"] = base64.b64decode(state.code) if state.code else None
        fields["data"] = base64.b64decode(state.data) if state.data else None
    elif isinstance(state, V4StateFrozen):
        fields["frozen_state_hash"] = base64.b64decode(state.stateHash)

    if account.last is not None:
        fields["last_trans_lt"] = int(account.last.lt)
        fields["storage_last_trans_lt"] = int(account.last.lt)
        fields["last_trans_hash"] = base64.b64decode(account.last.hash)

    if account.storageStat is not None:
        fields["storage_used_bits"] = account.storageStat.used.bits
        fields["storage_used_cells"] = account.storageStat.used.cells
        fields["storage_last_paid"] = account.storageStat.lastPaid
        if account.storageStat.duePayment is not None:
            fields["due_payment"] = int(account.storageStat.duePayment)

    return AccountSnapshot(**fields)
