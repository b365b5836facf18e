"""
toncenter adapter (API v3 and v2).

v3 is used to look a transaction up by hash and to find the shard block that
contains it; v2 lists an account's transaction history and serves library
cells.

Usage:
    from txretrace.providers.toncenter import ToncenterProvider

    toncenter = ToncenterProvider("https://toncenter.com", api_key="...")
    handle = await toncenter.find_transaction(bytes.fromhex("..."))
"""

import base64

import httpx
from pydantic import BaseModel, ConfigDict, Field

from txretrace.errors import NotFoundError, ProviderError
from txretrace.providers.base import LibraryProvider
from txretrace.providers.http import JsonHttpProvider
from txretrace.schema import BlockId, ListedTransaction, ShardBlock, TransactionHandle


# =============================================================================
# Response Models
# =============================================================================


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class V3Transaction(_Lenient):
    account: str
    hash: str
    lt: int


class V3TransactionsResponse(_Lenient):
    transactions: list[V3Transaction] = Field(default_factory=list)


class V3BlockRef(_Lenient):
    workchain: int
    shard: str
    seqno: int


class V3Block(_Lenient):
    workchain: int
    shard: str
    seqno: int
    root_hash: str
    rand_seed: str
    masterchain_block_ref: V3BlockRef


class V3BlocksResponse(_Lenient):
    blocks: list[V3Block] = Field(default_factory=list)


class V2TransactionId(_Lenient):
    lt: int
    hash: str


class V2Transaction(_Lenient):
    data: str
    transaction_id: V2TransactionId
    utime: int = 0


class V2TransactionsResponse(_Lenient):
    ok: bool
    result: list[V2Transaction] = Field(default_factory=list)
    error: str | None = None


class V2Library(_Lenient):
    hash: str
    data: str


class V2LibraryResult(_Lenient):
    result: list[V2Library] = Field(default_factory=list)


class V2LibrariesResponse(_Lenient):
    ok: bool
    result: V2LibraryResult | None = None
    error: str | None = None


# =============================================================================
# Provider
# =============================================================================


class ToncenterProvider(JsonHttpProvider, LibraryProvider):
    """
    toncenter v3/v2 adapter.

    Attributes:
        api_key: Sent as the X-API-Key header when set
    """

    name = "toncenter"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        super().__init__(base_url, timeout_seconds, headers=headers, client=client)
        self.api_key = api_key

    async def find_transaction(self, tx_hash: bytes) -> TransactionHandle | None:
        """Look a transaction up by hash (v3 /transactions)."""
        data = await self._request(
            "GET",
            "/api/v3/transactions",
            V3TransactionsResponse,
            params={"hash": tx_hash.hex(), "limit": 1},
        )
        if not data.transactions:
            return None

        tx = data.transactions[0]
        return TransactionHandle(
            lt=tx.lt,
            hash=base64.b64decode(tx.hash),
            address=tx.account,
        )

    async def find_shard_block(self, block: BlockId) -> ShardBlock | None:
        """Find a shard block by coordinates (v3 /blocks)."""
        data = await self._request(
            "GET",
            "/api/v3/blocks",
            V3BlocksResponse,
            params={
                "workchain": block.workchain,
                "shard": block.shard_hex,
                "seqno": block.seqno,
            },
        )
        if not data.blocks:
            return None

        found = data.blocks[0]
        return ShardBlock(
            block=BlockId(
                workchain=found.workchain,
                shard=_parse_v3_shard(found.shard),
                seqno=found.seqno,
                root_hash=found.root_hash,
            ),
            root_hash=found.root_hash,
            masterchain_seqno=found.masterchain_block_ref.seqno,
            rand_seed=base64.b64decode(found.rand_seed),
        )

    async def list_transactions(
        self,
        address: str,
        lt: int,
        tx_hash: bytes,
        to_lt: int,
        limit: int,
    ) -> list[ListedTransaction]:
        """List account transactions newest first (v2 getTransactions, archival)."""
        data = await self._request(
            "GET",
            "/api/v2/getTransactions",
            V2TransactionsResponse,
            params={
                "address": address,
                "lt": lt,
                "hash": base64.b64encode(tx_hash).decode(),
                "to_lt": to_lt,
                "limit": limit,
                "archival": "true",
            },
        )
        if not data.ok:
            raise ProviderError(
                provider=self.name,
                url=f"{self.base_url}/api/v2/getTransactions",
                underlying_error=data.error or "ok=false",
            )

        return [
            ListedTransaction(
                lt=item.transaction_id.lt,
                hash=base64.b64decode(item.transaction_id.hash),
                boc=base64.b64decode(item.data),
            )
            for item in data.result
        ]

    async def fetch_library(self, lib_hash: bytes) -> bytes:
        """Fetch a library cell (v2 getLibraries)."""
        hex_hash = lib_hash.hex().upper()
        data = await self._request(
            "GET",
            "/api/v2/getLibraries",
            V2LibrariesResponse,
            params={"libraries": hex_hash},
        )
        if not data.ok:
            raise ProviderError(
                provider=self.name,
                url=f"{self.base_url}/api/v2/getLibraries",
                underlying_error=data.error or "ok=false",
            )
        if data.result is None or not data.result.result:
            raise NotFoundError(stage="library", message=f"Library {hex_hash} not found on toncenter")

        return base64.b64decode(data.result.result[0].data)


def _parse_v3_shard(shard: str) -> int:
    """v3 reports shards as bare hex ("8000000000000000") or signed decimals."""
    if shard.startswith("-"):
        return int(shard) + (1 << 64)
    return int(shard, 16)
