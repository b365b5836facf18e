"""
Composite chain-data provider over toncenter and tonhub.

Routes every ChainDataProvider operation to the indexer that serves it and
implements the account-state fallback: when the primary account lookup fails
with a ProviderError, the same request is repeated against the fallback
endpoint.
"""

import logging

import httpx

from txretrace.errors import ProviderError
from txretrace.providers.base import ChainDataProvider, LibraryProvider
from txretrace.providers.dton import DtonProvider
from txretrace.providers.toncenter import ToncenterProvider
from txretrace.providers.tonhub import TonhubProvider
from txretrace.schema import (
    AccountSnapshot,
    BlockId,
    FetchedTransaction,
    ListedTransaction,
    RetraceConfig,
    ShardBlock,
    TopBlock,
    TransactionHandle,
)

logger = logging.getLogger(__name__)


class HttpChainProvider(ChainDataProvider):
    """
    ChainDataProvider backed by public indexers.

    Example:
        chain = HttpChainProvider.from_config(RetraceConfig(testnet=True))
        handle = await chain.find_transaction(tx_hash)
    """

    def __init__(
        self,
        toncenter: ToncenterProvider,
        tonhub: TonhubProvider,
        account_fallback_url: str | None = None,
    ):
        self.toncenter = toncenter
        self.tonhub = tonhub
        self.account_fallback_url = account_fallback_url

    @classmethod
    def from_config(
        cls,
        config: RetraceConfig,
        client: httpx.AsyncClient | None = None,
    ) -> "HttpChainProvider":
        """Build the provider from a RetraceConfig."""
        return cls(
            toncenter=ToncenterProvider(
                config.toncenter_endpoint,
                api_key=config.toncenter_api_key,
                timeout_seconds=config.timeout_seconds,
                client=client,
            ),
            tonhub=TonhubProvider(
                config.tonhub_endpoint,
                timeout_seconds=config.timeout_seconds,
                client=client,
            ),
            account_fallback_url=config.account_fallback_endpoint,
        )

    async def find_transaction(self, tx_hash: bytes) -> TransactionHandle | None:
        return await self.toncenter.find_transaction(tx_hash)

    async def fetch_transaction(self, handle: TransactionHandle) -> FetchedTransaction:
        """
        Combine the transaction BOC from toncenter with its block from tonhub.

        The BOC is left empty when toncenter lists a different transaction
        at the handle.
        """
        listed = await self.toncenter.list_transactions(handle.address, handle.lt, handle.hash, 0, 1)
        blocks = await self.tonhub.fetch_transaction_blocks(handle)

        boc = None
        if listed and listed[0].hash == handle.hash:
            boc = listed[0].boc
        else:
            logger.debug("toncenter returned no transaction at %s lt=%d", handle.address, handle.lt)
        return FetchedTransaction(boc=boc, block=blocks[0] if blocks else None)

    async def find_shard_block(self, block: BlockId) -> ShardBlock | None:
        return await self.toncenter.find_shard_block(block)

    async def fetch_top_block(self, seqno: int) -> TopBlock:
        return await self.tonhub.fetch_top_block(seqno)

    async def fetch_config(self, seqno: int) -> bytes:
        return await self.tonhub.fetch_config(seqno)

    async def fetch_account(self, address: str, seqno: int) -> AccountSnapshot:
        """Fetch an account, retrying once against the fallback endpoint."""
        try:
            return await self.tonhub.fetch_account(address, seqno)
        except ProviderError as e:
            if not self.account_fallback_url:
                raise
            logger.warning("Cannot get account from %s, using fallback: %s", e.provider, e.message)
            return await self.tonhub.fetch_account(address, seqno, base_url=self.account_fallback_url)

    async def list_transactions(
        self,
        address: str,
        lt: int,
        tx_hash: bytes,
        to_lt: int,
        limit: int,
    ) -> list[ListedTransaction]:
        return await self.toncenter.list_transactions(address, lt, tx_hash, to_lt, limit)

    async def aclose(self) -> None:
        await self.toncenter.aclose()
        await self.tonhub.aclose()


def library_providers(
    config: RetraceConfig,
    client: httpx.AsyncClient | None = None,
) -> list[LibraryProvider]:
    """Library providers in fallback order: toncenter, then dton when configured."""
    providers: list[LibraryProvider] = [
        ToncenterProvider(
            config.toncenter_endpoint,
            api_key=config.toncenter_api_key,
            timeout_seconds=config.timeout_seconds,
            client=client,
        )
    ]
    dton_url = config.dton_endpoint
    if dton_url:
        providers.append(
            DtonProvider(dton_url, timeout_seconds=config.timeout_seconds, client=client)
        )
    return providers
