"""
Base classes for chain-data providers.

This module defines the abstract interfaces the Chain Locator and Library
Resolver consume. Concrete adapters talk to public indexers over HTTP; tests
substitute in-memory fakes.

Design Principles:
    - Providers return normalized records from txretrace.schema, never raw JSON
    - Every transport or payload failure surfaces as ProviderError
    - A missing object surfaces as NotFoundError (or a subclass), not None
    - Providers hold no reconstruction state between calls
"""

from abc import ABC, abstractmethod

from txretrace.schema import (
    AccountSnapshot,
    BlockId,
    FetchedTransaction,
    ListedTransaction,
    ShardBlock,
    TopBlock,
    TransactionHandle,
)


class LibraryProvider(ABC):
    """
    Source of library cell content.

    Implementations:
        - ToncenterProvider: toncenter getLibraries
        - DtonProvider: dton GraphQL get_lib
    """

    name: str = "library"

    @abstractmethod
    async def fetch_library(self, lib_hash: bytes) -> bytes:
        """
        Fetch the content of a library cell.

        Args:
            lib_hash: 32-byte library hash

        Returns:
            Library root cell as a BOC

        Raises:
            NotFoundError: The provider does not know the library
            ProviderError: Transport or payload failure
        """


class ChainDataProvider(ABC):
    """
    Source of transactions, blocks, configs and account states.

    Implementations:
        - HttpChainProvider: toncenter v2/v3 combined with tonhub v4
        - (tests) FakeChainProvider
    """

    @abstractmethod
    async def find_transaction(self, tx_hash: bytes) -> TransactionHandle | None:
        """Look a transaction up by hash; None if no record exists."""

    @abstractmethod
    async def fetch_transaction(self, handle: TransactionHandle) -> FetchedTransaction:
        """Fetch the single-root transaction BOC at a handle, with its shard block."""

    @abstractmethod
    async def find_shard_block(self, block: BlockId) -> ShardBlock | None:
        """Find a shard block by coordinates; None if missing."""

    @abstractmethod
    async def fetch_top_block(self, seqno: int) -> TopBlock:
        """Fetch a full masterchain block with every shard summary."""

    @abstractmethod
    async def fetch_config(self, seqno: int) -> bytes:
        """Fetch the global configuration cell valid for a masterchain block."""

    @abstractmethod
    async def fetch_account(self, address: str, seqno: int) -> AccountSnapshot:
        """Fetch an account state as of the given masterchain block."""

    @abstractmethod
    async def list_transactions(
        self,
        address: str,
        lt: int,
        tx_hash: bytes,
        to_lt: int,
        limit: int,
    ) -> list[ListedTransaction]:
        """
        List account transactions newest first.

        Starts at (lt, tx_hash) inclusive and stops above to_lt.
        """

    async def aclose(self) -> None:
        """Release transport resources."""
