"""
Chain Locator for txretrace.

Resolves a transaction hash into everything replay needs: the transaction
handle and record, the shard block that contains it, the masterchain block
(consensus round) that references that shard block, and the account's
earlier transactions inside that round.

Design Principles:
    - Every cross-checked identifier must match exactly; mismatches raise
      IntegrityViolationError and are never retried
    - A missing chain object raises a NotFoundError subclass, never returns None
    - Provider payloads are already normalized; the codec decodes BOCs
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from txretrace.codec import DecodedTransaction, LedgerCodec
from txretrace.errors import (
    BackendUnavailableError,
    BlockNotFoundError,
    IntegrityViolationError,
    TransactionNotFoundError,
)
from txretrace.providers.base import ChainDataProvider
from txretrace.schema import (
    AccountSnapshot,
    BlockId,
    ConsensusRoundBound,
    ListedTransaction,
    TopBlock,
    TransactionHandle,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionRecord:
    """
    An encoded transaction with its decoded view.

    Attributes:
        boc: Single-root transaction BOC
        tx: Decoded transaction
        block: Shard block containing the transaction (when known)
    """

    boc: bytes
    tx: DecodedTransaction
    block: BlockId | None = None


def parse_tx_hash(value: str | bytes) -> bytes:
    """Accept a 32-byte hash or its 64-character hex form."""
    if isinstance(value, bytes):
        raw = value
    else:
        try:
            raw = bytes.fromhex(value.strip())
        except ValueError as e:
            msg = f"Transaction hash must be 64 hex characters: {value!r}"
            raise ValueError(msg) from e
    if len(raw) != 32:
        msg = f"Transaction hash must be 32 bytes, got {len(raw)}"
        raise ValueError(msg)
    return raw


def compute_min_lt(
    target_lt: int,
    address: str,
    top_block: TopBlock,
    normalize: Callable[[str], str],
) -> int:
    """
    Earliest logical time of the account inside a masterchain block.

    Scans every shard summary; defaults to `target_lt` when the account has
    no earlier transaction in the block.
    """
    min_lt = target_lt
    for shard in top_block.shards:
        for entry in shard.transactions:
            if entry.lt < min_lt and normalize(entry.account) == address:
                min_lt = entry.lt
    return min_lt


class ChainLocator:
    """
    Locates the chain objects that bound a transaction.

    Every step after locate() decodes BOCs and needs a codec; locate() alone
    works without one.

    Usage:
        locator = ChainLocator(provider, codec)
        handle = await locator.locate("9f2c...")
        record = await locator.transaction_details(handle)
        bound = await locator.resolve_round(record)
        siblings = await locator.sibling_transactions(handle, bound.min_lt)
    """

    def __init__(
        self,
        provider: ChainDataProvider,
        codec: LedgerCodec | None = None,
        page_limit: int = 1000,
    ):
        self.provider = provider
        self._codec = codec
        self.page_limit = page_limit

    @property
    def codec(self) -> LedgerCodec:
        if self._codec is None:
            raise BackendUnavailableError(
                backend="codec",
                message="ChainLocator was built without a codec; only locate() is available",
            )
        return self._codec

    async def locate(self, tx_hash: str | bytes) -> TransactionHandle:
        """
        Resolve a transaction hash into a handle.

        Raises:
            TransactionNotFoundError: If the hash yields no record
        """
        raw_hash = parse_tx_hash(tx_hash)
        handle = await self.provider.find_transaction(raw_hash)
        if handle is None:
            raise TransactionNotFoundError(tx_hash=raw_hash.hex())
        logger.debug("Located %s at %s lt=%d", raw_hash.hex(), handle.address, handle.lt)
        return handle

    async def transaction_details(self, handle: TransactionHandle) -> TransactionRecord:
        """
        Fetch the full transaction record and its shard block.

        Raises:
            TransactionNotFoundError: If no record is returned or its hash
                does not match the handle
        """
        fetched = await self.provider.fetch_transaction(handle)
        if fetched.boc is None:
            raise TransactionNotFoundError(tx_hash=handle.hash.hex(), stage="transaction_details")

        tx = self.codec.decode_transaction(fetched.boc)
        if tx.hash != handle.hash:
            logger.debug("Fetched %s while looking for %s", tx.hash.hex(), handle.hash.hex())
            raise TransactionNotFoundError(tx_hash=handle.hash.hex(), stage="transaction_details")
        return TransactionRecord(boc=fetched.boc, tx=tx, block=fetched.block)

    async def resolve_round(self, record: TransactionRecord) -> ConsensusRoundBound:
        """
        Find the consensus round of a transaction.

        Raises:
            BlockNotFoundError: If the shard block cannot be found
            IntegrityViolationError: If the shard block root hash does not match
        """
        block_ref = record.block
        if block_ref is None:
            raise BlockNotFoundError(message="Transaction record carries no block reference")

        shard_block = await self.provider.find_shard_block(block_ref)
        if shard_block is None:
            raise BlockNotFoundError(
                workchain=block_ref.workchain,
                shard=block_ref.shard_hex,
                seqno=block_ref.seqno,
            )

        if shard_block.root_hash != block_ref.root_hash:
            raise IntegrityViolationError(
                stage="resolve_round",
                message=(
                    f"root_hash mismatch in mc_seqno getter: "
                    f"{block_ref.root_hash} != {shard_block.root_hash}"
                ),
                expected=str(block_ref.root_hash),
                actual=shard_block.root_hash,
            )

        top_block = await self.provider.fetch_top_block(shard_block.masterchain_seqno)
        min_lt = compute_min_lt(
            record.tx.lt,
            record.tx.account,
            top_block,
            self.codec.parse_address,
        )
        logger.debug(
            "Round mc_seqno=%d min_lt=%d (target lt=%d)",
            shard_block.masterchain_seqno,
            min_lt,
            record.tx.lt,
        )

        return ConsensusRoundBound(
            top_block_seqno=shard_block.masterchain_seqno,
            random_seed=shard_block.rand_seed,
            min_lt=min_lt,
        )

    async def sibling_transactions(
        self,
        handle: TransactionHandle,
        min_lt: int,
    ) -> list[TransactionRecord]:
        """
        List the account's transactions in [min_lt, handle.lt], newest first.

        The target transaction is the first element. Full pages are followed
        so a long round is never truncated.

        Raises:
            IntegrityViolationError: If the listing does not start with the
                target or is not strictly decreasing inside the window
        """
        listed: list[ListedTransaction] = []
        lt, tx_hash = handle.lt, handle.hash

        while True:
            page = await self.provider.list_transactions(
                handle.address, lt, tx_hash, min_lt - 1, self.page_limit
            )
            # continuation pages start with the last transaction already listed
            fresh = page[1:] if listed and page and page[0].hash == listed[-1].hash else page
            listed.extend(fresh)
            if len(page) < self.page_limit or not fresh:
                break
            lt, tx_hash = listed[-1].lt, listed[-1].hash

        self._check_window(handle, min_lt, listed)
        return [TransactionRecord(boc=item.boc, tx=self.codec.decode_transaction(item.boc)) for item in listed]

    @staticmethod
    def _check_window(
        handle: TransactionHandle,
        min_lt: int,
        listed: list[ListedTransaction],
    ) -> None:
        if not listed or listed[0].hash != handle.hash:
            raise IntegrityViolationError(
                stage="sibling_transactions",
                message="Transaction listing does not start with the target transaction",
                expected=handle.hash.hex(),
                actual=listed[0].hash.hex() if listed else "<empty>",
            )

        previous = listed[0].lt
        for item in listed[1:]:
            if not (min_lt <= item.lt < previous):
                raise IntegrityViolationError(
                    stage="sibling_transactions",
                    message=f"Transaction lt {item.lt} breaks the window [{min_lt}, {previous})",
                    expected=f"{min_lt} <= lt < {previous}",
                    actual=str(item.lt),
                )
            previous = item.lt

    async def round_config(self, bound: ConsensusRoundBound) -> bytes:
        """Global config cell valid for the round."""
        return await self.provider.fetch_config(bound.top_block_seqno)

    async def account_before_round(self, address: str, bound: ConsensusRoundBound) -> AccountSnapshot:
        """Account state as of the masterchain block preceding the round."""
        return await self.provider.fetch_account(address, bound.top_block_seqno - 1)
