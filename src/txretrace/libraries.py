"""
Library cell detection and resolution.

A library cell is a 264-bit exotic cell holding the tag byte 2 followed by a
256-bit hash. The code it points to is not stored on the account and must be
fetched from a library provider before the emulator can run it.

Design Principles:
    - LibraryTable is immutable; adding an entry returns a new table
    - Providers are tried in order; every provider after the first is
      preceded by a pacing delay
    - Failure is reported only after every provider failed, listing each one
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass

from txretrace.codec import CellBits, LedgerCodec
from txretrace.errors import LibraryUnavailableError, NotFoundError, ProviderError
from txretrace.providers.base import LibraryProvider
from txretrace.schema import AccountSnapshot, AccountStateType

logger = logging.getLogger(__name__)

LIBRARY_CELL_TAG = 2
LIBRARY_CELL_BITS = 8 + 256


def library_hash(cell: CellBits) -> bytes | None:
    """
    Classify a cell with the library detection rule.

    Returns:
        The referenced 32-byte hash, or None for ordinary cells
    """
    if cell.bit_length != LIBRARY_CELL_BITS:
        return None
    if len(cell.data) < 33 or cell.data[0] != LIBRARY_CELL_TAG:
        return None
    return bytes(cell.data[1:33])


class LibraryTable(Mapping[bytes, bytes]):
    """
    Immutable mapping from library hash to library content (BOC bytes).

    Example:
        table = LibraryTable().with_entry(lib_hash, content)
        assert lib_hash in table
    """

    def __init__(self, entries: Mapping[bytes, bytes] | None = None):
        self._entries: dict[bytes, bytes] = dict(entries or {})

    def __getitem__(self, key: bytes) -> bytes:
        return self._entries[key]

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"LibraryTable({[h.hex().upper() for h in self._entries]})"

    def with_entry(self, lib_hash: bytes, content: bytes) -> "LibraryTable":
        """Return a new table with one more (or replaced) entry."""
        entries = dict(self._entries)
        entries[lib_hash] = content
        return LibraryTable(entries)

    def merged(self, other: Mapping[bytes, bytes]) -> "LibraryTable":
        """Return a new table holding the entries of both tables."""
        entries = dict(self._entries)
        entries.update(other)
        return LibraryTable(entries)

    def hex_hashes(self) -> list[str]:
        """Upper-case hex hashes, sorted."""
        return sorted(h.hex().upper() for h in self._entries)


class LibraryCache:
    """
    In-process cache of fetched libraries, keyed by hash.

    Library content is immutable once published, so one cache can back
    several concurrent reconstructions.
    """

    def __init__(self) -> None:
        self._entries: dict[bytes, bytes] = {}

    def get(self, lib_hash: bytes) -> bytes | None:
        return self._entries.get(lib_hash)

    def put(self, lib_hash: bytes, content: bytes) -> None:
        self._entries.setdefault(lib_hash, content)

    def __contains__(self, lib_hash: object) -> bool:
        return lib_hash in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class ScanResult:
    """
    Result of scanning an account for library references.

    Attributes:
        libraries: Table to hand to the emulator, None when empty
        resolved_self_code: Library content the account actually runs
    """

    libraries: LibraryTable | None
    resolved_self_code: bytes | None


class LibraryResolver:
    """
    Detects library references and fetches their content.

    Example:
        resolver = LibraryResolver([toncenter, dton], codec)
        scan = await resolver.scan(account, deploy_code, additional)
    """

    def __init__(
        self,
        providers: Sequence[LibraryProvider],
        codec: LedgerCodec,
        fallback_delay_seconds: float = 1.0,
        cache: LibraryCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the resolver.

        Args:
            providers: Library providers, primary first
            codec: Codec used to inspect cells
            fallback_delay_seconds: Pause before each non-primary provider
            cache: Optional shared cache
            sleep: Awaitable sleep (replaced in tests)
        """
        self.providers = list(providers)
        self.codec = codec
        self.fallback_delay_seconds = fallback_delay_seconds
        self.cache = cache
        self._sleep = sleep

    def classify(self, boc: bytes) -> bytes | None:
        """Return the library hash a cell references, or None."""
        return library_hash(self.codec.inspect_cell(boc))

    async def fetch(self, lib_hash: bytes) -> bytes:
        """
        Fetch library content, trying each provider in order.

        Raises:
            LibraryUnavailableError: If every provider failed
        """
        if self.cache is not None:
            cached = self.cache.get(lib_hash)
            if cached is not None:
                return cached

        hex_hash = lib_hash.hex().upper()
        provider_errors: dict[str, str] = {}

        for index, provider in enumerate(self.providers):
            if index > 0:
                await self._sleep(self.fallback_delay_seconds)
            try:
                content = await provider.fetch_library(lib_hash)
            except (ProviderError, NotFoundError) as e:
                provider_errors[provider.name] = e.message
                logger.warning("Library %s not loaded from %s: %s", hex_hash, provider.name, e.message)
                continue

            if self.cache is not None:
                self.cache.put(lib_hash, content)
            return content

        raise LibraryUnavailableError(library_hash=hex_hash, provider_errors=provider_errors)

    async def scan(
        self,
        account: AccountSnapshot,
        deploy_code: bytes | None = None,
        additional: Mapping[bytes, bytes] | None = None,
    ) -> ScanResult:
        """
        Collect every library the target transaction needs up front.

        Both the account's active code and the StateInit code of the
        incoming message are scanned. Additional libraries are merged
        without being fetched again.
        """
        table = LibraryTable(additional)
        resolved_self_code: bytes | None = None

        candidates: list[bytes] = []
        if account.state == AccountStateType.ACTIVE and account.code is not None:
            candidates.append(account.code)
        if deploy_code is not None:
            candidates.append(deploy_code)

        for code in candidates:
            lib_hash = self.classify(code)
            if lib_hash is None:
                continue
            content = table.get(lib_hash)
            if content is None:
                content = await self.fetch(lib_hash)
                table = table.with_entry(lib_hash, content)
            if resolved_self_code is None:
                resolved_self_code = content

        return ScanResult(libraries=table or None, resolved_self_code=resolved_self_code)
