"""
Provider module for txretrace.

This module provides the interfaces and HTTP adapters used to retrieve
chain data: transactions, blocks, configs, account states and library cells.

Components:
    - ChainDataProvider: Abstract interface consumed by the Chain Locator
    - LibraryProvider: Abstract interface consumed by the Library Resolver
    - HttpChainProvider: toncenter v2/v3 + tonhub v4 composite
    - ToncenterProvider, TonhubProvider, DtonProvider: individual indexers

Usage:
    from txretrace.providers import HttpChainProvider, library_providers

    chain = HttpChainProvider.from_config(config)
    libraries = library_providers(config)
"""

from txretrace.providers.base import ChainDataProvider, LibraryProvider
from txretrace.providers.chain import HttpChainProvider, library_providers
from txretrace.providers.dton import DtonProvider
from txretrace.providers.toncenter import ToncenterProvider
from txretrace.providers.tonhub import TonhubProvider

__all__ = [
    "ChainDataProvider",
    "DtonProvider",
    "HttpChainProvider",
    "LibraryProvider",
    "ToncenterProvider",
    "TonhubProvider",
    "library_providers",
]
