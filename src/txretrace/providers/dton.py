"""
dton GraphQL adapter.

Used only as the fallback library provider. The API key is part of the
endpoint URL, so the provider is configured with the full GraphQL URL.
"""

import base64

import httpx
from pydantic import BaseModel, ConfigDict

from txretrace.errors import NotFoundError
from txretrace.providers.base import LibraryProvider
from txretrace.providers.http import JsonHttpProvider


class _GetLibData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    get_lib: str | None = None


class GetLibResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: _GetLibData | None = None


class DtonProvider(JsonHttpProvider, LibraryProvider):
    """dton GraphQL library provider."""

    name = "dton"

    def __init__(
        self,
        graphql_url: str,
        timeout_seconds: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            graphql_url,
            timeout_seconds,
            headers={"Content-Type": "application/json"},
            client=client,
        )

    async def fetch_library(self, lib_hash: bytes) -> bytes:
        """Fetch a library cell with the get_lib query."""
        hex_hash = lib_hash.hex().upper()
        query = {
            "query": f'query fetchAuthor {{ get_lib(lib_hash: "{hex_hash}") }}',
            "variables": {},
        }
        data = await self._request("POST", "", GetLibResponse, json=query)
        if data.data is None or not data.data.get_lib:
            raise NotFoundError(stage="library", message=f"Library {hex_hash} not found on dton")

        return base64.b64decode(data.data.get_lib)
