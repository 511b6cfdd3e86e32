"""Collection enumeration: turn a collection id into a stream of mint addresses."""

from typing import AsyncIterator, Iterable, Protocol

import httpx
import structlog

from nftcache.services.exceptions import PermanentError, RpcUnavailableError

logger = structlog.get_logger(__name__)


class MintSource(Protocol):
    """Capability: enumerate the mints of a collection."""

    def iter_mints(self, collection_id: str) -> AsyncIterator[str]: ...


class StaticMintSource:
    """MintSource over an explicit list of mints (collection id is ignored)."""

    def __init__(self, mints: Iterable[str]):
        self.mints = list(mints)

    async def iter_mints(self, collection_id: str) -> AsyncIterator[str]:
        for mint in self.mints:
            yield mint


class DasCollectionSource:
    """MintSource backed by the DAS `getAssetsByGroup` read API.

    Pages through the verified-collection group until a short page is returned.
    """

    def __init__(
        self,
        endpoint: str,
        page_size: int = 1000,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize DAS source.

        Args:
            endpoint: JSON-RPC URL of a DAS-capable provider
            page_size: Assets requested per page (DAS caps this at 1000)
            timeout: Per-request timeout in seconds
            client: Optional shared httpx client (owned by the caller)
        """
        self.endpoint = endpoint
        self.page_size = page_size
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def iter_mints(self, collection_id: str) -> AsyncIterator[str]:
        """Yield asset ids of the collection, page by page.

        Raises:
            RpcUnavailableError: On transport errors, timeouts, 429 or 5xx
            PermanentError: On other HTTP errors or a JSON-RPC error response
        """
        page = 1
        while True:
            items = await self._fetch_page(collection_id, page)
            for item in items:
                asset_id = item.get("id")
                if asset_id:
                    yield asset_id

            logger.debug(
                "collection.page_fetched", collection=collection_id, page=page, count=len(items)
            )
            if len(items) < self.page_size:
                return
            page += 1

    async def _fetch_page(self, collection_id: str, page: int) -> list[dict]:
        payload = {
            "jsonrpc": "2.0",
            "id": f"nftcache-{page}",
            "method": "getAssetsByGroup",
            "params": {
                "groupKey": "collection",
                "groupValue": collection_id,
                "page": page,
                "limit": self.page_size,
            },
        }
        try:
            response = await self.client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise RpcUnavailableError(f"DAS request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise RpcUnavailableError(f"DAS network error: {e}") from e

        # Error classification
        if response.status_code == 429 or response.status_code >= 500:
            raise RpcUnavailableError(
                f"DAS unavailable ({response.status_code}): {response.text[:200]}"
            )
        elif response.status_code >= 400:
            raise PermanentError(f"DAS request rejected ({response.status_code}): {response.text[:200]}")

        body = response.json()
        if body.get("error"):
            raise PermanentError(f"DAS error for collection {collection_id}: {body['error']}")
        return body.get("result", {}).get("items", [])

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
