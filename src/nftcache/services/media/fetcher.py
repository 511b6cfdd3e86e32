"""Origin media fetcher.

Downloads the image a token's metadata points at. The on-chain URI usually
names an off-chain JSON document; its `image` field is followed once to reach
the actual image.

Limits are enforced per fetch: total time, body size and redirect hops.
Errors are classified for the retry logic:
- TransientError: connection failures, 408, 429, 5xx
- PermanentError: other 4xx, size/redirect/timeout limits, unsupported URIs
"""

import asyncio
import hashlib
import json
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from nftcache.services.exceptions import (
    MediaHTTPError,
    MediaTimeoutError,
    MediaTooLargeError,
    MediaUnreachableError,
    TooManyRedirectsError,
    UnsupportedUriError,
)

logger = structlog.get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"
CHUNK_SIZE = 64 * 1024

MAGIC_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
)

RETRYABLE_STATUS = {408, 429}


@dataclass(frozen=True)
class FetchedMedia:
    """Downloaded source media."""

    data: bytes
    content_type: str
    uri: str  # final image URI (before gateway rewriting)
    content_hash: str  # sha256 hex of data


class MediaSource(Protocol):
    """Capability: fetch the image a metadata URI refers to."""

    async def fetch(self, uri: str) -> FetchedMedia: ...


def detect_content_type(data: bytes, header: str | None = None) -> str:
    """Detect content type from magic bytes, falling back to the header."""
    head = data[:16]
    for signature, content_type in MAGIC_SIGNATURES:
        if head.startswith(signature):
            return content_type
    # WebP: RIFF....WEBP
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"

    normalized = (header or "").split(";")[0].strip().lower()
    if normalized in (JSON_CONTENT_TYPE, "text/json") or normalized.endswith("+json"):
        return JSON_CONTENT_TYPE
    if not normalized or normalized in ("application/octet-stream", "text/plain"):
        # Gateways often mislabel metadata documents
        if data.lstrip()[:1] == b"{":
            return JSON_CONTENT_TYPE
    return normalized or "application/octet-stream"


def extract_image_uri(document: bytes) -> str:
    """Pull the image reference out of an off-chain metadata document.

    Raises:
        UnsupportedUriError: If the document is not JSON or names no image
    """
    try:
        body = json.loads(document)
    except (UnicodeDecodeError, ValueError) as e:
        raise UnsupportedUriError(f"Metadata document is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise UnsupportedUriError("Metadata document is not a JSON object")

    image = body.get("image")
    if isinstance(image, str) and image.strip():
        return image.strip()

    files = (body.get("properties") or {}).get("files") or []
    for entry in files:
        if isinstance(entry, dict) and isinstance(entry.get("uri"), str) and entry["uri"].strip():
            return entry["uri"].strip()

    raise UnsupportedUriError("Metadata document has no image reference")


def join_url(base: str | httpx.URL, reference: str | None = None) -> httpx.URL:
    """Parse `base` and optionally resolve `reference` against it.

    Raises:
        UnsupportedUriError: If either part is not a valid URL
    """
    try:
        url = httpx.URL(base)
        return url.join(reference) if reference is not None else url
    except (httpx.InvalidURL, ValueError) as e:
        raise UnsupportedUriError(f"Malformed media URL {reference or base!r}: {e}") from e


class MediaFetcher:
    """MediaSource over HTTP(S), IPFS and Arweave gateways."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 15.0,
        max_bytes: int = 20 * 1024 * 1024,
        max_redirects: int = 5,
        ipfs_gateway: str = "https://ipfs.io",
        arweave_gateway: str = "https://arweave.net",
    ):
        """Initialize fetcher.

        Args:
            client: Optional shared httpx client (owned by the caller)
            timeout: Total seconds allowed for one fetch, redirects included
            max_bytes: Response body ceiling
            max_redirects: Maximum redirect hops followed
            ipfs_gateway: Gateway base URL for ipfs:// URIs
            arweave_gateway: Gateway base URL for ar:// URIs
        """
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.max_redirects = max_redirects
        self.ipfs_gateway = ipfs_gateway.rstrip("/")
        self.arweave_gateway = arweave_gateway.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)
        self._owns_client = client is None

    def to_http_url(self, uri: str) -> str:
        """Rewrite a metadata URI into a fetchable HTTP(S) URL.

        Raises:
            UnsupportedUriError: For schemes other than http(s), ipfs and ar,
                or a URL httpx cannot parse
        """
        uri = uri.strip()
        scheme, sep, rest = uri.partition("://")
        scheme = scheme.lower()
        if not sep or not rest:
            raise UnsupportedUriError(f"Unsupported media URI: {uri!r}")
        if scheme in ("http", "https"):
            url = uri
        elif scheme == "ipfs":
            if rest.startswith("ipfs/"):
                rest = rest[len("ipfs/") :]
            url = f"{self.ipfs_gateway}/ipfs/{rest}"
        elif scheme == "ar":
            url = f"{self.arweave_gateway}/{rest}"
        else:
            raise UnsupportedUriError(f"Unsupported media URI scheme {scheme!r}: {uri}")
        join_url(url)
        return url

    async def fetch(self, uri: str) -> FetchedMedia:
        """Fetch the image behind a metadata URI.

        Follows one level of JSON metadata indirection.

        Raises:
            TransientError: MediaUnreachableError (retryable)
            PermanentError: MediaHTTPError, MediaTooLargeError, MediaTimeoutError,
                TooManyRedirectsError, UnsupportedUriError
        """
        media = await self._fetch_once(uri)
        if media.content_type != JSON_CONTENT_TYPE:
            return media

        image_uri = extract_image_uri(media.data)
        if "://" not in image_uri:
            image_uri = str(join_url(self.to_http_url(uri), image_uri))
        logger.debug("fetch.following_metadata", uri=uri, image_uri=image_uri)

        media = await self._fetch_once(image_uri)
        if media.content_type == JSON_CONTENT_TYPE:
            raise UnsupportedUriError(f"Image URI {image_uri} resolved to another JSON document")
        return media

    async def _fetch_once(self, uri: str) -> FetchedMedia:
        url = self.to_http_url(uri)
        try:
            data, header_type = await asyncio.wait_for(self._download(url), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise MediaTimeoutError(f"Fetch of {url} exceeded {self.timeout}s") from e

        return FetchedMedia(
            data=data,
            content_type=detect_content_type(data, header_type),
            uri=uri,
            content_hash=hashlib.sha256(data).hexdigest(),
        )

    async def _download(self, url: str) -> tuple[bytes, str | None]:
        for _hop in range(self.max_redirects + 1):
            try:
                request = self.client.build_request("GET", url)
            except (httpx.InvalidURL, ValueError) as e:
                raise UnsupportedUriError(f"Malformed media URL {url!r}: {e}") from e
            try:
                response = await self.client.send(request, stream=True)
            except httpx.TimeoutException:
                raise
            except httpx.UnsupportedProtocol as e:
                raise UnsupportedUriError(f"Cannot fetch {url}: {e}") from e
            except httpx.TransportError as e:
                raise MediaUnreachableError(f"Network error fetching {url}: {e}") from e

            try:
                if response.is_redirect:
                    location = response.headers.get("location")
                    if not location:
                        raise MediaHTTPError(
                            f"Redirect without location from {url}", response.status_code
                        )
                    url = str(join_url(response.url, location))
                    continue

                self._check_status(response, url)
                return await self._read_body(response, url), response.headers.get("content-type")
            finally:
                await response.aclose()

        raise TooManyRedirectsError(f"More than {self.max_redirects} redirects fetching {url}")

    def _check_status(self, response: httpx.Response, url: str) -> None:
        status = response.status_code
        if status in RETRYABLE_STATUS or status >= 500:
            raise MediaUnreachableError(f"Origin unavailable ({status}): {url}")
        elif status >= 400:
            raise MediaHTTPError(f"Origin returned {status}: {url}", status_code=status)

    async def _read_body(self, response: httpx.Response, url: str) -> bytes:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise MediaTooLargeError(
                f"Content-Length {declared} exceeds {self.max_bytes} bytes: {url}"
            )

        buffer = bytearray()
        try:
            async for chunk in response.aiter_bytes(CHUNK_SIZE):
                buffer += chunk
                if len(buffer) > self.max_bytes:
                    raise MediaTooLargeError(f"Body exceeds {self.max_bytes} bytes: {url}")
        except httpx.TimeoutException:
            raise
        except httpx.TransportError as e:
            raise MediaUnreachableError(f"Connection dropped reading {url}: {e}") from e
        return bytes(buffer)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
