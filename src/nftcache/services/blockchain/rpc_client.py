"""Solana RPC access behind a narrow account-reading capability."""

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol

import structlog
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.pubkey import Pubkey

from nftcache.services.exceptions import RpcUnavailableError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AccountInfo:
    """Raw account data and owning program."""

    address: Pubkey
    owner: Pubkey
    data: bytes


class AccountReader(Protocol):
    """Capability: fetch account data by address."""

    async def get_account(self, address: Pubkey) -> AccountInfo | None: ...


class RateLimiter:
    """Spaces calls at least 1/rate seconds apart (rate <= 0 disables it)."""

    def __init__(self, rate_per_second: float):
        self.interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def acquire(self) -> None:
        if not self.interval:
            return
        async with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self.interval
        if wait > 0:
            await asyncio.sleep(wait)


class SolanaRpcClient:
    """AccountReader backed by solana-py's AsyncClient.

    Every call is rate limited and bounded by `timeout`; transport failures,
    timeouts and RPC error responses surface as RpcUnavailableError.
    """

    def __init__(self, endpoint: str, timeout: float = 10.0, requests_per_second: float = 0.0):
        self.endpoint = endpoint
        self.timeout = timeout
        self.client = AsyncClient(endpoint, commitment=Confirmed, timeout=timeout)
        self.limiter = RateLimiter(requests_per_second)

    async def get_account(self, address: Pubkey) -> AccountInfo | None:
        """Fetch an account, returning None when it does not exist.

        Raises:
            RpcUnavailableError: On transport errors, timeouts or RPC errors
        """
        await self.limiter.acquire()
        try:
            resp = await asyncio.wait_for(
                self.client.get_account_info(address, encoding="base64"),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise RpcUnavailableError(f"RPC timeout after {self.timeout}s: {address}") from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # solana-py wraps httpx failures; solders raises on unparseable responses
            raise RpcUnavailableError(f"RPC getAccountInfo failed for {address}: {e}") from e

        account = resp.value
        if account is None:
            return None
        return AccountInfo(address=address, owner=account.owner, data=bytes(account.data))

    async def close(self) -> None:
        await self.client.close()
