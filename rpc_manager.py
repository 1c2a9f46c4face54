import asyncio
import logging

from web3 import AsyncWeb3

logger = logging.getLogger("RPCManager")


class AsyncRPCManager:
    """
    Round-robin async RPC manager.
    - Holds the active AsyncWeb3 and the endpoint list (primary + fallbacks).
    - Bounds every call with a timeout so a hung node cannot blind the loop to new blocks.
    - Rotates to the next node when the scheduler reports a rate limit or hard error.
    """
    RATE_LIMIT_KEYWORDS = ["429", "403", "rate", "forbidden", "quota", "too many requests", "-32001"]
    HARD_ERROR_KEYWORDS = ["serverdisconnected", "connectionerror", "connection refused",
                           "cannot connect", "server disconnected", "connectionreseterror",
                           "clientconnectorerror", "oserror", "gaierror", "timeout"]

    def __init__(self, endpoints, timeout=30.0):
        if not endpoints:
            raise ValueError("at least one RPC endpoint is required")
        self.endpoints = list(endpoints)
        self.timeout = timeout
        self.current_index = 0
        self.w3 = None

    @property
    def active_url(self):
        return self.endpoints[self.current_index]

    async def connect(self):
        """Connect to the current endpoint. Closes any existing session first."""
        await self._close_session()
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            self.active_url, request_kwargs={"timeout": self.timeout}
        ))
        logger.info(f"🔌 RPC [{self.current_index + 1}/{len(self.endpoints)}]: {self.active_url[:50]}...")
        return self.w3

    async def _close_session(self):
        if self.w3 is None:
            return
        try:
            await self.w3.provider.disconnect()
        except (AttributeError, TypeError, RuntimeError):
            # provider built without a cached session
            return

    async def rotate(self):
        """Switch to the next node. Does not retry anything."""
        self.current_index = (self.current_index + 1) % len(self.endpoints)
        logger.warning(f"🔄 Rotating RPC to [{self.current_index + 1}/{len(self.endpoints)}]")
        await self.connect()

    async def handle_error(self, error):
        if self.is_rate_limit_error(error) or self.is_hard_error(error):
            if len(self.endpoints) > 1:
                await self.rotate()
            return True
        return False

    def is_rate_limit_error(self, error):
        err_str = str(error).lower()
        return any(k in err_str for k in self.RATE_LIMIT_KEYWORDS)

    def is_hard_error(self, error):
        if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
            return True
        err_str = f"{type(error).__name__} {error}".lower()
        return any(k in err_str for k in self.HARD_ERROR_KEYWORDS)

    async def with_timeout(self, awaitable, timeout=None):
        """Await a network call, bounded by the configured per-call timeout."""
        limit = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError:
            raise TimeoutError(f"RPC call exceeded {limit}s on {self.active_url[:50]}")

    async def block_number(self):
        return await self.with_timeout(self.w3.eth.block_number)

    async def chain_id(self):
        return await self.with_timeout(self.w3.eth.chain_id)
