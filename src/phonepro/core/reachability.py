from __future__ import annotations

import asyncio
import ipaddress
import logging
import math
from collections.abc import Iterable

from phonepro.config import ReachabilityConfig
from phonepro.errors import PhoneproError

from .process import run_command

logger = logging.getLogger(__name__)


def _valid_address(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


class ReachabilityChecker:
    """ICMP echo requests over a bounded pool of workers."""

    def __init__(self, config: ReachabilityConfig) -> None:
        self.config = config

    def ping_argv(self, address: str) -> list[str]:
        wait = max(1, math.ceil(self.config.timeout))
        return ["ping", "-c", "1", "-W", str(wait), address]

    async def ping(self, address: str) -> bool:
        if not _valid_address(address):
            logger.debug("Not probing invalid address %r", address)
            return False
        try:
            # ping's own -W is per reply; the extra second covers process start
            result = await run_command(
                self.ping_argv(address), self.config.timeout + 1.0
            )
        except PhoneproError as exc:
            logger.debug("Ping of %s failed: %s", address, exc)
            return False
        return result.ok

    async def check(
        self, addresses: Iterable[str], deadline: float | None = None
    ) -> dict[str, bool]:
        unique = list(dict.fromkeys(addresses))
        status = {address: False for address in unique}
        if not unique:
            return status

        worker_count = min(self.config.max_concurrency, len(unique))
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        for address in unique:
            queue.put_nowait(address)
        for _ in range(worker_count):
            queue.put_nowait(None)

        async def _worker() -> None:
            while True:
                address = await queue.get()
                if address is None:
                    return
                status[address] = await self.ping(address)

        logger.debug("Probing %d hosts with %d workers", len(unique), worker_count)
        workers = [asyncio.create_task(_worker()) for _ in range(worker_count)]
        try:
            await asyncio.wait_for(asyncio.gather(*workers), timeout=deadline)
        except (asyncio.TimeoutError, TimeoutError):
            logger.debug("Reachability deadline hit, unfinished hosts stay offline")
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        online = sum(status.values())
        logger.debug("Reachability: %d/%d online", online, len(unique))
        return status
