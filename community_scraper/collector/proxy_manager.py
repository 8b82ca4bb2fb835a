"""
Proxy pool with round-robin rotation and failure tracking.

Endpoints come from public list URLs and/or a static list in the config.
Failed endpoints are skipped until every endpoint has failed, at which point
the failed set is cleared so a run never ends up without egress because of
stale failures.
"""

import asyncio
import ipaddress
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Set

import aiohttp

from community_scraper.config import ProxyConfig

logger = logging.getLogger(__name__)

_URL_FORM = re.compile(
    r"^(?:(?P<scheme>https?)://)?(?:(?P<user>[^:@\s]+):(?P<password>[^@\s]+)@)?"
    r"(?P<host>[\d.]+):(?P<port>\d+)/?$"
)
_COLON_FORM = re.compile(r"^(?P<host>[\d.]+):(?P<port>\d+):(?P<user>[^:\s]+):(?P<password>\S+)$")


@dataclass(frozen=True)
class ProxyEndpoint:
    """An outbound HTTP proxy."""

    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        if self.username and self.password:
            return f"http://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"http://{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class ProxyStats:
    """Snapshot of the pool's health."""

    total: int
    failed: int
    working: int
    last_refresh: Optional[datetime]


def parse_proxy_line(line: str) -> Optional[ProxyEndpoint]:
    """
    Parse one proxy list line.

    Accepts ``ip:port``, ``ip:port:user:pass``, ``http://ip:port`` and
    ``http://user:pass@ip:port``. Returns None for blank lines, comments and
    anything that is not a valid IPv4 address with a port in [1, 65535].
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    match = _COLON_FORM.match(line) or _URL_FORM.match(line)
    if not match:
        return None

    try:
        ipaddress.IPv4Address(match.group("host"))
    except ValueError:
        return None

    port = int(match.group("port"))
    if not 1 <= port <= 65535:
        return None

    return ProxyEndpoint(
        host=match.group("host"),
        port=port,
        username=match.group("user"),
        password=match.group("password"),
    )


def parse_proxy_list(lines: Iterable[str]) -> List[ProxyEndpoint]:
    """Parse lines, dropping invalid entries and duplicates by ``(host, port)``."""
    seen: Set[str] = set()
    endpoints: List[ProxyEndpoint] = []
    for line in lines:
        endpoint = parse_proxy_line(line)
        if endpoint is None or endpoint.key in seen:
            continue
        seen.add(endpoint.key)
        endpoints.append(endpoint)
    return endpoints


class ProxyManager:
    """Round-robin proxy rotation with a process-local failed set."""

    def __init__(self, config: Optional[ProxyConfig] = None, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the proxy manager.

        Args:
            config: Proxy configuration
            clock: Monotonic time source used for the staleness check
        """
        self.config = config or ProxyConfig()
        self.clock = clock
        self.endpoints: List[ProxyEndpoint] = []
        self.failed: Set[str] = set()
        self.last_refresh: Optional[datetime] = None
        self._last_refresh_mono: Optional[float] = None
        self._index = 0
        self._refresh_lock = asyncio.Lock()

    async def initialize(self) -> int:
        """Populate the pool. Returns the pool size."""
        await self.refresh()
        return len(self.endpoints)

    def is_stale(self) -> bool:
        if self._last_refresh_mono is None:
            return True
        return self.clock() - self._last_refresh_mono >= self.config.refresh_interval_sec

    async def _fetch_source(self, session: aiohttp.ClientSession, url: str) -> str:
        timeout = aiohttp.ClientTimeout(total=self.config.fetch_timeout_sec)
        async with session.get(url, timeout=timeout) as response:
            response.raise_for_status()
            return await response.text()

    async def _collect_lines(self) -> List[str]:
        lines: List[str] = list(self.config.endpoints)
        if not self.config.source_urls:
            return lines

        async with aiohttp.ClientSession() as session:
            for url in self.config.source_urls:
                try:
                    text = await self._fetch_source(session, url)
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.warning(f"Failed to fetch proxy list from {url}: {e!r}")
                    continue
                source_lines = text.splitlines()
                logger.info(f"Fetched {len(source_lines)} candidate proxies from {url}")
                lines.extend(source_lines)
        return lines

    async def refresh(self) -> None:
        """
        Rebuild the pool from the configured sources.

        A refresh that yields no endpoints keeps the previous pool. Failed
        markers survive only for endpoints still present after the refresh.
        """
        async with self._refresh_lock:
            if not self.config.enabled:
                self.endpoints = []
                self.failed.clear()
            else:
                endpoints = parse_proxy_list(await self._collect_lines())
                if endpoints:
                    keys = {e.key for e in endpoints}
                    self.failed &= keys
                    self.endpoints = endpoints
                    self._index = 0
                elif self.endpoints:
                    logger.warning("Proxy refresh returned no endpoints, keeping previous pool")

            self._last_refresh_mono = self.clock()
            self.last_refresh = datetime.now(timezone.utc)
            logger.info(f"Proxy pool refreshed: {len(self.endpoints)} endpoints, {len(self.failed)} failed")

    async def next(self) -> Optional[ProxyEndpoint]:
        """
        Return the next healthy endpoint in round-robin order.

        Refreshes the pool first when it is stale. When every endpoint is
        marked failed the failed set is cleared and rotation restarts. Returns
        None only when the pool is empty, meaning direct egress.
        """
        if self.is_stale():
            await self.refresh()

        if not self.endpoints:
            return None

        count = len(self.endpoints)
        for _ in range(count):
            endpoint = self.endpoints[self._index % count]
            self._index = (self._index + 1) % count
            if endpoint.key not in self.failed:
                return endpoint

        logger.warning(f"All {count} proxies marked failed, resetting failed set")
        self.failed.clear()
        self._index = 1 % count
        return self.endpoints[0]

    def mark_failed(self, endpoint: Optional[ProxyEndpoint]) -> None:
        if endpoint is None:
            return
        if endpoint.key not in self.failed:
            self.failed.add(endpoint.key)
            logger.info(f"Marked proxy {endpoint.key} as failed ({len(self.failed)}/{len(self.endpoints)})")

    def mark_succeeded(self, endpoint: Optional[ProxyEndpoint]) -> None:
        if endpoint is not None:
            self.failed.discard(endpoint.key)

    def stats(self) -> ProxyStats:
        total = len(self.endpoints)
        failed = len(self.failed)
        return ProxyStats(total=total, failed=failed, working=total - failed, last_refresh=self.last_refresh)

    async def check_endpoint(self, endpoint: ProxyEndpoint, session: Optional[aiohttp.ClientSession] = None) -> bool:
        """
        Probe an endpoint against the configured test URL.

        Marks the endpoint succeeded or failed. Network errors are never raised.
        """
        timeout = aiohttp.ClientTimeout(total=self.config.test_timeout_sec)
        own_session = session is None
        session = session or aiohttp.ClientSession()
        try:
            async with session.get(self.config.test_url, proxy=endpoint.url, timeout=timeout) as response:
                ok = response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Proxy {endpoint.key} failed health check: {e!r}")
            ok = False
        finally:
            if own_session:
                await session.close()

        if ok:
            self.mark_succeeded(endpoint)
        else:
            self.mark_failed(endpoint)
        return ok

    async def check_all(self, concurrency: int = 20) -> ProxyStats:
        """Probe every endpoint, at most ``concurrency`` at a time."""
        semaphore = asyncio.Semaphore(concurrency)

        async with aiohttp.ClientSession() as session:
            async def probe(endpoint: ProxyEndpoint) -> bool:
                async with semaphore:
                    return await self.check_endpoint(endpoint, session)

            results = await asyncio.gather(*(probe(e) for e in list(self.endpoints)))

        logger.info(f"Proxy check: {sum(results)}/{len(results)} working")
        return self.stats()
