"""
Page navigation backends.

The pipeline only needs ``fetch_page(url, proxy) -> PageResponse``. Two
implementations are provided: a plain aiohttp client and a headless browser
driven by Playwright. Both rotate user agents, route through the given proxy
and are used as async context managers so the session is torn down on every
exit path.
"""

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp

from community_scraper.collector.proxy_manager import ProxyEndpoint
from community_scraper.config import NavigatorConfig
from community_scraper.exceptions import LaunchError, NavigationError

logger = logging.getLogger(__name__)


@dataclass
class PageResponse:
    """Result of one page fetch."""

    url: str
    status: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0
    proxy: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def lowercase_headers(headers: Any) -> Dict[str, str]:
    """Copy response headers with lowercased names; Playwright already lowercases, aiohttp does not."""
    return {str(name).lower(): value for name, value in (headers or {}).items()}


class Navigator(ABC):
    """Base class for navigation backends."""

    def __init__(self, config: Optional[NavigatorConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or NavigatorConfig()
        self.rng = rng or random.Random()
        self.user_agent: Optional[str] = None

    def pick_user_agent(self) -> str:
        return self.rng.choice(self.config.user_agents)

    def pick_viewport(self) -> Dict[str, int]:
        jitter = self.config.viewport_jitter
        return {
            "width": self.config.viewport_width + self.rng.randint(0, jitter),
            "height": self.config.viewport_height + self.rng.randint(0, jitter),
        }

    @abstractmethod
    async def start(self) -> None:
        """Open the browsing session. Raises ``LaunchError`` on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the session down. Safe to call more than once."""

    @abstractmethod
    async def fetch_page(self, url: str, proxy: Optional[ProxyEndpoint] = None) -> PageResponse:
        """
        Fetch a page.

        Returns the response for any HTTP status; raises ``NavigationError``
        with ``status=None`` when no response was received.
        """

    async def __aenter__(self) -> "Navigator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class HttpNavigator(Navigator):
    """Fetches pages with an aiohttp client session."""

    def __init__(self, config: Optional[NavigatorConfig] = None, rng: Optional[random.Random] = None):
        super().__init__(config, rng)
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        try:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_sec),
                headers={"Accept": "application/json"},
            )
        except (aiohttp.ClientError, RuntimeError, OSError) as e:
            raise LaunchError(f"Failed to open HTTP session: {e}") from e
        self.user_agent = self.pick_user_agent()
        logger.info("HTTP navigator started")

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def fetch_page(self, url: str, proxy: Optional[ProxyEndpoint] = None) -> PageResponse:
        if self.session is None:
            raise LaunchError("Navigator used before start()")

        self.user_agent = self.pick_user_agent()
        started = time.perf_counter()
        try:
            async with self.session.get(
                url,
                proxy=proxy.url if proxy else None,
                headers={"User-Agent": self.user_agent},
            ) as response:
                body = await response.text()
                return PageResponse(
                    url=url,
                    status=response.status,
                    body=body,
                    headers=lowercase_headers(response.headers),
                    elapsed_ms=(time.perf_counter() - started) * 1000,
                    proxy=proxy.key if proxy else None,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NavigationError(url, message=repr(e)) from e


class BrowserNavigator(Navigator):
    """
    Fetches pages with a headless Chromium via Playwright.

    Each fetch gets a fresh context with its own proxy, user agent and
    viewport. Images, fonts, stylesheets and media are aborted at the route
    level.
    """

    def __init__(self, config: Optional[NavigatorConfig] = None, rng: Optional[random.Random] = None):
        super().__init__(config, rng)
        self._playwright: Any = None
        self._browser: Any = None
        self._error_types: tuple = ()

    async def start(self) -> None:
        try:
            from playwright.async_api import Error as PlaywrightError
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise LaunchError("Browser backend requires the 'playwright' package") from e

        self._error_types = (PlaywrightError, asyncio.TimeoutError)
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
            )
        except PlaywrightError as e:
            await self.close()
            raise LaunchError(f"Failed to launch browser: {e}") from e
        logger.info(f"Browser navigator started (headless={self.config.headless})")

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except self._error_types as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _block_resources(self, route: Any) -> None:
        if route.request.resource_type in self.config.blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()

    async def fetch_page(self, url: str, proxy: Optional[ProxyEndpoint] = None) -> PageResponse:
        if self._browser is None:
            raise LaunchError("Navigator used before start()")

        self.user_agent = self.pick_user_agent()
        context_options: Dict[str, Any] = {
            "user_agent": self.user_agent,
            "viewport": self.pick_viewport(),
            "locale": "en-US",
        }
        if proxy:
            context_options["proxy"] = {"server": f"http://{proxy.key}"}
            if proxy.username:
                context_options["proxy"].update(username=proxy.username, password=proxy.password or "")

        started = time.perf_counter()
        context = None
        try:
            context = await self._browser.new_context(**context_options)
            await context.route("**/*", self._block_resources)
            page = await context.new_page()
            response = await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.config.timeout_sec * 1000,
            )
            if response is None:
                raise NavigationError(url, message="no response")
            body = await response.text()
            return PageResponse(
                url=url,
                status=response.status,
                body=body,
                headers=lowercase_headers(response.headers),
                elapsed_ms=(time.perf_counter() - started) * 1000,
                proxy=proxy.key if proxy else None,
            )
        except self._error_types as e:
            raise NavigationError(url, message=str(e)) from e
        finally:
            if context is not None:
                await context.close()


def create_navigator(config: NavigatorConfig) -> Navigator:
    """Return the navigator backend named by ``config.backend``."""
    if config.backend == "browser":
        return BrowserNavigator(config)
    if config.backend == "http":
        return HttpNavigator(config)
    raise ValueError(f"Unknown navigator backend '{config.backend}'")
