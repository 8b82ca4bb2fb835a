"""Exception hierarchy shared by the scraper components."""

from typing import Mapping, Optional


class ScraperError(Exception):
    """Base class for all scraper errors."""


class ConfigError(ScraperError):
    """Raised when the configuration cannot be loaded or is invalid."""


class NavigationError(ScraperError):
    """
    Raised when a page could not be fetched.

    Carries the URL, the last HTTP status (None for network errors) and the
    number of attempts made so callers can log enough context to reconstruct
    what happened.
    """

    def __init__(
        self,
        url: str,
        status: Optional[int] = None,
        attempts: int = 1,
        message: str = "",
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.url = url
        self.status = status
        self.attempts = attempts
        self.headers = {name.lower(): value for name, value in (headers or {}).items()}
        self.detail = message or (f"HTTP {status}" if status is not None else "network error")
        super().__init__(url, status, self.detail)

    def __str__(self) -> str:
        return f"Failed to fetch {self.url} after {self.attempts} attempt(s): {self.detail}"

    @property
    def is_network_error(self) -> bool:
        return self.status is None


class LaunchError(ScraperError):
    """Raised when a browsing session cannot be started. Fatal for a run."""


class StoreError(ScraperError):
    """Raised when a store write or query fails."""


class StoreIntegrityError(StoreError):
    """Raised when a write would break referential integrity (e.g. orphan comment)."""
