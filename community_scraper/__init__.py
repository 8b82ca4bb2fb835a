"""AI community scraper: crawls discussion forums and tracks sentiment and trending topics."""

__version__ = "0.1.0"
