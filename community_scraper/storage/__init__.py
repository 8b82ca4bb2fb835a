"""Storage backends for the community scraper."""

from .base_store import Store
from .sqlalchemy_store import SQLAlchemyStore

__all__ = ["SQLAlchemyStore", "Store"]
