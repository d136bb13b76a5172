"""Generic repository interface.

Provides ``IRepository[T]``, the contract every module-specific
repository extends.  Services depend on these abstractions, never on
the Django ORM directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Iterable, Optional, TypeVar

T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    """Base repository contract for the aggregate ``T``."""

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        """Retrieve an aggregate by primary key; ``None`` when missing or malformed."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[T]:
        """List aggregates with optional ORM-style filters."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Persist (create or update) an aggregate and its pending domain events."""
