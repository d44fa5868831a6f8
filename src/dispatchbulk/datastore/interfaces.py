"""
Core interface for the shared dispatch dataset.

The bulk engine never touches a process-wide dataset. It receives an object
implementing :class:`DatastoreInterface` and performs every mutation inside
``write_lock()`` so that writes are serialized.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Callable, List, Optional


class DatastoreInterface(ABC):
    """Abstract interface for dataset access.

    ``kind`` is one of ``routes``, ``staff``, ``assets`` or ``assignments``.
    """

    @abstractmethod
    def find_by_id(self, kind: str, entity_id: str) -> Optional[Any]:
        """Return the entity with the given id, or None."""
        pass

    @abstractmethod
    def find_by(self, kind: str, predicate: Callable[[Any], bool]) -> List[Any]:
        """Return every entity of ``kind`` matching ``predicate``, in insertion order."""
        pass

    @abstractmethod
    def find_one(self, kind: str, predicate: Callable[[Any], bool]) -> Optional[Any]:
        """Return the first entity of ``kind`` matching ``predicate``, or None."""
        pass

    @abstractmethod
    def all(self, kind: str) -> List[Any]:
        """Return every entity of ``kind``, in insertion order."""
        pass

    @abstractmethod
    def insert(self, kind: str, entity: Any) -> Any:
        """Insert a new entity.

        Raises:
            ValueError: If an entity with the same id already exists
        """
        pass

    @abstractmethod
    def update(self, kind: str, entity: Any) -> Any:
        """Replace the stored entity sharing ``entity.id`` in place.

        Raises:
            KeyError: If no entity with that id exists
        """
        pass

    @abstractmethod
    def write_lock(self) -> AbstractContextManager:
        """Context manager held for the duration of one item's mutation."""
        pass
