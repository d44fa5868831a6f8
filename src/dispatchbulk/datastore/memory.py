"""In-memory implementation of the dispatch datastore."""

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .interfaces import DatastoreInterface
from .models import ENTITY_TYPES

logger = logging.getLogger(__name__)


class InMemoryDatastore(DatastoreInterface):
    """Dataset held in process memory.

    Every read and write takes a re-entrant lock, so a caller holding
    ``write_lock()`` can still use the finder methods while it mutates.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Any]] = {kind: {} for kind in ENTITY_TYPES}

    def _collection(self, kind: str) -> Dict[str, Any]:
        try:
            return self._collections[kind]
        except KeyError:
            raise ValueError(
                f"Unknown entity kind '{kind}'. Valid kinds are: {', '.join(ENTITY_TYPES)}"
            ) from None

    def find_by_id(self, kind: str, entity_id: str) -> Optional[Any]:
        with self._lock:
            return self._collection(kind).get(entity_id)

    def find_by(self, kind: str, predicate: Callable[[Any], bool]) -> List[Any]:
        with self._lock:
            return [entity for entity in self._collection(kind).values() if predicate(entity)]

    def find_one(self, kind: str, predicate: Callable[[Any], bool]) -> Optional[Any]:
        with self._lock:
            for entity in self._collection(kind).values():
                if predicate(entity):
                    return entity
            return None

    def all(self, kind: str) -> List[Any]:
        with self._lock:
            return list(self._collection(kind).values())

    def insert(self, kind: str, entity: Any) -> Any:
        with self._lock:
            collection = self._collection(kind)
            if entity.id in collection:
                raise ValueError(f"Duplicate {kind} id: {entity.id}")
            collection[entity.id] = entity
            return entity

    def update(self, kind: str, entity: Any) -> Any:
        with self._lock:
            collection = self._collection(kind)
            if entity.id not in collection:
                raise KeyError(f"{kind} id not found: {entity.id}")
            collection[entity.id] = entity
            return entity

    @contextmanager
    def write_lock(self) -> Iterator[None]:
        with self._lock:
            yield

    def count(self, kind: str) -> int:
        with self._lock:
            return len(self._collection(kind))

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        """Serialize the whole dataset as a JSON-compatible snapshot."""
        with self._lock:
            return {
                kind: [entity.to_dict() for entity in collection.values()]
                for kind, collection in self._collections.items()
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryDatastore":
        """Build a datastore from a snapshot; missing kinds start empty."""
        store = cls()
        for kind, model in ENTITY_TYPES.items():
            for raw in data.get(kind) or []:
                store.insert(kind, model.from_dict(raw))
        return store

    @classmethod
    def load(cls, file_path: Path) -> "InMemoryDatastore":
        """Load a snapshot from a JSON file."""
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("Dataset snapshot must be a JSON object")
        store = cls.from_dict(data)
        logger.info(
            "Loaded dataset from %s (%s)",
            file_path,
            ", ".join(f"{kind}={store.count(kind)}" for kind in ENTITY_TYPES),
        )
        return store

    def save(self, file_path: Path) -> None:
        """Write the snapshot to a JSON file."""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Dataset saved to {file_path}")
