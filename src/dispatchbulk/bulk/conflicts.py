"""
Conflict detection and resolution keyed by natural identity.

Assignments are keyed by ``(route_id, shift, date)`` and template-generated
routes by ``(name, shift, date)``. Both go through :meth:`ConflictResolver.resolve`:

- existing and not overwrite: skip (raises :class:`ConflictSkip`)
- existing and overwrite: replace in place, keeping the existing id
- no existing: insert with a freshly generated id
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Optional

from ..datastore.interfaces import DatastoreInterface
from ..datastore.models import Assignment, Route, generate_id
from ..exceptions import ConflictSkip

logger = logging.getLogger(__name__)

ID_PREFIXES = {"assignments": "assignment", "routes": "route"}


class ResolutionAction(str, Enum):
    """What the resolver did with an item."""

    CREATED = "created"
    UPDATED = "updated"


@dataclass
class Resolution:
    """Result of a resolved (not skipped) conflict check."""

    action: ResolutionAction
    entity: Any


class ConflictResolver:
    """Detects pre-existing resources and applies the skip/overwrite policy."""

    def __init__(self, datastore: DatastoreInterface):
        self.datastore = datastore

    def find_existing(self, route_id: str, shift: str, on_date: date) -> Optional[Assignment]:
        """Find the assignment occupying ``(route_id, shift, date)``."""
        return self.datastore.find_one(
            "assignments",
            lambda a: a.route_id == route_id and a.shift == shift and a.date == on_date,
        )

    def find_existing_route(self, name: str, shift: str, on_date: date) -> Optional[Route]:
        """Find the dated route occupying ``(name, shift, date)``."""
        return self.datastore.find_one(
            "routes",
            lambda r: r.name == name and r.shift == shift and r.date == on_date,
        )

    def resolve(
        self,
        kind: str,
        existing: Optional[Any],
        overwrite: bool,
        build: Callable[[str, Optional[Any]], Any],
    ) -> Resolution:
        """Apply the conflict policy and write the result.

        Args:
            kind: Datastore collection (``assignments`` or ``routes``)
            existing: Entity already holding the natural key, if any
            overwrite: Whether an existing entity may be replaced
            build: ``build(entity_id, existing)`` returning the entity to store

        Returns:
            Resolution describing the write

        Raises:
            ConflictSkip: If ``existing`` is set and ``overwrite`` is False
        """
        if existing is not None and not overwrite:
            raise ConflictSkip(
                f"{ID_PREFIXES.get(kind, kind).title()} already exists: {existing.id}",
                context={"existing_id": existing.id},
            )

        if existing is not None:
            entity = build(existing.id, existing)
            self.datastore.update(kind, entity)
            logger.debug(f"Updated {kind} {entity.id} in place")
            return Resolution(ResolutionAction.UPDATED, entity)

        entity = build(generate_id(ID_PREFIXES.get(kind, kind)), None)
        self.datastore.insert(kind, entity)
        logger.debug(f"Created {kind} {entity.id}")
        return Resolution(ResolutionAction.CREATED, entity)
