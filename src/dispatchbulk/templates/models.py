"""
Route template data models.

A template is a named, ordered list of route blueprints. Applying it to a
date turns each blueprint into a concrete dated route.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..datastore.models import normalize_keys, parse_datetime


@dataclass
class RouteTemplateEntry:
    """Blueprint for one route produced by a template."""

    name: str
    type: str
    shift: str
    estimated_time: str = ""
    description: str = ""
    stops: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "shift": self.shift,
            "estimated_time": self.estimated_time,
            "description": self.description,
            "stops": list(self.stops),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouteTemplateEntry":
        data = normalize_keys(data)
        missing = [key for key in ("name", "type", "shift") if not data.get(key)]
        if missing:
            raise ValueError(f"Route entry is missing: {', '.join(missing)}")
        return cls(
            name=str(data["name"]),
            type=str(data["type"]),
            shift=str(data["shift"]),
            estimated_time=data.get("estimated_time") or "",
            description=data.get("description") or "",
            stops=list(data.get("stops") or []),
        )


@dataclass
class Template:
    """Complete route template definition."""

    id: str
    name: str
    routes: List[RouteTemplateEntry]
    description: str = ""
    version: int = 1
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    def __post_init__(self):
        """Validate template configuration."""
        if not self.id:
            raise ValueError("Template id is required")
        if not self.routes:
            raise ValueError("At least one route entry must be specified")

    @property
    def route_count(self) -> int:
        return len(self.routes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "routes": [entry.to_dict() for entry in self.routes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        data = normalize_keys(data)
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or data.get("id") or "",
            description=data.get("description") or "",
            version=int(data.get("version") or 1),
            created_at=parse_datetime(data.get("created_at")),
            created_by=data.get("created_by"),
            routes=[RouteTemplateEntry.from_dict(entry) for entry in data.get("routes") or []],
        )

    def validate_structure(self) -> List[str]:
        """Validate template structure and return list of errors."""
        errors = []
        if not self.name:
            errors.append("Template name is required")
        seen = set()
        for i, entry in enumerate(self.routes, start=1):
            key = (entry.name, entry.shift)
            if key in seen:
                errors.append(f"Route {i}: duplicate entry {entry.name} {entry.shift}")
            seen.add(key)
        return errors
