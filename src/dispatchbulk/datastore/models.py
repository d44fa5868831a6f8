"""
Dispatch data models.

This module defines the entities held in the shared dataset: routes, staff,
assets and route assignments, plus the status change records kept on staff
and assets. Serialization uses snake_case keys; ``from_dict`` also accepts the
camelCase keys found in dashboard exports.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_key(key: str) -> str:
    """Convert camelCase or kebab-case keys to snake_case."""
    return _CAMEL_BOUNDARY.sub("_", key.strip()).replace("-", "_").lower()


def normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` with every top-level key normalized."""
    return {normalize_key(key): value for key, value in data.items()}


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Parse an ISO date (or the date part of an ISO timestamp).

    Raises:
        ValueError: If the value is a string that is not an ISO date
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) > 10:
        return parse_datetime(text).date()
    return date.fromisoformat(text)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO timestamp, accepting a trailing ``Z``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _iso(value: Union[date, datetime, None]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _split_known(cls, data: Dict[str, Any]):
    """Split a normalized dict into constructor kwargs and leftover attributes."""
    names = {f.name for f in fields(cls)}
    known = {k: v for k, v in data.items() if k in names}
    extra = {k: v for k, v in data.items() if k not in names}
    return known, extra


@dataclass
class StatusChange:
    """A single status transition recorded on a staff member or asset."""

    timestamp: datetime
    from_status: Optional[str] = None
    to_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "from": self.from_status,
            "to": self.to_status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusChange":
        return cls(
            timestamp=parse_datetime(data["timestamp"]),
            from_status=data.get("from", data.get("from_status")),
            to_status=data.get("to", data.get("to_status")),
        )


@dataclass
class Route:
    """A concrete route, optionally bound to a service date."""

    id: str
    name: str
    type: Optional[str] = None
    shift: Optional[str] = None
    date: Optional[date] = None
    status: str = "inactive"
    description: str = ""
    estimated_time: str = ""
    stops: List[Any] = field(default_factory=list)
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    template_id: Optional[str] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("date", "created_at", "activated_at", "completed_at"):
            data[key] = _iso(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        known, _ = _split_known(cls, normalize_keys(data))
        known["date"] = parse_date(known.get("date"))
        for key in ("created_at", "activated_at", "completed_at"):
            known[key] = parse_datetime(known.get(key))
        known["stops"] = list(known.get("stops") or [])
        return cls(**known)


@dataclass
class Staff:
    """A staff member (driver, aide, ...)."""

    id: str
    name: str = ""
    role: str = ""
    status: str = "available"
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None
    status_changes: List[StatusChange] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "status": self.status,
            "last_updated": _iso(self.last_updated),
            "updated_by": self.updated_by,
            "status_changes": [change.to_dict() for change in self.status_changes],
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Staff":
        known, extra = _split_known(cls, normalize_keys(data))
        known["last_updated"] = parse_datetime(known.get("last_updated"))
        known["status_changes"] = [
            StatusChange.from_dict(change) for change in known.get("status_changes") or []
        ]
        known["attributes"] = {**extra, **(known.get("attributes") or {})}
        return cls(**known)


@dataclass
class Asset:
    """A fleet asset (bus, van, ...)."""

    id: str
    number: str = ""
    type: str = ""
    status: str = "active"
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None
    last_maintenance: Optional[datetime] = None
    status_changes: List[StatusChange] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "type": self.type,
            "status": self.status,
            "last_updated": _iso(self.last_updated),
            "updated_by": self.updated_by,
            "last_maintenance": _iso(self.last_maintenance),
            "status_changes": [change.to_dict() for change in self.status_changes],
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        known, extra = _split_known(cls, normalize_keys(data))
        known["last_updated"] = parse_datetime(known.get("last_updated"))
        known["last_maintenance"] = parse_datetime(known.get("last_maintenance"))
        known["status_changes"] = [
            StatusChange.from_dict(change) for change in known.get("status_changes") or []
        ]
        known["attributes"] = {**extra, **(known.get("attributes") or {})}
        return cls(**known)


@dataclass
class Assignment:
    """Binding of staff and/or an asset to a route for one shift on one date.

    The natural key is ``(route_id, shift, date)``.
    """

    id: str
    route_id: str
    shift: str
    date: date
    staff_id: Optional[str] = None
    asset_id: Optional[str] = None
    status: str = "assigned"
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def natural_key(self):
        return (self.route_id, self.shift, self.date)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("date", "assigned_at", "completed_at"):
            data[key] = _iso(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Assignment":
        known, _ = _split_known(cls, normalize_keys(data))
        known["date"] = parse_date(known.get("date"))
        known["assigned_at"] = parse_datetime(known.get("assigned_at"))
        known["completed_at"] = parse_datetime(known.get("completed_at"))
        return cls(**known)


ENTITY_TYPES = {
    "routes": Route,
    "staff": Staff,
    "assets": Asset,
    "assignments": Assignment,
}


def generate_id(prefix: str) -> str:
    """Generate a unique id such as ``route_1718000000000_3f9a1c2b7``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
