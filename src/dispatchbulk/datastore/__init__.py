"""Dataset models and storage for dispatch entities."""

from .interfaces import DatastoreInterface
from .memory import InMemoryDatastore
from .models import (
    ENTITY_TYPES,
    Asset,
    Assignment,
    Route,
    Staff,
    StatusChange,
    generate_id,
    normalize_key,
    normalize_keys,
    parse_date,
    parse_datetime,
)

__all__ = [
    "DatastoreInterface",
    "InMemoryDatastore",
    "ENTITY_TYPES",
    "Asset",
    "Assignment",
    "Route",
    "Staff",
    "StatusChange",
    "generate_id",
    "normalize_key",
    "normalize_keys",
    "parse_date",
    "parse_datetime",
]
