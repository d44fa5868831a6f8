"""
Validation of bulk items against the dispatch dataset.

Validation never raises for expected violations. It returns a
:class:`ValidationResult` whose ``error_type`` names the failure class; the
batch processor converts invalid results into failure records through
:meth:`ValidationResult.raise_for_error`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..datastore.interfaces import DatastoreInterface
from ..datastore.models import normalize_keys, parse_date
from ..exceptions import AvailabilityError, EntityReferenceError, ItemValidationError

logger = logging.getLogger(__name__)

UNAVAILABLE_STAFF_STATUSES = frozenset({"out"})
UNAVAILABLE_ASSET_STATUSES = frozenset({"maintenance", "out-of-service"})

VALIDATION_ERROR = ItemValidationError.error_type
REFERENCE_ERROR = EntityReferenceError.error_type
AVAILABILITY_ERROR = AvailabilityError.error_type

_ERROR_CLASSES = {
    VALIDATION_ERROR: ItemValidationError,
    AVAILABILITY_ERROR: AvailabilityError,
}


@dataclass
class ValidationResult:
    """Outcome of a single validation check."""

    valid: bool
    message: Optional[str] = None
    error_type: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def invalid(
        cls, message: str, error_type: str = VALIDATION_ERROR, **context: Any
    ) -> "ValidationResult":
        return cls(valid=False, message=message, error_type=error_type, context=context or None)

    def raise_for_error(self) -> None:
        """Raise the taxonomy exception matching this result, if invalid."""
        if self.valid:
            return
        if self.error_type == REFERENCE_ERROR:
            context = self.context or {}
            raise EntityReferenceError(context.get("kind", "entity"), context.get("entity_id", ""))
        error_class = _ERROR_CLASSES.get(self.error_type or VALIDATION_ERROR, ItemValidationError)
        raise error_class(self.message or "Validation failed", context=self.context)


class Validator:
    """Per-assignment and per-entity correctness checks."""

    REQUIRED_ENTITY_FIELDS = {
        "staff": ("name", "role"),
        "assets": ("number", "type"),
    }

    def __init__(self, datastore: DatastoreInterface):
        self.datastore = datastore

    def validate_assignment(self, assignment: Dict[str, Any]) -> ValidationResult:
        """Check required fields and that referenced staff/assets are usable.

        Args:
            assignment: Assignment item (snake_case or camelCase keys)

        Returns:
            ValidationResult describing the first violation found
        """
        data = normalize_keys(assignment)

        if not data.get("route_id"):
            return ValidationResult.invalid("Route ID is required")
        if not data.get("shift"):
            return ValidationResult.invalid("Shift is required")
        if not data.get("date"):
            return ValidationResult.invalid("Date is required")
        try:
            parse_date(data["date"])
        except (TypeError, ValueError):
            return ValidationResult.invalid(f"Invalid date: {data['date']}")

        staff_id = data.get("staff_id")
        if staff_id:
            staff = self.datastore.find_by_id("staff", staff_id)
            if staff is None:
                return ValidationResult.invalid(
                    f"Staff not found: {staff_id}", REFERENCE_ERROR, kind="staff", entity_id=staff_id
                )
            if staff.status in UNAVAILABLE_STAFF_STATUSES:
                return ValidationResult.invalid(
                    f"Staff not available: {staff.name}", AVAILABILITY_ERROR, status=staff.status
                )

        asset_id = data.get("asset_id")
        if asset_id:
            asset = self.datastore.find_by_id("assets", asset_id)
            if asset is None:
                return ValidationResult.invalid(
                    f"Asset not found: {asset_id}", REFERENCE_ERROR, kind="asset", entity_id=asset_id
                )
            if asset.status in UNAVAILABLE_ASSET_STATUSES:
                return ValidationResult.invalid(
                    f"Asset not available: {asset.number}", AVAILABILITY_ERROR, status=asset.status
                )

        return ValidationResult.ok()

    def validate_entity(self, kind: str, entity: Any) -> ValidationResult:
        """Shape check: staff needs name and role, assets need number and type."""
        required = self.REQUIRED_ENTITY_FIELDS.get(kind)
        if required is None:
            raise ValueError(f"Unsupported entity kind for validation: {kind}")

        if isinstance(entity, dict):
            data = normalize_keys(entity)
            values = [data.get(name) for name in required]
        else:
            values = [getattr(entity, name, None) for name in required]

        if not all(values):
            return ValidationResult.invalid(
                f"{required[0].title()} and {required[1]} are required"
            )
        return ValidationResult.ok()
