"""File processing components for bulk imports.

This module reads CSV and JSON input files and turns them into the item lists
consumed by the bulk actions. Three record kinds are supported:

- ``assignments``: ``route_id``, ``shift``, ``date`` and optional ``staff_id`` / ``asset_id``
  / ``overwrite``
- ``staff``: ``staff_id`` plus the fields to change
- ``assets``: ``asset_id`` plus the fields to change

Column and key names may be snake_case, kebab-case or camelCase.

Classes:
    ImportSchema: Required and optional fields of one record kind
    CSVProcessor: Handles CSV file parsing and validation
    JSONProcessor: Handles JSON file parsing and validation
    FileFormatDetector: Detects file format based on extension
"""

import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

from ..datastore.models import normalize_key, normalize_keys
from ..exceptions import ImportFormatError


@dataclass
class RowError:
    """A problem found in an input file, with its location."""

    message: str
    line_number: Optional[int] = None
    field: Optional[str] = None

    def __str__(self) -> str:
        if self.line_number is not None:
            return f"line {self.line_number}: {self.message}"
        return self.message


@dataclass(frozen=True)
class ImportSchema:
    """Shape of one importable record kind."""

    kind: str
    required: FrozenSet[str]
    optional: FrozenSet[str] = frozenset()
    id_field: Optional[str] = None
    open_fields: bool = False

    @property
    def all_fields(self) -> FrozenSet[str]:
        return self.required | self.optional


SCHEMAS: Dict[str, ImportSchema] = {
    "assignments": ImportSchema(
        kind="assignments",
        required=frozenset({"route_id", "shift", "date"}),
        optional=frozenset({"staff_id", "asset_id", "status", "overwrite"}),
    ),
    # Every column other than the id is a field to change
    "staff": ImportSchema(
        kind="staff",
        required=frozenset({"staff_id"}),
        id_field="staff_id",
        open_fields=True,
    ),
    "assets": ImportSchema(
        kind="assets",
        required=frozenset({"asset_id"}),
        id_field="asset_id",
        open_fields=True,
    ),
}


def get_schema(kind: str) -> ImportSchema:
    try:
        return SCHEMAS[kind]
    except KeyError:
        raise ValueError(
            f"Unsupported import kind '{kind}'. Valid kinds are: {', '.join(SCHEMAS)}"
        ) from None


def _to_item(schema: ImportSchema, record: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a normalized record into a bulk action item."""
    if schema.id_field is None:
        return {key: value for key, value in record.items() if key in schema.all_fields}

    changes = record.get("changes")
    if not isinstance(changes, dict):
        changes = {
            key: value
            for key, value in record.items()
            if key != schema.id_field and value not in (None, "")
        }
    return {schema.id_field: record[schema.id_field], "changes": normalize_keys(changes)}


class _FileProcessor:
    """Shared file checks for the concrete processors."""

    format_name = ""

    def __init__(self, file_path: Path, kind: str = "assignments"):
        """Initialize processor with file path.

        Args:
            file_path: Path to the file to process
            kind: Record kind, one of ``assignments``, ``staff`` or ``assets``
        """
        self.file_path = Path(file_path)
        self.schema = get_schema(kind)

    def _check_file(self) -> List[RowError]:
        if not self.file_path.exists():
            return [RowError(f"File not found: {self.file_path}")]
        if not self.file_path.is_file():
            return [RowError(f"Path is not a file: {self.file_path}")]
        return []

    def validate_format(self) -> List[RowError]:
        raise NotImplementedError

    def _read_items(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def parse(self) -> List[Dict[str, Any]]:
        """Validate the file and return its items.

        Raises:
            ImportFormatError: If validation finds any problem
        """
        errors = self.validate_format()
        if errors:
            raise ImportFormatError(
                f"{self.format_name} validation failed: {'; '.join(str(e) for e in errors)}",
                context={"file": str(self.file_path), "errors": [str(e) for e in errors]},
            )
        return self._read_items()


class CSVProcessor(_FileProcessor):
    """Handles CSV file parsing and validation for bulk imports."""

    format_name = "CSV"

    def validate_format(self) -> List[RowError]:
        """Validate CSV structure and required values.

        Returns:
            List of RowError objects describing any validation issues
        """
        errors = self._check_file()
        if errors:
            return errors

        try:
            with open(self.file_path, "r", encoding="utf-8", newline="") as file:
                reader = csv.DictReader(file)

                if reader.fieldnames is None:
                    return [RowError("CSV file appears to be empty or has no headers")]

                columns = {normalize_key(col) for col in reader.fieldnames}
                missing = self.schema.required - columns
                if missing:
                    errors.append(
                        RowError(f"Missing required columns: {', '.join(sorted(missing))}")
                    )
                    return errors

                if not self.schema.open_fields:
                    unknown = columns - self.schema.all_fields
                    if unknown:
                        errors.append(
                            RowError(
                                f"Unknown columns found: {', '.join(sorted(unknown))}. "
                                f"Valid columns are: {', '.join(sorted(self.schema.all_fields))}"
                            )
                        )

                row_count = 0
                # Row 1 holds the headers
                for row_num, row in enumerate(reader, start=2):
                    row_count += 1
                    for col_name, value in row.items():
                        if col_name is None:
                            errors.append(RowError("Too many values in row", line_number=row_num))
                            continue
                        if normalize_key(col_name) in self.schema.required and not (value or "").strip():
                            errors.append(
                                RowError(
                                    f"Empty value in required column '{col_name}'",
                                    line_number=row_num,
                                    field=col_name,
                                )
                            )

                if row_count == 0:
                    errors.append(RowError("CSV file contains no data rows"))

        except csv.Error as e:
            errors.append(RowError(f"CSV parsing error: {e}"))
        except UnicodeDecodeError as e:
            errors.append(RowError(f"File encoding error: {e}. Please ensure file is UTF-8 encoded"))

        return errors

    def _read_items(self) -> List[Dict[str, Any]]:
        items = []
        with open(self.file_path, "r", encoding="utf-8", newline="") as file:
            for row in csv.DictReader(file):
                record = {
                    normalize_key(col): (value or "").strip()
                    for col, value in row.items()
                    if col is not None
                }
                items.append(_to_item(self.schema, record))
        return items


class JSONProcessor(_FileProcessor):
    """Handles JSON file parsing and validation for bulk imports.

    The root may be a list of records or an object holding the list under the
    record kind (``{"assignments": [...]}``).
    """

    format_name = "JSON"

    def _records(self, data: Any) -> Any:
        if isinstance(data, dict):
            return data.get(self.schema.kind)
        return data

    def validate_format(self) -> List[RowError]:
        """Validate JSON structure and each record.

        Returns:
            List of RowError objects describing any validation issues
        """
        errors = self._check_file()
        if errors:
            return errors

        try:
            with open(self.file_path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except json.JSONDecodeError as e:
            return [RowError(f"Invalid JSON format: {e}")]
        except UnicodeDecodeError as e:
            return [RowError(f"File encoding error: {e}. Please ensure file is UTF-8 encoded")]

        records = self._records(data)
        if records is None:
            return [RowError(f"JSON must be a list or contain a '{self.schema.kind}' key")]
        if not isinstance(records, list):
            return [RowError(f"'{self.schema.kind}' must be an array")]
        if not records:
            return [RowError(f"'{self.schema.kind}' array cannot be empty")]

        for index, record in enumerate(records):
            errors.extend(self._validate_record(record, index))
        return errors

    def _validate_record(self, record: Any, index: int) -> List[RowError]:
        prefix = f"Record {index + 1}"
        if not isinstance(record, dict):
            return [RowError(f"{prefix}: must be an object", line_number=index + 1)]

        errors = []
        normalized = normalize_keys(record)
        missing = [
            name
            for name in sorted(self.schema.required)
            if normalized.get(name) in (None, "")
        ]
        if missing:
            errors.append(
                RowError(
                    f"{prefix}: missing required fields: {', '.join(missing)}",
                    line_number=index + 1,
                )
            )

        if not self.schema.open_fields:
            unknown = set(normalized) - self.schema.all_fields
            if unknown:
                errors.append(
                    RowError(
                        f"{prefix}: unknown fields: {', '.join(sorted(unknown))}",
                        line_number=index + 1,
                    )
                )
        elif "changes" in normalized and not isinstance(normalized["changes"], dict):
            errors.append(
                RowError(f"{prefix}: 'changes' must be an object", line_number=index + 1, field="changes")
            )
        return errors

    def _read_items(self) -> List[Dict[str, Any]]:
        with open(self.file_path, "r", encoding="utf-8") as file:
            data = json.load(file)

        items = []
        for record in self._records(data):
            normalized = {
                key: value.strip() if isinstance(value, str) else value
                for key, value in normalize_keys(record).items()
            }
            items.append(_to_item(self.schema, normalized))
        return items


class FileFormatDetector:
    """Detects file format based on extension and provides appropriate processor."""

    SUPPORTED_EXTENSIONS = {".csv", ".json"}

    @classmethod
    def detect_format(cls, file_path: Path) -> str:
        """Detect file format based on extension.

        Raises:
            ImportFormatError: If file format is not supported
        """
        extension = Path(file_path).suffix.lower()
        if extension not in cls.SUPPORTED_EXTENSIONS:
            raise ImportFormatError(
                f"Unsupported file format '{extension}'. "
                f"Supported formats are: {', '.join(cls.get_supported_formats())}"
            )
        return extension[1:]

    @classmethod
    def get_processor(cls, file_path: Path, kind: str = "assignments") -> _FileProcessor:
        """Get appropriate processor for the file format."""
        if cls.detect_format(file_path) == "csv":
            return CSVProcessor(file_path, kind)
        return JSONProcessor(file_path, kind)

    @classmethod
    def is_supported_format(cls, file_path: Path) -> bool:
        return Path(file_path).suffix.lower() in cls.SUPPORTED_EXTENSIONS

    @classmethod
    def get_supported_formats(cls) -> List[str]:
        return sorted(cls.SUPPORTED_EXTENSIONS)


def load_items(file_path: Path, kind: str = "assignments") -> List[Dict[str, Any]]:
    """Parse ``file_path`` into bulk action items, picking the processor by extension."""
    return FileFormatDetector.get_processor(file_path, kind).parse()
