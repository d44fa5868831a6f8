"""
Route template registry.

Holds the templates available to the template engine: the built-in daily
templates, templates created at runtime and templates loaded from YAML/JSON
files in the storage directory.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..datastore.models import generate_id
from ..events import TEMPLATE_CREATED, EventBus
from ..exceptions import TemplateNotFoundError
from .models import RouteTemplateEntry, Template
from .parser import TemplateParser

logger = logging.getLogger(__name__)

TEMPLATE_EXTENSIONS = (".yaml", ".yml", ".json")


def _entries(rows: Iterable[Dict[str, Any]]) -> List[RouteTemplateEntry]:
    return [RouteTemplateEntry.from_dict(row) for row in rows]


def builtin_templates() -> List[Template]:
    """Templates available without any configuration."""
    return [
        Template(
            id="daily-gen-ed",
            name="Daily Gen Ed Routes",
            description="Standard daily general education routes",
            created_by="system",
            routes=_entries(
                [
                    {"name": "1", "type": "Gen Ed", "shift": "AM", "estimated_time": "45 min"},
                    {"name": "2", "type": "Gen Ed", "shift": "AM", "estimated_time": "50 min"},
                    {"name": "3", "type": "Gen Ed", "shift": "AM", "estimated_time": "40 min"},
                    {"name": "1", "type": "Gen Ed", "shift": "PM", "estimated_time": "45 min"},
                    {"name": "2", "type": "Gen Ed", "shift": "PM", "estimated_time": "50 min"},
                    {"name": "3", "type": "Gen Ed", "shift": "PM", "estimated_time": "40 min"},
                ]
            ),
        ),
        Template(
            id="se-routes",
            name="Special Education Routes",
            description="Special education transportation routes",
            created_by="system",
            routes=_entries(
                [
                    {"name": "SE1", "type": "SE", "shift": "AM", "estimated_time": "60 min"},
                    {"name": "SE2", "type": "SE", "shift": "AM", "estimated_time": "55 min"},
                    {"name": "SE1", "type": "SE", "shift": "PM", "estimated_time": "60 min"},
                    {"name": "SE2", "type": "SE", "shift": "PM", "estimated_time": "55 min"},
                ]
            ),
        ),
    ]


class TemplateRegistry:
    """Keeps templates by id and manages template files."""

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        storage_directory: Optional[Union[str, Path]] = None,
        default_format: str = "yaml",
        include_builtins: bool = True,
    ):
        """Initialize the registry.

        Args:
            event_bus: Receives ``template-created`` notifications
            storage_directory: Directory used by :meth:`load_directory` and :meth:`save`
            default_format: File format used when saving
            include_builtins: Seed the registry with the built-in templates
        """
        self.event_bus = event_bus or EventBus()
        self.storage_directory = Path(storage_directory).expanduser() if storage_directory else None
        self.default_format = default_format
        self.parser = TemplateParser()
        self._templates: Dict[str, Template] = {}

        if include_builtins:
            for template in builtin_templates():
                self._templates[template.id] = template

    def get(self, template_id: str) -> Template:
        """Look up a template.

        Raises:
            TemplateNotFoundError: If no template has this id
        """
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def exists(self, template_id: str) -> bool:
        return template_id in self._templates

    def list_templates(self) -> List[Template]:
        return sorted(self._templates.values(), key=lambda t: t.id)

    def register(self, template: Template, replace: bool = False) -> Template:
        """Add a template; an existing id is only replaced when ``replace`` is set."""
        if template.id in self._templates and not replace:
            raise ValueError(f"Template already registered: {template.id}")
        self._templates[template.id] = template
        return template

    def create_template(
        self,
        name: str,
        routes: Iterable[Union[RouteTemplateEntry, Dict[str, Any]]],
        description: str = "",
        created_by: str = "user",
    ) -> Template:
        """Create and register a new template with a generated id.

        Args:
            name: Display name
            routes: Route entries, as entries or dicts
            description: Free text description
            created_by: Author recorded on the template

        Returns:
            The created Template
        """
        entries = [
            RouteTemplateEntry.from_dict(route.to_dict() if isinstance(route, RouteTemplateEntry) else route)
            for route in routes
        ]
        template = Template(
            id=generate_id("template"),
            name=name,
            description=description,
            routes=entries,
            version=1,
            created_at=datetime.now(),
            created_by=created_by,
        )
        self.register(template)

        logger.info(f"Created route template {template.id} ({name}, {len(entries)} routes)")
        self.event_bus.emit(TEMPLATE_CREATED, template.to_dict())
        return template

    # ----- files -----

    def load_file(self, file_path: Path, replace: bool = True) -> Template:
        """Parse a template file and register it."""
        template = self.parser.parse_file(Path(file_path))
        self.register(template, replace=replace)
        logger.info(f"Loaded template {template.id} from {file_path}")
        return template

    def load_directory(self, directory: Optional[Path] = None) -> List[Template]:
        """Load every template file in ``directory`` (default: the storage directory).

        Files that fail to parse are logged and skipped.
        """
        directory = Path(directory) if directory else self.storage_directory
        if directory is None or not directory.exists():
            return []

        loaded = []
        for file_path in sorted(directory.iterdir()):
            if file_path.suffix.lower() not in TEMPLATE_EXTENSIONS:
                continue
            try:
                loaded.append(self.load_file(file_path))
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load template from {file_path}: {e}")
        return loaded

    def save(
        self, template_id: str, file_path: Optional[Path] = None, format: Optional[str] = None
    ) -> Path:
        """Write a template to disk.

        Raises:
            TemplateNotFoundError: If no template has this id
            ValueError: If neither ``file_path`` nor a storage directory is known
        """
        template = self.get(template_id)
        format = (format or self.default_format).lower()

        if file_path is None:
            if self.storage_directory is None:
                raise ValueError("No storage directory configured for templates")
            extension = "json" if format == "json" else "yaml"
            file_path = self.storage_directory / f"{template.id}.{extension}"

        self.parser.write_file(Path(file_path), template, format)
        logger.info(f"Template saved to {file_path}")
        return Path(file_path)
