"""
Template parser for YAML and JSON formats.

This module handles parsing of route template files, with format detection
from the file extension.
"""

import json
import logging
from pathlib import Path
from typing import List

import yaml

from .models import Template

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("yaml", "json")


class TemplateParser:
    """Handles parsing and writing of template files in YAML/JSON formats."""

    def parse_file(self, file_path: Path) -> Template:
        """Parse template from file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the content is not a valid template
        """
        if not file_path.exists():
            raise FileNotFoundError(f"Template file not found: {file_path}")

        if not file_path.is_file():
            raise ValueError(f"Path is not a file: {file_path}")

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                content = f.read()
        except UnicodeDecodeError as e:
            raise ValueError(f"Failed to read template file: {e}")

        return self.parse_string(content, self.detect_format(file_path))

    def parse_string(self, content: str, format: str) -> Template:
        """Parse template from string content."""
        if not content.strip():
            raise ValueError("Template content is empty")

        format = format.lower()
        if format == "yaml":
            try:
                data = yaml.safe_load(content)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML format: {e}")
        elif format == "json":
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON format: {e}")
        else:
            raise ValueError(f"Unsupported format: {format}")

        if not isinstance(data, dict):
            raise ValueError(f"{format.upper()} content must be a mapping")

        try:
            return Template.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to parse template content: {e}")
            raise ValueError(f"Failed to parse template: {e}")

    def detect_format(self, file_path: Path) -> str:
        """Auto-detect file format from extension."""
        suffix = file_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".json":
            return "json"
        logger.warning(f"Unknown file extension '{suffix}', defaulting to YAML format")
        return "yaml"

    def dumps(self, template: Template, format: str = "yaml") -> str:
        """Serialize a template to YAML or JSON text."""
        format = format.lower()
        if format == "yaml":
            return yaml.safe_dump(
                template.to_dict(), default_flow_style=False, indent=2, sort_keys=False
            )
        elif format == "json":
            return json.dumps(template.to_dict(), indent=2, ensure_ascii=False)
        raise ValueError(f"Unsupported format: {format}")

    def write_file(self, file_path: Path, template: Template, format: str = "yaml") -> None:
        """Write a template file, creating parent directories."""
        content = self.dumps(template, format)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(content)

    def validate_file_format(self, file_path: Path) -> List[str]:
        """Validate that a file can be parsed as a template."""
        try:
            template = self.parse_file(file_path)
        except (OSError, ValueError) as e:
            return [f"Parsing error: {e}"]
        return template.validate_structure()
