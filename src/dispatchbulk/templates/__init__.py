"""Route templates for generating dated routes.

This package provides template data models, YAML/JSON parsing, the template
registry with its built-in templates, and the engine that applies templates to
one or more dates.
"""

from .engine import DateApplication, TemplateApplicationResults, TemplateEngine
from .models import RouteTemplateEntry, Template
from .parser import TemplateParser
from .registry import TemplateRegistry, builtin_templates

__all__ = [
    # Models
    "Template",
    "RouteTemplateEntry",
    # Functionality
    "TemplateParser",
    "TemplateRegistry",
    "builtin_templates",
    "TemplateEngine",
    "TemplateApplicationResults",
    "DateApplication",
]
