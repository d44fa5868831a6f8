"""Bulk operation engine: validation, conflicts, batching, tracking and reports."""
