"""Domain exceptions for the item research core.

Well-formed calls into the planner, router and cross-validation engine never
raise: resource exhaustion and conflicting evidence are ordinary outcomes.
These exceptions cover configuration mistakes and interpreter failures only.
All inherit from ``ItemResearchError``.
"""

from __future__ import annotations

from typing import Any


class ItemResearchError(Exception):
    """Base exception for all item research errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class ConfigurationError(ItemResearchError):
    """Raised when a tool catalog, field schema or config document is malformed.

    ``source`` names the document (file path or section) that failed to load.
    """

    def __init__(
        self,
        message: str = "Invalid configuration",
        source: str = "",
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.source = source
        self.errors: list[str] = errors or []


class PipelineError(ItemResearchError):
    """Raised when the pipeline interpreter cannot dispatch a route."""

    def __init__(
        self,
        message: str = "Pipeline step failed",
        route: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.route = route
