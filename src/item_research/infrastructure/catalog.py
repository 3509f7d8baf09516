"""Tool catalog and category field schemas.

The catalog of research tools and the per-category field schemas are
declarative data.  Both can be loaded from JSON documents, which are
validated with pydantic models before being turned into the frozen domain
value objects the planner and the field state manager consume.

There is no global catalog: build a :class:`ToolCatalog` (or call
:func:`default_tool_catalog`) and pass it to the planner explicitly.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import fields as dataclass_fields
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from item_research.domain.enums import FieldDataType
from item_research.domain.exceptions import ConfigurationError
from item_research.domain.values import FieldDefinition, ResearchContext, ToolSpec

logger = logging.getLogger(__name__)

_CONTEXT_FLAGS = frozenset(
    f.name for f in dataclass_fields(ResearchContext) if f.name != "image_count"
)


# ===================================================================== #
#  Document models                                                       #
# ===================================================================== #


class ToolSpecDocument(BaseModel):
    """JSON shape of one tool catalog entry."""

    tool_id: str = Field(min_length=1, description="Stable tool identifier")
    display_name: str = Field(default="", description="Human-readable name")
    priority: float = Field(default=50.0, description="Base planning score")
    estimated_cost: float = Field(default=0.0, ge=0.0, description="USD per call")
    estimated_time_ms: float = Field(default=1000.0, ge=0.0, description="Latency per call")
    provides_fields: list[str] = Field(
        min_length=1, description="Field names the tool fills, or '*' for any field"
    )
    requires: list[str] = Field(
        default_factory=list, description="Context flags that must all hold"
    )
    requires_any: list[str] = Field(
        default_factory=list, description="Context flags of which one must hold"
    )

    @field_validator("requires", "requires_any")
    @classmethod
    def check_known_flags(cls, value: list[str]) -> list[str]:
        unknown = sorted(set(value) - _CONTEXT_FLAGS)
        if unknown:
            raise ValueError(f"unknown context flags: {', '.join(unknown)}")
        return value

    def to_spec(self) -> ToolSpec:
        return ToolSpec(
            tool_id=self.tool_id,
            display_name=self.display_name or self.tool_id,
            priority=self.priority,
            estimated_cost=self.estimated_cost,
            estimated_time_ms=self.estimated_time_ms,
            provides_fields=tuple(self.provides_fields),
            requires=tuple(self.requires),
            requires_any=tuple(self.requires_any),
        )


class ToolCatalogDocument(BaseModel):
    """JSON shape of a whole tool catalog."""

    tools: list[ToolSpecDocument] = Field(description="Catalog entries in tie-break order")

    @model_validator(mode="after")
    def check_unique_ids(self) -> ToolCatalogDocument:
        seen: set[str] = set()
        for tool in self.tools:
            if tool.tool_id in seen:
                raise ValueError(f"duplicate tool_id '{tool.tool_id}'")
            seen.add(tool.tool_id)
        return self


class FieldDefinitionDocument(BaseModel):
    """JSON shape of one category schema field."""

    name: str = Field(min_length=1)
    display_name: str = ""
    required: bool = False
    required_by: list[str] = Field(default_factory=list)
    data_type: FieldDataType = FieldDataType.STRING
    allowed_values: list[Any] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_enum_values(self) -> FieldDefinitionDocument:
        if self.data_type is FieldDataType.ENUM and not self.allowed_values:
            raise ValueError(f"enum field '{self.name}' needs allowed_values")
        return self

    def to_definition(self) -> FieldDefinition:
        return FieldDefinition(
            name=self.name,
            display_name=self.display_name,
            required=self.required,
            required_by=tuple(self.required_by),
            data_type=self.data_type,
            allowed_values=tuple(self.allowed_values),
        )


class FieldSchemaDocument(BaseModel):
    """JSON shape of a category field schema."""

    category: str = Field(min_length=1)
    fields: list[FieldDefinitionDocument] = Field(min_length=1)

    @model_validator(mode="after")
    def check_unique_names(self) -> FieldSchemaDocument:
        names = [f.name for f in self.fields]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate field names: {', '.join(duplicates)}")
        return self


def _validation_errors(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    ]


def _read_document(source: str | Path | dict[str, Any]) -> tuple[Any, str]:
    if isinstance(source, dict):
        return source, "<dict>"
    path = Path(source)
    try:
        return json.loads(path.read_text(encoding="utf-8")), str(path)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read {path}: {exc}", source=str(path)) from exc


# ===================================================================== #
#  Tool catalog                                                          #
# ===================================================================== #


class ToolCatalog:
    """Ordered, explicitly constructed set of research tools.

    Catalog order is significant: it is the final tie-breaker when two tools
    score identically for the same field.

    Usage::

        catalog = ToolCatalog([ToolSpec("upc_lookup", ...), ...])
        planner = ResearchTaskPlanner(catalog)
    """

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolSpec) -> None:
        """Add *tool*; re-registering an id replaces it in place."""
        if tool.tool_id in self._tools:
            logger.debug("ToolCatalog: replacing '%s'", tool.tool_id)
        self._tools[tool.tool_id] = tool

    def get(self, tool_id: str) -> ToolSpec:
        """Return the tool with *tool_id*; raises ``KeyError`` if unknown."""
        try:
            return self._tools[tool_id]
        except KeyError:
            raise KeyError(
                f"No tool '{tool_id}' in catalog. Available: {sorted(self._tools)}"
            ) from None

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def list_tools(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def index_of(self, tool_id: str) -> int:
        return list(self._tools).index(tool_id)

    def tools_for_field(self, field_name: str) -> list[ToolSpec]:
        return [t for t in self._tools.values() if t.can_provide(field_name)]

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._tools

    def to_dict(self) -> dict[str, Any]:
        return {
            "tools": [
                {
                    "tool_id": t.tool_id,
                    "display_name": t.display_name,
                    "priority": t.priority,
                    "estimated_cost": t.estimated_cost,
                    "estimated_time_ms": t.estimated_time_ms,
                    "provides_fields": list(t.provides_fields),
                    "requires": list(t.requires),
                    "requires_any": list(t.requires_any),
                }
                for t in self._tools.values()
            ]
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "<dict>") -> ToolCatalog:
        try:
            document = ToolCatalogDocument.model_validate(data)
        except ValidationError as exc:
            errors = _validation_errors(exc)
            raise ConfigurationError(
                f"Invalid tool catalog {source}", source=source, errors=errors
            ) from exc
        return cls(tool.to_spec() for tool in document.tools)

    @classmethod
    def from_json(cls, source: str | Path) -> ToolCatalog:
        """Load a catalog from a JSON file."""
        data, name = _read_document(source)
        catalog = cls.from_dict(data, source=name)
        logger.info("Loaded %d tools from %s", len(catalog), name)
        return catalog


_DEFAULT_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        tool_id="upc_lookup",
        display_name="UPC database lookup",
        priority=95,
        estimated_cost=0.01,
        estimated_time_ms=1500,
        provides_fields=("brand", "model", "title", "mpn", "category", "upc"),
        requires=("has_upc", "upc_database_configured"),
    ),
    ToolSpec(
        tool_id="keepa_lookup",
        display_name="Keepa product lookup",
        priority=85,
        estimated_cost=0.02,
        estimated_time_ms=3000,
        provides_fields=("brand", "model", "weight", "dimensions", "price", "category"),
        requires=("keepa_configured",),
        requires_any=("has_upc", "has_brand", "has_model"),
    ),
    ToolSpec(
        tool_id="amazon_catalog",
        display_name="Amazon catalog search",
        priority=80,
        estimated_cost=0.01,
        estimated_time_ms=2500,
        provides_fields=("brand", "model", "mpn", "weight", "dimensions", "color", "category"),
        requires=("amazon_configured",),
        requires_any=("has_upc", "has_brand", "has_model"),
    ),
    ToolSpec(
        tool_id="vision_analysis",
        display_name="Vision analysis",
        priority=75,
        estimated_cost=0.03,
        estimated_time_ms=6000,
        provides_fields=("brand", "model", "color", "condition", "material", "category"),
        requires=("has_images",),
    ),
    ToolSpec(
        tool_id="reverse_image_search",
        display_name="Reverse image search",
        priority=72,
        estimated_cost=0.05,
        estimated_time_ms=5000,
        provides_fields=("brand", "model", "title"),
        requires=("has_images",),
    ),
    ToolSpec(
        tool_id="ocr_extraction",
        display_name="OCR text extraction",
        priority=70,
        estimated_cost=0.01,
        estimated_time_ms=4000,
        provides_fields=("brand", "model", "mpn", "upc", "size"),
        requires=("has_images",),
    ),
    ToolSpec(
        tool_id="web_search_targeted",
        display_name="Targeted web search",
        priority=65,
        estimated_cost=0.02,
        estimated_time_ms=4000,
        provides_fields=(
            "mpn", "model", "weight", "dimensions", "year", "features", "material", "color",
        ),
        requires_any=("has_brand", "has_model"),
    ),
    ToolSpec(
        tool_id="domain_knowledge_lookup",
        display_name="Category knowledge lookup",
        priority=60,
        estimated_cost=0.0,
        estimated_time_ms=200,
        provides_fields=("size_type", "department", "material", "features"),
        requires=("has_category",),
    ),
    ToolSpec(
        tool_id="web_search_general",
        display_name="General web search",
        priority=50,
        estimated_cost=0.01,
        estimated_time_ms=3500,
        provides_fields=(ToolSpec.WILDCARD,),
    ),
)


def default_tool_catalog() -> ToolCatalog:
    """Return a fresh catalog holding the standard research tools."""
    return ToolCatalog(_DEFAULT_TOOLS)


# ===================================================================== #
#  Field schemas                                                         #
# ===================================================================== #


def field_schema_from_dict(
    data: dict[str, Any], source: str = "<dict>"
) -> tuple[str, tuple[FieldDefinition, ...]]:
    """Validate a category schema document.

    Returns ``(category, definitions)``.
    """
    try:
        document = FieldSchemaDocument.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid field schema {source}", source=source, errors=_validation_errors(exc)
        ) from exc
    return document.category, tuple(f.to_definition() for f in document.fields)


def load_field_schema(source: str | Path) -> tuple[str, tuple[FieldDefinition, ...]]:
    """Load and validate a category field schema from a JSON file."""
    data, name = _read_document(source)
    return field_schema_from_dict(data, source=name)
