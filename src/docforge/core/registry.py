# src/docforge/core/registry.py
"""ProcessorRegistry: validated, read-only catalogue of processors.

Registry documents come in two shapes:

    # list form
    - key: charter
      category: project-charter
      estimatedTokens: 1200

    # mapping form (key -> entry); "lastSetup" bookkeeping is ignored
    charter:
      category: project-charter
      dependencies: []
    lastSetup: "2024-05-01T10:00:00Z"

Every entry is validated with Pydantic, then cross-entry rules (duplicate
keys, dangling dependencies, self-dependencies, unknown handlers) are
checked. All problems are collected into a single ConfigError.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from docforge.contracts.enums import Complexity
from docforge.contracts.errors import ConfigError, ConfigIssue
from docforge.contracts.models import ProcessorDescriptor
from docforge.core.canonical import stable_hash
from docforge.core.logging import get_logger

logger = get_logger(__name__)

# Non-processor bookkeeping keys tolerated in the mapping form
_IGNORED_MAPPING_KEYS = frozenset({"lastSetup"})

# Keys name artifact files (<key>.md), so no separators or leading dots
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class ProcessorEntry(BaseModel):
    """Schema for one registry entry."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    key: str = Field(min_length=1, description="Unique processor identity")
    category: str = Field(default="default", min_length=1, description="Grouping label")
    dependencies: list[str] = Field(default_factory=list, description="Keys this processor consumes")
    estimated_tokens: int = Field(default=0, ge=0, alias="estimatedTokens", description="Heuristic input cost")
    complexity: Complexity = Field(default=Complexity.MEDIUM, description="Drives response and preferred budgets")
    handler: str = Field(default="template", min_length=1, description="Registered processor handler name")
    template: str | None = Field(default=None, description="Prompt template override")
    title: str = Field(default="", description="Display name")

    @field_validator("key", "category")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("key")
    @classmethod
    def validate_key_characters(cls, v: str) -> str:
        if not _KEY_PATTERN.match(v):
            raise ValueError("must start with a letter or digit and contain only letters, digits, '_', '-' and '.'")
        return v

    @field_validator("complexity", mode="before")
    @classmethod
    def normalize_complexity(cls, v: Any) -> Any:
        # Accept "very-high" as written by older registries
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    def to_descriptor(self) -> ProcessorDescriptor:
        return ProcessorDescriptor(
            key=self.key,
            category=self.category,
            dependencies=frozenset(self.dependencies),
            estimated_tokens=self.estimated_tokens,
            complexity=self.complexity,
            handler=self.handler,
            template=self.template,
            title=self.title,
        )


def _format_validation_error(error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        messages.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return messages


def _normalize_entries(raw_config: Any) -> list[tuple[str, Any]]:
    """Flatten either registry shape into (location, raw entry) pairs."""
    if isinstance(raw_config, Mapping):
        pairs: list[tuple[str, Any]] = []
        for key, entry in raw_config.items():
            if key in _IGNORED_MAPPING_KEYS:
                continue
            if isinstance(entry, Mapping):
                entry = {"key": key, **entry}
            pairs.append((str(key), entry))
        return pairs
    if isinstance(raw_config, list):
        return [(f"entry[{index}]", entry) for index, entry in enumerate(raw_config)]
    raise ConfigError([ConfigIssue("<root>", f"expected a list or mapping of processors, got {type(raw_config).__name__}")])


class ProcessorRegistry:
    """Read-only collection of validated ProcessorDescriptors.

    Built once per process via load() or from_file(); never mutated.

    Example:
        registry = ProcessorRegistry.load([
            {"key": "charter", "category": "project-charter"},
            {"key": "risk", "dependencies": ["charter"]},
        ])
        registry["risk"].dependencies  # frozenset({"charter"})
    """

    def __init__(self, descriptors: Mapping[str, ProcessorDescriptor]) -> None:
        self._descriptors = dict(sorted(descriptors.items()))

    @classmethod
    def load(
        cls,
        raw_config: Any,
        *,
        handler_exists: Callable[[str], bool] | None = None,
    ) -> ProcessorRegistry:
        """Validate a registry document.

        Args:
            raw_config: Parsed registry document (list or mapping form)
            handler_exists: Optional check that a handler name is registered

        Returns:
            Validated registry

        Raises:
            ConfigError: Listing every invalid entry
        """
        issues: list[ConfigIssue] = []
        entries: list[tuple[str, ProcessorEntry]] = []

        for location, raw_entry in _normalize_entries(raw_config):
            if not isinstance(raw_entry, Mapping):
                issues.append(ConfigIssue(location, f"expected a mapping, got {type(raw_entry).__name__}"))
                continue
            try:
                entry = ProcessorEntry.model_validate(raw_entry)
            except ValidationError as e:
                issues.extend(ConfigIssue(location, message) for message in _format_validation_error(e))
                continue
            entries.append((location, entry))

        seen: dict[str, str] = {}
        for location, entry in entries:
            if entry.key in seen:
                issues.append(ConfigIssue(location, f"duplicate key '{entry.key}' (first declared at {seen[entry.key]})"))
            else:
                seen[entry.key] = location

        known = set(seen)
        for _, entry in entries:
            for dependency in entry.dependencies:
                if dependency == entry.key:
                    issues.append(ConfigIssue(entry.key, "processor cannot depend on itself"))
                elif dependency not in known:
                    issues.append(ConfigIssue(entry.key, f"unknown dependency '{dependency}'"))
            if handler_exists is not None and not handler_exists(entry.handler):
                issues.append(ConfigIssue(entry.key, f"unknown handler '{entry.handler}'"))

        if issues:
            raise ConfigError(issues)

        descriptors = {entry.key: entry.to_descriptor() for _, entry in entries}
        logger.debug("registry_loaded", processors=len(descriptors))
        return cls(descriptors)

    @classmethod
    def from_file(
        cls,
        path: Path,
        *,
        handler_exists: Callable[[str], bool] | None = None,
    ) -> ProcessorRegistry:
        """Load a registry from a JSON or YAML file.

        Raises:
            FileNotFoundError: If path doesn't exist
            ConfigError: If the document is unparseable or invalid
        """
        text = path.read_text(encoding="utf-8")
        try:
            if path.suffix.lower() == ".json":
                raw = json.loads(text)
            else:
                raw = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError([ConfigIssue(str(path), f"could not parse registry: {e}")]) from e
        return cls.load(raw, handler_exists=handler_exists)

    def __getitem__(self, key: str) -> ProcessorDescriptor:
        return self._descriptors[key]

    def __contains__(self, key: object) -> bool:
        return key in self._descriptors

    def __iter__(self) -> Iterator[ProcessorDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def keys(self) -> list[str]:
        """Processor keys in ascending order."""
        return list(self._descriptors)

    def version_hash(self, key: str) -> str:
        """Stable hash of a processor's declaration.

        Changes whenever the processor's prompt, dependencies, handler or
        budget declaration change, so cached artifacts produced under an
        older declaration are never reused.
        """
        return stable_hash(self._descriptors[key].to_dict())
