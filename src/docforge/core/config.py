"""
Configuration schema and loading for docforge runs.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and passed explicitly
into each component's constructor; there is no module-level settings state.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from docforge.contracts.enums import Complexity

# Heading patterns per processor category. A section whose heading contains
# one of the "required" patterns is never dropped by prioritization; "low"
# sections are dropped first.
DEFAULT_PRIORITY_PATTERNS: dict[str, dict[str, list[str]]] = {
    "requirements": {
        "required": ["## Requirements", "### Functional Requirements", "### Non-Functional Requirements", "## Acceptance Criteria"],
        "low": ["## References", "## Appendices", "## Glossary"],
    },
    "technical": {
        "required": ["## Architecture", "## Technical Requirements", "## System Design", "## API Specifications"],
        "low": ["## References", "## Appendices", "## Glossary"],
    },
    "project-charter": {
        "required": ["## Project Objectives", "## Success Criteria", "## Key Deliverables", "## Project Scope"],
        "low": ["## References", "## Appendices"],
    },
    "default": {
        "required": ["## Overview", "## Objectives", "## Requirements", "## Specifications"],
        "low": ["## References", "## Appendices", "## Glossary"],
    },
}

# Keywords used to score chunks by relevance to a processor's category
DEFAULT_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "requirements": ["requirement", "functional", "non-functional", "acceptance", "criteria"],
    "technical": ["architecture", "technical", "system", "api", "design"],
    "project-charter": ["objective", "scope", "deliverable", "stakeholder", "timeline"],
    "default": ["overview", "objective", "requirement", "specification"],
}

DEFAULT_KEY_TERMS: list[str] = ["requirement", "specification", "objective", "criteria", "deliverable"]

DEFAULT_RESPONSE_TOKENS: dict[Complexity, int] = {
    Complexity.LOW: 1024,
    Complexity.MEDIUM: 2048,
    Complexity.HIGH: 4096,
    Complexity.VERY_HIGH: 8192,
}

DEFAULT_PREFERRED_WINDOW: dict[Complexity, int] = {
    Complexity.LOW: 8_000,
    Complexity.MEDIUM: 16_000,
    Complexity.HIGH: 32_000,
    Complexity.VERY_HIGH: 100_000,
}


class BudgetSettings(BaseModel):
    """Context budget thresholds."""

    model_config = {"frozen": True}

    safety_margin: float = Field(
        default=0.9,
        gt=0,
        le=1.0,
        description="Fraction of the context window usable for input; the rest is headroom for the response",
    )
    warn_threshold_pct: float = Field(default=70.0, ge=0, le=100, description="Utilization that triggers a soft warning")
    escalate_threshold_pct: float = Field(
        default=90.0,
        ge=0,
        le=100,
        description="Utilization above which the fallback chain is engaged",
    )
    chars_per_token: float = Field(default=4.0, gt=0, description="Heuristic characters per token")
    response_tokens: dict[Complexity, int] = Field(
        default_factory=lambda: dict(DEFAULT_RESPONSE_TOKENS),
        description="Response budget per processor complexity",
    )
    preferred_window: dict[Complexity, int] = Field(
        default_factory=lambda: dict(DEFAULT_PREFERRED_WINDOW),
        description="Smallest window preferred when binding a processor of this complexity to a backend",
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> "BudgetSettings":
        if self.warn_threshold_pct > self.escalate_threshold_pct:
            raise ValueError("warn_threshold_pct must not exceed escalate_threshold_pct")
        return self

    @field_validator("response_tokens", "preferred_window")
    @classmethod
    def validate_complete(cls, v: dict[Complexity, int]) -> dict[Complexity, int]:
        missing = [c.value for c in Complexity if c not in v]
        if missing:
            raise ValueError(f"Missing complexity levels: {', '.join(missing)}")
        if any(n <= 0 for n in v.values()):
            raise ValueError("Token counts must be > 0")
        return v


class FallbackSettings(BaseModel):
    """Fallback strategy chain configuration."""

    model_config = {"frozen": True}

    backend_switch: bool = Field(default=True, description="Enable rebinding to a larger-window backend")
    prioritization: bool = Field(default=True, description="Enable dropping low-priority sections")
    summarization: bool = Field(default=True, description="Enable condensing large sections")
    chunking: bool = Field(default=True, description="Enable relevance-ranked chunk selection")
    max_chunk_tokens: int = Field(default=1000, gt=0, description="Maximum tokens per chunk")
    priority_patterns: dict[str, dict[str, list[str]]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_PRIORITY_PATTERNS.items()},
        description="Heading patterns per category; 'default' applies to unknown categories",
    )
    category_keywords: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_CATEGORY_KEYWORDS.items()},
        description="Chunk relevance keywords per category",
    )
    key_terms: list[str] = Field(
        default_factory=lambda: list(DEFAULT_KEY_TERMS),
        description="Lines containing these terms survive summarization",
    )

    @field_validator("priority_patterns", "category_keywords")
    @classmethod
    def validate_has_default(cls, v: dict[str, Any]) -> dict[str, Any]:
        if "default" not in v:
            raise ValueError("A 'default' category entry is required")
        return v

    @field_validator("priority_patterns")
    @classmethod
    def validate_priority_tiers(cls, v: dict[str, dict[str, list[str]]]) -> dict[str, dict[str, list[str]]]:
        for category, tiers in v.items():
            unknown = set(tiers) - {"required", "low"}
            if unknown:
                raise ValueError(f"Unknown priority tier(s) for '{category}': {', '.join(sorted(unknown))}")
        return v

    def patterns_for(self, category: str) -> dict[str, list[str]]:
        return self.priority_patterns.get(category, self.priority_patterns["default"])

    def keywords_for(self, category: str) -> list[str]:
        return self.category_keywords.get(category, self.category_keywords["default"])


class RetrySettings(BaseModel):
    """Retry behavior configuration."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Maximum attempts, including the first")
    initial_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=60.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    jitter_seconds: float = Field(default=1.0, ge=0, description="Maximum random jitter added to each delay")


class CacheSettings(BaseModel):
    """Result cache configuration."""

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Serve and store memoized artifacts")
    backend: Literal["memory", "filesystem"] = Field(default="filesystem", description="Cache store type")
    base_path: Path = Field(default=Path(".docforge/cache"), description="Base path for filesystem store")
    version: str = Field(default="1", min_length=1, description="Bump to invalidate every cached artifact")


class ConcurrencySettings(BaseModel):
    """Parallel execution configuration."""

    model_config = {"frozen": True}

    max_workers: int = Field(default=4, gt=0, description="Maximum tasks executing at once")
    backend_timeout_seconds: float = Field(default=120.0, gt=0, description="Per-call backend deadline")


class ReportSettings(BaseModel):
    """Run report configuration."""

    model_config = {"frozen": True}

    slow_threshold_ms: float = Field(default=30_000.0, ge=0, description="Tasks slower than this are flagged")
    slowest_n: int = Field(default=5, ge=0, description="Number of slowest tasks listed in the report")


class BackendSettings(BaseModel):
    """One generation backend."""

    model_config = {"frozen": True}

    plugin: str = Field(description="Name of the backend plugin that implements generate()")
    context_window_tokens: int = Field(gt=0, description="Maximum input tokens per call")
    cost_weight: float = Field(default=1.0, ge=0, description="Relative cost; lower is preferred")
    available: bool = Field(default=True, description="Starting availability")
    options: dict[str, Any] = Field(default_factory=dict, description="Plugin-specific options")


class HealthSettings(BaseModel):
    """Backend health tracking."""

    model_config = {"frozen": True}

    max_consecutive_failures: int = Field(
        default=5,
        gt=0,
        description="Consecutive failures after which a backend is marked unavailable",
    )


class DocforgeSettings(BaseModel):
    """Top-level docforge configuration.

    The single source of truth for a run. Validated and frozen after
    construction.
    """

    model_config = {"frozen": True}

    registry: Path = Field(description="Path to the processor registry (JSON or YAML)")
    backends: dict[str, BackendSettings] = Field(description="Named generation backends (one or more)")
    default_backend: str | None = Field(
        default=None,
        description="Backend bound to tasks initially; defaults to the cheapest available",
    )
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)
    report: ReportSettings = Field(default_factory=ReportSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)

    @field_validator("backends")
    @classmethod
    def validate_backends_not_empty(cls, v: dict[str, BackendSettings]) -> dict[str, BackendSettings]:
        """At least one backend is required."""
        if not v:
            raise ValueError("At least one backend is required")
        return v

    @model_validator(mode="after")
    def validate_default_backend(self) -> "DocforgeSettings":
        if self.default_backend is not None and self.default_backend not in self.backends:
            raise ValueError(f"default_backend '{self.default_backend}' is not one of: {', '.join(sorted(self.backends))}")
        return self


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            # No env var and no default - keep original
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    """Lowercase dict keys recursively.

    Dynaconf uppercases keys it reads from DOCFORGE_* environment variables,
    including nested ones.
    """
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def load_settings(config_path: Path) -> DocforgeSettings:
    """Load settings from YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (DOCFORGE_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: DOCFORGE_CONCURRENCY__MAX_WORKERS for nested keys.
    A relative registry path is resolved against the config file's directory.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated DocforgeSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="DOCFORGE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase top-level keys; filter its internal settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    for section in ("budget", "fallback", "retry", "cache", "concurrency", "report", "health"):
        if section in raw_config:
            raw_config[section] = _lower_keys(raw_config[section])

    raw_config = _expand_env_vars(raw_config)

    registry = raw_config.get("registry")
    if isinstance(registry, str) and not Path(registry).is_absolute():
        raw_config["registry"] = config_path.parent / registry

    return DocforgeSettings(**raw_config)
