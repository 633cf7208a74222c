"""Configuration loading for driftwatch (.driftwatch.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import ConfigError

CONFIG_FILENAME = ".driftwatch.yml"

SEVERITY_VALUES = ("error", "warning", "off")
NAMING_CONVENTIONS = ("PascalCase", "camelCase", "kebab-case")

DEFAULT_INCLUDE = [
    "src/**/*.{js,jsx,ts,tsx,css,scss,sass,less,html,htm}",
    "components/**/*.{js,jsx,ts,tsx,css,scss,sass,less}",
    "pages/**/*.{js,jsx,ts,tsx}",
]

DEFAULT_EXCLUDE = [
    "node_modules/**",
    "dist/**",
    "build/**",
    ".git/**",
    "coverage/**",
    "**/*.test.*",
    "**/*.spec.*",
    "**/*.d.ts",
]

DEFAULT_RULES: Dict[str, str] = {
    "inline-styles": "warning",
    "hardcoded-colors": "warning",
    "component-duplication": "error",
    "spacing-violation": "warning",
    "accessibility": "error",
    "naming-convention": "warning",
    "typography-violation": "warning",
    "component-drift": "warning",
}


@dataclass
class PatternSettings:
    """Overrides applied on top of the learned profile."""

    spacing_grid: Optional[int] = None
    naming_convention: str = "PascalCase"


@dataclass
class CacheSettings:
    """Budget and persistence settings for the incremental cache."""

    budget_bytes: int = 256 * 1024 * 1024
    ttl_seconds: float = 24 * 60 * 60
    max_file_size: int = 5 * 1024 * 1024
    revalidate_on_load: bool = True


@dataclass
class WatchSettings:
    """Change detection and pipeline scheduling settings."""

    debounce_ms: int = 300
    workers: int = 4
    extract_timeout_s: float = 10.0
    history_size: int = 100


@dataclass
class DriftConfig:
    """Represents the settings defined in .driftwatch.yml."""

    root: Path
    include: List[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE))
    exclude: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    patterns: PatternSettings = field(default_factory=PatternSettings)
    rules: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RULES))
    cache: CacheSettings = field(default_factory=CacheSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)

    def severity_for(self, rule: str) -> str:
        """Return ``error``, ``warning`` or ``off`` for a rule type."""
        return self.rules.get(rule, "warning")

    def matches(self, rel_path: str) -> bool:
        """Return True when a root-relative path is inside the watched set."""
        norm = rel_path.replace("\\", "/")
        if norm.startswith("./"):
            norm = norm[2:]
        if any(_glob_matches(norm, pattern) for pattern in self.exclude):
            return False
        return any(_glob_matches(norm, pattern) for pattern in self.include)

    def excludes_dir(self, rel_dir: str) -> bool:
        """Return True when everything beneath a directory is excluded."""
        norm = rel_dir.replace("\\", "/").rstrip("/")
        child = f"{norm}/__child__"
        return any(_glob_matches(child, pattern) for pattern in self.exclude)


def load_config(config_path: Path) -> DriftConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return DriftConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    config = DriftConfig(root=root)

    include = _as_str_list(data.get("include"))
    if include:
        config.include = include
    exclude = _as_str_list(data.get("exclude"))
    if exclude:
        config.exclude = exclude

    pattern_data = _as_dict(data.get("patterns"))
    if pattern_data:
        grid = _as_int(pattern_data.get("spacing_grid"))
        if grid is not None and grid <= 0:
            raise ConfigError("patterns.spacing_grid must be a positive integer")
        config.patterns.spacing_grid = grid
        naming = _as_str(pattern_data.get("naming_convention"))
        if naming is not None:
            if naming not in NAMING_CONVENTIONS:
                allowed = ", ".join(NAMING_CONVENTIONS)
                raise ConfigError(f"patterns.naming_convention must be one of: {allowed}")
            config.patterns.naming_convention = naming

    rules = _as_dict(data.get("rules"))
    for rule, raw in rules.items():
        severity = _as_str(raw)
        if severity not in SEVERITY_VALUES:
            raise ConfigError(
                f"rules.{rule} must be one of error, warning, off (got {raw!r})"
            )
        config.rules[str(rule)] = severity

    cache_data = _as_dict(data.get("cache"))
    if cache_data:
        budget_mb = _as_float(cache_data.get("budget_mb"))
        if budget_mb is not None:
            config.cache.budget_bytes = int(budget_mb * 1024 * 1024)
        ttl_hours = _as_float(cache_data.get("ttl_hours"))
        if ttl_hours is not None:
            config.cache.ttl_seconds = ttl_hours * 60 * 60
        max_file_mb = _as_float(cache_data.get("max_file_size_mb"))
        if max_file_mb is not None:
            config.cache.max_file_size = int(max_file_mb * 1024 * 1024)
        revalidate = _as_bool(cache_data.get("revalidate_on_load"))
        if revalidate is not None:
            config.cache.revalidate_on_load = revalidate

    watch_data = _as_dict(data.get("watch"))
    if watch_data:
        debounce = _as_int(watch_data.get("debounce_ms"))
        if debounce is not None:
            config.watch.debounce_ms = max(debounce, 0)
        workers = _as_int(watch_data.get("workers"))
        if workers is not None:
            config.watch.workers = max(workers, 1)
        timeout = _as_float(watch_data.get("extract_timeout_s"))
        if timeout is not None:
            config.watch.extract_timeout_s = timeout
        history = _as_int(watch_data.get("history_size"))
        if history is not None:
            config.watch.history_size = max(history, 1)

    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _expand_braces(pattern: str) -> List[str]:
    start = pattern.find("{")
    end = pattern.find("}", start + 1)
    if start == -1 or end == -1:
        return [pattern]
    head, body, tail = pattern[:start], pattern[start + 1 : end], pattern[end + 1 :]
    expanded: List[str] = []
    for option in body.split(","):
        expanded.extend(_expand_braces(f"{head}{option}{tail}"))
    return expanded


def _glob_matches(path: str, pattern: str) -> bool:
    for candidate in _expand_braces(pattern):
        if fnmatchcase(path, candidate):
            return True
        # "dir/**/x" also matches files directly under dir
        if "/**/" in candidate and fnmatchcase(path, candidate.replace("/**/", "/")):
            return True
        if candidate.startswith("**/") and fnmatchcase(path, candidate[3:]):
            return True
        # bare directory names exclude everything beneath them
        if "/" not in candidate and not any(ch in candidate for ch in "*?["):
            if path == candidate or path.startswith(f"{candidate}/"):
                return True
    return False


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "CONFIG_FILENAME",
    "CacheSettings",
    "ConfigError",
    "DEFAULT_RULES",
    "DriftConfig",
    "PatternSettings",
    "WatchSettings",
    "load_config",
]
