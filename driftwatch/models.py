"""Core data models shared across driftwatch components."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field, fields
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Literal, Mapping, Optional, Tuple, Type, Union

Severity = Literal["error", "warning", "info"]
ChangeType = Literal["added", "modified", "deleted"]

SYNTAX_ERROR = "syntax-error"
TOO_LARGE = "too-large"
UNSUPPORTED_ENCODING = "unsupported-encoding"
IO_ERROR = "io-error"
TIMEOUT = "timeout"

FAILURE_KINDS = (SYNTAX_ERROR, TOO_LARGE, UNSUPPORTED_ENCODING, IO_ERROR, TIMEOUT)


@dataclass(frozen=True)
class FileHash:
    """Identifies one content version of a file."""

    path: str
    content_hash: str
    size: int
    mtime: float


# ---------------------------------------------------------------------------
# Facts: one variant per file kind, discriminated by ``kind``.


@dataclass(frozen=True)
class ComponentFacts:
    """Structured facts about a UI component source file."""

    kind: ClassVar[str] = "component"

    name: str
    props: Tuple[str, ...] = ()
    styling: str = "none"
    inline_colors: Tuple[str, ...] = ()
    classes: Tuple[str, ...] = ()
    dependencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StyleFacts:
    """Structured facts about a stylesheet."""

    kind: ClassVar[str] = "style"

    selectors: Tuple[str, ...] = ()
    colors: Tuple[str, ...] = ()
    spacing: Tuple[str, ...] = ()
    font_sizes: Tuple[str, ...] = ()
    font_weights: Tuple[str, ...] = ()
    custom_properties: Mapping[str, str] = field(default_factory=dict)
    dependencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MarkupFacts:
    """Structured facts about a markup template."""

    kind: ClassVar[str] = "markup"

    inline_styles: int = 0
    classes: Tuple[str, ...] = ()
    missing_labels: Tuple[str, ...] = ()
    missing_alts: Tuple[str, ...] = ()
    unstyled_buttons: int = 0
    dependencies: Tuple[str, ...] = ()


Facts = Union[ComponentFacts, StyleFacts, MarkupFacts]

_FACT_TYPES: Dict[str, Type[Any]] = {
    ComponentFacts.kind: ComponentFacts,
    StyleFacts.kind: StyleFacts,
    MarkupFacts.kind: MarkupFacts,
}


def facts_to_dict(facts: Facts) -> Dict[str, Any]:
    data = asdict(facts)
    for key, value in list(data.items()):
        if isinstance(value, tuple):
            data[key] = list(value)
        elif isinstance(value, Mapping):
            data[key] = dict(value)
    data["kind"] = facts.kind
    return data


def facts_size(facts: Facts) -> int:
    """Approximate footprint: byte length of the serialised facts."""
    return len(json.dumps(facts_to_dict(facts), sort_keys=True).encode("utf-8"))


def facts_from_dict(payload: Mapping[str, Any]) -> Facts:
    """Rebuild a facts variant from its serialised form."""
    kind = payload.get("kind")
    fact_type = _FACT_TYPES.get(kind) if isinstance(kind, str) else None
    if fact_type is None:
        raise ValueError(f"Unknown facts kind: {kind!r}")
    kwargs: Dict[str, Any] = {}
    for item in fields(fact_type):
        if item.name not in payload:
            continue
        value = payload[item.name]
        if isinstance(value, list):
            value = tuple(str(v) for v in value)
        elif isinstance(value, Mapping):
            value = {str(k): str(v) for k, v in value.items()}
        kwargs[item.name] = value
    return fact_type(**kwargs)


# ---------------------------------------------------------------------------
# Cache records


@dataclass
class CacheEntry:
    """The last successfully extracted facts for a path."""

    path: str
    facts: Facts
    content_hash: str
    analyzed_at: float
    dependencies: Tuple[str, ...] = ()
    stale: bool = False


@dataclass(frozen=True)
class Change:
    """A committed cache change produced by incremental analysis."""

    type: ChangeType
    path: str
    facts: Optional[Facts] = None
    old_facts: Optional[Facts] = None


@dataclass(frozen=True)
class ExtractionFailure:
    """Classified extractor failure for a single path."""

    path: str
    kind: str
    message: str = ""


@dataclass(frozen=True)
class Skip:
    """A path excluded by the extraction policy; not an error."""

    path: str
    reason: str


# ---------------------------------------------------------------------------
# Learned profile


@dataclass(frozen=True)
class ColorBuckets:
    primary: Tuple[str, ...] = ()
    secondary: Tuple[str, ...] = ()
    neutral: Tuple[str, ...] = ()
    semantic: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "semantic", MappingProxyType(dict(self.semantic)))

    def palette(self) -> set[str]:
        colors = set(self.primary) | set(self.secondary) | set(self.neutral)
        for values in self.semantic.values():
            colors.update(values)
        return colors


@dataclass(frozen=True)
class Typography:
    sizes: Tuple[str, ...] = ()
    weights: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ComponentUsage:
    name: str
    count: int
    props: Tuple[str, ...] = ()
    locations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DesignPatternProfile:
    """Snapshot of the conventions learned from the cached fact set."""

    spacing_unit: int = 8
    spacing_values: Tuple[int, ...] = ()
    spacing_confidence: int = 0
    colors: ColorBuckets = field(default_factory=ColorBuckets)
    typography: Typography = field(default_factory=Typography)
    components: Tuple[ComponentUsage, ...] = ()
    naming_convention: str = "PascalCase"

    def component(self, name: str) -> Optional[ComponentUsage]:
        for usage in self.components:
            if usage.name == name:
                return usage
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spacingUnit": self.spacing_unit,
            "spacingValues": list(self.spacing_values),
            "spacingConfidence": self.spacing_confidence,
            "colors": {
                "primary": list(self.colors.primary),
                "secondary": list(self.colors.secondary),
                "neutral": list(self.colors.neutral),
                "semantic": {key: list(value) for key, value in self.colors.semantic.items()},
            },
            "typography": {
                "sizes": list(self.typography.sizes),
                "weights": list(self.typography.weights),
            },
            "componentUsage": [
                {
                    "name": usage.name,
                    "count": usage.count,
                    "props": list(usage.props),
                    "locations": list(usage.locations),
                }
                for usage in self.components
            ],
            "namingConvention": self.naming_convention,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DesignPatternProfile":
        colors = payload.get("colors") or {}
        typography = payload.get("typography") or {}
        semantic = colors.get("semantic") or {}
        return cls(
            spacing_unit=int(payload.get("spacingUnit", 8)),
            spacing_values=tuple(int(v) for v in payload.get("spacingValues", [])),
            spacing_confidence=int(payload.get("spacingConfidence", 0)),
            colors=ColorBuckets(
                primary=tuple(colors.get("primary", [])),
                secondary=tuple(colors.get("secondary", [])),
                neutral=tuple(colors.get("neutral", [])),
                semantic={str(key): tuple(value) for key, value in semantic.items()},
            ),
            typography=Typography(
                sizes=tuple(typography.get("sizes", [])),
                weights=tuple(typography.get("weights", [])),
            ),
            components=tuple(
                ComponentUsage(
                    name=str(item["name"]),
                    count=int(item.get("count", 0)),
                    props=tuple(item.get("props", [])),
                    locations=tuple(item.get("locations", [])),
                )
                for item in payload.get("componentUsage", [])
                if isinstance(item, Mapping) and "name" in item
            ),
            naming_convention=str(payload.get("namingConvention", "PascalCase")),
        )


# ---------------------------------------------------------------------------
# Evaluation output


@dataclass(frozen=True)
class Violation:
    """A single drift finding; never mutated after creation."""

    type: str
    severity: Severity
    path: str
    message: str
    suggested_fix: Optional[str] = None
    values: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "severity": self.severity,
            "path": self.path,
            "message": self.message,
        }
        if self.suggested_fix:
            data["suggestedFix"] = self.suggested_fix
        if self.values:
            data["values"] = list(self.values)
        return data


@dataclass(frozen=True)
class EvaluationResult:
    violations: Tuple[Violation, ...]
    score: int
    error_count: int
    warning_count: int
    files_evaluated: int
    files_with_violations: int

    def by_type(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for violation in self.violations:
            counts[violation.type] = counts.get(violation.type, 0) + 1
        return counts


@dataclass
class SessionStats:
    """Counters for one watch session; reset when a session starts."""

    files_watched: int = 0
    changes_detected: int = 0
    violations_found: int = 0
    started_at: float = field(default_factory=time.time)
    stopped_at: Optional[float] = None

    def snapshot(self, now: float | None = None) -> Dict[str, int]:
        if now is not None:
            current = now
        else:
            current = self.stopped_at if self.stopped_at is not None else time.time()
        return {
            "files_watched": self.files_watched,
            "changes_detected": self.changes_detected,
            "violations_found": self.violations_found,
            "duration_ms": int(max(current - self.started_at, 0.0) * 1000),
        }


__all__ = [
    "CacheEntry",
    "Change",
    "ChangeType",
    "ColorBuckets",
    "ComponentFacts",
    "ComponentUsage",
    "DesignPatternProfile",
    "EvaluationResult",
    "ExtractionFailure",
    "FAILURE_KINDS",
    "Facts",
    "FileHash",
    "IO_ERROR",
    "MarkupFacts",
    "SYNTAX_ERROR",
    "SessionStats",
    "Severity",
    "Skip",
    "StyleFacts",
    "TIMEOUT",
    "TOO_LARGE",
    "Typography",
    "UNSUPPORTED_ENCODING",
    "Violation",
    "facts_from_dict",
    "facts_size",
    "facts_to_dict",
]
