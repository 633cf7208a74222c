"""Drift rules.

Every rule is a pure function ``(facts, path, profile, config) -> [Violation]``
and returns an empty list for fact kinds it does not inspect.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from ..config import DriftConfig
from ..models import (
    ComponentFacts,
    ComponentUsage,
    DesignPatternProfile,
    Facts,
    MarkupFacts,
    StyleFacts,
    Violation,
)
from ..patterns.units import NAMING_PATTERNS, normalize_color, spacing_magnitudes

Rule = Callable[[Facts, str, DesignPatternProfile, DriftConfig], List[Violation]]

_MIN_BASE_NAME = 3
_PREVIEW = 3
_DESIGN_SYSTEM_BUTTON_CLASS = "btn"


def _violation(
    rule: str,
    config: DriftConfig,
    path: str,
    message: str,
    suggested_fix: Optional[str] = None,
    values: List[str] | None = None,
) -> Violation:
    severity = config.severity_for(rule)
    return Violation(
        type=rule,
        severity="error" if severity == "error" else "warning",
        path=path,
        message=message,
        suggested_fix=suggested_fix,
        values=tuple(values or ()),
    )


def _preview(values: List[str]) -> str:
    shown = ", ".join(values[:_PREVIEW])
    return f"{shown}..." if len(values) > _PREVIEW else shown


def naming_convention(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if not isinstance(facts, ComponentFacts):
        return []
    expected = config.patterns.naming_convention
    pattern = NAMING_PATTERNS[expected]
    if pattern.match(facts.name):
        return []
    return [
        _violation(
            "naming-convention",
            config,
            path,
            f'Component "{facts.name}" doesn\'t follow {expected} naming convention',
            f"Rename component to follow {expected} convention",
            [facts.name],
        )
    ]


def inline_styles(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if isinstance(facts, ComponentFacts):
        if facts.styling != "inline":
            return []
        return [
            _violation(
                "inline-styles",
                config,
                path,
                "Component uses inline styles instead of design system classes "
                "or styled-components",
                "Move styles to CSS classes, CSS modules, or styled-components",
            )
        ]
    if isinstance(facts, MarkupFacts) and facts.inline_styles > 0:
        return [
            _violation(
                "inline-styles",
                config,
                path,
                f"Found {facts.inline_styles} elements with inline styles",
                "Move styles to CSS classes",
            )
        ]
    return []


def hardcoded_colors(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if isinstance(facts, StyleFacts):
        literals = facts.colors
    elif isinstance(facts, ComponentFacts):
        literals = facts.inline_colors
    else:
        return []
    palette = profile.colors.palette()
    outside: List[str] = []
    for literal in literals:
        normalized = normalize_color(literal)
        if normalized is None or normalized in palette or normalized in outside:
            continue
        outside.append(normalized)
    if not outside:
        return []
    return [
        _violation(
            "hardcoded-colors",
            config,
            path,
            f"Found {len(outside)} hardcoded colors: {_preview(outside)}",
            "Use CSS variables or design tokens for colors",
            outside,
        )
    ]


def spacing_violation(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if not isinstance(facts, StyleFacts):
        return []
    unit = config.patterns.spacing_grid or profile.spacing_unit
    invalid = [
        value
        for value in facts.spacing
        if any(magnitude % unit for magnitude in spacing_magnitudes([value]))
    ]
    if not invalid:
        return []
    return [
        _violation(
            "spacing-violation",
            config,
            path,
            f"Found {len(invalid)} spacing values that don't follow the {unit}px grid: "
            f"{_preview(invalid)}",
            f"Use multiples of {unit}px for spacing",
            invalid,
        )
    ]


def typography_violation(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if not isinstance(facts, StyleFacts):
        return []
    violations: List[Violation] = []
    sizes = set(profile.typography.sizes)
    weights = set(profile.typography.weights)
    invalid_sizes = [size for size in facts.font_sizes if size.strip() not in sizes]
    if invalid_sizes and sizes:
        violations.append(
            _violation(
                "typography-violation",
                config,
                path,
                f"Font sizes not in design scale: {', '.join(invalid_sizes)}",
                f"Use established font sizes: {', '.join(profile.typography.sizes)}",
                invalid_sizes,
            )
        )
    invalid_weights = [weight for weight in facts.font_weights if weight.strip() not in weights]
    if invalid_weights and weights:
        violations.append(
            _violation(
                "typography-violation",
                config,
                path,
                f"Font weights not in design scale: {', '.join(invalid_weights)}",
                f"Use established font weights: {', '.join(profile.typography.weights)}",
                invalid_weights,
            )
        )
    return violations


def component_duplication(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if not isinstance(facts, ComponentFacts):
        return []
    own = profile.component(facts.name)
    own_count = own.count if own else 1
    name = facts.name.lower()
    preferred: Optional[ComponentUsage] = None
    for usage in profile.components:
        base = usage.name.lower()
        if len(base) < _MIN_BASE_NAME or base == name or base not in name:
            continue
        if usage.count <= own_count:
            continue
        if preferred is None or usage.count > preferred.count:
            preferred = usage
    if preferred is None:
        return []
    return [
        _violation(
            "component-duplication",
            config,
            path,
            f'Component "{facts.name}" appears to be a variation of "{preferred.name}" '
            f"(used {preferred.count} times). Consider using the existing "
            f"{preferred.name} component with props/variants.",
            f"Use the existing {preferred.name} component and extend it with props or composition",
            [preferred.name],
        )
    ]


def accessibility(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if not isinstance(facts, MarkupFacts):
        return []
    violations: List[Violation] = []
    if facts.missing_labels:
        violations.append(
            _violation(
                "accessibility",
                config,
                path,
                f"Missing labels for {len(facts.missing_labels)} interactive elements",
                "Add aria-label or associated label elements",
                list(facts.missing_labels),
            )
        )
    if facts.missing_alts:
        violations.append(
            _violation(
                "accessibility",
                config,
                path,
                f"Missing alt text for {len(facts.missing_alts)} images",
                "Add descriptive alt attributes to images",
                list(facts.missing_alts),
            )
        )
    return violations


def component_drift(
    facts: Facts, path: str, profile: DesignPatternProfile, config: DriftConfig
) -> List[Violation]:
    if not isinstance(facts, MarkupFacts) or facts.unstyled_buttons <= 0:
        return []
    return [
        _violation(
            "component-drift",
            config,
            path,
            f"Found {facts.unstyled_buttons} native button elements without design system classes",
            f'Use the design system button class (e.g. "{_DESIGN_SYSTEM_BUTTON_CLASS}")',
        )
    ]


RULES: Dict[str, Rule] = {
    "naming-convention": naming_convention,
    "inline-styles": inline_styles,
    "hardcoded-colors": hardcoded_colors,
    "spacing-violation": spacing_violation,
    "typography-violation": typography_violation,
    "component-duplication": component_duplication,
    "accessibility": accessibility,
    "component-drift": component_drift,
}


__all__ = [
    "RULES",
    "Rule",
    "accessibility",
    "component_drift",
    "component_duplication",
    "hardcoded_colors",
    "inline_styles",
    "naming_convention",
    "spacing_violation",
    "typography_violation",
]
