"""Derive a design pattern profile from the cached fact set."""

from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

from ..models import (
    CacheEntry,
    Change,
    ColorBuckets,
    ComponentFacts,
    ComponentUsage,
    DesignPatternProfile,
    MarkupFacts,
    StyleFacts,
    Typography,
    facts_size,
)
from .units import (
    font_size_key,
    font_weight_key,
    is_neutral,
    naming_style,
    normalize_color,
    semantic_family,
    snap_unit,
    spacing_magnitudes,
)

_BUCKET_CAP = 3
_SIGNIFICANT_RATIO = 0.1


def extract_profile(entries: Iterable[CacheEntry]) -> DesignPatternProfile:
    """Build a profile from ``entries``.

    The result depends only on the facts and their order: frequency ties are
    broken by first-seen position. Stale entries still describe the last good
    version of their file and are included.
    """
    components: List[Tuple[str, ComponentFacts]] = []
    styles: List[StyleFacts] = []
    for entry in entries:
        facts = entry.facts
        if isinstance(facts, ComponentFacts):
            components.append((entry.path, facts))
        elif isinstance(facts, StyleFacts):
            styles.append(facts)
        elif isinstance(facts, MarkupFacts):
            continue
        else:
            raise TypeError(f"Unsupported facts kind: {type(facts).__name__}")

    unit, values, confidence = _spacing(styles)
    return DesignPatternProfile(
        spacing_unit=unit,
        spacing_values=values,
        spacing_confidence=confidence,
        colors=_colors(styles, [facts for _, facts in components]),
        typography=_typography(styles),
        components=_component_usage(components),
        naming_convention=_naming_convention([facts.name for _, facts in components]),
    )


def _spacing(styles: List[StyleFacts]) -> Tuple[int, Tuple[int, ...], int]:
    magnitudes: List[int] = []
    for style in styles:
        magnitudes.extend(spacing_magnitudes(style.spacing))
    unit = snap_unit(magnitudes)
    if not magnitudes:
        return unit, (), 0
    fitting = [value for value in magnitudes if value % unit == 0]
    confidence = round(len(fitting) / len(magnitudes) * 100)
    return unit, tuple(sorted(set(fitting))), confidence


def _colors(styles: List[StyleFacts], components: List[ComponentFacts]) -> ColorBuckets:
    counts: Counter[str] = Counter()
    literals: List[str] = []
    for style in styles:
        literals.extend(style.colors)
    for component in components:
        literals.extend(component.inline_colors)
    for literal in literals:
        normalized = normalize_color(literal)
        if normalized:
            counts[normalized] += 1

    primary: List[str] = []
    secondary: List[str] = []
    neutral: List[str] = []
    semantic: Dict[str, List[str]] = {}
    # most_common keeps insertion order among equal counts
    for color, _ in counts.most_common():
        if is_neutral(color):
            neutral.append(color)
            continue
        family = semantic_family(color)
        if family:
            semantic.setdefault(family, []).append(color)
        elif len(primary) < _BUCKET_CAP:
            primary.append(color)
        elif len(secondary) < _BUCKET_CAP:
            secondary.append(color)

    return ColorBuckets(
        primary=tuple(primary),
        secondary=tuple(secondary),
        neutral=tuple(neutral),
        semantic={family: tuple(colors) for family, colors in semantic.items()},
    )


def _typography(styles: List[StyleFacts]) -> Typography:
    sizes: Dict[str, None] = {}
    weights: Dict[str, None] = {}
    for style in styles:
        sizes.update(dict.fromkeys(size.strip() for size in style.font_sizes))
        weights.update(dict.fromkeys(weight.strip() for weight in style.font_weights))
    return Typography(
        sizes=tuple(sorted(sizes, key=font_size_key)),
        weights=tuple(sorted(weights, key=font_weight_key)),
    )


def _component_usage(components: List[Tuple[str, ComponentFacts]]) -> Tuple[ComponentUsage, ...]:
    counts: Dict[str, int] = {}
    props: Dict[str, Dict[str, None]] = {}
    locations: Dict[str, List[str]] = {}
    for path, facts in components:
        counts[facts.name] = counts.get(facts.name, 0) + 1
        props.setdefault(facts.name, {}).update(dict.fromkeys(facts.props))
        locations.setdefault(facts.name, []).append(path)
    ordered = sorted(counts, key=lambda name: -counts[name])
    return tuple(
        ComponentUsage(
            name=name,
            count=counts[name],
            props=tuple(props[name]),
            locations=tuple(locations[name]),
        )
        for name in ordered
    )


def is_significant(change: Change) -> bool:
    """Additions, deletions and modifications that resize the facts by over 10%."""
    if change.type != "modified":
        return True
    if change.facts is None or change.old_facts is None:
        return True
    new_size = facts_size(change.facts)
    old_size = facts_size(change.old_facts)
    if old_size == 0:
        return new_size != 0
    return abs(new_size - old_size) / old_size > _SIGNIFICANT_RATIO


def requires_refresh(changes: Sequence[Change]) -> bool:
    return any(is_significant(change) for change in changes)


def _naming_convention(names: List[str]) -> str:
    tally = Counter(style for style in map(naming_style, names) if style)
    pascal, camel, kebab = tally["PascalCase"], tally["camelCase"], tally["kebab-case"]
    if pascal >= camel and pascal >= kebab:
        return "PascalCase"
    if camel >= kebab:
        return "camelCase"
    return "kebab-case"


__all__ = ["extract_profile", "is_significant", "requires_refresh"]
