"""Value normalisation helpers shared by the learner and drift rules."""

from __future__ import annotations

import re
from functools import reduce
from math import gcd
from typing import Iterable, List, Optional, Tuple

BASE_FONT_PX = 16
PREFERRED_UNITS: Tuple[int, ...] = (4, 8, 16)
DEFAULT_UNIT = 8

NAMED_COLORS = (
    "red",
    "blue",
    "green",
    "yellow",
    "orange",
    "purple",
    "black",
    "white",
    "gray",
    "grey",
)

SEMANTIC_FAMILIES = {
    "error": ("red", "#ff0000", "#f00", "#dc3545", "#e53e3e"),
    "warning": ("yellow", "orange", "#ffc107", "#ffaa00", "#f6ad55"),
    "success": ("green", "#00ff00", "#0f0", "#28a745", "#48bb78"),
    "info": ("blue", "#0000ff", "#00f", "#17a2b8", "#4299e1"),
}

_FUNCTIONAL_COLOR = re.compile(r"^(rgb|rgba|hsl|hsla)\(")
_NUMBER = re.compile(r"^(-?\d+(?:\.\d+)?)(px|rem|em)?$")
_LEADING_INT = re.compile(r"^-?\d+")

PASCAL_CASE = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
CAMEL_CASE = re.compile(r"^[a-z][a-zA-Z0-9]*$")
KEBAB_CASE = re.compile(r"^[a-z]+(-[a-z]+)*$")

NAMING_PATTERNS = {
    "PascalCase": PASCAL_CASE,
    "camelCase": CAMEL_CASE,
    "kebab-case": KEBAB_CASE,
}


def to_pixels(value: str) -> Optional[float]:
    """Convert ``12px``, ``1.5rem``, ``2em`` or a bare number to pixels."""
    match = _NUMBER.match(value.strip().lower())
    if not match:
        return None
    number = float(match.group(1))
    if match.group(2) in ("rem", "em"):
        return number * BASE_FONT_PX
    return number


def spacing_magnitudes(values: Iterable[str]) -> List[int]:
    """Positive integer pixel magnitudes from spacing declarations.

    Shorthand declarations such as ``8px 16px`` contribute each part.
    """
    magnitudes: List[int] = []
    for value in values:
        for token in value.split():
            pixels = to_pixels(token)
            if pixels is None:
                continue
            magnitude = int(round(abs(pixels)))
            if magnitude > 0:
                magnitudes.append(magnitude)
    return magnitudes


def snap_unit(magnitudes: List[int]) -> int:
    """GCD of the magnitudes, snapped to the nearest compatible preferred unit.

    A preferred unit is compatible when it divides the GCD or the GCD divides
    it; ties go to the smaller unit.
    """
    if not magnitudes:
        return DEFAULT_UNIT
    divisor = reduce(gcd, magnitudes)
    compatible = [
        unit for unit in PREFERRED_UNITS if divisor % unit == 0 or unit % divisor == 0
    ]
    if not compatible:
        return divisor
    return min(compatible, key=lambda unit: abs(unit - divisor))


def font_size_key(value: str) -> float:
    pixels = to_pixels(value)
    if pixels is not None:
        return pixels
    match = _LEADING_INT.match(value.strip())
    return float(match.group(0)) if match else float(BASE_FONT_PX)


def font_weight_key(value: str) -> int:
    match = _LEADING_INT.match(value.strip())
    return int(match.group(0)) if match and int(match.group(0)) else 400


def normalize_color(value: str) -> Optional[str]:
    """Canonical form of a color literal, or ``None`` for tokens and unknowns."""
    color = value.strip()
    if not color or color.startswith("var("):
        return None
    if color.startswith("#"):
        return color.lower()
    if _FUNCTIONAL_COLOR.match(color):
        return color
    if color.lower() in NAMED_COLORS:
        return color.lower()
    return None


def is_neutral(color: str) -> bool:
    if color in ("white", "black") or "gray" in color or "grey" in color:
        return True
    if color.startswith("#") and len(color) == 7:
        try:
            red, green, blue = (int(color[i : i + 2], 16) for i in (1, 3, 5))
        except ValueError:
            return False
        return red == green == blue
    return False


def semantic_family(color: str) -> Optional[str]:
    lowered = color.lower()
    for family, members in SEMANTIC_FAMILIES.items():
        if any(member in lowered for member in members):
            return family
    return None


def naming_style(name: str) -> Optional[str]:
    for style, pattern in NAMING_PATTERNS.items():
        if pattern.match(name):
            return style
    return None


__all__ = [
    "DEFAULT_UNIT",
    "NAMING_PATTERNS",
    "PREFERRED_UNITS",
    "SEMANTIC_FAMILIES",
    "font_size_key",
    "font_weight_key",
    "is_neutral",
    "naming_style",
    "normalize_color",
    "semantic_family",
    "snap_unit",
    "spacing_magnitudes",
    "to_pixels",
]
