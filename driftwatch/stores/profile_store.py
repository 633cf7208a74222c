"""Persistent storage for learned pattern profiles."""

from __future__ import annotations

from datetime import UTC, datetime
import json
from pathlib import Path
from typing import Dict, List, Optional

from ..logging import get_logger
from ..models import DesignPatternProfile
from .atomic import write_json_atomic

PROFILE_FILENAME = "patterns.json"
_PROFILE_VERSION = 1
_HISTORY_LIMIT = 10

logger = get_logger("profiles")


class ProfileStore:
    """Keeps the latest profile plus a bounded history of earlier ones."""

    def __init__(self, root: Path, *, history_limit: int = _HISTORY_LIMIT) -> None:
        self.path = Path(root) / ".driftwatch" / PROFILE_FILENAME
        self.history_limit = history_limit

    def load(self) -> Optional[DesignPatternProfile]:
        document = self._read()
        if document is None:
            return None
        payload = document.get("profile")
        if not isinstance(payload, dict):
            return None
        try:
            return DesignPatternProfile.from_dict(payload)
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning("Ignoring malformed profile in %s: %s", self.path, exc)
            return None

    def history(self) -> List[Dict[str, object]]:
        document = self._read()
        if document is None:
            return []
        history = document.get("history")
        return list(history) if isinstance(history, list) else []

    def save(self, profile: DesignPatternProfile) -> List[Dict[str, str]]:
        """Store ``profile`` and return the changes detected against the last one."""
        existing = self._read()
        history = self.history() if existing else []
        changes: List[Dict[str, str]] = []
        previous_payload = existing.get("profile") if existing else None
        current_payload = profile.to_dict()

        if isinstance(previous_payload, dict) and previous_payload != current_payload:
            previous = DesignPatternProfile.from_dict(previous_payload)
            changes = detect_changes(previous, profile)
            history.insert(
                0,
                {
                    "timestamp": existing.get("timestamp"),
                    "profile": previous_payload,
                    "changes": changes,
                },
            )
            history = history[: self.history_limit]

        write_json_atomic(
            self.path,
            {
                "version": _PROFILE_VERSION,
                "timestamp": _utc_now(),
                "profile": current_payload,
                "history": history,
            },
        )
        if changes:
            logger.info("Design patterns changed: %d difference(s)", len(changes))
        return changes

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def _read(self) -> Optional[Dict[str, object]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load patterns from %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict) or data.get("version") != _PROFILE_VERSION:
            return None
        return data


def detect_changes(
    previous: DesignPatternProfile, current: DesignPatternProfile
) -> List[Dict[str, str]]:
    changes: List[Dict[str, str]] = []

    def _add(kind: str, category: str, description: str) -> None:
        changes.append({"type": kind, "category": category, "description": description})

    if previous.spacing_unit != current.spacing_unit:
        _add(
            "modified",
            "spacing",
            f"Spacing unit changed from {previous.spacing_unit}px to {current.spacing_unit}px",
        )

    old_primary = set(previous.colors.primary)
    new_primary = set(current.colors.primary)
    for color in current.colors.primary:
        if color not in old_primary:
            _add("added", "colors", f"Added primary color: {color}")
    for color in previous.colors.primary:
        if color not in new_primary:
            _add("removed", "colors", f"Removed primary color: {color}")

    old_components = {usage.name: usage for usage in previous.components}
    new_components = {usage.name: usage for usage in current.components}
    for name, usage in new_components.items():
        before = old_components.get(name)
        if before is None:
            _add("added", "components", f"Added component: {name}")
        elif before.count != usage.count:
            _add(
                "modified",
                "components",
                f"{name} usage changed from {before.count} to {usage.count}",
            )
    for name in old_components:
        if name not in new_components:
            _add("removed", "components", f"Removed component: {name}")

    if len(previous.typography.sizes) != len(current.typography.sizes):
        _add(
            "modified",
            "typography",
            "Font size scale changed from "
            f"{len(previous.typography.sizes)} to {len(current.typography.sizes)} sizes",
        )
    return changes


def _utc_now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


__all__ = ["PROFILE_FILENAME", "ProfileStore", "detect_changes"]
