"""Tests for profile persistence and change detection."""

from __future__ import annotations

import json
from pathlib import Path

from driftwatch.models import ColorBuckets, ComponentUsage, DesignPatternProfile, Typography
from driftwatch.stores import ProfileStore
from driftwatch.stores.profile_store import detect_changes


def _profile(**overrides) -> DesignPatternProfile:
    values = dict(
        spacing_unit=8,
        spacing_values=(8, 16),
        spacing_confidence=100,
        colors=ColorBuckets(primary=("#3366ff",), neutral=("#ffffff",)),
        typography=Typography(sizes=("14px", "16px"), weights=("400",)),
        components=(ComponentUsage(name="Button", count=3, props=("variant",)),),
    )
    values.update(overrides)
    return DesignPatternProfile(**values)


def test_load_returns_none_without_document(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)

    assert store.load() is None
    assert store.history() == []


def test_save_then_load_round_trips_profile(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    profile = _profile()

    assert store.save(profile) == []

    assert store.path == tmp_path / ".driftwatch" / "patterns.json"
    assert store.load() == profile
    document = json.loads(store.path.read_text(encoding="utf-8"))
    assert document["profile"]["spacingUnit"] == 8
    assert document["timestamp"].endswith("Z")


def test_changed_profile_is_pushed_to_history(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.save(_profile())

    changes = store.save(_profile(spacing_unit=4))

    assert [change["category"] for change in changes] == ["spacing"]
    history = store.history()
    assert len(history) == 1
    assert history[0]["profile"]["spacingUnit"] == 8
    assert history[0]["changes"] == changes
    loaded = store.load()
    assert loaded is not None
    assert loaded.spacing_unit == 4


def test_identical_profile_adds_no_history(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.save(_profile())

    assert store.save(_profile()) == []
    assert store.history() == []


def test_history_is_bounded(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path, history_limit=3)
    for unit in (4, 8, 16, 4, 8, 16):
        store.save(_profile(spacing_unit=unit))

    history = store.history()
    assert len(history) == 3
    assert [entry["profile"]["spacingUnit"] for entry in history] == [8, 4, 16]


def test_unreadable_document_is_ignored(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{oops", encoding="utf-8")

    assert store.load() is None


def test_clear_removes_document(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.save(_profile())

    store.clear()

    assert not store.path.exists()
    assert store.load() is None


def test_detect_changes_reports_colors_components_and_typography() -> None:
    previous = _profile()
    current = _profile(
        colors=ColorBuckets(primary=("#ff6600",)),
        typography=Typography(sizes=("12px", "14px", "16px")),
        components=(
            ComponentUsage(name="Button", count=5),
            ComponentUsage(name="Card", count=1),
        ),
    )

    descriptions = [change["description"] for change in detect_changes(previous, current)]

    assert descriptions == [
        "Added primary color: #ff6600",
        "Removed primary color: #3366ff",
        "Button usage changed from 3 to 5",
        "Added component: Card",
        "Font size scale changed from 2 to 3 sizes",
    ]


def test_detect_changes_reports_removed_components() -> None:
    changes = detect_changes(_profile(), _profile(components=()))

    assert changes == [
        {"type": "removed", "category": "components", "description": "Removed component: Button"}
    ]
