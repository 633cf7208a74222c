"""Tests for the extraction guard."""

from __future__ import annotations

from pathlib import Path
from typing import Union

import pytest

from driftwatch.extractors import ExtractionPolicy, Extractor, classify_exception, safe_extract
from driftwatch.models import (
    IO_ERROR,
    SYNTAX_ERROR,
    TOO_LARGE,
    UNSUPPORTED_ENCODING,
    ComponentFacts,
    ExtractionFailure,
    Facts,
    Skip,
)
from tests._fixtures.extractors import FailingExtractor, JsonFactsExtractor


class _RaisingExtractor(Extractor):
    name = "raising"
    suffixes = (".jsx",)

    def __init__(self, exc: BaseException) -> None:
        self.exc = exc

    def extract(self, path: Path) -> Union[Facts, ExtractionFailure]:
        raise self.exc


class _WrongTypeExtractor(Extractor):
    name = "wrong-type"
    suffixes = (".jsx",)

    def extract(self, path: Path):  # type: ignore[override]
        return {"name": "Button"}


def _write(tmp_path: Path, name: str, content: bytes) -> Path:
    path = tmp_path / name
    path.write_bytes(content)
    return path


def test_returns_facts_from_extractor(tmp_path: Path) -> None:
    path = _write(tmp_path, "Button.jsx", b'{"kind": "component", "name": "Button"}')

    result = safe_extract(JsonFactsExtractor(), path)

    assert result == ComponentFacts(name="Button")


def test_missing_extractor_is_skipped(tmp_path: Path) -> None:
    path = _write(tmp_path, "notes.md", b"# notes")

    result = safe_extract(None, path)

    assert isinstance(result, Skip)
    assert ".md" in result.reason


def test_oversized_file_is_skipped_without_calling_extractor(tmp_path: Path) -> None:
    extractor = JsonFactsExtractor()
    path = _write(tmp_path, "Big.jsx", b"x" * 64)

    result = safe_extract(extractor, path, ExtractionPolicy(max_file_size=16))

    assert isinstance(result, Skip)
    assert "too large" in result.reason
    assert extractor.calls == []


def test_binary_content_is_skipped(tmp_path: Path) -> None:
    path = _write(tmp_path, "Icon.jsx", b"\x89PNG\x00\x00\x00")

    result = safe_extract(JsonFactsExtractor(), path)

    assert isinstance(result, Skip)
    assert result.reason == "Invalid file encoding"


def test_missing_file_is_an_io_failure(tmp_path: Path) -> None:
    result = safe_extract(JsonFactsExtractor(), tmp_path / "Gone.jsx")

    assert isinstance(result, ExtractionFailure)
    assert result.kind == IO_ERROR


def test_reported_failure_passes_through(tmp_path: Path) -> None:
    path = _write(tmp_path, "Bad.jsx", b"<div")

    result = safe_extract(FailingExtractor(), path)

    assert isinstance(result, ExtractionFailure)
    assert result.kind == SYNTAX_ERROR


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (ValueError("unexpected token"), SYNTAX_ERROR),
        (SyntaxError("bad"), SYNTAX_ERROR),
        (UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"), UNSUPPORTED_ENCODING),
        (PermissionError("denied"), IO_ERROR),
        (MemoryError(), TOO_LARGE),
    ],
)
def test_raised_exceptions_are_classified(tmp_path: Path, exc: BaseException, kind: str) -> None:
    path = _write(tmp_path, "Widget.jsx", b"{}")

    result = safe_extract(_RaisingExtractor(exc), path)

    assert isinstance(result, ExtractionFailure)
    assert result.kind == kind
    assert classify_exception(exc) == kind


def test_unexpected_return_type_becomes_failure(tmp_path: Path) -> None:
    path = _write(tmp_path, "Widget.jsx", b"{}")

    result = safe_extract(_WrongTypeExtractor(), path)

    assert isinstance(result, ExtractionFailure)
    assert "dict" in result.message
