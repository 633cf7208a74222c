from __future__ import annotations

from pathlib import Path

import pytest

from driftwatch.extractors import ExtractorRegistry
from tests._fixtures.extractors import JsonFactsExtractor
from tests._fixtures.project_builder import ProjectBuilder


@pytest.fixture
def project(tmp_path: Path) -> ProjectBuilder:
    """Provide a reusable project builder rooted at the pytest tmp_path."""
    return ProjectBuilder(tmp_path)


@pytest.fixture
def extractor() -> JsonFactsExtractor:
    return JsonFactsExtractor()


@pytest.fixture
def registry(extractor: JsonFactsExtractor) -> ExtractorRegistry:
    return ExtractorRegistry([extractor])
