"""Base classes for extractor plugins."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Tuple, Union

from ..models import ExtractionFailure, Facts


class Extractor(ABC):
    """Contract for extractors that turn one file into structured facts.

    Implementations return an :class:`ExtractionFailure` instead of raising
    when the file cannot be parsed.
    """

    name: str = "extractor"
    suffixes: Tuple[str, ...] = ()

    def supports(self, path: Path) -> bool:
        """Return True when this extractor handles the file's kind."""
        return path.suffix.lower() in self.suffixes

    @abstractmethod
    def extract(self, path: Path) -> Union[Facts, ExtractionFailure]:
        """Produce facts for the file at ``path``."""
