"""Skip policy and failure classification around extractor calls."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..logging import get_logger
from ..models import (
    IO_ERROR,
    SYNTAX_ERROR,
    TOO_LARGE,
    UNSUPPORTED_ENCODING,
    ComponentFacts,
    ExtractionFailure,
    Facts,
    MarkupFacts,
    Skip,
    StyleFacts,
)
from .base import Extractor

ExtractionOutcome = Union[Facts, ExtractionFailure, Skip]

_FACT_TYPES = (ComponentFacts, StyleFacts, MarkupFacts)

logger = get_logger("extractors")


@dataclass(frozen=True)
class ExtractionPolicy:
    """Files rejected by this policy are skipped rather than failed."""

    max_file_size: int = 5 * 1024 * 1024
    binary_probe_bytes: int = 8000


def safe_extract(
    extractor: Optional[Extractor],
    path: Path,
    policy: ExtractionPolicy | None = None,
) -> ExtractionOutcome:
    """Run ``extractor`` on ``path`` without letting any exception escape."""
    policy = policy or ExtractionPolicy()
    if extractor is None:
        return Skip(path=str(path), reason=f"Unsupported file extension: {path.suffix or '<none>'}")

    try:
        size = path.stat().st_size
        if size > policy.max_file_size:
            return Skip(path=str(path), reason=f"File too large ({size // (1024 * 1024)}MB)")
        with path.open("rb") as handle:
            head = handle.read(policy.binary_probe_bytes)
    except OSError as exc:
        return ExtractionFailure(path=str(path), kind=IO_ERROR, message=str(exc))
    if b"\x00" in head:
        return Skip(path=str(path), reason="Invalid file encoding")

    try:
        result = extractor.extract(path)
    except Exception as exc:
        failure = ExtractionFailure(path=str(path), kind=classify_exception(exc), message=str(exc))
        logger.debug("Extractor %s raised for %s: %s", extractor.name, path, exc)
        return failure

    if isinstance(result, ExtractionFailure) or isinstance(result, _FACT_TYPES):
        return result
    return ExtractionFailure(
        path=str(path),
        kind=SYNTAX_ERROR,
        message=f"Extractor {extractor.name} returned {type(result).__name__}",
    )


def classify_exception(exc: BaseException) -> str:
    if isinstance(exc, UnicodeDecodeError):
        return UNSUPPORTED_ENCODING
    if isinstance(exc, MemoryError):
        return TOO_LARGE
    if isinstance(exc, OSError):
        return IO_ERROR
    return SYNTAX_ERROR


__all__ = ["ExtractionOutcome", "ExtractionPolicy", "classify_exception", "safe_extract"]
