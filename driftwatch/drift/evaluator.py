"""Apply drift rules to cached facts and score the result."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from ..config import DriftConfig
from ..logging import get_logger
from ..models import DesignPatternProfile, EvaluationResult, Violation
from ..stores.fact_cache import IncrementalCache
from .rules import RULES, Rule

logger = get_logger("drift")

ERROR_WEIGHT = 5
WARNING_WEIGHT = 2


def drift_score(
    error_count: int, warning_count: int, files_with_violations: int, total_files: int
) -> int:
    """Score in ``[0, 100]``; more errors or warnings never raise it."""
    ratio = round(100 * files_with_violations / total_files) if total_files else 0
    raw = 100 - ERROR_WEIGHT * error_count - WARNING_WEIGHT * warning_count - ratio
    return max(0, min(100, raw))


def evaluate(
    cache: IncrementalCache,
    profile: DesignPatternProfile,
    config: DriftConfig,
    paths: Optional[Iterable[str]] = None,
    *,
    rules: Mapping[str, Rule] | None = None,
) -> EvaluationResult:
    """Evaluate the cached facts for ``paths`` (every cached path by default).

    A rule that raises for one file is logged and contributes no violations
    for that file; other files and other rules are unaffected.
    """
    active = {
        name: rule
        for name, rule in (rules if rules is not None else RULES).items()
        if config.severity_for(name) != "off"
    }
    targets = cache.paths() if paths is None else list(dict.fromkeys(str(p) for p in paths))

    violations: List[Violation] = []
    evaluated = 0
    flagged = 0
    for path in targets:
        entry = cache.get(path)
        if entry is None:
            continue
        evaluated += 1
        found = _evaluate_file(entry.facts, path, profile, config, active)
        if found:
            flagged += 1
            violations.extend(found)

    errors = sum(1 for violation in violations if violation.severity == "error")
    warnings = sum(1 for violation in violations if violation.severity == "warning")
    return EvaluationResult(
        violations=tuple(violations),
        score=drift_score(errors, warnings, flagged, evaluated),
        error_count=errors,
        warning_count=warnings,
        files_evaluated=evaluated,
        files_with_violations=flagged,
    )


def _evaluate_file(
    facts: object,
    path: str,
    profile: DesignPatternProfile,
    config: DriftConfig,
    rules: Dict[str, Rule],
) -> List[Violation]:
    found: List[Violation] = []
    for name, rule in rules.items():
        try:
            found.extend(rule(facts, path, profile, config))  # type: ignore[arg-type]
        except Exception:
            logger.exception("Rule %s failed for %s; skipping file", name, path)
            return []
    return found


__all__ = ["ERROR_WEIGHT", "WARNING_WEIGHT", "drift_score", "evaluate"]
