"""Rule-based drift evaluation."""

from .evaluator import drift_score, evaluate
from .rules import RULES, Rule

__all__ = ["RULES", "Rule", "drift_score", "evaluate"]
