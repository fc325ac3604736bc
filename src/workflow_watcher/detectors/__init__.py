"""Anomaly detection: deterministic rules and the advisory model pass."""

from .advisory import AdvisoryAnalyzer, AdvisoryVerdict
from .rules import RULES, RuleEngine, RuleMatch, normalize_signature

__all__ = [
    "AdvisoryAnalyzer",
    "AdvisoryVerdict",
    "RULES",
    "RuleEngine",
    "RuleMatch",
    "normalize_signature",
]
