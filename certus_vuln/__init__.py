"""Certus-Vuln: scanner-output normalization and vulnerability policy evaluation.

Library entry points:
- normalize(raw, source_format, options) -> NormalizedScanResult
- detect_schema_version(raw) -> str
- evaluate_policy(findings, rules, exceptions) -> PolicyEvaluation
- evaluate_conditional_policy(current, historical, environment) -> ConditionalPolicyResult
- calculate_risk_score(input, weights) -> RiskScoreResult
"""

from certus_vuln.normalization import detect_schema_version, normalize
from certus_vuln.policies import calculate_risk_score, evaluate_conditional_policy, evaluate_policy

__version__ = "0.1.0"

__all__ = [
    "calculate_risk_score",
    "detect_schema_version",
    "evaluate_conditional_policy",
    "evaluate_policy",
    "normalize",
]
