"""Policy evaluation: rule engine, conditional (time-aware) policy and risk scoring."""

from certus_vuln.policies.conditional import (
    ConditionalPolicyEvaluator,
    count_new_vulnerabilities,
    evaluate_conditional_policy,
    is_new_vulnerability,
)
from certus_vuln.policies.engine import PolicyEngine, evaluate_policy
from certus_vuln.policies.risk_score import (
    RiskScoreCalculator,
    calculate_bulk_risk_scores,
    calculate_risk_score,
    score_findings,
)

__all__ = [
    "ConditionalPolicyEvaluator",
    "PolicyEngine",
    "RiskScoreCalculator",
    "calculate_bulk_risk_scores",
    "calculate_risk_score",
    "count_new_vulnerabilities",
    "evaluate_conditional_policy",
    "evaluate_policy",
    "is_new_vulnerability",
    "score_findings",
]
