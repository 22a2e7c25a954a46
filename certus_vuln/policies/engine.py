"""Policy rule evaluator.

Evaluates canonical findings against organization and project policies and
produces an allow/block decision.

Evaluation order:
1. Exception filtering: findings whose CVE is covered by an APPROVED,
   unexpired CVE exception are removed once, before any rule runs. Exceptions
   come from the caller and from every active policy.
2. Policies are visited in the order given; within a policy, rules run by
   descending priority (ties keep their input order).
3. A rule that matches at least one finding yields one violation (BLOCK) or
   warning (WARN) entry, with the highest matched severity as representative.
4. The first blocking rule encountered is recorded as ``blocked_by``. Later
   blocks add violations but never replace it.

Rules with an unknown ``rule_type`` or action, or with conditions that do not
fit their type, match nothing and are logged, so a broken rule cannot block
every scan. Exceptions of a type other than CVE are ignored.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional

import structlog

from certus_vuln.core.clock import Clock, ensure_utc, utc_now
from certus_vuln.schemas.normalized_vulnerability import SEVERITY_ORDER, NormalizedVulnerability, Severity
from certus_vuln.schemas.policy import (
    BlockedBy,
    ExceptionType,
    Policy,
    PolicyEvaluation,
    PolicyException,
    PolicyRule,
    PolicyViolation,
    RuleAction,
)

logger = structlog.get_logger(__name__)

IMPLICIT_POLICY_ID = "implicit"
IMPLICIT_POLICY_NAME = "Rules"


def highest_severity(findings: Iterable[NormalizedVulnerability]) -> Severity:
    """Return the most severe severity among findings (UNKNOWN when empty)."""
    present = {finding.severity for finding in findings}
    for severity in SEVERITY_ORDER:
        if severity in present:
            return severity
    return Severity.UNKNOWN


def active_cve_exceptions(exceptions: Iterable[PolicyException], now: datetime) -> list[PolicyException]:
    """Filter to CVE exceptions that are approved and unexpired at ``now``."""
    return [e for e in exceptions if e.exception_type == ExceptionType.CVE and e.is_active(now)]


class PolicyEngine:
    """Evaluates findings against policies, rules and exceptions.

    The engine holds no state between calls; ``clock`` only supplies the
    default evaluation time used for exception expiry.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now

    def evaluate(
        self,
        findings: Sequence[NormalizedVulnerability],
        policies: Sequence[Policy],
        exceptions: Iterable[PolicyException] = (),
        now: Optional[datetime] = None,
    ) -> PolicyEvaluation:
        """Evaluate findings against a list of policies.

        Args:
            findings: Canonical findings of one scan
            policies: Applicable policies, in evaluation order
            exceptions: Additional exceptions not owned by any policy
            now: Evaluation time for exception expiry (defaults to the clock)

        Returns:
            PolicyEvaluation with the allow/block decision
        """
        now = ensure_utc(now) if now is not None else self._clock()
        active_policies = [p for p in policies if p.is_active]
        if len(active_policies) != len(policies):
            logger.debug("policy_engine.inactive_policies_skipped", skipped=len(policies) - len(active_policies))

        caller_exceptions = active_cve_exceptions(exceptions, now)
        policy_exceptions = {p.id: active_cve_exceptions(p.exceptions, now) for p in active_policies}

        suppressed = {e.target_value for e in caller_exceptions}
        for owned in policy_exceptions.values():
            suppressed.update(e.target_value for e in owned)

        remaining = [f for f in findings if f.cve_id not in suppressed]

        result = PolicyEvaluation(applied_exceptions=list(caller_exceptions))
        for policy in active_policies:
            for rule in sorted(policy.rules, key=lambda r: r.priority, reverse=True):
                action = rule.known_action
                if action is None:
                    logger.warning(
                        "policy_engine.rule_action_unknown",
                        policy_id=policy.id,
                        rule_id=rule.id,
                        action=rule.action,
                    )
                    continue

                matched = self._match_rule(rule, remaining, policy)
                if not matched:
                    continue

                entry = PolicyViolation(
                    rule_id=rule.id,
                    rule_name=f"{policy.name} - {rule.rule_type}",
                    action=action,
                    message=rule.message,
                    severity=highest_severity(matched),
                    count=len(matched),
                    cve_ids=[f.cve_id for f in matched],
                )

                if action == RuleAction.BLOCK:
                    result.violations.append(entry)
                    result.allowed = False
                    if result.blocked_by is None:
                        result.blocked_by = BlockedBy(policy_id=policy.id, policy_name=policy.name, rule_id=rule.id)
                else:
                    result.warnings.append(entry)

            result.applied_exceptions.extend(policy_exceptions[policy.id])

        logger.info(
            "policy_engine.evaluated",
            finding_count=len(findings),
            suppressed_count=len(findings) - len(remaining),
            policy_count=len(active_policies),
            violation_count=len(result.violations),
            warning_count=len(result.warnings),
            allowed=result.allowed,
        )
        return result

    def evaluate_rules(
        self,
        findings: Sequence[NormalizedVulnerability],
        rules: Sequence[PolicyRule],
        exceptions: Iterable[PolicyException] = (),
        now: Optional[datetime] = None,
    ) -> PolicyEvaluation:
        """Evaluate bare rules as if they belonged to one implicit policy."""
        policy = Policy(id=IMPLICIT_POLICY_ID, name=IMPLICIT_POLICY_NAME, rules=list(rules))
        return self.evaluate(findings, [policy], exceptions=exceptions, now=now)

    @staticmethod
    def _match_rule(
        rule: PolicyRule,
        findings: Sequence[NormalizedVulnerability],
        policy: Policy,
    ) -> list[NormalizedVulnerability]:
        conditions = rule.parsed_conditions()
        if conditions is None:
            logger.warning(
                "policy_engine.rule_misconfigured",
                policy_id=policy.id,
                rule_id=rule.id,
                rule_type=rule.rule_type,
            )
            return []
        return [finding for finding in findings if conditions.matches(finding)]


def evaluate_policy(
    findings: Sequence[NormalizedVulnerability],
    rules: Sequence[PolicyRule],
    exceptions: Iterable[PolicyException] = (),
    now: Optional[datetime] = None,
) -> PolicyEvaluation:
    """Evaluate findings against rules ordered by priority, honouring exceptions."""
    return PolicyEngine().evaluate_rules(findings, rules, exceptions=exceptions, now=now)
