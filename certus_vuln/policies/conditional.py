"""Time-aware (new vs. existing) conditional policy evaluation.

New vulnerabilities get a strict policy and existing ones a lenient one, with
the strictness depending on the deployment environment. A CVE is "existing"
when any earlier scan of the same project reported it; its first-seen time is
the timestamp of the earliest such scan.

Decision table (first match wins; the environment branch is checked first and
falls through to the default branch when nothing in it matches):

    PRODUCTION   new CRITICAL/HIGH -> BLOCK, existing CRITICAL -> WARN
    STAGING      new CRITICAL -> BLOCK, CRITICAL/HIGH -> WARN
    DEVELOPMENT  CRITICAL/HIGH -> WARN, anything else -> INFO (never blocks)
    default      new CRITICAL -> BLOCK, new HIGH -> WARN,
                 existing CRITICAL/HIGH -> WARN, anything else -> ALLOW
"""

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Optional, Union

import structlog

from certus_vuln.core.clock import Clock, ensure_utc, utc_now
from certus_vuln.core.config import get_settings
from certus_vuln.schemas.conditional import (
    ConditionalAction,
    ConditionalPolicyResult,
    ConditionalVulnerability,
    Environment,
    HistoricalScan,
    NewVulnerabilityCount,
)
from certus_vuln.schemas.normalized_vulnerability import NormalizedScanResult, NormalizedVulnerability, Severity

logger = structlog.get_logger(__name__)

CurrentFindings = Union[NormalizedScanResult, Sequence[NormalizedVulnerability]]

_SEVERE = (Severity.CRITICAL, Severity.HIGH)


def build_first_seen_map(
    historical: Iterable[HistoricalScan],
    before: Optional[datetime] = None,
) -> dict[str, datetime]:
    """Map each CVE to the timestamp of the earliest historical scan containing it.

    Scans at or after ``before`` are ignored, so a history that already holds
    the current scan does not make its findings "existing".
    """
    cutoff = ensure_utc(before) if before is not None else None
    first_seen: dict[str, datetime] = {}
    for scan in sorted(historical, key=lambda s: s.scanned_at):
        if cutoff is not None and scan.scanned_at >= cutoff:
            break
        for vuln in scan.vulnerabilities:
            first_seen.setdefault(vuln.cve_id, scan.scanned_at)
    return first_seen


def determine_action(
    severity: Severity,
    is_new: bool,
    days_since_first_seen: int,
    environment: Environment,
) -> tuple[ConditionalAction, str]:
    """Apply the environment decision table to one finding.

    Returns:
        (action, human-readable reason)
    """
    sev = severity.value

    if environment == Environment.PRODUCTION:
        if is_new and severity in _SEVERE:
            return ConditionalAction.BLOCK, f"New {sev} vulnerability in production"
        if not is_new and severity == Severity.CRITICAL:
            return (
                ConditionalAction.WARN,
                f"Existing CRITICAL vulnerability ({days_since_first_seen} days old)",
            )

    if environment == Environment.STAGING:
        if is_new and severity == Severity.CRITICAL:
            return ConditionalAction.BLOCK, "New CRITICAL vulnerability in staging"
        if severity in _SEVERE:
            return ConditionalAction.WARN, f"{sev} vulnerability in staging"

    if environment == Environment.DEVELOPMENT:
        if severity in _SEVERE:
            return ConditionalAction.WARN, f"{sev} vulnerability (development mode - not blocking)"
        return ConditionalAction.INFO, f"{sev} vulnerability logged for development"

    if is_new and severity == Severity.CRITICAL:
        return ConditionalAction.BLOCK, "New CRITICAL vulnerability detected"
    if is_new and severity == Severity.HIGH:
        return ConditionalAction.WARN, "New HIGH vulnerability detected"
    if not is_new and severity in _SEVERE:
        return (
            ConditionalAction.WARN,
            f"Existing {sev} vulnerability (first seen {days_since_first_seen} days ago)",
        )
    return ConditionalAction.ALLOW, f"{sev} vulnerability - allowed by policy"


def format_summary(
    environment: Environment,
    new_count: int,
    existing_count: int,
    blocked_count: int,
    warned_count: int,
) -> str:
    status = "BLOCKED" if blocked_count > 0 else "ALLOWED"
    return (
        f"[{environment.value}] {status}: {new_count} new, {existing_count} existing vulnerabilities. "
        f"{blocked_count} blocked, {warned_count} warnings."
    )


class ConditionalPolicyEvaluator:
    """Classifies current findings as new or existing and applies the decision table."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now

    def evaluate(
        self,
        current: CurrentFindings,
        historical: Iterable[HistoricalScan],
        environment: Optional[Environment] = None,
        current_scan_time: Optional[datetime] = None,
    ) -> ConditionalPolicyResult:
        """Evaluate current findings against project scan history.

        Args:
            current: The current scan result, or its findings
            historical: Earlier scans of the same project, in any order
            environment: Deployment environment (defaults to the configured one)
            current_scan_time: Reference time for days-since-first-seen.
                Defaults to the current result's ``scanned_at``, else the clock.

        Returns:
            ConditionalPolicyResult with per-finding decisions and counts
        """
        environment = environment or get_settings().default_environment
        findings, now = self._resolve_current(current, current_scan_time)
        first_seen = build_first_seen_map(historical, before=now)

        new_vulns: list[ConditionalVulnerability] = []
        existing_vulns: list[ConditionalVulnerability] = []
        blocked = warned = allowed_count = 0

        for finding in findings:
            first_seen_at = first_seen.get(finding.cve_id)
            is_new = first_seen_at is None
            days = 0 if is_new else (now - first_seen_at) // timedelta(days=1)

            action, reason = determine_action(finding.severity, is_new, days, environment)
            decision = ConditionalVulnerability(
                id=finding.id,
                cve_id=finding.cve_id,
                severity=finding.severity,
                is_new=is_new,
                first_seen_at=now if is_new else first_seen_at,
                days_since_first_seen=days,
                action=action,
                reason=reason,
            )
            (new_vulns if is_new else existing_vulns).append(decision)

            if action == ConditionalAction.BLOCK:
                blocked += 1
            elif action == ConditionalAction.WARN:
                warned += 1
            else:
                allowed_count += 1

        result = ConditionalPolicyResult(
            environment=environment,
            total_vulnerabilities=len(findings),
            new_vulnerabilities=new_vulns,
            existing_vulnerabilities=existing_vulns,
            blocked_count=blocked,
            warned_count=warned,
            allowed_count=allowed_count,
            allowed=blocked == 0,
            summary=format_summary(environment, len(new_vulns), len(existing_vulns), blocked, warned),
        )

        logger.info(
            "conditional_policy.evaluated",
            environment=environment.value,
            total=result.total_vulnerabilities,
            new=len(new_vulns),
            existing=len(existing_vulns),
            blocked=blocked,
            warned=warned,
            allowed=result.allowed,
        )
        return result

    def _resolve_current(
        self,
        current: CurrentFindings,
        current_scan_time: Optional[datetime],
    ) -> tuple[list[NormalizedVulnerability], datetime]:
        if isinstance(current, NormalizedScanResult):
            findings = list(current.vulnerabilities)
            default_time = current.scan_metadata.scanned_at
        else:
            findings = list(current)
            default_time = None

        if current_scan_time is not None:
            return findings, ensure_utc(current_scan_time)
        if default_time is not None:
            return findings, ensure_utc(default_time)
        return findings, self._clock()


def is_new_vulnerability(
    cve_id: str,
    historical: Iterable[HistoricalScan],
    before: Optional[datetime] = None,
) -> bool:
    """Whether no historical scan (optionally only those before ``before``) reported the CVE."""
    cutoff = ensure_utc(before) if before is not None else None
    for scan in historical:
        if cutoff is not None and scan.scanned_at >= cutoff:
            continue
        if any(vuln.cve_id == cve_id for vuln in scan.vulnerabilities):
            return False
    return True


def count_new_vulnerabilities(
    current: CurrentFindings,
    historical: Iterable[HistoricalScan],
) -> NewVulnerabilityCount:
    """Count how many current findings are new vs. already seen in history.

    When ``current`` is a scan result, only history older than it is considered.
    """
    history = list(historical)
    if isinstance(current, NormalizedScanResult):
        findings = list(current.vulnerabilities)
        before: Optional[datetime] = current.scan_metadata.scanned_at
    else:
        findings = list(current)
        before = None

    new = sum(1 for f in findings if is_new_vulnerability(f.cve_id, history, before=before))
    return NewVulnerabilityCount(total=len(findings), new=new, existing=len(findings) - new)


def evaluate_conditional_policy(
    current: CurrentFindings,
    historical: Iterable[HistoricalScan],
    environment: Optional[Environment] = None,
    current_scan_time: Optional[datetime] = None,
) -> ConditionalPolicyResult:
    """Evaluate the time-aware conditional policy for one scan."""
    return ConditionalPolicyEvaluator().evaluate(
        current,
        historical,
        environment=environment,
        current_scan_time=current_scan_time,
    )
