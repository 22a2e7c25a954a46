"""Scan comparison and vulnerability trend.

Both operations are pure functions over already-materialized scans. A scan is
either a NormalizedScanResult or a HistoricalScan; findings are compared by
CVE id, so several packages affected by the same CVE count once (the last
occurrence in a scan wins).
"""

from collections.abc import Sequence
from typing import Optional, Union

import structlog

from certus_vuln.schemas.conditional import HistoricalScan
from certus_vuln.schemas.normalized_vulnerability import (
    SEVERITY_ORDER,
    NormalizedScanResult,
    NormalizedVulnerability,
    Severity,
)
from certus_vuln.schemas.scan_diff import (
    DiffStatus,
    ScanDiffResult,
    ScanDiffSummary,
    TrendPoint,
    VulnDiffEntry,
    VulnerabilityTrend,
)

logger = structlog.get_logger(__name__)

Scan = Union[NormalizedScanResult, HistoricalScan]

DEFAULT_TREND_LIMIT = 10


def _as_historical(scan: Scan) -> HistoricalScan:
    if isinstance(scan, HistoricalScan):
        return scan
    return HistoricalScan.from_result(scan)


def _by_cve(scan: HistoricalScan) -> dict[str, NormalizedVulnerability]:
    return {vuln.cve_id: vuln for vuln in scan.vulnerabilities}


def _severity_rank(entry: VulnDiffEntry) -> int:
    return SEVERITY_ORDER.index(entry.severity)


def compare_scan_results(base: Scan, compare: Scan) -> ScanDiffResult:
    """Compare two scans of the same project.

    Args:
        base: The earlier scan
        compare: The later scan

    Returns:
        ScanDiffResult with NEW (only in compare), FIXED (only in base) and
        CHANGED (severity differs) entries, each sorted CRITICAL first, plus
        the count of unchanged CVEs
    """
    base_scan = _as_historical(base)
    compare_scan = _as_historical(compare)
    base_vulns = _by_cve(base_scan)
    compare_vulns = _by_cve(compare_scan)

    new: list[VulnDiffEntry] = []
    fixed: list[VulnDiffEntry] = []
    changed: list[VulnDiffEntry] = []
    unchanged = 0

    for cve_id, current in compare_vulns.items():
        previous = base_vulns.get(cve_id)
        if previous is None:
            new.append(
                VulnDiffEntry(
                    cve_id=cve_id,
                    title=current.title or cve_id,
                    severity=current.severity,
                    status=DiffStatus.NEW,
                )
            )
        elif previous.severity != current.severity:
            changed.append(
                VulnDiffEntry(
                    cve_id=cve_id,
                    title=current.title or cve_id,
                    severity=current.severity,
                    status=DiffStatus.CHANGED,
                    old_severity=previous.severity,
                    new_severity=current.severity,
                )
            )
        else:
            unchanged += 1

    for cve_id, previous in base_vulns.items():
        if cve_id not in compare_vulns:
            fixed.append(
                VulnDiffEntry(
                    cve_id=cve_id,
                    title=previous.title or cve_id,
                    severity=previous.severity,
                    status=DiffStatus.FIXED,
                )
            )

    new.sort(key=_severity_rank)
    fixed.sort(key=_severity_rank)
    changed.sort(key=_severity_rank)

    result = ScanDiffResult(
        base_scan_id=base_scan.scan_id,
        compare_scan_id=compare_scan.scan_id,
        base_scan_date=base_scan.scanned_at,
        compare_scan_date=compare_scan.scanned_at,
        summary=ScanDiffSummary(new=len(new), fixed=len(fixed), changed=len(changed), unchanged=unchanged),
        new_vulnerabilities=new,
        fixed_vulnerabilities=fixed,
        changed_vulnerabilities=changed,
    )
    logger.info("scan_diff.compared", **result.summary.model_dump())
    return result


def get_latest_diff(scans: Sequence[Scan]) -> Optional[ScanDiffResult]:
    """Diff the two most recent scans, or None when there are fewer than two."""
    if len(scans) < 2:
        return None
    ordered = sorted((_as_historical(s) for s in scans), key=lambda s: s.scanned_at)
    return compare_scan_results(ordered[-2], ordered[-1])


def get_vulnerability_trend(scans: Sequence[Scan], limit: int = DEFAULT_TREND_LIMIT) -> VulnerabilityTrend:
    """Per-scan severity counts for the first ``limit`` scans in ascending time order."""
    ordered = sorted((_as_historical(s) for s in scans), key=lambda s: s.scanned_at)[: max(limit, 0)]

    points: list[TrendPoint] = []
    for scan in ordered:
        counts = {"critical": 0, "high": 0, "medium": 0, "low": 0}
        for vuln in scan.vulnerabilities:
            if vuln.severity == Severity.CRITICAL:
                counts["critical"] += 1
            elif vuln.severity == Severity.HIGH:
                counts["high"] += 1
            elif vuln.severity == Severity.MEDIUM:
                counts["medium"] += 1
            else:
                counts["low"] += 1
        points.append(TrendPoint(scan_id=scan.scan_id, date=scan.scanned_at, **counts))

    return VulnerabilityTrend(scans=points)
