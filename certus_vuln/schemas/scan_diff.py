"""Models for scan-to-scan comparison and severity trends."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from certus_vuln.schemas.normalized_vulnerability import Severity


class DiffStatus(str, Enum):
    NEW = "NEW"
    FIXED = "FIXED"
    CHANGED = "CHANGED"
    UNCHANGED = "UNCHANGED"


class VulnDiffEntry(BaseModel):
    cve_id: str
    title: str
    severity: Severity = Field(..., description="Severity in the scan the entry was taken from")
    status: DiffStatus
    old_severity: Optional[Severity] = None
    new_severity: Optional[Severity] = None


class ScanDiffSummary(BaseModel):
    new: int = 0
    fixed: int = 0
    changed: int = 0
    unchanged: int = 0


class ScanDiffResult(BaseModel):
    """Differences between a base scan and a later compare scan, keyed on CVE id."""

    base_scan_id: Optional[str] = None
    compare_scan_id: Optional[str] = None
    base_scan_date: datetime
    compare_scan_date: datetime
    summary: ScanDiffSummary
    new_vulnerabilities: list[VulnDiffEntry] = Field(default_factory=list)
    fixed_vulnerabilities: list[VulnDiffEntry] = Field(default_factory=list)
    changed_vulnerabilities: list[VulnDiffEntry] = Field(default_factory=list)


class TrendPoint(BaseModel):
    scan_id: Optional[str] = None
    date: datetime
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = Field(0, description="LOW and UNKNOWN findings")


class VulnerabilityTrend(BaseModel):
    scans: list[TrendPoint] = Field(default_factory=list)
