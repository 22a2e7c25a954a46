"""Models for time-aware (new vs. existing) policy evaluation."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from certus_vuln.core.clock import ensure_utc
from certus_vuln.schemas.normalized_vulnerability import NormalizedScanResult, NormalizedVulnerability, Severity


class Environment(str, Enum):
    DEVELOPMENT = "DEVELOPMENT"
    STAGING = "STAGING"
    PRODUCTION = "PRODUCTION"
    ALL = "ALL"


class ConditionalAction(str, Enum):
    BLOCK = "BLOCK"
    WARN = "WARN"
    INFO = "INFO"
    ALLOW = "ALLOW"


class HistoricalScan(BaseModel):
    """Findings of one earlier scan of the same project."""

    scan_id: Optional[str] = Field(None, description="Identifier of the earlier scan")
    scanned_at: datetime = Field(..., description="When the earlier scan ran")
    vulnerabilities: list[NormalizedVulnerability] = Field(default_factory=list)

    @field_validator("scanned_at")
    @classmethod
    def _scanned_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_result(cls, result: NormalizedScanResult, scan_id: Optional[str] = None) -> "HistoricalScan":
        return cls(
            scan_id=scan_id,
            scanned_at=result.scan_metadata.scanned_at,
            vulnerabilities=list(result.vulnerabilities),
        )


class ConditionalVulnerability(BaseModel):
    """Classification and decision for one current finding."""

    id: str
    cve_id: str
    severity: Severity
    is_new: bool
    first_seen_at: datetime = Field(..., description="Current scan time for new findings")
    days_since_first_seen: int = Field(0, description="Whole days between first sighting and this scan")
    action: ConditionalAction
    reason: str


class ConditionalPolicyResult(BaseModel):
    environment: Environment
    total_vulnerabilities: int
    new_vulnerabilities: list[ConditionalVulnerability] = Field(default_factory=list)
    existing_vulnerabilities: list[ConditionalVulnerability] = Field(default_factory=list)
    blocked_count: int = 0
    warned_count: int = 0
    allowed_count: int = Field(0, description="INFO and ALLOW decisions")
    allowed: bool = True
    summary: str = ""


class NewVulnerabilityCount(BaseModel):
    total: int
    new: int
    existing: int
