"""Risk scoring models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ExposureLevel(str, Enum):
    INTERNET = "INTERNET"
    DMZ = "DMZ"
    INTERNAL = "INTERNAL"
    ISOLATED = "ISOLATED"


class CriticalityLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RiskLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RiskScoreWeights(BaseModel):
    """Organization-level weighting of the risk formula components."""

    cvss_weight: float = Field(1.0, gt=0)
    exposure_weight: float = Field(1.0, gt=0)
    asset_weight: float = Field(1.0, gt=0)
    exploit_weight: float = Field(1.5, gt=0)


class AssetCriticality(BaseModel):
    """How exposed and how important the scanned project's asset is."""

    criticality_level: CriticalityLevel = CriticalityLevel.MEDIUM
    exposure_level: ExposureLevel = ExposureLevel.INTERNAL
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class RiskScoreInput(BaseModel):
    cve_id: str
    cvss_score: float = Field(..., ge=0, le=10)
    severity: Optional[str] = None
    exploit_available: bool = False


class RiskFactorBreakdown(BaseModel):
    cvss_component: float
    exposure_component: float
    asset_component: float
    exploit_component: float


class RiskScoreResult(BaseModel):
    cve_id: str
    base_score: float
    adjusted_score: float = Field(..., description="Rounded to two decimals, capped at 10")
    factor_breakdown: RiskFactorBreakdown
    risk_level: RiskLevel
