"""Contextual risk scoring.

Adjusts a finding's CVSS score by how exposed and how critical the affected
asset is and whether an exploit is available:

    adjusted = min(10, cvss_component * exposure_component * asset_component * exploit_component / 10)

where each component is a level multiplier times its organization weight.
Reported scores are rounded half-up to two decimals; the risk level is banded
on the unrounded adjusted score.
"""

import math
from collections.abc import Iterable, Sequence
from typing import Optional

import structlog

from certus_vuln.core.config import get_settings
from certus_vuln.schemas.normalized_vulnerability import NormalizedVulnerability
from certus_vuln.schemas.risk import (
    AssetCriticality,
    CriticalityLevel,
    ExposureLevel,
    RiskFactorBreakdown,
    RiskLevel,
    RiskScoreInput,
    RiskScoreResult,
    RiskScoreWeights,
)

logger = structlog.get_logger(__name__)

EXPOSURE_MULTIPLIERS: dict[ExposureLevel, float] = {
    ExposureLevel.INTERNET: 2.0,
    ExposureLevel.DMZ: 1.5,
    ExposureLevel.INTERNAL: 1.0,
    ExposureLevel.ISOLATED: 0.5,
}

ASSET_MULTIPLIERS: dict[CriticalityLevel, float] = {
    CriticalityLevel.CRITICAL: 2.0,
    CriticalityLevel.HIGH: 1.5,
    CriticalityLevel.MEDIUM: 1.0,
    CriticalityLevel.LOW: 0.5,
}

MAX_SCORE = 10.0


def round_half_up(value: float, digits: int = 2) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def risk_level(score: float) -> RiskLevel:
    """Band an adjusted score: >= 9 CRITICAL, >= 7 HIGH, >= 4 MEDIUM, else LOW."""
    if score >= 9.0:
        return RiskLevel.CRITICAL
    if score >= 7.0:
        return RiskLevel.HIGH
    if score >= 4.0:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class RiskScoreCalculator:
    """Computes adjusted risk scores with organization weights.

    Args:
        weights: Component weights; defaults to the configured weights
        default_asset: Asset record used when a call supplies none; defaults to
            the configured exposure and criticality levels
    """

    def __init__(
        self,
        weights: Optional[RiskScoreWeights] = None,
        default_asset: Optional[AssetCriticality] = None,
    ) -> None:
        settings = get_settings()
        self.weights = weights or settings.risk_weights()
        self.default_asset = default_asset or AssetCriticality(
            criticality_level=settings.default_criticality_level,
            exposure_level=settings.default_exposure_level,
        )

    def calculate(self, score_input: RiskScoreInput, asset: Optional[AssetCriticality] = None) -> RiskScoreResult:
        """Calculate the adjusted risk score for one finding.

        Args:
            score_input: CVE id, CVSS score and exploit availability
            asset: Asset criticality of the scanned project, if known

        Returns:
            RiskScoreResult with the rounded score, breakdown and level
        """
        asset = asset or self.default_asset
        weights = self.weights

        cvss_component = score_input.cvss_score * weights.cvss_weight
        exposure_component = EXPOSURE_MULTIPLIERS.get(asset.exposure_level, 1.0) * weights.exposure_weight
        asset_component = ASSET_MULTIPLIERS.get(asset.criticality_level, 1.0) * weights.asset_weight
        exploit_component = weights.exploit_weight if score_input.exploit_available else 1.0

        adjusted = min(
            MAX_SCORE,
            cvss_component * exposure_component * asset_component * exploit_component / 10,
        )

        result = RiskScoreResult(
            cve_id=score_input.cve_id,
            base_score=score_input.cvss_score,
            adjusted_score=round_half_up(adjusted),
            factor_breakdown=RiskFactorBreakdown(
                cvss_component=round_half_up(cvss_component),
                exposure_component=round_half_up(exposure_component),
                asset_component=round_half_up(asset_component),
                exploit_component=round_half_up(exploit_component),
            ),
            risk_level=risk_level(adjusted),
        )
        logger.debug(
            "risk_score.calculated",
            cve_id=result.cve_id,
            base_score=result.base_score,
            adjusted_score=result.adjusted_score,
            risk_level=result.risk_level.value,
        )
        return result

    def calculate_bulk(
        self,
        inputs: Iterable[RiskScoreInput],
        asset: Optional[AssetCriticality] = None,
    ) -> list[RiskScoreResult]:
        """Score many findings; highest adjusted score first."""
        results = [self.calculate(score_input, asset) for score_input in inputs]
        return sorted(results, key=lambda r: r.adjusted_score, reverse=True)

    def score_findings(
        self,
        findings: Sequence[NormalizedVulnerability],
        asset: Optional[AssetCriticality] = None,
    ) -> list[RiskScoreResult]:
        """Score canonical findings (CVSS v3, else v2, else 0.0)."""
        return self.calculate_bulk((input_from_finding(f) for f in findings), asset)


def input_from_finding(finding: NormalizedVulnerability) -> RiskScoreInput:
    score = finding.cvss_score
    return RiskScoreInput(
        cve_id=finding.cve_id,
        cvss_score=score if score is not None else 0.0,
        severity=finding.severity.value,
        exploit_available=finding.metadata.exploit_available,
    )


def calculate_risk_score(
    score_input: RiskScoreInput,
    weights: Optional[RiskScoreWeights] = None,
    asset: Optional[AssetCriticality] = None,
) -> RiskScoreResult:
    """Calculate one adjusted risk score."""
    return RiskScoreCalculator(weights=weights).calculate(score_input, asset)


def calculate_bulk_risk_scores(
    inputs: Iterable[RiskScoreInput],
    weights: Optional[RiskScoreWeights] = None,
    asset: Optional[AssetCriticality] = None,
) -> list[RiskScoreResult]:
    """Calculate adjusted risk scores sorted by adjusted score, descending."""
    return RiskScoreCalculator(weights=weights).calculate_bulk(inputs, asset)


def score_findings(
    findings: Sequence[NormalizedVulnerability],
    asset: Optional[AssetCriticality] = None,
    weights: Optional[RiskScoreWeights] = None,
) -> list[RiskScoreResult]:
    """Derive risk inputs from canonical findings and score them."""
    return RiskScoreCalculator(weights=weights).score_findings(findings, asset)
