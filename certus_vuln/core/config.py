from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from certus_vuln.schemas.conditional import Environment
from certus_vuln.schemas.risk import CriticalityLevel, ExposureLevel, RiskScoreWeights


class CertusVulnSettings(BaseSettings):
    """Configuration for the normalization and policy core.

    All values can be overridden via environment variables. Prefix: ``CERTUS_VULN_``.
    """

    # Logging
    log_level: str = Field(default="INFO")
    log_json_output: bool = Field(default=True)

    # Normalization
    schema_validation_enabled: bool = Field(
        default=True,
        description="Run the advisory structure check before normalizing Trivy payloads.",
    )

    # Conditional policy
    default_environment: Environment = Field(default=Environment.ALL)

    # Risk scoring
    risk_cvss_weight: float = Field(default=1.0)
    risk_exposure_weight: float = Field(default=1.0)
    risk_asset_weight: float = Field(default=1.0)
    risk_exploit_weight: float = Field(default=1.5)
    default_exposure_level: ExposureLevel = Field(default=ExposureLevel.INTERNAL)
    default_criticality_level: CriticalityLevel = Field(default=CriticalityLevel.MEDIUM)

    model_config = SettingsConfigDict(env_prefix="CERTUS_VULN_", env_file=".env", extra="ignore")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    @field_validator("risk_cvss_weight", "risk_exposure_weight", "risk_asset_weight", "risk_exploit_weight")
    @classmethod
    def _positive_weight(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("risk weights must be positive")
        return value

    def risk_weights(self) -> RiskScoreWeights:
        return RiskScoreWeights(
            cvss_weight=self.risk_cvss_weight,
            exposure_weight=self.risk_exposure_weight,
            asset_weight=self.risk_asset_weight,
            exploit_weight=self.risk_exploit_weight,
        )


@lru_cache(maxsize=1)
def get_settings() -> CertusVulnSettings:
    return CertusVulnSettings()
