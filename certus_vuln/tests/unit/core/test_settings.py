"""Unit tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from certus_vuln.core.config import CertusVulnSettings, get_settings
from certus_vuln.schemas.conditional import Environment
from certus_vuln.schemas.risk import CriticalityLevel, ExposureLevel


class TestSettings:
    """Tests for CertusVulnSettings."""

    def test_defaults(self, monkeypatch):
        """Test documented defaults apply without environment overrides."""
        for name in ("LOG_LEVEL", "DEFAULT_ENVIRONMENT", "RISK_EXPLOIT_WEIGHT", "SCHEMA_VALIDATION_ENABLED"):
            monkeypatch.delenv(f"CERTUS_VULN_{name}", raising=False)

        settings = CertusVulnSettings(_env_file=None)

        assert settings.log_level == "INFO"
        assert settings.log_json_output is True
        assert settings.schema_validation_enabled is True
        assert settings.default_environment == Environment.ALL
        assert settings.default_exposure_level == ExposureLevel.INTERNAL
        assert settings.default_criticality_level == CriticalityLevel.MEDIUM

    def test_env_override(self, monkeypatch):
        """Test CERTUS_VULN_ prefixed variables override defaults."""
        monkeypatch.setenv("CERTUS_VULN_LOG_LEVEL", "debug")
        monkeypatch.setenv("CERTUS_VULN_DEFAULT_ENVIRONMENT", "PRODUCTION")

        settings = get_settings()

        assert settings.log_level == "DEBUG"
        assert settings.default_environment == Environment.PRODUCTION

    def test_invalid_log_level(self):
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            CertusVulnSettings(_env_file=None, log_level="LOUD")

    @pytest.mark.parametrize("weight", [0, -1.0])
    def test_non_positive_weight_rejected(self, weight):
        """Test risk weights must be positive."""
        with pytest.raises(ValidationError):
            CertusVulnSettings(_env_file=None, risk_exploit_weight=weight)

    def test_risk_weights(self, monkeypatch):
        """Test weights are exposed as a RiskScoreWeights model."""
        monkeypatch.setenv("CERTUS_VULN_RISK_CVSS_WEIGHT", "2.0")

        weights = get_settings().risk_weights()

        assert weights.cvss_weight == 2.0
        assert weights.exposure_weight == 1.0
        assert weights.asset_weight == 1.0
        assert weights.exploit_weight == 1.5

    def test_settings_cached(self):
        """Test get_settings returns the cached instance."""
        assert get_settings() is get_settings()
