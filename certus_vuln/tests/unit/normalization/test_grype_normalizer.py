"""Unit tests for the Grype JSON normalizer."""

from datetime import datetime, timezone

import pytest

from certus_vuln.core.exceptions import MalformedInputError
from certus_vuln.normalization.grype import GrypeJsonNormalizer
from certus_vuln.schemas.normalized_vulnerability import ArtifactType, Ecosystem, Severity


class TestGrypeNormalization:
    """Tests for Grype match mapping."""

    def test_cve_from_related_vulnerabilities(self, grype_payload):
        """Test a GHSA match takes its CVE id from relatedVulnerabilities."""
        result = GrypeJsonNormalizer().normalize(grype_payload)
        log4j = result.vulnerabilities[0]

        assert log4j.cve_id == "CVE-2021-44228"
        assert log4j.title == "GHSA-jfh8-c2jp-5v3q"
        assert log4j.id == "CVE-2021-44228-log4j-core-2.14.1"

    def test_cvss_by_version(self, grype_payload):
        """Test v3 and v2 scores are chosen by each cvss entry's version."""
        result = GrypeJsonNormalizer().normalize(grype_payload)
        log4j = result.vulnerabilities[0]

        assert log4j.cvss_v3_score == 10.0
        assert log4j.cvss_v3_vector == "CVSS:3.1/AV:N/AC:L"
        assert log4j.cvss_v2_score == 9.3
        assert log4j.cvss_v2_vector == "AV:N/AC:M/Au:N/C:C/I:C/A:C"

    def test_package_and_fix(self, grype_payload):
        """Test package fields, fix version, ecosystem and description."""
        result = GrypeJsonNormalizer().normalize(grype_payload)
        log4j, libssl = result.vulnerabilities

        assert log4j.severity == Severity.CRITICAL
        assert log4j.package_info.fixed_version == "2.15.0"
        assert log4j.package_info.ecosystem == Ecosystem.MAVEN
        assert log4j.package_info.path == "/app/lib/log4j-core-2.14.1.jar"
        assert log4j.description.startswith("Apache Log4j2")
        assert log4j.metadata.patch_available is True

        assert libssl.cve_id == "CVE-2023-5363"
        assert libssl.severity == Severity.HIGH
        assert libssl.package_info.fixed_version is None
        assert libssl.package_info.ecosystem == Ecosystem.DEBIAN
        assert libssl.metadata.datasources == ["grype"]

    def test_image_source_and_descriptor(self, grype_payload):
        """Test artifact from an image source and timestamp from the descriptor."""
        result = GrypeJsonNormalizer().normalize(grype_payload)

        assert result.scanner.name == "grype"
        assert result.scanner.version == "0.74.0"
        assert result.artifact.name == "registry.example.com/app:1.0"
        assert result.artifact.type == ArtifactType.CONTAINER_IMAGE
        assert result.artifact.digest == "sha256:manifest"
        assert result.artifact.image_id == "sha256:img"
        assert result.scan_metadata.scanned_at == datetime(2024, 5, 21, 10, 0, tzinfo=timezone.utc)

    def test_directory_source(self, grype_payload):
        """Test a directory source uses the target string as artifact name."""
        grype_payload["source"] = {"type": "directory", "target": "/src/project"}

        result = GrypeJsonNormalizer().normalize(grype_payload)

        assert result.artifact.name == "/src/project"
        assert result.artifact.type == ArtifactType.FILESYSTEM
        assert result.artifact.digest is None

    def test_summary(self, grype_payload):
        """Test summary consistency over Grype matches."""
        result = GrypeJsonNormalizer().normalize(grype_payload)

        assert result.summary.total == len(result.vulnerabilities) == 2
        assert result.summary.by_package_type == {"maven": 1, "debian": 1}
        assert result.summary.fixable == 1
        assert sum(result.summary.by_severity.values()) == result.summary.total

    def test_match_without_fields(self, fixed_clock):
        """Test an empty match degrades to defaults."""
        result = GrypeJsonNormalizer(clock=fixed_clock).normalize({"matches": [{}]})
        vuln = result.vulnerabilities[0]

        assert vuln.cve_id == "unknown"
        assert vuln.severity == Severity.UNKNOWN
        assert vuln.package_info.name == "unknown"
        assert result.artifact.name == "unknown"

    @pytest.mark.parametrize("payload", [{}, {"matches": None}, [], None])
    def test_missing_matches_raises(self, payload):
        """Test a payload without a matches array raises MalformedInputError."""
        with pytest.raises(MalformedInputError) as exc_info:
            GrypeJsonNormalizer().normalize(payload)

        assert exc_info.value.error_code == "missing_matches"

    def test_validate(self, grype_payload, make_trivy_payload):
        """Test Grype detection accepts Grype and rejects Trivy."""
        normalizer = GrypeJsonNormalizer()

        assert normalizer.validate(grype_payload)
        assert not normalizer.validate(make_trivy_payload([]))
        assert not normalizer.validate({"matches": []})
