"""
Shared pytest configuration and fixtures for Certus-Vuln tests.

This module provides reusable fixtures for:
- Raw scanner payloads (Trivy JSON, Trivy SARIF, Grype, Snyk)
- Canonical finding builders
- A fixed clock for deterministic timestamps
- Settings cache isolation
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest

from certus_vuln.core.config import get_settings
from certus_vuln.schemas.normalized_vulnerability import (
    Ecosystem,
    NormalizedVulnerability,
    PackageInfo,
    Severity,
    VulnerabilityMetadata,
    finding_key,
)

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Settings / Clock Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Clear the cached settings so env overrides apply per test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fixed_now() -> datetime:
    """Deterministic 'now' used by clocks and evaluators."""
    return FIXED_NOW


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock that always returns FIXED_NOW."""
    return lambda: FIXED_NOW


# ============================================================================
# Canonical Finding Fixtures
# ============================================================================


@pytest.fixture
def make_finding() -> Callable[..., NormalizedVulnerability]:
    """Factory for canonical findings with sensible defaults."""

    def _make(
        cve_id: str = "CVE-2024-0001",
        severity: Severity = Severity.HIGH,
        package: str = "lodash",
        version: str = "4.17.15",
        fixed_version: Optional[str] = None,
        cvss_v3_score: Optional[float] = None,
        cvss_v2_score: Optional[float] = None,
        exploit_available: bool = False,
    ) -> NormalizedVulnerability:
        return NormalizedVulnerability(
            id=finding_key(cve_id, package, version),
            cve_id=cve_id,
            title=f"{cve_id} in {package}",
            severity=severity,
            cvss_v3_score=cvss_v3_score,
            cvss_v2_score=cvss_v2_score,
            package_info=PackageInfo(
                name=package,
                installed_version=version,
                fixed_version=fixed_version,
                ecosystem=Ecosystem.NPM,
            ),
            metadata=VulnerabilityMetadata(datasources=["test"], exploit_available=exploit_available),
        )

    return _make


# ============================================================================
# Raw Payload Fixtures
# ============================================================================


@pytest.fixture
def trivy_vulnerability() -> dict[str, Any]:
    """Single Trivy vulnerability entry (the end-to-end example)."""
    return {
        "VulnerabilityID": "CVE-2024-0001",
        "Severity": "CRITICAL",
        "PkgName": "lodash",
        "InstalledVersion": "4.17.15",
        "FixedVersion": "4.17.21",
    }


@pytest.fixture
def make_trivy_payload() -> Callable[..., dict[str, Any]]:
    """Factory for Trivy JSON reports with one result target."""

    def _make(
        vulnerabilities: Optional[list[Any]] = None,
        target_type: str = "npm",
        **extra: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "SchemaVersion": 2,
            "ArtifactName": "registry.example.com/app:1.0",
            "ArtifactType": "container_image",
            "Results": [
                {
                    "Target": "app/package-lock.json",
                    "Class": "lang-pkgs",
                    "Type": target_type,
                    "Vulnerabilities": vulnerabilities or [],
                }
            ],
        }
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def trivy_full_payload() -> dict[str, Any]:
    """Trivy report with metadata, CVSS blocks, layers and two targets."""
    return {
        "SchemaVersion": 2,
        "CreatedAt": "2024-05-20T08:30:00.123456789Z",
        "ArtifactName": "registry.example.com/app:1.0",
        "ArtifactType": "container_image",
        "Metadata": {
            "ImageID": "sha256:abc123",
            "ReportVersion": "0.50.1",
            "ScanOptions": {"Scanners": ["vuln"]},
        },
        "Results": [
            {
                "Target": "registry.example.com/app:1.0 (debian 12.5)",
                "Class": "os-pkgs",
                "Type": "debian",
                "Vulnerabilities": [
                    {
                        "VulnerabilityID": "CVE-2023-4911",
                        "PkgName": "libc6",
                        "InstalledVersion": "2.36-9",
                        "FixedVersion": "2.36-9+deb12u3",
                        "Severity": "HIGH",
                        "Title": "glibc: buffer overflow in ld.so",
                        "Description": "A buffer overflow was discovered in the dynamic loader.",
                        "CweIDs": ["CWE-122", "CWE-787", "CWE-122"],
                        "References": ["https://nvd.nist.gov/vuln/detail/CVE-2023-4911"],
                        "CVSS": {
                            "nvd": {"V3Score": 7.8, "V3Vector": "CVSS:3.1/AV:L/AC:L/PR:L/UI:N/S:U/C:H/I:H/A:H"},
                            "redhat": {"V3Score": 7.0, "V2Score": 6.5, "V2Vector": "AV:L/AC:L/Au:N/C:C/I:C/A:C"},
                        },
                        "Layer": {"Digest": "sha256:layer1", "DiffID": "sha256:diff1"},
                        "DataSource": {"ID": "debian", "Name": "Debian Security Tracker"},
                        "PublishedDate": "2023-10-03T18:15:00Z",
                        "LastModifiedDate": "2024-01-10T12:00:00Z",
                    }
                ],
            },
            {
                "Target": "app/requirements.txt",
                "Class": "lang-pkgs",
                "Type": "pip",
                "Vulnerabilities": [
                    {
                        "VulnerabilityID": "CVE-2024-1135",
                        "PkgName": "gunicorn",
                        "InstalledVersion": "21.2.0",
                        "Severity": "medium",
                        "CVSS": {"redhat": {"V3Score": 5.3}},
                    },
                    {
                        "VulnerabilityID": "CVE-2024-9999",
                        "PkgName": "example",
                        "InstalledVersion": "1.0",
                        "Severity": "bogus",
                    },
                ],
            },
        ],
    }


@pytest.fixture
def sarif_payload() -> dict[str, Any]:
    """Trivy SARIF log with one structured and one message-only result."""
    return {
        "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "Trivy",
                        "version": "0.50.1",
                        "rules": [
                            {
                                "id": "CVE-2022-0778",
                                "name": "OsPackageVulnerability",
                                "shortDescription": {"text": "openssl: infinite loop in BN_mod_sqrt()"},
                                "fullDescription": {"text": "The BN_mod_sqrt() function can loop forever."},
                                "helpUri": "https://avd.aquasec.com/nvd/cve-2022-0778",
                                "properties": {
                                    "security-severity": "7.5",
                                    "cvssV3_score": 7.5,
                                    "cwe_ids": ["CWE-835"],
                                    "fixedVersion": "1.1.1n",
                                },
                            },
                            {
                                "id": "CVE-2023-0001",
                                "properties": {"security-severity": "9.8", "pkgName": "zlib", "pkgVersion": "1.2.11"},
                            },
                        ],
                    }
                },
                "originalUriBaseIds": {"ROOTPATH": {"uri": "file:///workspace/"}},
                "results": [
                    {
                        "ruleId": "CVE-2022-0778",
                        "message": {"text": "Package: openssl Version: 1.1.1\nVulnerability CVE-2022-0778"},
                        "locations": [
                            {"physicalLocation": {"artifactLocation": {"uri": "usr/lib/libssl.so"}}}
                        ],
                    },
                    {
                        "ruleId": "CVE-2023-0001",
                        "message": {"text": "zlib is vulnerable"},
                    },
                ],
            }
        ],
    }


@pytest.fixture
def grype_payload() -> dict[str, Any]:
    """Grype report scanning a container image."""
    return {
        "matches": [
            {
                "vulnerability": {
                    "id": "GHSA-jfh8-c2jp-5v3q",
                    "dataSource": "https://github.com/advisories/GHSA-jfh8-c2jp-5v3q",
                    "severity": "Critical",
                    "urls": ["https://github.com/advisories/GHSA-jfh8-c2jp-5v3q"],
                    "fix": {"versions": ["2.15.0"], "state": "fixed"},
                    "cvss": [
                        {"version": "3.1", "vector": "CVSS:3.1/AV:N/AC:L", "metrics": {"baseScore": 10.0}},
                    ],
                },
                "relatedVulnerabilities": [
                    {
                        "id": "CVE-2021-44228",
                        "description": "Apache Log4j2 JNDI features do not protect against attacker controlled LDAP.",
                        "cvss": [
                            {"version": "2.0", "vector": "AV:N/AC:M/Au:N/C:C/I:C/A:C", "metrics": {"baseScore": 9.3}},
                        ],
                    }
                ],
                "artifact": {
                    "name": "log4j-core",
                    "version": "2.14.1",
                    "type": "java-archive",
                    "locations": [{"path": "/app/lib/log4j-core-2.14.1.jar"}],
                },
            },
            {
                "vulnerability": {
                    "id": "CVE-2023-5363",
                    "severity": "High",
                    "fix": {"versions": [], "state": "not-fixed"},
                },
                "artifact": {"name": "libssl3", "version": "3.0.11-1", "type": "deb"},
            },
        ],
        "source": {
            "type": "image",
            "target": {
                "userInput": "registry.example.com/app:1.0",
                "imageID": "sha256:img",
                "manifestDigest": "sha256:manifest",
            },
        },
        "descriptor": {
            "name": "grype",
            "version": "0.74.0",
            "timestamp": "2024-05-21T10:00:00Z",
        },
    }


@pytest.fixture
def snyk_payload() -> dict[str, Any]:
    """Snyk test report for one npm project."""
    return {
        "ok": False,
        "projectName": "web-frontend",
        "packageManager": "npm",
        "vulnerabilities": [
            {
                "id": "SNYK-JS-LODASH-567746",
                "title": "Prototype Pollution",
                "description": "lodash is vulnerable to prototype pollution.",
                "severity": "high",
                "cvssScore": 7.4,
                "CVSSv3": "CVSS:3.1/AV:N/AC:H/PR:N/UI:N/S:U/C:H/I:H/A:N",
                "identifiers": {"CVE": ["CVE-2020-8203"], "CWE": ["CWE-400", "CWE-400"]},
                "references": [{"title": "GitHub PR", "url": "https://github.com/lodash/lodash/pull/4759"}],
                "packageName": "lodash",
                "version": "4.17.15",
                "fixedIn": ["4.17.19"],
                "from": ["web-frontend@1.0.0", "lodash@4.17.15"],
                "exploit": "Proof of Concept",
                "publicationTime": "2020-07-15T17:10:00Z",
            },
            {
                "id": "SNYK-JS-MINIMIST-559764",
                "title": "Prototype Pollution",
                "severity": "medium",
                "identifiers": {"CVE": [], "CWE": []},
                "packageName": "minimist",
                "version": "0.0.8",
                "packageManager": "yarn",
                "fixedIn": [],
                "from": ["web-frontend@1.0.0", "mkdirp@0.5.1", "minimist@0.0.8"],
                "exploit": "Not Defined",
            },
        ],
    }
