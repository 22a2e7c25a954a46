"""Severity, ecosystem and artifact-type mapping for scanner output.

Normalizes scanner vocabularies to the canonical enumerations:
- Severity: CRITICAL, HIGH, MEDIUM, LOW, UNKNOWN
- Ecosystem: npm, pip, maven, ... , other
- ArtifactType: container_image, filesystem, ... , other

Every mapping is a fixed lookup table. Lookups are case-insensitive, total and
never raise: anything not in a table maps to UNKNOWN / other.
"""

import math
from typing import Any

import structlog

from certus_vuln.schemas.normalized_vulnerability import ArtifactType, Ecosystem, Severity

logger = structlog.get_logger(__name__)

SEVERITY_MAPPINGS: dict[str, Severity] = {
    "CRITICAL": Severity.CRITICAL,
    "HIGH": Severity.HIGH,
    "MEDIUM": Severity.MEDIUM,
    "LOW": Severity.LOW,
}

# Package-manager, language and OS identifiers as emitted by Trivy (Type/Class),
# Grype (artifact.type) and Snyk (packageManager).
ECOSYSTEM_MAPPINGS: dict[str, Ecosystem] = {
    # JavaScript
    "npm": Ecosystem.NPM,
    "node-pkg": Ecosystem.NPM,
    "yarn": Ecosystem.NPM,
    "pnpm": Ecosystem.NPM,
    # Python
    "pip": Ecosystem.PIP,
    "pipenv": Ecosystem.PIP,
    "poetry": Ecosystem.PIP,
    "python": Ecosystem.PIP,
    "python-pkg": Ecosystem.PIP,
    # JVM
    "maven": Ecosystem.MAVEN,
    "jar": Ecosystem.MAVEN,
    "pom": Ecosystem.MAVEN,
    "java-archive": Ecosystem.MAVEN,
    "gradle": Ecosystem.GRADLE,
    # .NET
    "nuget": Ecosystem.NUGET,
    "dotnet-core": Ecosystem.NUGET,
    "dotnet": Ecosystem.NUGET,
    # Go
    "go": Ecosystem.GO,
    "gomod": Ecosystem.GO,
    "gobinary": Ecosystem.GO,
    "go-module": Ecosystem.GO,
    "golang": Ecosystem.GO,
    "gomodules": Ecosystem.GO,
    # Rust
    "cargo": Ecosystem.CARGO,
    "rust": Ecosystem.CARGO,
    "rust-crate": Ecosystem.CARGO,
    "rustbinary": Ecosystem.CARGO,
    # PHP
    "composer": Ecosystem.COMPOSER,
    "php-composer": Ecosystem.COMPOSER,
    # Ruby
    "gem": Ecosystem.GEM,
    "gemspec": Ecosystem.GEM,
    "bundler": Ecosystem.GEM,
    "rubygems": Ecosystem.GEM,
    # OS packages
    "alpine": Ecosystem.ALPINE,
    "apk": Ecosystem.ALPINE,
    "debian": Ecosystem.DEBIAN,
    "dpkg": Ecosystem.DEBIAN,
    "deb": Ecosystem.DEBIAN,
    "ubuntu": Ecosystem.UBUNTU,
    "redhat": Ecosystem.REDHAT,
    "rpm": Ecosystem.REDHAT,
    "centos": Ecosystem.CENTOS,
    "amazon": Ecosystem.AMAZON_LINUX,
    "amazon-linux": Ecosystem.AMAZON_LINUX,
    "oracle": Ecosystem.ORACLE_LINUX,
    "oracle-linux": Ecosystem.ORACLE_LINUX,
    "photon": Ecosystem.PHOTON,
    "suse": Ecosystem.SUSE,
    "sles": Ecosystem.SUSE,
    "opensuse": Ecosystem.SUSE,
    "opensuse.leap": Ecosystem.SUSE,
}

ARTIFACT_TYPE_MAPPINGS: dict[str, ArtifactType] = {
    "container_image": ArtifactType.CONTAINER_IMAGE,
    "image": ArtifactType.CONTAINER_IMAGE,
    "filesystem": ArtifactType.FILESYSTEM,
    "fs": ArtifactType.FILESYSTEM,
    "directory": ArtifactType.FILESYSTEM,
    "dir": ArtifactType.FILESYSTEM,
    "repository": ArtifactType.REPOSITORY,
    "repo": ArtifactType.REPOSITORY,
    "vm": ArtifactType.VM_IMAGE,
    "vm_image": ArtifactType.VM_IMAGE,
    "rootfs": ArtifactType.ROOTFS,
    "sbom": ArtifactType.SBOM,
    "cyclonedx": ArtifactType.SBOM,
    "spdx": ArtifactType.SBOM,
}


def map_severity(raw: Any) -> Severity:
    """Map a scanner severity label to the canonical Severity.

    Args:
        raw: Severity label from the payload (any type, may be None)

    Returns:
        CRITICAL, HIGH, MEDIUM or LOW on a case-insensitive match, else UNKNOWN
    """
    if not isinstance(raw, str):
        return Severity.UNKNOWN

    severity = SEVERITY_MAPPINGS.get(raw.strip().upper())
    if severity is None:
        if raw.strip():
            logger.debug("severity_mapping.unknown_level", input_severity=raw)
        return Severity.UNKNOWN
    return severity


def map_sarif_severity(score: Any) -> Severity:
    """Band a numeric CVSS-style score (number or numeric string).

    >= 9.0 CRITICAL, >= 7.0 HIGH, >= 4.0 MEDIUM, > 0 LOW, otherwise UNKNOWN.
    """
    if score is None or isinstance(score, bool):
        return Severity.UNKNOWN
    try:
        value = float(score)
    except (TypeError, ValueError):
        logger.debug("severity_mapping.unparseable_score", input_score=score)
        return Severity.UNKNOWN
    if math.isnan(value):
        return Severity.UNKNOWN

    if value >= 9.0:
        return Severity.CRITICAL
    if value >= 7.0:
        return Severity.HIGH
    if value >= 4.0:
        return Severity.MEDIUM
    if value > 0:
        return Severity.LOW
    return Severity.UNKNOWN


def map_ecosystem(raw_type: Any) -> Ecosystem:
    """Look up the ecosystem for a package-manager or OS identifier."""
    if not isinstance(raw_type, str):
        return Ecosystem.OTHER
    return ECOSYSTEM_MAPPINGS.get(raw_type.strip().lower(), Ecosystem.OTHER)


def map_artifact_type(raw_type: Any) -> ArtifactType:
    """Look up the artifact classification for a scanner artifact type."""
    if not isinstance(raw_type, str):
        return ArtifactType.OTHER
    return ARTIFACT_TYPE_MAPPINGS.get(raw_type.strip().lower(), ArtifactType.OTHER)


def get_ecosystem_mappings() -> dict[str, Ecosystem]:
    """Get the ecosystem lookup table.

    Returns:
        Dictionary mapping raw identifiers to ecosystems (copy)
    """
    return ECOSYSTEM_MAPPINGS.copy()
