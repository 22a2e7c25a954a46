"""Canonical vulnerability data models.

This module defines NormalizedScanResult, the single internal representation
every supported scanner format (Trivy JSON, Trivy SARIF, Grype, Snyk) is
normalized into. Policy evaluation, persistence and reporting all consume this
shape and never look at raw scanner payloads.

A NormalizedScanResult is produced once per uploaded payload and is immutable
afterwards, so both the result and its findings are frozen models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from certus_vuln.core.clock import ensure_utc

CURRENT_SCHEMA_VERSION = "1.0.0"


class Severity(str, Enum):
    """Canonical severity levels, highest first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"


SEVERITY_ORDER: tuple[Severity, ...] = tuple(Severity)


class Ecosystem(str, Enum):
    """Package-manager or OS-distribution classification of an affected package."""

    NPM = "npm"
    PIP = "pip"
    MAVEN = "maven"
    GRADLE = "gradle"
    NUGET = "nuget"
    GO = "go"
    CARGO = "cargo"
    COMPOSER = "composer"
    GEM = "gem"
    ALPINE = "alpine"
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    REDHAT = "redhat"
    CENTOS = "centos"
    AMAZON_LINUX = "amazon-linux"
    ORACLE_LINUX = "oracle-linux"
    PHOTON = "photon"
    SUSE = "suse"
    OTHER = "other"


class ArtifactType(str, Enum):
    """What kind of artifact a scan looked at."""

    CONTAINER_IMAGE = "container_image"
    FILESYSTEM = "filesystem"
    REPOSITORY = "repository"
    VM_IMAGE = "vm_image"
    ROOTFS = "rootfs"
    SBOM = "sbom"
    OTHER = "other"


class NormalizationFormat(str, Enum):
    """Raw scanner formats the ingestion pipeline can be asked to normalize."""

    TRIVY_JSON = "TRIVY_JSON"
    TRIVY_SARIF = "TRIVY_SARIF"
    GRYPE_JSON = "GRYPE_JSON"
    SNYK_JSON = "SNYK_JSON"
    CUSTOM = "CUSTOM"


def finding_key(cve_id: str, package_name: str, installed_version: str) -> str:
    """Composite key used to deduplicate findings across scans."""
    return f"{cve_id}-{package_name}-{installed_version}"


class PackageInfo(BaseModel):
    """The package a finding was reported against."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Package name ('unknown' when the scanner omits it)")
    installed_version: str = Field(..., description="Installed version")
    fixed_version: Optional[str] = Field(None, description="First version carrying a fix")
    ecosystem: Ecosystem = Field(Ecosystem.OTHER, description="Package ecosystem")
    path: Optional[str] = Field(None, description="Lock file, binary or dependency path")


class LayerInfo(BaseModel):
    """Container image layer that introduced the package."""

    model_config = ConfigDict(frozen=True)

    digest: Optional[str] = Field(None, description="Layer digest")
    diff_id: Optional[str] = Field(None, description="Layer diff ID")
    created_by: Optional[str] = Field(None, description="Dockerfile instruction that created the layer")


class VulnerabilityMetadata(BaseModel):
    """Provenance and exploitability flags.

    ``patch_available`` is derived from the owning finding's fixed version and
    is overwritten whenever a NormalizedVulnerability is built.
    """

    model_config = ConfigDict(frozen=True)

    datasources: list[str] = Field(default_factory=list, description="Upstream advisory sources")
    exploit_available: bool = Field(False, description="A public exploit is known")
    exploit_maturity: Optional[str] = Field(None, description="Scanner's qualitative exploit indicator")
    patch_available: bool = Field(False, description="Derived: fixed_version is present")


class NormalizedVulnerability(BaseModel):
    """One (CVE, package, installed version) occurrence within one scan."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Composite key: CVE x package name x installed version")
    cve_id: str = Field(..., description="CVE or advisory identifier")
    title: str = Field(..., description="Short title")
    description: str = Field("", description="Long description")
    severity: Severity = Field(Severity.UNKNOWN, description="Canonical severity")
    cvss_v2_score: Optional[float] = Field(None, description="CVSS v2 base score")
    cvss_v2_vector: Optional[str] = Field(None, description="CVSS v2 vector")
    cvss_v3_score: Optional[float] = Field(None, description="CVSS v3 base score")
    cvss_v3_vector: Optional[str] = Field(None, description="CVSS v3 vector")
    cwe_ids: list[str] = Field(default_factory=list, description="CWE identifiers, de-duplicated")
    references: list[str] = Field(default_factory=list, description="Reference URLs in source order")
    package_info: PackageInfo = Field(..., description="Affected package")
    layer_info: Optional[LayerInfo] = Field(None, description="Image layer (container scans only)")
    published_at: Optional[datetime] = Field(None, description="Upstream CVE publication time")
    last_modified_at: Optional[datetime] = Field(None, description="Upstream CVE last modification time")
    metadata: VulnerabilityMetadata = Field(default_factory=VulnerabilityMetadata)

    @model_validator(mode="before")
    @classmethod
    def _derive_patch_available(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        package = data.get("package_info")
        if isinstance(package, PackageInfo):
            fixed_version = package.fixed_version
        elif isinstance(package, dict):
            fixed_version = package.get("fixed_version")
        else:
            return data

        metadata = data.get("metadata")
        if isinstance(metadata, VulnerabilityMetadata):
            metadata = metadata.model_dump()
        metadata = dict(metadata or {})
        metadata["patch_available"] = bool(fixed_version)
        return {**data, "metadata": metadata}

    @property
    def cvss_score(self) -> Optional[float]:
        """Preferred CVSS score: v3 over v2."""
        if self.cvss_v3_score is not None:
            return self.cvss_v3_score
        return self.cvss_v2_score


class ScannerInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Scanner name")
    version: str = Field("unknown", description="Scanner version")
    original_schema_version: Optional[str] = Field(None, description="Schema version of the raw payload")


class ArtifactInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field("unknown", description="Scanned artifact name")
    type: ArtifactType = Field(ArtifactType.OTHER, description="Artifact classification")
    digest: Optional[str] = Field(None, description="Artifact digest")
    image_id: Optional[str] = Field(None, description="Container image ID")


class ScanMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    scanned_at: datetime = Field(..., description="When the scan was performed or ingested")
    duration: Optional[float] = Field(None, description="Scan duration in seconds")
    config: Optional[dict[str, Any]] = Field(None, description="Scanner options echoed in the payload")

    @field_validator("scanned_at")
    @classmethod
    def _scanned_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ScanSummary(BaseModel):
    """Aggregate counts. ``by_severity`` always carries all five severities."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(0, description="Number of findings")
    by_severity: dict[str, int] = Field(default_factory=lambda: {s.value: 0 for s in Severity})
    by_package_type: dict[str, int] = Field(default_factory=dict)
    fixable: int = Field(0, description="Findings with a fixed version")


class NormalizedScanResult(BaseModel):
    """Canonical output of one normalization pass.

    Attributes:
        schema_version: Internal canonical schema version
        scanner: Which scanner produced the payload
        artifact: What was scanned
        scan_metadata: When and how the scan ran
        vulnerabilities: Findings in the order the scanner reported them
        summary: Aggregate counts consistent with ``vulnerabilities``
    """

    model_config = ConfigDict(frozen=True)

    schema_version: str = Field(CURRENT_SCHEMA_VERSION, description="Canonical schema version")
    scanner: ScannerInfo
    artifact: ArtifactInfo
    scan_metadata: ScanMetadata
    vulnerabilities: list[NormalizedVulnerability] = Field(default_factory=list)
    summary: ScanSummary = Field(default_factory=ScanSummary)
