"""Registry of known raw scanner schema versions.

Tracks which Trivy JSON schema versions the normalizers understand, reports
compatibility for unknown versions and runs an advisory structure check on raw
payloads. Nothing here ever blocks normalization: the results only annotate how
much confidence to place in the canonical output.
"""

import re
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

DEFAULT_SCHEMA_VERSION = "2"


class SchemaMapping(BaseModel):
    """What the normalizer assumes about one raw schema version."""

    schema_version: str = Field(..., description="Raw payload schema version")
    supported_scanner_versions: list[str] = Field(default_factory=list)
    cvss_sources: tuple[str, ...] = Field(
        ("nvd", "redhat"),
        description="CVSS vendor namespaces in precedence order",
    )
    description: Optional[str] = None


class SchemaCompatibility(BaseModel):
    version: str
    is_supported: bool
    recommended_version: Optional[str] = None
    breaking_changes: list[str] = Field(default_factory=list)


class StructureValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# Latest first: unknown versions are pointed at the head of this list.
TRIVY_SCHEMA_MAPPINGS: list[SchemaMapping] = [
    SchemaMapping(
        schema_version="2",
        supported_scanner_versions=["0.20", "0.30", "0.40", "0.45", "0.48", "0.50", "0.55"],
        cvss_sources=("nvd", "redhat"),
        description="Trivy JSON report with Results[] targets and per-vendor CVSS blocks",
    ),
]


def detect_schema_version(raw: Any) -> str:
    """Detect the schema version of a raw payload.

    Trivy reports carry ``SchemaVersion``; SARIF logs carry ``version``. Anything
    else is assumed to be the current Trivy schema.

    Args:
        raw: Raw scanner payload

    Returns:
        Schema version string (advisory)
    """
    if isinstance(raw, dict):
        if raw.get("SchemaVersion") is not None:
            return str(raw["SchemaVersion"])
        if "runs" in raw and raw.get("version") is not None:
            return str(raw["version"])
    return DEFAULT_SCHEMA_VERSION


class SchemaVersionRegistry:
    """Lookup and compatibility checks over a list of schema mappings."""

    def __init__(self, mappings: Optional[list[SchemaMapping]] = None) -> None:
        self._mappings = list(mappings if mappings is not None else TRIVY_SCHEMA_MAPPINGS)
        if not self._mappings:
            raise ValueError("SchemaVersionRegistry needs at least one mapping")

    @property
    def latest(self) -> SchemaMapping:
        return self._mappings[0]

    def is_supported(self, version: str) -> bool:
        return any(m.schema_version == version for m in self._mappings)

    def get_mapping(self, version: str) -> Optional[SchemaMapping]:
        for mapping in self._mappings:
            if mapping.schema_version == version:
                return mapping
        return None

    def get_supported_versions(self) -> list[dict[str, Any]]:
        return [
            {"schema_version": m.schema_version, "scanner_versions": list(m.supported_scanner_versions)}
            for m in self._mappings
        ]

    def check_compatibility(self, version: str) -> SchemaCompatibility:
        """Report whether ``version`` is known and what to expect if it is not.

        Unknown versions are recommended the latest known mapping and carry
        heuristic breaking-change flags.
        """
        if self.get_mapping(version) is not None:
            return SchemaCompatibility(version=version, is_supported=True)

        compatibility = SchemaCompatibility(
            version=version,
            is_supported=False,
            recommended_version=self.latest.schema_version,
            breaking_changes=self._detect_breaking_changes(version),
        )
        logger.info(
            "schema_registry.unsupported_version",
            version=version,
            recommended_version=compatibility.recommended_version,
            breaking_changes=compatibility.breaking_changes,
        )
        return compatibility

    def validate_structure(self, raw: Any, version: str) -> StructureValidation:
        """Advisory structural check of a raw payload.

        Args:
            raw: Raw scanner payload
            version: Schema version the caller intends to normalize with

        Returns:
            StructureValidation with errors and warnings; never raises
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not raw:
            errors.append("Empty result")
            return StructureValidation(is_valid=False, errors=errors, warnings=warnings)

        if not isinstance(raw, dict):
            errors.append("Payload is not a JSON object")
            return StructureValidation(is_valid=False, errors=errors, warnings=warnings)

        if "Results" not in raw and "runs" not in raw:
            errors.append("Missing Results or runs array")

        if not raw.get("ArtifactName") and "runs" not in raw:
            warnings.append('Missing ArtifactName - will default to "unknown"')

        if version == "2" and "SchemaVersion" not in raw:
            warnings.append("Missing SchemaVersion field")

        return StructureValidation(is_valid=not errors, errors=errors, warnings=warnings)

    @staticmethod
    def _detect_breaking_changes(version: str) -> list[str]:
        changes: list[str] = []
        match = re.match(r"\s*(\d+)", version or "")
        if match is None:
            return changes

        if int(match.group(1)) < 2:
            changes.append("Missing CVSS metadata in older format")
            changes.append("Different vulnerability structure")
        return changes


_registry: Optional[SchemaVersionRegistry] = None


def get_schema_registry() -> SchemaVersionRegistry:
    """Get or create the global schema version registry."""
    global _registry
    if _registry is None:
        _registry = SchemaVersionRegistry()
    return _registry
