"""Trivy JSON report normalizer.

Walks ``Results[].Vulnerabilities[]`` once, building the canonical findings and
the summary counts in the same pass. The package ecosystem comes from each
result target's ``Type`` (or ``Class``). CVSS scores and vectors are read from
the per-vendor ``CVSS`` blocks in the precedence order of the schema mapping
(NVD before Red Hat).

Reference: https://aquasecurity.github.io/trivy/latest/docs/configuration/reporting/#json
"""

from typing import Any, Optional

import structlog

from certus_vuln.core.clock import parse_timestamp
from certus_vuln.core.config import get_settings
from certus_vuln.core.exceptions import MalformedInputError
from certus_vuln.normalization.base import (
    UNKNOWN,
    NormalizeOptions,
    ScanNormalizer,
    SummaryBuilder,
    as_dict,
    as_float,
    as_list,
    as_str,
    str_list,
)
from certus_vuln.normalization.mapping import map_artifact_type, map_ecosystem, map_severity
from certus_vuln.normalization.schema_versions import (
    SchemaMapping,
    SchemaVersionRegistry,
    detect_schema_version,
    get_schema_registry,
)
from certus_vuln.schemas.normalized_vulnerability import (
    ArtifactInfo,
    Ecosystem,
    LayerInfo,
    NormalizationFormat,
    NormalizedScanResult,
    NormalizedVulnerability,
    PackageInfo,
    ScanMetadata,
    ScannerInfo,
    VulnerabilityMetadata,
    finding_key,
)

logger = structlog.get_logger(__name__)


class TrivyJsonNormalizer(ScanNormalizer):
    """Normalizer for ``trivy --format json`` reports."""

    format = NormalizationFormat.TRIVY_JSON
    scanner_name = "trivy"

    def __init__(self, clock=None, schema_registry: Optional[SchemaVersionRegistry] = None) -> None:
        super().__init__(clock=clock)
        self._schema_registry = schema_registry or get_schema_registry()

    def validate(self, raw: Any) -> bool:
        """Trivy reports have a ``Results`` array and ``SchemaVersion`` or ``ArtifactName``."""
        if not isinstance(raw, dict):
            return False
        return isinstance(raw.get("Results"), list) and ("SchemaVersion" in raw or "ArtifactName" in raw)

    def normalize(self, raw: Any, options: Optional[NormalizeOptions] = None) -> NormalizedScanResult:
        options = options or NormalizeOptions()

        if not isinstance(raw, dict) or not raw:
            raise MalformedInputError(
                message="Empty scan result",
                error_code="empty_payload",
                details={"format": self.format.value},
            )
        results = raw.get("Results")
        if not isinstance(results, list):
            raise MalformedInputError(
                message="Trivy payload has no Results array",
                error_code="missing_results",
                details={"format": self.format.value},
            )

        schema_version = options.schema_version or detect_schema_version(raw)
        mapping = self._resolve_mapping(raw, schema_version)
        metadata = as_dict(raw.get("Metadata"))
        scanner_version = (
            options.scanner_version
            or as_str(metadata.get("ReportVersion"))
            or as_str(as_dict(raw.get("Trivy")).get("Version"))
            or UNKNOWN
        )

        logger.info("normalizer.trivy_json.start", schema_version=schema_version, target_count=len(results))

        builder = SummaryBuilder()
        for target in self._entries(results, "Results"):
            ecosystem = map_ecosystem(target.get("Type") or target.get("Class"))
            for vuln in self._entries(as_list(target.get("Vulnerabilities")), "Vulnerabilities"):
                builder.add(self._normalize_vulnerability(vuln, target, ecosystem, mapping))

        image_id = as_str(metadata.get("ImageID"))
        result = NormalizedScanResult(
            scanner=ScannerInfo(
                name=self.scanner_name,
                version=scanner_version,
                original_schema_version=schema_version,
            ),
            artifact=ArtifactInfo(
                name=as_str(raw.get("ArtifactName"), UNKNOWN),
                type=map_artifact_type(raw.get("ArtifactType")),
                digest=image_id,
                image_id=image_id,
            ),
            scan_metadata=ScanMetadata(
                scanned_at=self._scanned_at(options, parse_timestamp(raw.get("CreatedAt"))),
                config=metadata.get("ScanOptions") if isinstance(metadata.get("ScanOptions"), dict) else None,
            ),
            vulnerabilities=builder.vulnerabilities,
            summary=builder.summary(),
        )

        logger.info("normalizer.trivy_json.complete", finding_count=result.summary.total)
        return result

    def _resolve_mapping(self, raw: dict[str, Any], schema_version: str) -> SchemaMapping:
        registry = self._schema_registry
        if get_settings().schema_validation_enabled:
            validation = registry.validate_structure(raw, schema_version)
            if validation.warnings or validation.errors:
                logger.warning(
                    "normalizer.trivy_json.structure_advisory",
                    schema_version=schema_version,
                    errors=validation.errors,
                    warnings=validation.warnings,
                )

        mapping = registry.get_mapping(schema_version)
        if mapping is None:
            compatibility = registry.check_compatibility(schema_version)
            logger.warning(
                "normalizer.trivy_json.unknown_schema_version",
                schema_version=schema_version,
                using_version=compatibility.recommended_version,
                breaking_changes=compatibility.breaking_changes,
            )
            mapping = registry.latest
        return mapping

    def _normalize_vulnerability(
        self,
        vuln: dict[str, Any],
        target: dict[str, Any],
        ecosystem: Ecosystem,
        mapping: SchemaMapping,
    ) -> NormalizedVulnerability:
        cve_id = as_str(vuln.get("VulnerabilityID"), UNKNOWN)
        name = as_str(vuln.get("PkgName"), UNKNOWN)
        installed = as_str(vuln.get("InstalledVersion"), UNKNOWN)
        cvss = as_dict(vuln.get("CVSS"))
        data_source = as_dict(vuln.get("DataSource"))
        datasource = as_str(data_source.get("ID")) or as_str(data_source.get("Name"))

        return NormalizedVulnerability(
            id=finding_key(cve_id, name, installed),
            cve_id=cve_id,
            title=as_str(vuln.get("Title"), cve_id),
            description=as_str(vuln.get("Description"), ""),
            severity=map_severity(vuln.get("Severity")),
            cvss_v2_score=as_float(self._cvss_field(cvss, mapping, "V2Score")),
            cvss_v2_vector=as_str(self._cvss_field(cvss, mapping, "V2Vector")),
            cvss_v3_score=as_float(self._cvss_field(cvss, mapping, "V3Score")),
            cvss_v3_vector=as_str(self._cvss_field(cvss, mapping, "V3Vector")),
            cwe_ids=str_list(vuln.get("CweIDs"), dedupe=True),
            references=str_list(vuln.get("References")),
            package_info=PackageInfo(
                name=name,
                installed_version=installed,
                fixed_version=as_str(vuln.get("FixedVersion")),
                ecosystem=ecosystem,
                path=as_str(vuln.get("PkgPath")) or as_str(target.get("Target")),
            ),
            layer_info=self._layer(vuln.get("Layer")),
            published_at=parse_timestamp(vuln.get("PublishedDate")),
            last_modified_at=parse_timestamp(vuln.get("LastModifiedDate")),
            metadata=VulnerabilityMetadata(
                datasources=[datasource] if datasource else [],
                exploit_available=bool(vuln.get("Exploit")),
            ),
        )

    @staticmethod
    def _cvss_field(cvss: dict[str, Any], mapping: SchemaMapping, key: str) -> Any:
        for source in mapping.cvss_sources:
            value = as_dict(cvss.get(source)).get(key)
            if value:
                return value
        return None

    @staticmethod
    def _layer(layer: Any) -> Optional[LayerInfo]:
        if not isinstance(layer, dict) or not layer:
            return None
        return LayerInfo(
            digest=as_str(layer.get("Digest")),
            diff_id=as_str(layer.get("DiffID")),
            created_by=as_str(layer.get("CreatedBy")),
        )
