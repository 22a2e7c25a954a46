"""Trivy SARIF (Static Analysis Results Interchange Format) normalizer.

Parses the SARIF 2.1.0 log Trivy emits with ``--format sarif``. Only the first
run is read. Rule metadata (title, description, CWE, CVSS, fix version) lives in
``tool.driver.rules[]``; it is indexed by rule id once, before the results loop.

Package name and version come from structured properties (``pkgName`` /
``pkgVersion``) when the result or its rule carries them. Otherwise they are
recovered from the result message text ``"Package: <name> Version: <version>"``.
That fallback is best-effort and lossy: a message in any other shape yields
``unknown`` / ``unknown``.

Reference: https://sarifweb.azurewebsites.net/
"""

import re
from typing import Any, Optional

import structlog

from certus_vuln.core.clock import parse_timestamp
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
from certus_vuln.normalization.mapping import map_sarif_severity
from certus_vuln.schemas.normalized_vulnerability import (
    ArtifactInfo,
    ArtifactType,
    Ecosystem,
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

PACKAGE_MESSAGE_PATTERN = re.compile(r"Package:\s*(\S+)\s+Version:\s*(\S+)", re.IGNORECASE)


def extract_package_from_message(message: str) -> tuple[str, str]:
    """Recover (name, version) from a SARIF message; ('unknown', 'unknown') if absent."""
    match = PACKAGE_MESSAGE_PATTERN.search(message or "")
    if match:
        return match.group(1), match.group(2)
    return UNKNOWN, UNKNOWN


class TrivySarifNormalizer(ScanNormalizer):
    """Normalizer for ``trivy --format sarif`` output."""

    format = NormalizationFormat.TRIVY_SARIF
    scanner_name = "trivy"

    def validate(self, raw: Any) -> bool:
        """Check if JSON is a SARIF log.

        SARIF files have a ``$schema`` mentioning sarif and a ``runs`` array.
        """
        try:
            schema = raw.get("$schema", "") or ""
            return "sarif" in schema.lower() and isinstance(raw.get("runs"), list)
        except (AttributeError, TypeError):
            return False

    def normalize(self, raw: Any, options: Optional[NormalizeOptions] = None) -> NormalizedScanResult:
        options = options or NormalizeOptions()

        runs = raw.get("runs") if isinstance(raw, dict) else None
        if not isinstance(runs, list) or not runs or not isinstance(runs[0], dict):
            raise MalformedInputError(
                message="Invalid SARIF format",
                error_code="missing_runs",
                details={"format": self.format.value},
            )

        run = runs[0]
        driver = as_dict(as_dict(run.get("tool")).get("driver"))
        rules_by_id: dict[str, dict[str, Any]] = {}
        for rule in as_list(driver.get("rules")):
            rule_id = as_str(rule.get("id")) if isinstance(rule, dict) else None
            if rule_id:
                rules_by_id[rule_id] = rule
        results = as_list(run.get("results"))

        logger.info("normalizer.trivy_sarif.start", rule_count=len(rules_by_id), result_count=len(results))

        builder = SummaryBuilder()
        for finding in self._entries(results, "results"):
            rule = as_dict(rules_by_id.get(as_str(finding.get("ruleId"), "")))
            builder.add(self._normalize_result(finding, rule))

        root_path = as_dict(as_dict(run.get("originalUriBaseIds")).get("ROOTPATH"))
        result = NormalizedScanResult(
            scanner=ScannerInfo(
                name=as_str(driver.get("name"), self.scanner_name).lower(),
                version=options.scanner_version or as_str(driver.get("version"), UNKNOWN),
                original_schema_version=options.schema_version or as_str(raw.get("version")),
            ),
            artifact=ArtifactInfo(
                name=as_str(root_path.get("uri"), UNKNOWN),
                type=ArtifactType.OTHER,
            ),
            scan_metadata=ScanMetadata(scanned_at=self._scanned_at(options)),
            vulnerabilities=builder.vulnerabilities,
            summary=builder.summary(),
        )

        logger.info("normalizer.trivy_sarif.complete", finding_count=result.summary.total)
        return result

    def _normalize_result(self, finding: dict[str, Any], rule: dict[str, Any]) -> NormalizedVulnerability:
        properties = as_dict(rule.get("properties"))
        cve_id = as_str(finding.get("ruleId"), UNKNOWN)
        name, version = self._extract_package(finding, properties)
        fixed_version = as_str(properties.get("fixedVersion"))

        help_uri = as_str(rule.get("helpUri"))
        references = [help_uri] if help_uri else []
        references.extend(str_list(properties.get("references")))

        return NormalizedVulnerability(
            id=finding_key(cve_id, name, version),
            cve_id=cve_id,
            title=(
                as_str(as_dict(rule.get("shortDescription")).get("text"))
                or as_str(rule.get("name"))
                or cve_id
            ),
            description=as_str(as_dict(rule.get("fullDescription")).get("text"), ""),
            severity=map_sarif_severity(self._security_severity(properties)),
            cvss_v3_score=as_float(properties.get("cvssV3_score")),
            cvss_v3_vector=as_str(properties.get("cvssV3_vector")),
            cwe_ids=str_list(properties.get("cwe_ids"), dedupe=True),
            references=references,
            package_info=PackageInfo(
                name=name,
                installed_version=version,
                fixed_version=fixed_version,
                ecosystem=Ecosystem.OTHER,
                path=self._location_uri(finding),
            ),
            published_at=parse_timestamp(properties.get("publishedDate")),
            metadata=VulnerabilityMetadata(datasources=["sarif"]),
        )

    @staticmethod
    def _security_severity(properties: dict[str, Any]) -> Any:
        # Trivy writes "security-severity"; older exporters used an underscore.
        value = properties.get("security-severity")
        if value is None:
            value = properties.get("security_severity")
        return value

    @staticmethod
    def _extract_package(finding: dict[str, Any], rule_properties: dict[str, Any]) -> tuple[str, str]:
        for properties in (as_dict(finding.get("properties")), rule_properties):
            name = as_str(properties.get("pkgName"))
            version = as_str(properties.get("pkgVersion"))
            if name and version:
                return name, version

        message = as_str(as_dict(finding.get("message")).get("text"), "")
        return extract_package_from_message(message)

    @staticmethod
    def _location_uri(finding: dict[str, Any]) -> Optional[str]:
        locations = as_list(finding.get("locations"))
        if not locations:
            return None
        physical = as_dict(as_dict(locations[0]).get("physicalLocation"))
        return as_str(as_dict(physical.get("artifactLocation")).get("uri"))
