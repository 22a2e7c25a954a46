"""Snyk JSON normalizer.

Handles ``snyk test --json`` output for a single project: a top-level
``vulnerabilities[]`` array plus project fields (``projectName``,
``packageManager``). Snyk issue ids (``SNYK-JS-...``) are replaced by the first
CVE in ``identifiers.CVE`` when one exists.
"""

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
from certus_vuln.normalization.mapping import map_ecosystem, map_severity
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

# Snyk exploit maturity values that mean "no exploit known".
NO_EXPLOIT_MATURITIES = frozenset({"not defined", "no known exploit", "no data"})

DEPENDENCY_PATH_SEPARATOR = " > "


def exploit_available(maturity: Optional[str]) -> bool:
    """Whether a Snyk exploit maturity label indicates a usable exploit."""
    if not maturity:
        return False
    return maturity.strip().lower() not in NO_EXPLOIT_MATURITIES


class SnykJsonNormalizer(ScanNormalizer):
    """Normalizer for ``snyk test --json`` reports."""

    format = NormalizationFormat.SNYK_JSON
    scanner_name = "snyk"

    def validate(self, raw: Any) -> bool:
        """Snyk reports have a ``vulnerabilities`` array and project identification."""
        if not isinstance(raw, dict):
            return False
        return isinstance(raw.get("vulnerabilities"), list) and (
            "projectName" in raw or "packageManager" in raw
        )

    def normalize(self, raw: Any, options: Optional[NormalizeOptions] = None) -> NormalizedScanResult:
        options = options or NormalizeOptions()

        vulnerabilities = raw.get("vulnerabilities") if isinstance(raw, dict) else None
        if not isinstance(vulnerabilities, list):
            raise MalformedInputError(
                message="Snyk payload has no vulnerabilities array",
                error_code="missing_vulnerabilities",
                details={"format": self.format.value},
            )

        project_ecosystem = map_ecosystem(raw.get("packageManager"))
        logger.info(
            "normalizer.snyk.start",
            vulnerability_count=len(vulnerabilities),
            package_manager=raw.get("packageManager"),
        )

        builder = SummaryBuilder()
        for vuln in self._entries(vulnerabilities, "vulnerabilities"):
            builder.add(self._normalize_vulnerability(vuln, project_ecosystem))

        result = NormalizedScanResult(
            scanner=ScannerInfo(
                name=self.scanner_name,
                version=options.scanner_version or UNKNOWN,
                original_schema_version=options.schema_version,
            ),
            artifact=ArtifactInfo(
                name=as_str(raw.get("projectName"), UNKNOWN),
                type=ArtifactType.OTHER,
            ),
            scan_metadata=ScanMetadata(scanned_at=self._scanned_at(options)),
            vulnerabilities=builder.vulnerabilities,
            summary=builder.summary(),
        )

        logger.info("normalizer.snyk.complete", finding_count=result.summary.total)
        return result

    def _normalize_vulnerability(self, vuln: dict[str, Any], project_ecosystem: Ecosystem) -> NormalizedVulnerability:
        identifiers = as_dict(vuln.get("identifiers"))
        cves = str_list(identifiers.get("CVE"))
        issue_id = as_str(vuln.get("id"), UNKNOWN)
        cve_id = cves[0] if cves else issue_id

        name = as_str(vuln.get("packageName"), UNKNOWN)
        installed = as_str(vuln.get("version"), UNKNOWN)
        fixed_in = str_list(vuln.get("fixedIn"))
        dependency_path = str_list(vuln.get("from"))

        ecosystem = map_ecosystem(vuln.get("packageManager"))
        if ecosystem is Ecosystem.OTHER:
            ecosystem = project_ecosystem

        maturity = as_str(vuln.get("exploit"))
        references = [
            as_str(ref.get("url")) for ref in as_list(vuln.get("references")) if isinstance(ref, dict)
        ]

        return NormalizedVulnerability(
            id=finding_key(cve_id, name, installed),
            cve_id=cve_id,
            title=as_str(vuln.get("title"), issue_id),
            description=as_str(vuln.get("description"), ""),
            severity=map_severity(vuln.get("severity")),
            cvss_v3_score=as_float(vuln.get("cvssScore")),
            cvss_v3_vector=as_str(vuln.get("CVSSv3")),
            cwe_ids=str_list(identifiers.get("CWE"), dedupe=True),
            references=[url for url in references if url],
            package_info=PackageInfo(
                name=name,
                installed_version=installed,
                fixed_version=fixed_in[0] if fixed_in else None,
                ecosystem=ecosystem,
                path=DEPENDENCY_PATH_SEPARATOR.join(dependency_path) or None,
            ),
            published_at=parse_timestamp(vuln.get("publicationTime")),
            last_modified_at=parse_timestamp(vuln.get("modificationTime")),
            metadata=VulnerabilityMetadata(
                datasources=["snyk"],
                exploit_available=exploit_available(maturity),
                exploit_maturity=maturity,
            ),
        )
