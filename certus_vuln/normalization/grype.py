"""Grype JSON normalizer.

Handles ``grype -o json`` output: one ``matches[]`` entry per (vulnerability,
artifact) pair, plus ``source`` (what was scanned) and ``descriptor`` (the
grype build and the scan timestamp).

Grype reports GHSA and distro advisories under their own ids and lists the
matching CVE under ``relatedVulnerabilities``; the canonical ``cve_id`` prefers
a CVE wherever one is available.

Reference: https://github.com/anchore/grype#supported-output-formats
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
from certus_vuln.normalization.mapping import map_artifact_type, map_ecosystem, map_severity
from certus_vuln.schemas.normalized_vulnerability import (
    ArtifactInfo,
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


def _is_cve(identifier: Optional[str]) -> bool:
    return bool(identifier) and identifier.upper().startswith("CVE-")


class GrypeJsonNormalizer(ScanNormalizer):
    """Normalizer for ``grype -o json`` reports."""

    format = NormalizationFormat.GRYPE_JSON
    scanner_name = "grype"

    def validate(self, raw: Any) -> bool:
        """Grype reports have a ``matches`` array and a ``descriptor`` or ``source`` block."""
        if not isinstance(raw, dict):
            return False
        return isinstance(raw.get("matches"), list) and ("descriptor" in raw or "source" in raw)

    def normalize(self, raw: Any, options: Optional[NormalizeOptions] = None) -> NormalizedScanResult:
        options = options or NormalizeOptions()

        matches = raw.get("matches") if isinstance(raw, dict) else None
        if not isinstance(matches, list):
            raise MalformedInputError(
                message="Grype payload has no matches array",
                error_code="missing_matches",
                details={"format": self.format.value},
            )

        descriptor = as_dict(raw.get("descriptor"))
        logger.info("normalizer.grype.start", match_count=len(matches))

        builder = SummaryBuilder()
        for match in self._entries(matches, "matches"):
            builder.add(self._normalize_match(match))

        result = NormalizedScanResult(
            scanner=ScannerInfo(
                name=self.scanner_name,
                version=options.scanner_version or as_str(descriptor.get("version"), UNKNOWN),
                original_schema_version=options.schema_version
                or as_str(as_dict(descriptor.get("configuration")).get("schemaVersion")),
            ),
            artifact=self._artifact(as_dict(raw.get("source"))),
            scan_metadata=ScanMetadata(
                scanned_at=self._scanned_at(options, parse_timestamp(descriptor.get("timestamp"))),
            ),
            vulnerabilities=builder.vulnerabilities,
            summary=builder.summary(),
        )

        logger.info("normalizer.grype.complete", finding_count=result.summary.total)
        return result

    def _normalize_match(self, match: dict[str, Any]) -> NormalizedVulnerability:
        vuln = as_dict(match.get("vulnerability"))
        artifact = as_dict(match.get("artifact"))
        related = [entry for entry in as_list(match.get("relatedVulnerabilities")) if isinstance(entry, dict)]

        cve_id = self._cve_id(vuln, related)
        name = as_str(artifact.get("name"), UNKNOWN)
        installed = as_str(artifact.get("version"), UNKNOWN)

        # Description and CVSS often only live on the related NVD record.
        records = [vuln, *related]
        description = next((as_str(r.get("description")) for r in records if as_str(r.get("description"))), "")
        v3 = self._cvss(records, "3")
        v2 = self._cvss(records, "2")

        locations = as_list(artifact.get("locations"))
        first_location = as_dict(locations[0]) if locations else {}
        fix_versions = str_list(as_dict(vuln.get("fix")).get("versions"))
        datasource = as_str(vuln.get("dataSource"))

        return NormalizedVulnerability(
            id=finding_key(cve_id, name, installed),
            cve_id=cve_id,
            title=as_str(vuln.get("id"), cve_id),
            description=description,
            severity=map_severity(vuln.get("severity")),
            cvss_v2_score=as_float(v2.get("baseScore")),
            cvss_v2_vector=as_str(v2.get("vector")),
            cvss_v3_score=as_float(v3.get("baseScore")),
            cvss_v3_vector=as_str(v3.get("vector")),
            cwe_ids=str_list(vuln.get("cweIds"), dedupe=True),
            references=str_list(vuln.get("urls")),
            package_info=PackageInfo(
                name=name,
                installed_version=installed,
                fixed_version=fix_versions[0] if fix_versions else None,
                ecosystem=map_ecosystem(artifact.get("type")),
                path=as_str(first_location.get("path")),
            ),
            metadata=VulnerabilityMetadata(datasources=[datasource] if datasource else ["grype"]),
        )

    @staticmethod
    def _cve_id(vuln: dict[str, Any], related: list[dict[str, Any]]) -> str:
        own_id = as_str(vuln.get("id"))
        if _is_cve(own_id):
            return own_id
        for entry in related:
            related_id = as_str(entry.get("id"))
            if _is_cve(related_id):
                return related_id
        return own_id or UNKNOWN

    @staticmethod
    def _cvss(records: list[dict[str, Any]], major: str) -> dict[str, Any]:
        """Return {baseScore, vector} for the first CVSS entry of the given major version."""
        for record in records:
            for entry in as_list(record.get("cvss")):
                if not isinstance(entry, dict):
                    continue
                if str(entry.get("version", "")).startswith(major):
                    return {
                        "baseScore": as_dict(entry.get("metrics")).get("baseScore"),
                        "vector": entry.get("vector"),
                    }
        return {}

    @staticmethod
    def _artifact(source: dict[str, Any]) -> ArtifactInfo:
        target = source.get("target")
        artifact_type = map_artifact_type(source.get("type"))
        if isinstance(target, dict):
            digest = as_str(target.get("manifestDigest")) or as_str(target.get("imageID"))
            return ArtifactInfo(
                name=as_str(target.get("userInput"), UNKNOWN),
                type=artifact_type,
                digest=digest,
                image_id=as_str(target.get("imageID")),
            )
        return ArtifactInfo(name=as_str(target, UNKNOWN), type=artifact_type)
