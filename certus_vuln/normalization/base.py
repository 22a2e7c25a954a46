"""Base class for scanner-output normalizers.

All normalizers inherit from ScanNormalizer and implement normalize() and
validate(). A normalizer is a pure function of (payload, options): it performs
no I/O, and the only non-payload input, the scan timestamp, comes from
``options.scanned_at`` or an injectable clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from certus_vuln.core.clock import Clock, ensure_utc, utc_now
from certus_vuln.schemas.normalized_vulnerability import (
    NormalizationFormat,
    NormalizedScanResult,
    NormalizedVulnerability,
    ScanSummary,
    Severity,
)

logger = structlog.get_logger(__name__)

UNKNOWN = "unknown"


class NormalizeOptions(BaseModel):
    """Caller-supplied hints for a normalization pass."""

    schema_version: Optional[str] = Field(None, description="Override detected raw schema version")
    scanner_version: Optional[str] = Field(None, description="Override scanner version from the payload")
    scanned_at: Optional[datetime] = Field(None, description="Override the scan timestamp")


class ScanNormalizer(ABC):
    """Base class for all scanner-format normalizers.

    Each normalizer converts one scanner's native payload to NormalizedScanResult.

    Attributes:
        format: The NormalizationFormat this normalizer handles
        scanner_name: Default scanner name recorded in the result
    """

    format: NormalizationFormat
    scanner_name: str

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now

    @abstractmethod
    def normalize(self, raw: Any, options: Optional[NormalizeOptions] = None) -> NormalizedScanResult:
        """Normalize a raw payload into NormalizedScanResult.

        Args:
            raw: Raw payload as decoded from JSON
            options: Optional schema/scanner version and timestamp overrides

        Returns:
            NormalizedScanResult

        Raises:
            MalformedInputError: If the payload lacks its minimum required shape
        """

    @abstractmethod
    def validate(self, raw: Any) -> bool:
        """Check whether a payload looks like this normalizer's format.

        Used for auto-detection; must not raise.
        """

    def _scanned_at(self, options: NormalizeOptions, payload_timestamp: Optional[datetime] = None) -> datetime:
        if options.scanned_at is not None:
            return ensure_utc(options.scanned_at)
        if payload_timestamp is not None:
            return payload_timestamp
        return self._clock()

    def _entries(self, items: Iterable[Any], container: str) -> Iterable[dict[str, Any]]:
        """Yield dict entries, skipping anything that is not a JSON object."""
        for index, item in enumerate(items):
            if isinstance(item, dict):
                yield item
            else:
                logger.warning(
                    "normalizer.entry_skipped",
                    format=self.format.value,
                    container=container,
                    index=index,
                    entry_type=type(item).__name__,
                )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(format={self.format.value!r})"


class SummaryBuilder:
    """Single-pass accumulator for ScanSummary counts."""

    def __init__(self) -> None:
        self.vulnerabilities: list[NormalizedVulnerability] = []
        self._by_severity: dict[str, int] = {s.value: 0 for s in Severity}
        self._by_package_type: dict[str, int] = {}
        self._fixable = 0

    def add(self, vulnerability: NormalizedVulnerability) -> None:
        self.vulnerabilities.append(vulnerability)
        self._by_severity[vulnerability.severity.value] += 1
        ecosystem = vulnerability.package_info.ecosystem.value
        self._by_package_type[ecosystem] = self._by_package_type.get(ecosystem, 0) + 1
        if vulnerability.package_info.fixed_version:
            self._fixable += 1

    def summary(self) -> ScanSummary:
        return ScanSummary(
            total=len(self.vulnerabilities),
            by_severity=dict(self._by_severity),
            by_package_type=dict(self._by_package_type),
            fixable=self._fixable,
        )


# ============================================================================
# Field coercion helpers
# ============================================================================


def as_str(value: Any, default: Optional[str] = None) -> Optional[str]:
    """Return a non-empty string or ``default``."""
    if value is None or isinstance(value, (dict, list)):
        return default
    text = str(value).strip()
    return text or default


def as_float(value: Any) -> Optional[float]:
    """Return a float CVSS score or None; never raises."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:  # NaN
        return None
    return score


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def str_list(value: Any, dedupe: bool = False) -> list[str]:
    """Coerce a list of scalars to strings, dropping empties."""
    result: list[str] = []
    for item in as_list(value):
        text = as_str(item)
        if text is None:
            continue
        if dedupe and text in result:
            continue
        result.append(text)
    return result

