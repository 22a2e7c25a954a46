"""Registry for scanner-format normalizers.

Manages normalizer registration and selection. Provides:
- Central registry of the available normalizers, keyed by NormalizationFormat
- Auto-detection of the scanner format from a raw payload
- Explicit dispatch on ``source_format`` to the matching normalizer
"""

from typing import Any

import structlog

from certus_vuln.core.exceptions import UnsupportedFormatError
from certus_vuln.normalization.base import NormalizeOptions, ScanNormalizer
from certus_vuln.schemas.normalized_vulnerability import NormalizationFormat, NormalizedScanResult

logger = structlog.get_logger(__name__)


class NormalizerRegistry:
    """Registry of ScanNormalizer instances, one per source format."""

    def __init__(self) -> None:
        self._normalizers: dict[NormalizationFormat, ScanNormalizer] = {}

    def register(self, normalizer: ScanNormalizer, replace: bool = False) -> None:
        """Register a normalizer for its format.

        Args:
            normalizer: ScanNormalizer instance to register
            replace: Allow replacing an already registered normalizer

        Raises:
            ValueError: If the format is already registered and ``replace`` is False
        """
        if normalizer.format in self._normalizers and not replace:
            raise ValueError(f"Normalizer for format '{normalizer.format.value}' already registered")

        self._normalizers[normalizer.format] = normalizer
        logger.debug("normalizer.registered", format=normalizer.format.value, normalizer=repr(normalizer))

    def get(self, source_format: NormalizationFormat | str) -> ScanNormalizer | None:
        """Get the normalizer for a format, or None if none is registered."""
        try:
            key = NormalizationFormat(source_format.upper() if isinstance(source_format, str) else source_format)
        except ValueError:
            return None
        return self._normalizers.get(key)

    def list_normalizers(self) -> dict[NormalizationFormat, ScanNormalizer]:
        return self._normalizers.copy()

    def auto_detect(self, raw: Any) -> NormalizationFormat | None:
        """Auto-detect the source format of a raw payload.

        Tries each registered normalizer's validate() in registration order.

        Args:
            raw: Raw payload as decoded from JSON

        Returns:
            The detected format, or None if no normalizer recognises it
        """
        logger.debug("normalizer.auto_detect.start", normalizer_count=len(self._normalizers))

        for source_format, normalizer in self._normalizers.items():
            if normalizer.validate(raw):
                logger.info("normalizer.auto_detect.match", format=source_format.value)
                return source_format

        logger.warning("normalizer.auto_detect.no_match")
        return None

    def normalize(
        self,
        raw: Any,
        source_format: NormalizationFormat | str | None = None,
        options: NormalizeOptions | None = None,
    ) -> NormalizedScanResult:
        """Normalize a raw payload to NormalizedScanResult.

        Args:
            raw: Raw payload as decoded from JSON
            source_format: Format to dispatch on; auto-detected when None
            options: Optional schema/scanner version and timestamp overrides

        Returns:
            NormalizedScanResult

        Raises:
            UnsupportedFormatError: If the format has no registered normalizer
                or cannot be detected
            MalformedInputError: If the payload lacks its minimum required shape
        """
        available = [f.value for f in self._normalizers]

        if source_format is None:
            detected = self.auto_detect(raw)
            if detected is None:
                raise UnsupportedFormatError(
                    message="Could not auto-detect scanner format",
                    error_code="unknown_format",
                    details={"available_formats": available},
                )
            source_format = detected

        normalizer = self.get(source_format)
        if normalizer is None:
            requested = source_format.value if isinstance(source_format, NormalizationFormat) else source_format
            raise UnsupportedFormatError(
                message=f"Unsupported format: {requested}",
                error_code="unsupported_format",
                details={"source_format": requested, "available_formats": available},
            )

        return normalizer.normalize(raw, options)


_registry: NormalizerRegistry | None = None


def get_normalizer_registry() -> NormalizerRegistry:
    """Get or create the global normalizer registry.

    Returns:
        Global NormalizerRegistry instance
    """
    global _registry
    if _registry is None:
        _registry = NormalizerRegistry()
    return _registry


def register_normalizer(normalizer: ScanNormalizer, replace: bool = False) -> None:
    """Register a normalizer with the global registry."""
    get_normalizer_registry().register(normalizer, replace=replace)


def normalize(
    raw: Any,
    source_format: NormalizationFormat | str | None = None,
    options: NormalizeOptions | None = None,
) -> NormalizedScanResult:
    """Normalize a raw scanner payload using the global registry."""
    return get_normalizer_registry().normalize(raw, source_format, options)
