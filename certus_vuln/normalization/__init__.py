"""Scanner-output normalization.

Converts raw scanner payloads into the canonical NormalizedScanResult. One
normalizer per source format, dispatched through a shared registry.

Supported formats:
- Trivy JSON (``trivy --format json``)
- Trivy SARIF (``trivy --format sarif``)
- Grype JSON (``grype -o json``)
- Snyk JSON (``snyk test --json``)
"""

from certus_vuln.normalization.base import NormalizeOptions, ScanNormalizer
from certus_vuln.normalization.grype import GrypeJsonNormalizer
from certus_vuln.normalization.registry import (
    NormalizerRegistry,
    get_normalizer_registry,
    normalize,
    register_normalizer,
)
from certus_vuln.normalization.schema_versions import (
    SchemaVersionRegistry,
    detect_schema_version,
    get_schema_registry,
)
from certus_vuln.normalization.snyk import SnykJsonNormalizer
from certus_vuln.normalization.trivy_json import TrivyJsonNormalizer
from certus_vuln.normalization.trivy_sarif import TrivySarifNormalizer

# Register built-in normalizers at import time; SARIF first since its
# detection is the most specific.
_registry = get_normalizer_registry()
for _normalizer in (TrivySarifNormalizer(), TrivyJsonNormalizer(), GrypeJsonNormalizer(), SnykJsonNormalizer()):
    _registry.register(_normalizer, replace=True)

__all__ = [
    "GrypeJsonNormalizer",
    "NormalizeOptions",
    "NormalizerRegistry",
    "ScanNormalizer",
    "SchemaVersionRegistry",
    "SnykJsonNormalizer",
    "TrivyJsonNormalizer",
    "TrivySarifNormalizer",
    "detect_schema_version",
    "get_normalizer_registry",
    "get_schema_registry",
    "normalize",
    "register_normalizer",
]
