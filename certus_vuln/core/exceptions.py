"""Custom exceptions for Certus-Vuln domain-specific errors.

Only structural failures surface as exceptions. Missing per-field data inside a
scanner payload and misconfigured policy rules are absorbed where they occur
and never reach the caller as errors.

Exception Hierarchy:
    CertusException (base)
    ├── NormalizationError
    │   ├── MalformedInputError
    │   └── UnsupportedFormatError
    └── ConfigurationError
"""


class CertusException(Exception):
    """Base exception for all Certus-Vuln domain errors.

    Attributes:
        message: Descriptive error message
        error_code: Machine-readable error identifier
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict | None = None,
    ) -> None:
        """Initialize Certus exception.

        Args:
            message: Descriptive error message for users
            error_code: Machine-readable error code (e.g., 'missing_results')
            details: Additional context dict for debugging

        Example:
            >>> raise MalformedInputError(
            ...     message="Trivy payload has no Results array",
            ...     error_code="missing_results",
            ...     details={"format": "TRIVY_JSON"}
            ... )
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API or CLI responses.

        Returns:
            Dictionary with error information suitable for a JSON response.
        """
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details if self.details else None,
        }


# ============================================================================
# NORMALIZATION ERRORS
# ============================================================================


class NormalizationError(CertusException):
    """Base exception for scanner-output normalization failures."""

    pass


class MalformedInputError(NormalizationError):
    """Raised when a raw scanner payload lacks its minimum required shape.

    This is the only failure a normalizer raises. It means the payload as a
    whole cannot be interpreted, for example:
    - Trivy JSON without a ``Results`` array
    - SARIF without a first ``runs`` entry
    - Grype JSON without ``matches``
    - Snyk JSON without ``vulnerabilities``

    Example:
        >>> if not isinstance(raw.get("matches"), list):
        ...     raise MalformedInputError(
        ...         message="Grype payload has no matches array",
        ...         error_code="missing_matches",
        ...         details={"format": "GRYPE_JSON"}
        ...     )
    """

    pass


class UnsupportedFormatError(NormalizationError):
    """Raised when no normalizer is registered for the requested source format.

    Example:
        >>> raise UnsupportedFormatError(
        ...     message="Unsupported format: CUSTOM",
        ...     error_code="unsupported_format",
        ...     details={"format": "CUSTOM", "available_formats": ["TRIVY_JSON"]}
        ... )
    """

    pass


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================


class ConfigurationError(CertusException):
    """Raised when configuration is invalid or cannot be loaded.

    Reasons might include:
    - Non-positive risk score weights
    - Policy or history files that are not valid JSON
    - Policy records that do not match the expected shape
    """

    pass
