"""Unit tests for the domain exception hierarchy."""

import pytest

from certus_vuln.core.exceptions import (
    CertusException,
    ConfigurationError,
    MalformedInputError,
    NormalizationError,
    UnsupportedFormatError,
)


class TestCertusException:
    """Tests for the base exception."""

    def test_default_error_code_is_class_name(self):
        """Test error_code falls back to the class name."""
        error = MalformedInputError("bad payload")

        assert error.error_code == "MalformedInputError"
        assert error.details == {}
        assert str(error) == "bad payload"

    def test_to_dict(self):
        """Test the JSON-ready error shape."""
        error = UnsupportedFormatError(
            "Unsupported format: CUSTOM",
            error_code="unsupported_format",
            details={"source_format": "CUSTOM"},
        )

        assert error.to_dict() == {
            "error": "unsupported_format",
            "message": "Unsupported format: CUSTOM",
            "details": {"source_format": "CUSTOM"},
        }

    def test_to_dict_without_details(self):
        """Test empty details serialize as None."""
        assert ConfigurationError("nope").to_dict()["details"] is None

    @pytest.mark.parametrize("exc_class", [MalformedInputError, UnsupportedFormatError])
    def test_normalization_errors_share_base(self, exc_class):
        """Test normalization failures can be caught together."""
        with pytest.raises(NormalizationError):
            raise exc_class("failed")

    def test_configuration_error_is_certus_exception(self):
        """Test configuration errors are not normalization errors."""
        error = ConfigurationError("bad weights")

        assert isinstance(error, CertusException)
        assert not isinstance(error, NormalizationError)
