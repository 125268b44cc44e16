"""Tests for configuration validation."""

import pytest
from pydantic import ValidationError

from src.core.config import Settings


def test_require_credential_with_valid_value() -> None:
    """Test require_credential returns value when credential is set."""
    settings = Settings(rollup_service_api_key="secret")

    result = settings.require_credential("rollup_service_api_key", "Rollup service API key")

    assert result == "secret"


def test_require_credential_with_none_raises_error() -> None:
    """Test require_credential raises ValueError when credential is None."""
    settings = Settings(rollup_service_api_key=None)

    with pytest.raises(ValueError, match="Rollup service API key credential not configured"):
        settings.require_credential("rollup_service_api_key", "Rollup service API key")


def test_require_credential_with_empty_string_raises_error() -> None:
    """Test require_credential raises ValueError when credential is empty."""
    settings = Settings(rollup_service_api_key="")

    with pytest.raises(ValueError, match="ROLLUP_SERVICE_API_KEY"):
        settings.require_credential("rollup_service_api_key", "Rollup service API key")


def test_rollup_defaults() -> None:
    """Test the primary rollup defaults: database rollup, 3 second timeout."""
    settings = Settings(_env_file=None)

    assert settings.rollup_service_url is None
    assert settings.primary_rollup_timeout_seconds == 3.0
    assert settings.rollup_circuit_breaker_threshold >= 1


def test_timeout_must_be_positive() -> None:
    """Test a zero primary rollup timeout is rejected."""
    with pytest.raises(ValidationError, match="primary_rollup_timeout_seconds"):
        Settings(primary_rollup_timeout_seconds=0)


@pytest.mark.parametrize(("environment", "expected"), [("production", True), ("Production", True), ("dev", False)])
def test_is_production(environment: str, expected: bool) -> None:
    """Test environment detection is case-insensitive."""
    assert Settings(environment=environment).is_production is expected
