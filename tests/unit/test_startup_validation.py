"""Tests for startup validation functions."""

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from src.main import (
    check_redis_connectivity,
    check_rollup_service_connectivity,
    validate_startup_configuration,
)


@pytest.mark.asyncio
async def test_check_rollup_service_skipped_without_url() -> None:
    """Test the rollup service check is a no-op when the database rollup is used."""
    with (
        patch("src.main.settings") as mock_settings,
        patch("src.main.httpx.AsyncClient") as mock_client_cls,
    ):
        mock_settings.rollup_service_url = None
        await check_rollup_service_connectivity()

    mock_client_cls.assert_not_called()


@pytest.mark.asyncio
async def test_check_rollup_service_unreachable_is_not_fatal() -> None:
    """Test an unreachable rollup service only logs; cascades fall back locally."""
    mock_client = AsyncMock()
    mock_client.get.side_effect = httpx.ConnectError("connection refused")
    mock_client.__aenter__.return_value = mock_client

    with (
        patch("src.main.settings") as mock_settings,
        patch("src.main.httpx.AsyncClient", return_value=mock_client),
    ):
        mock_settings.rollup_service_url = "https://rollup.example.com"
        await check_rollup_service_connectivity()

    mock_client.get.assert_called_once_with("https://rollup.example.com/health")


@pytest.mark.asyncio
async def test_check_redis_connectivity_disabled() -> None:
    """Test Redis check when Redis is not configured."""
    mock_redis = Mock()
    mock_redis.is_available = False
    mock_redis.ping = AsyncMock()

    with patch("src.main.redis_client", mock_redis):
        await check_redis_connectivity()

    mock_redis.ping.assert_not_called()


@pytest.mark.asyncio
async def test_check_redis_connectivity_success() -> None:
    """Test successful Redis connectivity check."""
    mock_redis = Mock()
    mock_redis.is_available = True
    mock_redis.ping = AsyncMock(return_value=True)

    with patch("src.main.redis_client", mock_redis):
        await check_redis_connectivity()
        mock_redis.ping.assert_called_once()


@pytest.mark.asyncio
async def test_validate_startup_configuration_missing_api_key() -> None:
    """Test validation exits when a production rollup service has no API key."""
    with (
        patch("src.main.settings") as mock_settings,
        pytest.raises(SystemExit) as exc_info,
    ):
        mock_settings.rollup_service_url = "https://rollup.example.com"
        mock_settings.is_production = True
        mock_settings.require_credential.side_effect = ValueError("Rollup service API key credential not configured")
        await validate_startup_configuration()

    assert exc_info.value.code == 1


@pytest.mark.asyncio
async def test_validate_startup_configuration_development() -> None:
    """Test validation passes without credentials outside production."""
    with (
        patch("src.main.settings") as mock_settings,
        patch("src.main.check_rollup_service_connectivity", new=AsyncMock()) as mock_rollup,
        patch("src.main.check_redis_connectivity", new=AsyncMock()) as mock_redis,
    ):
        mock_settings.rollup_service_url = "https://rollup.example.com"
        mock_settings.is_production = False
        await validate_startup_configuration()

    mock_settings.require_credential.assert_not_called()
    mock_rollup.assert_awaited_once()
    mock_redis.assert_awaited_once()
