"""Pytest configuration and shared fixtures."""

import pytest
from fastapi.testclient import TestClient

from src.main import app


@pytest.fixture
def client() -> TestClient:
    """HTTP client for the app (lifespan not started: no logfire, no DB init)."""
    return TestClient(app)
