"""Pytest configuration and fixtures."""

import io

import pytest

from reqsign.common.settings import Settings
from reqsign.signature import Credential, SignatureEngine, SigningContext

FIXED_NOW = 1_700_000_000.0


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        auth_mode="signature",
        credentials={"AK1": "SK1", "AK2": "SK2"},
        live_minutes=2,
    )


@pytest.fixture
def credential() -> Credential:
    """Credential matching the golden vectors."""
    return Credential(access_key="AK1", secret_key="SK1")


@pytest.fixture
def clock():
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def engine(clock) -> SignatureEngine:
    """Engine for AK1/SK1 signed at the golden timestamp."""
    return SignatureEngine("AK1", "SK1", "1700000000", clock=clock)


@pytest.fixture
def get_context() -> SigningContext:
    """GET request with parameters b=2, a=1."""
    return SigningContext("GET", query_string="b=2&a=1")


@pytest.fixture
def post_context() -> SigningContext:
    """POST request with query parameters and a JSON body."""
    return SigningContext(
        "POST",
        query_string="b=2&a=1",
        content_type="application/json",
        body=io.BytesIO(b'{"x":1}'),
    )
