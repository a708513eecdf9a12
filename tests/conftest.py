"""Pytest fixtures shared by the barkpush test suite

Provides:
1. A freshly generated P-256 key (PEM text and .p8 file) and credentials
2. A controllable clock for token staleness tests
3. Factories for mocked httpx responses
"""
from typing import Optional
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from barkpush.services.push.models import ProviderCredential


# =============================================================================
# Factory Functions
# =============================================================================

def make_pem(curve: ec.EllipticCurve = None) -> str:
    """Generate an EC private key and return it as PKCS8 PEM text."""
    private_key = ec.generate_private_key(curve or ec.SECP256R1())
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def make_response(
    status_code: int = 200,
    reason: Optional[str] = None,
    apns_id: str = "apns-id-123",
) -> MagicMock:
    """
    Build a mock httpx response.

    Args:
        status_code: HTTP status
        reason: APNS reason for the JSON error body, if any
        apns_id: Value of the apns-id response header
    """
    response = MagicMock()
    response.status_code = status_code
    response.headers = {"apns-id": apns_id}
    if reason is None:
        response.content = b""
        response.json.return_value = {}
    else:
        response.content = f'{{"reason": "{reason}"}}'.encode()
        response.json.return_value = {"reason": reason}
    return response


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def private_key_pem():
    """PEM text of a test P-256 key."""
    return make_pem()


@pytest.fixture
def key_file(tmp_path, private_key_pem):
    """Write the test key to a temporary .p8 file."""
    path = tmp_path / "AuthKey_TEST.p8"
    path.write_text(private_key_pem)
    return str(path)


@pytest.fixture
def credential(private_key_pem):
    """Provider credential holding the PEM text."""
    return ProviderCredential(
        key_id="KEYID12345",
        team_id="TEAMID1234",
        private_key=private_key_pem,
    )


@pytest.fixture
def clock():
    return FakeClock()
