"""
APNS provider token signing.

Provider tokens are ES256 JWTs signed with the .p8 auth key. APNs accepts a
token for one hour and throttles providers that regenerate too often, so a
token is cached and only replaced once it is older than ``stale_after``.

The cache is shared by every dispatch of a sender, sync or async, and is
guarded by a threading lock. No await happens while the lock is held, which
keeps refreshes atomic even when the calling task is cancelled.
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from barkpush.services.push.constants import (
    JWT_ALGORITHM,
    JWT_TOKEN_LIFETIME_SECONDS,
    TOKEN_STALE_AFTER_SECONDS,
)
from barkpush.services.push.exceptions import CredentialError
from barkpush.services.push.models import ProviderCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedToken:
    """A provider token and the unix time it was issued at."""

    value: str
    issued_at: int

    def age(self, now: float) -> float:
        return now - self.issued_at

    def __str__(self) -> str:
        return self.value


class ProviderTokenSigner:
    """
    Mints and caches APNS provider tokens.

    Usage:
        signer = ProviderTokenSigner(credential)
        token = signer.get_token()
        headers = {"authorization": f"bearer {token.value}"}

    Attributes:
        credential: Key id, team id and key material
        stale_after: Seconds after which a cached token is regenerated
    """

    def __init__(
        self,
        credential: ProviderCredential,
        stale_after: float = TOKEN_STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not 0 < stale_after < JWT_TOKEN_LIFETIME_SECONDS:
            raise ValueError(
                f"stale_after must be between 0 and {JWT_TOKEN_LIFETIME_SECONDS} seconds"
            )

        self.credential = credential
        self.stale_after = stale_after
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[SignedToken] = None
        self._private_key: Optional[ec.EllipticCurvePrivateKey] = None

    @property
    def cached_token(self) -> Optional[SignedToken]:
        """The cached token, if any, for persisting between processes."""
        return self._token

    def is_stale(self, token: Optional[SignedToken]) -> bool:
        return token is None or token.age(self._clock()) >= self.stale_after

    def get_token(self) -> SignedToken:
        """
        Return the cached token, signing a new one when missing or stale.

        Raises:
            CredentialError: The signing key cannot be loaded or used
        """
        with self._lock:
            if not self.is_stale(self._token):
                return self._token
            return self._refresh_locked()

    def force_refresh(self, stale: Optional[SignedToken] = None) -> SignedToken:
        """
        Regenerate the token after APNs rejected it.

        When ``stale`` is given and the cache already holds a different token,
        another caller refreshed in the meantime and that token is returned
        without signing again.

        Raises:
            CredentialError: The signing key cannot be loaded or used
        """
        with self._lock:
            if stale is not None and self._token is not None and self._token != stale:
                return self._token
            return self._refresh_locked()

    def seed(self, token: str, issued_at: int) -> bool:
        """
        Install a token issued earlier, e.g. by another process.

        Returns:
            True if the token was installed, False if it is already stale
        """
        candidate = SignedToken(value=token, issued_at=int(issued_at))
        if self.is_stale(candidate):
            logger.warning(
                "Seeded provider token is stale, a new one will be generated",
                extra={"issued_at": candidate.issued_at},
            )
            return False
        with self._lock:
            self._token = candidate
        return True

    def _load_private_key(self) -> ec.EllipticCurvePrivateKey:
        """Load the EC private key from PEM text or the .p8 file."""
        if self._private_key is not None:
            return self._private_key

        if self.credential.private_key:
            key_data = self.credential.private_key.encode("utf-8")
        else:
            key_path = Path(self.credential.key_file)
            if not key_path.exists():
                raise CredentialError(f"APNS key file not found: {key_path}")
            key_data = key_path.read_bytes()

        try:
            private_key = serialization.load_pem_private_key(key_data, password=None)
        except (ValueError, TypeError) as e:
            raise CredentialError(f"Failed to load APNS private key: {e}") from e

        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise CredentialError("APNS key must be an EC private key (ES256)")
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise CredentialError(
                f"APNS key must use the P-256 curve, got {private_key.curve.name}"
            )

        self._private_key = private_key
        logger.debug("Loaded APNS private key", extra={"key_id": self.credential.key_id})
        return private_key

    def _refresh_locked(self) -> SignedToken:
        private_key = self._load_private_key()
        issued_at = int(self._clock())

        try:
            value = jwt.encode(
                {"iss": self.credential.team_id, "iat": issued_at},
                private_key,
                algorithm=JWT_ALGORITHM,
                headers={"alg": JWT_ALGORITHM, "kid": self.credential.key_id},
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise CredentialError(f"Failed to sign APNS provider token: {e}") from e

        self._token = SignedToken(value=value, issued_at=issued_at)

        logger.debug(
            "Generated new APNS JWT",
            extra={
                "team_id": self.credential.team_id,
                "key_id": self.credential.key_id,
                "stale_after": self.stale_after,
            },
        )
        return self._token
