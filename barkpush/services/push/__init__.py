"""
Direct-to-APNS push delivery for the Bark app.

This package contains:
- ProviderTokenSigner - ES256 provider token signing and caching
- codec - Bark payload encoding and AES payload encryption
- APNSProvider - HTTP/2 transport to APNS
- PushDispatchService - concurrent multi-device dispatch
"""

from barkpush.services.push.apns_provider import APNSProvider
from barkpush.services.push.codec import EncodedPayload, decrypt, encode
from barkpush.services.push.dispatch_service import (
    DispatchResult,
    PushDispatchService,
)
from barkpush.services.push.exceptions import (
    BarkPushError,
    ConfigurationError,
    CredentialError,
    PayloadError,
)
from barkpush.services.push.models import (
    APNSAlert,
    APNSPayload,
    CipherSpec,
    DeliveryResult,
    DeliveryStatus,
    EncryptedMessage,
    Message,
    PlainMessage,
    ProviderCredential,
    build_message,
    cipher_from_options,
)
from barkpush.services.push.signer import ProviderTokenSigner, SignedToken

__all__ = [
    # Dispatch Service
    "PushDispatchService",
    "DispatchResult",
    # Transport
    "APNSProvider",
    "APNSPayload",
    "APNSAlert",
    # Signing
    "ProviderTokenSigner",
    "ProviderCredential",
    "SignedToken",
    # Payload
    "PlainMessage",
    "EncryptedMessage",
    "Message",
    "CipherSpec",
    "EncodedPayload",
    "build_message",
    "cipher_from_options",
    "encode",
    "decrypt",
    # Common
    "DeliveryResult",
    "DeliveryStatus",
    # Errors
    "BarkPushError",
    "ConfigurationError",
    "CredentialError",
    "PayloadError",
]
