"""
Send push notifications to iOS devices running the Bark app, straight to
APNS without going through a Bark server.

Example:
    from barkpush import BarkSender, PlainMessage, ProviderCredential

    sender = BarkSender(ProviderCredential(
        key_id="LH4T9V5U4R", team_id="5U8LBRXG3A", key_file="AuthKey.p8",
    ))
    failed = sender.send(PlainMessage("notify", "hello world"), ["device-token"])
    # None on success, else the list of failed device tokens
"""

from barkpush.sender import BarkSender
from barkpush.services.push import (
    CipherSpec,
    ConfigurationError,
    CredentialError,
    DeliveryResult,
    DeliveryStatus,
    DispatchResult,
    EncryptedMessage,
    PayloadError,
    PlainMessage,
    ProviderCredential,
    build_message,
)

__version__ = "1.0.0"

__all__ = [
    "BarkSender",
    "PlainMessage",
    "EncryptedMessage",
    "CipherSpec",
    "ProviderCredential",
    "build_message",
    "DeliveryResult",
    "DeliveryStatus",
    "DispatchResult",
    "ConfigurationError",
    "CredentialError",
    "PayloadError",
]
