"""
Models for Bark messages, provider credentials and APNS payloads.

Messages come in two variants: PlainMessage is sent in clear, EncryptedMessage
carries a CipherSpec and has its content AES-encrypted for the Bark client.
Cipher parameters are validated when the CipherSpec is built, so a message
that exists is always encodable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from barkpush.services.push.constants import (
    AES_BLOCK_SIZE_BYTES,
    AES_KEY_SIZES,
    BARK_CATEGORY,
    BARK_DEFAULT_SOUND,
    BARK_DEFAULT_TITLE,
    BARK_INTERRUPTION_LEVELS,
    CIPHER_MODES,
)
from barkpush.services.push.exceptions import ConfigurationError


class DeliveryStatus(str, Enum):
    """Delivery status for push notifications."""

    SUCCESS = "success"
    FAILED = "failed"
    INVALID_TOKEN = "invalid_token"
    AUTH_ERROR = "auth_error"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class DeliveryResult:
    """Result of a push notification delivery attempt."""

    device_token: str
    success: bool
    status: DeliveryStatus = DeliveryStatus.FAILED
    status_code: Optional[int] = None
    error: Optional[str] = None
    error_reason: Optional[str] = None  # APNS reason field
    apns_id: Optional[str] = None  # APNS unique notification ID
    retries: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ProviderCredential(BaseModel):
    """Signing material for APNS provider tokens.

    Either ``private_key`` (PEM text of the .p8 key) or ``key_file`` (path to
    the .p8 file) must be given.

    Attributes:
        key_id: 10-character key identifier from Apple Developer Portal
        team_id: 10-character team identifier (JWT issuer)
        private_key: PEM encoded EC P-256 private key
        key_file: Path to the .p8 auth key file
    """

    model_config = {"frozen": True}

    key_id: str = Field(..., min_length=10, max_length=10, description="10-character key ID")
    team_id: str = Field(..., min_length=10, max_length=10, description="10-character team ID")
    private_key: Optional[str] = Field(None, description="PEM encoded .p8 key", repr=False)
    key_file: Optional[str] = Field(None, description="Path to .p8 auth key file")

    @field_validator("key_id", "team_id")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Validate that identifiers are alphanumeric."""
        if not v.isalnum():
            raise ValueError("Must be alphanumeric")
        return v.upper()

    @model_validator(mode="after")
    def validate_key_source(self) -> "ProviderCredential":
        """Exactly one key source is required."""
        if bool(self.private_key) == bool(self.key_file):
            raise ValueError("Provide exactly one of private_key or key_file")
        return self


def _to_bytes(value: Union[str, bytes]) -> bytes:
    # The Bark client reads key and IV as text and uses their UTF-8 bytes
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


@dataclass
class CipherSpec:
    """AES parameters shared with the Bark client.

    Attributes:
        algorithm: aes128, aes192 or aes256
        mode: cbc or ecb
        key: Key text or bytes, 16/24/32 bytes long depending on algorithm
        iv: Optional 16-byte IV for cbc; generated at encode time when absent
    """

    algorithm: str
    mode: str
    key: Union[str, bytes, None]
    iv: Union[str, bytes, None] = None

    def __post_init__(self):
        self.algorithm = (self.algorithm or "").lower()
        self.mode = (self.mode or "").lower()

        if self.algorithm not in AES_KEY_SIZES:
            raise ConfigurationError(
                f"Unsupported encryption type '{self.algorithm}', "
                f"expected one of {sorted(AES_KEY_SIZES)}"
            )
        if self.mode not in CIPHER_MODES:
            raise ConfigurationError(
                f"Unsupported encryption mode '{self.mode}', expected one of {sorted(CIPHER_MODES)}"
            )
        if self.key is None or len(self.key) == 0:
            raise ConfigurationError(f"{self.algorithm} encryption requires a key")

        expected = AES_KEY_SIZES[self.algorithm]
        if len(self.key_bytes) != expected:
            raise ConfigurationError(
                f"{self.algorithm} requires a {expected}-byte key, got {len(self.key_bytes)} bytes"
            )

        if self.iv is not None and len(self.iv) == 0:
            self.iv = None

        if self.iv is not None:
            if self.mode == "ecb":
                raise ConfigurationError("ECB mode does not take an IV")
            if len(self.iv_bytes) != AES_BLOCK_SIZE_BYTES:
                raise ConfigurationError(
                    f"IV must be {AES_BLOCK_SIZE_BYTES} bytes, got {len(self.iv_bytes)} bytes"
                )

    @property
    def key_bytes(self) -> bytes:
        return _to_bytes(self.key)

    @property
    def iv_bytes(self) -> Optional[bytes]:
        if self.iv is None:
            return None
        return _to_bytes(self.iv)

    @property
    def requires_iv(self) -> bool:
        return self.mode == "cbc"


@dataclass
class PlainMessage:
    """A Bark notification sent in clear.

    Setting semantics follow the Bark app: blank strings and out-of-range
    values mean "not set" rather than errors.

    Attributes:
        title: Notification title
        body: Notification body text
        level: Interruption level (active, timeSensitive, passive)
        badge: App icon badge number, only positive values are sent
        auto_copy: Pass 0 to disable automatic copy of the push content
        copy: Text copied when the push is copied, defaults to the whole push
        sound: Ringtone name
        icon: Custom icon URL replacing the Bark icon
        group: Group (thread) the push is shown under in notification center
        is_archive: Pass 1 to force saving the push in the app
        url: URL or scheme opened when the push is tapped
        extras: Additional top-level payload keys
    """

    title: str
    body: str
    level: Optional[str] = None
    badge: Optional[int] = None
    auto_copy: Optional[int] = None
    copy: Optional[str] = None
    sound: Optional[str] = BARK_DEFAULT_SOUND
    icon: Optional[str] = None
    group: Optional[str] = None
    is_archive: Optional[int] = None
    url: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.title is None:
            self.title = BARK_DEFAULT_TITLE
        if self.level is not None:
            self.level = BARK_INTERRUPTION_LEVELS.get(self.level.lower())
        if self.badge is not None and self.badge <= 0:
            self.badge = None
        if self.auto_copy != 0:
            self.auto_copy = None
        if self.is_archive != 1:
            self.is_archive = None
        for name in ("copy", "icon", "url"):
            value = getattr(self, name)
            if value is not None and not value.strip():
                setattr(self, name, None)

    @classmethod
    def with_body(cls, body: str, **fields: Any) -> "PlainMessage":
        """Build a message titled "Notification"."""
        return cls(BARK_DEFAULT_TITLE, body, **fields)

    @property
    def encrypted(self) -> bool:
        return False

    def bark_fields(self) -> Dict[str, Any]:
        """Pass-through fields that are set, keyed by Bark API parameter name."""
        fields = {
            "level": self.level,
            "badge": self.badge,
            "sound": self.sound,
            "group": self.group,
            "icon": self.icon,
            "url": self.url,
            "copy": self.copy,
            "autoCopy": self.auto_copy,
            "isArchive": self.is_archive,
        }
        return {k: v for k, v in fields.items() if v is not None}


@dataclass
class EncryptedMessage(PlainMessage):
    """A Bark notification whose content is encrypted for the device."""

    cipher: CipherSpec = field(kw_only=True)

    def __post_init__(self):
        super().__post_init__()
        if not isinstance(self.cipher, CipherSpec):
            raise ConfigurationError("EncryptedMessage requires a CipherSpec")

    @property
    def encrypted(self) -> bool:
        return True


Message = Union[PlainMessage, EncryptedMessage]


def cipher_from_options(
    enc_type: Optional[str] = "none",
    mode: Optional[str] = None,
    key: Union[str, bytes, None] = None,
    iv: Union[str, bytes, None] = None,
) -> Optional[CipherSpec]:
    """Map loose encryption options onto a CipherSpec.

    Returns None when ``enc_type`` is "none" (or unset); raises
    ConfigurationError for any inconsistent combination.
    """
    if enc_type is None or enc_type.lower() == "none":
        if key is not None or iv is not None:
            raise ConfigurationError("key/iv given but encryption type is 'none'")
        return None
    return CipherSpec(algorithm=enc_type, mode=mode, key=key, iv=iv)


def build_message(
    title: Optional[str],
    body: str,
    enc_type: Optional[str] = "none",
    mode: Optional[str] = None,
    key: Union[str, bytes, None] = None,
    iv: Union[str, bytes, None] = None,
    **fields: Any,
) -> Message:
    """Build a PlainMessage or EncryptedMessage from option-style arguments.

    Usage:
        msg = build_message("Deploy", "Build 42 is live", sound="bell.caf")
        secret = build_message(
            "Alert", "db password rotated",
            enc_type="aes128", mode="cbc", key="0123456789abcdef",
        )
    """
    cipher = cipher_from_options(enc_type, mode, key, iv)
    if cipher is None:
        return PlainMessage(title, body, **fields)
    return EncryptedMessage(title, body, cipher=cipher, **fields)


class APNSAlert(BaseModel):
    """APNS alert payload structure."""

    title: str = Field(..., description="Alert title")
    body: str = Field(..., description="Alert body text")


class APNSPayload(BaseModel):
    """APNS notification payload in the layout the Bark app expects.

    See: https://developer.apple.com/documentation/usernotifications/generating-a-remote-notification

    Attributes:
        alert: The alert content (title, body)
        badge: App icon badge number (optional)
        sound: Sound filename
        mutable_content: Enable the Bark Notification Service Extension
        category: Notification category registered by the Bark app
        thread_id: Thread identifier for grouping
        interruption_level: iOS 15+ interruption level
        icon: Custom icon URL
        auto_copy: autoCopy flag
        is_archive: isArchive flag
        copy: Text to copy
        url: URL opened on tap
        iv: IV text for an encrypted payload
        ciphertext: Base64 ciphertext for an encrypted payload
        custom_data: Additional data to include at the root of the payload
    """

    alert: APNSAlert
    badge: Optional[int] = Field(None, ge=0, description="Badge number")
    sound: Optional[str] = Field(None, description="Sound name")
    mutable_content: bool = Field(default=True, description="Enable Service Extension")
    category: str = Field(default=BARK_CATEGORY, description="Notification category")
    thread_id: Optional[str] = Field(None, description="Thread ID for grouping")
    interruption_level: str = Field(default="active", description="Interruption level")
    icon: Optional[str] = None
    auto_copy: Optional[int] = None
    is_archive: Optional[int] = None
    copy_text: Optional[str] = Field(None, alias="copy")
    url: Optional[str] = None
    iv: Optional[str] = None
    ciphertext: Optional[str] = None
    custom_data: Dict[str, Any] = Field(default_factory=dict, description="Custom payload data")

    model_config = {"populate_by_name": True}

    @field_validator("interruption_level")
    @classmethod
    def validate_interruption_level(cls, v: str) -> str:
        """Validate interruption level is one of the Bark values."""
        allowed = set(BARK_INTERRUPTION_LEVELS.values())
        if v not in allowed:
            raise ValueError(f"Must be one of: {allowed}")
        return v

    def to_apns_dict(self) -> Dict[str, Any]:
        """Convert to APNS payload dictionary format.

        Returns:
            Dictionary ready for JSON serialization to APNS.
        """
        aps: Dict[str, Any] = {}
        if self.mutable_content:
            aps["mutable-content"] = 1
        aps["category"] = self.category
        aps["interruption-level"] = self.interruption_level
        if self.badge is not None:
            aps["badge"] = self.badge
        if self.sound:
            aps["sound"] = self.sound
        if self.thread_id:
            aps["thread-id"] = self.thread_id
        aps["alert"] = {
            "title": self.alert.title,
            "body": self.alert.body,
        }

        payload: Dict[str, Any] = {"aps": aps}

        if self.icon:
            payload["icon"] = self.icon
        if self.auto_copy is not None:
            payload["autoCopy"] = self.auto_copy
        if self.is_archive is not None:
            payload["isArchive"] = self.is_archive
        if self.copy_text:
            payload["copy"] = self.copy_text
        if self.url:
            payload["url"] = self.url
        if self.iv:
            payload["iv"] = self.iv
        if self.ciphertext:
            payload["ciphertext"] = self.ciphertext

        # Custom data at root level
        payload.update(self.custom_data)

        return payload
