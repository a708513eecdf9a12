"""
Payload codec for Bark notifications.

Turns a message into the JSON body POSTed to APNS. Encrypted messages follow
the Bark client contract:

- the notification fields are serialized to compact JSON and AES encrypted
  (CBC or ECB, PKCS#7 padding) with the raw UTF-8 bytes of the key and IV
- the ciphertext is sent base64 encoded in a top-level ``ciphertext`` field
- a generated IV is sent as text in a top-level ``iv`` field
- the ``aps`` envelope stays in place so the Bark notification service
  extension runs, with the alert body replaced by a placeholder
"""

import base64
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from barkpush.services.push.constants import (
    AES_BLOCK_SIZE_BYTES,
    BARK_ENCRYPTED_BODY_PLACEHOLDER,
    IV_ALPHABET,
)
from barkpush.services.push.exceptions import ConfigurationError, PayloadError
from barkpush.services.push.models import (
    APNSAlert,
    APNSPayload,
    CipherSpec,
    EncryptedMessage,
    Message,
    PlainMessage,
)

logger = logging.getLogger(__name__)

# Top-level payload keys owned by the Bark layout
RESERVED_PAYLOAD_KEYS = {"aps", "ciphertext", "iv", "icon", "url", "copy", "isArchive", "autoCopy"}


@dataclass(frozen=True)
class EncodedPayload:
    """JSON body shared by every device of one dispatch."""

    body: bytes
    encrypted: bool = False
    iv: Optional[str] = None  # Set only when the IV was generated

    def to_dict(self) -> Dict[str, Any]:
        return json.loads(self.body)


def generate_iv() -> str:
    """Random 16-character IV, text so the Bark client can read it back."""
    return "".join(secrets.choice(IV_ALPHABET) for _ in range(AES_BLOCK_SIZE_BYTES))


def _aes(cipher: CipherSpec, iv: Optional[bytes]) -> Cipher:
    mode = modes.CBC(iv) if cipher.mode == "cbc" else modes.ECB()
    return Cipher(algorithms.AES(cipher.key_bytes), mode)


def encrypt(plaintext: bytes, cipher: CipherSpec, iv: Optional[bytes] = None) -> bytes:
    """AES encrypt with PKCS#7 padding."""
    if cipher.requires_iv and (iv is None or len(iv) != AES_BLOCK_SIZE_BYTES):
        raise ConfigurationError(f"CBC mode requires a {AES_BLOCK_SIZE_BYTES}-byte IV")
    if not cipher.requires_iv and iv is not None:
        raise ConfigurationError("ECB mode does not take an IV")

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = _aes(cipher, iv).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def decrypt(
    ciphertext: Union[str, bytes],
    cipher: CipherSpec,
    iv: Union[str, bytes, None] = None,
) -> Dict[str, Any]:
    """
    Decrypt a ``ciphertext`` field back into the notification fields.

    Args:
        ciphertext: Base64 text (as sent) or raw ciphertext bytes
        cipher: The parameters used to encrypt
        iv: IV from the payload; defaults to ``cipher.iv``

    Returns:
        The decoded inner notification dict
    """
    raw = base64.b64decode(ciphertext) if isinstance(ciphertext, str) else ciphertext
    if iv is None:
        iv_bytes = cipher.iv_bytes
    else:
        iv_bytes = iv.encode("utf-8") if isinstance(iv, str) else iv

    decryptor = _aes(cipher, iv_bytes).decryptor()
    padded = decryptor.update(raw) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    plaintext = unpadder.update(padded) + unpadder.finalize()
    return json.loads(plaintext.decode("utf-8"))


def _check_extras(message: PlainMessage) -> None:
    clash = RESERVED_PAYLOAD_KEYS.intersection(message.extras)
    if clash:
        raise PayloadError(f"extras may not override reserved payload keys: {sorted(clash)}")


def _dumps(data: Dict[str, Any]) -> bytes:
    try:
        return json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise PayloadError(f"Notification is not JSON serializable: {e}") from e


def to_apns_payload(
    message: PlainMessage,
    ciphertext: Optional[str] = None,
    iv: Optional[str] = None,
) -> APNSPayload:
    """Build the APNS payload model for a message.

    With a ciphertext, only the ``aps`` envelope, ``ciphertext`` and ``iv``
    are sent; every other field travels inside the ciphertext.
    """
    if ciphertext is not None:
        return APNSPayload(
            alert=APNSAlert(title=message.title, body=BARK_ENCRYPTED_BODY_PLACEHOLDER),
            badge=message.badge,
            sound=message.sound,
            thread_id=message.group,
            interruption_level=message.level or "active",
            iv=iv,
            ciphertext=ciphertext,
        )

    return APNSPayload(
        alert=APNSAlert(title=message.title, body=message.body),
        badge=message.badge,
        sound=message.sound,
        thread_id=message.group,
        interruption_level=message.level or "active",
        icon=message.icon,
        auto_copy=message.auto_copy,
        is_archive=message.is_archive,
        copy=message.copy,
        url=message.url,
        custom_data=dict(message.extras),
    )


def inner_document(message: PlainMessage) -> Dict[str, Any]:
    """The notification fields that get encrypted."""
    document: Dict[str, Any] = {"title": message.title, "body": message.body}
    document.update(message.bark_fields())
    document.update(message.extras)
    return document


def encode(message: Message) -> EncodedPayload:
    """
    Encode a message into the APNS request body.

    Raises:
        PayloadError: The message cannot be serialized or encrypted
    """
    _check_extras(message)

    if not isinstance(message, EncryptedMessage):
        return EncodedPayload(body=_dumps(to_apns_payload(message).to_apns_dict()))

    cipher = message.cipher
    generated_iv: Optional[str] = None
    iv_bytes = cipher.iv_bytes
    if cipher.requires_iv and iv_bytes is None:
        generated_iv = generate_iv()
        iv_bytes = generated_iv.encode("utf-8")

    try:
        ciphertext = encrypt(_dumps(inner_document(message)), cipher, iv_bytes)
    except ConfigurationError as e:
        raise PayloadError(str(e)) from e

    encoded = base64.b64encode(ciphertext).decode("ascii")
    payload = to_apns_payload(message, ciphertext=encoded, iv=generated_iv)

    logger.debug(
        "Encrypted notification payload",
        extra={
            "algorithm": cipher.algorithm,
            "mode": cipher.mode,
            "generated_iv": generated_iv is not None,
            "ciphertext_bytes": len(ciphertext),
        },
    )

    return EncodedPayload(
        body=_dumps(payload.to_apns_dict()),
        encrypted=True,
        iv=generated_iv,
    )
