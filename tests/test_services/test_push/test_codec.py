"""
Tests for the Bark payload codec.
"""

import base64
import dataclasses
import json

import pytest

from barkpush.services.push import codec
from barkpush.services.push.codec import EncodedPayload, decrypt, encode, encrypt, generate_iv
from barkpush.services.push.exceptions import ConfigurationError, PayloadError
from barkpush.services.push.models import (
    CipherSpec,
    EncryptedMessage,
    PlainMessage,
    build_message,
)


KEYS = {
    "aes128": "0123456789abcdef",
    "aes192": "0123456789abcdef01234567",
    "aes256": "0123456789abcdef0123456789abcdef",
}
IV_16 = "fedcba9876543210"


class TestPlainEncoding:
    """Tests for messages sent in clear."""

    def test_title_and_body_preserved(self):
        payload = encode(PlainMessage("Server down", "db-01 is not responding"))
        document = json.loads(payload.body)

        assert payload.encrypted is False
        assert payload.iv is None
        assert document["aps"]["alert"] == {
            "title": "Server down",
            "body": "db-01 is not responding",
        }

    def test_unicode_and_quotes_round_trip(self):
        """JSON escaping is handled by the serializer, not string formatting."""
        title = 'He said "hi"'
        body = "café ☕ line1\nline2"
        document = encode(PlainMessage(title, body)).to_dict()
        assert document["aps"]["alert"]["title"] == title
        assert document["aps"]["alert"]["body"] == body

    def test_bark_fields_layout(self):
        msg = PlainMessage(
            "T", "B",
            level="passive",
            badge=2,
            group="ci",
            icon="https://example.com/i.png",
            url="https://example.com",
            auto_copy=0,
            extras={"action": "none"},
        )
        document = encode(msg).to_dict()

        assert document["aps"]["interruption-level"] == "passive"
        assert document["aps"]["badge"] == 2
        assert document["aps"]["thread-id"] == "ci"
        assert document["aps"]["mutable-content"] == 1
        assert document["icon"] == "https://example.com/i.png"
        assert document["url"] == "https://example.com"
        assert document["autoCopy"] == 0
        assert document["action"] == "none"

    @pytest.mark.parametrize("key", ["aps", "ciphertext", "iv", "icon", "url", "copy", "isArchive", "autoCopy"])
    def test_reserved_extras_rejected(self, key):
        """Extras cannot overwrite keys the Bark layout owns."""
        with pytest.raises(PayloadError):
            encode(PlainMessage("T", "B", extras={key: "x"}))

    def test_unserializable_extras_rejected(self):
        with pytest.raises(PayloadError):
            encode(PlainMessage("T", "B", extras={"when": object()}))

    def test_payload_error_is_configuration_error(self):
        assert issubclass(PayloadError, ConfigurationError)


class TestEncryptedEncoding:
    """Tests for AES encrypted payloads."""

    @pytest.mark.parametrize("algorithm", sorted(KEYS))
    @pytest.mark.parametrize("mode,iv", [("cbc", IV_16), ("cbc", None), ("ecb", None)])
    def test_round_trip(self, algorithm, mode, iv):
        """Decrypting the ciphertext recovers the inner notification."""
        cipher = CipherSpec(algorithm=algorithm, mode=mode, key=KEYS[algorithm], iv=iv)
        msg = EncryptedMessage("Secret", "the vault code is 0420", sound="bell.caf", cipher=cipher)

        payload = encode(msg)
        document = payload.to_dict()
        recovered = decrypt(document["ciphertext"], cipher, document.get("iv"))

        assert payload.encrypted is True
        assert recovered == {"title": "Secret", "body": "the vault code is 0420", "sound": "bell.caf"}

    def test_body_hidden_from_envelope(self):
        cipher = CipherSpec(algorithm="aes128", mode="cbc", key=KEYS["aes128"], iv=IV_16)
        document = encode(EncryptedMessage("T", "top secret", cipher=cipher)).to_dict()

        assert "top secret" not in json.dumps(document)
        assert document["aps"]["alert"]["body"] == "NoContent"
        assert document["aps"]["mutable-content"] == 1

    @pytest.mark.parametrize("iv,expected_keys", [
        (None, {"aps", "ciphertext", "iv"}),
        (IV_16, {"aps", "ciphertext"}),
    ])
    def test_envelope_carries_only_ciphertext(self, iv, expected_keys):
        """Bark fields and extras travel only inside the ciphertext."""
        msg = build_message(
            "T", "the otp is 4242",
            enc_type="aes128", mode="cbc", key=KEYS["aes128"], iv=iv,
            copy="the otp is 4242",
            url="https://example.com/reset",
            icon="https://example.com/i.png",
            is_archive=1,
            auto_copy=0,
            extras={"otp": "4242"},
        )
        document = encode(msg).to_dict()

        assert set(document) == expected_keys
        in_clear = json.dumps({k: v for k, v in document.items() if k != "ciphertext"})
        assert "4242" not in in_clear
        assert "example.com" not in in_clear

        recovered = decrypt(document["ciphertext"], msg.cipher, document.get("iv"))
        assert recovered["copy"] == "the otp is 4242"
        assert recovered["url"] == "https://example.com/reset"
        assert recovered["isArchive"] == 1
        assert recovered["autoCopy"] == 0
        assert recovered["otp"] == "4242"

    def test_ciphertext_is_standard_base64(self):
        cipher = CipherSpec(algorithm="aes256", mode="ecb", key=KEYS["aes256"])
        document = encode(EncryptedMessage("T", "B", cipher=cipher)).to_dict()

        raw = base64.b64decode(document["ciphertext"], validate=True)
        assert len(raw) % 16 == 0

    def test_supplied_iv_not_sent(self):
        cipher = CipherSpec(algorithm="aes128", mode="cbc", key=KEYS["aes128"], iv=IV_16)
        payload = encode(EncryptedMessage("T", "B", cipher=cipher))

        assert payload.iv is None
        assert "iv" not in payload.to_dict()

    def test_generated_iv_sent(self):
        cipher = CipherSpec(algorithm="aes128", mode="cbc", key=KEYS["aes128"])
        payload = encode(EncryptedMessage("T", "B", cipher=cipher))
        document = payload.to_dict()

        assert payload.iv is not None
        assert len(payload.iv) == 16
        assert document["iv"] == payload.iv

    def test_ecb_never_sends_iv(self):
        cipher = CipherSpec(algorithm="aes128", mode="ecb", key=KEYS["aes128"])
        payload = encode(EncryptedMessage("T", "B", cipher=cipher))
        assert payload.iv is None
        assert "iv" not in payload.to_dict()

    def test_generated_ivs_differ(self):
        assert generate_iv() != generate_iv()

    def test_cbc_deterministic_with_fixed_iv(self):
        """Same key and IV produce the same ciphertext, as the client expects."""
        cipher = CipherSpec(algorithm="aes128", mode="cbc", key=KEYS["aes128"], iv=IV_16)
        msg = EncryptedMessage("T", "B", cipher=cipher)
        assert encode(msg).body == encode(msg).body

    def test_known_vector(self):
        """A 15-byte document pads to exactly one AES block."""
        cipher = CipherSpec(algorithm="aes128", mode="cbc", key=KEYS["aes128"], iv=IV_16)
        plaintext = b'{"body":"test"}'
        ciphertext = encrypt(plaintext, cipher, cipher.iv_bytes)

        assert len(ciphertext) == 16  # 15 bytes + 1 byte of PKCS#7 padding
        assert decrypt(ciphertext, cipher) == {"body": "test"}

    def test_encrypt_requires_iv_for_cbc(self):
        cipher = CipherSpec(algorithm="aes128", mode="cbc", key=KEYS["aes128"])
        with pytest.raises(ConfigurationError):
            encrypt(b"data", cipher, None)

    def test_encrypt_rejects_iv_for_ecb(self):
        cipher = CipherSpec(algorithm="aes128", mode="ecb", key=KEYS["aes128"])
        with pytest.raises(ConfigurationError):
            encrypt(b"data", cipher, IV_16.encode())

    def test_build_message_option_style(self):
        msg = build_message("T", "B", enc_type="aes192", mode="ecb", key=KEYS["aes192"])
        document = encode(msg).to_dict()
        assert decrypt(document["ciphertext"], msg.cipher)["body"] == "B"


class TestEncodedPayload:
    def test_frozen(self):
        payload = EncodedPayload(body=b"{}")
        with pytest.raises(dataclasses.FrozenInstanceError):
            payload.body = b"[]"

    def test_inner_document_includes_extras(self):
        msg = PlainMessage("T", "B", group="g", extras={"k": 1})
        assert codec.inner_document(msg) == {
            "title": "T",
            "body": "B",
            "sound": "chime.caf",
            "group": "g",
            "k": 1,
        }
