"""
Field encryption and signed tickets
===================================

Encryption scheme (version 1)
-----------------------------
* **KDF**    -- PBKDF2-HMAC-SHA512, 100 000 iterations, 32-byte key derived
  from the master secret and a fresh 64-byte salt on every call.
* **Cipher** -- AES-256-GCM, fresh 16-byte IV, 16-byte authentication tag.
* **Format** -- ciphertext, IV, tag and salt travel as separate hex strings
  (see :class:`~rideshare.domain.entities.EncryptedValue`).

Changing any constant below invalidates stored data, so a change must come
with a new ``SCHEME_VERSION`` and a decrypt path for the old one.

Tickets
-------
A ticket is ``base64({"d": data, "s": signature})`` where ``data`` is the
compact ``{b, t, p, s, ts}`` record and ``signature`` is the first 16 hex
chars of ``sha256(serialized_data + master_secret)``.  Short keys and a
truncated signature keep the QR code small.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import secrets
import string
from typing import Any, Iterable, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import SecretStr

from rideshare.domain.entities import EncryptedValue, TicketPayload
from rideshare.domain.exceptions import DecryptionError, EncryptionError

logger = logging.getLogger(__name__)

SCHEME_VERSION = 1
KEY_LENGTH = 32
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
SALT_LENGTH = 64
KDF_ITERATIONS = 100_000

TICKET_SIGNATURE_LENGTH = 16
_TICKET_KEYS = {"b", "t", "p", "s", "ts"}
_ALPHANUMERIC = string.ascii_letters + string.digits


class EncryptionService:
    """Stateless per call: every ``encrypt`` derives its own key material."""

    def __init__(self, master_key: Union[str, SecretStr, None]):
        if isinstance(master_key, SecretStr):
            master_key = master_key.get_secret_value()
        self._master_key = master_key or None

    # ── Key derivation ────────────────────────────────────────────────

    def _require_master_key(self) -> str:
        if not self._master_key:
            raise EncryptionError("Master encryption key is not configured")
        return self._master_key

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._require_master_key().encode("utf-8"))

    # ── Field encryption ──────────────────────────────────────────────

    def encrypt(self, plaintext: str) -> EncryptedValue:
        self._require_master_key()
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = self._derive_key(salt)

        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return EncryptedValue(
            ciphertext=ciphertext.hex(),
            iv=iv.hex(),
            auth_tag=tag.hex(),
            salt=salt.hex(),
            version=SCHEME_VERSION,
        )

    def decrypt(self, value: EncryptedValue) -> str:
        """Verify and decrypt *value*; never returns unverified data."""
        self._require_master_key()
        if value.version != SCHEME_VERSION:
            raise DecryptionError(
                f"Unsupported encryption scheme version {value.version}"
            )
        try:
            iv = bytes.fromhex(value.iv)
            tag = bytes.fromhex(value.auth_tag)
            salt = bytes.fromhex(value.salt)
            ciphertext = bytes.fromhex(value.ciphertext)
        except (TypeError, ValueError) as exc:
            raise DecryptionError("Encrypted value is not valid hex") from exc

        if (
            len(iv) != IV_LENGTH
            or len(tag) != AUTH_TAG_LENGTH
            or len(salt) != SALT_LENGTH
        ):
            raise DecryptionError("Encrypted value has unexpected component sizes")

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(
                iv, ciphertext + tag, None
            )
        except InvalidTag as exc:
            raise DecryptionError(
                "Decryption failed - data may be corrupted or key is incorrect"
            ) from exc
        return plaintext.decode("utf-8")

    def encrypt_fields(
        self, data: Mapping[str, Any], fields: Iterable[str]
    ) -> dict[str, Any]:
        """Return a copy of *data* with the truthy *fields* encrypted."""
        result = dict(data)
        for name in fields:
            if data.get(name):
                result[name] = self.encrypt(str(data[name]))
        return result

    def decrypt_fields(
        self, data: Mapping[str, Any], fields: Iterable[str]
    ) -> dict[str, Any]:
        result = dict(data)
        for name in fields:
            if isinstance(data.get(name), EncryptedValue):
                result[name] = self.decrypt(data[name])
        return result

    # ── Hashing / random values ───────────────────────────────────────

    @staticmethod
    def hash(data: str) -> str:
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    @staticmethod
    def hash_with_salt(data: str, salt: str) -> str:
        return hmac.new(
            salt.encode("utf-8"), data.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    @staticmethod
    def generate_token(length: int = 32) -> str:
        """*length* random bytes, hex encoded."""
        return secrets.token_hex(length)

    @staticmethod
    def generate_random_string(length: int = 16) -> str:
        return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))

    @staticmethod
    def mask(
        value: Optional[str], visible_start: int = 2, visible_end: int = 2
    ) -> Optional[str]:
        if not value or len(value) <= visible_start + visible_end:
            return value
        hidden = len(value) - visible_start - visible_end
        return value[:visible_start] + "*" * hidden + value[len(value) - visible_end:]

    # ── Tickets ───────────────────────────────────────────────────────

    @staticmethod
    def _ticket_data(payload: TicketPayload) -> dict[str, Any]:
        return {
            "b": payload.booking_id,
            "t": payload.trip_id,
            "p": payload.passenger_id,
            "s": payload.seats,
            "ts": payload.issued_at,
        }

    @staticmethod
    def _serialize(data: Mapping[str, Any]) -> str:
        return json.dumps(data, separators=(",", ":"))

    def _ticket_signature(self, data: Mapping[str, Any]) -> str:
        digest = self.hash(self._serialize(data) + self._require_master_key())
        return digest[:TICKET_SIGNATURE_LENGTH]

    def _encode_envelope(self, data: Mapping[str, Any], signature: str) -> str:
        envelope = {"d": data, "s": signature}
        return base64.b64encode(self._serialize(envelope).encode("utf-8")).decode(
            "ascii"
        )

    def sign_ticket(self, payload: TicketPayload) -> str:
        data = self._ticket_data(payload)
        return self._encode_envelope(data, self._ticket_signature(data))

    def verify_ticket(self, token: Any) -> Optional[TicketPayload]:
        """Return the embedded payload, or ``None`` for anything not signed by us."""
        if not self._master_key:
            logger.error("Ticket verification requested without a master key")
            return None
        try:
            raw = base64.b64decode(token, validate=True)
            envelope = json.loads(raw.decode("utf-8"))
        except (TypeError, ValueError):
            return None

        payload = _parse_envelope(envelope)
        if payload is None:
            return None
        # Only the exact text sign_ticket produces is accepted: no alternate
        # base64 trailing bits, JSON spacing or key order.
        if token != self._encode_envelope(self._ticket_data(payload), envelope["s"]):
            return None

        expected = self._ticket_signature(self._ticket_data(payload))
        if not hmac.compare_digest(
            envelope["s"].encode("utf-8"), expected.encode("utf-8")
        ):
            return None
        return payload


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_envelope(envelope: Any) -> Optional[TicketPayload]:
    if not isinstance(envelope, dict) or set(envelope) != {"d", "s"}:
        return None
    data, signature = envelope["d"], envelope["s"]
    if not isinstance(signature, str) or not isinstance(data, dict):
        return None
    if set(data) != _TICKET_KEYS:
        return None
    if not all(isinstance(data[k], str) for k in ("b", "t", "p")):
        return None
    if not _is_int(data["s"]) or not _is_int(data["ts"]):
        return None
    return TicketPayload(
        booking_id=data["b"],
        trip_id=data["t"],
        passenger_id=data["p"],
        seats=data["s"],
        issued_at=data["ts"],
    )
