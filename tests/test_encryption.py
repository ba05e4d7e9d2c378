"""Field encryption, hashing and signed tickets."""

import base64
import dataclasses
import json
import string

import pytest

from rideshare.domain.entities import EncryptedValue, TicketPayload
from rideshare.domain.exceptions import DecryptionError, EncryptionError
from rideshare.security.encryption import (
    AUTH_TAG_LENGTH,
    IV_LENGTH,
    SALT_LENGTH,
    EncryptionService,
)
from tests.conftest import TEST_MASTER_KEY


def _flip_first_bit(hex_value: str) -> str:
    raw = bytearray(bytes.fromhex(hex_value))
    raw[0] ^= 0x01
    return raw.hex()


def _reencode(envelope_bytes: bytes) -> str:
    return base64.b64encode(envelope_bytes).decode("ascii")


class TestFieldEncryption:
    @pytest.mark.parametrize(
        "plaintext", ["16-12345-116", "", "لوحة 123", "x" * 500]
    )
    def test_round_trip(self, encryption, plaintext):
        assert encryption.decrypt(encryption.encrypt(plaintext)) == plaintext

    def test_components_are_hex_with_fixed_sizes(self, encryption):
        value = encryption.encrypt("ABC-123")
        assert len(bytes.fromhex(value.iv)) == IV_LENGTH
        assert len(bytes.fromhex(value.auth_tag)) == AUTH_TAG_LENGTH
        assert len(bytes.fromhex(value.salt)) == SALT_LENGTH
        assert value.version == 1

    def test_salt_and_iv_are_fresh_per_call(self, encryption):
        first = encryption.encrypt("same plate")
        second = encryption.encrypt("same plate")
        assert first.salt != second.salt
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_mutated_ciphertext_is_rejected(self, encryption):
        value = encryption.encrypt("ABC-123")
        tampered = dataclasses.replace(value, ciphertext=_flip_first_bit(value.ciphertext))
        with pytest.raises(DecryptionError):
            encryption.decrypt(tampered)

    def test_mutated_auth_tag_is_rejected(self, encryption):
        value = encryption.encrypt("ABC-123")
        tampered = dataclasses.replace(value, auth_tag=_flip_first_bit(value.auth_tag))
        with pytest.raises(DecryptionError):
            encryption.decrypt(tampered)

    def test_wrong_key_is_rejected(self, encryption):
        value = encryption.encrypt("ABC-123")
        with pytest.raises(DecryptionError):
            EncryptionService("another-key").decrypt(value)

    def test_unknown_scheme_version_is_rejected(self, encryption):
        value = dataclasses.replace(encryption.encrypt("ABC-123"), version=2)
        with pytest.raises(DecryptionError, match="version"):
            encryption.decrypt(value)

    def test_malformed_components_are_rejected(self, encryption):
        with pytest.raises(DecryptionError):
            encryption.decrypt(
                EncryptedValue(ciphertext="zz", iv="00", auth_tag="00", salt="00")
            )
        with pytest.raises(DecryptionError):
            encryption.decrypt(
                EncryptedValue(ciphertext="00", iv="00", auth_tag="00", salt="00")
            )

    def test_missing_master_key(self):
        service = EncryptionService(None)
        with pytest.raises(EncryptionError):
            service.encrypt("ABC-123")
        with pytest.raises(EncryptionError):
            service.decrypt(EncryptedValue("00", "00", "00", "00"))

    def test_encrypt_fields_only_touches_listed_fields(self, encryption):
        record = {"plate": "ABC-123", "make": "Renault", "vin": ""}
        sealed = encryption.encrypt_fields(record, ["plate", "vin"])
        assert isinstance(sealed["plate"], EncryptedValue)
        assert sealed["make"] == "Renault"
        assert sealed["vin"] == ""
        assert encryption.decrypt_fields(sealed, ["plate"]) == record


class TestHashingAndRandomValues:
    def test_hash_is_deterministic_sha256_hex(self):
        digest = EncryptionService.hash("hello")
        assert digest == EncryptionService.hash("hello")
        assert digest == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"

    def test_hash_with_salt_depends_on_salt(self):
        assert EncryptionService.hash_with_salt("x", "a") != EncryptionService.hash_with_salt("x", "b")

    def test_generate_token_length(self):
        token = EncryptionService.generate_token(16)
        assert len(token) == 32
        assert all(c in string.hexdigits for c in token)
        assert token != EncryptionService.generate_token(16)

    def test_generate_random_string_is_alphanumeric(self):
        value = EncryptionService.generate_random_string(24)
        assert len(value) == 24
        assert value.isalnum()

    def test_mask(self):
        assert EncryptionService.mask("12345-116-16") == "12********16"
        assert EncryptionService.mask("abc") == "abc"
        assert EncryptionService.mask(None) is None


class TestTickets:
    @pytest.fixture
    def payload(self):
        return TicketPayload(
            booking_id="7b0b3f0e-6c1e-4a44-9d55-0a3c0d7f7a11",
            trip_id="2f8f5b1a-3c6d-4e0b-8a9f-1b2c3d4e5f60",
            passenger_id="passenger-42",
            seats=2,
            issued_at=1760000000000,
        )

    def test_round_trip(self, encryption, payload):
        assert encryption.verify_ticket(encryption.sign_ticket(payload)) == payload

    def test_token_layout(self, encryption, payload):
        envelope = json.loads(base64.b64decode(encryption.sign_ticket(payload)))
        assert set(envelope) == {"d", "s"}
        assert envelope["d"] == {
            "b": payload.booking_id,
            "t": payload.trip_id,
            "p": payload.passenger_id,
            "s": 2,
            "ts": 1760000000000,
        }
        assert len(envelope["s"]) == 16

    def test_every_mutated_byte_is_rejected(self, encryption, payload):
        raw = base64.b64decode(encryption.sign_ticket(payload))
        for position in range(len(raw)):
            mutated = bytearray(raw)
            mutated[position] ^= 0x01
            assert encryption.verify_ticket(_reencode(bytes(mutated))) is None, position

    def test_every_mutated_token_character_is_rejected(self, encryption, payload):
        token = encryption.sign_ticket(payload)
        alphabet = string.ascii_letters + string.digits + "+/="
        for position, original in enumerate(token):
            for replacement in alphabet:
                if replacement == original:
                    continue
                mutated = token[:position] + replacement + token[position + 1:]
                assert encryption.verify_ticket(mutated) is None, (position, replacement)

    def test_reformatted_envelope_is_rejected(self, encryption, payload):
        envelope = json.loads(base64.b64decode(encryption.sign_ticket(payload)))
        spaced = _reencode(json.dumps(envelope).encode())
        assert encryption.verify_ticket(spaced) is None

    def test_forged_data_with_old_signature_is_rejected(self, encryption, payload):
        envelope = json.loads(base64.b64decode(encryption.sign_ticket(payload)))
        envelope["d"]["s"] = 4
        forged = _reencode(json.dumps(envelope, separators=(",", ":")).encode())
        assert encryption.verify_ticket(forged) is None

    def test_ticket_from_another_key_is_rejected(self, payload):
        token = EncryptionService("someone-else").sign_ticket(payload)
        assert EncryptionService(TEST_MASTER_KEY).verify_ticket(token) is None

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "not base64 at all!",
            None,
            12345,
            _reencode(b"[]"),
            _reencode(b"\xff\xfe"),
            _reencode(b'{"d":{},"s":"0000000000000000"}'),
            _reencode(b'{"d":{"b":"1","t":"2","p":"3","s":true,"ts":1},"s":"x"}'),
            _reencode(b'{"d":{"b":"1","t":"2","p":"3","s":1,"ts":1},"s":5}'),
        ],
    )
    def test_garbage_is_rejected_without_raising(self, encryption, token):
        assert encryption.verify_ticket(token) is None

    def test_verification_without_master_key(self, encryption, payload):
        token = encryption.sign_ticket(payload)
        assert EncryptionService(None).verify_ticket(token) is None

    def test_signing_without_master_key_raises(self, payload):
        with pytest.raises(EncryptionError):
            EncryptionService(None).sign_ticket(payload)
