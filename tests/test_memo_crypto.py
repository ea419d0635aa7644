"""Tests for the encrypted memo codec (encrypt_json / decrypt_json)."""

import base58
import pytest

from utils.errors import ErrorKind, HivevoiceError
from utils.hive_keys import PrivateKey
from utils.memo_crypto import (
    decode_memo,
    decrypt_json,
    encode_memo,
    encrypt_json,
    estimate_encrypted_size,
    read_varint32,
    validate_memo_size,
    write_string,
    write_varint32,
)

SENDER = PrivateKey.from_seed("sender memo")
RECIPIENT = PrivateKey.from_seed("recipient memo")
OUTSIDER = PrivateKey.from_seed("outsider memo")

RECORD = {
    "id": "2f1c",
    "invoice_number": "INV-1",
    "items": [{"description": "Design", "quantity": "2", "unit_price": "50"}],
    "total": "100",
    "notes": None,
}


def _encrypt(record):
    return encrypt_json(record, SENDER.to_wif(), RECIPIENT.public_key().to_string())


class TestRoundTrip:

    def test_recipient_decrypts(self):
        assert decrypt_json(_encrypt(RECORD), RECIPIENT.to_wif()) == RECORD

    def test_sender_decrypts(self):
        assert decrypt_json(_encrypt(RECORD), SENDER.to_wif()) == RECORD

    @pytest.mark.parametrize("record", [
        {},
        {"nested": {"deeper": {"list": [1, 2, {"x": None}]}}},
        {"text": "Zahlung für Rechnung ✓ 請求書"},
        [1, "two", None],
        "plain string",
    ])
    def test_shapes(self, record):
        assert decrypt_json(_encrypt(record), RECIPIENT.to_wif()) == record

    def test_ciphertext_is_non_deterministic(self):
        first, second = _encrypt(RECORD), _encrypt(RECORD)
        assert first != second
        assert decrypt_json(first, RECIPIENT.to_wif()) == decrypt_json(second, RECIPIENT.to_wif())

    def test_ciphertext_starts_with_sentinel(self):
        assert _encrypt(RECORD).startswith("#")

    def test_header_names_both_parties(self):
        raw = base58.b58decode(_encrypt(RECORD)[1:])
        assert raw[:33] == SENDER.public_key().key
        assert raw[33:66] == RECIPIENT.public_key().key

    def test_fixed_nonce_is_reproducible(self):
        a = encode_memo(SENDER, RECIPIENT.public_key(), "#hello", nonce=42)
        b = encode_memo(SENDER, RECIPIENT.public_key(), "#hello", nonce=42)
        assert a == b
        assert decode_memo(RECIPIENT, a) == "#hello"

    def test_unprefixed_memo_passes_through(self):
        assert encode_memo(SENDER, RECIPIENT.public_key(), "hello") == "hello"
        assert decode_memo(RECIPIENT, "hello") == "hello"


class TestEncryptErrors:

    def test_none_record(self):
        with pytest.raises(HivevoiceError) as exc:
            _encrypt(None)
        assert exc.value.kind == ErrorKind.MALFORMED_RECORD

    def test_unserializable_record(self):
        with pytest.raises(HivevoiceError) as exc:
            _encrypt({"value": object()})
        assert exc.value.kind == ErrorKind.MALFORMED_RECORD

    def test_nan_is_rejected(self):
        with pytest.raises(HivevoiceError) as exc:
            _encrypt({"value": float("nan")})
        assert exc.value.kind == ErrorKind.MALFORMED_RECORD

    @pytest.mark.parametrize("wif", ["", "   ", None])
    def test_missing_private_key(self, wif):
        with pytest.raises(HivevoiceError) as exc:
            encrypt_json(RECORD, wif, RECIPIENT.public_key().to_string())
        assert exc.value.kind == ErrorKind.MISSING_KEY

    def test_missing_public_key(self):
        with pytest.raises(HivevoiceError) as exc:
            encrypt_json(RECORD, SENDER.to_wif(), "")
        assert exc.value.kind == ErrorKind.MISSING_KEY

    def test_invalid_private_key(self):
        with pytest.raises(HivevoiceError) as exc:
            encrypt_json(RECORD, "not-a-wif", RECIPIENT.public_key().to_string())
        assert exc.value.kind == ErrorKind.INVALID_KEY

    def test_invalid_public_key(self):
        with pytest.raises(HivevoiceError) as exc:
            encrypt_json(RECORD, SENDER.to_wif(), "STMnotakey")
        assert exc.value.kind == ErrorKind.INVALID_KEY


class TestDecryptErrors:

    def test_wrong_key(self):
        with pytest.raises(HivevoiceError) as exc:
            decrypt_json(_encrypt(RECORD), OUTSIDER.to_wif())
        assert exc.value.kind == ErrorKind.CRYPTO

    def test_empty_cipher(self):
        with pytest.raises(HivevoiceError) as exc:
            decrypt_json("", RECIPIENT.to_wif())
        assert exc.value.kind == ErrorKind.CRYPTO

    def test_missing_key(self):
        with pytest.raises(HivevoiceError) as exc:
            decrypt_json(_encrypt(RECORD), "")
        assert exc.value.kind == ErrorKind.MISSING_KEY

    def test_not_a_memo(self):
        with pytest.raises(HivevoiceError) as exc:
            decrypt_json("plain text", RECIPIENT.to_wif())
        assert exc.value.kind == ErrorKind.CRYPTO

    def test_truncated(self):
        with pytest.raises(HivevoiceError) as exc:
            decrypt_json(_encrypt(RECORD)[:40], RECIPIENT.to_wif())
        assert exc.value.kind == ErrorKind.CRYPTO

    def test_non_json_plaintext(self):
        memo = encode_memo(SENDER, RECIPIENT.public_key(), "#not json")
        with pytest.raises(HivevoiceError) as exc:
            decrypt_json(memo, RECIPIENT.to_wif())
        assert exc.value.kind == ErrorKind.CRYPTO


class TestSizeEstimate:

    @pytest.mark.parametrize("record", [
        {},
        RECORD,
        {"items": [{"description": "x" * 40, "n": i} for i in range(30)]},
    ])
    def test_estimate_is_close_upper_bound(self, record):
        actual = len(_encrypt(record))
        estimate = estimate_encrypted_size(record)
        assert actual <= estimate <= actual + 3

    def test_validate_small_record(self):
        result = validate_memo_size(RECORD)
        assert result["is_valid"] is True
        assert result["max_size"] == 2048
        assert "compression_suggestions" not in result

    def test_validate_large_record(self):
        result = validate_memo_size({"blob": "x" * 5000})
        assert result["is_valid"] is False
        assert result["estimated_size"] > 2048
        assert result["compression_suggestions"]

    def test_custom_ceiling(self):
        assert validate_memo_size({"blob": "x" * 5000}, max_size=8192)["is_valid"] is True


class TestVarint:

    @pytest.mark.parametrize("value,encoded", [
        (0, b"\x00"),
        (127, b"\x7f"),
        (128, b"\x80\x01"),
        (300, b"\xac\x02"),
        (16384, b"\x80\x80\x01"),
    ])
    def test_encoding(self, value, encoded):
        assert write_varint32(value) == encoded
        assert read_varint32(encoded) == (value, len(encoded))

    def test_read_at_offset(self):
        assert read_varint32(b"\xff\xac\x02\x00", 1) == (300, 3)

    def test_truncated(self):
        with pytest.raises(ValueError):
            read_varint32(b"\x80")

    def test_string_is_length_prefixed_utf8(self):
        assert write_string("héllo") == b"\x06h\xc3\xa9llo"
