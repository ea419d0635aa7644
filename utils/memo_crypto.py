"""
Encrypted memo codec for invoice payloads.

Implements the Hive encrypted memo convention so that both the sender and the
recipient can decrypt the same ciphertext with their own private memo key:

1. Serialize the record to canonical JSON and prefix it with "#".
   The "#" sentinel is part of the protocol: Hive wallets only encrypt and
   decrypt memos that start with it, and every ciphertext starts with it.
2. S = sha512(x(ECDH(own_private, counterparty_public)))
3. K = sha512(nonce_u64_le || S); AES-256-CBC with key K[0:32], iv K[32:48]
4. check = uint32_le(sha256(K)[:4])
5. "#" + base58(from_pub || to_pub || nonce || check || varint(len) || ciphertext)

ECDH gives the same S from (sender_priv, recipient_pub) and
(recipient_priv, sender_pub), which is what makes decryption bidirectional.
The decoder reads both public keys from the header and picks the one that is
not its own.
"""
import json
import math
import os
import struct
import hashlib
from typing import Any, Optional

import base58
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad

from utils.errors import ErrorKind, HivevoiceError, crypto_error, missing_key
from utils.hive_keys import PrivateKey, PublicKey


MEMO_PREFIX = "#"
DEFAULT_MAX_MEMO_SIZE = 2048

# from pubkey + to pubkey + nonce + check
_HEADER_SIZE = 33 + 33 + 8 + 4
_BASE58_RATIO = math.log(256) / math.log(58)


def write_varint32(value: int) -> bytes:
     out = bytearray()
     while True:
          byte = value & 0x7F
          value >>= 7
          if value:
               out.append(byte | 0x80)
          else:
               out.append(byte)
               return bytes(out)


def read_varint32(data: bytes, offset: int = 0):
     """Return (value, new_offset)."""
     result = 0
     shift = 0
     while True:
          if offset >= len(data):
               raise ValueError("Truncated varint")
          byte = data[offset]
          offset += 1
          result |= (byte & 0x7F) << shift
          if not byte & 0x80:
               return result, offset
          shift += 7
          if shift > 35:
               raise ValueError("Varint too long")


def write_bytes(value: bytes) -> bytes:
     return write_varint32(len(value)) + value


def write_string(value: str) -> bytes:
     return write_bytes(value.encode("utf-8"))


def canonical_json(record: Any) -> str:
     return json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _require(value: Optional[str], message: str) -> str:
     if not value or not value.strip():
          raise missing_key(message)
     return value.strip()


def _derive(private_key: PrivateKey, public_key: PublicKey, nonce: int):
     shared = private_key.shared_secret(public_key)
     encryption_key = hashlib.sha512(struct.pack("<Q", nonce) + shared).digest()
     check = struct.unpack("<I", hashlib.sha256(encryption_key).digest()[:4])[0]
     return encryption_key[:32], encryption_key[32:48], check


def encode_memo(private_key: PrivateKey, public_key: PublicKey, memo: str,
                nonce: Optional[int] = None) -> str:
     """Encrypt a '#'-prefixed memo. Memos without the prefix are returned unchanged."""
     if not memo.startswith(MEMO_PREFIX):
          return memo
     if nonce is None:
          nonce = struct.unpack("<Q", os.urandom(8))[0]
     key, iv, check = _derive(private_key, public_key, nonce)
     encrypted = AES.new(key, AES.MODE_CBC, iv).encrypt(pad(write_string(memo[1:]), AES.block_size))
     payload = (
          private_key.public_key().key
          + public_key.key
          + struct.pack("<Q", nonce)
          + struct.pack("<I", check)
          + write_bytes(encrypted)
     )
     return MEMO_PREFIX + base58.b58encode(payload).decode("ascii")


def decode_memo(private_key: PrivateKey, memo: str) -> str:
     """Decrypt an encoded memo with either party's private key. Returns '#' + plaintext."""
     if not memo.startswith(MEMO_PREFIX):
          return memo
     try:
          raw = base58.b58decode(memo[1:])
     except ValueError as e:
          raise crypto_error("Decryption failed: ciphertext is not base58", e)
     if len(raw) <= _HEADER_SIZE:
          raise crypto_error("Decryption failed: ciphertext is truncated")

     try:
          sender = PublicKey(raw[:33])
          recipient = PublicKey(raw[33:66])
     except HivevoiceError as e:
          raise crypto_error("Decryption failed: ciphertext header is corrupt", e)
     nonce = struct.unpack("<Q", raw[66:74])[0]
     check = struct.unpack("<I", raw[74:78])[0]
     length, offset = read_varint32(raw, _HEADER_SIZE)
     encrypted = raw[offset:offset + length]
     if len(encrypted) != length:
          raise crypto_error("Decryption failed: ciphertext is truncated")

     other = recipient if private_key.public_key() == sender else sender
     key, iv, expected = _derive(private_key, other, nonce)
     if expected != check:
          raise crypto_error("Decryption failed: checksum mismatch, memo was not encrypted for this key")
     plain = unpad(AES.new(key, AES.MODE_CBC, iv).decrypt(encrypted), AES.block_size)

     try:
          size, start = read_varint32(plain)
          if start + size != len(plain):
               raise ValueError("length prefix does not match")
          text = plain[start:].decode("utf-8")
     except ValueError:
          # some wallets write the bare string without a length prefix
          text = plain.decode("utf-8")
     return MEMO_PREFIX + text


def encrypt_json(record: Any, from_private_key: str, to_public_key: str) -> str:
     """
     Encrypt a JSON-serializable record for exactly one sender/recipient pair.

     Args:
          record: Object to encrypt (dicts, lists, strings, numbers, None values inside)
          from_private_key: Sender's private memo key (WIF)
          to_public_key: Recipient's public memo key (STM...)

     Returns:
          Encrypted memo string starting with "#"

     Raises:
          HivevoiceError: MALFORMED_RECORD for a None or unserializable record,
               MISSING_KEY / INVALID_KEY for bad key material, CRYPTO otherwise
     """
     if record is None:
          raise HivevoiceError(ErrorKind.MALFORMED_RECORD, "Plain object cannot be null")
     from_private_key = _require(from_private_key, "From private memo key is required")
     to_public_key = _require(to_public_key, "To public memo key is required")

     try:
          message = MEMO_PREFIX + canonical_json(record)
     except (TypeError, ValueError) as e:
          raise HivevoiceError(ErrorKind.MALFORMED_RECORD, f"Record is not JSON serializable: {e}", e)

     private_key = PrivateKey.from_wif(from_private_key)
     public_key = PublicKey.from_string(to_public_key)
     try:
          return encode_memo(private_key, public_key, message)
     except HivevoiceError:
          raise
     except Exception as e:
          raise crypto_error(f"Encryption failed: {e}", e)


def decrypt_json(cipher: str, private_key: str) -> Any:
     """
     Decrypt a memo produced by encrypt_json. Works for the sender and the recipient.

     Raises:
          HivevoiceError: MISSING_KEY / INVALID_KEY for bad key material,
               CRYPTO for malformed ciphertext, wrong key or invalid JSON
     """
     if not cipher or not cipher.strip():
          raise crypto_error("Cipher text cannot be empty")
     key = PrivateKey.from_wif(_require(private_key, "Private memo key is required"))
     if not cipher.startswith(MEMO_PREFIX):
          raise crypto_error("Cipher text is not an encrypted memo")

     try:
          message = decode_memo(key, cipher.strip())
     except HivevoiceError:
          raise
     except Exception as e:
          raise crypto_error(f"Decryption failed: {e}", e)

     if not message.startswith(MEMO_PREFIX):
          raise crypto_error("Decrypted message missing required # prefix")
     try:
          return json.loads(message[1:])
     except ValueError as e:
          raise crypto_error(f"Invalid JSON in decrypted message: {e}", e)


def estimate_encrypted_size(record: Any) -> int:
     """
     Predict the length of encrypt_json(record, ...) in characters.

     The layout is fixed apart from the AES padding and the base58 expansion,
     so the estimate is an upper bound that is at most a character or two high.
     """
     body = len(canonical_json(record).encode("utf-8"))
     plain = len(write_string("x" * body))
     padded = (plain // AES.block_size + 1) * AES.block_size
     serialized = _HEADER_SIZE + len(write_bytes(b"\x00" * padded))
     return len(MEMO_PREFIX) + math.ceil(serialized * _BASE58_RATIO)


def validate_memo_size(record: Any, max_size: int = DEFAULT_MAX_MEMO_SIZE) -> dict:
     """
     Check whether a record fits a ledger payload ceiling once encrypted.

     Returns:
          Dictionary with is_valid, estimated_size, max_size and, when the
          record is too large, compression_suggestions
     """
     estimated = estimate_encrypted_size(record)
     result = {
          "is_valid": estimated <= max_size,
          "estimated_size": estimated,
          "max_size": max_size,
     }
     if not result["is_valid"]:
          result["compression_suggestions"] = [
               "Remove optional fields (shareable link, etc.)",
               "Truncate long descriptions",
               "Store only essential data on-chain",
          ]
     return result
