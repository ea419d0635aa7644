"""
Hive key material: WIF private keys, STM public keys and ECDH for memos.

Key formats:
- Private key (WIF): base58(0x80 || secret[32] || sha256d(0x80 || secret)[:4])
- Public key:        PREFIX || base58(compressed_point[33] || ripemd160(point)[:4])

All failures to parse key material raise HivevoiceError(INVALID_KEY).
"""
import hashlib

import base58
from Crypto.Hash import RIPEMD160
from ecdsa import SECP256k1, SigningKey, VerifyingKey

from utils.errors import invalid_key


CURVE = SECP256k1
WIF_VERSION = 0x80
DEFAULT_ADDRESS_PREFIX = "STM"


def _sha256(data: bytes) -> bytes:
     return hashlib.sha256(data).digest()


def _ripemd160(data: bytes) -> bytes:
     h = RIPEMD160.new()
     h.update(data)
     return h.digest()


def _b58decode(text: str, what: str) -> bytes:
     try:
          return base58.b58decode(text)
     except ValueError as e:
          raise invalid_key(f"Non-base58 character in {what}", e)


class PublicKey:
     """Compressed secp256k1 public key with its address prefix."""

     def __init__(self, key: bytes, prefix: str = DEFAULT_ADDRESS_PREFIX):
          try:
               self._verifying_key = VerifyingKey.from_string(key, curve=CURVE)
          except Exception as e:
               raise invalid_key("Invalid public key: not a point on secp256k1", e)
          self.key = self._verifying_key.to_string("compressed")
          self.prefix = prefix

     @classmethod
     def from_string(cls, value: str) -> "PublicKey":
          value = (value or "").strip()
          if len(value) < 4:
               raise invalid_key("Invalid public key: too short")
          prefix, encoded = value[:3], value[3:]
          raw = _b58decode(encoded, "public key")
          if len(raw) != 37:
               raise invalid_key("Invalid public key: wrong length")
          key, checksum = raw[:33], raw[33:]
          if _ripemd160(key)[:4] != checksum:
               raise invalid_key("Invalid public key: checksum mismatch")
          return cls(key, prefix)

     @property
     def point(self):
          return self._verifying_key.pubkey.point

     def to_string(self) -> str:
          checksum = _ripemd160(self.key)[:4]
          return self.prefix + base58.b58encode(self.key + checksum).decode("ascii")

     def __str__(self):
          return self.to_string()

     def __repr__(self):
          return f"<PublicKey({self.to_string()})>"

     def __eq__(self, other):
          return isinstance(other, PublicKey) and self.key == other.key

     def __hash__(self):
          return hash(self.key)


class PrivateKey:
     """secp256k1 private key as used by Hive for memo, posting and active roles."""

     def __init__(self, secret: bytes):
          if len(secret) != 32:
               raise invalid_key("Invalid private key: expected 32 bytes")
          try:
               self._signing_key = SigningKey.from_string(secret, curve=CURVE)
          except Exception as e:
               raise invalid_key("Invalid private key: out of range", e)
          self.secret = secret

     @classmethod
     def from_wif(cls, wif: str) -> "PrivateKey":
          raw = _b58decode((wif or "").strip(), "private key")
          if len(raw) != 37 or raw[0] != WIF_VERSION:
               raise invalid_key("Invalid WIF: wrong length or version byte")
          payload, checksum = raw[:33], raw[33:]
          if _sha256(_sha256(payload))[:4] != checksum:
               raise invalid_key("Invalid WIF: checksum mismatch")
          return cls(payload[1:])

     @classmethod
     def from_seed(cls, seed: str) -> "PrivateKey":
          return cls(_sha256(seed.encode("utf-8")))

     def to_wif(self) -> str:
          payload = bytes([WIF_VERSION]) + self.secret
          checksum = _sha256(_sha256(payload))[:4]
          return base58.b58encode(payload + checksum).decode("ascii")

     def public_key(self, prefix: str = DEFAULT_ADDRESS_PREFIX) -> PublicKey:
          return PublicKey(self._signing_key.get_verifying_key().to_string("compressed"), prefix)

     def shared_secret(self, public_key: PublicKey) -> bytes:
          """sha512 of the x coordinate of the ECDH point. Symmetric between the two parties."""
          point = public_key.point * self._signing_key.privkey.secret_multiplier
          return hashlib.sha512(int(point.x()).to_bytes(32, "big")).digest()
