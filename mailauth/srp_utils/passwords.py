# =============================================================================
# Password hashing for SRP and key unlock
# =============================================================================
"""
Password-derived values used by the service.

- expand_hash: 2048-bit digest made of four SHA-512 blocks, used as H()
  throughout the SRP math.
- hash_password: derives the SRP private value x for auth versions 0-4.
- compute_key_password: derives the passphrase that unlocks the user's
  private keys when the account runs in single-password mode.
"""

from __future__ import annotations

import base64
import logging

import bcrypt
from cryptography.hazmat.primitives import hashes

from mailauth.errors import InvalidKeySalt, ProtocolIntegrityError, UnsupportedAuthVersion

logger = logging.getLogger(__name__)

BCRYPT_PREFIX = b"$2y$10$"
KEY_SALT_LENGTH = 16
KEY_PASSWORD_LENGTH = 31

# Raw bytes behind a 22-character bcrypt salt
BCRYPT_SALT_BYTES = 16

_SRP_SALT_SUFFIX = b"proton"
_BCRYPT_SALT_CHARS = 22
_BCRYPT_MAX_PASSWORD = 72

_STD_ALPHABET = b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BCRYPT_ALPHABET = b"./ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


# =============================================================================
# Digests
# =============================================================================

def _digest(algorithm: hashes.HashAlgorithm, data: bytes) -> bytes:
    h = hashes.Hash(algorithm)
    h.update(data)
    return h.finalize()


def expand_hash(data: bytes) -> bytes:
    return b"".join(_digest(hashes.SHA512(), data + bytes([i])) for i in range(4))


# =============================================================================
# bcrypt helpers
# =============================================================================

def bcrypt_b64_encode(data: bytes) -> bytes:
    # bcrypt's own base64 alphabet, unpadded
    std = base64.b64encode(data).rstrip(b"=")
    return std.translate(bytes.maketrans(_STD_ALPHABET, _BCRYPT_ALPHABET))


def bcrypt_b64_decode(data: bytes) -> bytes:
    # Lenient: unused trailing bits of the last character are dropped
    std = data.translate(bytes.maketrans(_BCRYPT_ALPHABET, _STD_ALPHABET))
    return base64.b64decode(std + b"=" * (-len(std) % 4))


def legacy_bcrypt_salt(username: str) -> bytes:
    """
    bcrypt salt for auth versions 0-2: the first 22 hex characters of
    MD5(lower(username)), read as bcrypt base64 and re-encoded canonically.
    """
    hexed = _digest(hashes.MD5(), username.lower().encode("utf-8")).hex().encode("ascii")
    raw = bcrypt_b64_decode(hexed[:_BCRYPT_SALT_CHARS])[:BCRYPT_SALT_BYTES]
    return bcrypt_b64_encode(raw)


def _bcrypt(password: bytes, encoded_salt: bytes) -> bytes:
    # bcrypt only reads the first 72 bytes; newer releases reject longer input
    return bcrypt.hashpw(password[:_BCRYPT_MAX_PASSWORD], BCRYPT_PREFIX + encoded_salt[:_BCRYPT_SALT_CHARS])


def _clean_username(username: str) -> str:
    for ch in ("-", ".", "_"):
        username = username.replace(ch, "")
    return username.lower()


# =============================================================================
# SRP x derivation
# =============================================================================

def _hash_password_v3(password: bytes, salt: bytes, modulus: bytes) -> bytes:
    salted = (salt + _SRP_SALT_SUFFIX)[:BCRYPT_SALT_BYTES]
    if len(salted) < BCRYPT_SALT_BYTES:
        logger.warning("Rejected SRP salt: %d bytes is too short", len(salt))
        raise ProtocolIntegrityError("SRP salt is too short")
    crypted = _bcrypt(password, bcrypt_b64_encode(salted))
    return expand_hash(crypted + modulus)


def _hash_password_v1(password: bytes, username: str, modulus: bytes) -> bytes:
    crypted = _bcrypt(password, legacy_bcrypt_salt(username))
    return expand_hash(crypted + modulus)


def _hash_password_v0(password: bytes, username: str, modulus: bytes) -> bytes:
    prehashed = base64.b64encode(_digest(hashes.SHA512(), password))
    return _hash_password_v1(prehashed, username, modulus)


def hash_password(
    version: int,
    password: bytes,
    salt: bytes,
    modulus: bytes,
    *,
    username: str = "",
) -> bytes:
    """
    Derive the SRP private value x (as 256 little-endian bytes).

    Parameters
    - version: auth version from /auth/info
    - password: login password bytes
    - salt: decoded SRP salt (versions 3 and 4)
    - modulus: little-endian modulus bytes
    - username: account name (versions 0-2 only)
    """
    if version in (3, 4):
        return _hash_password_v3(password, salt, modulus)
    if version == 2:
        return _hash_password_v1(password, _clean_username(username), modulus)
    if version == 1:
        return _hash_password_v1(password, username, modulus)
    if version == 0:
        return _hash_password_v0(password, username, modulus)
    raise UnsupportedAuthVersion(f"unsupported auth version: {version}")


# =============================================================================
# Key passphrase
# =============================================================================

def compute_key_password(password: bytes, key_salt: bytes) -> bytes:
    """
    Mailbox passphrase for single-password accounts: the hash part of
    bcrypt(password, $2y$10$ + bcrypt_b64(key_salt)).
    """
    if len(key_salt) != KEY_SALT_LENGTH:
        raise InvalidKeySalt(f"key salt must be {KEY_SALT_LENGTH} bytes")
    crypted = _bcrypt(password, bcrypt_b64_encode(key_salt))
    return crypted[-KEY_PASSWORD_LENGTH:]
