# =============================================================================
# Key unlock sequencer
# =============================================================================
"""
Turns the encrypted private key blob of an authenticated session into an
unlocked key ring.

Flow
1) pick the passphrase:
   - PasswordMode.SINGLE: derived from the login password and the key salt
   - PasswordMode.TWO: the mailbox password, used as given
2) parse the armored key ring (pgpy)
3) unlock every key with the passphrase; the first rejection fails the whole ring

unlock() is a pure transform: committing the result to a Session is the
caller's job (see auth_client.client.AuthClient.unlock).
"""

from __future__ import annotations

import binascii
import contextlib
import logging
from typing import Iterator, List, Union

import pgpy
from pgpy.errors import PGPDecryptionError, PGPError

from mailauth.errors import DecryptionFailed, InvalidKeySalt, MalformedKeyRing
from mailauth.models import PasswordMode, SessionCredentials
from mailauth.srp_utils.passwords import compute_key_password
from mailauth.srp_utils.proofs import b64_decode

logger = logging.getLogger(__name__)


def _as_passphrase(passphrase: Union[bytes, str]) -> str:
    if isinstance(passphrase, (bytes, bytearray)):
        try:
            return bytes(passphrase).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionFailed("passphrase is not valid UTF-8") from e
    return passphrase


def _key_ids(key: pgpy.PGPKey) -> set[str]:
    return {key.fingerprint.keyid} | set(key.subkeys)


# =============================================================================
# Key ring capability (pgpy)
# =============================================================================

class KeyRing:
    """Parsed, still-locked private keys."""

    def __init__(self, keys: List[pgpy.PGPKey]):
        self._keys = list(keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[pgpy.PGPKey]:
        return iter(self._keys)

    @property
    def fingerprints(self) -> List[str]:
        return [str(k.fingerprint) for k in self._keys]

    def decrypt_each(self, passphrase: Union[bytes, str]) -> None:
        """Unlock every key in order; DecryptionFailed on the first rejection."""
        phrase = _as_passphrase(passphrase)
        for key in self._keys:
            if not key.is_protected:
                continue
            try:
                with key.unlock(phrase):
                    pass
            except (PGPDecryptionError, PGPError, ValueError) as e:
                raise DecryptionFailed(
                    f"passphrase rejected by key {key.fingerprint.keyid}"
                ) from e


def parse_armored_key_ring(text: str) -> KeyRing:
    """Parse one or more armored private keys. MalformedKeyRing if none usable."""
    if not text or not text.strip():
        raise MalformedKeyRing("key ring is empty")
    try:
        primary, others = pgpy.PGPKey.from_blob(text)
    except (PGPError, ValueError, TypeError, NotImplementedError) as e:
        raise MalformedKeyRing(f"cannot parse key ring ({type(e).__name__})") from e

    keys: List[pgpy.PGPKey] = []
    seen: set[str] = set()
    for key in [primary, *others.values()]:
        if not key.is_primary:
            continue
        fp = str(key.fingerprint)
        if fp in seen:
            continue
        seen.add(fp)
        keys.append(key)

    if not keys:
        raise MalformedKeyRing("key ring is empty")
    if any(key.is_public for key in keys):
        raise MalformedKeyRing("key ring contains public keys only")
    return KeyRing(keys)


# =============================================================================
# Unlocked ring
# =============================================================================

class UnlockedKeyRing:
    """
    A key ring whose passphrase has been verified against every key.

    pgpy keeps secret material encrypted at rest and only exposes it inside
    key.unlock(); this wrapper holds the verified passphrase so callers can
    enter that context without re-deriving it.
    """

    def __init__(self, ring: KeyRing, passphrase: Union[bytes, str]):
        self._ring = ring
        self._passphrase = _as_passphrase(passphrase)

    def __len__(self) -> int:
        return len(self._ring)

    def __iter__(self) -> Iterator[pgpy.PGPKey]:
        return iter(self._ring)

    def __repr__(self) -> str:
        return f"UnlockedKeyRing(fingerprints={self.fingerprints!r})"

    @property
    def fingerprints(self) -> List[str]:
        return self._ring.fingerprints

    @contextlib.contextmanager
    def unlocked(self) -> Iterator[List[pgpy.PGPKey]]:
        """Yield every key with its secret material available."""
        with contextlib.ExitStack() as stack:
            keys = []
            for key in self._ring:
                if key.is_protected:
                    stack.enter_context(key.unlock(self._passphrase))
                keys.append(key)
            yield keys

    def decrypt(self, armored_message: str) -> Union[str, bytes]:
        """Decrypt a PGP message addressed to any key of the ring."""
        try:
            message = pgpy.PGPMessage.from_blob(armored_message)
        except (PGPError, ValueError, TypeError) as e:
            raise DecryptionFailed(f"cannot parse message ({type(e).__name__})") from e

        recipients = message.encrypters
        for key in self._ring:
            if recipients and not (recipients & _key_ids(key)):
                continue
            guard = key.unlock(self._passphrase) if key.is_protected else contextlib.nullcontext()
            try:
                with guard:
                    return key.decrypt(message).message
            except (PGPDecryptionError, PGPError, ValueError) as e:
                raise DecryptionFailed(
                    f"key {key.fingerprint.keyid} cannot decrypt the message"
                ) from e
        raise DecryptionFailed("no key in the ring matches the message recipients")


# =============================================================================
# Sequencer
# =============================================================================

def derive_passphrase(credentials: SessionCredentials, password: bytes) -> bytes:
    if credentials.password_mode != PasswordMode.SINGLE:
        return password
    try:
        salt = b64_decode(credentials.key_salt)
    except (binascii.Error, ValueError, AttributeError) as e:
        raise InvalidKeySalt("key salt is not valid base64") from e
    return compute_key_password(password, salt)


def unlock(credentials: SessionCredentials, password: bytes) -> UnlockedKeyRing:
    """
    Derive the passphrase for credentials.password_mode and unlock the whole ring.

    Raises InvalidKeySalt, MalformedKeyRing or DecryptionFailed; never returns
    a partially unlocked ring.
    """
    passphrase = derive_passphrase(credentials, password)
    ring = parse_armored_key_ring(credentials.private_key)
    ring.decrypt_each(passphrase)
    logger.info("Unlocked %d key(s) for uid=%s", len(ring), credentials.uid)
    return UnlockedKeyRing(ring, passphrase)
