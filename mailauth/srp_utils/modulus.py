# =============================================================================
# SRP modulus verification
# =============================================================================
"""
The server ships its SRP modulus as a PGP clear-signed message. A client that
accepts an arbitrary modulus can be steered into a weak group, so the modulus
is only used after:

1) the clear-text signature verifies against the modulus-signing key
2) the payload decodes to exactly bit_length / 8 little-endian bytes
3) the integer has exactly bit_length bits
4) 4^(N-1) == 1 mod N and (N-1)/2 is a probable prime (N is a safe prime)

Any failure raises InvalidModulus and is logged as a possible attack.
"""

from __future__ import annotations

import base64
import binascii
import functools
import logging
from typing import Optional

import pgpy
from pgpy.errors import PGPError

from mailauth.errors import InvalidModulus
from mailauth.srp_utils.bigint import from_le_bytes, is_probable_prime, passes_fermat_base4

logger = logging.getLogger(__name__)

SRP_BIT_LENGTH = 2048

# Public key the service uses to sign every SRP modulus it hands out
SRP_MODULUS_KEY = """-----BEGIN PGP PUBLIC KEY BLOCK-----

xjMEXAHLgxYJKwYBBAHaRw8BAQdAFurWXXwjTemqjD7CXjXVyKf0of7n9Ctm
L8v9enkzggHNEnByb3RvbkBzcnAubW9kdWx1c8J3BBAWCgApBQJcAcuDBgsJ
BwgDAgkQNQWFxOlRjyYEFQgKAgMWAgECGQECGwMCHgEAAPGRAP9sauJsW12U
MnTQUZpsbJb53d0Wv55mZIIiJL2XulpWPQD/V6NglBd96lZKBmInSXX/kXat
Sv+y0io+LR8i2+jV+AbOOARcAcuDEgorBgEEAZdVAQUBAQdAeJHUz1c9+KfE
kSIgcBRE3WuXC4oj5a2/U3oASExGDW4DAQgHwmEEGBYIABMFAlwBy4MJEDUF
hcTpUY8mAhsMAAD/XQD8DxNI6E78meodQI+wLsrKLeHn32iLvUqJbVDhfWSU
WO4BAMcm1u02t4VKw++ttECPt+HUgPUq5pqQWe5Q2cW4TMsE
=Y4Mw
-----END PGP PUBLIC KEY BLOCK-----"""


@functools.lru_cache(maxsize=8)
def _load_signing_key(armored_key: str) -> pgpy.PGPKey:
    key, _ = pgpy.PGPKey.from_blob(armored_key)
    return key


def _reject(reason: str) -> InvalidModulus:
    logger.warning("Rejected SRP modulus (possible tampering): %s", reason)
    return InvalidModulus(reason)


def _verified_payload(armored_modulus: str, signing_key: str) -> str:
    try:
        key = _load_signing_key(signing_key)
        msg = pgpy.PGPMessage.from_blob(armored_modulus)
    except (PGPError, ValueError, TypeError) as e:
        raise _reject(f"unparseable modulus message ({type(e).__name__})") from e

    if msg.type != "cleartext" or not msg.signatures:
        raise _reject("modulus is not a clear-signed message")

    try:
        verification = key.verify(msg)
    except (PGPError, ValueError, TypeError) as e:
        raise _reject(f"modulus signature check failed ({type(e).__name__})") from e

    # An empty verification is truthy in pgpy; require at least one good signature
    if not verification or not any(True for _ in verification.good_signatures):
        raise _reject("modulus signature does not verify")

    content = msg.message
    if isinstance(content, (bytes, bytearray)):
        content = bytes(content).decode("utf-8")
    return str(content).strip()


def validate_modulus_bytes(modulus: bytes, *, bit_length: int = SRP_BIT_LENGTH) -> int:
    """Size and safe-prime checks on a decoded modulus. Returns N."""
    if len(modulus) != bit_length // 8:
        raise _reject(f"modulus is {len(modulus)} bytes, expected {bit_length // 8}")

    n = from_le_bytes(modulus)
    if n.bit_length() != bit_length:
        raise _reject(f"modulus has {n.bit_length()} bits, expected {bit_length}")
    if not passes_fermat_base4(n):
        raise _reject("modulus is not prime")
    if not is_probable_prime(n >> 1):
        raise _reject("modulus is not a safe prime")
    return n


def verify_modulus(
    armored_modulus: str,
    *,
    signing_key: Optional[str] = None,
    bit_length: int = SRP_BIT_LENGTH,
) -> bytes:
    """
    Verify a signed modulus and return its raw little-endian bytes.

    signing_key defaults to the service's published modulus key; tests and
    self-hosted deployments pass their own armored public key.
    """
    payload = _verified_payload(armored_modulus, signing_key or SRP_MODULUS_KEY)
    try:
        modulus = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise _reject("modulus payload is not base64") from e

    validate_modulus_bytes(modulus, bit_length=bit_length)
    return modulus
