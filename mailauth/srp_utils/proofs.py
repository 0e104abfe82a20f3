# =============================================================================
# SRP proof engine (client side)
# =============================================================================
"""
Design goals
- Exact SRP-6a math as the mail service runs it (little-endian, 2048-bit, expand-hash).
- Reject attacker-supplied weak groups and degenerate server ephemerals.
- Nothing secret outlives one call: the client secret a never leaves compute_proof().

What you get
1) compute_proof(password, params) -> ClientProof
   - A (client ephemeral), M1 (client proof), and the expected server proof M2
2) verify_server_proof(expected, received)
   - constant-time comparison; ServerProofMismatch on any difference

Notation
  N modulus, g = 2, k = H(g | N), a client secret, A = g^a,
  B server ephemeral, u = H(A | B), x = hash_password(...),
  S = (B - k g^x)^(a + u x), K = pad(S),
  M1 = H(A | B | K), M2 = H(A | M1 | K)

The service uses the padded shared secret directly as K (no extra hash round).
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from cryptography.hazmat.primitives import constant_time

from mailauth.errors import (
    InvalidModulus,
    InvalidServerEphemeral,
    ProtocolIntegrityError,
    ServerProofMismatch,
)
from mailauth.models import AuthParameters
from mailauth.srp_utils import bigint
from mailauth.srp_utils.modulus import SRP_BIT_LENGTH, verify_modulus
from mailauth.srp_utils.passwords import expand_hash, hash_password

logger = logging.getLogger(__name__)


# =============================================================================
# Encoding
# =============================================================================

def b64_encode(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def b64_decode(data: str) -> bytes:
    return base64.b64decode(data.encode("utf-8"), validate=True)


# =============================================================================
# Proof container
# =============================================================================

@dataclass(frozen=True)
class ClientProof:
    """
    Output of one compute_proof() call.

    - client_ephemeral: A, little-endian, bit_length / 8 bytes
    - client_proof: M1, sent to the server
    - expected_server_proof: M2, kept locally to check the server's answer

    Valid for exactly one submission.
    """
    client_ephemeral: bytes
    client_proof: bytes
    expected_server_proof: bytes = field(repr=False)

    @property
    def client_ephemeral_b64(self) -> str:
        return b64_encode(self.client_ephemeral)

    @property
    def client_proof_b64(self) -> str:
        return b64_encode(self.client_proof)

    def verify(self, server_proof: Union[bytes, str]) -> None:
        verify_server_proof(self.expected_server_proof, server_proof)


# =============================================================================
# Group parameters
# =============================================================================

def multiplier(modulus: int, modulus_bytes: bytes, bit_length: int = SRP_BIT_LENGTH) -> int:
    """k = H(pad(g) | N) mod N, required to lie in (1, N-1)."""
    k = bigint.from_le_bytes(
        expand_hash(bigint.to_le_bytes(bigint.GENERATOR, bit_length) + modulus_bytes)
    ) % modulus
    if not bigint.in_open_range(k, modulus):
        logger.warning("Rejected SRP modulus: multiplier out of bounds")
        raise InvalidModulus("SRP multiplier is out of bounds")
    return k


def scrambler(a_bytes: bytes, b_bytes: bytes) -> int:
    # u = H(A | B)
    return bigint.from_le_bytes(expand_hash(a_bytes + b_bytes))


def check_server_ephemeral(server_ephemeral: int, modulus: int) -> None:
    """B mod N must be non-zero and B must lie in (1, N-1)."""
    if bigint.is_zero_mod(server_ephemeral, modulus):
        logger.warning("Rejected SRP server ephemeral: B mod N == 0 (possible impersonation)")
        raise InvalidServerEphemeral("server ephemeral is zero modulo N")
    if not bigint.in_open_range(server_ephemeral, modulus):
        logger.warning("Rejected SRP server ephemeral: out of bounds")
        raise InvalidServerEphemeral("server ephemeral is out of bounds")


def _decode_field(value: str, name: str, error: type) -> bytes:
    try:
        return b64_decode(value)
    except (binascii.Error, ValueError, AttributeError) as e:
        raise error(f"{name} is not valid base64") from e


# =============================================================================
# Proof computation
# =============================================================================

def compute_proof(
    password: bytes,
    params: AuthParameters,
    *,
    modulus_key: Optional[str] = None,
    bit_length: int = SRP_BIT_LENGTH,
) -> ClientProof:
    """
    Compute a fresh client ephemeral and proof for one handshake.

    Checks, in order:
      - modulus signature and safe-prime validity (InvalidModulus)
      - multiplier bounds (InvalidModulus)
      - B mod N != 0 and 1 < B < N-1 (InvalidServerEphemeral)
      - u != 0 (InvalidServerEphemeral)

    The client secret is drawn per call, so two calls never share A.
    """
    modulus_bytes = verify_modulus(params.modulus, signing_key=modulus_key, bit_length=bit_length)
    n = bigint.from_le_bytes(modulus_bytes)
    k = multiplier(n, modulus_bytes, bit_length)

    server_raw = _decode_field(params.server_ephemeral, "server ephemeral", InvalidServerEphemeral)
    b = bigint.from_le_bytes(server_raw)
    check_server_ephemeral(b, n)
    b_bytes = bigint.to_le_bytes(b, bit_length)

    salt = _decode_field(params.salt, "salt", ProtocolIntegrityError)
    x = bigint.from_le_bytes(
        hash_password(params.version, password, salt, modulus_bytes, username=params.username)
    )

    a = bigint.random_client_secret(n, bit_length)
    a_pub = bigint.client_ephemeral(a, n)
    a_bytes = bigint.to_le_bytes(a_pub, bit_length)

    u = scrambler(a_bytes, b_bytes)
    if u == 0:
        logger.warning("Rejected SRP server ephemeral: scrambling parameter is zero")
        raise InvalidServerEphemeral("scrambling parameter is zero")

    s = bigint.premaster_secret(
        server_ephemeral=b,
        multiplier=k,
        hashed_password=x,
        client_secret=a,
        scrambler=u,
        modulus=n,
    )
    session_key = bigint.to_le_bytes(s, bit_length)

    m1 = expand_hash(a_bytes + b_bytes + session_key)
    m2 = expand_hash(a_bytes + m1 + session_key)
    return ClientProof(client_ephemeral=a_bytes, client_proof=m1, expected_server_proof=m2)


# =============================================================================
# Server proof verification
# =============================================================================

def verify_server_proof(expected: bytes, received: Union[bytes, str]) -> None:
    """
    Constant-time check of the server's proof (M2).

    A str is treated as base64 from the wire; undecodable input is a mismatch.
    """
    if isinstance(received, str):
        try:
            received = b64_decode(received)
        except (binascii.Error, ValueError) as e:
            logger.warning("Server proof is not valid base64")
            raise ServerProofMismatch("invalid server proof") from e

    if not constant_time.bytes_eq(bytes(expected), bytes(received)):
        logger.warning("Server proof mismatch: server does not hold the password verifier")
        raise ServerProofMismatch("invalid server proof")
