# =============================================================================
# Big-integer helpers for the SRP handshake
# =============================================================================
"""
Integer codec and modular arithmetic used by the SRP proof engine.

Conventions
- The service encodes every SRP integer little-endian, zero-padded to the
  modulus width (bit_length / 8 bytes).
- All exponentiation is done with the builtin three-argument pow().
- Bound checks return bool; callers decide which tagged error to raise.
"""

from __future__ import annotations

import secrets

GENERATOR = 2
MILLER_RABIN_ROUNDS = 10

_SMALL_PRIMES = (
    3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47, 53, 59, 61, 67, 71, 73,
    79, 83, 89, 97, 101, 103, 107, 109, 113, 127, 131, 137, 139, 149, 151, 157,
)


# =============================================================================
# Little-endian codec
# =============================================================================

def to_le_bytes(n: int, bit_length: int) -> bytes:
    if n < 0:
        raise ValueError("cannot encode a negative integer")
    return n.to_bytes(bit_length // 8, "little")


def from_le_bytes(data: bytes) -> int:
    return int.from_bytes(data, "little")


# =============================================================================
# Ephemeral secrets
# =============================================================================

def random_client_secret(modulus: int, bit_length: int) -> int:
    """
    Draw a fresh client secret a in [0, N-1), redrawn until a > 2 * bit_length.

    The lower bound keeps g^a from being trivially small.
    """
    floor = 2 * bit_length
    while True:
        a = secrets.randbelow(modulus - 1)
        if a > floor:
            return a


def client_ephemeral(secret: int, modulus: int, generator: int = GENERATOR) -> int:
    return pow(generator, secret, modulus)


# =============================================================================
# SRP combination steps
# =============================================================================

def premaster_secret(
    *,
    server_ephemeral: int,
    multiplier: int,
    hashed_password: int,
    client_secret: int,
    scrambler: int,
    modulus: int,
    generator: int = GENERATOR,
) -> int:
    """
    S = (B - k * g^x) ^ (a + u * x) mod N

    The exponent is reduced mod N-1, which is valid because the order of g
    divides N-1.
    """
    base = (server_ephemeral - multiplier * pow(generator, hashed_password, modulus)) % modulus
    exponent = (client_secret + scrambler * hashed_password) % (modulus - 1)
    return pow(base, exponent, modulus)


def in_open_range(value: int, modulus: int) -> bool:
    # 1 < value < N - 1
    return 1 < value < modulus - 1


def is_zero_mod(value: int, modulus: int) -> bool:
    return value % modulus == 0


# =============================================================================
# Primality
# =============================================================================

def is_probable_prime(n: int, rounds: int = MILLER_RABIN_ROUNDS) -> bool:
    """Miller-Rabin with random bases."""
    if n < 2:
        return False
    if n in (2, 3):
        return True
    if n % 2 == 0:
        return False
    for p in _SMALL_PRIMES:
        if n == p:
            return True
        if n % p == 0:
            return False

    d = n - 1
    s = 0
    while d % 2 == 0:
        d //= 2
        s += 1

    for _ in range(rounds):
        a = 2 + secrets.randbelow(n - 3)
        x = pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(s - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
        else:
            return False
    return True


def passes_fermat_base4(n: int) -> bool:
    # Cheap exact check for the service's moduli: 4^(N-1) == 1 mod N
    return n > 4 and pow(4, n - 1, n) == 1


def is_safe_prime(n: int, rounds: int = MILLER_RABIN_ROUNDS) -> bool:
    """N is prime and (N-1)/2 is prime."""
    if n < 5 or n % 2 == 0:
        return False
    if not passes_fermat_base4(n):
        return False
    return is_probable_prime(n >> 1, rounds) and is_probable_prime(n, rounds)
