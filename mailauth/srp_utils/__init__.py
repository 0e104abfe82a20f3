from .proofs import (
    ClientProof,
    compute_proof,
    verify_server_proof,
    check_server_ephemeral,
    multiplier,
    scrambler,
    b64_encode,
    b64_decode,
)
from .modulus import (
    SRP_BIT_LENGTH,
    SRP_MODULUS_KEY,
    verify_modulus,
    validate_modulus_bytes,
)
from .passwords import (
    expand_hash,
    hash_password,
    compute_key_password,
)
