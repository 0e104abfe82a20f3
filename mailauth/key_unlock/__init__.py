from .unlock import (
    KeyRing,
    UnlockedKeyRing,
    parse_armored_key_ring,
    derive_passphrase,
    unlock,
)
