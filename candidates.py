"""
Random candidate sampling for the prime search.

Each candidate is built from bit_length // 8 bytes drawn from the OS
CSPRNG (via `secrets`) and read as an unsigned big-endian magnitude.

The top bit is not forced, so a "64-bit" candidate may have a bit length
below 64. Emitted primes therefore satisfy bit_length(p) <= bits, not ==.
"""

import secrets

from gmpy2 import mpz


def random_candidate(bit_length: int) -> mpz:
    """Draw one non-negative integer of at most `bit_length` bits."""
    if bit_length <= 0 or bit_length % 8 != 0:
        raise ValueError("bit_length must be a positive multiple of 8")

    raw = secrets.token_bytes(bit_length // 8)
    return mpz(int.from_bytes(raw, "big"))
