"""
Candidate classification: trial division by small primes followed by
the Miller-Rabin witness loop.

    classify(n)  ->  trial_division(n)  ->  miller_rabin(n)   (only if deferred)

A PROBABLY_PRIME verdict from miller_rabin is wrong with probability at
most 4**-rounds. Witness bases come from a gmpy2.random_state, which is
not safe to share, so every worker process owns one.
"""

import secrets
from enum import Enum, unique

import gmpy2
from gmpy2 import mpz


SMALL_PRIMES = (2, 3, 5, 7, 11)
DEFAULT_ROUNDS = 10


@unique
class Verdict(Enum):
    COMPOSITE = "composite"
    PROBABLY_PRIME = "probably prime"


def new_random_state():
    """Fresh gmpy2 random state seeded from the OS CSPRNG."""
    return gmpy2.random_state(secrets.randbits(64))


# ----- Trial division -----

def trial_division(n):
    """
    Cheap pre-filter.

    Returns PROBABLY_PRIME for 2 and 3, COMPOSITE for n < 2 or anything
    above 3 divisible by one of SMALL_PRIMES, and None when the candidate
    has to go through the witness loop.

    5, 7 and 11 themselves are rejected. Candidates come from at least 32
    random bits, so drawing one of them is vanishingly unlikely.
    """
    if n < 2:
        return Verdict.COMPOSITE
    if n <= 3:
        return Verdict.PROBABLY_PRIME
    for p in SMALL_PRIMES:
        if n % p == 0:
            return Verdict.COMPOSITE
    return None


# ----- Miller-Rabin -----

def decompose(n):
    """
    Write n - 1 as 2**r * d with d odd. Returns (r, d).

    Halves d until it is odd and 2**r * d + 1 == n. Kept as a loop so very
    wide candidates never grow the stack.
    """
    n = mpz(n)
    if n < 2:
        raise ValueError("n must be >= 2")

    r = 0
    d = n - 1
    while not (gmpy2.is_odd(d) and (d << r) + 1 == n):
        d >>= 1
        r += 1
    return r, d


def random_witness(n, state):
    """
    Uniform base a with 2 <= a <= n - 2.

    Draws values one bit narrower than n and rejects the ones out of
    range, so a is never above n - 2 because of the width alone.
    """
    bits = n.bit_length() - 1
    while True:
        a = gmpy2.mpz_urandomb(state, bits)
        if 2 <= a <= n - 2:
            return a


def miller_rabin(n, rounds: int = DEFAULT_ROUNDS, state=None) -> Verdict:
    """Run `rounds` witness rounds against an odd n > 3."""
    n = mpz(n)
    if n <= 3 or not gmpy2.is_odd(n):
        raise ValueError("n must be odd and greater than 3")
    if state is None:
        state = new_random_state()

    r, d = decompose(n)
    n_minus_one = n - 1

    for _ in range(rounds):
        a = random_witness(n, state)
        x = gmpy2.powmod(a, d, n)
        if x == 1 or x == n_minus_one:
            continue
        for _ in range(r - 1):
            x = gmpy2.powmod(x, 2, n)
            if x == n_minus_one:
                break
        else:
            return Verdict.COMPOSITE
    return Verdict.PROBABLY_PRIME


def classify(n, rounds: int = DEFAULT_ROUNDS, state=None) -> Verdict:
    """Trial division first, Miller-Rabin only when it defers."""
    verdict = trial_division(n)
    if verdict is not None:
        return verdict
    return miller_rabin(n, rounds, state)
