"""
poseidon2_hash.py — Poseidon2 Hash over BN254 Fr

Fixed-width Poseidon2 instance matching the Noir / Barretenberg permutation:

    t = 4 (rate 3, capacity 1),  R_F = 8 full rounds,  R_P = 56 partial rounds
    S-box x^5,  external matrix M4,  internal matrix diag(μ) + 1·1ᵀ

Round constants come from the Poseidon Grain LFSR seeded with
(field=1, sbox=0, n=254, t=4, R_F=8, R_P=56). The first R_F/2 full rounds
take t constants each, every partial round one, the last R_F/2 full rounds
t each: 88 constants in total.

Entry points hash1/hash2/hash3 build the state [in..., 0-pad, n·2^64]
and return state[0] after one permutation.
"""

import numpy as np
from functools import lru_cache
from typing import List, Sequence, Tuple

from bn254_field import BN254_PRIME, require_field


# ── Parameters ───────────────────────────────────────────────────────────────

WIDTH = 4
RATE = WIDTH - 1
FULL_ROUNDS = 8
PARTIAL_ROUNDS = 56
SBOX_ALPHA = 5
FIELD_SIZE_BITS = 254
IV_SHIFT = 64

# M4 from the Poseidon2 paper: rows of the 4×4 external MDS layer
EXTERNAL_MATRIX = np.array([
    [5, 7, 1, 3],
    [4, 6, 1, 1],
    [1, 3, 5, 7],
    [1, 1, 4, 6],
], dtype=object)

INTERNAL_DIAGONAL = (
    0x10dc6e9c006ea38b04b1e03b4bd9490c0d03f98929ca1d7fb56821fd19d3b6e7,
    0x0c28145b6a44df3e0149b3d0a30b3bb599df9756d4dd9b84a86b38cfb45a740b,
    0x00544b8338791518b2c7645a50392798b21f75bb60e3596170067d00141cac15,
    0x222c01175718386f2e2e82eb122789e352e105a3b8fa852613bc534433ee428b,
)


# ── Round constants (Grain LFSR) ─────────────────────────────────────────────

class GrainLFSR:
    """
    80-bit Grain LFSR in self-shrinking mode, as in the Poseidon reference
    parameter generator.

    Seed layout (MSB first): field(2) | sbox(4) | n(12) | t(12) | R_F(10) |
    R_P(10) | 30 ones. The first 160 outputs are discarded. Bits are then
    read in pairs: a leading 1 emits the second bit, a leading 0 drops it.
    """

    TAPS = (62, 51, 38, 23, 13, 0)

    def __init__(self, field: int, sbox: int, n: int, t: int, r_f: int, r_p: int):
        self.state: List[int] = []
        for value, width in ((field, 2), (sbox, 4), (n, 12), (t, 12), (r_f, 10), (r_p, 10)):
            self.state.extend((value >> i) & 1 for i in range(width - 1, -1, -1))
        self.state.extend([1] * 30)
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        new_bit = 0
        for tap in self.TAPS:
            new_bit ^= self.state[tap]
        self.state.pop(0)
        self.state.append(new_bit)
        return new_bit

    def next_bit(self) -> int:
        while True:
            control = self._clock()
            bit = self._clock()
            if control:
                return bit

    def next_field_element(self, prime: int, bits: int) -> int:
        """Rejection-sample a `bits`-wide big-endian integer below `prime`."""
        while True:
            value = 0
            for _ in range(bits):
                value = (value << 1) | self.next_bit()
            if value < prime:
                return value


@lru_cache(maxsize=1)
def round_constants() -> Tuple[Tuple[int, ...], ...]:
    """
    Per-round constant rows. Full rounds carry WIDTH values, partial rounds a
    single value (the remaining lanes receive no constant).
    """
    grain = GrainLFSR(1, 0, FIELD_SIZE_BITS, WIDTH, FULL_ROUNDS, PARTIAL_ROUNDS)

    def draw(count: int) -> Tuple[int, ...]:
        return tuple(grain.next_field_element(BN254_PRIME, FIELD_SIZE_BITS) for _ in range(count))

    half = FULL_ROUNDS // 2
    rows = [draw(WIDTH) for _ in range(half)]
    rows += [draw(1) for _ in range(PARTIAL_ROUNDS)]
    rows += [draw(WIDTH) for _ in range(half)]
    return tuple(rows)


# ── Permutation layers ───────────────────────────────────────────────────────

def _sbox(x: int) -> int:
    return pow(x, SBOX_ALPHA, BN254_PRIME)


def _external_layer(state: List[int]) -> List[int]:
    mixed = EXTERNAL_MATRIX.dot(np.array(state, dtype=object)) % BN254_PRIME
    return [int(v) for v in mixed]


def _internal_layer(state: List[int]) -> List[int]:
    total = sum(state) % BN254_PRIME
    return [(v * mu + total) % BN254_PRIME for v, mu in zip(state, INTERNAL_DIAGONAL)]


def permute(state: Sequence[int]) -> List[int]:
    """
    Poseidon2 permutation of a width-4 state:

        M_E · s
        4 × [ +rc (all lanes), x^5 (all lanes), M_E ]
        56 × [ +rc (lane 0), x^5 (lane 0), M_I ]
        4 × [ +rc (all lanes), x^5 (all lanes), M_E ]
    """
    if len(state) != WIDTH:
        raise ValueError(f"Poseidon2 state must have {WIDTH} lanes, got {len(state)}")
    for v in state:
        require_field(v, "Poseidon2 lane")

    rc = round_constants()
    half = FULL_ROUNDS // 2
    s = _external_layer(list(state))

    for r in range(half):
        s = [_sbox((v + c) % BN254_PRIME) for v, c in zip(s, rc[r])]
        s = _external_layer(s)

    for r in range(half, half + PARTIAL_ROUNDS):
        s[0] = _sbox((s[0] + rc[r][0]) % BN254_PRIME)
        s = _internal_layer(s)

    for r in range(half + PARTIAL_ROUNDS, FULL_ROUNDS + PARTIAL_ROUNDS):
        s = [_sbox((v + c) % BN254_PRIME) for v, c in zip(s, rc[r])]
        s = _external_layer(s)

    return s


# ── Fixed-arity hashes ───────────────────────────────────────────────────────

def _hash_fixed(inputs: Sequence[int]) -> int:
    if not 1 <= len(inputs) <= RATE:
        raise ValueError(f"Poseidon2 fixed hash takes 1..{RATE} inputs, got {len(inputs)}")
    state = list(inputs) + [0] * (RATE - len(inputs))
    state.append(len(inputs) << IV_SHIFT)
    return permute(state)[0]


def hash1(a: int) -> int:
    return _hash_fixed([a])


def hash2(a: int, b: int) -> int:
    """Two-to-one compression used for tree nodes and curve points."""
    return _hash_fixed([a, b])


def hash3(a: int, b: int, c: int) -> int:
    return _hash_fixed([a, b, c])


# ── Main ──────────────────────────────────────────────────────────────────────

def main():
    print("=" * 72)
    print("Poseidon2 — t=4, R_F=8, R_P=56, x^5")
    print("=" * 72)

    rc = round_constants()
    print(f"\n1. Round constants")
    print(f"   rows: {len(rc)}, values: {sum(len(r) for r in rc)}")
    print(f"   rc[0][0] = {hex(rc[0][0])}")

    print(f"\n2. Permutation of [0, 1, 2, 3]")
    for i, v in enumerate(permute([0, 1, 2, 3])):
        print(f"   s[{i}] = {hex(v)}")

    print(f"\n3. Hashes")
    print(f"   hash1(0)       = {hex(hash1(0))}")
    print(f"   hash2(1, 2)    = {hex(hash2(1, 2))}")
    print(f"   hash3(1, 2, 3) = {hex(hash3(1, 2, 3))}")
    print(f"   hash2(2, 1)    = {hex(hash2(2, 1))}  (order matters)")


if __name__ == "__main__":
    main()
