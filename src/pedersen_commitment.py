"""
pedersen_commitment.py — Account Commitments for the Shielded Ledger

An account state (shares, nullifier, unlocks_at, nonce) for one
(user_key, chain_id, token_address) triple is folded into one curve point:

    spending_key     = hash3(user_key, chain_id, token_address)
    nonce_commitment = hash3(spending_key, nonce, token_address)

    C = shares_enc·G + nullifier_enc·H + spending_key·D
        + unlocks_at_enc·K + nonce_commitment·J

    leaf = hash2(C.x, C.y)

shares, nullifier and unlocks_at enter the commitment one-biased
(value + 1) so a logical zero never multiplies a generator by zero.

Two-factor commitments m·G + r·H carry note-stack amounts and
nonce-discovery entries. Because the commitment is linear in
shares_enc, the settlement layer can credit a deposit after proving with
C' = C + amount·G.
"""

from dataclasses import dataclass

from babyjub_curve import (
    CurvePoint, GEN_G, GEN_H, GEN_D, GEN_K, GEN_J,
    point_add, point_sub, scalar_mul,
)
from bn254_field import BN254_PRIME, fadd, require_field
from poseidon2_hash import hash2, hash3


# ── Constants ────────────────────────────────────────────────────────────────

ENCODING_BIAS = 1
NULLIFIER_DOMAIN_SEPARATOR = 1 << 248


# ── Biased encoding ──────────────────────────────────────────────────────────

def encode_biased(value: int) -> int:
    """Logical value → committed scalar (value + 1)."""
    require_field(value)
    return fadd(value, ENCODING_BIAS)


def decode_biased(encoded: int) -> int:
    require_field(encoded)
    if encoded == 0:
        raise ValueError("0 is not a valid one-biased encoding")
    return encoded - ENCODING_BIAS


# ── Key derivation ───────────────────────────────────────────────────────────

def derive_spending_key(user_key: int, chain_id: int, token_address: int) -> int:
    return hash3(user_key, chain_id, token_address)


def derive_nonce_commitment(spending_key: int, nonce: int, token_address: int) -> int:
    return hash3(spending_key, nonce, token_address)


def to_nullifier_domain(token_address: int) -> int:
    """Shift a token address into the nullifier domain."""
    return (token_address + NULLIFIER_DOMAIN_SEPARATOR) % BN254_PRIME


# ── Commitments ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CommitmentOpening:
    """Scalars of a 5-base commitment, biased fields already encoded."""
    shares_enc: int
    nullifier_enc: int
    spending_key: int
    unlocks_at_enc: int
    nonce_commitment: int

    def commit(self) -> CurvePoint:
        return commit(self.shares_enc, self.nullifier_enc, self.spending_key,
                      self.unlocks_at_enc, self.nonce_commitment)


def commit(
    shares_enc: int,
    nullifier_enc: int,
    spending_key: int,
    unlocks_at_enc: int,
    nonce_commitment: int,
) -> CurvePoint:
    """5-term Pedersen sum over (G, H, D, K, J), folded left to right."""
    terms = (
        (shares_enc, GEN_G),
        (nullifier_enc, GEN_H),
        (spending_key, GEN_D),
        (unlocks_at_enc, GEN_K),
        (nonce_commitment, GEN_J),
    )
    acc = None
    for scalar, base in terms:
        require_field(scalar, "commitment scalar")
        term = scalar_mul(scalar, base)
        acc = term if acc is None else point_add(acc, term)
    return acc


def leaf_of(commitment: CurvePoint) -> int:
    return hash2(commitment.x, commitment.y)


def pedersen_pair(m: int, r: int) -> CurvePoint:
    """Two-factor commitment m·G + r·H."""
    return point_add(scalar_mul(require_field(m), GEN_G), scalar_mul(require_field(r), GEN_H))


def adjust_shares(commitment: CurvePoint, delta: int) -> CurvePoint:
    """
    Settlement-layer share adjustment C ± |delta|·G. A positive delta
    credits shares (deposit), a negative one debits them.
    """
    if delta == 0:
        return commitment
    if delta > 0:
        return point_add(commitment, scalar_mul(require_field(delta), GEN_G))
    return point_sub(commitment, scalar_mul(require_field(-delta), GEN_G))
