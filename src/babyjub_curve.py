"""
babyjub_curve.py — Baby Jubjub Curve Arithmetic over BN254 Fr

Twisted Edwards curve embedded in the BN254 scalar field:

    a·x² + y² = 1 + d·x²·y²   (mod P),   a = 168700,  d = 168696

Points are affine (x, y) pairs; the identity is (0, 1). Addition uses the
unified Edwards formula, so doubling is simply add(p, p). A zero
denominator resolves to the identity instead of raising, and that rule
lives only in point_add.

Fixed generators:
    G, H, D, K, J — independent Pedersen bases for the account commitment
    BASE8         — prime-order subgroup base for Diffie-Hellman keys

All six lie in the subgroup of prime order SUBGROUP_ORDER, so scalars
acting on them are only defined modulo that order, not modulo P.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

from bn254_field import (
    BN254_PRIME, FieldLike, finv, fmul, mod_fr, parse_field, format_field,
)
from ledger_errors import InvalidCurvePoint, InvalidFieldElement


# ── Curve parameters ─────────────────────────────────────────────────────────

CURVE_A = 168700
CURVE_D = 168696
SCALAR_BITS = 254
SUBGROUP_ORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041


@dataclass(frozen=True)
class CurvePoint:
    """Affine Baby Jubjub point with canonical Fr coordinates."""
    x: int
    y: int

    def __post_init__(self):
        object.__setattr__(self, "x", mod_fr(self.x))
        object.__setattr__(self, "y", mod_fr(self.y))

    @property
    def is_identity(self) -> bool:
        return self.x == 0 and self.y == 1

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def to_strings(self, hex_form: bool = False) -> Tuple[str, str]:
        return (format_field(self.x, hex_form), format_field(self.y, hex_form))

    @classmethod
    def from_strings(cls, coords: Sequence[FieldLike]) -> "CurvePoint":
        """Parse an (x, y) pair of canonical strings; the point must be on the curve."""
        if len(coords) != 2:
            raise InvalidCurvePoint(f"expected (x, y), got {len(coords)} coordinates")
        point = cls(parse_field(coords[0], "x"), parse_field(coords[1], "y"))
        if not is_on_curve(point):
            raise InvalidCurvePoint(f"({coords[0]}, {coords[1]}) is not on Baby Jubjub")
        return point


IDENTITY = CurvePoint(0, 1)


def is_on_curve(p: CurvePoint) -> bool:
    x2 = fmul(p.x, p.x)
    y2 = fmul(p.y, p.y)
    lhs = mod_fr(CURVE_A * x2 + y2)
    rhs = mod_fr(1 + CURVE_D * fmul(x2, y2))
    return lhs == rhs


# ── Group law ────────────────────────────────────────────────────────────────

def point_add(p1: CurvePoint, p2: CurvePoint) -> CurvePoint:
    """
    Edwards addition:

        β = x1·y2,  γ = y1·x2,  δ = (−a·x1 + y1)·(x2 + y2),  τ = β·γ
        x3 = (β + γ) / (1 + d·τ)
        y3 = (δ + a·β − γ) / (1 − d·τ)

    If either denominator vanishes the result is the identity.
    """
    beta = fmul(p1.x, p2.y)
    gamma = fmul(p1.y, p2.x)
    delta = fmul(mod_fr(-CURVE_A * p1.x + p1.y), mod_fr(p2.x + p2.y))
    tau = fmul(beta, gamma)

    denom_x = mod_fr(1 + CURVE_D * tau)
    denom_y = mod_fr(1 - CURVE_D * tau)
    if denom_x == 0 or denom_y == 0:
        return IDENTITY

    # one inversion serves both denominators
    inv_both = finv(fmul(denom_x, denom_y))
    x3 = fmul(mod_fr(beta + gamma), fmul(inv_both, denom_y))
    y3 = fmul(mod_fr(delta + CURVE_A * beta - gamma), fmul(inv_both, denom_x))
    return CurvePoint(x3, y3)


def point_double(p: CurvePoint) -> CurvePoint:
    return point_add(p, p)


def point_neg(p: CurvePoint) -> CurvePoint:
    return CurvePoint(mod_fr(-p.x), p.y)


def point_sub(p1: CurvePoint, p2: CurvePoint) -> CurvePoint:
    return point_add(p1, point_neg(p2))


def scalar_mul(k: int, p: CurvePoint) -> CurvePoint:
    """
    Double-and-add over a fixed 254-bit window, most significant bit first.
    k = 0 returns the identity without entering the loop.
    """
    if not isinstance(k, int) or k < 0 or k.bit_length() > SCALAR_BITS:
        raise InvalidFieldElement(f"scalar out of range: {k!r}")
    if k == 0:
        return IDENTITY

    result = IDENTITY
    for i in range(SCALAR_BITS - 1, -1, -1):
        result = point_double(result)
        if (k >> i) & 1:
            result = point_add(result, p)
    return result


# ── Generators ───────────────────────────────────────────────────────────────

GEN_G = CurvePoint(
    10457101036533406547632367118273992217979173478358440826365724437999023779287,
    19824078218392094440610104313265183977899662750282163392862422243483260492317,
)
GEN_H = CurvePoint(
    2671756056509184035029146175565761955751135805354291559563293617232983272177,
    2663205510731142763556352975002641716101654201788071096152948830924149045094,
)
GEN_D = CurvePoint(
    5802099305472655231388284418920769829666717045250560929368476121199858275951,
    5980429700218124965372158798884772646841287887664001482443826541541529227896,
)
GEN_K = CurvePoint(
    7107336197374528537877327281242680114152313102022415488494307685842428166594,
    2857869773864086953506483169737724679646433914307247183624878062391496185654,
)
GEN_J = CurvePoint(
    20265828622013100949498132415626198973119240347465898028410217039057588424236,
    1160461593266035632937973507065134938065359936056410650153315956301179689506,
)
BASE8 = CurvePoint(
    5299619240641551281634865583518297030282874472190772894086521144482721001553,
    16950150798460657717958625567821834550301663161624707787222815936182638968203,
)

PEDERSEN_BASES = (GEN_G, GEN_H, GEN_D, GEN_K, GEN_J)


# ── Main ──────────────────────────────────────────────────────────────────────

def main():
    print("=" * 72)
    print("Baby Jubjub — Curve Arithmetic")
    print("=" * 72)

    print(f"\n1. Generators on curve")
    names = ["G", "H", "D", "K", "J", "BASE8"]
    for name, gen in zip(names, PEDERSEN_BASES + (BASE8,)):
        print(f"   {name:<6} x={hex(gen.x)[:18]}...  on_curve={is_on_curve(gen)}")

    print(f"\n2. Scalar multiplication vs repeated addition")
    acc = IDENTITY
    for k in range(6):
        direct = scalar_mul(k, GEN_G)
        print(f"   k={k}: match={direct == acc}")
        acc = point_add(acc, GEN_G)

    print(f"\n3. Field prime: {BN254_PRIME}")


if __name__ == "__main__":
    main()
