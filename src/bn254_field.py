"""
bn254_field.py — BN254 Scalar Field Arithmetic

All ledger values (keys, shares, nonces, tree nodes, curve coordinates)
are elements of Fr, the scalar field of BN254:

    P = 21888242871839275222246405745257275088548364400416034343698204186575808495617

Every public operation returns a canonical representative in [0, P).
Inversion uses the extended Euclidean algorithm and rejects zero loudly.
"""

from typing import Union

from ledger_errors import DivisionByZero, InvalidFieldElement


# ── Field parameters ─────────────────────────────────────────────────────────

BN254_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BITS = 254
FIELD_HEX_DIGITS = 64

FieldLike = Union[int, str]


def mod_fr(a: int) -> int:
    """Reduce any integer into [0, P)."""
    return ((a % BN254_PRIME) + BN254_PRIME) % BN254_PRIME


def is_field_element(x) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and 0 <= x < BN254_PRIME


def require_field(x, name: str = "value") -> int:
    """Return x unchanged if canonical, else raise InvalidFieldElement."""
    if not is_field_element(x):
        raise InvalidFieldElement(f"{name} is not a field element: {x!r}")
    return x


# ── Arithmetic ───────────────────────────────────────────────────────────────

def fadd(a: int, b: int) -> int:
    return mod_fr(a + b)


def fsub(a: int, b: int) -> int:
    return mod_fr(a - b)


def fmul(a: int, b: int) -> int:
    return mod_fr(a * b)


def fneg(a: int) -> int:
    return mod_fr(-a)


def finv(a: int) -> int:
    """
    Multiplicative inverse by the extended Euclidean algorithm.

    Maintains old_s * a ≡ old_r (mod P); when old_r reaches gcd = 1 the
    coefficient old_s is the inverse.
    """
    a = mod_fr(a)
    if a == 0:
        raise DivisionByZero("inverse of zero in Fr")

    old_r, r = a, BN254_PRIME
    old_s, s = 1, 0
    while r != 0:
        q = old_r // r
        old_r, r = r, old_r - q * r
        old_s, s = s, old_s - q * s

    return mod_fr(old_s)


def fdiv(a: int, b: int) -> int:
    return fmul(a, finv(b))


# ── Canonical string format ──────────────────────────────────────────────────

def parse_field(value: FieldLike, name: str = "value") -> int:
    """
    Parse a canonical field element from an int, a decimal string or a
    0x-prefixed hex string. Out-of-range values are rejected, not reduced.
    """
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                parsed = int(text, 16)
            else:
                parsed = int(text, 10)
        except ValueError:
            raise InvalidFieldElement(f"{name} is not a number: {value!r}") from None
        return require_field(parsed, name)
    return require_field(value, name)


def format_field(x: int, hex_form: bool = False) -> str:
    """Decimal string by default; 0x-prefixed 64-digit hex when hex_form."""
    require_field(x)
    if hex_form:
        return "0x" + format(x, f"0{FIELD_HEX_DIGITS}x")
    return str(x)
