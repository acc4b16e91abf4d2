"""
zk_keys.py — Baby Jubjub Key Pairs, Note Keys and zk-Addresses

Receiving keys live in the BASE8 subgroup:

    public_key = private_key · BASE8

A send derives a one-time note key from a Diffie-Hellman exchange:

    shared_point = sender_private · receiver_public
                 = receiver_private · sender_public
    note_key     = hash1(hash2(shared_point.x, shared_point.y))

The sender's per-transition private key is user_key + nonce, so each
send publishes a fresh sender public key.

A zk-address is "zk" followed by the 64-hex-digit x and y coordinates of a
public key. Its private key is derived from a 65-byte wallet signature by
hashing the 31/31/3-byte big-endian chunks with hash3.
"""

from dataclasses import dataclass

from babyjub_curve import BASE8, CurvePoint, is_on_curve, scalar_mul
from bn254_field import FIELD_HEX_DIGITS, fadd, require_field
from ledger_errors import InvalidCurvePoint
from poseidon2_hash import hash1, hash2, hash3

ZK_ADDRESS_PREFIX = "zk"
SIGNATURE_BYTES = 65
SIGNATURE_CHUNKS = ((0, 31), (31, 62), (62, 65))


@dataclass(frozen=True)
class KeyPair:
    private_key: int
    public_key: CurvePoint

    @property
    def zk_address(self) -> str:
        return format_zk_address(self.public_key)


def derive_public_key(private_key: int) -> CurvePoint:
    return scalar_mul(require_field(private_key, "private_key"), BASE8)


def key_pair(private_key: int) -> KeyPair:
    return KeyPair(private_key, derive_public_key(private_key))


def nonce_key_pair(user_key: int, nonce: int) -> KeyPair:
    """Per-nonce key pair: private key user_key + nonce."""
    return key_pair(fadd(user_key, nonce))


def private_key_from_signature(signature: str) -> int:
    """Private key from a 65-byte hex signature (0x prefix optional)."""
    sig_hex = signature[2:] if signature.startswith("0x") else signature
    raw = bytes.fromhex(sig_hex)
    if len(raw) != SIGNATURE_BYTES:
        raise ValueError(f"Signature must be {SIGNATURE_BYTES} bytes, got {len(raw)}")
    chunks = [int.from_bytes(raw[a:b], "big") for a, b in SIGNATURE_CHUNKS]
    return hash3(*chunks)


# ── Diffie-Hellman note keys ─────────────────────────────────────────────────

def shared_point(private_key: int, peer_public_key: CurvePoint) -> CurvePoint:
    if not is_on_curve(peer_public_key):
        raise InvalidCurvePoint("peer public key is not on Baby Jubjub")
    return scalar_mul(require_field(private_key, "private_key"), peer_public_key)


def derive_note_key(point: CurvePoint) -> int:
    return hash1(hash2(point.x, point.y))


def note_key_for(private_key: int, peer_public_key: CurvePoint) -> int:
    return derive_note_key(shared_point(private_key, peer_public_key))


# ── zk-address format ────────────────────────────────────────────────────────

def format_zk_address(public_key: CurvePoint) -> str:
    return (ZK_ADDRESS_PREFIX
            + format(public_key.x, f"0{FIELD_HEX_DIGITS}x")
            + format(public_key.y, f"0{FIELD_HEX_DIGITS}x"))


def parse_zk_address(address: str) -> CurvePoint:
    """Parse "zk<x><y>" (prefixes optional) into an on-curve public key."""
    body = address[len(ZK_ADDRESS_PREFIX):] if address.startswith(ZK_ADDRESS_PREFIX) else address
    body = body[2:] if body.startswith("0x") else body
    if len(body) != 2 * FIELD_HEX_DIGITS:
        raise ValueError(f"Invalid zk-address: expected {2 * FIELD_HEX_DIGITS} hex characters, "
                         f"got {len(body)}")
    return CurvePoint.from_strings(("0x" + body[:FIELD_HEX_DIGITS], "0x" + body[FIELD_HEX_DIGITS:]))
