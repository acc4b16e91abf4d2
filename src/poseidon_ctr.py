"""
poseidon_ctr.py — Poseidon Counter-Mode Encryption of Field Elements

Stream cipher over Fr used for the encrypted state details every
transition publishes:

    keystream(key, ctr) = hash2(key, ctr)
    encrypt(pt)         = pt + keystream   (mod P)
    decrypt(ct)         = ct − keystream   (mod P)

The counter is a u32 and must never repeat under the same key. The view
key hash2(VIEW_STRING, user_key) encrypts the account's own balance
(counter 0) and nullifier (counter 1).
"""

from typing import List, Sequence, Tuple

from bn254_field import fadd, fsub, require_field
from ledger_config import VIEW_STRING
from poseidon2_hash import hash2

MAX_COUNTER = 2**32 - 1

BALANCE_COUNTER = 0
NULLIFIER_COUNTER = 1


def _check_counter(counter: int) -> int:
    if not isinstance(counter, int) or not 0 <= counter <= MAX_COUNTER:
        raise ValueError(f"counter must be a u32, got {counter!r}")
    return counter


def keystream(key: int, counter: int) -> int:
    return hash2(require_field(key, "key"), _check_counter(counter))


def encrypt(plaintext: int, key: int, counter: int) -> int:
    return fadd(require_field(plaintext, "plaintext"), keystream(key, counter))


def decrypt(ciphertext: int, key: int, counter: int) -> int:
    return fsub(require_field(ciphertext, "ciphertext"), keystream(key, counter))


def encrypt_many(plaintexts: Sequence[int], key: int, start_counter: int = 0) -> List[int]:
    return [encrypt(pt, key, start_counter + i) for i, pt in enumerate(plaintexts)]


def decrypt_many(ciphertexts: Sequence[int], key: int, start_counter: int = 0) -> List[int]:
    return [decrypt(ct, key, start_counter + i) for i, ct in enumerate(ciphertexts)]


# ── View key ─────────────────────────────────────────────────────────────────

def derive_view_key(user_key: int, view_string: int = VIEW_STRING) -> int:
    return hash2(view_string, user_key)


def encrypt_state_details(shares_enc: int, nullifier_enc: int, view_key: int) -> Tuple[int, int]:
    """(encrypted_balance, encrypted_nullifier) under the view key."""
    return (
        encrypt(shares_enc, view_key, BALANCE_COUNTER),
        encrypt(nullifier_enc, view_key, NULLIFIER_COUNTER),
    )


def decrypt_state_details(encrypted_balance: int, encrypted_nullifier: int,
                          view_key: int) -> Tuple[int, int]:
    return (
        decrypt(encrypted_balance, view_key, BALANCE_COUNTER),
        decrypt(encrypted_nullifier, view_key, NULLIFIER_COUNTER),
    )
