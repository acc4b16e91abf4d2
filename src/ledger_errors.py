"""
ledger_errors.py — Error Kinds for the Shielded Ledger

Every failure the ledger can surface derives from LedgerError:
    - arithmetic layer: InvalidFieldElement, DivisionByZero, InvalidCurvePoint
    - accumulator:      TreeCapacityExceeded
    - transitions:      TransitionDeclined (+ one subclass per DeclineReason)

Degenerate curve additions are not errors; they resolve to the identity.
None of these are retried: a cryptographic mismatch cannot change on retry.
"""

from enum import Enum
from typing import Optional


class DeclineReason(Enum):
    INCLUSION_PROOF_MISMATCH = "inclusion_proof_mismatch"
    NONCE_OUT_OF_ORDER       = "nonce_out_of_order"
    COMMITMENT_MISMATCH      = "commitment_mismatch"
    INSUFFICIENT_SHARES      = "insufficient_shares"
    STILL_LOCKED             = "still_locked"
    NOTE_MISMATCH            = "note_mismatch"
    NOTE_ALREADY_ABSORBED    = "note_already_absorbed"
    UNKNOWN_ROOT             = "unknown_root"


class LedgerError(Exception):
    """Base class for all shielded-ledger errors."""


class InvalidFieldElement(LedgerError, ValueError):
    """Value is not a canonical element of the BN254 scalar field."""


class DivisionByZero(LedgerError, ZeroDivisionError):
    """Field inverse of zero. Always a programming error."""


class InvalidCurvePoint(LedgerError, ValueError):
    """Coordinates do not satisfy the Baby Jubjub equation."""


class TreeCapacityExceeded(LedgerError):
    """Insert would grow the Lean-IMT past its maximum depth."""


# ── Transition declines ──────────────────────────────────────────────────────

class TransitionDeclined(LedgerError):
    """A state transition was rejected; `reason` is the user-visible code."""

    reason: DeclineReason = DeclineReason.COMMITMENT_MISMATCH

    def __init__(self, message: str = "", reason: Optional[DeclineReason] = None):
        if reason is not None:
            self.reason = reason
        super().__init__(f"[{self.reason.value}] {message}" if message else self.reason.value)


class InclusionProofMismatch(TransitionDeclined):
    reason = DeclineReason.INCLUSION_PROOF_MISMATCH


class NonceOutOfOrder(TransitionDeclined):
    reason = DeclineReason.NONCE_OUT_OF_ORDER


class CommitmentMismatch(TransitionDeclined):
    reason = DeclineReason.COMMITMENT_MISMATCH


class InsufficientShares(TransitionDeclined):
    reason = DeclineReason.INSUFFICIENT_SHARES


class StillLocked(TransitionDeclined):
    reason = DeclineReason.STILL_LOCKED


class NoteMismatch(TransitionDeclined):
    reason = DeclineReason.NOTE_MISMATCH


class NoteAlreadyAbsorbed(TransitionDeclined):
    reason = DeclineReason.NOTE_ALREADY_ABSORBED


class UnknownRoot(TransitionDeclined):
    reason = DeclineReason.UNKNOWN_ROOT
