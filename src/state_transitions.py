"""
state_transitions.py — Nonce-Chained Account Transitions

Circuit-side semantics of every ledger transition. Each function takes
the caller's secrets (account key, previous state, inclusion witness) and
returns the public outputs a proof would expose:

    Entry          → first commitment, nonce 0, all fields zero
    Deposit        → same shares; settlement adds amount·G afterwards
    Withdraw       → shares − amount − fee, time lock checked
    Send           → shares − amount − fee, plus a note for the receiver
    Absorb-Send    → fold a received note into the balance, then send
    Absorb-Withdraw→ fold a received note into the balance, then withdraw

Every non-entry transition first checks that the previous leaf is in the
tree under the claimed root and that it reconstructs from the previous
state. A leaf that reopens only under another nonce declines as
NonceOutOfOrder. The new state always carries nonce = previous nonce + 1.
Any failed check declines with a reason code; nothing falls back.
"""

import logging
from dataclasses import dataclass, replace
from functools import cached_property
from typing import Optional, Tuple

from babyjub_curve import GEN_J, CurvePoint, point_add, scalar_mul
from bn254_field import require_field
from lean_imt import MembershipWitness, verify_inclusion
from ledger_config import DEFAULT_PARAMS, VIEW_STRING
from ledger_errors import (
    CommitmentMismatch, InclusionProofMismatch, InsufficientShares,
    NonceOutOfOrder, NoteMismatch, StillLocked, TransitionDeclined,
)
from nonce_discovery import nonce_discovery_entry
from pedersen_commitment import (
    ENCODING_BIAS, CommitmentOpening, derive_nonce_commitment, derive_spending_key,
    encode_biased, leaf_of, pedersen_pair, to_nullifier_domain,
)
from poseidon2_hash import hash3
from poseidon_ctr import BALANCE_COUNTER, decrypt, derive_view_key, encrypt, encrypt_state_details
from zk_keys import nonce_key_pair, note_key_for

logger = logging.getLogger(__name__)

NOTE_AMOUNT_COUNTER = 0


# ── Account identity and state ───────────────────────────────────────────────

@dataclass(frozen=True)
class AccountKey:
    """(user_key, chain_id, token_address): scope of one account."""
    user_key: int
    chain_id: int
    token_address: int
    view_string: int = VIEW_STRING

    def __post_init__(self):
        require_field(self.user_key, "user_key")
        require_field(self.chain_id, "chain_id")
        require_field(self.token_address, "token_address")
        require_field(self.view_string, "view_string")

    @cached_property
    def spending_key(self) -> int:
        return derive_spending_key(self.user_key, self.chain_id, self.token_address)

    @cached_property
    def view_key(self) -> int:
        return derive_view_key(self.user_key, self.view_string)

    def nonce_commitment(self, nonce: int) -> int:
        return derive_nonce_commitment(self.spending_key, nonce, self.token_address)


@dataclass(frozen=True)
class AccountState:
    """Logical account values; never published."""
    shares: int = 0
    nullifier: int = 0
    unlocks_at: int = 0
    nonce: int = 0

    def __post_init__(self):
        for name in ("shares", "nullifier", "unlocks_at", "nonce"):
            require_field(getattr(self, name), name)

    @property
    def shares_enc(self) -> int:
        return encode_biased(self.shares)

    @property
    def nullifier_enc(self) -> int:
        return encode_biased(self.nullifier)

    @property
    def unlocks_at_enc(self) -> int:
        return encode_biased(self.unlocks_at)

    def opening(self, account: AccountKey) -> CommitmentOpening:
        return CommitmentOpening(
            shares_enc=self.shares_enc,
            nullifier_enc=self.nullifier_enc,
            spending_key=account.spending_key,
            unlocks_at_enc=self.unlocks_at_enc,
            nonce_commitment=account.nonce_commitment(self.nonce),
        )


def commitment_for(account: AccountKey, state: AccountState) -> CurvePoint:
    return state.opening(account).commit()


def reconstruct_leaf(account: AccountKey, state: AccountState) -> int:
    """
    Leaf the tree holds for `state`. States returned by deposit already
    include the settlement credit, so this matches the inserted leaf.
    """
    return leaf_of(commitment_for(account, state))


# ── Public outputs ───────────────────────────────────────────────────────────

@dataclass
class EntryOutput:
    commitment: CurvePoint
    nonce_commitment: int
    nonce_discovery_entry: CurvePoint
    state: AccountState

    @property
    def leaf(self) -> int:
        return leaf_of(self.commitment)


@dataclass
class DepositOutput:
    commitment: CurvePoint             # pre-settlement: shares not yet credited
    encrypted_balance: int
    encrypted_nullifier: int
    nonce_discovery_entry: CurvePoint
    new_nonce_commitment: int
    expected_root: int
    amount: int
    state: AccountState                # post-settlement state


@dataclass
class WithdrawOutput:
    commitment: CurvePoint
    new_nonce_commitment: int
    encrypted_balance: int
    encrypted_nullifier: int
    nonce_discovery_entry: CurvePoint
    expected_root: int
    amount: int
    relayer_fee: int
    declared_time_reference: int
    receiver_address: int
    calldata_hash: int
    state: AccountState
    note_nullifier: Optional[int] = None   # set by absorb-withdraw

    @property
    def leaf(self) -> int:
        return leaf_of(self.commitment)


@dataclass
class SendOutput:
    new_commitment_leaf: int
    new_nonce_commitment: int
    encrypted_note: Tuple[int, int, int]   # amount, balance, nullifier
    sender_public_key: CurvePoint
    nonce_discovery_entry: CurvePoint
    note_commitment: CurvePoint
    expected_root: int
    relayer_fee: int
    state: AccountState
    note_nullifier: Optional[int] = None   # set by absorb-send

    @property
    def note_leaf(self) -> int:
        return leaf_of(self.note_commitment)


@dataclass(frozen=True)
class NoteOpening:
    """A received note: amount, DH-derived blinding key and its commitment."""
    amount: int
    note_key: int
    commitment: CurvePoint

    @property
    def leaf(self) -> int:
        return leaf_of(self.commitment)


# ── Checks ───────────────────────────────────────────────────────────────────

def _decline(exc: TransitionDeclined) -> TransitionDeclined:
    logger.warning(f"Transition declined: {exc}")
    return exc


def _check_previous(account: AccountKey, previous_state: AccountState,
                    previous_leaf: int, membership: MembershipWitness) -> None:
    if not verify_inclusion(previous_leaf, membership.leaf_index, membership.tree_depth,
                            membership.expected_root, membership.merkle_proof):
        raise _decline(InclusionProofMismatch(
            f"leaf {hex(previous_leaf)[:18]}... not under root {hex(membership.expected_root)[:18]}..."))
    if reconstruct_leaf(account, previous_state) != previous_leaf:
        actual = _reopening_nonce(account, previous_state, previous_leaf)
        if actual is not None:
            raise _decline(NonceOutOfOrder(
                f"previous leaf is at nonce {actual}, not {previous_state.nonce}"))
        raise _decline(CommitmentMismatch(
            f"previous state at nonce {previous_state.nonce} does not open the previous leaf"))


def _reopening_nonce(account: AccountKey, previous_state: AccountState, previous_leaf: int,
                     limit: int = DEFAULT_PARAMS.nonce_scan_limit) -> Optional[int]:
    """Nonce below `limit` under which the other state values open the leaf."""
    partial = replace(previous_state.opening(account), nonce_commitment=0).commit()
    for nonce in range(limit):
        if nonce == previous_state.nonce:
            continue
        term = scalar_mul(account.nonce_commitment(nonce), GEN_J)
        if leaf_of(point_add(partial, term)) == previous_leaf:
            return nonce
    return None


def _spend(available: int, amount: int, relayer_fee: int) -> int:
    """Logical balance after paying amount + fee; encoded value stays ≥ 1."""
    require_field(amount, "amount")
    require_field(relayer_fee, "relayer_fee")
    remaining_enc = available + ENCODING_BIAS - amount - relayer_fee
    if remaining_enc < ENCODING_BIAS:
        raise _decline(InsufficientShares(
            f"balance {available} cannot cover amount {amount} + fee {relayer_fee}"))
    return remaining_enc - ENCODING_BIAS


def _advance(previous_state: AccountState, shares: int) -> AccountState:
    return replace(previous_state, shares=shares, nonce=previous_state.nonce + 1)


# ── Entry / Deposit ──────────────────────────────────────────────────────────

def entry(account: AccountKey) -> EntryOutput:
    state = AccountState()
    nc = account.nonce_commitment(state.nonce)
    commitment = commitment_for(account, state)
    logger.info(f"Entry: nonce_commitment={hex(nc)[:18]}...")
    return EntryOutput(
        commitment=commitment,
        nonce_commitment=nc,
        nonce_discovery_entry=nonce_discovery_entry(nc),
        state=state,
    )


def deposit(account: AccountKey, previous_state: AccountState, previous_leaf: int,
            membership: MembershipWitness, amount: int) -> DepositOutput:
    """
    The commitment keeps the pre-deposit shares; the settlement layer
    credits `amount` by adding amount·G before inserting the leaf.
    """
    require_field(amount, "amount")
    _check_previous(account, previous_state, previous_leaf, membership)

    circuit_state = _advance(previous_state, previous_state.shares)
    nnc = account.nonce_commitment(circuit_state.nonce)
    enc_balance, enc_nullifier = encrypt_state_details(
        circuit_state.shares_enc, circuit_state.nullifier_enc, account.view_key)

    logger.info(f"Deposit: amount={amount}, nonce={circuit_state.nonce}")
    return DepositOutput(
        commitment=commitment_for(account, circuit_state),
        encrypted_balance=enc_balance,
        encrypted_nullifier=enc_nullifier,
        nonce_discovery_entry=nonce_discovery_entry(nnc),
        new_nonce_commitment=nnc,
        expected_root=membership.expected_root,
        amount=amount,
        state=replace(circuit_state, shares=previous_state.shares + amount),
    )


# ── Withdraw / Send bodies ───────────────────────────────────────────────────

def _withdraw_from(account: AccountKey, previous_state: AccountState, available: int,
                   expected_root: int, amount: int, relayer_fee: int,
                   declared_time_reference: int, receiver_address: int,
                   calldata_hash: int, note_nullifier: Optional[int]) -> WithdrawOutput:
    require_field(declared_time_reference, "declared_time_reference")
    if declared_time_reference < previous_state.unlocks_at:
        raise _decline(StillLocked(
            f"declared time {declared_time_reference} before unlock {previous_state.unlocks_at}"))

    new_state = _advance(previous_state, _spend(available, amount, relayer_fee))
    nnc = account.nonce_commitment(new_state.nonce)
    enc_balance, enc_nullifier = encrypt_state_details(
        new_state.shares_enc, new_state.nullifier_enc, account.view_key)

    logger.info(f"Withdraw: amount={amount}, fee={relayer_fee}, nonce={new_state.nonce}")
    return WithdrawOutput(
        commitment=commitment_for(account, new_state),
        new_nonce_commitment=nnc,
        encrypted_balance=enc_balance,
        encrypted_nullifier=enc_nullifier,
        nonce_discovery_entry=nonce_discovery_entry(nnc),
        expected_root=expected_root,
        amount=amount,
        relayer_fee=relayer_fee,
        declared_time_reference=declared_time_reference,
        receiver_address=require_field(receiver_address, "receiver_address"),
        calldata_hash=require_field(calldata_hash, "calldata_hash"),
        state=new_state,
        note_nullifier=note_nullifier,
    )


def _send_from(account: AccountKey, previous_state: AccountState, available: int,
               expected_root: int, amount: int, relayer_fee: int,
               receiver_public_key: CurvePoint, note_nullifier: Optional[int]) -> SendOutput:
    new_state = _advance(previous_state, _spend(available, amount, relayer_fee))
    nnc = account.nonce_commitment(new_state.nonce)

    sender = nonce_key_pair(account.user_key, new_state.nonce)
    note_key = note_key_for(sender.private_key, receiver_public_key)
    enc_balance, enc_nullifier = encrypt_state_details(
        new_state.shares_enc, new_state.nullifier_enc, account.view_key)

    logger.info(f"Send: amount={amount}, fee={relayer_fee}, nonce={new_state.nonce}")
    return SendOutput(
        new_commitment_leaf=reconstruct_leaf(account, new_state),
        new_nonce_commitment=nnc,
        encrypted_note=(encrypt(amount, note_key, NOTE_AMOUNT_COUNTER), enc_balance, enc_nullifier),
        sender_public_key=sender.public_key,
        nonce_discovery_entry=nonce_discovery_entry(nnc),
        note_commitment=pedersen_pair(amount, note_key),
        expected_root=expected_root,
        relayer_fee=relayer_fee,
        state=new_state,
        note_nullifier=note_nullifier,
    )


def withdraw(account: AccountKey, previous_state: AccountState, previous_leaf: int,
             membership: MembershipWitness, amount: int, relayer_fee: int,
             declared_time_reference: int, receiver_address: int,
             calldata_hash: int = 0) -> WithdrawOutput:
    _check_previous(account, previous_state, previous_leaf, membership)
    return _withdraw_from(account, previous_state, previous_state.shares,
                          membership.expected_root, amount, relayer_fee,
                          declared_time_reference, receiver_address, calldata_hash, None)


def send(account: AccountKey, previous_state: AccountState, previous_leaf: int,
         membership: MembershipWitness, amount: int, relayer_fee: int,
         receiver_public_key: CurvePoint) -> SendOutput:
    _check_previous(account, previous_state, previous_leaf, membership)
    return _send_from(account, previous_state, previous_state.shares,
                      membership.expected_root, amount, relayer_fee,
                      receiver_public_key, None)


# ── Notes ────────────────────────────────────────────────────────────────────

def open_note(receiver_private_key: int, sender_public_key: CurvePoint,
              encrypted_amount: int, note_commitment: CurvePoint) -> NoteOpening:
    """Recover a note sent to `receiver_private_key` and check its commitment."""
    note_key = note_key_for(receiver_private_key, sender_public_key)
    amount = decrypt(encrypted_amount, note_key, NOTE_AMOUNT_COUNTER)
    if pedersen_pair(amount, note_key) != note_commitment:
        raise _decline(NoteMismatch("note does not open under the shared key"))
    return NoteOpening(amount=amount, note_key=note_key, commitment=note_commitment)


def note_nullifier(account: AccountKey, note: NoteOpening) -> int:
    return hash3(note.leaf, note.note_key, to_nullifier_domain(account.token_address))


def _absorb(account: AccountKey, previous_state: AccountState, previous_leaf: int,
            membership: MembershipWitness, note: NoteOpening,
            note_membership: MembershipWitness) -> Tuple[int, int]:
    """Validate own leaf and note leaf; return (combined balance, note nullifier)."""
    _check_previous(account, previous_state, previous_leaf, membership)
    if note_membership.expected_root != membership.expected_root:
        raise _decline(InclusionProofMismatch("note and account proofs use different roots"))
    if pedersen_pair(note.amount, note.note_key) != note.commitment:
        raise _decline(NoteMismatch("note opening does not match its commitment"))
    if not verify_inclusion(note.leaf, note_membership.leaf_index, note_membership.tree_depth,
                            note_membership.expected_root, note_membership.merkle_proof):
        raise _decline(InclusionProofMismatch(f"note leaf {hex(note.leaf)[:18]}... not in tree"))
    return previous_state.shares + note.amount, note_nullifier(account, note)


def absorb_send(account: AccountKey, previous_state: AccountState, previous_leaf: int,
                membership: MembershipWitness, note: NoteOpening,
                note_membership: MembershipWitness, amount: int, relayer_fee: int,
                receiver_public_key: CurvePoint) -> SendOutput:
    available, nullifier = _absorb(account, previous_state, previous_leaf, membership,
                                   note, note_membership)
    return _send_from(account, previous_state, available, membership.expected_root,
                      amount, relayer_fee, receiver_public_key, nullifier)


def absorb_withdraw(account: AccountKey, previous_state: AccountState, previous_leaf: int,
                    membership: MembershipWitness, note: NoteOpening,
                    note_membership: MembershipWitness, amount: int, relayer_fee: int,
                    declared_time_reference: int, receiver_address: int,
                    calldata_hash: int = 0) -> WithdrawOutput:
    available, nullifier = _absorb(account, previous_state, previous_leaf, membership,
                                   note, note_membership)
    return _withdraw_from(account, previous_state, available, membership.expected_root,
                          amount, relayer_fee, declared_time_reference, receiver_address,
                          calldata_hash, nullifier)


def decrypt_balance(account: AccountKey, encrypted_balance: int) -> int:
    """Logical shares committed alongside an encrypted balance."""
    return decrypt(encrypted_balance, account.view_key, BALANCE_COUNTER) - ENCODING_BIAS
