"""
State Transition Tests
"""

from dataclasses import replace

import pytest

import state_transitions as st
from lean_imt import LeanIMT
from ledger_errors import (
    CommitmentMismatch, DeclineReason, InclusionProofMismatch, InsufficientShares,
    NonceOutOfOrder, NoteMismatch, StillLocked, TransitionDeclined,
)
from nonce_discovery import nonce_discovery_entry
from pedersen_commitment import adjust_shares, leaf_of, pedersen_pair
from zk_keys import key_pair, nonce_key_pair

GOLDEN_ENTRY_LEAF = 0x031c769ca28b5048ba881e5f19e30327a24b0ddc12ea824337c2114875a70ef4


def _tree_with(*leaves) -> LeanIMT:
    tree = LeanIMT()
    for leaf in leaves:
        tree.insert(leaf)
    return tree


@pytest.fixture
def entered(golden_account):
    """Entry output inserted into a fresh tree."""
    out = st.entry(golden_account)
    return out, _tree_with(out.leaf)


@pytest.fixture
def deposited(golden_account, entered):
    """State after entry and a settled deposit of 50."""
    entry_out, tree = entered
    out = st.deposit(golden_account, entry_out.state, entry_out.leaf, tree.witness(0), 50)
    tree.insert(leaf_of(adjust_shares(out.commitment, out.amount)))
    return out.state, tree


class TestEntry:

    def test_golden_leaf(self, golden_account):
        out = st.entry(golden_account)
        assert out.leaf == GOLDEN_ENTRY_LEAF
        assert out.state == st.AccountState(0, 0, 0, 0)
        assert out.nonce_commitment == golden_account.nonce_commitment(0)
        assert out.nonce_discovery_entry == pedersen_pair(1, out.nonce_commitment)

    def test_reconstruct(self, golden_account):
        assert st.reconstruct_leaf(golden_account, st.AccountState()) == GOLDEN_ENTRY_LEAF


class TestDeposit:
    """Tests for deposit and the settlement credit."""

    def test_commitment_keeps_baseline(self, golden_account, entered):
        entry_out, tree = entered
        out = st.deposit(golden_account, entry_out.state, entry_out.leaf, tree.witness(0), 50)
        baseline = st.AccountState(shares=0, nonce=1)
        assert out.commitment == st.commitment_for(golden_account, baseline)
        assert out.state == st.AccountState(shares=50, nonce=1)
        assert out.new_nonce_commitment == golden_account.nonce_commitment(1)
        assert st.decrypt_balance(golden_account, out.encrypted_balance) == 0

    def test_settled_leaf_reconstructs(self, golden_account, entered):
        """Post-settlement leaf is leafOf(C + amount·G) and matches the new state."""
        entry_out, tree = entered
        out = st.deposit(golden_account, entry_out.state, entry_out.leaf, tree.witness(0), 50)
        settled = leaf_of(adjust_shares(out.commitment, 50))
        assert settled != leaf_of(out.commitment)
        assert settled == st.reconstruct_leaf(golden_account, out.state)

    def test_stale_root_declines(self, golden_account, entered):
        entry_out, tree = entered
        witness = replace(tree.witness(0), expected_root=12345)
        with pytest.raises(InclusionProofMismatch) as exc:
            st.deposit(golden_account, entry_out.state, entry_out.leaf, witness, 50)
        assert exc.value.reason is DeclineReason.INCLUSION_PROOF_MISMATCH

    def test_wrong_previous_state_declines(self, golden_account, entered):
        entry_out, tree = entered
        with pytest.raises(CommitmentMismatch):
            st.deposit(golden_account, st.AccountState(shares=10), entry_out.leaf,
                       tree.witness(0), 50)

    def test_other_account_cannot_open(self, other_account, entered):
        entry_out, tree = entered
        with pytest.raises(TransitionDeclined) as exc:
            st.deposit(other_account, entry_out.state, entry_out.leaf, tree.witness(0), 50)
        assert exc.value.reason is DeclineReason.COMMITMENT_MISMATCH


class TestWithdraw:
    """Tests for withdraw arithmetic and time lock."""

    def test_withdraw_all(self, golden_account, deposited):
        """49 + fee 1 from 50 leaves the encoding floor."""
        state, tree = deposited
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        out = st.withdraw(golden_account, state, prev_leaf, tree.witness(1), 49, 1,
                          declared_time_reference=1_000_000, receiver_address=0xBEEF)
        assert out.state == st.AccountState(shares=0, nonce=2)
        assert out.leaf == st.reconstruct_leaf(golden_account, out.state)
        assert out.note_nullifier is None
        assert out.nonce_discovery_entry == nonce_discovery_entry(out.new_nonce_commitment)
        assert st.decrypt_balance(golden_account, out.encrypted_balance) == 0

    def test_overdraw_declines(self, golden_account, deposited):
        state, tree = deposited
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        with pytest.raises(InsufficientShares):
            st.withdraw(golden_account, state, prev_leaf, tree.witness(1), 50, 1,
                        declared_time_reference=1_000_000, receiver_address=0xBEEF)

    def test_time_lock(self, golden_account):
        locked = st.AccountState(shares=100, unlocks_at=5000, nonce=3)
        leaf = st.reconstruct_leaf(golden_account, locked)
        tree = _tree_with(7, leaf)
        with pytest.raises(StillLocked):
            st.withdraw(golden_account, locked, leaf, tree.witness(1), 10, 1,
                        declared_time_reference=4999, receiver_address=1)
        out = st.withdraw(golden_account, locked, leaf, tree.witness(1), 10, 1,
                          declared_time_reference=5000, receiver_address=1)
        assert out.state == st.AccountState(shares=89, unlocks_at=5000, nonce=4)


class TestPreviousState:
    """Tests for matching the previous leaf against the claimed state."""

    def test_stale_nonce_is_out_of_order(self, golden_account, deposited):
        """A valid leaf claimed under an older nonce declines as out of order."""
        state, tree = deposited
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        stale = replace(state, nonce=0)
        with pytest.raises(NonceOutOfOrder) as exc:
            st.withdraw(golden_account, stale, prev_leaf, tree.witness(1), 1, 1,
                        declared_time_reference=1_000_000, receiver_address=0xBEEF)
        assert exc.value.reason is DeclineReason.NONCE_OUT_OF_ORDER

    def test_future_nonce_is_out_of_order(self, golden_account, deposited):
        state, tree = deposited
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        with pytest.raises(NonceOutOfOrder):
            st.send(golden_account, replace(state, nonce=2), prev_leaf, tree.witness(1),
                    1, 1, key_pair(777).public_key)

    def test_wrong_shares_stay_commitment_mismatch(self, golden_account, deposited):
        state, tree = deposited
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        with pytest.raises(CommitmentMismatch):
            st.withdraw(golden_account, replace(state, shares=49), prev_leaf, tree.witness(1),
                        1, 1, declared_time_reference=1_000_000, receiver_address=0xBEEF)


class TestDeclineReasons:

    def test_class_default_reason(self):
        exc = TransitionDeclined("bad leaf")
        assert exc.reason is DeclineReason.COMMITMENT_MISMATCH
        assert str(exc) == "[commitment_mismatch] bad leaf"

    def test_explicit_reason_overrides(self):
        exc = TransitionDeclined("locked", DeclineReason.STILL_LOCKED)
        assert exc.reason is DeclineReason.STILL_LOCKED
        assert str(exc) == "[still_locked] locked"
        assert StillLocked().reason is DeclineReason.STILL_LOCKED


class TestSendAndAbsorb:
    """Tests for notes: send, open, absorb."""

    def test_send_outputs(self, golden_account, deposited):
        state, tree = deposited
        receiver = key_pair(777)
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        out = st.send(golden_account, state, prev_leaf, tree.witness(1), 20, 1, receiver.public_key)

        assert out.state == st.AccountState(shares=29, nonce=2)
        assert out.new_commitment_leaf == st.reconstruct_leaf(golden_account, out.state)
        assert out.sender_public_key == nonce_key_pair(golden_account.user_key, 2).public_key
        assert len(out.encrypted_note) == 3
        assert st.decrypt_balance(golden_account, out.encrypted_note[1]) == 29

        note = st.open_note(receiver.private_key, out.sender_public_key,
                            out.encrypted_note[0], out.note_commitment)
        assert note.amount == 20
        assert note.leaf == out.note_leaf

    def test_wrong_receiver_cannot_open(self, golden_account, deposited):
        state, tree = deposited
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        out = st.send(golden_account, state, prev_leaf, tree.witness(1), 20, 1,
                      key_pair(777).public_key)
        with pytest.raises(NoteMismatch):
            st.open_note(778, out.sender_public_key, out.encrypted_note[0], out.note_commitment)

    def test_self_send_then_absorb_send(self, golden_account, deposited):
        """Send 20 to self, absorb the note and send 30 onwards."""
        state, tree = deposited
        me = key_pair(golden_account.user_key)
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        sent = st.send(golden_account, state, prev_leaf, tree.witness(1), 20, 1, me.public_key)
        tree.insert(sent.new_commitment_leaf)
        tree.insert(sent.note_leaf)

        note = st.open_note(me.private_key, sent.sender_public_key,
                            sent.encrypted_note[0], sent.note_commitment)
        out = st.absorb_send(golden_account, sent.state, sent.new_commitment_leaf,
                             tree.witness(2), note, tree.witness(3), 30, 1,
                             key_pair(999).public_key)
        # 29 + 20 - 30 - 1
        assert out.state == st.AccountState(shares=18, nonce=3)
        assert out.note_nullifier == st.note_nullifier(golden_account, note)

    def test_absorb_withdraw(self, golden_account, deposited):
        state, tree = deposited
        me = key_pair(golden_account.user_key)
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        sent = st.send(golden_account, state, prev_leaf, tree.witness(1), 20, 1, me.public_key)
        tree.insert(sent.new_commitment_leaf)
        tree.insert(sent.note_leaf)
        note = st.open_note(me.private_key, sent.sender_public_key,
                            sent.encrypted_note[0], sent.note_commitment)

        out = st.absorb_withdraw(golden_account, sent.state, sent.new_commitment_leaf,
                                 tree.witness(2), note, tree.witness(3), 48, 1,
                                 declared_time_reference=1_000_000, receiver_address=0xBEEF)
        assert out.state == st.AccountState(shares=0, nonce=3)
        assert out.note_nullifier is not None

    def test_absorb_rejects_forged_note(self, golden_account, deposited):
        state, tree = deposited
        me = key_pair(golden_account.user_key)
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        sent = st.send(golden_account, state, prev_leaf, tree.witness(1), 20, 1, me.public_key)
        tree.insert(sent.new_commitment_leaf)
        tree.insert(sent.note_leaf)
        note = st.open_note(me.private_key, sent.sender_public_key,
                            sent.encrypted_note[0], sent.note_commitment)
        inflated = replace(note, amount=2000)

        with pytest.raises(NoteMismatch):
            st.absorb_send(golden_account, sent.state, sent.new_commitment_leaf,
                           tree.witness(2), inflated, tree.witness(3), 30, 1, me.public_key)

    def test_absorb_rejects_note_outside_tree(self, golden_account, deposited):
        state, tree = deposited
        me = key_pair(golden_account.user_key)
        prev_leaf = st.reconstruct_leaf(golden_account, state)
        sent = st.send(golden_account, state, prev_leaf, tree.witness(1), 20, 1, me.public_key)
        tree.insert(sent.new_commitment_leaf)
        note = st.open_note(me.private_key, sent.sender_public_key,
                            sent.encrypted_note[0], sent.note_commitment)

        with pytest.raises(InclusionProofMismatch):
            st.absorb_send(golden_account, sent.state, sent.new_commitment_leaf,
                           tree.witness(2), note, tree.witness(0), 30, 1, me.public_key)
