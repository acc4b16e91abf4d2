"""
shielded_wallet.py — Client-Side Account Tracking

Keeps one account's private state in step with a ShieldedLedger: the
current logical state, the index of its own leaf, and received notes.
Before each transition the wallet re-discovers its nonce from the
ledger's used nonce commitments; a mismatch with the locally tracked
nonce declines with NonceOutOfOrder. The account's view key follows the
ledger's configured view string.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

import state_transitions as st
from babyjub_curve import CurvePoint
from ledger_errors import NonceOutOfOrder
from nonce_discovery import DiscoveryResult, discover_nonce
from settlement import ShieldedLedger
from zk_keys import KeyPair, key_pair

logger = logging.getLogger(__name__)


@dataclass
class ReceivedNote:
    opening: st.NoteOpening
    leaf_index: int


@dataclass
class ShieldedWallet:
    account: st.AccountKey
    ledger: ShieldedLedger
    receiving_keys: Optional[KeyPair] = None
    state: Optional[st.AccountState] = None
    leaf_index: Optional[int] = None
    notes: List[ReceivedNote] = field(default_factory=list)

    def __post_init__(self):
        if self.account.view_string != self.ledger.params.view_string:
            self.account = replace(self.account, view_string=self.ledger.params.view_string)
        if self.receiving_keys is None:
            self.receiving_keys = key_pair(self.account.user_key)

    @property
    def public_key(self) -> CurvePoint:
        return self.receiving_keys.public_key

    @property
    def balance(self) -> int:
        return 0 if self.state is None else self.state.shares

    # ── sync ──

    def discover(self) -> DiscoveryResult:
        return discover_nonce(
            self.account.user_key, self.account.chain_id, self.account.token_address,
            self.ledger.is_nonce_used, self.ledger.params.nonce_scan_limit,
        )

    def _require_in_sync(self) -> None:
        if self.state is None:
            raise NonceOutOfOrder("account has no entry yet")
        found = self.discover().latest_nonce
        if found != self.state.nonce:
            logger.warning(f"Local nonce {self.state.nonce} behind ledger nonce {found}")
            raise NonceOutOfOrder(f"local nonce {self.state.nonce}, ledger at {found}")

    def _previous(self):
        self._require_in_sync()
        leaf = st.reconstruct_leaf(self.account, self.state)
        return self.state, leaf, self.ledger.witness(self.leaf_index)

    # ── transitions ──

    def enter(self) -> st.EntryOutput:
        if self.discover().latest_nonce is not None:
            raise NonceOutOfOrder("account already entered")
        out = st.entry(self.account)
        self.leaf_index = self.ledger.submit_entry(out)
        self.state = out.state
        return out

    def deposit(self, amount: int) -> st.DepositOutput:
        state, leaf, witness = self._previous()
        out = st.deposit(self.account, state, leaf, witness, amount)
        self.leaf_index = self.ledger.submit_deposit(out)
        self.state = out.state
        return out

    def withdraw(self, amount: int, relayer_fee: int, declared_time_reference: int,
                 receiver_address: int, calldata_hash: int = 0) -> st.WithdrawOutput:
        state, leaf, witness = self._previous()
        out = st.withdraw(self.account, state, leaf, witness, amount, relayer_fee,
                          declared_time_reference, receiver_address, calldata_hash)
        self.leaf_index = self.ledger.submit_withdraw(out)
        self.state = out.state
        return out

    def send(self, amount: int, relayer_fee: int, receiver_public_key: CurvePoint) -> st.SendOutput:
        state, leaf, witness = self._previous()
        out = st.send(self.account, state, leaf, witness, amount, relayer_fee, receiver_public_key)
        self.leaf_index, _ = self.ledger.submit_send(out)
        self.state = out.state
        return out

    def receive(self, sent: st.SendOutput) -> ReceivedNote:
        """Open a note addressed to this wallet's receiving key."""
        opening = st.open_note(self.receiving_keys.private_key, sent.sender_public_key,
                               sent.encrypted_note[0], sent.note_commitment)
        note = ReceivedNote(opening, self.ledger.tree.index_of(opening.leaf))
        self.notes.append(note)
        return note

    def absorb_send(self, note: ReceivedNote, amount: int, relayer_fee: int,
                    receiver_public_key: CurvePoint) -> st.SendOutput:
        state, leaf, witness = self._previous()
        out = st.absorb_send(self.account, state, leaf, witness, note.opening,
                             self.ledger.witness(note.leaf_index), amount, relayer_fee,
                             receiver_public_key)
        self.leaf_index, _ = self.ledger.submit_send(out)
        self.state = out.state
        self.notes.remove(note)
        return out

    def absorb_withdraw(self, note: ReceivedNote, amount: int, relayer_fee: int,
                        declared_time_reference: int, receiver_address: int,
                        calldata_hash: int = 0) -> st.WithdrawOutput:
        state, leaf, witness = self._previous()
        out = st.absorb_withdraw(self.account, state, leaf, witness, note.opening,
                                 self.ledger.witness(note.leaf_index), amount, relayer_fee,
                                 declared_time_reference, receiver_address, calldata_hash)
        self.leaf_index = self.ledger.submit_withdraw(out)
        self.state = out.state
        self.notes.remove(note)
        return out


# ── Main ──────────────────────────────────────────────────────────────────────

def main():
    from ledger_config import DEFAULT_PARAMS, setup_logging

    setup_logging(DEFAULT_PARAMS.log)

    print("=" * 72)
    print("Shielded Ledger — Account Lifecycle")
    print("=" * 72)

    ledger = ShieldedLedger()
    alice = ShieldedWallet(st.AccountKey(0x1234567890abcdef, 1, 0x02), ledger)
    bob = ShieldedWallet(st.AccountKey(0xfedcba0987654321, 1, 0x02), ledger)

    print(f"\n1. Entry")
    alice.enter()
    bob.enter()
    print(f"   tree size={ledger.tree.size}  root={hex(ledger.root)[:18]}...")

    print(f"\n2. Deposit 50 (settlement adds 50·G)")
    alice.deposit(50)
    print(f"   alice shares={alice.balance}  vault total={ledger.total_shares}")

    print(f"\n3. Send 20 to bob, fee 1")
    sent = alice.send(20, 1, bob.public_key)
    note = bob.receive(sent)
    print(f"   alice shares={alice.balance}  note amount={note.opening.amount}")

    print(f"\n4. Bob absorbs and withdraws 19, fee 1")
    bob.absorb_withdraw(note, 19, 1, declared_time_reference=1_000_000, receiver_address=0xBEEF)
    print(f"   bob shares={bob.balance}  vault total={ledger.total_shares}")
    print(f"   tree size={ledger.tree.size}  depth={ledger.tree.depth}")


if __name__ == "__main__":
    main()
