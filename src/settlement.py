"""
settlement.py — Reference Settlement Ledger

In-process stand-in for the vault contract. It accepts transition outputs
as already-verified public signals and owns everything public:

    - the Lean-IMT of commitment and note leaves
    - the history of roots a proof may be anchored to
    - used nonce commitments (replay and ordering guard)
    - absorbed note nullifiers (double-absorb guard)
    - the running nonce-discovery accumulator
    - total vault shares held on behalf of the shielded accounts

Deposits are credited here, after proving: the inserted leaf is
leafOf(C + amount·G), never leafOf(C). Submissions are serialized.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

from bn254_field import format_field, parse_field
from lean_imt import LeanIMT, MembershipWitness
from ledger_config import DEFAULT_PARAMS, LedgerParams
from ledger_errors import NonceOutOfOrder, NoteAlreadyAbsorbed, TreeCapacityExceeded, UnknownRoot
from nonce_discovery import NonceDiscoveryAccumulator
from pedersen_commitment import adjust_shares, leaf_of
from state_transitions import DepositOutput, EntryOutput, SendOutput, WithdrawOutput

logger = logging.getLogger(__name__)


class ShieldedLedger:
    """Public ledger state plus the settlement rules for each transition."""

    def __init__(self, params: LedgerParams = DEFAULT_PARAMS, tree: Optional[LeanIMT] = None):
        self.params = params
        self.tree = tree if tree is not None else LeanIMT()
        self.root_history: Set[int] = set()
        if self.tree.root is not None:
            self.root_history.add(self.tree.root)
        self.used_nonce_commitments: Set[int] = set()
        self.absorbed_notes: Set[int] = set()
        self.discovery = NonceDiscoveryAccumulator()
        self.total_shares: int = 0
        self._lock = threading.RLock()

    # ── queries ──

    def is_nonce_used(self, nonce_commitment: int) -> bool:
        return nonce_commitment in self.used_nonce_commitments

    def is_known_root(self, root: int) -> bool:
        return root in self.root_history

    def witness(self, leaf_index: int) -> MembershipWitness:
        return self.tree.witness(leaf_index)

    @property
    def root(self) -> Optional[int]:
        return self.tree.root

    # ── settlement rules ──

    def _require_root(self, root: int) -> None:
        if root not in self.root_history:
            logger.warning(f"Rejected proof against unknown root {hex(root)[:18]}...")
            raise UnknownRoot(f"root {hex(root)[:18]}... was never a tree root")

    def _claim_nonce(self, nonce_commitment: int) -> None:
        if nonce_commitment in self.used_nonce_commitments:
            logger.warning(f"Rejected reused nonce commitment {hex(nonce_commitment)[:18]}...")
            raise NonceOutOfOrder(f"nonce commitment {hex(nonce_commitment)[:18]}... already used")
        self.used_nonce_commitments.add(nonce_commitment)
        self.discovery.absorb(nonce_commitment)

    def _check_note(self, note_nullifier: Optional[int]) -> None:
        if note_nullifier is not None and note_nullifier in self.absorbed_notes:
            logger.warning(f"Rejected double absorb {hex(note_nullifier)[:18]}...")
            raise NoteAlreadyAbsorbed(f"note nullifier {hex(note_nullifier)[:18]}... already spent")

    def _claim_note(self, note_nullifier: Optional[int]) -> None:
        if note_nullifier is not None:
            self.absorbed_notes.add(note_nullifier)

    def _require_capacity(self, leaves: int) -> None:
        if self.tree.size + leaves > 1 << self.params.max_tree_depth:
            raise TreeCapacityExceeded(f"ledger holds the maximum of 2^{self.params.max_tree_depth} leaves")

    def _insert(self, leaf: int) -> int:
        result = self.tree.insert(leaf)
        self.root_history.add(result.root)
        return result.index

    def submit_entry(self, output: EntryOutput) -> int:
        with self._lock:
            self._require_capacity(1)
            self._claim_nonce(output.nonce_commitment)
            return self._insert(output.leaf)

    def submit_deposit(self, output: DepositOutput) -> int:
        """Credit the deposit on the commitment, then insert the adjusted leaf."""
        with self._lock:
            self._require_capacity(1)
            self._require_root(output.expected_root)
            self._claim_nonce(output.new_nonce_commitment)
            credited = adjust_shares(output.commitment, output.amount)
            index = self._insert(leaf_of(credited))
            self.total_shares += output.amount
            logger.info(f"Deposit settled: +{output.amount} shares at index {index}")
            return index

    def submit_withdraw(self, output: WithdrawOutput) -> int:
        with self._lock:
            self._require_capacity(1)
            self._require_root(output.expected_root)
            self._check_note(output.note_nullifier)
            self._claim_nonce(output.new_nonce_commitment)
            self._claim_note(output.note_nullifier)
            index = self._insert(output.leaf)
            self.total_shares -= output.amount + output.relayer_fee
            logger.info(f"Withdraw settled: -{output.amount} shares, fee {output.relayer_fee}")
            return index

    def submit_send(self, output: SendOutput) -> Tuple[int, int]:
        """Insert the sender's new leaf, then the note leaf."""
        with self._lock:
            self._require_capacity(2)
            self._require_root(output.expected_root)
            self._check_note(output.note_nullifier)
            self._claim_nonce(output.new_nonce_commitment)
            self._claim_note(output.note_nullifier)
            own_index = self._insert(output.new_commitment_leaf)
            note_index = self._insert(output.note_leaf)
            self.total_shares -= output.relayer_fee
            logger.info(f"Send settled: leaves {own_index}, {note_index}")
            return own_index, note_index

    # ── persistence ──

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                "tree": self.tree.to_dict(),
                "root_history": sorted(format_field(r) for r in self.root_history),
                "used_nonce_commitments": [format_field(v) for v in sorted(self.used_nonce_commitments)],
                "absorbed_notes": [format_field(v) for v in sorted(self.absorbed_notes)],
                "total_shares": self.total_shares,
            }

    @classmethod
    def from_dict(cls, data: Dict, params: LedgerParams = DEFAULT_PARAMS) -> "ShieldedLedger":
        ledger = cls(params, LeanIMT.from_dict(data["tree"]))
        ledger.root_history.update(parse_field(r, "root") for r in data["root_history"])
        for nc in sorted(parse_field(v, "nonce_commitment") for v in data["used_nonce_commitments"]):
            ledger._claim_nonce(nc)
        ledger.absorbed_notes.update(parse_field(v, "note") for v in data["absorbed_notes"])
        ledger.total_shares = int(data["total_shares"])
        return ledger

    def save(self, path: str) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Ledger saved to {path} ({self.tree.size} leaves)")

    @classmethod
    def load(cls, path: str, params: LedgerParams = DEFAULT_PARAMS) -> "ShieldedLedger":
        with open(path, "r") as f:
            return cls.from_dict(json.load(f), params)
