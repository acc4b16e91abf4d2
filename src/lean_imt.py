"""
lean_imt.py — Lean Incremental Merkle Tree

Append-only binary Merkle accumulator over commitment leaves, hashed with
Poseidon2 hash2. Unlike a zero-padded tree, a node with no right sibling
is carried up unchanged rather than hashed against zero; this is the
"lean" property, and it keeps the root independent of any padding value.

Tree state is only {size, depth, side_nodes}:
    - side_nodes[l] holds the latest left node at level l
    - side_nodes[depth] holds the root
    - depth = ceil(log2(size)), floored at 1 once the tree holds a leaf

Inclusion proofs are rebuilt from the full leaf list so any historical
index stays provable. Proofs are fixed at MAX_DEPTH siblings, zero-padded.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from bn254_field import format_field, parse_field, require_field
from ledger_errors import InclusionProofMismatch, TreeCapacityExceeded
from poseidon2_hash import hash2

logger = logging.getLogger(__name__)

MAX_DEPTH = 32


# ── Data structures ──────────────────────────────────────────────────────────

@dataclass
class InsertResult:
    """Tree state after one insert."""
    root: int
    depth: int
    side_nodes: List[int]
    index: int                       # position of the inserted leaf


@dataclass
class MembershipWitness:
    """Everything a transition needs to prove a leaf is in the tree."""
    leaf_index: int
    tree_depth: int
    expected_root: int
    merkle_proof: List[int]          # MAX_DEPTH siblings, leaf → root

    def to_dict(self) -> Dict:
        return {
            "leaf_index": self.leaf_index,
            "tree_depth": self.tree_depth,
            "expected_root": format_field(self.expected_root, hex_form=True),
            "merkle_proof": [format_field(s, hex_form=True) for s in self.merkle_proof],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "MembershipWitness":
        return cls(
            leaf_index=int(data["leaf_index"]),
            tree_depth=int(data["tree_depth"]),
            expected_root=parse_field(data["expected_root"], "expected_root"),
            merkle_proof=[parse_field(s, "merkle_proof") for s in data["merkle_proof"]],
        )


# ── Insertion ────────────────────────────────────────────────────────────────

def insert_leaf(leaf: int, size: int, depth: int, side_nodes: Sequence[int]) -> InsertResult:
    """
    Pure insert of `leaf` at index `size`.

    At each level below the new depth: bit 1 means a right child, hashed
    with the stored left sibling; bit 0 means a left child, stored as that
    level's side node and carried up as is.
    """
    require_field(leaf, "leaf")
    index = size
    new_depth = max(depth, 1)
    if (1 << new_depth) < index + 1:
        new_depth += 1
    if new_depth > MAX_DEPTH:
        raise TreeCapacityExceeded(f"tree is full at depth {MAX_DEPTH} ({size} leaves)")

    nodes = list(side_nodes) + [0] * (MAX_DEPTH - len(side_nodes))
    node = leaf
    for level in range(new_depth):
        if (index >> level) & 1:
            node = hash2(nodes[level], node)
        else:
            nodes[level] = node

    if new_depth < MAX_DEPTH:
        nodes[new_depth] = node

    return InsertResult(root=node, depth=new_depth, side_nodes=nodes, index=index)


# ── Proof generation ─────────────────────────────────────────────────────────

def build_levels(leaves: Sequence[int]) -> List[List[int]]:
    """
    All tree levels bottom-up, levels[0] being the leaves. A trailing
    unpaired element is copied to the next level unchanged.
    """
    levels = [list(leaves)]
    current = levels[0]
    while len(current) > 1:
        nxt = []
        for j in range(0, len(current) - 1, 2):
            nxt.append(hash2(current[j], current[j + 1]))
        if len(current) % 2 == 1:
            nxt.append(current[-1])
        levels.append(nxt)
        current = nxt
    return levels


def proof_from_levels(levels: Sequence[Sequence[int]], leaf_index: int, depth: int) -> List[int]:
    proof = []
    position = leaf_index
    for level in range(depth):
        row = levels[level] if level < len(levels) else []
        if position & 1:
            proof.append(row[position - 1])
        elif position + 1 < len(row):
            proof.append(row[position + 1])
        else:
            proof.append(0)
        position >>= 1
    return proof + [0] * (MAX_DEPTH - len(proof))


def prove_inclusion(leaf_index: int, depth: int, all_leaves: Sequence[int], size: int) -> List[int]:
    """Sibling path for `leaf_index`, rebuilt from the first `size` leaves."""
    if not 0 <= leaf_index < size <= len(all_leaves):
        raise IndexError(f"leaf index {leaf_index} outside tree of size {size}")
    return proof_from_levels(build_levels(all_leaves[:size]), leaf_index, depth)


# ── Verification ─────────────────────────────────────────────────────────────

def compute_root(leaf: int, index: int, depth: int, proof: Sequence[int]) -> int:
    """
    Replay the insertion rule with proof[level] standing in for the side
    node. A left child with a zero sibling has no sibling and is carried.
    """
    node = leaf
    for level in range(min(depth, MAX_DEPTH)):
        sibling = proof[level]
        if (index >> level) & 1:
            node = hash2(sibling, node)
        elif sibling != 0:
            node = hash2(node, sibling)
    return node


def verify_inclusion(leaf: int, index: int, depth: int, root: int, proof: Sequence[int]) -> bool:
    return compute_root(leaf, index, depth, proof) == root


# ── Stateful tree ────────────────────────────────────────────────────────────

@dataclass
class LeanIMT:
    """
    Append-only tree with its leaf list. Inserts are serialized by an
    internal lock; proofs read a cached level snapshot.
    """
    size: int = 0
    depth: int = 0
    side_nodes: List[int] = field(default_factory=lambda: [0] * MAX_DEPTH)
    leaves: List[int] = field(default_factory=list)
    root: Optional[int] = None

    def __post_init__(self):
        self._lock = threading.Lock()
        self._levels: Optional[List[List[int]]] = None

    def insert(self, leaf: int) -> InsertResult:
        with self._lock:
            result = insert_leaf(leaf, self.size, self.depth, self.side_nodes)
            self.size += 1
            self.depth = result.depth
            self.side_nodes = result.side_nodes
            self.root = result.root
            self.leaves.append(leaf)
            self._levels = None
        logger.info(f"Inserted leaf {hex(leaf)[:18]}... at index {result.index}, "
                    f"depth={result.depth}, root={hex(result.root)[:18]}...")
        return result

    def _snapshot(self):
        with self._lock:
            if self._levels is None:
                self._levels = build_levels(self.leaves)
            return self._levels, self.depth, self.root, self.size

    def proof(self, leaf_index: int) -> List[int]:
        levels, depth, _, size = self._snapshot()
        if not 0 <= leaf_index < size:
            raise IndexError(f"leaf index {leaf_index} outside tree of size {size}")
        return proof_from_levels(levels, leaf_index, depth)

    def witness(self, leaf_index: int) -> MembershipWitness:
        levels, depth, root, size = self._snapshot()
        if not 0 <= leaf_index < size:
            raise IndexError(f"leaf index {leaf_index} outside tree of size {size}")
        return MembershipWitness(
            leaf_index=leaf_index,
            tree_depth=depth,
            expected_root=root,
            merkle_proof=proof_from_levels(levels, leaf_index, depth),
        )

    def verify(self, leaf: int, leaf_index: int, proof: Sequence[int]) -> bool:
        if self.root is None:
            return False
        return verify_inclusion(leaf, leaf_index, self.depth, self.root, proof)

    def index_of(self, leaf: int) -> int:
        return self.leaves.index(leaf)

    # ── persistence ──

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                "size": self.size,
                "depth": self.depth,
                "side_nodes": [format_field(v) for v in self.side_nodes],
                "leaves": [format_field(v) for v in self.leaves],
            }

    @classmethod
    def from_dict(cls, data: Dict) -> "LeanIMT":
        """Restore a persisted tree; the stored root must match its leaves."""
        leaves = [parse_field(v, "leaf") for v in data["leaves"]]
        side_nodes = [parse_field(v, "side_node") for v in data["side_nodes"]]
        size = int(data["size"])
        depth = int(data["depth"])
        if size != len(leaves):
            raise ValueError(f"size {size} does not match {len(leaves)} stored leaves")
        if len(side_nodes) != MAX_DEPTH:
            raise ValueError(f"expected {MAX_DEPTH} side nodes, got {len(side_nodes)}")

        root = None
        if size:
            levels = build_levels(leaves)
            root = levels[-1][0]
            if depth < MAX_DEPTH and side_nodes[depth] != root:
                raise InclusionProofMismatch(
                    f"persisted root {hex(side_nodes[depth])[:18]}... does not match leaves")
        tree = cls(size=size, depth=depth, side_nodes=side_nodes, leaves=leaves, root=root)
        logger.info(f"Loaded tree with {size} leaves, depth={depth}")
        return tree


# ── Main ──────────────────────────────────────────────────────────────────────

def main():
    import numpy as np

    print("=" * 72)
    print("Lean Incremental Merkle Tree")
    print("=" * 72)

    rng = np.random.default_rng(42)
    leaves = [int(x) for x in rng.integers(1, 2**62, size=7)]

    tree = LeanIMT()
    print(f"\n1. Insertion")
    for leaf in leaves:
        result = tree.insert(leaf)
        print(f"   index={result.index}  depth={result.depth}  root={hex(result.root)[:18]}...")

    print(f"\n2. Proofs")
    for i, leaf in enumerate(leaves):
        proof = tree.proof(i)
        used = [hex(s)[:10] for s in proof[:tree.depth]]
        print(f"   leaf {i}: siblings={used}  valid={tree.verify(leaf, i, proof)}")

    print(f"\n3. Lean property")
    levels = build_levels(leaves)
    print(f"   last leaf carried to level 1: {levels[1][-1] == leaves[-1]}")


if __name__ == "__main__":
    main()
