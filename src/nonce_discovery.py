"""
nonce_discovery.py — Nonce Discovery for Shielded Accounts

Every accepted transition publishes its nonce commitment and a discovery
entry pedersen_pair(1, nonce_commitment). Entries aggregate by point
addition into one running point whose opening (m, r) grows by
(1, nonce_commitment) per entry, starting from pedersen_pair(1, 1), and is
reduced modulo SUBGROUP_ORDER.

A client that only knows its user key finds its current nonce by
re-deriving nonce commitments 0, 1, 2, ... and asking the settlement
layer which are already used; the first unused one is the next nonce.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from babyjub_curve import SUBGROUP_ORDER, CurvePoint, point_add
from ledger_config import DEFAULT_PARAMS
from ledger_errors import LedgerError
from pedersen_commitment import derive_nonce_commitment, derive_spending_key, pedersen_pair

logger = logging.getLogger(__name__)


def nonce_discovery_entry(nonce_commitment: int) -> CurvePoint:
    return pedersen_pair(1, nonce_commitment)


@dataclass
class NonceDiscoveryAccumulator:
    """
    Running sum of discovery entries together with its opening. m and r
    are kept modulo the order of G and H, where the point sum wraps.
    """
    point: CurvePoint = field(default_factory=lambda: pedersen_pair(1, 1))
    m: int = 1
    r: int = 1
    entries: int = 0

    def absorb(self, nonce_commitment: int) -> CurvePoint:
        self.point = point_add(self.point, nonce_discovery_entry(nonce_commitment))
        self.m = (self.m + 1) % SUBGROUP_ORDER
        self.r = (self.r + nonce_commitment) % SUBGROUP_ORDER
        self.entries += 1
        return self.point

    def opens(self) -> bool:
        """True when (m, r) is a valid opening of the running point."""
        return pedersen_pair(self.m, self.r) == self.point


@dataclass
class DiscoveryResult:
    latest_nonce: Optional[int]          # None: account never entered
    nonce_commitments: List[int]         # used commitments, nonce order
    accumulator: NonceDiscoveryAccumulator

    @property
    def next_nonce(self) -> int:
        return 0 if self.latest_nonce is None else self.latest_nonce + 1


def discover_nonce(
    user_key: int,
    chain_id: int,
    token_address: int,
    is_used: Callable[[int], bool],
    limit: int = DEFAULT_PARAMS.nonce_scan_limit,
) -> DiscoveryResult:
    """
    Scan nonce commitments from 0 until one is unused. `is_used` answers
    whether the settlement layer has seen a given nonce commitment.
    """
    spending_key = derive_spending_key(user_key, chain_id, token_address)
    acc = NonceDiscoveryAccumulator()
    used: List[int] = []

    for nonce in range(limit):
        nc = derive_nonce_commitment(spending_key, nonce, token_address)
        if not is_used(nc):
            latest = nonce - 1 if nonce > 0 else None
            logger.info(f"Nonce discovery: latest={latest}, scanned={nonce + 1}")
            return DiscoveryResult(latest_nonce=latest, nonce_commitments=used, accumulator=acc)
        used.append(nc)
        acc.absorb(nc)

    raise LedgerError(f"all {limit} nonce commitments are used; raise nonce_scan_limit")
