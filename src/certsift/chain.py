"""
Order an unordered set of certificates into leaf-to-root chains.

Records are identified by their index in the input, which is also their scan
order. The issuer relation is kept as a parent index per record, so cycle
breaking and leaf discovery are plain list walks.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from .models import CertificateRecord, Chain

logger = logging.getLogger(__name__)


def issued_by(child: CertificateRecord, parent: CertificateRecord) -> bool:
    """True if ``parent`` plausibly issued ``child``.

    The issuer name must equal the parent's subject. When both key identifiers
    are present they must match too, which separates CAs sharing a name.
    """
    if child.issuer != parent.subject:
        return False
    if child.aki and parent.ski:
        return child.aki == parent.ski
    return True


def is_self_signed(record: CertificateRecord) -> bool:
    if not record.is_self_issued:
        return False
    return record.aki is None or record.ski is None or record.aki == record.ski


def window_contains(parent: CertificateRecord, child: CertificateRecord) -> bool:
    return parent.not_before <= child.not_before and child.not_after <= parent.not_after


class ChainAssembler:
    """Builds chains from records given in scan order"""

    def __init__(self, records: Iterable[CertificateRecord]):
        self.records: List[CertificateRecord] = list(records)

    def candidate_parents(self, index: int) -> List[int]:
        child = self.records[index]
        # a self-signed root terminates its chain
        if is_self_signed(child):
            return []
        return [
            other for other, parent in enumerate(self.records)
            if other != index and issued_by(child, parent)
        ]

    def choose_parent(self, index: int, candidates: Sequence[int]) -> Optional[int]:
        """Pick one parent: prefer a validity window containing the child's, then scan order"""
        if not candidates:
            return None
        child = self.records[index]
        containing = [c for c in candidates if window_contains(self.records[c], child)]
        chosen = min(containing or candidates)
        if len(candidates) > 1:
            logger.debug("Record %d has %d candidate issuers %s, chose %d",
                         index, len(candidates), list(candidates), chosen)
        return chosen

    def parent_links(self) -> List[Optional[int]]:
        parents = [self.choose_parent(i, self.candidate_parents(i)) for i in range(len(self.records))]
        return self._break_cycles(parents)

    def _break_cycles(self, parents: List[Optional[int]]) -> List[Optional[int]]:
        """Drop the edge pointing back at the earliest-scanned member of each cycle.

        Every record has at most one parent, so each cycle is found by
        following parent links until a node on the current walk repeats.
        """
        unvisited, on_walk, done = 0, 1, 2
        state = [unvisited] * len(parents)

        for start in range(len(parents)):
            walk = []
            node = start
            while node is not None and state[node] == unvisited:
                state[node] = on_walk
                walk.append(node)
                node = parents[node]

            if node is not None and state[node] == on_walk:
                cycle = walk[walk.index(node):]
                earliest = min(cycle)
                for member in cycle:
                    if parents[member] == earliest:
                        logger.warning("Issuer cycle among records %s; dropping link %d -> %d",
                                       sorted(cycle), member, earliest)
                        parents[member] = None
                        break

            for visited in walk:
                state[visited] = done

        return parents

    def assemble(self) -> List[Chain]:
        parents = self.parent_links()
        has_child = [False] * len(self.records)
        for parent in parents:
            if parent is not None:
                has_child[parent] = True

        chains = []
        for leaf in range(len(self.records)):
            if has_child[leaf]:
                continue
            path = []
            node = leaf
            while node is not None:
                path.append(self.records[node])
                node = parents[node]
            chains.append(Chain(tuple(path)))

        logger.debug("Assembled %d chain(s) from %d record(s)", len(chains), len(self.records))
        return chains


def assemble_chains(records: Iterable[CertificateRecord]) -> List[Chain]:
    """Order ``records`` into chains, one per leaf, leaves in scan order.

    Chains are not disjoint: leaves under a shared intermediate each get a
    chain, and those chains repeat the shared upper records.
    """
    return ChainAssembler(records).assemble()
