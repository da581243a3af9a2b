"""
Interior nodes of the IRV Dirichlet-tree.

A node stands for one ranking prefix (the path from the root). It keeps the
observed pseudo-counts for every way the prefix can continue: one slot per
candidate not yet ranked, followed by a slot for the ballot ending here.
The prior shares are not stored on the node; they are read from the shared
``IRVParameters`` so that changes to ``a0`` or ``vd`` apply to the whole tree.
"""

import logging
from typing import Dict, List

import numpy as np

try:
    from .parameters import BallotCount, IRVBallot, IRVParameters
except ImportError:
    from dtree.parameters import BallotCount, IRVBallot, IRVParameters

logger = logging.getLogger(__name__)


class IRVNode:
    """A node of the Dirichlet-tree, owning its children exclusively."""

    def __init__(self, depth: int, parameters: IRVParameters):
        """
        Initialize an empty node.

        Args:
            depth: Number of preferences on the path to this node
            parameters: Parameters shared by the whole tree
        """
        self.depth = depth
        self.parameters = parameters
        n_remaining = parameters.n_candidates - depth
        # Candidate slots, then the stop slot.
        self.counts = np.zeros(n_remaining + 1 if n_remaining > 0 else 0)
        self.children: Dict[int, "IRVNode"] = {}

    def _branch_alphas(self) -> np.ndarray:
        """Posterior Dirichlet parameters over the currently active branches."""
        prior = self.parameters.prior(self.depth)
        return self.counts[: len(prior)] + prior

    def _child(self, candidate: int) -> "IRVNode":
        # Unvisited subtrees are sampled from a detached prior node, so reads
        # never grow the tree.
        child = self.children.get(candidate)
        if child is None:
            child = IRVNode(self.depth + 1, self.parameters)
        return child

    def update(self, ballot: IRVBallot, path: List[int], count: int):
        """
        Observe ``count`` copies of a ballot in this subtree.

        Args:
            ballot: The observed ballot
            path: Candidates ranked on the way to this node (extended in place)
            count: Multiplicity of the observation
        """
        if self.parameters.is_leaf(self.depth):
            return

        if len(ballot) <= self.depth:
            if self.parameters.has_stop(self.depth):
                self.counts[-1] += count
            return

        candidate = ballot[self.depth]
        branch = self.parameters.remaining_candidates(path).index(candidate)
        self.counts[branch] += count

        child = self.children.get(candidate)
        if child is None:
            child = IRVNode(self.depth + 1, self.parameters)
            self.children[candidate] = child

        path.append(candidate)
        child.update(ballot, path, count)

    def sample(self, n: int, path: List[int], rng: np.random.Generator) -> List[BallotCount]:
        """
        Sample ``n`` ballots from a single realisation of this subtree.

        The split of the ``n`` draws across branches follows the
        Dirichlet-multinomial law of a Polya urn started from the posterior
        pseudo-counts, so the draws are exchangeable rather than independent.

        Args:
            n: Number of ballots to draw
            path: Candidates ranked on the way to this node
            rng: Random number generator

        Returns:
            Sampled ballots with their multiplicities
        """
        if n <= 0:
            return []

        if self.parameters.is_leaf(self.depth):
            return [BallotCount(IRVBallot(tuple(path)), n)]

        probabilities = rng.dirichlet(self._branch_alphas())
        allocation = rng.multinomial(n, probabilities)

        remaining = self.parameters.remaining_candidates(path)
        out: List[BallotCount] = []
        for branch, k in enumerate(allocation):
            if k == 0:
                continue
            if branch == len(remaining):
                out.append(BallotCount(IRVBallot(tuple(path)), int(k)))
                continue
            candidate = remaining[branch]
            out.extend(self._child(candidate).sample(int(k), path + [candidate], rng))
        return out

    def marginal_probability(
        self, ballot: IRVBallot, path: List[int], rng: np.random.Generator
    ) -> float:
        """
        Draw one realisation of the probability of observing ``ballot``.

        Each node on the ballot's path draws its branch probabilities from its
        Dirichlet posterior, and the transition probabilities are multiplied.
        """
        if self.parameters.is_leaf(self.depth):
            return 1.0

        probabilities = rng.dirichlet(self._branch_alphas())

        if len(ballot) <= self.depth:
            if self.parameters.has_stop(self.depth):
                return float(probabilities[-1])
            return 0.0

        candidate = ballot[self.depth]
        branch = self.parameters.remaining_candidates(path).index(candidate)
        child = self._child(candidate)
        return float(probabilities[branch]) * child.marginal_probability(
            ballot, path + [candidate], rng
        )
