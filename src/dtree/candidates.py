"""
Candidate-name interface to the IRV Dirichlet-tree.

The core works with candidate indices only. This module resolves names to
indices on the way in and back to names on the way out, mirroring the
interface audit tooling expects: predictive samples, posterior win
probabilities and marginal ballot probabilities.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

try:
    from .errors import SocialChoiceError, ValidationError
    from .parameters import BallotCount, IRVBallot, IRVParameters
    from .simulator import BatchSimulator
    from .social_choice import check_n_winners, social_choice_irv
    from .tree import DirichletTree, Seed, make_generator
except ImportError:
    from dtree.errors import SocialChoiceError, ValidationError
    from dtree.parameters import BallotCount, IRVBallot, IRVParameters
    from dtree.simulator import BatchSimulator
    from dtree.social_choice import check_n_winners, social_choice_irv
    from dtree.tree import DirichletTree, Seed, make_generator

logger = logging.getLogger(__name__)


class CandidateDirichletTree:
    """
    A Dirichlet-tree over ballots that rank candidates by name.
    """

    def __init__(
        self,
        candidates: Sequence[str],
        min_depth: int = 0,
        max_depth: Optional[int] = None,
        a0: float = 1.0,
        vd: bool = False,
        seed: Seed = "12345",
    ):
        """
        Initialize the tree at its prior.

        Args:
            candidates: Candidate names, in index order
            min_depth: Minimum number of preferences on any ballot
            max_depth: Maximum number of preferences retained on a ballot
            a0: Prior concentration parameter
            vd: Whether to use the Dirichlet-equivalent prior scheme
            seed: Seed for the internal generator
        """
        names = [str(c) for c in candidates]
        if len(set(names)) != len(names):
            raise ValidationError("Candidate names must be unique.")
        self._candidates = names
        self._index: Dict[str, int] = {name: i for i, name in enumerate(names)}
        parameters = IRVParameters(len(names), min_depth, max_depth, a0, vd)
        self.tree = DirichletTree(parameters, seed)

    def _to_ballot(self, ranking: Sequence[str]) -> IRVBallot:
        indices = []
        for name in ranking:
            if name not in self._index:
                raise ValidationError(f"Unknown candidate encountered in ballot: {name!r}")
            indices.append(self._index[name])
        return IRVBallot(tuple(indices))

    def _to_names(self, ballot: IRVBallot) -> List[str]:
        return [self._candidates[c] for c in ballot]

    # Getters and setters

    @property
    def candidates(self) -> List[str]:
        return list(self._candidates)

    @property
    def n_candidates(self) -> int:
        return self.tree.parameters.n_candidates

    @property
    def n_observed(self) -> int:
        return self.tree.n_observed

    @property
    def min_depth(self) -> int:
        return self.tree.parameters.min_depth

    @min_depth.setter
    def min_depth(self, value: int):
        self.tree.parameters.min_depth = value
        self.tree.check_min_depth()

    @property
    def max_depth(self) -> int:
        return self.tree.parameters.max_depth

    @max_depth.setter
    def max_depth(self, value: int):
        self.tree.parameters.max_depth = value

    @property
    def a0(self) -> float:
        return self.tree.parameters.a0

    @a0.setter
    def a0(self, value: float):
        self.tree.parameters.a0 = value

    @property
    def vd(self) -> bool:
        return self.tree.parameters.vd

    @vd.setter
    def vd(self, value: bool):
        self.tree.parameters.vd = value

    def set_seed(self, seed: Seed):
        self.tree.set_seed(seed)

    # Other methods

    def reset(self):
        """Forget every observed ballot."""
        self.tree.reset()

    def update(self, ballots: Iterable[Sequence[str]]):
        """
        Observe ballots given as lists of candidate names.

        All ballots are validated before any of them is observed.
        """
        ballot_counts = [BallotCount(self._to_ballot(b), 1) for b in ballots]
        self.tree.update_many(ballot_counts)
        logger.info(f"Observed {len(ballot_counts)} ballots ({self.n_observed} total)")

    def sample_predictive(self, n_samples: int, seed: Seed) -> List[List[str]]:
        """
        Draw ballots from the posterior predictive distribution.

        Returns:
            ``n_samples`` ballots as lists of candidate names
        """
        self.tree.set_seed(seed)
        out = []
        for ballot, count in self.tree.sample(n_samples):
            names = self._to_names(ballot)
            out.extend(list(names) for _ in range(count))
        return out

    def sample_posterior(
        self,
        n_elections: int,
        n_ballots: int,
        n_winners: int = 1,
        n_batches: Optional[int] = None,
        seed: Seed = "12345",
        cancel_event: Optional[threading.Event] = None,
    ) -> pd.Series:
        """
        Estimate posterior win probabilities for every candidate.

        Args:
            n_elections: Number of complete elections to simulate
            n_ballots: Total number of ballots cast in the election
            n_winners: Number of winners per election
            n_batches: Number of batches to split the work into
            seed: Seed for the simulation
            cancel_event: Optional event that aborts the simulation

        Returns:
            Win probabilities indexed by candidate name
        """
        simulator = BatchSimulator(self.tree, cancel_event=cancel_event)
        probabilities = simulator.run(n_elections, n_ballots, n_winners, n_batches, seed)
        return pd.Series(probabilities, index=self._candidates, name="win_probability")

    def sample_marginal_probability(
        self, n_samples: int, ballot: Sequence[str], seed: Seed
    ) -> np.ndarray:
        """
        Draw realisations of the posterior probability of one ballot.

        Returns:
            Array of ``n_samples`` probabilities
        """
        b = self._to_ballot(ballot)
        self.tree.parameters.validate_ballot(b)
        self.tree.set_seed(seed)
        return np.array([self.tree.marginal_probability(b) for _ in range(n_samples)])


def social_choice(
    ballots: Iterable[Sequence[str]], n_winners: int = 1, seed: Seed = "12345"
) -> Dict[str, List[str]]:
    """
    Run an IRV count on ballots given as lists of candidate names.

    Candidates are indexed in order of first appearance; empty ballots are
    skipped.

    Args:
        ballots: Rankings of candidate names
        n_winners: Number of winners to declare
        seed: Seed for tie-breaking

    Returns:
        Dict with the ``elimination_order`` of the losers and the ``winners``
    """
    index: Dict[str, int] = {}
    names: List[str] = []
    ballot_counts = []
    for ranking in ballots:
        if len(ranking) == 0:
            continue
        indices = []
        for name in ranking:
            if name not in index:
                index[name] = len(names)
                names.append(name)
            indices.append(index[name])
        ballot_counts.append(BallotCount(IRVBallot(tuple(indices)), 1))

    if not ballot_counts:
        raise SocialChoiceError("No valid ballots for the IRV social choice function.")
    check_n_winners(n_winners, len(names))

    rng = make_generator(seed)
    order = [names[c] for c in social_choice_irv(ballot_counts, len(names), rng)]
    cutoff = len(names) - n_winners
    return {"elimination_order": order[:cutoff], "winners": order[cutoff:]}
