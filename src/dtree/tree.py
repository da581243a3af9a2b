import logging
import warnings
from collections import Counter
from typing import Dict, Iterable, List, Optional, Union

import numpy as np

try:
    from .errors import ConsistencyWarning, ValidationError
    from .node import IRVNode
    from .parameters import BallotCount, IRVBallot, IRVParameters
except ImportError:
    from dtree.errors import ConsistencyWarning, ValidationError
    from dtree.node import IRVNode
    from dtree.parameters import BallotCount, IRVBallot, IRVParameters

logger = logging.getLogger(__name__)

Seed = Union[str, int]

# Raw draws discarded after seeding the tree generator.
WARMUP_DRAWS = 1000

# MT19937 state size, in 32-bit words.
STATE_SIZE = 624


def seed_sequence(seed: Seed) -> np.random.SeedSequence:
    """Build a SeedSequence from a string of any length or an integer."""
    if isinstance(seed, str):
        entropy = list(seed.encode("utf-8")) or [0]
        return np.random.SeedSequence(entropy)
    return np.random.SeedSequence(int(seed))


def make_generator(seed: Seed, warmup: int = WARMUP_DRAWS) -> np.random.Generator:
    """
    Create a seeded Mersenne Twister generator and warm it up.

    Args:
        seed: String or integer seed
        warmup: Number of raw 32-bit draws to discard

    Returns:
        A numpy Generator backed by MT19937
    """
    bit_generator = np.random.MT19937(seed_sequence(seed))
    if warmup > 0:
        bit_generator.random_raw(warmup)
    return np.random.Generator(bit_generator)


class DirichletTree:
    """
    Dirichlet-tree distribution over IRV ballots.

    The tree holds the posterior given every observed ballot, and can draw
    ballots from the posterior predictive, complete partially observed
    elections, and sample marginal probabilities for individual ballots.
    """

    def __init__(self, parameters: IRVParameters, seed: Seed = "12345"):
        """
        Initialize a tree at its prior.

        Args:
            parameters: Structure and prior parameters
            seed: Seed for the internal generator
        """
        self.parameters = parameters
        self.root = IRVNode(0, parameters)
        self.observed: List[BallotCount] = []
        self.rng = make_generator(seed)

    def set_seed(self, seed: Seed):
        """Re-seed the internal generator and discard its first draws."""
        self.rng = make_generator(seed)

    @property
    def n_observed(self) -> int:
        """Number of observed ballots, counted with multiplicity."""
        return sum(bc.count for bc in self.observed)

    def reset(self):
        """Return the distribution to its prior, keeping the parameters."""
        self.root = IRVNode(0, self.parameters)
        self.observed = []
        logger.debug("Tree reset to prior")

    def update(self, ballot_count: BallotCount):
        """
        Update the posterior with an observed ballot.

        Args:
            ballot_count: The ballot and the number of times it was observed

        Raises:
            ValidationError: If the ballot or count is invalid. The tree is
                left unchanged.
        """
        ballot, count = self._coerce(ballot_count)
        self.parameters.validate_ballot(ballot)

        if 0 < len(ballot) < self.parameters.min_depth:
            warnings.warn(
                "Updating a Dirichlet-tree with a ballot specifying fewer than "
                "`min_depth` preferences. The posterior can no longer reduce to "
                "a Dirichlet distribution. Consider setting `min_depth` to a "
                "value no larger than the length of the shortest ballot.",
                ConsistencyWarning,
                stacklevel=2,
            )

        self.observed.append(BallotCount(ballot, count))
        self.root.update(ballot, self.parameters.default_path(), count)
        logger.debug(f"Observed {count} x {ballot.preferences}")

    def update_many(self, ballot_counts: Iterable[BallotCount]):
        """Validate every ballot, then observe them all in order."""
        coerced = [self._coerce(bc) for bc in ballot_counts]
        for ballot, _ in coerced:
            self.parameters.validate_ballot(ballot)
        for ballot, count in coerced:
            self.update(BallotCount(ballot, count))

    @staticmethod
    def _coerce(ballot_count) -> BallotCount:
        ballot, count = ballot_count
        if not isinstance(ballot, IRVBallot):
            ballot = IRVBallot(tuple(ballot))
        if isinstance(count, bool) or not isinstance(count, (int, np.integer)) or count < 1:
            raise ValidationError("Ballot counts must be positive integers.")
        return BallotCount(ballot, int(count))

    def check_min_depth(self) -> bool:
        """
        Warn if any observed ballot is shorter than the current ``min_depth``.

        Returns:
            True if all observed ballots are consistent with ``min_depth``
        """
        min_depth = self.parameters.min_depth
        if any(0 < len(bc.ballot) < min_depth for bc in self.observed):
            warnings.warn(
                "Ballots with fewer than `min_depth` preferences have been "
                "observed. A Dirichlet posterior can no longer reduce to a tree "
                "of height 1. Consider setting `min_depth` to a value no larger "
                "than the length of the shortest ballot.",
                ConsistencyWarning,
                stacklevel=2,
            )
            return False
        return True

    @property
    def is_reducible(self) -> bool:
        """Whether every observed ballot ends where the tree allows it to."""
        stop_depth = self.parameters.stop_depth
        return all(len(bc.ballot) == 0 or len(bc.ballot) >= stop_depth for bc in self.observed)

    def sample(self, n: int, rng: Optional[np.random.Generator] = None) -> List[BallotCount]:
        """
        Sample ballots from one realisation of the posterior.

        Args:
            n: Number of ballots to sample
            rng: Optional warmed-up generator (defaults to the tree's own)

        Returns:
            Sampled ballots with their multiplicities (summing to ``n``)
        """
        if n < 0:
            raise ValidationError("Cannot sample a negative number of ballots.")
        rng = self.rng if rng is None else rng
        if self.parameters.vd and self.is_reducible:
            return self._sample_reducible(n, rng)
        return self.root.sample(n, self.parameters.default_path(), rng)

    def _sample_reducible(self, n: int, rng: np.random.Generator) -> List[BallotCount]:
        """
        Sample from the flat Dirichlet-multinomial the tree reduces to.

        The posterior Dirichlet over complete ballots is split into a part on
        the observed ballots and a fresh prior part of mass ``a0``. Draws
        landing on the prior part are seated with a Polya urn whose new
        tables are complete ballots drawn uniformly from the prior.
        """
        max_depth = self.parameters.max_depth
        seen: Dict[IRVBallot, int] = {}
        for ballot, count in self.observed:
            # Empty ballots carry no information unless the tree is a single leaf.
            if len(ballot) == 0 and max_depth > 0:
                continue
            leaf = ballot.truncate(max_depth)
            seen[leaf] = seen.get(leaf, 0) + count

        a0 = self.parameters.a0
        weights = np.array(list(seen.values()) + [a0], dtype=float)
        allocation = rng.multinomial(n, rng.dirichlet(weights))

        totals: Counter = Counter()
        for leaf, k in zip(seen, allocation[:-1]):
            if k > 0:
                totals[leaf] += int(k)

        tables: List[IRVBallot] = []
        seating: List[int] = []
        for j in range(int(allocation[-1])):
            if rng.random() * (a0 + j) < a0:
                tables.append(self._sample_prior_ballot(rng))
                seating.append(len(tables) - 1)
            else:
                seating.append(seating[int(rng.integers(j))])
        for table in seating:
            totals[tables[table]] += 1

        return [BallotCount(ballot, count) for ballot, count in totals.items()]

    def _sample_prior_ballot(self, rng: np.random.Generator) -> IRVBallot:
        """Draw a complete ballot uniformly over every ballot type in the tree."""
        params = self.parameters
        path = params.default_path()
        depth = 0
        while not params.is_leaf(depth):
            if params.has_stop(depth) and rng.random() < 1 / params.leaf_count(depth):
                break
            remaining = params.remaining_candidates(path)
            path.append(remaining[int(rng.integers(len(remaining)))])
            depth += 1
        return IRVBallot(tuple(path))

    def marginal_probability(
        self, ballot: Union[IRVBallot, Iterable[int]], rng: Optional[np.random.Generator] = None
    ) -> float:
        """
        Draw one realisation of the posterior probability of a ballot.

        Average repeated calls to approximate the posterior mean.
        """
        if not isinstance(ballot, IRVBallot):
            ballot = IRVBallot(tuple(ballot))
        self.parameters.validate_ballot(ballot)
        rng = self.rng if rng is None else rng
        return self.root.marginal_probability(ballot, self.parameters.default_path(), rng)

    def posterior_sets(
        self, n_sets: int, N: int, rng: Optional[np.random.Generator] = None
    ) -> List[List[BallotCount]]:
        """
        Sample complete ballot sets of size ``N`` from the posterior.

        Each set contains every observed ballot plus ``N - n_observed``
        ballots sampled independently for that set. For example, having
        observed {b1, b2, b2}, ``posterior_sets(2, 4)`` may return
        [{b1, b2, b2, b3}, {b1, b2, b2, b1}].

        Args:
            n_sets: Number of complete sets to sample
            N: Number of ballots in each complete set
            rng: Optional warmed-up generator (defaults to the tree's own)

        Raises:
            ValidationError: If ``N`` is smaller than the observed count
        """
        observed = list(self.observed)
        n_observed = sum(bc.count for bc in observed)
        if N < n_observed:
            raise ValidationError(
                f"Complete sets of {N} ballots cannot contain the "
                f"{n_observed} ballots already observed."
            )
        rng = self.rng if rng is None else rng
        return [observed + self.sample(N - n_observed, rng) for _ in range(n_sets)]
