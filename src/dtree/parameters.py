import logging
import math
from dataclasses import dataclass
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

try:
    from .errors import ValidationError
except ImportError:
    from dtree.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IRVBallot:
    """An ordered ranking of distinct candidate indices, most preferred first."""

    preferences: Tuple[int, ...] = ()

    def __post_init__(self):
        for c in self.preferences:
            if isinstance(c, (bool, np.bool_)) or not isinstance(c, (int, np.integer)):
                raise ValidationError(f"Candidate indices must be integers, got {c!r}.")
        object.__setattr__(self, "preferences", tuple(int(c) for c in self.preferences))

    def __len__(self) -> int:
        return len(self.preferences)

    def __iter__(self) -> Iterator[int]:
        return iter(self.preferences)

    def __getitem__(self, position: int) -> int:
        return self.preferences[position]

    def truncate(self, depth: int) -> "IRVBallot":
        """Return the ballot limited to its first ``depth`` preferences."""
        if len(self.preferences) <= depth:
            return self
        return IRVBallot(self.preferences[:depth])


class BallotCount(NamedTuple):
    """A ballot together with the number of times it was cast."""

    ballot: IRVBallot
    count: int = 1


class IRVParameters:
    """
    Structure and prior parameters of an IRV Dirichlet-tree.

    Every node at depth ``d`` branches on the candidates not yet ranked on the
    path to it. Nodes with ``max(min_depth, 1) <= d < max_depth`` also carry a
    "stop" branch through which a ballot may end early; nodes at ``max_depth``
    (or with no candidates left) are leaves.

    With ``vd`` unset each branch receives an equal share ``a0 / n_branches``
    of the prior. With ``vd`` set, branch shares are proportional to the
    number of complete ballots reachable through the branch, so the tree is
    equivalent to a single Dirichlet distribution with parameter
    ``a0 / n_ballot_types`` on every complete ballot.
    """

    def __init__(
        self,
        n_candidates: int,
        min_depth: int = 0,
        max_depth: Optional[int] = None,
        a0: float = 1.0,
        vd: bool = False,
    ):
        """
        Initialize tree parameters.

        Args:
            n_candidates: Number of candidates in the election (at least 2)
            min_depth: Minimum number of preferences on any ballot
            max_depth: Maximum number of preferences retained on a ballot
                (defaults to n_candidates - 1)
            a0: Prior concentration parameter
            vd: Whether to use the Dirichlet-equivalent prior scheme
        """
        if isinstance(n_candidates, bool) or not isinstance(n_candidates, (int, np.integer)):
            raise ValidationError("`n_candidates` must be an integer.")
        if n_candidates < 2:
            raise ValidationError("`n_candidates` must be at least 2.")
        self._n_candidates = int(n_candidates)

        if max_depth is None:
            max_depth = self._n_candidates - 1
        self._check_depths(min_depth, max_depth)
        self._min_depth = int(min_depth)
        self._max_depth = int(max_depth)

        self._check_a0(a0)
        self._a0 = float(a0)
        self._vd = bool(vd)

        self._leaf_counts: List[int] = []
        self._priors: List[np.ndarray] = []
        self._rebuild()

    def __repr__(self) -> str:
        return (
            f"IRVParameters(n_candidates={self._n_candidates}, "
            f"min_depth={self._min_depth}, max_depth={self._max_depth}, "
            f"a0={self._a0}, vd={self._vd})"
        )

    # Validation

    def _check_depths(self, min_depth, max_depth):
        for name, value in (("min_depth", min_depth), ("max_depth", max_depth)):
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ValidationError(f"`{name}` must be an integer.")
            if value < 0 or value > self._n_candidates:
                raise ValidationError(
                    f"`{name}` must be between 0 and the number of candidates "
                    f"({self._n_candidates})."
                )
        if min_depth > max_depth:
            raise ValidationError("`min_depth` cannot be larger than `max_depth`.")

    @staticmethod
    def _check_a0(a0):
        try:
            value = float(a0)
        except (TypeError, ValueError):
            raise ValidationError("`a0` must be a number.") from None
        if not math.isfinite(value) or value <= 0:
            raise ValidationError("`a0` must be a positive, finite number.")

    def validate_ballot(self, ballot: IRVBallot):
        """
        Check that a ballot only ranks known candidates, each at most once.

        Raises:
            ValidationError: If the ballot is malformed
        """
        if len(ballot) > self._n_candidates:
            raise ValidationError(
                f"Ballot ranks {len(ballot)} candidates but only "
                f"{self._n_candidates} exist."
            )
        seen = set()
        for candidate in ballot:
            if candidate < 0 or candidate >= self._n_candidates:
                raise ValidationError(f"Unknown candidate index {candidate} in ballot.")
            if candidate in seen:
                raise ValidationError(f"Candidate {candidate} is ranked twice in ballot.")
            seen.add(candidate)

    # Getters and setters

    @property
    def n_candidates(self) -> int:
        return self._n_candidates

    @property
    def min_depth(self) -> int:
        return self._min_depth

    @min_depth.setter
    def min_depth(self, value: int):
        self._check_depths(value, self._max_depth)
        self._min_depth = int(value)
        self._rebuild()

    @property
    def max_depth(self) -> int:
        return self._max_depth

    @max_depth.setter
    def max_depth(self, value: int):
        self._check_depths(self._min_depth, value)
        self._max_depth = int(value)
        self._rebuild()

    @property
    def a0(self) -> float:
        return self._a0

    @a0.setter
    def a0(self, value: float):
        self._check_a0(value)
        self._a0 = float(value)
        self._rebuild()

    @property
    def vd(self) -> bool:
        return self._vd

    @vd.setter
    def vd(self, value: bool):
        self._vd = bool(value)
        self._rebuild()

    # Tree structure

    def default_path(self) -> List[int]:
        """The traversal state at the root: no candidates ranked yet."""
        return []

    @property
    def stop_depth(self) -> int:
        """Shallowest depth at which a ballot may end (the root never stops)."""
        return max(self._min_depth, 1)

    def is_leaf(self, depth: int) -> bool:
        return depth >= self._max_depth or depth >= self._n_candidates

    def has_stop(self, depth: int) -> bool:
        return not self.is_leaf(depth) and depth >= self.stop_depth

    def n_branches(self, depth: int) -> int:
        if self.is_leaf(depth):
            return 0
        return self._n_candidates - depth + int(self.has_stop(depth))

    def remaining_candidates(self, path: Sequence[int]) -> List[int]:
        used = set(path)
        return [c for c in range(self._n_candidates) if c not in used]

    def leaf_count(self, depth: int) -> int:
        """Number of complete ballots reachable from a node at ``depth``."""
        return self._leaf_counts[depth]

    def prior(self, depth: int) -> np.ndarray:
        """
        Prior pseudo-counts for the branches of a node at ``depth``.

        Candidate branches come first, in ascending candidate order, followed
        by the stop branch when the node has one.
        """
        return self._priors[depth]

    def _rebuild(self):
        """Recompute leaf counts and prior shares after a parameter change."""
        n = self._n_candidates
        leaf_counts = [1] * (n + 1)
        for depth in range(n, -1, -1):
            if self.is_leaf(depth):
                leaf_counts[depth] = 1
            else:
                below = (n - depth) * leaf_counts[depth + 1]
                leaf_counts[depth] = int(self.has_stop(depth)) + below
        self._leaf_counts = leaf_counts

        priors = []
        total = leaf_counts[0]
        for depth in range(n + 1):
            n_branches = self.n_branches(depth)
            if n_branches == 0:
                priors.append(np.zeros(0))
            elif self._vd:
                shares = np.full(n - depth, self._a0 * (leaf_counts[depth + 1] / total))
                if self.has_stop(depth):
                    shares = np.append(shares, self._a0 * (1 / total))
                priors.append(shares)
            else:
                priors.append(np.full(n_branches, self._a0 / n_branches))
        self._priors = priors
        logger.debug(f"Rebuilt tree priors: {self!r}, {total} ballot types")
