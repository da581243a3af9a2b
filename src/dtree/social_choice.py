import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

try:
    from .errors import SocialChoiceError, ValidationError
    from .parameters import BallotCount, IRVBallot
except ImportError:
    from dtree.errors import SocialChoiceError, ValidationError
    from dtree.parameters import BallotCount, IRVBallot

logger = logging.getLogger(__name__)


@dataclass
class IRVRound:
    """Represents one round of IRV tabulation."""

    round_number: int
    continuing_candidates: List[int]
    vote_totals: Dict[int, int]
    eliminated: int
    tie_broken: bool
    exhausted_votes: int
    total_continuing_votes: int


def _aggregate(ballots: Iterable[BallotCount]) -> List[Tuple[Tuple[int, ...], int]]:
    """Merge identical ballots and drop empty ones."""
    merged: Dict[Tuple[int, ...], int] = {}
    for ballot, count in ballots:
        preferences = ballot.preferences if isinstance(ballot, IRVBallot) else tuple(ballot)
        if len(preferences) == 0 or count <= 0:
            continue
        merged[preferences] = merged.get(preferences, 0) + int(count)
    return list(merged.items())


def social_choice_irv(
    ballots: Iterable[BallotCount],
    n_candidates: int,
    rng: np.random.Generator,
    rounds: Optional[List[IRVRound]] = None,
) -> List[int]:
    """
    Compute the IRV elimination order.

    Each round tallies every ballot for its highest ranked continuing
    candidate and eliminates the candidate with the fewest votes. Ties for
    fewest votes are broken uniformly at random; ``rng`` is only drawn from
    when such a tie occurs. Ballots with no continuing candidates are
    exhausted and count for nobody.

    For ``n`` winners the last ``n`` entries of the elimination order are
    declared elected. This is sequential elimination, not full STV.

    Args:
        ballots: Ballots with multiplicities
        n_candidates: Number of candidates (indices 0..n_candidates-1)
        rng: Generator used for tie-breaking
        rounds: Optional list that receives an IRVRound per elimination

    Returns:
        Candidate indices from first eliminated to last remaining

    Raises:
        SocialChoiceError: If there are no valid (non-empty) ballots
    """
    valid = _aggregate(ballots)
    if not valid:
        raise SocialChoiceError("No valid ballots for the IRV social choice function.")

    total_votes = sum(count for _, count in valid)
    continuing = list(range(n_candidates))
    active = set(continuing)
    elimination_order: List[int] = []
    round_number = 1

    while len(continuing) > 1:
        tallies = dict.fromkeys(continuing, 0)
        for preferences, count in valid:
            for candidate in preferences:
                if candidate in active:
                    tallies[candidate] += count
                    break

        fewest = min(tallies.values())
        tied = [c for c in continuing if tallies[c] == fewest]
        if len(tied) == 1:
            loser = tied[0]
        else:
            loser = tied[int(rng.integers(len(tied)))]

        if rounds is not None:
            counted = sum(tallies.values())
            rounds.append(
                IRVRound(
                    round_number=round_number,
                    continuing_candidates=list(continuing),
                    vote_totals=tallies,
                    eliminated=loser,
                    tie_broken=len(tied) > 1,
                    exhausted_votes=total_votes - counted,
                    total_continuing_votes=counted,
                )
            )

        continuing.remove(loser)
        active.discard(loser)
        elimination_order.append(loser)
        round_number += 1

    elimination_order.extend(continuing)
    return elimination_order


def check_n_winners(n_winners: int, n_candidates: int):
    """Raise ValidationError unless 1 <= n_winners < n_candidates."""
    if n_winners < 1 or n_winners >= n_candidates:
        raise ValidationError(
            "`n_winners` must be at least 1 and less than the number of candidates."
        )


class IRVTabulator:
    """
    Round-by-round IRV tabulation engine.
    Elects the last ``n_winners`` candidates left standing.
    """

    def __init__(
        self,
        ballots: Sequence[BallotCount],
        n_candidates: int,
        n_winners: int = 1,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize IRV tabulator.

        Args:
            ballots: Ballots with multiplicities, using candidate indices
            n_candidates: Number of candidates
            n_winners: Number of winners to declare (default 1)
            rng: Generator for tie-breaking (defaults to a fresh generator)
        """
        check_n_winners(n_winners, n_candidates)
        self.ballots = list(ballots)
        self.n_candidates = n_candidates
        self.n_winners = n_winners
        self.rng = rng if rng is not None else np.random.default_rng()
        self.rounds: List[IRVRound] = []
        self.elimination_order: List[int] = []
        self.winners: List[int] = []

    def run_tabulation(self) -> List[IRVRound]:
        """
        Run the complete IRV count.

        Returns:
            List of IRVRound objects, one per elimination
        """
        logger.info(
            f"Starting IRV tabulation: {self.n_candidates} candidates, "
            f"{self.n_winners} winner(s)"
        )
        self.rounds = []
        self.elimination_order = social_choice_irv(
            self.ballots, self.n_candidates, self.rng, rounds=self.rounds
        )
        self.winners = self.elimination_order[self.n_candidates - self.n_winners :]

        for round_obj in self.rounds:
            tie_note = " (tie broken at random)" if round_obj.tie_broken else ""
            logger.info(
                f"Round {round_obj.round_number}: eliminated candidate "
                f"{round_obj.eliminated} with {round_obj.vote_totals[round_obj.eliminated]} "
                f"votes{tie_note}"
            )
        logger.info(f"Winners: {self.winners}")
        return self.rounds

    def get_round_summary(self) -> pd.DataFrame:
        """
        Get summary of all rounds as a DataFrame.

        Returns:
            DataFrame with one row per round and continuing candidate
        """
        if not self.rounds:
            return pd.DataFrame()

        summary_data = []
        for round_obj in self.rounds:
            for candidate_id, votes in round_obj.vote_totals.items():
                summary_data.append(
                    {
                        "round": round_obj.round_number,
                        "candidate_id": candidate_id,
                        "votes": votes,
                        "status": (
                            "eliminated"
                            if candidate_id == round_obj.eliminated
                            else "continuing"
                        ),
                        "exhausted_votes": round_obj.exhausted_votes,
                    }
                )
        return pd.DataFrame(summary_data)

    def get_final_results(self, candidate_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """
        Get final results, ordered from winner to first eliminated.

        Args:
            candidate_names: Optional names indexed by candidate id
        """
        if not self.elimination_order:
            return pd.DataFrame()

        results_data = []
        n = self.n_candidates
        for position, candidate_id in enumerate(self.elimination_order):
            results_data.append(
                {
                    "candidate_id": candidate_id,
                    "candidate_name": (
                        candidate_names[candidate_id]
                        if candidate_names is not None
                        else f"ID-{candidate_id}"
                    ),
                    "elimination_round": position + 1 if position < n - 1 else None,
                    "status": "elected" if candidate_id in self.winners else "not_elected",
                    "final_position": n - position,
                }
            )
        return pd.DataFrame(results_data).sort_values("final_position").reset_index(drop=True)
