import logging
import re
from pathlib import Path
from typing import List, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

RANK_COLUMN = re.compile(r"^rank[ _]?(\d+)$", re.IGNORECASE)


def _clean_ranking(names: List[str], ballot_id) -> List[str]:
    """Drop blanks and repeated candidates, keeping each candidate's first rank."""
    ranking = []
    seen = set()
    for name in names:
        if name is None or (isinstance(name, float) and pd.isna(name)):
            continue
        name = str(name).strip()
        if not name:
            continue
        if name in seen:
            logger.warning(f"Ballot {ballot_id}: repeated ranking of {name!r} ignored")
            continue
        seen.add(name)
        ranking.append(name)
    return ranking


def _first_appearance(rankings: List[List[str]]) -> List[str]:
    candidates: List[str] = []
    seen = set()
    for ranking in rankings:
        for name in ranking:
            if name not in seen:
                seen.add(name)
                candidates.append(name)
    return candidates


def rankings_from_long(df: pd.DataFrame) -> Tuple[List[List[str]], List[str]]:
    """
    Convert long-format ballot rows to rankings.

    Args:
        df: DataFrame with BallotID, candidate_name and rank_position columns

    Returns:
        Tuple of (rankings, candidates in order of first appearance)
    """
    missing = {"BallotID", "candidate_name", "rank_position"} - set(df.columns)
    if missing:
        raise ValueError(f"Long-format ballots are missing columns: {sorted(missing)}")

    rankings = []
    for ballot_id, group in df.groupby("BallotID", sort=False):
        names = group.sort_values("rank_position")["candidate_name"].tolist()
        rankings.append(_clean_ranking(names, ballot_id))
    return rankings, _first_appearance(rankings)


def rankings_from_wide(df: pd.DataFrame) -> Tuple[List[List[str]], List[str]]:
    """
    Convert wide-format ballot rows to rankings.

    Each row is a ballot; ``rank1``, ``rank2``, ... columns hold candidate
    names (blank where unranked). An optional ``count`` column repeats the
    row.

    Returns:
        Tuple of (rankings, candidates in order of first appearance)
    """
    rank_columns = []
    for col in df.columns:
        match = RANK_COLUMN.match(str(col).strip())
        if match:
            rank_columns.append((int(match.group(1)), col))
    if not rank_columns:
        raise ValueError("Wide-format ballots need rank1, rank2, ... columns")
    columns = [col for _, col in sorted(rank_columns)]

    counts = df["count"] if "count" in df.columns else pd.Series(1, index=df.index)

    rankings = []
    for (row_id, row), count in zip(df[columns].iterrows(), counts):
        ranking = _clean_ranking(row.tolist(), row_id)
        rankings.extend(list(ranking) for _ in range(int(count)))
    return rankings, _first_appearance(rankings)


class BallotLoader:
    """
    Loads ranked ballots from CSV files.
    """

    def __init__(self, csv_path: str, format: str = "wide"):
        """
        Initialize loader.

        Args:
            csv_path: Path to ballots CSV file
            format: "wide" (one row per ballot) or "long" (one row per rank)
        """
        if format not in ("wide", "long"):
            raise ValueError(f"Unknown ballot format: {format}")
        self.csv_path = Path(csv_path)
        self.format = format
        self.rankings: List[List[str]] = []
        self.candidates: List[str] = []

    def load(self) -> List[List[str]]:
        """
        Read the CSV file.

        Returns:
            Rankings as lists of candidate names
        """
        logger.info(f"Loading {self.format}-format ballots from: {self.csv_path}")
        df = pd.read_csv(self.csv_path, dtype=str, keep_default_na=False)
        if self.format == "long":
            if "rank_position" in df.columns:
                df["rank_position"] = df["rank_position"].astype(int)
            self.rankings, self.candidates = rankings_from_long(df)
        else:
            if "count" in df.columns:
                df["count"] = df["count"].astype(int)
            self.rankings, self.candidates = rankings_from_wide(df)

        logger.info(
            f"Loaded {len(self.rankings)} ballots ranking {len(self.candidates)} candidates"
        )
        return self.rankings
