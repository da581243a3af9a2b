"""
Ballot sources for the Dirichlet-tree audit tools.

- BallotLoader: Ranked ballots from wide- or long-format CSV files
- BallotDatabase: Ranked ballots from a DuckDB ballots_long table
"""

from .ballot_loader import BallotLoader, rankings_from_long, rankings_from_wide
from .database import BallotDatabase

__all__ = [
    "BallotLoader",
    "BallotDatabase",
    "rankings_from_long",
    "rankings_from_wide",
]
