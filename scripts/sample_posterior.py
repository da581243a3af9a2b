#!/usr/bin/env python3
"""
Estimate posterior IRV win probabilities from a sample of audited ballots.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from data.ballot_loader import BallotLoader  # noqa: E402
from data.database import BallotDatabase  # noqa: E402
from dtree import CandidateDirichletTree, DirichletTreeError  # noqa: E402

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def load_ballots(args):
    """Load audited ballots and the candidate list from CSV or DuckDB."""
    if args.db:
        with BallotDatabase(args.db) as db:
            rankings, seen = db.load_rankings(args.table)
            candidates = db.load_candidates() or seen
    else:
        loader = BallotLoader(args.ballots, format=args.format)
        rankings = loader.load()
        candidates = loader.candidates

    if args.candidates:
        candidates = [c.strip() for c in args.candidates.split(",")]
    return rankings, candidates


def main():
    parser = argparse.ArgumentParser(description="Sample IRV posterior win probabilities")
    parser.add_argument("ballots", nargs="?", help="Path to CSV file of audited ballots")
    parser.add_argument("--db", help="Path to DuckDB database with a ballots table")
    parser.add_argument(
        "--table", default="ballots_long", help="Long-format ballots table (default: ballots_long)"
    )
    parser.add_argument(
        "--format", choices=["wide", "long"], default="wide", help="CSV layout (default: wide)"
    )
    parser.add_argument("--candidates", help="Comma-separated candidate list (default: inferred)")
    parser.add_argument(
        "--n-ballots", type=int, required=True, help="Total number of ballots cast in the election"
    )
    parser.add_argument(
        "--n-elections", type=int, default=1000, help="Elections to simulate (default: 1000)"
    )
    parser.add_argument("--n-winners", type=int, default=1, help="Number of winners (default: 1)")
    parser.add_argument("--n-batches", type=int, help="Simulation batches (default: CPU count)")
    parser.add_argument("--a0", type=float, default=1.0, help="Prior concentration (default: 1.0)")
    parser.add_argument("--min-depth", type=int, default=0, help="Minimum ballot length (default: 0)")
    parser.add_argument("--max-depth", type=int, help="Maximum ballot length (default: candidates - 1)")
    parser.add_argument("--vd", action="store_true", help="Use the Dirichlet-equivalent prior")
    parser.add_argument("--seed", default="12345", help="PRNG seed (default: 12345)")
    parser.add_argument("--export", help="Export win probabilities to CSV file")

    args = parser.parse_args()

    if not args.db and (not args.ballots or not Path(args.ballots).exists()):
        logger.error("A ballots CSV file or --db is required and must exist.")
        sys.exit(1)

    try:
        rankings, candidates = load_ballots(args)
        logger.info(f"=== Posterior sampling ({len(candidates)} candidates) ===")

        tree = CandidateDirichletTree(
            candidates,
            min_depth=args.min_depth,
            max_depth=args.max_depth,
            a0=args.a0,
            vd=args.vd,
            seed=args.seed,
        )
        tree.update(rankings)

        probabilities = tree.sample_posterior(
            n_elections=args.n_elections,
            n_ballots=args.n_ballots,
            n_winners=args.n_winners,
            n_batches=args.n_batches,
            seed=args.seed,
        )

        print(f"\n=== Posterior win probabilities ({tree.n_observed} of {args.n_ballots} ballots audited) ===")
        for name, probability in probabilities.sort_values(ascending=False).items():
            print(f"  {name:30s}: {probability:7.3f}")

        if args.export:
            export_path = Path(args.export).with_suffix(".csv")
            probabilities.rename_axis("candidate_name").reset_index().to_csv(
                export_path, index=False
            )
            print(f"\n✓ Win probabilities exported to: {export_path}")

    except (DirichletTreeError, FileNotFoundError, ValueError) as e:
        logger.error(f"Error sampling posterior: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
