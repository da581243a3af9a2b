#!/usr/bin/env python3
"""
Run an IRV count on a CSV file of ranked ballots.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from data.ballot_loader import BallotLoader  # noqa: E402
from dtree import BallotCount, DirichletTreeError, IRVBallot, IRVTabulator  # noqa: E402
from dtree import make_generator  # noqa: E402

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Run IRV tabulation")
    parser.add_argument("ballots", help="Path to CSV file of ranked ballots")
    parser.add_argument(
        "--format", choices=["wide", "long"], default="wide", help="CSV layout (default: wide)"
    )
    parser.add_argument("--n-winners", type=int, default=1, help="Number of winners (default: 1)")
    parser.add_argument("--seed", default="12345", help="Tie-breaking seed (default: 12345)")
    parser.add_argument("--export", help="Export results to CSV file")

    args = parser.parse_args()

    if not Path(args.ballots).exists():
        logger.error(f"Ballots file not found: {args.ballots}")
        sys.exit(1)

    try:
        loader = BallotLoader(args.ballots, format=args.format)
        rankings = loader.load()
        candidates = loader.candidates
        index = {name: i for i, name in enumerate(candidates)}
        ballots = [
            BallotCount(IRVBallot(tuple(index[name] for name in ranking)), 1)
            for ranking in rankings
        ]

        logger.info(f"=== IRV Tabulation ({args.n_winners} winner(s)) ===")
        tabulator = IRVTabulator(
            ballots, len(candidates), args.n_winners, rng=make_generator(args.seed)
        )
        tabulator.run_tabulation()

        print("\n=== Round-by-Round Results ===")
        round_summary = tabulator.get_round_summary()
        for round_num in sorted(round_summary["round"].unique()):
            round_data = round_summary[round_summary["round"] == round_num]
            print(f"\nRound {round_num}:")
            for _, row in round_data.sort_values("votes", ascending=False).iterrows():
                status_symbol = "❌" if row["status"] == "eliminated" else "  "
                print(
                    f"  {status_symbol} {candidates[row['candidate_id']]:25s}: {row['votes']:8d} votes"
                )
            if round_data.iloc[0]["exhausted_votes"] > 0:
                print(f"     {'Exhausted':25s}: {round_data.iloc[0]['exhausted_votes']:8d} votes")

        print("\n=== Final Results ===")
        final_results = tabulator.get_final_results(candidates)
        for _, row in final_results.iterrows():
            marker = "🏆" if row["status"] == "elected" else "  "
            print(f"  {marker} {row['final_position']:2d}. {row['candidate_name']}")

        if args.export:
            export_path = Path(args.export)
            final_results.to_csv(export_path.with_suffix(".csv"), index=False)
            round_summary.to_csv(
                export_path.with_stem(export_path.stem + "_rounds").with_suffix(".csv"),
                index=False,
            )
            print(f"\n✓ Results exported to: {export_path.with_suffix('.csv')}")

        print("\n✓ IRV tabulation completed successfully")

    except (DirichletTreeError, ValueError) as e:
        logger.error(f"Error running IRV tabulation: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
