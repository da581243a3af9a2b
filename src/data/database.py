import logging
import random
import time
from pathlib import Path
from typing import List, Optional, Tuple

import duckdb
import pandas as pd

try:
    from .ballot_loader import rankings_from_long
except ImportError:
    from data.ballot_loader import rankings_from_long

logger = logging.getLogger(__name__)


def connect_with_retry(
    db_path: str, read_only: bool = True, max_retries: int = 3
) -> duckdb.DuckDBPyConnection:
    """
    Open a DuckDB connection, retrying while another process holds the lock.

    Args:
        db_path: Path to DuckDB file, or ":memory:"
        read_only: Whether to open in read-only mode (avoids locks)
        max_retries: Maximum number of connection attempts

    Returns:
        DuckDB connection
    """
    for attempt in range(max_retries):
        try:
            if read_only and Path(db_path).exists():
                conn = duckdb.connect(db_path, read_only=True)
                logger.debug(f"Opened read-only connection to {db_path}")
            else:
                conn = duckdb.connect(db_path)
                logger.debug(f"Opened read-write connection to {db_path}")
            return conn

        except duckdb.IOException as e:
            if "Conflicting lock" in str(e) and attempt < max_retries - 1:
                # Exponential backoff with jitter
                wait_time = (2**attempt) + random.uniform(0, 1)  # nosec B311
                logger.warning(
                    f"Database locked, retrying in {wait_time:.2f}s (attempt {attempt + 1}/{max_retries})"
                )
                time.sleep(wait_time)
                continue
            logger.error(f"Failed to connect to database after {attempt + 1} attempts: {e}")
            raise

    raise duckdb.IOException(f"Could not connect to {db_path} after {max_retries} attempts")


class BallotDatabase:
    """
    Reads audited ballots from a DuckDB database.

    Ballots are expected in long format: one row per (ballot, rank) pair in a
    table with BallotID, candidate_name and rank_position columns.
    """

    def __init__(self, db_path: Optional[str] = None, read_only: bool = True):
        """
        Initialize database connection manager.

        Args:
            db_path: Path to DuckDB file. If None, uses in-memory database.
            read_only: Whether to open existing files read-only
        """
        self.db_path = db_path or ":memory:"
        self.read_only = read_only
        self._conn = None  # Will be created on-demand

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create a database connection on-demand."""
        if self._conn is None:
            self._conn = connect_with_retry(self.db_path, self.read_only)
        return self._conn

    def query(self, sql: str, params: Optional[list] = None) -> pd.DataFrame:
        """Execute a SQL query and return results as DataFrame."""
        if params:
            return self.conn.execute(sql, params).fetchdf()
        return self.conn.execute(sql).fetchdf()

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the database."""
        sql = "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?"
        result = self.conn.execute(sql, [table_name]).fetchone()
        return result[0] > 0

    def load_rankings(self, table: str = "ballots_long") -> Tuple[List[List[str]], List[str]]:
        """
        Load every ballot in a long-format table as a ranking of names.

        Args:
            table: Name of the long-format ballots table

        Returns:
            Tuple of (rankings, candidates in order of first appearance)
        """
        if not self.table_exists(table):
            raise FileNotFoundError(f"Table '{table}' not found in {self.db_path}")

        df = self.query(
            f"""
            SELECT BallotID, candidate_name, rank_position
            FROM "{table}"
            ORDER BY BallotID, rank_position
            """
        )
        rankings, candidates = rankings_from_long(df)
        logger.info(f"Loaded {len(rankings)} ballots from table '{table}'")
        return rankings, candidates

    def load_candidates(self, table: str = "candidates") -> Optional[List[str]]:
        """Load the candidate list, if the database has a candidates table."""
        if not self.table_exists(table):
            return None
        df = self.query(f'SELECT candidate_name FROM "{table}" ORDER BY candidate_id')
        return df["candidate_name"].astype(str).tolist()

    def close(self):
        """Close database connection."""
        if self._conn:
            try:
                self._conn.close()
                logger.debug(f"Closed database connection to {self.db_path}")
            except Exception as e:
                logger.warning(f"Error closing database connection: {e}")
            finally:
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
