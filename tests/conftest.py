"""
Shared pytest configuration and fixtures for the Dirichlet-tree audit tools.

This module provides common test fixtures and utilities used across
all test modules.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dtree import BallotCount, DirichletTree, IRVBallot, IRVParameters  # noqa: E402


@pytest.fixture
def parameters3():
    """Three candidates, full-depth tree, unit prior."""
    return IRVParameters(3, min_depth=0, max_depth=3, a0=1.0, vd=False)


@pytest.fixture
def tree3(parameters3):
    """A fresh three-candidate tree seeded with "42"."""
    return DirichletTree(parameters3, seed="42")


@pytest.fixture
def sample_candidates():
    """Provide sample candidate names for testing."""
    return ["Alice", "Bob", "Charlie"]


@pytest.fixture
def sample_ballot_counts():
    """Ballots [A,B], [B,A], [C] as index ballots."""
    return [
        BallotCount(IRVBallot((0, 1)), 1),
        BallotCount(IRVBallot((1, 0)), 1),
        BallotCount(IRVBallot((2,)), 1),
    ]


@pytest.fixture
def temp_db_file():
    """Provide a temporary database file path for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    os.unlink(db_path)  # Let DuckDB create the file

    try:
        yield db_path
    finally:
        if os.path.exists(db_path):
            os.unlink(db_path)


def total_count(ballot_counts):
    """Number of ballots in a list of BallotCounts, with multiplicity."""
    return sum(count for _, count in ballot_counts)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (medium speed, database required)",
    )
    config.addinivalue_line(
        "markers",
        "golden: marks tests as golden dataset validation (slow, full verification)",
    )
    config.addinivalue_line(
        "markers", "invariant: marks tests as mathematical invariant validation"
    )
    config.addinivalue_line(
        "markers", "smoke: marks tests as smoke tests (basic functionality check)"
    )
