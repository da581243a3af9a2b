"""
Unit tests for Dirichlet-tree nodes.

Exercise the recursive update, sampling and marginal probability logic
directly, without the tree driver.
"""

import numpy as np
import pytest

from dtree import IRVBallot, IRVNode, IRVParameters


def _rng(seed=0):
    return np.random.default_rng(seed)


@pytest.mark.unit
def test_new_node_counts_sized_to_remaining_candidates():
    params = IRVParameters(4)
    assert len(IRVNode(0, params).counts) == 5
    assert len(IRVNode(2, params).counts) == 3
    assert len(IRVNode(4, params).counts) == 0


@pytest.mark.unit
def test_update_increments_path_and_creates_children():
    params = IRVParameters(3, max_depth=3)
    root = IRVNode(0, params)

    root.update(IRVBallot((1, 0)), params.default_path(), 2)

    # Branch for candidate 1 at the root.
    assert root.counts.tolist() == [0, 2, 0, 0]
    assert set(root.children) == {1}
    child = root.children[1]
    assert child.depth == 1
    # Remaining candidates below 1 are [0, 2]; candidate 0 is branch 0.
    assert child.counts.tolist() == [2, 0, 0]
    grandchild = child.children[0]
    # The ballot ends at depth 2, which has a stop slot.
    assert grandchild.counts.tolist() == [0, 2]
    assert grandchild.children == {}


@pytest.mark.unit
def test_update_truncates_at_max_depth():
    params = IRVParameters(4, max_depth=2)
    root = IRVNode(0, params)
    root.update(IRVBallot((3, 2, 1, 0)), params.default_path(), 1)

    second = root.children[3].children[2]
    assert second.depth == 2
    assert second.counts.sum() == 0
    assert second.children == {}


@pytest.mark.unit
def test_short_ballot_below_min_depth_stops_early():
    params = IRVParameters(4, min_depth=3, max_depth=4)
    root = IRVNode(0, params)
    root.update(IRVBallot((2,)), params.default_path(), 1)

    child = root.children[2]
    # No stop branch at depth 1 when min_depth is 3; nothing else is touched.
    assert child.counts.sum() == 0
    assert child.children == {}


@pytest.mark.unit
@pytest.mark.invariant
def test_sample_returns_n_valid_ballots():
    params = IRVParameters(5, min_depth=1, max_depth=3)
    root = IRVNode(0, params)
    root.update(IRVBallot((0, 1, 2)), params.default_path(), 10)

    samples = root.sample(200, params.default_path(), _rng())

    assert sum(count for _, count in samples) == 200
    for ballot, count in samples:
        assert count >= 1
        assert 1 <= len(ballot) <= 3
        assert len(set(ballot)) == len(ballot)
        assert all(0 <= c < 5 for c in ballot)


@pytest.mark.unit
def test_sample_does_not_grow_tree():
    params = IRVParameters(4)
    root = IRVNode(0, params)
    before = root.counts.copy()

    root.sample(50, params.default_path(), _rng())

    assert root.children == {}
    assert np.array_equal(root.counts, before)


@pytest.mark.unit
def test_sample_zero():
    params = IRVParameters(3)
    assert IRVNode(0, params).sample(0, [], _rng()) == []


@pytest.mark.unit
def test_sample_at_leaf_returns_path():
    params = IRVParameters(3, max_depth=1)
    leaf = IRVNode(1, params)
    samples = leaf.sample(4, [2], _rng())
    assert samples == [(IRVBallot((2,)), 4)]


@pytest.mark.unit
@pytest.mark.invariant
def test_marginal_probability_in_unit_interval():
    params = IRVParameters(4, max_depth=4)
    root = IRVNode(0, params)
    root.update(IRVBallot((0, 1)), params.default_path(), 5)
    rng = _rng(3)

    for _ in range(50):
        p = root.marginal_probability(IRVBallot((0, 1)), params.default_path(), rng)
        assert 0.0 <= p <= 1.0


@pytest.mark.unit
def test_marginal_probability_of_impossible_ballot_is_zero():
    params = IRVParameters(4, min_depth=2)
    root = IRVNode(0, params)
    # Ballots of length 1 cannot end before depth 2.
    assert root.marginal_probability(IRVBallot((1,)), params.default_path(), _rng()) == 0.0
    # The root never stops, so empty ballots are impossible.
    assert root.marginal_probability(IRVBallot(()), params.default_path(), _rng()) == 0.0


@pytest.mark.unit
@pytest.mark.invariant
def test_marginal_probability_averages_to_posterior_mean():
    # Two candidates, max_depth 1: a single Dirichlet over {[0], [1]}.
    params = IRVParameters(2, max_depth=1, a0=2.0)
    root = IRVNode(0, params)
    root.update(IRVBallot((0,)), params.default_path(), 8)
    rng = _rng(11)

    draws = [
        root.marginal_probability(IRVBallot((0,)), params.default_path(), rng)
        for _ in range(4000)
    ]
    # Posterior Beta(8 + 1, 0 + 1) has mean 0.9.
    assert abs(np.mean(draws) - 0.9) < 0.02
