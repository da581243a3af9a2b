"""
Unit tests for the batch win-probability simulator.
"""

import pickle
import threading

import numpy as np
import pytest

from dtree import (
    BatchSimulator,
    DirichletTree,
    IRVParameters,
    SimulationCancelledError,
    ValidationError,
)
from dtree.simulator import BatchTask, run_batch


@pytest.fixture
def observed_tree(parameters3, sample_ballot_counts):
    tree = DirichletTree(parameters3, seed="42")
    tree.update_many(sample_ballot_counts)
    return tree


@pytest.mark.unit
@pytest.mark.smoke
def test_win_probabilities_sum_to_one(observed_tree):
    simulator = BatchSimulator(observed_tree, max_workers=2)
    probs = simulator.run(n_elections=100, n_ballots=10, n_winners=1, n_batches=4, seed="7")

    assert isinstance(probs, np.ndarray)
    assert probs.shape == (3,)
    assert np.isclose(probs.sum(), 1.0)
    assert np.all((probs >= 0.0) & (probs <= 1.0))


@pytest.mark.unit
@pytest.mark.invariant
def test_multiple_winners_sum_to_n_winners():
    tree = DirichletTree(IRVParameters(4), seed="multi")
    tree.update(((0, 1, 2), 3))
    tree.update(((3, 2), 2))
    probs = BatchSimulator(tree, max_workers=2).run(50, 20, n_winners=2, n_batches=3)
    assert np.isclose(probs.sum(), 2.0)
    assert probs.max() <= 1.0


@pytest.mark.unit
@pytest.mark.invariant
@pytest.mark.parametrize("n_elections,n_batches", [(1, 4), (7, 3), (5, 8), (12, 4)])
def test_every_election_counted(observed_tree, n_elections, n_batches):
    # Probabilities are multiples of 1/n_elections and sum to one.
    probs = BatchSimulator(observed_tree, max_workers=3).run(
        n_elections, 8, n_batches=n_batches, seed="count"
    )
    assert np.isclose(probs.sum(), 1.0)
    assert np.allclose(probs * n_elections, np.round(probs * n_elections))


@pytest.mark.unit
@pytest.mark.invariant
def test_reproducible_regardless_of_worker_count(parameters3, sample_ballot_counts):
    def run(max_workers):
        tree = DirichletTree(IRVParameters(3, min_depth=0, max_depth=3), seed="42")
        tree.update_many(sample_ballot_counts)
        return BatchSimulator(tree, max_workers=max_workers).run(60, 12, n_batches=5, seed="7")

    assert np.array_equal(run(1), run(4))


@pytest.mark.unit
def test_successive_runs_advance_generator(observed_tree):
    simulator = BatchSimulator(observed_tree, max_workers=2)
    first = simulator.run(200, 30, n_batches=2, seed="7")
    second = simulator.run(200, 30, n_batches=2)
    again = simulator.run(200, 30, n_batches=2, seed="7")
    assert np.array_equal(first, again)
    assert np.isclose(second.sum(), 1.0)


@pytest.mark.unit
def test_rejects_population_smaller_than_observed(observed_tree):
    with pytest.raises(ValidationError):
        BatchSimulator(observed_tree).run(10, 2)


@pytest.mark.unit
@pytest.mark.parametrize("n_winners", [0, 3])
def test_rejects_bad_n_winners(observed_tree, n_winners):
    with pytest.raises(ValidationError):
        BatchSimulator(observed_tree).run(10, 10, n_winners=n_winners)


@pytest.mark.unit
@pytest.mark.parametrize("kwargs", [{"n_elections": 0}, {"n_batches": 0}])
def test_rejects_bad_counts(observed_tree, kwargs):
    args = {"n_elections": 10, "n_ballots": 10, "n_batches": 2}
    args.update(kwargs)
    with pytest.raises(ValidationError):
        BatchSimulator(observed_tree).run(**args)


@pytest.mark.unit
def test_cancelled_run_raises(observed_tree):
    cancel = threading.Event()
    cancel.set()
    simulator = BatchSimulator(observed_tree, max_workers=2, cancel_event=cancel)
    with pytest.raises(SimulationCancelledError):
        simulator.run(100, 10, n_batches=4)


@pytest.mark.unit
def test_default_batches_follow_pool_size(observed_tree):
    simulator = BatchSimulator(observed_tree, max_workers=3)
    assert simulator.max_workers == 3
    probs = simulator.run(9, 10, seed="pool")
    assert np.isclose(probs.sum(), 1.0)


@pytest.mark.unit
def test_clear_favourite_wins_most_simulations():
    tree = DirichletTree(IRVParameters(3), seed="fav")
    tree.update(((0, 1), 40))
    tree.update(((1, 0), 5))
    tree.update(((2,), 5))
    probs = BatchSimulator(tree, max_workers=2).run(100, 60, n_batches=4, seed="fav")
    assert probs[0] > 0.9


class CancelAfterFirstBatch(BatchSimulator):
    """Sets the cancel event from another thread as soon as one batch finishes."""

    def __init__(self, tree, **kwargs):
        super().__init__(tree, cancel_event=threading.Event(), **kwargs)
        self.stored = []

    def _store(self, results, index, orders):
        self.stored.append(index)
        if len(self.stored) == 1:
            setter = threading.Thread(target=self.cancel_event.set)
            setter.start()
            setter.join()
        super()._store(results, index, orders)


@pytest.mark.unit
@pytest.mark.parametrize("n_elections", [100, 10])
def test_cancel_mid_run_discards_finished_batches(observed_tree, n_elections):
    # 100 elections split evenly over worker batches; 10 leaves a remainder
    # batch that runs on the calling thread first.
    simulator = CancelAfterFirstBatch(observed_tree, max_workers=2)
    probs = None
    with pytest.raises(SimulationCancelledError):
        probs = simulator.run(n_elections, 10, n_batches=4, seed="7")

    assert probs is None
    assert len(simulator.stored) == 1
    if n_elections == 10:
        assert simulator.stored == [4]


@pytest.mark.unit
def test_simulator_usable_after_cancellation(observed_tree):
    simulator = CancelAfterFirstBatch(observed_tree, max_workers=2)
    with pytest.raises(SimulationCancelledError):
        simulator.run(40, 10, n_batches=4, seed="7")

    simulator.cancel_event.clear()
    simulator.stored = [0]
    probs = simulator.run(40, 10, n_batches=4, seed="7")
    expected = BatchSimulator(observed_tree, max_workers=2).run(40, 10, n_batches=4, seed="7")
    assert np.array_equal(probs, expected)


@pytest.mark.unit
@pytest.mark.invariant
def test_same_result_under_fork_and_spawn(observed_tree):
    forked = BatchSimulator(observed_tree, max_workers=2).run(30, 10, n_batches=3, seed="mp")
    spawned = BatchSimulator(observed_tree, max_workers=2, start_method="spawn").run(
        30, 10, n_batches=3, seed="mp"
    )
    assert np.array_equal(forked, spawned)


@pytest.mark.unit
def test_batch_task_carries_its_own_tree_snapshot(observed_tree):
    task = BatchTask(0, 5, 123, 10, pickle.dumps(observed_tree))
    # Later updates to the live tree do not reach the snapshot.
    observed_tree.update(((0, 2, 1), 50))

    orders = run_batch(task)
    assert len(orders) == 5
    assert all(sorted(order) == [0, 1, 2] for order in orders)
    assert run_batch(task) == orders


@pytest.mark.unit
def test_run_batch_honours_cancel_event(observed_tree):
    cancel = threading.Event()
    cancel.set()
    task = BatchTask(3, 5, 123, 10, pickle.dumps(observed_tree))
    with pytest.raises(SimulationCancelledError, match="batch 3"):
        run_batch(task, cancel)
