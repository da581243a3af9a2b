import logging
import multiprocessing
import os
import pickle
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

try:
    from .errors import SimulationCancelledError, ValidationError
    from .social_choice import check_n_winners, social_choice_irv
    from .tree import STATE_SIZE, DirichletTree, Seed, make_generator
except ImportError:
    from dtree.errors import SimulationCancelledError, ValidationError
    from dtree.social_choice import check_n_winners, social_choice_irv
    from dtree.tree import STATE_SIZE, DirichletTree, Seed, make_generator

logger = logging.getLogger(__name__)

# Raw draws discarded by each freshly seeded generator.
BATCH_WARMUP_DRAWS = STATE_SIZE * 100

# Seconds between checks of the caller's cancel event while batches run.
CANCEL_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class BatchTask:
    """One unit of simulation work; owns everything a worker needs."""

    index: int
    size: int
    seed: int
    n_ballots: int
    tree_state: bytes


def run_batch(task: BatchTask, cancel_event=None) -> List[List[int]]:
    """
    Simulate one batch of elections from a pickled tree snapshot.

    Args:
        task: The batch to run
        cancel_event: Optional event (threading or manager proxy) checked
            before any work is done

    Returns:
        One elimination order per simulated election
    """
    if cancel_event is not None and cancel_event.is_set():
        raise SimulationCancelledError(f"Simulation cancelled before batch {task.index}")
    if task.size == 0:
        return []

    tree: DirichletTree = pickle.loads(task.tree_state)
    rng = make_generator(task.seed, warmup=BATCH_WARMUP_DRAWS)
    n_candidates = tree.parameters.n_candidates
    elections = tree.posterior_sets(task.size, task.n_ballots, rng)
    return [social_choice_irv(election, n_candidates, rng) for election in elections]


def default_start_method() -> str:
    methods = multiprocessing.get_all_start_methods()
    if os.name == "posix" and "fork" in methods:
        return "fork"
    if "spawn" in methods:
        return "spawn"
    return methods[0]


class BatchSimulator:
    """
    Estimates IRV win probabilities by simulating complete elections.

    Each simulated election is a posterior set drawn from the tree, tallied
    with the IRV social choice function. Elections are split into batches
    that run in a pool of worker processes, each working from its own
    snapshot of the tree. Every batch has its own generator seeded from a
    sequence drawn before dispatch, so results do not depend on scheduling
    or on the number of workers.
    """

    def __init__(
        self,
        tree: DirichletTree,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        start_method: Optional[str] = None,
    ):
        """
        Initialize simulator.

        Args:
            tree: The posterior Dirichlet-tree (snapshotted at each run)
            max_workers: Worker pool size (defaults to the CPU count)
            cancel_event: Optional event that aborts the run when set
            start_method: multiprocessing start method (defaults to fork
                where available, else spawn)
        """
        self.tree = tree
        self.max_workers = max_workers or os.cpu_count() or 1
        self.cancel_event = cancel_event
        self.start_method = start_method or default_start_method()

    def _cancel_requested(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _store(self, results: Dict[int, List[List[int]]], index: int, orders: List[List[int]]):
        """Keep a finished batch, unless the run has been cancelled meanwhile."""
        results[index] = orders
        if self._cancel_requested():
            raise SimulationCancelledError(f"Simulation cancelled after batch {index}")

    def run(
        self,
        n_elections: int,
        n_ballots: int,
        n_winners: int = 1,
        n_batches: Optional[int] = None,
        seed: Optional[Seed] = None,
    ) -> np.ndarray:
        """
        Estimate each candidate's posterior probability of winning.

        Args:
            n_elections: Number of complete elections to simulate
            n_ballots: Total number of ballots cast in the election
            n_winners: Number of winners per election
            n_batches: Number of batches to split the elections into
                (defaults to the pool size)
            seed: Optional seed applied to the tree generator first

        Returns:
            Vector of win probabilities indexed by candidate

        Raises:
            ValidationError: On invalid arguments
            SimulationCancelledError: If the cancel event is set mid-run.
                Batches already finished are discarded.
        """
        n_candidates = self.tree.parameters.n_candidates
        n_batches = self.max_workers if n_batches is None else n_batches

        if n_elections < 1:
            raise ValidationError("`n_elections` must be at least 1.")
        if n_batches < 1:
            raise ValidationError("`n_batches` must be at least 1.")
        check_n_winners(n_winners, n_candidates)
        if n_ballots < self.tree.n_observed:
            raise ValidationError(
                "`n_ballots` must be larger than the number of ballots "
                "observed to obtain the posterior."
            )

        if seed is not None:
            self.tree.set_seed(seed)

        # Seeds are drawn up front, in this process, so the sequence does not
        # depend on worker scheduling.
        tree_rng = self.tree.rng
        seeds = tree_rng.integers(0, 2**32, size=n_batches + 1, dtype=np.uint64)
        tree_rng.bit_generator.random_raw(BATCH_WARMUP_DRAWS)

        if n_elections <= 1:
            batch_size, batch_remainder = 0, n_elections
        else:
            batch_size, batch_remainder = divmod(n_elections, n_batches)

        tree_state = pickle.dumps(self.tree, protocol=pickle.HIGHEST_PROTOCOL)
        tasks = [
            BatchTask(i, batch_size, int(seeds[i]), n_ballots, tree_state)
            for i in range(n_batches)
            if batch_size > 0
        ]
        remainder_task = BatchTask(
            n_batches, batch_remainder, int(seeds[n_batches]), n_ballots, tree_state
        )

        logger.info(
            f"Simulating {n_elections} elections of {n_ballots} ballots in "
            f"{n_batches} batches of {batch_size} (+{batch_remainder}) "
            f"on {self.max_workers} worker processes"
        )
        start = time.time()

        results: Dict[int, List[List[int]]] = {}
        if tasks:
            self._run_pool(tasks, remainder_task, results)
        else:
            orders = run_batch(remainder_task, self.cancel_event)
            self._store(results, remainder_task.index, orders)

        wins = np.zeros(n_candidates)
        for index in sorted(results):
            for elimination_order in results[index]:
                for candidate in elimination_order[n_candidates - n_winners :]:
                    wins[candidate] += 1

        logger.info(f"Simulation complete in {time.time() - start:.2f}s")
        return wins / n_elections

    def _run_pool(
        self,
        tasks: List[BatchTask],
        remainder_task: BatchTask,
        results: Dict[int, List[List[int]]],
    ):
        """Run the batches on worker processes and the remainder on this thread."""
        mp_context = multiprocessing.get_context(self.start_method)
        manager = mp_context.Manager() if self.cancel_event is not None else None
        shared_cancel = manager.Event() if manager is not None else None
        if self._cancel_requested():
            shared_cancel.set()

        executor = ProcessPoolExecutor(
            max_workers=min(self.max_workers, len(tasks)), mp_context=mp_context
        )
        try:
            futures = {
                executor.submit(run_batch, task, shared_cancel): task.index for task in tasks
            }
            if remainder_task.size > 0:
                orders = run_batch(remainder_task, self.cancel_event)
                self._store(results, remainder_task.index, orders)

            pending = set(futures)
            while pending:
                done, pending = wait(
                    pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED
                )
                for future in done:
                    self._store(results, futures[future], future.result())
                if self._cancel_requested():
                    raise SimulationCancelledError(
                        "Simulation cancelled while batches were running"
                    )
        except SimulationCancelledError:
            logger.warning("Simulation cancelled; discarding partial results")
            if shared_cancel is not None:
                shared_cancel.set()
            executor.shutdown(wait=True, cancel_futures=True)
            results.clear()
            raise
        finally:
            executor.shutdown(wait=True)
            if manager is not None:
                manager.shutdown()
