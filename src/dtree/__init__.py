"""
Dirichlet-tree posteriors for ranked-choice (IRV) elections.

This package provides:
- DirichletTree: Bayesian posterior over IRV ballots, built from IRVNode trees
- social_choice_irv / IRVTabulator: IRV elimination with random tie-breaking
- BatchSimulator: Parallel estimation of posterior win probabilities
- CandidateDirichletTree: Name-based interface used by audit tooling
"""

from .candidates import CandidateDirichletTree, social_choice
from .errors import (
    ConsistencyWarning,
    DirichletTreeError,
    SimulationCancelledError,
    SocialChoiceError,
    ValidationError,
)
from .node import IRVNode
from .parameters import BallotCount, IRVBallot, IRVParameters
from .simulator import BatchSimulator
from .social_choice import IRVRound, IRVTabulator, social_choice_irv
from .tree import DirichletTree, make_generator

__all__ = [
    "CandidateDirichletTree",
    "social_choice",
    "DirichletTree",
    "IRVNode",
    "IRVParameters",
    "IRVBallot",
    "BallotCount",
    "BatchSimulator",
    "IRVTabulator",
    "IRVRound",
    "social_choice_irv",
    "make_generator",
    "ConsistencyWarning",
    "DirichletTreeError",
    "SimulationCancelledError",
    "SocialChoiceError",
    "ValidationError",
]
