from concurrent.futures import CancelledError


class DirichletTreeError(Exception):
    """Base class for all failures raised by the Dirichlet-tree package."""


class ValidationError(DirichletTreeError, ValueError):
    """Invalid parameters, ballots or simulation arguments."""


class SocialChoiceError(DirichletTreeError, RuntimeError):
    """The social choice function could not produce an outcome."""


class SimulationCancelledError(DirichletTreeError, CancelledError):
    """A batch simulation observed the cancel signal and was aborted."""


class ConsistencyWarning(UserWarning):
    """
    Advisory warning for observations that break the reducibility of the tree.

    Ballots shorter than ``min_depth`` can still be used, but the posterior no
    longer reduces to a flat Dirichlet distribution over complete ballots.
    """
