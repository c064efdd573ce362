"""Deploy engine: existence checks, submission, readiness and watching."""

from kd.engine.dispatcher import DeployDispatcher, DeployMode, DispatchResult, choose_verb
from kd.engine.existence import resource_exists
from kd.engine.readiness import Readiness, evaluate
from kd.engine.watch import RolloutWatcher, WatchResult, WatchState, requires_rollout_watch


__all__ = [
    "DeployDispatcher",
    "DeployMode",
    "DispatchResult",
    "Readiness",
    "RolloutWatcher",
    "WatchResult",
    "WatchState",
    "choose_verb",
    "evaluate",
    "requires_rollout_watch",
    "resource_exists",
]
