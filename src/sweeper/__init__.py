"""Pod lifecycle sweeper: shuts down proxies once their workload has finished."""

from .consumer import PodEventConsumer
from .detector import Failed, NotYetTerminated, Terminated, detect_termination
from .dispatcher import DispatchError, SweepDispatcher
from .events import Applied, Deleted, PodEvent, Restarted, SweepJob
from .store import DedupStore

__all__ = [
    "Applied",
    "DedupStore",
    "Deleted",
    "DispatchError",
    "Failed",
    "NotYetTerminated",
    "PodEvent",
    "PodEventConsumer",
    "Restarted",
    "SweepDispatcher",
    "SweepJob",
    "Terminated",
    "detect_termination",
]
