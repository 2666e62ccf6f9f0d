from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Union

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Terminated:
    container_name: str


@dataclass(frozen=True)
class NotYetTerminated:
    pass


@dataclass(frozen=True)
class Failed:
    container_name: str
    exit_code: int


TerminationResult = Union[Terminated, NotYetTerminated, Failed]


def detect_termination(statuses: Iterable[Dict[str, Any]], sidecar_name: str) -> TerminationResult:
    """Report whether the workload next to the sidecar has finished.

    The first non-sidecar container in a terminated state decides: exit code
    zero means the pod can be swept, anything else leaves the sidecar running
    so the failure can be inspected.
    """

    for status in statuses:
        name = str(status.get("name", ""))
        if name == sidecar_name:
            continue
        state = status.get("state") or {}
        terminated = state.get("terminated")
        if not terminated:
            continue
        exit_code = int(terminated.get("exitCode", 0) or 0)
        LOG.info("found terminated container %s exit_code=%d", name, exit_code)
        if exit_code != 0:
            return Failed(container_name=name, exit_code=exit_code)
        return Terminated(container_name=name)
    return NotYetTerminated()


__all__ = [
    "Failed",
    "NotYetTerminated",
    "Terminated",
    "TerminationResult",
    "detect_termination",
]
