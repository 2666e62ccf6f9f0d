from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from src.common.workload import WorkloadIdentity, annotations_of, metadata_of


@dataclass(frozen=True)
class Applied:
    pod: Dict[str, Any]


@dataclass(frozen=True)
class Deleted:
    identity: WorkloadIdentity


@dataclass(frozen=True)
class Restarted:
    pods: Tuple[Dict[str, Any], ...]


PodEvent = Union[Applied, Deleted, Restarted]


@dataclass(frozen=True)
class SweepJob:
    identity: WorkloadIdentity
    sidecar_address: str


def sidecar_address(ip: str, port: int) -> str:
    host = f"[{ip}]" if ":" in ip and not ip.startswith("[") else ip
    return f"{host}:{port}"


def pod_identity(pod: Dict[str, Any]) -> Optional[WorkloadIdentity]:
    return WorkloadIdentity.from_metadata(metadata_of(pod))


def pod_annotations(pod: Dict[str, Any]) -> Dict[str, str]:
    return annotations_of(pod)


def pod_status(pod: Dict[str, Any]) -> Dict[str, Any]:
    status = pod.get("status")
    return status if isinstance(status, dict) else {}


def pod_ip(pod: Dict[str, Any]) -> Optional[str]:
    ip = pod_status(pod).get("podIP")
    return str(ip) if ip else None


def container_statuses(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    statuses = pod_status(pod).get("containerStatuses")
    return statuses if isinstance(statuses, list) else []


__all__ = [
    "Applied",
    "Deleted",
    "PodEvent",
    "Restarted",
    "SweepJob",
    "container_statuses",
    "pod_annotations",
    "pod_identity",
    "pod_ip",
    "pod_status",
    "sidecar_address",
]
