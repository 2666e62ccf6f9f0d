from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class WorkloadIdentity:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_metadata(cls, metadata: Optional[Mapping[str, Any]]) -> Optional["WorkloadIdentity"]:
        metadata = metadata or {}
        name = metadata.get("name") or metadata.get("generateName")
        namespace = metadata.get("namespace")
        if not name or not namespace:
            return None
        return cls(namespace=str(namespace), name=str(name))


def metadata_of(obj: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    metadata = (obj or {}).get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def labels_of(obj: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    labels = metadata_of(obj).get("labels")
    return labels if isinstance(labels, dict) else {}


def annotations_of(obj: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    annotations = metadata_of(obj).get("annotations")
    return annotations if isinstance(annotations, dict) else {}


__all__ = ["WorkloadIdentity", "annotations_of", "labels_of", "metadata_of"]
