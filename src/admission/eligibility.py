"""Decide whether a Pod or Job should have its containers wrapped by the shim."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple, Union

from src.common.settings import SweepSettings
from src.common.workload import annotations_of, labels_of

from .guards import InvalidObject
from .review import AdmissionRequest, ResourceKind


@dataclass(frozen=True)
class MutationConfig:
    sidecar_container_name: str
    target_container_names: Tuple[str, ...]


@dataclass(frozen=True)
class Skip:
    reason: str


Eligibility = Union[MutationConfig, Skip]


def template_of(job: Mapping[str, Any]) -> Dict[str, Any]:
    spec = job.get("spec")
    if not isinstance(spec, dict):
        raise InvalidObject("Job object missing 'spec' field")
    template = spec.get("template")
    if not isinstance(template, dict):
        raise InvalidObject("JobSpec missing 'template' field")
    return template


def _merged_metadata(request: AdmissionRequest) -> Tuple[Dict[str, str], Dict[str, str]]:
    obj = request.raw_object
    if not isinstance(obj, dict):
        raise InvalidObject("AdmissionRequest missing 'object' field")

    labels = dict(labels_of(obj))
    annotations = dict(annotations_of(obj))
    if request.resource_kind is ResourceKind.JOB:
        template = template_of(obj)
        labels.update(labels_of(template))
        annotations.update(annotations_of(template))
    return labels, annotations


def parse_container_names(value: str) -> Tuple[str, ...]:
    names = []
    for item in value.split(","):
        name = item.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def evaluate(request: AdmissionRequest, settings: SweepSettings) -> Eligibility:
    """Apply the enable, injection and target-container rules in order.

    Raises :class:`InvalidObject` only for structurally invalid input; every
    other outcome is either a mutation config or a :class:`Skip`.
    """

    labels, annotations = _merged_metadata(request)

    # Only the label counts: the sweeper watches pods by this label.
    enabled = labels.get(settings.enable_label)
    if enabled != settings.enable_value:
        return Skip(f"'{settings.enable_label}' is not '{settings.enable_value}'")

    if annotations.get(settings.inject_annotation) != settings.inject_value:
        return Skip(f"'{settings.inject_annotation}' is not '{settings.inject_value}'")

    raw_targets = annotations.get(settings.containers_annotation) or ""
    targets = parse_container_names(raw_targets)
    if not targets:
        return Skip(f"annotation '{settings.containers_annotation}' is missing or empty")

    return MutationConfig(
        sidecar_container_name=settings.sidecar_name,
        target_container_names=targets,
    )


__all__ = [
    "Eligibility",
    "MutationConfig",
    "Skip",
    "evaluate",
    "parse_container_names",
    "template_of",
]
