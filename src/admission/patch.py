"""JSON Patch synthesis for wrapping application containers in the shim."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.common.settings import SweepSettings

from .eligibility import MutationConfig, template_of
from .guards import InvalidObject, PatchFieldMissing
from .review import AdmissionRequest, ResourceKind

LOG = logging.getLogger(__name__)

POD_SPEC_POINTER = "/spec"
JOB_SPEC_POINTER = "/spec/template/spec"


@dataclass(frozen=True)
class PatchOperation:
    op: str
    path: str
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "path": self.path, "value": self.value}


def add(path: str, value: Any) -> PatchOperation:
    return PatchOperation("add", path, value)


def replace(path: str, value: Any) -> PatchOperation:
    return PatchOperation("replace", path, value)


@dataclass(frozen=True)
class MutationTarget:
    """A Pod-shaped spec and the JSON pointer it lives at in the object."""

    spec: Dict[str, Any]
    pointer: str = POD_SPEC_POINTER

    @property
    def containers(self) -> List[Dict[str, Any]]:
        containers = self.spec.get("containers")
        return containers if isinstance(containers, list) else []

    @property
    def init_containers(self) -> Optional[List[Dict[str, Any]]]:
        return self.spec.get("initContainers")

    @property
    def volumes(self) -> Optional[List[Dict[str, Any]]]:
        return self.spec.get("volumes")


def mutation_target(request: AdmissionRequest) -> MutationTarget:
    obj = request.raw_object
    if not isinstance(obj, dict):
        raise InvalidObject("AdmissionRequest missing 'object' field")

    if request.resource_kind is ResourceKind.JOB:
        spec = template_of(obj).get("spec")
        if not isinstance(spec, dict):
            raise InvalidObject("JobSpec missing 'spec' in PodTemplateSpec")
        return MutationTarget(spec=spec, pointer=JOB_SPEC_POINTER)

    spec = obj.get("spec")
    if not isinstance(spec, dict):
        raise InvalidObject("AdmissionRequest object missing 'spec' field")
    return MutationTarget(spec=spec, pointer=POD_SPEC_POINTER)


def shim_volume_mount(settings: SweepSettings, read_only: bool) -> Dict[str, Any]:
    return {
        "name": settings.shim_volume,
        "mountPath": settings.shim_mount_path,
        "readOnly": read_only,
    }


def shim_init_container(settings: SweepSettings) -> Dict[str, Any]:
    return {
        "name": settings.shim_init_name,
        "image": settings.shim_image,
        "imagePullPolicy": "IfNotPresent",
        "command": ["/bin/sh"],
        "args": ["-c", f"cp {settings.shim_source_path} {settings.shim_path}"],
        "volumeMounts": [shim_volume_mount(settings, read_only=False)],
    }


def shim_volume(settings: SweepSettings) -> Dict[str, Any]:
    return {"name": settings.shim_volume, "emptyDir": {}}


def wrapped_args(container: Dict[str, Any]) -> List[str]:
    name = str(container.get("name", ""))
    command = container.get("command")
    if not command:
        raise PatchFieldMissing(name, "command")
    args = container.get("args") or []
    return ["--shutdown", "--", *command, *args]


def container_patch(
    path: str, container: Dict[str, Any], settings: SweepSettings
) -> List[PatchOperation]:
    new_args = wrapped_args(container)
    # RFC 6902 replace needs an existing member; absent args are added.
    set_args = replace if "args" in container else add
    ops = [
        replace(f"{path}/command", [settings.shim_path]),
        set_args(f"{path}/args", new_args),
    ]
    if container.get("volumeMounts") is None:
        ops.append(add(f"{path}/volumeMounts", []))
    ops.append(add(f"{path}/volumeMounts/-", shim_volume_mount(settings, read_only=True)))
    return ops


def is_wrapped(target: MutationTarget, settings: SweepSettings) -> bool:
    """True when an earlier admission already installed the shim init container or volume."""

    init_names = {c.get("name") for c in target.init_containers or [] if isinstance(c, dict)}
    volume_names = {v.get("name") for v in target.volumes or [] if isinstance(v, dict)}
    return settings.shim_init_name in init_names or settings.shim_volume in volume_names


def synthesize_patch(
    target: MutationTarget,
    config: MutationConfig,
    settings: SweepSettings,
) -> Tuple[PatchOperation, ...]:
    """Build the ordered patch that installs the shim and wraps target containers.

    Any list that an append (``/-``) writes into is first materialized with an
    ``add`` of ``[]`` when absent from the spec, so the patch applies to specs
    without init containers, volumes or volume mounts. The sidecar is never
    touched and containers without a ``command`` are skipped. A spec that
    already carries the shim, or one where no container can be wrapped,
    yields an empty result.
    """

    if is_wrapped(target, settings):
        LOG.debug("shim already installed under %s", target.pointer)
        return ()

    base = target.pointer
    ops: List[PatchOperation] = []

    if target.init_containers is None:
        ops.append(add(f"{base}/initContainers", []))
    ops.append(add(f"{base}/initContainers/-", shim_init_container(settings)))

    if target.volumes is None:
        ops.append(add(f"{base}/volumes", []))
    ops.append(add(f"{base}/volumes/-", shim_volume(settings)))

    wrapped = 0
    targets = set(config.target_container_names)
    for index, container in enumerate(target.containers):
        name = container.get("name")
        if name == config.sidecar_container_name or name not in targets:
            continue
        if container.get("command") == [settings.shim_path]:
            LOG.debug("container %s already runs the shim", name)
            continue
        try:
            ops.extend(container_patch(f"{base}/containers/{index}", container, settings))
        except PatchFieldMissing as exc:
            LOG.warning("Skipped patch for container %s: %s", name, exc)
            continue
        wrapped += 1
        LOG.debug("Patched container %s", name)

    # Nothing wrapped, so nothing to install.
    if not wrapped:
        return ()
    return tuple(ops)


def render(ops: Sequence[PatchOperation]) -> List[Dict[str, Any]]:
    return [op.to_dict() for op in ops]


__all__ = [
    "JOB_SPEC_POINTER",
    "MutationTarget",
    "POD_SPEC_POINTER",
    "PatchOperation",
    "is_wrapped",
    "mutation_target",
    "render",
    "shim_init_container",
    "shim_volume",
    "shim_volume_mount",
    "synthesize_patch",
    "wrapped_args",
]
