"""Turn webhook bodies into AdmissionReview responses."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Optional

from src.common.settings import SweepSettings
from src.common.workload import WorkloadIdentity, metadata_of

from .eligibility import Skip, evaluate
from .guards import DecodeError, InvalidObject, PatchError
from .jsonpatch_guard import validate_patch_applies
from .patch import mutation_target, render, synthesize_patch
from .review import DEFAULT_API_VERSION, AdmissionRequest, ResourceKind, decode_review, peek_uid

LOG = logging.getLogger(__name__)


def allow(uid: str, patch: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    response: Dict[str, Any] = {"uid": uid, "allowed": True}
    if patch:
        response["patchType"] = "JSONPatch"
        response["patch"] = base64.b64encode(json.dumps(patch).encode("utf-8")).decode("utf-8")
    return response


def deny(uid: str, message: str, code: int = 400) -> Dict[str, Any]:
    return {
        "uid": uid,
        "allowed": False,
        "status": {"code": code, "message": message},
    }


def envelope(response: Dict[str, Any], api_version: str = DEFAULT_API_VERSION) -> Dict[str, Any]:
    return {"apiVersion": api_version, "kind": "AdmissionReview", "response": response}


def _identity(request: AdmissionRequest) -> str:
    metadata = metadata_of(request.raw_object)
    if request.namespace and not metadata.get("namespace"):
        metadata = {**metadata, "namespace": request.namespace}
    identity = WorkloadIdentity.from_metadata(metadata)
    return str(identity) if identity else "<unnamed>"


def admit(request: AdmissionRequest, settings: SweepSettings) -> Dict[str, Any]:
    """Decide the response body for a decoded request.

    Raises :class:`InvalidObject` when the object cannot be mutated at all.
    """

    uid = request.correlation_id
    if request.resource_kind is ResourceKind.UNSUPPORTED:
        LOG.debug("uid=%s unsupported kind %s/%s, admitting", uid, request.group, request.kind)
        return allow(uid)

    # Pods created from a mutated Job template, and later updates, already carry the shim.
    if request.operation != "CREATE":
        LOG.debug("uid=%s %s request, admitting unmodified", uid, request.operation)
        return allow(uid)

    decision = evaluate(request, settings)
    workload = _identity(request)
    if isinstance(decision, Skip):
        LOG.debug("uid=%s skipping %s: %s", uid, workload, decision.reason)
        return allow(uid)

    target = mutation_target(request)
    ops = render(synthesize_patch(target, decision, settings))
    if not ops:
        LOG.info("uid=%s no container of %s could be wrapped, admitting", uid, workload)
        return allow(uid)

    try:
        validate_patch_applies(request.raw_object, ops)
    except PatchError as exc:
        LOG.error("uid=%s dropping patch for %s: %s", uid, workload, exc)
        return allow(uid)

    LOG.info(
        "mutation uid=%s kind=%s op=%s workload=%s patches=%d",
        uid,
        request.resource_kind.value,
        request.operation,
        workload,
        len(ops),
    )
    return allow(uid, ops)


def review_response(raw: bytes, settings: SweepSettings) -> Dict[str, Any]:
    """Build a complete AdmissionReview for a raw webhook body.

    Never raises: undecodable reviews and invalid objects are denied, any
    other failure is admitted without a patch.
    """

    try:
        request = decode_review(raw)
    except DecodeError as exc:
        LOG.warning("denying undecodable admission review: %s", exc)
        return envelope(deny(peek_uid(raw), f"AdmissionRequest is invalid: {exc}"))

    try:
        response = admit(request, settings)
    except InvalidObject as exc:
        LOG.warning("uid=%s denying invalid object: %s", request.correlation_id, exc)
        response = deny(request.correlation_id, str(exc))
    except Exception:  # noqa: BLE001 - the API server must always get an envelope
        LOG.exception("uid=%s mutation failed, admitting unmodified", request.correlation_id)
        response = allow(request.correlation_id)
    return envelope(response, request.api_version)


__all__ = ["admit", "allow", "deny", "envelope", "review_response"]
