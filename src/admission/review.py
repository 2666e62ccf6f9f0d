"""AdmissionReview envelope models and the request decoder."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .guards import DecodeError

SUPPORTED_API_VERSIONS = ("admission.k8s.io/v1", "admission.k8s.io/v1beta1")
DEFAULT_API_VERSION = "admission.k8s.io/v1"


class ResourceKind(enum.Enum):
    POD = "Pod"
    JOB = "Job"
    UNSUPPORTED = "Unsupported"


_KIND_TABLE = {
    ("", "Pod"): ResourceKind.POD,
    ("batch", "Job"): ResourceKind.JOB,
}


class GroupVersionKind(BaseModel):
    model_config = ConfigDict(extra="allow")

    group: str = ""
    version: str = ""
    kind: str


class AdmissionReviewRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    uid: str
    kind: GroupVersionKind
    operation: str = Field(..., description="CREATE, UPDATE, DELETE or CONNECT")
    namespace: Optional[str] = None
    name: Optional[str] = None
    object: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Object under admission; absent for DELETE",
    )
    dry_run: Optional[bool] = Field(default=None, alias="dryRun")


class AdmissionReview(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str = Field(DEFAULT_API_VERSION, alias="apiVersion")
    kind: str = "AdmissionReview"
    request: AdmissionReviewRequest


@dataclass(frozen=True)
class AdmissionRequest:
    resource_kind: ResourceKind
    raw_object: Optional[Dict[str, Any]]
    operation: str
    correlation_id: str
    api_version: str = DEFAULT_API_VERSION
    namespace: Optional[str] = None
    group: str = ""
    kind: str = ""


def resolve_kind(group: str, kind: str) -> ResourceKind:
    return _KIND_TABLE.get((group or "", kind), ResourceKind.UNSUPPORTED)


def decode_review(raw: bytes) -> AdmissionRequest:
    """Parse a webhook body into an :class:`AdmissionRequest`."""

    if not raw:
        raise DecodeError("empty request body")
    try:
        review = AdmissionReview.model_validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"invalid AdmissionReview: {exc.errors()[0].get('msg', exc)}") from exc
    except ValueError as exc:
        raise DecodeError(f"invalid JSON: {exc}") from exc

    req = review.request
    api_version = review.api_version if review.api_version in SUPPORTED_API_VERSIONS else DEFAULT_API_VERSION
    return AdmissionRequest(
        resource_kind=resolve_kind(req.kind.group, req.kind.kind),
        raw_object=req.object,
        operation=req.operation.upper(),
        correlation_id=req.uid,
        api_version=api_version,
        namespace=req.namespace,
        group=req.kind.group,
        kind=req.kind.kind,
    )


def peek_uid(raw: bytes) -> str:
    """Best-effort uid extraction for responses to undecodable reviews."""

    try:
        data = json.loads(raw)
    except ValueError:
        return ""
    request = data.get("request") if isinstance(data, dict) else None
    uid = request.get("uid") if isinstance(request, dict) else None
    return uid if isinstance(uid, str) else ""


__all__ = [
    "AdmissionRequest",
    "AdmissionReview",
    "AdmissionReviewRequest",
    "GroupVersionKind",
    "ResourceKind",
    "decode_review",
    "peek_uid",
    "resolve_kind",
]
