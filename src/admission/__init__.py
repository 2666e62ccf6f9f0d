"""Mutating admission webhook that wraps workload entrypoints in the shutdown shim."""

from .eligibility import MutationConfig, Skip, evaluate
from .patch import MutationTarget, PatchOperation, synthesize_patch
from .response import review_response
from .review import AdmissionRequest, ResourceKind, decode_review

__all__ = [
    "AdmissionRequest",
    "MutationConfig",
    "MutationTarget",
    "PatchOperation",
    "ResourceKind",
    "Skip",
    "decode_review",
    "evaluate",
    "review_response",
    "synthesize_patch",
]
