from __future__ import annotations

from typing import Any, Dict, List, Sequence


class DecodeError(Exception):
    """Raised when an AdmissionReview payload cannot be decoded."""


class InvalidObject(Exception):
    """Raised when the object under admission lacks a required structure."""


class PatchError(Exception):
    """Raised when a synthesized patch is malformed or does not apply."""


class PatchFieldMissing(PatchError):
    """Raised when a single container cannot be wrapped."""

    def __init__(self, container: str, field: str) -> None:
        super().__init__(f"container {container} is missing '{field}' field")
        self.container = container
        self.field = field


_EMITTED_OPS = {"add", "replace"}


def ensure_operations(ops: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Check that rendered operations are RFC6902 add/replace objects."""

    checked: List[Dict[str, Any]] = []
    for op in ops:
        if not isinstance(op, dict):
            raise PatchError("non-object operation")
        if op.get("op") not in _EMITTED_OPS:
            raise PatchError(f"unexpected op {op.get('op')!r}")
        path = op.get("path")
        if not isinstance(path, str) or not path.startswith("/"):
            raise PatchError("missing path")
        if "value" not in op:
            raise PatchError(f"operation on {path} has no value")
        checked.append(op)
    return checked


__all__ = [
    "DecodeError",
    "InvalidObject",
    "PatchError",
    "PatchFieldMissing",
    "ensure_operations",
]
