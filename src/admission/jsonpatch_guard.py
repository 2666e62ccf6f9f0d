from __future__ import annotations

from typing import Any, Dict, List

import jsonpatch

from .guards import PatchError, ensure_operations


def validate_patch_applies(obj: Dict[str, Any], patch_ops: List[dict]) -> Dict[str, Any]:
    if obj is None:
        raise PatchError("object unavailable for validation")
    ops = ensure_operations(patch_ops)
    try:
        return jsonpatch.apply_patch(obj, ops, in_place=False)
    except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as exc:
        raise PatchError(f"bad path or conflict: {exc}") from exc


__all__ = ["validate_patch_applies"]
