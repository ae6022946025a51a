from __future__ import annotations

from typing import Any


class OwnerReferenceError(Exception):
    pass


class AlreadyOwnedError(OwnerReferenceError):
    pass


def owner_reference(parent: dict[str, Any]) -> dict[str, Any]:
    """Build a controller owner reference pointing at ``parent``."""
    meta = parent.get("metadata") or {}
    return {
        "apiVersion": parent.get("apiVersion", ""),
        "kind": parent.get("kind", ""),
        "name": meta.get("name", ""),
        "uid": meta.get("uid", ""),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def controller_of(obj: dict[str, Any]) -> dict[str, Any] | None:
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def set_controller_reference(child: dict[str, Any], ref: dict[str, Any]) -> None:
    """Attach ``ref`` as the controller of ``child`` (in place).

    Raises OwnerReferenceError when the parent has not been persisted yet
    (no uid), and AlreadyOwnedError when another object already controls
    the child. The child is left untouched in both cases.
    """
    if not ref.get("uid") or not ref.get("name") or not ref.get("kind"):
        raise OwnerReferenceError(f"Owner reference is incomplete: {ref!r}")

    current = controller_of(child)
    if current is not None and current.get("uid") != ref["uid"]:
        raise AlreadyOwnedError(
            f"Object is already controlled by {current.get('kind')} '{current.get('name')}'"
        )

    refs = child.setdefault("metadata", {}).setdefault("ownerReferences", [])
    for i, existing in enumerate(refs):
        if existing.get("uid") == ref["uid"]:
            refs[i] = dict(ref)
            return
    refs.append(dict(ref))
