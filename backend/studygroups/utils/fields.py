"""Request-boundary value types.

Two small vocabularies used when turning request payloads into domain
changes:

- `ExistingRef` / `NewInline`: a nested reference is either the id of
  an existing row or the fields of a row to create alongside.
- `UNCHANGED` / `SetTo` / `CLEARED`: the outcome of one field of a
  partial update, so "not sent" and "explicitly cleared" never collide.
"""

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel

from ..errors import ValidationError


@dataclass(frozen=True)
class ExistingRef:
    id: int


@dataclass(frozen=True)
class NewInline:
    payload: Any


class _Marker:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


UNCHANGED = _Marker("UNCHANGED")
CLEARED = _Marker("CLEARED")


@dataclass(frozen=True)
class SetTo:
    value: Any


def reference_choice(existing_id: Optional[int], inline: Any, label: str):
    """Collapse an `<x>Id` / `<x>` pair into `ExistingRef`, `NewInline` or None."""
    if existing_id is not None and inline is not None:
        raise ValidationError(f"{label}: pass either an existing id or a new object, not both")
    if existing_id is not None:
        return ExistingRef(existing_id)
    if inline is not None:
        return NewInline(inline)
    return None


def _alias(request: BaseModel, field: str) -> str:
    info = type(request).model_fields[field]
    return info.alias or field


def field_change(request: BaseModel, field: str, clear_flag: Optional[str] = None):
    """Resolve one field of a partial update request.

    Fields without a `clear_flag` are required on the entity: sending
    them as null is rejected. Nullable fields treat null as "not sent"
    and are cleared only through their flag.
    """
    sent = field in request.model_fields_set
    value = getattr(request, field)
    clear = bool(getattr(request, clear_flag)) if clear_flag else False
    if clear and value is not None:
        raise ValidationError(f"{_alias(request, field)}: cannot set a value and clear it at once")
    if clear:
        return CLEARED
    if not sent:
        return UNCHANGED
    if value is None:
        if clear_flag is None:
            raise ValidationError(f"{_alias(request, field)} cannot be null")
        return UNCHANGED
    return SetTo(value)


def reference_change(request: BaseModel, id_field: str, inline_field: str, label: str,
                     clear_flag: Optional[str] = None):
    """Resolve a nested-reference pair of an update into a tri-state of refs."""
    clear = bool(getattr(request, clear_flag)) if clear_flag else False
    ref = reference_choice(getattr(request, id_field), getattr(request, inline_field), label)
    if clear and ref is not None:
        raise ValidationError(f"{label}: cannot replace and remove at once")
    if clear:
        return CLEARED
    if ref is None:
        return UNCHANGED
    return SetTo(ref)
