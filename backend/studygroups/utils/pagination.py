"""Deterministic page windows over a table.

Every listing is ordered by a total key: the requested column followed by
the primary key, both in the requested direction. A `desc` listing is
therefore the exact reverse of the `asc` one and consecutive pages never
skip or repeat rows while the data does not change.
"""

import math
from typing import Iterable, Optional, Type

from sqlalchemy import func
from sqlmodel import Session, SQLModel, select

from ..config import settings
from ..errors import InvalidSortFieldError, ValidationError

DIRECTIONS = ("asc", "desc")


def _snake(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def resolve_sort_field(sort_field: Optional[str], allowed: Iterable[str]) -> str:
    """Map a client sort key (camelCase or snake_case) to a column name."""
    if sort_field is None or not sort_field.strip():
        return "id"
    raw = sort_field.strip()
    if not raw[0].islower():
        raise InvalidSortFieldError(f"sort field '{sort_field}' must be camelCase or snake_case")
    key = _snake(raw)
    if key not in set(allowed):
        raise InvalidSortFieldError(f"unknown sort field '{sort_field}'")
    return key


def resolve_direction(direction: Optional[str]) -> str:
    if direction is None or not direction.strip():
        return "asc"
    d = direction.strip().lower()
    if d not in DIRECTIONS:
        raise ValidationError(f"invalid sort direction '{direction}'; expected asc or desc")
    return d


def validate_window(page: int, size: int) -> None:
    if page < 0:
        raise ValidationError("page must be >= 0")
    if size < 1:
        raise ValidationError("size must be >= 1")
    if size > settings.MAX_PAGE_SIZE:
        raise ValidationError(f"size must be <= {settings.MAX_PAGE_SIZE}")


def paginate(
    session: Session,
    model: Type[SQLModel],
    page: int,
    size: int,
    sort_field: Optional[str],
    direction: Optional[str],
    sortable: Iterable[str],
) -> dict:
    """Return one page of `model` rows with its totals.

    The result is a dict with `content` (ORM rows), `page`, `size`,
    `total_elements` and `total_pages`. A page index past the end yields
    an empty `content` with the correct totals.
    """
    validate_window(page, size)
    column_name = resolve_sort_field(sort_field, sortable)
    order = resolve_direction(direction)

    total = session.exec(select(func.count()).select_from(model)).one()
    pk = getattr(model, "id")
    column = getattr(model, column_name)
    if order == "asc":
        keys = [column.asc(), pk.asc()] if column_name != "id" else [pk.asc()]
    else:
        keys = [column.desc(), pk.desc()] if column_name != "id" else [pk.desc()]

    rows = []
    if page * size < total:
        stmt = select(model).order_by(*keys).offset(page * size).limit(size)
        rows = session.exec(stmt).all()
    return {
        "content": rows,
        "page": page,
        "size": size,
        "total_elements": total,
        "total_pages": math.ceil(total / size) if total else 0,
    }
