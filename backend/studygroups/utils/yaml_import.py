"""YAML parsing for study group bulk imports.

Accepted document shapes are a mapping with a `groups` list or a bare
list. Every record is validated into a `StudyGroupIn`, the same schema
the REST API uses, so imported rows follow exactly the same rules.
Errors name the 1-based record number and the offending field.
"""

from typing import List

import pydantic
import yaml

from ..errors import ImportParseError, ImportValidationError
from ..schemas import StudyGroupIn


def _format_pydantic_error(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def load_documents(payload: bytes):
    """Decode and parse YAML, raising `ImportParseError` on any syntax problem."""
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ImportParseError("import file must be UTF-8 encoded YAML") from exc
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark is not None else ""
        problem = getattr(exc, "problem", None) or "syntax error"
        raise ImportParseError(f"malformed YAML{where}: {problem}") from exc


def parse_study_groups(payload: bytes) -> List[StudyGroupIn]:
    """Parse an uploaded YAML file into validated study group requests."""
    data = load_documents(payload)
    if isinstance(data, dict):
        if "groups" not in data:
            raise ImportParseError("YAML document must contain a 'groups' list")
        records = data["groups"]
    else:
        records = data
    if not isinstance(records, list):
        raise ImportParseError("expected a list of study groups")
    if not records:
        raise ImportValidationError("import file contains no study groups")

    out = []
    for idx, item in enumerate(records, start=1):
        if not isinstance(item, dict):
            raise ImportValidationError(f"record {idx}: expected a mapping of study group fields")
        try:
            out.append(StudyGroupIn.model_validate(item))
        except pydantic.ValidationError as exc:
            raise ImportValidationError(f"record {idx}: {_format_pydantic_error(exc)}") from exc
    return out
