"""
Boundary normalization of free-form user input.

This is the single authority for the closed status/weight enums. The synonym
tables below are the only place Portuguese/English variants are known; core
logic works on ``Status`` / ``Weight`` values exclusively.

The payload builders turn raw form data into records safe to hand to the
persistence collaborator. They either return a complete payload or raise
``ValidationError``; there is never a partial write.
"""

import logging
from typing import Any, Dict, Literal, Mapping, Optional

from src.core.errors import ValidationError
from src.core.store import ScopeType, Status, Weight, parse_date

logger = logging.getLogger(__name__)

STATUS_SYNONYMS: Dict[str, Status] = {
    "todo": Status.TODO,
    "to do": Status.TODO,
    "to-do": Status.TODO,
    "a fazer": Status.TODO,
    "backlog": Status.TODO,
    "doing": Status.DOING,
    "in progress": Status.DOING,
    "em andamento": Status.DOING,
    "fazendo": Status.DOING,
    "done": Status.DONE,
    "concluido": Status.DONE,
    "concluído": Status.DONE,
    "feito": Status.DONE,
}

WEIGHT_SYNONYMS: Dict[str, Weight] = {
    "light": Weight.LIGHT,
    "leve": Weight.LIGHT,
    "medium": Weight.MEDIUM,
    "medio": Weight.MEDIUM,
    "médio": Weight.MEDIUM,
    "normal": Weight.MEDIUM,
    "heavy": Weight.HEAVY,
    "pesado": Weight.HEAVY,
    "alta": Weight.HEAVY,
    "alto": Weight.HEAVY,
}

# Fields a task update may touch. Scope and ownership are not among them.
TASK_UPDATE_FIELDS = (
    "title",
    "description",
    "task_type",
    "status",
    "weight",
    "due_date",
    "cost_expected",
    "cost_real",
    "has_photo_before",
    "has_photo_after",
)

HIERARCHY_UPDATE_FIELDS = {
    "area": ("name", "kind", "cover_url"),
    "sub_area": ("name", "description", "cover_url"),
    "corner": ("name", "description", "cover_url"),
}


def _key(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, (Status, Weight)):
        return raw.value
    return str(raw).strip().lower()


def normalize_status(raw: Any) -> Optional[Status]:
    """
    Map a free-form status string to ``Status``.

    Parameters
    ----------
    raw : Any
        User or storage provided value ("A fazer", "Em andamento", "done", ...)

    Returns
    -------
    Optional[Status]
        Canonical status, or None when the value is not recognized. Never raises.
    """
    return STATUS_SYNONYMS.get(_key(raw))


def normalize_weight(raw: Any) -> Optional[Weight]:
    """Map a free-form weight string to ``Weight``; None when unrecognized."""
    return WEIGHT_SYNONYMS.get(_key(raw))


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _cost(raw: Mapping[str, Any], name: str) -> float:
    value = raw.get(name)
    if value is None or value == "":
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {value!r}", f"invalid_{name}")
    if amount < 0:
        raise ValidationError(f"{name} cannot be negative", f"invalid_{name}")
    return amount


def _due_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid due_date: {value!r}", "invalid_due_date")
    return parsed.isoformat()


def _status(value: Any) -> Status:
    status = normalize_status(value)
    if status is None:
        raise ValidationError(f"Invalid status: {value!r}", "invalid_status")
    return status


def _weight(value: Any) -> Weight:
    weight = normalize_weight(value)
    if weight is None:
        raise ValidationError(f"Invalid weight: {value!r}", "invalid_weight")
    return weight


def _title(value: Any) -> str:
    title = _clean_text(value)
    if not title:
        raise ValidationError("Task title is required", "missing_title")
    return title


def build_task_payload(
    raw: Mapping[str, Any], mode: Literal["insert", "update"]
) -> Dict[str, Any]:
    """
    Build a storage-safe task payload from raw input.

    For ``insert`` the title and a scope id are required (``scope_id`` falls
    back to ``area_id`` with ``scope_type`` forced to 'area'), status and
    weight default to todo/medium, costs default to zero and photo flags to
    False. A task cannot be created as done without both photos.

    For ``update`` only whitelisted fields present in ``raw`` are forwarded,
    each validated independently; any invalid field rejects the whole patch.

    Parameters
    ----------
    raw : Mapping[str, Any]
        Raw form/request data
    mode : str
        'insert' or 'update'

    Returns
    -------
    dict
        JSON-compatible payload with canonical enum values

    Raises
    ------
    ValidationError
        When a required field is missing or any provided value is invalid
    """
    if mode == "insert":
        return _build_insert(raw)
    if mode == "update":
        return _build_update(raw)
    raise ValueError(f"Unknown payload mode: {mode}")


def _build_insert(raw: Mapping[str, Any]) -> Dict[str, Any]:
    title = _title(raw.get("title"))

    scope_id = _clean_text(raw.get("scope_id"))
    scope_type_raw = raw.get("scope_type")
    if not scope_id:
        # Legacy callers only send the area; an area id is only ever an area scope
        scope_id = _clean_text(raw.get("area_id"))
        scope_type_raw = ScopeType.AREA.value
    if not scope_id:
        raise ValidationError("Choose a scope before creating tasks", "missing_scope")
    try:
        scope_type = ScopeType(_key(scope_type_raw) or ScopeType.AREA.value)
    except ValueError:
        raise ValidationError(f"Invalid scope_type: {scope_type_raw!r}", "invalid_scope")

    status = Status.TODO if _key(raw.get("status")) == "" else _status(raw.get("status"))
    weight = Weight.MEDIUM if _key(raw.get("weight")) == "" else _weight(raw.get("weight"))

    has_before = bool(raw.get("has_photo_before", False))
    has_after = bool(raw.get("has_photo_after", False))
    if status is Status.DONE and not (has_before and has_after):
        raise ValidationError(
            "Add before/after photos before completing a task", "photos_required"
        )

    area_id = _clean_text(raw.get("area_id"))
    if scope_type is ScopeType.AREA:
        area_id = scope_id

    return {
        "project_id": _clean_text(raw.get("project_id")),
        "area_id": area_id,
        "scope_type": scope_type.value,
        "scope_id": scope_id,
        "title": title,
        "description": _clean_text(raw.get("description")),
        "task_type": _clean_text(raw.get("task_type")),
        "status": status.value,
        "weight": weight.value,
        "due_date": _due_date(raw.get("due_date")),
        "cost_expected": _cost(raw, "cost_expected"),
        "cost_real": _cost(raw, "cost_real"),
        "has_photo_before": has_before,
        "has_photo_after": has_after,
    }


def _build_update(raw: Mapping[str, Any]) -> Dict[str, Any]:
    patch: Dict[str, Any] = {}
    for name in TASK_UPDATE_FIELDS:
        if name not in raw:
            continue
        value = raw[name]
        if name == "title":
            patch[name] = _title(value)
        elif name == "status":
            patch[name] = _status(value).value
        elif name == "weight":
            patch[name] = _weight(value).value
        elif name == "due_date":
            patch[name] = _due_date(value)
        elif name in ("cost_expected", "cost_real"):
            patch[name] = _cost(raw, name)
        elif name in ("has_photo_before", "has_photo_after"):
            patch[name] = bool(value)
        else:
            patch[name] = _clean_text(value)

    ignored = set(raw) - set(TASK_UPDATE_FIELDS)
    if ignored:
        logger.debug(f"Ignoring non-updatable task fields: {sorted(ignored)}")
    return patch


def build_project_payload(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Build a project insert payload.

    Raises
    ------
    ValidationError
        When the name is missing or dates/budget are invalid
    """
    name = _clean_text(raw.get("name"))
    if not name:
        raise ValidationError("Project name is required", "missing_name")
    start = parse_date(raw.get("start_date")) if raw.get("start_date") else None
    end = parse_date(raw.get("end_date")) if raw.get("end_date") else None
    if raw.get("start_date") and start is None:
        raise ValidationError("Invalid start_date", "invalid_start_date")
    if raw.get("end_date") and end is None:
        raise ValidationError("Invalid end_date", "invalid_end_date")
    if start and end and end < start:
        raise ValidationError("end_date is before start_date", "invalid_period")
    return {
        "name": name,
        "home_type": _clean_text(raw.get("home_type")) or "apartment",
        "mode": _clean_text(raw.get("mode")) or "macro",
        "start_date": start.isoformat() if start else None,
        "end_date": end.isoformat() if end else None,
        "budget_expected": _cost(raw, "budget_expected"),
        "budget_real": _cost(raw, "budget_real"),
        "cover_url": _clean_text(raw.get("cover_url")),
    }


def build_hierarchy_payload(
    kind: Literal["area", "sub_area", "corner"],
    raw: Mapping[str, Any],
    mode: Literal["insert", "update"] = "insert",
) -> Dict[str, Any]:
    """
    Build an Area/SubArea/Corner payload.

    Inserts require a name (and a kind for Areas). Updates forward only the
    editable fields; parent ids are never forwarded, so an update cannot
    change topology.
    """
    if kind not in HIERARCHY_UPDATE_FIELDS:
        raise ValueError(f"Unknown hierarchy kind: {kind}")
    editable = HIERARCHY_UPDATE_FIELDS[kind]

    if mode == "update":
        patch = {name: _clean_text(raw[name]) for name in editable if name in raw}
        if "name" in patch and not patch["name"]:
            raise ValidationError("Name cannot be empty", "missing_name")
        return patch

    payload = {name: _clean_text(raw.get(name)) for name in editable}
    if not payload["name"]:
        raise ValidationError("Name is required", "missing_name")
    if kind == "area" and not payload["kind"]:
        raise ValidationError("Fill in name and kind", "missing_kind")
    return payload
