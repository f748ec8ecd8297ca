"""Builders for test entities."""

from datetime import date

from src.core.store import ScopeType, Status, Task, Weight

TODAY = date(2025, 6, 15)


def make_task(task_id="t1", status=Status.TODO, weight=Weight.MEDIUM, **kwargs):
    """Build a Task attached to area ``a1`` unless overridden."""
    fields = {
        "id": task_id,
        "project_id": "p1",
        "area_id": "a1",
        "scope_type": ScopeType.AREA,
        "scope_id": "a1",
        "title": f"Task {task_id}",
        "status": status,
        "weight": weight,
    }
    fields.update(kwargs)
    return Task(**fields)
