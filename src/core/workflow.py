"""
Task status state machine.

States move one step at a time along ``todo -> doing -> done`` in either
direction. Entering ``done`` requires both the before and after photo.
"""

from typing import Literal

from src.core.errors import ValidationError
from src.core.store import Status, Task

STATUS_ORDER = (Status.TODO, Status.DOING, Status.DONE)

Direction = Literal["left", "right"]


def is_allowed(current: Status, target: Status) -> bool:
    """True if ``current -> target`` is a single step of the workflow."""
    return abs(STATUS_ORDER.index(current) - STATUS_ORDER.index(target)) == 1


def next_status(current: Status, direction: Direction) -> Status:
    """
    Neighbour of ``current`` in the given direction.

    Raises
    ------
    ValidationError
        When moving past either end of the workflow
    """
    if direction not in ("left", "right"):
        raise ValidationError(f"Invalid direction: {direction!r}", "invalid_direction")
    idx = STATUS_ORDER.index(current) + (1 if direction == "right" else -1)
    if idx < 0 or idx >= len(STATUS_ORDER):
        raise ValidationError(
            f"Task is already {current.value}; cannot move {direction}", "no_transition"
        )
    return STATUS_ORDER[idx]


def check_transition(task: Task, target: Status) -> Status:
    """
    Validate a status change of ``task`` to ``target``.

    Parameters
    ----------
    task : Task
        Task in its current state (never modified here)
    target : Status
        Requested status

    Returns
    -------
    Status
        ``target``, once validated

    Raises
    ------
    ValidationError
        ``no_change`` for same-status, ``invalid_transition`` for skips,
        ``photos_required`` when entering done without both photos
    """
    if target is task.status:
        raise ValidationError(f"Task is already {target.value}", "no_change")
    if not is_allowed(task.status, target):
        raise ValidationError(
            f"Cannot move task from {task.status.value} to {target.value}",
            "invalid_transition",
        )
    if target is Status.DONE and not task.has_photos:
        raise ValidationError(
            "Add before/after photos before completing a task", "photos_required"
        )
    return target
