"""
Task Aggregator for the Renovation Tracker.

Pure functions computing the project indicators from a task collection:

1. Weighted progress (light=1, medium=2, heavy=3)
2. Gamification points (80 x weight per done task with both photos)
3. Deadline risk (overdue, due after the project end)
4. Budget variance (expected vs real cost)

Nothing here filters by scope or touches storage; callers pass in the task
collection they want measured. Indicators are computed live on every call
and never cached on the Project, so they always reflect the latest edits.
"""

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from src.core.store import (
    BudgetIndicators,
    Dashboard,
    DeadlineIndicators,
    Progress,
    Project,
    Status,
    Task,
    Weight,
)

logger = logging.getLogger(__name__)

WEIGHT_VALUES: Dict[Weight, int] = {
    Weight.LIGHT: 1,
    Weight.MEDIUM: 2,
    Weight.HEAVY: 3,
}

POINTS_PER_WEIGHT = 80

# Kanban needs at least this many Areas in 'macro' mode
MACRO_MIN_AREAS = 2


def weight_value(weight: Weight) -> int:
    """Numeric value of a weight."""
    return WEIGHT_VALUES[weight]


def round_percent(value: float) -> float:
    """Round to one decimal with ties going up (0.25 -> 0.3)."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def compute_progress(tasks: Iterable[Task]) -> Progress:
    """
    Weighted completion of a task collection.

    Parameters
    ----------
    tasks : Iterable[Task]
        Tasks to measure

    Returns
    -------
    Progress
        Total weight ``W`` and ``progress_percent`` rounded to one decimal.
        An empty collection gives ``W=0`` and ``0`` percent.
    """
    total = 0
    done = 0
    for task in tasks:
        w = weight_value(task.weight)
        total += w
        if task.status is Status.DONE:
            done += w
    if total == 0:
        return Progress(W=0, progress_percent=0)
    return Progress(W=total, progress_percent=round_percent(done / total * 100))


def task_points(task: Task) -> int:
    """Points a single task is worth right now (0 unless done with both photos)."""
    if task.status is Status.DONE and task.has_photos:
        return POINTS_PER_WEIGHT * weight_value(task.weight)
    return 0


def compute_points(tasks: Iterable[Task]) -> int:
    """Total gamification points of a task collection."""
    return sum(task_points(t) for t in tasks)


def compute_deadline_indicators(
    project: Optional[Project],
    tasks: Iterable[Task],
    today: Optional[date] = None,
) -> DeadlineIndicators:
    """
    Count late tasks.

    Parameters
    ----------
    project : Optional[Project]
        Project providing ``end_date``; beyond-end is only counted when set
    tasks : Iterable[Task]
        Tasks to inspect; tasks without ``due_date`` are ignored
    today : Optional[date]
        Reference day (defaults to the current UTC date)

    Returns
    -------
    DeadlineIndicators
        ``overdue_count``: not done and due before today.
        ``beyond_end_count``: due after the project end, regardless of status.
    """
    today = today or datetime.now(timezone.utc).date()
    end_date = project.end_date if project else None
    overdue = 0
    beyond_end = 0
    for task in tasks:
        if task.due_date is None:
            continue
        if task.status is not Status.DONE and task.due_date < today:
            overdue += 1
        if end_date is not None and task.due_date > end_date:
            beyond_end += 1
    return DeadlineIndicators(overdue_count=overdue, beyond_end_count=beyond_end)


def compute_budget_indicators(tasks: Iterable[Task]) -> BudgetIndicators:
    """Expected vs real cost totals; over budget when real > expected."""
    task_list = list(tasks)
    sum_expected = sum(t.cost_expected or 0.0 for t in task_list)
    sum_real = sum(t.cost_real or 0.0 for t in task_list)
    return BudgetIndicators(
        sum_expected=sum_expected,
        sum_real=sum_real,
        is_over_budget=sum_real > sum_expected,
    )


def is_kanban_locked(project: Optional[Project], area_count: int) -> bool:
    """'macro' projects keep the kanban locked until they have two Areas."""
    return bool(project) and project.mode == "macro" and area_count < MACRO_MIN_AREAS


def group_by_status(tasks: Sequence[Task]) -> Dict[str, List[Task]]:
    """Kanban columns in workflow order: todo, doing, done."""
    columns: Dict[str, List[Task]] = {s.value: [] for s in Status}
    for task in tasks:
        columns[task.status.value].append(task)
    return columns


def build_dashboard(
    project: Project,
    tasks: Sequence[Task],
    area_count: int = 0,
    today: Optional[date] = None,
) -> Dashboard:
    """
    Compute every indicator of a project in one pass.

    Parameters
    ----------
    project : Project
        Project being measured
    tasks : Sequence[Task]
        Full project task set (not scope-filtered)
    area_count : int
        Number of Areas, for the kanban lock
    today : Optional[date]
        Reference day for deadline checks

    Returns
    -------
    Dashboard
        Snapshot with all indicators
    """
    start = datetime.now(timezone.utc)
    dashboard = Dashboard(
        project_id=project.id,
        project_name=project.name,
        timestamp=start,
        total_tasks=len(tasks),
        progress=compute_progress(tasks),
        points=compute_points(tasks),
        deadlines=compute_deadline_indicators(project, tasks, today),
        budget=compute_budget_indicators(tasks),
        area_count=area_count,
        kanban_locked=is_kanban_locked(project, area_count),
    )
    elapsed_ms = (datetime.now(timezone.utc) - start).total_seconds() * 1000
    logger.debug(
        f"Dashboard for project {project.id} computed in {elapsed_ms:.1f}ms: "
        f"{len(tasks)} tasks, {dashboard.progress.progress_percent}% done"
    )
    return dashboard
