"""
Data Models for the Renovation Tracker.

This module defines the entities of the scope hierarchy
(Project -> Area -> SubArea -> Corner), the Task attached to exactly one node
of that hierarchy, and the computed indicator records returned by the
aggregator.

Key principles:
- Status and weight are closed enums; free-form synonyms never get this far
- ALL timestamps must be timezone-aware (UTC)
- Indicators are computed live from the task set and never stored on Project
- Records round-trip through plain dicts (``from_dict`` / ``to_dict``) so the
  persistence collaborator only ever sees JSON-compatible data
"""

import json
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Status(str, Enum):
    """Task workflow status, in workflow order."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"


class Weight(str, Enum):
    """Task effort classification."""

    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class ScopeType(str, Enum):
    """Hierarchy level a task can be attached to."""

    AREA = "area"
    SUB_AREA = "sub_area"
    CORNER = "corner"


# Event types published by the controller
SCOPE_CHANGED = "scope_changed"
HIERARCHY_CHANGED = "hierarchy_changed"
TASK_SET_CHANGED = "task_set_changed"


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date (or datetime) string; empty and invalid values give None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse timestamp string to timezone-aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            return None
    if ts.tzinfo is None:
        # Naive timestamps are treated as UTC
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if hasattr(value, "__dataclass_fields__"):
        return {f.name: _serialize(getattr(value, f.name)) for f in fields(value)}
    return value


def _str_id(value: Any) -> Optional[str]:
    return None if value is None or value == "" else str(value)


def _money(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class _Record:
    """Dict conversion shared by the entity dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert entity to JSON-serializable dictionary.

        Returns
        -------
        dict
            JSON-serializable representation
        """
        return _serialize(self)


def _check_tz(owner: str, name: str, value: Optional[datetime]) -> None:
    if value is not None and value.tzinfo is None:
        raise ValueError(f"{owner}: {name} must be timezone-aware")


@dataclass
class Project(_Record):
    """
    A renovation project, owner of the Areas.

    Parameters
    ----------
    id : str
        Unique project identifier
    name : str
        Project name
    home_type : str
        Kind of home (e.g. 'apartment')
    mode : str
        Planning mode; 'macro' projects need two Areas before the kanban unlocks
    start_date : Optional[date]
        Planned start
    end_date : Optional[date]
        Planned end; tasks due after it are counted as beyond the end
    budget_expected : float
        Budget the user planned
    budget_real : float
        Budget value the user entered by hand (indicators never write it)
    cover_url : Optional[str]
        Cover image reference
    created_at : Optional[datetime]
        Creation time (timezone-aware UTC if set)
    """

    id: str
    name: str
    home_type: str = "apartment"
    mode: str = "macro"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget_expected: float = 0.0
    budget_real: float = 0.0
    cover_url: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamp."""
        _check_tz(f"Project {self.id}", "created_at", self.created_at)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            home_type=data.get("home_type") or "apartment",
            mode=data.get("mode") or "macro",
            start_date=parse_date(data.get("start_date")),
            end_date=parse_date(data.get("end_date")),
            budget_expected=_money(data.get("budget_expected")),
            budget_real=_money(data.get("budget_real")),
            cover_url=data.get("cover_url"),
            created_at=parse_timestamp(data.get("created_at")),
        )


@dataclass
class Area(_Record):
    """
    A room of a project (e.g. "Kitchen").

    Parameters
    ----------
    id : str
        Unique area identifier
    project_id : str
        Owning project
    name : str
        Area name
    kind : str
        Room kind (e.g. 'kitchen', 'bathroom')
    cover_url : Optional[str]
        Cover image reference
    """

    id: str
    project_id: str
    name: str
    kind: str = ""
    cover_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Area":
        return cls(
            id=str(data["id"]),
            project_id=str(data["project_id"]),
            name=data.get("name", ""),
            kind=data.get("kind") or "",
            cover_url=data.get("cover_url"),
        )


@dataclass
class SubArea(_Record):
    """A named subdivision of an Area (e.g. "Counter")."""

    id: str
    area_id: str
    name: str
    description: Optional[str] = None
    cover_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubArea":
        return cls(
            id=str(data["id"]),
            area_id=str(data["area_id"]),
            name=data.get("name", ""),
            description=data.get("description"),
            cover_url=data.get("cover_url"),
        )


@dataclass
class Corner(_Record):
    """The finest-grained location, nested in a SubArea. Owns no children."""

    id: str
    sub_area_id: str
    name: str
    description: Optional[str] = None
    cover_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Corner":
        return cls(
            id=str(data["id"]),
            sub_area_id=str(data["sub_area_id"]),
            name=data.get("name", ""),
            description=data.get("description"),
            cover_url=data.get("cover_url"),
        )


@dataclass(frozen=True)
class Scope:
    """
    Exactly one hierarchy node a task is attached to.

    Parameters
    ----------
    type : ScopeType
        Level of the node
    id : str
        Id of the Area, SubArea or Corner
    """

    type: ScopeType
    id: str


@dataclass(frozen=True)
class ScopeFilter:
    """
    Filter produced by the scope resolver.

    Both fields are None when nothing is selected.
    """

    scope_type: Optional[ScopeType] = None
    scope_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.scope_type is None or not self.scope_id

    def as_scope(self) -> Optional[Scope]:
        if self.is_empty:
            return None
        assert self.scope_type is not None and self.scope_id is not None
        return Scope(self.scope_type, self.scope_id)

    def matches(self, task: "Task") -> bool:
        """True when the task is attached to exactly the selected node."""
        return (
            not self.is_empty
            and task.scope_type == self.scope_type
            and task.scope_id == self.scope_id
        )


@dataclass
class Task(_Record):
    """
    A unit of renovation work attached to one hierarchy node.

    Parameters
    ----------
    id : str
        Unique task identifier
    project_id : str
        Owning project
    area_id : str
        Area transitively containing the scope node (denormalized)
    scope_type : ScopeType
        Level of the node the task is attached to
    scope_id : str
        Id of the node the task is attached to
    title : str
        Non-empty, trimmed title
    description : Optional[str]
        Free text
    status : Status
        Workflow status
    weight : Weight
        Effort classification
    task_type : Optional[str]
        Free-form category shown on the kanban card
    due_date : Optional[date]
        Deadline
    cost_expected : float
        Planned cost
    cost_real : float
        Actual cost
    has_photo_before : bool
        A "before" photo was recorded
    has_photo_after : bool
        An "after" photo was recorded
    created_at : Optional[datetime]
        Creation time (timezone-aware UTC if set)
    """

    id: str
    project_id: str
    area_id: str
    scope_type: ScopeType
    scope_id: str
    title: str
    description: Optional[str] = None
    status: Status = Status.TODO
    weight: Weight = Weight.MEDIUM
    task_type: Optional[str] = None
    due_date: Optional[date] = None
    cost_expected: float = 0.0
    cost_real: float = 0.0
    has_photo_before: bool = False
    has_photo_after: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamp."""
        _check_tz(f"Task {self.id}", "created_at", self.created_at)

    @property
    def scope(self) -> Scope:
        return Scope(self.scope_type, self.scope_id)

    @property
    def has_photos(self) -> bool:
        return bool(self.has_photo_before) and bool(self.has_photo_after)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """
        Build a task from a storage record.

        ``status`` and ``weight`` must already be canonical enum values;
        ``ValueError`` is raised otherwise.
        """
        return cls(
            id=str(data["id"]),
            project_id=str(data["project_id"]),
            area_id=_str_id(data.get("area_id")) or "",
            scope_type=ScopeType(data.get("scope_type") or "area"),
            scope_id=str(data["scope_id"]),
            title=data.get("title", ""),
            description=data.get("description"),
            status=Status(data.get("status") or "todo"),
            weight=Weight(data.get("weight") or "medium"),
            task_type=data.get("task_type"),
            due_date=parse_date(data.get("due_date")),
            cost_expected=_money(data.get("cost_expected")),
            cost_real=_money(data.get("cost_real")),
            has_photo_before=bool(data.get("has_photo_before")),
            has_photo_after=bool(data.get("has_photo_after")),
            created_at=parse_timestamp(data.get("created_at")),
        )


@dataclass
class Progress:
    """
    Weighted completion of a task collection.

    Parameters
    ----------
    W : int
        Total weight of the collection
    progress_percent : float
        Done weight over total weight, 0.0-100.0 with one decimal
    """

    W: int
    progress_percent: float


@dataclass
class DeadlineIndicators:
    """Counts of late tasks; tasks without a due date are ignored."""

    overdue_count: int
    beyond_end_count: int


@dataclass
class BudgetIndicators:
    """Live cost totals of a task collection."""

    sum_expected: float
    sum_real: float
    is_over_budget: bool


@dataclass
class Event:
    """
    Notification published to the UI layer after a state change.

    Parameters
    ----------
    id : str
        Unique event identifier
    timestamp : datetime
        When event occurred (must be timezone-aware UTC)
    event_type : str
        One of ``scope_changed``, ``hierarchy_changed``, ``task_set_changed``
    project_id : Optional[str]
        Project the event belongs to
    data : Dict[str, Any]
        Everything the UI needs to re-render without re-querying
    """

    id: str
    timestamp: datetime
    event_type: str
    project_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamp."""
        if self.timestamp.tzinfo is None:
            raise ValueError(f"Event {self.id}: timestamp must be timezone-aware")

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class Dashboard:
    """
    Indicator snapshot of one project, computed from its full task set.

    Parameters
    ----------
    project_id : str
        Project the indicators belong to
    project_name : str
        Project name (embedded for display)
    timestamp : datetime
        When the snapshot was computed (timezone-aware UTC)
    total_tasks : int
        Number of tasks in the project
    progress : Progress
        Weighted completion
    points : int
        Gamification points earned by done tasks with both photos
    deadlines : DeadlineIndicators
        Overdue / beyond-end counts
    budget : BudgetIndicators
        Expected vs real cost totals
    area_count : int
        Number of Areas in the project
    kanban_locked : bool
        True for 'macro' projects with fewer than two Areas
    """

    project_id: str
    project_name: str
    timestamp: datetime
    total_tasks: int
    progress: Progress
    points: int
    deadlines: DeadlineIndicators
    budget: BudgetIndicators
    area_count: int = 0
    kanban_locked: bool = False

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamp."""
        if self.timestamp.tzinfo is None:
            raise ValueError("Dashboard timestamp must be timezone-aware")

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert dashboard to JSON-serializable dictionary.

        Returns
        -------
        dict
            JSON-serializable representation
        """
        return _serialize(self)

    def to_json(self) -> str:
        """
        Convert dashboard to JSON string.

        Returns
        -------
        str
            JSON string representation
        """
        return json.dumps(self.to_dict(), indent=2)


def serialize_tasks(tasks: List[Task]) -> List[Dict[str, Any]]:
    """Serialize a task list for event payloads and HTTP responses."""
    return [t.to_dict() for t in tasks]
