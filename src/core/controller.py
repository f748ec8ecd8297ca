"""
Project controller: the single owner of one open project's state.

The controller ties the core together. Every user action is one async
handler that:

1. validates/normalizes input (nothing external happens on bad input)
2. awaits the external collaborator call, with a timeout
3. only on success, updates the in-memory hierarchy / task set
4. publishes an Event carrying what the UI needs to re-render

Concurrency: one event loop, no locks. Two sessions editing the same task
race and the last write observed by the store wins; projects are
single-user in practice.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
)

from src.core.aggregator import build_dashboard, group_by_status, is_kanban_locked, task_points
from src.core.collaborators import IdentityProvider, KeyValueStore, Persistence, Result
from src.core.errors import ExternalFailure, NotFoundError, ValidationError
from src.core.hierarchy import CascadeResult, HierarchyStore
from src.core.ledger import PointsLedger
from src.core.normalizer import (
    build_hierarchy_payload,
    build_project_payload,
    build_task_payload,
    normalize_status,
    normalize_weight,
)
from src.core.scope import EMPTY_SELECTION, ScopeResolver, ScopeSelection
from src.core.store import (
    HIERARCHY_CHANGED,
    SCOPE_CHANGED,
    TASK_SET_CHANGED,
    Area,
    Corner,
    Dashboard,
    Event,
    Project,
    Scope,
    ScopeType,
    Status,
    SubArea,
    Task,
    serialize_tasks,
)
from src.core.workflow import Direction, check_transition, next_status

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0
LAST_PROJECT_KEY = "last_opened_project"

Listener = Callable[[Event], None]


async def call_external(
    call: Awaitable[Result[T]],
    action: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    missing: Optional[Tuple[str, str]] = None,
) -> T:
    """
    Await a collaborator call and unwrap its Result.

    Parameters
    ----------
    call : Awaitable[Result]
        Pending collaborator call
    action : str
        What is being done, for messages ("create the area")
    timeout : float
        Seconds before giving up
    missing : Optional[Tuple[str, str]]
        ``(entity, id)`` reported when the store says the entity is gone

    Returns
    -------
    Any
        The result data

    Raises
    ------
    NotFoundError
        When the store reports the entity missing and ``missing`` is given
    ExternalFailure
        On any other error result, or on timeout
    """
    try:
        result = await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError:
        logger.error(f"Timed out after {timeout}s trying to {action}")
        raise ExternalFailure(f"Timed out trying to {action}. Please retry.", "timeout")
    if result.ok:
        return result.data  # type: ignore[return-value]
    if result.not_found and missing is not None:
        raise NotFoundError(missing[0], missing[1])
    logger.error(f"Could not {action}: {result.error}")
    raise ExternalFailure(f"Could not {action}. Please retry.", cause=result.error)


async def gather_or_cancel(*calls: Awaitable[T]) -> List[T]:
    """
    Run calls concurrently; on the first failure cancel the rest and re-raise.

    Siblings are awaited after cancellation so no task is left running
    unobserved once the error propagates.
    """
    tasks = [asyncio.ensure_future(c) for c in calls]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass
class TaskChange:
    """
    Outcome of a task update or status move.

    Parameters
    ----------
    task : Task
        Task as stored after the change
    points_awarded : Optional[int]
        Completion bonus applied by this change, if any
    warning : Optional[str]
        Non-fatal problem the user must see (e.g. points not applied)
    """

    task: Task
    points_awarded: Optional[int] = None
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "points_awarded": self.points_awarded,
            "warning": self.warning,
        }


class ProjectCatalog:
    """Project list/create/delete, independent of any open project."""

    def __init__(
        self,
        persistence: Persistence,
        store: KeyValueStore,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.persistence = persistence
        self.store = store
        self.timeout = timeout

    async def list_projects(self) -> List[Project]:
        records = await call_external(
            self.persistence.projects.list_by_parent(""), "load projects", self.timeout
        )
        projects = [Project.from_dict(r) for r in records]
        # Most recent first
        projects.sort(
            key=lambda p: p.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return projects

    async def create_project(self, raw: Mapping[str, Any]) -> Project:
        payload = build_project_payload(raw)
        record = await call_external(
            self.persistence.projects.create(payload), "create the project", self.timeout
        )
        project = Project.from_dict(record)
        logger.info(f"Created project {project.id}: {project.name}")
        return project

    async def delete_project(self, project_id: str) -> None:
        await call_external(
            self.persistence.projects.delete(project_id),
            "delete the project",
            self.timeout,
            missing=("Project", project_id),
        )
        if self.last_opened_project_id() == str(project_id):
            self.store.set(LAST_PROJECT_KEY, "")
        logger.info(f"Deleted project {project_id}")

    def last_opened_project_id(self) -> Optional[str]:
        return self.store.get(LAST_PROJECT_KEY) or None


class ProjectController:
    """
    Owner of the state of one open project.

    State: the Project, its HierarchyStore, the ScopeResolver selection and
    the full project task set. Nothing else mutates them.
    """

    def __init__(
        self,
        persistence: Persistence,
        identity: IdentityProvider,
        store: KeyValueStore,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize a controller with no project open.

        Parameters
        ----------
        persistence : Persistence
            CRUD collaborator
        identity : IdentityProvider
            Supplies the acting user for the points ledger
        store : KeyValueStore
            Durable key/value storage (ledger, last opened project)
        timeout : float
            Seconds allowed for each external call
        today : Optional[Callable[[], date]]
            Clock for deadline indicators (defaults to UTC today)
        """
        self.persistence = persistence
        self.identity = identity
        self.store = store
        self.timeout = timeout
        self.today = today or (lambda: datetime.now(timezone.utc).date())
        self.ledger = PointsLedger(store)

        self.project: Optional[Project] = None
        self.hierarchy = HierarchyStore("")
        self.scope = ScopeResolver(self.hierarchy)
        self.project_tasks: List[Task] = []
        self._listeners: List[Listener] = []

    # --------------------------------------------------------------- events

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register an event listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: str, data: Dict[str, Any]) -> Event:
        event = Event(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            event_type=event_type,
            project_id=self.project.id if self.project else None,
            data=data,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener failed on {event_type}: {e}", exc_info=True)
        return event

    def _emit_scope_changed(self) -> Event:
        scope_filter = self.scope.current_scope_filter()
        return self._emit(
            SCOPE_CHANGED,
            {
                "selection": self.scope.selection.to_dict(),
                "label": self.scope.label(),
                "filter": {
                    "scope_type": scope_filter.scope_type.value if scope_filter.scope_type else None,
                    "scope_id": scope_filter.scope_id,
                },
                "scoped_tasks": serialize_tasks(self.scoped_tasks()),
            },
        )

    def _emit_hierarchy_changed(
        self, action: str, cascade: Optional[CascadeResult] = None
    ) -> Event:
        return self._emit(
            HIERARCHY_CHANGED,
            {
                "action": action,
                "hierarchy": self.hierarchy.to_dict(),
                "removed": cascade.to_dict() if cascade else None,
                "kanban_locked": is_kanban_locked(self.project, len(self.hierarchy.areas)),
            },
        )

    def _emit_task_set_changed(self, reason: str) -> Event:
        return self._emit(
            TASK_SET_CHANGED,
            {
                "reason": reason,
                "tasks": serialize_tasks(self.project_tasks),
                "scoped_tasks": serialize_tasks(self.scoped_tasks()),
                "dashboard": self.dashboard().to_dict(),
            },
        )

    # ---------------------------------------------------------------- state

    def _require_project(self) -> Project:
        if self.project is None:
            raise ValidationError("Open a project first", "no_project")
        return self.project

    async def _call(
        self,
        call: Awaitable[Result[T]],
        action: str,
        missing: Optional[Tuple[str, str]] = None,
    ) -> T:
        return await call_external(call, action, self.timeout, missing)

    def scoped_tasks(self) -> List[Task]:
        """Tasks attached to the selected node; empty when nothing is selected."""
        scope_filter = self.scope.current_scope_filter()
        return [t for t in self.project_tasks if scope_filter.matches(t)]

    def tasks_in_area(self, area_id: str) -> List[Task]:
        """Tasks anywhere under an Area, via the denormalized ``area_id``."""
        return [t for t in self.project_tasks if t.area_id == str(area_id)]

    def dashboard(self) -> Dashboard:
        """Indicators over the whole project task set."""
        project = self._require_project()
        return build_dashboard(
            project, self.project_tasks, len(self.hierarchy.areas), today=self.today()
        )

    def kanban(self) -> Dict[str, Any]:
        """Scoped tasks grouped into status columns."""
        project = self._require_project()
        scope_filter = self.scope.current_scope_filter()
        columns = group_by_status(self.scoped_tasks())
        return {
            "scope_label": self.scope.label(),
            "has_scope": not scope_filter.is_empty,
            "locked": is_kanban_locked(project, len(self.hierarchy.areas)),
            "columns": {status: serialize_tasks(tasks) for status, tasks in columns.items()},
        }

    # ---------------------------------------------------------------- loads

    async def open_project(self, project_id: str) -> Project:
        """
        Load a project with its hierarchy and tasks, and remember it.

        Raises
        ------
        NotFoundError
            When the project does not exist
        ExternalFailure
            When any load fails; the previous state is kept in that case
        """
        record = await self._call(
            self.persistence.projects.get_by_id(project_id),
            "load the project",
            missing=("Project", project_id),
        )
        project = Project.from_dict(record)

        hierarchy = HierarchyStore(project.id)
        await self._hydrate(hierarchy)
        task_records = await self._call(
            self.persistence.tasks.list_by_project(project.id), "load tasks"
        )

        self.project = project
        self.hierarchy = hierarchy
        self.scope = ScopeResolver(hierarchy)
        self.scope.bootstrap()
        self.project_tasks = self._tasks_from_records(task_records)
        self.store.set(LAST_PROJECT_KEY, project.id)

        logger.info(
            f"Opened project {project.id}: {len(hierarchy.areas)} areas, "
            f"{len(self.project_tasks)} tasks"
        )
        self._emit_hierarchy_changed("load")
        self._emit_scope_changed()
        self._emit_task_set_changed("load")
        return project

    async def _hydrate(self, hierarchy: HierarchyStore) -> None:
        """
        Two-level breadth-first load: Areas, then all SubAreas concurrently,
        then all Corners concurrently. A failed fetch cancels its siblings and
        leaves ``hierarchy`` untouched.
        """
        project_id = hierarchy.project_id
        area_records = await self._call(
            self.persistence.areas.list_by_parent(project_id), "load areas"
        )
        areas = [Area.from_dict(r) for r in area_records]

        sub_area_batches = await gather_or_cancel(
            *[
                self._call(self.persistence.sub_areas.list_by_parent(a.id), "load sub-areas")
                for a in areas
            ]
        )
        sub_areas = [SubArea.from_dict(r) for batch in sub_area_batches for r in batch]

        corner_batches = await gather_or_cancel(
            *[
                self._call(self.persistence.corners.list_by_parent(s.id), "load corners")
                for s in sub_areas
            ]
        )
        corners = [Corner.from_dict(r) for batch in corner_batches for r in batch]

        hierarchy.load(areas, sub_areas, corners)

    async def reload_hierarchy(self) -> None:
        """Re-read the hierarchy from the store (the source of truth)."""
        project = self._require_project()
        hierarchy = HierarchyStore(project.id)
        await self._hydrate(hierarchy)
        self.hierarchy = hierarchy
        self.scope.hierarchy = hierarchy
        scope_changed = self.scope.reconcile()
        self._emit_hierarchy_changed("load")
        if scope_changed:
            self._emit_scope_changed()

    async def load_tasks(self) -> List[Task]:
        """Re-read the project task set and drop tasks whose scope is gone."""
        project = self._require_project()
        records = await self._call(
            self.persistence.tasks.list_by_project(project.id), "load tasks"
        )
        self.project_tasks = self._tasks_from_records(records)
        self._emit_task_set_changed("load")
        return self.project_tasks

    def _task_from_record(self, record: Mapping[str, Any]) -> Optional[Task]:
        status = normalize_status(record.get("status"))
        weight = normalize_weight(record.get("weight"))
        if status is None or weight is None:
            logger.warning(
                f"Task {record.get('id')} has non-canonical status/weight "
                f"({record.get('status')!r}, {record.get('weight')!r}); defaulting"
            )
        data = {
            **record,
            "status": (status or Status.TODO).value,
            "weight": (weight.value if weight else "medium"),
        }
        try:
            task = Task.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipping malformed task record {record.get('id')}: {e}")
            return None

        try:
            area_id = self.hierarchy.area_id_for(task.scope)
        except NotFoundError:
            logger.warning(
                f"Dropping task {task.id}: scope {task.scope_type.value}:{task.scope_id} no longer exists"
            )
            return None
        if task.area_id != area_id:
            if task.area_id:
                logger.warning(f"Task {task.id} area_id drifted ({task.area_id} -> {area_id})")
            task = replace(task, area_id=area_id)
        return task

    def _tasks_from_records(self, records: List[Mapping[str, Any]]) -> List[Task]:
        tasks = []
        for record in records:
            task = self._task_from_record(record)
            if task is not None:
                tasks.append(task)
        return tasks

    # ---------------------------------------------------------------- scope

    def select_scope(
        self,
        scope_type: Any,
        area_id: Optional[str] = None,
        sub_area_id: Optional[str] = None,
        corner_id: Optional[str] = None,
    ) -> ScopeSelection:
        """
        Change the current selection.

        Raises
        ------
        ValidationError
            For an unknown scope type or inconsistent ids
        NotFoundError
            For ids not present in the hierarchy
        """
        self._require_project()
        try:
            kind = ScopeType(scope_type)
        except ValueError:
            raise ValidationError(f"Invalid scope type: {scope_type!r}", "invalid_scope")
        selection = self.scope.select(kind, area_id, sub_area_id, corner_id)
        self._emit_scope_changed()
        return selection

    # ------------------------------------------------------------ hierarchy

    def _apply_cascade(self, cascade: CascadeResult, action: str) -> None:
        before = len(self.project_tasks)
        self.project_tasks = [t for t in self.project_tasks if not cascade.covers(t)]
        dropped = before - len(self.project_tasks)
        scope_changed = self.scope.reconcile()
        self._emit_hierarchy_changed(action, cascade)
        if scope_changed:
            self._emit_scope_changed()
        if dropped:
            logger.info(f"{action}: dropped {dropped} tasks with the removed nodes")
        self._emit_task_set_changed(action)

    async def create_area(self, raw: Mapping[str, Any]) -> Area:
        project = self._require_project()
        payload = build_hierarchy_payload("area", raw)
        payload["project_id"] = project.id
        record = await self._call(self.persistence.areas.create(payload), "create the area")
        area = self.hierarchy.create_area(Area.from_dict(record))
        self._emit_hierarchy_changed("create_area")
        if not self.scope.selection.area_id:
            self.scope.select(ScopeType.AREA, area.id)
            self._emit_scope_changed()
        return area

    async def create_sub_area(self, area_id: str, raw: Mapping[str, Any]) -> SubArea:
        self._require_project()
        area = self.hierarchy.get_area(area_id)
        payload = build_hierarchy_payload("sub_area", raw)
        payload["area_id"] = area.id
        record = await self._call(
            self.persistence.sub_areas.create(payload), "create the sub-area"
        )
        sub_area = self.hierarchy.create_sub_area(SubArea.from_dict(record))
        self._emit_hierarchy_changed("create_sub_area")
        return sub_area

    async def create_corner(self, sub_area_id: str, raw: Mapping[str, Any]) -> Corner:
        self._require_project()
        sub_area = self.hierarchy.get_sub_area(sub_area_id)
        payload = build_hierarchy_payload("corner", raw)
        payload["sub_area_id"] = sub_area.id
        record = await self._call(self.persistence.corners.create(payload), "create the corner")
        corner = self.hierarchy.create_corner(Corner.from_dict(record))
        self._emit_hierarchy_changed("create_corner")
        return corner

    async def _update_node(self, kind: str, node_id: str, raw: Mapping[str, Any]) -> Any:
        self._require_project()
        getter, updater, deleter, gateway, label = self._node_ops(kind)
        entity = getter(node_id)
        self.hierarchy.check_patch(entity, raw)
        patch = build_hierarchy_payload(kind, raw, "update")  # type: ignore[arg-type]
        if not patch:
            raise ValidationError("Nothing to update", "empty_patch")
        try:
            record = await self._call(
                gateway.update(entity.id, patch), f"update the {label}", missing=(label, entity.id)
            )
        except NotFoundError:
            self._apply_cascade(deleter(entity.id), f"reconcile_{kind}")
            raise
        updated = updater(entity.id, {k: record.get(k) for k in patch})
        self._emit_hierarchy_changed(f"update_{kind}")
        if self.scope.selection != EMPTY_SELECTION:
            self._emit_scope_changed()
        return updated

    async def _delete_node(self, kind: str, node_id: str) -> CascadeResult:
        self._require_project()
        getter, _, deleter, gateway, label = self._node_ops(kind)
        entity = getter(node_id)
        try:
            await self._call(
                gateway.delete(entity.id), f"delete the {label}", missing=(label, entity.id)
            )
        except NotFoundError:
            logger.warning(f"{label} {entity.id} was already deleted in the store")
        cascade = deleter(entity.id)
        self._apply_cascade(cascade, f"delete_{kind}")
        # The store is the source of truth for what its own cascade removed
        try:
            await self.load_tasks()
        except ExternalFailure as e:
            logger.warning(f"Task reload after deleting {label} {entity.id} failed: {e.message}")
        return cascade

    def _node_ops(self, kind: str) -> Tuple[Any, Any, Any, Any, str]:
        h = self.hierarchy
        p = self.persistence
        if kind == "area":
            return h.get_area, h.update_area, h.delete_area, p.areas, "Area"
        if kind == "sub_area":
            return h.get_sub_area, h.update_sub_area, h.delete_sub_area, p.sub_areas, "SubArea"
        if kind == "corner":
            return h.get_corner, h.update_corner, h.delete_corner, p.corners, "Corner"
        raise ValueError(f"Unknown hierarchy kind: {kind}")

    async def update_area(self, area_id: str, raw: Mapping[str, Any]) -> Area:
        return await self._update_node("area", area_id, raw)

    async def update_sub_area(self, sub_area_id: str, raw: Mapping[str, Any]) -> SubArea:
        return await self._update_node("sub_area", sub_area_id, raw)

    async def update_corner(self, corner_id: str, raw: Mapping[str, Any]) -> Corner:
        return await self._update_node("corner", corner_id, raw)

    async def delete_area(self, area_id: str) -> CascadeResult:
        """Delete an Area with its SubAreas, Corners and their tasks."""
        return await self._delete_node("area", area_id)

    async def delete_sub_area(self, sub_area_id: str) -> CascadeResult:
        return await self._delete_node("sub_area", sub_area_id)

    async def delete_corner(self, corner_id: str) -> CascadeResult:
        return await self._delete_node("corner", corner_id)

    # ---------------------------------------------------------------- tasks

    def get_task(self, task_id: str) -> Task:
        for task in self.project_tasks:
            if task.id == str(task_id):
                return task
        raise NotFoundError("Task", task_id)

    def _replace_task(self, task: Task) -> None:
        self.project_tasks = [task if t.id == task.id else t for t in self.project_tasks]

    def _drop_task(self, task_id: str, reason: str) -> None:
        self.project_tasks = [t for t in self.project_tasks if t.id != str(task_id)]
        self._emit_task_set_changed(reason)

    async def create_task(self, raw: Mapping[str, Any]) -> Task:
        """
        Create a task attached to the current scope (or to an explicit
        ``scope_type``/``scope_id`` in ``raw``).

        Raises
        ------
        ValidationError
            Missing title, no scope chosen, invalid status/weight
        NotFoundError
            The scope node no longer exists (the selection is narrowed)
        ExternalFailure
            The store rejected or did not answer
        """
        project = self._require_project()
        if raw.get("scope_id"):
            try:
                scope = Scope(ScopeType(raw.get("scope_type") or "area"), str(raw["scope_id"]))
            except ValueError:
                raise ValidationError(
                    f"Invalid scope_type: {raw.get('scope_type')!r}", "invalid_scope"
                )
        else:
            scope = self.scope.current_scope()

        try:
            area_id = self.scope.validate_scope(scope)
        except NotFoundError:
            if self.scope.reconcile():
                self._emit_scope_changed()
            raise

        payload = build_task_payload(
            {
                **raw,
                "project_id": project.id,
                "scope_type": scope.type.value,
                "scope_id": scope.id,
                "area_id": area_id,
            },
            "insert",
        )
        record = await self._call(self.persistence.tasks.create(payload), "create the task")
        task = self._task_from_record(record)
        if task is None:
            raise ExternalFailure("The store returned an unusable task. Please reload.")
        self.project_tasks.insert(0, task)
        logger.info(f"Created task {task.id} in {scope.type.value}:{scope.id}")
        self._emit_task_set_changed("create_task")
        return task

    async def _store_task_patch(self, task: Task, patch: Mapping[str, Any], action: str) -> Task:
        try:
            record = await self._call(
                self.persistence.tasks.update(task.id, dict(patch)),
                action,
                missing=("Task", task.id),
            )
        except NotFoundError:
            self._drop_task(task.id, "reconcile_task")
            raise
        stored = self._task_from_record(record)
        if stored is None:
            # Scope vanished under the task
            self._drop_task(task.id, "reconcile_task")
            raise NotFoundError("Task", task.id, "The task's location no longer exists")
        self._replace_task(stored)
        return stored

    async def update_task(self, task_id: str, raw: Mapping[str, Any]) -> TaskChange:
        """
        Patch editable task fields.

        A status change inside the patch must be a legal single-step
        transition, and a done task must keep both photos.
        """
        self._require_project()
        task = self.get_task(task_id)
        patch = build_task_payload(raw, "update")
        if not patch:
            raise ValidationError("Nothing to update", "empty_patch")

        merged = replace(
            task,
            has_photo_before=patch.get("has_photo_before", task.has_photo_before),
            has_photo_after=patch.get("has_photo_after", task.has_photo_after),
        )
        target = Status(patch["status"]) if "status" in patch else task.status
        if target is not task.status:
            check_transition(merged, target)
        else:
            patch.pop("status", None)
        if target is Status.DONE and not merged.has_photos:
            raise ValidationError("A done task must keep both photos", "photos_required")

        stored = await self._store_task_patch(task, patch, "update the task")
        change = TaskChange(stored)
        if task.status is not Status.DONE and stored.status is Status.DONE:
            await self._award_points(stored, change)
        self._emit_task_set_changed("update_task")
        return change

    async def move_task(self, task_id: str, direction: Direction) -> TaskChange:
        """
        Move a task one column left/right in the workflow.

        Entering done needs both photos and awards the completion bonus once.
        """
        self._require_project()
        task = self.get_task(task_id)
        target = check_transition(task, next_status(task.status, direction))
        stored = await self._store_task_patch(task, {"status": target.value}, "move the task")
        change = TaskChange(stored)
        if stored.status is Status.DONE:
            await self._award_points(stored, change)
        self._emit_task_set_changed("status_change")
        return change

    async def set_task_photos(
        self, task_id: str, before: bool = False, after: bool = False
    ) -> Task:
        """Mark before/after photos as present; flags already set stay set."""
        self._require_project()
        task = self.get_task(task_id)
        patch = {
            "has_photo_before": bool(before) or task.has_photo_before,
            "has_photo_after": bool(after) or task.has_photo_after,
        }
        stored = await self._store_task_patch(task, patch, "save the photos")
        self._emit_task_set_changed("photos")
        return stored

    async def delete_task(self, task_id: str) -> None:
        self._require_project()
        task = self.get_task(task_id)
        try:
            await self._call(
                self.persistence.tasks.delete(task.id), "delete the task", missing=("Task", task.id)
            )
        except NotFoundError:
            logger.warning(f"Task {task.id} was already deleted in the store")
        self._drop_task(task.id, "delete_task")

    # --------------------------------------------------------------- points

    async def _apply_points(self, user_id: str, delta: int) -> Result[int]:
        try:
            return await asyncio.wait_for(
                self.persistence.add_lifetime_points(user_id, delta), self.timeout
            )
        except asyncio.TimeoutError:
            return Result.failure(f"timed out after {self.timeout}s")

    async def _award_points(self, task: Task, change: TaskChange) -> None:
        project = self._require_project()
        user_id = self.identity.current_user_id()
        if not user_id:
            logger.info(f"No signed-in user; no points for task {task.id}")
            return
        delta = task_points(task)
        if not delta:
            return
        try:
            change.points_awarded = await self.ledger.award(
                user_id, project.id, task.id, delta, self._apply_points
            )
        except ExternalFailure as e:
            change.warning = e.message
