"""
Integration tests for the project controller.

The controller runs against the JSON-file persistence seeded in conftest:
project p1 with Kitchen (a1) -> Counter (s1) -> Sink (c1) and Bathroom (a2).
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.core.collaborators import Result
from src.core.controller import ProjectCatalog
from src.core.errors import ExternalFailure, NotFoundError, ValidationError
from src.core.scope import EMPTY_SELECTION, ScopeSelection
from src.core.store import HIERARCHY_CHANGED, SCOPE_CHANGED, TASK_SET_CHANGED, ScopeType, Status


def run(coro):
    return asyncio.run(coro)


def add_task(controller, scope_type="area", scope_id="a1", **fields):
    raw = {"title": "Replace faucet", "scope_type": scope_type, "scope_id": scope_id}
    raw.update(fields)
    return run(controller.create_task(raw))


class TestOpenProject:
    def test_hydrates_hierarchy_and_selects_first_area(self, controller):
        assert [a.id for a in controller.hierarchy.areas] == ["a1", "a2"]
        assert controller.hierarchy.find_corner("c1") is not None
        assert controller.scope.selection == ScopeSelection(ScopeType.AREA, "a1")

    def test_remembers_last_opened_project(self, controller, kv_store):
        assert kv_store.get("last_opened_project") == "p1"

    def test_missing_project(self, controller):
        with pytest.raises(NotFoundError):
            run(controller.open_project("p404"))
        assert controller.project.id == "p1", "A failed open keeps the current project"

    def test_load_normalizes_and_drops_dangling_tasks(self, controller, persistence):
        persistence.data["tasks"]["legacy"] = {
            "id": "legacy", "project_id": "p1", "area_id": "a1", "scope_type": "area",
            "scope_id": "a1", "title": "Old", "status": "Em andamento", "weight": "???",
        }
        persistence.data["tasks"]["dangling"] = {
            "id": "dangling", "project_id": "p1", "area_id": "a1", "scope_type": "corner",
            "scope_id": "c404", "title": "Lost", "status": "todo", "weight": "light",
        }

        tasks = run(controller.load_tasks())

        assert [t.id for t in tasks] == ["legacy"]
        assert tasks[0].status is Status.DOING
        assert tasks[0].weight.value == "medium", "Unknown weight falls back to medium"


class TestHydration:
    """Breadth-first hierarchy load: sub-areas together, then corners together."""

    @pytest.fixture
    def two_counters(self, persistence):
        """Give the Bathroom a sub-area too so each level fans out."""
        persistence.data["sub_areas"]["s2"] = {"id": "s2", "area_id": "a2", "name": "Vanity"}
        persistence.data["corners"]["c2"] = {"id": "c2", "sub_area_id": "s2", "name": "Mirror"}
        return persistence

    @staticmethod
    def recording(level, original, log):
        async def list_by_parent(parent_id):
            log.append(("start", level, parent_id))
            await asyncio.sleep(0)
            result = await original(parent_id)
            log.append(("end", level, parent_id))
            return result

        return list_by_parent

    def test_levels_load_concurrently_in_order(self, controller, two_counters):
        log = []
        sub_areas = two_counters.sub_areas
        corners = two_counters.corners
        with patch.object(sub_areas, "list_by_parent", new=self.recording("sub", sub_areas.list_by_parent, log)), \
                patch.object(corners, "list_by_parent", new=self.recording("corner", corners.list_by_parent, log)):
            run(controller.reload_hierarchy())

        def positions(kind, level):
            return [i for i, e in enumerate(log) if e[0] == kind and e[1] == level]

        assert len(positions("start", "sub")) == 2
        assert len(positions("start", "corner")) == 2
        assert max(positions("start", "sub")) < min(positions("end", "sub")), "Sub-areas load together"
        assert max(positions("end", "sub")) < min(positions("start", "corner")), "Corners wait for sub-areas"
        assert max(positions("start", "corner")) < min(positions("end", "corner")), "Corners load together"
        assert controller.hierarchy.find_corner("c2") is not None

    def test_failed_fetch_cancels_siblings(self, controller, two_counters):
        cancelled = []

        async def list_by_parent(parent_id):
            if parent_id == "a1":
                await asyncio.sleep(0)
                return Result.failure("connection reset")
            try:
                await asyncio.sleep(0.5)
            except asyncio.CancelledError:
                cancelled.append(parent_id)
                raise
            return Result.success([])

        async def reload_and_report():
            with pytest.raises(ExternalFailure):
                await controller.reload_hierarchy()
            return list(cancelled)

        with patch.object(two_counters.sub_areas, "list_by_parent", new=list_by_parent):
            cancelled_before_raise = run(reload_and_report())

        assert cancelled_before_raise == ["a2"], "Sibling fetch is cancelled before the error surfaces"
        assert controller.hierarchy.find_corner("c1") is not None, "A failed reload keeps the loaded tree"
        assert controller.hierarchy.find_corner("c2") is None


class TestScopeSelection:
    def test_select_and_filter(self, controller):
        corner_task = add_task(controller, "corner", "c1")
        add_task(controller, "area", "a1")

        controller.select_scope("corner", corner_id="c1")

        assert [t.id for t in controller.scoped_tasks()] == [corner_task.id]
        assert controller.scope.label() == "Corner · Sink (Counter)"

    def test_invalid_scope_type(self, controller):
        with pytest.raises(ValidationError) as exc_info:
            controller.select_scope("room")
        assert exc_info.value.code == "invalid_scope"

    def test_tasks_in_area_covers_descendants(self, controller):
        add_task(controller, "corner", "c1")
        add_task(controller, "sub_area", "s1")
        add_task(controller, "area", "a1")
        add_task(controller, "area", "a2")

        assert len(controller.tasks_in_area("a1")) == 3
        assert len(controller.scoped_tasks()) == 1, "Scope filter is exact, not descendant"


class TestCreateTask:
    def test_corner_task_resolves_area(self, controller):
        controller.select_scope("corner", corner_id="c1")

        task = run(controller.create_task({"title": "Seal sink", "weight": "pesado"}))

        assert task.scope_type is ScopeType.CORNER
        assert task.scope_id == "c1"
        assert task.area_id == "a1"
        assert task.weight.value == "heavy"
        assert controller.project_tasks[0].id == task.id, "New tasks are prepended"

    def test_no_scope_selected(self, controller, persistence):
        controller.scope.selection = EMPTY_SELECTION
        with pytest.raises(ValidationError) as exc_info:
            run(controller.create_task({"title": "Anything"}))
        assert exc_info.value.code == "missing_scope"
        assert persistence.data["tasks"] == {}, "Nothing is written on invalid input"

    def test_scope_deleted_elsewhere_narrows_selection(self, controller):
        controller.select_scope("corner", corner_id="c1")
        controller.hierarchy.delete_corner("c1")

        with pytest.raises(NotFoundError):
            run(controller.create_task({"title": "Seal sink"}))
        assert controller.scope.selection.type is ScopeType.SUB_AREA

    def test_store_rejection_leaves_state(self, controller):
        failing = AsyncMock(return_value=Result.failure("tasks_status_check violated"))
        with patch.object(controller.persistence.tasks, "create", new=failing):
            with pytest.raises(ExternalFailure):
                run(controller.create_task({"title": "Seal sink"}))
        assert controller.project_tasks == []

    def test_timeout_is_external_failure(self, controller):
        async def hang(payload):
            await asyncio.sleep(1)
            return Result.success(dict(payload))

        controller.timeout = 0.01
        with patch.object(controller.persistence.tasks, "create", new=hang):
            with pytest.raises(ExternalFailure) as exc_info:
                run(controller.create_task({"title": "Seal sink"}))
        assert exc_info.value.code == "timeout"
        assert controller.project_tasks == []


class TestWorkflow:
    def test_done_without_after_photo_fails(self, controller, persistence):
        task = add_task(controller, status="doing", has_photo_before=True)

        with pytest.raises(ValidationError) as exc_info:
            run(controller.move_task(task.id, "right"))

        assert exc_info.value.code == "photos_required"
        assert controller.get_task(task.id).status is Status.DOING
        assert persistence.data["tasks"][task.id]["status"] == "doing"

    def test_update_cannot_skip_columns(self, controller):
        task = add_task(controller)
        with pytest.raises(ValidationError) as exc_info:
            run(controller.update_task(task.id, {"status": "done"}))
        assert exc_info.value.code == "invalid_transition"

    def test_completion_awards_points_once(self, controller, persistence):
        task = add_task(
            controller, status="doing", weight="heavy", has_photo_before=True, has_photo_after=True
        )

        first = run(controller.move_task(task.id, "right"))
        run(controller.move_task(task.id, "left"))
        again = run(controller.move_task(task.id, "right"))

        assert first.points_awarded == 240
        assert again.points_awarded is None
        assert persistence.lifetime_points("u1") == 240, "Re-completing never re-awards"
        assert controller.dashboard().points == 240

    def test_points_failure_is_reported_not_raised(self, controller, persistence):
        task = add_task(controller, status="doing", has_photo_before=True, has_photo_after=True)
        failing = AsyncMock(return_value=Result.failure("profiles unavailable"))

        with patch.object(persistence, "add_lifetime_points", new=failing):
            change = run(controller.move_task(task.id, "right"))

        assert change.task.status is Status.DONE
        assert change.points_awarded is None
        assert change.warning is not None
        assert not controller.ledger.has_been_scored("u1", "p1", task.id)

    def test_photos_only_turn_on(self, controller):
        task = add_task(controller, has_photo_before=True)

        updated = run(controller.set_task_photos(task.id, before=False, after=True))

        assert updated.has_photo_before is True
        assert updated.has_photo_after is True

    def test_update_of_externally_deleted_task(self, controller, persistence):
        task = add_task(controller)
        del persistence.data["tasks"][task.id]

        with pytest.raises(NotFoundError):
            run(controller.update_task(task.id, {"title": "Renamed"}))
        assert controller.project_tasks == [], "Dangling task is dropped locally"


class TestHierarchyEdits:
    def test_cascade_delete_removes_nested_tasks(self, controller, persistence):
        """Deleting Area -> SubArea -> Corner removes the task attached at the corner."""
        task = add_task(controller, "corner", "c1")

        cascade = run(controller.delete_area("a1"))

        assert cascade.corner_ids == {"c1"}
        assert controller.project_tasks == []
        assert task.id not in persistence.data["tasks"]
        assert controller.scope.selection == EMPTY_SELECTION
        assert controller.hierarchy.find_sub_area("s1") is None

    def test_delete_corner_narrows_scope(self, controller):
        controller.select_scope("corner", corner_id="c1")
        run(controller.delete_corner("c1"))
        assert controller.scope.selection == ScopeSelection(ScopeType.SUB_AREA, "a1", "s1")

    def test_create_area_becomes_scope_when_none(self, controller):
        controller.scope.selection = EMPTY_SELECTION
        area = run(controller.create_area({"name": "Laundry", "kind": "service"}))
        assert controller.scope.selection.area_id == area.id

    def test_create_corner_under_missing_sub_area(self, controller, persistence):
        with pytest.raises(NotFoundError):
            run(controller.create_corner("s404", {"name": "Nook"}))
        assert len(persistence.data["corners"]) == 1

    def test_rename_and_reparent(self, controller, persistence):
        renamed = run(controller.update_sub_area("s1", {"name": "Island"}))
        assert renamed.name == "Island"
        assert persistence.data["sub_areas"]["s1"]["name"] == "Island"

        with pytest.raises(ValidationError) as exc_info:
            run(controller.update_sub_area("s1", {"area_id": "a2"}))
        assert exc_info.value.code == "parent_immutable"

    def test_kanban_lock_follows_area_count(self, controller):
        assert controller.kanban()["locked"] is False
        run(controller.delete_area("a2"))
        assert controller.kanban()["locked"] is True
        assert controller.dashboard().kanban_locked is True


class TestEvents:
    def test_events_published(self, controller):
        events = []
        unsubscribe = controller.subscribe(events.append)

        add_task(controller)
        controller.select_scope("sub_area", sub_area_id="s1")
        run(controller.delete_corner("c1"))
        unsubscribe()
        add_task(controller, "area", "a2")

        types = [e.event_type for e in events]
        assert types[0] == TASK_SET_CHANGED
        assert SCOPE_CHANGED in types
        assert HIERARCHY_CHANGED in types
        assert events[0].data["dashboard"]["total_tasks"] == 1
        assert all(e.project_id == "p1" for e in events)
        assert len([e for e in events if e.event_type == TASK_SET_CHANGED]) >= 2

    def test_failing_listener_does_not_break_action(self, controller):
        def broken(event):
            raise RuntimeError("render failed")

        controller.subscribe(broken)
        task = add_task(controller)
        assert controller.get_task(task.id) is not None


class TestCatalog:
    def test_create_list_delete(self, controller, persistence, kv_store):
        catalog = ProjectCatalog(persistence, kv_store)

        loft = run(catalog.create_project({"name": "Loft", "mode": "micro"}))
        projects = run(catalog.list_projects())
        assert [p.id for p in projects] == [loft.id, "p1"], "Most recent first"

        run(catalog.delete_project("p1"))
        assert catalog.last_opened_project_id() is None
        assert persistence.data["areas"] == {}

    def test_create_requires_name(self, persistence, kv_store):
        with pytest.raises(ValidationError):
            run(ProjectCatalog(persistence, kv_store).create_project({"name": " "}))
