"""
Tests for the task indicators: weighted progress, points, deadlines, budget.
"""

from datetime import date

from src.core.aggregator import (
    build_dashboard,
    compute_budget_indicators,
    compute_deadline_indicators,
    compute_points,
    compute_progress,
    group_by_status,
    is_kanban_locked,
    round_percent,
)
from src.core.store import Project, Status, Weight
from tests.factories import TODAY, make_task


class TestProgress:
    """Weighted completion (light=1, medium=2, heavy=3)."""

    def test_weighted_progress(self):
        tasks = [
            make_task("t1", Status.DONE, Weight.LIGHT),
            make_task("t2", Status.TODO, Weight.HEAVY),
        ]
        progress = compute_progress(tasks)

        assert progress.W == 4
        assert progress.progress_percent == 25.0

    def test_rounded_to_one_decimal(self):
        tasks = [
            make_task("t1", Status.DONE, Weight.LIGHT),
            make_task("t2", Status.DOING, Weight.MEDIUM),
        ]
        assert compute_progress(tasks).progress_percent == 33.3

    def test_ties_round_up(self):
        tasks = [make_task("t0", Status.DONE, Weight.LIGHT)]
        tasks += [make_task(f"t{i}", Status.TODO, Weight.HEAVY) for i in range(1, 134)]
        progress = compute_progress(tasks)

        assert progress.W == 400
        assert progress.progress_percent == 0.3, "0.25 rounds half up, not to even"

    def test_round_percent(self):
        assert round_percent(12.35) == 12.4
        assert round_percent(12.34) == 12.3
        assert round_percent(100.0) == 100.0

    def test_single_medium_done_task(self):
        tasks = [make_task("t1", Status.DONE, Weight.MEDIUM, has_photo_before=True, has_photo_after=True)]
        progress = compute_progress(tasks)

        assert (progress.W, progress.progress_percent) == (2, 100.0)
        assert compute_points(tasks) == 160

    def test_marking_done_never_decreases(self):
        tasks = [make_task(f"t{i}", Status.TODO, w) for i, w in enumerate(Weight)]
        last = compute_progress(tasks).progress_percent
        for i in range(len(tasks)):
            tasks[i] = make_task(tasks[i].id, Status.DONE, tasks[i].weight)
            current = compute_progress(tasks).progress_percent
            assert current >= last
            last = current
        assert last == 100.0

    def test_empty_collection(self):
        progress = compute_progress([])
        assert progress.W == 0
        assert progress.progress_percent == 0


class TestPoints:
    def test_done_with_both_photos_scores(self):
        tasks = [
            make_task("t1", Status.DONE, Weight.HEAVY, has_photo_before=True, has_photo_after=True),
            make_task("t2", Status.DONE, Weight.HEAVY, has_photo_before=True),
            make_task("t3", Status.DOING, Weight.LIGHT, has_photo_before=True, has_photo_after=True),
        ]
        assert compute_points(tasks) == 240, "Only done tasks with both photos score"


class TestDeadlines:
    def test_overdue_and_beyond_end(self):
        project = Project(id="p1", name="P", end_date=date(2025, 6, 30))
        tasks = [
            make_task("t1", Status.DOING, due_date=date(2025, 6, 1)),
            make_task("t2", Status.DONE, due_date=date(2025, 6, 1)),
            make_task("t3", Status.DONE, due_date=date(2025, 7, 15)),
            make_task("t4", Status.TODO),
        ]
        deadlines = compute_deadline_indicators(project, tasks, today=TODAY)

        assert deadlines.overdue_count == 1, "Done tasks are never overdue"
        assert deadlines.beyond_end_count == 1, "Beyond-end counts regardless of status"

    def test_no_project_end_date(self):
        project = Project(id="p1", name="P")
        tasks = [make_task("t1", due_date=date(2030, 1, 1))]
        assert compute_deadline_indicators(project, tasks, today=TODAY).beyond_end_count == 0


class TestBudget:
    def test_over_budget(self):
        tasks = [
            make_task("t1", cost_expected=100.0, cost_real=80.0),
            make_task("t2", cost_expected=50.0, cost_real=90.0),
        ]
        budget = compute_budget_indicators(tasks)

        assert budget.sum_expected == 150.0
        assert budget.sum_real == 170.0
        assert budget.is_over_budget is True

    def test_equal_is_not_over(self):
        tasks = [make_task("t1", cost_expected=10.0, cost_real=10.0)]
        assert compute_budget_indicators(tasks).is_over_budget is False


class TestBoard:
    def test_columns_in_workflow_order(self):
        columns = group_by_status([make_task("t1", Status.DONE), make_task("t2", Status.TODO)])
        assert list(columns) == ["todo", "doing", "done"]
        assert [t.id for t in columns["done"]] == ["t1"]
        assert columns["doing"] == []

    def test_kanban_lock(self):
        macro = Project(id="p1", name="P", mode="macro")
        micro = Project(id="p2", name="Q", mode="micro")
        assert is_kanban_locked(macro, 1) is True
        assert is_kanban_locked(macro, 2) is False
        assert is_kanban_locked(micro, 0) is False


class TestDashboard:
    def test_dashboard_serializes(self):
        project = Project(id="p1", name="P")
        dashboard = build_dashboard(
            project,
            [make_task("t1", Status.DONE, Weight.LIGHT, has_photo_before=True, has_photo_after=True)],
            area_count=2,
            today=TODAY,
        )
        data = dashboard.to_dict()

        assert data["total_tasks"] == 1
        assert data["progress"] == {"W": 1, "progress_percent": 100.0}
        assert data["points"] == 80
        assert data["kanban_locked"] is False
        assert data["timestamp"].endswith("+00:00")
