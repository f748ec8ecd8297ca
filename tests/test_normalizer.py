"""
Tests for boundary normalization of task, project and hierarchy input.
"""

import pytest

from src.core.errors import ValidationError
from src.core.normalizer import (
    STATUS_SYNONYMS,
    build_hierarchy_payload,
    build_project_payload,
    build_task_payload,
    normalize_status,
    normalize_weight,
)
from src.core.store import Status, Weight


class TestSynonyms:
    """Free-form status/weight strings map onto the closed enums."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("A fazer", Status.TODO),
            ("  to-do ", Status.TODO),
            ("Em andamento", Status.DOING),
            ("in progress", Status.DOING),
            ("Concluído", Status.DONE),
            ("DONE", Status.DONE),
        ],
    )
    def test_status_synonyms(self, raw, expected):
        assert normalize_status(raw) is expected

    @pytest.mark.parametrize("raw", sorted(STATUS_SYNONYMS))
    def test_every_status_synonym(self, raw):
        assert normalize_status(raw) is STATUS_SYNONYMS[raw]
        assert normalize_status(raw.upper()) is STATUS_SYNONYMS[raw]

    def test_weight_synonyms(self):
        assert normalize_weight("Leve") is Weight.LIGHT
        assert normalize_weight("médio") is Weight.MEDIUM
        assert normalize_weight("PESADO") is Weight.HEAVY

    def test_unknown_values_give_none(self):
        """Normalizers never raise; callers decide what unknown means."""
        assert normalize_status("blocked") is None
        assert normalize_status(None) is None
        assert normalize_weight("huge") is None
        assert normalize_weight(3) is None


class TestTaskInsertPayload:
    """Insert payloads are complete or rejected."""

    def test_defaults(self):
        payload = build_task_payload({"title": "  Paint wall  ", "area_id": "a1"}, "insert")

        assert payload["title"] == "Paint wall"
        assert payload["status"] == "todo"
        assert payload["weight"] == "medium"
        assert payload["scope_type"] == "area"
        assert payload["scope_id"] == "a1"
        assert payload["area_id"] == "a1"
        assert payload["cost_expected"] == 0.0
        assert payload["cost_real"] == 0.0
        assert payload["has_photo_before"] is False
        assert payload["has_photo_after"] is False

    def test_synonyms_are_canonicalized(self):
        payload = build_task_payload(
            {"title": "Tiles", "scope_type": "corner", "scope_id": "c1", "area_id": "a1",
             "status": "Em andamento", "weight": "pesado"},
            "insert",
        )
        assert payload["status"] == "doing"
        assert payload["weight"] == "heavy"
        assert payload["area_id"] == "a1"

    def test_missing_title_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_task_payload({"title": "   ", "area_id": "a1"}, "insert")
        assert exc_info.value.code == "missing_title"

    def test_missing_scope_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_task_payload({"title": "X"}, "insert")
        assert exc_info.value.code == "missing_scope"

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_task_payload({"title": "X", "area_id": "a1", "status": "blocked"}, "insert")
        assert exc_info.value.code == "invalid_status"

    def test_done_without_photos_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_task_payload(
                {"title": "X", "area_id": "a1", "status": "done", "has_photo_before": True},
                "insert",
            )
        assert exc_info.value.code == "photos_required"

    def test_area_scope_forces_area_id(self):
        payload = build_task_payload(
            {"title": "X", "scope_type": "area", "scope_id": "a2", "area_id": "a1"}, "insert"
        )
        assert payload["area_id"] == "a2"

    def test_area_fallback_ignores_other_scope_type(self):
        """Without scope_id the area id can only describe an area scope."""
        payload = build_task_payload(
            {"title": "X", "scope_type": "corner", "area_id": "a1"}, "insert"
        )
        assert payload["scope_type"] == "area"
        assert payload["scope_id"] == "a1"
        assert payload["area_id"] == "a1"

    def test_invalid_due_date_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_task_payload({"title": "X", "area_id": "a1", "due_date": "someday"}, "insert")
        assert exc_info.value.code == "invalid_due_date"

    def test_negative_cost_rejected(self):
        with pytest.raises(ValidationError):
            build_task_payload({"title": "X", "area_id": "a1", "cost_real": -5}, "insert")


class TestTaskUpdatePayload:
    def test_only_present_whitelisted_fields(self):
        patch = build_task_payload(
            {"weight": "leve", "scope_id": "c9", "project_id": "p9", "cost_real": "120.5"},
            "update",
        )
        assert patch == {"weight": "light", "cost_real": 120.5}

    def test_any_invalid_field_rejects_whole_patch(self):
        with pytest.raises(ValidationError):
            build_task_payload({"title": "ok", "status": "nope"}, "update")


class TestOtherPayloads:
    def test_project_defaults(self):
        payload = build_project_payload({"name": "Flat"})
        assert payload["mode"] == "macro"
        assert payload["home_type"] == "apartment"
        assert payload["budget_expected"] == 0.0

    def test_project_period_must_be_ordered(self):
        with pytest.raises(ValidationError) as exc_info:
            build_project_payload({"name": "Flat", "start_date": "2025-05-01", "end_date": "2025-04-01"})
        assert exc_info.value.code == "invalid_period"

    def test_area_requires_kind(self):
        with pytest.raises(ValidationError) as exc_info:
            build_hierarchy_payload("area", {"name": "Kitchen"})
        assert exc_info.value.code == "missing_kind"

    def test_update_never_forwards_parent_ids(self):
        patch = build_hierarchy_payload(
            "sub_area", {"name": "Island", "area_id": "a2"}, "update"
        )
        assert patch == {"name": "Island"}
