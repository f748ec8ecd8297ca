"""
Scope selection and resolution.

The resolver owns the user's current hierarchy selection, turns it into the
filter used to pick tasks, and resolves the Area that owns a scope node (the
value denormalized onto every Task as ``area_id``).

When the hierarchy changes under it, the selection is narrowed to the
nearest still-existing ancestor; it never jumps to an unrelated node.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from src.core.errors import NotFoundError, ValidationError
from src.core.hierarchy import HierarchyStore
from src.core.store import Scope, ScopeFilter, ScopeType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeSelection:
    """
    Current hierarchy selection.

    Parameters
    ----------
    type : ScopeType
        Level the user is working at
    area_id : Optional[str]
        Selected Area
    sub_area_id : Optional[str]
        Selected SubArea (only meaningful for sub_area/corner)
    corner_id : Optional[str]
        Selected Corner (only meaningful for corner)
    """

    type: ScopeType = ScopeType.AREA
    area_id: Optional[str] = None
    sub_area_id: Optional[str] = None
    corner_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "area_id": self.area_id,
            "sub_area_id": self.sub_area_id,
            "corner_id": self.corner_id,
        }


EMPTY_SELECTION = ScopeSelection()


def resolve_area_id_for_scope(
    selection: ScopeSelection, hierarchy: HierarchyStore
) -> Optional[str]:
    """
    Resolve the Area owning the selected node.

    For a corner the owning SubArea is looked up first, then its Area. When a
    direct ancestor lookup fails, the last known sub_area/area of the
    selection is used instead so the task never ends up without an Area.

    Parameters
    ----------
    selection : ScopeSelection
        Selection to resolve
    hierarchy : HierarchyStore
        Current hierarchy

    Returns
    -------
    Optional[str]
        Owning Area id, or None if nothing resolves
    """
    if selection.type is ScopeType.AREA:
        return selection.area_id

    if selection.type is ScopeType.SUB_AREA:
        sub_area = hierarchy.find_sub_area(selection.sub_area_id)
        return sub_area.area_id if sub_area else selection.area_id

    corner = hierarchy.find_corner(selection.corner_id)
    parent_sub_area_id = corner.sub_area_id if corner else selection.sub_area_id
    sub_area = hierarchy.find_sub_area(parent_sub_area_id)
    if sub_area:
        return sub_area.area_id
    logger.warning(
        f"Corner {selection.corner_id} has no resolvable SubArea; "
        f"falling back to area {selection.area_id}"
    )
    return selection.area_id


def describe_scope(selection: ScopeSelection, hierarchy: HierarchyStore) -> str:
    """Human-readable label of a selection, e.g. 'Corner · Sink (Counter)'."""
    if selection.type is ScopeType.CORNER and selection.corner_id:
        corner = hierarchy.find_corner(selection.corner_id)
        sub_area = hierarchy.find_sub_area(selection.sub_area_id)
        corner_name = corner.name if corner else "Corner"
        sub_name = sub_area.name if sub_area else "SubArea"
        return f"Corner · {corner_name} ({sub_name})"
    if selection.type is ScopeType.SUB_AREA and selection.sub_area_id:
        sub_area = hierarchy.find_sub_area(selection.sub_area_id)
        return f"SubArea · {sub_area.name if sub_area else 'SubArea'}"
    if selection.type is ScopeType.AREA and selection.area_id:
        area = hierarchy.find_area(selection.area_id)
        return f"Area · {area.name if area else 'Area'}"
    return "Select a scope"


class ScopeResolver:
    """Holds the current selection for one project's hierarchy."""

    def __init__(self, hierarchy: HierarchyStore):
        self.hierarchy = hierarchy
        self.selection = EMPTY_SELECTION

    def current_scope_filter(self) -> ScopeFilter:
        """
        Filter selecting the tasks attached to the selected node.

        Returns
        -------
        ScopeFilter
            ``(scope_type, scope_id)`` or ``(None, None)`` when the selection
            does not point at a node of its own type
        """
        sel = self.selection
        if sel.type is ScopeType.CORNER and sel.corner_id:
            return ScopeFilter(ScopeType.CORNER, sel.corner_id)
        if sel.type is ScopeType.SUB_AREA and sel.sub_area_id:
            return ScopeFilter(ScopeType.SUB_AREA, sel.sub_area_id)
        if sel.type is ScopeType.AREA and sel.area_id:
            return ScopeFilter(ScopeType.AREA, sel.area_id)
        return ScopeFilter()

    def current_scope(self) -> Scope:
        """
        Selected node as a ``Scope``.

        Raises
        ------
        ValidationError
            When nothing is selected; there is no valid default scope
        """
        scope = self.current_scope_filter().as_scope()
        if scope is None:
            raise ValidationError("Choose a scope before creating tasks", "missing_scope")
        return scope

    def resolve_area_id(self) -> Optional[str]:
        return resolve_area_id_for_scope(self.selection, self.hierarchy)

    def label(self) -> str:
        return describe_scope(self.selection, self.hierarchy)

    def bootstrap(self) -> ScopeSelection:
        """Select the first Area when nothing is selected yet."""
        if not self.selection.area_id and not self.hierarchy.is_empty:
            self.selection = ScopeSelection(ScopeType.AREA, self.hierarchy.areas[0].id)
        return self.selection

    def select(
        self,
        scope_type: ScopeType,
        area_id: Optional[str] = None,
        sub_area_id: Optional[str] = None,
        corner_id: Optional[str] = None,
    ) -> ScopeSelection:
        """
        Change the selection, validating parent/child consistency.

        Ancestor ids are derived from the deepest id given. Levels deeper than
        ``scope_type`` are cleared. A missing SubArea/Corner is defaulted to
        the first child of the selected parent.

        Raises
        ------
        NotFoundError
            When a referenced node does not exist
        ValidationError
            When the given ids do not form a parent/child chain
        """
        h = self.hierarchy
        if corner_id:
            corner = h.get_corner(corner_id)
            if sub_area_id and str(sub_area_id) != corner.sub_area_id:
                raise ValidationError(
                    f"Corner {corner_id} does not belong to SubArea {sub_area_id}",
                    "scope_mismatch",
                )
            sub_area_id = corner.sub_area_id
        if sub_area_id:
            sub_area = h.get_sub_area(sub_area_id)
            if area_id and str(area_id) != sub_area.area_id:
                raise ValidationError(
                    f"SubArea {sub_area_id} does not belong to Area {area_id}",
                    "scope_mismatch",
                )
            area_id = sub_area.area_id
        if not area_id:
            area_id = h.areas[0].id if not h.is_empty else None
        if area_id:
            h.get_area(area_id)

        if scope_type is ScopeType.AREA:
            sub_area_id = corner_id = None
        elif scope_type is ScopeType.SUB_AREA:
            corner_id = None
            if not sub_area_id and area_id:
                first = h.list_sub_areas(area_id)
                sub_area_id = first[0].id if first else None
        else:
            if not sub_area_id and area_id:
                first = h.list_sub_areas(area_id)
                sub_area_id = first[0].id if first else None
            if not corner_id and sub_area_id:
                first_corner = h.list_corners(sub_area_id)
                corner_id = first_corner[0].id if first_corner else None

        self.selection = ScopeSelection(
            scope_type,
            str(area_id) if area_id else None,
            str(sub_area_id) if sub_area_id else None,
            str(corner_id) if corner_id else None,
        )
        return self.selection

    def reconcile(self) -> bool:
        """
        Narrow the selection after hierarchy changes.

        A deleted Corner narrows to its SubArea, a deleted SubArea to its
        Area. When the Area itself is gone the selection is emptied.

        Returns
        -------
        bool
            True if the selection changed
        """
        before = self.selection
        sel = before
        h = self.hierarchy

        if sel.corner_id and h.find_corner(sel.corner_id) is None:
            sel = replace(sel, corner_id=None)
            if sel.type is ScopeType.CORNER:
                sel = replace(sel, type=ScopeType.SUB_AREA)
        if sel.sub_area_id and h.find_sub_area(sel.sub_area_id) is None:
            sel = replace(sel, sub_area_id=None, corner_id=None)
            if sel.type is not ScopeType.AREA:
                sel = replace(sel, type=ScopeType.AREA)
        if sel.area_id and h.find_area(sel.area_id) is None:
            sel = EMPTY_SELECTION

        if sel != before:
            logger.info(f"Scope narrowed from {before.to_dict()} to {sel.to_dict()}")
        self.selection = sel
        return sel != before

    def validate_scope(self, scope: Scope) -> str:
        """
        Check a scope node exists and return its owning Area id.

        Raises
        ------
        NotFoundError
            When the node or an ancestor is missing
        """
        try:
            return self.hierarchy.area_id_for(scope)
        except NotFoundError:
            logger.warning(f"Scope {scope.type.value}:{scope.id} no longer exists")
            raise
