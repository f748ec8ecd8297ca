"""
In-memory scope hierarchy of one project.

Areas, SubAreas and Corners live in per-level arenas keyed by id, plus a
parent -> children index per level. Deleting a node walks the child index,
so cascade correctness is a property of this store rather than of its
callers.

Topology only changes through ``create_*`` and ``delete_*``. Updates edit
names/descriptions and reject any attempt to move a node to another parent.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, TypeVar

from src.core.errors import NotFoundError, ValidationError
from src.core.store import Area, Corner, Scope, ScopeType, SubArea, Task

logger = logging.getLogger(__name__)

T = TypeVar("T", Area, SubArea, Corner)

PARENT_FIELDS = ("id", "project_id", "area_id", "sub_area_id")


@dataclass
class CascadeResult:
    """
    Everything removed by one delete.

    Parameters
    ----------
    area_ids : Set[str]
        Removed Areas
    sub_area_ids : Set[str]
        Removed SubAreas
    corner_ids : Set[str]
        Removed Corners
    """

    area_ids: Set[str] = field(default_factory=set)
    sub_area_ids: Set[str] = field(default_factory=set)
    corner_ids: Set[str] = field(default_factory=set)

    def covers(self, task: Task) -> bool:
        """True when the task was attached to (or under) a removed node."""
        if task.area_id in self.area_ids:
            return True
        if task.scope_type is ScopeType.AREA:
            return task.scope_id in self.area_ids
        if task.scope_type is ScopeType.SUB_AREA:
            return task.scope_id in self.sub_area_ids
        return task.scope_id in self.corner_ids

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "area_ids": sorted(self.area_ids),
            "sub_area_ids": sorted(self.sub_area_ids),
            "corner_ids": sorted(self.corner_ids),
        }


class HierarchyStore:
    """
    Arena of Areas/SubAreas/Corners for a single project.

    Listing is always by direct parent id, so cost is proportional to the
    size of the subtree, not to the size of the project.
    """

    def __init__(self, project_id: str):
        """
        Initialize an empty hierarchy.

        Parameters
        ----------
        project_id : str
            Project every Area must belong to
        """
        self.project_id = project_id
        self._areas: Dict[str, Area] = {}
        self._sub_areas: Dict[str, SubArea] = {}
        self._corners: Dict[str, Corner] = {}
        # parent id -> ordered child ids
        self._sub_areas_by_area: Dict[str, List[str]] = {}
        self._corners_by_sub_area: Dict[str, List[str]] = {}

    # ---------------------------------------------------------------- reads

    @property
    def areas(self) -> List[Area]:
        return list(self._areas.values())

    @property
    def is_empty(self) -> bool:
        return not self._areas

    def get_area(self, area_id: str) -> Area:
        try:
            return self._areas[str(area_id)]
        except KeyError:
            raise NotFoundError("Area", area_id)

    def get_sub_area(self, sub_area_id: str) -> SubArea:
        try:
            return self._sub_areas[str(sub_area_id)]
        except KeyError:
            raise NotFoundError("SubArea", sub_area_id)

    def get_corner(self, corner_id: str) -> Corner:
        try:
            return self._corners[str(corner_id)]
        except KeyError:
            raise NotFoundError("Corner", corner_id)

    def find_area(self, area_id: Optional[str]) -> Optional[Area]:
        return self._areas.get(str(area_id)) if area_id else None

    def find_sub_area(self, sub_area_id: Optional[str]) -> Optional[SubArea]:
        return self._sub_areas.get(str(sub_area_id)) if sub_area_id else None

    def find_corner(self, corner_id: Optional[str]) -> Optional[Corner]:
        return self._corners.get(str(corner_id)) if corner_id else None

    def list_sub_areas(self, area_id: str) -> List[SubArea]:
        """SubAreas directly owned by an Area."""
        return [self._sub_areas[i] for i in self._sub_areas_by_area.get(str(area_id), [])]

    def list_corners(self, sub_area_id: str) -> List[Corner]:
        """Corners directly owned by a SubArea."""
        return [self._corners[i] for i in self._corners_by_sub_area.get(str(sub_area_id), [])]

    def contains(self, scope: Scope) -> bool:
        if scope.type is ScopeType.AREA:
            return scope.id in self._areas
        if scope.type is ScopeType.SUB_AREA:
            return scope.id in self._sub_areas
        return scope.id in self._corners

    def area_id_for(self, scope: Scope) -> str:
        """
        Area transitively containing a scope node.

        Raises
        ------
        NotFoundError
            When the node or one of its ancestors is missing
        """
        if scope.type is ScopeType.AREA:
            return self.get_area(scope.id).id
        if scope.type is ScopeType.SUB_AREA:
            return self.get_area(self.get_sub_area(scope.id).area_id).id
        corner = self.get_corner(scope.id)
        return self.get_area(self.get_sub_area(corner.sub_area_id).area_id).id

    # ------------------------------------------------------------- creation

    def load(
        self,
        areas: Iterable[Area],
        sub_areas: Iterable[SubArea] = (),
        corners: Iterable[Corner] = (),
    ) -> None:
        """
        Replace the whole hierarchy with freshly read entities.

        Children whose parent is not present are dropped with a warning
        rather than indexed as orphans.
        """
        self.clear()
        for area in areas:
            self.create_area(area)
        for sub_area in sub_areas:
            if sub_area.area_id not in self._areas:
                logger.warning(f"Dropping SubArea {sub_area.id}: parent Area {sub_area.area_id} missing")
                continue
            self.create_sub_area(sub_area)
        for corner in corners:
            if corner.sub_area_id not in self._sub_areas:
                logger.warning(f"Dropping Corner {corner.id}: parent SubArea {corner.sub_area_id} missing")
                continue
            self.create_corner(corner)

    def clear(self) -> None:
        self._areas.clear()
        self._sub_areas.clear()
        self._corners.clear()
        self._sub_areas_by_area.clear()
        self._corners_by_sub_area.clear()

    def create_area(self, area: Area) -> Area:
        if area.project_id != self.project_id:
            raise ValidationError(
                f"Area {area.id} belongs to project {area.project_id}, not {self.project_id}",
                "wrong_parent",
            )
        if area.id in self._areas:
            raise ValidationError(f"Area {area.id} already exists", "duplicate_id")
        self._areas[area.id] = area
        self._sub_areas_by_area.setdefault(area.id, [])
        return area

    def create_sub_area(self, sub_area: SubArea) -> SubArea:
        self.get_area(sub_area.area_id)
        if sub_area.id in self._sub_areas:
            raise ValidationError(f"SubArea {sub_area.id} already exists", "duplicate_id")
        self._sub_areas[sub_area.id] = sub_area
        self._sub_areas_by_area.setdefault(sub_area.area_id, []).append(sub_area.id)
        self._corners_by_sub_area.setdefault(sub_area.id, [])
        return sub_area

    def create_corner(self, corner: Corner) -> Corner:
        self.get_sub_area(corner.sub_area_id)
        if corner.id in self._corners:
            raise ValidationError(f"Corner {corner.id} already exists", "duplicate_id")
        self._corners[corner.id] = corner
        self._corners_by_sub_area.setdefault(corner.sub_area_id, []).append(corner.id)
        return corner

    # --------------------------------------------------------------- update

    @staticmethod
    def check_patch(entity: Any, patch: Mapping[str, Any]) -> None:
        """
        Reject patches that would re-parent (or re-identify) a node.

        Raises
        ------
        ValidationError
            When the patch changes an id or parent id
        """
        for name in PARENT_FIELDS:
            if name in patch and str(patch[name]) != str(getattr(entity, name, patch[name])):
                raise ValidationError(
                    f"Cannot change {name} of {type(entity).__name__} {entity.id}; "
                    f"delete and recreate it instead",
                    "parent_immutable",
                )

    def _apply_patch(self, entity: T, patch: Mapping[str, Any]) -> T:
        self.check_patch(entity, patch)
        changes = {
            k: v for k, v in patch.items() if k not in PARENT_FIELDS and hasattr(entity, k)
        }
        return replace(entity, **changes)

    def update_area(self, area_id: str, patch: Mapping[str, Any]) -> Area:
        updated = self._apply_patch(self.get_area(area_id), patch)
        self._areas[updated.id] = updated
        return updated

    def update_sub_area(self, sub_area_id: str, patch: Mapping[str, Any]) -> SubArea:
        updated = self._apply_patch(self.get_sub_area(sub_area_id), patch)
        self._sub_areas[updated.id] = updated
        return updated

    def update_corner(self, corner_id: str, patch: Mapping[str, Any]) -> Corner:
        updated = self._apply_patch(self.get_corner(corner_id), patch)
        self._corners[updated.id] = updated
        return updated

    # --------------------------------------------------------------- delete

    def delete_corner(self, corner_id: str) -> CascadeResult:
        corner = self.get_corner(corner_id)
        del self._corners[corner.id]
        siblings = self._corners_by_sub_area.get(corner.sub_area_id, [])
        if corner.id in siblings:
            siblings.remove(corner.id)
        return CascadeResult(corner_ids={corner.id})

    def delete_sub_area(self, sub_area_id: str) -> CascadeResult:
        sub_area = self.get_sub_area(sub_area_id)
        result = CascadeResult(sub_area_ids={sub_area.id})
        for corner_id in self._corners_by_sub_area.pop(sub_area.id, []):
            self._corners.pop(corner_id, None)
            result.corner_ids.add(corner_id)
        del self._sub_areas[sub_area.id]
        siblings = self._sub_areas_by_area.get(sub_area.area_id, [])
        if sub_area.id in siblings:
            siblings.remove(sub_area.id)
        return result

    def delete_area(self, area_id: str) -> CascadeResult:
        area = self.get_area(area_id)
        result = CascadeResult(area_ids={area.id})
        for sub_area_id in list(self._sub_areas_by_area.get(area.id, [])):
            nested = self.delete_sub_area(sub_area_id)
            result.sub_area_ids |= nested.sub_area_ids
            result.corner_ids |= nested.corner_ids
        self._sub_areas_by_area.pop(area.id, None)
        del self._areas[area.id]
        logger.info(
            f"Deleted Area {area.id}: {len(result.sub_area_ids)} sub-areas, "
            f"{len(result.corner_ids)} corners cascaded"
        )
        return result

    # ------------------------------------------------------------ rendering

    def to_dict(self) -> Dict[str, Any]:
        """Nested Area -> SubArea -> Corner tree for the UI."""
        return {
            "project_id": self.project_id,
            "areas": [
                {
                    **area.to_dict(),
                    "sub_areas": [
                        {
                            **sub_area.to_dict(),
                            "corners": [c.to_dict() for c in self.list_corners(sub_area.id)],
                        }
                        for sub_area in self.list_sub_areas(area.id)
                    ],
                }
                for area in self.areas
            ],
        }
