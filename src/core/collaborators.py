"""
External collaborators consumed by the core.

The core never talks to a database, an auth provider or browser storage
directly. It goes through the protocols defined here:

- ``EntityGateway`` / ``TaskGateway``: async CRUD per entity type
- ``Persistence``: the bundle of gateways plus the lifetime-points mutation
- ``IdentityProvider``: who is acting
- ``KeyValueStore``: small durable key/value storage (points ledger,
  last opened project)

Every gateway call returns a ``Result`` carrying either data or an error,
never both and never neither.

Reference adapters are included so the backend runs without any external
service: ``JsonPersistence`` keeps one JSON document on disk (or in memory)
and mimics a relational store with ON DELETE CASCADE foreign keys and CHECK
constraints on task status/weight.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Record = Dict[str, Any]


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of one collaborator call.

    Parameters
    ----------
    data : Optional[T]
        Entity, collection or deleted id on success
    error : Optional[str]
        Error description on failure
    not_found : bool
        The failure is because the referenced entity does not exist
    """

    data: Optional[T] = None
    error: Optional[str] = None
    not_found: bool = False

    def __post_init__(self) -> None:
        if (self.data is None) == (self.error is None):
            raise ValueError("Result must carry exactly one of data or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "Result[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, error: str) -> "Result[T]":
        return cls(error=error)

    @classmethod
    def missing(cls, error: str) -> "Result[T]":
        return cls(error=error, not_found=True)


class EntityGateway(Protocol):
    """CRUD access to one entity type."""

    async def create(self, payload: Mapping[str, Any]) -> Result[Record]: ...

    async def list_by_parent(self, parent_id: str) -> Result[List[Record]]: ...

    async def update(self, entity_id: str, patch: Mapping[str, Any]) -> Result[Record]: ...

    async def delete(self, entity_id: str) -> Result[str]: ...

    async def get_by_id(self, entity_id: str) -> Result[Record]: ...


class TaskGateway(EntityGateway, Protocol):
    """Task access, with project-wide listing."""

    async def list_by_project(
        self, project_id: str, filters: Optional[Mapping[str, Any]] = None
    ) -> Result[List[Record]]: ...


class Persistence(Protocol):
    """All gateways the core needs."""

    projects: EntityGateway
    areas: EntityGateway
    sub_areas: EntityGateway
    corners: EntityGateway
    tasks: TaskGateway

    async def add_lifetime_points(self, user_id: str, delta: int) -> Result[int]: ...


class IdentityProvider(Protocol):
    def current_user_id(self) -> Optional[str]: ...


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


# --------------------------------------------------------------------------
# Reference adapters
# --------------------------------------------------------------------------


@dataclass
class StaticIdentity:
    """Identity fixed at construction (request header, CLI flag, tests)."""

    user_id: Optional[str] = None

    def current_user_id(self) -> Optional[str]:
        return self.user_id


class MemoryKeyValueStore:
    """Volatile key/value store."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileKeyValueStore(MemoryKeyValueStore):
    """Key/value store persisted as one JSON object on disk."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            try:
                with open(self.path, "r") as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    self._data = {str(k): str(v) for k, v in loaded.items()}
            except (OSError, ValueError) as e:
                logger.error(f"Could not read key/value file {self.path}: {e}")

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._data, f, indent=2)


TABLES = ("projects", "areas", "sub_areas", "corners", "tasks", "profiles")

# Values the task CHECK constraints accept
TASK_STATUS_VALUES = {"todo", "doing", "done"}
TASK_WEIGHT_VALUES = {"light", "medium", "heavy"}


class _TableGateway:
    """Gateway over one table of a ``JsonPersistence`` document."""

    def __init__(
        self,
        owner: "JsonPersistence",
        table: str,
        parent_field: Optional[str],
        required: tuple = (),
        check: Optional[Callable[[Record], Optional[str]]] = None,
    ):
        self._owner = owner
        self.table = table
        self.parent_field = parent_field
        self.required = required
        self.check = check

    @property
    def _rows(self) -> Dict[str, Record]:
        return self._owner.data[self.table]

    async def create(self, payload: Mapping[str, Any]) -> Result[Record]:
        record = dict(payload)
        record["id"] = str(record.get("id") or uuid.uuid4())
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        for name in self.required:
            if record.get(name) in (None, ""):
                return Result.failure(f"{self.table}.{name} violates not-null constraint")
        error = self._owner.check_foreign_key(self.table, record)
        if error is None and self.check:
            error = self.check(record)
        if error:
            return Result.failure(error)
        self._rows[record["id"]] = record
        self._owner.flush()
        return Result.success(dict(record))

    async def list_by_parent(self, parent_id: str) -> Result[List[Record]]:
        if self.parent_field is None:
            return Result.success([dict(r) for r in self._rows.values()])
        return Result.success(
            [dict(r) for r in self._rows.values() if str(r.get(self.parent_field)) == str(parent_id)]
        )

    async def get_by_id(self, entity_id: str) -> Result[Record]:
        row = self._rows.get(str(entity_id))
        if row is None:
            return Result.missing(f"{self.table} {entity_id} not found")
        return Result.success(dict(row))

    async def update(self, entity_id: str, patch: Mapping[str, Any]) -> Result[Record]:
        row = self._rows.get(str(entity_id))
        if row is None:
            return Result.missing(f"{self.table} {entity_id} not found")
        updated = {**row, **patch, "id": row["id"]}
        if self.check:
            error = self.check(updated)
            if error:
                return Result.failure(error)
        self._rows[row["id"]] = updated
        self._owner.flush()
        return Result.success(dict(updated))

    async def delete(self, entity_id: str) -> Result[str]:
        if str(entity_id) not in self._rows:
            return Result.missing(f"{self.table} {entity_id} not found")
        self._owner.cascade_delete(self.table, str(entity_id))
        self._owner.flush()
        return Result.success(str(entity_id))

    async def list_by_project(
        self, project_id: str, filters: Optional[Mapping[str, Any]] = None
    ) -> Result[List[Record]]:
        rows = [r for r in self._rows.values() if str(r.get("project_id")) == str(project_id)]
        for key, value in (filters or {}).items():
            rows = [r for r in rows if str(r.get(key)) == str(value)]
        return Result.success([dict(r) for r in rows])


def _check_task(record: Record) -> Optional[str]:
    if record.get("status") not in TASK_STATUS_VALUES:
        return f"tasks_status_check violated by {record.get('status')!r}"
    if record.get("weight") not in TASK_WEIGHT_VALUES:
        return f"tasks_weight_check violated by {record.get('weight')!r}"
    if record.get("scope_type") not in ("area", "sub_area", "corner"):
        return f"tasks_scope_type_check violated by {record.get('scope_type')!r}"
    return None


class JsonPersistence:
    """
    Reference persistence: one JSON document, relational semantics.

    Parameters
    ----------
    data_dir : Optional[Path]
        Directory holding ``store.json``; None keeps everything in memory
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.path = Path(data_dir) / "store.json" if data_dir else None
        self.data: Dict[str, Dict[str, Record]] = {t: {} for t in TABLES}
        if self.path and self.path.exists():
            self._load()

        self.projects = _TableGateway(self, "projects", None, required=("name",))
        self.areas = _TableGateway(self, "areas", "project_id", required=("project_id", "name"))
        self.sub_areas = _TableGateway(self, "sub_areas", "area_id", required=("area_id", "name"))
        self.corners = _TableGateway(
            self, "corners", "sub_area_id", required=("sub_area_id", "name")
        )
        self.tasks = _TableGateway(
            self,
            "tasks",
            "scope_id",
            required=("project_id", "scope_id", "title"),
            check=_check_task,
        )

    def _load(self) -> None:
        assert self.path is not None
        try:
            with open(self.path, "r") as f:
                loaded = json.load(f)
            for table in TABLES:
                rows = loaded.get(table, {})
                if isinstance(rows, dict):
                    self.data[table] = rows
            logger.info(
                f"Loaded store {self.path}: "
                + ", ".join(f"{len(self.data[t])} {t}" for t in TABLES)
            )
        except (OSError, ValueError) as e:
            logger.error(f"Error loading store {self.path}: {e}")

    def flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self.data, f, indent=2)

    _FOREIGN_KEYS = {
        "areas": ("project_id", "projects"),
        "sub_areas": ("area_id", "areas"),
        "corners": ("sub_area_id", "sub_areas"),
        "tasks": ("project_id", "projects"),
    }

    def check_foreign_key(self, table: str, record: Record) -> Optional[str]:
        fk = self._FOREIGN_KEYS.get(table)
        if fk is None:
            return None
        column, target = fk
        if str(record.get(column)) not in self.data[target]:
            return f"{table}.{column} references missing {target} {record.get(column)}"
        return None

    def cascade_delete(self, table: str, entity_id: str) -> None:
        """Delete a row and everything referencing it."""
        self.data[table].pop(entity_id, None)
        if table == "projects":
            children = [("areas", "project_id"), ("tasks", "project_id")]
        elif table == "areas":
            children = [("sub_areas", "area_id"), ("tasks", "area_id")]
        elif table == "sub_areas":
            children = [("corners", "sub_area_id")]
            self._delete_tasks_in_scope("sub_area", entity_id)
        elif table == "corners":
            children = []
            self._delete_tasks_in_scope("corner", entity_id)
        else:
            children = []
        for child_table, column in children:
            for child_id in [
                i for i, r in self.data[child_table].items() if str(r.get(column)) == entity_id
            ]:
                self.cascade_delete(child_table, child_id)

    def _delete_tasks_in_scope(self, scope_type: str, scope_id: str) -> None:
        tasks = self.data["tasks"]
        for task_id in [
            i
            for i, r in tasks.items()
            if r.get("scope_type") == scope_type and str(r.get("scope_id")) == scope_id
        ]:
            tasks.pop(task_id, None)

    async def add_lifetime_points(self, user_id: str, delta: int) -> Result[int]:
        profiles = self.data["profiles"]
        profile = profiles.setdefault(str(user_id), {"id": str(user_id), "total_points_lifetime": 0})
        profile["total_points_lifetime"] = int(profile.get("total_points_lifetime", 0)) + int(delta)
        self.flush()
        return Result.success(profile["total_points_lifetime"])

    def lifetime_points(self, user_id: str) -> int:
        return int(self.data["profiles"].get(str(user_id), {}).get("total_points_lifetime", 0))
