"""
FastAPI backend for the Renovation Tracker.

Exposes one ProjectController per opened project to a browser UI: project
catalogue, scope hierarchy editing, scope selection, tasks and the live
dashboard indicators. Supports CORS for local development.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional

# Ensure we import from the local src directory, not elsewhere
tracker_root = Path(__file__).parent.parent
if str(tracker_root) not in sys.path:
    sys.path.insert(0, str(tracker_root))

from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.core.collaborators import JsonFileKeyValueStore, JsonPersistence
from src.core.controller import DEFAULT_TIMEOUT_SECONDS, ProjectCatalog, ProjectController
from src.core.errors import ExternalFailure, NotFoundError, TrackerError, ValidationError
from src.core.store import serialize_tasks

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4301


def load_config() -> Dict[str, Any]:
    """
    Read config.json (or the file named by RENOVATION_CONFIG).

    Returns
    -------
    dict
        Parsed config, or an empty dict when it cannot be read
    """
    config_path = Path(os.environ.get("RENOVATION_CONFIG") or tracker_root / "config.json")
    try:
        with open(config_path, "r") as f:
            loaded = json.load(f)
        logger.info(f"Loaded config from {config_path}")
        return loaded if isinstance(loaded, dict) else {}
    except Exception as e:
        logger.warning(f"Could not load {config_path}: {e}, using defaults")
        return {}


config = load_config()

# Acting user of the request being handled
_request_user: ContextVar[Optional[str]] = ContextVar("request_user", default=None)


class RequestIdentity:
    """Identity taken from the X-User-Id header, falling back to config."""

    def __init__(self, fallback_user_id: Optional[str] = None):
        self.fallback_user_id = fallback_user_id

    def current_user_id(self) -> Optional[str]:
        return _request_user.get() or self.fallback_user_id


class Backend:
    """Collaborators and open controllers shared by all requests."""

    def __init__(
        self,
        data_path: Path,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_id: Optional[str] = None,
    ):
        self.data_path = Path(data_path)
        self.timeout = timeout
        self.persistence = JsonPersistence(self.data_path)
        self.store = JsonFileKeyValueStore(self.data_path / "kv.json")
        self.identity = RequestIdentity(user_id)
        self.catalog = ProjectCatalog(self.persistence, self.store, timeout)
        self.controllers: Dict[str, ProjectController] = {}

    async def controller(self, project_id: str) -> ProjectController:
        """Controller of an opened project, opening it on first use."""
        controller = self.controllers.get(project_id)
        if controller is None:
            controller = ProjectController(
                self.persistence, self.identity, self.store, self.timeout
            )
            await controller.open_project(project_id)
            self.controllers[project_id] = controller
        return controller

    def forget(self, project_id: str) -> None:
        self.controllers.pop(project_id, None)


def configure(
    data_path: Optional[Path] = None,
    timeout: Optional[float] = None,
    user_id: Optional[str] = None,
) -> Backend:
    """
    (Re)build the shared backend state.

    Parameters
    ----------
    data_path : Optional[Path]
        Storage directory (default: ``data_path`` from config, else ./data)
    timeout : Optional[float]
        Per-call timeout for external calls
    user_id : Optional[str]
        Identity used when a request carries no X-User-Id header

    Returns
    -------
    Backend
        The new shared state
    """
    global backend
    backend = Backend(
        data_path=Path(data_path or config.get("data_path") or tracker_root / "data"),
        timeout=float(
            timeout or config.get("external_timeout_seconds") or DEFAULT_TIMEOUT_SECONDS
        ),
        user_id=user_id or config.get("user_id"),
    )
    logger.info(f"Using data path: {backend.data_path}")
    return backend


backend = configure()

# Initialize FastAPI app
app = FastAPI(
    title="Renovation Tracker API",
    description="Backend API for the Renovation Tracker - scoped tasks, kanban and progress indicators",
    version="1.0.0",
)

# Configure CORS - allow all localhost origins in development
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --------------------------------------------------------------------------
# Request bodies
# --------------------------------------------------------------------------


class ProjectIn(BaseModel):
    name: Optional[str] = None
    home_type: Optional[str] = None
    mode: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    budget_expected: Optional[float] = None
    budget_real: Optional[float] = None
    cover_url: Optional[str] = None


class AreaIn(BaseModel):
    name: Optional[str] = None
    kind: Optional[str] = None
    cover_url: Optional[str] = None


class SubAreaIn(BaseModel):
    area_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None


class CornerIn(BaseModel):
    sub_area_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None


class ScopeIn(BaseModel):
    type: str = "area"
    area_id: Optional[str] = None
    sub_area_id: Optional[str] = None
    corner_id: Optional[str] = None


class TaskIn(BaseModel):
    """Task fields; status and weight accept any synonym the normalizer knows."""

    title: Optional[str] = None
    description: Optional[str] = None
    task_type: Optional[str] = None
    status: Optional[str] = None
    weight: Optional[str] = None
    due_date: Optional[str] = None
    cost_expected: Optional[float] = None
    cost_real: Optional[float] = None
    has_photo_before: Optional[bool] = None
    has_photo_after: Optional[bool] = None
    scope_type: Optional[str] = None
    scope_id: Optional[str] = None
    area_id: Optional[str] = None


class MoveIn(BaseModel):
    direction: str


class PhotosIn(BaseModel):
    before: bool = False
    after: bool = False


def _body(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(exclude_unset=True)


# --------------------------------------------------------------------------
# Error mapping
# --------------------------------------------------------------------------


def _error_response(status_code: int, exc: TrackerError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(ValidationError)  # type: ignore[misc]
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info(f"Rejected {request.method} {request.url.path}: [{exc.code}] {exc.message}")
    return _error_response(422, exc)


@app.exception_handler(NotFoundError)  # type: ignore[misc]
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.info(f"Not found on {request.method} {request.url.path}: {exc.message}")
    return _error_response(404, exc)


@app.exception_handler(ExternalFailure)  # type: ignore[misc]
async def external_failure_handler(request: Request, exc: ExternalFailure) -> JSONResponse:
    logger.error(
        f"External failure on {request.method} {request.url.path}: [{exc.code}] {exc.cause or exc.message}"
    )
    return _error_response(502, exc)


async def _open(project_id: str, user_id: Optional[str] = None) -> ProjectController:
    _request_user.set(user_id)
    return await backend.controller(project_id)


def _scope_state(controller: ProjectController) -> Dict[str, Any]:
    return {
        "selection": controller.scope.selection.to_dict(),
        "label": controller.scope.label(),
        "scoped_tasks": serialize_tasks(controller.scoped_tasks()),
    }


# --------------------------------------------------------------------------
# Service endpoints
# --------------------------------------------------------------------------


@app.get("/")  # type: ignore[misc]
async def root() -> Dict[str, Any]:
    """
    Root endpoint with API information.

    Returns
    -------
    dict
        API information and status
    """
    return {
        "name": "Renovation Tracker API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "/api/projects": "List, create and delete projects",
            "/api/projects/{id}/dashboard": "Live progress, points, deadline and budget indicators",
            "/api/projects/{id}/hierarchy": "Area / SubArea / Corner tree and current scope",
            "/api/projects/{id}/tasks": "Tasks of the current scope",
            "/health": "Health check",
        },
    }


@app.get("/health")  # type: ignore[misc]
async def health() -> Dict[str, str]:
    """
    Health check endpoint.

    Returns
    -------
    dict
        Health status
    """
    return {"status": "healthy"}


# --------------------------------------------------------------------------
# Projects
# --------------------------------------------------------------------------


@app.get("/api/projects")  # type: ignore[misc]
async def get_projects() -> Dict[str, Any]:
    """
    Get list of projects, most recent first.

    Returns
    -------
    dict
        ``projects`` and the ``last_opened_project_id`` to restore
    """
    projects = await backend.catalog.list_projects()
    logger.info(f"Listed {len(projects)} projects")
    return {
        "projects": [p.to_dict() for p in projects],
        "last_opened_project_id": backend.catalog.last_opened_project_id(),
    }


@app.post("/api/projects", status_code=201)  # type: ignore[misc]
async def create_project(body: ProjectIn) -> Dict[str, Any]:
    project = await backend.catalog.create_project(_body(body))
    return project.to_dict()


@app.delete("/api/projects/{project_id}")  # type: ignore[misc]
async def delete_project(project_id: str) -> Dict[str, Any]:
    """Delete a project; its areas, sub-areas, corners and tasks go with it."""
    await backend.catalog.delete_project(project_id)
    backend.forget(project_id)
    return {"deleted": project_id}


@app.get("/api/projects/{project_id}/dashboard")  # type: ignore[misc]
async def get_dashboard(project_id: str) -> Dict[str, Any]:
    """
    Get the live indicators of a project.

    Parameters
    ----------
    project_id : str
        Project to measure

    Returns
    -------
    dict
        Dashboard with progress, points, deadlines, budget and kanban lock
    """
    controller = await _open(project_id)
    return controller.dashboard().to_dict()


@app.get("/api/projects/{project_id}/hierarchy")  # type: ignore[misc]
async def get_hierarchy(project_id: str) -> Dict[str, Any]:
    controller = await _open(project_id)
    return {"hierarchy": controller.hierarchy.to_dict(), **_scope_state(controller)}


@app.put("/api/projects/{project_id}/scope")  # type: ignore[misc]
async def put_scope(project_id: str, body: ScopeIn) -> Dict[str, Any]:
    """
    Change the selected scope.

    Missing deeper ids default to the first child of the selected parent.
    """
    controller = await _open(project_id)
    controller.select_scope(body.type, body.area_id, body.sub_area_id, body.corner_id)
    return _scope_state(controller)


@app.post("/api/projects/{project_id}/reload")  # type: ignore[misc]
async def reload_project(project_id: str) -> Dict[str, Any]:
    """Re-read hierarchy and tasks from storage, dropping anything that vanished."""
    controller = await _open(project_id)
    await controller.reload_hierarchy()
    await controller.load_tasks()
    return {"hierarchy": controller.hierarchy.to_dict(), **_scope_state(controller)}


@app.get("/api/projects/{project_id}/kanban")  # type: ignore[misc]
async def get_kanban(project_id: str) -> Dict[str, Any]:
    controller = await _open(project_id)
    return controller.kanban()


# --------------------------------------------------------------------------
# Hierarchy
# --------------------------------------------------------------------------


@app.post("/api/projects/{project_id}/areas", status_code=201)  # type: ignore[misc]
async def create_area(project_id: str, body: AreaIn) -> Dict[str, Any]:
    controller = await _open(project_id)
    area = await controller.create_area(_body(body))
    return area.to_dict()


@app.patch("/api/projects/{project_id}/areas/{area_id}")  # type: ignore[misc]
async def update_area(project_id: str, area_id: str, body: AreaIn) -> Dict[str, Any]:
    controller = await _open(project_id)
    area = await controller.update_area(area_id, _body(body))
    return area.to_dict()


@app.delete("/api/projects/{project_id}/areas/{area_id}")  # type: ignore[misc]
async def delete_area(project_id: str, area_id: str) -> Dict[str, Any]:
    """
    Delete an area with everything under it.

    Returns
    -------
    dict
        Ids of every removed node and the (possibly narrowed) scope
    """
    controller = await _open(project_id)
    cascade = await controller.delete_area(area_id)
    return {"removed": cascade.to_dict(), **_scope_state(controller)}


@app.post("/api/projects/{project_id}/sub-areas", status_code=201)  # type: ignore[misc]
async def create_sub_area(project_id: str, body: SubAreaIn) -> Dict[str, Any]:
    controller = await _open(project_id)
    if not body.area_id:
        raise ValidationError("area_id is required", "missing_parent")
    sub_area = await controller.create_sub_area(body.area_id, _body(body))
    return sub_area.to_dict()


@app.patch("/api/projects/{project_id}/sub-areas/{sub_area_id}")  # type: ignore[misc]
async def update_sub_area(project_id: str, sub_area_id: str, body: SubAreaIn) -> Dict[str, Any]:
    controller = await _open(project_id)
    sub_area = await controller.update_sub_area(sub_area_id, _body(body))
    return sub_area.to_dict()


@app.delete("/api/projects/{project_id}/sub-areas/{sub_area_id}")  # type: ignore[misc]
async def delete_sub_area(project_id: str, sub_area_id: str) -> Dict[str, Any]:
    controller = await _open(project_id)
    cascade = await controller.delete_sub_area(sub_area_id)
    return {"removed": cascade.to_dict(), **_scope_state(controller)}


@app.post("/api/projects/{project_id}/corners", status_code=201)  # type: ignore[misc]
async def create_corner(project_id: str, body: CornerIn) -> Dict[str, Any]:
    controller = await _open(project_id)
    if not body.sub_area_id:
        raise ValidationError("sub_area_id is required", "missing_parent")
    corner = await controller.create_corner(body.sub_area_id, _body(body))
    return corner.to_dict()


@app.patch("/api/projects/{project_id}/corners/{corner_id}")  # type: ignore[misc]
async def update_corner(project_id: str, corner_id: str, body: CornerIn) -> Dict[str, Any]:
    controller = await _open(project_id)
    corner = await controller.update_corner(corner_id, _body(body))
    return corner.to_dict()


@app.delete("/api/projects/{project_id}/corners/{corner_id}")  # type: ignore[misc]
async def delete_corner(project_id: str, corner_id: str) -> Dict[str, Any]:
    controller = await _open(project_id)
    cascade = await controller.delete_corner(corner_id)
    return {"removed": cascade.to_dict(), **_scope_state(controller)}


# --------------------------------------------------------------------------
# Tasks
# --------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/tasks")  # type: ignore[misc]
async def get_tasks(
    project_id: str,
    area_id: Optional[str] = Query(None, description="All tasks anywhere under this area"),
    all_tasks: bool = Query(False, alias="all", description="Whole project, ignoring scope"),
) -> Dict[str, Any]:
    """
    Get tasks of the current scope.

    Parameters
    ----------
    project_id : str
        Project to read
    area_id : Optional[str]
        When given, return every task under that Area instead
    all_tasks : bool
        When true, return the whole project task set

    Returns
    -------
    dict
        ``tasks`` and the scope ``label`` they were selected with
    """
    controller = await _open(project_id)
    if all_tasks:
        tasks = controller.project_tasks
    elif area_id:
        controller.hierarchy.get_area(area_id)
        tasks = controller.tasks_in_area(area_id)
    else:
        tasks = controller.scoped_tasks()
    return {"tasks": serialize_tasks(tasks), "label": controller.scope.label()}


@app.post("/api/projects/{project_id}/tasks", status_code=201)  # type: ignore[misc]
async def create_task(
    project_id: str, body: TaskIn, x_user_id: Optional[str] = Header(None)
) -> Dict[str, Any]:
    controller = await _open(project_id, x_user_id)
    task = await controller.create_task(_body(body))
    return task.to_dict()


@app.patch("/api/projects/{project_id}/tasks/{task_id}")  # type: ignore[misc]
async def update_task(
    project_id: str, task_id: str, body: TaskIn, x_user_id: Optional[str] = Header(None)
) -> Dict[str, Any]:
    """
    Update task fields.

    Returns
    -------
    dict
        Stored task, points awarded by this change and any warning
        (e.g. points that could not be applied)
    """
    controller = await _open(project_id, x_user_id)
    change = await controller.update_task(task_id, _body(body))
    return change.to_dict()


@app.post("/api/projects/{project_id}/tasks/{task_id}/move")  # type: ignore[misc]
async def move_task(
    project_id: str, task_id: str, body: MoveIn, x_user_id: Optional[str] = Header(None)
) -> Dict[str, Any]:
    controller = await _open(project_id, x_user_id)
    change = await controller.move_task(task_id, body.direction)  # type: ignore[arg-type]
    return change.to_dict()


@app.post("/api/projects/{project_id}/tasks/{task_id}/photos")  # type: ignore[misc]
async def set_task_photos(project_id: str, task_id: str, body: PhotosIn) -> Dict[str, Any]:
    controller = await _open(project_id)
    task = await controller.set_task_photos(task_id, body.before, body.after)
    return task.to_dict()


@app.delete("/api/projects/{project_id}/tasks/{task_id}")  # type: ignore[misc]
async def delete_task(project_id: str, task_id: str) -> Dict[str, Any]:
    controller = await _open(project_id)
    await controller.delete_task(task_id)
    return {"deleted": task_id}


if __name__ == "__main__":
    import uvicorn

    port = config.get("backend", {}).get("port", DEFAULT_PORT)
    logger.info(f"Starting Renovation Tracker API on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")  # nosec B104
