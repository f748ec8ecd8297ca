"""
Points Ledger: at-most-once completion bonus per task.

The ledger is a per (user, project) mapping ``task_id -> True`` kept in the
durable key/value collaborator. An award first applies the delta to the
user's lifetime total and only then marks the task as scored, so a failed
external update leaves the ledger untouched and a retry can award again.

Known risk: the ledger is a local cache. If its storage is cleared, a task
that was already scored can be scored a second time. Nothing server-side
reconciles the ledger against the lifetime total.
"""

import json
import logging
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from src.core.collaborators import KeyValueStore, Result
from src.core.errors import ExternalFailure

logger = logging.getLogger(__name__)

PointsSink = Callable[[str, int], Awaitable[Result[int]]]


class PointsLedger:
    """Idempotency record for task completion bonuses."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        # (user, project, task) awards awaiting the external update
        self._in_flight: Set[Tuple[str, str, str]] = set()

    @staticmethod
    def key(user_id: str, project_id: str) -> str:
        return f"points_ledger:{user_id}:{project_id}"

    def _load(self, user_id: str, project_id: str) -> Dict[str, bool]:
        raw = self.store.get(self.key(user_id, project_id))
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Unreadable points ledger for {user_id}/{project_id}: {e}")
            return {}
        return {str(k): bool(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def has_been_scored(self, user_id: str, project_id: str, task_id: str) -> bool:
        return self._load(user_id, project_id).get(str(task_id), False)

    def mark_scored(self, user_id: str, project_id: str, task_id: str) -> None:
        ledger = self._load(user_id, project_id)
        ledger[str(task_id)] = True
        self.store.set(self.key(user_id, project_id), json.dumps(ledger))

    async def award(
        self,
        user_id: str,
        project_id: str,
        task_id: str,
        delta: int,
        apply_delta: PointsSink,
    ) -> Optional[int]:
        """
        Award ``delta`` points for a task unless already scored.

        Parameters
        ----------
        user_id : str
            User receiving the points
        project_id : str
            Project the task belongs to
        task_id : str
            Completed task
        delta : int
            Points to add
        apply_delta : PointsSink
            External mutation of the lifetime total

        Returns
        -------
        Optional[int]
            Delta applied, or None when the task was already scored (or an
            award for it is still in flight)

        Raises
        ------
        ExternalFailure
            When the external update fails; the ledger is not marked
        """
        key = (str(user_id), str(project_id), str(task_id))
        if key in self._in_flight or self.has_been_scored(user_id, project_id, task_id):
            logger.info(f"Task {task_id} already scored for user {user_id}; skipping")
            return None
        self._in_flight.add(key)
        try:
            result = await apply_delta(user_id, delta)
        finally:
            self._in_flight.discard(key)
        if not result.ok:
            logger.warning(f"Failed to update lifetime points for task {task_id}: {result.error}")
            raise ExternalFailure(
                "Task completed, but points could not be applied. Please retry.",
                "points_failed",
                cause=result.error,
            )
        self.mark_scored(user_id, project_id, task_id)
        logger.info(f"Points applied: task={task_id} user={user_id} delta={delta}")
        return delta
