"""Assignment resolver: the only writer of task status and assignee.

Each entry point translates an intent (assign, complete, unassign, move)
into a store patch.  The resolver may fast-fail on availability before
touching the store, but the store's own check inside the transaction is
the one that counts; two managers racing for the same engineer both pass
the fast path and exactly one of them wins in the store.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from ..errors import EngineerUnavailable, InvalidTransition
from .model import Availability, Recommendation, Task, TaskStatus
from .store import TaskStore


class AssignmentResolver:
    def __init__(self, store: TaskStore, *, fast_fail: bool = True) -> None:
        self.store = store
        self.fast_fail = fast_fail

    def check_available(self, engineer_id: str, task_id: str) -> None:
        if not self.fast_fail:
            return
        if self.store.engineer_availability(engineer_id) == Availability.BUSY:
            raise EngineerUnavailable(
                f"Engineer {engineer_id} already has a task in progress",
                engineer_id=engineer_id,
                task_id=task_id,
            )

    # ------------------------------------------------------------------
    # Open -> InProgress
    # ------------------------------------------------------------------

    def assign(self, task_id: str, engineer_id: str, *, actor: Optional[str] = None) -> Task:
        """Direct assignment: the task moves to in_progress owned by *engineer_id*."""
        self.check_available(engineer_id, task_id)
        task = self.store.apply_mutation(
            task_id,
            {"status": TaskStatus.IN_PROGRESS, "assignee": engineer_id},
            actor=actor,
        )
        logger.info("Assigned {} to {}", task_id, engineer_id)
        return task

    def accept_recommendation(
        self,
        task_id: str,
        recommendation: Recommendation,
        *,
        actor: Optional[str] = None,
    ) -> Task:
        """Assign the recommended engineer.

        The recommendation may be stale; availability is checked again now
        exactly as for a direct assignment.
        """
        logger.info(
            "Accepting recommendation {} (score {:.2f}) for {}",
            recommendation.engineer_id,
            recommendation.score,
            task_id,
        )
        return self.assign(task_id, recommendation.engineer_id, actor=actor)

    # ------------------------------------------------------------------
    # InProgress -> Done / Open
    # ------------------------------------------------------------------

    def complete(self, task_id: str, *, actor: Optional[str] = None) -> Task:
        task = self.store.apply_mutation(task_id, {"status": TaskStatus.DONE}, actor=actor)
        logger.info("Completed {}", task_id)
        return task

    def unassign(self, task_id: str, *, actor: Optional[str] = None) -> Task:
        task = self.store.apply_mutation(task_id, {"status": TaskStatus.OPEN}, actor=actor)
        logger.info("Unassigned {}", task_id)
        return task

    def transition(
        self,
        task_id: str,
        status: str | TaskStatus,
        *,
        engineer_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Task:
        """Generic move used by the board; ``in_progress`` needs *engineer_id*."""
        try:
            target = TaskStatus(getattr(status, "value", status))
        except ValueError:
            raise InvalidTransition(f"Unknown status '{status}'", task_id=task_id) from None
        if target == TaskStatus.IN_PROGRESS:
            if not engineer_id:
                raise InvalidTransition(
                    f"Moving {task_id} to in_progress requires an engineer",
                    task_id=task_id,
                )
            return self.assign(task_id, engineer_id, actor=actor)
        if engineer_id:
            raise InvalidTransition(
                f"An engineer can only be named when moving {task_id} to in_progress",
                task_id=task_id,
            )
        return self.store.apply_mutation(task_id, {"status": target}, actor=actor)

    # ------------------------------------------------------------------
    # Engineer self-service
    # ------------------------------------------------------------------

    def current_task(self, engineer_id: str) -> Optional[Task]:
        """The engineer's single in_progress task, if any."""
        self.store.get_engineer(engineer_id)
        for task in self.store.read_snapshot():
            if task.status == TaskStatus.IN_PROGRESS and task.assignee == engineer_id:
                return task
        return None

    def complete_own(self, engineer_id: str, task_id: str) -> Task:
        """Let an engineer mark their own current task as done."""
        task = self.store.get_task(task_id)
        if task.assignee != engineer_id or task.status != TaskStatus.IN_PROGRESS:
            raise InvalidTransition(
                f"Task {task_id} is not the current task of engineer {engineer_id}",
                task_id=task_id,
                engineer_id=engineer_id,
            )
        # Naming the assignee makes the store re-check ownership inside the transaction.
        task = self.store.apply_mutation(
            task_id,
            {"status": TaskStatus.DONE, "assignee": engineer_id},
            actor=engineer_id,
        )
        logger.info("Engineer {} completed {}", engineer_id, task_id)
        return task
