"""
restaurant_services.task_service -- Manager task lifecycle.

Responsibility:
    Create manager tasks (manually, from rule drafts, or queued by a sale),
    update their status and fields, and run the rule-based generator.

Architecture position:
    Services -- imperative shell over ``restaurant_engines.task_rules``.

Invariants enforced:
    - Rule drafts are deduplicated by title against open and in-progress
      tasks, so running the generator twice creates nothing the second time.
    - Every created task gets one ``CREATE ACTION_CENTER`` audit entry.
    - A status change gets one ``UPDATE ACTION_CENTER`` audit entry.
    - Each call publishes at most once.

Failure modes:
    - TaskNotFoundError: update on an unknown task id.
    - InvalidTaskError: a draft with an empty title.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from restaurant_engines.task_rules import dedupe_drafts, evaluate_task_rules
from restaurant_kernel.domain.audit import AuditTrail
from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    ManagerTask,
    Operator,
    TaskDraft,
    TaskPriority,
    TaskStatus,
)
from restaurant_kernel.exceptions import InvalidTaskError, TaskNotFoundError
from restaurant_kernel.logging_config import get_logger
from restaurant_services.state import (
    SYSTEM_OPERATOR,
    RestaurantState,
    RestaurantStore,
    replace_by_id,
)

logger = get_logger("services.tasks")


def build_task(draft: TaskDraft, now: datetime, actor: Operator) -> ManagerTask:
    if not draft.title or not draft.title.strip():
        raise InvalidTaskError("title is required")
    return ManagerTask(
        id=str(uuid4()),
        title=draft.title,
        description=draft.description,
        category=draft.category,
        priority=draft.priority,
        status=TaskStatus.OPEN,
        source=draft.source,
        created_at=now,
        updated_at=now,
        evidence=draft.evidence,
        due_at=draft.due_at,
        created_by_user_id=actor.id,
        assigned_to_user_id=draft.assigned_to_user_id,
    )


def plan_task_creation(
    state: RestaurantState,
    drafts: Iterable[TaskDraft],
    now: datetime,
    actor: Operator,
) -> tuple[RestaurantState, tuple[ManagerTask, ...]]:
    """The state with ``drafts`` added as open tasks, plus the new tasks."""
    created = tuple(build_task(draft, now, actor) for draft in drafts)
    if not created:
        return state, ()

    trail = AuditTrail(
        state.audit_logs, timestamp=now, user_id=actor.id, user_name=actor.full_name,
    )
    for task in created:
        trail.record(
            AuditAction.CREATE,
            AuditEntity.ACTION_CENTER,
            task.id,
            f"Task created: {task.title}",
            after=task,
        )
    next_state = replace(
        state,
        manager_tasks=state.manager_tasks + created,
        audit_logs=trail.entries,
    )
    return next_state, created


class ManagerTaskService:
    """
    Creates, updates and generates manager tasks.

    Contract:
        Receives the store and a clock via constructor injection.
    Non-goals:
        - Does not schedule the rule generator; callers decide when to run it.
    """

    def __init__(self, store: RestaurantStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def active_tasks(self) -> tuple[ManagerTask, ...]:
        return tuple(t for t in self._store.state.manager_tasks if t.status.is_active)

    def add_task(self, draft: TaskDraft, actor: Operator | None = None) -> ManagerTask:
        """Create one task exactly as drafted; manual tasks are never deduplicated."""
        next_state, created = plan_task_creation(
            self._store.state, (draft,), self._clock.now(), actor or SYSTEM_OPERATOR,
        )
        self._store.publish(next_state)
        logger.info(
            "manager_task_created",
            extra={"task_id": created[0].id, "source": draft.source.value},
        )
        return created[0]

    def create_tasks(
        self,
        drafts: Iterable[TaskDraft],
        actor: Operator | None = None,
    ) -> tuple[ManagerTask, ...]:
        """
        Create the drafts whose titles are not already held by an active task.

        Returns:
            The tasks actually created, possibly empty.
        """
        state = self._store.state
        fresh = dedupe_drafts(drafts, state.manager_tasks)
        if not fresh:
            return ()
        next_state, created = plan_task_creation(
            state, fresh, self._clock.now(), actor or SYSTEM_OPERATOR,
        )
        self._store.publish(next_state)
        logger.info(
            "manager_tasks_created",
            extra={"count": len(created), "titles": [t.title for t in created]},
        )
        return created

    def generate_tasks_from_rules(self, actor: Operator | None = None) -> tuple[ManagerTask, ...]:
        """Run the task rules over the current state and create what is new."""
        state = self._store.state
        drafts = evaluate_task_rules(
            state.menu, state.inventory, state.sales, self._clock.now(),
        )
        created = self.create_tasks(drafts, actor)
        logger.info(
            "task_rules_evaluated",
            extra={"proposed_count": len(drafts), "created_count": len(created)},
        )
        return created

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        assigned_to_user_id: str | None = None,
        due_at: datetime | None = None,
        actor: Operator | None = None,
    ) -> ManagerTask:
        """
        Apply the given field changes and bump ``updated_at``.

        Only a status change is audited.

        Raises:
            TaskNotFoundError: No task has ``task_id``.
        """
        state = self._store.state
        task = next((t for t in state.manager_tasks if t.id == task_id), None)
        if task is None:
            raise TaskNotFoundError(task_id)

        now = self._clock.now()
        changes: dict[str, object] = {"updated_at": now}
        if status is not None:
            changes["status"] = status
        if priority is not None:
            changes["priority"] = priority
        if assigned_to_user_id is not None:
            changes["assigned_to_user_id"] = assigned_to_user_id
        if due_at is not None:
            changes["due_at"] = due_at
        updated = replace(task, **changes)

        audit_logs = state.audit_logs
        if status is not None and status is not task.status:
            actor = actor or SYSTEM_OPERATOR
            trail = AuditTrail(
                state.audit_logs, timestamp=now, user_id=actor.id, user_name=actor.full_name,
            )
            trail.record(
                AuditAction.UPDATE,
                AuditEntity.ACTION_CENTER,
                task.id,
                f'Task status changed: "{task.title}" to {status.value}',
                before={"status": task.status},
                after={"status": status},
            )
            audit_logs = trail.entries

        self._store.publish(replace(
            state,
            manager_tasks=replace_by_id(state.manager_tasks, {task.id: updated}),
            audit_logs=audit_logs,
        ))
        logger.info(
            "manager_task_updated",
            extra={"task_id": task.id, "fields": sorted(k for k in changes if k != "updated_at")},
        )
        return updated
