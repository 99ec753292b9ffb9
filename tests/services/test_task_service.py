"""Tests for manager task creation, updates and rule generation."""

from datetime import timedelta
from decimal import Decimal

import pytest

from restaurant_kernel.domain.models import (
    AuditAction,
    AuditEntity,
    TaskCategory,
    TaskDraft,
    TaskPriority,
    TaskSource,
    TaskStatus,
)
from restaurant_kernel.exceptions import InvalidTaskError, TaskNotFoundError
from restaurant_services.task_service import ManagerTaskService


def _draft(title="Clean the fryer", priority=TaskPriority.LOW):
    return TaskDraft(
        title=title,
        description="Weekly deep clean",
        category=TaskCategory.QUALITY,
        priority=priority,
    )


@pytest.fixture
def service(make_store, deterministic_clock):
    store = make_store()
    return store, ManagerTaskService(store, deterministic_clock)


class TestAddTask:

    def test_creates_open_task(self, service, cashier, deterministic_clock):
        store, tasks = service
        task = tasks.add_task(_draft(), cashier)

        assert task.status is TaskStatus.OPEN
        assert task.source is TaskSource.MANUAL
        assert task.created_at == task.updated_at == deterministic_clock.now()
        assert task.created_by_user_id == cashier.id
        assert store.state.manager_tasks == (task,)

        (entry,) = store.state.audit_logs
        assert (entry.action, entry.entity) == (AuditAction.CREATE, AuditEntity.ACTION_CENTER)
        assert entry.details == "Task created: Clean the fryer"

    def test_manual_tasks_not_deduplicated(self, service):
        _, tasks = service
        tasks.add_task(_draft())
        tasks.add_task(_draft())
        assert len(tasks.active_tasks()) == 2

    def test_blank_title_rejected(self, service):
        store, tasks = service
        with pytest.raises(InvalidTaskError):
            tasks.add_task(_draft(title="   "))
        assert store.state.manager_tasks == ()


class TestCreateTasks:

    def test_skips_titles_of_active_tasks(self, service):
        _, tasks = service
        tasks.add_task(_draft("Order milk"))
        created = tasks.create_tasks([_draft("Order milk"), _draft("Order eggs")])
        assert [t.title for t in created] == ["Order eggs"]

    def test_nothing_to_create_publishes_nothing(self, service):
        store, tasks = service
        tasks.add_task(_draft("Order milk"))
        before = store.state

        assert tasks.create_tasks([_draft("Order milk")]) == ()
        assert store.state is before


class TestUpdateTask:

    def test_status_change_audited(self, service, cashier, deterministic_clock):
        store, tasks = service
        task = tasks.add_task(_draft())
        deterministic_clock.advance(60)

        updated = tasks.update_task(task.id, status=TaskStatus.DONE, actor=cashier)

        assert updated.status is TaskStatus.DONE
        assert updated.updated_at == task.created_at + timedelta(seconds=60)
        assert tasks.active_tasks() == ()

        entry = store.state.audit_logs[-1]
        assert entry.action is AuditAction.UPDATE
        assert entry.details == 'Task status changed: "Clean the fryer" to done'
        assert entry.before == {"status": "open"}
        assert entry.after == {"status": "done"}
        assert entry.user_id == cashier.id

    def test_priority_change_not_audited(self, service):
        store, tasks = service
        task = tasks.add_task(_draft())
        audit_count = len(store.state.audit_logs)

        updated = tasks.update_task(task.id, priority=TaskPriority.HIGH, assigned_to_user_id="u7")

        assert updated.priority is TaskPriority.HIGH
        assert updated.assigned_to_user_id == "u7"
        assert len(store.state.audit_logs) == audit_count

    def test_unknown_task(self, service):
        _, tasks = service
        with pytest.raises(TaskNotFoundError) as exc_info:
            tasks.update_task("missing", status=TaskStatus.DONE)
        assert exc_info.value.task_id == "missing"

    def test_done_task_frees_title_for_rules(self, make_store, make_ingredient, deterministic_clock):
        store = make_store(
            inventory=[make_ingredient(name="A", current_stock="1", min_threshold="5")],
        )
        tasks = ManagerTaskService(store, deterministic_clock)
        (first,) = tasks.generate_tasks_from_rules()
        tasks.update_task(first.id, status=TaskStatus.DONE)

        (second,) = tasks.generate_tasks_from_rules()
        assert second.title == first.title
        assert second.id != first.id


class TestGenerateTasksFromRules:

    def test_idempotent(self, make_store, make_ingredient, make_menu_item, deterministic_clock):
        store = make_store(
            inventory=[
                make_ingredient(id="i1", name="A", current_stock="10", min_threshold="20"),
                make_ingredient(id="i2", name="B", current_stock="0", min_threshold="1"),
            ],
            menu=[make_menu_item(id="m1", name="Soup")],
        )
        tasks = ManagerTaskService(store, deterministic_clock)

        created = tasks.generate_tasks_from_rules()
        assert [t.title for t in created] == [
            "Complete menu item recipes", "Low stock: A", "Low stock: B",
        ]
        assert all(t.source is TaskSource.RULE for t in created)

        assert tasks.generate_tasks_from_rules() == ()
        assert len(store.state.manager_tasks) == 3

    def test_nothing_fires(self, make_store, make_ingredient, deterministic_clock):
        store = make_store(inventory=[make_ingredient(current_stock=Decimal("100"))])
        tasks = ManagerTaskService(store, deterministic_clock)
        assert tasks.generate_tasks_from_rules() == ()
        assert store.state.audit_logs == ()
