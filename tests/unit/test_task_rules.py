"""
Tests for src/services/task_rules.py

Covers list ordering and the lifecycle decision functions that both the
PostgreSQL repository and the in-memory doubles apply under a lock.
"""

import pytest
from datetime import datetime, timedelta

from src.models.results import ResultStatus
from src.models.task import Task, TaskActionType, TaskPriority, TaskStatus
from src.services.task_rules import (
    TransitionContext,
    decide_accept_review,
    decide_reassign,
    decide_return_to_work,
    decide_submit_for_review,
    effective_owner_id,
    priority_rank,
    sort_tasks,
)

NOW = datetime(2026, 3, 10, 12, 0, 0)


def make_task(task_id="t1", priority=TaskPriority.P2, deadline_at=None, created_at=NOW, **fields):
    defaults = dict(
        id=task_id,
        workspace_id="ws-1",
        source_chat_id="chat-1",
        source_message_id=f"msg-{task_id}",
        source_text="Do it",
        creator_user_id="anna",
        assignee_user_id="maria",
        priority=priority,
        deadline_at=deadline_at,
        created_at=created_at,
        updated_at=created_at,
    )
    defaults.update(fields)
    return Task(**defaults)


def make_ctx(task, actor="maria", owner="anna", member=True, nonce_seen=False):
    return TransitionContext(
        task=task,
        actor_user_id=actor,
        owner_user_id=owner,
        actor_is_member=member,
        nonce_seen=nonce_seen,
        now=NOW,
    )


class TestSortTasks:
    """Tests for sort_tasks."""

    def test_priority_first(self):
        tasks = [
            make_task("a", TaskPriority.P3),
            make_task("b", TaskPriority.P1),
            make_task("c", TaskPriority.P2),
        ]
        assert [t.id for t in sort_tasks(tasks)] == ["b", "c", "a"]

    def test_deadline_before_no_deadline(self):
        tasks = [
            make_task("none", TaskPriority.P1),
            make_task("late", TaskPriority.P1, deadline_at=NOW + timedelta(days=3)),
            make_task("soon", TaskPriority.P1, deadline_at=NOW + timedelta(days=1)),
        ]
        assert [t.id for t in sort_tasks(tasks)] == ["soon", "late", "none"]

    def test_creation_time_breaks_ties(self):
        tasks = [
            make_task("newer", created_at=NOW + timedelta(minutes=5)),
            make_task("older", created_at=NOW),
        ]
        assert [t.id for t in sort_tasks(tasks)] == ["older", "newer"]

    def test_stable_for_equal_keys(self):
        tasks = [make_task(task_id) for task_id in ("x", "y", "z")]
        assert [t.id for t in sort_tasks(tasks)] == ["x", "y", "z"]

    def test_idempotent(self):
        tasks = [
            make_task("a", TaskPriority.P3),
            make_task("b", TaskPriority.P1, deadline_at=NOW),
            make_task("c", TaskPriority.P1),
        ]
        once = sort_tasks(tasks)
        assert sort_tasks(once) == once

    def test_input_not_mutated(self):
        tasks = [make_task("a", TaskPriority.P3), make_task("b", TaskPriority.P1)]
        sort_tasks(tasks)
        assert [t.id for t in tasks] == ["a", "b"]

    def test_priority_rank(self):
        assert priority_rank(TaskPriority.P1) < priority_rank(TaskPriority.P2) < priority_rank(TaskPriority.P3)


class TestEffectiveOwner:
    def test_workspace_owner(self):
        assert effective_owner_id(make_task(), "anna") == "anna"

    def test_creator_without_workspace(self):
        task = make_task(workspace_id=None, creator_user_id="boris")
        assert effective_owner_id(task, None) == "boris"


class TestSubmitForReview:
    """Tests for decide_submit_for_review."""

    def test_active_to_on_review(self):
        decision = decide_submit_for_review(make_ctx(make_task()))

        assert decision.status == ResultStatus.OK
        assert decision.changes["status"] == TaskStatus.ON_REVIEW
        assert decision.changes["submitted_for_review_at"] == NOW
        assert decision.action == TaskActionType.SUBMIT_FOR_REVIEW

    def test_not_assignee(self):
        decision = decide_submit_for_review(make_ctx(make_task(), actor="ivan"))
        assert decision.status == ResultStatus.NOT_ASSIGNEE

    def test_not_in_workspace(self):
        decision = decide_submit_for_review(make_ctx(make_task(), member=False))
        assert decision.status == ResultStatus.NOT_IN_WORKSPACE

    def test_membership_not_required_without_workspace(self):
        task = make_task(workspace_id=None)
        decision = decide_submit_for_review(make_ctx(task, member=False))
        assert decision.changed

    def test_seen_nonce_is_noop(self):
        decision = decide_submit_for_review(make_ctx(make_task(), nonce_seen=True))
        assert decision.status == ResultStatus.OK
        assert not decision.changed

    def test_already_on_review_is_noop(self):
        task = make_task(status=TaskStatus.ON_REVIEW)
        decision = decide_submit_for_review(make_ctx(task))
        assert decision.status == ResultStatus.OK
        assert not decision.changed

    def test_self_assigned_closes_directly(self):
        task = make_task(creator_user_id="maria")
        decision = decide_submit_for_review(make_ctx(task))

        assert decision.changes["status"] == TaskStatus.CLOSED
        assert decision.changes["closed_at"] == NOW
        assert decision.action == TaskActionType.SELF_CLOSE

    def test_self_assigned_on_closed_is_noop(self):
        task = make_task(creator_user_id="maria", status=TaskStatus.CLOSED)
        assert not decide_submit_for_review(make_ctx(task)).changed


class TestAcceptReview:
    def test_closes_on_review_task(self):
        task = make_task(status=TaskStatus.ON_REVIEW)
        decision = decide_accept_review(make_ctx(task, actor="anna"))

        assert decision.changes == {"status": TaskStatus.CLOSED, "closed_at": NOW}
        assert decision.action == TaskActionType.ACCEPT_REVIEW

    def test_forbidden_for_non_owner(self):
        task = make_task(status=TaskStatus.ON_REVIEW)
        assert decide_accept_review(make_ctx(task, actor="maria")).status == ResultStatus.FORBIDDEN

    def test_forbidden_when_no_owner(self):
        task = make_task(status=TaskStatus.ON_REVIEW)
        assert decide_accept_review(make_ctx(task, actor="anna", owner=None)).status == ResultStatus.FORBIDDEN

    @pytest.mark.parametrize("status", [TaskStatus.ACTIVE, TaskStatus.CLOSED])
    def test_other_statuses_are_noop(self, status):
        decision = decide_accept_review(make_ctx(make_task(status=status), actor="anna"))
        assert decision.status == ResultStatus.OK
        assert not decision.changed


class TestReturnToWork:
    def test_back_to_active_with_comment(self):
        task = make_task(status=TaskStatus.ON_REVIEW, submitted_for_review_at=NOW)
        decision = decide_return_to_work(make_ctx(task, actor="anna"), "Add totals")

        assert decision.changes["status"] == TaskStatus.ACTIVE
        assert decision.changes["submitted_for_review_at"] is None
        assert decision.changes["last_return_comment"] == "Add totals"
        assert decision.changes["last_return_by_user_id"] == "anna"
        assert decision.action == TaskActionType.RETURN_TO_WORK

    def test_forbidden_for_assignee(self):
        task = make_task(status=TaskStatus.ON_REVIEW)
        decision = decide_return_to_work(make_ctx(task, actor="maria"), "no")
        assert decision.status == ResultStatus.FORBIDDEN

    def test_active_task_is_noop(self):
        decision = decide_return_to_work(make_ctx(make_task(), actor="anna"), "again")
        assert not decision.changed


class TestReassign:
    def test_changes_assignee(self):
        decision = decide_reassign(make_ctx(make_task(), actor="anna"), "ivan", True)

        assert decision.changes == {"assignee_user_id": "ivan"}
        assert decision.action == TaskActionType.REASSIGN

    def test_same_assignee_is_noop(self):
        decision = decide_reassign(make_ctx(make_task(), actor="anna"), "maria", True)
        assert decision.status == ResultStatus.OK
        assert not decision.changed

    def test_forbidden_for_non_owner(self):
        decision = decide_reassign(make_ctx(make_task(), actor="maria"), "ivan", True)
        assert decision.status == ResultStatus.FORBIDDEN

    def test_closed_task(self):
        task = make_task(status=TaskStatus.CLOSED)
        decision = decide_reassign(make_ctx(task, actor="anna"), "ivan", True)
        assert decision.status == ResultStatus.TASK_CLOSED

    def test_inactive_candidate(self):
        decision = decide_reassign(make_ctx(make_task(), actor="anna"), "ghost", False)
        assert decision.status == ResultStatus.INVALID_ASSIGNEE

    def test_task_without_workspace(self):
        task = make_task(workspace_id=None, creator_user_id="anna")
        decision = decide_reassign(make_ctx(task, actor="anna", owner="anna"), "ivan", False)
        assert decision.status == ResultStatus.INVALID_ASSIGNEE

    def test_seen_nonce_is_noop(self):
        decision = decide_reassign(make_ctx(make_task(), actor="anna", nonce_seen=True), "ivan", True)
        assert decision.status == ResultStatus.OK
        assert not decision.changed
