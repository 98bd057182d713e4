"""Task lifecycle: creation with reward auto-assignment, submission, review and point awards."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .exceptions import (
    ChorePointsError,
    InvalidTransitionError,
    MissingReferenceError,
    PreconditionError,
    ValidationError,
)
from .family import require_family_children
from .ledger import PointsLike, credit, require_points, to_points
from .models import (
    REWARDS,
    TASKS,
    USERS,
    FanOutResult,
    Task,
    TaskStatus,
    UserRole,
    merge_ids,
    new_id,
    utcnow,
)
from .ops import StructuredLogger
from .store import (
    DEFAULT_TRANSACTION_ATTEMPTS,
    DocumentStore,
    Transaction,
    run_transaction,
    where,
)

SUBMITTABLE = (TaskStatus.PENDING, TaskStatus.DECLINED)

_UNSET = object()


def _clean_ids(values: Iterable[str]) -> List[str]:
    return merge_ids([], [value for value in values if value])


class TaskEngine:
    """State machine for a task: ``pending -> submitted -> approved``.

    ``submitted`` may also move to ``declined`` (which can be resubmitted), and
    any non-approved task can be reset to ``pending``. Approval credits every
    assigned child exactly once; the status guard rejects a second approval.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        logger: StructuredLogger | None = None,
        attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
    ) -> None:
        self._store = store
        self._logger = logger or StructuredLogger()
        self._attempts = attempts

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, task_id: str) -> Task:
        if not task_id:
            raise MissingReferenceError("Task id is missing.")
        return Task.from_document(self._store.require(TASKS, task_id))

    def tasks_for_family(self, family_id: str) -> List[Task]:
        documents = self._store.query(TASKS, [where("familyId", "==", family_id)], order_by="createdAt")
        return [Task.from_document(doc) for doc in documents]

    def tasks_for_child(self, child_id: str, *, include_approved: bool = True) -> List[Task]:
        filters = [where("assignedChildIds", "array_contains", child_id)]
        if not include_approved:
            filters.append(where("status", "!=", TaskStatus.APPROVED.value))
        documents = self._store.query(TASKS, filters, order_by="createdAt")
        return [Task.from_document(doc) for doc in documents]

    def tasks_awaiting_approval(self, family_id: str) -> List[Task]:
        documents = self._store.query(
            TASKS,
            [where("familyId", "==", family_id), where("status", "==", TaskStatus.SUBMITTED.value)],
            order_by="updatedAt",
        )
        return [Task.from_document(doc) for doc in documents]

    # ------------------------------------------------------------------
    # Creation and editing
    # ------------------------------------------------------------------
    def create(
        self,
        *,
        title: str,
        points: PointsLike,
        assigned_child_ids: Sequence[str],
        linked_reward_ids: Sequence[str],
        created_by_parent_id: str,
        family_id: str,
        description: str = "",
        is_recurring: bool = False,
        image_url: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Task:
        """Persist a new task and add its children to every linked reward in one transaction."""

        if not family_id:
            raise MissingReferenceError("A task needs a family id.")
        if not created_by_parent_id:
            raise MissingReferenceError("A task needs the id of the parent creating it.")
        rewards = _clean_ids(linked_reward_ids)
        if not rewards:
            raise ValidationError("A task must be linked to at least one reward.")
        moment = at or utcnow()
        task = Task(
            id=new_id(),
            title=self._clean_title(title),
            description=description.strip(),
            points=require_points(to_points(points), allow_zero=True),
            assigned_child_ids=_clean_ids(assigned_child_ids),
            linked_reward_ids=rewards,
            created_by_parent_id=created_by_parent_id,
            family_id=family_id,
            is_recurring=is_recurring,
            image_url=image_url,
            created_at=moment,
            updated_at=moment,
        )

        def body(txn: Transaction) -> Task:
            require_family_children(txn, task.assigned_child_ids, task.family_id)
            self._link_rewards(txn, task)
            txn.set(TASKS, task.id, task.to_document())
            return task

        created = self._run(body)
        self._logger.log(
            "task_created",
            task=created.id,
            family=created.family_id,
            points=created.points,
            children=list(created.assigned_child_ids),
            rewards=list(created.linked_reward_ids),
        )
        return created

    def update(
        self,
        task_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        points: Optional[PointsLike] = None,
        is_recurring: Optional[bool] = None,
        image_url: object = _UNSET,
        assigned_child_ids: Optional[Sequence[str]] = None,
        linked_reward_ids: Optional[Sequence[str]] = None,
        at: Optional[datetime] = None,
    ) -> Task:
        """Edit a task that has not been approved yet."""

        new_title = self._clean_title(title) if title is not None else None
        new_points = require_points(to_points(points), allow_zero=True) if points is not None else None
        new_rewards = _clean_ids(linked_reward_ids) if linked_reward_ids is not None else None
        if new_rewards is not None and not new_rewards:
            raise ValidationError("A task must be linked to at least one reward.")
        moment = at or utcnow()

        def body(txn: Transaction) -> Task:
            task = self._load(txn, task_id)
            if task.status is TaskStatus.APPROVED:
                raise PreconditionError(f"Task '{task_id}' is approved and can no longer be edited.")
            if new_title is not None:
                task.title = new_title
            if description is not None:
                task.description = description.strip()
            if new_points is not None:
                task.points = new_points
            if is_recurring is not None:
                task.is_recurring = is_recurring
            if image_url is not _UNSET:
                task.image_url = image_url  # type: ignore[assignment]
            if assigned_child_ids is not None:
                task.assigned_child_ids = _clean_ids(assigned_child_ids)
            if new_rewards is not None:
                task.linked_reward_ids = new_rewards
            if assigned_child_ids is not None or new_rewards is not None:
                require_family_children(txn, task.assigned_child_ids, task.family_id)
            task.updated_at = moment
            self._link_rewards(txn, task)
            txn.set(TASKS, task.id, task.to_document())
            return task

        updated = self._run(body)
        self._logger.log("task_updated", task=updated.id)
        return updated

    def delete(self, task_id: str) -> Task:
        """Remove a task. Points already awarded for it stay with the children."""

        def body(txn: Transaction) -> Task:
            task = self._load(txn, task_id)
            txn.delete(TASKS, task_id)
            return task

        removed = self._run(body)
        self._logger.log("task_deleted", task=task_id, status=removed.status.value)
        return removed

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------
    def submit(
        self,
        task_id: str,
        proof_image_url: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> Task:
        moment = at or utcnow()

        def body(txn: Transaction) -> Task:
            task = self._load(txn, task_id)
            if task.status not in SUBMITTABLE:
                raise InvalidTransitionError("task", task_id, task.status.value, "submit")
            task.status = TaskStatus.SUBMITTED
            task.proof_image_url = proof_image_url
            task.updated_at = moment
            txn.set(TASKS, task_id, task.to_document())
            return task

        task = self._run(body)
        self._logger.log("task_submitted", task=task_id, proof=bool(proof_image_url))
        return task

    def decline(self, task_id: str, *, at: Optional[datetime] = None) -> Task:
        task = self._transition(task_id, TaskStatus.DECLINED, "decline", at=at)
        self._logger.log("task_declined", task=task_id)
        return task

    def reset_to_pending(self, task_id: str, *, at: Optional[datetime] = None) -> Task:
        """Send a non-approved task back to ``pending`` and drop its proof."""

        moment = at or utcnow()

        def body(txn: Transaction) -> Task:
            task = self._load(txn, task_id)
            if task.status is TaskStatus.APPROVED:
                raise InvalidTransitionError("task", task_id, task.status.value, "reset")
            task.status = TaskStatus.PENDING
            task.proof_image_url = None
            task.updated_at = moment
            txn.set(TASKS, task_id, task.to_document())
            return task

        task = self._run(body)
        self._logger.log("task_reset", task=task_id)
        return task

    def approve(self, task_id: str, *, at: Optional[datetime] = None) -> tuple[Task, FanOutResult]:
        """Approve a submitted task and credit its points to every assigned child.

        When the status change and all credits fit in one transaction they are
        committed together. Otherwise the status is committed first (so a
        retry can never credit twice) and each child is credited in its own
        transaction; failures are reported in the returned result.
        """

        moment = at or utcnow()
        current = self.get(task_id)
        if len(current.assigned_child_ids) + 1 <= self._store.max_writes_per_transaction:
            task, result = self._run(lambda txn: self._approve_atomically(txn, task_id, moment))
        else:
            task = self._transition(task_id, TaskStatus.APPROVED, "approve", at=moment)
            result = self._credit_each(task)
        self._logger.log(
            "task_approved",
            task=task.id,
            points=task.points,
            credited=list(result.succeeded),
        )
        for child_id in result.succeeded:
            self._logger.log("points_credited", child=child_id, task=task.id, amount=task.points)
        if not result.is_complete:
            self._logger.anomaly("fan_out_partial", **result.as_dict())
        return task, result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _approve_atomically(self, txn: Transaction, task_id: str, moment: datetime) -> tuple[Task, FanOutResult]:
        task = self._load(txn, task_id)
        if task.status is not TaskStatus.SUBMITTED:
            raise InvalidTransitionError("task", task_id, task.status.value, "approve")
        result = FanOutResult(operation="approve_task", target_id=task_id)
        for child_id in task.assigned_child_ids:
            reason = self._credit_in(txn, child_id, task.points)
            if reason is None:
                result.succeeded.append(child_id)
            else:
                result.failed[child_id] = reason
        task.status = TaskStatus.APPROVED
        task.updated_at = moment
        txn.set(TASKS, task_id, task.to_document())
        return task, result

    def _credit_each(self, task: Task) -> FanOutResult:
        result = FanOutResult(operation="approve_task", target_id=task.id)
        for child_id in task.assigned_child_ids:
            try:
                reason = self._run(lambda txn, child=child_id: self._credit_in(txn, child, task.points))
            except ChorePointsError as exc:
                reason = str(exc)
            if reason is None:
                result.succeeded.append(child_id)
            else:
                result.failed[child_id] = reason
        return result

    @staticmethod
    def _credit_in(txn: Transaction, child_id: str, amount: int) -> Optional[str]:
        child = txn.read(USERS, child_id)
        if child is None:
            return "child not found"
        if child.get("role") != UserRole.CHILD.value:
            return "user is not a child"
        txn.update(USERS, child_id, {"points": credit(int(child.get("points") or 0), amount)})
        return None

    @staticmethod
    def _link_rewards(txn: Transaction, task: Task) -> None:
        for reward_id in task.linked_reward_ids:
            reward = txn.require(REWARDS, reward_id)
            if reward.get("familyId") != task.family_id:
                raise PreconditionError(f"Reward '{reward_id}' belongs to another family.")
            assigned = list(reward.get("assignedChildIds") or [])
            merged = merge_ids(assigned, task.assigned_child_ids)
            if merged != assigned:
                txn.update(REWARDS, reward_id, {"assignedChildIds": merged})

    def _transition(
        self,
        task_id: str,
        target: TaskStatus,
        action: str,
        *,
        at: Optional[datetime] = None,
    ) -> Task:
        moment = at or utcnow()

        def body(txn: Transaction) -> Task:
            task = self._load(txn, task_id)
            if task.status is not TaskStatus.SUBMITTED:
                raise InvalidTransitionError("task", task_id, task.status.value, action)
            task.status = target
            task.updated_at = moment
            txn.set(TASKS, task_id, task.to_document())
            return task

        return self._run(body)

    @staticmethod
    def _load(txn: Transaction, task_id: str) -> Task:
        if not task_id:
            raise MissingReferenceError("Task id is missing.")
        return Task.from_document(txn.require(TASKS, task_id))

    @staticmethod
    def _clean_title(title: str) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise ValidationError("Title must not be empty.")
        return cleaned

    def _run(self, body):
        return run_transaction(self._store, body, attempts=self._attempts, logger=self._logger)


__all__ = ["TaskEngine", "SUBMITTABLE"]
