"""High level service wiring the store, engines, logging and audit trail together."""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from .admin import AuditLog
from .claims import ClaimEngine
from .dashboards import ChildDashboard, ParentDashboard
from .family import FamilyCoordinator
from .ledger import PointsLike
from .models import (
    ClaimStatus,
    Family,
    FanOutResult,
    Reward,
    RewardClaim,
    Task,
    User,
)
from .ops import StructuredLogger
from .store import (
    DEFAULT_TRANSACTION_ATTEMPTS,
    DocumentStore,
    InMemoryDocumentStore,
    InMemoryObjectStore,
    ObjectStore,
    profile_picture_path,
    reward_image_path,
    task_display_image_path,
    task_proof_path,
)
from .tasks import TaskEngine


class ChorePoints:
    """Coordinate families, tasks, rewards and claims on top of one document store.

    Build one instance per process (or per test) and hand it to callers.
    """

    __slots__ = (
        "_store",
        "_objects",
        "_logger",
        "_audit_log",
        "_tasks",
        "_claims",
        "_family",
    )

    def __init__(
        self,
        store: DocumentStore | None = None,
        *,
        object_store: ObjectStore | None = None,
        logger: StructuredLogger | None = None,
        audit_log: AuditLog | None = None,
        attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
        allow_multi_family_parents: bool = True,
    ) -> None:
        self._store = store or InMemoryDocumentStore()
        self._objects = object_store or InMemoryObjectStore()
        self._logger = logger or StructuredLogger()
        self._audit_log = audit_log or AuditLog()
        self._tasks = TaskEngine(self._store, logger=self._logger, attempts=attempts)
        self._claims = ClaimEngine(self._store, logger=self._logger, attempts=attempts)
        self._family = FamilyCoordinator(
            self._store,
            logger=self._logger,
            attempts=attempts,
            allow_multi_family_parents=allow_multi_family_parents,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def object_store(self) -> ObjectStore:
        return self._objects

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    # ------------------------------------------------------------------
    # Family membership
    # ------------------------------------------------------------------
    def register_parent(self, email: str, name: Optional[str] = None) -> Tuple[User, Family]:
        parent, family = self._family.register_parent(email, name)
        self._audit_log.record(parent.id, "register_parent", family.id)
        return parent, family

    def create_family(self, parent_id: str) -> str:
        family_id = self._family.create_family(parent_id)
        self._audit_log.record(parent_id, "create_family", family_id)
        return family_id

    def add_child(
        self,
        name: str,
        family_id: str,
        email: Optional[str] = None,
        *,
        actor: str = "parent",
    ) -> User:
        child = self._family.add_child(name, family_id, email)
        self._audit_log.record(actor, "add_child", child.id, details={"family": family_id})
        return child

    def add_co_parent(self, email: str, family_id: str, *, actor: str = "parent") -> User:
        parent = self._family.add_co_parent(email, family_id)
        self._audit_log.record(actor, "add_co_parent", parent.id, details={"family": family_id})
        return parent

    def remove_child(self, child_id: str, family_id: str, *, actor: str = "parent") -> FanOutResult:
        result = self._family.remove_child(child_id, family_id)
        self._audit_log.record(
            actor,
            "remove_child",
            child_id,
            details={"family": family_id, "status": result.status.value},
        )
        return result

    def update_profile(self, user_id: str, **changes: object) -> User:
        user = self._family.update_profile(user_id, **changes)
        self._audit_log.record(user_id, "update_profile", user_id, details={"fields": sorted(changes)})
        return user

    def upload_profile_picture(self, user_id: str, data: bytes) -> User:
        self._family.get_user(user_id)
        url = self._objects.put(profile_picture_path(user_id), data)
        self._logger.log("image_uploaded", kind="profile_picture", user=user_id, url=url)
        return self.update_profile(user_id, profile_picture_url=url)

    def get_user(self, user_id: str) -> User:
        return self._family.get_user(user_id)

    def get_family(self, family_id: str) -> Family:
        return self._family.get_family(family_id)

    def children(self, family_id: str) -> List[User]:
        return self._family.children(family_id)

    def parents(self, family_id: str) -> List[User]:
        return self._family.parents(family_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def create_task(
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
    ) -> Task:
        task = self._tasks.create(
            title=title,
            points=points,
            assigned_child_ids=assigned_child_ids,
            linked_reward_ids=linked_reward_ids,
            created_by_parent_id=created_by_parent_id,
            family_id=family_id,
            description=description,
            is_recurring=is_recurring,
            image_url=image_url,
        )
        self._audit_log.record(created_by_parent_id, "create_task", task.id, details={"points": task.points})
        return task

    def update_task(self, task_id: str, *, actor: str = "parent", **changes: object) -> Task:
        task = self._tasks.update(task_id, **changes)  # type: ignore[arg-type]
        self._audit_log.record(actor, "update_task", task_id, details={"fields": sorted(changes)})
        return task

    def delete_task(self, task_id: str, *, actor: str = "parent") -> Task:
        task = self._tasks.delete(task_id)
        self._audit_log.record(actor, "delete_task", task_id)
        return task

    def submit_task(
        self,
        task_id: str,
        proof_image_url: Optional[str] = None,
        *,
        actor: str = "child",
    ) -> Task:
        task = self._tasks.submit(task_id, proof_image_url)
        self._audit_log.record(actor, "submit_task", task_id)
        return task

    def upload_proof(self, task_id: str, data: bytes, *, actor: str = "child") -> Task:
        """Store a proof photo and submit the task with its URL."""

        self._tasks.get(task_id)
        url = self._objects.put(task_proof_path(task_id), data)
        self._logger.log("image_uploaded", kind="task_proof", task=task_id, url=url)
        return self.submit_task(task_id, url, actor=actor)

    def upload_task_image(self, name: str, data: bytes) -> str:
        url = self._objects.put(task_display_image_path(name), data)
        self._logger.log("image_uploaded", kind="task_display_image", url=url)
        return url

    def approve_task(self, task_id: str, *, actor: str = "parent") -> Tuple[Task, FanOutResult]:
        task, result = self._tasks.approve(task_id)
        self._audit_log.record(
            actor,
            "approve_task",
            task_id,
            details={"points": task.points, "status": result.status.value},
        )
        return task, result

    def decline_task(self, task_id: str, *, actor: str = "parent") -> Task:
        task = self._tasks.decline(task_id)
        self._audit_log.record(actor, "decline_task", task_id)
        return task

    def reset_task(self, task_id: str, *, actor: str = "parent") -> Task:
        task = self._tasks.reset_to_pending(task_id)
        self._audit_log.record(actor, "reset_task", task_id)
        return task

    def get_task(self, task_id: str) -> Task:
        return self._tasks.get(task_id)

    def tasks_for_family(self, family_id: str) -> List[Task]:
        return self._tasks.tasks_for_family(family_id)

    def tasks_for_child(self, child_id: str, *, include_approved: bool = True) -> List[Task]:
        return self._tasks.tasks_for_child(child_id, include_approved=include_approved)

    def tasks_awaiting_approval(self, family_id: str) -> List[Task]:
        return self._tasks.tasks_awaiting_approval(family_id)

    # ------------------------------------------------------------------
    # Rewards and claims
    # ------------------------------------------------------------------
    def create_reward(
        self,
        *,
        title: str,
        required_points: PointsLike,
        created_by_parent_id: str,
        family_id: str,
        assigned_child_ids: Sequence[str] = (),
        image_url: Optional[str] = None,
    ) -> Reward:
        reward = self._claims.create_reward(
            title=title,
            required_points=required_points,
            created_by_parent_id=created_by_parent_id,
            family_id=family_id,
            assigned_child_ids=assigned_child_ids,
            image_url=image_url,
        )
        self._audit_log.record(
            created_by_parent_id,
            "create_reward",
            reward.id,
            details={"cost": reward.required_points},
        )
        return reward

    def update_reward(self, reward_id: str, *, actor: str = "parent", **changes: object) -> Reward:
        reward = self._claims.update_reward(reward_id, **changes)  # type: ignore[arg-type]
        self._audit_log.record(actor, "update_reward", reward_id, details={"fields": sorted(changes)})
        return reward

    def delete_reward(self, reward_id: str, *, actor: str = "parent") -> Reward:
        reward = self._claims.delete_reward(reward_id)
        self._audit_log.record(actor, "delete_reward", reward_id)
        return reward

    def upload_reward_image(self, name: str, data: bytes) -> str:
        url = self._objects.put(reward_image_path(name), data)
        self._logger.log("image_uploaded", kind="reward_image", url=url)
        return url

    def get_reward(self, reward_id: str) -> Reward:
        return self._claims.get_reward(reward_id)

    def rewards_for_family(self, family_id: str) -> List[Reward]:
        return self._claims.rewards_for_family(family_id)

    def rewards_for_child(self, child_id: str) -> List[Reward]:
        return self._claims.rewards_for_child(child_id)

    def claim_reward(self, reward_id: str, child_id: str) -> RewardClaim:
        record = self._claims.claim(reward_id, child_id)
        self._audit_log.record(child_id, "claim_reward", record.id, details={"cost": record.reward_cost})
        return record

    def remind_claim(self, claim_id: str, *, actor: str = "child") -> RewardClaim:
        record = self._claims.remind(claim_id)
        self._audit_log.record(actor, "remind_claim", claim_id)
        return record

    def promise_claim(
        self,
        claim_id: str,
        promised_date: date | datetime,
        *,
        actor: str = "parent",
    ) -> RewardClaim:
        record = self._claims.promise(claim_id, promised_date)
        self._audit_log.record(actor, "promise_claim", claim_id)
        return record

    def grant_claim(self, claim_id: str, *, actor: str = "parent") -> RewardClaim:
        record = self._claims.grant(claim_id)
        self._audit_log.record(actor, "grant_claim", claim_id)
        return record

    def delete_claim(self, claim_id: str, *, actor: str = "parent") -> RewardClaim:
        record = self._claims.delete(claim_id)
        self._audit_log.record(actor, "delete_claim", claim_id)
        return record

    def get_claim(self, claim_id: str) -> RewardClaim:
        return self._claims.get_claim(claim_id)

    def claims_for_child(self, child_id: str) -> List[RewardClaim]:
        return self._claims.claims_for_child(child_id)

    def claims_for_family(
        self,
        family_id: str,
        *,
        statuses: Optional[Iterable[ClaimStatus]] = None,
    ) -> List[RewardClaim]:
        return self._claims.claims_for_family(family_id, statuses=statuses)

    def unclaimed_rewards(self, child_id: str) -> List[Reward]:
        return self._claims.unclaimed_rewards(child_id)

    def reward_progress(self, child_id: str, reward_id: str) -> float:
        return self._claims.reward_progress(child_id, reward_id)

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------
    def child_dashboard(self, child_id: str) -> ChildDashboard:
        return ChildDashboard(self._store).watch(child_id)

    def parent_dashboard(self, family_id: str) -> ParentDashboard:
        return ParentDashboard(self._store).watch(family_id)


__all__ = ["ChorePoints"]
