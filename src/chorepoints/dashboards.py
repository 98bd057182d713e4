"""Live dashboards backed by store subscriptions.

Dashboards only observe; every change goes through the engines.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .exceptions import MissingReferenceError
from .ledger import progress
from .models import (
    FAMILIES,
    REWARD_CLAIMS,
    REWARDS,
    TASKS,
    USERS,
    ClaimStatus,
    Document,
    Family,
    Reward,
    RewardClaim,
    Task,
    TaskStatus,
    User,
    UserRole,
)
from .store import DocumentStore, FieldFilter, Subscription, where


class _Dashboard:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._subscriptions: Dict[str, Subscription] = {}
        self.watched_id: Optional[str] = None

    @property
    def active(self) -> bool:
        return any(subscription.active for subscription in self._subscriptions.values())

    @property
    def pending_snapshots(self) -> Dict[str, int]:
        """Unread snapshots per view; each view holds at most one."""

        return {name: subscription.pending for name, subscription in self._subscriptions.items()}

    def close(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.cancel()
        self._subscriptions.clear()
        self.watched_id = None

    def _open(self, name: str, collection: str, filters: Sequence[FieldFilter]) -> None:
        self._subscriptions[name] = self._store.subscribe(collection, filters)

    def _snapshot(self, name: str) -> List[Document]:
        subscription = self._subscriptions.get(name)
        if subscription is None:
            return []
        return list(subscription.latest() or [])

    def __enter__(self):
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class ChildDashboard(_Dashboard):
    """What a child sees: balance, open tasks, rewards and claims."""

    def watch(self, child_id: str) -> "ChildDashboard":
        if not child_id:
            raise MissingReferenceError("Child id is missing.")
        self.close()
        self._open("profile", USERS, [where("id", "==", child_id)])
        self._open(
            "tasks",
            TASKS,
            [
                where("assignedChildIds", "array_contains", child_id),
                where("status", "!=", TaskStatus.APPROVED.value),
            ],
        )
        self._open("rewards", REWARDS, [where("assignedChildIds", "array_contains", child_id)])
        self._open("claims", REWARD_CLAIMS, [where("childId", "==", child_id)])
        self.watched_id = child_id
        return self

    @property
    def child(self) -> Optional[User]:
        documents = self._snapshot("profile")
        return User.from_document(documents[0]) if documents else None

    @property
    def points(self) -> int:
        child = self.child
        return child.points if child else 0

    @property
    def tasks(self) -> List[Task]:
        tasks = [Task.from_document(doc) for doc in self._snapshot("tasks")]
        return sorted(tasks, key=lambda task: task.created_at)

    @property
    def rewards(self) -> List[Reward]:
        rewards = [Reward.from_document(doc) for doc in self._snapshot("rewards")]
        return sorted(rewards, key=lambda reward: (reward.required_points, reward.title))

    @property
    def claims(self) -> List[RewardClaim]:
        claims = [RewardClaim.from_document(doc) for doc in self._snapshot("claims")]
        return sorted(claims, key=lambda claim: claim.claimed_at, reverse=True)

    @property
    def unclaimed_rewards(self) -> List[Reward]:
        claimed = {claim.reward_id for claim in self.claims}
        return [reward for reward in self.rewards if reward.id not in claimed]

    def reward_progress(self) -> Dict[str, float]:
        balance = self.points
        return {reward.id: progress(balance, reward.required_points) for reward in self.unclaimed_rewards}


class ParentDashboard(_Dashboard):
    """Family overview: children, submissions to review and claims waiting on a parent."""

    def watch(self, family_id: str) -> "ParentDashboard":
        if not family_id:
            raise MissingReferenceError("Family id is missing.")
        self.close()
        self._open("family", FAMILIES, [where("id", "==", family_id)])
        self._open(
            "children",
            USERS,
            [where("familyId", "==", family_id), where("role", "==", UserRole.CHILD.value)],
        )
        self._open(
            "submissions",
            TASKS,
            [where("familyId", "==", family_id), where("status", "==", TaskStatus.SUBMITTED.value)],
        )
        self._open(
            "claims",
            REWARD_CLAIMS,
            [
                where("familyId", "==", family_id),
                where("status", "in", [ClaimStatus.PENDING.value, ClaimStatus.REMINDED.value]),
            ],
        )
        self.watched_id = family_id
        return self

    @property
    def family(self) -> Optional[Family]:
        documents = self._snapshot("family")
        return Family.from_document(documents[0]) if documents else None

    @property
    def children(self) -> List[User]:
        children = [User.from_document(doc) for doc in self._snapshot("children")]
        return sorted(children, key=lambda child: child.display_name.lower())

    @property
    def submissions(self) -> List[Task]:
        tasks = [Task.from_document(doc) for doc in self._snapshot("submissions")]
        return sorted(tasks, key=lambda task: task.updated_at)

    @property
    def claims(self) -> List[RewardClaim]:
        claims = [RewardClaim.from_document(doc) for doc in self._snapshot("claims")]
        return sorted(claims, key=lambda claim: claim.claimed_at)


__all__ = ["ChildDashboard", "ParentDashboard"]
