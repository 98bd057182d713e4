"""Domain models used by the ChorePoints package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

USERS = "users"
FAMILIES = "families"
TASKS = "tasks"
REWARDS = "rewards"
REWARD_CLAIMS = "rewardClaims"
USER_EMAILS = "userEmails"

Document = Dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def normalise_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def to_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    else:
        moment = datetime.fromisoformat(str(value))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def merge_ids(existing: List[str], extra: List[str]) -> List[str]:
    """Return ``existing`` with the ids of ``extra`` appended once each (set union, order kept)."""

    merged = list(existing)
    for item in extra:
        if item not in merged:
            merged.append(item)
    return merged


def remove_id(existing: List[str], item: str) -> List[str]:
    return [value for value in existing if value != item]


class UserRole(str, Enum):
    """Roles a user can hold within a family."""

    PARENT = "parent"
    CHILD = "child"


class TaskStatus(str, Enum):
    """Lifecycle states of a task."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DECLINED = "declined"


class ClaimStatus(str, Enum):
    """Lifecycle states of a reward claim. ``GRANTED`` is terminal."""

    PENDING = "pending"
    REMINDED = "reminded"
    PROMISED = "promised"
    GRANTED = "granted"


@dataclass(slots=True)
class User:
    """A parent or child account.

    ``points`` is only meaningful for children; a parent's balance is ignored.
    """

    id: str
    email: str
    role: UserRole
    family_id: Optional[str] = None
    name: Optional[str] = None
    profile_picture_url: Optional[str] = None
    points: int = 0

    @property
    def is_child(self) -> bool:
        return self.role is UserRole.CHILD

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def to_document(self) -> Document:
        return {
            "email": self.email,
            "emailLower": normalise_email(self.email),
            "role": self.role.value,
            "familyId": self.family_id,
            "name": self.name,
            "profilePictureUrl": self.profile_picture_url,
            "points": self.points,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "User":
        return cls(
            id=data["id"],
            email=data.get("email", ""),
            role=UserRole(data["role"]),
            family_id=data.get("familyId") or None,
            name=data.get("name"),
            profile_picture_url=data.get("profilePictureUrl"),
            points=int(data.get("points") or 0),
        )


@dataclass(slots=True)
class Family:
    """The aggregation root grouping parents and children."""

    id: str
    parent_ids: List[str] = field(default_factory=list)
    child_ids: List[str] = field(default_factory=list)

    def to_document(self) -> Document:
        return {"parentIds": list(self.parent_ids), "childIds": list(self.child_ids)}

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Family":
        return cls(
            id=data["id"],
            parent_ids=list(data.get("parentIds") or []),
            child_ids=list(data.get("childIds") or []),
        )


@dataclass(slots=True)
class Task:
    """A chore assigned to one or more children and linked to rewards."""

    id: str
    title: str
    points: int
    assigned_child_ids: List[str]
    linked_reward_ids: List[str]
    created_by_parent_id: str
    family_id: str
    description: str = ""
    is_recurring: bool = False
    image_url: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    proof_image_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Document:
        return {
            "title": self.title,
            "description": self.description,
            "points": self.points,
            "imageUrl": self.image_url,
            "isRecurring": self.is_recurring,
            "assignedChildIds": list(self.assigned_child_ids),
            "linkedRewardIds": list(self.linked_reward_ids),
            "createdByParentId": self.created_by_parent_id,
            "familyId": self.family_id,
            "status": self.status.value,
            "proofImageUrl": self.proof_image_url,
            "createdAt": to_timestamp(self.created_at),
            "updatedAt": to_timestamp(self.updated_at),
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description") or "",
            points=int(data.get("points") or 0),
            image_url=data.get("imageUrl"),
            is_recurring=bool(data.get("isRecurring", False)),
            assigned_child_ids=list(data.get("assignedChildIds") or []),
            linked_reward_ids=list(data.get("linkedRewardIds") or []),
            created_by_parent_id=data.get("createdByParentId", ""),
            family_id=data.get("familyId", ""),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            proof_image_url=data.get("proofImageUrl"),
            created_at=from_timestamp(data.get("createdAt")) or utcnow(),
            updated_at=from_timestamp(data.get("updatedAt")) or utcnow(),
        )


@dataclass(slots=True)
class Reward:
    """Something children spend points on."""

    id: str
    title: str
    required_points: int
    assigned_child_ids: List[str]
    created_by_parent_id: str
    family_id: str
    image_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Document:
        return {
            "title": self.title,
            "imageUrl": self.image_url,
            "requiredPoints": self.required_points,
            "assignedChildIds": list(self.assigned_child_ids),
            "createdByParentId": self.created_by_parent_id,
            "familyId": self.family_id,
            "createdAt": to_timestamp(self.created_at),
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Reward":
        return cls(
            id=data["id"],
            title=data["title"],
            image_url=data.get("imageUrl"),
            required_points=int(data["requiredPoints"]),
            assigned_child_ids=list(data.get("assignedChildIds") or []),
            created_by_parent_id=data.get("createdByParentId", ""),
            family_id=data.get("familyId", ""),
            created_at=from_timestamp(data.get("createdAt")) or utcnow(),
        )


@dataclass(slots=True)
class RewardClaim:
    """A child's redemption of a reward.

    ``reward_title``, ``reward_cost`` and ``child_name`` are copied at claim
    time and never re-read from the live reward or profile.
    """

    id: str
    reward_id: str
    reward_title: str
    reward_cost: int
    child_id: str
    child_name: Optional[str]
    family_id: str
    status: ClaimStatus = ClaimStatus.PENDING
    claimed_at: datetime = field(default_factory=utcnow)
    last_reminded_at: Optional[datetime] = None
    promised_date: Optional[datetime] = None
    granted_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status is not ClaimStatus.GRANTED

    def to_document(self) -> Document:
        return {
            "rewardId": self.reward_id,
            "rewardTitle": self.reward_title,
            "rewardCost": self.reward_cost,
            "childId": self.child_id,
            "childName": self.child_name,
            "familyId": self.family_id,
            "status": self.status.value,
            "claimedAt": to_timestamp(self.claimed_at),
            "lastRemindedAt": to_timestamp(self.last_reminded_at),
            "promisedDate": to_timestamp(self.promised_date),
            "grantedAt": to_timestamp(self.granted_at),
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "RewardClaim":
        return cls(
            id=data["id"],
            reward_id=data["rewardId"],
            reward_title=data.get("rewardTitle", ""),
            reward_cost=int(data["rewardCost"]),
            child_id=data["childId"],
            child_name=data.get("childName"),
            family_id=data.get("familyId", ""),
            status=ClaimStatus(data.get("status", ClaimStatus.PENDING.value)),
            claimed_at=from_timestamp(data.get("claimedAt")) or utcnow(),
            last_reminded_at=from_timestamp(data.get("lastRemindedAt")),
            promised_date=from_timestamp(data.get("promisedDate")),
            granted_at=from_timestamp(data.get("grantedAt")),
        )


@dataclass(slots=True)
class AuditEvent:
    """Represents an auditable parent or child action."""

    actor: str
    action: str
    target: str
    timestamp: datetime = field(default_factory=utcnow)
    details: Dict[str, Any] = field(default_factory=dict)


class FanOutStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(slots=True)
class FanOutResult:
    """Outcome of an operation that updates many independent documents."""

    operation: str
    target_id: str
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> FanOutStatus:
        if not self.failed:
            return FanOutStatus.COMPLETE
        if self.succeeded:
            return FanOutStatus.PARTIAL
        return FanOutStatus.FAILED

    @property
    def is_complete(self) -> bool:
        return self.status is FanOutStatus.COMPLETE

    def as_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "target": self.target_id,
            "status": self.status.value,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
        }


__all__ = [
    "USERS",
    "FAMILIES",
    "TASKS",
    "REWARDS",
    "REWARD_CLAIMS",
    "USER_EMAILS",
    "AuditEvent",
    "ClaimStatus",
    "Document",
    "Family",
    "FanOutResult",
    "FanOutStatus",
    "Reward",
    "RewardClaim",
    "Task",
    "TaskStatus",
    "User",
    "UserRole",
    "from_timestamp",
    "merge_ids",
    "new_id",
    "normalise_email",
    "remove_id",
    "to_timestamp",
    "utcnow",
]
