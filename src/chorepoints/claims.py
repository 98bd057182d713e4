"""Rewards and the claims children make against them."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Sequence

from .exceptions import (
    InsufficientPointsError,
    InvalidTransitionError,
    MissingReferenceError,
    PreconditionError,
    ValidationError,
)
from .family import require_family_children
from .ledger import PointsLike, can_afford, debit, progress, require_points, to_points
from .models import (
    REWARD_CLAIMS,
    REWARDS,
    USERS,
    ClaimStatus,
    Reward,
    RewardClaim,
    User,
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

REMINDABLE = (ClaimStatus.PENDING, ClaimStatus.REMINDED, ClaimStatus.PROMISED)
PROMISABLE = (ClaimStatus.PENDING, ClaimStatus.REMINDED)
AWAITING_PARENT = (ClaimStatus.PENDING, ClaimStatus.REMINDED)

_UNSET = object()


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


class ClaimEngine:
    """Manage rewards and move claims through ``pending``, ``reminded``, ``promised`` and ``granted``."""

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
    # Rewards
    # ------------------------------------------------------------------
    def get_reward(self, reward_id: str) -> Reward:
        if not reward_id:
            raise MissingReferenceError("Reward id is missing.")
        return Reward.from_document(self._store.require(REWARDS, reward_id))

    def rewards_for_family(self, family_id: str) -> List[Reward]:
        documents = self._store.query(REWARDS, [where("familyId", "==", family_id)], order_by="createdAt")
        return [Reward.from_document(doc) for doc in documents]

    def rewards_for_child(self, child_id: str) -> List[Reward]:
        documents = self._store.query(
            REWARDS,
            [where("assignedChildIds", "array_contains", child_id)],
            order_by="requiredPoints",
        )
        return [Reward.from_document(doc) for doc in documents]

    def create_reward(
        self,
        *,
        title: str,
        required_points: PointsLike,
        created_by_parent_id: str,
        family_id: str,
        assigned_child_ids: Sequence[str] = (),
        image_url: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Reward:
        if not family_id:
            raise MissingReferenceError("A reward needs a family id.")
        if not created_by_parent_id:
            raise MissingReferenceError("A reward needs the id of the parent creating it.")
        reward = Reward(
            id=new_id(),
            title=self._clean_title(title),
            required_points=require_points(to_points(required_points)),
            assigned_child_ids=merge_ids([], [child for child in assigned_child_ids if child]),
            created_by_parent_id=created_by_parent_id,
            family_id=family_id,
            image_url=image_url,
            created_at=at or utcnow(),
        )

        def body(txn: Transaction) -> Reward:
            require_family_children(txn, reward.assigned_child_ids, family_id)
            txn.set(REWARDS, reward.id, reward.to_document())
            return reward

        self._run(body)
        self._logger.log("reward_created", reward=reward.id, family=family_id, cost=reward.required_points)
        return reward

    def update_reward(
        self,
        reward_id: str,
        *,
        title: Optional[str] = None,
        required_points: Optional[PointsLike] = None,
        assigned_child_ids: Optional[Sequence[str]] = None,
        image_url: object = _UNSET,
    ) -> Reward:
        """Edit a reward. Existing claims keep the title and cost they were made with."""

        new_title = self._clean_title(title) if title is not None else None
        new_cost = require_points(to_points(required_points)) if required_points is not None else None

        def body(txn: Transaction) -> Reward:
            reward = Reward.from_document(txn.require(REWARDS, reward_id))
            if new_title is not None:
                reward.title = new_title
            if new_cost is not None:
                reward.required_points = new_cost
            if assigned_child_ids is not None:
                reward.assigned_child_ids = merge_ids([], [child for child in assigned_child_ids if child])
                require_family_children(txn, reward.assigned_child_ids, reward.family_id)
            if image_url is not _UNSET:
                reward.image_url = image_url  # type: ignore[assignment]
            txn.set(REWARDS, reward_id, reward.to_document())
            return reward

        reward = self._run(body)
        self._logger.log("reward_updated", reward=reward_id)
        return reward

    def delete_reward(self, reward_id: str) -> Reward:
        def body(txn: Transaction) -> Reward:
            reward = Reward.from_document(txn.require(REWARDS, reward_id))
            txn.delete(REWARDS, reward_id)
            return reward

        reward = self._run(body)
        self._logger.log("reward_deleted", reward=reward_id)
        return reward

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------
    def get_claim(self, claim_id: str) -> RewardClaim:
        if not claim_id:
            raise MissingReferenceError("Claim id is missing.")
        return RewardClaim.from_document(self._store.require(REWARD_CLAIMS, claim_id))

    def claims_for_child(self, child_id: str) -> List[RewardClaim]:
        documents = self._store.query(
            REWARD_CLAIMS,
            [where("childId", "==", child_id)],
            order_by="claimedAt",
            descending=True,
        )
        return [RewardClaim.from_document(doc) for doc in documents]

    def claims_for_family(
        self,
        family_id: str,
        *,
        statuses: Optional[Iterable[ClaimStatus]] = None,
    ) -> List[RewardClaim]:
        filters = [where("familyId", "==", family_id)]
        if statuses is not None:
            filters.append(where("status", "in", [ClaimStatus(status).value for status in statuses]))
        documents = self._store.query(REWARD_CLAIMS, filters, order_by="claimedAt", descending=True)
        return [RewardClaim.from_document(doc) for doc in documents]

    def unclaimed_rewards(self, child_id: str) -> List[Reward]:
        """Rewards assigned to the child that the child has never claimed."""

        claimed = {claim.reward_id for claim in self.claims_for_child(child_id)}
        return [reward for reward in self.rewards_for_child(child_id) if reward.id not in claimed]

    def reward_progress(self, child_id: str, reward_id: str) -> float:
        child = self._load_child(self._store.require(USERS, child_id))
        reward = self.get_reward(reward_id)
        return progress(child.points, reward.required_points)

    def claim(self, reward_id: str, child_id: str, *, at: Optional[datetime] = None) -> RewardClaim:
        """Spend the child's points on ``reward_id`` and open a ``pending`` claim.

        The balance is checked against the latest known state first, then
        re-checked inside the transaction that debits the child and writes the
        claim. Nothing is written when either check fails.
        """

        child = self._load_child(self._store.require(USERS, child_id))
        reward = self.get_reward(reward_id)
        self._check_claimable(child, reward)
        if self._store.query(
            REWARD_CLAIMS,
            [where("childId", "==", child_id), where("rewardId", "==", reward_id)],
            limit=1,
        ):
            raise PreconditionError(f"Child '{child_id}' has already claimed reward '{reward_id}'.")
        moment = at or utcnow()
        claim_id = new_id()

        def body(txn: Transaction) -> tuple[RewardClaim, int]:
            fresh_child = self._load_child(txn.require(USERS, child_id))
            fresh_reward = Reward.from_document(txn.require(REWARDS, reward_id))
            self._check_claimable(fresh_child, fresh_reward)
            balance = debit(fresh_child.points, fresh_reward.required_points)
            record = RewardClaim(
                id=claim_id,
                reward_id=fresh_reward.id,
                reward_title=fresh_reward.title,
                reward_cost=fresh_reward.required_points,
                child_id=fresh_child.id,
                child_name=fresh_child.name,
                family_id=fresh_child.family_id or fresh_reward.family_id,
                claimed_at=moment,
            )
            txn.update(USERS, child_id, {"points": balance})
            txn.set(REWARD_CLAIMS, claim_id, record.to_document())
            return record, balance

        record, balance = self._run(body)
        self._logger.log(
            "reward_claimed",
            claim=record.id,
            reward=reward_id,
            child=child_id,
            cost=record.reward_cost,
            balance=balance,
        )
        return record

    def remind(self, claim_id: str, *, at: Optional[datetime] = None) -> RewardClaim:
        """Nudge the parents. A ``promised`` claim keeps its status and date."""

        moment = at or utcnow()

        def body(txn: Transaction) -> RewardClaim:
            record = self._load_claim(txn, claim_id)
            if record.status not in REMINDABLE:
                raise InvalidTransitionError("claim", claim_id, record.status.value, "remind")
            if record.status is ClaimStatus.PENDING:
                record.status = ClaimStatus.REMINDED
            record.last_reminded_at = moment
            txn.set(REWARD_CLAIMS, claim_id, record.to_document())
            return record

        record = self._run(body)
        self._logger.log("claim_reminded", claim=claim_id, status=record.status.value)
        return record

    def promise(
        self,
        claim_id: str,
        promised_date: date | datetime,
        *,
        at: Optional[datetime] = None,
    ) -> RewardClaim:
        target = _as_datetime(promised_date)
        today = (at or utcnow()).astimezone(timezone.utc).date()
        if target.astimezone(timezone.utc).date() < today:
            raise ValidationError("A reward cannot be promised for a date in the past.")

        def body(txn: Transaction) -> RewardClaim:
            record = self._load_claim(txn, claim_id)
            if record.status not in PROMISABLE:
                raise InvalidTransitionError("claim", claim_id, record.status.value, "promise")
            record.status = ClaimStatus.PROMISED
            record.promised_date = target
            txn.set(REWARD_CLAIMS, claim_id, record.to_document())
            return record

        record = self._run(body)
        self._logger.log("claim_promised", claim=claim_id, promised_date=target.date().isoformat())
        return record

    def grant(self, claim_id: str, *, at: Optional[datetime] = None) -> RewardClaim:
        """Mark the reward as handed over. Points were already spent at claim time."""

        moment = at or utcnow()

        def body(txn: Transaction) -> RewardClaim:
            record = self._load_claim(txn, claim_id)
            if not record.is_open:
                raise InvalidTransitionError("claim", claim_id, record.status.value, "grant")
            record.status = ClaimStatus.GRANTED
            record.granted_at = moment
            txn.set(REWARD_CLAIMS, claim_id, record.to_document())
            return record

        record = self._run(body)
        self._logger.log("claim_granted", claim=claim_id, child=record.child_id)
        return record

    def delete(self, claim_id: str) -> RewardClaim:
        """Remove a claim without refunding its cost."""

        def body(txn: Transaction) -> RewardClaim:
            record = self._load_claim(txn, claim_id)
            txn.delete(REWARD_CLAIMS, claim_id)
            return record

        record = self._run(body)
        self._logger.log("claim_deleted", claim=claim_id, status=record.status.value)
        return record

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _check_claimable(child: User, reward: Reward) -> None:
        if child.id not in reward.assigned_child_ids:
            raise PreconditionError(f"Reward '{reward.id}' is not assigned to child '{child.id}'.")
        if not can_afford(child.points, reward.required_points):
            raise InsufficientPointsError(child.id, child.points, reward.required_points)

    @staticmethod
    def _load_child(document: dict) -> User:
        user = User.from_document(document)
        if not user.is_child:
            raise PreconditionError(f"User '{user.id}' is not a child.")
        return user

    @staticmethod
    def _load_claim(txn: Transaction, claim_id: str) -> RewardClaim:
        if not claim_id:
            raise MissingReferenceError("Claim id is missing.")
        return RewardClaim.from_document(txn.require(REWARD_CLAIMS, claim_id))

    @staticmethod
    def _clean_title(title: str) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise ValidationError("Title must not be empty.")
        return cleaned

    def _run(self, body):
        return run_transaction(self._store, body, attempts=self._attempts, logger=self._logger)


__all__ = ["AWAITING_PARENT", "ClaimEngine", "PROMISABLE", "REMINDABLE"]
