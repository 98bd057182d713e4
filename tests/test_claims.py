import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from chorepoints.claims import ClaimEngine
from chorepoints.exceptions import (
    InsufficientPointsError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
    RetriesExhaustedError,
    ValidationError,
)
from chorepoints.family import FamilyCoordinator
from chorepoints.models import ClaimStatus
from chorepoints.ops import StructuredLogger
from chorepoints.store import InMemoryDocumentStore


def _household(points: int = 30):
    store = InMemoryDocumentStore()
    logger = StructuredLogger()
    members = FamilyCoordinator(store, logger=logger)
    claims = ClaimEngine(store, logger=logger)
    parent, family = members.register_parent("dad@example.com", "Dad")
    child = members.add_child("Ava", family.id)
    store.transact(lambda txn: txn.update("users", child.id, {"points": points}))
    reward = claims.create_reward(
        title="Movie night",
        required_points=20,
        created_by_parent_id=parent.id,
        family_id=family.id,
        assigned_child_ids=[child.id],
    )
    return store, logger, members, claims, parent, family, child, reward


def test_claim_debits_and_freezes_reward_details() -> None:
    store, logger, members, claims, _, family, child, reward = _household(points=30)

    record = claims.claim(reward.id, child.id)

    assert record.status is ClaimStatus.PENDING
    assert record.reward_cost == 20
    assert record.reward_title == "Movie night"
    assert record.child_name == "Ava"
    assert record.family_id == family.id
    assert members.get_user(child.id).points == 10
    assert store.get("rewardClaims", record.id)["rewardCost"] == 20
    assert logger.events("reward_claimed")[-1]["balance"] == 10

    claims.update_reward(reward.id, title="Cinema trip", required_points=50)
    frozen = claims.get_claim(record.id)
    assert frozen.reward_cost == 20
    assert frozen.reward_title == "Movie night"


def test_claim_with_exact_balance_leaves_zero() -> None:
    _, _, members, claims, _, _, child, reward = _household(points=20)

    claims.claim(reward.id, child.id)

    assert members.get_user(child.id).points == 0


def test_insufficient_points_writes_nothing() -> None:
    store, _, members, claims, _, _, child, reward = _household(points=15)

    with pytest.raises(InsufficientPointsError) as excinfo:
        claims.claim(reward.id, child.id)

    assert excinfo.value.shortfall == 5
    assert members.get_user(child.id).points == 15
    assert store.query("rewardClaims") == []


def test_balance_is_rechecked_inside_the_transaction() -> None:
    store, _, members, claims, _, _, child, reward = _household(points=30)
    real_require = store.require
    drained = []

    def require(collection, doc_id):
        document = real_require(collection, doc_id)
        if collection == "rewards" and not drained:
            drained.append(True)
            store.transact(lambda txn: txn.update("users", child.id, {"points": 5}))
        return document

    store.require = require  # type: ignore[method-assign]

    with pytest.raises(InsufficientPointsError):
        claims.claim(reward.id, child.id)
    assert members.get_user(child.id).points == 5
    assert store.query("rewardClaims") == []


def test_claim_requires_assignment_and_rejects_duplicates() -> None:
    _, _, members, claims, parent, family, child, reward = _household(points=100)
    other = claims.create_reward(
        title="Bike",
        required_points=10,
        created_by_parent_id=parent.id,
        family_id=family.id,
    )

    with pytest.raises(PreconditionError):
        claims.claim(other.id, child.id)

    claims.claim(reward.id, child.id)
    with pytest.raises(PreconditionError):
        claims.claim(reward.id, child.id)
    assert members.get_user(child.id).points == 80

    with pytest.raises(NotFoundError):
        claims.claim("missing", child.id)


def test_remind_never_regresses_a_promise() -> None:
    _, _, _, claims, _, _, child, reward = _household()
    record = claims.claim(reward.id, child.id)
    moment = datetime(2030, 1, 1, 12, tzinfo=timezone.utc)

    reminded = claims.remind(record.id, at=moment)
    assert reminded.status is ClaimStatus.REMINDED
    assert reminded.last_reminded_at == moment

    again = claims.remind(record.id, at=moment + timedelta(hours=1))
    assert again.status is ClaimStatus.REMINDED
    assert again.last_reminded_at == moment + timedelta(hours=1)

    promised = claims.promise(record.id, date(2030, 2, 1), at=moment)
    assert promised.status is ClaimStatus.PROMISED

    nudged = claims.remind(record.id, at=moment + timedelta(days=1))
    assert nudged.status is ClaimStatus.PROMISED
    assert nudged.promised_date.date() == date(2030, 2, 1)


def test_promise_rules() -> None:
    _, _, _, claims, _, _, child, reward = _household()
    record = claims.claim(reward.id, child.id)
    today = datetime(2030, 5, 10, 9, tzinfo=timezone.utc)

    with pytest.raises(ValidationError):
        claims.promise(record.id, date(2030, 5, 9), at=today)

    promised = claims.promise(record.id, date(2030, 5, 10), at=today)
    assert promised.promised_date == datetime(2030, 5, 10, tzinfo=timezone.utc)

    with pytest.raises(InvalidTransitionError):
        claims.promise(record.id, date(2030, 6, 1), at=today)


def test_grant_is_terminal_and_keeps_points() -> None:
    _, logger, members, claims, _, _, child, reward = _household(points=30)
    record = claims.claim(reward.id, child.id)

    granted = claims.grant(record.id)
    assert granted.status is ClaimStatus.GRANTED
    assert granted.granted_at is not None
    assert members.get_user(child.id).points == 10
    assert logger.events("claim_granted")

    with pytest.raises(InvalidTransitionError):
        claims.grant(record.id)
    with pytest.raises(InvalidTransitionError):
        claims.remind(record.id)
    with pytest.raises(InvalidTransitionError):
        claims.promise(record.id, date(2100, 1, 1))


def test_delete_claim_does_not_refund() -> None:
    store, _, members, claims, _, _, child, reward = _household(points=30)
    record = claims.claim(reward.id, child.id)

    claims.delete(record.id)

    assert store.get("rewardClaims", record.id) is None
    assert members.get_user(child.id).points == 10


def test_views_for_child_and_family() -> None:
    _, _, _, claims, parent, family, child, reward = _household(points=30)
    bike = claims.create_reward(
        title="Bike",
        required_points=60,
        created_by_parent_id=parent.id,
        family_id=family.id,
        assigned_child_ids=[child.id],
    )

    assert [item.id for item in claims.rewards_for_child(child.id)] == [reward.id, bike.id]
    assert claims.reward_progress(child.id, bike.id) == 0.5

    record = claims.claim(reward.id, child.id)
    assert [item.id for item in claims.unclaimed_rewards(child.id)] == [bike.id]
    assert [item.id for item in claims.claims_for_child(child.id)] == [record.id]
    assert [item.id for item in claims.claims_for_family(family.id, statuses=[ClaimStatus.PENDING])] == [record.id]

    claims.grant(record.id)
    assert claims.claims_for_family(family.id, statuses=[ClaimStatus.PENDING, ClaimStatus.REMINDED]) == []
    assert len(claims.claims_for_family(family.id)) == 1
    assert len(claims.rewards_for_family(family.id)) == 2


def test_reward_validation_and_delete() -> None:
    store, _, _, claims, parent, family, child, reward = _household()

    with pytest.raises(ValidationError):
        claims.create_reward(
            title="Free",
            required_points=0,
            created_by_parent_id=parent.id,
            family_id=family.id,
        )

    record = claims.claim(reward.id, child.id)
    claims.delete_reward(reward.id)
    assert store.get("rewards", reward.id) is None
    assert claims.get_claim(record.id).reward_title == "Movie night"


def test_reward_assignment_requires_children_of_the_family() -> None:
    store, _, members, claims, parent, family, child, reward = _household()
    _, other_family = members.register_parent("mom@example.com", "Mom")
    stranger = members.add_child("Cleo", other_family.id)

    for assigned in ([child.id, "ghost"], [stranger.id], [parent.id]):
        with pytest.raises(PreconditionError):
            claims.create_reward(
                title="Bike",
                required_points=10,
                created_by_parent_id=parent.id,
                family_id=family.id,
                assigned_child_ids=assigned,
            )
        with pytest.raises(PreconditionError):
            claims.update_reward(reward.id, assigned_child_ids=assigned)

    assert [item.id for item in claims.rewards_for_family(family.id)] == [reward.id]
    assert claims.get_reward(reward.id).assigned_child_ids == [child.id]

    members.remove_child(child.id, family.id)
    with pytest.raises(PreconditionError):
        claims.update_reward(reward.id, assigned_child_ids=[child.id])
    assert store.get("rewards", reward.id)["assignedChildIds"] == []


def test_concurrent_claims_never_overdraw() -> None:
    store = InMemoryDocumentStore()
    members = FamilyCoordinator(store)
    claims = ClaimEngine(store, attempts=50)
    parent, family = members.register_parent("dad@example.com", "Dad")
    child = members.add_child("Ava", family.id)
    store.transact(lambda txn: txn.update("users", child.id, {"points": 20}))
    rewards = [
        claims.create_reward(
            title=f"Treat {number}",
            required_points=20,
            created_by_parent_id=parent.id,
            family_id=family.id,
            assigned_child_ids=[child.id],
        )
        for number in range(16)
    ]
    barrier = threading.Barrier(len(rewards))
    outcomes = []
    lock = threading.Lock()

    def attempt(reward_id):
        barrier.wait()
        try:
            claims.claim(reward_id, child.id)
        except (PreconditionError, RetriesExhaustedError) as exc:
            outcome = type(exc).__name__
        else:
            outcome = "claimed"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(reward.id,)) for reward in rewards]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(outcomes) == 16
    assert outcomes.count("claimed") == 1
    assert members.get_user(child.id).points == 0
    assert len(store.query("rewardClaims")) == 1
