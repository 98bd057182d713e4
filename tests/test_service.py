from datetime import date, timedelta

import pytest

from chorepoints.exceptions import InsufficientPointsError, PreconditionError
from chorepoints.models import ClaimStatus, TaskStatus
from chorepoints.ops import StructuredLogger
from chorepoints.service import ChorePoints
from chorepoints.store import InMemoryDocumentStore, InMemoryObjectStore


def _family(bank: ChorePoints):
    parent, family = bank.register_parent("mom@example.com", "Mom")
    child = bank.add_child("Ava", family.id, actor=parent.id)
    reward = bank.create_reward(
        title="Bike",
        required_points=15,
        created_by_parent_id=parent.id,
        family_id=family.id,
    )
    return parent, family, child, reward


def test_end_to_end_points_flow() -> None:
    bank = ChorePoints()
    parent, family, child, reward = _family(bank)

    task = bank.create_task(
        title="Walk the dog",
        points=10,
        assigned_child_ids=[child.id],
        linked_reward_ids=[reward.id],
        created_by_parent_id=parent.id,
        family_id=family.id,
    )
    assert bank.get_reward(reward.id).assigned_child_ids == [child.id]

    bank.submit_task(task.id)
    bank.approve_task(task.id, actor=parent.id)
    with pytest.raises(InsufficientPointsError):
        bank.claim_reward(reward.id, child.id)

    second = bank.create_task(
        title="Feed the cat",
        points=10,
        assigned_child_ids=[child.id],
        linked_reward_ids=[reward.id],
        created_by_parent_id=parent.id,
        family_id=family.id,
    )
    bank.submit_task(second.id)
    bank.approve_task(second.id)
    assert bank.get_user(child.id).points == 20

    claim = bank.claim_reward(reward.id, child.id)
    assert bank.get_user(child.id).points == 5

    bank.remind_claim(claim.id)
    bank.promise_claim(claim.id, date.today() + timedelta(days=3))
    granted = bank.grant_claim(claim.id)
    assert granted.status is ClaimStatus.GRANTED
    assert bank.get_user(child.id).points == 5
    assert bank.unclaimed_rewards(child.id) == []


def test_audit_and_structured_log_entries() -> None:
    bank = ChorePoints()
    parent, family, child, reward = _family(bank)

    assert bank.audit_log.entries(action="add_child")[0].actor == parent.id
    assert bank.audit_log.entries(action="register_parent")[0].target == family.id
    assert bank.logger.events("child_added")[0]["child"] == child.id
    assert bank.logger.events("reward_created")[0]["reward"] == reward.id

    bank.update_profile(child.id, name="Ava B")
    latest = bank.audit_log.latest()
    assert latest.action == "update_profile"
    assert latest.details == {"fields": ["name"]}


def test_upload_proof_submits_task() -> None:
    objects = InMemoryObjectStore()
    bank = ChorePoints(object_store=objects)
    parent, family, child, reward = _family(bank)
    task = bank.create_task(
        title="Clean room",
        points=3,
        assigned_child_ids=[child.id],
        linked_reward_ids=[reward.id],
        created_by_parent_id=parent.id,
        family_id=family.id,
    )

    submitted = bank.upload_proof(task.id, b"jpeg-bytes", actor=child.id)

    assert submitted.status is TaskStatus.SUBMITTED
    assert submitted.proof_image_url.startswith(f"memory://task_proofs/{task.id}/")
    (path,) = objects.paths()
    assert objects.get(path) == b"jpeg-bytes"


def test_image_uploads_use_standard_paths() -> None:
    objects = InMemoryObjectStore()
    bank = ChorePoints(object_store=objects)
    _, _, child, _ = _family(bank)

    updated = bank.upload_profile_picture(child.id, b"face")
    assert updated.profile_picture_url == f"memory://profile_pictures/{child.id}.jpg"
    assert bank.upload_reward_image("bike", b"x") == "memory://reward_images/bike.jpg"
    assert bank.upload_task_image("dishes", b"y") == "memory://task_display_images/dishes.jpg"


def test_service_settings_are_applied(tmp_path) -> None:
    log_path = tmp_path / "events.jsonl"
    store = InMemoryDocumentStore(max_writes_per_transaction=50)
    bank = ChorePoints(
        store,
        logger=StructuredLogger(path=log_path),
        allow_multi_family_parents=False,
    )
    parent, _ = bank.register_parent("solo@example.com")

    with pytest.raises(PreconditionError):
        bank.create_family(parent.id)
    assert bank.store is store
    assert "parent_registered" in log_path.read_text(encoding="utf-8")


def test_remove_child_is_audited() -> None:
    bank = ChorePoints()
    parent, family, child, _ = _family(bank)

    result = bank.remove_child(child.id, family.id, actor=parent.id)

    assert result.is_complete
    entry = bank.audit_log.entries(action="remove_child")[0]
    assert entry.details["status"] == "complete"
    assert bank.children(family.id) == []
