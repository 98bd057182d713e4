from chorepoints.models import ClaimStatus
from chorepoints.service import ChorePoints


def _seed(bank: ChorePoints):
    parent, family = bank.register_parent("mom@example.com", "Mom")
    ava = bank.add_child("Ava", family.id)
    ben = bank.add_child("Ben", family.id)
    reward = bank.create_reward(
        title="Movie night",
        required_points=10,
        created_by_parent_id=parent.id,
        family_id=family.id,
    )
    task = bank.create_task(
        title="Dishes",
        points=10,
        assigned_child_ids=[ava.id],
        linked_reward_ids=[reward.id],
        created_by_parent_id=parent.id,
        family_id=family.id,
    )
    return parent, family, ava, ben, reward, task


def test_child_dashboard_follows_changes() -> None:
    bank = ChorePoints()
    _, _, ava, _, reward, task = _seed(bank)

    dashboard = bank.child_dashboard(ava.id)
    assert dashboard.active
    assert dashboard.points == 0
    assert [item.id for item in dashboard.tasks] == [task.id]
    assert [item.id for item in dashboard.unclaimed_rewards] == [reward.id]
    assert dashboard.reward_progress() == {reward.id: 0.0}

    bank.submit_task(task.id)
    bank.approve_task(task.id)
    assert dashboard.points == 10
    assert dashboard.tasks == []
    assert dashboard.reward_progress() == {reward.id: 1.0}

    claim = bank.claim_reward(reward.id, ava.id)
    assert dashboard.points == 0
    assert [item.id for item in dashboard.claims] == [claim.id]
    assert dashboard.unclaimed_rewards == []

    dashboard.close()
    assert not dashboard.active
    assert dashboard.child is None


def test_watch_switches_child_and_drops_old_subscriptions() -> None:
    bank = ChorePoints()
    _, _, ava, ben, _, _ = _seed(bank)

    dashboard = bank.child_dashboard(ava.id)
    before = bank.store.active_subscriptions()
    dashboard.watch(ben.id)

    assert dashboard.watched_id == ben.id
    assert dashboard.child.id == ben.id
    assert dashboard.tasks == []
    assert bank.store.active_subscriptions() == before

    with dashboard:
        pass
    assert bank.store.active_subscriptions() == 0


def test_parent_dashboard_queues() -> None:
    bank = ChorePoints()
    _, family, ava, ben, reward, task = _seed(bank)

    with bank.parent_dashboard(family.id) as dashboard:
        assert dashboard.family.id == family.id
        assert [child.name for child in dashboard.children] == ["Ava", "Ben"]
        assert dashboard.submissions == []

        bank.submit_task(task.id)
        assert [item.id for item in dashboard.submissions] == [task.id]

        bank.approve_task(task.id)
        assert dashboard.submissions == []

        claim = bank.claim_reward(reward.id, ava.id)
        assert [item.id for item in dashboard.claims] == [claim.id]

        bank.remind_claim(claim.id)
        assert dashboard.claims[0].status is ClaimStatus.REMINDED

        bank.grant_claim(claim.id)
        assert dashboard.claims == []

        bank.remove_child(ben.id, family.id)
        assert [child.name for child in dashboard.children] == ["Ava"]
        assert dashboard.family.child_ids == [ava.id]

    assert not dashboard.active


def test_idle_dashboard_keeps_at_most_one_snapshot_per_view() -> None:
    bank = ChorePoints()
    _, _, ava, _, _, _ = _seed(bank)
    dashboard = bank.child_dashboard(ava.id)

    for number in range(200):
        bank.update_profile(ava.id, name=f"Ava {number}")

    assert all(depth <= 1 for depth in dashboard.pending_snapshots.values())
    assert dashboard.child.name == "Ava 199"
    dashboard.close()
    assert dashboard.pending_snapshots == {}
