from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from chorepoints.service import ChorePoints
from chorepoints.store import InMemoryDocumentStore, InMemoryObjectStore
from chorepoints.webapp import create_app
from chorepoints.webapp.persistence import SqlDocumentStore, build_engine


@pytest.fixture()
def client():
    bank = ChorePoints(InMemoryDocumentStore(), object_store=InMemoryObjectStore())
    with TestClient(create_app(bank)) as test_client:
        yield test_client


def _seed(client: TestClient):
    created = client.post("/parents", json={"email": "mom@example.com", "name": "Mom"})
    assert created.status_code == 201
    parent = created.json()["parent"]
    family = created.json()["family"]
    child = client.post(f"/families/{family['id']}/children", json={"name": "Ava"}).json()
    reward = client.post(
        "/rewards",
        json={
            "title": "Movie night",
            "required_points": 10,
            "created_by_parent_id": parent["id"],
            "family_id": family["id"],
        },
    ).json()
    return parent, family, child, reward


def _create_task(client: TestClient, parent, family, child, reward, points: int = 10):
    response = client.post(
        "/tasks",
        json={
            "title": "Dishes",
            "points": points,
            "assigned_child_ids": [child["id"]],
            "linked_reward_ids": [reward["id"]],
            "created_by_parent_id": parent["id"],
            "family_id": family["id"],
        },
    )
    assert response.status_code == 201
    return response.json()


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_task_and_claim_flow(client: TestClient) -> None:
    parent, family, child, reward = _seed(client)
    task = _create_task(client, parent, family, child, reward)
    assert client.get(f"/rewards/{reward['id']}").json()["assignedChildIds"] == [child["id"]]

    submitted = client.post(f"/tasks/{task['id']}/submit", json={"proof_image_url": "memory://proof.jpg"})
    assert submitted.json()["status"] == "submitted"
    assert [item["id"] for item in client.get(f"/families/{family['id']}/tasks/submitted").json()] == [task["id"]]

    approved = client.post(f"/tasks/{task['id']}/approve")
    assert approved.status_code == 200
    assert approved.json()["task"]["status"] == "approved"
    assert approved.json()["result"]["status"] == "complete"
    assert client.get(f"/users/{child['id']}").json()["points"] == 10

    again = client.post(f"/tasks/{task['id']}/approve")
    assert again.status_code == 409
    assert again.json()["current"] == "approved"

    claim = client.post(f"/rewards/{reward['id']}/claim", json={"child_id": child["id"]})
    assert claim.status_code == 201
    claim_id = claim.json()["id"]
    assert claim.json()["rewardCost"] == 10
    assert client.get(f"/users/{child['id']}").json()["points"] == 0

    reminded = client.post(f"/claims/{claim_id}/remind")
    assert reminded.json()["status"] == "reminded"
    promised = client.post(
        f"/claims/{claim_id}/promise",
        json={"promised_date": (date.today() + timedelta(days=2)).isoformat()},
    )
    assert promised.json()["status"] == "promised"
    open_claims = client.get(f"/families/{family['id']}/claims", params={"status": ["pending", "reminded"]})
    assert open_claims.json() == []

    granted = client.post(f"/claims/{claim_id}/grant")
    assert granted.json()["status"] == "granted"
    assert client.post(f"/claims/{claim_id}/remind").status_code == 409


def test_error_mapping(client: TestClient) -> None:
    parent, family, child, reward = _seed(client)

    assert client.get("/tasks/missing").status_code == 404

    no_rewards = client.post(
        "/tasks",
        json={
            "title": "Dishes",
            "points": 1,
            "linked_reward_ids": [],
            "created_by_parent_id": parent["id"],
            "family_id": family["id"],
        },
    )
    assert no_rewards.status_code == 422
    assert no_rewards.json()["error"] == "invalid"

    ghost = client.post(
        "/tasks",
        json={
            "title": "Dishes",
            "points": 1,
            "assigned_child_ids": ["ghost"],
            "linked_reward_ids": [reward["id"]],
            "created_by_parent_id": parent["id"],
            "family_id": family["id"],
        },
    )
    assert ghost.status_code == 409
    assert client.get(f"/rewards/{reward['id']}").json()["assignedChildIds"] == []

    unassigned = client.post(f"/rewards/{reward['id']}/claim", json={"child_id": child["id"]})
    assert unassigned.status_code == 409

    task = _create_task(client, parent, family, child, reward, points=3)
    assert client.post(f"/tasks/{task['id']}/decline").status_code == 409

    too_poor = client.post(f"/rewards/{reward['id']}/claim", json={"child_id": child["id"]})
    body = too_poor.json()
    assert body["shortfall"] == 10
    assert body["balance"] == 0

    assert client.post("/families", json={"parent_id": "ghost"}).status_code == 404


def test_membership_routes(client: TestClient) -> None:
    parent, family, child, reward = _seed(client)
    dad = client.post("/parents", json={"email": "dad@example.com"}).json()["parent"]

    joined = client.post(f"/families/{family['id']}/co-parents", json={"email": "DAD@example.com"})
    assert joined.status_code == 200
    assert joined.json()["id"] == dad["id"]
    parents = client.get(f"/families/{family['id']}/parents").json()
    assert {item["id"] for item in parents} == {parent["id"], dad["id"]}

    profile = client.patch(f"/users/{child['id']}", json={"name": "Ava Rose"})
    assert profile.json()["name"] == "Ava Rose"

    _create_task(client, parent, family, child, reward)
    removed = client.delete(f"/families/{family['id']}/children/{child['id']}")
    assert removed.status_code == 200
    assert removed.json()["result"]["status"] == "complete"
    assert client.get(f"/families/{family['id']}/children").json() == []
    assert client.get(f"/rewards/{reward['id']}").json()["assignedChildIds"] == []


def test_dashboards_and_uploads(client: TestClient) -> None:
    parent, family, child, reward = _seed(client)
    task = _create_task(client, parent, family, child, reward, points=4)

    uploaded = client.post(f"/tasks/{task['id']}/proof", content=b"jpeg")
    assert uploaded.status_code == 200
    assert uploaded.json()["status"] == "submitted"
    assert uploaded.json()["proofImageUrl"].startswith(f"memory://task_proofs/{task['id']}/")

    parent_view = client.get(f"/families/{family['id']}/dashboard").json()
    assert [item["id"] for item in parent_view["submitted_tasks"]] == [task["id"]]
    assert [item["name"] for item in parent_view["children"]] == ["Ava"]

    client.post(f"/tasks/{task['id']}/approve")
    child_view = client.get(f"/children/{child['id']}/dashboard").json()
    assert child_view["points"] == 4
    assert child_view["tasks"] == []
    assert child_view["rewards"][0]["progress"] == 0.4

    picture = client.post(f"/users/{child['id']}/profile-picture", content=b"face")
    assert picture.json()["profilePictureUrl"] == f"memory://profile_pictures/{child['id']}.jpg"
    assert client.post(f"/users/{child['id']}/profile-picture", content=b"").status_code == 422


def test_app_over_sql_store() -> None:
    bank = ChorePoints(SqlDocumentStore(build_engine("sqlite://")))
    with TestClient(create_app(bank)) as sql_client:
        parent, family, child, reward = _seed(sql_client)
        task = _create_task(sql_client, parent, family, child, reward)
        sql_client.post(f"/tasks/{task['id']}/submit")
        approved = sql_client.post(f"/tasks/{task['id']}/approve")
        assert approved.status_code == 200
        assert sql_client.get(f"/users/{child['id']}").json()["points"] == 10
