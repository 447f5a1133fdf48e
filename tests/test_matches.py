from datetime import datetime, timedelta, timezone

import pytest

from app.database import SessionLocal
from app.models import ChatMessage


def in_days(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def create_match(client):
    async def _create_match(headers, **overrides):
        payload = {
            "sport": "Football",
            "date_time": in_days(2),
            "location": "Riverside Park",
            "max_players": 4,
            "skill_requirement": 2,
        }
        payload.update(overrides)
        response = await client.post("/matches/", json=payload, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()["match"]

    return _create_match


def join_payload(name, **overrides):
    payload = {"name": name, "skill": "3", "age": 25, "phone": "555-0100"}
    payload.update(overrides)
    return payload


async def test_create_match_adds_creator_as_participant(client, make_user, create_match):
    alice_id, alice = await make_user("Alice")
    match = await create_match(alice)

    assert match["current_players"] == 1
    assert [p["id"] for p in match["participants"]] == [alice_id]
    assert match["created_by"]["id"] == alice_id
    assert match["teams"] == {"team_a": [], "team_b": [], "is_manual": False}


async def test_create_match_requires_auth(client):
    response = await client.post("/matches/", json={
        "sport": "Football", "date_time": in_days(1), "location": "Park", "max_players": 4,
    })
    assert response.status_code == 401


@pytest.mark.parametrize("overrides", [{"max_players": 1}, {"skill_requirement": 6}, {"sport": ""}])
async def test_create_match_validation(client, make_user, overrides):
    _, alice = await make_user("Alice")
    payload = {"sport": "Football", "date_time": in_days(1), "location": "Park", "max_players": 4}
    payload.update(overrides)
    response = await client.post("/matches/", json=payload, headers=alice)
    assert response.status_code == 422


async def test_list_matches_filters(client, make_user, create_match):
    _, alice = await make_user("Alice")
    await create_match(alice, sport="Football", location="Riverside Park", skill_requirement=2)
    await create_match(alice, sport="Tennis", location="City Courts", skill_requirement=4)
    await create_match(alice, sport="Football", date_time=in_days(-1))

    response = await client.get("/matches/")
    assert [m["sport"] for m in response.json()["matches"]] == ["Football", "Tennis"]

    response = await client.get("/matches/", params={"sport": "football"})
    assert len(response.json()["matches"]) == 1

    response = await client.get("/matches/", params={"location": "court"})
    assert [m["sport"] for m in response.json()["matches"]] == ["Tennis"]

    response = await client.get("/matches/", params={"skill": "3"})
    assert [m["sport"] for m in response.json()["matches"]] == ["Football"]

    response = await client.get("/matches/", params={"upcoming": "false"})
    assert len(response.json()["matches"]) == 3


async def test_get_missing_match(client):
    response = await client.get("/matches/999")
    assert response.status_code == 404


async def test_filling_the_roster_forms_balanced_teams(client, make_user, create_match):
    alice_id, alice = await make_user("Alice", skill_level=3)
    bob_id, bob = await make_user("Bob", skill_level=5)
    carol_id, carol = await make_user("Carol", skill_level=1)
    dave_id, dave = await make_user("Dave", skill_level=4)
    match = await create_match(alice, max_players=4)

    for name, headers in (("Bob", bob), ("Carol", carol)):
        response = await client.post(f"/matches/{match['id']}/join", json=join_payload(name), headers=headers)
        assert response.status_code == 200, response.text
        assert response.json()["match"]["teams"]["team_a"] == []

    response = await client.post(f"/matches/{match['id']}/join", json=join_payload("Dave"), headers=dave)
    assert response.status_code == 200
    teams = response.json()["match"]["teams"]
    # ratings 5, 4, 3, 1 -> A gets 5 and 1, B gets 4 and 3
    assert [p["id"] for p in teams["team_a"]] == [bob_id, carol_id]
    assert [p["id"] for p in teams["team_b"]] == [dave_id, alice_id]
    assert teams["is_manual"] is False


async def test_join_rules(client, make_user, create_match):
    _, alice = await make_user("Alice")
    _, bob = await make_user("Bob")
    _, carol = await make_user("Carol")
    match = await create_match(alice, max_players=2)

    response = await client.post(f"/matches/{match['id']}/join", json=join_payload("Alice"), headers=alice)
    assert response.json()["message"] == "You are already in this match"

    response = await client.post(f"/matches/{match['id']}/join", json=join_payload("Bob", age=0), headers=bob)
    assert response.status_code == 422

    response = await client.post(f"/matches/{match['id']}/join", json=join_payload("Bob"), headers=bob)
    assert response.json()["message"] == "Joined match successfully"

    response = await client.post(f"/matches/{match['id']}/join", json=join_payload("Carol"), headers=carol)
    assert response.status_code == 400
    assert response.json()["detail"] == "Match is already full"


async def test_community_gated_match(client, make_user, create_match):
    alice_id, alice = await make_user("Alice")
    bob_id, bob = await make_user("Bob")
    response = await client.post("/communities/", json={"name": "Club", "invite_code": "club42"}, headers=alice)
    community_id = response.json()["community"]["id"]
    match = await create_match(alice, community_code="club42")

    response = await client.post(f"/matches/{match['id']}/join", json=join_payload("Bob"), headers=bob)
    assert response.status_code == 400
    assert response.json()["detail"] == "invite_code is required for this match"

    response = await client.post(
        f"/matches/{match['id']}/join", json=join_payload("Bob", invite_code="WRONG1"), headers=bob
    )
    assert response.json()["detail"] == "Invalid community code for this match"

    response = await client.post(
        f"/matches/{match['id']}/join", json=join_payload("Bob", invite_code="club42"), headers=bob
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Joined match and community successfully"

    response = await client.get(f"/communities/{community_id}", headers=bob)
    assert [m["id"] for m in response.json()["community"]["members"]] == [alice_id, bob_id]


async def test_manual_team_assignment(client, make_user, create_match):
    alice_id, alice = await make_user("Alice")
    bob_id, bob = await make_user("Bob")
    carol_id, carol = await make_user("Carol")
    match = await create_match(alice, max_players=3)
    url = f"/matches/{match['id']}/teams/manual"

    await client.post(f"/matches/{match['id']}/join", json=join_payload("Bob"), headers=bob)
    response = await client.put(url, json={"team_a": [alice_id], "team_b": [bob_id]}, headers=alice)
    assert response.status_code == 400
    assert "only for full matches" in response.json()["detail"]

    await client.post(f"/matches/{match['id']}/join", json=join_payload("Carol"), headers=carol)

    response = await client.put(url, json={"team_a": [alice_id, bob_id], "team_b": [carol_id]}, headers=bob)
    assert response.status_code == 403

    response = await client.put(url, json={"team_a": [alice_id, bob_id, carol_id], "team_b": []}, headers=alice)
    assert response.status_code == 400

    response = await client.put(url, json={"team_a": [alice_id, 9999], "team_b": [carol_id]}, headers=alice)
    assert response.status_code == 400

    response = await client.put(url, json={"team_a": [carol_id, alice_id], "team_b": [bob_id]}, headers=alice)
    assert response.status_code == 200
    teams = response.json()["match"]["teams"]
    assert [p["id"] for p in teams["team_a"]] == [carol_id, alice_id]
    assert [p["id"] for p in teams["team_b"]] == [bob_id]
    assert teams["is_manual"] is True


async def test_roster_details_are_creator_only(client, make_user, create_match):
    alice_id, alice = await make_user("Alice")
    bob_id, bob = await make_user("Bob")
    match = await create_match(alice)
    await client.post(f"/matches/{match['id']}/join", json=join_payload("Bobby", phone="555-0199"), headers=bob)

    response = await client.get(f"/matches/{match['id']}/players", headers=bob)
    assert response.status_code == 403

    response = await client.get(f"/matches/{match['id']}/players", headers=alice)
    players = response.json()["players"]
    assert [p["user_id"] for p in players] == [alice_id, bob_id]
    assert players[1]["name"] == "Bobby"
    assert players[1]["phone"] == "555-0199"


async def test_message_history_is_participant_only(client, make_user, create_match):
    alice_id, alice = await make_user("Alice")
    _, bob = await make_user("Bob")
    match = await create_match(alice)

    async with SessionLocal() as session:
        session.add(ChatMessage(match_id=match["id"], sender_id=alice_id, message="see you there"))
        await session.commit()

    response = await client.get(f"/matches/{match['id']}/messages", headers=bob)
    assert response.status_code == 403

    response = await client.get(f"/matches/{match['id']}/messages", headers=alice)
    messages = response.json()["messages"]
    assert [m["message"] for m in messages] == ["see you there"]
    assert messages[0]["sender"]["name"] == "Alice"


async def test_update_match(client, make_user, create_match):
    _, alice = await make_user("Alice")
    _, bob = await make_user("Bob")
    match = await create_match(alice, max_players=4)
    await client.post(f"/matches/{match['id']}/join", json=join_payload("Bob"), headers=bob)
    url = f"/matches/{match['id']}"

    response = await client.put(url, json={"location": "Elsewhere"}, headers=bob)
    assert response.status_code == 403

    response = await client.put(url, json={"max_players": 2, "location": " North Field "}, headers=alice)
    assert response.status_code == 200
    assert response.json()["match"]["max_players"] == 2
    assert response.json()["match"]["location"] == "North Field"

    response = await client.put(url, json={"max_players": 1}, headers=alice)
    assert response.status_code == 422


async def test_max_players_cannot_drop_below_roster(client, make_user, create_match):
    _, alice = await make_user("Alice")
    _, bob = await make_user("Bob")
    _, carol = await make_user("Carol")
    match = await create_match(alice, max_players=4)
    for name, headers in (("Bob", bob), ("Carol", carol)):
        await client.post(f"/matches/{match['id']}/join", json=join_payload(name), headers=headers)

    response = await client.put(f"/matches/{match['id']}", json={"max_players": 2}, headers=alice)
    assert response.status_code == 400


async def test_delete_match(client, make_user, create_match):
    alice_id, alice = await make_user("Alice")
    _, bob = await make_user("Bob")
    match = await create_match(alice)

    async with SessionLocal() as session:
        session.add(ChatMessage(match_id=match["id"], sender_id=alice_id, message="bye"))
        await session.commit()

    response = await client.delete(f"/matches/{match['id']}", headers=bob)
    assert response.status_code == 403

    response = await client.delete(f"/matches/{match['id']}", headers=alice)
    assert response.status_code == 200

    response = await client.get(f"/matches/{match['id']}")
    assert response.status_code == 404


async def test_participants_report_live_presence(client, coordinator, make_user, create_match):
    alice_id, alice = await make_user("Alice")
    match = await create_match(alice)

    coordinator.registry.increment(alice_id)
    response = await client.get(f"/matches/{match['id']}")
    assert response.json()["match"]["participants"][0]["is_online"] is True

    coordinator.registry.decrement(alice_id)
    response = await client.get(f"/matches/{match['id']}")
    assert response.json()["match"]["participants"][0]["is_online"] is False
