"""Tournament endpoints end to end through the ASGI app."""

from __future__ import annotations

from decimal import Decimal

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


@pytest.fixture
def payload(schedule):
    def _payload(**overrides) -> dict:
        body = {
            "title": "Evening Trivia",
            "category": "general",
            "entry_fee": "20.00",
            "prize_pool": "100.00",
            "max_participants": 10,
            **{k: v.isoformat() for k, v in schedule().items()},
        }
        body.update(overrides)
        return body

    return _payload


async def _create(client: AsyncClient, headers: dict, body: dict) -> dict:
    response = await client.post("/api/v1/tournaments", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def _balance(client: AsyncClient, headers: dict) -> Decimal:
    response = await client.get("/api/v1/wallet/balance", headers=headers)
    return Decimal(response.json()["playable_balance"])


class TestCreateAndBrowse:
    async def test_create(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        headers = auth(creator)
        data = await _create(client, headers, payload())

        assert data["status"] == "upcoming"
        assert data["participant_count"] == 1
        assert data["is_participant"] is True
        assert [Decimal(p["prize"]) for p in data["prize_distribution"]] == [
            Decimal("50"), Decimal("30"), Decimal("20"),
        ]
        assert await _balance(client, headers) == Decimal("80")

    async def test_create_validation(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        response = await client.post(
            "/api/v1/tournaments",
            json=payload(min_participants=8, max_participants=4),
            headers=auth(creator),
        )
        assert response.status_code == 422

    async def test_create_invalid_dates(self, client, make_user, auth, payload, schedule):
        creator = await make_user(playable="100")
        window = schedule()
        body = payload(start_time=window["end_time"].isoformat(), end_time=window["start_time"].isoformat())
        response = await client.post("/api/v1/tournaments", json=body, headers=auth(creator))
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_DATES"

    async def test_create_without_funds(self, client, make_user, auth, payload):
        creator = await make_user(playable="5")
        response = await client.post("/api/v1/tournaments", json=payload(), headers=auth(creator))
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INSUFFICIENT_BALANCE"
        assert Decimal(body["available"]) == Decimal("5")

    async def test_requires_auth(self, client, payload):
        response = await client.post("/api/v1/tournaments", json=payload())
        assert response.status_code in (401, 403)

    async def test_list_is_public_and_hides_private(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        headers = auth(creator)
        public = await _create(client, headers, payload(title="Open Cup"))
        await _create(client, headers, payload(title="Closed Cup", is_private=True))

        response = await client.get("/api/v1/tournaments")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert [t["id"] for t in data["tournaments"]] == [public["id"]]

    async def test_list_rejects_bad_sort(self, client):
        response = await client.get("/api/v1/tournaments", params={"sort_by": "password"})
        assert response.status_code == 422

    async def test_not_found(self, client, make_user, auth):
        user = await make_user()
        response = await client.get("/api/v1/tournaments/12345", headers=auth(user))
        assert response.status_code == 404
        assert response.json()["code"] == "TOURNAMENT_NOT_FOUND"


class TestJoinAndLeave:
    async def test_join_and_leave(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        player = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload())
        headers = auth(player)

        response = await client.post(f"/api/v1/tournaments/{tournament['id']}/join", headers=headers)
        assert response.status_code == 200
        assert response.json()["user_id"] == player.id
        assert await _balance(client, headers) == Decimal("80")

        response = await client.post(f"/api/v1/tournaments/{tournament['id']}/join", headers=headers)
        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_PARTICIPANT"

        response = await client.post(f"/api/v1/tournaments/{tournament['id']}/leave", headers=headers)
        assert response.status_code == 200
        assert Decimal(response.json()["refunded"]) == Decimal("20")
        assert await _balance(client, headers) == Decimal("100")

    async def test_full(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        first = await make_user(playable="100")
        late = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload(max_participants=2))

        await client.post(f"/api/v1/tournaments/{tournament['id']}/join", headers=auth(first))
        response = await client.post(f"/api/v1/tournaments/{tournament['id']}/join", headers=auth(late))
        assert response.status_code == 409
        assert response.json()["code"] == "TOURNAMENT_FULL"

    async def test_private_invite_flow(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        player = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload(is_private=True))
        code = tournament["invite_code"]
        assert code

        detail = await client.get(f"/api/v1/tournaments/{tournament['id']}", headers=auth(player))
        assert detail.json()["invite_code"] is None

        response = await client.post(f"/api/v1/tournaments/{tournament['id']}/join", headers=auth(player))
        assert response.status_code == 403
        assert response.json()["code"] == "PRIVATE_TOURNAMENT"

        found = await client.get(f"/api/v1/tournaments/invite/{code}", headers=auth(player))
        assert found.json()["id"] == tournament["id"]
        response = await client.post(
            f"/api/v1/tournaments/{tournament['id']}/join", json={"invite_code": code}, headers=auth(player),
        )
        assert response.status_code == 200

    async def test_my_tournaments(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload())
        response = await client.get("/api/v1/tournaments/my", headers=auth(creator))
        assert [t["id"] for t in response.json()] == [tournament["id"]]


class TestPlay:
    async def test_full_game(self, client, make_user, make_question, auth, payload):
        questions = [await make_question(correct_answer=3) for _ in range(5)]
        admin = await make_user(is_admin=True)
        creator = await make_user(playable="100")
        player = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload(question_ids=[q.id for q in questions]))
        tid = tournament["id"]
        await client.post(f"/api/v1/tournaments/{tid}/join", headers=auth(player))

        response = await client.get(f"/api/v1/tournaments/{tid}/questions", headers=auth(player))
        assert response.status_code == 409

        response = await client.post(f"/api/v1/tournaments/{tid}/start", headers=auth(creator))
        assert response.status_code == 403
        response = await client.post(f"/api/v1/tournaments/{tid}/start", headers=auth(admin))
        assert response.status_code == 200
        assert response.json()["status"] == "active"

        response = await client.get(f"/api/v1/tournaments/{tid}/questions", headers=auth(player))
        assert response.status_code == 200
        served = response.json()
        assert [q["id"] for q in served] == [q.id for q in questions]
        assert all("correct_answer" not in q for q in served)

        answers = [{"question_id": q.id, "selected_answer": 3, "time_spent": 5_000} for q in questions]
        response = await client.post(f"/api/v1/tournaments/{tid}/answers", json={"answers": answers},
                                     headers=auth(player))
        assert response.json() == {"score": 50, "time_spent": 25_000, "answered": 5}

        answers = [{"question_id": questions[0].id, "selected_answer": 3, "time_spent": 9_000}]
        await client.post(f"/api/v1/tournaments/{tid}/answers", json={"answers": answers}, headers=auth(creator))

        response = await client.get(f"/api/v1/tournaments/{tid}/leaderboard")
        assert [e["user_id"] for e in response.json()["entries"]] == [player.id, creator.id]

        response = await client.post(f"/api/v1/tournaments/{tid}/complete", headers=auth(admin))
        assert response.status_code == 200
        assert response.json()["winner_id"] == player.id

        response = await client.post(f"/api/v1/tournaments/{tid}/complete", headers=auth(admin))
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE_TRANSITION"

        board = (await client.get(f"/api/v1/tournaments/{tid}/leaderboard")).json()
        assert board["status"] == "completed"
        assert [(e["rank"], Decimal(e["prize"])) for e in board["entries"]] == [
            (1, Decimal("50")), (2, Decimal("30")),
        ]
        assert await _balance(client, auth(player)) == Decimal("130")

    async def test_answers_from_outside_the_set(self, client, make_user, make_question, auth, payload):
        questions = [await make_question() for _ in range(5)]
        outsider = await make_question()
        admin = await make_user(is_admin=True)
        creator = await make_user(playable="100")
        player = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload(question_ids=[q.id for q in questions]))
        tid = tournament["id"]
        await client.post(f"/api/v1/tournaments/{tid}/join", headers=auth(player))
        await client.post(f"/api/v1/tournaments/{tid}/start", headers=auth(admin))

        answers = [{"question_id": outsider.id, "selected_answer": 0, "time_spent": 1_000}]
        response = await client.post(f"/api/v1/tournaments/{tid}/answers", json={"answers": answers},
                                     headers=auth(player))
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_QUESTIONS"


class TestManage:
    async def test_cancel_by_creator_refunds(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        player = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload())
        tid = tournament["id"]
        await client.post(f"/api/v1/tournaments/{tid}/join", headers=auth(player))

        response = await client.post(f"/api/v1/tournaments/{tid}/cancel", json={"reason": "Venue closed"},
                                     headers=auth(player))
        assert response.status_code == 403
        assert response.json()["code"] == "ACCESS_DENIED"

        response = await client.post(f"/api/v1/tournaments/{tid}/cancel", json={"reason": "Venue closed"},
                                     headers=auth(creator))
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert await _balance(client, auth(creator)) == Decimal("100")
        assert await _balance(client, auth(player)) == Decimal("100")

    async def test_update(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload())
        response = await client.put(
            f"/api/v1/tournaments/{tournament['id']}",
            json={"title": "Renamed Cup", "settings": {"auto_start": False}},
            headers=auth(creator),
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed Cup"
        assert response.json()["settings"]["auto_start"] is False

    async def test_delete(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload())
        tid = tournament["id"]

        response = await client.delete(f"/api/v1/tournaments/{tid}", headers=auth(creator))
        assert response.status_code == 409
        assert response.json()["code"] == "TOURNAMENT_HAS_PARTICIPANTS"

        await client.post(f"/api/v1/tournaments/{tid}/leave", headers=auth(creator))
        response = await client.delete(f"/api/v1/tournaments/{tid}", headers=auth(creator))
        assert response.status_code == 204
        response = await client.get(f"/api/v1/tournaments/{tid}", headers=auth(creator))
        assert response.status_code == 404

    async def test_participants(self, client, make_user, auth, payload):
        creator = await make_user(playable="100")
        player = await make_user(playable="100")
        tournament = await _create(client, auth(creator), payload())
        await client.post(f"/api/v1/tournaments/{tournament['id']}/join", headers=auth(player))

        response = await client.get(f"/api/v1/tournaments/{tournament['id']}/participants")
        assert [p["user_id"] for p in response.json()] == [creator.id, player.id]
