"""Quiz endpoints behind the security gate."""

from __future__ import annotations

from decimal import Decimal

import pytest

from quizpot.security.service import SUSPICIOUS_KEY

pytestmark = pytest.mark.asyncio

TIMES = [8_000, 12_000, 15_000, 9_000, 20_000]


async def _quiz(make_question, n: int = 5) -> list:
    return [await make_question(difficulty="easy", correct_answer=1) for _ in range(n)]


def _body(questions, correct: int) -> dict:
    return {
        "difficulty": "easy",
        "answers": [
            {"question_id": q.id, "selected_answer": 1 if i < correct else 0, "time_spent": TIMES[i]}
            for i, q in enumerate(questions)
        ],
    }


class TestQuizApi:
    async def test_status_for_new_player(self, client, make_user, auth):
        user = await make_user()
        response = await client.get("/api/v1/quiz/status", headers=auth(user))
        assert response.status_code == 200
        assert response.json() == {"allowed": True, "reason": None, "message": "Quiz allowed", "reset_time": None}

    async def test_questions_hide_answers(self, client, make_user, make_question, auth):
        user = await make_user()
        easy = await _quiz(make_question, n=3)
        await make_question(difficulty="hard")

        response = await client.get("/api/v1/quiz/questions", params={"difficulty": "easy"}, headers=auth(user))
        assert response.status_code == 200
        data = response.json()
        assert sorted(q["id"] for q in data) == sorted(q.id for q in easy)
        assert all("correct_answer" not in q for q in data)

    async def test_submit_pays_reward_and_starts_cooldown(self, client, make_user, make_question, auth):
        user = await make_user()
        questions = await _quiz(make_question)
        headers = auth(user)

        response = await client.post("/api/v1/quiz/submit", json=_body(questions, 4), headers=headers)
        assert response.status_code == 200
        result = response.json()
        assert result["score"] == 80.0
        assert result["correct_answers"] == 4
        assert Decimal(result["reward"]) == Decimal("40")
        assert result["xp_earned"] == 40
        assert [r["correct_answer"] for r in result["results"]] == [1] * 5

        balance = (await client.get("/api/v1/wallet/balance", headers=headers)).json()
        assert Decimal(balance["playable_balance"]) == Decimal("40")

        status = (await client.get("/api/v1/quiz/status", headers=headers)).json()
        assert status["allowed"] is False
        assert status["reason"] == "COOLDOWN_ACTIVE"

        response = await client.post("/api/v1/quiz/submit", json=_body(questions, 4), headers=headers)
        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMITED"
        assert response.json()["reason"] == "COOLDOWN_ACTIVE"
        assert int(response.headers["Retry-After"]) >= 1

        stats = (await client.get("/api/v1/quiz/stats", headers=headers)).json()
        assert stats["daily_attempts"] == 1
        assert stats["remaining_daily"] == 9
        assert stats["remaining_hourly"] == 2

    async def test_flagged_player_is_blocked(self, client, redis, make_user, auth):
        user = await make_user()
        await redis.sadd(SUSPICIOUS_KEY, str(user.id))

        response = await client.get("/api/v1/quiz/questions", headers=auth(user))
        assert response.status_code == 403
        assert response.json()["code"] == "SUSPICIOUS_ACTIVITY"

    async def test_invalid_difficulty(self, client, make_user, auth):
        user = await make_user()
        response = await client.post(
            "/api/v1/quiz/submit",
            json={"difficulty": "insane", "answers": [{"question_id": 1, "selected_answer": 0, "time_spent": 9000}]},
            headers=auth(user),
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    async def test_unknown_questions(self, client, make_user, auth):
        user = await make_user()
        response = await client.post(
            "/api/v1/quiz/submit",
            json={"difficulty": "easy", "answers": [{"question_id": 404, "selected_answer": 0, "time_spent": 9000}]},
            headers=auth(user),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_QUESTIONS"
