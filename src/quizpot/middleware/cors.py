"""CORS for the Telegram WebApp and the admin panel."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quizpot.config import Settings
from quizpot.middleware.request_id import REQUEST_ID_HEADER

# Headers the frontends read off responses
EXPOSED_HEADERS = [REQUEST_ID_HEADER, "Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining"]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=EXPOSED_HEADERS,
    )
