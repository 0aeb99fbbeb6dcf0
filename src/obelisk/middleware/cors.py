"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from obelisk.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the web frontend origins; expose headers the check-in UI and CSV download read."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-Id",
            "X-RateLimit-Remaining",
            "X-RateLimit-Limit",
            "Content-Disposition",
        ],
    )
