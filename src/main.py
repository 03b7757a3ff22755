"""Entry point for the Twilio <-> OpenAI Realtime relay service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from api.routes import router as api_router
from api.schemas import StatusResponse
from api.twilio_routes import router as twilio_router
from config.settings import Settings, get_settings
from db.base import init_db
from relay.errors import MissingCredentialError


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


def create_app(settings: Settings) -> FastAPI:
    # Without a model credential no call could ever be relayed; refuse to start.
    if not settings.openai_api_key:
        raise MissingCredentialError()

    app = FastAPI(
        title="Realtime Call Relay",
        description="Bridges Twilio Media Streams to the OpenAI Realtime API.",
        lifespan=lifespan,
    )

    @app.get("/", response_model=StatusResponse)
    async def root() -> StatusResponse:
        return StatusResponse(message="Twilio Media Stream Server is running!")

    app.include_router(twilio_router)
    app.include_router(api_router, prefix="/api")
    return app


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = create_app(settings)


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
