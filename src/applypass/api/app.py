"""FastAPI application exposing the single queue endpoint."""

from __future__ import annotations

import json

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from applypass.api.auth import UserTokenVerifier, build_user_verifier
from applypass.api.dispatcher import QueueApi
from applypass.config import Settings
from applypass.queue.services import QueueService, build_queue_service

QUEUE_PATH = "/applypass-agent-queue"


def create_app(
    settings: Settings | None = None,
    *,
    service: QueueService | None = None,
    user_verifier: UserTokenVerifier | None = None,
) -> FastAPI:
    """Build the app; ``service`` and ``user_verifier`` default to ones built from settings."""

    resolved = settings or Settings.from_env()
    queue_api = QueueApi(
        service=service or build_queue_service(resolved),
        worker_token=resolved.auth.worker_token,
        user_verifier=user_verifier or build_user_verifier(resolved.auth),
    )

    app = FastAPI(title="ApplyPass Agent Queue")
    app.state.queue_api = queue_api

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    @app.post(QUEUE_PATH)
    async def agent_queue(request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            body = json.loads(raw) if raw.strip() else {}
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={"error": "Request body is not valid JSON"},
            )
        response = await run_in_threadpool(queue_api.handle, body, dict(request.headers))
        return JSONResponse(status_code=response.status_code, content=response.body)

    return app
