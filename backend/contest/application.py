from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from contest.api.router import api_router
from contest.config import settings
from contest.runtime import GameRuntime
from contest.runtime import runtime as default_runtime


def create_app(
    game_runtime: GameRuntime | None = None,
    public_dir: Path | None = None,
) -> FastAPI:
    app = FastAPI(title="Number Elimination Backend", version="1.0.0")
    app.state.runtime = game_runtime or default_runtime
    app.state.public_dir = Path(public_dir or settings.public_dir)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.runtime.shutdown()

    return app


app = create_app()
