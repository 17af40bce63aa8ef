"""Entry point for the engine bridge service."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import engine
from .api import engine as engine_api
from .config import settings

app = FastAPI(title=settings.project_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(engine_api.router, prefix=settings.api_prefix)


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
def _startup() -> None:
    # engine start stays lazy; only the book is read up front
    engine.engine_manager.load_book()


@app.on_event("shutdown")
async def _shutdown() -> None:
    await engine.engine_manager.stop_engine("app-quit")
