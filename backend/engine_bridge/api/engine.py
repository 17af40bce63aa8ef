"""Engine endpoints consumed by the host application."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional

from fastapi import APIRouter, HTTPException, Query

from .. import engine
from ..schemas import (
    AnalyzeRequest,
    Capabilities,
    OpeningInfo,
    ReviewEntry,
    ReviewRequest,
    SearchResult,
    StrengthRequest,
    StrengthResponse,
)
from ..transport import EngineError, EngineStartError, EngineTimeoutError

router = APIRouter(prefix="/engine", tags=["engine"])


async def _run(fn: Callable[[engine.EngineBridge], Awaitable[Any]]) -> Any:
    try:
        return await engine.engine_manager.with_engine(fn)
    except EngineStartError:
        raise HTTPException(status_code=503, detail="Engine not ready") from None
    except EngineTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from None
    except EngineError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from None
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None


@router.get("/capabilities", response_model=Capabilities)
async def get_capabilities() -> Capabilities:
    return await _run(lambda eng: eng.get_capabilities())


@router.post("/strength", response_model=StrengthResponse)
async def set_strength(payload: StrengthRequest) -> StrengthResponse:
    return await _run(lambda eng: eng.apply_strength(payload.elo))


@router.post("/analyze", response_model=SearchResult)
async def analyze_fen(payload: AnalyzeRequest) -> SearchResult:
    return await _run(lambda eng: eng.analyze_fen(payload))


@router.post("/review-fast", response_model=List[ReviewEntry])
async def review_fast(payload: ReviewRequest) -> List[ReviewEntry]:
    """Two-pass review: quick scores everywhere, deeper search on the big swings."""
    return await _run(lambda eng: eng.review_positions_fast(payload.fens, payload.opts))


@router.get("/opening", response_model=Optional[OpeningInfo])
def identify_opening(fen: str = Query(..., min_length=1)) -> Optional[OpeningInfo]:
    return engine.engine_manager.identify_opening(fen)


@router.get("/ping")
def ping() -> str:
    return "pong"


@router.post("/panic")
async def panic() -> dict[str, bool]:
    await engine.engine_manager.stop_engine("panic")
    return {"ok": True}
