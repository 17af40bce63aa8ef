"""Pydantic schemas for the engine bridge."""

from __future__ import annotations

from typing import Literal, Optional

import chess.engine
from pydantic import BaseModel, Field

CHECKMATE_CP = 10000


class Score(BaseModel):
    kind: Literal["cp", "mate"]
    value: int

    @classmethod
    def from_engine(cls, score: chess.engine.Score) -> "Score":
        if score.is_mate():
            return cls(kind="mate", value=score.mate())
        return cls(kind="cp", value=score.score())

    def to_engine(self) -> chess.engine.Score:
        if self.kind == "mate":
            return chess.engine.Mate(self.value)
        return chess.engine.Cp(self.value)

    def as_cp(self) -> int:
        """Centipawns from the mover's point of view; mates map to +/-CHECKMATE_CP."""
        score = self.to_engine()
        if score.is_mate():
            mate = score.mate()
            return CHECKMATE_CP if mate and mate > 0 else -CHECKMATE_CP
        return score.score() or 0


class SearchInfo(BaseModel):
    depth: Optional[int] = None
    multipv: Optional[int] = None
    score: Optional[Score] = None
    pv: list[str] = []


class HumanizationPolicy(BaseModel):
    max_pick_delta_cp: int = Field(60, ge=0)
    temperature: float = Field(0.0, ge=0.0)
    imperfect_rate: float = Field(0.0, ge=0.0, le=1.0)
    imperfect_min_drop_cp: int = Field(0, ge=0)
    imperfect_max_drop_cp: int = Field(0, ge=0)
    blunder_rate: float = Field(0.0, ge=0.0, le=1.0)
    blunder_min_drop_cp: int = Field(70, ge=0)
    blunder_max_cp: int = Field(250, ge=0)


class AnalyzeRequest(BaseModel):
    fen: str
    movetime_ms: int = Field(250, ge=0)
    multi_pv: int = Field(1, ge=1)
    use_book: bool = False
    book_max_full_moves: int = Field(16, ge=1)
    book_sample: bool = False
    verify_book_ms: int = Field(0, ge=0)
    force_depth_floor: bool = False
    strong: bool = False
    human_mode: bool = False
    human: HumanizationPolicy = HumanizationPolicy()


class SearchResult(BaseModel):
    best_move: Optional[str] = None
    infos: list[SearchInfo] = []
    score: Optional[Score] = None
    book: bool = False


class ReviewOptions(BaseModel):
    pass1_ms: int = Field(200, ge=0)
    pass2_ms: int = Field(320, ge=0)
    swing_cp: int = Field(120, ge=0)
    max_deepen: int = Field(12, ge=0)
    strong: bool = False


class ReviewRequest(BaseModel):
    fens: list[str] = []
    opts: ReviewOptions = ReviewOptions()


class ReviewEntry(BaseModel):
    idx: int
    fen: str
    best_move: Optional[str] = None
    score: Optional[Score] = None
    deepened: bool = False


class StrengthRequest(BaseModel):
    elo: int = 1500


class StrengthResponse(BaseModel):
    ok: bool = True
    elo_applied: int
    limit_strength: bool
    skill: int
    threads: int
    hash_mb: int
    movetime_ms: int


class Capabilities(BaseModel):
    engine_id: str
    has_limit_strength: bool
    has_elo: bool
    has_skill_level: bool
    threads: int
    hash_mb: int
    book_entries: int


class OpeningInfo(BaseModel):
    eco: str
    name: str
    ply: int
