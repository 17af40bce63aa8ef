"""Two-pass fast review over a game's positions."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from .schemas import CHECKMATE_CP, AnalyzeRequest, ReviewEntry, ReviewOptions, Score
from .search import SearchOrchestrator, parse_board

logger = logging.getLogger(__name__)

MIN_REVIEW_MS = 120


def score_magnitude(score: Optional[Score]) -> int:
    if score is None:
        return 0
    if score.kind == "mate":
        return CHECKMATE_CP
    return abs(score.value)


def positions_to_deepen(first_pass: Sequence[ReviewEntry], swing_cp: int, max_deepen: int) -> List[int]:
    """Indices of the largest evaluations, capped at ``max_deepen`` and at least ``swing_cp``."""
    ranked = sorted(first_pass, key=lambda entry: score_magnitude(entry.score), reverse=True)
    return [entry.idx for entry in ranked[:max_deepen] if score_magnitude(entry.score) >= swing_cp]


class ReviewBatcher:
    """Shallow search on every position, deeper search only where it matters.

    Pass 1 flags likely turning points cheaply; pass 2 spends the larger
    budget on the top-ranked positions and merges them over pass 1.
    """

    def __init__(self, search: SearchOrchestrator) -> None:
        self.search = search

    async def analyze_once(self, idx: int, fen: str, movetime_ms: int) -> ReviewEntry:
        request = AnalyzeRequest(fen=fen, movetime_ms=max(MIN_REVIEW_MS, movetime_ms), multi_pv=1)
        result = await self.search.run_search(request)
        return ReviewEntry(idx=idx, fen=fen, best_move=result.best_move, score=result.score)

    async def review(self, fens: Sequence[str], opts: Optional[ReviewOptions] = None) -> List[ReviewEntry]:
        opts = opts or ReviewOptions()
        for fen in fens:
            parse_board(fen)
        if opts.strong:
            return await self.search.strength.with_full_strength(lambda: self._two_pass(fens, opts))
        return await self._two_pass(fens, opts)

    async def _two_pass(self, fens: Sequence[str], opts: ReviewOptions) -> List[ReviewEntry]:
        first = [await self.analyze_once(idx, fen, opts.pass1_ms) for idx, fen in enumerate(fens)]
        revisit = positions_to_deepen(first, opts.swing_cp, opts.max_deepen)
        logger.info("Review pass 2: deepening %d of %d positions", len(revisit), len(fens))

        deepened: Dict[int, ReviewEntry] = {}
        for idx in revisit:
            entry = await self.analyze_once(idx, fens[idx], opts.pass2_ms)
            deepened[idx] = entry.model_copy(update={"deepened": True})
        return [deepened.get(entry.idx, entry) for entry in first]
