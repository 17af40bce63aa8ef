"""Play-mode move substitution so engine choices feel less mechanical."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from .schemas import HumanizationPolicy, SearchInfo

MIN_TEMPERATURE = 0.05
IMPERFECT_POOL = 3
BLUNDER_POOL = 2


@dataclass
class Candidate:
    uci: str
    cp: int


def candidates_from_infos(infos: Sequence[SearchInfo]) -> List[Candidate]:
    """One candidate per first PV move at the deepest depth, best score kept."""
    scored = [info for info in infos if info.pv and info.score is not None]
    if not scored:
        return []
    deepest = max(info.depth or 0 for info in scored)
    by_move: dict[str, Candidate] = {}
    for info in scored:
        if (info.depth or 0) != deepest:
            continue
        move = info.pv[0]
        cp = info.score.as_cp()
        known = by_move.get(move)
        if known is None or known.cp < cp:
            by_move[move] = Candidate(uci=move, cp=cp)
    return sorted(by_move.values(), key=lambda cand: cand.cp, reverse=True)


def softmax_sample(candidates: Sequence[Candidate], temperature: float, rng: Any = random) -> Optional[Candidate]:
    """Temperature is in pawns; zero or less always returns the best candidate."""
    if not candidates:
        return None
    if temperature <= 0:
        return max(candidates, key=lambda cand: cand.cp)
    t = max(MIN_TEMPERATURE, temperature)
    top = max(cand.cp for cand in candidates)
    weights = [math.exp((cand.cp - top) / (100 * t)) for cand in candidates]
    draw = rng.random() * sum(weights)
    for cand, weight in zip(candidates, weights):
        draw -= weight
        if draw <= 0:
            return cand
    return candidates[-1]


def _least_bad(candidates: Sequence[Candidate], top_cp: int, low: int, high: Optional[int]) -> List[Candidate]:
    pool = []
    for cand in candidates:
        drop = top_cp - cand.cp
        if drop <= 0 or drop < low:
            continue
        if high is not None and drop > high:
            continue
        pool.append(cand)
    pool.sort(key=lambda cand: top_cp - cand.cp)
    return pool


class Humanizer:
    def __init__(self, policy: Optional[HumanizationPolicy] = None, rng: Any = None) -> None:
        self.policy = policy or HumanizationPolicy()
        self.rng = rng or random.Random()

    def choose(self, infos: Sequence[SearchInfo], engine_move: Optional[str], multipv: int = 1) -> Optional[str]:
        """Pick the move to play.

        Stages run in order and each may override the previous pick:
        softmax sampling among near-equal moves, then an occasional
        controlled imperfection, then a rare capped blunder.
        """
        candidates = candidates_from_infos(infos)
        if not candidates:
            return engine_move
        policy = self.policy
        top = candidates[0]
        width = max(1, multipv)

        near = [cand for cand in candidates if top.cp - cand.cp <= policy.max_pick_delta_cp][:width]
        picked = softmax_sample(near or candidates[:width], policy.temperature, self.rng)
        choice = picked.uci if picked else engine_move

        if len(candidates) > 1 and policy.imperfect_rate > 0 and self.rng.random() < policy.imperfect_rate:
            high = policy.imperfect_max_drop_cp if policy.imperfect_max_drop_cp > 0 else None
            pool = _least_bad(candidates, top.cp, policy.imperfect_min_drop_cp, high)[:IMPERFECT_POOL]
            if pool:
                choice = self.rng.choice(pool).uci

        if len(candidates) > 1 and policy.blunder_rate > 0 and self.rng.random() < policy.blunder_rate:
            pool = _least_bad(candidates, top.cp, policy.blunder_min_drop_cp, policy.blunder_max_cp)[:BLUNDER_POOL]
            if pool:
                choice = self.rng.choice(pool).uci

        return choice
