"""UCI line codec: parse engine output, format commands."""

from __future__ import annotations

import re
from typing import Optional

import chess.engine

from .schemas import Score, SearchInfo

PV_LIMIT = 10
NULL_MOVES = {"(none)", "0000"}

_DEPTH_RE = re.compile(r"\bdepth\s+(\d+)")
_MULTIPV_RE = re.compile(r"\bmultipv\s+(\d+)")
_SCORE_RE = re.compile(r"\bscore\s+(cp|mate)\s+(-?\d+)")
_PV_RE = re.compile(r"\spv\s+(.+)$")
_BESTMOVE_RE = re.compile(r"^bestmove\s+(\S+)")
_OPTION_RE = re.compile(r"^option\s+name\s+(.+?)\s+type\s")


def is_uciok(line: str) -> bool:
    return line.strip() == "uciok"


def is_readyok(line: str) -> bool:
    return line.strip() == "readyok"


def is_bestmove(line: str) -> bool:
    return line.startswith("bestmove")


def trim_pv(moves: list[str], limit: int = PV_LIMIT) -> list[str]:
    return moves[: max(1, limit)]


def engine_score(kind: str, value: int) -> chess.engine.Score:
    """Relative score as python-chess models it: ``Cp`` or ``Mate``."""
    if kind == "mate":
        return chess.engine.Mate(value)
    return chess.engine.Cp(value)


def parse_info_line(line: str, pv_limit: int = PV_LIMIT) -> Optional[SearchInfo]:
    """Parse the fields we use from an ``info`` line.

    Returns None for anything that is not an info line or carries none of
    depth/multipv/score/pv (``info string ...``, ``info currmove ...``).
    Unknown tokens are skipped since their layout varies between engine
    versions.
    """
    if not line.startswith("info "):
        return None
    # "info string" payloads are free text and may contain any of our keywords
    if line.startswith("info string"):
        return None
    fields: dict = {}
    match = _DEPTH_RE.search(line)
    if match:
        fields["depth"] = int(match.group(1))
    match = _MULTIPV_RE.search(line)
    if match:
        fields["multipv"] = int(match.group(1))
    match = _SCORE_RE.search(line)
    if match:
        fields["score"] = Score.from_engine(engine_score(match.group(1), int(match.group(2))))
    match = _PV_RE.search(line)
    if match:
        moves = match.group(1).split()
        if moves:
            fields["pv"] = trim_pv(moves, pv_limit)
    if not fields:
        return None
    return SearchInfo(**fields)


def parse_bestmove(line: str) -> Optional[str]:
    match = _BESTMOVE_RE.match(line.strip())
    if not match:
        return None
    move = match.group(1)
    if move in NULL_MOVES:
        return None
    return move


def parse_id_name(line: str) -> Optional[str]:
    if not line.startswith("id name "):
        return None
    name = line[len("id name "):].strip()
    return name or None


def parse_option_name(line: str) -> Optional[str]:
    match = _OPTION_RE.match(line.strip())
    return match.group(1) if match else None


def setoption(name: str, value: object) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"setoption name {name} value {value}"


def position_fen(fen: str) -> str:
    return f"position fen {fen.strip()}"


def go_movetime(movetime_ms: int) -> str:
    return f"go movetime {int(movetime_ms)}"


def go_depth(depth: int) -> str:
    return f"go depth {int(depth)}"
