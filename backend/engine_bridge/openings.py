"""Opening book keyed by transposition-normalized positions."""

from __future__ import annotations

import io
import json
import logging
import random
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import chess
import chess.pgn

from .schemas import OpeningInfo

logger = logging.getLogger(__name__)

MAX_BOOK_PLY = 24
DEFAULT_MAX_FULL_MOVES = 12

OPENINGS: List[Dict[str, object]] = [
    {"eco": "C60", "name": "Ruy Lopez", "uci": ["e2e4", "e7e5", "g1f3", "b8c6", "f1b5"]},
    {"eco": "C50", "name": "Italian Game", "uci": ["e2e4", "e7e5", "g1f3", "b8c6", "f1c4"]},
    {"eco": "C44", "name": "Scotch Game", "uci": ["e2e4", "e7e5", "g1f3", "b8c6", "d2d4"]},
    {"eco": "C42", "name": "Petrov's Defence", "uci": ["e2e4", "e7e5", "g1f3", "g8f6"]},
    {"eco": "B20", "name": "Sicilian Defence", "uci": ["e2e4", "c7c5"]},
    {"eco": "B90", "name": "Sicilian Najdorf", "uci": ["e2e4", "c7c5", "g1f3", "d7d6", "d2d4", "c5d4", "f3d4", "g8f6", "b1c3", "a7a6"]},
    {"eco": "B12", "name": "Caro-Kann Defence", "uci": ["e2e4", "c7c6", "d2d4", "d7d5"]},
    {"eco": "C00", "name": "French Defence", "uci": ["e2e4", "e7e6", "d2d4", "d7d5"]},
    {"eco": "B01", "name": "Scandinavian Defence", "uci": ["e2e4", "d7d5"]},
    {"eco": "D06", "name": "Queen's Gambit", "uci": ["d2d4", "d7d5", "c2c4"]},
    {"eco": "D30", "name": "Queen's Gambit Declined", "uci": ["d2d4", "d7d5", "c2c4", "e7e6"]},
    {"eco": "D10", "name": "Slav Defence", "uci": ["d2d4", "d7d5", "c2c4", "c7c6"]},
    {"eco": "E60", "name": "King's Indian Defence", "uci": ["d2d4", "g8f6", "c2c4", "g7g6"]},
    {"eco": "D02", "name": "London System", "uci": ["d2d4", "d7d5", "c1f4"]},
    {"eco": "E20", "name": "Nimzo-Indian Defence", "uci": ["d2d4", "g8f6", "c2c4", "e7e6", "b1c3", "f8b4"]},
    {"eco": "A10", "name": "English Opening", "uci": ["c2c4"]},
]

_UCI_RE = re.compile(r"^[a-h][1-8][a-h][1-8][nbrq]?$", re.IGNORECASE)
_SAN_NOISE_RE = re.compile(r"[+#?!]+")

BookTable = Mapping[str, Tuple["BookMove", ...]]


@dataclass(frozen=True)
class BookMove:
    move: str
    weight: int


def board_key(board: chess.Board) -> str:
    turn = "w" if board.turn == chess.WHITE else "b"
    return f"{board.board_fen()} {turn} {board.castling_xfen()}"


def normalize_fen_key(fen: str) -> str:
    """Placement, side to move and castling rights only.

    En-passant and the move counters are dropped so transpositions share a
    key. Raises ValueError for an unparsable position.
    """
    return board_key(chess.Board(str(fen).strip()))


def weighted_choice(moves: Iterable[BookMove], rng: Any = random) -> Optional[BookMove]:
    """Cumulative-weight draw; moves with no weight are never chosen."""
    pool = [entry for entry in moves if entry.weight > 0]
    if not pool:
        return None
    draw = rng.random() * sum(entry.weight for entry in pool)
    for entry in pool:
        draw -= entry.weight
        if draw < 0:
            return entry
    return pool[-1]


def _row_weight(row: Mapping[str, Any]) -> int:
    weight = row.get("weight", 1)
    if isinstance(weight, (int, float)) and weight > 0:
        return int(weight)
    return 1


def _pgn_moves(pgn: str) -> List[str]:
    game = chess.pgn.read_game(io.StringIO(pgn))
    if game is None:
        return []
    return [move.uci() for move in game.mainline_moves()]


def _tokens_to_uci(tokens: Iterable[Any]) -> List[str]:
    """Replay SAN or UCI tokens from the start position, stopping at the first bad one."""
    board = chess.Board()
    line: List[str] = []
    for raw in tokens:
        token = _SAN_NOISE_RE.sub("", str(raw or "").strip())
        if not token:
            break
        try:
            if _UCI_RE.match(token):
                move = chess.Move.from_uci(token.lower())
                if move not in board.legal_moves:
                    break
            else:
                move = board.parse_san(token)
        except ValueError:
            break
        board.push(move)
        line.append(move.uci())
    return line


def row_moves(row: Mapping[str, Any]) -> List[str]:
    uci = row.get("uci")
    if isinstance(uci, str):
        uci = uci.split()
    if isinstance(uci, list) and uci:
        return _tokens_to_uci(token for token in uci if _UCI_RE.match(str(token)))
    san = row.get("san") or row.get("moves")
    if isinstance(san, str):
        san = san.split()
    if isinstance(san, list) and san:
        return _tokens_to_uci(san)
    pgn = row.get("pgn")
    if isinstance(pgn, str) and pgn.strip():
        return _pgn_moves(pgn)
    return []


def _freeze(counts: Mapping[str, Mapping[str, int]]) -> BookTable:
    table = {}
    for key, moves in counts.items():
        ordered = sorted(moves.items(), key=lambda item: item[1], reverse=True)
        table[key] = tuple(BookMove(move=move, weight=weight) for move, weight in ordered)
    return MappingProxyType(table)


def table_from_mapping(data: Mapping[str, Any]) -> BookTable:
    """Build a table from ``{position: [{move|uci, weight}, ...]}``."""
    counts: Dict[str, Dict[str, int]] = {}
    for raw_key, entries in data.items():
        try:
            key = normalize_fen_key(raw_key)
        except ValueError:
            logger.debug("Skipping unparsable book key %r", raw_key)
            continue
        if not isinstance(entries, list):
            continue
        bucket = counts.setdefault(key, {})
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            move = entry.get("move") or entry.get("uci")
            if not isinstance(move, str) or not _UCI_RE.match(move):
                continue
            weight = entry.get("weight", 1)
            if not isinstance(weight, (int, float)) or weight < 0:
                continue
            bucket[move.lower()] = bucket.get(move.lower(), 0) + int(weight)
    return _freeze(counts)


def table_from_rows(rows: Iterable[Mapping[str, Any]], max_ply: int = MAX_BOOK_PLY) -> BookTable:
    """Count each move per position over opening lines, up to ``max_ply``."""
    counts: Dict[str, Dict[str, int]] = {}
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        weight = _row_weight(row)
        board = chess.Board()
        for uci in row_moves(row)[:max_ply]:
            bucket = counts.setdefault(board_key(board), {})
            bucket[uci] = bucket.get(uci, 0) + weight
            board.push(chess.Move.from_uci(uci))
    return _freeze(counts)


def named_positions(rows: Iterable[Mapping[str, Any]]) -> Dict[str, OpeningInfo]:
    """Index named lines by the position they end in; longer lines win ties."""
    index: Dict[str, OpeningInfo] = {}
    for row in rows:
        if not isinstance(row, Mapping) or not row.get("name"):
            continue
        line = row_moves(row)
        if not line:
            continue
        board = chess.Board()
        for uci in line:
            board.push(chess.Move.from_uci(uci))
        key = board_key(board)
        known = index.get(key)
        if known is None or len(line) > known.ply:
            index[key] = OpeningInfo(eco=str(row.get("eco") or ""), name=str(row["name"]), ply=len(line))
    return index


class OpeningBook:
    """Immutable weighted move tables, one per source, merged on probe."""

    def __init__(
        self,
        tables: Iterable[BookTable] = (),
        named: Optional[Mapping[str, OpeningInfo]] = None,
    ) -> None:
        self._tables: Tuple[BookTable, ...] = tuple(tables)
        self._named = MappingProxyType(dict(named if named is not None else named_positions(OPENINGS)))

    @classmethod
    def load(cls, paths: Iterable[str], max_ply: int = MAX_BOOK_PLY) -> "OpeningBook":
        """Read JSON book sources; unreadable ones are skipped with a warning."""
        tables: List[BookTable] = []
        named = named_positions(OPENINGS)
        for raw_path in paths:
            path = Path(raw_path).expanduser()
            if not path.exists():
                logger.debug("Book source %s not found", path)
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable book source %s: %s", path, exc)
                continue
            if isinstance(data, Mapping):
                tables.append(table_from_mapping(data))
            elif isinstance(data, list):
                tables.append(table_from_rows(data, max_ply))
                for key, info in named_positions(data).items():
                    if key not in named or info.ply > named[key].ply:
                        named[key] = info
            else:
                logger.warning("Ignoring book source %s: unexpected JSON layout", path)
                continue
            logger.info("Loaded book source %s", path)
        book = cls(tables, named)
        logger.info("Opening book ready with %d positions", len(book))
        return book

    def __len__(self) -> int:
        keys = set()
        for table in self._tables:
            keys.update(table.keys())
        return len(keys)

    def candidates(self, fen: str) -> List[BookMove]:
        """All book moves for the position across sources, heaviest first."""
        key = normalize_fen_key(fen)
        totals: Dict[str, int] = {}
        for table in self._tables:
            for entry in table.get(key, ()):
                totals[entry.move] = totals.get(entry.move, 0) + entry.weight
        merged = [BookMove(move=move, weight=weight) for move, weight in totals.items() if weight > 0]
        merged.sort(key=lambda entry: entry.weight, reverse=True)
        return merged

    def probe(
        self,
        fen: str,
        max_full_moves: int = DEFAULT_MAX_FULL_MOVES,
        sample: bool = False,
        rng: Any = random,
    ) -> Optional[BookMove]:
        try:
            board = chess.Board(str(fen).strip())
        except ValueError as exc:
            logger.warning("Book probe skipped for %r: %s", fen, exc)
            return None
        if board.fullmove_number > max_full_moves:
            return None
        moves = self.candidates(board.fen())
        if not moves:
            return None
        if sample:
            return weighted_choice(moves, rng)
        return moves[0]

    def identify_opening(self, fen: str) -> Optional[OpeningInfo]:
        try:
            key = normalize_fen_key(fen)
        except ValueError:
            return None
        return self._named.get(key)
