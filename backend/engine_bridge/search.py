"""Single analysis/play request against the engine, end to end."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import chess

from . import protocol
from .config import Settings, settings as default_settings
from .humanizer import Humanizer
from .openings import BookMove, OpeningBook
from .schemas import AnalyzeRequest, Score, SearchInfo, SearchResult
from .strength import StrengthController
from .transport import EngineTimeoutError, LineTransport, SearchDeadline
from .worker import CommandQueue

logger = logging.getLogger(__name__)

MAX_INFO_ENTRIES = 512


def parse_board(fen: str) -> chess.Board:
    """Validate a FEN up front so nothing malformed reaches the engine."""
    try:
        return chess.Board(str(fen).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid FEN {fen!r}: {exc}") from exc


class InfoBuffer:
    """Info lines for one search.

    A line for the same (multipv, depth) slot as the previous entry that
    arrives within ``window_ms`` replaces it instead of being appended.
    """

    def __init__(
        self,
        window_ms: int = 80,
        max_entries: int = MAX_INFO_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_ms = window_ms
        self.max_entries = max_entries
        self.entries: List[SearchInfo] = []
        self.last_score: Optional[Score] = None
        self._clock = clock
        self._last_ts = 0.0

    def push(self, info: SearchInfo) -> None:
        now = self._clock()
        if self.entries:
            last = self.entries[-1]
            same_slot = (last.multipv or 1) == (info.multipv or 1) and (last.depth or 0) == (info.depth or 0)
            if same_slot and (now - self._last_ts) * 1000 < self.window_ms:
                self.entries[-1] = info
                self._last_ts = now
                return
        self.entries.append(info)
        if len(self.entries) > self.max_entries:
            del self.entries[0]
        self._last_ts = now

    def feed(self, line: str) -> None:
        info = protocol.parse_info_line(line)
        if info is None:
            return
        self.push(info)
        # the reported score follows the principal line, like the best move
        if info.score is not None and (info.multipv or 1) == 1:
            self.last_score = info.score


@dataclass(frozen=True)
class TimePolicy:
    command: str
    stop_after_ms: int
    wait_ms: int
    depth_floor: bool = False


class SearchOrchestrator:
    def __init__(
        self,
        transport: LineTransport,
        queue: CommandQueue,
        strength: StrengthController,
        book: Optional[OpeningBook] = None,
        config: Settings = default_settings,
        rng: Any = None,
    ) -> None:
        self.transport = transport
        self.queue = queue
        self.strength = strength
        self.book = book
        self.config = config
        self.rng = rng or random.Random()
        self.active = False

    def time_policy(self, request: AnalyzeRequest, board: chess.Board) -> TimePolicy:
        """Depth floor for early positions when asked, movetime otherwise."""
        cfg = self.config
        safe_ms = max(cfg.min_movetime_ms, int(request.movetime_ms or 0))
        if request.force_depth_floor and board.ply() <= cfg.depth_floor_max_ply:
            cap_ms = max(safe_ms, cfg.depth_floor_stop_ms)
            return TimePolicy(
                command=protocol.go_depth(cfg.depth_floor),
                stop_after_ms=cap_ms,
                wait_ms=max(cap_ms + cfg.depth_floor_wait_margin_ms, cfg.depth_floor_wait_floor_ms),
                depth_floor=True,
            )
        return TimePolicy(
            command=protocol.go_movetime(safe_ms),
            stop_after_ms=safe_ms + cfg.guard_grace_ms,
            wait_ms=max(cfg.search_wait_floor_ms, safe_ms + cfg.search_wait_margin_ms),
        )

    async def run_search(self, request: AnalyzeRequest) -> SearchResult:
        board = parse_board(request.fen)
        hit = self._probe_book(request, board) if request.use_book else None
        if hit is not None:
            logger.debug("Book hit %s (weight %s) for %s", hit.move, hit.weight, request.fen)
            if request.verify_book_ms <= 0:
                return SearchResult(best_move=hit.move, book=True)
        if request.strong:
            return await self.strength.with_full_strength(lambda: self._dispatch(request, board, hit))
        return await self._dispatch(request, board, hit)

    async def _dispatch(self, request: AnalyzeRequest, board: chess.Board, hit: Optional[BookMove]) -> SearchResult:
        if hit is not None:
            return await self.queue.submit(lambda: self._verify_book_move(request, board, hit))
        return await self.queue.submit(lambda: self._search(request, board))

    def _probe_book(self, request: AnalyzeRequest, board: chess.Board) -> Optional[BookMove]:
        if self.book is None:
            return None
        hit = self.book.probe(
            request.fen,
            max_full_moves=request.book_max_full_moves,
            sample=request.book_sample,
            rng=self.rng,
        )
        if hit is None:
            return None
        try:
            legal = chess.Move.from_uci(hit.move) in board.legal_moves
        except ValueError:
            legal = False
        if not legal:
            logger.warning("Ignoring illegal book move %s for %s", hit.move, request.fen)
            return None
        return hit

    async def _verify_book_move(self, request: AnalyzeRequest, board: chess.Board, hit: BookMove) -> SearchResult:
        """Short search for an evaluation; the book move stays the answer."""
        verify = AnalyzeRequest(fen=request.fen, movetime_ms=request.verify_book_ms, multi_pv=1)
        checked = await self._search(verify, board)
        return SearchResult(best_move=hit.move, infos=checked.infos, score=checked.score, book=True)

    def _force_stop(self) -> None:
        if self.transport.closed:
            return
        logger.info("Search overran its budget; forcing stop")
        self.transport.send("stop")

    async def _search(self, request: AnalyzeRequest, board: chess.Board) -> SearchResult:
        cfg = self.config
        multipv = max(1, min(cfg.max_multipv, request.multi_pv))
        policy = self.time_policy(request, board)
        buffer = InfoBuffer(cfg.info_compact_window_ms)

        self.active = True
        try:
            self.transport.send("stop")
            await self.transport.sync(cfg.resync_timeout_ms, required=False)
            self.transport.send(protocol.setoption("MultiPV", multipv))
            self.transport.send(protocol.position_fen(request.fen))

            unsubscribe = self.transport.subscribe(buffer.feed)
            try:
                self.transport.send(policy.command)
                with SearchDeadline(policy.stop_after_ms, self._force_stop):
                    line = await self.transport.wait_line(protocol.is_bestmove, policy.wait_ms)
            except EngineTimeoutError:
                logger.warning("No bestmove within %d ms for %s", policy.wait_ms, request.fen)
                self._force_stop()
                raise
            finally:
                unsubscribe()
        finally:
            self.active = False

        best_move = protocol.parse_bestmove(line)
        if request.human_mode:
            humanizer = Humanizer(request.human, self.rng)
            best_move = humanizer.choose(buffer.entries, best_move, multipv)
        return SearchResult(best_move=best_move, infos=buffer.entries, score=buffer.last_score, book=False)
