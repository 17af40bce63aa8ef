import asyncio

import chess
import pytest

from engine_bridge.config import Settings
from engine_bridge.engine import EngineBridge
from engine_bridge.openings import OpeningBook
from engine_bridge.transport import EngineTerminatedError, LineTransport

START = chess.STARTING_FEN
AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
AFTER_E4_E5 = "rnbqkbnr/pppp1ppp/8/4p3/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2"

DEFAULT_OPTIONS = (
    "option name Threads type spin default 1 min 1 max 1024",
    "option name Hash type spin default 16 min 1 max 33554432",
    "option name MultiPV type spin default 1 min 1 max 500",
    "option name Skill Level type spin default 20 min 0 max 20",
    "option name UCI_LimitStrength type check default false",
    "option name UCI_Elo type spin default 1320 min 1320 max 3190",
)


def fast_settings(**overrides) -> Settings:
    values = dict(
        handshake_timeout_ms=300,
        resync_timeout_ms=300,
        quit_timeout_ms=300,
        min_movetime_ms=10,
        guard_grace_ms=50,
        search_wait_margin_ms=100,
        search_wait_floor_ms=400,
        engine_idle_ms=0,
        book_paths=[],
    )
    values.update(overrides)
    return Settings(**values)


class ScriptedTransport(LineTransport):
    """In-memory engine: answers the handshake, isready and go from a script.

    ``infos`` maps a FEN to the info lines emitted for it, ``bestmoves`` maps a
    FEN to the move reported. FENs in ``hang`` never get a bestmove.
    """

    def __init__(
        self,
        name="Stockfish 16",
        options=DEFAULT_OPTIONS,
        infos=None,
        bestmoves=None,
        hang=(),
        answer_uci=True,
        answer_ready=True,
        go_delay=0.0,
    ):
        super().__init__()
        self.name = name
        self.options = options
        self.infos = infos or {}
        self.bestmoves = bestmoves or {}
        self.hang = set(hang)
        self.answer_uci = answer_uci
        self.answer_ready = answer_ready
        self.go_delay = go_delay
        self.sent = []
        self.fen = None

    def _emit(self, lines):
        for line in lines:
            self.dispatch(line)

    def send(self, command):
        if self.closed:
            raise EngineTerminatedError("Engine process exited.")
        self.sent.append(command)
        loop = asyncio.get_running_loop()
        if command == "uci" and self.answer_uci:
            loop.call_soon(self._emit, [f"id name {self.name}", *self.options, "uciok"])
        elif command == "isready" and self.answer_ready:
            loop.call_soon(self._emit, ["readyok"])
        elif command.startswith("position fen "):
            self.fen = command[len("position fen "):]
        elif command.startswith("go"):
            if self.fen in self.hang:
                return
            lines = list(self.infos.get(self.fen, ["info depth 10 multipv 1 score cp 30 pv e2e4 e7e5"]))
            lines.append(f"bestmove {self.bestmoves.get(self.fen, 'e2e4')}")
            loop.call_later(self.go_delay, self._emit, lines)

    async def close(self, timeout_ms=3_000):
        if not self.closed:
            self.sent.append("quit")
        self.mark_closed()


def make_bridge(transport=None, book=None, config=None, rng=None):
    return EngineBridge(
        transport or ScriptedTransport(),
        config=config or fast_settings(),
        book=book if book is not None else OpeningBook(),
        rng=rng,
    )


async def started_bridge(**kwargs):
    bridge = make_bridge(**kwargs)
    await bridge.start()
    return bridge


@pytest.fixture
def settings():
    return fast_settings()
