"""Stockfish-backed engine bridge and its shared lifecycle."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from . import protocol
from .config import Settings, settings as default_settings
from .openings import OpeningBook
from .review import ReviewBatcher
from .schemas import (
    AnalyzeRequest,
    Capabilities,
    OpeningInfo,
    ReviewEntry,
    ReviewOptions,
    SearchResult,
    StrengthResponse,
)
from .search import SearchOrchestrator
from .strength import StrengthController
from .transport import (
    EngineError,
    EngineStartError,
    EngineTerminatedError,
    LineTransport,
    ProcessTransport,
)
from .worker import CommandQueue

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    HANDSHAKING = "handshaking"
    READY = "ready"
    SEARCHING = "searching"
    QUITTING = "quitting"
    TERMINATED = "terminated"


def engine_command(path: str) -> list[str]:
    cmd = str(Path(path).expanduser())
    if os.name == "nt":
        return [cmd]
    return shlex.split(cmd)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


class EngineBridge:
    """One engine process, one conversation at a time.

    Public operations: ``get_capabilities``, ``apply_strength``,
    ``analyze_fen``, ``review_positions_fast``, ``identify_opening`` and
    ``quit``. Every engine-visible command goes through a single
    ``CommandQueue``.
    """

    def __init__(
        self,
        transport: LineTransport,
        config: Settings = default_settings,
        book: Optional[OpeningBook] = None,
        rng: Any = None,
    ) -> None:
        self.transport = transport
        self.config = config
        self.book = book if book is not None else OpeningBook()
        self.threads = _clamp(config.engine_threads, 1, config.engine_max_threads)
        self.hash_mb = _clamp(config.engine_hash_mb, config.engine_min_hash_mb, config.engine_max_hash_mb)
        self.queue = CommandQueue()
        self.strength = StrengthController(transport, self.queue, self.threads, self.hash_mb, config)
        self.search = SearchOrchestrator(transport, self.queue, self.strength, self.book, config, rng)
        self.reviewer = ReviewBatcher(self.search)
        self.engine_id = "unknown engine"
        self.options: set[str] = set()
        self._state = EngineState.UNINITIALIZED

    @classmethod
    async def create(
        cls,
        path: Optional[str] = None,
        config: Settings = default_settings,
        book: Optional[OpeningBook] = None,
        rng: Any = None,
    ) -> "EngineBridge":
        """Spawn the engine binary and complete the handshake."""
        transport = ProcessTransport(engine_command(path or config.stockfish_path))
        await transport.start()
        bridge = cls(transport, config=config, book=book, rng=rng)
        await bridge.start()
        return bridge

    @property
    def state(self) -> EngineState:
        if self._state in (EngineState.READY, EngineState.HANDSHAKING) and self.transport.closed:
            return EngineState.TERMINATED
        if self._state is EngineState.READY and self.search.active:
            return EngineState.SEARCHING
        return self._state

    def default_commands(self) -> list[str]:
        return self.strength.full_strength_commands() + [
            protocol.setoption("UCI_AnalyseMode", True),
            protocol.setoption("Ponder", False),
        ]

    def _collect_identity(self, line: str) -> None:
        name = protocol.parse_id_name(line)
        if name:
            self.engine_id = name
            return
        option = protocol.parse_option_name(line)
        if option:
            self.options.add(option)

    async def start(self) -> None:
        """Handshake: ``uci``/``uciok``, default options, ``isready``/``readyok``."""
        self._state = EngineState.HANDSHAKING
        timeout_ms = self.config.handshake_timeout_ms
        unsubscribe = self.transport.subscribe(self._collect_identity)
        try:
            self.transport.send("uci")
            await self.transport.wait_line(protocol.is_uciok, timeout_ms)
            for command in self.default_commands():
                self.transport.send(command)
            await self.transport.sync(timeout_ms)
        except EngineError as exc:
            self._state = EngineState.TERMINATED
            await self.transport.close(self.config.quit_timeout_ms)
            raise EngineStartError(f"Engine handshake failed: {exc}") from exc
        finally:
            unsubscribe()
        self._state = EngineState.READY
        logger.info("Engine ready: %s (threads=%s, hash=%sMB)", self.engine_id, self.threads, self.hash_mb)

    def _ensure_ready(self) -> None:
        state = self.state
        if state not in (EngineState.READY, EngineState.SEARCHING):
            raise EngineTerminatedError(f"Engine is not ready (state: {state.value}).")

    async def get_capabilities(self) -> Capabilities:
        return Capabilities(
            engine_id=self.engine_id,
            has_limit_strength="UCI_LimitStrength" in self.options,
            has_elo="UCI_Elo" in self.options,
            has_skill_level="Skill Level" in self.options,
            threads=self.threads,
            hash_mb=self.hash_mb,
            book_entries=len(self.book),
        )

    async def apply_strength(self, rating: Any) -> StrengthResponse:
        self._ensure_ready()
        profile = await self.strength.apply_strength(rating)
        return StrengthResponse(**profile.as_dict())

    async def analyze_fen(self, request: Union[AnalyzeRequest, dict]) -> SearchResult:
        if not isinstance(request, AnalyzeRequest):
            request = AnalyzeRequest.model_validate(request)
        self._ensure_ready()
        return await self.search.run_search(request)

    async def review_positions_fast(
        self,
        fens: Sequence[str],
        opts: Union[ReviewOptions, dict, None] = None,
    ) -> list[ReviewEntry]:
        if opts is not None and not isinstance(opts, ReviewOptions):
            opts = ReviewOptions.model_validate(opts)
        self._ensure_ready()
        return await self.reviewer.review(fens, opts)

    async def identify_opening(self, fen: str) -> Optional[OpeningInfo]:
        return self.book.identify_opening(fen)

    async def quit(self) -> None:
        if self._state in (EngineState.QUITTING, EngineState.TERMINATED):
            return
        self._state = EngineState.QUITTING
        self.queue.close()
        if not self.transport.closed:
            self.transport.send("stop")
        await self.transport.close(self.config.quit_timeout_ms)
        await self.queue.wait_closed()
        self._state = EngineState.TERMINATED
        logger.info("Engine %s terminated", self.engine_id)


EngineFactory = Callable[..., Awaitable[EngineBridge]]


class EngineManager:
    """Lazily started shared engine, shut down after an idle period."""

    def __init__(self, config: Settings = default_settings, factory: Optional[EngineFactory] = None) -> None:
        self.config = config
        self._factory = factory or EngineBridge.create
        self.engine: Optional[EngineBridge] = None
        self._book: Optional[OpeningBook] = None
        self._lock = asyncio.Lock()
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._idle_task: Optional[asyncio.Task] = None
        self._busy = 0

    def load_book(self) -> OpeningBook:
        """Read the book sources once; later calls reuse the tables."""
        if self._book is None:
            self._book = OpeningBook.load(self.config.book_paths, self.config.book_max_ply)
        return self._book

    def identify_opening(self, fen: str) -> Optional[OpeningInfo]:
        return self.load_book().identify_opening(fen)

    def _cancel_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def touch(self) -> None:
        """Restart the idle countdown; it only runs while no request is in flight."""
        self._cancel_idle()
        if self.engine is None or self._busy or self.config.engine_idle_ms <= 0:
            return
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self.config.engine_idle_ms / 1000, self._on_idle)

    def _on_idle(self) -> None:
        self._idle_handle = None
        logger.info("Engine idle timeout reached; shutting down")
        self._idle_task = asyncio.ensure_future(self.stop_engine("idle"))

    async def ensure_engine(self) -> EngineBridge:
        async with self._lock:
            if self.engine is not None and self.engine.state is EngineState.TERMINATED:
                logger.warning("Engine process is gone; restarting")
                self.engine = None
            if self.engine is None:
                try:
                    self.engine = await self._factory(config=self.config, book=self.load_book())
                except EngineStartError:
                    logger.error("Engine init failed", exc_info=True)
                    raise
                caps = await self.engine.get_capabilities()
                logger.info("Engine caps: %s", caps.model_dump())
        self.touch()
        return self.engine

    async def with_engine(self, fn: Callable[[EngineBridge], Awaitable[Any]]) -> Any:
        self._busy += 1
        self._cancel_idle()
        try:
            engine = await self.ensure_engine()
            return await fn(engine)
        finally:
            self._busy -= 1
            self.touch()

    async def stop_engine(self, reason: str = "") -> None:
        self._cancel_idle()
        async with self._lock:
            if reason == "idle" and self._busy:
                logger.info("Engine picked up work before idle shutdown; keeping it")
                return
            engine, self.engine = self.engine, None
        if engine is None:
            return
        logger.info("Stopping engine%s", f" ({reason})" if reason else "")
        await engine.quit()


engine_manager = EngineManager()
