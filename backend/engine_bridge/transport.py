"""Engine subprocess transport: line fan-out, waits and stop deadlines."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import chess.engine

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]
LinePredicate = Callable[[str], bool]

DEFAULT_WAIT_MS = 10_000


class EngineError(chess.engine.EngineError):
    """Base class for engine process failures."""


class EngineStartError(EngineError):
    """The engine could not be spawned or failed its handshake."""


class EngineTimeoutError(EngineError):
    """No matching line arrived within the wait window."""


class EngineTerminatedError(EngineError, chess.engine.EngineTerminatedError):
    """The engine process is gone."""


class LineTransport:
    """Publish/subscribe over engine output lines.

    Every registered listener sees every line, so one caller can collect
    search info while another waits for ``bestmove``. Subclasses provide
    ``send`` and feed output through ``dispatch``.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Future] = set()
        self.closed = False

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, line: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(line)
            except Exception:
                logger.exception("Engine line listener failed on %r", line)

    def mark_closed(self) -> None:
        self.closed = True
        for future in list(self._pending):
            if not future.done():
                future.set_exception(EngineTerminatedError("Engine process exited."))

    def send(self, command: str) -> None:
        raise NotImplementedError

    async def wait_line(self, predicate: LinePredicate, timeout_ms: int = DEFAULT_WAIT_MS) -> str:
        """Return the first line matching ``predicate`` or raise EngineTimeoutError."""
        if self.closed:
            raise EngineTerminatedError("Engine process exited.")
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _match(line: str) -> None:
            if not future.done() and predicate(line.strip()):
                future.set_result(line)

        unsubscribe = self.subscribe(_match)
        self._pending.add(future)
        try:
            return await asyncio.wait_for(future, timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise EngineTimeoutError(f"No matching engine output within {timeout_ms} ms.") from None
        finally:
            unsubscribe()
            self._pending.discard(future)

    async def sync(self, timeout_ms: int = DEFAULT_WAIT_MS, required: bool = True) -> bool:
        """Round-trip ``isready`` so every earlier command has been processed.

        With ``required=False`` a missing ``readyok`` is logged and reported as
        False instead of raising.
        """
        self.send("isready")
        try:
            await self.wait_line(lambda line: line == "readyok", timeout_ms)
        except EngineTimeoutError:
            if required:
                raise
            logger.warning("Engine did not answer isready within %d ms", timeout_ms)
            return False
        return True

    async def close(self, timeout_ms: int = 3_000) -> None:
        self.mark_closed()


class _EngineProtocol(chess.engine.UciProtocol):
    """python-chess UCI protocol used as a raw line pipe.

    ``initialize()`` is never called: the bridge runs its own handshake, so
    every stdout line is handed to the attached transport untouched. Lines
    that arrive before ``attach`` (startup banners) are held back.
    """

    def __init__(self) -> None:
        super().__init__()
        self.sink: Optional[LineTransport] = None
        self._early: list[str] = []

    def attach(self, sink: LineTransport) -> None:
        self.sink = sink
        early, self._early = self._early, []
        for line in early:
            sink.dispatch(line)

    def line_received(self, line: str) -> None:
        if not line:
            return
        if self.sink is None:
            self._early.append(line)
            return
        self.sink.dispatch(line)


class ProcessTransport(LineTransport):
    """Engine binary spawned through python-chess with piped stdin/stdout."""

    def __init__(self, command: list[str]) -> None:
        super().__init__()
        self.command = command
        self._transport: Optional[asyncio.SubprocessTransport] = None
        self._protocol: Optional[_EngineProtocol] = None

    @property
    def pid(self) -> Optional[int]:
        return self._transport.get_pid() if self._transport else None

    @property
    def returncode(self) -> Optional[int]:
        if self._protocol is None or not self._protocol.returncode.done():
            return None
        return self._protocol.returncode.result()

    async def start(self) -> None:
        try:
            self._transport, self._protocol = await _EngineProtocol.popen(self.command)
        except OSError as exc:
            raise EngineStartError(f"Could not start engine {self.command[0]!r}: {exc}") from exc
        logger.info("Engine started: %s (pid %s)", self.command[0], self.pid)
        self._protocol.attach(self)
        self._protocol.returncode.add_done_callback(self._on_exit)

    def _on_exit(self, returncode: asyncio.Future) -> None:
        if not returncode.cancelled():
            logger.info("Engine process exited with code %s", returncode.result())
        self.mark_closed()

    def send(self, command: str) -> None:
        if self.closed or self._protocol is None:
            raise EngineTerminatedError("Engine process exited.")
        self._protocol.send_line(command)

    async def close(self, timeout_ms: int = 3_000) -> None:
        """Ask the engine to quit, escalating to terminate and kill."""
        protocol = self._protocol
        if protocol is None:
            return
        timeout = timeout_ms / 1000
        if not protocol.returncode.done():
            try:
                await asyncio.wait_for(protocol.quit(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Engine ignored quit within %.1fs - terminating", timeout)
                await self._terminate(timeout)
        self._transport.close()
        self.mark_closed()
        logger.info("Engine exited with code %s", self.returncode)

    async def _terminate(self, timeout: float) -> None:
        try:
            self._transport.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._protocol.returncode), timeout)
        except asyncio.TimeoutError:
            logger.warning("Engine still running - killing process")
            try:
                self._transport.kill()
            except ProcessLookupError:
                return
            await asyncio.shield(self._protocol.returncode)


class SearchDeadline:
    """Cancellation token with an explicit deadline.

    ``on_expire`` runs once if the deadline passes before ``cancel``. Used as
    a context manager around a search so the guard never outlives it.
    """

    def __init__(self, budget_ms: int, on_expire: Callable[[], None]) -> None:
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._on_expire = on_expire
        self.budget_ms = budget_ms
        self.deadline = loop.time() + budget_ms / 1000
        self.expired = False
        self._handle = loop.call_at(self.deadline, self._fire)

    def _fire(self) -> None:
        self.expired = True
        self._on_expire()

    def remaining_ms(self) -> int:
        return max(0, int((self.deadline - self._loop.time()) * 1000))

    def cancel(self) -> None:
        self._handle.cancel()

    def __enter__(self) -> "SearchDeadline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()
