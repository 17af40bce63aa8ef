"""Rating to engine-option mapping and move-time budgets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from . import protocol
from .config import Settings, settings as default_settings
from .transport import EngineError, LineTransport
from .worker import CommandQueue

logger = logging.getLogger(__name__)

SKILL_MIN = 0
SKILL_MID = 10
SKILL_MAX = 20
LOW_RATING = 1000
MID_RATING = 1800

# (rating, milliseconds); must stay non-decreasing in both columns
MOVETIME_POINTS: list[tuple[int, int]] = [
    (800, 180),
    (1000, 210),
    (1200, 240),
    (1500, 280),
    (1800, 320),
    (2000, 360),
    (2200, 420),
    (2400, 480),
    (2500, 520),
]


@dataclass(frozen=True)
class StrengthProfile:
    rating: int
    skill: int
    threads: int
    hash_mb: int
    movetime_ms: int
    limit_strength: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "elo_applied": self.rating,
            "limit_strength": self.limit_strength,
            "skill": self.skill,
            "threads": self.threads,
            "hash_mb": self.hash_mb,
            "movetime_ms": self.movetime_ms,
        }


def clamp_rating(rating: Any, config: Settings = default_settings) -> int:
    try:
        value = int(rating)
    except (TypeError, ValueError):
        value = config.default_rating
    return max(config.rating_min, min(config.rating_max, value))


def skill_for_rating(rating: int) -> int:
    if rating < LOW_RATING:
        return SKILL_MIN
    if rating <= MID_RATING:
        return SKILL_MID
    return SKILL_MAX


def resources_for_rating(rating: int, threads: int, hash_mb: int, config: Settings = default_settings) -> tuple[int, int]:
    """Thread/hash allocation; weaker tiers get less of both."""
    if rating < LOW_RATING:
        return 1, config.engine_min_hash_mb
    if rating <= MID_RATING:
        return max(1, min(2, threads)), max(config.engine_min_hash_mb, hash_mb // 2)
    return threads, hash_mb


def move_time_for_rating(rating: Any, config: Settings = default_settings) -> int:
    """Piecewise-linear move time in ms, clamped at the calibration table's ends."""
    try:
        value = float(rating)
    except (TypeError, ValueError):
        value = float(config.default_rating)
    low_rating, low_ms = MOVETIME_POINTS[0]
    high_rating, high_ms = MOVETIME_POINTS[-1]
    if value <= low_rating:
        return max(config.min_movetime_ms, low_ms)
    if value >= high_rating:
        return max(config.min_movetime_ms, high_ms)
    for (r0, t0), (r1, t1) in zip(MOVETIME_POINTS, MOVETIME_POINTS[1:]):
        if r0 <= value <= r1:
            k = (value - r0) / (r1 - r0)
            return max(config.min_movetime_ms, int(t0 + k * (t1 - t0) + 0.5))
    return max(config.min_movetime_ms, high_ms)


def build_profile(rating: Any, threads: int, hash_mb: int, config: Settings = default_settings) -> StrengthProfile:
    clamped = clamp_rating(rating, config)
    tier_threads, tier_hash = resources_for_rating(clamped, threads, hash_mb, config)
    return StrengthProfile(
        rating=clamped,
        skill=skill_for_rating(clamped),
        threads=tier_threads,
        hash_mb=tier_hash,
        movetime_ms=move_time_for_rating(clamped, config),
    )


class StrengthController:
    """Owns the engine's strength options.

    ``profile`` is the strength callers asked for; ``lifted`` counts the
    full-strength windows currently open. Both only change inside queued
    units, so a strength change is atomic with respect to any search waiting
    in the same queue. A change made while the limit is lifted is recorded
    and takes effect when the last window closes.
    """

    def __init__(
        self,
        transport: LineTransport,
        queue: CommandQueue,
        threads: int,
        hash_mb: int,
        config: Settings = default_settings,
    ) -> None:
        self.transport = transport
        self.queue = queue
        self.config = config
        self.base_threads = threads
        self.base_hash_mb = hash_mb
        self.profile = self.full_strength_profile(config.default_rating)
        self.lifted = 0

    @property
    def active_profile(self) -> StrengthProfile:
        """What the engine is configured with right now."""
        if self.lifted:
            return self.full_strength_profile(self.profile.rating)
        return self.profile

    def full_strength_profile(self, rating: int) -> StrengthProfile:
        return StrengthProfile(
            rating=clamp_rating(rating, self.config),
            skill=SKILL_MAX,
            threads=self.base_threads,
            hash_mb=self.base_hash_mb,
            movetime_ms=move_time_for_rating(rating, self.config),
            limit_strength=False,
        )

    def full_strength_commands(self) -> list[str]:
        return [
            protocol.setoption("UCI_LimitStrength", False),
            protocol.setoption("Skill Level", SKILL_MAX),
            protocol.setoption("MultiPV", 1),
            protocol.setoption("Threads", self.base_threads),
            protocol.setoption("Hash", self.base_hash_mb),
        ]

    @staticmethod
    def limited_commands(profile: StrengthProfile) -> list[str]:
        return [
            protocol.setoption("MultiPV", 1),
            protocol.setoption("UCI_LimitStrength", True),
            protocol.setoption("UCI_Elo", profile.rating),
            protocol.setoption("Skill Level", profile.skill),
            protocol.setoption("Threads", profile.threads),
            protocol.setoption("Hash", profile.hash_mb),
            protocol.setoption("Ponder", False),
        ]

    async def _reconfigure(self, commands: list[str]) -> None:
        self.transport.send("stop")
        await self.transport.sync(self.config.resync_timeout_ms, required=False)
        for command in commands:
            self.transport.send(command)
        await self.transport.sync(self.config.resync_timeout_ms, required=False)

    async def apply_strength(self, rating: Any) -> StrengthProfile:
        profile = build_profile(rating, self.base_threads, self.base_hash_mb, self.config)
        logger.info(
            "Applying strength: elo=%s skill=%s threads=%s hash=%s",
            profile.rating,
            profile.skill,
            profile.threads,
            profile.hash_mb,
        )

        async def _unit() -> StrengthProfile:
            self.profile = profile
            if self.lifted:
                logger.info("Strength limit is lifted; elo=%s applies on restore", profile.rating)
                return profile
            await self._reconfigure(self.limited_commands(profile))
            return profile

        return await self.queue.submit(_unit)

    async def _lift(self) -> None:
        async def _unit() -> None:
            if not self.lifted:
                await self._reconfigure(self.full_strength_commands())
            self.lifted += 1

        await self.queue.submit(_unit)

    async def _restore(self) -> StrengthProfile:
        async def _unit() -> StrengthProfile:
            self.lifted = max(0, self.lifted - 1)
            # the profile current at restore time wins over the one seen at lift time
            if not self.lifted and self.profile.limit_strength:
                await self._reconfigure(self.limited_commands(self.profile))
            return self.profile

        return await self.queue.submit(_unit)

    async def with_full_strength(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` with the rating limit lifted, then put the requested strength back."""
        await self._lift()
        try:
            return await fn()
        finally:
            try:
                await self._restore()
            except EngineError as exc:
                logger.warning("Could not restore strength profile (elo=%s): %s", self.profile.rating, exc)
