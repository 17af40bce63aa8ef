import asyncio

import pytest

from engine_bridge.strength import (
    MOVETIME_POINTS,
    StrengthController,
    build_profile,
    clamp_rating,
    move_time_for_rating,
    resources_for_rating,
    skill_for_rating,
)
from engine_bridge.worker import CommandQueue

from conftest import ScriptedTransport, fast_settings


def test_clamp_rating(settings):
    assert clamp_rating(100, settings) == 400
    assert clamp_rating(9999, settings) == 2500
    assert clamp_rating("1500", settings) == 1500
    assert clamp_rating(None, settings) == settings.default_rating


def test_move_time_exact_at_calibration_points(settings):
    for rating, ms in MOVETIME_POINTS:
        assert move_time_for_rating(rating, settings) == ms


def test_move_time_is_monotonic(settings):
    times = [move_time_for_rating(rating, settings) for rating in range(0, 3001, 25)]
    assert times == sorted(times)
    assert times[0] == MOVETIME_POINTS[0][1]
    assert times[-1] == MOVETIME_POINTS[-1][1]


def test_move_time_interpolates(settings):
    # halfway between (1000, 210) and (1200, 240)
    assert move_time_for_rating(1100, settings) == 225


def test_move_time_respects_floor():
    assert move_time_for_rating(400, fast_settings(min_movetime_ms=500)) == 500


def test_skill_tiers():
    assert skill_for_rating(400) == 0
    assert skill_for_rating(999) == 0
    assert skill_for_rating(1000) == 10
    assert skill_for_rating(1800) == 10
    assert skill_for_rating(1801) == 20


def test_resource_tiers(settings):
    assert resources_for_rating(800, 4, 256, settings) == (1, settings.engine_min_hash_mb)
    assert resources_for_rating(1500, 4, 256, settings) == (2, 128)
    assert resources_for_rating(1500, 1, 64, settings) == (1, 64)
    assert resources_for_rating(2200, 4, 256, settings) == (4, 256)


def test_build_profile_clamps_out_of_range(settings):
    low = build_profile(-50, 2, 128, settings)
    assert low.rating == 400
    assert low.skill == 0
    assert low.threads == 1
    high = build_profile(4000, 2, 128, settings)
    assert high.rating == 2500
    assert high.skill == 20
    assert high.movetime_ms == 520


def _controller(transport):
    return StrengthController(transport, CommandQueue(), threads=2, hash_mb=128, config=fast_settings())


def test_apply_strength_sends_clamped_options():
    async def scenario():
        transport = ScriptedTransport()
        controller = _controller(transport)
        profile = await controller.apply_strength(3100)
        return transport.sent, profile

    sent, profile = asyncio.run(scenario())
    assert profile.rating == 2500
    assert "setoption name UCI_Elo value 2500" in sent
    assert "setoption name UCI_LimitStrength value true" in sent
    assert sent[0] == "stop"
    assert sent[-1] == "isready"


def test_apply_strength_survives_missing_readyok():
    async def scenario():
        transport = ScriptedTransport(answer_ready=False)
        controller = _controller(transport)
        return await controller.apply_strength(1200)

    profile = asyncio.run(scenario())
    assert profile.rating == 1200
    assert profile.limit_strength


def test_with_full_strength_restores_after_failure():
    async def scenario():
        transport = ScriptedTransport()
        controller = _controller(transport)
        await controller.apply_strength(1200)

        async def boom():
            assert not controller.active_profile.limit_strength
            raise RuntimeError("search failed")

        with pytest.raises(RuntimeError):
            await controller.with_full_strength(boom)
        return transport.sent, controller.profile

    sent, profile = asyncio.run(scenario())
    assert profile.limit_strength
    assert profile.rating == 1200
    assert "setoption name UCI_LimitStrength value false" in sent
    elo_lines = [line for line in sent if line.startswith("setoption name UCI_Elo")]
    assert elo_lines == ["setoption name UCI_Elo value 1200"] * 2


def test_with_full_strength_keeps_unlimited_profile():
    async def scenario():
        transport = ScriptedTransport()
        controller = _controller(transport)

        async def work():
            return "done"

        result = await controller.with_full_strength(work)
        return result, transport.sent, controller.profile

    result, sent, profile = asyncio.run(scenario())
    assert result == "done"
    assert not profile.limit_strength
    assert not any(line.startswith("setoption name UCI_Elo") for line in sent)


def test_strength_queued_before_full_strength_window_is_kept():
    async def scenario():
        transport = ScriptedTransport()
        controller = _controller(transport)

        async def work():
            return controller.active_profile

        _, during = await asyncio.gather(controller.apply_strength(1200), controller.with_full_strength(work))
        return transport.sent, during, controller.active_profile

    sent, during, after = asyncio.run(scenario())
    assert not during.limit_strength
    assert after.limit_strength
    assert after.rating == 1200
    limit_lines = [line for line in sent if line.startswith("setoption name UCI_LimitStrength")]
    assert limit_lines[-1] == "setoption name UCI_LimitStrength value true"


def test_strength_changed_inside_full_strength_window_wins():
    async def scenario():
        transport = ScriptedTransport()
        controller = _controller(transport)
        await controller.apply_strength(1200)
        pending = []

        async def work():
            pending.append(asyncio.ensure_future(controller.apply_strength(1700)))
            await asyncio.sleep(0)
            return controller.active_profile

        during = await controller.with_full_strength(work)
        await pending[0]
        return transport.sent, during, controller.active_profile

    sent, during, after = asyncio.run(scenario())
    assert not during.limit_strength
    assert after.limit_strength
    assert after.rating == 1700
    elo_lines = [line for line in sent if line.startswith("setoption name UCI_Elo")]
    assert elo_lines[-1] == "setoption name UCI_Elo value 1700"
    assert "setoption name UCI_Elo value 1200" not in elo_lines[1:]
