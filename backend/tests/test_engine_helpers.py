import chess
import chess.engine
import pytest
from pydantic import ValidationError

from engine_bridge.schemas import (
    CHECKMATE_CP,
    AnalyzeRequest,
    HumanizationPolicy,
    ReviewOptions,
    Score,
)


def test_score_as_cp():
    assert Score(kind="cp", value=35).as_cp() == 35
    assert Score(kind="cp", value=-120).as_cp() == -120


def test_score_as_cp_mate():
    # Mate in 1 for the side to move
    assert Score(kind="mate", value=1).as_cp() == CHECKMATE_CP

    # Getting mated in 2
    assert Score(kind="mate", value=-2).as_cp() == -CHECKMATE_CP


def test_score_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        Score(kind="wdl", value=1)


def test_analyze_request_defaults():
    req = AnalyzeRequest(fen="8/8/8/8/8/8/8/K6k w - - 0 1")
    assert req.movetime_ms == 250
    assert req.multi_pv == 1
    assert not req.use_book
    assert req.verify_book_ms == 0
    assert req.human.temperature == 0.0


def test_policy_bounds():
    with pytest.raises(ValidationError):
        HumanizationPolicy(blunder_rate=1.5)
    with pytest.raises(ValidationError):
        AnalyzeRequest(fen="x", multi_pv=0)


def test_review_defaults():
    opts = ReviewOptions()
    assert opts.pass1_ms < opts.pass2_ms
    assert opts.swing_cp == 120
    assert opts.max_deepen == 12


def test_score_from_engine_scores():
    assert Score.from_engine(chess.engine.Cp(-42)) == Score(kind="cp", value=-42)
    assert Score.from_engine(chess.engine.Mate(3)) == Score(kind="mate", value=3)
    assert Score(kind="mate", value=-1).to_engine() == chess.engine.Mate(-1)


def test_score_as_cp_matches_white_pov_conversion():
    # "mate 0": the side to move is already mated
    assert Score(kind="mate", value=0).as_cp() == -CHECKMATE_CP
    pov = chess.engine.PovScore(Score(kind="cp", value=55).to_engine(), chess.WHITE)
    assert pov.white().score() == Score(kind="cp", value=55).as_cp()
