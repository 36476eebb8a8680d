"""
Unit tests for the route_query command-line script.

Only short-circuit utterances are used so no completion call is attempted.
"""
import argparse
import json

import pytest

from scripts.route_query import run


def _args(utterance, **overrides):
    values = dict(
        utterance=utterance,
        chunks=None,
        dispatch=False,
        metrics=False,
        high_retrieval=None,
        low_retrieval=None,
        high_intent=None,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.mark.asyncio
async def test_prints_decision_json(capsys):
    exit_code = await run(_args("hello"))

    decision = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert decision["intent"] == "chat"
    assert decision["reason"] == "small_talk_guard"


@pytest.mark.asyncio
async def test_metrics_flag_prints_exposition(capsys, tmp_path):
    chunks = tmp_path / "chunks.json"
    chunks.write_text(json.dumps([{"content": "Batch rules live in the ops wiki.", "score": 0.4}]), encoding="utf-8")

    await run(_args("if score < 7 then reject", chunks=str(chunks), metrics=True))

    out = capsys.readouterr().out
    assert '"reason": "strong_config_pattern"' in out
    assert "router_short_circuits_total" in out
