# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from fakes import ScriptedOracle

from biosyn.adapters.oracle.base import ChatReply
from biosyn.errors import (
    AuthMissing,
    ContentRejected,
    MalformedResponse,
    Offline,
    TransientServerOverload,
)
from biosyn.perception.analysis import SymptomAnalyzer
from biosyn.perception.report import Severity, SymptomInput
from biosyn.sync.connectivity import ConnectivityMonitor

SYMPTOMS = SymptomInput(
    description="Throbbing headache behind the eyes",
    duration="3 days",
    age=34,
    gender="female",
    language="Spanish",
)


def overload() -> TransientServerOverload:
    return TransientServerOverload("HTTP 503", status_code=503)


def build(oracle, *, online=True):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    analyzer = SymptomAnalyzer(oracle, ConnectivityMonitor(online=online), sleep=fake_sleep)
    return analyzer, sleeps


# ---------------------------------------------------------------------
# Gating
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_offline_fails_without_calling_oracle():
    oracle = ScriptedOracle()
    analyzer, _ = build(oracle, online=False)

    with pytest.raises(Offline):
        await analyzer.analyze(SYMPTOMS)
    with pytest.raises(Offline):
        await analyzer.chat([], "hello", "English")

    assert oracle.report_calls == 0
    assert not oracle.chat_calls


@pytest.mark.asyncio
async def test_missing_credentials_fail_without_calling_oracle():
    oracle = ScriptedOracle(credentials=False)
    analyzer, _ = build(oracle)

    with pytest.raises(AuthMissing):
        await analyzer.analyze(SYMPTOMS)

    assert oracle.report_calls == 0


# ---------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_transient_overload_is_retried_with_backoff(report_dict, logged):
    oracle = ScriptedOracle(reports=[overload(), overload(), json.dumps(report_dict)])
    analyzer, sleeps = build(oracle)

    report = await analyzer.analyze(SYMPTOMS)

    assert report.severity is Severity.MODERATE
    assert report.language == "Spanish"
    assert oracle.report_calls == 3
    assert sleeps == [1.0, 2.0]
    assert [e["attempt"] for e in logged if e["event_type"] == "ANALYSIS_RETRY_SCHEDULED"] == [1, 2]


@pytest.mark.asyncio
async def test_overload_on_every_attempt_surfaces_after_three_tries():
    oracle = ScriptedOracle(reports=[overload(), overload(), overload()])
    analyzer, sleeps = build(oracle)

    with pytest.raises(TransientServerOverload):
        await analyzer.analyze(SYMPTOMS)

    assert oracle.report_calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "script, error",
    [
        (["this is not json"], MalformedResponse),
        (['{"severity": "Low"}'], MalformedResponse),
        ([ContentRejected("flagged")], ContentRejected),
        ([AuthMissing("key rejected")], AuthMissing),
    ],
)
async def test_non_transient_errors_are_not_retried(script, error):
    oracle = ScriptedOracle(reports=script)
    analyzer, sleeps = build(oracle)

    with pytest.raises(error):
        await analyzer.analyze(SYMPTOMS)

    assert oracle.report_calls == 1
    assert sleeps == []


# ---------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_is_retried_and_forwards_arguments():
    reply = ChatReply(text="Drink water.")
    oracle = ScriptedOracle(replies=[overload(), reply])
    analyzer, sleeps = build(oracle)

    result = await analyzer.chat([], "What should I do?", "French", image="abc")

    assert result is reply
    assert sleeps == [1.0]
    assert oracle.chat_calls[-1] == ([], "What should I do?", "French", "abc")
