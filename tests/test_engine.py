from __future__ import annotations

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

import cookiebench.engine as engine
from conftest import make_config, make_record
from cookiebench.config import RunnerSettings
from cookiebench.engine import _wait_selector, run_benchmark
from cookiebench.errors import CollectionError


class ScriptedIterations:
    """Stands in for run_iteration; ``outcomes`` maps iteration -> list of results per attempt."""

    def __init__(self, outcomes: dict[int, list]):
        self.outcomes = {k: list(v) for k, v in outcomes.items()}
        self.calls: list[int] = []

    async def __call__(self, browser, config, url, iteration, classifier):
        self.calls.append(iteration)
        outcome = self.outcomes[iteration].pop(0)
        if outcome == "hang":
            await asyncio.sleep(10)
        if isinstance(outcome, BaseException):
            raise outcome
        return make_record(iteration)


def _run(monkeypatch, outcomes, **runner):
    scripted = ScriptedIterations(outcomes)
    monkeypatch.setattr(engine, "run_iteration", scripted)
    config = make_config(
        iterations=len(outcomes),
        runner=RunnerSettings(retry_backoff_ms=0, settle_delay_ms=0, **runner),
    )
    return asyncio.run(run_benchmark(object(), config, "https://app.test/")), scripted


def test_all_iterations_succeed(monkeypatch):
    result, scripted = _run(monkeypatch, {1: ["ok"], 2: ["ok"], 3: ["ok"]})
    assert [r.iteration for r in result.records] == [1, 2, 3]
    assert scripted.calls == [1, 2, 3]
    assert result.dropped_iterations == []
    assert result.summary.iterations == 3
    assert result.started_at and result.completed_at


def test_failed_iteration_is_retried(monkeypatch):
    result, scripted = _run(monkeypatch, {1: [PlaywrightError("net::ERR_RESET"), "ok"], 2: ["ok"]})
    assert scripted.calls == [1, 1, 2]
    assert len(result.records) == 2
    assert result.dropped_iterations == []


def test_iteration_dropped_after_retries(monkeypatch):
    failures = [PlaywrightError("boom")] * 3
    result, scripted = _run(monkeypatch, {1: ["ok"], 2: failures, 3: ["ok"]}, max_retries=2)
    assert scripted.calls == [1, 2, 2, 2, 3]
    assert result.dropped_iterations == [2]
    assert [r.iteration for r in result.records] == [1, 3]
    assert result.summary.iterations == 2


def test_hung_iteration_times_out(monkeypatch):
    result, _ = _run(
        monkeypatch, {1: ["hang"], 2: ["ok"]}, max_retries=0, iteration_timeout_ms=10,
    )
    assert result.dropped_iterations == [1]
    assert len(result.records) == 1


def test_no_surviving_iteration_fails_the_run(monkeypatch):
    with pytest.raises(CollectionError):
        _run(monkeypatch, {1: [PlaywrightError("x")], 2: [PlaywrightError("y")]}, max_retries=0)


def test_collection_error_is_retried(monkeypatch):
    bad_value = ValueError("could not convert string to float: 'abc'")
    result, scripted = _run(monkeypatch, {1: [bad_value, "ok"], 2: ["ok"]}, max_retries=2)
    assert scripted.calls == [1, 1, 2]
    assert [r.iteration for r in result.records] == [1, 2]
    assert result.dropped_iterations == []


def test_persistent_collection_error_drops_only_that_iteration(monkeypatch):
    result, scripted = _run(
        monkeypatch, {1: ["ok"], 2: [KeyError("lcp")] * 3, 3: ["ok"]}, max_retries=2,
    )
    assert scripted.calls == [1, 2, 2, 2, 3]
    assert result.dropped_iterations == [2]
    assert [r.iteration for r in result.records] == [1, 3]
    assert result.summary.iterations == 2


def test_cancellation_is_not_swallowed(monkeypatch):
    with pytest.raises(asyncio.CancelledError):
        _run(monkeypatch, {1: [asyncio.CancelledError()], 2: ["ok"]})


@pytest.mark.parametrize("overrides, expected", [
    ({}, None),
    ({"test_id": "cookie-banner"}, '[data-testid="cookie-banner"]'),
    ({"element_id": "consent"}, "#consent"),
    ({"test_id": "a", "element_id": "b"}, '[data-testid="a"]'),
])
def test_wait_selector(overrides, expected):
    assert _wait_selector(make_config(**overrides)) == expected
