from __future__ import annotations

import asyncio

from conftest import make_app_config_extras, make_config, make_record
from cookiebench.db import Database
from cookiebench.models import BenchmarkResult
from cookiebench.scoring import AppMetadata, calculate_scores, score_inputs_from_summary
from cookiebench.stats import summarize_run


def _result() -> BenchmarkResult:
    records = [make_record(i) for i in range(1, 4)]
    return BenchmarkResult(
        name="with-acme",
        url="https://app.test/",
        requested_iterations=3,
        records=records,
        summary=summarize_run(records),
        started_at="2026-01-01T00:00:00+00:00",
        completed_at="2026-01-01T00:01:00+00:00",
    )


def test_save_and_read_back_runs(tmp_path):
    async def scenario():
        config = make_config(**make_app_config_extras())
        result = _result()
        scores = calculate_scores(
            score_inputs_from_summary(result.summary, config.tech_stack),
            AppMetadata.from_config(config),
        )
        db = Database(tmp_path / "data" / "bench.db")
        await db.connect()
        try:
            first = await db.save_run(config, result, scores)
            second = await db.save_run(config, result)
            runs = await db.get_runs("with-acme")
            stats = await db.get_stats()
            missing = await db.get_runs("nope")
        finally:
            await db.close()
        return first, second, runs, stats, missing, scores

    first, second, runs, stats, missing, scores = asyncio.run(scenario())

    assert second > first
    assert [r["id"] for r in runs] == [second, first]
    newest, oldest = runs
    assert newest["total_score"] is None
    assert oldest["total_score"] == scores.total_score
    assert oldest["grade"] == scores.grade.value
    assert oldest["category_scores"] == scores.category_scores
    assert oldest["completed_iterations"] == 3
    assert oldest["banner_detection_rate"] == 1.0
    assert oldest["metrics"]["lcp"] == 250.0

    assert stats["total_benchmarks"] == 1
    assert stats["total_runs"] == 2
    assert stats["metric_summaries"] == 2 * len(runs[0]["metrics"])
    assert stats["average_score"] == scores.total_score
    assert missing == []


def test_upsert_benchmark_is_idempotent(tmp_path):
    async def scenario():
        db = Database(tmp_path / "bench.db")
        await db.connect()
        try:
            a = await db.upsert_benchmark(make_config())
            b = await db.upsert_benchmark(make_config(tags=["updated"]))
            c = await db.upsert_benchmark(make_config(name="baseline", baseline=True))
            return a, b, c
        finally:
            await db.close()

    a, b, c = asyncio.run(scenario())
    assert a == b
    assert c != a
