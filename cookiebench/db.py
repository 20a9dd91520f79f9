"""SQLite storage for benchmark runs.

Keeps run-level summaries and scores only; raw per-request traces are never
written.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, is_dataclass
from pathlib import Path

import aiosqlite

from .config import BenchConfig
from .models import BenchmarkResult, ScoreReport

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS benchmarks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    baseline BOOLEAN DEFAULT 0,
    tech_stack TEXT,
    source TEXT,
    company TEXT,
    tags TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    benchmark_id INTEGER NOT NULL REFERENCES benchmarks(id),
    url TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    requested_iterations INTEGER NOT NULL,
    completed_iterations INTEGER NOT NULL,
    banner_detection_rate REAL,
    total_score INTEGER,
    grade TEXT,
    category_scores TEXT,
    insights TEXT,
    recommendations TEXT
);

CREATE TABLE IF NOT EXISTS metric_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL REFERENCES runs(id),
    metric TEXT NOT NULL,
    samples INTEGER,
    mean REAL,
    raw_mean REAL,
    stddev REAL,
    median REAL,
    p95 REAL,
    p99 REAL,
    min REAL,
    max REAL,
    cv REAL,
    stable BOOLEAN
);

CREATE INDEX IF NOT EXISTS idx_runs_benchmark ON runs(benchmark_id);
CREATE INDEX IF NOT EXISTS idx_metrics_run ON metric_summaries(run_id);
CREATE INDEX IF NOT EXISTS idx_metrics_name ON metric_summaries(metric);
"""


def _json(value) -> str:
    if is_dataclass(value):
        value = asdict(value)
    return json.dumps(value)


class Database:
    """Async SQLite database for benchmark run storage."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the database connection and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("Database connected: %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def upsert_benchmark(self, config: BenchConfig) -> int:
        """Insert a benchmark by name or refresh its metadata; return its ID."""
        assert self._conn is not None
        values = (
            config.baseline,
            _json(config.tech_stack),
            _json(config.source) if config.source else None,
            _json(config.company) if config.company else None,
            _json(config.tags),
        )
        cursor = await self._conn.execute(
            "SELECT id FROM benchmarks WHERE name = ?", (config.name,)
        )
        row = await cursor.fetchone()
        if row:
            await self._conn.execute(
                "UPDATE benchmarks SET baseline = ?, tech_stack = ?, source = ?,"
                " company = ?, tags = ? WHERE id = ?",
                (*values, row[0]),
            )
            await self._conn.commit()
            return row[0]

        cursor = await self._conn.execute(
            "INSERT INTO benchmarks (name, baseline, tech_stack, source, company, tags)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (config.name, *values),
        )
        await self._conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def save_run(
        self,
        config: BenchConfig,
        result: BenchmarkResult,
        scores: ScoreReport | None = None,
    ) -> int:
        """Save one run with its metric summaries and optional scores."""
        assert self._conn is not None
        benchmark_id = await self.upsert_benchmark(config)
        summary = result.summary

        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO runs (
                    benchmark_id, url, started_at, completed_at,
                    requested_iterations, completed_iterations,
                    banner_detection_rate, total_score, grade,
                    category_scores, insights, recommendations
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    benchmark_id,
                    result.url,
                    result.started_at,
                    result.completed_at,
                    result.requested_iterations,
                    len(result.records),
                    summary.banner_detection_rate if summary else None,
                    scores.total_score if scores else None,
                    scores.grade.value if scores else None,
                    json.dumps(scores.category_scores) if scores else None,
                    json.dumps(list(scores.insights)) if scores else None,
                    json.dumps(list(scores.recommendations)) if scores else None,
                ),
            )
            run_id = cur.lastrowid

            if summary and summary.metrics:
                await cur.executemany(
                    """
                    INSERT INTO metric_summaries (
                        run_id, metric, samples, mean, raw_mean, stddev,
                        median, p95, p99, min, max, cv, stable
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            run_id, m.name, m.samples, m.mean, m.raw_mean, m.stddev,
                            m.median, m.p95, m.p99, m.min, m.max, m.cv, m.stable,
                        )
                        for m in summary.metrics.values()
                    ],
                )

        await self._conn.commit()
        logger.debug(
            "Saved run %d: %s, %d iterations, %d metrics",
            run_id, config.name, len(result.records),
            len(summary.metrics) if summary else 0,
        )
        return run_id  # type: ignore[return-value]

    async def get_runs(self, name: str) -> list[dict]:
        """Return all runs of a benchmark, newest first, with their metric means."""
        assert self._conn is not None
        cursor = await self._conn.execute(
            """
            SELECT r.* FROM runs r
            JOIN benchmarks b ON r.benchmark_id = b.id
            WHERE b.name = ?
            ORDER BY r.id DESC
            """,
            (name,),
        )
        runs = []
        for row in await cursor.fetchall():
            run = dict(row)
            for key in ("category_scores", "insights", "recommendations"):
                if run[key] is not None:
                    run[key] = json.loads(run[key])
            metric_cursor = await self._conn.execute(
                "SELECT metric, mean FROM metric_summaries WHERE run_id = ? ORDER BY metric",
                (run["id"],),
            )
            run["metrics"] = {m["metric"]: m["mean"] for m in await metric_cursor.fetchall()}
            runs.append(run)
        return runs

    async def get_stats(self) -> dict:
        """Get basic storage statistics."""
        assert self._conn is not None
        stats = {}

        cursor = await self._conn.execute("SELECT COUNT(*) FROM benchmarks")
        stats["total_benchmarks"] = (await cursor.fetchone())[0]

        cursor = await self._conn.execute("SELECT COUNT(*) FROM runs")
        stats["total_runs"] = (await cursor.fetchone())[0]

        cursor = await self._conn.execute("SELECT COUNT(*) FROM metric_summaries")
        stats["metric_summaries"] = (await cursor.fetchone())[0]

        cursor = await self._conn.execute("SELECT AVG(total_score) FROM runs WHERE total_score IS NOT NULL")
        stats["average_score"] = (await cursor.fetchone())[0]

        return stats
