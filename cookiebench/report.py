"""Results artifact and console score report."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path

from .config import BenchConfig
from .models import BenchmarkResult, ScoreReport
from .utils import format_time, now_iso

logger = logging.getLogger(__name__)

RESULTS_FILENAME = "results.json"


def build_results_document(
    config: BenchConfig,
    result: BenchmarkResult,
    scores: ScoreReport | None,
) -> dict:
    """Assemble the JSON-serialisable run artifact."""
    summary = result.summary
    languages = sorted({r.language for r in result.records if r.language})
    return {
        "app": config.name,
        "tech_stack": asdict(config.tech_stack),
        "source": asdict(config.source) if config.source else None,
        "includes": config.includes,
        "internationalization": config.internationalization,
        "company": asdict(config.company) if config.company else None,
        "tags": list(config.tags),
        "results": [r.to_dict() for r in result.records],
        "summary": summary.to_dict() if summary else None,
        "averages": {name: m.mean for name, m in summary.metrics.items()} if summary else {},
        "scores": scores.to_dict() if scores else None,
        "metadata": {
            "timestamp": result.completed_at or now_iso(),
            "started_at": result.started_at,
            "iterations": config.iterations,
            "completed_iterations": len(result.records),
            "dropped_iterations": list(result.dropped_iterations),
            "languages": languages or list(config.tech_stack.languages),
            "is_remote": config.is_remote,
            "url": config.remote.url if config.is_remote else None,
            "unstable_metrics": list(summary.unstable_metrics) if summary else [],
        },
    }


def write_results(path: str | Path, document: dict) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    logger.info("Benchmark results saved to %s", out)
    return out


def print_scores(report: ScoreReport) -> None:
    """Print overall, category and detail tables plus advisory text."""
    print("\n" + "=" * 70)
    print("BENCHMARK SCORES")
    print("=" * 70)
    print(f"  {'Category':<22} {'Score':>8}   Status")
    print(f"  {'Overall':<22} {f'{report.total_score}/100':>8}   {report.grade.value}")
    for category in report.categories:
        print(f"  {category.name:<22} {f'{category.score}/{category.max_score}':>8}   "
              f"{category.status.value}")

    if any(c.details for c in report.categories):
        print("-" * 70)
        print(f"  {'Metric':<28} {'Value':>10} {'Score':>7}   Reason")
        for category in report.categories:
            for d in category.details:
                print(f"  {d.metric:<28} {d.value:>10} {f'{d.points}/{d.max_points}':>7}   {d.reason}")

    if report.insights:
        print("\nInsights:")
        for insight in report.insights:
            print(f"  * {insight}")
    if report.recommendations:
        print("\nRecommendations:")
        for recommendation in report.recommendations:
            print(f"  * {recommendation}")
    print("=" * 70)


def print_summary(result: BenchmarkResult) -> None:
    """Print the headline timings of a finished run."""
    summary = result.summary
    if summary is None:
        return
    print("\n" + "=" * 70)
    print(f"BENCHMARK COMPLETE: {result.name}")
    print("=" * 70)
    print(f"  Iterations:         {len(result.records)}/{result.requested_iterations}"
          f" ({len(result.dropped_iterations)} dropped)")
    print(f"  Banner detected:    {summary.banner_detection_rate:.0%} of iterations")
    for label, name in (
        ("FCP", "fcp"),
        ("LCP", "lcp"),
        ("TTI", "tti"),
        ("TBT", "tbt"),
        ("Banner render", "banner_render"),
        ("Banner visible", "banner_visibility"),
    ):
        if summary.has(name):
            metric = summary.metrics[name]
            print(f"  {label + ':':<19} {format_time(metric.mean):>8}  (p95 {format_time(metric.p95)})")
    if summary.has("cls"):
        print(f"  {'CLS:':<19} {summary.value('cls'):>8.3f}")
    if summary.unstable_metrics:
        print(f"  Unstable metrics:   {', '.join(summary.unstable_metrics)}")
    print("=" * 70)
