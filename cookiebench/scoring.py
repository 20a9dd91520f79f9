"""Scoring engine.

Converts run-level metrics and static app metadata into five category scores
(each out of 100), a weighted total, a grade and advisory text. Every band
is a fixed threshold table, so identical inputs always give identical
reports.

Transparency is not on the scale the earlier cookie-bench scorer used
(open source 60, company 25 or 10, tech stack 15). Here it is open source 50,
company 20 or 5, tech stack 10 or 5, plus 20 for a banner seen in every
iteration, so detected runs score differently from that tool too.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from .aggregator import determine_bundle_strategy
from .config import BenchConfig, CompanyInfo, SourceInfo, TechStack
from .models import (
    BundleStrategy,
    CategoryScore,
    CategoryStatus,
    Grade,
    RunSummary,
    ScoreDetail,
    ScoreInputs,
    ScoreReport,
)
from .utils import BYTES_PER_KB, PERCENTAGE, format_bytes, format_time

CATEGORY_MAX = 100

SCORE_WEIGHTS = {
    "performance": 0.40,
    "bundle_strategy": 0.25,
    "network_impact": 0.20,
    "transparency": 0.10,
    "user_experience": 0.05,
}

CATEGORY_NAMES = {
    "performance": "Performance",
    "bundle_strategy": "Bundle Strategy",
    "network_impact": "Network Impact",
    "transparency": "Transparency",
    "user_experience": "User Experience",
}

OPEN_SOURCE_LICENSES = (
    "mit", "apache", "gpl", "bsd", "lgpl", "mpl", "isc", "unlicense",
    "cc0", "wtfpl", "zlib", "artistic", "epl", "cddl",
)
OPEN_SOURCE_TAGS = ("open source", "opensource", "oss", "free", "community")
KNOWN_OPEN_SOURCE = (
    "c15t", "cookieconsent", "klaro", "tarteaucitron", "osano",
    "react-cookie-consent", "vanilla-cookieconsent", "baseline",
)
MODERN_BUNDLERS = frozenset({
    "webpack", "vite", "rollup", "esbuild", "turbopack", "rspack", "rslib", "nextjs",
})

# Shared reason ladder for the Core Web Vitals bands
_QUALITY = ("Excellent", "Very Good", "Good", "Fair")


@dataclass
class AppMetadata:
    """Static facts about the app under test that feed the score."""
    name: str
    baseline: bool = False
    tech_stack: TechStack | None = None
    source: SourceInfo | None = None
    company: CompanyInfo | None = None
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: BenchConfig) -> AppMetadata:
        return cls(
            name=config.name,
            baseline=config.baseline,
            tech_stack=config.tech_stack,
            source=config.source,
            company=config.company,
            tags=list(config.tags),
        )


# ── Thresholds ──

def _band(value: float, uppers, points, reasons, fallback: tuple[int, str]) -> tuple[int, str]:
    """Return (points, reason) for the first band whose upper bound holds ``value``."""
    for upper, pts, reason in zip(uppers, points, reasons):
        if value <= upper:
            return pts, reason
    return fallback


def get_grade(total_score: float) -> Grade:
    if total_score >= 90:
        return Grade.EXCELLENT
    if total_score >= 80:
        return Grade.GOOD
    if total_score >= 70:
        return Grade.FAIR
    if total_score >= 60:
        return Grade.POOR
    return Grade.CRITICAL


def get_category_status(score: float, max_score: float) -> CategoryStatus:
    percentage = score / max_score * PERCENTAGE if max_score else 0
    if percentage >= 90:
        return CategoryStatus.EXCELLENT
    if percentage >= 75:
        return CategoryStatus.GOOD
    if percentage >= 60:
        return CategoryStatus.FAIR
    return CategoryStatus.POOR


def _detail(metric: str, value: str, scored: tuple[int, str], max_points: int) -> ScoreDetail:
    points, reason = scored
    return ScoreDetail(
        metric=metric,
        value=value,
        points=points,
        max_points=max_points,
        reason=reason,
        status=get_category_status(points, max_points),
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _finite(value: float | None) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return value


# ── Open source detection ──

def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return value is True


def is_open_source(name: str, source: SourceInfo | None, tags: list[str] | None = None) -> bool:
    """Decide open-source status by cascade: license, repository, flag, tags, name."""
    if source is not None:
        license_name = (source.license or "").lower()
        if any(lic in license_name for lic in OPEN_SOURCE_LICENSES):
            return True
        if source.github or "github.com" in (source.repository or ""):
            return True
        if _truthy(source.is_open_source) or source.type == "open-source":
            return True

    joined_tags = " ".join(str(t) for t in tags or []).lower()
    if any(tag in joined_tags for tag in OPEN_SOURCE_TAGS):
        return True

    app_name = name.lower()
    return any(known in app_name for known in KNOWN_OPEN_SOURCE)


# ── Categories ──

def score_performance(inputs: ScoreInputs) -> list[ScoreDetail]:
    fcp, lcp, cls = _finite(inputs.fcp), _finite(inputs.lcp), _finite(inputs.cls)
    tti, tbt = _finite(inputs.tti), _finite(inputs.tbt)
    return [
        _detail("First Contentful Paint", format_time(fcp),
                _band(fcp, (50, 100, 200, 500), (20, 18, 15, 10), _QUALITY, (5, "Poor")), 20),
        _detail("Largest Contentful Paint", format_time(lcp),
                _band(lcp, (100, 300, 500, 1000), (25, 20, 15, 10), _QUALITY, (5, "Poor")), 25),
        _detail("Cumulative Layout Shift", f"{cls:.3f}",
                _band(cls, (0.01, 0.05, 0.1, 0.25), (20, 15, 10, 5), _QUALITY, (0, "Poor")), 20),
        _detail("Time to Interactive", format_time(tti),
                _band(tti, (1000, 1500, 2000, 3000), (20, 15, 10, 5), _QUALITY, (0, "Poor")), 20),
        _detail("Total Blocking Time", format_time(tbt),
                _band(tbt, (50, 200, 500), (15, 10, 5), ("Excellent", "Good", "Fair"), (0, "Poor")), 15),
    ]


def _third_party_ratio(inputs: ScoreInputs) -> float:
    return _finite(inputs.third_party_resource_count) / max(_finite(inputs.resource_count), 1)


def score_bundle_strategy(inputs: ScoreInputs, tech_stack: TechStack | None) -> list[ScoreDetail]:
    strategy = {
        BundleStrategy.BUNDLED: (40, "First-party bundled"),
        BundleStrategy.IIFE: (20, "External script"),
    }.get(inputs.bundle_strategy, (10, "Unknown strategy"))
    label = {BundleStrategy.BUNDLED: "Bundled", BundleStrategy.IIFE: "IIFE"}.get(
        inputs.bundle_strategy, "Unknown")

    ratio = _third_party_ratio(inputs)
    bundler = (tech_stack.bundler if tech_stack else "unknown") or "unknown"
    modern = bundler.lower() in MODERN_BUNDLERS
    typescript = bool(tech_stack and tech_stack.typescript)

    return [
        _detail("Bundle Strategy", label, strategy, 40),
        _detail(
            "Third-party Dependencies",
            f"{round(_finite(inputs.third_party_resource_count))}/{round(_finite(inputs.resource_count))}",
            _band(ratio, (0.1, 0.3, 0.5), (30, 20, 10),
                  ("Minimal third-party", "Low third-party", "Moderate third-party"),
                  (0, "Heavy third-party")),
            30,
        ),
        _detail("Bundler", bundler,
                (20, "Modern bundler") if modern else (10, "Legacy/unknown bundler"), 20),
        _detail("TypeScript", "Yes" if typescript else "No",
                (10, "Type safety") if typescript else (0, "No type safety"), 10),
    ]


def score_network_impact(inputs: ScoreInputs) -> list[ScoreDetail]:
    total_kb = _finite(inputs.total_size_kb)
    third_kb = _finite(inputs.third_party_size_kb)
    requests = _finite(inputs.resource_count)
    script_ms = _finite(inputs.script_load_ms)

    if third_kb == 0:
        third_scored = (25, "Zero third-party")
    else:
        third_scored = _band(third_kb, (50, 100), (15, 10),
                             ("Minimal third-party", "Moderate third-party"),
                             (5, "Heavy third-party"))
    return [
        _detail("Total Bundle Size", format_bytes(total_kb * BYTES_PER_KB),
                _band(total_kb, (50, 100, 200, 500), (35, 25, 15, 10),
                      ("Ultra lightweight", "Lightweight", "Moderate", "Heavy"),
                      (5, "Very heavy")), 35),
        _detail("Third-party Size", format_bytes(third_kb * BYTES_PER_KB), third_scored, 25),
        _detail("Network Requests", str(round(requests)),
                _band(requests, (3, 5, 10, 15), (25, 20, 15, 10),
                      ("Minimal requests", "Low requests", "Moderate requests", "Many requests"),
                      (5, "Too many requests")), 25),
        _detail("Script Load Time", format_time(script_ms),
                _band(script_ms, (50, 100, 200), (15, 10, 5),
                      ("Very fast loading", "Fast loading", "Moderate loading"),
                      (0, "Slow loading")), 15),
    ]


def score_transparency(inputs: ScoreInputs, app: AppMetadata, open_source: bool) -> list[ScoreDetail]:
    bundler = app.tech_stack.bundler if app.tech_stack else "unknown"
    disclosed = bool(bundler) and bundler != "unknown"
    return [
        _detail("Open Source", "Yes" if open_source else "No",
                (50, "Transparent & auditable") if open_source else (0, "Proprietary solution"), 50),
        _detail("Company Info", "Available" if app.company else "Limited",
                (20, "Clear attribution") if app.company else (5, "Limited transparency"), 20),
        _detail("Tech Stack", "Disclosed" if disclosed else "Unknown",
                (10, "Technical transparency") if disclosed else (5, "Limited tech info"), 10),
        _detail("Banner Detection", "Yes" if inputs.banner_detected else "No",
                (20, "Banner observed in every iteration") if inputs.banner_detected
                else (0, "Banner not observed"), 20),
    ]


def score_user_experience(inputs: ScoreInputs) -> list[ScoreDetail]:
    cls = _finite(inputs.cls)
    details = [
        _detail("Layout Stability", f"{cls:.3f}",
                _band(cls, (0.01, 0.05, 0.1, 0.25), (40, 30, 20, 10),
                      ("No layout shifts", "Minimal shifts", "Minor shifts", "Some shifts"),
                      (0, "Significant shifts")), 40),
    ]
    if not inputs.banner_detected:
        details.append(_detail("Banner Visibility Time", "n/a", (0, "Banner not detected"), 35))
        details.append(_detail("Viewport Coverage", "n/a", (0, "Banner not detected"), 25))
        return details

    visible = _finite(inputs.banner_visibility_ms)
    coverage = _finite(inputs.viewport_coverage)
    details.append(_detail(
        "Banner Visibility Time", format_time(visible),
        _band(visible, (25, 50, 100, 200), (35, 25, 15, 10),
              ("Instant render", "Very fast render", "Fast render", "Moderate render"),
              (5, "Slow render")), 35))
    details.append(_detail(
        "Viewport Coverage", f"{coverage:.1f}%",
        _band(coverage, (10, 20, 30, 50), (25, 20, 15, 10),
              ("Minimal intrusion", "Low intrusion", "Moderate intrusion", "High intrusion"),
              (5, "Very intrusive")), 25))
    return details


# ── Advisory text ──

def generate_insights(scores: dict[str, int], inputs: ScoreInputs, open_source: bool) -> list[str]:
    insights = []
    if scores["performance"] >= 90:
        insights.append("Outstanding performance metrics across all Core Web Vitals.")
    elif scores["performance"] < 60:
        insights.append(
            "Performance optimization needed - focus on reducing load times and layout shifts."
        )

    if inputs.bundle_strategy is BundleStrategy.BUNDLED:
        insights.append(
            "Excellent bundle strategy - first-party bundling reduces network overhead "
            "and improves reliability."
        )
    elif inputs.bundle_strategy is BundleStrategy.IIFE:
        insights.append(
            "Consider bundling strategy to reduce third-party dependencies and improve performance."
        )

    if open_source:
        insights.append("Open source solution provides transparency and community-driven development.")
    else:
        insights.append("Consider open source alternatives for better transparency and community support.")

    third_party = _finite(inputs.third_party_resource_count)
    if third_party == 0:
        insights.append("Zero third-party dependencies minimize privacy concerns and improve reliability.")
    elif third_party > 5:
        insights.append("High number of third-party requests may impact performance and privacy.")

    if not inputs.banner_detected:
        insights.append(
            "Cookie banner was not detected in every iteration - banner timings were scored "
            "as missing."
        )
    return insights


def generate_recommendations(scores: dict[str, int], inputs: ScoreInputs) -> list[str]:
    recommendations = []
    if scores["performance"] < 80:
        if inputs.fcp > 100:
            recommendations.append("Optimize First Contentful Paint by reducing render-blocking resources.")
        if inputs.lcp > 300:
            recommendations.append("Improve Largest Contentful Paint by optimizing critical resource loading.")
        if inputs.cls > 0.05:
            recommendations.append("Reduce Cumulative Layout Shift by reserving space for dynamic content.")
        if inputs.tbt > 50:
            recommendations.append("Reduce Total Blocking Time by optimizing JavaScript execution.")

    if scores["bundle_strategy"] < 70:
        if inputs.bundle_strategy is not BundleStrategy.BUNDLED:
            recommendations.append("Consider bundling cookie consent code with your main application bundle.")
        if _third_party_ratio(inputs) > 0.3:
            recommendations.append("Reduce third-party dependencies to improve reliability and performance.")

    if scores["network_impact"] < 70:
        if inputs.total_size_kb > 100:
            recommendations.append("Reduce bundle size through code splitting and tree shaking.")
        if inputs.third_party_size_kb > 0:
            recommendations.append("Eliminate or reduce third-party resources for better performance.")

    if not inputs.banner_detected:
        recommendations.append(
            "Verify the cookieBanner.selectors configuration matches the rendered banner element."
        )
    return recommendations


# ── Report ──

def _baseline_report() -> ScoreReport:
    categories = tuple(
        CategoryScore(
            key=key,
            name=name,
            score=CATEGORY_MAX,
            max_score=CATEGORY_MAX,
            weight=SCORE_WEIGHTS[key],
            status=CategoryStatus.EXCELLENT,
            reason="Baseline measurement",
        )
        for key, name in CATEGORY_NAMES.items()
    )
    return ScoreReport(
        total_score=CATEGORY_MAX,
        grade=Grade.EXCELLENT,
        category_scores={key: CATEGORY_MAX for key in CATEGORY_NAMES},
        categories=categories,
    )


def calculate_scores(inputs: ScoreInputs, app: AppMetadata) -> ScoreReport:
    """Score one run. A baseline app always gets the perfect report."""
    if app.baseline:
        return _baseline_report()

    open_source = is_open_source(app.name, app.source, app.tags)
    details = {
        "performance": score_performance(inputs),
        "bundle_strategy": score_bundle_strategy(inputs, app.tech_stack),
        "network_impact": score_network_impact(inputs),
        "transparency": score_transparency(inputs, app, open_source),
        "user_experience": score_user_experience(inputs),
    }

    categories = []
    category_scores = {}
    weighted_total = 0.0
    for key, name in CATEGORY_NAMES.items():
        score = sum(d.points for d in details[key])
        percentage = score / CATEGORY_MAX * PERCENTAGE
        weighted_total += percentage * SCORE_WEIGHTS[key]
        category_scores[key] = _round_half_up(percentage)
        categories.append(CategoryScore(
            key=key,
            name=name,
            score=score,
            max_score=CATEGORY_MAX,
            weight=SCORE_WEIGHTS[key],
            status=get_category_status(score, CATEGORY_MAX),
            reason=f"{name} score: {score}/{CATEGORY_MAX}",
            details=tuple(details[key]),
        ))

    total = min(CATEGORY_MAX, max(0, _round_half_up(weighted_total)))
    return ScoreReport(
        total_score=total,
        grade=get_grade(total),
        category_scores=category_scores,
        categories=tuple(categories),
        insights=tuple(generate_insights(category_scores, inputs, open_source)),
        recommendations=tuple(generate_recommendations(category_scores, inputs)),
    )


def score_inputs_from_summary(summary: RunSummary, tech_stack: TechStack | None) -> ScoreInputs:
    """Project the reduced run metrics onto the scoring inputs.

    The banner counts as detected only when every iteration saw it.
    """
    detected = summary.banner_detection_rate >= 1.0
    return ScoreInputs(
        fcp=summary.value("fcp"),
        lcp=summary.value("lcp"),
        cls=summary.value("cls"),
        tti=summary.value("tti"),
        tbt=summary.value("tbt"),
        total_size_kb=summary.value("total_size_kb"),
        third_party_size_kb=summary.value("third_party_size_kb"),
        resource_count=summary.value("resource_count"),
        third_party_resource_count=summary.value("third_party_resource_count"),
        script_load_ms=summary.value("script_load_ms"),
        banner_detected=detected,
        banner_visibility_ms=summary.value("banner_visibility") if detected else None,
        viewport_coverage=summary.value("viewport_coverage") if detected else 0.0,
        bundle_strategy=determine_bundle_strategy(tech_stack),
    )
