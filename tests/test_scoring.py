from __future__ import annotations

import json
from dataclasses import asdict, replace

import pytest

from conftest import make_record
from cookiebench.config import CompanyInfo, SourceInfo, TechStack
from cookiebench.models import BundleStrategy, CategoryStatus, Grade, ScoreInputs
from cookiebench.scoring import (
    SCORE_WEIGHTS,
    AppMetadata,
    calculate_scores,
    get_category_status,
    get_grade,
    is_open_source,
    score_inputs_from_summary,
)
from cookiebench.stats import summarize_run

PERFECT = ScoreInputs(
    fcp=40.0,
    lcp=90.0,
    cls=0.005,
    tti=900.0,
    tbt=10.0,
    total_size_kb=40.0,
    third_party_size_kb=0.0,
    resource_count=2,
    third_party_resource_count=0,
    script_load_ms=20.0,
    banner_detected=True,
    banner_visibility_ms=20.0,
    viewport_coverage=5.0,
    bundle_strategy=BundleStrategy.BUNDLED,
)

OPEN_APP = AppMetadata(
    name="c15t-nextjs",
    tech_stack=TechStack(bundler="webpack", bundle_type="esm", typescript=True),
    source=SourceInfo(license="MIT"),
    company=CompanyInfo(name="Consent Co"),
)


def test_weights_sum_to_one():
    assert sum(SCORE_WEIGHTS.values()) == pytest.approx(1.0)


class TestCalculateScores:
    def test_perfect_inputs(self):
        report = calculate_scores(PERFECT, OPEN_APP)
        assert report.total_score == 100
        assert report.grade is Grade.EXCELLENT
        assert set(report.category_scores.values()) == {100}
        assert all(c.status is CategoryStatus.EXCELLENT for c in report.categories)

    def test_external_script_costs_five_points(self):
        report = calculate_scores(replace(PERFECT, bundle_strategy=BundleStrategy.IIFE), OPEN_APP)
        assert report.category_scores["bundle_strategy"] == 80
        assert report.total_score == 95

    def test_category_points_sum_to_score(self):
        report = calculate_scores(replace(PERFECT, fcp=180.0, lcp=700.0, cls=0.2), OPEN_APP)
        for category in report.categories:
            assert category.score == sum(d.points for d in category.details)
            assert sum(d.max_points for d in category.details) == 100
            assert category.weight == SCORE_WEIGHTS[category.key]
        assert 0 <= report.total_score <= 100

    def test_idempotent(self):
        inputs = replace(PERFECT, fcp=320.0, tbt=260.0, third_party_resource_count=3, resource_count=9)
        first = json.dumps(asdict(calculate_scores(inputs, OPEN_APP)), sort_keys=True)
        second = json.dumps(asdict(calculate_scores(inputs, OPEN_APP)), sort_keys=True)
        assert first == second

    @pytest.mark.parametrize("inputs", [PERFECT, ScoreInputs(), ScoreInputs(fcp=99999, cls=3.0)])
    def test_baseline_is_always_perfect(self, inputs):
        report = calculate_scores(inputs, AppMetadata(name="baseline", baseline=True))
        assert report.total_score == 100
        assert report.grade is Grade.EXCELLENT
        assert all(c.reason == "Baseline measurement" for c in report.categories)
        assert report.category_scores == {key: 100 for key in SCORE_WEIGHTS}

    def test_undetected_banner_scores_minimum_transparency(self):
        app = AppMetadata(name="acme", tech_stack=None)
        report = calculate_scores(ScoreInputs(fcp=300.0, lcp=600.0, tti=2500.0), app)
        transparency = report.category("transparency")
        assert transparency.score == 10
        assert transparency.status is CategoryStatus.POOR
        detection = [d for d in transparency.details if d.metric == "Banner Detection"][0]
        assert detection.points == 0

        ux = report.category("user_experience")
        visibility = [d for d in ux.details if d.metric == "Banner Visibility Time"][0]
        assert visibility.value == "n/a"
        assert visibility.points == 0
        assert any("selectors" in r for r in report.recommendations)

    def test_poor_metrics_produce_recommendations(self):
        inputs = ScoreInputs(
            fcp=800.0, lcp=2000.0, cls=0.3, tti=4000.0, tbt=600.0,
            total_size_kb=600.0, third_party_size_kb=150.0,
            resource_count=20, third_party_resource_count=12, script_load_ms=300.0,
            banner_detected=True, banner_visibility_ms=400.0, viewport_coverage=70.0,
            bundle_strategy=BundleStrategy.IIFE,
        )
        report = calculate_scores(inputs, AppMetadata(name="acme"))
        assert report.grade is Grade.CRITICAL
        text = " ".join(report.recommendations)
        assert "First Contentful Paint" in text
        assert "Cumulative Layout Shift" in text
        assert "bundling cookie consent code" in text
        assert "Reduce third-party dependencies" in text
        assert "code splitting" in text
        insights = " ".join(report.insights)
        assert "Performance optimization needed" in insights
        assert "High number of third-party requests" in insights
        assert "Consider open source alternatives" in insights

    def test_insights_for_a_strong_open_source_app(self):
        report = calculate_scores(PERFECT, OPEN_APP)
        assert "Outstanding performance metrics across all Core Web Vitals." in report.insights
        assert any(i.startswith("Zero third-party") for i in report.insights)
        assert any(i.startswith("Open source solution") for i in report.insights)
        assert report.recommendations == ()


@pytest.mark.parametrize("score, grade", [
    (100, Grade.EXCELLENT), (90, Grade.EXCELLENT), (89, Grade.GOOD), (80, Grade.GOOD),
    (79, Grade.FAIR), (70, Grade.FAIR), (69, Grade.POOR), (60, Grade.POOR),
    (59, Grade.CRITICAL), (0, Grade.CRITICAL),
])
def test_grade_boundaries(score, grade):
    assert get_grade(score) is grade


@pytest.mark.parametrize("score, status", [
    (90, CategoryStatus.EXCELLENT), (89, CategoryStatus.GOOD), (75, CategoryStatus.GOOD),
    (74, CategoryStatus.FAIR), (60, CategoryStatus.FAIR), (59, CategoryStatus.POOR),
])
def test_category_status_boundaries(score, status):
    assert get_category_status(score, 100) is status


@pytest.mark.parametrize("name, source, tags, expected", [
    ("acme", SourceInfo(license="Apache-2.0"), [], True),
    ("acme", SourceInfo(license="Proprietary"), [], False),
    ("acme", SourceInfo(github="https://github.com/acme/x"), [], True),
    ("acme", SourceInfo(repository="https://github.com/acme/x"), [], True),
    ("acme", SourceInfo(is_open_source="true"), [], True),
    ("acme", SourceInfo(type="open-source"), [], True),
    ("acme", None, ["Open Source"], True),
    ("acme", None, ["consent"], False),
    ("Klaro Demo", None, [], True),
    ("acme", None, [], False),
])
def test_open_source_cascade(name, source, tags, expected):
    assert is_open_source(name, source, tags) is expected


class TestScoreInputsFromSummary:
    def test_projects_trimmed_means(self):
        summary = summarize_run([make_record(i) for i in range(1, 4)])
        inputs = score_inputs_from_summary(summary, TechStack(bundle_type="iife"))
        assert inputs.fcp == 120.0
        assert inputs.total_size_kb == 80.0
        assert inputs.third_party_size_kb == 20.0
        assert inputs.resource_count == 2
        assert inputs.third_party_resource_count == 1
        assert inputs.banner_detected
        assert inputs.banner_visibility_ms == 180.0
        assert inputs.viewport_coverage == 12.0
        assert inputs.bundle_strategy is BundleStrategy.IIFE

    def test_partial_detection_counts_as_undetected(self):
        records = [make_record(i) for i in range(1, 5)] + [make_record(5, detected=False)]
        summary = summarize_run(records)
        assert summary.banner_detection_rate == 0.8
        inputs = score_inputs_from_summary(summary, None)
        assert not inputs.banner_detected
        assert inputs.banner_visibility_ms is None
        assert inputs.viewport_coverage == 0.0
        assert inputs.bundle_strategy is BundleStrategy.UNKNOWN
