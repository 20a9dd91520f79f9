from __future__ import annotations

import logging

import pytest

from conftest import make_config
from cookiebench.aggregator import (
    aggregate_iteration,
    calculate_tti,
    determine_bundle_strategy,
    regulatory_friction_delay,
)
from cookiebench.config import CookieBannerSettings, TechStack
from cookiebench.models import (
    BannerObservation,
    BundleStrategy,
    CoreWebVitals,
    NetworkSample,
    NetworkSnapshot,
    ResourceEntry,
    ResourceTimingSnapshot,
    ResourceType,
)

BANNER = BannerObservation(
    detected=True,
    selector="#acme-banner",
    render_offset_ms=300.0,
    visible_offset_ms=420.0,
    interactive_offset_ms=500.0,
    layout_shift_delta=0.01,
    viewport_coverage_percent=18.0,
)


@pytest.mark.parametrize("bundle_type, expected", [
    ("iife", BundleStrategy.IIFE),
    ("IIFE", BundleStrategy.IIFE),
    (["esm", "iife"], BundleStrategy.IIFE),
    ("esm", BundleStrategy.BUNDLED),
    (["cjs"], BundleStrategy.BUNDLED),
    ("bundled", BundleStrategy.BUNDLED),
    ("unknown", BundleStrategy.UNKNOWN),
    ([], BundleStrategy.UNKNOWN),
])
def test_determine_bundle_strategy(bundle_type, expected):
    assert determine_bundle_strategy(TechStack(bundle_type=bundle_type)) is expected


def test_bundle_strategy_without_tech_stack():
    assert determine_bundle_strategy(None) is BundleStrategy.UNKNOWN


class TestTimeToInteractive:
    def test_latest_signal_plus_buffer(self):
        vitals = CoreWebVitals(first_contentful_paint=200.0, dom_complete=450.0)
        assert calculate_tti(vitals, BANNER, 1000) == 1500.0

    def test_dom_complete_dominates(self):
        vitals = CoreWebVitals(first_contentful_paint=200.0, dom_complete=900.0)
        assert calculate_tti(vitals, BANNER, 1000) == 1900.0

    def test_undetected_banner_is_ignored(self):
        vitals = CoreWebVitals(first_contentful_paint=200.0)
        assert calculate_tti(vitals, BannerObservation(), 1000) == 1200.0

    def test_missing_signals(self):
        assert calculate_tti(CoreWebVitals(), BannerObservation(), 1000) == 1000.0

    def test_never_below_any_signal(self):
        vitals = CoreWebVitals(first_contentful_paint=3000.0, dom_complete=100.0)
        assert calculate_tti(vitals, BANNER, 0) >= 3000.0


class TestRegulatoryFrictionDelay:
    def test_render_minus_ttfb(self):
        assert regulatory_friction_delay(BANNER, 100.0) == 200.0

    def test_can_be_negative(self):
        early = BannerObservation(detected=True, selector=".b", render_offset_ms=40.0, visible_offset_ms=40.0)
        assert regulatory_friction_delay(early, 100.0) == -60.0

    @pytest.mark.parametrize("ttfb", [None, 0.0, -5.0])
    def test_requires_positive_ttfb(self, ttfb):
        assert regulatory_friction_delay(BANNER, ttfb) is None

    def test_requires_detected_banner(self):
        assert regulatory_friction_delay(BannerObservation(), 100.0) is None


class TestAggregateIteration:
    def _record(self, banner=BANNER, network=None, resources=None, vitals=None, config=None):
        vitals = vitals or CoreWebVitals(
            first_paint=90.0,
            first_contentful_paint=100.0,
            largest_contentful_paint=350.0,
            cumulative_layout_shift=0.02,
            total_blocking_time=200.0,
            time_to_first_byte=50.0,
            dom_content_loaded=250.0,
            dom_complete=600.0,
            load_event_end=620.0,
        )
        network = network or NetworkSnapshot(
            samples=(
                NetworkSample("https://app.test/main.js", 40.0, 30.0, 5.0, False),
                NetworkSample("https://cdn.acme-consent.com/b.js", 20.0, 50.0, 10.0, True, is_vendor=True),
                NetworkSample("https://tracker.net/t.js", 4.0, 10.0, 15.0, True),
            ),
            total_bytes=100_000,
            first_party_bytes=70_000,
            third_party_bytes=30_000,
            request_count=6,
            third_party_request_count=3,
        )
        resources = resources or ResourceTimingSnapshot(
            navigation_start=0.0,
            dom_content_loaded=250.0,
            load=620.0,
            language="fr",
            entries=(
                ResourceEntry("https://app.test/main.js", ResourceType.SCRIPT, "script", 40_960, 30.0, 5.0, False),
                ResourceEntry("https://cdn.acme-consent.com/b.js", ResourceType.SCRIPT, "script", 20_480,
                              50.0, 300.0, True, is_vendor=True, is_dynamic=True),
                ResourceEntry("https://app.test/site.css", ResourceType.STYLE, "link", 2_000, 4.0, 2.0, False),
                ResourceEntry("https://fonts.test/a.woff2", ResourceType.FONT, "css", 15_000, 9.0, 40.0, True),
            ),
        )
        return aggregate_iteration(2, "https://app.test/", vitals, banner, network, resources, config or make_config())

    def test_timing_block(self):
        t = self._record().timing
        assert t.first_contentful_paint == 100.0
        assert t.largest_contentful_paint == 350.0
        assert t.dom_complete == 600.0
        assert t.load == 620.0
        assert t.time_to_interactive == 1600.0
        assert t.regulatory_friction_delay == 250.0
        assert t.banner_blocking_estimate == 50.0
        assert t.banner_blocking_percent == 25.0
        assert t.interaction_to_next_paint is None

    def test_size_block(self):
        s = self._record().size
        assert s.total_bytes == 100_000
        assert s.third_party_bytes == 30_000
        assert s.bundled_bytes == 40_960
        assert s.script_bytes == 61_440
        assert s.initial_script_bytes == 40_960
        assert s.dynamic_script_bytes == 20_480
        assert s.style_bytes == 2_000
        assert s.font_bytes == 15_000
        assert min(vars(s).values()) >= 0

    def test_size_falls_back_to_resource_timing(self):
        s = self._record(network=NetworkSnapshot()).size
        assert s.total_bytes == 40_960 + 20_480 + 2_000 + 15_000
        assert s.third_party_bytes == 20_480 + 15_000

    def test_banner_and_third_party_blocks(self):
        record = self._record()
        assert record.iteration == 2
        assert record.language == "fr"
        assert record.banner.detected
        assert record.banner.service_name == "Acme"
        assert record.banner.hydration_time == 200.0
        assert record.banner.visibility_time == 420.0
        tp = record.third_party
        assert tp.vendor_size_kb == 20.0
        assert tp.vendor_request_count == 1
        assert tp.other_size_kb == 4.0
        assert tp.other_request_count == 1
        assert tp.script_request_count == 3
        assert tp.mean_script_load_ms == 30.0
        assert record.resource_count == 4
        assert record.third_party_resource_count == 2

    def test_undetected_banner(self):
        record = self._record(banner=BannerObservation())
        assert not record.banner.detected
        assert record.banner.selector is None
        assert record.banner.render_time == 0
        assert record.timing.regulatory_friction_delay is None
        assert record.timing.time_to_interactive == 1600.0

    def test_zero_blocking_time_gives_zero_percent(self):
        record = self._record(vitals=CoreWebVitals(total_blocking_time=0.0))
        assert record.timing.banner_blocking_percent == 0.0

    def test_record_is_immutable(self):
        record = self._record()
        with pytest.raises(AttributeError):
            record.iteration = 3  # type: ignore[misc]


def _banner_config(**switches):
    return make_config(cookie_banner=CookieBannerSettings(
        selectors=["#acme-banner"],
        service_hosts=["cdn.acme-consent.com"],
        service_name="Acme",
        **switches,
    ))


class TestCookieBannerSwitches:
    _record = TestAggregateIteration._record

    def test_defaults_keep_measured_values(self):
        banner = self._record(config=_banner_config()).banner
        assert banner.visibility_time == 420.0
        assert banner.viewport_coverage == 18.0

    def test_visibility_wait_disabled_reports_render_time(self):
        banner = self._record(config=_banner_config(wait_for_visibility=False)).banner
        assert banner.visibility_time == banner.render_time == 300.0

    def test_coverage_measurement_disabled(self):
        banner = self._record(config=_banner_config(measure_viewport_coverage=False)).banner
        assert banner.viewport_coverage == 0.0
        assert banner.visibility_time == 420.0

    def test_unexpected_layout_shift_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="cookiebench.aggregator"):
            self._record(config=_banner_config())
        assert "shifted layout by 0.010" in caplog.text

    def test_expected_layout_shift_is_silent(self, caplog):
        with caplog.at_level(logging.WARNING, logger="cookiebench.aggregator"):
            record = self._record(config=_banner_config(expected_layout_shift=True))
        assert "shifted layout" not in caplog.text
        assert record.banner.layout_shift == 0.01
