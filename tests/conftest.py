"""Shared factories for cookiebench tests."""

from __future__ import annotations

import json

import pytest

from cookiebench.config import (
    BenchConfig,
    CompanyInfo,
    CookieBannerSettings,
    RunnerSettings,
    SourceInfo,
    TechStack,
)
from cookiebench.models import (
    BannerBlock,
    IterationRecord,
    ResourceEntry,
    ResourceType,
    SizeBlock,
    ThirdPartyBlock,
    TimingBlock,
)

MINIMAL_CONFIG = {
    "name": "with-acme",
    "iterations": 3,
    "cookieBanner": {
        "selectors": ["#acme-banner", ".cookie-banner"],
        "serviceHosts": ["cdn.acme-consent.com"],
        "serviceName": "Acme",
    },
    "techStack": {
        "bundler": "webpack",
        "bundleType": "iife",
        "frameworks": ["react"],
        "languages": ["typescript"],
        "packageManager": "pnpm",
        "typescript": True,
    },
}


@pytest.fixture
def write_config(tmp_path):
    """Write a config document into tmp_path and return its path."""
    def _write(data: dict | None = None, filename: str = "config.json"):
        path = tmp_path / filename
        path.write_text(json.dumps(MINIMAL_CONFIG if data is None else data), encoding="utf-8")
        return path
    return _write


def make_config(**overrides) -> BenchConfig:
    values = dict(
        name="with-acme",
        iterations=3,
        cookie_banner=CookieBannerSettings(
            selectors=["#acme-banner"],
            service_hosts=["cdn.acme-consent.com"],
            service_name="Acme",
        ),
        tech_stack=TechStack(bundler="webpack", bundle_type="iife", typescript=True),
        runner=RunnerSettings(retry_backoff_ms=0, settle_delay_ms=0),
    )
    values.update(overrides)
    return BenchConfig(**values)


def make_record(
    iteration: int = 1,
    fcp: float = 120.0,
    lcp: float = 250.0,
    cls: float = 0.02,
    tbt: float = 40.0,
    tti: float = 1300.0,
    detected: bool = True,
    render: float = 150.0,
    visible: float = 180.0,
    coverage: float = 12.0,
    total_bytes: int = 80 * 1024,
    third_party_bytes: int = 20 * 1024,
    resources: tuple[ResourceEntry, ...] | None = None,
) -> IterationRecord:
    if resources is None:
        resources = (
            ResourceEntry("https://app.test/main.js", ResourceType.SCRIPT, "script", 60 * 1024, 30.0, 10.0, False),
            ResourceEntry("https://cdn.acme-consent.com/b.js", ResourceType.SCRIPT, "script", 20 * 1024,
                          50.0, 40.0, True, is_vendor=True),
        )
    return IterationRecord(
        iteration=iteration,
        url="https://app.test/",
        timing=TimingBlock(
            first_contentful_paint=fcp,
            largest_contentful_paint=lcp,
            cumulative_layout_shift=cls,
            total_blocking_time=tbt,
            time_to_interactive=tti,
            time_to_first_byte=30.0,
        ),
        size=SizeBlock(total_bytes=total_bytes, third_party_bytes=third_party_bytes),
        resources=resources,
        banner=BannerBlock(
            detected=detected,
            selector="#acme-banner" if detected else None,
            render_time=render if detected else 0.0,
            visibility_time=visible if detected else 0.0,
            interactive_time=visible if detected else 0.0,
            viewport_coverage=coverage if detected else 0.0,
        ),
        third_party=ThirdPartyBlock(
            vendor_size_kb=20.0,
            vendor_request_count=1,
            vendor_download_ms=50.0,
            script_size_kb=80.0,
            script_download_ms=80.0,
            script_request_count=2,
            third_party_domains=1,
        ),
    )


def make_app_config_extras() -> dict:
    return {
        "source": SourceInfo(license="MIT", github="https://github.com/acme/consent"),
        "company": CompanyInfo(name="Acme Inc."),
        "tags": ["consent"],
    }
