"""Data models for the cookie banner benchmark."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum


class BundleStrategy(str, Enum):
    BUNDLED = "bundled"
    IIFE = "iife"
    UNKNOWN = "unknown"


class ResourceType(str, Enum):
    SCRIPT = "script"
    STYLE = "style"
    IMAGE = "image"
    FONT = "font"
    OTHER = "other"


class Grade(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    CRITICAL = "Critical"


class CategoryStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


# ── Detection Engine output ──

@dataclass(frozen=True)
class BannerObservation:
    """What the in-page detector saw during one page load.

    Offsets are milliseconds relative to navigation start. An undetected
    banner has every offset at zero and no selector.
    """
    detected: bool = False
    selector: str | None = None
    render_offset_ms: float = 0.0
    visible_offset_ms: float = 0.0
    interactive_offset_ms: float = 0.0
    layout_shift_delta: float = 0.0
    viewport_coverage_percent: float = 0.0

    @property
    def hydration_ms(self) -> float:
        if not self.detected or self.interactive_offset_ms <= 0:
            return 0.0
        return self.interactive_offset_ms - self.render_offset_ms


# ── Network Classifier output ──

@dataclass(frozen=True)
class NetworkSample:
    url: str
    size_kb: float
    duration_ms: float
    start_offset_ms: float
    is_third_party: bool
    is_vendor: bool = False


@dataclass(frozen=True)
class NetworkSnapshot:
    """Frozen view of everything the classifier saw for one page load."""
    samples: tuple[NetworkSample, ...] = ()
    total_bytes: int = 0
    first_party_bytes: int = 0
    third_party_bytes: int = 0
    request_count: int = 0
    third_party_request_count: int = 0


# ── Browser-reported metrics ──

@dataclass(frozen=True)
class CoreWebVitals:
    """Paint family, layout shift, blocking time and navigation timing.

    ``None`` means the browser never reported the metric.
    """
    first_paint: float | None = None
    first_contentful_paint: float | None = None
    largest_contentful_paint: float | None = None
    cumulative_layout_shift: float | None = None
    total_blocking_time: float | None = None
    time_to_first_byte: float | None = None
    interaction_to_next_paint: float | None = None
    dom_interactive: float | None = None
    dom_content_loaded: float | None = None
    dom_complete: float | None = None
    load_event_end: float | None = None


@dataclass(frozen=True)
class ResourceEntry:
    name: str
    resource_type: ResourceType
    initiator_type: str
    size_bytes: int
    duration_ms: float
    start_ms: float
    is_third_party: bool
    is_vendor: bool = False
    is_dynamic: bool = False


@dataclass(frozen=True)
class ResourceTimingSnapshot:
    navigation_start: float = 0.0
    dom_content_loaded: float = 0.0
    load: float = 0.0
    entries: tuple[ResourceEntry, ...] = ()
    language: str = "en"


# ── Metric Aggregator output ──

@dataclass(frozen=True)
class TimingBlock:
    navigation_start: float = 0.0
    dom_content_loaded: float = 0.0
    dom_complete: float = 0.0
    load: float = 0.0
    first_paint: float = 0.0
    first_contentful_paint: float = 0.0
    largest_contentful_paint: float = 0.0
    cumulative_layout_shift: float = 0.0
    total_blocking_time: float = 0.0
    time_to_first_byte: float = 0.0
    interaction_to_next_paint: float | None = None
    time_to_interactive: float = 0.0
    regulatory_friction_delay: float | None = None
    banner_blocking_estimate: float = 0.0
    banner_blocking_percent: float = 0.0


@dataclass(frozen=True)
class SizeBlock:
    total_bytes: int = 0
    bundled_bytes: int = 0
    third_party_bytes: int = 0
    script_bytes: int = 0
    initial_script_bytes: int = 0
    dynamic_script_bytes: int = 0
    style_bytes: int = 0
    image_bytes: int = 0
    font_bytes: int = 0
    other_bytes: int = 0


@dataclass(frozen=True)
class BannerBlock:
    detected: bool = False
    selector: str | None = None
    service_name: str = "unknown"
    render_time: float = 0.0
    visibility_time: float = 0.0
    interactive_time: float = 0.0
    hydration_time: float = 0.0
    layout_shift: float = 0.0
    viewport_coverage: float = 0.0


@dataclass(frozen=True)
class ThirdPartyBlock:
    vendor_hosts: tuple[str, ...] = ()
    vendor_size_kb: float = 0.0
    vendor_request_count: int = 0
    vendor_download_ms: float = 0.0
    other_size_kb: float = 0.0
    other_request_count: int = 0
    script_size_kb: float = 0.0
    script_download_ms: float = 0.0
    script_request_count: int = 0
    third_party_domains: int = 0

    @property
    def mean_script_load_ms(self) -> float:
        if not self.script_request_count:
            return 0.0
        return self.script_download_ms / self.script_request_count


@dataclass(frozen=True)
class IterationRecord:
    iteration: int
    url: str
    timing: TimingBlock
    size: SizeBlock
    resources: tuple[ResourceEntry, ...]
    banner: BannerBlock
    third_party: ThirdPartyBlock
    language: str = "en"

    @property
    def resource_count(self) -> int:
        return len(self.resources)

    @property
    def third_party_resource_count(self) -> int:
        return sum(1 for r in self.resources if r.is_third_party)

    def to_dict(self) -> dict:
        return asdict(self)


# ── Statistical Reducer output ──

@dataclass(frozen=True)
class MetricSummary:
    name: str
    samples: int
    mean: float
    raw_mean: float
    stddev: float
    median: float
    p95: float
    p99: float
    min: float
    max: float
    cv: float
    stable: bool


@dataclass(frozen=True)
class RunSummary:
    iterations: int
    metrics: dict[str, MetricSummary] = field(default_factory=dict)
    banner_detection_rate: float = 0.0
    unstable_metrics: tuple[str, ...] = ()

    def value(self, name: str, default: float = 0.0) -> float:
        """Trimmed mean for a metric, or ``default`` if it was never reported."""
        summary = self.metrics.get(name)
        return summary.mean if summary is not None else default

    def has(self, name: str) -> bool:
        return name in self.metrics

    def to_dict(self) -> dict:
        return asdict(self)


# ── Scoring Engine input/output ──

@dataclass(frozen=True)
class ScoreInputs:
    """Run-level metrics consumed by the scoring engine (times in ms, sizes in KB)."""
    fcp: float = 0.0
    lcp: float = 0.0
    cls: float = 0.0
    tti: float = 0.0
    tbt: float = 0.0
    total_size_kb: float = 0.0
    third_party_size_kb: float = 0.0
    resource_count: float = 0.0
    third_party_resource_count: float = 0.0
    script_load_ms: float = 0.0
    banner_detected: bool = False
    banner_visibility_ms: float | None = None
    viewport_coverage: float = 0.0
    bundle_strategy: BundleStrategy = BundleStrategy.UNKNOWN


@dataclass(frozen=True)
class ScoreDetail:
    metric: str
    value: str
    points: int
    max_points: int
    reason: str
    status: CategoryStatus


@dataclass(frozen=True)
class CategoryScore:
    key: str
    name: str
    score: int
    max_score: int
    weight: float
    status: CategoryStatus
    reason: str
    details: tuple[ScoreDetail, ...] = ()

    @property
    def percentage(self) -> int:
        return round(self.score / self.max_score * 100)


@dataclass(frozen=True)
class ScoreReport:
    total_score: int
    grade: Grade
    category_scores: dict[str, int]
    categories: tuple[CategoryScore, ...]
    insights: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()

    def category(self, key: str) -> CategoryScore:
        for category in self.categories:
            if category.key == key:
                return category
        raise KeyError(key)

    def to_dict(self) -> dict:
        return asdict(self)


# ── Run result ──

@dataclass
class BenchmarkResult:
    name: str
    url: str
    requested_iterations: int
    records: list[IterationRecord] = field(default_factory=list)
    summary: RunSummary | None = None
    dropped_iterations: list[int] = field(default_factory=list)
    started_at: str = ""
    completed_at: str = ""
