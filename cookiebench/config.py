"""Configuration loading and typed config dataclasses."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigError


@dataclass
class CookieBannerSettings:
    selectors: list[str] = field(default_factory=list)
    service_hosts: list[str] = field(default_factory=list)
    service_name: str = "unknown"
    wait_for_visibility: bool = True
    measure_viewport_coverage: bool = True
    expected_layout_shift: bool = False


@dataclass
class DetectionSettings:
    poll_interval_ms: int = 100
    timeout_ms: int = 10000
    opacity_threshold: float = 0.5
    visibility_recheck_ms: int = 16   # post-detection opacity sampling, roughly one frame


@dataclass
class RunnerSettings:
    headless: bool = True
    navigation_timeout_ms: int = 30000
    iteration_timeout_ms: int = 90000
    settle_delay_ms: int = 1000        # lets in-page observers flush before reading
    max_retries: int = 2
    retry_backoff_ms: int = 1000
    tti_buffer_ms: int = 1000
    trim_percent: float = 10.0
    stability_threshold: float = 15.0
    warning_threshold: float = 20.0


@dataclass
class TechStack:
    bundler: str = "unknown"
    bundle_type: str | list[str] = "unknown"
    frameworks: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    package_manager: str = "unknown"
    typescript: bool = False


@dataclass
class SourceInfo:
    license: str = ""
    github: str | bool | None = None
    repository: str | None = None
    is_open_source: bool | str | None = None
    npm: str | bool | None = None
    website: str | None = None
    type: str | None = None


@dataclass
class CompanyInfo:
    name: str = ""
    website: str | None = None
    avatar: str | None = None


@dataclass
class RemoteSettings:
    enabled: bool = False
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class BenchConfig:
    name: str
    iterations: int
    cookie_banner: CookieBannerSettings
    tech_stack: TechStack
    project_root: Path = field(default_factory=lambda: Path.cwd())
    baseline: bool = False
    url: str | None = None
    test_id: str | None = None
    element_id: str | None = None
    source: SourceInfo | None = None
    company: CompanyInfo | None = None
    tags: list[str] = field(default_factory=list)
    includes: dict = field(default_factory=dict)
    internationalization: dict = field(default_factory=dict)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    runner: RunnerSettings = field(default_factory=RunnerSettings)

    @property
    def is_remote(self) -> bool:
        return bool(self.remote.enabled and self.remote.url)

    def resolve_path(self, relative_path: str) -> Path:
        """Resolve a relative path against the project root."""
        p = Path(relative_path)
        if p.is_absolute():
            return p
        return self.project_root / p


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

# On-disk keys whose snake_case form differs from the field name
_KEY_ALIASES = {"id": "element_id"}


def _snake(key: str) -> str:
    return _KEY_ALIASES.get(key, _CAMEL_RE.sub("_", key).lower())


def _build_nested(cls, data: dict | None):
    """Build a dataclass from a camelCase dict, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected an object for {cls.__name__}, got {type(data).__name__}")
    fieldnames = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {}
    for key, val in data.items():
        name = _snake(key)
        if name in fieldnames:
            filtered[name] = val
    try:
        return cls(**filtered)
    except TypeError as e:
        raise ConfigError(f"Invalid {cls.__name__}: {e}") from e


def _require(raw: dict, key: str):
    if key not in raw or raw[key] is None:
        raise ConfigError(f"Missing required config field: {key}")
    return raw[key]


def load_config(path: str | Path) -> BenchConfig:
    """Load a benchmark config (JSON or YAML) and validate it."""
    config_path = Path(path)
    if config_path.is_dir():
        config_path = config_path / "config.json"
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {config_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be an object: {config_path}")

    name = _require(raw, "name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("Config field 'name' must be a non-empty string")

    iterations = _require(raw, "iterations")
    if isinstance(iterations, bool) or not isinstance(iterations, int):
        raise ConfigError("Config field 'iterations' must be an integer")

    banner_raw = _require(raw, "cookieBanner")
    if not isinstance(banner_raw, dict):
        raise ConfigError("Config field 'cookieBanner' must be an object")
    _require(banner_raw, "selectors")
    _require(banner_raw, "serviceHosts")

    remote_raw = raw.get("remote")
    remote = _build_nested(RemoteSettings, remote_raw)
    if remote.headers is None:
        remote.headers = {}

    config = BenchConfig(
        name=name.strip(),
        iterations=iterations,
        cookie_banner=_build_nested(CookieBannerSettings, banner_raw),
        tech_stack=_build_nested(TechStack, _require(raw, "techStack")),
        project_root=config_path.parent,
        baseline=bool(raw.get("baseline", False)),
        url=raw.get("url"),
        test_id=raw.get("testId"),
        element_id=raw.get("id"),
        source=_build_nested(SourceInfo, raw["source"]) if raw.get("source") else None,
        company=_build_nested(CompanyInfo, raw["company"]) if raw.get("company") else None,
        tags=list(raw.get("tags") or []),
        includes=raw.get("includes") or {},
        internationalization=raw.get("internationalization") or {},
        remote=remote,
        detection=_build_nested(DetectionSettings, raw.get("detection")),
        runner=_build_nested(RunnerSettings, raw.get("runner")),
    )
    validate_config(config)
    return config


def validate_config(config: BenchConfig) -> None:
    """Raise ConfigError for settings that make a run meaningless."""
    if config.iterations < 1:
        raise ConfigError(f"iterations must be >= 1 (got {config.iterations})")

    selectors = config.cookie_banner.selectors
    if not isinstance(selectors, list) or not selectors:
        raise ConfigError("cookieBanner.selectors must be a non-empty list")
    if not all(isinstance(s, str) and s.strip() for s in selectors):
        raise ConfigError("cookieBanner.selectors must contain non-empty strings")
    if not isinstance(config.cookie_banner.service_hosts, list):
        raise ConfigError("cookieBanner.serviceHosts must be a list")

    if config.remote.enabled and not config.remote.url:
        raise ConfigError("remote.enabled is true but remote.url is not set")

    det = config.detection
    if not 0.0 <= det.opacity_threshold <= 1.0:
        raise ConfigError("detection.opacityThreshold must be within [0, 1]")
    if det.poll_interval_ms <= 0 or det.timeout_ms <= 0 or det.visibility_recheck_ms <= 0:
        raise ConfigError("detection intervals and timeout must be positive")

    run = config.runner
    if not 0.0 <= run.trim_percent < 50.0:
        raise ConfigError("runner.trimPercent must be within [0, 50)")
    if run.max_retries < 0:
        raise ConfigError("runner.maxRetries must be >= 0")
    if run.iteration_timeout_ms <= 0 or run.navigation_timeout_ms <= 0:
        raise ConfigError("runner timeouts must be positive")
