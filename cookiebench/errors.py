"""Exceptions for outcomes that must abort a benchmark run."""

from __future__ import annotations


class BenchmarkError(Exception):
    """Base class for fatal benchmark errors."""


class ConfigError(BenchmarkError):
    """The benchmark configuration is missing, unreadable or invalid."""


class BuildError(BenchmarkError):
    """The application under test could not be built or served."""


class CollectionError(BenchmarkError):
    """No iteration produced a usable measurement."""
