"""Exceptions raised while analyzing a directory of asset bundles."""

from __future__ import annotations

from pathlib import Path


class BundleAnalysisError(Exception):
    """Base class for bundle analysis failures."""

    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class ConfigurationError(BundleAnalysisError):
    """The analysis root is missing or is not a directory. Fatal."""


class DiscoveryExhausted(BundleAnalysisError):
    """No discovery strategy produced a bundle list. Fatal."""


class BundleLoadFailure(BundleAnalysisError):
    """A single bundle file could not be opened. Recoverable."""


class ManifestLoadFailure(BundleAnalysisError):
    """The bundle manifest could not be loaded. Falls through to the next strategy."""
