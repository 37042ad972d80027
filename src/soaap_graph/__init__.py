"""Core package for building call graphs from SOAAP results."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("soaap-graph")
except PackageNotFoundError:  # pragma: no cover - package metadata absent in dev mode
    __version__ = "0.0.0"

__all__ = ["__version__"]
