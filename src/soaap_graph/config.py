"""Configuration primitives for the project."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

DEFAULT_ANALYSES = ("vuln",)
DEFAULT_INTERSECTION_DEPTH = 3
DEFAULT_PROGRESS_NOTIFICATIONS = 100


@dataclass(slots=True)
class AnalysisConfig:
    """Settings guiding graph extraction and combination."""

    analyses: List[str] = field(default_factory=lambda: list(DEFAULT_ANALYSES))
    intersection_depth: int = DEFAULT_INTERSECTION_DEPTH
    simplify: bool = False
    progress_notifications: int = DEFAULT_PROGRESS_NOTIFICATIONS

    def __post_init__(self) -> None:
        if self.intersection_depth < -1:
            raise ValueError(f"intersection depth must be >= -1, got {self.intersection_depth}")
        if self.progress_notifications < 1:
            raise ValueError("progress_notifications must be positive")

    @classmethod
    def from_options(
        cls,
        analyses: str | Iterable[str] | None = None,
        *,
        intersection_depth: int = DEFAULT_INTERSECTION_DEPTH,
        simplify: bool = False,
    ) -> "AnalysisConfig":
        """Factory helper that accepts a comma-separated analysis list."""

        if analyses is None:
            steps = list(DEFAULT_ANALYSES)
        elif isinstance(analyses, str):
            steps = [item.strip() for item in analyses.split(",") if item.strip()]
        else:
            steps = [item.strip() for item in analyses if item.strip()]
        if not steps:
            raise ValueError("at least one analysis is required")
        return cls(analyses=steps, intersection_depth=intersection_depth, simplify=simplify)

    def progress_interval(self, total: int) -> int:
        """Number of processed findings between two progress notifications."""

        return max(1, total // self.progress_notifications)
