"""Stage result data models for releasegate."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from dataclasses_json import DataClassJsonMixin

from .findings import Severity

# Type aliases
StageOutcome = Literal['passed', 'unstable', 'failed']

OUTCOME_RANK: Dict[StageOutcome, int] = {'passed': 0, 'unstable': 1, 'failed': 2}


def worst_outcome(*outcomes: StageOutcome) -> StageOutcome:
    """Return the most severe of the given outcomes ('passed' when empty)."""
    return max(outcomes, key=OUTCOME_RANK.__getitem__, default='passed')


@dataclass(frozen=True, slots=True)
class SeverityTally(DataClassJsonMixin):
    """Per-stage count of findings by severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    def __post_init__(self) -> None:
        for name in ('critical', 'high', 'medium', 'low'):
            if getattr(self, name) < 0:
                raise ValueError(f"Tally count '{name}' cannot be negative")

    def __add__(self, other: SeverityTally) -> SeverityTally:
        if not isinstance(other, SeverityTally):
            return NotImplemented
        return SeverityTally(
            critical=self.critical + other.critical,
            high=self.high + other.high,
            medium=self.medium + other.medium,
            low=self.low + other.low,
        )

    def count(self, severity: Severity) -> int:
        return getattr(self, severity)

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low


@dataclass(frozen=True, slots=True)
class StageResult(DataClassJsonMixin):
    """The recorded outcome of one completed stage."""

    name: str
    outcome: StageOutcome
    tallies: Optional[SeverityTally] = None
    duration_seconds: float = 0.0
    artifacts: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Stage name cannot be empty")
        if self.outcome not in OUTCOME_RANK:
            raise ValueError(f"Unknown stage outcome: {self.outcome!r}")

    @property
    def is_failed(self) -> bool:
        return self.outcome == 'failed'

    @property
    def is_unstable(self) -> bool:
        return self.outcome == 'unstable'
