"""Run data models for releasegate pipeline execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from dataclasses_json import DataClassJsonMixin, config

from .stages import StageResult

# Type aliases
PipelineMode = Literal['warn_only', 'strict', 'fail_fast']
Classification = Literal['app_unstable', 'app_critical', 'pipeline_error']
FinalOutcome = Literal['success', 'unstable', 'failed']

PIPELINE_MODES: tuple[PipelineMode, ...] = ('warn_only', 'strict', 'fail_fast')

# Classifications only ever move up this ladder during a run
CLASSIFICATION_RANK: Dict[Classification, int] = {
    'app_unstable': 0,
    'app_critical': 1,
    'pipeline_error': 2,
}

STICKY_CLASSIFICATIONS = frozenset({'app_critical', 'pipeline_error'})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class FailureContext(DataClassJsonMixin):
    """Why a run degraded or halted, and where."""

    classification: Classification
    stage: str
    reason: str
    details: List[str] = field(default_factory=list)
    truncated_count: int = 0
    remediation: str = ''

    def __post_init__(self) -> None:
        if self.classification not in CLASSIFICATION_RANK:
            raise ValueError(f"Unknown classification: {self.classification!r}")
        if not self.stage:
            raise ValueError("Failure stage cannot be empty")
        if self.truncated_count < 0:
            raise ValueError("Truncated count cannot be negative")

    @property
    def rank(self) -> int:
        return CLASSIFICATION_RANK[self.classification]

    @property
    def is_sticky(self) -> bool:
        return self.classification in STICKY_CLASSIFICATIONS

    @property
    def is_operational(self) -> bool:
        return self.classification == 'pipeline_error'


@dataclass(slots=True)
class PipelineRun(DataClassJsonMixin):
    """A single gatekeeper run, owned by the orchestrator."""

    id: str
    mode: PipelineMode
    build_id: Optional[str] = field(default=None)
    commit_ref: Optional[str] = field(default=None)
    build_url: Optional[str] = field(default=None)
    image_uri: Optional[str] = field(default=None)
    stages: List[StageResult] = field(default_factory=list)
    failure_context: Optional[FailureContext] = field(default=None)
    final_outcome: Optional[FinalOutcome] = field(default=None)
    cancelled: bool = field(default=False)
    artifacts: Dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=_utcnow,
        metadata=config(encoder=datetime.isoformat, decoder=datetime.fromisoformat)
    )
    ended_at: Optional[datetime] = field(
        default=None,
        metadata=config(
            encoder=lambda d: d.isoformat() if d else None,
            decoder=lambda s: datetime.fromisoformat(s) if s else None,
        )
    )

    def __post_init__(self) -> None:
        """Validate run data after initialization."""
        if not self.id:
            raise ValueError("Run ID cannot be empty")
        if self.mode not in PIPELINE_MODES:
            raise ValueError(f"Unknown pipeline mode: {self.mode!r}")

    def _ensure_open(self) -> None:
        if self.final_outcome is not None:
            raise RuntimeError(f"Run {self.id} is already finalized as {self.final_outcome}")

    def append_stage(self, result: StageResult) -> None:
        """Record a completed stage; history is append-only."""
        self._ensure_open()
        self.stages.append(result)

    def apply_failure(self, context: FailureContext) -> None:
        """Merge a stage's failure context into the run.

        The first context is recorded as-is. After that the classification
        can only move up (app_unstable, app_critical, pipeline_error). Once it
        is sticky, lower or equal contexts only contribute detail lines and
        never replace the recorded stage or reason. Repeated app_unstable
        contexts are last-wins under warn_only and first-wins otherwise.
        """
        self._ensure_open()
        current = self.failure_context

        if current is None:
            self.failure_context = context
            return

        if context.rank > current.rank:
            self.failure_context = FailureContext(
                classification=context.classification,
                stage=context.stage,
                reason=context.reason,
                details=list(context.details) + list(current.details),
                truncated_count=context.truncated_count + current.truncated_count,
                remediation=context.remediation,
            )
            return

        current.details.extend(context.details)
        current.truncated_count += context.truncated_count

        if (
            context.rank == current.rank
            and not current.is_sticky
            and self.mode == 'warn_only'
        ):
            current.stage = context.stage
            current.reason = context.reason
            current.remediation = context.remediation

    def mark_cancelled(self, stage: str) -> None:
        """Record a cancellation request before ``stage`` could run."""
        self._ensure_open()
        self.cancelled = True
        self.apply_failure(FailureContext(
            classification='pipeline_error',
            stage=stage,
            reason='cancelled',
            remediation='The run was cancelled by the operator or scheduler; rerun when ready.',
        ))

    def outcome_so_far(self) -> FinalOutcome:
        """Map the stage history to an outcome without finalizing."""
        if self.cancelled or any(s.is_failed for s in self.stages):
            return 'failed'
        if any(s.is_unstable for s in self.stages):
            return 'unstable'
        return 'success'

    def finalize(self) -> FinalOutcome:
        """Fix the final outcome. May only be called once."""
        self._ensure_open()
        outcome = self.outcome_so_far()

        if outcome == 'success' and self.failure_context is not None:
            # Only passed stages but a context was recorded: the context wins
            outcome = 'failed' if self.failure_context.is_operational else 'unstable'
        if outcome != 'success' and self.failure_context is None:
            raise RuntimeError(f"Run {self.id} is {outcome} without a failure context")

        self.final_outcome = outcome
        self.ended_at = _utcnow()
        return outcome

    @property
    def is_finalized(self) -> bool:
        return self.final_outcome is not None

    @property
    def halted(self) -> bool:
        """Whether later stages must be skipped."""
        return self.outcome_so_far() == 'failed'

    @property
    def classification(self) -> Optional[Classification]:
        return self.failure_context.classification if self.failure_context else None

    @property
    def failing_stage(self) -> Optional[str]:
        return self.failure_context.stage if self.failure_context else None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get the duration of the run in seconds."""
        if self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None
