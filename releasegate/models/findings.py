"""Finding data models for releasegate."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

from dataclasses_json import DataClassJsonMixin

# Type aliases for better type safety
Severity = Literal['critical', 'high', 'medium', 'low']
ScannerTool = Literal['gitleaks', 'sonarqube', 'npm_audit', 'snyk', 'trivy']

# Most severe first
SEVERITY_ORDER: tuple[Severity, ...] = ('critical', 'high', 'medium', 'low')


@dataclass(frozen=True, slots=True)
class Finding(DataClassJsonMixin):
    """A single normalized issue reported by a scanner."""

    severity: Severity
    source_tool: str
    subject_id: str
    fix_available: bool = False
    fix_version: Optional[str] = None
    title: str = field(default='')

    def __post_init__(self) -> None:
        """Validate finding data after initialization."""
        if self.severity not in SEVERITY_ORDER:
            raise ValueError(f"Unknown severity: {self.severity!r}")
        if not self.source_tool:
            raise ValueError("Source tool cannot be empty")
        if not self.subject_id:
            raise ValueError("Subject ID cannot be empty")

    @property
    def is_critical(self) -> bool:
        """Check if finding is critical severity."""
        return self.severity == 'critical'

    @property
    def summary(self) -> str:
        """One-line description used in failure details and notifications."""
        return self.describe()

    def describe(self, bucket: Optional[str] = None) -> str:
        """Render the finding, labelled with ``bucket`` instead of its own severity."""
        text = f"[{(bucket or self.severity).upper()}] {self.subject_id}"
        if self.title:
            text += f": {self.title}"
        if self.fix_version:
            text += f" (fix: {self.fix_version})"
        elif self.fix_available:
            text += " (fix available)"
        return text
