"""Severity aggregation with tool-specific critical predicates."""

from collections import Counter
from typing import Callable, Dict, Iterable, Optional

from ..models.findings import Finding
from ..models.stages import SeverityTally
from .normalizer import QUALITY_GATE_SUBJECT

CriticalPredicate = Callable[[Finding], bool]


def severity_is_critical(finding: Finding) -> bool:
    """Default predicate: the scanner itself called it critical."""
    return finding.severity == 'critical'


def any_secret_is_critical(finding: Finding) -> bool:
    """Every leaked secret is critical, whatever the scanner says."""
    return True


def failed_quality_gate_is_critical(finding: Finding) -> bool:
    """Only the overall quality-gate verdict is critical, not single conditions."""
    return finding.subject_id == QUALITY_GATE_SUBJECT


CRITICAL_PREDICATES: Dict[str, CriticalPredicate] = {
    'gitleaks': any_secret_is_critical,
    'sonarqube': failed_quality_gate_is_critical,
    'npm_audit': severity_is_critical,
    'snyk': severity_is_critical,
    'trivy': severity_is_critical,
}


def predicate_for(tool: str) -> CriticalPredicate:
    return CRITICAL_PREDICATES.get(tool, severity_is_critical)


def bucket_for(finding: Finding, is_critical: CriticalPredicate) -> str:
    """Severity bucket a finding is counted in under ``is_critical``."""
    if is_critical(finding):
        return 'critical'
    if finding.severity == 'critical':
        return 'high'
    return finding.severity


def aggregate(
    findings: Iterable[Finding],
    is_critical: Optional[CriticalPredicate] = None,
) -> SeverityTally:
    """Count findings per severity bucket."""
    is_critical = is_critical or severity_is_critical
    counts = Counter(bucket_for(finding, is_critical) for finding in findings)
    return SeverityTally(
        critical=counts['critical'],
        high=counts['high'],
        medium=counts['medium'],
        low=counts['low'],
    )
