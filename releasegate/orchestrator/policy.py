"""Gate policy: turn severity tallies into stage outcomes.

One decision table serves all three operating modes::

    critical  high/medium  warn_only   strict     fail_fast
    0         0            passed      passed     passed
    0         >0           unstable    unstable   failed
    >0        any          unstable    failed     failed

Operational errors (crashed scanners, unreadable reports, platform
failures) bypass the table: they always fail the stage as
``pipeline_error``.
"""

from typing import Iterable, List, NamedTuple, Optional, Sequence

from ..errors import OperationalError
from ..models.findings import Finding, SEVERITY_ORDER
from ..models.runs import CLASSIFICATION_RANK, FailureContext, PipelineMode
from ..models.stages import SeverityTally, StageOutcome, worst_outcome
from .aggregator import CriticalPredicate, bucket_for, predicate_for

DEFAULT_MAX_DETAILS = 5
TRUNCATION_NOTE_PREFIX = "(+"

_REMEDIATION = {
    ('gitleaks', 'app_critical'): "Revoke and rotate the leaked credentials, then purge them from git history.",
    ('sonarqube', 'app_critical'): "Fix the failing quality gate conditions in SonarQube before releasing.",
    ('sonarqube', 'app_unstable'): "Review the SonarQube conditions that are in warning.",
    ('npm_audit', 'app_critical'): "Run `npm audit fix` or upgrade the affected packages to a patched version.",
    ('npm_audit', 'app_unstable'): "Schedule upgrades for the vulnerable packages reported by npm audit.",
    ('snyk', 'app_critical'): "Apply the Snyk upgrade path for the critical vulnerabilities.",
    ('snyk', 'app_unstable'): "Review the Snyk report and plan upgrades for high/medium issues.",
    ('trivy', 'app_critical'): "Rebuild the image on a patched base image or upgrade the affected OS packages.",
    ('trivy', 'app_unstable'): "Rebuild on a newer base image to clear the high/medium CVEs.",
}

_GENERIC_REMEDIATION = {
    'app_critical': "Fix the critical findings before releasing.",
    'app_unstable': "Review the reported findings; the release continued.",
    'pipeline_error': "Check the build agent and tool logs; rerun once the tooling issue is fixed.",
}


class GateDecision(NamedTuple):
    """A stage outcome plus the failure context for non-clean outcomes."""

    outcome: StageOutcome
    context: Optional[FailureContext]


def remediation_hint(tool: Optional[str], classification: str) -> str:
    return _REMEDIATION.get((tool or '', classification), _GENERIC_REMEDIATION[classification])


def top_findings(
    findings: Iterable[Finding],
    is_critical: Optional[CriticalPredicate] = None,
    limit: int = DEFAULT_MAX_DETAILS,
    tool: Optional[str] = None,
) -> tuple[List[str], int]:
    """Return up to ``limit`` finding summaries, most severe first, and the overflow.

    Ties keep the scanner's native order. When findings are dropped a
    ``(+N more ...)`` note is appended.
    """
    is_critical = is_critical or predicate_for(tool or '')
    ranked = sorted(
        (f for f in findings if bucket_for(f, is_critical) != 'low'),
        key=lambda f: SEVERITY_ORDER.index(bucket_for(f, is_critical)),
    )
    shown = ranked[:limit]
    truncated = len(ranked) - len(shown)

    details = [finding.describe(bucket_for(finding, is_critical)) for finding in shown]
    if truncated:
        note = f"{TRUNCATION_NOTE_PREFIX}{truncated} more"
        details.append(f"{note} from {tool})" if tool else f"{note})")
    return details, truncated


def describe_tally(tally: SeverityTally) -> str:
    return f"{tally.critical} critical, {tally.high} high, {tally.medium} medium"


def evaluate(
    tally: SeverityTally,
    mode: PipelineMode,
    *,
    stage: str = '',
    tool: Optional[str] = None,
    findings: Sequence[Finding] = (),
    is_critical: Optional[CriticalPredicate] = None,
    max_details: int = DEFAULT_MAX_DETAILS,
) -> GateDecision:
    """Decide a stage outcome from one tool's tally under ``mode``."""
    if tally.critical > 0:
        classification = 'app_critical'
        outcome: StageOutcome = 'unstable' if mode == 'warn_only' else 'failed'
    elif tally.high > 0 or tally.medium > 0:
        classification = 'app_unstable'
        outcome = 'failed' if mode == 'fail_fast' else 'unstable'
    else:
        return GateDecision('passed', None)

    details, truncated = top_findings(findings, is_critical, max_details, tool)
    subject = tool or stage or 'scan'
    return GateDecision(outcome, FailureContext(
        classification=classification,
        stage=stage or subject,
        reason=f"{subject} reported {describe_tally(tally)} findings",
        details=details,
        truncated_count=truncated,
        remediation=remediation_hint(tool, classification),
    ))


def evaluate_operational_error(
    stage: str,
    error: BaseException,
    tool: Optional[str] = None,
) -> GateDecision:
    """An operational error fails the stage regardless of mode."""
    remediation = getattr(error, 'remediation', None) or _GENERIC_REMEDIATION['pipeline_error']
    reason = str(error) or type(error).__name__
    if not isinstance(error, OperationalError):
        reason = f"{type(error).__name__}: {reason}"
    return GateDecision('failed', FailureContext(
        classification='pipeline_error',
        stage=stage,
        reason=reason,
        details=[f"{tool} did not complete"] if tool else [],
        remediation=remediation,
    ))


def combine(decisions: Sequence[GateDecision], stage: str) -> GateDecision:
    """Merge per-tool decisions of one stage: the worst outcome wins."""
    outcome = worst_outcome(*(d.outcome for d in decisions))
    contexts = [d.context for d in decisions if d.context is not None]
    if not contexts:
        return GateDecision(outcome, None)
    if len(contexts) == 1:
        return GateDecision(outcome, contexts[0])

    lead = max(contexts, key=lambda c: CLASSIFICATION_RANK[c.classification])
    details: List[str] = []
    for context in contexts:
        details.extend(context.details)

    return GateDecision(outcome, FailureContext(
        classification=lead.classification,
        stage=stage,
        reason='; '.join(c.reason for c in contexts),
        details=details,
        truncated_count=sum(c.truncated_count for c in contexts),
        remediation=lead.remediation,
    ))
