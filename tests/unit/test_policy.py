"""Unit tests for the gate policy."""

import pytest

from releasegate.errors import DeploymentTimeout, ScannerError
from releasegate.models.findings import Finding
from releasegate.models.runs import FailureContext, PIPELINE_MODES
from releasegate.models.stages import SeverityTally
from releasegate.orchestrator.aggregator import predicate_for
from releasegate.orchestrator.policy import (
    GateDecision,
    combine,
    evaluate,
    evaluate_operational_error,
    top_findings,
)


def finding(severity, subject, tool="npm_audit"):
    return Finding(severity=severity, source_tool=tool, subject_id=subject)


class TestEvaluate:
    """The decision table, one mode at a time."""

    @pytest.mark.parametrize("mode", PIPELINE_MODES)
    @pytest.mark.parametrize("low", [0, 12])
    def test_clean_tally_passes_in_every_mode(self, mode, low):
        decision = evaluate(SeverityTally(low=low), mode, stage="Dependency Audit", tool="npm_audit")

        assert decision == GateDecision('passed', None)

    @pytest.mark.parametrize("mode,outcome", [
        ('warn_only', 'unstable'),
        ('strict', 'failed'),
        ('fail_fast', 'failed'),
    ])
    def test_critical_findings(self, mode, outcome):
        decision = evaluate(SeverityTally(critical=1, high=2), mode, stage="Image Scan", tool="trivy")

        assert decision.outcome == outcome
        assert decision.context.classification == 'app_critical'
        assert decision.context.stage == "Image Scan"

    @pytest.mark.parametrize("mode,outcome", [
        ('warn_only', 'unstable'),
        ('strict', 'unstable'),
        ('fail_fast', 'failed'),
    ])
    def test_high_or_medium_findings(self, mode, outcome):
        decision = evaluate(SeverityTally(medium=1), mode, stage="Dependency Audit", tool="npm_audit")

        assert decision.outcome == outcome
        assert decision.context.classification == 'app_unstable'

    def test_warn_only_never_fails_on_findings(self):
        decision = evaluate(SeverityTally(critical=9, high=9, medium=9), 'warn_only', tool="trivy")

        assert decision.outcome == 'unstable'

    def test_reason_and_remediation(self):
        findings = [finding("high", "axios"), finding("high", "ws"), finding("high", "qs"), finding("medium", "ms")]

        decision = evaluate(
            SeverityTally(high=3, medium=1),
            'strict',
            stage="Dependency Audit",
            tool="npm_audit",
            findings=findings,
            is_critical=predicate_for("npm_audit"),
        )

        assert decision.context.reason == "npm_audit reported 0 critical, 3 high, 1 medium findings"
        assert "npm audit" in decision.context.remediation
        assert decision.context.details == ["[HIGH] axios", "[HIGH] ws", "[HIGH] qs", "[MEDIUM] ms"]
        assert decision.context.truncated_count == 0

    def test_secret_findings_are_reported_as_critical(self):
        findings = [finding("high", "config/prod.env:3", "gitleaks")]

        decision = evaluate(
            SeverityTally(critical=1),
            'strict',
            stage="Secret Scan",
            tool="gitleaks",
            findings=findings,
            is_critical=predicate_for("gitleaks"),
        )

        assert decision.context.details == ["[CRITICAL] config/prod.env:3"]
        assert "rotate" in decision.context.remediation


class TestTopFindings:

    def test_most_severe_first_and_low_excluded(self):
        findings = [
            finding("medium", "a"),
            finding("low", "b"),
            finding("critical", "c"),
            finding("high", "d"),
            finding("critical", "e"),
        ]

        details, truncated = top_findings(findings, predicate_for("npm_audit"), limit=5, tool="npm_audit")

        assert details == ["[CRITICAL] c", "[CRITICAL] e", "[HIGH] d", "[MEDIUM] a"]
        assert truncated == 0

    def test_truncation_note(self):
        findings = [finding("high", f"pkg-{i}") for i in range(8)]

        details, truncated = top_findings(findings, limit=5, tool="snyk")

        assert truncated == 3
        assert len(details) == 6
        assert details[-1] == "(+3 more from snyk)"


class TestOperationalErrors:

    @pytest.mark.parametrize("mode", PIPELINE_MODES)
    def test_operational_error_always_fails_as_pipeline_error(self, mode):
        decision = evaluate_operational_error("Image Scan", ScannerError("trivy", "exit code 2", 2), "trivy")

        assert decision.outcome == 'failed'
        assert decision.context.classification == 'pipeline_error'
        assert decision.context.reason == "trivy: exit code 2"
        assert decision.context.details == ["trivy did not complete"]
        assert decision.context.remediation == ScannerError.remediation

    def test_deployment_timeout_remediation(self):
        decision = evaluate_operational_error("Deploy", DeploymentTimeout("service web did not stabilize within 600s"))

        assert decision.context.stage == "Deploy"
        assert decision.context.remediation == DeploymentTimeout.remediation

    def test_unexpected_exception_reason_names_the_type(self):
        decision = evaluate_operational_error("Unit Tests", KeyError("workspace"))

        assert decision.context.reason.startswith("KeyError:")
        assert decision.context.classification == 'pipeline_error'


class TestCombine:

    def test_all_passed(self):
        decision = combine([GateDecision('passed', None), GateDecision('passed', None)], "Dependency Audit")

        assert decision == GateDecision('passed', None)

    def test_single_context_is_kept(self):
        context = FailureContext('app_unstable', "Dependency Audit", "npm_audit reported findings")

        decision = combine([GateDecision('unstable', context), GateDecision('passed', None)], "Dependency Audit")

        assert decision.outcome == 'unstable'
        assert decision.context is context

    def test_worst_outcome_and_highest_classification_lead(self):
        unstable = FailureContext('app_unstable', "Dependency Audit", "npm_audit reported 0 critical, 1 high, 0 medium findings",
                                  details=["[HIGH] ws"], remediation="npm")
        critical = FailureContext('app_critical', "Dependency Audit", "snyk reported 1 critical, 0 high, 0 medium findings",
                                  details=["[CRITICAL] axios"], truncated_count=2, remediation="snyk")

        decision = combine([GateDecision('unstable', unstable), GateDecision('failed', critical)], "Dependency Audit")

        assert decision.outcome == 'failed'
        assert decision.context.classification == 'app_critical'
        assert decision.context.remediation == "snyk"
        assert decision.context.details == ["[HIGH] ws", "[CRITICAL] axios"]
        assert decision.context.truncated_count == 2
        assert decision.context.reason.count("; ") == 1
