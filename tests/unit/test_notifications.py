"""Unit tests for notification routing."""

import pytest

from releasegate.models.runs import FailureContext, PipelineRun
from releasegate.models.stages import StageResult
from releasegate.orchestrator.notifications import NotificationRouter, format_duration

APP = "#web-team"
OPS = "#platform-ops"


def finalized_run(outcome_stage=None, classification=None, details=None, truncated=0, mode='strict'):
    run = PipelineRun(
        id="run_abc123",
        mode=mode,
        build_id="42",
        commit_ref="0123456789abcdef0123",
        build_url="https://ci.example.com/job/web/42/",
        image_uri="registry.example.com/web:42",
    )
    run.append_stage(StageResult("Unit Tests", 'passed'))
    if outcome_stage is not None:
        stage_name, outcome = outcome_stage
        run.append_stage(StageResult(stage_name, outcome))
        run.apply_failure(FailureContext(
            classification=classification,
            stage=stage_name,
            reason=f"{stage_name} went wrong",
            details=details or [],
            truncated_count=truncated,
            remediation="Do the thing.",
        ))
    run.finalize()
    return run


@pytest.fixture
def router():
    return NotificationRouter(APP, OPS)


class TestRecipients:
    """Routing is a pure function of outcome and classification."""

    def test_success_goes_to_both_channels(self, router):
        assert router.recipients(finalized_run()) == [APP, OPS]

    @pytest.mark.parametrize("classification", ['app_unstable', 'app_critical'])
    def test_unstable_goes_to_app(self, router, classification):
        run = finalized_run(("Image Scan", 'unstable'), classification, mode='warn_only')

        assert run.final_outcome == 'unstable'
        assert router.recipients(run) == [APP]

    @pytest.mark.parametrize("classification", ['app_unstable', 'app_critical'])
    def test_application_failure_goes_to_app(self, router, classification):
        run = finalized_run(("Image Scan", 'failed'), classification, mode='fail_fast')

        assert router.recipients(run) == [APP]

    def test_pipeline_error_goes_to_ops_only(self, router):
        run = finalized_run(("Deploy", 'failed'), 'pipeline_error')

        assert router.recipients(run) == [OPS]

    def test_identical_runs_route_identically(self, router):
        first = finalized_run(("Image Scan", 'failed'), 'app_critical')
        second = finalized_run(("Image Scan", 'failed'), 'app_critical')

        assert router.recipients(first) == router.recipients(second)

    def test_unfinalized_run_is_refused(self, router):
        run = PipelineRun(id="run_abc123", mode='strict')

        with pytest.raises(RuntimeError, match="not finalized"):
            router.route(run)


class TestRender:

    def test_success_message(self, router):
        run = finalized_run()
        run.artifacts["trivy-report.json"] = "s3://reports/run_abc123/trivy-report.json"

        routed = router.route(run)

        assert [channel for channel, _ in routed] == [APP, OPS]
        message = routed[0][1]
        assert message.color == 'good'
        assert message.title == "Release 42 succeeded"
        assert "*Commit:* 0123456789ab " in message.text
        assert "*Image:* registry.example.com/web:42" in message.text
        assert "*Build log:* https://ci.example.com/job/web/42/" in message.text
        assert "<s3://reports/run_abc123/trivy-report.json|trivy-report.json>" in message.text

    def test_unstable_message(self, router):
        run = finalized_run(("Dependency Audit", 'unstable'), 'app_unstable', details=["[HIGH] ws"])

        message = router.render(run)

        assert message.color == 'warning'
        assert message.title == "Release 42 is UNSTABLE"
        assert "*Stage:* Dependency Audit" in message.text
        assert "*Reason:* Dependency Audit went wrong" in message.text
        assert "*Next step:* Do the thing." in message.text
        assert "• [HIGH] ws" in message.text

    def test_pipeline_error_title(self, router):
        message = router.render(finalized_run(("Deploy", 'failed'), 'pipeline_error'))

        assert message.color == 'danger'
        assert message.title == "Pipeline error in build 42 at Deploy"

    def test_application_failure_title(self, router):
        message = router.render(finalized_run(("Secret Scan", 'failed'), 'app_critical'))

        assert message.title == "Release 42 FAILED at Secret Scan"

    def test_details_are_capped_with_more_marker(self, router):
        details = [f"[HIGH] pkg-{i}" for i in range(5)] + ["(+4 more from snyk)"] + ["[MEDIUM] ms"]
        run = finalized_run(("Dependency Audit", 'failed'), 'app_unstable', details=details, truncated=4,
                            mode='fail_fast')

        text = router.render(run).text

        assert text.count("• ") == 5
        assert "• [MEDIUM] ms" not in text
        assert "(+4 more from snyk)" not in text
        assert "+5 more" in text


class TestFormatDuration:

    @pytest.mark.parametrize("seconds,expected", [
        (None, "n/a"),
        (0, "0s"),
        (42.4, "42s"),
        (125, "2m 5s"),
    ])
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected
