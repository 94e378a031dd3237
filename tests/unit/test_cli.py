"""Unit tests for the command line interface."""

import json

from typer.testing import CliRunner

from releasegate.cli.main import app

runner = CliRunner()


def write_report(tmp_path, data, name="report.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return path


class TestGateCommand:

    def test_clean_report_passes(self, tmp_path):
        report = write_report(tmp_path, {"vulnerabilities": {}})

        result = runner.invoke(app, ["gate", str(report), "--tool", "npm_audit"])

        assert result.exit_code == 0
        assert "passed" in result.output

    def test_critical_report_fails_under_strict(self, tmp_path):
        report = write_report(tmp_path, {"Results": [{"Vulnerabilities": [
            {"VulnerabilityID": "CVE-2021-44906", "PkgName": "minimist", "InstalledVersion": "1.2.5",
             "Severity": "CRITICAL"},
        ]}]})

        result = runner.invoke(app, ["gate", str(report), "--tool", "trivy", "--mode", "strict"])

        assert result.exit_code == 1
        assert "app_critical" in result.output

    def test_critical_report_is_unstable_under_warn_only(self, tmp_path):
        report = write_report(tmp_path, [{"RuleID": "aws-access-token", "File": ".env", "StartLine": 1}])

        result = runner.invoke(app, ["gate", str(report), "--tool", "gitleaks", "--mode", "warn_only"])

        assert result.exit_code == 0
        assert "unstable" in result.output

    def test_unreadable_report(self, tmp_path):
        report = tmp_path / "report.json"
        report.write_text("<html>")

        result = runner.invoke(app, ["gate", str(report), "--tool", "trivy"])

        assert result.exit_code == 1
        assert "Could not read report" in result.output

    def test_unknown_mode(self, tmp_path):
        report = write_report(tmp_path, {})

        result = runner.invoke(app, ["gate", str(report), "--tool", "trivy", "--mode", "lenient"])

        assert result.exit_code != 0

    def test_unknown_tool(self, tmp_path):
        report = write_report(tmp_path, {})

        result = runner.invoke(app, ["gate", str(report), "--tool", "bandit"])

        assert result.exit_code != 0
