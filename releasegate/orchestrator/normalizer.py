"""Normalize scanner-native JSON reports into releasegate findings."""

import json
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from ..errors import ReportParseError
from ..logging import get_logger
from ..models.findings import Finding, Severity

logger = get_logger(__name__)

QUALITY_GATE_SUBJECT = 'quality_gate'

# Vendor severity labels, lowercased
_SEVERITY_MAP: Dict[str, Severity] = {
    'critical': 'critical',
    'high': 'high',
    'moderate': 'medium',
    'medium': 'medium',
    'low': 'low',
    'info': 'low',
}

_SONAR_CONDITION_SEVERITY: Dict[str, Severity] = {
    'ERROR': 'high',
    'WARN': 'medium',
}


def normalize_severity(raw: Any, tool: str, subject_id: str = '') -> Severity:
    """Map a vendor severity label onto the shared scale.

    Anything unrecognised becomes ``low`` and is logged as an anomaly
    instead of failing the whole report.
    """
    if isinstance(raw, str) and raw.strip().lower() in _SEVERITY_MAP:
        return _SEVERITY_MAP[raw.strip().lower()]

    logger.warning(
        "normalizer.severity_anomaly",
        tool=tool,
        raw_severity=raw,
        subject_id=subject_id,
    )
    return 'low'


def _objects(value: Any) -> Iterator[Dict[str, Any]]:
    """Yield the object entries of a JSON array, skipping anything else."""
    if not isinstance(value, list):
        return
    for item in value:
        if isinstance(item, dict):
            yield item


def _fix_version(fix_available: Any) -> Optional[str]:
    if isinstance(fix_available, dict):
        version = fix_available.get('version')
        return str(version) if version else None
    return None


def _normalize_gitleaks(data: Any) -> Iterator[Finding]:
    if data is None:
        return
    if not isinstance(data, list):
        raise ReportParseError('gitleaks', "expected a JSON array of leaks")

    for leak in data:
        if not isinstance(leak, dict):
            continue
        location = leak.get('File')
        if location and leak.get('StartLine') is not None:
            location = f"{location}:{leak['StartLine']}"
        subject = location or leak.get('Fingerprint') or leak.get('RuleID') or 'unknown'
        yield Finding(
            severity='high',
            source_tool='gitleaks',
            subject_id=subject,
            title=leak.get('Description') or leak.get('RuleID') or 'Secret detected',
        )


def _normalize_sonarqube(data: Any) -> Iterator[Finding]:
    if not isinstance(data, dict):
        raise ReportParseError('sonarqube', "expected a JSON object")

    project_status = data.get('projectStatus')
    if project_status is None:
        return
    if not isinstance(project_status, dict):
        raise ReportParseError('sonarqube', "'projectStatus' is not an object")

    if project_status.get('status') == 'ERROR':
        yield Finding(
            severity='high',
            source_tool='sonarqube',
            subject_id=QUALITY_GATE_SUBJECT,
            title='Quality gate failed',
        )

    for condition in _objects(project_status.get('conditions')):
        status = condition.get('status')
        if not isinstance(status, str) or status not in _SONAR_CONDITION_SEVERITY:
            continue
        metric = condition.get('metricKey') or 'unknown_metric'
        threshold = condition.get('errorThreshold') or condition.get('warningThreshold')
        title = f"{metric} is {condition.get('actualValue', '?')}"
        if threshold is not None:
            comparator = condition.get('comparator')
            title += f" (threshold {comparator} {threshold})" if comparator else f" (threshold {threshold})"
        yield Finding(
            severity=_SONAR_CONDITION_SEVERITY[status],
            source_tool='sonarqube',
            subject_id=metric,
            title=title,
        )


def _normalize_npm_audit(data: Any) -> Iterator[Finding]:
    if not isinstance(data, dict):
        raise ReportParseError('npm_audit', "expected a JSON object")

    vulnerabilities = data.get('vulnerabilities') or {}
    if not isinstance(vulnerabilities, dict):
        raise ReportParseError('npm_audit', "'vulnerabilities' is not an object")

    for name, vuln in vulnerabilities.items():
        if not isinstance(vuln, dict):
            continue
        fix = vuln.get('fixAvailable', False)
        subject = vuln.get('name') or name
        via = [v['title'] for v in _objects(vuln.get('via')) if v.get('title')]
        yield Finding(
            severity=normalize_severity(vuln.get('severity'), 'npm_audit', subject),
            source_tool='npm_audit',
            subject_id=subject,
            fix_available=bool(fix),
            fix_version=_fix_version(fix),
            title=via[0] if via else f"vulnerable range {vuln.get('range', '*')}",
        )


def _normalize_snyk(data: Any) -> Iterator[Finding]:
    # Monorepo runs (--all-projects) emit one object per project
    projects = data if isinstance(data, list) else [data]

    for project in projects:
        if not isinstance(project, dict):
            raise ReportParseError('snyk', "expected a JSON object per project")
        if project.get('ok') is False and 'error' in project and 'vulnerabilities' not in project:
            raise ReportParseError('snyk', str(project['error']))

        for vuln in _objects(project.get('vulnerabilities')):
            package = vuln.get('packageName') or vuln.get('moduleName') or 'unknown'
            subject = f"{package}@{vuln.get('version', '?')}"
            if vuln.get('id'):
                subject += f" ({vuln['id']})"
            fixed_in = vuln.get('fixedIn')
            if not isinstance(fixed_in, list):
                fixed_in = []
            yield Finding(
                severity=normalize_severity(vuln.get('severity'), 'snyk', subject),
                source_tool='snyk',
                subject_id=subject,
                fix_available=bool(vuln.get('isUpgradable') or vuln.get('isPatchable') or fixed_in),
                fix_version=str(fixed_in[0]) if fixed_in else None,
                title=vuln.get('title', ''),
            )


def _normalize_trivy(data: Any) -> Iterator[Finding]:
    if not isinstance(data, dict):
        raise ReportParseError('trivy', "expected a JSON object")

    for result in _objects(data.get('Results')):
        for vuln in _objects(result.get('Vulnerabilities')):
            subject = f"{vuln.get('PkgName', 'unknown')}@{vuln.get('InstalledVersion', '?')}"
            if vuln.get('VulnerabilityID'):
                subject = f"{vuln['VulnerabilityID']} {subject}"
            fixed = vuln.get('FixedVersion') or None
            yield Finding(
                severity=normalize_severity(vuln.get('Severity'), 'trivy', subject),
                source_tool='trivy',
                subject_id=subject,
                fix_available=fixed is not None,
                fix_version=fixed,
                title=vuln.get('Title', ''),
            )


_NORMALIZERS: Dict[str, Callable[[Any], Iterator[Finding]]] = {
    'gitleaks': _normalize_gitleaks,
    'sonarqube': _normalize_sonarqube,
    'npm_audit': _normalize_npm_audit,
    'snyk': _normalize_snyk,
    'trivy': _normalize_trivy,
}

SUPPORTED_TOOLS = tuple(_NORMALIZERS)


def normalize(raw_report: Union[bytes, str, None], source_tool: str) -> List[Finding]:
    """Convert one tool's native JSON report into findings, in native order.

    An empty or missing report yields no findings. A report that is not
    valid JSON raises :class:`ReportParseError`.
    """
    try:
        parser = _NORMALIZERS[source_tool]
    except KeyError:
        raise ValueError(f"Unsupported scanner tool: {source_tool}") from None

    if raw_report is None:
        return []
    if isinstance(raw_report, bytes):
        try:
            raw_report = raw_report.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ReportParseError(source_tool, f"not UTF-8: {e}") from e
    if not raw_report.strip():
        return []

    try:
        data = json.loads(raw_report)
    except json.JSONDecodeError as e:
        raise ReportParseError(source_tool, str(e)) from e

    findings = list(parser(data))

    logger.info(
        "Normalized scanner findings",
        tool=source_tool,
        total_findings=len(findings),
    )

    return findings
