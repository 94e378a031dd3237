"""Notification routing for finalized runs."""

from typing import List, Optional, Tuple

from ..models.notifications import Notification, NotificationColor
from ..models.runs import FinalOutcome, PipelineRun
from .policy import DEFAULT_MAX_DETAILS, TRUNCATION_NOTE_PREFIX

_COLORS: dict[FinalOutcome, NotificationColor] = {
    'success': 'good',
    'unstable': 'warning',
    'failed': 'danger',
}


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return 'n/a'
    minutes, secs = divmod(int(round(seconds)), 60)
    return f"{minutes}m {secs}s" if minutes else f"{secs}s"


class NotificationRouter:
    """Maps a finalized run to recipient channels and rendered messages.

    Routing depends only on the final outcome and the classification:

    ========  ==============================  =================
    outcome   classification                  recipients
    ========  ==============================  =================
    success   none                            app, ops
    unstable  any                             app
    failed    app_critical / app_unstable     app
    failed    pipeline_error                  ops
    ========  ==============================  =================
    """

    def __init__(self, app_channel: str, ops_channel: str, *, max_details: int = DEFAULT_MAX_DETAILS):
        self.app_channel = app_channel
        self.ops_channel = ops_channel
        self.max_details = max_details

    def recipients(self, run: PipelineRun) -> List[str]:
        if run.final_outcome == 'success':
            return [self.app_channel, self.ops_channel]
        if run.final_outcome == 'failed' and run.classification == 'pipeline_error':
            return [self.ops_channel]
        return [self.app_channel]

    def route(self, run: PipelineRun) -> List[Tuple[str, Notification]]:
        """Return one ``(channel, message)`` pair per recipient."""
        if not run.is_finalized:
            raise RuntimeError(f"Run {run.id} is not finalized; refusing to notify")

        message = self.render(run)
        return [(channel, message) for channel in self.recipients(run)]

    def _title(self, run: PipelineRun) -> str:
        build = run.build_id or run.id
        if run.final_outcome == 'success':
            return f"Release {build} succeeded"
        if run.final_outcome == 'unstable':
            return f"Release {build} is UNSTABLE"
        if run.classification == 'pipeline_error':
            return f"Pipeline error in build {build} at {run.failing_stage}"
        return f"Release {build} FAILED at {run.failing_stage}"

    def _detail_lines(self, run: PipelineRun) -> List[str]:
        context = run.failure_context
        if context is None:
            return []

        findings = [d for d in context.details if not d.startswith(TRUNCATION_NOTE_PREFIX)]
        shown = findings[:self.max_details]
        hidden = len(findings) - len(shown) + context.truncated_count

        lines = [f"• {detail}" for detail in shown]
        if hidden:
            lines.append(f"+{hidden} more")
        return lines

    def render(self, run: PipelineRun) -> Notification:
        """Fill the message template from run fields."""
        lines = [
            f"*Build:* {run.build_id or run.id}   *Commit:* {(run.commit_ref or 'unknown')[:12]}   "
            f"*Duration:* {format_duration(run.duration_seconds)}   *Mode:* {run.mode}",
        ]

        context = run.failure_context
        if context is not None:
            lines.append(f"*Stage:* {context.stage}")
            lines.append(f"*Reason:* {context.reason}")
            if context.remediation:
                lines.append(f"*Next step:* {context.remediation}")
            lines.extend(self._detail_lines(run))
        elif run.image_uri:
            lines.append(f"*Image:* {run.image_uri}")

        if run.build_url:
            lines.append(f"*Build log:* {run.build_url}")
        if run.artifacts:
            links = ", ".join(f"<{ref}|{name}>" for name, ref in sorted(run.artifacts.items()))
            lines.append(f"*Reports:* {links}")

        return Notification(
            title=self._title(run),
            text="\n".join(lines),
            color=_COLORS[run.final_outcome],
        )
