"""
Plain-Text Report

The body used for mail notifications and cron log files.
"""

import socket
from datetime import datetime
from typing import List, Optional

from ..main import BatchReport, ValidationResult, ValidationStatus

RULE = "=" * 40
MAX_MISMATCH_LINES = 20


def format_duration(seconds: float) -> str:
    """0h 12m 5s"""
    total = int(seconds)
    return f"{total // 3600}h {total % 3600 // 60}m {total % 60}s"


def report_subject(passed: bool, prefix: str = "[TrueNAS]") -> str:
    status = "PASSED" if passed else "FAILED"
    return f"{prefix} Cloud Sync Validation {status}"


def report_header(host: Optional[str] = None, when: Optional[datetime] = None) -> str:
    host = host or socket.gethostname()
    when = when or datetime.now()
    return "\n".join([
        "Cloud Sync Validation Report",
        f"Host: {host}",
        f"Date: {when.strftime('%a %b %d %H:%M:%S %Y')}",
        "",
    ])


def _label(result: ValidationResult) -> str:
    return result.description or f"task {result.task_id}"


def _failure_lines(result: ValidationResult) -> List[str]:
    lines = []
    if result.status == ValidationStatus.ERROR:
        lines.append(f"    {result.error_kind}: {result.error}")
        return lines

    for mismatch in result.mismatches[:MAX_MISMATCH_LINES]:
        lines.append(f"    {mismatch.describe()}")
    hidden = len(result.mismatches) - MAX_MISMATCH_LINES
    if hidden > 0:
        lines.append(f"    ... and {hidden} more")
    return lines


def render_report(report: BatchReport) -> str:
    """Render a batch report in the layout operators know from the cron mails"""
    lines = [
        RULE,
        "VALIDATION REPORT",
        RULE,
        f"Mode: {report.mode.value}",
        f"Duration: {format_duration(report.total_duration_s)}",
        f"Total tasks: {report.total}",
        f"Passed: {report.passed_count}",
        f"Failed: {report.failed_count}",
        "",
    ]

    if report.total == 0:
        lines.append("No encrypted cloud sync tasks found")

    passed = [r for r in report.results if r.passed]
    failed = [r for r in report.results if not r.passed]

    if passed:
        lines.append("✓ Passed:")
        lines.extend(f"  - {_label(r)}" for r in passed)

    if failed:
        lines.append("")
        lines.append("✗ Failed:")
        for r in failed:
            lines.append(f"  - {_label(r)} ({r.status.value})")
            lines.extend(_failure_lines(r))

    return "\n".join(lines) + "\n"
