"""
Console Output Formatter

Colored terminal output for interactive runs.
"""

import sys
from typing import List, Optional, TextIO

from .base import BaseFormatter, OutputLevel
from .report import format_duration, render_report
from ..main import BatchReport, MismatchKind, SyncTask, ValidationMode, ValidationResult, ValidationStatus


class ConsoleFormatter(BaseFormatter):
    """
    Console formatter with colored output.

    Uses ANSI escape codes in terminal environments and falls back to plain
    text when stdout is not a TTY.
    """

    COLORS = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "green": "\033[32m",
        "yellow": "\033[33m",
        "red": "\033[31m",
        "cyan": "\033[36m",
    }

    MISMATCH_COLORS = {
        MismatchKind.MISSING: "yellow",
        MismatchKind.MISMATCH: "red",
        MismatchKind.SIZE: "red",
        MismatchKind.ERROR: "red",
    }

    def __init__(
        self,
        level: OutputLevel = OutputLevel.NORMAL,
        use_colors: bool = True,
        stream: Optional[TextIO] = None,
    ):
        super().__init__(level)
        self.stream = stream or sys.stdout
        self.use_colors = use_colors and hasattr(self.stream, "isatty") and self.stream.isatty()

    def _c(self, color: str, text: str) -> str:
        """Apply color to text"""
        if self.use_colors:
            return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"
        return text

    def _print(self, text: str = "") -> None:
        print(text, file=self.stream)

    def task_list(self, tasks: List[SyncTask]) -> None:
        self._print("Cloud Sync Tasks:")
        self._print("=================")
        for task in tasks:
            encrypted = self._c("green", "true") if task.encryption else self._c("yellow", "false")
            self._print(f"  {task.id}) {task.description}")
            self._print(f"     Local: {task.path}")
            self._print(f"     Encrypted: {encrypted}")
            if self.level >= OutputLevel.VERBOSE:
                self._print(f"     Remote folder: {task.remote_folder or '/'}")
                self._print(f"     Enabled: {task.enabled}")
            self._print()

    def task_started(self, task_id: int, index: int, total: int) -> None:
        if self.level < OutputLevel.NORMAL:
            return
        self._print()
        self._print(self._c("bold", "=" * 40))
        self._print(f"[{index}/{total}] Validating task {self._c('cyan', str(task_id))}")
        self._print(self._c("bold", "=" * 40))

    def task_result(self, result: ValidationResult) -> None:
        label = result.description or f"task {result.task_id}"
        duration = self._c("dim", f" ({format_duration(result.duration_s)})")

        if result.mode == ValidationMode.LIST and result.status == ValidationStatus.PASSED:
            self._print("Remote encrypted files (decrypted view):")
            for entry in result.entries:
                self._print(f"  {entry}")
            if not result.entries:
                self._print(self._c("dim", "  (remote is empty)"))
            self._print(f"{self._c('green', '✓')} {label}: connection and decryption OK{duration}")
            return

        if result.mode == ValidationMode.SAMPLE and result.status == ValidationStatus.PASSED:
            self._print(
                f"{self._c('green', '✓')} {label}: successfully decrypted "
                f"{result.files_decrypted} file(s){duration}"
            )
            return

        if result.status == ValidationStatus.PASSED:
            what = "all files verified bit-perfect" if result.mode == ValidationMode.FULL \
                else "all file sizes match (not bit-perfect)"
            self._print(f"{self._c('green', '✓')} {label}: {what} ({result.files_checked} files){duration}")
            return

        if result.status == ValidationStatus.ERROR:
            self._print(f"{self._c('red', '✗')} {label}: {self._c('red', result.error_kind or 'error')}{duration}")
            self._print(f"  {result.error}")
            return

        self._print(
            f"{self._c('red', '✗')} {label}: verification failed - "
            f"{len(result.mismatches)} file(s) differ or are missing{duration}"
        )
        limit = None if self.level >= OutputLevel.VERBOSE else 20
        for mismatch in result.mismatches[:limit]:
            color = self.MISMATCH_COLORS.get(mismatch.kind, "dim")
            self._print(f"  {self._c(color, '-')} {mismatch.describe()}")
        if limit is not None and len(result.mismatches) > limit:
            self._print(self._c("dim", f"  ... and {len(result.mismatches) - limit} more (use -v)"))

    def summary(self, report: BatchReport) -> None:
        self._print()
        self._print(render_report(report).rstrip("\n"))
        status = self._c("green", "PASSED") if report.passed else self._c("red", "FAILED")
        self._print()
        self._print(f"Overall: {status}")
