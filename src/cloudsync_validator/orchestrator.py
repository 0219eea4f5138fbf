"""
Cloud Sync Validator - Core Orchestration Logic

Resolves a task into a remote definition, runs the chosen verification mode
and, for batch runs, aggregates the results of every encrypted task.
Tasks run one at a time; parallelism only happens inside the engine.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .engines.base import VerificationEngine
from .errors import NotEncryptedError, NotFoundError, ValidatorError
from .logging_config import task_context
from .main import (
    BatchReport,
    SyncTask,
    ValidationMode,
    ValidationResult,
    ValidationStatus,
    ValidatorConfig,
)
from .remote import RemoteDefinition, RemoteDefinitionBuilder

logger = logging.getLogger(__name__)


class CloudSyncValidator:
    """
    Validates Cloud Sync tasks against their encrypted remote copies.

    `fetcher` is anything with the TrueNASClient lookup methods
    (get_task, get_credential, list_encrypted_task_ids).

    Events: task.started(task_id, index, total), task.completed(result).
    """

    def __init__(
        self,
        fetcher: Any,
        builder: RemoteDefinitionBuilder,
        engine: VerificationEngine,
        config: Optional[ValidatorConfig] = None,
    ):
        self.fetcher = fetcher
        self.builder = builder
        self.engine = engine
        self.config = config or ValidatorConfig()
        self._event_handlers: Dict[str, List[Callable]] = {}

    # =========================================================================
    # Single Task
    # =========================================================================

    async def validate_task(self, task_id: int, mode: ValidationMode) -> ValidationResult:
        """
        Validate one task. Errors propagate to the caller.
        """
        started = time.perf_counter()
        task = await self.fetcher.get_task(task_id)
        result = await self._validate(task, mode)
        result.duration_s = time.perf_counter() - started
        return result

    async def _validate(self, task: SyncTask, mode: ValidationMode) -> ValidationResult:
        if not task.encryption:
            raise NotEncryptedError(
                f"Task {task.id} ({task.description}) is not encrypted; "
                "use a plain rclone check instead"
            )
        if task.credential_id is None:
            raise NotFoundError(f"Task {task.id} has no credential attached")

        with task_context(task.id):
            credential = await self.fetcher.get_credential(task.credential_id)

            logger.info(f"Validating task {task.id}: {task.description} ({mode.value})")
            logger.info(f"Local path: {task.path}")

            # obscure shells out to rclone, so building blocks
            definition = await asyncio.to_thread(self.builder.build, task, credential)
            # The definition holds obscured secrets; it is gone once this block exits
            with definition:
                result = await self._dispatch(task, definition, mode)

        if result.passed:
            logger.info(f"Task {task.id} passed ({mode.value})")
        else:
            logger.error(f"Task {task.id} failed: {len(result.mismatches)} file(s) differ or are missing")
        return result

    async def _dispatch(
        self,
        task: SyncTask,
        definition: RemoteDefinition,
        mode: ValidationMode,
    ) -> ValidationResult:
        result = ValidationResult(
            task_id=task.id,
            description=task.description,
            mode=mode,
            status=ValidationStatus.PASSED,
        )

        if mode == ValidationMode.LIST:
            result.entries = await self.engine.list(definition, limit=self.config.list_limit)
            result.files_checked = len(result.entries)
        elif mode == ValidationMode.SAMPLE:
            result.files_decrypted = await self.engine.sample(definition, self.config.sample_bytes)
            if result.files_decrypted == 0:
                logger.warning(f"Task {task.id}: remote is empty, nothing was decrypted")
        else:
            if mode == ValidationMode.QUICK:
                outcome = await self.engine.quick(definition, task.path)
            else:
                outcome = await self.engine.full(definition, task.path)
            result.mismatches = outcome.mismatches
            result.files_checked = outcome.files_checked
            if not outcome.passed:
                result.status = ValidationStatus.FAILED

        return result

    # =========================================================================
    # Batch
    # =========================================================================

    async def run_all(self, mode: ValidationMode) -> BatchReport:
        """
        Validate every encrypted task in turn.

        A failure to list tasks aborts the run. A failure while validating
        one task is recorded against that task and the run moves on.
        """
        started = time.perf_counter()
        report = BatchReport(mode=mode, started_at=datetime.now())

        task_ids = await self.fetcher.list_encrypted_task_ids()
        if not task_ids:
            logger.error("No encrypted cloud sync tasks found")

        total = len(task_ids)
        for index, task_id in enumerate(task_ids, start=1):
            await self._emit_event("task.started", task_id=task_id, index=index, total=total)
            result = await self._validate_isolated(task_id, mode)
            report.results.append(result)
            await self._emit_event("task.completed", result=result)

        report.finished_at = datetime.now()
        report.total_duration_s = time.perf_counter() - started

        logger.info(
            f"Batch finished: {report.passed_count} passed, {report.failed_count} failed "
            f"in {report.total_duration_s:.1f}s"
        )
        return report

    async def _validate_isolated(self, task_id: int, mode: ValidationMode) -> ValidationResult:
        started = time.perf_counter()
        description = ""
        try:
            task = await self.fetcher.get_task(task_id)
            description = task.description
            result = await self._validate(task, mode)
        except ValidatorError as e:
            logger.error(f"Task {task_id} error: {e}")
            result = self._error_result(task_id, description, mode, e)
        except Exception as e:
            logger.exception(f"Unexpected error validating task {task_id}")
            result = self._error_result(task_id, description, mode, e)
        result.duration_s = time.perf_counter() - started
        return result

    @staticmethod
    def _error_result(
        task_id: int,
        description: str,
        mode: ValidationMode,
        error: Exception,
    ) -> ValidationResult:
        return ValidationResult(
            task_id=task_id,
            description=description,
            mode=mode,
            status=ValidationStatus.ERROR,
            error_kind=type(error).__name__,
            error=str(error),
        )

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: str, handler: Callable) -> None:
        """Register event handler"""
        if event not in self._event_handlers:
            self._event_handlers[event] = []
        self._event_handlers[event].append(handler)

    async def _emit_event(self, event: str, **kwargs) -> None:
        for handler in self._event_handlers.get(event, []):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event, **kwargs)
                else:
                    handler(event, **kwargs)
            except Exception as e:
                logger.error(f"Event handler error: {e}")
