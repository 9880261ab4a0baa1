"""Automation run controller.

Executes a blueprint's top-level steps in order for one trigger, aggregates
their results and errors, and records the run in a RunStore. ``run`` does not raise for step or store
failures: callers receive an AutomationExecutionResult. Cancellation is
recorded as a failed run and then re-raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from blueprint_engine.blueprint.analyzer import BlueprintAnalyzer
from blueprint_engine.blueprint.models import Blueprint, Step
from blueprint_engine.config import RunLoggerAdapter
from blueprint_engine.errors import RunSetupFailed
from blueprint_engine.runs import InMemoryRunStore, RunRecord, RunStatus, RunStore

from .context import ExecutionContext
from .step_executor import StepExecutor

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Result of executing a single top-level step."""

    step_id: str
    step_type: str
    success: bool
    output: Any = None
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "stepId": self.step_id,
            "stepType": self.step_type,
            "success": self.success,
            "durationMs": self.duration_ms,
        }
        if self.success:
            data["output"] = self.output
        else:
            data["error"] = self.error
        return data


@dataclass
class AutomationExecutionResult:
    """Outcome of one automation run."""

    success: bool
    execution_id: str
    duration: int = 0
    results: list[StepResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "executionId": self.execution_id,
            "duration": self.duration,
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
        }


class AutomationRunner:
    """Runs blueprints and persists one RunRecord per run.

    The runner holds no per-run state, so one instance can serve many
    concurrent runs.

    Args:
        store: Where RunRecords are written
        executor: Step executor (a default one is built from settings)
        analyzer: Structural analyzer used for debug diagnostics
    """

    def __init__(
        self,
        store: RunStore,
        executor: StepExecutor | None = None,
        analyzer: BlueprintAnalyzer | None = None,
    ):
        self.store = store
        self.executor = executor or StepExecutor()
        self.analyzer = analyzer or BlueprintAnalyzer()

    async def aclose(self) -> None:
        await self.executor.aclose()

    async def run(
        self,
        automation_id: str,
        blueprint: Blueprint | Mapping,
        trigger_data: Any = None,
    ) -> AutomationExecutionResult:
        """Execute *blueprint* for one trigger.

        Steps run sequentially in declaration order. A failing step halts the
        run unless it declares ``stopOnError: false``.
        If the run is cancelled, its record is marked failed before the
        CancelledError propagates.
        """
        execution_id = str(uuid.uuid4())
        started = time.monotonic()
        created_at = datetime.now(UTC)
        payload = trigger_data if trigger_data is not None else {}
        log = RunLoggerAdapter(
            logger, {"execution_id": execution_id, "automation_id": automation_id}
        )

        steps: list[StepResult] = []
        errors: list[str] = []
        cancelled: asyncio.CancelledError | None = None

        log.info(f"Starting automation {automation_id} run {execution_id}")

        try:
            self.store.upsert(
                RunRecord(
                    id=execution_id,
                    automation_id=automation_id,
                    status=RunStatus.RUNNING,
                    trigger_data=payload,
                    created_at=created_at,
                    updated_at=created_at,
                )
            )
            parsed = Blueprint.from_dict(blueprint)
            self._log_structure(parsed, execution_id)

            context = ExecutionContext.create(
                execution_id, automation_id, parsed.variables, trigger_data
            )
            for step in parsed.steps:
                result = await self._execute_step(step, context)
                steps.append(result)
                if result.success:
                    continue
                errors.append(f"Step {step.id} failed: {result.error}")
                if step.stop_on_error:
                    log.warning(f"Halting run {execution_id} after step {step.id} failed")
                    break
        except asyncio.CancelledError as e:
            log.warning(f"Automation {automation_id} run {execution_id} cancelled")
            errors.append("Automation execution cancelled")
            cancelled = e
        except Exception as e:
            failure = RunSetupFailed(str(e), cause=e)
            log.error(
                f"Automation {automation_id} run {execution_id} failed: {failure.message}"
            )
            errors.append(f"Automation execution failed: {failure.message}")

        duration_ms = int((time.monotonic() - started) * 1000)
        results = [r for r in steps if r.success]

        try:
            self.store.upsert(
                RunRecord(
                    id=execution_id,
                    automation_id=automation_id,
                    status=RunStatus.FAILED if errors else RunStatus.COMPLETED,
                    trigger_data=payload,
                    duration_ms=duration_ms,
                    details_log={
                        "steps": [r.to_dict() for r in steps],
                        "results": [r.to_dict() for r in results],
                        "errors": list(errors),
                        "execution_time": duration_ms,
                    },
                    created_at=created_at,
                )
            )
        except Exception as e:
            failure = RunSetupFailed(str(e), cause=e)
            log.error(
                f"Could not record final state of run {execution_id}: {failure.message}"
            )
            errors.append(f"Automation execution failed: {failure.message}")

        if cancelled is not None:
            raise cancelled

        success = not errors
        log.info(
            f"Automation {automation_id} run {execution_id} "
            f"{'completed' if success else 'failed'} in {duration_ms}ms",
            extra={"status": "completed" if success else "failed"},
        )
        return AutomationExecutionResult(
            success=success,
            execution_id=execution_id,
            duration=duration_ms,
            results=results,
            errors=errors,
        )

    async def _execute_step(self, step: Step, context: ExecutionContext) -> StepResult:
        start = time.monotonic()
        try:
            output = await self.executor.execute(step, context)
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.warning(
                f"Step {step.id} failed: {e}",
                extra={"execution_id": context.execution_id, "step_id": step.id},
            )
            return StepResult(
                step_id=step.id,
                step_type=step.type,
                success=False,
                error=str(e),
                duration_ms=duration_ms,
            )
        return StepResult(
            step_id=step.id,
            step_type=step.type,
            success=True,
            output=output,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    def _log_structure(self, blueprint: Blueprint, execution_id: str) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        stats = self.analyzer.analyze(blueprint)
        if stats:
            logger.debug(f"Run {execution_id} blueprint structure: {stats.to_dict()}")


async def run_automation(
    automation_id: str,
    blueprint: Blueprint | Mapping,
    trigger_data: Any = None,
    store: RunStore | None = None,
    executor: StepExecutor | None = None,
) -> AutomationExecutionResult:
    """Run a blueprint once with a throwaway runner.

    Uses an InMemoryRunStore when no store is given. An executor created here
    is closed before returning.
    """
    runner = AutomationRunner(store if store is not None else InMemoryRunStore(), executor)
    try:
        return await runner.run(automation_id, blueprint, trigger_data)
    finally:
        if executor is None:
            await runner.aclose()
