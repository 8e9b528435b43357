"""Sequential runner - Executes workflow steps one at a time, in declaration order."""

import logging
import time
from datetime import datetime

from ..deps import CommandCache, check_commands
from ..errors import HistoryWriteError, SecurityViolationError, WorkflowError
from ..history import HistoryEntry, HistoryStore, StepResult
from ..workflow import RunStatus, StepStatus, Workflow, WorkflowStore
from .base import ExecutionContext, RunnerCallbacks, RunnerResult
from .executor import StepExecutor, evaluate_condition

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class SequentialRunner:
    """
    Sequential workflow runner.

    Runs steps strictly in order, stopping at the first failure unless the
    step sets continueOnError. Any failed step fails the run; only a stopping
    failure triggers rollback. Rollback steps run best-effort: each is
    attempted even if earlier ones fail.
    Uses callbacks for progress reporting without coupling to UI.
    Every run leaves one record in the history store.
    """

    def __init__(
        self,
        store: WorkflowStore,
        history: HistoryStore | None = None,
        executor: StepExecutor | None = None,
        dry_run: bool = False,
        verbose: bool = False,
        command_cache: CommandCache | None = None,
    ):
        """
        Initialize the runner.

        Args:
            store: Workflow store used by execute_workflow()
            history: History store (default: the store's .history directory)
            executor: Step executor (default: no timeout, log-only audit)
            dry_run: If True, validate and report commands without running them
            verbose: If True, steps inherit the terminal's stdio
            command_cache: If given, report steps whose command is not on PATH
        """
        self.store = store
        self.history = history if history is not None else HistoryStore(store.history_dir)
        self.executor = executor or StepExecutor()
        self.dry_run = dry_run
        self.verbose = verbose
        self.command_cache = command_cache

    def execute_workflow(
        self,
        name: str,
        variables: dict[str, str] | None = None,
        callbacks: RunnerCallbacks | None = None,
    ) -> RunnerResult:
        """
        Load, validate and run a stored workflow.

        Load and validation errors propagate before any step runs.
        """
        workflow = self.store.load(name)
        return self.run(workflow, name=name, variables=variables, callbacks=callbacks)

    def run(
        self,
        workflow: Workflow,
        name: str | None = None,
        variables: dict[str, str] | None = None,
        callbacks: RunnerCallbacks | None = None,
    ) -> RunnerResult:
        """
        Execute a loaded workflow.

        Args:
            workflow: The workflow to execute
            name: Name recorded in history (default: workflow.name)
            variables: Caller-supplied variables, overriding workflow defaults
            callbacks: Optional callbacks for progress reporting

        Returns:
            RunnerResult with execution summary
        """
        cb = callbacks or RunnerCallbacks()
        run_name = name or workflow.name
        context = ExecutionContext.for_workflow(workflow, variables)
        result = RunnerResult(success=True, workflow_name=run_name, status=RunStatus.RUNNING)
        total = len(workflow.steps)
        stopped = False

        if cb.on_workflow_start:
            cb.on_workflow_start(workflow, total)

        if self.command_cache is not None:
            self._report_missing_commands(workflow, cb)

        logger.info("Running workflow %s (%d steps, dry_run=%s)", run_name, total, self.dry_run)

        for index, step in enumerate(workflow.steps):
            if not evaluate_condition(step.condition, context.variables):
                context.step_statuses[index] = StepStatus.SKIPPED
                result.steps_skipped += 1
                logger.info("Skipped step %s (condition not met)", step.name)
                if cb.on_step_skipped:
                    cb.on_step_skipped(index, step.name)
                continue

            if cb.on_step_start:
                cb.on_step_start(index, total, step.name)

            context.step_statuses[index] = StepStatus.RUNNING
            step_result, fatal = self._execute_step(index, step, context, cb)
            context.results.append(step_result)

            if step_result.success:
                context.step_statuses[index] = StepStatus.SUCCEEDED
                if step.capture:
                    context.variables[step.capture] = step_result.output
                if cb.on_step_complete:
                    cb.on_step_complete(index, step_result)
                continue

            context.step_statuses[index] = StepStatus.FAILED
            if cb.on_step_complete:
                cb.on_step_complete(index, step_result)

            result.success = False
            result.failed_step_index = index
            result.failed_step = step.name
            result.failed_exit_code = step_result.exit_code

            if step.continue_on_error and not fatal:
                logger.warning("Step %s failed, continuing (continueOnError)", step.name)
                result.errors.append(f"Step '{step.name}' failed (continued)")
                continue

            stopped = True
            break

        if not result.success:
            if stopped and not self.dry_run:
                context.status = RunStatus.ROLLING_BACK
                self._rollback(workflow, context, result, cb)
            context.status = RunStatus.FAILED
        else:
            context.status = RunStatus.SUCCEEDED

        result.status = context.status
        result.results = list(context.results)
        end_time = datetime.now()
        result.duration_ms = int((end_time - context.start_time).total_seconds() * 1000)

        self._record_history(workflow, run_name, context, result, end_time)

        if cb.on_workflow_complete:
            cb.on_workflow_complete(result)

        return result

    def _execute_step(
        self,
        index: int,
        step,
        context: ExecutionContext,
        cb: RunnerCallbacks,
    ) -> tuple[StepResult, bool]:
        """Run one main step; returns its result and whether the failure is fatal."""
        started = time.monotonic()
        try:
            outcome = self.executor.execute(
                step,
                context,
                verbose=self.verbose,
                dry_run=self.dry_run,
                callbacks=cb,
            )
        except SecurityViolationError as e:
            logger.error("%s", e)
            if cb.on_step_error:
                cb.on_step_error(index, step.name, str(e))
            return StepResult(step=step.name, success=False, duration_ms=_elapsed_ms(started), output=str(e)), True
        except WorkflowError as e:
            logger.error("Step %s failed: %s", step.name, e)
            if cb.on_step_error:
                cb.on_step_error(index, step.name, str(e))
            return StepResult(step=step.name, success=False, duration_ms=_elapsed_ms(started), output=str(e)), False

        if not outcome.success:
            logger.error("Step %s failed with exit code %s", step.name, outcome.exit_code)
            if outcome.stderr:
                logger.debug("Step %s stderr: %s", step.name, outcome.stderr)

        return (
            StepResult(
                step=step.name,
                success=outcome.success,
                duration_ms=_elapsed_ms(started),
                output=outcome.output,
                exit_code=outcome.exit_code,
            ),
            False,
        )

    def _rollback(
        self,
        workflow: Workflow,
        context: ExecutionContext,
        result: RunnerResult,
        cb: RunnerCallbacks,
    ) -> None:
        """Run every rollback step; failures are logged and never stop the sequence."""
        if not workflow.rollback:
            logger.info("No rollback steps defined for %s", result.workflow_name)
            return

        total = len(workflow.rollback)
        result.rolled_back = True
        logger.warning("Rolling back %s (%d steps)", result.workflow_name, total)

        if cb.on_rollback_start:
            cb.on_rollback_start(total)

        for index, step in enumerate(workflow.rollback):
            if not evaluate_condition(step.condition, context.variables):
                continue

            if cb.on_rollback_step:
                cb.on_rollback_step(index, total, step.name)

            try:
                outcome = self.executor.execute(step, context, verbose=self.verbose, callbacks=cb)
            except Exception as e:
                message = str(e)
            else:
                if outcome.success:
                    continue
                message = f"exited with code {outcome.exit_code}"

            result.rollback_failures += 1
            logger.warning("Rollback step %s failed: %s", step.name, message)
            if cb.on_rollback_step_failed:
                cb.on_rollback_step_failed(step.name, message)

    def _record_history(
        self,
        workflow: Workflow,
        run_name: str,
        context: ExecutionContext,
        result: RunnerResult,
        end_time: datetime,
    ) -> None:
        entry = HistoryEntry(
            workflow=run_name,
            start_time=context.start_time,
            end_time=end_time,
            duration_ms=result.duration_ms,
            success=result.success,
            steps_executed=len(context.results),
            results=list(context.results),
            workflow_hash=workflow.integrity_hash,
            failed_step=result.failed_step,
            rolled_back=result.rolled_back,
        )
        try:
            result.history_path = self.history.record(entry)
        except HistoryWriteError as e:
            logger.error("%s", e)
            result.errors.append(str(e))

    def _report_missing_commands(self, workflow: Workflow, cb: RunnerCallbacks) -> None:
        for command, path in check_commands(workflow, self.command_cache).items():
            if path is None:
                message = f"Command '{command}' was not found on PATH"
                logger.warning(message)
                if cb.on_warning:
                    cb.on_warning(message)
