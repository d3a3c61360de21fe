# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
A sequencer for ordered, dependent steps against a remote service.

A `Workflow` runs its steps one after another, each awaiting the previous one, and
passes them a single `RunContext` on which steps leave values for later steps. The
first step that fails stops the run; nothing is compensated or rolled back.

A step may carry a `RetryPolicy`. Retries re-run the same step right away, without
backoff, and only for the listed exception types. A step that still fails after
its last attempt raises `RetryExhaustedError`, so running out of attempts can never
be mistaken for success.

Examples:
    Two dependent steps, the second retried once on timeouts::

        async def create(context):
            context.results["token_id"] = await mint()

        async def approve(context):
            await list_for_sale(context.results["token_id"])

        workflow = Workflow(
            "sale",
            [
                Step("create", create),
                Step("approve", approve, RetryPolicy(2, (TransientNetworkError,))),
            ],
        )
        report = await workflow.run(RunContext())
"""

from __future__ import annotations

import asyncio
import logging
import time
import unittest
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

DEFAULT_TIMEOUT_IN_SECONDS = 120.0

StepAction = Callable[["RunContext"], Awaitable[Any]]


class RetryPolicy:
    """Re-run a step up to `attempts` times in total while it raises one of
    `retry_on`."""

    attempts: int
    retry_on: Tuple[Type[BaseException], ...]

    def __init__(self, attempts: int, retry_on: Tuple[Type[BaseException], ...]):
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")
        self.attempts = attempts
        self.retry_on = retry_on

    def __str__(self) -> str:
        names = ", ".join(error.__name__ for error in self.retry_on)
        return f"RetryPolicy[attempts: {self.attempts}, retry_on: ({names})]"


class Step:
    name: str
    action: StepAction
    retry: Optional[RetryPolicy]

    def __init__(self, name: str, action: StepAction, retry: Optional[RetryPolicy] = None):
        self.name = name
        self.action = action
        self.retry = retry

    def __str__(self) -> str:
        return f"Step[{self.name}]"


class RunContext:
    """State shared by the steps of one run.

    Attributes:
        results: The value each completed step returned, by step name.
        current_step: Name of the step being run, None outside a run.
    """

    results: Dict[str, Any]
    current_step: Optional[str]

    def __init__(self):
        self.results = {}
        self.current_step = None


class StepReport:
    name: str
    attempts: int
    duration: float

    def __init__(self, name: str, attempts: int, duration: float):
        self.name = name
        self.attempts = attempts
        self.duration = duration

    def __str__(self) -> str:
        return f"{self.name}: {self.attempts} attempt(s) in {self.duration:.2f}s"


class WorkflowReport:
    workflow: str
    steps: List[StepReport]

    def __init__(self, workflow: str):
        self.workflow = workflow
        self.steps = []

    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def __str__(self) -> str:
        lines = [f"{self.workflow}: {len(self.steps)} step(s) completed"]
        lines.extend(f"  {step}" for step in self.steps)
        return "\n".join(lines)


class Workflow:
    name: str
    steps: List[Step]

    def __init__(self, name: str, steps: List[Step]):
        names = [step.name for step in steps]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate step names: {sorted(duplicates)}")
        self.name = name
        self.steps = steps

    async def run(
        self,
        context: RunContext,
        timeout: Optional[float] = DEFAULT_TIMEOUT_IN_SECONDS,
    ) -> WorkflowReport:
        """Run every step in order.

        Args:
            timeout: Ceiling in seconds for the whole run, None for no limit.

        Raises:
            StepFailed: When a step fails; `cause` holds its exception, which is a
                `RetryExhaustedError` if the step ran out of retries.
            WorkflowTimeoutError: When the run exceeds `timeout`.
        """
        report = WorkflowReport(self.name)
        if timeout is None:
            await self._run(context, report)
            return report
        try:
            await asyncio.wait_for(self._run(context, report), timeout)
        except asyncio.TimeoutError as e:
            logging.error(
                f"{self.name} timed out after {timeout}s in {context.current_step}"
            )
            raise WorkflowTimeoutError(
                f"{self.name} did not finish within {timeout}s",
                timeout,
                context.current_step,
                report,
            ) from e
        return report

    async def _run(self, context: RunContext, report: WorkflowReport):
        for index, step in enumerate(self.steps):
            context.current_step = step.name
            logging.info(f"[{index + 1}/{len(self.steps)}] {step.name}")
            start = time.monotonic()
            try:
                attempts, result = await self._run_step(step, context)
            except Exception as e:
                logging.error(f"{step.name} failed: {e}")
                raise StepFailed(
                    f"Step {step.name} failed: {e}", step.name, e, report
                ) from e
            context.results[step.name] = result
            report.steps.append(StepReport(step.name, attempts, time.monotonic() - start))
        context.current_step = None

    async def _run_step(self, step: Step, context: RunContext) -> Tuple[int, Any]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return attempt, await step.action(context)
            except Exception as e:
                if step.retry is None or not isinstance(e, step.retry.retry_on):
                    raise
                if attempt >= step.retry.attempts:
                    raise RetryExhaustedError(
                        f"{step.name} failed {attempt} time(s), last error: {e}",
                        attempt,
                        e,
                    ) from e
                logging.warning(
                    f"{step.name} attempt {attempt}/{step.retry.attempts} failed: {e}"
                )


class StepFailed(Exception):
    """A step raised; the run stopped there"""

    step_name: str
    cause: Exception
    report: WorkflowReport

    def __init__(
        self, message: str, step_name: str, cause: Exception, report: WorkflowReport
    ):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.step_name = step_name
        self.cause = cause
        self.report = report


class RetryExhaustedError(Exception):
    """A retried step failed on every attempt"""

    attempts: int
    last_error: Exception

    def __init__(self, message: str, attempts: int, last_error: Exception):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class WorkflowTimeoutError(Exception):
    timeout: float
    step_name: Optional[str]
    report: WorkflowReport

    def __init__(
        self,
        message: str,
        timeout: float,
        step_name: Optional[str],
        report: WorkflowReport,
    ):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.timeout = timeout
        self.step_name = step_name
        self.report = report


class Flaky(Exception):
    pass


class Test(unittest.IsolatedAsyncioTestCase):
    def recorder(self, name: str, failures: Optional[List[Exception]] = None):
        pending = list(failures or [])

        async def action(context: RunContext):
            self.calls.append(name)
            if pending:
                raise pending.pop(0)
            return name.upper()

        return action

    def setUp(self):
        self.calls: List[str] = []

    async def test_runs_in_order(self):
        async def second(context: RunContext):
            self.calls.append("second")
            return context.results["first"] + "!"

        workflow = Workflow(
            "ordered", [Step("first", self.recorder("first")), Step("second", second)]
        )
        context = RunContext()
        report = await workflow.run(context)
        self.assertEqual(self.calls, ["first", "second"])
        self.assertEqual(context.results, {"first": "FIRST", "second": "FIRST!"})
        self.assertEqual(report.step_names(), ["first", "second"])
        self.assertIsNone(context.current_step)

    async def test_failure_aborts(self):
        workflow = Workflow(
            "abort",
            [
                Step("one", self.recorder("one")),
                Step("two", self.recorder("two", [ValueError("boom")])),
                Step("three", self.recorder("three")),
            ],
        )
        with self.assertRaises(StepFailed) as cm:
            await workflow.run(RunContext())
        self.assertEqual(self.calls, ["one", "two"])
        self.assertEqual(cm.exception.step_name, "two")
        self.assertIsInstance(cm.exception.cause, ValueError)
        self.assertEqual(cm.exception.report.step_names(), ["one"])

    async def test_retry_then_succeed(self):
        workflow = Workflow(
            "retry",
            [Step("approve", self.recorder("approve", [Flaky()]), RetryPolicy(2, (Flaky,)))],
        )
        with self.assertLogs(level="WARNING"):
            report = await workflow.run(RunContext())
        self.assertEqual(self.calls, ["approve", "approve"])
        self.assertEqual(report.steps[0].attempts, 2)

    async def test_retry_exhausted(self):
        workflow = Workflow(
            "retry",
            [
                Step(
                    "approve",
                    self.recorder("approve", [Flaky(), Flaky(), Flaky()]),
                    RetryPolicy(2, (Flaky,)),
                ),
                Step("after", self.recorder("after")),
            ],
        )
        with self.assertRaises(StepFailed) as cm:
            await workflow.run(RunContext())
        cause = cm.exception.cause
        self.assertIsInstance(cause, RetryExhaustedError)
        self.assertEqual(cause.attempts, 2)
        self.assertIsInstance(cause.last_error, Flaky)
        self.assertEqual(self.calls, ["approve", "approve"])

    async def test_other_errors_not_retried(self):
        workflow = Workflow(
            "retry",
            [
                Step(
                    "approve",
                    self.recorder("approve", [KeyError("x")]),
                    RetryPolicy(3, (Flaky,)),
                )
            ],
        )
        with self.assertRaises(StepFailed) as cm:
            await workflow.run(RunContext())
        self.assertIsInstance(cm.exception.cause, KeyError)
        self.assertEqual(self.calls, ["approve"])

    async def test_timeout(self):
        async def slow(context: RunContext):
            await asyncio.sleep(10)

        workflow = Workflow("slow", [Step("fast", self.recorder("fast")), Step("slow", slow)])
        with self.assertRaises(WorkflowTimeoutError) as cm:
            await workflow.run(RunContext(), timeout=0.05)
        self.assertEqual(cm.exception.step_name, "slow")
        self.assertEqual(cm.exception.report.step_names(), ["fast"])

    def test_invalid_definitions(self):
        with self.assertRaises(ValueError):
            RetryPolicy(0, (Flaky,))
        with self.assertRaises(ValueError):
            Workflow("dup", [Step("a", self.recorder("a")), Step("a", self.recorder("a"))])


if __name__ == "__main__":
    unittest.main()
