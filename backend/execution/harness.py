"""
Runs one submission against a list of test cases
"""

import logging
import threading
from typing import Optional, Sequence

from .models import ErrorKind, ExecutionResult, TestCase, TestCaseResult, TestRunResult

logger = logging.getLogger(__name__)


def case_result(index: int, case: TestCase, result: ExecutionResult) -> TestCaseResult:
    """Compare one execution against its expected output"""
    actual = (result.output or '').strip()
    passed = result.success and actual == case.expectedOutput.strip()
    return TestCaseResult(
        testCase=index + 1,
        input=case.input,
        expectedOutput=case.expectedOutput,
        actualOutput=actual,
        passed=passed,
        error=result.error,
        errorKind=result.errorKind,
        executionTime=result.executionTime,
        hidden=case.hidden
    )


def run_tests(
    executor,
    language,
    code: str,
    test_cases: Sequence[TestCase],
    max_cases: int,
    cancel_event: Optional[threading.Event] = None
) -> TestRunResult:
    """
    Run `code` against the first `max_cases` test cases, in order.

    The program is compiled once and the artifact reused for every case. If
    the session fails before running (rejected, compile error), each bounded
    case is reported as failed with that error and nothing is executed.

    Args:
        executor: CodeExecutor providing sessions
        language: Language of the submission
        code: Source code
        test_cases: Ordered test cases
        max_cases: Cases beyond this bound are neither run nor reported
        cancel_event: Set by the caller to abandon the run

    Returns:
        TestRunResult with one entry per executed case
    """
    cases = list(test_cases)[:max(0, max_cases)]
    if len(test_cases) > len(cases):
        logger.info(f"Running {len(cases)} of {len(test_cases)} test cases")

    results = []
    with executor.session(language, code, cancel_event) as session:
        for index, case in enumerate(cases):
            if cancel_event is not None and cancel_event.is_set() and session.failure is None:
                result = ExecutionResult.failure(ErrorKind.INTERNAL_ERROR, "Execution cancelled")
            else:
                result = session.run(case.input)
            results.append(case_result(index, case, result))

    run = TestRunResult.from_results(results)
    logger.info(f"Test run finished: {run.passedTests}/{run.totalTests} passed")
    return run
