"""
Main executor: screens, compiles and runs code through the language backends
"""

import signal
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from . import harness
from .config import ExecutionConfig
from .exceptions import ToolchainUnavailableError, WorkspaceError
from .languages import Artifact, LanguageBackend, get_backend
from .models import (
    ErrorKind,
    ExecuteRequest,
    ExecutionResult,
    ExecutionState,
    ProcessOutcome,
    TestRunRequest,
    TestRunResult,
)
from .sandbox import select_runner
from .security import scan
from .workspace import Workspace, allocate, release

logger = logging.getLogger(__name__)


def _format_seconds(ms: int) -> str:
    return f"{ms / 1000:g}"


def _killed_for_cpu(exit_code: Optional[int]) -> bool:
    sigxcpu = getattr(signal, "SIGXCPU", None)
    return sigxcpu is not None and exit_code == -sigxcpu


def internal_error(error: Exception) -> ExecutionResult:
    if isinstance(error, (ToolchainUnavailableError, WorkspaceError)):
        logger.error(f"Execution failed: {error}")
        message = str(error)
    else:
        logger.error(f"Unexpected execution failure: {error}", exc_info=True)
        message = f"Internal error: {error}"
    return ExecutionResult.failure(ErrorKind.INTERNAL_ERROR, message)


class ExecutionSession:
    """
    A prepared (and, for compiled languages, compiled) program that can be
    run repeatedly while its workspace is alive.

    `failure` is set when the pipeline stopped before the run phase; run()
    then returns it without spawning anything.
    """

    def __init__(
        self,
        executor: 'CodeExecutor',
        backend: Optional[LanguageBackend],
        workspace: Optional[Workspace] = None,
        artifact: Optional[Artifact] = None,
        cancel_event: Optional[threading.Event] = None
    ):
        self.executor = executor
        self.backend = backend
        self.workspace = workspace
        self.artifact = artifact
        self.cancel_event = cancel_event
        self.failure: Optional[ExecutionResult] = None
        self.states: List[ExecutionState] = []
        self.transition(ExecutionState.VALIDATING)

    @property
    def state(self) -> ExecutionState:
        return self.states[-1]

    def transition(self, state: ExecutionState) -> None:
        self.states.append(state)
        if self.workspace is not None:
            logger.debug(f"[{self.workspace.short_id}] -> {state.value}")

    def fail(self, state: ExecutionState, result: ExecutionResult) -> None:
        self.transition(state)
        self.failure = result

    def run(self, stdin: str = '') -> ExecutionResult:
        """Run the program once with the given stdin"""
        if self.failure is not None:
            return self.failure

        config = self.executor.config
        stdin = stdin or ''
        if len(stdin) > config.max_input_length:
            return ExecutionResult.failure(
                ErrorKind.INVALID_REQUEST,
                f"Input must not exceed {config.max_input_length} characters"
            )

        self.transition(ExecutionState.RUNNING)
        try:
            outcome = self.backend.run(
                self.artifact,
                stdin,
                self.workspace,
                self.executor.runner,
                cancel_event=self.cancel_event
            )
        except Exception as e:
            self.transition(ExecutionState.CRASHED)
            return internal_error(e)

        state, result = self.executor.run_result(outcome)
        self.transition(state)
        return result


class CodeExecutor:
    """
    Runs untrusted code through the security filter, a per-request workspace
    and the process supervisor. Every failure is returned as an
    ExecutionResult; nothing is raised to the caller.
    """

    def __init__(self, config: Optional[ExecutionConfig] = None, runner=None):
        self.config = config or ExecutionConfig.from_env()
        self.runner = runner or select_runner(self.config)

    def admit(self, backend: LanguageBackend, code: str) -> Optional[ExecutionResult]:
        """Re-check request ceilings and screen the source"""
        if not code or not code.strip():
            return ExecutionResult.failure(ErrorKind.INVALID_REQUEST, "Code must not be empty")
        if len(code) > self.config.max_code_length:
            return ExecutionResult.failure(
                ErrorKind.INVALID_REQUEST,
                f"Code must not exceed {self.config.max_code_length} characters"
            )

        verdict = scan(code, backend.language)
        if not verdict.allowed:
            return ExecutionResult.failure(ErrorKind.SECURITY_VIOLATION, verdict.reason)
        return None

    def compile_result(self, outcome: ProcessOutcome, diagnostics: str) -> ExecutionResult:
        if outcome.timedOut:
            return ExecutionResult.failure(
                ErrorKind.TIMEOUT,
                f"Compilation timed out after {_format_seconds(self.config.compile_timeout_ms)} seconds",
                execution_time=self.config.compile_timeout_ms
            )
        if outcome.outputTruncated:
            return ExecutionResult.failure(
                ErrorKind.OUTPUT_LIMIT_EXCEEDED,
                f"Compiler output exceeded {self.config.max_output_bytes} bytes\n{diagnostics}",
                execution_time=outcome.elapsedMs
            )
        if outcome.cancelled:
            return ExecutionResult.failure(ErrorKind.INTERNAL_ERROR, "Execution cancelled")
        return ExecutionResult.failure(
            ErrorKind.COMPILE_ERROR,
            diagnostics or f"Compilation failed with exit code {outcome.exitCode}",
            execution_time=outcome.elapsedMs
        )

    def run_result(self, outcome: ProcessOutcome):
        """
        Map a run-phase ProcessOutcome to (terminal state, ExecutionResult)
        """
        if outcome.timedOut:
            return ExecutionState.TIMED_OUT, ExecutionResult.failure(
                ErrorKind.TIMEOUT,
                f"Execution timed out after {_format_seconds(self.config.run_timeout_ms)} seconds",
                output=outcome.stdout,
                execution_time=self.config.run_timeout_ms
            )
        if outcome.outputTruncated:
            return ExecutionState.OUTPUT_LIMIT_EXCEEDED, ExecutionResult.failure(
                ErrorKind.OUTPUT_LIMIT_EXCEEDED,
                f"Output limit of {self.config.max_output_bytes} bytes exceeded",
                output=outcome.stdout,
                execution_time=outcome.elapsedMs
            )
        if outcome.cancelled:
            return ExecutionState.CRASHED, ExecutionResult.failure(
                ErrorKind.INTERNAL_ERROR,
                "Execution cancelled",
                output=outcome.stdout,
                execution_time=outcome.elapsedMs
            )
        if _killed_for_cpu(outcome.exitCode):
            return ExecutionState.TIMED_OUT, ExecutionResult.failure(
                ErrorKind.TIMEOUT,
                f"Execution exceeded its CPU time limit of {_format_seconds(self.config.run_timeout_ms)} seconds",
                output=outcome.stdout,
                execution_time=self.config.run_timeout_ms
            )
        if outcome.exitCode != 0:
            if outcome.stderr.strip():
                error = outcome.stderr
            elif outcome.exitCode is not None and outcome.exitCode < 0:
                error = f"Process killed by signal {-outcome.exitCode}"
            else:
                error = f"Process exited with code {outcome.exitCode}"
            return ExecutionState.CRASHED, ExecutionResult.failure(
                ErrorKind.RUNTIME_ERROR,
                error,
                output=outcome.stdout,
                execution_time=outcome.elapsedMs
            )
        if outcome.stderr.strip():
            return ExecutionState.CRASHED, ExecutionResult.failure(
                ErrorKind.RUNTIME_ERROR,
                outcome.stderr,
                output=outcome.stdout,
                execution_time=outcome.elapsedMs
            )
        return ExecutionState.COMPLETED, ExecutionResult.ok(outcome.stdout, outcome.elapsedMs)

    @contextmanager
    def session(
        self,
        language,
        code: str,
        cancel_event: Optional[threading.Event] = None
    ) -> Iterator[ExecutionSession]:
        """
        Admit, prepare and compile `code`, yield a session for running it,
        then release the workspace whatever happened.
        """
        try:
            backend = get_backend(language, self.config)
        except (KeyError, ValueError) as e:
            session = ExecutionSession(self, None)
            session.fail(ExecutionState.REJECTED, ExecutionResult.failure(ErrorKind.INVALID_REQUEST, str(e)))
            yield session
            return

        logger.info(f"Executing {backend.language.value} code ({len(code or '')} chars)")
        session = ExecutionSession(self, backend, cancel_event=cancel_event)
        rejection = self.admit(backend, code)
        if rejection is not None:
            session.fail(ExecutionState.REJECTED, rejection)
            yield session
            return
        session.transition(ExecutionState.ADMITTED)

        try:
            workspace = allocate(self.config.workspace_root)
        except WorkspaceError as e:
            session.fail(ExecutionState.CRASHED, internal_error(e))
            yield session
            return

        session.workspace = workspace
        try:
            try:
                session.artifact = backend.prepare(code, workspace)
                if backend.needs_compile:
                    session.transition(ExecutionState.COMPILING)
                    compiled = backend.compile(session.artifact, workspace, self.runner, cancel_event=cancel_event)
                    if compiled.success:
                        session.transition(ExecutionState.COMPILED)
                    else:
                        logger.info(f"[{workspace.short_id}] Compilation failed for {backend.language.value}")
                        session.fail(
                            ExecutionState.COMPILE_FAILED,
                            self.compile_result(compiled.process, compiled.diagnostics)
                        )
            except Exception as e:
                session.fail(ExecutionState.CRASHED, internal_error(e))
            yield session
        finally:
            session.transition(ExecutionState.CLEANING_UP)
            release(workspace)
            session.transition(ExecutionState.RESULT_EMITTED)

    def execute(
        self,
        request: ExecuteRequest,
        cancel_event: Optional[threading.Event] = None
    ) -> ExecutionResult:
        """
        Execute code once

        Args:
            request: ExecuteRequest with language, code and input
            cancel_event: Set by the caller to abandon the execution

        Returns:
            ExecutionResult with execution results
        """
        with self.session(request.language, request.code, cancel_event) as session:
            return session.run(request.input)

    def run_tests(
        self,
        request: TestRunRequest,
        max_cases: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> TestRunResult:
        """Run code against the request's test cases"""
        return harness.run_tests(
            self,
            request.language,
            request.code,
            request.testCases,
            max_cases=self.config.max_test_cases if max_cases is None else max_cases,
            cancel_event=cancel_event
        )


_default_executor: Optional[CodeExecutor] = None
_default_lock = threading.Lock()


def get_executor() -> CodeExecutor:
    """Process-wide executor configured from the environment"""
    global _default_executor
    with _default_lock:
        if _default_executor is None:
            _default_executor = CodeExecutor()
        return _default_executor


def execute_code(request: ExecuteRequest) -> ExecutionResult:
    """
    Execute code based on language

    Args:
        request: ExecuteRequest with language, code and input

    Returns:
        ExecutionResult with execution results
    """
    return get_executor().execute(request)


def run_tests(request: TestRunRequest) -> TestRunResult:
    """Run code against test cases with the default executor"""
    return get_executor().run_tests(request)
