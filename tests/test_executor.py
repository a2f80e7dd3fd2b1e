import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

from conftest import FakeRunner, leftovers, requires_gpp, requires_java, requires_node, requires_prlimit
from execution.config import ExecutionConfig
from execution.executor import CodeExecutor
from execution.models import ErrorKind, ExecuteRequest, ExecutionState, Language, ProcessOutcome
from execution.sandbox import LocalRunner


def test_python_hello(executor, workspace_root):
    result = executor.execute(ExecuteRequest(language="python", code="print('Hello')"))
    assert result.success
    assert result.output == "Hello\n"
    assert result.error is None
    assert result.errorKind is None
    assert result.executionTime >= 0
    assert leftovers(workspace_root) == []


def test_family_name_selects_language(executor):
    result = executor.execute(ExecuteRequest(language="dynamic-scripting", code="print(6 * 7)"))
    assert result.success
    assert result.output.strip() == "42"


def test_stdin_reaches_program(executor):
    code = "a = int(input())\nb = int(input())\nprint(a + b)"
    result = executor.execute(ExecuteRequest(language="python", code=code, input="2\n3\n"))
    assert result.output.strip() == "5"


def test_security_violation_spawns_nothing(config, workspace_root):
    runner = FakeRunner()
    executor = CodeExecutor(config, runner=runner)
    result = executor.execute(ExecuteRequest(language="python", code="import os"))
    assert not result.success
    assert result.errorKind == ErrorKind.SECURITY_VIOLATION
    assert "Security violation" in result.error
    assert result.executionTime == 0
    assert runner.calls == []
    assert leftovers(workspace_root) == []


def test_rejected_session_states(config):
    executor = CodeExecutor(config, runner=FakeRunner())
    with executor.session(Language.PYTHON, "eval('1')") as session:
        assert session.states == [ExecutionState.VALIDATING, ExecutionState.REJECTED]
        assert session.workspace is None


def test_runtime_error_reports_stderr(executor, workspace_root):
    result = executor.execute(ExecuteRequest(language="python", code="print('partial')\nraise ValueError('boom')"))
    assert not result.success
    assert result.errorKind == ErrorKind.RUNTIME_ERROR
    assert "ValueError: boom" in result.error
    assert result.output == "partial\n"
    assert leftovers(workspace_root) == []


def test_blocked_builtin_is_inert(executor):
    result = executor.execute(ExecuteRequest(language="python", code="breakpoint()"))
    assert result.errorKind == ErrorKind.RUNTIME_ERROR
    assert "breakpoint() is not available" in result.error


def test_stderr_with_zero_exit_is_runtime_error(config):
    runner = FakeRunner(ProcessOutcome(stdout="1\n", stderr="warning: something", exitCode=0, elapsedMs=4))
    result = CodeExecutor(config, runner=runner).execute(ExecuteRequest(language="python", code="print(1)"))
    assert result.errorKind == ErrorKind.RUNTIME_ERROR
    assert result.error == "warning: something"
    assert result.output == "1\n"


def test_signal_exit_is_described(config):
    runner = FakeRunner(ProcessOutcome(exitCode=-11, elapsedMs=3))
    result = CodeExecutor(config, runner=runner).execute(ExecuteRequest(language="python", code="print(1)"))
    assert result.errorKind == ErrorKind.RUNTIME_ERROR
    assert result.error == "Process killed by signal 11"


def test_cpu_limit_kill_is_a_timeout(config):
    runner = FakeRunner(ProcessOutcome(exitCode=-signal.SIGXCPU, elapsedMs=990))
    result = CodeExecutor(config, runner=runner).execute(ExecuteRequest(language="python", code="print(1)"))
    assert result.errorKind == ErrorKind.TIMEOUT
    assert result.executionTime == config.run_timeout_ms


@requires_prlimit
def test_busy_loop_times_out_under_default_limits(limited_executor, workspace_root):
    for _ in range(5):
        result = limited_executor.execute(ExecuteRequest(language="python", code="while True:\n    pass"))
        assert result.errorKind == ErrorKind.TIMEOUT, result.error
        assert result.executionTime == 1000
    assert leftovers(workspace_root) == []


@requires_prlimit
def test_large_allocation_fails_cleanly(limited_executor, workspace_root):
    result = limited_executor.execute(ExecuteRequest(
        language="python",
        code="print('start')\nblob = bytearray(1024 * 1024 * 1024)\nprint('done')",
    ))
    assert result.errorKind == ErrorKind.RUNTIME_ERROR
    assert "MemoryError" in result.error
    assert result.output == "start\n"
    assert leftovers(workspace_root) == []


@requires_prlimit
def test_default_limits_still_run_normal_programs(limited_executor):
    result = limited_executor.execute(ExecuteRequest(language="python", code="print(sum(range(10)))"))
    assert result.success, result.error
    assert result.output == "45\n"


def test_timeout_reports_configured_window(workspace_root):
    config = ExecutionConfig(
        workspace_root=str(workspace_root),
        python_command=sys.executable,
        run_timeout_ms=800,
        memory_limit_mb=0,
    )
    executor = CodeExecutor(config, runner=LocalRunner(config))
    result = executor.execute(ExecuteRequest(language="python", code="while True:\n    pass"))
    assert not result.success
    assert result.errorKind == ErrorKind.TIMEOUT
    assert result.executionTime == 800
    assert leftovers(workspace_root) == []


def test_output_limit(workspace_root):
    config = ExecutionConfig(
        workspace_root=str(workspace_root),
        python_command=sys.executable,
        max_output_bytes=2000,
        memory_limit_mb=0,
    )
    executor = CodeExecutor(config, runner=LocalRunner(config))
    result = executor.execute(ExecuteRequest(language="python", code="while True:\n    print('x' * 100)"))
    assert result.errorKind == ErrorKind.OUTPUT_LIMIT_EXCEEDED
    assert 0 < len(result.output) <= 2000
    assert leftovers(workspace_root) == []


def test_compile_error_skips_run(config, workspace_root):
    runner = FakeRunner(ProcessOutcome(stderr="main.cpp:1:12: error: expected ';'", exitCode=1, elapsedMs=120))
    executor = CodeExecutor(config, runner=runner)
    result = executor.execute(ExecuteRequest(language="cpp", code="int main() { return 0 }"))
    assert not result.success
    assert result.errorKind == ErrorKind.COMPILE_ERROR
    assert "expected ';'" in result.error
    assert result.output == ""
    assert len(runner.calls) == 1
    assert runner.calls[0]["command"][0] == "g++"
    assert leftovers(workspace_root) == []


def test_compile_error_session_states(config):
    runner = FakeRunner(ProcessOutcome(stderr="error", exitCode=1))
    executor = CodeExecutor(config, runner=runner)
    with executor.session(Language.C, "int main() {") as session:
        pass
    assert ExecutionState.COMPILE_FAILED in session.states
    assert ExecutionState.RUNNING not in session.states
    assert session.states[-2:] == [ExecutionState.CLEANING_UP, ExecutionState.RESULT_EMITTED]


def test_compile_timeout(config):
    runner = FakeRunner(ProcessOutcome(timedOut=True, exitCode=-9, elapsedMs=20000))
    result = CodeExecutor(config, runner=runner).execute(ExecuteRequest(language="rust", code="fn main() {}"))
    assert result.errorKind == ErrorKind.TIMEOUT
    assert result.executionTime == config.compile_timeout_ms
    assert len(runner.calls) == 1


def test_compiled_program_runs_after_compile(config):
    runner = FakeRunner(
        ProcessOutcome(exitCode=0, elapsedMs=300),
        ProcessOutcome(stdout="Hello\n", exitCode=0, elapsedMs=5),
    )
    result = CodeExecutor(config, runner=runner).execute(
        ExecuteRequest(language="natively-compiled", code="int main(){}", input="data")
    )
    assert result.success
    assert result.output == "Hello\n"
    assert result.executionTime == 5
    compile_call, run_call = runner.calls
    assert run_call["command"][0].startswith("./prog_")
    assert run_call["stdin"] == "data"
    assert run_call["timeout_ms"] == config.run_timeout_ms
    assert compile_call["timeout_ms"] == config.compile_timeout_ms


def test_missing_toolchain_is_internal_error(workspace_root):
    config = ExecutionConfig(workspace_root=str(workspace_root), python_command="no-such-python-xyz", memory_limit_mb=0)
    executor = CodeExecutor(config, runner=LocalRunner(config))
    result = executor.execute(ExecuteRequest(language="python", code="print(1)"))
    assert result.errorKind == ErrorKind.INTERNAL_ERROR
    assert "no-such-python-xyz" in result.error
    assert leftovers(workspace_root) == []


def test_runner_crash_is_internal_error(config, workspace_root):
    def explode(command, stdin):
        raise OSError("disk on fire")

    result = CodeExecutor(config, runner=FakeRunner(explode)).execute(
        ExecuteRequest(language="python", code="print(1)")
    )
    assert result.errorKind == ErrorKind.INTERNAL_ERROR
    assert "disk on fire" in result.error
    assert leftovers(workspace_root) == []


def test_oversized_code_is_rechecked(config):
    executor = CodeExecutor(config.model_copy(update={"max_code_length": 10}), runner=FakeRunner())
    result = executor.execute(ExecuteRequest(language="python", code="print('this is long')"))
    assert result.errorKind == ErrorKind.INVALID_REQUEST


def test_oversized_input_is_rechecked(config):
    runner = FakeRunner()
    executor = CodeExecutor(config.model_copy(update={"max_input_length": 3}), runner=runner)
    result = executor.execute(ExecuteRequest(language="python", code="print(1)", input="12345"))
    assert result.errorKind == ErrorKind.INVALID_REQUEST
    assert runner.calls == []


def test_unknown_language_is_invalid_request(config):
    request = ExecuteRequest.model_construct(language="cobol", code="DISPLAY 'HI'", input="")
    result = CodeExecutor(config, runner=FakeRunner()).execute(request)
    assert result.errorKind == ErrorKind.INVALID_REQUEST


def test_cancelled_execution(config, workspace_root):
    cancel = threading.Event()
    cancel.set()
    executor = CodeExecutor(config, runner=LocalRunner(config))
    result = executor.execute(ExecuteRequest(language="python", code="while True:\n    pass"), cancel_event=cancel)
    assert result.errorKind == ErrorKind.INTERNAL_ERROR
    assert result.error == "Execution cancelled"
    assert leftovers(workspace_root) == []


def test_concurrent_requests_are_isolated(executor, workspace_root):
    def run(n):
        return executor.execute(ExecuteRequest(language="python", code=f"print({n})"))

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(run, range(8)))

    assert [r.output.strip() for r in results] == [str(n) for n in range(8)]
    assert leftovers(workspace_root) == []


@requires_gpp
def test_cpp_hello_and_compile_error(workspace_root):
    config = ExecutionConfig(workspace_root=str(workspace_root), compile_timeout_ms=60000, memory_limit_mb=0)
    executor = CodeExecutor(config, runner=LocalRunner(config))

    ok = executor.execute(ExecuteRequest(
        language="cpp",
        code="#include <iostream>\nint main() { std::cout << \"Hello\" << std::endl; }"
    ))
    assert ok.success, ok.error
    assert ok.output == "Hello\n"

    broken = executor.execute(ExecuteRequest(language="cpp", code="int main() { return 0 }"))
    assert broken.errorKind == ErrorKind.COMPILE_ERROR
    assert broken.error
    assert broken.output == ""
    assert leftovers(workspace_root) == []


@requires_gpp
def test_cpp_busy_loop_times_out(workspace_root):
    config = ExecutionConfig(
        workspace_root=str(workspace_root),
        compile_timeout_ms=60000,
        run_timeout_ms=1000,
        memory_limit_mb=0,
    )
    executor = CodeExecutor(config, runner=LocalRunner(config))
    code = "int main() { volatile unsigned long n = 0; while (true) { n++; } }"
    result = executor.execute(ExecuteRequest(language="cpp", code=code))
    assert result.errorKind == ErrorKind.TIMEOUT
    assert result.executionTime == 1000
    assert leftovers(workspace_root) == []


@requires_java
def test_java_snippet_is_wrapped_and_runs(workspace_root):
    config = ExecutionConfig(workspace_root=str(workspace_root), compile_timeout_ms=60000, run_timeout_ms=20000, memory_limit_mb=0)
    executor = CodeExecutor(config, runner=LocalRunner(config))
    result = executor.execute(ExecuteRequest(language="java", code='System.out.println("Hello");'))
    assert result.success, result.error
    assert result.output == "Hello\n"
    assert leftovers(workspace_root) == []


@requires_node
def test_javascript_input_and_console(workspace_root):
    config = ExecutionConfig(workspace_root=str(workspace_root), memory_limit_mb=0)
    executor = CodeExecutor(config, runner=LocalRunner(config))
    result = executor.execute(ExecuteRequest(
        language="javascript",
        code="const n = Number(input.trim());\nconsole.log('Hello', n * 2);",
        input="21\n"
    ))
    assert result.success, result.error
    assert result.output == "Hello 42\n"

    implicit = executor.execute(ExecuteRequest(language="script", code="1 + 2"))
    assert implicit.output == "3\n"
