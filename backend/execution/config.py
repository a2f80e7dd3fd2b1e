"""
Execution engine configuration loaded from environment variables
"""

import os
from typing import Literal, Optional

from pydantic import BaseModel


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class ExecutionConfig(BaseModel):
    """Limits and toolchain settings for the execution engine"""

    # Phase timeouts (milliseconds)
    run_timeout_ms: int = 5000
    compile_timeout_ms: int = 10000

    # Combined stdout/stderr capture ceiling
    max_output_bytes: int = 1024 * 1024

    # Request ceilings, re-checked inside the engine
    max_code_length: int = 10000
    max_input_length: int = 1000
    max_test_cases: int = 10

    # Scratch area for workspaces (None -> system temp dir)
    workspace_root: Optional[str] = None

    # 'local' runs toolchains directly, 'docker' wraps them in a container
    isolation: Literal['local', 'docker'] = 'local'
    docker_image: str = 'code-executor:latest'
    docker_memory: str = '128m'
    docker_cpus: str = '1'
    docker_pids: str = '50'
    # uid:gid for containers (None -> the server's own ids)
    docker_user: Optional[str] = None

    # Address space limit for local runs (0 disables rlimits)
    memory_limit_mb: int = 256

    python_command: str = 'python3'
    node_command: str = 'node'
    javac_command: str = 'javac'
    java_command: str = 'java'
    gcc_command: str = 'gcc'
    gpp_command: str = 'g++'
    rustc_command: str = 'rustc'

    # Shadow dangerous built-ins in interpreted sources
    wrap_interpreted_source: bool = True

    # Sliding-window rate limit for the HTTP layer
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60

    @classmethod
    def from_env(cls) -> 'ExecutionConfig':
        """Build a config from EXECUTION_* environment variables"""
        defaults = cls()
        return cls(
            run_timeout_ms=_env_int('EXECUTION_RUN_TIMEOUT_MS', defaults.run_timeout_ms),
            compile_timeout_ms=_env_int('EXECUTION_COMPILE_TIMEOUT_MS', defaults.compile_timeout_ms),
            max_output_bytes=_env_int('EXECUTION_MAX_OUTPUT_BYTES', defaults.max_output_bytes),
            max_code_length=_env_int('EXECUTION_MAX_CODE_LENGTH', defaults.max_code_length),
            max_input_length=_env_int('EXECUTION_MAX_INPUT_LENGTH', defaults.max_input_length),
            max_test_cases=_env_int('EXECUTION_MAX_TEST_CASES', defaults.max_test_cases),
            workspace_root=os.getenv('EXECUTION_WORKSPACE_ROOT') or None,
            isolation=os.getenv('EXECUTION_ISOLATION', defaults.isolation),
            docker_image=os.getenv('EXECUTION_DOCKER_IMAGE', defaults.docker_image),
            docker_memory=os.getenv('EXECUTION_MEMORY_LIMIT', defaults.docker_memory),
            docker_cpus=os.getenv('EXECUTION_CPU_LIMIT', defaults.docker_cpus),
            docker_pids=os.getenv('EXECUTION_PIDS_LIMIT', defaults.docker_pids),
            docker_user=os.getenv('EXECUTION_DOCKER_USER') or None,
            memory_limit_mb=_env_int('EXECUTION_LOCAL_MEMORY_MB', defaults.memory_limit_mb),
            python_command=os.getenv('EXECUTION_PYTHON', defaults.python_command),
            node_command=os.getenv('EXECUTION_NODE', defaults.node_command),
            javac_command=os.getenv('EXECUTION_JAVAC', defaults.javac_command),
            java_command=os.getenv('EXECUTION_JAVA', defaults.java_command),
            gcc_command=os.getenv('EXECUTION_GCC', defaults.gcc_command),
            gpp_command=os.getenv('EXECUTION_GPP', defaults.gpp_command),
            rustc_command=os.getenv('EXECUTION_RUSTC', defaults.rustc_command),
            wrap_interpreted_source=_env_bool('EXECUTION_WRAP_INTERPRETED', defaults.wrap_interpreted_source),
            rate_limit_requests=_env_int('EXECUTION_RATE_LIMIT_REQUESTS', defaults.rate_limit_requests),
            rate_limit_window_seconds=_env_int('EXECUTION_RATE_LIMIT_WINDOW_SECONDS', defaults.rate_limit_window_seconds),
        )
