"""
Runners that execute toolchain commands for a workspace, either directly on
the host or inside a locked-down Docker container
"""

import os
import time
import logging
import threading
import subprocess
from typing import Dict, List, Optional, Tuple

from .config import ExecutionConfig
from .models import ProcessOutcome
from .supervisor import Rlimit, supervise
from .workspace import Workspace

logger = logging.getLogger(__name__)

# image -> (available, checked at)
_docker_checks: Dict[str, Tuple[bool, float]] = {}
_docker_checks_lock = threading.Lock()
_DOCKER_CHECK_INTERVAL = 60  # seconds

_FALLBACK_CONTAINER_USER = '1000:1000'

_ENV_ALLOWLIST = ('PATH', 'LANG', 'LC_ALL', 'TMPDIR', 'SystemRoot', 'WINDIR')


def sanitized_env(workspace: Workspace) -> Dict[str, str]:
    """Minimal environment for child processes"""
    env = {key: os.environ[key] for key in _ENV_ALLOWLIST if os.environ.get(key)}
    env['HOME'] = workspace.path
    env['PYTHONIOENCODING'] = 'utf-8'
    return env


# CPU seconds granted beyond the wall-clock timeout, so the supervisor's
# deadline fires before the kernel's SIGXCPU
CPU_GRACE_SECONDS = 2


def resource_limits(memory_limit_mb: int, timeout_ms: int, limit_address_space: bool) -> Optional[List[Rlimit]]:
    """
    Build the POSIX rlimits for a local child

    Args:
        memory_limit_mb: Address space ceiling; 0 disables all limits
        timeout_ms: Wall-clock timeout the CPU limit is derived from
        limit_address_space: False for runtimes that reserve huge virtual heaps

    Returns:
        List of (resource, (soft, hard)) pairs, or None where unsupported
    """
    if os.name != 'posix' or memory_limit_mb <= 0:
        return None
    try:
        import resource
    except ImportError:
        return None
    if not hasattr(resource, 'prlimit'):
        return None

    cpu_seconds = -(-timeout_ms // 1000) + CPU_GRACE_SECONDS
    mem_bytes = memory_limit_mb * 1024 * 1024
    file_bytes = 10 * 1024 * 1024

    limits = [(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))]
    # JVM and V8 reserve far more address space than they use
    if limit_address_space:
        limits.append((resource.RLIMIT_AS, (mem_bytes, mem_bytes)))
    limits.append((resource.RLIMIT_FSIZE, (file_bytes, file_bytes)))
    limits.append((resource.RLIMIT_NOFILE, (256, 256)))
    return limits


class LocalRunner:
    """
    Run commands directly on the host
    WARNING: This is less secure than Docker execution
    """

    isolation = 'local'

    def __init__(self, config: ExecutionConfig):
        self.config = config

    def __call__(
        self,
        command: List[str],
        workspace: Workspace,
        stdin: Optional[str] = None,
        timeout_ms: int = 5000,
        cancel_event: Optional[threading.Event] = None,
        limit_address_space: bool = True
    ) -> ProcessOutcome:
        return supervise(
            command,
            stdin=stdin,
            timeout_ms=timeout_ms,
            max_output_bytes=self.config.max_output_bytes,
            cwd=workspace.path,
            env=sanitized_env(workspace),
            cancel_event=cancel_event,
            rlimits=resource_limits(self.config.memory_limit_mb, timeout_ms, limit_address_space)
        )


class DockerRunner:
    """
    Run commands inside a Docker container with security restrictions
    """

    isolation = 'docker'

    def __init__(self, config: ExecutionConfig):
        self.config = config
        self._counter = 0
        self._lock = threading.Lock()

    def _container_name(self, workspace: Workspace) -> str:
        with self._lock:
            self._counter += 1
            return f"exec_{workspace.short_id}_{self._counter}"

    def container_user(self) -> str:
        """
        uid:gid the container runs as.

        Defaults to the server's own ids so the container can use the 0700
        workspace mount. A root server runs containers as 1000:1000 instead
        and hands the workspace to that user in prepare_mount().
        """
        if self.config.docker_user:
            return self.config.docker_user
        if os.name != 'posix' or os.geteuid() == 0:
            return _FALLBACK_CONTAINER_USER
        return f"{os.geteuid()}:{os.getegid()}"

    def prepare_mount(self, workspace: Workspace) -> None:
        if os.name != 'posix' or os.geteuid() != 0:
            return
        uid, _, gid = self.container_user().partition(':')
        try:
            os.chown(workspace.path, int(uid), int(gid or uid))
        except (ValueError, OSError) as e:
            logger.warning(f"Failed to hand {workspace.path} to container user: {e}")

    def build_command(self, command: List[str], workspace: Workspace, container_name: str) -> List[str]:
        return [
            'docker', 'run',
            '--name', container_name,
            '--rm',  # Remove container after execution
            '--interactive',  # Keep stdin attached
            '--network', 'none',  # No network access
            '--memory', self.config.docker_memory,
            '--cpus', self.config.docker_cpus,
            '--pids-limit', self.config.docker_pids,  # Fork bomb protection
            '--read-only',
            '--tmpfs', '/tmp:rw,size=64m,exec',
            '-v', f'{workspace.path}:/project:rw',  # Compilers write artifacts here
            '-w', '/project',
            '--user', self.container_user(),
            '--env', 'HOME=/tmp',
            self.config.docker_image,
        ] + list(command)

    def __call__(
        self,
        command: List[str],
        workspace: Workspace,
        stdin: Optional[str] = None,
        timeout_ms: int = 5000,
        cancel_event: Optional[threading.Event] = None,
        limit_address_space: bool = True
    ) -> ProcessOutcome:
        container_name = self._container_name(workspace)
        self.prepare_mount(workspace)
        return supervise(
            self.build_command(command, workspace, container_name),
            stdin=stdin,
            timeout_ms=timeout_ms,
            max_output_bytes=self.config.max_output_bytes,
            cwd=workspace.path,
            cancel_event=cancel_event,
            on_kill=lambda: remove_container(container_name)
        )


def remove_container(container_name: str) -> None:
    """Kill and remove a container left running after a timeout"""
    try:
        subprocess.run(
            ['docker', 'kill', container_name],
            capture_output=True,
            timeout=5
        )
        subprocess.run(
            ['docker', 'rm', '-f', container_name],
            capture_output=True,
            timeout=5
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"Failed to kill container {container_name}: {e}")


def _docker_succeeds(args: List[str]) -> bool:
    try:
        return subprocess.run(['docker'] + args, capture_output=True, timeout=5).returncode == 0
    except (OSError, subprocess.SubprocessError):
        return False


def is_docker_available(image: str) -> bool:
    """
    Check that the Docker daemon answers and `image` exists locally.
    Each image's answer is cached for a minute.

    Returns:
        True if containers can be started from `image`
    """
    now = time.monotonic()
    with _docker_checks_lock:
        cached = _docker_checks.get(image)
        if cached is not None and now - cached[1] < _DOCKER_CHECK_INTERVAL:
            return cached[0]

    available = _docker_succeeds(['info']) and _docker_succeeds(['image', 'inspect', image])
    with _docker_checks_lock:
        _docker_checks[image] = (available, now)
    return available


def select_runner(config: ExecutionConfig):
    """
    Pick the runner for the configured isolation mode

    Returns:
        DockerRunner when requested and available, otherwise LocalRunner
    """
    if config.isolation == 'docker':
        if is_docker_available(config.docker_image):
            return DockerRunner(config)
        logger.warning("Docker not available, falling back to local execution (less secure)")
    return LocalRunner(config)
