"""
Process supervision: spawn, feed stdin, capture output, enforce limits
"""

import os
import time
import signal
import logging
import threading
import subprocess
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .exceptions import ToolchainUnavailableError
from .models import ProcessOutcome

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05  # seconds
_READ_CHUNK = 4096
_JOIN_TIMEOUT = 2.0

# (resource.RLIMIT_*, (soft, hard))
Rlimit = Tuple[int, Tuple[int, int]]


class _OutputCapture:
    """
    Combined stdout/stderr buffer with a shared byte ceiling
    """

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self.total = 0
        self.chunks: Dict[str, List[bytes]] = {'stdout': [], 'stderr': []}
        self.exceeded = threading.Event()
        self._lock = threading.Lock()

    def drain(self, stream, name: str) -> None:
        """Read a pipe until EOF; bytes past the ceiling are discarded"""
        try:
            while True:
                chunk = stream.read1(_READ_CHUNK)
                if not chunk:
                    break
                with self._lock:
                    room = self.max_bytes - self.total
                    if len(chunk) > room:
                        if room > 0:
                            self.chunks[name].append(chunk[:room])
                            self.total += room
                        self.exceeded.set()
                    else:
                        self.chunks[name].append(chunk)
                        self.total += len(chunk)
        except (OSError, ValueError):
            # Pipe closed underneath us after a kill
            pass
        finally:
            stream.close()

    def text(self, name: str) -> str:
        with self._lock:
            data = b''.join(self.chunks[name])
        return data.decode('utf-8', errors='replace')


def _feed_stdin(pipe, data: Optional[str]) -> None:
    try:
        if data:
            pipe.write(data.encode('utf-8'))
            pipe.flush()
    except (BrokenPipeError, OSError):
        # Child exited or closed stdin without reading it all
        pass
    finally:
        try:
            pipe.close()
        except OSError:
            pass


def apply_rlimits(pid: int, rlimits: Sequence[Rlimit]) -> None:
    """
    Set resource limits on a running child from the parent.

    Anything the child forks afterwards inherits them. No Python code runs
    in the child between fork and exec.
    """
    import resource

    for limit, values in rlimits:
        try:
            resource.prlimit(pid, limit, values)
        except ProcessLookupError:
            # Already exited; the wait loop reports how
            return
        except (ValueError, OSError) as e:
            logger.warning(f"Failed to set rlimit {limit} on {pid}: {e}")


def kill_process_tree(process: subprocess.Popen) -> None:
    """SIGKILL the child and every process in its session"""
    if os.name == 'posix':
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    try:
        process.kill()
    except ProcessLookupError:
        pass


def supervise(
    command: List[str],
    stdin: Optional[str] = None,
    timeout_ms: int = 5000,
    max_output_bytes: int = 1024 * 1024,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    cancel_event: Optional[threading.Event] = None,
    on_kill: Optional[Callable[[], None]] = None,
    rlimits: Optional[Sequence[Rlimit]] = None
) -> ProcessOutcome:
    """
    Run a command under a wall-clock timeout and an output ceiling

    Args:
        command: argv of the process to spawn
        stdin: Text written to the child's stdin, which is then closed
        timeout_ms: Wall-clock limit in milliseconds
        max_output_bytes: Ceiling for combined stdout and stderr
        cwd: Working directory
        env: Environment for the child
        cancel_event: When set, the child is killed as if it timed out
        on_kill: Extra cleanup invoked whenever the child is killed
        rlimits: Resource limits applied to the child right after spawn

    Returns:
        ProcessOutcome with captured output and termination flags

    Raises:
        ToolchainUnavailableError: If the executable cannot be found
    """
    start_time = time.monotonic()

    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=env,
            start_new_session=True
        )
    except FileNotFoundError as e:
        raise ToolchainUnavailableError(command[0]) from e

    if rlimits:
        apply_rlimits(process.pid, rlimits)

    capture = _OutputCapture(max_output_bytes)
    threads = [
        threading.Thread(target=capture.drain, args=(process.stdout, 'stdout'), daemon=True),
        threading.Thread(target=capture.drain, args=(process.stderr, 'stderr'), daemon=True),
        threading.Thread(target=_feed_stdin, args=(process.stdin, stdin), daemon=True),
    ]
    for thread in threads:
        thread.start()

    deadline = start_time + timeout_ms / 1000
    timed_out = False
    cancelled = False
    killed = False

    while True:
        try:
            process.wait(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass

        if capture.exceeded.is_set():
            killed = True
        elif cancel_event is not None and cancel_event.is_set():
            cancelled = killed = True
        elif time.monotonic() >= deadline:
            timed_out = killed = True

        if killed:
            kill_process_tree(process)
            process.wait()
            break

    # Descendants that outlived the child would keep our pipes open
    kill_process_tree(process)
    if killed and on_kill is not None:
        try:
            on_kill()
        except Exception as e:
            logger.warning(f"Kill hook failed for {command[0]}: {e}")

    for thread in threads:
        thread.join(timeout=_JOIN_TIMEOUT)

    elapsed_ms = int((time.monotonic() - start_time) * 1000)

    if timed_out:
        logger.info(f"{command[0]} timed out after {timeout_ms}ms")
    elif cancelled:
        logger.info(f"{command[0]} cancelled after {elapsed_ms}ms")

    return ProcessOutcome(
        stdout=capture.text('stdout'),
        stderr=capture.text('stderr'),
        exitCode=process.returncode,
        elapsedMs=elapsed_ms,
        timedOut=timed_out,
        outputTruncated=capture.exceeded.is_set(),
        cancelled=cancelled
    )
