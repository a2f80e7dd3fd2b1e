"""
Exceptions raised inside the execution engine.

None of these cross the CodeExecutor boundary: the executor turns them into
ExecutionResult data.
"""


class ExecutionEngineError(Exception):
    """Base class for engine failures"""


class ToolchainUnavailableError(ExecutionEngineError):
    """Compiler or interpreter binary could not be started"""

    def __init__(self, binary: str):
        self.binary = binary
        super().__init__(f"Toolchain not available: {binary}")


class WorkspaceError(ExecutionEngineError):
    """Workspace could not be provisioned or written"""
