"""
Per-request scratch directories for generated source and build artifacts
"""

import os
import re
import time
import shutil
import secrets
import logging
import tempfile
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .exceptions import WorkspaceError

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = 'exec_'

# Flat names only: generated sources, binaries and class files
_ARTIFACT_NAME = re.compile(r'^[A-Za-z0-9_][A-Za-z0-9_.\-]*$')


def is_safe_artifact_name(name: str) -> bool:
    """True if `name` is a single path component a toolchain can be given"""
    return bool(_ARTIFACT_NAME.match(name)) and '..' not in name


class Workspace:
    """
    An isolated directory owned by exactly one in-flight execution.

    The random id (128 bits) names the directory and every artifact derived
    from it, so concurrent requests never share a class name or binary path.
    """

    def __init__(self, workspace_id: str, path: str):
        self.id = workspace_id
        self.path = path
        self.artifacts: List[str] = []
        self.released = False

    @property
    def short_id(self) -> str:
        return self.id[:16]

    def artifact_name(self, prefix: str, suffix: str = '') -> str:
        """Name for a generated file, unique to this workspace"""
        return f"{prefix}_{self.short_id}{suffix}"

    def resolve(self, name: str) -> str:
        """Absolute path of `name` inside the workspace"""
        if not is_safe_artifact_name(name):
            raise WorkspaceError(f"Invalid artifact name: {name}")

        file_path = os.path.join(self.path, name)
        real_file_path = os.path.realpath(file_path)
        real_root = os.path.realpath(self.path)
        if not real_file_path.startswith(real_root + os.sep):
            raise WorkspaceError(f"Path traversal detected: {name}")
        return file_path

    def track(self, name: str) -> str:
        """Register an artifact a toolchain will create, return its path"""
        file_path = self.resolve(name)
        if file_path not in self.artifacts:
            self.artifacts.append(file_path)
        return file_path

    def write(self, name: str, content: str) -> str:
        """Write a source file into the workspace and track it"""
        if self.released:
            raise WorkspaceError(f"Workspace {self.id} has been released")
        file_path = self.track(name)
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            raise WorkspaceError(f"Failed to write {name}: {e}") from e
        return file_path

    def list_files(self) -> List[str]:
        if not os.path.isdir(self.path):
            return []
        return sorted(os.listdir(self.path))

    def __repr__(self) -> str:
        return f"Workspace(id={self.short_id}, path={self.path!r})"


def allocate(root: Optional[str] = None) -> Workspace:
    """
    Create a fresh workspace directory

    Args:
        root: Parent directory (defaults to the system temp dir)

    Returns:
        The new Workspace

    Raises:
        WorkspaceError: If the directory cannot be created
    """
    root = root or tempfile.gettempdir()
    workspace_id = secrets.token_hex(16)
    path = os.path.join(root, f"{WORKSPACE_PREFIX}{workspace_id}")

    try:
        os.makedirs(root, exist_ok=True)
        # Exclusive create: an existing directory is never reused
        os.mkdir(path, 0o700)
    except OSError as e:
        raise WorkspaceError(f"Failed to create workspace in {root}: {e}") from e

    logger.debug(f"Allocated workspace {workspace_id} at {path}")
    return Workspace(workspace_id, path)


def release(workspace: Workspace) -> None:
    """
    Delete every artifact of the workspace and the directory itself.
    Never raises; failures are logged.

    Args:
        workspace: Workspace to release
    """
    if workspace.released:
        return
    workspace.released = True

    for artifact in workspace.artifacts:
        try:
            if os.path.isdir(artifact):
                shutil.rmtree(artifact)
            elif os.path.lexists(artifact):
                os.unlink(artifact)
        except OSError as e:
            logger.warning(f"Failed to remove artifact {artifact}: {e}")

    # Toolchains may leave untracked files (e.g. nested .class files)
    try:
        shutil.rmtree(workspace.path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to cleanup workspace {workspace.path}: {e}")


@contextmanager
def workspace_scope(root: Optional[str] = None) -> Iterator[Workspace]:
    """Allocate a workspace and release it on every exit path"""
    workspace = allocate(root)
    try:
        yield workspace
    finally:
        release(workspace)


def purge_stale_workspaces(root: Optional[str] = None, max_age_seconds: int = 3600) -> int:
    """
    Remove workspace directories left behind by a crashed process

    Args:
        root: Directory holding workspaces (defaults to the system temp dir)
        max_age_seconds: Only directories older than this are removed

    Returns:
        Number of directories removed
    """
    root = root or tempfile.gettempdir()
    if not os.path.isdir(root):
        return 0

    removed = 0
    cutoff = time.time() - max_age_seconds
    for entry in os.scandir(root):
        if not entry.name.startswith(WORKSPACE_PREFIX) or not entry.is_dir(follow_symlinks=False):
            continue
        try:
            if entry.stat(follow_symlinks=False).st_mtime > cutoff:
                continue
            shutil.rmtree(entry.path)
            removed += 1
        except OSError as e:
            logger.warning(f"Failed to purge stale workspace {entry.path}: {e}")

    if removed:
        logger.info(f"Purged {removed} stale workspace(s) from {root}")
    return removed
