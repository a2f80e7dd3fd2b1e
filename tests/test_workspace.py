import os
import time

import pytest

from execution.exceptions import WorkspaceError
from execution.workspace import (
    WORKSPACE_PREFIX,
    allocate,
    is_safe_artifact_name,
    purge_stale_workspaces,
    release,
    workspace_scope,
)


def test_artifact_names():
    assert is_safe_artifact_name("main_abc.cpp")
    assert is_safe_artifact_name("Main_0f3a.class")
    assert not is_safe_artifact_name("../../etc/passwd")
    assert not is_safe_artifact_name("src/Main.java")
    assert not is_safe_artifact_name(".hidden")
    assert not is_safe_artifact_name("main; rm -rf.cpp")
    assert not is_safe_artifact_name("spaces here.py")
    assert not is_safe_artifact_name("")


def test_allocate_creates_unique_directory(workspace_root):
    workspace = allocate(str(workspace_root))
    try:
        assert os.path.isdir(workspace.path)
        assert os.path.dirname(workspace.path) == str(workspace_root)
        assert len(workspace.id) == 32
        int(workspace.id, 16)
        assert os.path.basename(workspace.path) == f"{WORKSPACE_PREFIX}{workspace.id}"
    finally:
        release(workspace)
    assert not os.path.exists(workspace.path)


def test_workspace_ids_never_collide(workspace_root):
    workspaces = [allocate(str(workspace_root)) for _ in range(500)]
    try:
        assert len({w.id for w in workspaces}) == 500
        assert len({w.path for w in workspaces}) == 500
        assert len({w.artifact_name("prog") for w in workspaces}) == 500
    finally:
        for workspace in workspaces:
            release(workspace)
    assert os.listdir(workspace_root) == []


def test_artifact_names_derive_from_id(workspace_root):
    with workspace_scope(str(workspace_root)) as workspace:
        assert workspace.artifact_name("Main", ".java") == f"Main_{workspace.short_id}.java"


def test_write_tracks_and_release_removes_everything(workspace_root):
    with workspace_scope(str(workspace_root)) as workspace:
        source = workspace.write("main.py", "print(1)")
        binary = workspace.track("prog")
        with open(binary, "w") as f:
            f.write("binary")
        # untracked output a toolchain might leave behind
        with open(os.path.join(workspace.path, "Main$1.class"), "w") as f:
            f.write("x")
        assert workspace.artifacts == [source, binary]
    assert os.listdir(workspace_root) == []


def test_scope_releases_on_exception(workspace_root):
    with pytest.raises(RuntimeError):
        with workspace_scope(str(workspace_root)) as workspace:
            workspace.write("main.c", "int main(){}")
            raise RuntimeError("boom")
    assert os.listdir(workspace_root) == []


def test_write_rejects_unsafe_names(workspace_root):
    with workspace_scope(str(workspace_root)) as workspace:
        with pytest.raises(WorkspaceError):
            workspace.write("bad name.py", "")
        with pytest.raises(WorkspaceError):
            workspace.write("..", "")


def test_write_after_release_fails(workspace_root):
    workspace = allocate(str(workspace_root))
    release(workspace)
    release(workspace)  # idempotent
    with pytest.raises(WorkspaceError):
        workspace.write("main.py", "")


def test_allocate_reports_unusable_root(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(WorkspaceError):
        allocate(str(blocker))


def test_purge_stale_workspaces(workspace_root):
    stale = workspace_root / f"{WORKSPACE_PREFIX}stale"
    stale.mkdir()
    (stale / "prog").write_text("x")
    old = time.time() - 7200
    os.utime(stale, (old, old))

    fresh = workspace_root / f"{WORKSPACE_PREFIX}fresh"
    fresh.mkdir()
    unrelated = workspace_root / "keep_me"
    unrelated.mkdir()
    os.utime(unrelated, (old, old))

    assert purge_stale_workspaces(str(workspace_root), max_age_seconds=3600) == 1
    assert sorted(os.listdir(workspace_root)) == [f"{WORKSPACE_PREFIX}fresh", "keep_me"]
