"""Shared fixtures: an in-memory git backend and real-git helpers."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from git_muster import core

LOCAL_HASH = "1111111111111111111111111111111111111111"
REMOTE_HASH = "2222222222222222222222222222222222222222"
BASE_HASH = "3333333333333333333333333333333333333333"

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not found")


class FakeGitOps:
    """GitBackend that answers from attributes and records every call."""

    def __init__(
        self,
        branch: str = "main",
        short_hash: str = "1111111",
        head_hash: str = LOCAL_HASH,
        remote_hash: str = LOCAL_HASH,
        ahead: int | None = 0,
        behind: int | None = 0,
        unpublished: int | None = 0,
        tracking_hash: str | None = None,
        merge_base: str = BASE_HASH,
        conflict: bool = False,
        remote_url: str = "",
        local_branches: tuple[str, ...] = ("main",),
        remote_branches: tuple[str, ...] = ("main",),
        fetch_ok: bool = True,
        fail: tuple[str, ...] = (),
    ):
        self.branch = branch
        self.short_hash = short_hash
        self.head_hash = head_hash
        self.remote_hash = remote_hash
        self.ahead = ahead
        self.behind = behind
        self.unpublished = unpublished
        self.tracking_hash = remote_hash if tracking_hash is None else tracking_hash
        self.merge_base = merge_base
        self.conflict = conflict
        self.remote_url = remote_url
        self.local_branches = set(local_branches)
        self.remote_branches = set(remote_branches)
        self.fetch_ok = fetch_ok
        self.fail = set(fail)
        self.calls: list[tuple] = []

    def _record(self, *call):
        self.calls.append(call)

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def get_current_branch(self) -> str:
        self._record("get_current_branch")
        return self.branch

    def get_short_hash(self) -> str:
        return self.short_hash

    def get_head_hash(self) -> str:
        return self.head_hash

    def get_remote_hash(self, branch: str) -> str:
        self._record("get_remote_hash", branch)
        return self.remote_hash

    def count_commits(self, base: str, tip: str) -> int | None:
        self._record("count_commits", base, tip)
        # remote..local counts what we have; local..remote what we lack
        return self.ahead if tip == self.head_hash else self.behind

    def count_unpublished(self, tip: str) -> int | None:
        self._record("count_unpublished", tip)
        return self.unpublished

    def get_remote_url(self) -> str:
        return self.remote_url

    def fetch(self, branch: str) -> bool:
        self._record("fetch", branch)
        return self.fetch_ok

    def get_tracking_hash(self, branch: str) -> str:
        return self.tracking_hash

    def get_merge_base(self, a: str, b: str) -> str:
        return self.merge_base

    def has_merge_conflict(self, base: str, a: str, b: str) -> bool:
        self._record("has_merge_conflict", base, a, b)
        return self.conflict

    def branch_exists(self, branch: str) -> bool:
        return branch in self.local_branches

    def remote_branch_exists(self, branch: str) -> bool:
        return branch in self.remote_branches

    def set_upstream(self, branch: str) -> bool:
        self._record("set_upstream", branch)
        return True

    def clone(self, url: str, depth: int | None = None) -> tuple[bool, str]:
        self._record("clone", url, depth)
        if "clone" in self.fail:
            return False, "fatal: repository not found"
        return True, ""

    def checkout(self, ref: str, create: bool = False, force_create: bool = False) -> tuple[bool, str]:
        self._record("checkout", ref, create, force_create)
        if "checkout" in self.fail:
            return False, f"error: pathspec '{ref}' did not match"
        self.branch = ref
        return True, ""

    def pull(self, rebase: bool | None = None) -> tuple[bool, str]:
        self._record("pull", rebase)
        if "pull" in self.fail:
            return False, "CONFLICT (content)"
        return True, "Fast-forward"

    def push(self, branch: str) -> tuple[bool, str]:
        self._record("push", branch)
        if "push" in self.fail:
            return False, "rejected"
        return True, ""


@pytest.fixture
def fake_ops(monkeypatch):
    """Route GitOperations to FakeGitOps instances keyed by directory name.

    Returns the dict so tests can register fakes before invoking the CLI.
    """
    registry: dict[str, FakeGitOps] = {}

    def factory(path: Path, git_path: str = "git") -> FakeGitOps:
        return registry.setdefault(Path(path).name, FakeGitOps())

    monkeypatch.setattr(core, "GitOperations", factory)
    monkeypatch.setattr(core, "check_git", lambda git_path: "git version 2.45.0")
    return registry


# ---------------------------------------------------------------------------
# Real git helpers
# ---------------------------------------------------------------------------


def git(cwd: Path, *args: str) -> str:
    """Run a git command and return stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def commit_file(repo: Path, filename: str, content: str, message: str) -> str:
    """Create/overwrite a file and commit it. Returns the commit hash."""
    (repo / filename).write_text(content)
    git(repo, "add", filename)
    git(repo, "commit", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture
def git_env(monkeypatch, tmp_path):
    """Isolate git from the user's configuration."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@test.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@test.com")
    monkeypatch.delenv("GIT_EXEC_PATH", raising=False)
    monkeypatch.delenv("GIT_MUSTER_MANIFEST", raising=False)
    return home


@pytest.fixture
def make_remote(tmp_path, git_env):
    """Factory creating a bare remote with one commit on main.

    Returns (bare_path, seed_path); the seed clone can push more commits.
    """
    remotes = tmp_path / "remotes"
    remotes.mkdir()

    def _make(name: str) -> tuple[Path, Path]:
        bare = remotes / f"{name}.git"
        git(remotes, "init", "--bare", "-b", "main", bare.name)
        seed = remotes / f"{name}-seed"
        git(remotes, "clone", str(bare), seed.name)
        git(seed, "symbolic-ref", "HEAD", "refs/heads/main")
        commit_file(seed, "README", f"{name}\n", "initial")
        git(seed, "push", "origin", "main")
        return bare, seed

    return _make


@pytest.fixture
def workspace(tmp_path, monkeypatch, git_env):
    """Empty directory that commands run in."""
    ws = tmp_path / "ws"
    ws.mkdir()
    monkeypatch.chdir(ws)
    return ws
