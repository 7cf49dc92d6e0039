"""
git-muster: Run the same Git operation across every repository in a manifest.

Repositories are declared in a JSON manifest; git-muster clones them, reports
whether each checkout is ahead of, behind or in sync with its remote branch,
and pulls, pushes or switches branches across all of them at once.
"""

from __future__ import annotations

import json
import os
import subprocess
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .formatters import OutputFormatter
from .log import get_logger, setup_logging
from .manifest import (
    ManifestError,
    Repository,
    filter_repositories,
    is_valid_git_ref,
    load_manifest,
    parse_labels,
    resolve_manifest_file,
    write_manifest,
)
from .schema import get_tool_schema

logger = get_logger("core")

MIN_PARALLEL = 1
MAX_PARALLEL = 128
DEFAULT_PARALLEL = 8

SHORT_HASH_LENGTH = 7
CONFLICT_MARKER = "<<<<<<<"

# =============================================================================
# Domain Models
# =============================================================================


class SyncStatus(StrEnum):
    """Repository sync status with its remote branch."""

    CLEAN = "clean"
    UNPUSHED = "unpushed"
    PULLABLE = "pullable"
    DIVERGED = "diverged"
    CONFLICT = "conflict"


@dataclass
class StatusRow:
    """Status of one repository checkout, built fresh on every run."""

    name: str
    path: Path
    config_ref: str = ""
    local_ref: str = ""
    remote_ref: str = ""
    branch: str = ""
    local_hash: str = ""
    remote_hash: str = ""
    is_detached: bool = False
    has_unpushed: bool = False
    is_pullable: bool = False
    has_conflict: bool = False

    @property
    def sync_status(self) -> SyncStatus:
        if self.has_conflict:
            return SyncStatus.CONFLICT
        if self.has_unpushed and self.is_pullable:
            return SyncStatus.DIVERGED
        if self.has_unpushed:
            return SyncStatus.UNPUSHED
        if self.is_pullable:
            return SyncStatus.PULLABLE
        return SyncStatus.CLEAN

    @property
    def remote_branch_missing(self) -> bool:
        return bool(self.branch) and not self.is_detached and not self.remote_hash

    @property
    def needs_push(self) -> bool:
        return self.has_unpushed and not self.is_detached and bool(self.branch)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "name": self.name,
            "path": str(self.path),
            "config_ref": self.config_ref,
            "local_ref": self.local_ref,
            "remote_ref": self.remote_ref,
            "branch": self.branch,
            "local_hash": self.local_hash,
            "remote_hash": self.remote_hash,
            "is_detached": self.is_detached,
            "has_unpushed": self.has_unpushed,
            "is_pullable": self.is_pullable,
            "has_conflict": self.has_conflict,
            "sync_status": self.sync_status.value,
        }


@dataclass
class OperationResult:
    """Result of a Git write operation."""

    path: Path
    name: str
    success: bool
    operation: str
    message: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "success": self.success,
            "operation": self.operation,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class StatusSummary:
    """Counts of repositories per sync status."""

    total: int = 0
    clean: int = 0
    unpushed: int = 0
    pullable: int = 0
    diverged: int = 0
    conflict: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BranchProbe:
    """Branch state of one repository before a switch."""

    path: Path
    name: str
    url: str
    current_branch: str = ""
    exists: bool = False


class IntegrityError(Exception):
    """A checkout directory does not match the manifest entry it belongs to."""


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitBackend(Protocol):
    """Git operations for a single repository directory."""

    def get_current_branch(self) -> str: ...

    def get_short_hash(self) -> str: ...

    def get_head_hash(self) -> str: ...

    def get_remote_hash(self, branch: str) -> str: ...

    def count_commits(self, base: str, tip: str) -> int | None: ...

    def count_unpublished(self, tip: str) -> int | None: ...

    def get_remote_url(self) -> str: ...

    def fetch(self, branch: str) -> bool: ...

    def get_tracking_hash(self, branch: str) -> str: ...

    def get_merge_base(self, a: str, b: str) -> str: ...

    def has_merge_conflict(self, base: str, a: str, b: str) -> bool: ...

    def branch_exists(self, branch: str) -> bool: ...

    def remote_branch_exists(self, branch: str) -> bool: ...

    def set_upstream(self, branch: str) -> bool: ...

    def clone(self, url: str, depth: int | None = None) -> tuple[bool, str]: ...

    def checkout(
        self, ref: str, create: bool = False, force_create: bool = False
    ) -> tuple[bool, str]: ...

    def pull(self, rebase: bool | None = None) -> tuple[bool, str]: ...

    def push(self, branch: str) -> tuple[bool, str]: ...


class GitOperations:
    """Low-level Git operations for a single repository, run through the git CLI."""

    def __init__(self, repo_path: Path, git_path: str = "git"):
        self.repo_path = repo_path
        self.git_path = git_path

    def _run(self, *args: str, cwd: Path | None = None) -> subprocess.CompletedProcess | None:
        """Run a git command. Returns None when git could not be started."""
        workdir = cwd or self.repo_path
        start = time.monotonic()
        try:
            result = subprocess.run(
                [self.git_path, *args],
                cwd=workdir,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            logger.debug("%s %s (in %s) failed to start: %s", self.git_path, " ".join(args), workdir, e)
            return None
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug(
            "%s %s (in %s) -> %d, %dms",
            self.git_path,
            " ".join(args),
            workdir,
            result.returncode,
            elapsed_ms,
        )
        return result

    def _output(self, *args: str) -> str:
        """Stdout of a read-only query, or "" if it failed."""
        result = self._run(*args)
        if result is None or result.returncode != 0:
            return ""
        return result.stdout.strip()

    def _succeeds(self, *args: str) -> bool:
        result = self._run(*args)
        return result is not None and result.returncode == 0

    def _mutate(self, *args: str, cwd: Path | None = None) -> tuple[bool, str]:
        """Run a state-changing command, returning (success, message)."""
        result = self._run(*args, cwd=cwd)
        if result is None:
            return False, f"could not run {self.git_path}"
        output = result.stderr.strip() or result.stdout.strip()
        return result.returncode == 0, output

    def get_current_branch(self) -> str:
        """Get current branch name ("HEAD" when detached)."""
        return self._output("rev-parse", "--abbrev-ref", "HEAD")

    def get_short_hash(self) -> str:
        return self._output("rev-parse", "--short", "HEAD")

    def get_head_hash(self) -> str:
        return self._output("rev-parse", "HEAD")

    def get_remote_hash(self, branch: str) -> str:
        """Ask origin for the tip of a branch. "" when the branch is absent."""
        output = self._output("ls-remote", "origin", f"refs/heads/{branch}")
        if not output:
            return ""
        return output.split()[0]

    def count_commits(self, base: str, tip: str) -> int | None:
        """Count commits reachable from tip but not from base."""
        output = self._output("rev-list", "--count", f"{base}..{tip}")
        try:
            return int(output)
        except ValueError:
            return None

    def count_unpublished(self, tip: str) -> int | None:
        """Count commits reachable from tip but from no origin remote-tracking ref."""
        output = self._output("rev-list", "--count", tip, "--not", "--remotes=origin")
        try:
            return int(output)
        except ValueError:
            return None

    def get_remote_url(self) -> str:
        return self._output("config", "--get", "remote.origin.url")

    def fetch(self, branch: str) -> bool:
        return self._succeeds("fetch", "origin", branch)

    def get_tracking_hash(self, branch: str) -> str:
        return self._output("rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{branch}")

    def get_merge_base(self, a: str, b: str) -> str:
        return self._output("merge-base", a, b)

    def has_merge_conflict(self, base: str, a: str, b: str) -> bool:
        """Check whether merging a and b would produce conflict markers."""
        result = self._run("merge-tree", base, a, b)
        if result is None or result.returncode != 0:
            return False
        return CONFLICT_MARKER in result.stdout

    def branch_exists(self, branch: str) -> bool:
        return self._succeeds("show-ref", "--verify", "--quiet", f"refs/heads/{branch}")

    def remote_branch_exists(self, branch: str) -> bool:
        return self._succeeds("show-ref", "--verify", "--quiet", f"refs/remotes/origin/{branch}")

    def set_upstream(self, branch: str) -> bool:
        return self._succeeds("branch", f"--set-upstream-to=origin/{branch}", branch)

    def clone(self, url: str, depth: int | None = None) -> tuple[bool, str]:
        """Clone url into repo_path (which must not exist yet)."""
        args = ["clone"]
        if depth:
            args.extend(["--depth", str(depth)])
        args.extend([url, self.repo_path.name])
        return self._mutate(*args, cwd=self.repo_path.parent)

    def checkout(
        self, ref: str, create: bool = False, force_create: bool = False
    ) -> tuple[bool, str]:
        if force_create:
            return self._mutate("checkout", "-B", ref)
        if create:
            return self._mutate("checkout", "-b", ref)
        return self._mutate("checkout", ref)

    def pull(self, rebase: bool | None = None) -> tuple[bool, str]:
        """Pull from remote. rebase=None leaves the choice to git config."""
        args = ["pull"]
        if rebase is True:
            args.append("--rebase")
        elif rebase is False:
            args.append("--no-rebase")
        return self._mutate(*args)

    def push(self, branch: str) -> tuple[bool, str]:
        return self._mutate("push", "origin", branch)


def resolve_git_path() -> str:
    """Git executable: $GIT_EXEC_PATH/git when set, else git from PATH."""
    exec_path = os.environ.get("GIT_EXEC_PATH")
    if exec_path:
        return os.path.join(exec_path, "git")
    return "git"


def check_git(git_path: str) -> str | None:
    """Return the `git --version` line, or None if git is not callable."""
    try:
        result = subprocess.run(
            [git_path, "--version"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""


# =============================================================================
# Repository Manager
# =============================================================================


class GitRepository:
    """High-level interface for a manifest repository and its checkout."""

    def __init__(self, repo: Repository, path: Path, ops: GitBackend):
        self.repo = repo
        self.path = path
        self.name = repo.display_name
        self.ops = ops

    def exists(self) -> bool:
        return self.path.exists()

    def get_status(self) -> StatusRow | None:
        """Collect the status row, or None when the repository is not cloned yet."""
        if not self.path.exists():
            return None

        branch = self.ops.get_current_branch()
        is_detached = branch == "HEAD"
        short_hash = self.ops.get_short_hash()

        if branch and short_hash:
            local_ref = f"{branch}/{short_hash}"
        else:
            local_ref = branch or short_hash

        config_ref = "/".join(ref for ref in (self.repo.branch, self.repo.revision) if ref)
        local_hash = self.ops.get_head_hash()

        remote_hash = ""
        if branch and not is_detached:
            remote_hash = self.ops.get_remote_hash(branch)

        has_unpushed = False
        if remote_hash and local_hash:
            if remote_hash != local_hash:
                ahead = self.ops.count_commits(remote_hash, local_hash)
                if ahead is None:
                    # Remote tip not fetched yet; compare against what origin last had
                    ahead = self.ops.count_unpublished(local_hash)
                has_unpushed = ahead is None or ahead > 0
        elif branch and not is_detached and not remote_hash:
            # Branch missing on the remote: nothing local is published
            has_unpushed = True

        return StatusRow(
            name=self.name,
            path=self.path,
            config_ref=config_ref,
            local_ref=local_ref,
            remote_ref=remote_hash[:SHORT_HASH_LENGTH],
            branch=branch,
            local_hash=local_hash,
            remote_hash=remote_hash,
            is_detached=is_detached,
            has_unpushed=has_unpushed,
        )

    def assess(self, row: StatusRow) -> StatusRow:
        """Refine a status row with pull and conflict information.

        Fetches the remote branch so both sides are available locally, then
        counts commits in each direction. Updates the row in place.
        """
        if row.is_detached or not row.branch or not row.remote_hash:
            return row

        self.ops.fetch(row.branch)
        remote_hash = self.ops.get_tracking_hash(row.branch) or row.remote_hash
        row.remote_hash = remote_hash
        row.remote_ref = remote_hash[:SHORT_HASH_LENGTH]

        if not row.local_hash:
            return row
        if remote_hash == row.local_hash:
            row.has_unpushed = False
            row.is_pullable = False
            return row

        ahead = self.ops.count_commits(remote_hash, row.local_hash)
        if ahead is not None:
            row.has_unpushed = ahead > 0
        behind = self.ops.count_commits(row.local_hash, remote_hash)
        row.is_pullable = bool(behind)

        if row.has_unpushed and row.is_pullable:
            base = self.ops.get_merge_base(row.local_hash, remote_hash)
            if base:
                row.has_conflict = self.ops.has_merge_conflict(base, row.local_hash, remote_hash)
        return row

    def _result(self, operation: str, success: bool, message: str) -> OperationResult:
        return OperationResult(
            path=self.path,
            name=self.name,
            success=success,
            operation=operation,
            message=message if success else "",
            error=message if not success else "",
        )

    def init(self, depth: int | None = None) -> OperationResult:
        """Clone the repository and check out the configured branch/revision."""
        if self.path.exists():
            return self._result("init", True, "Already cloned, skipped")

        success, message = self.ops.clone(self.repo.url, depth)
        if not success:
            return self._result("init", False, message)

        branch, revision = self.repo.branch, self.repo.revision
        if revision:
            success, message = self.ops.checkout(revision)
            if not success:
                return self._result("init", False, message)
            if branch:
                # -B so an existing local branch is moved to the pinned revision
                success, message = self.ops.checkout(branch, force_create=True)
        elif branch:
            success, message = self.ops.checkout(branch)

        if not success:
            return self._result("init", False, message)
        return self._result("init", True, f"Cloned into {self.repo.directory}")

    def pull(self, rebase: bool | None = None) -> OperationResult:
        success, message = self.ops.pull(rebase)
        return self._result("pull", success, message)

    def push(self, branch: str) -> OperationResult:
        success, message = self.ops.push(branch)
        return self._result("push", success, message)

    def probe_branch(self, branch: str) -> BranchProbe:
        """Record the current branch and whether `branch` exists locally or on origin."""
        current = self.ops.get_current_branch()
        exists = self.ops.branch_exists(branch)
        if not exists and self.ops.fetch(branch):
            exists = self.ops.remote_branch_exists(branch)
        return BranchProbe(
            path=self.path,
            name=self.name,
            url=self.repo.url,
            current_branch=current,
            exists=exists,
        )

    def switch(self, branch: str, create: bool = False) -> OperationResult:
        success, message = self.ops.checkout(branch, create=create)
        if not success:
            return self._result("switch", False, message)
        self.configure_upstream_if_safe(branch)
        action = "Created and switched to" if create else "Switched to"
        return self._result("switch", True, f"{action} {branch}")

    def configure_upstream_if_safe(self, branch: str) -> bool:
        """Track origin/<branch> when it exists and merges cleanly with HEAD."""
        if not self.ops.fetch(branch) or not self.ops.remote_branch_exists(branch):
            return False

        local_hash = self.ops.get_head_hash()
        remote_hash = self.ops.get_tracking_hash(branch)
        if not local_hash or not remote_hash:
            return False

        if local_hash != remote_hash:
            base = self.ops.get_merge_base(local_hash, remote_hash)
            if not base:
                # unrelated histories
                return False
            if self.ops.has_merge_conflict(base, local_hash, remote_hash):
                return False

        return self.ops.set_upstream(branch)


def validate_integrity(
    repositories: list[Repository],
    base_dir: Path,
    ops_factory: Callable[[Path], GitBackend],
) -> None:
    """Check that every existing checkout belongs to its manifest entry.

    Raises IntegrityError on the first directory that is not a git checkout
    of the expected remote.
    """
    for repo in repositories:
        target = base_dir / repo.directory
        if not target.exists():
            continue
        if not target.is_dir():
            raise IntegrityError(f"target {target} exists and is not a directory")
        if not (target / ".git").exists():
            raise IntegrityError(f"directory {target} exists but is not a git repository")

        current_url = ops_factory(target).get_remote_url()
        if not current_url:
            raise IntegrityError(
                f"directory {target} is a git repository but failed to get remote origin"
            )
        if current_url != repo.url:
            raise IntegrityError(
                f"directory {target} exists with different remote origin: "
                f"{current_url} (expected {repo.url})"
            )


def freeze_directory(
    base_dir: Path,
    ops_factory: Callable[[Path], GitBackend],
) -> tuple[list[Repository], list[str]]:
    """Describe the git checkouts directly under base_dir as manifest entries.

    Returns the repositories and a list of warnings for skipped directories.
    """
    repositories = []
    warnings = []
    for entry in sorted(base_dir.iterdir()):
        if not entry.is_dir() or not (entry / ".git").exists():
            continue

        ops = ops_factory(entry)
        url = ops.get_remote_url()
        if not url:
            warnings.append(f"Could not get remote origin for {entry.name}, skipping.")
            continue

        branch: str | None = ops.get_current_branch()
        revision = None
        if not branch:
            warnings.append(f"Could not get current branch for {entry.name}.")
            branch = None
        elif branch == "HEAD":
            branch = None
            revision = ops.get_head_hash() or None
            if revision is None:
                warnings.append(f"Could not get revision for {entry.name}.")

        repositories.append(Repository(url=url, id=entry.name, branch=branch, revision=revision))
    return repositories, warnings


# =============================================================================
# Fleet Manager
# =============================================================================


class FleetManager:
    """Manage every repository listed in a manifest."""

    def __init__(
        self,
        repositories: list[Repository],
        max_workers: int = DEFAULT_PARALLEL,
        *,
        git_path: str = "git",
        base_dir: Path | None = None,
        ops_factory: Callable[[Path], GitBackend] | None = None,
    ):
        self.repositories = list(repositories)
        self.max_workers = max_workers
        self.git_path = git_path
        self.base_dir = (base_dir or Path.cwd()).resolve()
        self._ops_factory = ops_factory or (lambda path: GitOperations(path, git_path))
        self._members: list[GitRepository] | None = None

    def members(self) -> list[GitRepository]:
        """GitRepository objects for the manifest entries, in manifest order."""
        if self._members is None:
            self._members = [
                GitRepository(repo, self.base_dir / repo.directory, self._ops_factory(self.base_dir / repo.directory))
                for repo in self.repositories
            ]
        return self._members

    def _by_name(self) -> dict[str, GitRepository]:
        return {member.name: member for member in self.members()}

    def validate(self) -> None:
        validate_integrity(self.repositories, self.base_dir, self._ops_factory)

    def _execute_parallel(
        self,
        operation: Callable[[GitRepository], Any],
        members: list[GitRepository] | None = None,
    ) -> list:
        """Run operation on each repository with at most max_workers at once.

        None results are dropped; the rest are sorted by name.
        """
        if members is None:
            members = self.members()

        results = []

        if self.max_workers <= 1 or len(members) <= 1:
            for member in members:
                results.append(operation(member))
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {executor.submit(operation, member): member for member in members}
                for future in as_completed(futures):
                    results.append(future.result())

        results = [r for r in results if r is not None]
        results.sort(key=lambda r: r.name)
        return results

    def collect_status(self) -> list[StatusRow]:
        """Status rows for every cloned repository, sorted by name."""
        return self._execute_parallel(lambda member: member.get_status())

    def assess_all(self, rows: list[StatusRow]) -> list[StatusRow]:
        """Add pull/conflict information to previously collected rows."""
        by_name = self._by_name()
        row_by_name = {row.name: row for row in rows}
        members = [by_name[row.name] for row in rows if row.name in by_name]
        return self._execute_parallel(
            lambda member: member.assess(row_by_name[member.name]),
            members=members,
        )

    def init_all(self, depth: int | None = None) -> list[OperationResult]:
        return self._execute_parallel(lambda member: member.init(depth))

    def pull_all(self, rows: list[StatusRow], rebase: bool | None = None) -> list[OperationResult]:
        """Pull the given repositories one by one, stopping at the first failure."""
        by_name = self._by_name()
        results = []
        for row in rows:
            result = by_name[row.name].pull(rebase)
            results.append(result)
            if not result.success:
                break
        return results

    def push_all(self, rows: list[StatusRow]) -> list[OperationResult]:
        """Push each row's branch to origin."""
        by_name = self._by_name()
        return [by_name[row.name].push(row.branch) for row in rows]

    def probe_branch_all(self, branch: str) -> list[BranchProbe]:
        return self._execute_parallel(lambda member: member.probe_branch(branch))

    def switch_all(self, branch: str, probes: list[BranchProbe]) -> list[OperationResult]:
        """Switch every repository to branch, creating it where it does not exist."""
        exists = {probe.name: probe.exists for probe in probes}
        return self._execute_parallel(
            lambda member: member.switch(branch, create=not exists.get(member.name, False))
        )

    def summarize(self, rows: list[StatusRow]) -> StatusSummary:
        """Generate summary from status rows."""
        summary = StatusSummary(total=len(rows))
        for row in rows:
            match row.sync_status:
                case SyncStatus.CLEAN:
                    summary.clean += 1
                case SyncStatus.UNPUSHED:
                    summary.unpushed += 1
                case SyncStatus.PULLABLE:
                    summary.pullable += 1
                case SyncStatus.DIVERGED:
                    summary.diverged += 1
                case SyncStatus.CONFLICT:
                    summary.conflict += 1
        return summary


def resolve_parallel(flag_value: int | None, manifest_value: int | None, verbose: bool = False) -> int:
    """Pick the worker count: flag, then manifest, then the default.

    Verbose runs are sequential so command logs do not interleave.
    """
    if verbose:
        return MIN_PARALLEL
    if flag_value is not None:
        value = flag_value
    elif manifest_value is not None:
        value = manifest_value
    else:
        value = DEFAULT_PARALLEL
    return max(MIN_PARALLEL, min(MAX_PARALLEL, value))


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="git-muster",
    help="Run the same Git operation across every repository in a manifest.",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-muster {__version__}")
        git_path = resolve_git_path()
        git_version = check_git(git_path)
        if git_version is None:
            print("Git binary not found")
        else:
            print(f"git path: {git_path}")
            print(git_version)
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        help="Output MCP-compatible tool schema for AI agents",
    ),
):
    """git-muster: Run the same Git operation across every repository in a manifest."""
    if schema:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(highlight=False)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def fail(console: Console, message: str, code: int = 1):
    console.print(f"[red]Error: {escape(message)}[/]")
    raise typer.Exit(code)


def file_option():
    return typer.Option(
        None,
        "--file",
        "-f",
        help="Manifest file ('-' reads standard input). Default: $GIT_MUSTER_MANIFEST or repos.json",
    )


def parallel_option():
    return typer.Option(
        None,
        "--parallel",
        "-p",
        min=MIN_PARALLEL,
        max=MAX_PARALLEL,
        clamp=True,
        help=f"Number of repositories processed at once (default: manifest value or {DEFAULT_PARALLEL})",
    )


def labels_option():
    return typer.Option(
        None,
        "--labels",
        "-l",
        help="Only repositories with any of these comma-separated labels",
    )


def verbose_option():
    return typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every git command (forces --parallel 1)",
    )


def json_option():
    return typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    )


def yes_option():
    return typer.Option(
        False,
        "--yes",
        "-y",
        help="Answer yes to confirmation prompts",
    )


@dataclass
class CommandContext:
    console: Console
    formatter: OutputFormatter
    fleet: FleetManager
    verbose: bool
    json_output: bool

    def run_with_spinner(self, description: str, func: Callable[..., Any], *args: Any) -> Any:
        """Run func behind a spinner on stderr (no spinner in verbose or JSON mode)."""
        if self.verbose or self.json_output:
            return func(*args)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=Console(stderr=True),
            transient=True,
        ) as progress:
            progress.add_task(description, total=None)
            return func(*args)


def require_git(console: Console) -> str:
    git_path = resolve_git_path()
    if check_git(git_path) is None:
        fail(console, f"Git is not callable at '{git_path}'.")
    return git_path


def prepare(
    file: str | None,
    parallel: int | None,
    labels: str | None,
    verbose: bool,
    json_output: bool = False,
) -> CommandContext:
    """Load the manifest, build the fleet and run the integrity check."""
    setup_logging(verbose)
    console, formatter = get_console_and_formatter(json_output)
    git_path = require_git(console)

    try:
        manifest = load_manifest(resolve_manifest_file(file))
    except ManifestError as e:
        fail(console, str(e))

    repositories = filter_repositories(manifest.repositories, parse_labels(labels))
    workers = resolve_parallel(parallel, manifest.parallel, verbose)
    logger.debug("Loaded %d repositories, %d workers", len(repositories), workers)

    fleet = FleetManager(repositories, workers, git_path=git_path)
    try:
        fleet.validate()
    except IntegrityError as e:
        fail(console, str(e))

    return CommandContext(
        console=console,
        formatter=formatter,
        fleet=fleet,
        verbose=verbose,
        json_output=json_output,
    )


@app.command()
def init(
    file: str = file_option(),
    parallel: int = parallel_option(),
    labels: str = labels_option(),
    depth: int = typer.Option(
        None,
        "--depth",
        min=1,
        help="Create shallow clones with this many commits",
    ),
    verbose: bool = verbose_option(),
    json_output: bool = json_option(),
):
    """Clone every repository and check out its configured branch or revision."""
    ctx = prepare(file, parallel, labels, verbose, json_output)
    results = ctx.run_with_spinner("Cloning repositories...", ctx.fleet.init_all, depth)
    ctx.formatter.print_operation_results(results, "init")
    if any(not r.success for r in results):
        raise typer.Exit(1)


@app.command()
def status(
    file: str = file_option(),
    parallel: int = parallel_option(),
    labels: str = labels_option(),
    verbose: bool = verbose_option(),
    json_output: bool = json_option(),
):
    """Show local and remote revisions of every cloned repository."""
    ctx = prepare(file, parallel, labels, verbose, json_output)
    rows = ctx.run_with_spinner("Collecting status...", ctx.fleet.collect_status)
    ctx.formatter.print_status_list(rows, ctx.fleet.summarize(rows))


def collect_and_assess(ctx: CommandContext) -> list[StatusRow]:
    def _collect() -> list[StatusRow]:
        return ctx.fleet.assess_all(ctx.fleet.collect_status())

    return ctx.run_with_spinner("Checking remotes...", _collect)


@app.command()
def sync(
    file: str = file_option(),
    parallel: int = parallel_option(),
    labels: str = labels_option(),
    rebase: bool = typer.Option(
        None,
        "--rebase/--merge",
        help="How to integrate remote commits into branches with local commits (asks when omitted)",
    ),
    verbose: bool = verbose_option(),
):
    """Pull remote updates into every repository that is behind."""
    ctx = prepare(file, parallel, labels, verbose)
    console = ctx.console
    rows = collect_and_assess(ctx)

    for row in rows:
        if row.remote_branch_missing:
            console.print(f"Skipping {row.name}: Remote branch not found.")
    conflicts = [row for row in rows if row.has_conflict]
    for row in conflicts:
        console.print(f"[yellow]Skipping {row.name}: local and remote changes conflict, resolve manually.[/]")

    pullable = [row for row in rows if row.is_pullable and not row.has_conflict]
    if not pullable:
        console.print("All repositories are up to date.")
        if conflicts:
            raise typer.Exit(1)
        return

    if rebase is None and any(row.has_unpushed for row in pullable):
        console.print("Updates available.")
        answer = typer.prompt("Merge, rebase, or abort? [merge/rebase/abort]")
        match answer.strip().lower():
            case "merge" | "m":
                rebase = False
            case "rebase" | "r":
                rebase = True
            case "abort" | "a" | "q":
                console.print("Aborted.")
                raise typer.Exit(0)
            case _:
                console.print("Invalid input. Aborted.")
                raise typer.Exit(1)
    else:
        console.print("Updates available. Pulling...")

    results = ctx.fleet.pull_all(pullable, rebase)
    ctx.formatter.print_operation_results(results, "pull")
    if conflicts or any(not r.success for r in results):
        raise typer.Exit(1)


@app.command()
def push(
    file: str = file_option(),
    parallel: int = parallel_option(),
    labels: str = labels_option(),
    yes: bool = yes_option(),
    verbose: bool = verbose_option(),
):
    """Push local commits of every repository that is ahead of its remote."""
    ctx = prepare(file, parallel, labels, verbose)
    console = ctx.console
    rows = collect_and_assess(ctx)
    ctx.formatter.print_status_list(rows, ctx.fleet.summarize(rows))

    if any(row.has_conflict for row in rows):
        console.print("[red]Conflicts detected. Cannot push.[/]")
        raise typer.Exit(1)
    if any(row.is_pullable for row in rows):
        console.print("[red]Sync required.[/]")
        raise typer.Exit(1)

    pushable = [row for row in rows if row.needs_push]
    if not pushable:
        console.print("No repositories to push.")
        return

    if not yes and not typer.confirm("Push updates?", default=False):
        console.print("Aborted.")
        return

    results = ctx.fleet.push_all(pushable)
    ctx.formatter.print_operation_results(results, "push")
    if any(not r.success for r in results):
        raise typer.Exit(1)


@app.command()
def switch(
    branch: str = typer.Argument(None, help="Branch to switch to"),
    create: str = typer.Option(
        None,
        "--create",
        "-c",
        help="Switch to BRANCH, creating it where it does not exist",
    ),
    file: str = file_option(),
    parallel: int = parallel_option(),
    labels: str = labels_option(),
    yes: bool = yes_option(),
    verbose: bool = verbose_option(),
):
    """Switch every repository to the same branch."""
    ctx = prepare(file, parallel, labels, verbose)
    console = ctx.console

    if create and branch:
        fail(console, f"Unexpected argument: {branch}.")
    target = create or branch
    if not target:
        fail(console, "Branch name required.")
    if not is_valid_git_ref(target):
        fail(console, f"Invalid branch name: {target}.")

    for member in ctx.fleet.members():
        if not member.exists():
            fail(console, f"Repository directory {member.path} does not exist.")

    probes = ctx.run_with_spinner("Checking branches...", ctx.fleet.probe_branch_all, target)

    if create:
        if len({probe.current_branch for probe in probes}) > 1:
            console.print("Branch names do not match. Current status:")
            rows = ctx.fleet.collect_status()
            ctx.formatter.print_status_list(rows, ctx.fleet.summarize(rows))
            if not yes and not typer.confirm("Do you want to continue?", default=False):
                fail(console, "Aborted by user.")
    else:
        missing = [probe for probe in probes if not probe.exists]
        if missing:
            lines = [f"Branch '{target}' missing in repositories:"]
            lines.extend(f" - {probe.url} ({probe.path})" for probe in missing)
            fail(console, "\n".join(lines))

    results = ctx.run_with_spinner(
        f"Switching to {target}...", ctx.fleet.switch_all, target, probes
    )
    ctx.formatter.print_operation_results(results, "switch")
    if any(not r.success for r in results):
        raise typer.Exit(1)


@app.command()
def freeze(
    file: str = typer.Option(
        ...,
        "--file",
        "-f",
        help="Manifest file to write (must not exist)",
    ),
    verbose: bool = verbose_option(),
):
    """Write a manifest describing the git checkouts in the current directory."""
    setup_logging(verbose)
    console, _ = get_console_and_formatter(False)
    git_path = require_git(console)

    output = Path(file)
    if output.exists():
        fail(console, f"Output file '{output}' already exists.")

    repositories, warnings = freeze_directory(
        Path.cwd(), lambda path: GitOperations(path, git_path)
    )
    for warning in warnings:
        console.print(f"[yellow]Warning: {escape(warning)}[/]")

    try:
        write_manifest(output, repositories)
    except FileExistsError:
        fail(console, f"Output file '{output}' already exists.")
    except OSError as e:
        fail(console, f"Error writing to file '{output}': {e}")

    console.print(f"Wrote [bold]{len(repositories)}[/] repositories to {escape(str(output))}")
