"""Repository manifest loading, validation and serialization.

A manifest is a JSON document listing the repositories to manage::

    {
      "parallel": 4,
      "repositories": [
        {"url": "https://example.com/org/app.git", "branch": "main", "labels": ["web"]}
      ]
    }
"""

from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MANIFEST_FILE = "repos.json"
MANIFEST_ENV_VAR = "GIT_MUSTER_MANIFEST"
STDIN_MANIFEST = "-"

# Safe characters for checkout directory names.
_ID_PATTERN = re.compile(r"[a-zA-Z0-9._-]+")
# Subset of what git accepts for ref names.
_GIT_REF_PATTERN = re.compile(r"[a-zA-Z0-9./_-]+")


class ManifestError(Exception):
    """Base class for manifest problems."""


class ManifestNotFoundError(ManifestError):
    """The manifest file does not exist."""


class ManifestFormatError(ManifestError):
    """The manifest is not valid JSON or has the wrong shape."""


class ManifestValidationError(ManifestError):
    """The manifest is well-formed but contains unusable entries."""


@dataclass(frozen=True)
class Repository:
    """A repository entry from the manifest."""

    url: str
    id: str | None = None
    branch: str | None = None
    revision: str | None = None
    labels: tuple[str, ...] = ()

    @property
    def directory(self) -> str:
        return resolve_repo_dir(self)

    @property
    def display_name(self) -> str:
        return self.directory

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        if self.id:
            data["id"] = self.id
        data["url"] = self.url
        if self.branch:
            data["branch"] = self.branch
        if self.revision:
            data["revision"] = self.revision
        data["labels"] = list(self.labels)
        return data


@dataclass
class Manifest:
    """Parsed manifest contents."""

    repositories: list[Repository] = field(default_factory=list)
    parallel: int | None = None
    source: Path | None = None


def resolve_repo_dir(repo: Repository) -> str:
    """Return the checkout directory name for a repository.

    An explicit id wins. Otherwise the name is derived from the URL:
    ``https://host/org/app.git`` and ``https://host/org/app/`` both give ``app``.
    """
    if repo.id:
        return repo.id
    base = repo.url.rstrip("/").rsplit("/", 1)[-1]
    return base.removesuffix(".git")


def _optional_str(entry: dict, key: str, index: int) -> str | None:
    value = entry.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ManifestFormatError(f"repositories[{index}].{key} must be a string")
    return value


def parse_manifest(data: str | bytes, source: Path | None = None) -> Manifest:
    """Parse manifest JSON into a Manifest.

    Only the document shape is checked here; see validate_repositories for
    the semantic rules.
    """
    try:
        document = json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise ManifestFormatError(f"Invalid data format: {e}") from e

    if not isinstance(document, dict):
        raise ManifestFormatError("Invalid data format: top level must be an object")

    entries = document.get("repositories")
    if entries is None:
        raise ManifestFormatError("Invalid data format: 'repositories' is missing")
    if not isinstance(entries, list):
        raise ManifestFormatError("Invalid data format: 'repositories' must be a list")

    repositories = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ManifestFormatError(f"Invalid data format: repositories[{index}] must be an object")
        url = entry.get("url")
        if url is None:
            raise ManifestFormatError(f"Invalid data format: repositories[{index}].url is required")
        if not isinstance(url, str):
            raise ManifestFormatError(f"repositories[{index}].url must be a string")

        labels = entry.get("labels") or []
        if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
            raise ManifestFormatError(f"repositories[{index}].labels must be a list of strings")

        repositories.append(
            Repository(
                url=url,
                id=_optional_str(entry, "id", index),
                branch=_optional_str(entry, "branch", index),
                revision=_optional_str(entry, "revision", index),
                labels=tuple(labels),
            )
        )

    parallel = document.get("parallel")
    if parallel is not None and (isinstance(parallel, bool) or not isinstance(parallel, int)):
        raise ManifestFormatError("Invalid data format: 'parallel' must be an integer")

    return Manifest(repositories=repositories, parallel=parallel, source=source)


def is_valid_git_ref(ref: str) -> bool:
    # A leading dash would be read as an option by git.
    if ref.startswith("-"):
        return False
    return bool(_GIT_REF_PATTERN.fullmatch(ref))


def validate_repositories(repositories: list[Repository]) -> None:
    """Check directory names, URLs and refs. Raises ManifestValidationError."""
    seen: set[str] = set()
    for repo in repositories:
        directory = repo.directory
        if not _ID_PATTERN.fullmatch(directory):
            raise ManifestValidationError(
                f"Invalid repository ID: {directory} (contains unsafe characters)"
            )
        if directory in (".", ".."):
            raise ManifestValidationError(f"Invalid repository ID: {directory} (cannot be . or ..)")

        if repo.url.startswith("ext::"):
            raise ManifestValidationError(
                f"Invalid repository URL: {repo.url} (ext:: protocol not allowed)"
            )
        if any(c in repo.url for c in "\n\r\t"):
            raise ManifestValidationError(
                f"Invalid repository URL: {repo.url!r} (contains control characters)"
            )

        if repo.branch and not is_valid_git_ref(repo.branch):
            raise ManifestValidationError(f"Invalid git reference: {repo.branch}")
        if repo.revision and not is_valid_git_ref(repo.revision):
            raise ManifestValidationError(f"Invalid git reference: {repo.revision}")

        if directory in seen:
            raise ManifestValidationError(f"Duplicate repository ID: {directory}")
        seen.add(directory)


def resolve_manifest_file(explicit: str | None = None) -> str:
    """Pick the manifest location.

    Priority order:
    1. explicit --file value ("-" means standard input)
    2. $GIT_MUSTER_MANIFEST
    3. ./repos.json
    """
    if explicit:
        return explicit
    env_manifest = os.environ.get(MANIFEST_ENV_VAR)
    if env_manifest:
        return env_manifest
    return DEFAULT_MANIFEST_FILE


def load_manifest(path: str | Path) -> Manifest:
    """Read, parse and validate a manifest file (or stdin for "-")."""
    if str(path) == STDIN_MANIFEST:
        data = sys.stdin.read()
        source = None
    else:
        source = Path(path).expanduser()
        try:
            data = source.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ManifestNotFoundError(f"File not found: {source}") from e
        except OSError as e:
            raise ManifestError(f"Error reading file {source}: {e}") from e

    manifest = parse_manifest(data, source=source)
    validate_repositories(manifest.repositories)
    return manifest


def parse_labels(value: str | None) -> list[str]:
    """Split a comma separated label list, dropping blanks."""
    if not value:
        return []
    return [label.strip() for label in value.split(",") if label.strip()]


def filter_repositories(repositories: list[Repository], labels: list[str] | None) -> list[Repository]:
    """Keep repositories carrying any of the given labels (all when no labels)."""
    if not labels:
        return list(repositories)
    wanted = set(labels)
    return [repo for repo in repositories if wanted.intersection(repo.labels)]


def dump_manifest(repositories: list[Repository]) -> str:
    return json.dumps({"repositories": [r.to_dict() for r in repositories]}, indent=2) + "\n"


def write_manifest(path: Path, repositories: list[Repository]) -> None:
    """Write a manifest, refusing to overwrite an existing file."""
    with open(path, "x", encoding="utf-8") as f:
        f.write(dump_manifest(repositories))
