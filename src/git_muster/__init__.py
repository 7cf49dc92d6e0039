"""git-muster: Run the same Git operation across every repository in a manifest."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .core import (
    BranchProbe,
    FleetManager,
    GitOperations,
    GitRepository,
    IntegrityError,
    OperationResult,
    StatusRow,
    StatusSummary,
    SyncStatus,
    app,
    check_git,
    freeze_directory,
    resolve_git_path,
    validate_integrity,
)
from .formatters import OutputFormatter
from .manifest import (
    Manifest,
    ManifestError,
    ManifestFormatError,
    ManifestNotFoundError,
    ManifestValidationError,
    Repository,
    load_manifest,
    parse_manifest,
)
from .schema import get_tool_schema

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "BranchProbe",
    "Manifest",
    "OperationResult",
    "Repository",
    "StatusRow",
    "StatusSummary",
    "SyncStatus",
    # Errors
    "IntegrityError",
    "ManifestError",
    "ManifestFormatError",
    "ManifestNotFoundError",
    "ManifestValidationError",
    # Operations
    "FleetManager",
    "GitOperations",
    "GitRepository",
    # Functions
    "check_git",
    "freeze_directory",
    "get_tool_schema",
    "load_manifest",
    "parse_manifest",
    "resolve_git_path",
    "validate_integrity",
    # Formatters
    "OutputFormatter",
]
