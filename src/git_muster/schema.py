"""MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__

_COMMON_PROPERTIES = {
    "file": {
        "type": "string",
        "description": "Manifest file ('-' reads standard input). Auto-resolved from: $GIT_MUSTER_MANIFEST env var → ./repos.json",
    },
    "parallel": {
        "type": "integer",
        "description": "Number of repositories processed at once (clamped to 1-128; default: manifest 'parallel' or 8)",
        "minimum": 1,
        "maximum": 128,
    },
    "labels": {
        "type": "string",
        "description": "Comma-separated labels; only repositories carrying any of them are processed",
    },
    "verbose": {
        "type": "boolean",
        "description": "Log every git command to stderr (forces parallel 1)",
        "default": False,
    },
}

_YES_PROPERTY = {
    "yes": {
        "type": "boolean",
        "description": "Answer yes to confirmation prompts",
        "default": False,
    },
}

_JSON_PROPERTY = {
    "json": {
        "type": "boolean",
        "description": "Output as JSON for machine parsing",
        "default": False,
    },
}

_OPERATION_OUTPUT = {
    "type": "object",
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "name": {"type": "string"},
                    "success": {"type": "boolean"},
                    "operation": {"type": "string"},
                    "message": {"type": "string"},
                    "error": {"type": "string"},
                },
            },
        },
        "summary": {
            "type": "object",
            "properties": {
                "total": {"type": "integer"},
                "success": {"type": "integer"},
                "failed": {"type": "integer"},
            },
        },
    },
}


def _input_schema(*extra: dict, required: list[str] | None = None) -> dict:
    properties = dict(_COMMON_PROPERTIES)
    for item in extra:
        properties.update(item)
    return {
        "type": "object",
        "properties": properties,
        "required": required or [],
    }


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    return {
        "name": "git-muster",
        "version": __version__,
        "description": "Run the same Git operation across every repository declared in a JSON manifest. Clones, reports sync status, pulls, pushes and switches branches with bounded parallelism.",
        "usage": "git-muster <command> [options]",
        "tools": [
            {
                "name": "init",
                "description": "Clone every manifest repository that is not cloned yet and check out its configured branch and/or revision. Existing checkouts are verified against the manifest URL and skipped.",
                "inputSchema": _input_schema(
                    _JSON_PROPERTY,
                    {
                        "depth": {
                            "type": "integer",
                            "description": "Create shallow clones with this many commits",
                            "minimum": 1,
                        },
                    },
                ),
                "outputSchema": _OPERATION_OUTPUT,
                "examples": [
                    {
                        "description": "Clone everything listed in repos.json",
                        "command": "git-muster init --json",
                    },
                    {
                        "description": "Shallow clone only repositories labelled 'web'",
                        "command": "git-muster init --labels web --depth 1",
                    },
                ],
            },
            {
                "name": "status",
                "description": "Show configured ref, local branch/revision and remote revision for every cloned repository, classified as clean, unpushed, pullable, diverged or conflict. Queries the remote with ls-remote; nothing is fetched.",
                "inputSchema": _input_schema(_JSON_PROPERTY),
                "outputSchema": {
                    "type": "object",
                    "properties": {
                        "repositories": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "name": {"type": "string"},
                                    "path": {"type": "string"},
                                    "config_ref": {"type": "string"},
                                    "local_ref": {"type": "string"},
                                    "remote_ref": {"type": "string"},
                                    "branch": {"type": "string"},
                                    "local_hash": {"type": "string"},
                                    "remote_hash": {"type": "string"},
                                    "is_detached": {"type": "boolean"},
                                    "has_unpushed": {"type": "boolean"},
                                    "is_pullable": {"type": "boolean"},
                                    "has_conflict": {"type": "boolean"},
                                    "sync_status": {
                                        "type": "string",
                                        "enum": [
                                            "clean",
                                            "unpushed",
                                            "pullable",
                                            "diverged",
                                            "conflict",
                                        ],
                                    },
                                },
                            },
                        },
                        "summary": {
                            "type": "object",
                            "properties": {
                                "total": {"type": "integer"},
                                "clean": {"type": "integer"},
                                "unpushed": {"type": "integer"},
                                "pullable": {"type": "integer"},
                                "diverged": {"type": "integer"},
                                "conflict": {"type": "integer"},
                            },
                        },
                    },
                },
                "examples": [
                    {
                        "description": "Status of every repository as JSON",
                        "command": "git-muster status --json",
                    },
                    {
                        "description": "Status using a manifest piped on stdin",
                        "command": "cat repos.json | git-muster status -f - --json",
                    },
                ],
            },
            {
                "name": "sync",
                "description": "Fetch each checked-out branch and pull repositories that are behind their remote, one at a time. Repositories whose local and remote changes conflict are skipped. Without --rebase/--merge the user is asked when a pullable repository also has local commits.",
                "inputSchema": _input_schema(
                    {
                        "rebase": {
                            "type": "boolean",
                            "description": "true for --rebase, false for --merge; omit to be asked",
                        },
                    },
                ),
                "examples": [
                    {
                        "description": "Pull all repositories, rebasing local commits",
                        "command": "git-muster sync --rebase",
                    },
                ],
            },
            {
                "name": "push",
                "description": "Push repositories whose branch has commits the remote lacks. Refuses when any repository is pullable or conflicting; run sync first.",
                "inputSchema": _input_schema(_YES_PROPERTY),
                "examples": [
                    {
                        "description": "Push without the confirmation prompt",
                        "command": "git-muster push --yes",
                    },
                ],
            },
            {
                "name": "switch",
                "description": "Switch every repository to the same branch. With --create the branch is created where it does not exist. Upstream tracking is configured when origin has a compatible branch.",
                "inputSchema": _input_schema(
                    _YES_PROPERTY,
                    {
                        "branch": {
                            "type": "string",
                            "description": "Branch to switch to (must exist in every repository)",
                        },
                        "create": {
                            "type": "string",
                            "description": "Branch to switch to, created where missing",
                        },
                    },
                ),
                "outputSchema": _OPERATION_OUTPUT,
                "examples": [
                    {
                        "description": "Switch everything to main",
                        "command": "git-muster switch main",
                    },
                    {
                        "description": "Start a feature branch across all repositories",
                        "command": "git-muster switch -c feature/login --yes",
                    },
                ],
            },
            {
                "name": "freeze",
                "description": "Write a manifest describing the git checkouts in the current directory: origin URL plus the current branch, or the full revision when HEAD is detached.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "file": {
                            "type": "string",
                            "description": "Manifest file to write (must not exist)",
                        },
                        "verbose": _COMMON_PROPERTIES["verbose"],
                    },
                    "required": ["file"],
                },
                "examples": [
                    {
                        "description": "Capture the current workspace",
                        "command": "git-muster freeze -f repos.json",
                    },
                ],
            },
        ],
        "globalOptions": {
            "--file, -f": "Manifest file ('-' for stdin)",
            "--parallel, -p": "Bounded concurrency (1-128)",
            "--labels, -l": "Comma-separated label filter (any match)",
            "--verbose, -v": "Log git commands to stderr",
            "--json, -j": "Output in JSON format (init/status)",
        },
        "manifestFormat": {
            "description": "JSON object with a 'repositories' list and an optional 'parallel' integer",
            "repositoryFields": {
                "url": "Clone URL (required)",
                "id": "Checkout directory name (default: last URL path segment without .git)",
                "branch": "Branch to check out",
                "revision": "Commit to check out; with branch, the branch is reset to it",
                "labels": "List of labels for --labels filtering",
            },
            "example": '{"repositories": [{"url": "https://example.com/org/app.git", "branch": "main", "labels": ["web"]}]}',
        },
        "notes": [
            "Every existing checkout must be a git repository whose origin URL equals the manifest URL; otherwise commands stop before doing anything",
            "Use 'status --json' first to understand the current state before making changes",
            "push refuses to run while any repository is pullable or conflicting",
        ],
    }
