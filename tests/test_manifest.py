"""Tests for manifest parsing, validation and serialization."""

import io
import json

import pytest

from git_muster.manifest import (
    DEFAULT_MANIFEST_FILE,
    MANIFEST_ENV_VAR,
    ManifestError,
    ManifestFormatError,
    ManifestNotFoundError,
    ManifestValidationError,
    Repository,
    dump_manifest,
    filter_repositories,
    is_valid_git_ref,
    load_manifest,
    parse_labels,
    parse_manifest,
    resolve_manifest_file,
    resolve_repo_dir,
    validate_repositories,
    write_manifest,
)


class TestResolveRepoDir:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://github.com/org/app.git", "app"),
            ("https://github.com/org/app", "app"),
            ("https://github.com/org/app/", "app"),
            ("git@github.com:org/tools.git", "tools"),
            ("/srv/git/lib.git", "lib"),
        ],
    )
    def test_derived_from_url(self, url, expected):
        assert resolve_repo_dir(Repository(url=url)) == expected

    def test_explicit_id_wins(self):
        repo = Repository(url="https://github.com/org/app.git", id="frontend")
        assert resolve_repo_dir(repo) == "frontend"
        assert repo.display_name == "frontend"


class TestParseManifest:
    def test_full_entry(self):
        manifest = parse_manifest(
            json.dumps(
                {
                    "parallel": 4,
                    "repositories": [
                        {
                            "url": "https://example.com/org/app.git",
                            "id": "app",
                            "branch": "main",
                            "revision": "abc123",
                            "labels": ["web", "core"],
                        }
                    ],
                }
            )
        )
        assert manifest.parallel == 4
        repo = manifest.repositories[0]
        assert repo.url == "https://example.com/org/app.git"
        assert repo.branch == "main"
        assert repo.revision == "abc123"
        assert repo.labels == ("web", "core")

    def test_optional_fields_default(self):
        manifest = parse_manifest('{"repositories": [{"url": "u/app"}]}')
        repo = manifest.repositories[0]
        assert repo.id is None
        assert repo.branch is None
        assert repo.labels == ()
        assert manifest.parallel is None

    def test_empty_repository_list(self):
        assert parse_manifest('{"repositories": []}').repositories == []

    @pytest.mark.parametrize(
        "data",
        [
            "not json",
            "[]",
            "{}",
            '{"repositories": null}',
            '{"repositories": {"url": "x"}}',
            '{"repositories": ["x"]}',
            '{"repositories": [{"branch": "main"}]}',
            '{"repositories": [{"url": 5}]}',
            '{"repositories": [{"url": "x", "labels": "web"}]}',
            '{"repositories": [], "parallel": "4"}',
            '{"repositories": [], "parallel": true}',
        ],
    )
    def test_format_errors(self, data):
        with pytest.raises(ManifestFormatError):
            parse_manifest(data)


class TestValidateRepositories:
    def test_valid(self):
        validate_repositories(
            [
                Repository(url="https://example.com/a.git", branch="feature/x"),
                Repository(url="https://example.com/b.git", revision="v1.0"),
            ]
        )

    @pytest.mark.parametrize(
        "repo, message",
        [
            (Repository(url="https://example.com/a.git", id="bad id"), "unsafe characters"),
            (Repository(url="https://example.com/a.git", id=".."), "cannot be . or .."),
            (Repository(url="ext::sh -c touch% /tmp/pwned"), "ext:: protocol"),
            (Repository(url="https://example.com/\tx/a.git"), "control characters"),
            (Repository(url="https://example.com/a.git", branch="-delete"), "Invalid git reference"),
            (Repository(url="https://example.com/a.git", revision="a b"), "Invalid git reference"),
        ],
    )
    def test_invalid(self, repo, message):
        with pytest.raises(ManifestValidationError, match=message):
            validate_repositories([repo])

    def test_duplicate_directory(self):
        repos = [
            Repository(url="https://example.com/org1/app.git"),
            Repository(url="https://example.com/org2/app.git"),
        ]
        with pytest.raises(ManifestValidationError, match="Duplicate repository ID: app"):
            validate_repositories(repos)

    def test_duplicate_resolved_by_id(self):
        validate_repositories(
            [
                Repository(url="https://example.com/org1/app.git"),
                Repository(url="https://example.com/org2/app.git", id="app2"),
            ]
        )


def test_is_valid_git_ref():
    assert is_valid_git_ref("main")
    assert is_valid_git_ref("release/1.2")
    assert not is_valid_git_ref("--force")
    assert not is_valid_git_ref("bad;ref")
    assert not is_valid_git_ref("")


class TestResolveManifestFile:
    def test_explicit(self, monkeypatch):
        monkeypatch.setenv(MANIFEST_ENV_VAR, "/env/repos.json")
        assert resolve_manifest_file("mine.json") == "mine.json"

    def test_env(self, monkeypatch):
        monkeypatch.setenv(MANIFEST_ENV_VAR, "/env/repos.json")
        assert resolve_manifest_file(None) == "/env/repos.json"

    def test_default(self, monkeypatch):
        monkeypatch.delenv(MANIFEST_ENV_VAR, raising=False)
        assert resolve_manifest_file(None) == DEFAULT_MANIFEST_FILE


class TestLoadManifest:
    def test_from_file(self, tmp_path):
        path = tmp_path / "repos.json"
        path.write_text('{"repositories": [{"url": "https://example.com/app.git"}]}')
        manifest = load_manifest(path)
        assert manifest.source == path
        assert manifest.repositories[0].directory == "app"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestNotFoundError, match="File not found"):
            load_manifest(tmp_path / "nope.json")

    def test_stdin(self, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO('{"repositories": [{"url": "x/app"}]}'))
        manifest = load_manifest("-")
        assert manifest.source is None
        assert [r.url for r in manifest.repositories] == ["x/app"]

    def test_validation_runs(self, tmp_path):
        path = tmp_path / "repos.json"
        path.write_text('{"repositories": [{"url": "a/x.git"}, {"url": "b/x.git"}]}')
        with pytest.raises(ManifestError):
            load_manifest(path)


class TestLabels:
    def test_parse_labels(self):
        assert parse_labels(None) == []
        assert parse_labels("") == []
        assert parse_labels("web, api,,") == ["web", "api"]

    def test_filter_any_match(self):
        repos = [
            Repository(url="a", labels=("web",)),
            Repository(url="b", labels=("api", "core")),
            Repository(url="c"),
        ]
        assert [r.url for r in filter_repositories(repos, ["core", "web"])] == ["a", "b"]
        assert [r.url for r in filter_repositories(repos, ["nothing"])] == []

    def test_no_labels_keeps_all(self):
        repos = [Repository(url="a"), Repository(url="b")]
        assert filter_repositories(repos, []) == repos


class TestDumpManifest:
    def test_omits_empty_optional_fields(self):
        data = json.loads(
            dump_manifest(
                [
                    Repository(url="https://example.com/app.git", id="app", branch="main"),
                    Repository(url="https://example.com/lib.git", id="lib", revision="abc"),
                ]
            )
        )
        assert data == {
            "repositories": [
                {"id": "app", "url": "https://example.com/app.git", "branch": "main", "labels": []},
                {"id": "lib", "url": "https://example.com/lib.git", "revision": "abc", "labels": []},
            ]
        }

    def test_written_manifest_loads_back(self, tmp_path):
        path = tmp_path / "out.json"
        repos = [Repository(url="https://example.com/app.git", id="app", branch="main", labels=("web",))]
        write_manifest(path, repos)
        assert load_manifest(path).repositories == repos

    def test_refuses_overwrite(self, tmp_path):
        path = tmp_path / "out.json"
        path.write_text("{}")
        with pytest.raises(FileExistsError):
            write_manifest(path, [])
        assert path.read_text() == "{}"
