"""git registry 的 API 策略与回退测试（不访问网络）"""

from __future__ import annotations

import base64

import pytest

from airules.core.exceptions import ConfigError, ResolutionError, TransportError
from airules.core.models import ContentSelector, RegistrySpec
from airules.registry.git import GitRegistry, GitStrategy, detect_api_type
from airules.registry.github_api import GitHubApiStrategy, next_link, parse_owner_repo
from airules.registry.gitlab_api import GitLabApiStrategy, project_api_base

GH = "https://api.github.com/repos/org/rules"
GL = "https://gitlab.com/api/v4/projects/org%2Frules"


def _spec(**data: object) -> RegistrySpec:
    base: dict[str, object] = {"type": "git", "url": "https://github.com/org/rules"}
    base.update(data)
    return RegistrySpec.from_dict("main", base)


def _blob(text: str) -> dict[str, str]:
    return {"encoding": "base64", "content": base64.b64encode(text.encode()).decode()}


class TestDetectApiType:
    def test_explicit(self) -> None:
        assert detect_api_type(_spec(api_type="gitlab")) == "gitlab"

    def test_inferred_from_host_with_token(self) -> None:
        assert detect_api_type(_spec(auth_token="t")) == "github"
        assert detect_api_type(_spec(url="git@gitlab.com:org/rules.git", auth_token="t")) == "gitlab"

    def test_no_token_means_clone(self) -> None:
        assert detect_api_type(_spec()) == ""

    def test_forced_clone(self) -> None:
        assert detect_api_type(_spec(api_type="clone", auth_token="t")) == ""

    def test_unknown_host(self) -> None:
        assert detect_api_type(_spec(url="https://git.example.com/o/r", auth_token="t")) == ""


class TestUrlHelpers:
    def test_parse_owner_repo(self) -> None:
        assert parse_owner_repo("git@github.com:Org/Rules.git") == ("https://api.github.com", "org", "rules")
        assert parse_owner_repo("https://ghe.corp.com/a/b")[0] == "https://ghe.corp.com/api/v3"

    def test_parse_owner_repo_invalid(self) -> None:
        with pytest.raises(ConfigError):
            parse_owner_repo("https://github.com/only-owner")

    def test_next_link(self) -> None:
        header = '<https://x/tags?page=2>; rel="next", <https://x/tags?page=5>; rel="last"'
        assert next_link(header) == "https://x/tags?page=2"
        assert next_link("") == ""

    def test_gitlab_project_base(self) -> None:
        assert project_api_base("https://gitlab.com/org/rules.git") == GL


@pytest.fixture
def github(fake_http) -> GitHubApiStrategy:
    fake_http.add(GH, json_data={"default_branch": "main"})
    fake_http.add(f"{GH}/branches/main", json_data={"commit": {"sha": "mainsha"}})
    fake_http.add(
        f"{GH}/tags?per_page=100",
        json_data=[{"name": "v1.0.0", "commit": {"sha": "sha100"}}],
        headers={"Link": f'<{GH}/tags?page=2>; rel="next"'},
    )
    fake_http.add(
        f"{GH}/tags?page=2",
        json_data=[{"name": "v1.1.0", "commit": {"sha": "sha110"}}],
    )
    fake_http.add(f"{GH}/git/trees/sha110?recursive=1", json_data={
        "truncated": False,
        "tree": [
            {"path": "rules", "type": "tree", "sha": "t1"},
            {"path": "rules/a.md", "type": "blob", "sha": "b1"},
            {"path": "rules/sub/c.md", "type": "blob", "sha": "b2"},
            {"path": ".github/x.md", "type": "blob", "sha": "b3"},
        ],
    })
    fake_http.add(f"{GH}/git/blobs/b1", json_data=_blob("A"))
    fake_http.add(f"{GH}/git/blobs/b2", json_data=_blob("C"))
    return GitHubApiStrategy(_spec(auth_token="tok"), fake_http)


class TestGitHubApi:
    def test_latest_is_default_branch_head(self, github: GitHubApiStrategy) -> None:
        assert github.ref_source(None).latest() == "mainsha"

    def test_tags_paginated(self, github: GitHubApiStrategy) -> None:
        assert github.tag_map(None) == {"v1.0.0": "sha100", "v1.1.0": "sha110"}

    def test_missing_branch(self, github: GitHubApiStrategy) -> None:
        with pytest.raises(ResolutionError, match="分支不存在"):
            github.branch_sha("nope", None)

    def test_fetch_files_filters(self, github: GitHubApiStrategy, fake_http) -> None:
        files = github.fetch_files("sha110", ["rules/*.md"], None)
        assert files == {"rules/a.md": b"A"}
        assert fake_http.count("/git/blobs/") == 1

    def test_auth_header(self, github: GitHubApiStrategy, fake_http) -> None:
        github.default_branch(None)
        assert fake_http.headers_seen[-1]["Authorization"] == "Bearer tok"

    def test_truncated_tree(self, github: GitHubApiStrategy, fake_http) -> None:
        fake_http.add(f"{GH}/git/trees/big?recursive=1", json_data={"truncated": True, "tree": []})
        with pytest.raises(TransportError, match="截断"):
            github.fetch_files("big", ["**"], None)

    def test_tree_entry_without_sha(self, github: GitHubApiStrategy, fake_http) -> None:
        fake_http.add(f"{GH}/git/trees/odd?recursive=1", json_data={
            "truncated": False,
            "tree": [{"path": "rules/a.md", "type": "blob"}],
        })
        with pytest.raises(TransportError, match="缺少 sha"):
            github.fetch_files("odd", ["**"], None)

    def test_tags_without_commit_sha_skipped(self, fake_http) -> None:
        fake_http.add(
            f"{GH}/tags?per_page=100",
            json_data=[{"name": "v1.0.0", "commit": {}}, {"name": "v2.0.0", "commit": {"sha": "s2"}}, "junk"],
        )
        strategy = GitHubApiStrategy(_spec(auth_token="tok"), fake_http)
        assert strategy.tag_map(None) == {"v2.0.0": "s2"}

    def test_registry_resolves_through_api(self, github: GitHubApiStrategy, fake_http) -> None:
        reg = GitRegistry(_spec(auth_token="tok"), http=fake_http, strategies=[github])
        assert reg.resolve_version("rules", "^1.0.0") == "sha110"
        assert reg.resolve_version("rules", "latest") == "mainsha"
        assert reg.get_files("rules", "sha110", ContentSelector.of(["rules/**/*.md"])) == {
            "rules/a.md": b"A", "rules/sub/c.md": b"C",
        }


class TestGitLabApi:
    def test_refs_and_files(self, fake_http) -> None:
        fake_http.add(GL, json_data={"default_branch": "trunk"})
        fake_http.add(f"{GL}/repository/branches/trunk", json_data={"commit": {"id": "trunksha"}})
        fake_http.add(
            f"{GL}/repository/tags?per_page=100&page=1",
            json_data=[{"name": "v2.0.0", "commit": {"id": "sha200"}}],
        )
        fake_http.add(
            f"{GL}/repository/tree?ref=sha200&recursive=true&per_page=100&page=1",
            json_data=[
                {"path": "rules/a.md", "type": "blob"},
                {"path": "docs/x.md", "type": "blob"},
            ],
        )
        fake_http.add(f"{GL}/repository/files/rules%2Fa.md/raw?ref=sha200", b"A")
        strategy = GitLabApiStrategy(_spec(url="https://gitlab.com/org/rules", api_type="gitlab"), fake_http)
        src = strategy.ref_source(None)
        assert src.latest() == "trunksha"
        assert src.lookup("v2.0.0") == "sha200"
        assert strategy.fetch_files("sha200", ["rules/*.md"], None) == {"rules/a.md": b"A"}


class FakeStrategy(GitStrategy):
    """以固定 tag / 分支表应答的策略，可配置为传输失败"""

    def __init__(self, label: str, error: Exception | None = None) -> None:
        self.label = label
        self.error = error
        self.calls = 0

    def _check(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error

    def ref_source(self, cancel):
        self._check()
        strategy = self

        class _Src:
            def latest(self) -> str:
                return f"{strategy.label}-head"

            def lookup(self, ref: str) -> str | None:
                return {"v1.0.0": f"{strategy.label}-100"}.get(ref)

            def list_tags(self) -> list[str]:
                return ["v1.0.0"]

            def resolve_branch(self, name: str) -> str:
                raise ResolutionError(f"分支不存在: {name}", spec=name)

        return _Src()

    def list_tags(self, cancel) -> list[str]:
        self._check()
        return ["v1.0.0"]

    def fetch_files(self, sha, patterns, cancel) -> dict[str, bytes]:
        self._check()
        return {"rules/a.md": sha.encode()}


class TestStrategyFallback:
    def test_transport_error_falls_back(self, fake_http) -> None:
        api = FakeStrategy("api", TransportError("HTTP 403 rate limited"))
        clone = FakeStrategy("clone")
        reg = GitRegistry(_spec(), http=fake_http, strategies=[api, clone])
        assert reg.resolve_version("rules", "1.0.0") == "clone-100"
        assert reg.get_files("rules", "abc1234") == {"rules/a.md": b"abc1234"}
        assert api.calls == 2
        assert clone.calls == 2

    def test_resolution_error_does_not_fall_back(self, fake_http) -> None:
        api = FakeStrategy("api")
        clone = FakeStrategy("clone")
        reg = GitRegistry(_spec(), http=fake_http, strategies=[api, clone])
        with pytest.raises(ResolutionError):
            reg.resolve_version("rules", "no-such-branch")
        assert clone.calls == 0

    def test_last_strategy_error_propagates_with_context(self, fake_http) -> None:
        reg = GitRegistry(
            _spec(), http=fake_http,
            strategies=[FakeStrategy("api", TransportError("down")),
                        FakeStrategy("clone", TransportError("also down"))],
        )
        with pytest.raises(TransportError, match="also down") as exc:
            reg.resolve_version("rules", "latest")
        assert str(exc.value).startswith("[main rules@latest]")

    def test_default_strategy_order(self, fake_http) -> None:
        reg = GitRegistry(_spec(auth_token="tok"), http=fake_http)
        try:
            assert [s.label for s in reg.strategies] == ["github-api", "clone"]
        finally:
            reg.close()

    def test_clone_only_without_token(self, fake_http) -> None:
        reg = GitRegistry(_spec(), http=fake_http)
        try:
            assert [s.label for s in reg.strategies] == ["clone"]
        finally:
            reg.close()
