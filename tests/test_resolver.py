"""Tests for path-to-workspace resolution."""

import os

from substrate._resolver import path_is_under, relative_path, resolve_mount, scope_matches
from substrate.models import Mount


def make_mount(mount_id, path, workspace_id="ws"):
    return Mount(id=mount_id, workspace_id=workspace_id, path=path)


class TestPathIsUnder:
    """Tests for string prefix checks."""

    def test_same_path(self):
        assert path_is_under("/repo", "/repo")

    def test_child_path(self):
        assert path_is_under("/repo/src/app.py", "/repo")

    def test_sibling_with_shared_prefix(self):
        """A sibling whose name starts with the mount path is covered."""
        assert path_is_under("/repository", "/repo")

    def test_unrelated_path(self):
        assert not path_is_under("/elsewhere/repo", "/repo")

    def test_root_mount(self):
        assert path_is_under("/anything/at/all", os.sep)


class TestResolveMount:
    """Tests for longest-prefix mount resolution."""

    def test_longest_prefix_wins(self):
        outer = make_mount(1, "/work/repo", "outer")
        inner = make_mount(2, "/work/repo/packages/api", "inner")

        assert resolve_mount("/work/repo/packages/api/src", [outer, inner]) is inner
        assert resolve_mount("/work/repo/docs", [outer, inner]) is outer

    def test_order_of_candidates_does_not_matter(self):
        outer = make_mount(1, "/work/repo", "outer")
        inner = make_mount(2, "/work/repo/sub", "inner")

        assert resolve_mount("/work/repo/sub/x", [inner, outer]) is inner
        assert resolve_mount("/work/repo/sub/x", [outer, inner]) is inner

    def test_no_match_returns_none(self):
        mounts = [make_mount(1, "/work/repo")]
        assert resolve_mount("/elsewhere", mounts) is None

    def test_shared_name_prefix_resolves_to_mount(self):
        mount = make_mount(1, "/repo")
        assert resolve_mount("/repository/x", [mount]) is mount

    def test_empty_mounts(self):
        assert resolve_mount("/work", []) is None

    def test_ancestor_and_descendant_resolve_differently(self):
        """Two mounts where one is an ancestor of the other."""
        parent = make_mount(1, "/p1", "parent")
        child = make_mount(2, "/p1/p2", "child")

        assert resolve_mount("/p1/p2/x", [parent, child]).workspace_id == "child"
        assert resolve_mount("/p1/x", [parent, child]).workspace_id == "parent"


class TestRelativePath:
    """Tests for mount-relative paths."""

    def test_mount_root_is_empty(self):
        mount = make_mount(1, "/work/repo")
        assert relative_path("/work/repo", mount) == ""

    def test_nested_path(self):
        mount = make_mount(1, "/work/repo")
        assert relative_path("/work/repo/src/api", mount) == "src/api"

    def test_shared_name_prefix(self):
        mount = make_mount(1, "/repo")
        assert relative_path("/repository/x", mount) == "sitory/x"

    def test_root_mount(self):
        mount = make_mount(1, "/")
        assert relative_path("/srv/app", mount) == "srv/app"



class TestScopeMatches:
    """Tests for scope visibility."""

    def test_global_scope_always_visible(self):
        assert scope_matches("*", "src/api")
        assert scope_matches("*", "")

    def test_query_below_item_scope(self):
        assert scope_matches("src", "src/api")

    def test_item_scope_below_query(self):
        """Items scoped deeper than the query location are also visible."""
        assert scope_matches("src/api/handlers", "src")

    def test_unrelated_scope_hidden(self):
        assert not scope_matches("docs", "src/api")

    def test_no_query_path_shows_everything(self):
        assert scope_matches("docs", None)

    def test_mount_root_sees_scoped_items(self):
        assert scope_matches("docs", "")
