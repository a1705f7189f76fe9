"""Tests for links and graph traversal."""

import pytest

from substrate.errors import DuplicateLinkError, NotFoundError

# temp_store and workspace fixtures are provided by conftest.py


@pytest.fixture
def items(temp_store, workspace):
    """Create sample items for link testing."""
    contents = {
        "a": "Service alpha handles billing",
        "b": "Queue bravo buffers invoices",
        "c": "Worker charlie sends receipts",
        "d": "Dashboard delta shows revenue",
        "e": "Ledger echo stores payments",
    }
    return {
        key: temp_store.add(workspace.id, text, force=True).id
        for key, text in contents.items()
    }


class TestLinking:
    """Tests for link/unlink functionality."""

    def test_link_basic(self, temp_store, items):
        link = temp_store.link(items["a"], items["b"])

        assert link.from_id == items["a"]
        assert link.to_id == items["b"]
        assert link.relation == "relates_to"

    def test_link_with_relation(self, temp_store, items):
        link = temp_store.link(items["a"], items["b"], "depends_on")
        assert link.relation == "depends_on"

    def test_invalid_relation(self, temp_store, items):
        with pytest.raises(ValueError, match="Invalid relation"):
            temp_store.link(items["a"], items["b"], "supersedes")

    def test_self_link_rejected(self, temp_store, items):
        with pytest.raises(ValueError, match="itself"):
            temp_store.link(items["a"], items["a"])

    def test_missing_item(self, temp_store, items):
        with pytest.raises(NotFoundError):
            temp_store.link(items["a"], "missing")

    def test_duplicate_pair_rejected_regardless_of_relation(self, temp_store, items):
        temp_store.link(items["a"], items["b"], "depends_on")

        with pytest.raises(DuplicateLinkError):
            temp_store.link(items["a"], items["b"], "blocks")

    def test_reverse_direction_is_distinct(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        reverse = temp_store.link(items["b"], items["a"])
        assert reverse.from_id == items["b"]

    def test_unlink(self, temp_store, items):
        temp_store.link(items["a"], items["b"])

        assert temp_store.unlink(items["a"], items["b"])
        assert not temp_store.unlink(items["a"], items["b"])
        # Can be linked again afterwards
        temp_store.link(items["a"], items["b"])

    def test_list_links_for_item(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["c"], items["a"])
        temp_store.link(items["d"], items["e"])

        views = temp_store.list_links(item_id=items["a"])

        assert len(views) == 2
        assert views[0].source.id == items["a"]
        assert views[1].target.id == items["a"]

    def test_list_links_for_workspace(self, temp_store, workspace, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["d"], items["e"])
        assert len(temp_store.list_links(workspace_id=workspace.id)) == 2


class TestRelated:
    """Tests for bounded graph traversal."""

    def test_direct_links_both_directions(self, temp_store, items):
        temp_store.link(items["a"], items["b"], "depends_on")
        temp_store.link(items["c"], items["a"], "implements")

        related = temp_store.related(items["a"], local_only=True)

        by_id = {r.item.id: r for r in related}
        assert by_id[items["b"]].direction == "outbound"
        assert by_id[items["b"]].relation == "depends_on"
        assert by_id[items["c"]].direction == "inbound"
        assert by_id[items["c"]].relation == "implements"
        assert all(r.hops == 1 for r in related)

    def test_depth_one_stops_at_neighbours(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["b"], items["c"])

        related = temp_store.related(items["a"], depth=1, local_only=True)
        assert [r.item.id for r in related] == [items["b"]]

    def test_depth_two_reaches_second_hop(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["b"], items["c"])
        temp_store.link(items["c"], items["d"])

        related = temp_store.related(items["a"], depth=2, local_only=True)

        hops = {r.item.id: r.hops for r in related}
        assert hops == {items["b"]: 1, items["c"]: 2}

    def test_depth_clamped(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["b"], items["c"])
        temp_store.link(items["c"], items["d"])

        deep = temp_store.related(items["a"], depth=10, local_only=True)
        shallow = temp_store.related(items["a"], depth=0, local_only=True)

        assert {r.item.id for r in deep} == {items["b"], items["c"]}
        assert {r.item.id for r in shallow} == {items["b"]}

    def test_cycle_reports_each_item_once(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["b"], items["c"])
        temp_store.link(items["c"], items["a"])

        related = temp_store.related(items["a"], depth=2, local_only=True)

        ids = [r.item.id for r in related]
        assert len(ids) == len(set(ids))
        assert items["a"] not in ids
        # c is directly linked (inbound) so it is reported at hop 1
        assert {r.item.id: r.hops for r in related} == {items["b"]: 1, items["c"]: 1}

    def test_seed_excluded_from_second_hop(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["b"], items["a"])

        related = temp_store.related(items["a"], depth=2, local_only=True)
        assert [r.item.id for r in related] == [items["b"]]

    def test_deleted_items_skipped(self, temp_store, items):
        temp_store.link(items["a"], items["b"])
        temp_store.link(items["a"], items["c"])
        temp_store.delete(items["b"])

        related = temp_store.related(items["a"], local_only=True)
        assert [r.item.id for r in related] == [items["c"]]

    def test_unlinked_item_has_no_related(self, temp_store, items):
        assert temp_store.related(items["e"], depth=2, local_only=True) == []

    def test_missing_seed(self, temp_store, items):
        with pytest.raises(NotFoundError):
            temp_store.related("missing", local_only=True)


class TestRemoteRelated:
    """Tests for the remote-first related lookup."""

    def test_unbound_workspace_uses_local_graph(self, temp_store, items, fake_remote):
        fake_remote.related_response = {"items": []}
        temp_store.link(items["a"], items["b"])

        related = temp_store.related(items["a"])
        assert [r.item.id for r in related] == [items["b"]]

    def test_bound_workspace_prefers_remote(self, temp_store, workspace, items, fake_remote):
        temp_store.link(items["a"], items["b"])
        temp_store.push(workspace.id)
        fake_remote.related_response = {
            "items": [
                {
                    "item": {"id": items["c"], "content": "Worker charlie sends receipts"},
                    "direction": "inbound",
                    "relation": "blocks",
                    "hops": 1,
                }
            ]
        }

        related = temp_store.related(items["a"])

        assert [r.item.id for r in related] == [items["c"]]
        assert related[0].relation == "blocks"
        assert related[0].direction == "inbound"

    def test_offline_remote_falls_back(self, temp_store, workspace, items, fake_remote):
        temp_store.link(items["a"], items["b"])
        temp_store.push(workspace.id)
        fake_remote.online = False

        related = temp_store.related(items["a"])
        assert [r.item.id for r in related] == [items["b"]]
