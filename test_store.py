"""ConversationStore tests — inserts, imports, deletion, heights, focus, observation."""

import pytest

from branch_canvas.frames import ManualFrameScheduler
from branch_canvas.models import EngineConfig, NodePayload
from branch_canvas.store import UNDO_WINDOW_SECONDS, ConversationStore

CONFIG = EngineConfig(
    node_width=100,
    node_height_default=40,
    layout_gap_x=20,
    layout_gap_y=20,
    grid_step=10,
)


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def scheduler():
    return ManualFrameScheduler()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(scheduler, clock):
    ids = iter(["r", "a", "b", "a1", "a2", "x1", "x2", "x3"])
    return ConversationStore(
        config=CONFIG,
        scheduler=scheduler,
        id_factory=lambda: next(ids),
        monotonic=clock,
    )


@pytest.fixture
def tree(store):
    """r ─┬─ a ─┬─ a1
          │     └─ a2
          └─ b
    """
    store.add_node("root", parent_id=None)
    store.add_node("a", "assistant", parent_id="r")
    store.add_node("b", "assistant", parent_id="r")
    store.add_node("a1", parent_id="a")
    store.add_node("a2", parent_id="a")
    return store


# --- Insertion ---

def test_add_node_defaults_to_active_parent(store):
    store.add_node("hello", parent_id=None)
    reply = store.add_node("hi there", "assistant")

    assert reply.parent_id == "r"
    assert store.active_node_id == "a"
    assert [n.id for n in store.context_path()] == ["r", "a"]


def test_add_node_with_coordinates_is_manual(store):
    node = store.add_node("pinned", parent_id=None, x=7, y=3)
    assert node.metadata.manual_position
    assert (node.metadata.x, node.metadata.y) == (7, 3)
    assert node.metadata.height == CONFIG.node_height_default


def test_annotation_does_not_become_active(tree):
    tree.branch_from("b")
    note = tree.add_node("considering options", "assistant", type="thought", parent_id="b")

    assert note.is_annotation
    assert tree.active_node_id == "b"
    assert tree.get_children("b")[0].id == note.id
    assert [n.id for n in tree.get_siblings("b")] == ["a", "b"]


def test_queries_hand_out_copies(tree):
    node = tree.get_node("a")
    node.content = "changed"
    node.metadata.x = 999
    assert tree.get_node("a").content == "a"
    assert tree.get_node("a").metadata.x != 999


def test_tree_queries(tree):
    assert [n.id for n in tree.get_children(None)] == ["r"]
    assert [n.id for n in tree.get_children("a")] == ["a1", "a2"]
    assert tree.get_parent("a1").id == "a"
    assert tree.get_parent("r") is None
    assert tree.get_sibling_index("a2") == (1, 2)
    assert tree.get_sibling_index("missing") == (-1, 0)
    assert tree.get_depth("a2") == 2
    assert tree.get_depth("missing") == -1
    assert tree.get_max_depth() == 2
    assert [n.id for n in tree.get_descendants("r")] == ["a", "b", "a1", "a2"]
    assert tree.get_active_leaf("r").id == "a1"
    assert tree.get_active_leaf("r", {"r": "b"}).id == "b"
    assert tree.get_active_leaf("r", {"a": "a2"}).id == "a2"
    assert len(tree) == 5
    assert "a1" in tree and "zz" not in tree


def test_search_is_case_insensitive(store):
    store.add_node("Plan a trip to Lisbon", parent_id=None)
    store.add_node("lisbon in may?")
    store.add_node("Kyoto")
    assert store.search_nodes("LISBON") == ["r", "a"]
    assert store.search_nodes("   ") == []


def test_duplicate_node_adds_sibling(tree):
    copy = tree.duplicate_node("b")
    assert copy.parent_id == "r"
    assert copy.content == "b"
    assert tree.active_node_id == copy.id
    assert tree.duplicate_node("missing") is None


# --- Bulk import ---

def test_add_nodes_accepts_children_before_parents():
    store = ConversationStore(config=CONFIG)
    added = store.add_nodes([
        {"id": "c2", "parent_id": "c1", "content": "grandchild"},
        {"id": "c1", "parent_id": "root", "content": "child"},
        NodePayload(id="root", content="root"),
    ])

    assert [n.id for n in added] == ["root", "c1", "c2"]
    assert [n.id for n in store.nodes] == ["root", "c1", "c2"]
    assert store.active_node_id == "root"
    assert store.get_node("c2").metadata.y == 12


def test_add_nodes_releases_waiting_children_after_their_parent():
    store = ConversationStore(config=CONFIG)
    added = store.add_nodes([
        {"id": "c1", "parent_id": "r", "content": "first reply"},
        {"id": "r", "content": "question"},
        {"id": "c0", "parent_id": "r", "content": "second reply"},
    ])

    assert [n.id for n in added] == ["r", "c1", "c0"]
    assert [n.id for n in store.get_children("r")] == ["c1", "c0"]
    assert store.get_node("c1").metadata.x < store.get_node("c0").metadata.x


def test_add_nodes_skips_duplicate_ids():
    store = ConversationStore(config=CONFIG)
    store.add_nodes([{"id": "x", "content": "first"}])
    added = store.add_nodes([
        {"id": "x", "content": "again"},
        {"id": "y", "content": "one"},
        {"id": "y", "content": "two"},
    ])

    assert [n.id for n in added] == ["y"]
    assert store.get_node("x").content == "first"
    assert store.get_node("y").content == "one"


def test_add_nodes_keeps_unresolved_parents_at_the_end():
    store = ConversationStore(config=CONFIG)
    added = store.add_nodes([
        {"id": "lost", "parent_id": "nowhere"},
        {"id": "r"},
    ])
    assert [n.id for n in added] == ["r", "lost"]


def test_add_nodes_respects_explicit_positions():
    store = ConversationStore(config=CONFIG)
    store.add_nodes([
        {"id": "r"},
        {"id": "a", "parent_id": "r", "metadata": {"x": 40, "y": 30}},
        {"id": "b", "parent_id": "r"},
    ])
    a = store.get_node("a")
    assert a.metadata.manual_position
    assert (a.metadata.x, a.metadata.y) == (40, 30)
    assert store.get_node("b").metadata.x == 6


def test_add_nodes_with_nothing_is_a_noop(store):
    events = []
    store.subscribe(events.append)
    assert store.add_nodes([]) == []
    assert events == []


# --- Updates ---

def test_update_node_merges_metadata_and_keeps_id(tree):
    assert tree.update_node("a1", {"id": "other", "content": "edited", "metadata": {"tags": ["x"]}})
    node = tree.get_node("a1")
    assert node.id == "a1"
    assert node.content == "edited"
    assert node.metadata.tags == ["x"]
    assert node.metadata.height == CONFIG.node_height_default


def test_update_node_refuses_cycles(tree):
    assert tree.would_create_cycle("a1", "r")
    assert not tree.update_node("r", {"parent_id": "a1"})
    assert tree.get_node("r").parent_id is None


def test_update_node_refuses_unknown_parent(tree):
    events = []
    tree.subscribe(events.append)
    assert not tree.update_node("b", {"parent_id": "ghost"})
    assert tree.get_node("b").parent_id == "r"
    assert [n.id for n in tree.get_children("r")] == ["a", "b"]
    assert events == []


def test_update_node_reparent_relayouts(tree):
    assert tree.update_node("a2", {"parent_id": "b"})
    assert [n.id for n in tree.get_children("b")] == ["a2"]
    b = tree.get_node("b")
    a2 = tree.get_node("a2")
    assert a2.metadata.x == b.metadata.x
    assert a2.metadata.y == b.metadata.y + 6


def test_update_unknown_node(store):
    assert not store.update_node("missing", {"content": "x"})


# --- Heights and the layout frame ---

def test_small_height_changes_are_ignored(tree, scheduler):
    assert not tree.update_node_height("a", 44)
    assert scheduler.pending == 0
    assert not tree.update_node_height("missing", 400)


@pytest.mark.parametrize("height", [float("inf"), float("-inf"), float("nan")])
def test_non_finite_heights_are_rejected(tree, scheduler, height):
    assert not tree.update_node_height("a", height)
    assert scheduler.pending == 0
    assert tree.get_node("a").metadata.height == CONFIG.node_height_default
    assert scheduler.run_frame() == 0


def test_height_changes_coalesce_into_one_relayout(tree, scheduler):
    layouts = []
    tree.subscribe(lambda e: layouts.append(e) if e.kind == "layout" else None)

    assert tree.update_node_height("a", 200)
    assert tree.update_node_height("b", 200)
    assert tree.update_node_height("a1", 90)
    assert tree.update_node_height("a", 300)
    assert scheduler.pending == 1
    assert layouts == []

    assert scheduler.run_frame() == 1
    assert len(layouts) == 1
    # a is 30 units tall now; its children sit below it
    assert tree.get_node("a1").metadata.y == 6 + 30 + 2

    tree.update_node_height("b", 100)
    assert scheduler.pending == 1


# --- Moves ---

def test_set_node_position_snaps_within_threshold(tree):
    tree.set_node_position("b", 113, 47, snap_threshold_px=4)
    b = tree.get_node("b")
    assert (b.metadata.x, b.metadata.y) == (11, 5)

    tree.set_node_position("b", 115, 47, snap_threshold_px=4)
    assert tree.get_node("b").metadata.x == 11.5


def test_snap_to_grid_marks_manual(tree):
    tree.move_node("b", 3, -4)
    tree.snap_node_to_grid("b")
    b = tree.get_node("b")
    assert b.metadata.manual_position
    assert (b.metadata.x, b.metadata.y) == (6, 6)


def test_snapping_rounds_halves_up(tree):
    # 25 px and 45 px are exactly half a grid step past 2 and 4
    tree.set_node_position("b", 25, 45, snap_threshold_px=5)
    b = tree.get_node("b")
    assert (b.metadata.x, b.metadata.y) == (3, 5)

    tree.set_node_position("a", 25, 45)
    assert (tree.get_node("a").metadata.x, tree.get_node("a").metadata.y) == (2.5, 4.5)
    tree.snap_node_to_grid("a")
    a = tree.get_node("a")
    assert (a.metadata.x, a.metadata.y) == (3, 5)


def test_move_leaves_siblings_alone(tree):
    before = tree.get_node("b").metadata.x
    tree.move_node("a", -200, 0)
    assert tree.get_node("b").metadata.x == before
    assert tree.get_node("a").metadata.x == -26
    assert tree.get_node("a1").metadata.x == -32


# --- Focus, active node, collapse ---

def test_autofocus_arrives_on_next_frame(store, scheduler):
    node = store.add_node("hi", parent_id=None, autofocus=True)
    assert store.pending_focus_node_id is None
    scheduler.run_frame()
    assert store.pending_focus_node_id == node.id

    store.clear_pending_focus()
    assert store.pending_focus_node_id is None


def test_clearing_focus_cancels_scheduled_notification(store, scheduler):
    store.add_node("hi", parent_id=None, autofocus=True)
    store.clear_pending_focus()
    scheduler.run_frame()
    assert store.pending_focus_node_id is None


def test_focus_on_node(tree):
    tree.focus_on_node("b")
    assert tree.pending_focus_node_id == "b"
    tree.focus_on_node("missing")
    assert tree.pending_focus_node_id == "b"


def test_branch_from_changes_active(tree):
    tree.branch_from("b")
    assert tree.active_node_id == "b"
    reply = tree.add_node("follow-up")
    assert reply.parent_id == "b"
    tree.branch_from("missing")
    assert tree.active_node_id == reply.id


def test_toggle_collapse(tree):
    tree.toggle_collapse("a")
    assert tree.is_collapsed("a")
    assert tree.is_in_collapsed_subtree("a1")
    assert not tree.is_in_collapsed_subtree("a")
    tree.toggle_collapse("a")
    assert not tree.is_in_collapsed_subtree("a1")


# --- Search ---

def test_search_focuses_first_match_and_expands_ancestors(tree):
    tree.toggle_collapse("a")
    events = []
    tree.subscribe(events.append)

    assert tree.search("  A ") == ["a", "a1", "a2"]
    assert tree.search_query == "A"
    assert tree.current_search_index == 0
    assert tree.pending_focus_node_id == "a"
    assert not tree.is_in_collapsed_subtree("a1")
    assert [e.kind for e in events] == ["search"]
    assert events[0].node_ids == ("a", "a1", "a2")


def test_search_matches_wrap_in_both_directions(tree):
    tree.search("a")
    assert tree.next_search_match() == "a1"
    assert tree.next_search_match() == "a2"
    assert tree.next_search_match() == "a"
    assert tree.previous_search_match() == "a2"
    assert tree.current_search_index == 2
    assert tree.pending_focus_node_id == "a2"


def test_search_steps_without_matches(tree):
    tree.search("nothing like this")
    assert tree.search_matches == []
    assert tree.next_search_match() is None
    assert tree.previous_search_match() is None
    assert tree.pending_focus_node_id is None


def test_clear_search(tree):
    tree.search("a")
    tree.next_search_match()
    events = []
    tree.subscribe(events.append)

    tree.clear_search()
    assert (tree.search_query, tree.search_matches, tree.current_search_index) == ("", [], 0)
    assert [e.kind for e in events] == ["search"]


# --- Tags and counts ---

def test_tags(tree):
    events = []
    tree.subscribe(events.append)

    assert tree.add_tag("a", "idea")
    assert tree.add_tag("a", "todo")
    assert not tree.add_tag("a", "idea")
    assert tree.get_tags("a") == ["idea", "todo"]

    assert tree.remove_tag("a", "idea")
    assert not tree.remove_tag("a", "idea")
    assert tree.get_tags("a") == ["todo"]

    assert not tree.add_tag("missing", "x")
    assert tree.get_tags("missing") == []
    assert [e.kind for e in events] == ["tags", "tags", "tags"]

    tree.get_tags("a").append("sneaky")
    assert tree.get_tags("a") == ["todo"]


def test_descendant_counts_around_annotations(tree):
    note = tree.add_node("considering", "assistant", type="thought", parent_id="a1", defer_layout=True)
    tree.add_node("after the note", parent_id=note.id, defer_layout=True)

    # the reply below the thought counts, the thought itself does not
    assert tree.get_descendant_count("r") == 5
    assert tree.get_descendant_count("a") == 3
    # a collapse only hides what sits in the tree
    assert tree.get_hidden_descendant_count("r") == 4
    assert tree.get_hidden_descendant_count("a") == 2
    assert tree.get_hidden_descendant_count("b") == 0
    assert tree.get_descendant_count("missing") == 0


# --- Deletion ---

def test_deleting_active_node_clears_active(tree):
    tree.branch_from("a2")
    assert tree.delete_node("a2")
    assert tree.active_node_id is None
    assert "a2" not in tree
    assert not tree.delete_node("a2")


def test_delete_moves_children_up(tree):
    assert tree.delete_node("a")
    assert [n.id for n in tree.get_children("r")] == ["b", "a1", "a2"]
    assert tree.get_node("a1").parent_id == "r"
    assert [tree.get_node(i).metadata.x for i in ("b", "a1", "a2")] == [-12, 0, 12]


def test_delete_root_makes_children_roots(tree):
    tree.delete_node("r")
    assert sorted(n.id for n in tree.get_children(None)) == ["a", "b"]


def test_cascade_delete(tree):
    tree.branch_from("a2")
    assert tree.delete_node_and_descendants("a") == 3
    assert [n.id for n in tree.nodes] == ["r", "b"]
    assert tree.active_node_id == "r"
    assert tree.delete_node_and_descendants("a") == 0


def test_restore_within_window(tree, clock):
    tree.delete_node("a")
    clock.now = UNDO_WINDOW_SECONDS - 1
    assert tree.restore_deleted()
    assert tree.get_node("a1").parent_id == "a"
    assert [n.id for n in tree.get_children("r")] == ["b", "a"]
    assert not tree.restore_deleted()


def test_restore_after_cascade(tree):
    tree.delete_node_and_descendants("a")
    assert tree.restore_deleted()
    assert len(tree) == 5
    assert tree.get_node("a2").parent_id == "a"


def test_restore_expires(tree, clock):
    tree.delete_node("b")
    clock.now = UNDO_WINDOW_SECONDS + 1
    assert not tree.restore_deleted()
    assert "b" not in tree


# --- Observation ---

def test_subscribe_and_version(store):
    events = []
    unsubscribe = store.subscribe(events.append)

    store.add_node("root", parent_id=None)
    store.add_node("reply")
    assert [e.kind for e in events] == ["add", "add"]
    assert events[1].node_ids == ("a",)
    assert events[-1].version == store.version
    assert [e.version for e in events] == sorted(e.version for e in events)

    unsubscribe()
    store.add_node("more")
    assert len(events) == 2
