"""Recipe and config tests — flat and nested YAML, snapshots, config clamping."""

import pytest
from pydantic import ValidationError

from branch_canvas.models import DEFAULT_ENGINE_CONFIG, EngineConfig
from branch_canvas.recipe import load_config, parse_file, parse_recipe, store_to_yaml
from branch_canvas.store import ConversationStore

FLAT = """
title: Trip planning
active: a1
nodes:
  - id: q1
    role: user
    content: "Where should I go in May?"
  - id: a1
    parent: q1
    role: assistant
    content: "Lisbon or Kyoto."
  - id: t1
    parent: a1
    type: thought
    role: assistant
    content: "User mentioned spring."
"""

NESTED = """
title: Nested
nodes:
  - role: user
    content: "Root question"
    children:
      - role: assistant
        content: "First answer"
        children:
          - role: user
            content: "Follow-up"
      - role: assistant
        content: "Second answer"
        x: 30
        y: 12
"""


def test_parse_flat_recipe():
    recipe = parse_recipe(FLAT)
    assert recipe.title == "Trip planning"
    assert recipe.active_node_id == "a1"
    assert [(p.id, p.parent_id) for p in recipe.payloads] == [
        ("q1", None), ("a1", "q1"), ("t1", "a1"),
    ]
    assert recipe.payloads[2].type == "thought"


def test_parse_nested_recipe_assigns_path_ids():
    recipe = parse_recipe(NESTED)
    ids = [p.id for p in recipe.payloads]
    parents = [p.parent_id for p in recipe.payloads]

    assert ids[:2] == ["n0", "n0.0"]
    assert ids[2] is None and ids[3] is None
    assert parents == [None, "n0", "n0.0", "n0"]
    assert recipe.payloads[3].metadata == {"x": 30, "y": 12}


def test_nested_recipe_imports_into_store():
    store = ConversationStore()
    added = store.add_nodes(parse_recipe(NESTED).payloads)

    assert len(added) == 4
    assert store.active_node_id == "n0"
    assert [n.content for n in store.get_children("n0")] == ["First answer", "Second answer"]
    second = store.get_children("n0")[1]
    assert second.metadata.manual_position
    assert (second.metadata.x, second.metadata.y) == (30, 12)


@pytest.mark.parametrize("text", ["", "- just\n- a list\n", "nodes: nope\n", "nodes:\n  - plain string\n"])
def test_invalid_recipes_raise(text):
    with pytest.raises(ValueError):
        parse_recipe(text)


def test_snapshot_round_trip(tmp_path):
    store = ConversationStore()
    store.add_nodes(parse_recipe(FLAT).payloads)
    store.branch_from("a1")
    store.move_node("a1", 40, 0)

    text = store_to_yaml(store, "Trip planning")
    path = tmp_path / "trip.yaml"
    path.write_text(text)
    recipe = parse_file(str(path))

    assert recipe.title == "Trip planning"
    assert recipe.active_node_id == "a1"
    assert [(p.id, p.parent_id, p.type) for p in recipe.payloads] == [
        ("q1", None, "text"), ("a1", "q1", "text"), ("t1", "a1", "thought"),
    ]
    # only the dragged node carries a position
    assert "x" not in recipe.payloads[0].metadata
    assert recipe.payloads[1].metadata["x"] == store.get_node("a1").metadata.x


def test_config_defaults():
    config = EngineConfig()
    assert config == DEFAULT_ENGINE_CONFIG
    assert config.node_width == 350
    assert config.layout_gap_x == 35
    assert config.layout_gap_y == 50
    assert config.grid_step == 20
    assert config.height_change_threshold == 5
    assert config.root_node_offset_x == -175


def test_config_clamps_bad_values():
    config = EngineConfig(layout_gap_x=-10, node_width=-1, grid_step=0)
    assert config.layout_gap_x == 0
    assert config.node_width == 0
    assert config.grid_step == 1
    # offsets may legitimately be negative
    assert EngineConfig(root_node_offset_x=-500).root_node_offset_x == -500


def test_config_is_immutable():
    with pytest.raises(ValidationError):
        DEFAULT_ENGINE_CONFIG.grid_step = 5


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("layout_gap_x: 50\ngrid_step: 10\n")
    config = load_config(str(path))
    assert config.layout_gap_x == 50
    assert config.grid_step == 10
    assert config.node_width == 350

    bad = tmp_path / "bad.yaml"
    bad.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        load_config(str(bad))
