"""YAML conversation recipes for Branch-Canvas.

Supports two shapes, which may be mixed:

1. Flat list — every message names its parent explicitly::

       title: Trip planning
       nodes:
         - id: q1
           role: user
           content: "Where should I go in May?"
         - id: a1
           parent: q1
           role: assistant
           content: "Lisbon or Kyoto."

2. Nested — replies are written under the message they answer::

       title: Trip planning
       nodes:
         - role: user
           content: "Where should I go in May?"
           children:
             - role: assistant
               content: "Lisbon or Kyoto."

Both are turned into ``NodePayload`` records for ``ConversationStore.add_nodes``.
Nested messages without an ``id`` get a path-derived one (``n0``, ``n0.1``)
so their children can reference them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .models import EngineConfig, NodePayload

_METADATA_KEYS = ("x", "y", "height", "tags")


@dataclass
class Recipe:
    """A parsed conversation recipe."""
    title: str = "Untitled Conversation"
    payloads: list[NodePayload] = field(default_factory=list)
    active_node_id: Optional[str] = None


def parse_recipe(yaml_str: str) -> Recipe:
    """Parse a YAML string into a Recipe."""
    data = yaml.safe_load(yaml_str)
    if not data:
        raise ValueError("Empty YAML input")
    if not isinstance(data, dict):
        raise ValueError("Recipe must be a mapping with a 'nodes' list")

    # A snapshot written by store_to_yaml wraps everything in "conversation"
    if "conversation" in data:
        data = data["conversation"] or {}

    node_list = data.get("nodes", [])
    if not isinstance(node_list, list):
        raise ValueError("'nodes' must be a list")

    payloads: list[NodePayload] = []
    for idx, node_data in enumerate(node_list):
        _flatten(node_data, None, f"n{idx}", payloads)
    return Recipe(
        title=data.get("title", "Untitled Conversation"),
        payloads=payloads,
        active_node_id=data.get("active"),
    )


def parse_file(path: str) -> Recipe:
    """Parse a YAML file into a Recipe."""
    content = Path(path).read_text()
    return parse_recipe(content)


def _flatten(
    data: dict,
    parent_id: Optional[str],
    default_id: str,
    out: list[NodePayload],
) -> None:
    """Append ``data`` and its nested children to ``out``, parents first."""
    if not isinstance(data, dict):
        raise ValueError(f"Node entry must be a mapping, got {type(data).__name__}")

    children = data.get("children") or []
    node_id = data.get("id")
    if node_id is None and children:
        node_id = default_id

    out.append(_parse_node(data, node_id, data.get("parent", parent_id)))
    for idx, child in enumerate(children):
        _flatten(child, node_id, f"{default_id}.{idx}", out)


def _parse_node(data: dict, node_id: Optional[str], parent_id: Optional[str]) -> NodePayload:
    """Parse a single message from YAML data."""
    metadata = dict(data.get("metadata") or {})
    for key in _METADATA_KEYS:
        if key in data:
            metadata[key] = data[key]

    return NodePayload(
        id=str(node_id) if node_id is not None else None,
        parent_id=str(parent_id) if parent_id is not None else None,
        content=str(data.get("content", "")),
        role=data.get("role", "user"),
        type=data.get("type", "text"),
        status=data.get("status"),
        created_at=data.get("created_at"),
        metadata=metadata,
        data=data.get("data"),
    )


def store_to_yaml(store, title: str = "Untitled Conversation") -> str:
    """Serialize a store back to a flat YAML recipe.

    Positions are written only for manually placed nodes, so re-importing
    gives automatic layout everywhere else.
    """
    nodes_data = []
    for node in store.nodes:
        node_data = {
            "id": node.id,
            "role": node.role,
            "content": node.content,
        }
        if node.parent_id is not None:
            node_data["parent"] = node.parent_id
        if node.type != "text":
            node_data["type"] = node.type
        if node.status:
            node_data["status"] = node.status
        if node.metadata.manual_position:
            node_data["x"] = node.metadata.x
            node_data["y"] = node.metadata.y
        if node.metadata.height is not None and node.metadata.height != store.config.node_height_default:
            node_data["height"] = node.metadata.height
        if node.metadata.tags:
            node_data["tags"] = list(node.metadata.tags)
        if node.data is not None:
            node_data["data"] = node.data
        nodes_data.append(node_data)

    data = {
        "conversation": {
            "title": title,
            "active": store.active_node_id,
            "nodes": nodes_data,
        }
    }
    return yaml.dump(data, default_flow_style=False, sort_keys=False)


def load_config(path: str) -> EngineConfig:
    """Read an ``EngineConfig`` from a YAML mapping of field overrides."""
    data = yaml.safe_load(Path(path).read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return EngineConfig(**data)
