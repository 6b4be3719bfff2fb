"""Branch-Canvas server — MCP tools for building and rendering branching conversations."""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .frames import ManualFrameScheduler
from .measure import TextMeasurer
from .models import EngineConfig
from .recipe import load_config, parse_recipe, store_to_yaml
from .renderer import SvgRenderer
from .store import ConversationStore

logger = logging.getLogger(__name__)


# --- Constants ---
OUTPUT_DIR = Path(os.environ.get("BRANCH_CANVAS_OUTPUT_DIR", Path.home() / ".branch-canvas"))
CONFIG_PATH = os.environ.get("BRANCH_CANVAS_CONFIG")

server = Server("branch-canvas")


class CanvasSession:
    """One conversation store plus the pieces that advance and draw it."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.scheduler = ManualFrameScheduler()
        self.store = ConversationStore(config=config, scheduler=self.scheduler)
        self.measurer = TextMeasurer(self.store.config)
        self.title = "Untitled Conversation"

    def settle(self) -> None:
        """Measure every node and run the frame that applies the heights."""
        self.measurer.auto_size(self.store)
        self.scheduler.run_frame()

    def reset(self, title: str) -> None:
        self.scheduler = ManualFrameScheduler()
        self.store = ConversationStore(config=self.store.config, scheduler=self.scheduler)
        self.title = title

    def layout_summary(self) -> dict:
        step = self.store.config.grid_step
        return {
            "title": self.title,
            "active": self.store.active_node_id,
            "nodes": [
                {
                    "id": n.id,
                    "parent": n.parent_id,
                    "role": n.role,
                    "type": n.type,
                    "x": n.metadata.x * step,
                    "y": n.metadata.y * step,
                    "height": n.metadata.height,
                    "manual": n.metadata.manual_position,
                }
                for n in self.store.nodes
            ],
        }


def _load_session() -> CanvasSession:
    config = load_config(CONFIG_PATH) if CONFIG_PATH else None
    return CanvasSession(config)


session = _load_session()


def _ensure_output_dir():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


def _json(payload: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload))]


# --- Tool definitions ---

@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="add_message",
            description=(
                "Add a message to the conversation. By default it replies to the "
                "active message; pass parent_id to branch from another message, or "
                "set root to start a new conversation tree. The new message becomes active."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": "Message text"},
                    "role": {
                        "type": "string",
                        "enum": ["user", "assistant", "system"],
                        "default": "user",
                    },
                    "type": {
                        "type": "string",
                        "description": "Node type: text, code or thought (thought nodes annotate their parent)",
                        "default": "text",
                    },
                    "parent_id": {"type": "string", "description": "Message to reply to"},
                    "root": {
                        "type": "boolean",
                        "description": "Start a new root instead of replying",
                        "default": False,
                    },
                },
                "required": ["content"],
            },
        ),
        Tool(
            name="import_conversation",
            description=(
                "Replace the canvas with a conversation from a YAML recipe. "
                "Messages list a 'parent' id, or nest replies under 'children'. "
                "The whole import is laid out in one pass."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "yaml_recipe": {
                        "type": "string",
                        "description": (
                            "YAML string, for example:\n"
                            "title: Trip planning\n"
                            "nodes:\n"
                            "  - role: user\n"
                            "    content: 'Where should I go in May?'\n"
                            "    children:\n"
                            "      - role: assistant\n"
                            "        content: 'Lisbon or Kyoto.'\n"
                        ),
                    },
                },
                "required": ["yaml_recipe"],
            },
        ),
        Tool(
            name="move_node",
            description=(
                "Place a message at pixel coordinates. It keeps that position from "
                "then on, and its replies are laid out below it again."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "node_id": {"type": "string"},
                    "x": {"type": "number", "description": "Left edge in pixels"},
                    "y": {"type": "number", "description": "Top edge in pixels"},
                    "snap": {
                        "type": "boolean",
                        "description": "Round the position to the grid",
                        "default": True,
                    },
                },
                "required": ["node_id", "x", "y"],
            },
        ),
        Tool(
            name="delete_node",
            description=(
                "Delete a message. Its replies move up to its parent unless "
                "cascade is set, in which case the whole branch is removed."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "node_id": {"type": "string"},
                    "cascade": {"type": "boolean", "default": False},
                },
                "required": ["node_id"],
            },
        ),
        Tool(
            name="branch_from",
            description="Make a message active so the next message branches from it.",
            inputSchema={
                "type": "object",
                "properties": {"node_id": {"type": "string"}},
                "required": ["node_id"],
            },
        ),
        Tool(
            name="get_layout",
            description="Return every message with its computed pixel position.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="render_canvas",
            description=(
                "Render the conversation to an SVG file and save its YAML recipe "
                "alongside. Returns both paths."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "theme": {
                        "type": "string",
                        "enum": ["dark", "light"],
                        "default": "dark",
                    },
                    "filename": {
                        "type": "string",
                        "description": "Output filename (without extension). Default: auto-generated.",
                    },
                },
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]
    result = await handler(arguments or {})
    # Deferred relayouts and focus notifications land before the reply
    session.scheduler.run_frame()
    return result


async def _add_message(args: dict) -> list[TextContent]:
    store = session.store
    kwargs = {}
    if args.get("root"):
        kwargs["parent_id"] = None
    elif args.get("parent_id"):
        parent_id = args["parent_id"]
        if parent_id not in store:
            return [TextContent(type="text", text=f"Unknown parent: {parent_id}")]
        kwargs["parent_id"] = parent_id

    try:
        node = store.add_node(
            args["content"],
            args.get("role", "user"),
            type=args.get("type", "text"),
            autofocus=True,
            **kwargs,
        )
    except ValueError as e:
        return [TextContent(type="text", text=f"Invalid message: {e}")]

    session.settle()
    placed = store.get_node(node.id)
    step = store.config.grid_step
    return _json({
        "status": "success",
        "id": node.id,
        "parent": node.parent_id,
        "x": placed.metadata.x * step,
        "y": placed.metadata.y * step,
        "active": store.active_node_id,
    })


async def _import_conversation(args: dict) -> list[TextContent]:
    try:
        recipe = parse_recipe(args["yaml_recipe"])
    except Exception as e:
        return [TextContent(type="text", text=f"Failed to parse YAML recipe: {e}")]

    session.reset(recipe.title)
    try:
        added = session.store.add_nodes(recipe.payloads)
    except ValueError as e:
        return [TextContent(type="text", text=f"Invalid conversation: {e}")]
    if recipe.active_node_id:
        session.store.branch_from(recipe.active_node_id)
    session.settle()

    return _json({
        "status": "success",
        "title": recipe.title,
        "nodes": len(added),
        "skipped": len(recipe.payloads) - len(added),
        "active": session.store.active_node_id,
    })


async def _move_node(args: dict) -> list[TextContent]:
    store = session.store
    node_id = args["node_id"]
    if node_id not in store:
        return [TextContent(type="text", text=f"Unknown node: {node_id}")]

    store.set_node_position(node_id, float(args["x"]), float(args["y"]))
    if args.get("snap", True):
        store.snap_node_to_grid(node_id)

    node = store.get_node(node_id)
    step = store.config.grid_step
    return _json({
        "status": "success",
        "id": node_id,
        "x": node.metadata.x * step,
        "y": node.metadata.y * step,
    })


async def _delete_node(args: dict) -> list[TextContent]:
    store = session.store
    node_id = args["node_id"]
    if args.get("cascade", False):
        removed = store.delete_node_and_descendants(node_id)
    else:
        removed = 1 if store.delete_node(node_id) else 0
    if not removed:
        return [TextContent(type="text", text=f"Unknown node: {node_id}")]
    return _json({"status": "success", "removed": removed, "active": store.active_node_id})


async def _branch_from(args: dict) -> list[TextContent]:
    store = session.store
    node_id = args["node_id"]
    if node_id not in store:
        return [TextContent(type="text", text=f"Unknown node: {node_id}")]
    store.branch_from(node_id)
    return _json({
        "status": "success",
        "active": store.active_node_id,
        "path": [n.id for n in store.context_path()],
    })


async def _get_layout(args: dict) -> list[TextContent]:
    return _json(session.layout_summary())


async def _render_canvas(args: dict) -> list[TextContent]:
    """Render the current conversation to SVG."""
    _ensure_output_dir()

    filename = args.get("filename", str(uuid.uuid4())[:8])
    try:
        renderer = SvgRenderer(
            config=session.store.config,
            theme=args.get("theme", "dark"),
            measurer=session.measurer,
        )
    except ValueError as e:
        return [TextContent(type="text", text=str(e))]

    session.settle()
    svg_path = str(OUTPUT_DIR / f"{filename}.svg")
    yaml_path = str(OUTPUT_DIR / f"{filename}.yaml")
    try:
        renderer.render(session.store, output_path=svg_path)
    except Exception as e:
        logger.exception("render_canvas failed")
        return [TextContent(type="text", text=f"Rendering failed: {e}")]

    Path(yaml_path).write_text(store_to_yaml(session.store, session.title))

    return _json({
        "status": "success",
        "svg_path": svg_path,
        "yaml_path": yaml_path,
        "title": session.title,
        "nodes": len(session.store),
    })


TOOL_HANDLERS = {
    "add_message": _add_message,
    "import_conversation": _import_conversation,
    "move_node": _move_node,
    "delete_node": _delete_node,
    "branch_from": _branch_from,
    "get_layout": _get_layout,
    "render_canvas": _render_canvas,
}


def main():
    """Entry point for the MCP server."""
    import asyncio

    logging.basicConfig(
        level=os.environ.get("BRANCH_CANVAS_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    asyncio.run(_run())


async def _run():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


if __name__ == "__main__":
    main()
