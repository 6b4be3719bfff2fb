"""
Conversation store for Branch-Canvas.

The store owns the flat node collection (in creation order), the active
node pointer and a standing parent→children index that every mutation
keeps current.  It is the only way collaborators change tree state.

Mutations run synchronously to completion, including any layout they
trigger.  Two kinds of work are deferred to the next frame through
single-slot ``FrameSlot``s:

  - relayout after height changes — any number of ``update_node_height``
    calls inside one frame produce one bulk pass;
  - the focus notification after ``add_node(..., autofocus=True)``.

Observers call ``subscribe`` and receive one ``StoreEvent`` per mutation.
``version`` increases with every event, so a renderer can also poll it.
Query methods hand out deep copies; the live records never leave the store.

Deleting a single node splices it out of the tree: its children move up to
the deleted node's parent, keeping their creation order.
``delete_node_and_descendants`` removes the whole subtree instead.  Either
deletion can be undone with ``restore_deleted`` for 30 seconds.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from .frames import FrameSlot, ManualFrameScheduler
from .layout import LayoutResult, flush_layout, layout_children, round_grid
from .models import (
    ANNOTATION_TYPE,
    DEFAULT_ENGINE_CONFIG,
    BasicNodeTypes,
    CanvasNode,
    EngineConfig,
    NodeMetadata,
    NodePayload,
    merge_node,
)

logger = logging.getLogger(__name__)

UNDO_WINDOW_SECONDS = 30.0

_UNSET: Any = object()


@dataclass(frozen=True)
class StoreEvent:
    """Emitted once per store mutation."""
    kind: str
    node_ids: tuple[str, ...]
    version: int


@dataclass
class _DeletedBuffer:
    nodes: list[CanvasNode]
    active_node_id: Optional[str]
    timestamp: float
    # child id → parent id it had before a splice delete moved it
    reparented: dict[str, Optional[str]] = field(default_factory=dict)


def _new_id() -> str:
    return str(uuid.uuid4())


class ConversationStore:
    """Flat node collection with tree operations and automatic layout.

    Collaborators are injected so the store runs headless:

    ``scheduler``  — anything with ``request_frame(callback)``; defaults to a
                     ``ManualFrameScheduler`` that the owner advances.
    ``id_factory`` — returns a fresh unique id; defaults to ``uuid4``.
    ``clock``      — wall time for ``created_at``.
    ``monotonic``  — used for the undo window.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        scheduler=None,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.scheduler = scheduler if scheduler is not None else ManualFrameScheduler()
        self._id_factory = id_factory or _new_id
        self._clock = clock
        self._monotonic = monotonic

        self._nodes: list[CanvasNode] = []
        self._by_id: dict[str, CanvasNode] = {}
        self._children: dict[Optional[str], list[str]] = {}
        self._collapsed: set[str] = set()

        self._active_node_id: Optional[str] = None
        self.pending_focus_node_id: Optional[str] = None
        self._focus_target: Optional[str] = None

        self.search_query = ""
        self.search_matches: list[str] = []
        self.current_search_index = 0

        self._layout_slot = FrameSlot(self.scheduler, name="height-layout")
        self._focus_slot = FrameSlot(self.scheduler, name="focus")

        self._listeners: list[Callable[[StoreEvent], None]] = []
        self.version = 0
        self._deleted: Optional[_DeletedBuffer] = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[StoreEvent], None]) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, node_ids: Iterable[str] = ()) -> None:
        self.version += 1
        event = StoreEvent(kind=kind, node_ids=tuple(node_ids), version=self.version)
        for listener in list(self._listeners):
            listener(event)

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def _index_push(self, node: CanvasNode) -> None:
        self._nodes.append(node)
        self._by_id[node.id] = node
        self._children.setdefault(node.parent_id, []).append(node.id)

    def _rebuild_index(self) -> None:
        self._by_id = {n.id: n for n in self._nodes}
        self._children = {}
        for node in self._nodes:
            self._children.setdefault(node.parent_id, []).append(node.id)

    def _layout_children(self, parent_id: str) -> int:
        return layout_children(parent_id, self._by_id, self._children, self.config)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    @property
    def active_node_id(self) -> Optional[str]:
        return self._active_node_id

    @property
    def nodes(self) -> list[CanvasNode]:
        """Copies of every node, in creation order."""
        return [n.model_copy(deep=True) for n in self._nodes]

    def get_node(self, node_id: str) -> Optional[CanvasNode]:
        node = self._by_id.get(node_id)
        return node.model_copy(deep=True) if node is not None else None

    def get_children(self, parent_id: Optional[str]) -> list[CanvasNode]:
        """Children of ``parent_id`` in creation order, annotations included.

        ``None`` returns the roots.
        """
        return [
            self._by_id[cid].model_copy(deep=True)
            for cid in self._children.get(parent_id, ())
            if cid in self._by_id
        ]

    def get_parent(self, node_id: str) -> Optional[CanvasNode]:
        node = self._by_id.get(node_id)
        if node is None or node.parent_id is None:
            return None
        return self.get_node(node.parent_id)

    def get_siblings(self, node_id: str) -> list[CanvasNode]:
        """Non-annotation children of the node's parent, the node included."""
        node = self._by_id.get(node_id)
        if node is None:
            return []
        return [c for c in self.get_children(node.parent_id) if not c.is_annotation]

    def get_sibling_index(self, node_id: str) -> tuple[int, int]:
        """(index, total) among siblings; (-1, 0) when the node is unknown."""
        siblings = self.get_siblings(node_id)
        for idx, sibling in enumerate(siblings):
            if sibling.id == node_id:
                return idx, len(siblings)
        return -1, len(siblings)

    def _ancestors(self, node_id: str) -> list[str]:
        """Ids from ``node_id`` up to its root, stopping at a missing parent."""
        chain: list[str] = []
        seen: set[str] = set()
        current = self._by_id.get(node_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current.id)
            current = self._by_id.get(current.parent_id) if current.parent_id else None
        return chain

    def get_depth(self, node_id: str) -> int:
        """Root = 0; -1 when the node is unknown."""
        if node_id not in self._by_id:
            return -1
        return len(self._ancestors(node_id)) - 1

    def get_max_depth(self) -> int:
        """Deepest leaf over all non-annotation nodes; -1 for an empty store."""
        if not self._nodes:
            return -1
        deepest = 0
        for node in self._nodes:
            if node.is_annotation or self._layout_child_ids(node.id):
                continue
            deepest = max(deepest, self.get_depth(node.id))
        return deepest

    def _layout_child_ids(self, node_id: str) -> list[str]:
        return [
            cid for cid in self._children.get(node_id, ())
            if cid in self._by_id and not self._by_id[cid].is_annotation
        ]

    def _subtree_ids(self, node_id: str) -> list[str]:
        """``node_id`` and every descendant, annotations included, breadth first."""
        result = [node_id]
        seen = {node_id}
        idx = 0
        while idx < len(result):
            for cid in self._children.get(result[idx], ()):
                if cid not in seen:
                    seen.add(cid)
                    result.append(cid)
            idx += 1
        return result

    def get_descendants(self, node_id: str) -> list[CanvasNode]:
        """Non-annotation descendants, breadth first."""
        if node_id not in self._by_id:
            return []
        return [
            self._by_id[nid].model_copy(deep=True)
            for nid in self._subtree_ids(node_id)[1:]
            if not self._by_id[nid].is_annotation
        ]

    def get_descendant_count(self, node_id: str) -> int:
        """Count non-annotation descendants.

        Annotations are not counted but the walk continues through them, so
        replies hanging below a thought still count.
        """
        if node_id not in self._by_id:
            return 0
        return sum(
            1 for nid in self._subtree_ids(node_id)[1:]
            if not self._by_id[nid].is_annotation
        )

    def get_hidden_descendant_count(self, node_id: str) -> int:
        """Number of nodes a collapse of ``node_id`` hides from the tree.

        The walk stops at annotations, which are drawn beside their parent
        rather than in the tree.
        """
        if node_id not in self._by_id:
            return 0
        count = 0
        seen = {node_id}
        queue = [node_id]
        while queue:
            for cid in self._layout_child_ids(queue.pop(0)):
                if cid not in seen:
                    seen.add(cid)
                    count += 1
                    queue.append(cid)
        return count

    def get_tags(self, node_id: str) -> list[str]:
        node = self._by_id.get(node_id)
        return list(node.metadata.tags) if node is not None else []

    def context_path(self) -> list[CanvasNode]:
        """Nodes from the root down to the active node."""
        if self._active_node_id is None:
            return []
        chain = self._ancestors(self._active_node_id)
        return [self._by_id[nid].model_copy(deep=True) for nid in reversed(chain)]

    def get_active_leaf(
        self,
        node_id: str,
        last_visited_children: Optional[dict[str, str]] = None,
    ) -> Optional[CanvasNode]:
        """Follow children down to a leaf, preferring remembered branches."""
        current = self._by_id.get(node_id)
        seen: set[str] = set()
        while current is not None and current.id not in seen:
            seen.add(current.id)
            kids = self._layout_child_ids(current.id)
            if not kids:
                break
            hint = (last_visited_children or {}).get(current.id)
            current = self._by_id[hint if hint in kids else kids[0]]
        return current.model_copy(deep=True) if current is not None else None

    def is_collapsed(self, node_id: str) -> bool:
        return node_id in self._collapsed

    def is_in_collapsed_subtree(self, node_id: str) -> bool:
        """True when any proper ancestor is collapsed."""
        return any(nid in self._collapsed for nid in self._ancestors(node_id)[1:])

    def search_nodes(self, query: str) -> list[str]:
        """Ids of nodes whose content contains ``query``, case-insensitively."""
        needle = query.strip().lower()
        if not needle:
            return []
        return [n.id for n in self._nodes if needle in n.content.lower()]

    def would_create_cycle(self, parent_id: str, child_id: str) -> bool:
        """Would making ``parent_id`` the parent of ``child_id`` close a loop?"""
        return child_id in self._ancestors(parent_id)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def layout_children(self, parent_id: str) -> None:
        """Incremental layout of the subtree below ``parent_id``."""
        if self._layout_children(parent_id):
            self._emit("layout", [parent_id])

    def flush_layout_from_root(self) -> LayoutResult:
        """Bulk layout of every root's forest."""
        result = flush_layout(self._nodes, self.config)
        self._emit("layout", result.roots)
        return result

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def add_node(
        self,
        content: str,
        role: str = "user",
        *,
        type: str = BasicNodeTypes.TEXT.value,
        parent_id: Optional[str] = _UNSET,
        x: Optional[float] = None,
        y: Optional[float] = None,
        status: Optional[str] = None,
        data: Any = None,
        autofocus: bool = False,
        defer_layout: bool = False,
    ) -> CanvasNode:
        """Add one node and return a copy of it.

        ``parent_id`` defaults to the active node; pass ``None`` for a root.
        Giving ``x`` or ``y`` places the node manually.  Unless
        ``defer_layout`` is set, the parent's children are laid out again.
        """
        if parent_id is _UNSET:
            parent_id = self._active_node_id

        node = CanvasNode(
            id=self._id_factory(),
            parent_id=parent_id,
            role=role,
            type=type,
            content=content,
            status=status,
            created_at=self._clock(),
            metadata=NodeMetadata(
                x=x if x is not None else 0.0,
                y=y if y is not None else 0.0,
                height=self.config.node_height_default,
                manual_position=x is not None or y is not None,
            ),
            data=data,
        )
        self._index_push(node)

        # Annotations leave the active node where it is
        if type != ANNOTATION_TYPE:
            self._active_node_id = node.id

        if parent_id is not None and not defer_layout:
            self._layout_children(parent_id)

        if autofocus:
            self._focus_target = node.id
            self._focus_slot.request(self._apply_focus)

        logger.debug(f"add_node: {node.id} under {parent_id}")
        self._emit("add", [node.id])
        return node.model_copy(deep=True)

    def _apply_focus(self) -> None:
        if self._focus_target in self._by_id:
            self.pending_focus_node_id = self._focus_target
            self._emit("focus", [self._focus_target])
        self._focus_target = None

    def add_nodes(self, payloads: Iterable[Union[NodePayload, dict]]) -> list[CanvasNode]:
        """Add a batch of nodes with a single bulk layout pass.

        Payloads are reordered so every node follows its parent; payloads
        whose parent never resolves keep their relative order at the end.
        Children that arrive before their parent are released right after
        it, ahead of later input: ``[c1 -> r, r, c0 -> r]`` lands as
        ``r, c1, c0``, so siblings keep their input order.
        A payload whose id repeats one already seen (in the batch or the
        store) is skipped.
        """
        records = [
            p if isinstance(p, NodePayload) else NodePayload.model_validate(p)
            for p in payloads
        ]
        if not records:
            return []

        # --- Step 1: assign ids, drop duplicates (first occurrence wins) ---
        seen = set(self._by_id)
        unique: list[NodePayload] = []
        for record in records:
            node_id = record.id or self._id_factory()
            if node_id in seen:
                logger.warning(f"add_nodes: duplicate id {node_id} skipped")
                continue
            seen.add(node_id)
            unique.append(record.model_copy(update={"id": node_id}))

        # --- Step 2: parents before children ---
        available = set(self._by_id)
        waiting: dict[str, list[NodePayload]] = {}
        ordered: list[NodePayload] = []

        def emit(record: NodePayload) -> None:
            queue = [record]
            while queue:
                current = queue.pop(0)
                ordered.append(current)
                available.add(current.id)
                queue.extend(waiting.pop(current.id, []))

        for record in unique:
            if record.parent_id is None or record.parent_id in available:
                emit(record)
            else:
                waiting.setdefault(record.parent_id, []).append(record)

        emitted = {r.id for r in ordered}
        unresolved = [r for r in unique if r.id not in emitted]
        if unresolved:
            logger.warning(f"add_nodes: {len(unresolved)} payloads with unresolved parents")
        ordered.extend(unresolved)

        # --- Step 3: build nodes ---
        new_nodes = [self._node_from_payload(record) for record in ordered]
        for node in new_nodes:
            self._index_push(node)

        first_root = next((n for n in new_nodes if n.parent_id is None), None)
        if first_root is not None:
            self._active_node_id = first_root.id

        # --- Step 4: one bulk layout pass ---
        flush_layout(self._nodes, self.config)

        logger.info(f"add_nodes: imported {len(new_nodes)} nodes")
        self._emit("add_many", [n.id for n in new_nodes])
        return [n.model_copy(deep=True) for n in new_nodes]

    def _node_from_payload(self, record: NodePayload) -> CanvasNode:
        meta = dict(record.metadata)
        explicit = isinstance(meta.get("x"), (int, float)) or isinstance(meta.get("y"), (int, float))
        meta.setdefault("height", self.config.node_height_default)
        if explicit:
            meta["manual_position"] = True
        return CanvasNode(
            id=record.id,
            parent_id=record.parent_id,
            role=record.role,
            type=record.type,
            content=record.content,
            status=record.status,
            error_message=record.error_message,
            created_at=record.created_at if record.created_at is not None else self._clock(),
            metadata=NodeMetadata(**meta),
            data=record.data,
        )

    def duplicate_node(self, node_id: str) -> Optional[CanvasNode]:
        """Add a sibling copy of ``node_id`` and lay out the shared parent."""
        source = self._by_id.get(node_id)
        if source is None:
            return None
        node = CanvasNode(
            id=self._id_factory(),
            parent_id=source.parent_id,
            role=source.role,
            type=source.type,
            content=source.content,
            created_at=self._clock(),
            metadata=NodeMetadata(
                x=source.metadata.x + self.config.layout_gap_x / self.config.grid_step,
                y=source.metadata.y,
                height=source.metadata.height,
                tags=list(source.metadata.tags),
            ),
            data=source.model_copy(deep=True).data,
        )
        self._index_push(node)
        if not node.is_annotation:
            self._active_node_id = node.id
        if node.parent_id is not None:
            self._layout_children(node.parent_id)
        self._emit("add", [node.id])
        return node.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_node(self, node_id: str, updates: dict[str, Any]) -> bool:
        """Merge ``updates`` into a node (see ``merge_node``).

        A new ``parent_id`` is refused when it names no node or would
        create a cycle.
        Re-parenting triggers a bulk relayout.
        """
        node = self._by_id.get(node_id)
        if node is None:
            return False

        new_parent = updates.get("parent_id", node.parent_id)
        if new_parent != node.parent_id and new_parent is not None:
            if new_parent not in self._by_id:
                logger.warning(f"update_node: unknown parent {new_parent} for {node_id}")
                return False
            if self.would_create_cycle(new_parent, node_id):
                logger.warning(f"update_node: parent {new_parent} for {node_id} would create a cycle")
                return False

        changed = merge_node(node, updates)
        if not changed:
            return True
        if "parent_id" in changed:
            self._rebuild_index()
            flush_layout(self._nodes, self.config)
        self._emit("update", [node_id])
        return True

    def update_node_height(self, node_id: str, height: float) -> bool:
        """Record a rendered height; relayout is coalesced into the next frame.

        Returns False when the node is unknown, the height is not finite, or
        the change is below the configured threshold.
        """
        node = self._by_id.get(node_id)
        if node is None:
            return False
        if not math.isfinite(height):
            logger.warning(f"update_node_height: ignoring height {height} for {node_id}")
            return False
        current = node.metadata.height
        if current is None:
            current = self.config.node_height_default
        if abs(current - height) < self.config.height_change_threshold:
            return False

        node.metadata.height = height
        self._layout_slot.request(self.flush_layout_from_root)
        self._emit("height", [node_id])
        return True

    def _place(self, node: CanvasNode, x: float, y: float) -> None:
        node.metadata.x = x
        node.metadata.y = y
        node.metadata.manual_position = True
        self._layout_children(node.id)
        self._emit("move", [node.id])

    def move_node(self, node_id: str, dx_px: float, dy_px: float) -> None:
        """Move a node by a pixel delta; its children follow."""
        node = self._by_id.get(node_id)
        if node is None:
            return
        step = self.config.grid_step
        self._place(node, node.metadata.x + dx_px / step, node.metadata.y + dy_px / step)

    def set_node_position(
        self,
        node_id: str,
        x_px: float,
        y_px: float,
        snap_threshold_px: Optional[float] = None,
    ) -> None:
        """Place a node at pixel coordinates, e.g. during a drag.

        With ``snap_threshold_px`` each axis snaps to the nearest grid line
        when it lies within that many pixels of it.
        """
        node = self._by_id.get(node_id)
        if node is None:
            return
        step = self.config.grid_step
        x_grid = x_px / step
        y_grid = y_px / step
        if snap_threshold_px is not None and snap_threshold_px > 0:
            threshold = snap_threshold_px / step
            snap_x = round_grid(x_grid)
            snap_y = round_grid(y_grid)
            if abs(x_grid - snap_x) <= threshold:
                x_grid = snap_x
            if abs(y_grid - snap_y) <= threshold:
                y_grid = snap_y
        self._place(node, x_grid, y_grid)

    def snap_node_to_grid(self, node_id: str) -> None:
        """Round a node's position to whole grid units (e.g. on drop)."""
        node = self._by_id.get(node_id)
        if node is None:
            return
        self._place(node, round_grid(node.metadata.x), round_grid(node.metadata.y))

    # ------------------------------------------------------------------
    # Active node, focus, collapse
    # ------------------------------------------------------------------

    def branch_from(self, node_id: str) -> None:
        """Make ``node_id`` active so the next message branches from it."""
        if node_id not in self._by_id or node_id == self._active_node_id:
            return
        self._active_node_id = node_id
        self._emit("active", [node_id])

    def focus_on_node(self, node_id: str) -> None:
        if node_id not in self._by_id:
            return
        self.pending_focus_node_id = node_id
        self._emit("focus", [node_id])

    def clear_pending_focus(self) -> None:
        """Dismiss the focus notification, including one still scheduled."""
        self._focus_target = None
        if self.pending_focus_node_id is not None:
            self.pending_focus_node_id = None
            self._emit("focus")

    def toggle_collapse(self, node_id: str) -> None:
        if node_id not in self._by_id:
            return
        if node_id in self._collapsed:
            self._collapsed.discard(node_id)
        else:
            self._collapsed.add(node_id)
        self._emit("collapse", [node_id])

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str) -> list[str]:
        """Run a search and focus its first match.

        Collapsed ancestors of every match are expanded so the matches are
        visible.  An empty query clears the matches.
        """
        self.search_query = query.strip()
        self.search_matches = self.search_nodes(query)
        self.current_search_index = 0
        if self.search_matches:
            for match in self.search_matches:
                for nid in self._ancestors(match)[1:]:
                    self._collapsed.discard(nid)
            self.pending_focus_node_id = self.search_matches[0]
        self._emit("search", self.search_matches)
        return list(self.search_matches)

    def _step_search(self, delta: int) -> Optional[str]:
        if not self.search_matches:
            return None
        count = len(self.search_matches)
        self.current_search_index = (self.current_search_index + delta) % count
        match = self.search_matches[self.current_search_index]
        self.pending_focus_node_id = match
        self._emit("search", [match])
        return match

    def next_search_match(self) -> Optional[str]:
        """Focus the next match, wrapping to the first."""
        return self._step_search(1)

    def previous_search_match(self) -> Optional[str]:
        """Focus the previous match, wrapping to the last."""
        return self._step_search(-1)

    def clear_search(self) -> None:
        self.search_query = ""
        self.search_matches = []
        self.current_search_index = 0
        self._emit("search")

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def add_tag(self, node_id: str, tag: str) -> bool:
        """Tag a node.  Returns False for an unknown node or a repeated tag."""
        node = self._by_id.get(node_id)
        if node is None or tag in node.metadata.tags:
            return False
        node.metadata.tags.append(tag)
        self._emit("tags", [node_id])
        return True

    def remove_tag(self, node_id: str, tag: str) -> bool:
        node = self._by_id.get(node_id)
        if node is None or tag not in node.metadata.tags:
            return False
        node.metadata.tags = [t for t in node.metadata.tags if t != tag]
        self._emit("tags", [node_id])
        return True

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def _remember_deleted(self, nodes: list[CanvasNode], reparented: dict[str, Optional[str]]) -> None:
        self._deleted = _DeletedBuffer(
            nodes=[n.model_copy(deep=True) for n in nodes],
            active_node_id=self._active_node_id,
            timestamp=self._monotonic(),
            reparented=reparented,
        )

    def delete_node(self, node_id: str) -> bool:
        """Remove one node; its children move up to the removed node's parent."""
        node = self._by_id.get(node_id)
        if node is None:
            return False

        orphans = list(self._children.get(node_id, ()))
        self._remember_deleted([node], {cid: node_id for cid in orphans})

        for cid in orphans:
            self._by_id[cid].parent_id = node.parent_id
        self._nodes.remove(node)
        self._collapsed.discard(node_id)
        self._rebuild_index()

        if self._active_node_id == node_id:
            self._active_node_id = None

        if node.parent_id in self._by_id:
            self._layout_children(node.parent_id)
        else:
            for cid in orphans:
                self._layout_children(cid)

        logger.debug(f"delete_node: {node_id}, {len(orphans)} children moved up")
        self._emit("delete", [node_id])
        return True

    def delete_node_and_descendants(self, node_id: str) -> int:
        """Remove a node and its whole subtree.  Returns the number removed.

        When the active node goes with it, the removed node's parent becomes
        active.
        """
        node = self._by_id.get(node_id)
        if node is None:
            return 0

        doomed = set(self._subtree_ids(node_id))
        removed = [n for n in self._nodes if n.id in doomed]
        self._remember_deleted(removed, {})

        self._nodes = [n for n in self._nodes if n.id not in doomed]
        self._collapsed -= doomed
        self._rebuild_index()

        if self._active_node_id in doomed:
            self._active_node_id = node.parent_id if node.parent_id in self._by_id else None

        flush_layout(self._nodes, self.config)
        self._emit("delete", [n.id for n in removed])
        return len(removed)

    def restore_deleted(self) -> bool:
        """Undo the last deletion if it happened within the undo window."""
        buffer = self._deleted
        self._deleted = None
        if buffer is None:
            return False
        if self._monotonic() - buffer.timestamp > UNDO_WINDOW_SECONDS:
            logger.debug("restore_deleted: undo window expired")
            return False

        restored = [n for n in buffer.nodes if n.id not in self._by_id]
        self._nodes.extend(restored)
        for child_id, parent_id in buffer.reparented.items():
            child = self._by_id.get(child_id)
            if child is not None:
                child.parent_id = parent_id
        self._rebuild_index()

        if buffer.active_node_id in self._by_id:
            self._active_node_id = buffer.active_node_id

        flush_layout(self._nodes, self.config)
        self._emit("restore", [n.id for n in restored])
        return True
