"""File/tag graph: adjacency, hover highlighting, search and keyboard navigation.

Everything here is a pure function of its inputs. Callers keep the view
state (`ViewState`) and the node/edge snapshot (`GraphSnapshot`) and call
back in whenever the hover target, the edge list or the query changes.
The adjacency map is rebuilt from the edge list every time; it is never
patched in place.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional, Sequence

FILE = "file"
TAG = "tag"

NODE_OPACITY_FULL = 1.0
NODE_OPACITY_DIMMED = 0.3
LINK_OPACITY_IDLE = 0.5
LINK_OPACITY_HIGHLIGHTED = 1.0
LINK_OPACITY_DIMMED = 0.1

Adjacency = dict[str, set[str]]


@dataclass(frozen=True)
class GraphNode:
    id: str
    kind: str
    name: str
    ref_id: Optional[int] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str


class Direction(str, Enum):
    NEXT = "next"
    PREV = "prev"
    CONNECTED_NEXT = "connected-next"
    CONNECTED_PREV = "connected-prev"


def node_id(kind: str, ref_id) -> str:
    """Composite node id, e.g. ``file:12`` or ``tag:3``."""
    return f"{kind}:{ref_id}"


def link_key(source_id: str, target_id: str) -> str:
    return f"{source_id}-{target_id}"


def build_graph(files: Iterable, tags: Iterable, file_tags: Iterable) -> tuple[list[GraphNode], list[GraphEdge]]:
    """Derive graph nodes and edges from store rows.

    `files`, `tags` and `file_tags` are File/Tag/FileTag rows (or anything
    with the same attributes). Soft-deleted files are left out, and so are
    links whose file or tag is not in the node list. Display order is all
    files, then all tags, each in the order given.
    """
    nodes: list[GraphNode] = []
    for f in files:
        if getattr(f, "deleted_at", None) is not None:
            continue
        nodes.append(GraphNode(id=node_id(FILE, f.id), kind=FILE, name=f.name, ref_id=f.id))
    for t in tags:
        nodes.append(GraphNode(id=node_id(TAG, t.id), kind=TAG, name=t.name, ref_id=t.id, color=t.color))

    present = {n.id for n in nodes}
    edges: list[GraphEdge] = []
    for ft in file_tags:
        source = node_id(FILE, ft.file_id)
        target = node_id(TAG, ft.tag_id)
        if source in present and target in present:
            edges.append(GraphEdge(source=source, target=target))
    return nodes, edges


def build_adjacency(edges: Iterable) -> Adjacency:
    """Build an undirected adjacency map from (source, target) pairs.

    Accepts GraphEdge objects or plain 2-tuples. Only endpoints of at least
    one edge appear as keys; callers treat a missing key as "no neighbors".
    """
    adjacency: Adjacency = {}
    for edge in edges:
        if isinstance(edge, GraphEdge):
            source, target = edge.source, edge.target
        else:
            source, target = edge
        adjacency.setdefault(source, set()).add(target)
        adjacency.setdefault(target, set()).add(source)
    return adjacency


def neighbors(node: str, adjacency: Adjacency) -> set[str]:
    return adjacency.get(node, set())


def highlight_for(hovered_id: Optional[str], adjacency: Adjacency) -> tuple[set[str], set[str]]:
    """Return (highlighted node ids, highlighted link keys) for a hover target.

    The hovered node and its direct neighbors are highlighted (one hop, no
    transitive expansion). Each incident link is recorded under both
    directional keys so lookups do not need to know edge direction.
    """
    nodes: set[str] = set()
    links: set[str] = set()
    if hovered_id is None:
        return nodes, links

    nodes.add(hovered_id)
    for neighbor in neighbors(hovered_id, adjacency):
        nodes.add(neighbor)
        links.add(link_key(hovered_id, neighbor))
        links.add(link_key(neighbor, hovered_id))
    return nodes, links


def node_opacity(node: str, hovered_id: Optional[str], highlighted_nodes: set[str]) -> float:
    if hovered_id is None or node in highlighted_nodes:
        return NODE_OPACITY_FULL
    return NODE_OPACITY_DIMMED


def link_opacity(source_id: str, target_id: str, hovered_id: Optional[str], highlighted_links: set[str]) -> float:
    if hovered_id is None:
        return LINK_OPACITY_IDLE
    if link_key(source_id, target_id) in highlighted_links or link_key(target_id, source_id) in highlighted_links:
        return LINK_OPACITY_HIGHLIGHTED
    return LINK_OPACITY_DIMMED


def search_matches(nodes: Iterable[GraphNode], query: Optional[str]) -> list[str]:
    """Ids of nodes whose name contains `query`, case-insensitively.

    A blank query returns an empty list. That is not the same as "no
    match": `ViewState.search` treats it as clearing the filter.
    """
    if not query or not query.strip():
        return []
    needle = query.lower()
    return [n.id for n in nodes if needle in n.name.lower()]


def traverse_keyboard(
    current_id: Optional[str],
    direction: Direction,
    nodes: Sequence[GraphNode],
    adjacency: Adjacency,
    anchor_id: Optional[str] = None,
) -> Optional[str]:
    """Return the node id to select after moving in `direction`.

    There are two independent traversal modes:

    - ``next``/``prev`` walk the full node list in display order and wrap.
      Without a current node (or with one that is no longer listed),
      ``next`` starts at the first node and ``prev`` at the last.
    - ``connected-next``/``connected-prev`` walk the neighbors of
      `anchor_id` (defaults to `current_id`), listed in display order and
      read fresh from `adjacency`, and wrap. If the current node is not one
      of those neighbors the walk starts at the first (next) or last (prev)
      neighbor. Without a current node the first node overall is returned;
      a node with no neighbors stays selected.
    """
    direction = Direction(direction)
    if not nodes:
        return None
    ids = [n.id for n in nodes]

    if direction in (Direction.NEXT, Direction.PREV):
        step = 1 if direction is Direction.NEXT else -1
        if current_id not in ids:
            return ids[0] if step == 1 else ids[-1]
        return ids[(ids.index(current_id) + step) % len(ids)]

    if current_id is None:
        return ids[0]

    around = neighbors(anchor_id or current_id, adjacency)
    connected = [i for i in ids if i in around]
    if not connected:
        return current_id

    step = 1 if direction is Direction.CONNECTED_NEXT else -1
    if current_id not in connected:
        return connected[0] if step == 1 else connected[-1]
    return connected[(connected.index(current_id) + step) % len(connected)]


_KEY_DIRECTIONS = {
    "ArrowDown": Direction.CONNECTED_NEXT,
    "ArrowRight": Direction.CONNECTED_NEXT,
    "ArrowUp": Direction.CONNECTED_PREV,
    "ArrowLeft": Direction.CONNECTED_PREV,
}


def direction_for_key(key: str, shift: bool = False) -> Optional[Direction]:
    if key == "Tab":
        return Direction.PREV if shift else Direction.NEXT
    return _KEY_DIRECTIONS.get(key)


@dataclass(frozen=True)
class ViewState:
    """Interaction state of the graph view.

    Only one node can be hovered and one selected at a time; setters replace
    the previous value. `anchor_id` is the node whose neighbors the
    connected-* keys cycle through; it is set when connected navigation
    starts and dropped whenever the selection moves any other way.
    """

    hovered_id: Optional[str] = None
    selected_id: Optional[str] = None
    anchor_id: Optional[str] = None
    query: Optional[str] = None

    @property
    def filter_active(self) -> bool:
        return self.query is not None

    def hover(self, node: Optional[str]) -> "ViewState":
        return replace(self, hovered_id=node)

    def select(self, node: Optional[str]) -> "ViewState":
        return replace(self, selected_id=node, anchor_id=None)

    def search(self, query: Optional[str]) -> "ViewState":
        if not query or not query.strip():
            return replace(self, query=None)
        return replace(self, query=query)

    def clear(self) -> "ViewState":
        return ViewState()


class GraphSnapshot:
    """A node/edge list together with the adjacency derived from it.

    Building a new snapshot is the only way to change the edges, so a
    highlight is always computed against the adjacency of the edge list it
    was rendered with.
    """

    def __init__(self, nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]):
        self.nodes = tuple(nodes)
        self.edges = tuple(edges)
        self.adjacency = build_adjacency(self.edges)
        self._by_id = {n.id: n for n in self.nodes}

    @classmethod
    def from_rows(cls, files, tags, file_tags) -> "GraphSnapshot":
        nodes, edges = build_graph(files, tags, file_tags)
        return cls(nodes, edges)

    def get(self, node: str) -> Optional[GraphNode]:
        return self._by_id.get(node)

    def highlight(self, state: ViewState) -> tuple[set[str], set[str]]:
        return highlight_for(state.hovered_id, self.adjacency)

    def node_opacity(self, node: str, state: ViewState) -> float:
        highlighted_nodes, _ = self.highlight(state)
        return node_opacity(node, state.hovered_id, highlighted_nodes)

    def link_opacity(self, edge: GraphEdge, state: ViewState) -> float:
        _, highlighted_links = self.highlight(state)
        return link_opacity(edge.source, edge.target, state.hovered_id, highlighted_links)

    def search(self, state: ViewState) -> list[str]:
        return search_matches(self.nodes, state.query)

    def navigate(self, state: ViewState, key: str, shift: bool = False) -> ViewState:
        """Apply one key press to `state` and return the new state."""
        if key == "Escape":
            return replace(state, selected_id=None, anchor_id=None)

        direction = direction_for_key(key, shift)
        if direction is None:
            return state

        if direction in (Direction.NEXT, Direction.PREV):
            target = traverse_keyboard(state.selected_id, direction, self.nodes, self.adjacency)
            return replace(state, selected_id=target, anchor_id=None)

        if state.selected_id is None:
            target = traverse_keyboard(None, direction, self.nodes, self.adjacency)
            return replace(state, selected_id=target, anchor_id=None)

        anchor = state.anchor_id or state.selected_id
        target = traverse_keyboard(state.selected_id, direction, self.nodes, self.adjacency, anchor_id=anchor)
        return replace(state, selected_id=target, anchor_id=anchor)

    def open_target(self, state: ViewState) -> Optional[GraphNode]:
        """The file node Enter would open a preview for, if any."""
        node = self.get(state.selected_id) if state.selected_id else None
        if node is not None and node.kind == FILE:
            return node
        return None
