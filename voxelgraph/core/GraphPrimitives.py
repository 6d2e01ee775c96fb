from collections import defaultdict
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, TYPE_CHECKING

import logging

if TYPE_CHECKING:
    from .Node import GraphNode

logger = logging.getLogger(__name__)


class PortLocation(NamedTuple):
    node_id: int
    port_index: int

    def __repr__(self):
        return f"{self.node_id}:{self.port_index}"


# Connections are plain immutable records. The graph owns them (Arena Pattern),
# nodes and ports never hold references to each other.
class Connection(NamedTuple):
    src: PortLocation
    dst: PortLocation

    def __repr__(self):
        return f"Connection({self.src!r} -> {self.dst!r})"


class ProgramGraph:
    """
    Directed acyclic graph of nodes addressed by integer ids.

    Used both for user-authored graphs and for the flattened graph the
    compiler builds. Nodes only need to expose `id`, `inputs` and `outputs`.
    """

    def __init__(self):
        self.nodes: Dict[int, 'GraphNode'] = {}
        self.connections: List[Connection] = []

        # An input accepts at most one connection, an output feeds any number.
        self.incoming: Dict[PortLocation, Connection] = {}
        self.outgoing: Dict[PortLocation, List[Connection]] = defaultdict(list)

        self._next_id = 1

    # ── Nodes ────────────────────────────────────────────────────────────

    def generate_node_id(self) -> int:
        node_id = self._next_id
        self._next_id += 1
        return node_id

    def add_node(self, node: 'GraphNode'):
        if node.id in self.nodes:
            raise ValueError(f"Node with id '{node.id}' already exists in the graph")
        self.nodes[node.id] = node
        if node.id >= self._next_id:
            self._next_id = node.id + 1

    def get_node(self, node_id: int) -> Optional['GraphNode']:
        return self.nodes.get(node_id)

    def try_get_node(self, node_id: int) -> 'GraphNode':
        node = self.nodes.get(node_id)
        if node is None:
            raise ValueError(f"Node with id '{node_id}' does not exist in the graph")
        return node

    def has_node(self, node_id: int) -> bool:
        return node_id in self.nodes

    def remove_node(self, node_id: int):
        self.try_get_node(node_id)
        for connection in [c for c in self.connections
                           if c.src.node_id == node_id or c.dst.node_id == node_id]:
            self.remove_connection(connection.src, connection.dst)
        del self.nodes[node_id]

    def get_node_ids(self) -> List[int]:
        return sorted(self.nodes.keys())

    def clear(self):
        self.nodes.clear()
        self.connections.clear()
        self.incoming.clear()
        self.outgoing.clear()
        self._next_id = 1

    # ── Connections ──────────────────────────────────────────────────────

    def is_valid_output(self, loc: PortLocation) -> bool:
        node = self.nodes.get(loc.node_id)
        return node is not None and 0 <= loc.port_index < len(node.outputs)

    def is_valid_input(self, loc: PortLocation) -> bool:
        node = self.nodes.get(loc.node_id)
        return node is not None and 0 <= loc.port_index < len(node.inputs)

    def can_connect(self, src: PortLocation, dst: PortLocation) -> bool:
        if not self.is_valid_output(src) or not self.is_valid_input(dst):
            return False
        if src.node_id == dst.node_id:
            return False
        if dst in self.incoming:
            return False
        # src must not already depend on dst, otherwise this closes a loop
        if self.has_path(dst.node_id, src.node_id):
            return False
        return True

    def add_connection(self, src: PortLocation, dst: PortLocation) -> Connection:
        if not self.can_connect(src, dst):
            raise ValueError(f"Cannot connect {src!r} to {dst!r}")
        connection = Connection(src, dst)
        self.connections.append(connection)
        self.incoming[dst] = connection
        self.outgoing[src].append(connection)
        return connection

    def remove_connection(self, src: PortLocation, dst: PortLocation) -> bool:
        connection = self.incoming.get(dst)
        if connection is None or connection.src != src:
            return False
        del self.incoming[dst]
        self.connections.remove(connection)
        outgoing = self.outgoing.get(src)
        if outgoing is not None:
            outgoing.remove(connection)
            if not outgoing:
                del self.outgoing[src]
        return True

    def has_connection(self, src: PortLocation, dst: PortLocation) -> bool:
        connection = self.incoming.get(dst)
        return connection is not None and connection.src == src

    def get_incoming(self, dst: PortLocation) -> Optional[Connection]:
        return self.incoming.get(dst)

    def get_outgoing(self, src: PortLocation) -> List[Connection]:
        return list(self.outgoing.get(src, ()))

    def is_input_connected(self, dst: PortLocation) -> bool:
        return dst in self.incoming

    # ── Traversal ────────────────────────────────────────────────────────

    def get_input_node_ids(self, node_id: int) -> List[int]:
        node = self.try_get_node(node_id)
        ids = []
        for port_index in range(len(node.inputs)):
            connection = self.incoming.get(PortLocation(node_id, port_index))
            if connection is not None:
                ids.append(connection.src.node_id)
        return ids

    def get_output_node_ids(self, node_id: int) -> List[int]:
        node = self.try_get_node(node_id)
        ids = []
        for port_index in range(len(node.outputs)):
            for connection in self.outgoing.get(PortLocation(node_id, port_index), ()):
                ids.append(connection.dst.node_id)
        return ids

    def has_path(self, from_node_id: int, to_node_id: int) -> bool:
        """True if `to_node_id` is reachable downstream of `from_node_id`."""
        stack = [from_node_id]
        visited: Set[int] = set()
        while stack:
            node_id = stack.pop()
            if node_id == to_node_id:
                return True
            if node_id in visited or node_id not in self.nodes:
                continue
            visited.add(node_id)
            stack.extend(self.get_output_node_ids(node_id))
        return False

    def find_dependencies(self, roots: Iterable[int]) -> List[int]:
        """
        Returns every node the roots depend on, roots included, in an order
        where each node comes after all of its dependencies.

        Iterative post-order walk so deep graphs do not hit the recursion limit.
        """
        order: List[int] = []
        done: Set[int] = set()
        for root in roots:
            if root in done:
                continue
            stack = [(root, False)]
            on_stack: Set[int] = set()
            while stack:
                node_id, expanded = stack.pop()
                if expanded:
                    on_stack.discard(node_id)
                    if node_id not in done:
                        done.add(node_id)
                        order.append(node_id)
                    continue
                if node_id in done:
                    continue
                assert node_id not in on_stack, f"Cycle detected at node {node_id}"
                on_stack.add(node_id)
                stack.append((node_id, True))
                for src_id in reversed(self.get_input_node_ids(node_id)):
                    if src_id not in done:
                        stack.append((src_id, False))
        return order

    def __repr__(self):
        return f"ProgramGraph({len(self.nodes)} nodes, {len(self.connections)} connections)"
