"""Deadlock detection over the wait-for graph of a thread dump."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from .models import DeadlockGroup, LockIdentity, SelfWaitAnomaly, ThreadDump, ThreadId


class _Color(Enum):
    WHITE = 0
    GREY = 1
    BLACK = 2


@dataclass
class WaitForGraph:
    """Directed graph: an edge T1 -> T2 means T1 waits for a lock owned by T2.

    Each edge is labelled with the lock that links the two threads. When T1
    waits for several locks owned by T2, the smallest identity is kept.
    """

    nodes: list[ThreadId] = field(default_factory=list)
    edges: dict[ThreadId, dict[ThreadId, LockIdentity]] = field(default_factory=dict)

    def add_edge(self, waiter: ThreadId, owner: ThreadId, lock: LockIdentity) -> None:
        targets = self.edges.setdefault(waiter, {})
        current = targets.get(owner)
        if current is None or lock < current:
            targets[owner] = lock

    def successors(self, node: ThreadId) -> list[ThreadId]:
        return sorted(self.edges.get(node, {}))

    def edge_lock(self, waiter: ThreadId, owner: ThreadId) -> LockIdentity:
        return self.edges[waiter][owner]

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self.edges.values())


def build_wait_for_graph(dump: ThreadDump) -> WaitForGraph:
    """Build the wait-for graph from the lock table.

    Only threads present in the dump become nodes; owners or waiters outside
    the captured thread set cannot take part in a cycle. Self-edges are left
    out (see ``find_self_waits``).
    """
    known = dump.thread_ids
    graph = WaitForGraph(nodes=sorted(known))
    for lock in dump.locks:
        if lock.owner_thread is None or lock.owner_thread not in known:
            continue
        for waiter in lock.waiting_threads:
            if waiter in known and waiter != lock.owner_thread:
                graph.add_edge(waiter, lock.owner_thread, lock.identity)
    return graph


def _normalize_cycle(cycle: list[ThreadId], graph: WaitForGraph) -> DeadlockGroup:
    """Rotate a cycle to start at its smallest thread id and attach the lock chain."""
    start = cycle.index(min(cycle))
    ordered = cycle[start:] + cycle[:start]
    chain = [
        graph.edge_lock(ordered[i], ordered[(i + 1) % len(ordered)]) for i in range(len(ordered))
    ]
    return DeadlockGroup(thread_ids=tuple(ordered), lock_chain=tuple(chain))


def iter_cycles(graph: WaitForGraph) -> Iterator[list[ThreadId]]:
    """Yield cycles found through back edges of a three-colour DFS.

    Nodes and successors are visited in ascending id order, and the walk is
    iterative so that chains of thousands of threads stay within the
    interpreter's recursion limit.
    """
    color: dict[ThreadId, _Color] = {node: _Color.WHITE for node in graph.nodes}
    for root in graph.nodes:
        if color[root] is not _Color.WHITE:
            continue
        path: list[ThreadId] = [root]
        position: dict[ThreadId, int] = {root: 0}
        stack: list[Iterator[ThreadId]] = [iter(graph.successors(root))]
        color[root] = _Color.GREY

        while stack:
            node = path[-1]
            successor = next(stack[-1], None)
            if successor is None:
                stack.pop()
                path.pop()
                del position[node]
                color[node] = _Color.BLACK
                continue
            state = color[successor]
            if state is _Color.GREY:
                yield path[position[successor] :]
            elif state is _Color.WHITE:
                color[successor] = _Color.GREY
                position[successor] = len(path)
                path.append(successor)
                stack.append(iter(graph.successors(successor)))


def find_deadlocks(dump: ThreadDump) -> list[DeadlockGroup]:
    """Report every distinct circular wait in the dump.

    Cycles are identified by their member set, so each is reported once no
    matter where the traversal entered it. Groups are ordered by their
    smallest thread id.
    """
    graph = build_wait_for_graph(dump)
    seen: set[frozenset[ThreadId]] = set()
    groups: list[DeadlockGroup] = []
    for cycle in iter_cycles(graph):
        members = frozenset(cycle)
        if len(members) < 2 or members in seen:
            continue
        seen.add(members)
        groups.append(_normalize_cycle(cycle, graph))
    groups.sort(key=lambda group: group.thread_ids)
    return groups


def find_self_waits(dump: ThreadDump) -> list[SelfWaitAnomaly]:
    """Threads recorded as waiting for a lock they own."""
    owners = {lock.identity: lock.owner_thread for lock in dump.locks}
    anomalies: list[SelfWaitAnomaly] = []
    for thread in sorted(dump.threads, key=lambda t: t.id):
        for identity in thread.locks_waiting:
            if owners.get(identity) == thread.id:
                anomalies.append(SelfWaitAnomaly(thread_id=thread.id, lock_identity=identity))
    return anomalies


def deadlocked_thread_ids(groups: list[DeadlockGroup]) -> set[ThreadId]:
    return {thread_id for group in groups for thread_id in group.thread_ids}


def deadlocked_locks(groups: list[DeadlockGroup]) -> set[LockIdentity]:
    return {identity for group in groups for identity in group.lock_chain}


def describe_deadlock(group: DeadlockGroup, dump: ThreadDump) -> list[str]:
    """One line per link: who waits for which lock held by whom."""
    lines: list[str] = []
    size = len(group.thread_ids)
    for index, thread_id in enumerate(group.thread_ids):
        owner_id = group.thread_ids[(index + 1) % size]
        lines.append(
            f"{dump.thread_label(thread_id)} waits for {group.lock_chain[index]} "
            f"held by {dump.thread_label(owner_id)}"
        )
    return lines
