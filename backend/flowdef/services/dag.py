"""Task relation graph builder and validator.

Builds forward/reverse adjacency from raw edges, rejects dangling references
and cycles, flags orphan tasks, and lays the graph out breadth-first for
tree rendering. Edges whose pre-task is 0 hang off the virtual start node.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from flowdef.errors import CyclicGraphError, DanglingReferenceError, GraphValidationError
from flowdef.models.results import GraphWarning, TreeNode, TreeView
from flowdef.models.task import VIRTUAL_ROOT_CODE
from flowdef.models.workflow import WorkflowDraft


class _Edge(Protocol):
    pre_task_code: int
    post_task_code: int


class _Task(Protocol):
    code: int
    name: str
    task_type: str


@dataclass
class TaskGraph:
    """A validated DAG over one version's task set."""

    task_codes: list[int]
    edges: list[tuple[int, int]]
    forward: dict[int, list[int]] = field(default_factory=dict)
    reverse: dict[int, list[int]] = field(default_factory=dict)
    roots: list[int] = field(default_factory=list)
    warnings: list[GraphWarning] = field(default_factory=list)

    def reachable(self) -> set[int]:
        """Tasks reachable from a root."""
        seen: set[int] = set(self.roots)
        queue = deque(self.roots)
        while queue:
            node = queue.popleft()
            for child in self.forward.get(node, []):
                if child not in seen:
                    seen.add(child)
                    queue.append(child)
        return seen

    def topological_order(self) -> list[int]:
        """Task codes in dependency order (ties broken by code)."""
        order, _ = _kahn(self.task_codes, self.forward, self.reverse)
        return order

    def tree_view(
        self, tasks: Mapping[int, _Task], limit: int, workflow_code: int | None = None
    ) -> TreeView:
        """Breadth-first layering from the roots, at most `limit` layers deep."""
        if limit < 1:
            raise ValueError("limit must be at least 1")

        depth: dict[int, int] = {code: 0 for code in self.roots}
        queue = deque(self.roots)
        while queue:
            node = queue.popleft()
            if depth[node] + 1 >= limit:
                continue
            for child in self.forward.get(node, []):
                if child not in depth:
                    depth[child] = depth[node] + 1
                    queue.append(child)

        layers: list[list[TreeNode]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for code in sorted(depth, key=lambda c: (depth[c], c)):
            task = tasks.get(code)
            layers[depth[code]].append(
                TreeNode(
                    code=code,
                    name=task.name if task else str(code),
                    task_type=task.task_type if task else "",
                    depth=depth[code],
                    children=list(self.forward.get(code, [])),
                )
            )
        return TreeView(workflow_code=workflow_code, limit=limit, layers=layers)


def build_graph(
    relations: Iterable[_Edge],
    task_codes: Iterable[int],
    standalone: Iterable[int] = (),
) -> TaskGraph:
    """Build and validate the DAG for one version.

    Raises:
        GraphValidationError: duplicate task codes, or tasks declared with no
            relations at all.
        DanglingReferenceError: an edge names an undeclared task.
        CyclicGraphError: the edges contain a cycle (including self-loops).
    """
    codes = list(task_codes)
    declared = set(codes)
    if len(declared) != len(codes):
        duplicate = next(c for c in codes if codes.count(c) > 1)
        raise GraphValidationError(f"Task code {duplicate} is declared more than once")

    # Identical edges collapse into one
    edges: list[tuple[int, int]] = []
    seen_edges: set[tuple[int, int]] = set()
    for relation in relations:
        edge = (relation.pre_task_code, relation.post_task_code)
        if edge not in seen_edges:
            seen_edges.add(edge)
            edges.append(edge)

    if not edges:
        if codes:
            raise GraphValidationError(
                f"{len(codes)} task(s) declared but no task relations given"
            )
        return TaskGraph(task_codes=[], edges=[])

    forward: dict[int, list[int]] = {code: [] for code in codes}
    reverse: dict[int, list[int]] = {code: [] for code in codes}
    entry: set[int] = set()

    for pre, post in edges:
        if pre == post:
            raise CyclicGraphError(pre, f"Task {pre} depends on itself")
        if post not in declared:
            raise DanglingReferenceError(post)
        if pre == VIRTUAL_ROOT_CODE:
            entry.add(post)
            continue
        if pre not in declared:
            raise DanglingReferenceError(pre)
        forward[pre].append(post)
        reverse[post].append(pre)

    for adjacency in (forward, reverse):
        for targets in adjacency.values():
            targets.sort()

    _, remaining = _kahn(codes, forward, reverse)
    if remaining:
        raise CyclicGraphError(_find_cycle_member(remaining, reverse))

    connected = {code for edge in edges for code in edge if code != VIRTUAL_ROOT_CODE}
    roots = sorted(
        code
        for code in codes
        if code in entry or (code in connected and not reverse[code])
    )
    graph = TaskGraph(
        task_codes=codes, edges=edges, forward=forward, reverse=reverse, roots=roots
    )

    standalone_codes = set(standalone)
    reachable = graph.reachable()
    for code in codes:
        if code not in reachable and code not in standalone_codes:
            graph.warnings.append(orphan_warning(code))
    return graph


def orphan_warning(code: int) -> GraphWarning:
    return GraphWarning(task_code=code, message=f"Task {code} is not reachable from any root")


def build_draft_graph(draft: WorkflowDraft) -> TaskGraph:
    """Validate the graph of a draft using its draft-local task keys."""
    return build_graph(
        draft.relations,
        [task.code for task in draft.tasks],
        draft.standalone_task_codes,
    )


def _kahn(
    codes: list[int], forward: dict[int, list[int]], reverse: dict[int, list[int]]
) -> tuple[list[int], set[int]]:
    """Repeated in-degree-zero elimination; returns (order, unremovable codes)."""
    in_degree = {code: len(reverse.get(code, [])) for code in codes}
    ready = deque(sorted(code for code, degree in in_degree.items() if degree == 0))
    order: list[int] = []
    while ready:
        node = ready.popleft()
        order.append(node)
        for child in forward.get(node, []):
            in_degree[child] -= 1
            if in_degree[child] == 0:
                ready.append(child)
    return order, {code for code, degree in in_degree.items() if degree > 0}


def _find_cycle_member(remaining: set[int], reverse: dict[int, list[int]]) -> int:
    """Walk predecessors inside the unremovable set until a node repeats."""
    node = min(remaining)
    visited: set[int] = set()
    while node not in visited:
        visited.add(node)
        node = min(p for p in reverse[node] if p in remaining)
    return node
