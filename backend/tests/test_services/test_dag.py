"""Tests for the task relation graph builder/validator."""

import pytest

from flowdef.errors import CyclicGraphError, DanglingReferenceError, GraphValidationError
from flowdef.models import RelationDraft, TaskDraft
from flowdef.services.dag import build_draft_graph, build_graph

A, B, C, D = 1, 2, 3, 4


def edges(*pairs: tuple[int, int]) -> list[RelationDraft]:
    return [RelationDraft(pre_task_code=pre, post_task_code=post) for pre, post in pairs]


def task(code: int, name: str | None = None, task_type: str = "SHELL") -> TaskDraft:
    return TaskDraft(code=code, name=name or f"task-{code}", task_type=task_type)


class TestBuildGraph:
    """Tests for acceptance and rejection of edge sets."""

    def test_valid_fan_out(self):
        """0->A, A->B, A->C validates with A as the only root."""
        graph = build_graph(edges((0, A), (A, B), (A, C)), [A, B, C])

        assert graph.roots == [A]
        assert graph.forward[A] == [B, C]
        assert graph.reverse[B] == [A]
        assert graph.warnings == []

    def test_back_edge_is_cycle(self):
        """Adding C->A makes the graph cyclic and names A or C."""
        with pytest.raises(CyclicGraphError) as exc_info:
            build_graph(edges((0, A), (A, B), (A, C), (C, A)), [A, B, C])

        assert exc_info.value.task_code in (A, C)

    def test_self_loop_is_cycle(self):
        with pytest.raises(CyclicGraphError) as exc_info:
            build_graph(edges((0, A), (A, A)), [A])

        assert exc_info.value.task_code == A

    def test_cycle_member_not_downstream_node(self):
        """The reported member lies on the cycle, not on a branch hanging off it."""
        with pytest.raises(CyclicGraphError) as exc_info:
            build_graph(edges((0, A), (A, B), (B, C), (C, B), (C, D)), [A, B, C, D])

        assert exc_info.value.task_code in (B, C)

    def test_dangling_post_task(self):
        with pytest.raises(DanglingReferenceError) as exc_info:
            build_graph(edges((0, A), (A, 99)), [A])

        assert exc_info.value.task_code == 99

    def test_dangling_pre_task(self):
        with pytest.raises(DanglingReferenceError) as exc_info:
            build_graph(edges((0, A), (77, A)), [A])

        assert exc_info.value.task_code == 77

    def test_duplicate_edges_deduplicated(self):
        graph = build_graph(edges((0, A), (A, B), (A, B)), [A, B])

        assert graph.edges == [(0, A), (A, B)]
        assert graph.forward[A] == [B]

    def test_empty_graph_without_tasks(self):
        graph = build_graph([], [])

        assert graph.task_codes == []
        assert graph.roots == []

    def test_tasks_without_relations_rejected(self):
        with pytest.raises(GraphValidationError):
            build_graph([], [A, B])

    def test_duplicate_task_codes_rejected(self):
        with pytest.raises(GraphValidationError):
            build_graph(edges((0, A)), [A, A])

    def test_orphan_task_is_warning(self):
        """A declared task outside every edge is flagged, not rejected."""
        graph = build_graph(edges((0, A), (A, B)), [A, B, C])

        assert [w.task_code for w in graph.warnings] == [C]

    def test_standalone_task_not_flagged(self):
        graph = build_graph(edges((0, A), (A, B)), [A, B, C], standalone=[C])

        assert graph.warnings == []

    def test_entry_task_without_virtual_edge_is_root(self):
        graph = build_graph(edges((A, B), (B, C)), [A, B, C])

        assert graph.roots == [A]
        assert graph.warnings == []

    def test_topological_order(self):
        graph = build_graph(edges((0, A), (A, C), (B, C), (C, D)), [D, C, B, A])

        order = graph.topological_order()

        assert order.index(A) < order.index(C)
        assert order.index(B) < order.index(C)
        assert order.index(C) < order.index(D)


class TestTreeView:
    """Tests for breadth-first layering."""

    def test_layers_contain_reachable_tasks(self):
        graph = build_graph(edges((0, A), (A, B), (A, C), (C, D)), [A, B, C, D])
        tasks = {code: task(code) for code in (A, B, C, D)}

        tree = graph.tree_view(tasks, limit=10, workflow_code=42)

        assert tree.workflow_code == 42
        assert [[n.code for n in layer] for layer in tree.layers] == [[A], [B, C], [D]]
        assert tree.task_codes == {A, B, C, D}
        assert tree.layers[0][0].children == [B, C]

    def test_limit_caps_depth(self):
        graph = build_graph(edges((0, A), (A, B), (B, C)), [A, B, C])
        tasks = {code: task(code) for code in (A, B, C)}

        tree = graph.tree_view(tasks, limit=2)

        assert tree.task_codes == {A, B}
        assert len(tree.layers) == 2

    def test_orphans_excluded(self):
        graph = build_graph(edges((0, A)), [A, B])
        tree = graph.tree_view({A: task(A), B: task(B)}, limit=5)

        assert tree.task_codes == {A}

    def test_invalid_limit(self):
        graph = build_graph(edges((0, A)), [A])

        with pytest.raises(ValueError):
            graph.tree_view({A: task(A)}, limit=0)


class TestBuildDraftGraph:
    """Tests for validating drafts."""

    def test_uses_draft_keys(self, make_draft):
        draft = make_draft(tasks=["A", "B"], edges=[("start", "A"), ("A", "B")])

        graph = build_draft_graph(draft)

        assert graph.roots == [1]

    def test_draft_standalone_codes(self, make_draft):
        draft = make_draft(
            tasks=["A", "B"],
            edges=[("start", "A")],
            standalone_task_codes=[2],
        )

        assert build_draft_graph(draft).warnings == []
