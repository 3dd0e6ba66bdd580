from __future__ import annotations

import unittest

import numpy as np

from layered_crf import (
    ALL_GROUPS,
    ConfigurationError,
    DenseGraphPairwise,
    EdgeType,
    LayeredGraphConfig,
    LayeredGraphExt,
    NotBuiltError,
    SparseGraphPairwise,
    SpecificGroup,
    TopologyStateError,
)
from layered_crf.topology import EDGE_KIND_GRID, EDGE_KIND_LINK

BACKENDS = (DenseGraphPairwise, SparseGraphPairwise)


def _two_layer(backend=DenseGraphPairwise, edge_type=EdgeType.GRID | EdgeType.LINK):
    graph = backend()
    return graph, LayeredGraphExt(graph, 2, edge_type, num_states=(2, 3))


class BuildGraphTest(unittest.TestCase):
    def test_two_layer_3x3_end_to_end(self) -> None:
        for backend in BACKENDS:
            with self.subTest(backend=backend.__name__):
                graph, ext = _two_layer(backend)
                ext.build_graph((3, 3))
                self.assertEqual(graph.get_num_nodes(), 18)
                # 每层 12 条网格边 + 9 条层间链接
                self.assertEqual(ext.topology.edges_per_layer, 12)
                self.assertEqual(ext.topology.num_links, 9)
                self.assertEqual(graph.get_num_edges(), 2 * 12 + 9)

                groups = graph.get_edge_groups()
                link = ext.topology.kind == EDGE_KIND_LINK
                self.assertTrue(np.all(groups[link] == 1))
                self.assertTrue(np.all(groups[~link] == 0))

                for n in range(9):
                    self.assertEqual(graph.get_node(n).shape, (2,))
                for n in range(9, 18):
                    self.assertEqual(graph.get_node(n).shape, (3,))
                for e in ext.topology.link_edge_ids(0):
                    self.assertEqual(graph.get_edge(int(e)).shape, (2, 3))

    def test_size_type_graph_accessors(self) -> None:
        graph, ext = _two_layer()
        self.assertEqual(ext.get_size(), (0, 0))
        ext.build_graph((4, 3))
        self.assertEqual(ext.get_size(), (4, 3))
        self.assertEqual(ext.get_type(), EdgeType.GRID | EdgeType.LINK)
        self.assertIs(ext.get_graph(), graph)
        self.assertEqual(ext.n_layers, 2)
        self.assertEqual(ext.num_states, (2, 3))

    def test_rebuild_discards_previous_state(self) -> None:
        graph, ext = _two_layer()
        ext.build_graph((3, 3))
        graph.set_node(0, [5.0, 6.0])
        ext.define_edge_group(1.0, 0.0, -0.5, 9)
        ext.build_graph((3, 3))
        np.testing.assert_array_equal(graph.get_node(0), np.ones((2,)))
        self.assertNotIn(9, set(graph.get_edge_groups().tolist()))

        ext.build_graph((5, 2))
        self.assertEqual(graph.get_num_nodes(), 20)
        self.assertEqual(graph.get_num_edges(), 2 * (5 * 1 + 2 * 4) + 10)

    def test_zero_size_empties_backing_graph(self) -> None:
        graph, ext = _two_layer()
        ext.build_graph((3, 3))
        ext.build_graph((0, 0))
        self.assertEqual(graph.size(), (0, 0))
        self.assertEqual(ext.get_size(), (0, 0))
        with self.assertRaises(NotBuiltError):
            ext.set_edges(ALL_GROUPS, np.ones((2, 2)))

    def test_from_config(self) -> None:
        cfg = LayeredGraphConfig(n_layers=3, num_states=(2, 2, 2), edge_type=EdgeType.DIAG | EdgeType.LINK)
        ext = LayeredGraphExt.from_config(SparseGraphPairwise(), cfg)
        ext.build_graph((3, 2))
        self.assertEqual(ext.topology.num_links, 2 * 6)
        self.assertEqual(ext.topology.edges_per_layer, 2 * 2 * 1)

    def test_invalid_construction(self) -> None:
        with self.assertRaises(ConfigurationError):
            LayeredGraphExt(DenseGraphPairwise(), 0)
        with self.assertRaises(ConfigurationError):
            LayeredGraphExt(DenseGraphPairwise(), 2, num_states=(2, 3, 4))
        with self.assertRaises(ConfigurationError):
            LayeredGraphExt(DenseGraphPairwise(), 1, num_states=0)


class EdgeGroupTest(unittest.TestCase):
    def test_vertical_line_moves_straddling_horizontal_edges(self) -> None:
        graph = DenseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID)
        ext.build_graph((4, 3))
        moved = ext.define_edge_group(1.0, 0.0, -1.5, 2)
        self.assertEqual(moved, 3)

        groups = graph.get_edge_groups()
        x1, y1, x2, y2 = ext.topology.edge_xy(np.arange(ext.topology.num_edges))
        expected = (np.minimum(x1, x2) == 1) & (np.maximum(x1, x2) == 2) & (y1 == y2)
        np.testing.assert_array_equal(groups == 2, expected)

    def test_integer_vertical_line_cuts_single_column_of_edges(self) -> None:
        graph = DenseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID)
        ext.build_graph((4, 3))
        # x = 2 穿过一列站点：该列归入非负一侧，只切开 x=1 与 x=2 之间的边
        moved = ext.define_edge_group(1.0, 0.0, -2.0, 2)
        self.assertEqual(moved, 3)

        groups = graph.get_edge_groups()
        x1, y1, x2, y2 = ext.topology.edge_xy(np.arange(ext.topology.num_edges))
        expected = (np.minimum(x1, x2) == 1) & (np.maximum(x1, x2) == 2) & (y1 == y2)
        np.testing.assert_array_equal(groups == 2, expected)

    def test_integer_horizontal_line_with_diagonals(self) -> None:
        graph = DenseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID | EdgeType.DIAG)
        ext.build_graph((3, 4))
        # y = 1：切开 y=0 与 y=1 之间的 3 条竖直边与 2*2 条对角边
        moved = ext.define_edge_group(0.0, 1.0, -1.0, 4)
        self.assertEqual(moved, 3 + 2 * 2)
        _, y1, _, y2 = ext.topology.edge_xy(np.nonzero(graph.get_edge_groups() == 4)[0])
        self.assertTrue(np.all(np.minimum(y1, y2) == 0))
        self.assertTrue(np.all(np.maximum(y1, y2) == 1))

    def test_links_never_regrouped(self) -> None:
        graph, ext = _two_layer(edge_type=EdgeType.GRID | EdgeType.DIAG | EdgeType.LINK)
        ext.build_graph((5, 4))
        ext.define_edge_group(1.0, 1.0, -3.5, 7)
        ext.define_edge_group(0.0, 1.0, -1.5, 8)
        groups = graph.get_edge_groups()
        self.assertTrue(np.all(groups[ext.topology.link_mask] == 1))

    def test_diagonal_line(self) -> None:
        graph = DenseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID | EdgeType.DIAG)
        ext.build_graph((3, 3))
        # x - y - 0.5 = 0：只有 y = x 一侧与 x = y + 1 一侧之间的边被切开
        moved = ext.define_edge_group(1.0, -1.0, -0.5, 3)
        groups = graph.get_edge_groups()
        self.assertEqual(int(np.sum(groups == 3)), moved)
        self.assertGreater(moved, 0)
        x1, y1, x2, y2 = ext.topology.edge_xy(np.nonzero(groups == 3)[0])
        side1 = np.sign(x1 - y1 - 0.5)
        side2 = np.sign(x2 - y2 - 0.5)
        self.assertTrue(np.all(side1 != side2))

    def test_invalid_line_and_group(self) -> None:
        _, ext = _two_layer()
        ext.build_graph((3, 3))
        with self.assertRaises(ConfigurationError):
            ext.define_edge_group(0.0, 0.0, 1.0, 2)
        with self.assertRaises(ConfigurationError):
            ext.define_edge_group(1.0, 0.0, -1.5, 256)
        with self.assertRaises(ConfigurationError):
            ext.define_edge_group(float("nan"), 0.0, -1.5, 2)

    def test_unbuilt_graph_has_nothing_to_regroup(self) -> None:
        _, ext = _two_layer()
        self.assertEqual(ext.define_edge_group(1.0, 0.0, -1.5, 2), 0)


class NodePotentialTest(unittest.TestCase):
    def test_set_graph_single_layer_autobuild(self) -> None:
        graph = DenseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID, num_states=3)
        pots = np.random.default_rng(0).random((2, 4, 3)).astype(np.float32)
        ext.set_graph(pots)
        self.assertEqual(ext.get_size(), (4, 2))
        np.testing.assert_allclose(ext.get_layer_potentials(0), pots)
        np.testing.assert_allclose(graph.get_node(1 * 4 + 2), pots[1, 2])

    def test_set_graph_two_layers(self) -> None:
        graph, ext = _two_layer()
        base = np.full((3, 3, 2), 0.5, dtype=np.float32)
        occl = np.random.default_rng(1).random((3, 3, 3)).astype(np.float32)
        ext.set_graph(base, occl)
        np.testing.assert_allclose(ext.get_layer_potentials(0), base)
        np.testing.assert_allclose(ext.get_layer_potentials(1), occl)

    def test_set_graph_argument_errors(self) -> None:
        graph, ext = _two_layer()
        with self.assertRaises(TopologyStateError):
            ext.set_graph(np.ones((3, 3, 2)))
        with self.assertRaises(ConfigurationError):
            ext.set_graph(np.ones((3, 3, 3)), np.ones((3, 3, 3)))
        with self.assertRaises(ConfigurationError):
            ext.set_graph(np.ones((3, 3, 2)), np.ones((2, 3, 3)))
        with self.assertRaises(ConfigurationError):
            ext.set_graph(np.ones((3, 3, 2)), -np.ones((3, 3, 3)))
        self.assertEqual(ext.get_size(), (0, 0))
        self.assertEqual(graph.size(), (0, 0))

        single = LayeredGraphExt(DenseGraphPairwise(), 1)
        with self.assertRaises(TopologyStateError):
            single.set_graph(np.ones((3, 3, 2)), np.ones((3, 3, 2)))

    def test_set_graph_size_mismatch_after_build(self) -> None:
        _, ext = _two_layer()
        ext.build_graph((3, 3))
        with self.assertRaises(ConfigurationError):
            ext.set_graph(np.ones((4, 3, 2)), np.ones((4, 3, 3)))


class SetEdgesTest(unittest.TestCase):
    def test_specific_group_only(self) -> None:
        graph = DenseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID)
        ext.build_graph((4, 3))
        ext.define_edge_group(1.0, 0.0, -1.5, 2)
        pot = np.array([[3.0, 1.0], [1.0, 3.0]], dtype=np.float32)
        self.assertEqual(ext.set_edges(SpecificGroup(2), pot), 3)

        groups = graph.get_edge_groups()
        for e in range(graph.get_num_edges()):
            expected = pot if groups[e] == 2 else np.ones((2, 2))
            np.testing.assert_array_equal(graph.get_edge(e), expected)

    def test_int_and_none_filters(self) -> None:
        graph = SparseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID)
        ext.build_graph((3, 3))
        self.assertEqual(ext.set_edges(0, np.full((2, 2), 2.0)), 12)
        self.assertEqual(ext.set_edges(None, np.full((2, 2), 4.0)), 12)
        self.assertEqual(ext.set_edges(5, np.full((2, 2), 8.0)), 0)
        np.testing.assert_array_equal(graph.get_edge(7), np.full((2, 2), 4.0))

    def test_idempotent(self) -> None:
        graph, ext = _two_layer()
        ext.build_graph((3, 3))
        pot = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]], dtype=np.float32)
        ext.set_edges(1, pot)
        first = [graph.get_edge(e).copy() for e in range(graph.get_num_edges())]
        ext.set_edges(1, pot)
        for e in range(graph.get_num_edges()):
            np.testing.assert_array_equal(graph.get_edge(e), first[e])

    def test_shape_mismatch_writes_nothing(self) -> None:
        graph, ext = _two_layer()
        ext.build_graph((3, 3))
        with self.assertRaises(ConfigurationError):
            ext.set_edges(ALL_GROUPS, np.full((2, 2), 2.0))
        for e in range(graph.get_num_edges()):
            self.assertTrue(np.all(graph.get_edge(e) == 1.0))

    def test_groups_persist_across_fills(self) -> None:
        graph = DenseGraphPairwise()
        ext = LayeredGraphExt(graph, 1, EdgeType.GRID)
        ext.build_graph((4, 3))
        ext.define_edge_group(1.0, 0.0, -1.5, 5)
        ext.set_edges(0, np.full((2, 2), 2.0))
        ext.add_default_edges_model(3.0)
        self.assertEqual(int(np.sum(graph.get_edge_groups() == 5)), 3)

    def test_not_built(self) -> None:
        _, ext = _two_layer()
        with self.assertRaises(NotBuiltError):
            ext.set_edges(0, np.ones((2, 2)))
        with self.assertRaises(TopologyStateError):
            ext.set_edges(0, np.ones((2, 2)))

    def test_base_layer_intra_edges_are_grid(self) -> None:
        _, ext = _two_layer()
        ext.build_graph((2, 2))
        kinds = ext.topology.kind[ext.topology.intra_edge_ids(0)]
        self.assertTrue(np.all(kinds == EDGE_KIND_GRID))


if __name__ == "__main__":
    unittest.main()
