from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from layered_crf import ConfigurationError, EdgeType, LayeredGraphConfig, load_graph_config
from layered_crf.config import as_edge_type, parse_graph_config, validate_offsets


class EdgeTypeTest(unittest.TestCase):
    def test_parse_forms(self) -> None:
        self.assertEqual(as_edge_type("grid"), EdgeType.GRID)
        self.assertEqual(as_edge_type(["grid", "LINK"]), EdgeType.GRID | EdgeType.LINK)
        self.assertEqual(as_edge_type(7), EdgeType.GRID | EdgeType.DIAG | EdgeType.LINK)
        self.assertEqual(as_edge_type(EdgeType.DIAG), EdgeType.DIAG)

    def test_rejects_unknown(self) -> None:
        with self.assertRaises(ConfigurationError):
            as_edge_type("hex")
        with self.assertRaises(ConfigurationError):
            as_edge_type(8)
        with self.assertRaises(ConfigurationError):
            as_edge_type(True)

    def test_half_neighbourhood(self) -> None:
        self.assertEqual(validate_offsets([(0, 1), (1, 0)]), ((0, 1), (1, 0)))
        with self.assertRaises(ConfigurationError):
            validate_offsets([(0, 1), (0, -1)])
        with self.assertRaises(ConfigurationError):
            validate_offsets([(0, 0)])


class LayeredGraphConfigTest(unittest.TestCase):
    def test_broadcast_num_states(self) -> None:
        cfg = LayeredGraphConfig(n_layers=3, num_states=4, edge_type=["grid", "link"])
        self.assertEqual(cfg.num_states, (4, 4, 4))
        self.assertTrue(cfg.has_links)
        self.assertFalse(LayeredGraphConfig(n_layers=1, num_states=2, edge_type=EdgeType.LINK).has_links)

    def test_validation(self) -> None:
        with self.assertRaises(ConfigurationError):
            LayeredGraphConfig(n_layers=0)
        with self.assertRaises(ConfigurationError):
            LayeredGraphConfig(n_layers=2, num_states=(2,))
        with self.assertRaises(ConfigurationError):
            LayeredGraphConfig(n_layers=2, num_states=(2, -1))
        with self.assertRaises(ValueError):
            LayeredGraphConfig(n_layers=1, num_states=2, edge_type="ring")

    def test_parse_mapping(self) -> None:
        cfg = parse_graph_config({"graph": {"n_layers": 2, "num_states": [2, 3], "edge_type": ["grid", "diag", "link"]}})
        self.assertEqual(cfg.n_layers, 2)
        self.assertEqual(cfg.num_states, (2, 3))
        self.assertEqual(cfg.edge_type, EdgeType.GRID | EdgeType.DIAG | EdgeType.LINK)

        default_type = parse_graph_config({"graph": {"n_layers": 1, "num_states": 2}})
        self.assertEqual(default_type.edge_type, EdgeType.GRID)

        with self.assertRaises(ConfigurationError):
            parse_graph_config({"data": {}})
        with self.assertRaises(ConfigurationError):
            parse_graph_config({"graph": {"num_states": 2}})

    def test_load_yaml_file(self) -> None:
        text = "graph:\n  n_layers: 2\n  num_states: [2, 5]\n  edge_type: [grid, link]\n"
        with tempfile.TemporaryDirectory() as d:
            path = Path(d) / "g.yaml"
            path.write_text(text, encoding="utf-8")
            cfg = load_graph_config(path)
        self.assertEqual(cfg.num_states, (2, 5))
        self.assertTrue(cfg.has_links)

    def test_load_non_mapping(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            path = Path(d) / "bad.yaml"
            path.write_text("- 1\n- 2\n", encoding="utf-8")
            with self.assertRaises(ConfigurationError):
                load_graph_config(path)


if __name__ == "__main__":
    unittest.main()
