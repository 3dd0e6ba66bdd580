from __future__ import annotations

import argparse

import numpy as np

from .config import GROUP_LINK_DEFAULT, EdgeType
from .graph import DenseGraphPairwise
from .layered import LayeredGraphExt
from .topology import EDGE_KIND_LINK
from .trainers import ContrastPottsEdgeTrainer


def _make_synthetic_image(h: int, w: int) -> np.ndarray:
    img = np.zeros((h, w, 3), dtype=np.float32)
    # 左半为前景物体，右下角为遮挡物。
    img[:, : w // 2] = (0.9, 0.2, 0.1)
    img[h // 2 :, (3 * w) // 4 :] = (0.1, 0.1, 0.8)
    return img


def main() -> None:
    parser = argparse.ArgumentParser(description="Layered CRF build + fill smoke run")
    parser.add_argument("--h", type=int, default=16)
    parser.add_argument("--w", type=int, default=24)
    args = parser.parse_args()
    h, w = int(args.h), int(args.w)
    img = _make_synthetic_image(h, w)

    # 1) 两层（基础层 2 类，遮挡层 3 类），GRID|DIAG|LINK
    graph = DenseGraphPairwise()
    ext = LayeredGraphExt(graph, 2, EdgeType.GRID | EdgeType.DIAG | EdgeType.LINK, num_states=(2, 3))
    ext.set_graph(np.full((h, w, 2), 0.5, np.float32), np.full((h, w, 3), 1.0 / 3.0, np.float32))
    assert ext.get_size() == (w, h)

    n_sites = h * w
    per_layer = w * (h - 1) + h * (w - 1) + 2 * (w - 1) * (h - 1)
    assert graph.get_num_nodes() == 2 * n_sites, "节点数必须为 W*H*L"
    assert graph.get_num_edges() == 2 * per_layer + n_sites, "边数与 GRID|DIAG|LINK 拓扑不一致"

    groups = graph.get_edge_groups()
    link = ext.topology.kind == EDGE_KIND_LINK
    assert np.all(groups[link] == GROUP_LINK_DEFAULT), "链接边默认分组必须为 1"
    assert np.all(groups[~link] == 0), "层内边默认分组必须为 0"

    ext.add_default_edges_model(4.0, 1.0, feature_vectors=img)
    moved = ext.define_edge_group(1.0, 0.0, -(w // 2 - 0.5), 2)
    assert moved == 2 * (h + 2 * (h - 1)), "竖直分界线应切到每层的水平边与对角边"
    print(f"[OK] layered: nodes={graph.get_num_nodes()} edges={graph.get_num_edges()} links={ext.topology.num_links} boundary={moved}")

    # 2) 单层：训练样本抽取 + 训练器填充 + 分组覆盖
    single = LayeredGraphExt(DenseGraphPairwise(), 1, EdgeType.GRID, num_states=2)
    trainer = ContrastPottsEdgeTrainer(2)
    gt = np.zeros((h, w), dtype=np.int64)
    gt[:, w // 2 :] = 1
    samples = single.add_feature_vecs(trainer, img, gt)
    single.build_graph((w, h))
    filled = single.fill_edges(trainer, None, img, params=(4.0, 10.0))
    single.define_edge_group(1.0, 0.0, -(w // 2 - 0.5), 3)
    cut = single.set_edges(3, np.ones((2, 2), dtype=np.float32))
    assert cut == h, "单层竖直分界线只切到 H 条水平边"
    print(f"[OK] single: samples={samples} filled={filled} cut={cut}")


if __name__ == "__main__":
    main()
