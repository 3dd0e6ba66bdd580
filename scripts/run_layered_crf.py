#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# 多层 CRF 建图 / 填势统一入口脚本
#
# 用法示例:
#   PYTHONPATH=src python scripts/run_layered_crf.py --config configs/smoke/layered_3x3.yaml

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np
from tqdm import tqdm

from layered_crf import (
    ConfigurationError,
    ContrastPottsEdgeTrainer,
    DenseGraphPairwise,
    LayeredGraphExt,
    PottsEdgeTrainer,
    SparseGraphPairwise,
)
from layered_crf.config import _opt_dict, _require, load_yaml, parse_graph_config
from layered_crf.graph import GraphPairwise

ROOT = Path(__file__).resolve().parents[1]

_BACKENDS = {"dense": DenseGraphPairwise, "sparse": SparseGraphPairwise}


def _as_size(v: Any) -> Tuple[int, int]:
    if not isinstance(v, list) or len(v) != 2:
        raise ConfigurationError("data.size 必须为长度为 2 的列表 [width, height]")
    return int(v[0]), int(v[1])


def _load_image(path: Path, size: Tuple[int, int]) -> np.ndarray:
    bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if bgr is None:
        raise SystemExit(f"无法读取图像: {path}")
    rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
    rgb = cv2.resize(rgb, size, interpolation=cv2.INTER_AREA)
    return rgb.astype(np.float32) / 255.0


def _synthetic_sample(rng: np.random.Generator, size: Tuple[int, int], num_classes: int) -> Tuple[np.ndarray, np.ndarray]:
    w, h = size
    gt = np.zeros((h, w), dtype=np.int64)
    cut = int(rng.integers(low=1, high=max(2, w)))
    gt[:, cut:] = int(rng.integers(low=0, high=num_classes))
    img = rng.normal(0.0, 0.05, size=(h, w, 3)).astype(np.float32)
    img += gt[..., None].astype(np.float32) / max(1, num_classes - 1)
    return img, gt


def _make_graph(backend: str) -> GraphPairwise:
    if backend not in _BACKENDS:
        raise ConfigurationError(f"runtime.backend 必须为 {sorted(_BACKENDS)}，当前={backend!r}")
    return _BACKENDS[backend]()


def run(cfg: Dict[str, Any], *, image_override: Optional[Path] = None) -> Dict[str, int]:
    graph_cfg = parse_graph_config(cfg)
    data = _require(cfg, "data", "top")
    runtime = _opt_dict(cfg, "runtime")
    default_model = _opt_dict(cfg, "default_model")
    fill = _opt_dict(cfg, "fill")
    groups = cfg.get("groups") or []

    size = _as_size(_require(data, "size", "data"))
    rng = np.random.default_rng(int(data.get("seed", 0)))
    graph = _make_graph(str(runtime.get("backend", "dense")))
    ext = LayeredGraphExt.from_config(graph, graph_cfg)

    image_path = image_override or (Path(data["image_path"]) if data.get("image_path") else None)
    if image_path is not None:
        if not image_path.is_absolute():
            image_path = ROOT / image_path
        features = _load_image(image_path, size)
    else:
        features, _ = _synthetic_sample(rng, size, graph_cfg.num_states[0])

    stats: Dict[str, int] = {"samples": 0}

    # 1) 训练样本抽取（仅单层图）
    num_train = int(data.get("num_train_images", 0))
    if num_train > 0:
        if ext.n_layers > 1:
            print(f"[SKIP] add_feature_vecs 仅适用于单层图，当前 L={ext.n_layers}")
        else:
            trainer = ContrastPottsEdgeTrainer(graph_cfg.num_states[0])
            for _ in tqdm(range(num_train), desc="add_feature_vecs"):
                img, gt = _synthetic_sample(rng, size, graph_cfg.num_states[0])
                stats["samples"] += ext.add_feature_vecs(trainer, img, gt)

    # 2) 节点势（均匀），未构建时自动 build_graph
    w, h = size
    uniform = [np.full((h, w, s), 1.0 / s, dtype=np.float32) for s in graph_cfg.num_states]
    if ext.n_layers == 1:
        ext.set_graph(uniform[0])
    else:
        ext.set_graph(uniform[0], uniform[1])

    # 3) 默认边模型
    if default_model:
        val = float(_require(default_model, "val", "default_model"))
        weight = float(default_model.get("weight", 1.0))
        if bool(default_model.get("contrast", False)):
            stats["default_edges"] = ext.add_default_edges_model(val, weight, feature_vectors=features)
        else:
            stats["default_edges"] = ext.add_default_edges_model(val, weight)

    # 4) 学习边势：训练器输出联合标签空间 (M, M)，M = max(num_states)，各层按块取用
    if fill:
        params = [float(p) for p in fill.get("params", [])]
        trainer_cls = ContrastPottsEdgeTrainer if len(params) >= 2 else PottsEdgeTrainer
        stats["filled_edges"] = ext.fill_edges(
            trainer_cls(max(graph_cfg.num_states)),
            None,
            features,
            params,
            edge_weight=float(fill.get("edge_weight", 1.0)),
            link_weight=float(fill.get("link_weight", 1.0)),
        )

    # 5) 按直线分组并覆盖边势
    for i, g in enumerate(groups):
        if not isinstance(g, dict):
            raise ConfigurationError(f"groups[{i}] 必须是 dict")
        ctx = f"groups[{i}]"
        group_id = int(_require(g, "group", ctx))
        moved = ext.define_edge_group(
            float(_require(g, "a", ctx)), float(_require(g, "b", ctx)), float(_require(g, "c", ctx)), group_id
        )
        stats[f"group_{group_id}_edges"] = moved
        if g.get("pot") is not None:
            ext.set_edges(group_id, np.asarray(g["pot"], dtype=np.float32))

    stats["nodes"] = graph.get_num_nodes()
    stats["edges"] = graph.get_num_edges()
    stats["links"] = ext.topology.num_links
    if graph.get_num_nodes():
        stats["max_degree"] = int(graph.degrees().max())
        stats["components"] = graph.connected_components()[0]
    return stats


def main() -> None:
    parser = argparse.ArgumentParser(description="Build and fill a layered CRF graph")
    parser.add_argument("--config", type=str, required=True, help="YAML 配置文件路径")
    parser.add_argument("--image", type=str, default=None, help="覆盖 data.image_path 的输入图像")
    args = parser.parse_args()

    cfg_path = Path(args.config)
    if not cfg_path.is_file():
        raise SystemExit(f"配置文件不存在: {cfg_path}")
    cfg = load_yaml(cfg_path)

    runtime = _opt_dict(cfg, "runtime")
    logging.basicConfig(
        level=getattr(logging, str(runtime.get("log_level", "INFO")).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    stats = run(cfg, image_override=Path(args.image) if args.image else None)
    name = (cfg.get("exp") or {}).get("name", cfg_path.stem)
    print(f"[OK] {name}: " + " ".join(f"{k}={v}" for k, v in sorted(stats.items())))


if __name__ == "__main__":
    main()
