"""
多层成对图（Layered CRF）的构建与势函数填充。

每层是一张 W×H 网格（一个假设平面：第 0 层为可见/基础层，其余为遮挡层），
层内按 EdgeType 生成网格/对角边，相邻层的同一站点之间生成链接边。
本模块只负责建图与写势，不做推理；后端图通过 `GraphPairwise` 能力集合注入，引擎不拥有其生命周期。

并发约定：引擎内部不做同步。build_graph / define_edge_group 必须先于任何势填充完成；
set_graph / fill_edges 的每个节点或边只被写一次，调用方可按站点/边切分并行。
中途中断的填充结果应视为无效。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .config import EdgeType, LayeredGraphConfig, validate_group
from .errors import ConfigurationError, NotBuiltError, TopologyStateError
from .features import FeatureMap, as_feature_array, as_ground_truth, feature_size, site_features
from .graph import GraphPairwise, check_potential_values
from .potentials import (
    apply_weight,
    contrast_beta,
    contrast_diagonal,
    diagonal_potentials,
    potts_potentials,
    squared_feature_distance,
    validate_val_weight,
)
from .topology import LayeredTopology, build_topology, empty_topology, intra_layer_pairs
from .trainers import EdgeTrainer, LinkTrainer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AllGroups:
    """分组过滤：全部边。"""


@dataclass(frozen=True, slots=True)
class SpecificGroup:
    """分组过滤：仅分组 ID 为 `group` 的边。"""

    group: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "group", validate_group(self.group))


GroupFilter = Union[AllGroups, SpecificGroup]
ALL_GROUPS = AllGroups()


def as_group_filter(group: Union[GroupFilter, int, None]) -> GroupFilter:
    """None -> AllGroups；int -> SpecificGroup(int)。"""
    if isinstance(group, (AllGroups, SpecificGroup)):
        return group
    if group is None:
        return ALL_GROUPS
    if isinstance(group, bool):
        raise ConfigurationError(f"group 不能为 bool，当前={group!r}")
    return SpecificGroup(int(group))


def _state_slice(layer: int, num_states: int, full: int) -> slice:
    # 联合标签空间中：基础层占前 num_states 个状态，遮挡层占后 num_states 个状态
    if layer == 0:
        return slice(0, num_states)
    return slice(full - num_states, full)


def _stack_potentials(pots: Sequence[np.ndarray], ctx: str) -> np.ndarray:
    arrs = [np.asarray(p, dtype=np.float32) for p in pots]
    shape0 = arrs[0].shape
    for p in arrs:
        if p.ndim != 2 or p.shape != shape0:
            raise ConfigurationError(f"{ctx} 输出必须为同形状二维矩阵，当前 {tuple(shape0)} vs {tuple(p.shape)}")
    return np.stack(arrs, axis=0)


def predict_edge_potentials(
    edge_trainer: EdgeTrainer, f1: np.ndarray, f2: np.ndarray, params: Tuple[float, ...]
) -> np.ndarray:
    """逐站点对调用训练器（若提供批量钩子则一次调用），返回 (P, a, b) float32。"""
    batch = getattr(edge_trainer, "calculate_edge_potentials_batch", None)
    if callable(batch):
        pots = np.asarray(batch(f1, f2, params), dtype=np.float32)
        if pots.ndim != 3 or int(pots.shape[0]) != int(f1.shape[0]):
            raise ConfigurationError(f"calculate_edge_potentials_batch 输出必须为 (P,a,b)，当前 shape={pots.shape}")
        return pots
    return _stack_potentials(
        [edge_trainer.calculate_edge_potentials(f1[i], f2[i], params) for i in range(int(f1.shape[0]))],
        "calculate_edge_potentials",
    )


def predict_link_potentials(link_trainer: LinkTrainer, feats: np.ndarray) -> np.ndarray:
    batch = getattr(link_trainer, "calculate_link_potentials_batch", None)
    if callable(batch):
        pots = np.asarray(batch(feats), dtype=np.float32)
        if pots.ndim != 3 or int(pots.shape[0]) != int(feats.shape[0]):
            raise ConfigurationError(f"calculate_link_potentials_batch 输出必须为 (S,a,b)，当前 shape={pots.shape}")
        return pots
    return _stack_potentials(
        [link_trainer.calculate_link_potentials(feats[i]) for i in range(int(feats.shape[0]))],
        "calculate_link_potentials",
    )


class LayeredGraphExt:
    """
    多层成对图的扩展接口（构建网格拓扑、边分组、默认/学习边势、训练样本抽取）。

    参数：
        graph: 后端成对图（借用引用；调用方保证其生命周期覆盖本对象）。
        n_layers: 层数 L（>=1）。
        edge_type: EdgeType 组合，默认仅 GRID。
        num_states: 每层标签数；int 表示各层相同，序列按层给出（第 0 层为基础层）。
    """

    def __init__(
        self,
        graph: GraphPairwise,
        n_layers: int,
        edge_type: Union[EdgeType, int] = EdgeType.GRID,
        *,
        num_states: Union[int, Sequence[int]] = 2,
    ) -> None:
        if isinstance(num_states, (list, tuple)):
            num_states = tuple(int(s) for s in num_states)
        self._config = LayeredGraphConfig(n_layers=n_layers, num_states=num_states, edge_type=edge_type)
        self._graph = graph
        self._topology = empty_topology(self._config.n_layers)

    @classmethod
    def from_config(cls, graph: GraphPairwise, config: LayeredGraphConfig) -> "LayeredGraphExt":
        return cls(graph, config.n_layers, config.edge_type, num_states=config.num_states)

    # ---- 只读访问 ----
    @property
    def n_layers(self) -> int:
        return self._config.n_layers

    @property
    def num_states(self) -> Tuple[int, ...]:
        return self._config.num_states

    @property
    def topology(self) -> LayeredTopology:
        return self._topology

    def get_size(self) -> Tuple[int, int]:
        """(width, height)；构建前为 (0, 0)。"""
        return int(self._topology.width), int(self._topology.height)

    def get_type(self) -> EdgeType:
        return self._config.edge_type

    def get_graph(self) -> GraphPairwise:
        return self._graph

    def _require_built(self, ctx: str) -> LayeredTopology:
        if self._topology.is_empty:
            raise NotBuiltError(f"{ctx}：图尚未构建或为空，请先调用 build_graph / set_graph")
        return self._topology

    def _require_size(self, features: np.ndarray, ctx: str) -> None:
        if feature_size(features) != self.get_size():
            raise ConfigurationError(
                f"{ctx}：特征尺寸 (W,H)={feature_size(features)} 与图尺寸 {self.get_size()} 不一致"
            )

    # ---- 拓扑 ----
    def build_graph(self, graph_size: Tuple[int, int]) -> None:
        """
        按 (width, height) 构建多层网格图，总是替换后端图中已有的结构与势。

        层内边分组为 0，链接边分组为 1。width 或 height 为 0 时后端图被清空。
        """
        if len(graph_size) != 2:
            raise ConfigurationError(f"graph_size 必须为 (width, height)，当前={graph_size!r}")
        width, height = int(graph_size[0]), int(graph_size[1])
        topo = build_topology(width, height, self.n_layers, self.get_type())

        self._graph.reset()
        self._topology = topo
        if topo.is_empty:
            logger.info("build_graph(%d, %d)：空图", width, height)
            return

        for layer in range(self.n_layers):
            ids = self._graph.add_nodes(self.num_states[layer], topo.n_sites)
            if not np.array_equal(np.asarray(ids, dtype=np.int64), topo.layer_nodes(layer)):
                self._topology = empty_topology(self.n_layers)
                raise TopologyStateError("后端图的节点 ID 不是从 0 开始的连续编号，无法与网格索引对应")
        if topo.num_edges:
            ids = self._graph.add_edges(topo.src, topo.dst, topo.default_group)
            if not np.array_equal(np.asarray(ids, dtype=np.int64), np.arange(topo.num_edges, dtype=np.int64)):
                self._topology = empty_topology(self.n_layers)
                raise TopologyStateError("后端图的边 ID 不是从 0 开始的连续编号，无法与拓扑对应")

        logger.info(
            "build_graph(%d, %d)：layers=%d nodes=%d edges=%d links=%d",
            width,
            height,
            self.n_layers,
            topo.num_nodes,
            topo.num_edges,
            topo.num_links,
        )

    def define_edge_group(self, a: float, b: float, c: float, group: int) -> int:
        """
        将两端点 (x,y) 位于直线 a*x + b*y + c = 0 两侧的边归入 `group`。

        两侧按 a*x + b*y + c >= 0 与 < 0 划分，恰在直线上的站点归入非负一侧；
        因此竖直线 x=k 只切开 x=k-1 与 x=k 之间的边。

        忽略层坐标，因此链接边永远不会被改组。返回被改组的边数。
        """
        a_f, b_f, c_f = float(a), float(b), float(c)
        if a_f == 0.0 and b_f == 0.0:
            raise ConfigurationError("直线系数 a 与 b 不能同时为 0")
        if not (np.isfinite(a_f) and np.isfinite(b_f) and np.isfinite(c_f)):
            raise ConfigurationError(f"直线系数必须为有限值，当前={(a, b, c)}")
        g = validate_group(group)
        topo = self._topology
        if topo.num_edges == 0:
            logger.debug("define_edge_group：图中没有边，忽略")
            return 0

        x1, y1, x2, y2 = topo.edge_xy(np.arange(topo.num_edges, dtype=np.int64))
        s1 = (a_f * x1 + b_f * y1 + c_f) >= 0.0
        s2 = (a_f * x2 + b_f * y2 + c_f) >= 0.0
        edges = np.nonzero(s1 != s2)[0]
        if edges.size:
            self._graph.set_edge_groups(edges, g)
        logger.debug("define_edge_group(%g, %g, %g) -> group %d：%d 条边", a_f, b_f, c_f, g, int(edges.size))
        return int(edges.size)

    # ---- 节点势 ----
    def set_graph(self, pots: FeatureMap, pots_occl: Optional[FeatureMap] = None) -> None:
        """
        写入节点势。

        - 单层图：set_graph(pots)，pots 为 (H, W, S0)；
        - 多层图：set_graph(pot_base, pot_occl)，基础层取 pot_base，其余各层取 pot_occl (H, W, S1)。
        若图尚未构建，先调用 build_graph((W, H))。
        """
        base = as_feature_array(pots)
        if pots_occl is None and self.n_layers > 1:
            raise TopologyStateError(f"多层图（L={self.n_layers}）必须同时提供基础层与遮挡层节点势")
        if pots_occl is not None and self.n_layers < 2:
            raise TopologyStateError("单层图不接受遮挡层节点势")
        if int(base.shape[2]) != self.num_states[0]:
            raise ConfigurationError(f"基础层节点势通道数必须为 {self.num_states[0]}，当前={int(base.shape[2])}")
        check_potential_values(base, "基础层节点势")

        occl = None
        if pots_occl is not None:
            occl = as_feature_array(pots_occl)
            if occl.shape[:2] != base.shape[:2]:
                raise ConfigurationError(f"遮挡层节点势尺寸 {occl.shape[:2]} 与基础层 {base.shape[:2]} 不一致")
            for layer in range(1, self.n_layers):
                if int(occl.shape[2]) != self.num_states[layer]:
                    raise ConfigurationError(
                        f"第 {layer} 层节点势通道数必须为 {self.num_states[layer]}，当前={int(occl.shape[2])}"
                    )
            check_potential_values(occl, "遮挡层节点势")

        if self._topology.is_empty:
            self.build_graph(feature_size(base))
        self._require_size(base, "set_graph")
        topo = self._topology

        self._graph.set_nodes(topo.layer_nodes(0), base.reshape(topo.n_sites, -1))
        if occl is not None:
            flat = occl.reshape(topo.n_sites, -1)
            for layer in range(1, self.n_layers):
                self._graph.set_nodes(topo.layer_nodes(layer), flat)

    def get_layer_potentials(self, layer: int) -> np.ndarray:
        """读取第 `layer` 层的节点势，返回 (H, W, S)。"""
        topo = self._require_built("get_layer_potentials")
        pots = self._graph.get_nodes(topo.layer_nodes(layer))
        return pots.reshape(topo.height, topo.width, -1)

    # ---- 边势 ----
    def set_edges(self, group: Union[GroupFilter, int, None], pot: np.ndarray) -> int:
        """
        将同一势矩阵写入指定分组（AllGroups / None 表示全部边），返回写入条数。

        pot 的形状必须与每条目标边两端的标签数一致，否则不写入任何边。
        """
        self._require_built("set_edges")
        filt = as_group_filter(group)
        if isinstance(filt, AllGroups):
            return self._graph.set_edges_by_group(None, pot)
        if isinstance(filt, SpecificGroup):
            return self._graph.set_edges_by_group(filt.group, pot)
        raise ConfigurationError(f"未知的分组过滤类型: {type(filt).__name__}")

    def add_default_edges_model(
        self,
        val: float,
        weight: float = 1.0,
        *,
        feature_vectors: Optional[FeatureMap] = None,
    ) -> int:
        """
        为全部层内边（非链接边）写入默认 Potts 边势，返回写入条数。

        - feature_vectors 为 None：与数据无关的 Potts，diag=val，非对角=1，再取 weight 次幂；
        - 否则为对比度敏感版本：两端特征差异越大，对角越接近 1（见 potentials 模块）。
        feature_vectors 可为多通道 (H,W,C) 或逐特征单通道序列，两者结果一致。
        """
        topo = self._require_built("add_default_edges_model")
        if feature_vectors is None:
            written = 0
            for layer in range(self.n_layers):
                edges = topo.intra_edge_ids(layer)
                pot = potts_potentials(val, self.num_states[layer], weight)
                self._graph.set_edges_batch(edges, np.broadcast_to(pot, (int(edges.shape[0]),) + pot.shape))
                written += int(edges.shape[0])
            return written

        validate_val_weight(val, weight)
        feats = as_feature_array(feature_vectors)
        self._require_size(feats, "add_default_edges_model")
        su, sv = topo.edge_sites(topo.intra_edge_ids(0))
        dist_sq = squared_feature_distance(site_features(feats, su), site_features(feats, sv))
        diag = contrast_diagonal(dist_sq, float(val), contrast_beta(dist_sq))

        written = 0
        for layer in range(self.n_layers):
            edges = topo.intra_edge_ids(layer)
            self._graph.set_edges_batch(edges, diagonal_potentials(diag, self.num_states[layer], weight))
            written += int(edges.shape[0])
        return written

    # ---- 训练样本 ----
    def add_feature_vecs(self, edge_trainer: EdgeTrainer, feature_vectors: FeatureMap, gt: np.ndarray) -> int:
        """
        按本图的边类型遍历特征图上的每条层内边，把两端特征与两端 GT 标签作为一个样本交给 edge_trainer。

        仅适用于单层图（多层图的跨层 GT 配对无定义）。不需要事先构建图。返回样本数。
        """
        if self.n_layers > 1:
            raise TopologyStateError(f"add_feature_vecs 仅适用于单层图，当前 L={self.n_layers}")
        feats = as_feature_array(feature_vectors)
        width, height = feature_size(feats)
        labels = as_ground_truth(gt, width=width, height=height).reshape(-1)

        su, sv, _ = intra_layer_pairs(width, height, self.get_type())
        f1 = site_features(feats, su)
        f2 = site_features(feats, sv)
        g1 = labels[su]
        g2 = labels[sv]

        batch = getattr(edge_trainer, "add_feature_vecs_batch", None)
        if callable(batch):
            batch(f1, f2, g1, g2)
        else:
            for i in range(int(su.shape[0])):
                edge_trainer.add_feature_vecs(f1[i], f2[i], int(g1[i]), int(g2[i]))
        logger.debug("add_feature_vecs：%dx%d -> %d 个样本", width, height, int(su.shape[0]))
        return int(su.shape[0])

    def _layer_block(self, pots: np.ndarray, lower: int, upper: int, ctx: str) -> np.ndarray:
        """
        从训练器输出 (P, a, b) 中取出连接第 lower 层与第 upper 层的势块。

        输出形状恰为 (S_lower, S_upper) 时原样使用；为联合标签空间 (M, M)（M = max S_l）时，
        基础层取前 S_0 个状态，遮挡层取后 S_l 个状态。
        """
        s_lo, s_hi = self.num_states[lower], self.num_states[upper]
        shape = tuple(int(d) for d in pots.shape[1:])
        if shape == (s_lo, s_hi):
            return pots
        full = max(self.num_states)
        if shape != (full, full):
            raise ConfigurationError(
                f"{ctx} 输出形状必须为 {(s_lo, s_hi)} 或联合标签空间 {(full, full)}（第 {lower}/{upper} 层），当前={shape}"
            )
        rows = _state_slice(lower, s_lo, full)
        cols = _state_slice(upper, s_hi, full)
        return np.ascontiguousarray(pots[:, rows, cols])

    # ---- 学习边势 ----
    def fill_edges(
        self,
        edge_trainer: EdgeTrainer,
        link_trainer: Optional[LinkTrainer],
        feature_vectors: FeatureMap,
        params: Sequence[float] = (),
        edge_weight: float = 1.0,
        link_weight: float = 1.0,
    ) -> int:
        """
        用训练器预测的势覆盖写入边势，返回写入条数。

        - 层内边：edge_trainer(f_u, f_v, params) ** edge_weight，每个站点对只预测一次，写入各层同位置的边；
        - 链接边：link_trainer(f_site) ** link_weight；link_trainer 为 None 时链接边势保持不变。
        各层标签数不同时，训练器可输出联合标签空间 (M, M) 的势，按层取块（见 `_layer_block`）。
        全部结果的形状与取值先校验，再统一写入。
        """
        topo = self._require_built("fill_edges")
        feats = as_feature_array(feature_vectors)
        self._require_size(feats, "fill_edges")
        params_t = tuple(float(p) for p in params)

        intra: list[np.ndarray] = []
        if topo.edges_per_layer:
            su, sv = topo.edge_sites(topo.intra_edge_ids(0))
            pots = predict_edge_potentials(edge_trainer, site_features(feats, su), site_features(feats, sv), params_t)
            pots = check_potential_values(apply_weight(pots, edge_weight), "edge_trainer 输出")
            intra = [self._layer_block(pots, layer, layer, "edge_trainer") for layer in range(self.n_layers)]

        links: list[np.ndarray] = []
        if topo.num_links:
            if link_trainer is None:
                logger.warning("fill_edges：link_trainer 为 None，%d 条链接边保持原势", topo.num_links)
            else:
                sites = np.arange(topo.n_sites, dtype=np.int64)
                pots = apply_weight(predict_link_potentials(link_trainer, site_features(feats, sites)), link_weight)
                pots = check_potential_values(pots, "link_trainer 输出")
                links = [self._layer_block(pots, layer, layer + 1, "link_trainer") for layer in range(self.n_layers - 1)]

        written = 0
        for layer, block in enumerate(intra):
            self._graph.set_edges_batch(topo.intra_edge_ids(layer), block)
            written += int(block.shape[0])
        for layer, block in enumerate(links):
            self._graph.set_edges_batch(topo.link_edge_ids(layer), block)
            written += int(block.shape[0])
        return written
