from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np

from .config import (
    DIAG_OFFSETS,
    GRID_OFFSETS,
    GROUP_EDGE_DEFAULT,
    GROUP_LINK_DEFAULT,
    EdgeType,
    Offset,
    validate_offsets,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

EDGE_KIND_GRID = 0
EDGE_KIND_DIAG = 1
EDGE_KIND_LINK = 2

IntOrArray = Union[int, np.ndarray]


def node_index(x: IntOrArray, y: IntOrArray, layer: IntOrArray, *, width: int, height: int) -> IntOrArray:
    """节点线性索引：((layer*H)+y)*W + x。支持标量或 numpy 数组。"""
    return (layer * int(height) + y) * int(width) + x


def node_coords(node: IntOrArray, *, width: int, height: int) -> Tuple[IntOrArray, IntOrArray, IntOrArray]:
    """`node_index` 的逆映射，返回 (x, y, layer)。"""
    w, h = int(width), int(height)
    if w <= 0 or h <= 0:
        raise ConfigurationError(f"width/height 必须为正整数，当前={(width, height)}")
    site = node % (w * h)
    layer = node // (w * h)
    return site % w, site // w, layer


def _valid_slices(h: int, w: int, dy: int, dx: int) -> tuple[slice, slice, slice, slice]:
    if dy >= 0:
        ys_u = slice(0, h - dy)
        ys_v = slice(dy, h)
    else:
        ys_u = slice(-dy, h)
        ys_v = slice(0, h + dy)

    if dx >= 0:
        xs_u = slice(0, w - dx)
        xs_v = slice(dx, w)
    else:
        xs_u = slice(-dx, w)
        xs_v = slice(0, w + dx)

    return ys_u, xs_u, ys_v, xs_v


def site_pairs(width: int, height: int, offsets: Sequence[Offset]) -> Tuple[np.ndarray, np.ndarray]:
    """
    枚举单层网格上按 `offsets` 相邻的站点对（u -> u+offset），越界的对被丢弃。

    输出：
        (u, v)：两个 (P,) int64 数组，元素为站点线性索引 y*W+x。
        顺序：先按 offsets 顺序，再按行优先扫描 u。
    """
    w, h = int(width), int(height)
    if w <= 0 or h <= 0 or not offsets:
        return np.zeros((0,), dtype=np.int64), np.zeros((0,), dtype=np.int64)
    offsets_t = validate_offsets(offsets)
    idx = np.arange(h * w, dtype=np.int64).reshape(h, w)
    us: list[np.ndarray] = []
    vs: list[np.ndarray] = []
    for dy, dx in offsets_t:
        ys_u, xs_u, ys_v, xs_v = _valid_slices(h, w, dy, dx)
        if (ys_u.stop - ys_u.start) <= 0 or (xs_u.stop - xs_u.start) <= 0:
            continue
        us.append(idx[ys_u, xs_u].ravel())
        vs.append(idx[ys_v, xs_v].ravel())
    if not us:
        return np.zeros((0,), dtype=np.int64), np.zeros((0,), dtype=np.int64)
    return np.concatenate(us), np.concatenate(vs)


def intra_layer_pairs(width: int, height: int, edge_type: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """单层内由 `edge_type` 决定的全部站点对及其边类别（GRID 在前，DIAG 在后）。"""
    us: list[np.ndarray] = []
    vs: list[np.ndarray] = []
    kinds: list[np.ndarray] = []
    for flag, offsets, kind in (
        (EdgeType.GRID, GRID_OFFSETS, EDGE_KIND_GRID),
        (EdgeType.DIAG, DIAG_OFFSETS, EDGE_KIND_DIAG),
    ):
        if not int(edge_type) & flag:
            continue
        u, v = site_pairs(width, height, offsets)
        us.append(u)
        vs.append(v)
        kinds.append(np.full(u.shape, kind, dtype=np.uint8))
    if not us:
        z = np.zeros((0,), dtype=np.int64)
        return z, z.copy(), np.zeros((0,), dtype=np.uint8)
    return np.concatenate(us), np.concatenate(vs), np.concatenate(kinds)


@dataclass(frozen=True, slots=True)
class LayeredTopology:
    """
    多层网格图的完整拓扑（与后端图中的节点/边 ID 一一对应）。

    字段：
        width, height, n_layers: 网格尺寸与层数。
        src, dst: (E,) int64，边两端的节点线性索引；链接边的 src 恒在较低层。
        kind: (E,) uint8，EDGE_KIND_GRID / EDGE_KIND_DIAG / EDGE_KIND_LINK。
        default_group: (E,) uint8，构建时的默认分组（层内 0，链接 1）。
        edges_per_layer: 每层层内边数 P；第 l 层的第 k 条层内边 ID 为 l*P+k。

    布局：
        [层 0 层内边 | 层 1 层内边 | ... | 链接 (0,1) | 链接 (1,2) | ...]，
        每段链接按站点线性索引排列。
    """

    width: int
    height: int
    n_layers: int
    src: np.ndarray
    dst: np.ndarray
    kind: np.ndarray
    default_group: np.ndarray
    edges_per_layer: int

    @property
    def n_sites(self) -> int:
        return int(self.width) * int(self.height)

    @property
    def num_nodes(self) -> int:
        return self.n_sites * int(self.n_layers)

    @property
    def num_edges(self) -> int:
        return int(self.src.shape[0])

    @property
    def num_intra_edges(self) -> int:
        return int(self.edges_per_layer) * int(self.n_layers)

    @property
    def num_links(self) -> int:
        return self.num_edges - self.num_intra_edges

    @property
    def is_empty(self) -> bool:
        return self.num_nodes == 0

    @property
    def link_mask(self) -> np.ndarray:
        return self.kind == EDGE_KIND_LINK

    def layer_nodes(self, layer: int) -> np.ndarray:
        """第 `layer` 层全部节点 ID（按站点线性索引排列）。"""
        if not (0 <= int(layer) < int(self.n_layers)):
            raise ConfigurationError(f"layer 必须在 [0,{self.n_layers}) 内，当前={layer}")
        start = int(layer) * self.n_sites
        return np.arange(start, start + self.n_sites, dtype=np.int64)

    def intra_edge_ids(self, layer: int) -> np.ndarray:
        if not (0 <= int(layer) < int(self.n_layers)):
            raise ConfigurationError(f"layer 必须在 [0,{self.n_layers}) 内，当前={layer}")
        start = int(layer) * int(self.edges_per_layer)
        return np.arange(start, start + int(self.edges_per_layer), dtype=np.int64)

    def link_edge_ids(self, lower_layer: int) -> np.ndarray:
        """连接 `lower_layer` 与 `lower_layer+1` 的链接边 ID（按站点排列）；无链接时为空。"""
        if self.num_links == 0:
            return np.zeros((0,), dtype=np.int64)
        if not (0 <= int(lower_layer) < int(self.n_layers) - 1):
            raise ConfigurationError(f"lower_layer 必须在 [0,{self.n_layers - 1}) 内，当前={lower_layer}")
        start = self.num_intra_edges + int(lower_layer) * self.n_sites
        return np.arange(start, start + self.n_sites, dtype=np.int64)

    def edge_sites(self, edges: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """边两端的站点线性索引 y*W+x（忽略层）。"""
        n = self.n_sites
        return self.src[edges] % n, self.dst[edges] % n

    def edge_xy(self, edges: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """边两端的 (x1, y1, x2, y2)。"""
        s1, s2 = self.edge_sites(edges)
        w = int(self.width)
        return s1 % w, s1 // w, s2 % w, s2 // w


def empty_topology(n_layers: int) -> LayeredTopology:
    z = np.zeros((0,), dtype=np.int64)
    return LayeredTopology(
        width=0,
        height=0,
        n_layers=int(n_layers),
        src=z,
        dst=z.copy(),
        kind=np.zeros((0,), dtype=np.uint8),
        default_group=np.zeros((0,), dtype=np.uint8),
        edges_per_layer=0,
    )


def build_topology(width: int, height: int, n_layers: int, edge_type: int) -> LayeredTopology:
    """
    由 (W, H, L, edge_type) 唯一确定节点与边集合。

    - GRID：每个站点连向右邻与下邻，逐层复制；
    - DIAG：每个站点连向右下与左下，逐层复制；
    - LINK：L>1 时，同一站点在相邻层 (l, l+1) 之间各一条链接边。
    层内边默认分组 0，链接边默认分组 1。W 或 H 为 0 时返回空拓扑。
    """
    if int(n_layers) <= 0:
        raise ConfigurationError(f"n_layers 必须是正整数，当前={n_layers}")
    w, h, n_l = int(width), int(height), int(n_layers)
    if w < 0 or h < 0:
        raise ConfigurationError(f"图尺寸不能为负，当前={(width, height)}")
    if w == 0 or h == 0:
        return empty_topology(n_l)

    n_sites = w * h
    u, v, kinds = intra_layer_pairs(w, h, edge_type)
    p = int(u.shape[0])

    src_parts: list[np.ndarray] = []
    dst_parts: list[np.ndarray] = []
    kind_parts: list[np.ndarray] = []
    for layer in range(n_l):
        shift = layer * n_sites
        src_parts.append(u + shift)
        dst_parts.append(v + shift)
        kind_parts.append(kinds)

    if int(edge_type) & EdgeType.LINK and n_l > 1:
        sites = np.arange(n_sites, dtype=np.int64)
        for layer in range(n_l - 1):
            src_parts.append(sites + layer * n_sites)
            dst_parts.append(sites + (layer + 1) * n_sites)
            kind_parts.append(np.full((n_sites,), EDGE_KIND_LINK, dtype=np.uint8))

    src = np.concatenate(src_parts).astype(np.int64, copy=False)
    dst = np.concatenate(dst_parts).astype(np.int64, copy=False)
    kind = np.concatenate(kind_parts).astype(np.uint8, copy=False)
    default_group = np.where(kind == EDGE_KIND_LINK, GROUP_LINK_DEFAULT, GROUP_EDGE_DEFAULT).astype(np.uint8)

    logger.debug(
        "topology %dx%d L=%d type=%d: nodes=%d edges=%d (per layer=%d, links=%d)",
        w,
        h,
        n_l,
        int(edge_type),
        n_sites * n_l,
        int(src.shape[0]),
        p,
        int(src.shape[0]) - p * n_l,
    )
    return LayeredTopology(
        width=w,
        height=h,
        n_layers=n_l,
        src=src,
        dst=dst,
        kind=kind,
        default_group=default_group,
        edges_per_layer=p,
    )
