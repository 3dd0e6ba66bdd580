"""成对图（pairwise graph）后端。

多层图引擎只依赖 `GraphPairwise` 定义的能力集合，不依赖具体实现：
- `DenseGraphPairwise`：扁平 float32 缓冲区 + 偏移表，批量接口全部向量化，适合千万级边；
- `SparseGraphPairwise`：逐节点的关联边表 + 逐边记录，便于增量修改与邻接查询。

势函数约定：
- 节点 u 的势为长度 num_states[u] 的非负向量；
- 边 (u,v) 的势为 (num_states[u], num_states[v]) 的非负矩阵，按行优先展平存储；
- 新建节点/边的势初始化为全 1（乘性中性元）。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp
from scipy.sparse import csgraph

from .config import validate_group
from .errors import ConfigurationError

ArrayLike = Union[np.ndarray, Sequence[float]]


def check_potential_values(arr: np.ndarray, ctx: str) -> np.ndarray:
    if not np.isfinite(arr).all():
        raise ConfigurationError(f"{ctx} 含非有限值（NaN/Inf）")
    if arr.size and float(arr.min()) < 0.0:
        raise ConfigurationError(f"{ctx} 必须非负，当前 min={float(arr.min())}")
    return arr


def as_node_potential(pot: ArrayLike, num_states: int) -> np.ndarray:
    arr = np.asarray(pot, dtype=np.float32).reshape(-1)
    if int(arr.shape[0]) != int(num_states):
        raise ConfigurationError(f"节点势长度必须等于标签数 {num_states}，当前={int(arr.shape[0])}")
    return check_potential_values(arr, "节点势")


def as_edge_potential(pot: ArrayLike, shape: Tuple[int, int]) -> np.ndarray:
    arr = np.asarray(pot, dtype=np.float32)
    a, b = int(shape[0]), int(shape[1])
    if arr.ndim == 1 and int(arr.shape[0]) == a * b:
        arr = arr.reshape(a, b)
    if arr.shape != (a, b):
        raise ConfigurationError(f"边势形状必须为 {(a, b)}，当前={tuple(arr.shape)}")
    return check_potential_values(arr, "边势")


class GraphPairwise:
    """
    成对图后端的能力集合。

    子类至少实现单元素接口（add_node/add_edge/set_node/...）；批量接口默认逐元素回退，
    子类可按需以向量化实现覆盖。批量写入先校验全部目标，再统一写入。
    """

    # ---- 单元素接口 ----
    def reset(self) -> None:
        raise NotImplementedError

    def add_node(self, num_states: int, pot: Optional[ArrayLike] = None) -> int:
        raise NotImplementedError

    def add_edge(self, src: int, dst: int, group: int = 0, pot: Optional[ArrayLike] = None) -> int:
        raise NotImplementedError

    def set_node(self, node: int, pot: ArrayLike) -> None:
        raise NotImplementedError

    def get_node(self, node: int) -> np.ndarray:
        raise NotImplementedError

    def get_num_states(self, node: int) -> int:
        raise NotImplementedError

    def set_edge(self, edge: int, pot: ArrayLike) -> None:
        raise NotImplementedError

    def get_edge(self, edge: int) -> np.ndarray:
        raise NotImplementedError

    def get_edge_nodes(self, edge: int) -> Tuple[int, int]:
        raise NotImplementedError

    def get_edge_group(self, edge: int) -> int:
        raise NotImplementedError

    def set_edge_group(self, edge: int, group: int) -> None:
        raise NotImplementedError

    def set_edges_by_group(self, group: Optional[int], pot: ArrayLike) -> int:
        """将同一势矩阵写入分组为 `group` 的全部边（group=None 表示全部边），返回写入条数。"""
        raise NotImplementedError

    def get_num_nodes(self) -> int:
        raise NotImplementedError

    def get_num_edges(self) -> int:
        raise NotImplementedError

    def size(self) -> Tuple[int, int]:
        return self.get_num_nodes(), self.get_num_edges()

    # ---- 批量接口（默认逐元素） ----
    def add_nodes(self, num_states: int, count: int) -> np.ndarray:
        return np.asarray([self.add_node(num_states) for _ in range(int(count))], dtype=np.int64)

    def add_edges(self, src: np.ndarray, dst: np.ndarray, group: Union[int, np.ndarray] = 0) -> np.ndarray:
        src_a = np.asarray(src, dtype=np.int64).reshape(-1)
        dst_a = np.asarray(dst, dtype=np.int64).reshape(-1)
        if src_a.shape != dst_a.shape:
            raise ConfigurationError(f"src/dst 长度必须一致，当前 {src_a.shape} vs {dst_a.shape}")
        groups = np.broadcast_to(np.asarray(group, dtype=np.int64), src_a.shape)
        return np.asarray(
            [self.add_edge(int(u), int(v), int(g)) for u, v, g in zip(src_a, dst_a, groups)],
            dtype=np.int64,
        )

    def get_num_states_array(self) -> np.ndarray:
        return np.asarray([self.get_num_states(i) for i in range(self.get_num_nodes())], dtype=np.int32)

    def get_edge_endpoints(self) -> Tuple[np.ndarray, np.ndarray]:
        pairs = [self.get_edge_nodes(e) for e in range(self.get_num_edges())]
        if not pairs:
            return np.zeros((0,), dtype=np.int64), np.zeros((0,), dtype=np.int64)
        arr = np.asarray(pairs, dtype=np.int64)
        return arr[:, 0], arr[:, 1]

    def get_edge_groups(self) -> np.ndarray:
        return np.asarray([self.get_edge_group(e) for e in range(self.get_num_edges())], dtype=np.uint8)

    def set_edge_groups(self, edges: np.ndarray, group: int) -> None:
        g = validate_group(group)
        for e in np.asarray(edges, dtype=np.int64).reshape(-1):
            self.set_edge_group(int(e), g)

    def set_nodes(self, nodes: np.ndarray, pots: np.ndarray) -> None:
        """pots: (N, S)，第 i 行写入 nodes[i]。"""
        nodes_a = np.asarray(nodes, dtype=np.int64).reshape(-1)
        pots_a = np.asarray(pots, dtype=np.float32)
        if pots_a.ndim != 2 or int(pots_a.shape[0]) != int(nodes_a.shape[0]):
            raise ConfigurationError(f"pots 必须为 (N,S) 且 N=len(nodes)，当前 pots={pots_a.shape}, N={nodes_a.shape[0]}")
        checked = [as_node_potential(p, self.get_num_states(int(n))) for n, p in zip(nodes_a, pots_a)]
        for n, p in zip(nodes_a, checked):
            self.set_node(int(n), p)

    def get_nodes(self, nodes: np.ndarray) -> np.ndarray:
        """读取 nodes 的节点势，返回 (N, S)；要求这些节点标签数相同。"""
        nodes_a = np.asarray(nodes, dtype=np.int64).reshape(-1)
        pots = [self.get_node(int(n)) for n in nodes_a]
        if not pots:
            return np.zeros((0, 0), dtype=np.float32)
        s = int(pots[0].shape[0])
        if any(int(p.shape[0]) != s for p in pots):
            raise ConfigurationError("get_nodes 要求所有节点的标签数一致")
        return np.stack(pots, axis=0)

    def set_edges_batch(self, edges: np.ndarray, pots: np.ndarray) -> None:
        """pots: (E, a, b)，第 i 个矩阵写入 edges[i]。"""
        edges_a = np.asarray(edges, dtype=np.int64).reshape(-1)
        pots_a = np.asarray(pots, dtype=np.float32)
        if pots_a.ndim != 3 or int(pots_a.shape[0]) != int(edges_a.shape[0]):
            raise ConfigurationError(f"pots 必须为 (E,a,b) 且 E=len(edges)，当前 pots={pots_a.shape}, E={edges_a.shape[0]}")
        checked = []
        for e, p in zip(edges_a, pots_a):
            u, v = self.get_edge_nodes(int(e))
            checked.append(as_edge_potential(p, (self.get_num_states(u), self.get_num_states(v))))
        for e, p in zip(edges_a, checked):
            self.set_edge(int(e), p)

    def adjacency_matrix(self) -> sp.csr_matrix:
        """无向邻接矩阵（N,N），值为连接两节点的边数。"""
        n = self.get_num_nodes()
        src, dst = self.get_edge_endpoints()
        ones = np.ones((2 * int(src.shape[0]),), dtype=np.float32)
        rows = np.concatenate([src, dst])
        cols = np.concatenate([dst, src])
        return sp.coo_matrix((ones, (rows, cols)), shape=(n, n)).tocsr()

    def degrees(self) -> np.ndarray:
        """(N,) int64，每个节点的关联边数。"""
        return np.asarray(self.adjacency_matrix().sum(axis=1), dtype=np.int64).reshape(-1)

    def connected_components(self) -> Tuple[int, np.ndarray]:
        """(连通分量数, (N,) 每个节点所属分量 ID)；空图返回 (0, 空数组)。"""
        if self.get_num_nodes() == 0:
            return 0, np.zeros((0,), dtype=np.int32)
        n, labels = csgraph.connected_components(self.adjacency_matrix(), directed=False)
        return int(n), labels


def _reserve(arr: np.ndarray, needed: int) -> np.ndarray:
    if int(arr.shape[0]) >= int(needed):
        return arr
    cap = max(int(needed), 2 * int(arr.shape[0]), 16)
    out = np.zeros((cap,), dtype=arr.dtype)
    out[: arr.shape[0]] = arr
    return out


class DenseGraphPairwise(GraphPairwise):
    """
    基于连续缓冲区的成对图。

    内部状态（仅前 n_nodes / n_edges 项有效）：
        _states: 每节点标签数；
        _node_ptr / _node_buf: 节点势的偏移表与扁平缓冲区；
        _edge_src / _edge_dst / _edge_group: 边端点与分组；
        _edge_ptr / _edge_buf: 边势的偏移表与扁平缓冲区（行优先）。
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._n_nodes = 0
        self._n_edges = 0
        self._states = np.zeros((0,), dtype=np.int32)
        self._node_ptr = np.zeros((1,), dtype=np.int64)
        self._node_buf = np.zeros((0,), dtype=np.float32)
        self._edge_src = np.zeros((0,), dtype=np.int64)
        self._edge_dst = np.zeros((0,), dtype=np.int64)
        self._edge_group = np.zeros((0,), dtype=np.uint8)
        self._edge_ptr = np.zeros((1,), dtype=np.int64)
        self._edge_buf = np.zeros((0,), dtype=np.float32)

    def get_num_nodes(self) -> int:
        return self._n_nodes

    def get_num_edges(self) -> int:
        return self._n_edges

    def _check_nodes(self, nodes: np.ndarray) -> None:
        if nodes.size and (int(nodes.min()) < 0 or int(nodes.max()) >= self._n_nodes):
            raise ConfigurationError(f"节点 ID 越界，合法范围 [0,{self._n_nodes})")

    def _check_edges(self, edges: np.ndarray) -> None:
        if edges.size and (int(edges.min()) < 0 or int(edges.max()) >= self._n_edges):
            raise ConfigurationError(f"边 ID 越界，合法范围 [0,{self._n_edges})")

    # ---- 节点 ----
    def add_nodes(self, num_states: int, count: int) -> np.ndarray:
        s, c = int(num_states), int(count)
        if s <= 0:
            raise ConfigurationError(f"num_states 必须是正整数，当前={num_states}")
        if c < 0:
            raise ConfigurationError(f"count 不能为负，当前={count}")
        n0 = self._n_nodes
        n1 = n0 + c
        base = int(self._node_ptr[n0])
        self._states = _reserve(self._states, n1)
        self._node_ptr = _reserve(self._node_ptr, n1 + 1)
        self._node_buf = _reserve(self._node_buf, base + c * s)
        self._states[n0:n1] = s
        self._node_ptr[n0 + 1 : n1 + 1] = base + s * np.arange(1, c + 1, dtype=np.int64)
        self._node_buf[base : base + c * s] = 1.0
        self._n_nodes = n1
        return np.arange(n0, n1, dtype=np.int64)

    def add_node(self, num_states: int, pot: Optional[ArrayLike] = None) -> int:
        checked = None if pot is None else as_node_potential(pot, int(num_states))
        node = int(self.add_nodes(num_states, 1)[0])
        if checked is not None:
            self.set_node(node, checked)
        return node

    def _node_slice(self, node: int) -> slice:
        self._check_nodes(np.asarray([node], dtype=np.int64))
        return slice(int(self._node_ptr[node]), int(self._node_ptr[node + 1]))

    def set_node(self, node: int, pot: ArrayLike) -> None:
        s = self._node_slice(int(node))
        self._node_buf[s] = as_node_potential(pot, s.stop - s.start)

    def get_node(self, node: int) -> np.ndarray:
        return self._node_buf[self._node_slice(int(node))].copy()

    def get_num_states(self, node: int) -> int:
        self._check_nodes(np.asarray([node], dtype=np.int64))
        return int(self._states[int(node)])

    def get_num_states_array(self) -> np.ndarray:
        return self._states[: self._n_nodes].copy()

    def get_nodes(self, nodes: np.ndarray) -> np.ndarray:
        nodes_a = np.asarray(nodes, dtype=np.int64).reshape(-1)
        if nodes_a.size == 0:
            return np.zeros((0, 0), dtype=np.float32)
        self._check_nodes(nodes_a)
        s = int(self._states[nodes_a[0]])
        if not np.all(self._states[nodes_a] == s):
            raise ConfigurationError("get_nodes 要求所有节点的标签数一致")
        pos = self._node_ptr[nodes_a][:, None] + np.arange(s, dtype=np.int64)[None, :]
        return self._node_buf[pos].copy()

    def set_nodes(self, nodes: np.ndarray, pots: np.ndarray) -> None:
        nodes_a = np.asarray(nodes, dtype=np.int64).reshape(-1)
        pots_a = np.asarray(pots, dtype=np.float32)
        if pots_a.ndim != 2 or int(pots_a.shape[0]) != int(nodes_a.shape[0]):
            raise ConfigurationError(f"pots 必须为 (N,S) 且 N=len(nodes)，当前 pots={pots_a.shape}, N={nodes_a.shape[0]}")
        if nodes_a.size == 0:
            return
        self._check_nodes(nodes_a)
        s = int(pots_a.shape[1])
        if not np.all(self._states[nodes_a] == s):
            raise ConfigurationError(f"节点势长度 {s} 与部分节点的标签数不一致")
        check_potential_values(pots_a, "节点势")
        pos = self._node_ptr[nodes_a][:, None] + np.arange(s, dtype=np.int64)[None, :]
        self._node_buf[pos] = pots_a

    # ---- 边 ----
    def add_edges(self, src: np.ndarray, dst: np.ndarray, group: Union[int, np.ndarray] = 0) -> np.ndarray:
        src_a = np.asarray(src, dtype=np.int64).reshape(-1)
        dst_a = np.asarray(dst, dtype=np.int64).reshape(-1)
        if src_a.shape != dst_a.shape:
            raise ConfigurationError(f"src/dst 长度必须一致，当前 {src_a.shape} vs {dst_a.shape}")
        self._check_nodes(src_a)
        self._check_nodes(dst_a)
        if np.any(src_a == dst_a):
            raise ConfigurationError("不允许自环边 (src == dst)")
        groups = np.broadcast_to(np.asarray(group, dtype=np.int64), src_a.shape)
        if groups.size and (int(groups.min()) < 0 or int(groups.max()) > 255):
            raise ConfigurationError("group 必须在 [0,255] 内")

        c = int(src_a.shape[0])
        e0 = self._n_edges
        e1 = e0 + c
        sizes = self._states[src_a].astype(np.int64) * self._states[dst_a].astype(np.int64)
        base = int(self._edge_ptr[e0])
        total = int(sizes.sum())
        self._edge_src = _reserve(self._edge_src, e1)
        self._edge_dst = _reserve(self._edge_dst, e1)
        self._edge_group = _reserve(self._edge_group, e1)
        self._edge_ptr = _reserve(self._edge_ptr, e1 + 1)
        self._edge_buf = _reserve(self._edge_buf, base + total)
        self._edge_src[e0:e1] = src_a
        self._edge_dst[e0:e1] = dst_a
        self._edge_group[e0:e1] = groups.astype(np.uint8)
        self._edge_ptr[e0 + 1 : e1 + 1] = base + np.cumsum(sizes)
        self._edge_buf[base : base + total] = 1.0
        self._n_edges = e1
        return np.arange(e0, e1, dtype=np.int64)

    def add_edge(self, src: int, dst: int, group: int = 0, pot: Optional[ArrayLike] = None) -> int:
        edge = int(self.add_edges(np.asarray([src]), np.asarray([dst]), validate_group(group))[0])
        if pot is not None:
            self.set_edge(edge, pot)
        return edge

    def _edge_shape(self, edge: int) -> Tuple[int, int]:
        return int(self._states[self._edge_src[edge]]), int(self._states[self._edge_dst[edge]])

    def set_edge(self, edge: int, pot: ArrayLike) -> None:
        e = int(edge)
        self._check_edges(np.asarray([e], dtype=np.int64))
        arr = as_edge_potential(pot, self._edge_shape(e))
        self._edge_buf[int(self._edge_ptr[e]) : int(self._edge_ptr[e + 1])] = arr.reshape(-1)

    def get_edge(self, edge: int) -> np.ndarray:
        e = int(edge)
        self._check_edges(np.asarray([e], dtype=np.int64))
        flat = self._edge_buf[int(self._edge_ptr[e]) : int(self._edge_ptr[e + 1])]
        return flat.reshape(self._edge_shape(e)).copy()

    def get_edge_nodes(self, edge: int) -> Tuple[int, int]:
        e = int(edge)
        self._check_edges(np.asarray([e], dtype=np.int64))
        return int(self._edge_src[e]), int(self._edge_dst[e])

    def get_edge_endpoints(self) -> Tuple[np.ndarray, np.ndarray]:
        return self._edge_src[: self._n_edges].copy(), self._edge_dst[: self._n_edges].copy()

    def get_edge_group(self, edge: int) -> int:
        e = int(edge)
        self._check_edges(np.asarray([e], dtype=np.int64))
        return int(self._edge_group[e])

    def get_edge_groups(self) -> np.ndarray:
        return self._edge_group[: self._n_edges].copy()

    def set_edge_group(self, edge: int, group: int) -> None:
        self.set_edge_groups(np.asarray([edge], dtype=np.int64), group)

    def set_edge_groups(self, edges: np.ndarray, group: int) -> None:
        g = validate_group(group)
        edges_a = np.asarray(edges, dtype=np.int64).reshape(-1)
        self._check_edges(edges_a)
        self._edge_group[edges_a] = np.uint8(g)

    def set_edges_batch(self, edges: np.ndarray, pots: np.ndarray) -> None:
        edges_a = np.asarray(edges, dtype=np.int64).reshape(-1)
        pots_a = np.asarray(pots, dtype=np.float32)
        if pots_a.ndim != 3 or int(pots_a.shape[0]) != int(edges_a.shape[0]):
            raise ConfigurationError(f"pots 必须为 (E,a,b) 且 E=len(edges)，当前 pots={pots_a.shape}, E={edges_a.shape[0]}")
        if edges_a.size == 0:
            return
        self._check_edges(edges_a)
        a, b = int(pots_a.shape[1]), int(pots_a.shape[2])
        ok = (self._states[self._edge_src[edges_a]] == a) & (self._states[self._edge_dst[edges_a]] == b)
        if not ok.all():
            bad = int(edges_a[np.argmin(ok)])
            raise ConfigurationError(f"边势形状 {(a, b)} 与边 {bad} 的标签数 {self._edge_shape(bad)} 不一致")
        check_potential_values(pots_a, "边势")
        pos = self._edge_ptr[edges_a][:, None] + np.arange(a * b, dtype=np.int64)[None, :]
        self._edge_buf[pos] = pots_a.reshape(int(edges_a.shape[0]), a * b)

    def set_edges_by_group(self, group: Optional[int], pot: ArrayLike) -> int:
        pot_a = np.asarray(pot, dtype=np.float32)
        if pot_a.ndim != 2:
            raise ConfigurationError(f"边势必须为二维矩阵，当前 shape={pot_a.shape}")
        if group is None:
            edges = np.arange(self._n_edges, dtype=np.int64)
        else:
            edges = np.nonzero(self._edge_group[: self._n_edges] == np.uint8(validate_group(group)))[0]
        pots = np.broadcast_to(pot_a, (int(edges.shape[0]),) + pot_a.shape)
        self.set_edges_batch(edges, pots)
        return int(edges.shape[0])


@dataclass(slots=True)
class _EdgeRecord:
    src: int
    dst: int
    group: int
    pot: np.ndarray


class SparseGraphPairwise(GraphPairwise):
    """
    基于邻接表的成对图：每个节点保存关联边 ID 列表，每条边保存一条独立记录。
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._nodes: list[np.ndarray] = []
        self._incident: list[list[int]] = []
        self._edges: list[_EdgeRecord] = []

    def get_num_nodes(self) -> int:
        return len(self._nodes)

    def get_num_edges(self) -> int:
        return len(self._edges)

    def _node(self, node: int) -> int:
        n = int(node)
        if not (0 <= n < len(self._nodes)):
            raise ConfigurationError(f"节点 ID 越界，合法范围 [0,{len(self._nodes)})，当前={node}")
        return n

    def _edge(self, edge: int) -> _EdgeRecord:
        e = int(edge)
        if not (0 <= e < len(self._edges)):
            raise ConfigurationError(f"边 ID 越界，合法范围 [0,{len(self._edges)})，当前={edge}")
        return self._edges[e]

    def add_node(self, num_states: int, pot: Optional[ArrayLike] = None) -> int:
        s = int(num_states)
        if s <= 0:
            raise ConfigurationError(f"num_states 必须是正整数，当前={num_states}")
        vec = np.ones((s,), dtype=np.float32) if pot is None else as_node_potential(pot, s)
        self._nodes.append(vec)
        self._incident.append([])
        return len(self._nodes) - 1

    def add_edge(self, src: int, dst: int, group: int = 0, pot: Optional[ArrayLike] = None) -> int:
        u, v = self._node(src), self._node(dst)
        if u == v:
            raise ConfigurationError("不允许自环边 (src == dst)")
        shape = (int(self._nodes[u].shape[0]), int(self._nodes[v].shape[0]))
        mat = np.ones(shape, dtype=np.float32) if pot is None else as_edge_potential(pot, shape)
        self._edges.append(_EdgeRecord(src=u, dst=v, group=validate_group(group), pot=mat))
        e = len(self._edges) - 1
        self._incident[u].append(e)
        self._incident[v].append(e)
        return e

    def set_node(self, node: int, pot: ArrayLike) -> None:
        n = self._node(node)
        self._nodes[n] = as_node_potential(pot, int(self._nodes[n].shape[0])).copy()

    def get_node(self, node: int) -> np.ndarray:
        return self._nodes[self._node(node)].copy()

    def get_num_states(self, node: int) -> int:
        return int(self._nodes[self._node(node)].shape[0])

    def set_edge(self, edge: int, pot: ArrayLike) -> None:
        rec = self._edge(edge)
        rec.pot = as_edge_potential(pot, rec.pot.shape).copy()

    def get_edge(self, edge: int) -> np.ndarray:
        return self._edge(edge).pot.copy()

    def get_edge_nodes(self, edge: int) -> Tuple[int, int]:
        rec = self._edge(edge)
        return rec.src, rec.dst

    def get_edge_group(self, edge: int) -> int:
        return self._edge(edge).group

    def set_edge_group(self, edge: int, group: int) -> None:
        self._edge(edge).group = validate_group(group)

    def get_incident_edges(self, node: int) -> list[int]:
        return list(self._incident[self._node(node)])

    def get_neighbors(self, node: int) -> list[int]:
        n = self._node(node)
        out = []
        for e in self._incident[n]:
            rec = self._edges[e]
            out.append(rec.dst if rec.src == n else rec.src)
        return out

    def set_edges_by_group(self, group: Optional[int], pot: ArrayLike) -> int:
        g = None if group is None else validate_group(group)
        targets = [rec for rec in self._edges if g is None or rec.group == g]
        checked = [as_edge_potential(pot, rec.pot.shape) for rec in targets]
        for rec, mat in zip(targets, checked):
            rec.pot = mat.copy()
        return len(targets)
