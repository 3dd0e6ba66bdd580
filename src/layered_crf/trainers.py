from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from .errors import ConfigurationError
from .potentials import (
    contrast_diagonal,
    diagonal_potentials,
    potts_potentials,
    squared_feature_distance,
    validate_val,
)


@runtime_checkable
class EdgeTrainer(Protocol):
    """
    层内边势训练器的最小接口（引擎只持有引用，不关心其学习算法）。

    约定：
    - add_feature_vecs：训练期累积一个样本 (f1, f2, gt1, gt2)，f1/f2 为 (C,)；
    - calculate_edge_potentials：推理期由 (f1, f2, params) 预测 (n, n) 非负边势。

    可选的向量化钩子（存在时引擎优先使用）：
        add_feature_vecs_batch(F1, F2, G1, G2)，F*: (E,C)，G*: (E,)
        calculate_edge_potentials_batch(F1, F2, params) -> (E, n, n)
    """

    def add_feature_vecs(self, f1: np.ndarray, f2: np.ndarray, gt1: int, gt2: int) -> None: ...

    def calculate_edge_potentials(self, f1: np.ndarray, f2: np.ndarray, params: Sequence[float]) -> np.ndarray: ...


@runtime_checkable
class LinkTrainer(Protocol):
    """
    层间链接势训练器的最小接口。链接边两端是同一站点，因此只接收一个特征向量。

    可选钩子：calculate_link_potentials_batch(F) -> (S, a, b)。
    """

    def calculate_link_potentials(self, features: np.ndarray) -> np.ndarray: ...


def _param(params: Sequence[float], i: int, name: str) -> float:
    if len(params) <= i:
        raise ConfigurationError(f"params 缺少第 {i} 项（{name}），当前 len={len(params)}")
    return float(params[i])


class PottsEdgeTrainer:
    """
    与数据无关的 Potts 边模型：params[0] 为平滑强度 val，不做任何学习。
    """

    def __init__(self, num_states: int) -> None:
        if int(num_states) <= 0:
            raise ConfigurationError(f"num_states 必须是正整数，当前={num_states}")
        self.num_states = int(num_states)

    def add_feature_vecs(self, f1: np.ndarray, f2: np.ndarray, gt1: int, gt2: int) -> None:
        return None

    def add_feature_vecs_batch(self, f1: np.ndarray, f2: np.ndarray, gt1: np.ndarray, gt2: np.ndarray) -> None:
        return None

    def calculate_edge_potentials(self, f1: np.ndarray, f2: np.ndarray, params: Sequence[float]) -> np.ndarray:
        return potts_potentials(_param(params, 0, "val"), self.num_states)

    def calculate_edge_potentials_batch(self, f1: np.ndarray, f2: np.ndarray, params: Sequence[float]) -> np.ndarray:
        pot = potts_potentials(_param(params, 0, "val"), self.num_states)
        return np.broadcast_to(pot, (int(f1.shape[0]),) + pot.shape).copy()


class ContrastPottsEdgeTrainer(PottsEdgeTrainer):
    """
    对比度敏感 Potts 边模型：params = [val, beta]。

    diag = 1 + (val - 1) * exp(-beta * ||f1 - f2||^2)，非对角为 1。
    """

    def calculate_edge_potentials(self, f1: np.ndarray, f2: np.ndarray, params: Sequence[float]) -> np.ndarray:
        f1_a = np.asarray(f1, dtype=np.float32).reshape(1, -1)
        f2_a = np.asarray(f2, dtype=np.float32).reshape(1, -1)
        return self.calculate_edge_potentials_batch(f1_a, f2_a, params)[0]

    def calculate_edge_potentials_batch(self, f1: np.ndarray, f2: np.ndarray, params: Sequence[float]) -> np.ndarray:
        val = validate_val(_param(params, 0, "val"))
        beta = _param(params, 1, "beta")
        dist_sq = squared_feature_distance(np.asarray(f1), np.asarray(f2))
        return diagonal_potentials(contrast_diagonal(dist_sq, val, beta), self.num_states)
