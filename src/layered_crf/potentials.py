"""
与数据无关 / 对比度敏感的默认边势（Potts 族）。

记号：
    n      标签数；
    val    平滑强度（>=1），同标签相容性与异标签相容性之比；
    weight 权重，按元素取幂：pot <- pot ** weight（weight=0 时退化为全 1，即无约束）。

Potts：
    P = 1_{n×n}，diag(P) = val。

对比度敏感 Potts（Boykov–Jolly / GrabCut 形式）：
    diag_uv = 1 + (val - 1) * exp(-beta * ||f_u - f_v||^2)，非对角为 1；
    beta = 1 / (2 * mean ||f_u - f_v||^2)，均值取自当前图的全部层内站点对；均值为 0 时 beta = 0。
    两端特征相同时 diag_uv = val，与 Potts 完全一致；差异越大越接近 1（允许标签跳变）。
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import ConfigurationError


def validate_val_weight(val: float, weight: float) -> tuple[float, float]:
    v, w = float(val), float(weight)
    if not np.isfinite(v) or v < 1.0:
        raise ConfigurationError(f"val 必须为有限值且 >= 1，当前={val}")
    if not np.isfinite(w) or w < 0.0:
        raise ConfigurationError(f"weight 必须为有限值且 >= 0，当前={weight}")
    return v, w


def validate_val(val: float) -> float:
    return validate_val_weight(val, 1.0)[0]


def apply_weight(pots: np.ndarray, weight: float) -> np.ndarray:
    w = float(weight)
    if not np.isfinite(w) or w < 0.0:
        raise ConfigurationError(f"weight 必须为有限值且 >= 0，当前={weight}")
    arr = np.asarray(pots, dtype=np.float32)
    if w == 1.0:
        return arr
    return np.power(arr, np.float32(w)).astype(np.float32, copy=False)


def potts_potentials(val: float, num_states: int, weight: float = 1.0) -> np.ndarray:
    """(n, n) float32 Potts 矩阵。"""
    v, w = validate_val_weight(val, weight)
    n = int(num_states)
    if n <= 0:
        raise ConfigurationError(f"num_states 必须是正整数，当前={num_states}")
    pot = np.ones((n, n), dtype=np.float32)
    np.fill_diagonal(pot, np.float32(v))
    return apply_weight(pot, w)


def squared_feature_distance(f1: np.ndarray, f2: np.ndarray) -> np.ndarray:
    """(E, C) × (E, C) -> (E,) float64，逐对 ||f1 - f2||^2。"""
    d = f1.astype(np.float64, copy=False) - f2.astype(np.float64, copy=False)
    return np.einsum("ij,ij->i", d, d)


def contrast_beta(dist_sq: np.ndarray) -> float:
    if dist_sq.size == 0:
        return 0.0
    mean = float(np.mean(dist_sq))
    if mean <= 0.0:
        return 0.0
    return 1.0 / (2.0 * mean)


def contrast_diagonal(dist_sq: np.ndarray, val: float, beta: float) -> np.ndarray:
    """(E,) float32：对比度敏感 Potts 的对角值（取幂前）。"""
    v = float(val)
    b = float(beta)
    if not np.isfinite(b) or b < 0.0:
        raise ConfigurationError(f"beta 必须为有限值且 >= 0，当前={beta}")
    return (1.0 + (v - 1.0) * np.exp(-b * dist_sq)).astype(np.float32)


def diagonal_potentials(diag: np.ndarray, num_states: int, weight: float = 1.0) -> np.ndarray:
    """由逐边对角值展开为 (E, n, n)（非对角为 1），并取幂。"""
    n = int(num_states)
    e = int(diag.shape[0])
    pots = np.ones((e, n, n), dtype=np.float32)
    idx = np.arange(n)
    pots[:, idx, idx] = diag[:, None]
    return apply_weight(pots, weight)


def contrast_potts_potentials(
    f1: np.ndarray,
    f2: np.ndarray,
    val: float,
    num_states: int,
    weight: float = 1.0,
    *,
    beta: Optional[float] = None,
) -> np.ndarray:
    """
    逐边对比度敏感 Potts 势。

    输入：
        f1, f2: (E, C)，边两端的特征向量。
        beta: 若为 None，则由本批 f1/f2 的平均平方距离估计。
    输出：
        (E, n, n) float32。
    """
    v, w = validate_val_weight(val, weight)
    if f1.shape != f2.shape or f1.ndim != 2:
        raise ConfigurationError(f"f1/f2 必须为同形状 (E,C)，当前 {f1.shape} vs {f2.shape}")
    dist_sq = squared_feature_distance(f1, f2)
    b = contrast_beta(dist_sq) if beta is None else float(beta)
    return diagonal_potentials(contrast_diagonal(dist_sq, v, b), num_states, w)
