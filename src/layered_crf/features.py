from __future__ import annotations

from typing import Sequence, Union

import numpy as np
import torch

from .errors import ConfigurationError

FeatureMap = Union[np.ndarray, torch.Tensor, Sequence[np.ndarray], Sequence[torch.Tensor]]


def _to_numpy(x: Union[np.ndarray, torch.Tensor]) -> np.ndarray:
    if isinstance(x, torch.Tensor):
        return x.detach().to("cpu").numpy()
    return np.asarray(x)


def as_feature_array(feature_vectors: FeatureMap) -> np.ndarray:
    """
    将特征统一为 (H, W, C) float32。

    支持两种等价形式：
    - 多通道：(H, W, C) 或 (H, W)（C=1），numpy 数组或 torch.Tensor；
    - 逐特征单通道：长度为 C 的序列，每个元素为 (H, W)，沿最后一维堆叠。
    两种形式对等价数据给出逐元素相同的结果。
    """
    if isinstance(feature_vectors, (np.ndarray, torch.Tensor)):
        arr = _to_numpy(feature_vectors)
        if arr.ndim == 2:
            arr = arr[..., None]
        if arr.ndim != 3:
            raise ConfigurationError(f"特征必须为 (H,W) 或 (H,W,C)，当前 shape={tuple(arr.shape)}")
    else:
        planes = [_to_numpy(p) for p in feature_vectors]
        if not planes:
            raise ConfigurationError("逐特征单通道序列不能为空")
        shape0 = planes[0].shape
        for i, p in enumerate(planes):
            if p.ndim != 2:
                raise ConfigurationError(f"第 {i} 个特征平面必须为 (H,W)，当前 shape={tuple(p.shape)}")
            if p.shape != shape0:
                raise ConfigurationError(f"特征平面尺寸不一致：第 0 个为 {tuple(shape0)}，第 {i} 个为 {tuple(p.shape)}")
        arr = np.stack(planes, axis=-1)

    out = arr.astype(np.float32, copy=False)
    if int(out.shape[2]) == 0:
        raise ConfigurationError("特征通道数 C 必须 >= 1")
    if not np.isfinite(out).all():
        raise ConfigurationError("特征含非有限值（NaN/Inf）")
    return out


def feature_size(features: np.ndarray) -> tuple[int, int]:
    """(width, height)。"""
    return int(features.shape[1]), int(features.shape[0])


def site_features(features: np.ndarray, sites: np.ndarray) -> np.ndarray:
    """按站点线性索引 y*W+x 取特征，返回 (N, C)。"""
    flat = features.reshape(-1, int(features.shape[2]))
    return flat[np.asarray(sites, dtype=np.int64)]


def as_ground_truth(gt: Union[np.ndarray, torch.Tensor], *, width: int, height: int) -> np.ndarray:
    arr = _to_numpy(gt)
    if arr.ndim == 3 and int(arr.shape[2]) == 1:
        arr = arr[..., 0]
    if arr.shape != (int(height), int(width)):
        raise ConfigurationError(f"gt 必须为 (H,W)={(height, width)}，当前 shape={tuple(arr.shape)}")
    if arr.dtype.kind not in "iub":
        if not np.all(np.mod(arr, 1) == 0):
            raise ConfigurationError("gt 必须为整数类别标签")
    return arr.astype(np.int64, copy=False)
