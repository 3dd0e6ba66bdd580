from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence, Tuple, Union

import yaml

from .errors import ConfigurationError

Offset = Tuple[int, int]  # (dy, dx)，行优先网格


class EdgeType(enum.IntFlag):
    """图的边类型（可按位组合）。"""

    NONE = 0
    GRID = 1  # 水平 + 竖直
    DIAG = 2  # 对角
    LINK = 4  # 层间连接


# 只取“半邻域”，保证每条无向边只生成一次。
GRID_OFFSETS: Tuple[Offset, ...] = ((0, 1), (1, 0))
DIAG_OFFSETS: Tuple[Offset, ...] = ((1, 1), (1, -1))

GROUP_EDGE_DEFAULT = 0
GROUP_LINK_DEFAULT = 1
MAX_GROUP_ID = 255


def validate_offsets(offsets: Iterable[Offset]) -> Tuple[Offset, ...]:
    offsets_tuple = tuple((int(dy), int(dx)) for dy, dx in offsets)
    if not offsets_tuple:
        raise ConfigurationError("邻域偏移集合不能为空")
    if (0, 0) in offsets_tuple:
        raise ConfigurationError("邻域偏移集合不允许包含 (0,0)")
    if len(set(offsets_tuple)) != len(offsets_tuple):
        raise ConfigurationError("邻域偏移集合不允许包含重复元素")
    mirrored = sorted({(-dy, -dx) for dy, dx in offsets_tuple} & set(offsets_tuple))
    if mirrored:
        raise ConfigurationError(f"半邻域偏移集合不允许同时包含 o 与 -o，冲突: {mirrored}")
    return offsets_tuple


def validate_group(group: int) -> int:
    g = int(group)
    if not (0 <= g <= MAX_GROUP_ID):
        raise ConfigurationError(f"group 必须在 [0,{MAX_GROUP_ID}] 内，当前={group}")
    return g


def as_edge_type(value: Union[int, str, Sequence[str], EdgeType]) -> EdgeType:
    """
    解析边类型：支持 int 位掩码、单个名称（"grid"）或名称列表（["grid","link"]）。
    """
    if isinstance(value, EdgeType):
        flags = value
    elif isinstance(value, bool):
        raise ConfigurationError(f"edge_type 不能为 bool，当前={value!r}")
    elif isinstance(value, int):
        if int(value) & ~int(EdgeType.GRID | EdgeType.DIAG | EdgeType.LINK):
            raise ConfigurationError(f"edge_type 含未知标志位，当前={value}")
        flags = EdgeType(int(value))
    else:
        names = [value] if isinstance(value, str) else list(value)
        flags = EdgeType.NONE
        for name in names:
            key = str(name).strip().upper()
            if key not in EdgeType.__members__:
                raise ConfigurationError(f"未知的 edge_type 名称: {name!r}")
            flags |= EdgeType[key]
    return flags


def _as_num_states(num_states: Union[int, Sequence[int]], n_layers: int) -> Tuple[int, ...]:
    if isinstance(num_states, (int, float)) and not isinstance(num_states, bool):
        states = (int(num_states),) * int(n_layers)
    else:
        states = tuple(int(s) for s in num_states)
    if len(states) != int(n_layers):
        raise ConfigurationError(f"num_states 的长度必须等于 n_layers，当前 num_states={states}, n_layers={n_layers}")
    if any(s <= 0 for s in states):
        raise ConfigurationError(f"num_states 必须全部为正整数，当前={states}")
    return states


@dataclass(frozen=True, slots=True)
class LayeredGraphConfig:
    """
    多层图的不可变构造参数。

    字段：
        n_layers: 层数 L（>=1），第 0 层为基础层，其余为遮挡层。
        num_states: 每层的标签数，长度为 L。
        edge_type: EdgeType 组合。
    """

    n_layers: int = 1
    num_states: Tuple[int, ...] = (2,)
    edge_type: EdgeType = EdgeType.GRID

    def __post_init__(self) -> None:
        if isinstance(self.n_layers, bool) or int(self.n_layers) <= 0:
            raise ConfigurationError(f"n_layers 必须是正整数，当前={self.n_layers}")
        object.__setattr__(self, "n_layers", int(self.n_layers))
        object.__setattr__(self, "num_states", _as_num_states(self.num_states, self.n_layers))
        object.__setattr__(self, "edge_type", as_edge_type(self.edge_type))

    @property
    def has_links(self) -> bool:
        return bool(self.edge_type & EdgeType.LINK) and self.n_layers > 1


def _require(cfg: Dict[str, Any], key: str, ctx: str) -> Any:
    if key not in cfg:
        raise ConfigurationError(f"配置缺少字段 {ctx}.{key}")
    return cfg[key]


def _opt_dict(cfg: Dict[str, Any], key: str) -> Dict[str, Any]:
    v = cfg.get(key)
    return v if isinstance(v, dict) else {}


def load_yaml(path: Path) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    if not isinstance(cfg, dict):
        raise ConfigurationError("配置文件必须是 YAML 映射 (dict)")
    return cfg


def parse_graph_config(cfg: Dict[str, Any]) -> LayeredGraphConfig:
    graph = _require(cfg, "graph", "top")
    if not isinstance(graph, dict):
        raise ConfigurationError("配置文件 graph 段必须是 dict")
    n_layers = int(_require(graph, "n_layers", "graph"))
    num_states = _require(graph, "num_states", "graph")
    if isinstance(num_states, list):
        num_states = tuple(int(s) for s in num_states)
    return LayeredGraphConfig(
        n_layers=n_layers,
        num_states=num_states,
        edge_type=as_edge_type(graph.get("edge_type", ["grid"])),
    )


def load_graph_config(path: Path) -> LayeredGraphConfig:
    return parse_graph_config(load_yaml(path))
