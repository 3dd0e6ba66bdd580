"""
多层成对 CRF（Layered CRF）建图与势函数填充核心。

面向部分遮挡区域的结构化图像标注：多层 2D 网格（可见层 + 遮挡层）上的成对图模型。
当前提供：
- 网格/对角/层间链接拓扑生成（节点索引 ((l*H)+y)*W+x）
- 基于直线的边分组
- 节点势、分组边势、默认（Potts / 对比度敏感 Potts）边势
- 训练样本抽取与基于训练器的边势填充
推理/解码不在本包范围内。
"""

from .config import (
    GROUP_EDGE_DEFAULT,
    GROUP_LINK_DEFAULT,
    EdgeType,
    LayeredGraphConfig,
    load_graph_config,
)
from .errors import ConfigurationError, LayeredGraphError, NotBuiltError, TopologyStateError
from .features import as_feature_array
from .graph import DenseGraphPairwise, GraphPairwise, SparseGraphPairwise
from .layered import ALL_GROUPS, AllGroups, GroupFilter, LayeredGraphExt, SpecificGroup
from .potentials import contrast_potts_potentials, potts_potentials
from .topology import LayeredTopology, build_topology, node_coords, node_index
from .trainers import ContrastPottsEdgeTrainer, EdgeTrainer, LinkTrainer, PottsEdgeTrainer

__all__ = [
    "ALL_GROUPS",
    "AllGroups",
    "ConfigurationError",
    "ContrastPottsEdgeTrainer",
    "DenseGraphPairwise",
    "EdgeTrainer",
    "EdgeType",
    "GROUP_EDGE_DEFAULT",
    "GROUP_LINK_DEFAULT",
    "GraphPairwise",
    "GroupFilter",
    "LayeredGraphConfig",
    "LayeredGraphError",
    "LayeredGraphExt",
    "LayeredTopology",
    "LinkTrainer",
    "NotBuiltError",
    "PottsEdgeTrainer",
    "SparseGraphPairwise",
    "SpecificGroup",
    "TopologyStateError",
    "as_feature_array",
    "build_topology",
    "contrast_potts_potentials",
    "load_graph_config",
    "node_coords",
    "node_index",
    "potts_potentials",
]
