"""多层图引擎的异常类型。

所有异常都在引起问题的调用内同步抛出，且抛出前不修改任何已写入的势函数。
"""

from __future__ import annotations


class LayeredGraphError(Exception):
    """本包异常的基类。"""


class ConfigurationError(LayeredGraphError, ValueError):
    """参数非法：层数、直线系数、势函数形状/取值与标签数不匹配等。"""


class TopologyStateError(LayeredGraphError, RuntimeError):
    """当前图结构状态不支持该调用（例如在多层图上采样训练样本）。"""


class NotBuiltError(TopologyStateError):
    """图尚未构建（或构建结果为空）时写入边势函数。"""
