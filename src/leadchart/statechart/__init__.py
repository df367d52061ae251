"""Statechart 模块

提供通用 statechart 解释器：
- types: 数据类型定义（StateNode, Transition, Snapshot 等）
- actions: 命名 action 注册表
- definition: chart 构建与校验
- resolver: 流转解析（纯函数）
- interpreter: Interpreter facade
- persistence: 快照编解码与文件持久化
- render: Rich 树形渲染
"""

from .types import (
    Action,
    InterpreterStatus,
    NodeKind,
    Snapshot,
    StateNode,
    Transition,
    TransitionRecord,
    UnhandledEvent,
)
from .errors import CorruptSnapshot, DefinitionError, LeadChartError
from .actions import ActionRegistry, assign
from .definition import Chart, build_chart, load_chart_json
from .interpreter import Interpreter
from . import persistence

__all__ = [
    # Types
    "Action",
    "InterpreterStatus",
    "NodeKind",
    "Snapshot",
    "StateNode",
    "Transition",
    "TransitionRecord",
    "UnhandledEvent",
    # Errors
    "LeadChartError",
    "DefinitionError",
    "CorruptSnapshot",
    # Actions
    "ActionRegistry",
    "assign",
    # Definition
    "Chart",
    "build_chart",
    "load_chart_json",
    # Interpreter
    "Interpreter",
    # Persistence
    "persistence",
]
