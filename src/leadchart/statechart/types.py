"""Statechart 数据类型定义

包含：
- NodeKind / InterpreterStatus: 枚举
- Action / Transition / StateNode: 不可变的 chart 结构（扁平节点表，按索引引用）
- Snapshot: 解释器对外快照（可序列化）
- TransitionRecord: 内存流转记录
- UnhandledEvent: 未处理事件诊断信号
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

# 纯函数：接收旧 context，返回新 context
ContextTransform = Callable[[Mapping[str, Any]], Mapping[str, Any]]

_EMPTY: Mapping = MappingProxyType({})


def event_type(event: "str | Enum") -> str:
    """Normalize an event (plain string or Enum member) to its type string."""
    if isinstance(event, Enum):
        return str(event.value)
    return event


class NodeKind(Enum):
    """状态节点类型"""
    ATOMIC = "atomic"
    COMPOUND = "compound"
    FINAL = "final"
    HISTORY = "history"

    @property
    def is_leaf(self) -> bool:
        """配置路径只能停在原子或终止节点上"""
        return self in {NodeKind.ATOMIC, NodeKind.FINAL}


class InterpreterStatus(Enum):
    """解释器生命周期状态"""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    DONE = "done"
    STOPPED = "stopped"

    @property
    def accepts_events(self) -> bool:
        return self == InterpreterStatus.RUNNING


@dataclass(frozen=True)
class Action:
    """已解析的命名 action

    在构建 chart 时由名称解析而来，运行时不再做字符串查找。
    """
    name: str
    fn: ContextTransform

    def __call__(self, context: Mapping[str, Any]) -> Mapping[str, Any]:
        return self.fn(context)


@dataclass(frozen=True)
class Transition:
    """已规范化的流转

    Attributes:
        event: 事件类型
        source: 声明该流转的节点索引
        target: 目标节点索引，None 表示无目标（只执行 actions）
        actions: 流转 actions，按声明顺序
        target_ref: 原始目标引用（日志用）
    """
    event: str
    source: int
    target: int | None
    actions: tuple[Action, ...] = ()
    target_ref: str = ""

    @property
    def is_targetless(self) -> bool:
        return self.target is None


@dataclass(frozen=True)
class StateNode:
    """状态节点

    Attributes:
        index: 在 Chart.nodes 中的位置
        key: 在父节点范围内唯一的 id
        id: 全限定 id（如 "lead.active.hist"）
        kind: 节点类型
        parent: 父节点索引，根节点为 None
        depth: 根节点为 0
        children: 子节点索引（声明顺序）
        initial: 初始子节点索引（compound）
        history: 该 compound 拥有的 history 伪状态索引
        transitions: 事件 → 流转
        on_done: final 子节点进入时立即执行的流转
        entry/exit: 进入/退出 actions
        tags: 外部消费者使用的标签
        description: 文档说明，无运行时效果
    """
    index: int
    key: str
    id: str
    kind: NodeKind
    parent: int | None = None
    depth: int = 0
    children: tuple[int, ...] = ()
    initial: int | None = None
    history: int | None = None
    transitions: Mapping[str, Transition] = field(default_factory=lambda: _EMPTY)
    on_done: Transition | None = None
    entry: tuple[Action, ...] = ()
    exit: tuple[Action, ...] = ()
    tags: frozenset[str] = frozenset()
    description: str = ""

    @property
    def is_compound(self) -> bool:
        return self.kind == NodeKind.COMPOUND

    @property
    def is_final(self) -> bool:
        return self.kind == NodeKind.FINAL

    @property
    def is_history(self) -> bool:
        return self.kind == NodeKind.HISTORY


@dataclass(frozen=True)
class Snapshot:
    """解释器快照

    active_path/context/history 三元组即持久化布局，完全决定恢复后的状态。
    """
    active_path: tuple[str, ...]
    context: Mapping[str, Any]
    history: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    active_tags: frozenset[str] = frozenset()
    status: InterpreterStatus = InterpreterStatus.RUNNING
    context_version: int = 0

    @property
    def value(self) -> str:
        """Dotted path below the root, e.g. "active.lead_qualification.idle"."""
        return ".".join(self.active_path[1:])

    @property
    def leaf(self) -> str:
        return self.active_path[-1]

    @property
    def done(self) -> bool:
        return self.status == InterpreterStatus.DONE

    def matches(self, value: str) -> bool:
        """Check whether ``value`` is a prefix of the active path (segment-wise)."""
        parts = tuple(value.split(".")) if value else ()
        return self.active_path[1:1 + len(parts)] == parts

    def has_tag(self, tag: "str | Enum") -> bool:
        return event_type(tag) in self.active_tags

    def to_dict(self) -> dict:
        """转换为持久化布局"""
        return {
            "active_path": list(self.active_path),
            "context": dict(self.context),
            "history": dict(self.history),
        }


@dataclass
class TransitionRecord:
    """流转记录

    记录每次 send 的结果，便于排查问题。仅保存在内存中。
    """
    event: str
    from_value: str
    to_value: str
    handled: bool = True
    description: str = ""
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())

    def __str__(self) -> str:
        ts = datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S")
        mark = "✓" if self.handled else "✗"
        return f"{ts} | {mark} {self.event} | {self.from_value} → {self.to_value}"

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "from_value": self.from_value,
            "to_value": self.to_value,
            "handled": self.handled,
            "description": self.description,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class UnhandledEvent:
    """未处理事件的诊断信号（不是错误）

    reason: "no_handler" | "unknown_event" | "done" | "stopped"
    """
    event: str
    active_path: tuple[str, ...]
    reason: str
