"""Interpreter - statechart 解释器 facade

职责：
- start(): 从根节点进入，沿 initial 子节点到叶子
- send(event): 查找流转 → 执行 actions → 更新配置/历史记录 → 通知订阅者
- get_snapshot(): 只读快照（无变化时返回同一对象）
- restore(): 从持久化布局恢复，不重放事件

单线程、同步、run-to-completion。每个实例独占自己的配置、context 和
历史记录；宿主负责按实例串行调用 send。
"""

from collections import deque
from collections.abc import Callable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any

from ..config import METRICS_ENABLED, TRANSITION_LOG_MAX_LENGTH
from ..telemetry import get_logger, metrics
from .definition import Chart
from .errors import CorruptSnapshot
from .resolver import (
    Microstep,
    done_transition,
    find_transition,
    initial_path,
    resolve_transition,
    step_actions,
)
from .types import (
    InterpreterStatus,
    Snapshot,
    TransitionRecord,
    UnhandledEvent,
    event_type,
)

logger = get_logger(__name__)

Observer = Callable[[Snapshot], Any]
OnUnhandledCallback = Callable[[UnhandledEvent], Any]


class Interpreter:
    """Statechart 解释器

    Attributes:
        chart: 共享的不可变 chart
        name: 实例名（日志/指标标签，通常是 lead_id）
    """

    def __init__(
        self,
        chart: Chart,
        context: Mapping[str, Any] | None = None,
        *,
        name: str | None = None,
    ):
        self.chart = chart
        self.name = name or chart.id
        self._status = InterpreterStatus.NOT_STARTED
        self._leaf: int | None = None
        try:
            initial = _validate_context(chart, context or {})
        except CorruptSnapshot as e:
            raise ValueError(f"invalid context override: {e}") from e
        self._context: Mapping[str, Any] = MappingProxyType(initial)
        self._context_version = 0
        self._history: dict[str, str] = {}
        self._snapshot: Snapshot | None = None

        self._observers: list[Observer] = []
        self._on_unhandled: OnUnhandledCallback | None = None

        # 环形流转记录（仅内存）
        self._log: deque[TransitionRecord] = deque(maxlen=TRANSITION_LOG_MAX_LENGTH)

    # === 属性 ===

    @property
    def status(self) -> InterpreterStatus:
        return self._status

    @property
    def context(self) -> Mapping[str, Any]:
        return self._context

    @property
    def context_version(self) -> int:
        return self._context_version

    @property
    def history(self) -> list[TransitionRecord]:
        return list(self._log)

    @property
    def done(self) -> bool:
        return self._status == InterpreterStatus.DONE

    # === 生命周期 ===

    def start(self) -> Snapshot:
        """进入 chart，执行初始路径上的 entry actions

        已启动的实例直接返回当前快照。
        """
        if self._status != InterpreterStatus.NOT_STARTED:
            return self.get_snapshot()

        path = initial_path(self.chart)
        context = self._context
        for index in path:
            for action in self.chart.nodes[index].entry:
                context = action(context)
        self._apply_context(context)

        self._leaf = path[-1]
        self._status = InterpreterStatus.RUNNING
        self._settle_final()
        self._refresh_snapshot()

        logger.info(f"[Interpreter:{self.name}] Started at {self._snapshot.value}")
        return self._snapshot

    def stop(self) -> None:
        """停止实例并解绑所有订阅者"""
        if self._status == InterpreterStatus.NOT_STARTED:
            self._status = InterpreterStatus.STOPPED
            return
        self._observers.clear()
        self._on_unhandled = None
        self._status = InterpreterStatus.STOPPED
        self._refresh_snapshot()
        logger.debug(f"[Interpreter:{self.name}] Stopped")

    # === 核心方法 ===

    def send(self, event: "str | Enum") -> Snapshot:
        """处理事件

        Args:
            event: 事件类型（字符串或 Enum）

        Returns:
            新快照；事件未处理时返回同一个快照对象

        Raises:
            RuntimeError: 实例尚未 start()
        """
        name = event_type(event)
        if self._snapshot is None:
            raise RuntimeError(f"interpreter {self.name!r} has not been started")

        snapshot = self._snapshot
        if not self._status.accepts_events:
            if METRICS_ENABLED:
                metrics.inc("transition.absorbed", {"lead": self.name})
            self._unhandled(name, self._status.value)
            return snapshot

        if self.chart.events is not None and name not in self.chart.events:
            logger.warning(f"[Interpreter:{self.name}] Unknown event: {name}")
            self._unhandled(name, "unknown_event")
            return snapshot

        transition = find_transition(self.chart, self._leaf, name)
        if transition is None:
            logger.debug(f"[Interpreter:{self.name}] No handler for {name} at {snapshot.value}")
            if METRICS_ENABLED:
                metrics.inc("transition.unhandled", {"lead": self.name})
            self._unhandled(name, "no_handler")
            return snapshot

        old_value = snapshot.value
        old_context = self._context
        self._take(resolve_transition(self.chart, self._leaf, transition, self._history))
        self._settle_final()

        self._refresh_snapshot()
        new = self._snapshot
        self._log.append(
            TransitionRecord(event=name, from_value=old_value, to_value=new.value)
        )
        if METRICS_ENABLED:
            metrics.inc("transition.ok", {"lead": self.name})
        logger.info(
            f"[Interpreter:{self.name}] {old_value} → {new.value} | event={name}"
            + (" | done" if self.done else "")
        )

        if new.active_path != snapshot.active_path or self._context is not old_context:
            self._notify(new)
        return new

    def _take(self, step: Microstep) -> None:
        """执行一个 microstep：历史记录 → actions → 配置"""
        if step.history:
            self._history.update(step.history)

        context = self._context
        for action in step_actions(self.chart, step):
            context = action(context)
        self._apply_context(context)

        self._leaf = step.leaf

    def _settle_final(self) -> None:
        """处理进入 final 叶子后的 on_done 或终止"""
        seen: set[int] = set()
        while self.chart.nodes[self._leaf].is_final:
            transition = done_transition(self.chart, self._leaf)
            if transition is None or self._leaf in seen:
                if transition is not None:
                    logger.error(f"[Interpreter:{self.name}] on_done cycle at {self._leaf}")
                self._status = InterpreterStatus.DONE
                return
            seen.add(self._leaf)
            self._take(resolve_transition(self.chart, self._leaf, transition, self._history))

    def _apply_context(self, context: Mapping[str, Any]) -> None:
        if dict(context) == dict(self._context):
            return
        self._context = MappingProxyType(dict(context))
        self._context_version += 1

    def _unhandled(self, name: str, reason: str) -> None:
        self._log.append(
            TransitionRecord(
                event=name,
                from_value=self._snapshot.value,
                to_value=self._snapshot.value,
                handled=False,
                description=reason,
            )
        )
        if self._on_unhandled is None:
            return
        diagnostic = UnhandledEvent(
            event=name, active_path=self._snapshot.active_path, reason=reason
        )
        try:
            self._on_unhandled(diagnostic)
        except Exception as e:
            logger.error(f"[Interpreter:{self.name}] Unhandled-event callback failed: {e}")

    # === 快照 ===

    def get_snapshot(self) -> Snapshot:
        """获取当前快照（不修改任何状态）"""
        if self._snapshot is None:
            raise RuntimeError(f"interpreter {self.name!r} has not been started")
        return self._snapshot

    def _refresh_snapshot(self) -> None:
        path = self.chart.path_to(self._leaf)
        tags: frozenset[str] = frozenset()
        for index in path:
            tags |= self.chart.nodes[index].tags
        self._snapshot = Snapshot(
            active_path=tuple(self.chart.nodes[i].key for i in path),
            context=self._context,
            history=MappingProxyType(dict(self._history)),
            active_tags=tags,
            status=self._status,
            context_version=self._context_version,
        )

    # === 订阅 ===

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """注册订阅者

        Returns:
            取消订阅函数
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def set_on_unhandled(self, callback: OnUnhandledCallback | None) -> None:
        """设置未处理事件回调（诊断用）"""
        self._on_unhandled = callback

    def _notify(self, snapshot: Snapshot) -> None:
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as e:
                logger.error(f"[Interpreter:{self.name}] Observer failed: {e}")

    # === 历史 ===

    def get_history_log(self) -> str:
        """获取流转日志（调试用）"""
        if not self._log:
            return "  (no history)"
        return "\n".join(f"  {entry}" for entry in self._log)

    # === 序列化 ===

    def to_dict(self) -> dict:
        """序列化为持久化布局"""
        return self.get_snapshot().to_dict()

    @classmethod
    def restore(
        cls,
        chart: Chart,
        data: Mapping[str, Any],
        *,
        name: str | None = None,
    ) -> "Interpreter":
        """从持久化布局恢复

        不执行任何 action，不重放事件。

        Raises:
            CorruptSnapshot: active_path/history/context 与 chart 不符
        """
        if not isinstance(data, Mapping):
            raise CorruptSnapshot("snapshot must be a mapping")
        for key in ("history", "context"):
            if data.get(key) is not None and not isinstance(data[key], Mapping):
                raise CorruptSnapshot(f"{key} must be a mapping")

        leaf = _resolve_active_path(chart, data.get("active_path"))
        history = _validate_history(chart, data.get("history") or {})
        context = _validate_context(chart, data.get("context") or {})

        interpreter = cls(chart, context, name=name)
        interpreter._leaf = leaf
        interpreter._history = history
        interpreter._status = (
            InterpreterStatus.DONE
            if chart.nodes[leaf].is_final and done_transition(chart, leaf) is None
            else InterpreterStatus.RUNNING
        )
        interpreter._refresh_snapshot()
        logger.debug(f"[Interpreter:{interpreter.name}] Restored at {interpreter._snapshot.value}")
        return interpreter


def _resolve_active_path(chart: Chart, active_path: Any) -> int:
    if not active_path or not isinstance(active_path, (list, tuple)):
        raise CorruptSnapshot("active_path must be a non-empty sequence")
    if active_path[0] != chart.root.key:
        raise CorruptSnapshot(f"active_path starts at {active_path[0]!r}, expected {chart.root.key!r}")

    current = 0
    for key in active_path[1:]:
        child = chart.child(current, key) if isinstance(key, str) else None
        if child is None or chart.nodes[child].is_history:
            raise CorruptSnapshot(f"{key!r} is not a state under {chart.nodes[current].id!r}")
        current = child

    if not chart.nodes[current].kind.is_leaf:
        raise CorruptSnapshot(f"active_path ends at non-leaf {chart.nodes[current].id!r}")
    return current


def _validate_history(chart: Chart, history: Mapping[str, Any]) -> dict[str, str]:
    result = {}
    for node_id, child_key in history.items():
        index = chart.node_by_id.get(node_id)
        if index is None or chart.nodes[index].history is None:
            raise CorruptSnapshot(f"{node_id!r} does not own a history state")
        child = chart.child(index, child_key) if isinstance(child_key, str) else None
        if child is None or chart.nodes[child].is_history:
            raise CorruptSnapshot(f"history of {node_id!r} names unknown child {child_key!r}")
        result[node_id] = child_key
    return result


def _validate_context(chart: Chart, context: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(context) - set(chart.context)
    if unknown:
        raise CorruptSnapshot(f"context has unknown keys {sorted(unknown)}")
    for key, value in context.items():
        default = chart.context[key]
        if default is not None and not isinstance(value, type(default)):
            raise CorruptSnapshot(
                f"context[{key!r}] should be {type(default).__name__}, got {type(value).__name__}"
            )
    return {**chart.initial_context(), **context}
