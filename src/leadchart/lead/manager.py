"""LeadManager - lead 解释器管理器

宿主侧辅助：
- 每个 lead 一个 Interpreter + 一个事件队列
- 通过 actor 队列串行处理同一 lead 的事件
- 绑定订阅回调，转发快照变化与诊断事件
- 持久化（快照损坏时按 CORRUPT_SNAPSHOT_POLICY 恢复）
"""

import asyncio
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from ..config import CORRUPT_SNAPSHOT_POLICY, METRICS_ENABLED
from ..statechart import Chart, CorruptSnapshot, Interpreter, Snapshot, UnhandledEvent
from ..statechart import persistence
from ..telemetry import get_logger, metrics
from .chart import LEAD_CHART
from .queue import LeadEventQueue

logger = get_logger(__name__)

# 回调类型
OnChangeCallback = Callable[[str, Snapshot], Any]
OnDebugEventCallback = Callable[[dict], Any]


class LeadManager:
    """Lead 管理器

    Attributes:
        chart: 所有 lead 共享的 chart
    """

    def __init__(
        self,
        chart: Chart = LEAD_CHART,
        corrupt_policy: str = CORRUPT_SNAPSHOT_POLICY,
    ):
        if corrupt_policy not in {"reset", "reject"}:
            raise ValueError(f"unknown corrupt snapshot policy: {corrupt_policy!r}")
        self.chart = chart
        self._corrupt_policy = corrupt_policy
        self._interpreters: dict[str, Interpreter] = {}
        self._queues: dict[str, LeadEventQueue] = {}

        # 回调
        self._on_change: OnChangeCallback | None = None
        self._on_debug_event: OnDebugEventCallback | None = None

    # === 配置 ===

    def set_on_change(self, callback: OnChangeCallback | None) -> None:
        """设置快照变化回调 (lead_id, snapshot) -> None"""
        self._on_change = callback

    def set_on_debug_event(self, callback: OnDebugEventCallback | None) -> None:
        """设置调试事件回调

        event_dict 包含: lead_id, event, reason, value, queue_depth
        """
        self._on_debug_event = callback

    # === 实例管理 ===

    def get_or_create(self, lead_id: str) -> Interpreter:
        """获取或创建 lead 解释器（新建时立即 start）"""
        if lead_id not in self._interpreters:
            interpreter = Interpreter(self.chart, name=lead_id)
            interpreter.start()
            self._attach(lead_id, interpreter)
            logger.debug(f"[LeadManager] Created lead: {lead_id[:8]}")
        return self._interpreters[lead_id]

    def _attach(self, lead_id: str, interpreter: Interpreter) -> None:
        interpreter.subscribe(lambda snapshot: self._handle_change(lead_id, snapshot))
        interpreter.set_on_unhandled(lambda diag: self._handle_unhandled(lead_id, diag))
        self._interpreters[lead_id] = interpreter
        if lead_id not in self._queues:
            self._queues[lead_id] = LeadEventQueue(lead_id)

    def _handle_change(self, lead_id: str, snapshot: Snapshot) -> None:
        if self._on_change:
            self._on_change(lead_id, snapshot)

    def _handle_unhandled(self, lead_id: str, diagnostic: UnhandledEvent) -> None:
        if not self._on_debug_event:
            return
        queue = self._queues.get(lead_id)
        self._on_debug_event({
            "lead_id": lead_id,
            "event": diagnostic.event,
            "reason": diagnostic.reason,
            "value": ".".join(diagnostic.active_path[1:]),
            "queue_depth": queue.depth if queue else 0,
        })

    def remove_lead(self, lead_id: str) -> None:
        """移除 lead"""
        interpreter = self._interpreters.pop(lead_id, None)
        if interpreter is not None:
            interpreter.stop()
        self._queues.pop(lead_id, None)
        logger.debug(f"[LeadManager] Removed lead: {lead_id[:8]}")

    # === 事件处理 ===

    def send(self, lead_id: str, event: "str | Enum") -> Snapshot:
        """直接处理事件（同步）"""
        return self.get_or_create(lead_id).send(event)

    def enqueue(self, lead_id: str, event: "str | Enum") -> bool:
        """入队事件，由 process_queued 串行处理"""
        self.get_or_create(lead_id)
        return self._queues[lead_id].enqueue_event(event)

    async def process_queued(self, lead_id: str | None = None) -> int:
        """处理队列中的事件

        Args:
            lead_id: 只处理该 lead，None 处理所有

        Returns:
            处理的事件数
        """
        lead_ids = [lead_id] if lead_id else list(self._queues.keys())

        total = 0
        for lid in lead_ids:
            queue = self._queues.get(lid)
            if queue is None or queue.is_processing:
                continue

            queue.set_processing(True)
            try:
                while not queue.is_empty:
                    event = queue.dequeue()
                    interpreter = self._interpreters.get(lid)
                    if event is None or interpreter is None:
                        break
                    interpreter.send(event)
                    total += 1
                    # 事件之间让出控制权，事件内部不会被打断
                    await asyncio.sleep(0)
            finally:
                queue.set_processing(False)

        return total

    # === 状态查询 ===

    def get_snapshot(self, lead_id: str) -> Snapshot | None:
        interpreter = self._interpreters.get(lead_id)
        return interpreter.get_snapshot() if interpreter else None

    def get_all_leads(self) -> set[str]:
        return set(self._interpreters.keys())

    def get_debug_snapshot(self, lead_id: str, *, max_history: int | None = None) -> dict | None:
        """获取指定 lead 的调试快照"""
        interpreter = self._interpreters.get(lead_id)
        queue = self._queues.get(lead_id)
        if interpreter is None or queue is None:
            return None

        snapshot = interpreter.get_snapshot()
        history = interpreter.history
        if max_history is not None:
            history = history[-max_history:]

        return {
            "lead_id": lead_id,
            "value": snapshot.value,
            "status": snapshot.status.value,
            "tags": sorted(snapshot.active_tags),
            "context": dict(snapshot.context),
            "context_version": snapshot.context_version,
            "history_records": dict(snapshot.history),
            "queue": {
                "depth": queue.depth,
                "dropped": queue.dropped,
                "pending": queue.pending(),
            },
            "transitions": [entry.to_dict() for entry in history],
        }

    # === 持久化 ===

    def save(self, path: Path | None = None) -> bool:
        """保存所有 lead 快照"""
        snapshots = {lid: interp.to_dict() for lid, interp in self._interpreters.items()}
        return persistence.save_all(snapshots, path)

    def load(self, path: Path | None = None) -> bool:
        """加载 lead 快照

        单个 lead 快照损坏时：
        - "reset": 重新 start()
        - "reject": 跳过该 lead
        """
        leads = persistence.load_all(path)
        if leads is None:
            return False

        for lead_id, raw in leads.items():
            try:
                data = persistence.validate_snapshot(raw)
                interpreter = Interpreter.restore(self.chart, data, name=lead_id)
            except CorruptSnapshot as e:
                logger.warning(f"[LeadManager] Corrupt snapshot for {lead_id[:8]}: {e}")
                if METRICS_ENABLED:
                    metrics.inc("persist.error", {"op": "restore", "policy": self._corrupt_policy})
                if self._corrupt_policy == "reject":
                    continue
                interpreter = Interpreter(self.chart, name=lead_id)
                interpreter.start()

            previous = self._interpreters.get(lead_id)
            if previous is not None:
                previous.stop()
            self._attach(lead_id, interpreter)

        logger.info(f"[LeadManager] Loaded {len(self._interpreters)} leads")
        return True
