"""ActorQueue - 每 lead 的事件队列

实现 Actor 模式，保证同一 lead 的事件串行处理。

特性：
- 最大容量 256
- 高水位 75% 打印日志
- 溢出时丢弃最旧的非保护事件（终止类事件永不丢弃）
- 丢弃时记录 queue.dropped 指标
"""

from collections import deque
from enum import Enum
from typing import Generic, TypeVar

from ..config import (
    METRICS_ENABLED,
    PROTECTED_EVENTS,
    QUEUE_HIGH_WATERMARK,
    QUEUE_MAX_SIZE,
)
from ..statechart.types import event_type
from ..telemetry import get_logger, metrics

logger = get_logger(__name__)

T = TypeVar("T")


class ActorQueue(Generic[T]):
    """Actor 队列

    每个 lead 一个队列，保证事件按顺序串行处理。

    Attributes:
        lead_id: lead 标识
        max_size: 最大容量
        high_watermark: 高水位阈值（0-1）
    """

    def __init__(
        self,
        lead_id: str,
        max_size: int = QUEUE_MAX_SIZE,
        high_watermark: float = QUEUE_HIGH_WATERMARK,
    ):
        self.lead_id = lead_id
        self._max_size = max_size
        self._high_watermark = high_watermark
        self._queue: deque[T] = deque()
        self._processing = False
        self._dropped = 0

    def enqueue(self, item: T) -> bool:
        """入队

        如果队列满，丢弃最旧的可丢弃项。

        Returns:
            是否入队成功（所有项都受保护时返回 False）
        """
        lead_short = self.lead_id[:8]

        if len(self._queue) >= self._max_size:
            if not self._drop_oldest():
                if self._is_protected(item):
                    # 全部受保护：超出容量也保留
                    logger.warning(f"[Queue:{lead_short}] Queue full of protected events, growing")
                else:
                    logger.warning(f"[Queue:{lead_short}] Rejected event (queue full)")
                    self._record_drop()
                    return False

        self._queue.append(item)

        depth = len(self._queue)
        if METRICS_ENABLED:
            metrics.gauge("queue.depth", depth, {"lead": lead_short})

        if depth >= self._max_size * self._high_watermark:
            logger.debug(
                f"[Queue:{lead_short}] High watermark: {depth}/{self._max_size} "
                f"({depth / self._max_size * 100:.0f}%)"
            )

        return True

    def _drop_oldest(self) -> bool:
        for i, queued in enumerate(self._queue):
            if not self._is_protected(queued):
                del self._queue[i]
                logger.warning(f"[Queue:{self.lead_id[:8]}] Dropped oldest event (queue full)")
                self._record_drop()
                return True
        return False

    def _record_drop(self) -> None:
        self._dropped += 1
        if METRICS_ENABLED:
            metrics.inc("queue.dropped", {"lead": self.lead_id[:8]})

    def _is_protected(self, item: T) -> bool:
        """子类覆盖：是否不可丢弃"""
        return False

    def dequeue(self) -> T | None:
        """出队

        Returns:
            队首项，队列空时返回 None
        """
        if not self._queue:
            return None

        item = self._queue.popleft()
        if METRICS_ENABLED:
            metrics.gauge("queue.depth", len(self._queue), {"lead": self.lead_id[:8]})
        return item

    def clear(self) -> int:
        """清空队列

        Returns:
            清除的项数
        """
        count = len(self._queue)
        self._queue.clear()
        if METRICS_ENABLED:
            metrics.gauge("queue.depth", 0, {"lead": self.lead_id[:8]})
        return count

    # === 状态 ===

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_empty(self) -> bool:
        return len(self._queue) == 0

    @property
    def depth(self) -> int:
        return len(self._queue)

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def is_processing(self) -> bool:
        """是否正在处理"""
        return self._processing

    def set_processing(self, value: bool) -> None:
        self._processing = value


class LeadEventQueue(ActorQueue[str]):
    """Lead 事件队列

    入队时把 Enum 事件规范化为字符串；PROTECTED_EVENTS 中的事件永不丢弃。
    """

    def __init__(
        self,
        lead_id: str,
        max_size: int = QUEUE_MAX_SIZE,
        protected: set[str] | frozenset[str] = frozenset(PROTECTED_EVENTS),
    ):
        super().__init__(lead_id, max_size)
        self._protected = frozenset(protected)

    def enqueue_event(self, event: "str | Enum") -> bool:
        return self.enqueue(event_type(event))

    def _is_protected(self, item: str) -> bool:
        return item in self._protected

    def pending(self, limit: int = 10) -> list[str]:
        """查看待处理事件（调试用）"""
        return list(self._queue)[:limit]
