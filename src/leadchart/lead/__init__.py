"""Lead 模块

Lead 生命周期 chart 及宿主侧辅助：
- events: LeadEvent / LeadTag
- chart: LEAD_CHART 与 create_lead_interpreter
- queue: 每 lead 的事件队列
- manager: LeadManager
"""

from .events import LeadEvent, LeadTag
from .chart import LEAD_ACTIONS, LEAD_CHART, LEAD_CHART_CONFIG, create_lead_interpreter
from .queue import ActorQueue, LeadEventQueue
from .manager import LeadManager

__all__ = [
    # Events
    "LeadEvent",
    "LeadTag",
    # Chart
    "LEAD_ACTIONS",
    "LEAD_CHART",
    "LEAD_CHART_CONFIG",
    "create_lead_interpreter",
    # Queue
    "ActorQueue",
    "LeadEventQueue",
    # Manager
    "LeadManager",
]
