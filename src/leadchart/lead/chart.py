"""Lead 生命周期 chart

状态结构：
| 状态 | 说明 | 标签 |
|------|------|------|
| active.lead_qualification.idle | 已导入，尚未联系 | |
| active.lead_qualification.outreach | 已外呼，等待回复 | |
| active.lead_qualification.engaged | 双向对话中（进入时清除 follow-up 停止标记） | |
| active.lead_qualification.cold | 无响应，长期培育 | sparky |
| active.lead_qualification.opted_out | 已退订 | |
| active.human_intervention | 人工接管 | |
| active.conversion.meeting_booked | 会议已预约 | check_in |
| active.conversion.meeting_attended | 已参会，等待成交结果 | |
| active.conversion.meeting_missed | 错过会议，尝试重新预约 | no_show |
| active.deal_closed | 成交（终止） | |
| goal_hit / conversation_stopped | 终止 | |
| conversation_paused | 暂停，恢复时回到 active 的浅历史 | |

LEAD_CHART 在导入时构建一次，所有 lead 共享（只读）。
"""

from collections.abc import Mapping
from typing import Any

from ..statechart import ActionRegistry, Chart, Interpreter, assign, build_chart
from .events import LeadEvent, LeadTag

# === Actions ===

LEAD_ACTIONS = ActionRegistry()
LEAD_ACTIONS.register("clear_follow_up_stop", assign(follow_ups_stopped=False))
LEAD_ACTIONS.register("stop_follow_ups", assign(follow_ups_stopped=True))


# === Chart 定义 ===

LEAD_CHART_CONFIG: dict[str, Any] = {
    "id": "lead",
    "initial": "active",
    "context": {"follow_ups_stopped": False},
    "states": {
        "active": {
            "initial": "lead_qualification",
            "description": "Lead is actively being worked",
            "on": {
                "goal.hit": "goal_hit",
                "conversation.stopped": "conversation_stopped",
                "conversation.paused": "conversation_paused",
            },
            "states": {
                "lead_qualification": {
                    "initial": "idle",
                    "description": "Qualifying the lead through outreach and engagement",
                    "on": {
                        "meeting.booked": "#lead.active.conversion.meeting_booked",
                        "deal.closed": "deal_closed",
                        "human.intervened": "human_intervention",
                    },
                    "states": {
                        "idle": {
                            "description": "Lead imported, no contact made yet",
                            "on": {
                                "agent.message_sent": "outreach",
                                "voice_call.initiated": "outreach",
                                "lead.message_sent": "engaged",
                            },
                        },
                        "outreach": {
                            "description": "Agent has reached out, awaiting lead response",
                            "on": {
                                "lead.message_sent": "engaged",
                                "follow_up.sequence_completed": "cold",
                                "follow_up.stopped": {
                                    "target": "outreach",
                                    "actions": ["stop_follow_ups"],
                                },
                            },
                        },
                        "engaged": {
                            "description": "Active two-way conversation with lead",
                            "entry": ["clear_follow_up_stop"],
                            "on": {
                                "follow_up.sequence_completed": "cold",
                                "follow_up.stopped": {
                                    "target": "engaged",
                                    "actions": ["stop_follow_ups"],
                                },
                                "lead.opted_out": "opted_out",
                            },
                        },
                        "cold": {
                            "description": "Lead unresponsive, in long-term nurturing",
                            "tags": [LeadTag.SPARKY.value],
                            "on": {"lead.message_sent": "engaged"},
                        },
                        "opted_out": {
                            "description": "Lead has opted out of communications",
                            "on": {"lead.message_sent": "engaged"},
                        },
                    },
                },
                "deal_closed": {
                    "type": "final",
                    "description": "Deal closed successfully",
                },
                "human_intervention": {
                    "description": "Human has taken over, agent paused",
                    "on": {
                        "meeting.booked": "#lead.active.conversion.meeting_booked",
                        "deal.closed": "deal_closed",
                    },
                },
                "hist": {
                    "type": "history",
                    "history": "shallow",
                    "description": "Remembers the last active state.",
                },
                "conversion": {
                    "initial": "meeting_booked",
                    "description": "Lead is in the sales conversion process",
                    "on": {
                        "deal.closed": "deal_closed",
                        "human.intervened": "human_intervention",
                    },
                    "states": {
                        "meeting_booked": {
                            "description": "Meeting scheduled, awaiting attendance",
                            "tags": [LeadTag.CHECK_IN.value],
                            "on": {
                                "meeting.attended": "meeting_attended",
                                "meeting.missed": "meeting_missed",
                            },
                        },
                        "meeting_attended": {
                            "description": "Lead attended meeting, awaiting deal outcome",
                        },
                        "meeting_missed": {
                            "description": "Lead missed meeting, attempting to rebook",
                            "tags": [LeadTag.NO_SHOW.value],
                            "on": {
                                "lead.message_sent": "#lead.active.lead_qualification.engaged",
                                "meeting.booked": "meeting_booked",
                            },
                        },
                    },
                },
            },
        },
        "goal_hit": {
            "type": "final",
            "description": "Lead achieved configured goal",
        },
        "conversation_stopped": {
            "type": "final",
            "description": "Conversation permanently stopped",
        },
        "conversation_paused": {
            "description": "Conversation temporarily paused",
            "on": {"conversation.resumed": "#lead.active.hist"},
        },
    },
}

LEAD_CHART: Chart = build_chart(LEAD_CHART_CONFIG, LEAD_ACTIONS, events=LeadEvent)


def create_lead_interpreter(
    lead_id: str | None = None,
    context: Mapping[str, Any] | None = None,
    *,
    start: bool = True,
) -> Interpreter:
    """创建 lead 解释器

    Args:
        lead_id: lead 标识（日志/指标标签）
        context: 覆盖默认 context
        start: 是否立即 start()

    Returns:
        Interpreter 实例
    """
    interpreter = Interpreter(LEAD_CHART, context, name=lead_id)
    if start:
        interpreter.start()
    return interpreter
