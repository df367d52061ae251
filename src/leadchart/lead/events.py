"""Lead 事件与标签定义

事件均为无参数标签，由外部协作方（消息系统、跟进调度器、日历、CRM）发送。
标签挂在状态节点上，供外部工作流读取。
"""

from enum import Enum


class LeadEvent(Enum):
    """Lead 事件词汇表"""
    AGENT_MESSAGE_SENT = "agent.message_sent"
    VOICE_CALL_INITIATED = "voice_call.initiated"
    LEAD_MESSAGE_SENT = "lead.message_sent"
    FOLLOW_UP_SEQUENCE_COMPLETED = "follow_up.sequence_completed"
    FOLLOW_UP_STOPPED = "follow_up.stopped"
    LEAD_OPTED_OUT = "lead.opted_out"
    MEETING_BOOKED = "meeting.booked"
    DEAL_CLOSED = "deal.closed"
    HUMAN_INTERVENED = "human.intervened"
    MEETING_ATTENDED = "meeting.attended"
    MEETING_MISSED = "meeting.missed"
    GOAL_HIT = "goal.hit"
    CONVERSATION_STOPPED = "conversation.stopped"
    CONVERSATION_PAUSED = "conversation.paused"
    CONVERSATION_RESUMED = "conversation.resumed"


class LeadTag(Enum):
    """状态标签

    - SPARKY: 长期培育中（nurture dashboard 可见）
    - CHECK_IN: 会议已预约（会议提醒工作流）
    - NO_SHOW: 错过会议（重新预约工作流）
    """
    SPARKY = "sparky"
    CHECK_IN = "check_in"
    NO_SHOW = "no_show"

    @property
    def workflow(self) -> str:
        """消费该标签的外部工作流"""
        workflows = {
            LeadTag.SPARKY: "nurture_dashboard",
            LeadTag.CHECK_IN: "meeting_reminder",
            LeadTag.NO_SHOW: "rebooking",
        }
        return workflows[self]
