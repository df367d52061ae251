"""Lead 生命周期 chart 测试"""

import pytest

from leadchart.lead import LEAD_CHART, LeadEvent, LeadTag, create_lead_interpreter
from leadchart.statechart import InterpreterStatus


def _drive(interpreter, *events):
    snapshot = interpreter.get_snapshot()
    for event in events:
        snapshot = interpreter.send(event)
    return snapshot


class TestStart:
    """初始状态测试"""

    def test_start_enters_idle(self, lead):
        snapshot = lead.get_snapshot()

        assert snapshot.active_path == ("lead", "active", "lead_qualification", "idle")
        assert snapshot.value == "active.lead_qualification.idle"
        assert snapshot.context == {"follow_ups_stopped": False}
        assert snapshot.history == {}
        assert snapshot.status == InterpreterStatus.RUNNING

    def test_matches_prefix(self, lead):
        snapshot = lead.get_snapshot()

        assert snapshot.matches("active")
        assert snapshot.matches("active.lead_qualification")
        assert not snapshot.matches("active.lead")
        assert not snapshot.matches("active.conversion")

    def test_chart_shared_between_leads(self):
        first = create_lead_interpreter("lead-a")
        second = create_lead_interpreter("lead-b")

        first.send(LeadEvent.AGENT_MESSAGE_SENT)

        assert first.chart is second.chart is LEAD_CHART
        assert second.get_snapshot().value == "active.lead_qualification.idle"

    def test_not_started(self):
        interpreter = create_lead_interpreter("lead-x", start=False)

        assert interpreter.status == InterpreterStatus.NOT_STARTED
        with pytest.raises(RuntimeError):
            interpreter.send(LeadEvent.AGENT_MESSAGE_SENT)


class TestQualification:
    """资格审查分支测试"""

    def test_lead_reply_engages(self, lead):
        snapshot = lead.send(LeadEvent.LEAD_MESSAGE_SENT)

        assert snapshot.value == "active.lead_qualification.engaged"
        assert snapshot.context["follow_ups_stopped"] is False

    def test_follow_up_stop_on_engaged_is_cleared_by_reentry(self, lead):
        """外部自流转：流转 action 先置 True，再次进入时 entry 清除"""
        lead.send(LeadEvent.LEAD_MESSAGE_SENT)

        snapshot = lead.send(LeadEvent.FOLLOW_UP_STOPPED)

        assert snapshot.value == "active.lead_qualification.engaged"
        assert snapshot.context["follow_ups_stopped"] is False

    def test_follow_up_stop_on_outreach_sticks(self, lead):
        lead.send(LeadEvent.AGENT_MESSAGE_SENT)

        snapshot = lead.send(LeadEvent.FOLLOW_UP_STOPPED)

        assert snapshot.value == "active.lead_qualification.outreach"
        assert snapshot.context["follow_ups_stopped"] is True
        assert snapshot.context_version == 1

    def test_engaging_clears_stop_flag(self, lead):
        snapshot = _drive(
            lead,
            LeadEvent.AGENT_MESSAGE_SENT,
            LeadEvent.FOLLOW_UP_STOPPED,
            LeadEvent.LEAD_MESSAGE_SENT,
        )

        assert snapshot.value == "active.lead_qualification.engaged"
        assert snapshot.context["follow_ups_stopped"] is False
        assert snapshot.context_version == 2

    def test_sequence_completed_goes_cold(self, lead):
        lead.send(LeadEvent.AGENT_MESSAGE_SENT)
        snapshot = lead.send(LeadEvent.FOLLOW_UP_SEQUENCE_COMPLETED)

        assert snapshot.value == "active.lead_qualification.cold"
        assert snapshot.has_tag(LeadTag.SPARKY)
        assert LeadTag.SPARKY.workflow == "nurture_dashboard"

    def test_voice_call_reaches_outreach(self, lead):
        assert lead.send(LeadEvent.VOICE_CALL_INITIATED).value == "active.lead_qualification.outreach"

    def test_cold_lead_replies(self, lead):
        snapshot = _drive(
            lead,
            LeadEvent.AGENT_MESSAGE_SENT,
            LeadEvent.FOLLOW_UP_SEQUENCE_COMPLETED,
            LeadEvent.LEAD_MESSAGE_SENT,
        )

        assert snapshot.value == "active.lead_qualification.engaged"
        assert not snapshot.has_tag(LeadTag.SPARKY)

    def test_opt_out_and_return(self, lead):
        lead.send(LeadEvent.LEAD_MESSAGE_SENT)

        assert lead.send(LeadEvent.LEAD_OPTED_OUT).value == "active.lead_qualification.opted_out"
        assert lead.send(LeadEvent.LEAD_MESSAGE_SENT).value == "active.lead_qualification.engaged"

    def test_human_intervention(self, lead):
        snapshot = lead.send(LeadEvent.HUMAN_INTERVENED)

        assert snapshot.value == "active.human_intervention"
        assert lead.send(LeadEvent.MEETING_BOOKED).value == "active.conversion.meeting_booked"


class TestConversion:
    """转化分支测试"""

    def test_meeting_booked_from_idle(self, lead):
        snapshot = lead.send(LeadEvent.MEETING_BOOKED)

        assert snapshot.value == "active.conversion.meeting_booked"
        assert snapshot.has_tag(LeadTag.CHECK_IN)

    def test_missed_meeting_then_reply(self, lead):
        lead.send(LeadEvent.MEETING_BOOKED)

        missed = lead.send(LeadEvent.MEETING_MISSED)
        assert missed.value == "active.conversion.meeting_missed"
        assert missed.has_tag(LeadTag.NO_SHOW)
        assert not missed.has_tag(LeadTag.CHECK_IN)

        engaged = lead.send(LeadEvent.LEAD_MESSAGE_SENT)
        assert engaged.value == "active.lead_qualification.engaged"
        assert engaged.context["follow_ups_stopped"] is False

    def test_rebook_after_miss(self, lead):
        snapshot = _drive(lead, LeadEvent.MEETING_BOOKED, LeadEvent.MEETING_MISSED, LeadEvent.MEETING_BOOKED)

        assert snapshot.value == "active.conversion.meeting_booked"

    def test_attended(self, lead):
        snapshot = _drive(lead, LeadEvent.MEETING_BOOKED, LeadEvent.MEETING_ATTENDED)

        assert snapshot.value == "active.conversion.meeting_attended"
        assert snapshot.active_tags == frozenset()

    def test_human_intervention_from_conversion(self, lead):
        snapshot = _drive(lead, LeadEvent.MEETING_BOOKED, LeadEvent.HUMAN_INTERVENED)

        assert snapshot.value == "active.human_intervention"


class TestTerminalStates:
    """终止状态测试"""

    @pytest.mark.parametrize("events,value", [
        ((LeadEvent.DEAL_CLOSED,), "active.deal_closed"),
        ((LeadEvent.MEETING_BOOKED, LeadEvent.MEETING_ATTENDED, LeadEvent.DEAL_CLOSED), "active.deal_closed"),
        ((LeadEvent.HUMAN_INTERVENED, LeadEvent.DEAL_CLOSED), "active.deal_closed"),
        ((LeadEvent.GOAL_HIT,), "goal_hit"),
        ((LeadEvent.LEAD_MESSAGE_SENT, LeadEvent.CONVERSATION_STOPPED), "conversation_stopped"),
    ])
    def test_reaches_final(self, lead, events, value):
        snapshot = _drive(lead, *events)

        assert snapshot.value == value
        assert snapshot.done
        assert lead.done

    @pytest.mark.parametrize("terminal", [
        LeadEvent.DEAL_CLOSED,
        LeadEvent.GOAL_HIT,
        LeadEvent.CONVERSATION_STOPPED,
    ])
    def test_terminal_absorbs_everything(self, lead, terminal):
        final = lead.send(terminal)

        for event in LeadEvent:
            assert lead.send(event) is final

    def test_goal_hit_from_paused_is_ignored(self, lead):
        paused = lead.send(LeadEvent.CONVERSATION_PAUSED)

        # conversation_paused 不在 active 内，goal.hit 无处理者
        assert lead.send(LeadEvent.GOAL_HIT) is paused


class TestPauseResume:
    """暂停/恢复与浅历史测试"""

    def test_pause_records_history(self, lead):
        lead.send(LeadEvent.HUMAN_INTERVENED)

        snapshot = lead.send(LeadEvent.CONVERSATION_PAUSED)

        assert snapshot.value == "conversation_paused"
        assert snapshot.history == {"lead.active": "human_intervention"}

    def test_resume_exact_atomic_child(self, lead):
        snapshot = _drive(
            lead,
            LeadEvent.HUMAN_INTERVENED,
            LeadEvent.CONVERSATION_PAUSED,
            LeadEvent.CONVERSATION_RESUMED,
        )

        assert snapshot.value == "active.human_intervention"

    def test_resume_from_idle(self, lead):
        snapshot = _drive(lead, LeadEvent.CONVERSATION_PAUSED, LeadEvent.CONVERSATION_RESUMED)

        assert snapshot.value == "active.lead_qualification.idle"

    def test_resume_is_shallow(self, lead):
        """只记录 active 的直接子节点，更深层重新走 initial"""
        snapshot = _drive(
            lead,
            LeadEvent.LEAD_MESSAGE_SENT,
            LeadEvent.CONVERSATION_PAUSED,
            LeadEvent.CONVERSATION_RESUMED,
        )

        assert snapshot.value == "active.lead_qualification.idle"

    def test_resume_conversion_enters_initial(self, lead):
        snapshot = _drive(
            lead,
            LeadEvent.MEETING_BOOKED,
            LeadEvent.MEETING_MISSED,
            LeadEvent.CONVERSATION_PAUSED,
            LeadEvent.CONVERSATION_RESUMED,
        )

        assert snapshot.value == "active.conversion.meeting_booked"
        assert snapshot.history == {"lead.active": "conversion"}

    def test_resume_keeps_context(self, lead):
        lead.send(LeadEvent.AGENT_MESSAGE_SENT)
        lead.send(LeadEvent.FOLLOW_UP_STOPPED)

        snapshot = _drive(lead, LeadEvent.CONVERSATION_PAUSED, LeadEvent.CONVERSATION_RESUMED)

        # lead_qualification.idle 没有 entry，标记保留
        assert snapshot.context["follow_ups_stopped"] is True

    def test_pause_is_not_terminal(self, lead):
        snapshot = lead.send(LeadEvent.CONVERSATION_PAUSED)

        assert not snapshot.done
        assert lead.send(LeadEvent.LEAD_MESSAGE_SENT) is snapshot

    def test_stop_from_paused_is_ignored(self, lead):
        paused = lead.send(LeadEvent.CONVERSATION_PAUSED)

        assert lead.send(LeadEvent.CONVERSATION_STOPPED) is paused


class TestIgnoredEvents:
    """未处理事件测试"""

    def test_unhandled_event_returns_same_snapshot(self, lead):
        before = lead.get_snapshot()

        after = lead.send(LeadEvent.MEETING_ATTENDED)

        assert after is before

    def test_resume_while_active_is_ignored(self, lead):
        before = lead.get_snapshot()

        assert lead.send(LeadEvent.CONVERSATION_RESUMED) is before

    def test_plain_string_events(self, lead):
        assert lead.send("lead.message_sent").value == "active.lead_qualification.engaged"

    def test_unknown_event_ignored(self, lead):
        before = lead.get_snapshot()

        assert lead.send("lead.teleported") is before
