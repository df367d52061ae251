"""流转解析测试（纯函数）"""

from leadchart.lead import LEAD_CHART
from leadchart.statechart import ActionRegistry, assign, build_chart
from leadchart.statechart.resolver import (
    find_transition,
    initial_path,
    resolve_entry,
    resolve_transition,
    step_actions,
    transition_domain,
)


def _idx(node_id: str) -> int:
    return LEAD_CHART.node_by_id[node_id]


def _ids(indices) -> list[str]:
    return [LEAD_CHART.nodes[i].id for i in indices]


class TestInitialPath:
    """初始路径测试"""

    def test_initial_path(self):
        assert _ids(initial_path(LEAD_CHART)) == [
            "lead",
            "lead.active",
            "lead.active.lead_qualification",
            "lead.active.lead_qualification.idle",
        ]


class TestFindTransition:
    """事件冒泡测试"""

    def test_leaf_handler_first(self):
        transition = find_transition(LEAD_CHART, _idx("lead.active.lead_qualification.idle"), "lead.message_sent")

        assert transition.source == _idx("lead.active.lead_qualification.idle")

    def test_bubbles_to_ancestor(self):
        transition = find_transition(LEAD_CHART, _idx("lead.active.lead_qualification.cold"), "meeting.booked")

        assert transition.source == _idx("lead.active.lead_qualification")
        assert transition.target == _idx("lead.active.conversion.meeting_booked")

    def test_bubbles_to_active(self):
        transition = find_transition(LEAD_CHART, _idx("lead.active.conversion.meeting_attended"), "goal.hit")

        assert transition.source == _idx("lead.active")

    def test_no_handler(self):
        assert find_transition(LEAD_CHART, _idx("lead.conversation_paused"), "goal.hit") is None


class TestDomain:
    """流转域（LCA）测试"""

    def test_sibling_domain_is_parent(self):
        transition = find_transition(LEAD_CHART, _idx("lead.active.lead_qualification.idle"), "agent.message_sent")

        assert transition_domain(LEAD_CHART, transition.source, transition.target) == _idx("lead.active.lead_qualification")

    def test_cross_branch_domain(self):
        transition = find_transition(LEAD_CHART, _idx("lead.active.conversion.meeting_missed"), "lead.message_sent")

        assert transition_domain(LEAD_CHART, transition.source, transition.target) == _idx("lead.active")

    def test_self_transition_is_external(self):
        transition = find_transition(LEAD_CHART, _idx("lead.active.lead_qualification.engaged"), "follow_up.stopped")

        assert transition_domain(LEAD_CHART, transition.source, transition.target) == _idx("lead.active.lead_qualification")


class TestResolveTransition:
    """Microstep 计算测试"""

    def test_cross_branch_exit_and_entry(self):
        leaf = _idx("lead.active.lead_qualification.outreach")
        transition = find_transition(LEAD_CHART, leaf, "meeting.booked")

        step = resolve_transition(LEAD_CHART, leaf, transition, {})

        assert _ids(step.exited) == [
            "lead.active.lead_qualification.outreach",
            "lead.active.lead_qualification",
        ]
        assert _ids(step.entered) == [
            "lead.active.conversion",
            "lead.active.conversion.meeting_booked",
        ]
        assert step.leaf == _idx("lead.active.conversion.meeting_booked")
        assert dict(step.history) == {}

    def test_leaving_active_records_history(self):
        leaf = _idx("lead.active.conversion.meeting_missed")
        transition = find_transition(LEAD_CHART, leaf, "conversation.paused")

        step = resolve_transition(LEAD_CHART, leaf, transition, {})

        assert dict(step.history) == {"lead.active": "conversion"}
        assert _ids(step.entered) == ["lead.conversation_paused"]

    def test_history_target_uses_records(self):
        leaf = _idx("lead.conversation_paused")
        transition = find_transition(LEAD_CHART, leaf, "conversation.resumed")

        step = resolve_transition(LEAD_CHART, leaf, transition, {"lead.active": "human_intervention"})

        assert _ids(step.entered) == ["lead.active", "lead.active.human_intervention"]

    def test_history_target_without_records_uses_initial(self):
        entered = resolve_entry(LEAD_CHART, 0, _idx("lead.active.hist"), {})

        assert _ids(entered) == [
            "lead.active",
            "lead.active.lead_qualification",
            "lead.active.lead_qualification.idle",
        ]

    def test_self_transition_action_order(self):
        leaf = _idx("lead.active.lead_qualification.engaged")
        transition = find_transition(LEAD_CHART, leaf, "follow_up.stopped")

        step = resolve_transition(LEAD_CHART, leaf, transition, {})

        assert _ids(step.exited) == ["lead.active.lead_qualification.engaged"]
        assert _ids(step.entered) == ["lead.active.lead_qualification.engaged"]
        assert [a.name for a in step_actions(LEAD_CHART, step)] == [
            "stop_follow_ups",
            "clear_follow_up_stop",
        ]


class TestActionOrdering:
    """exit → 流转 → entry 顺序测试"""

    def test_exit_then_transition_then_entry(self):
        registry = ActionRegistry()
        for name in ("exit_x", "exit_a", "move", "enter_b", "enter_y"):
            registry.register(name, assign(trail=name))
        chart = build_chart({
            "id": "m",
            "initial": "a",
            "context": {"trail": ""},
            "states": {
                "a": {
                    "initial": "x",
                    "exit": "exit_a",
                    "states": {"x": {"exit": "exit_x", "on": {"go": {"target": "#m.b", "actions": "move"}}}},
                },
                "b": {"initial": "y", "entry": "enter_b", "states": {"y": {"entry": "enter_y"}}},
            },
        }, registry)
        leaf = chart.node_by_id["m.a.x"]

        step = resolve_transition(chart, leaf, chart.nodes[leaf].transitions["go"], {})

        assert [a.name for a in step_actions(chart, step)] == [
            "exit_x", "exit_a", "move", "enter_b", "enter_y",
        ]

    def test_targetless_has_no_exit_or_entry(self):
        registry = ActionRegistry()
        registry.register("mark", assign(flag=True))
        chart = build_chart({
            "id": "m",
            "initial": "a",
            "context": {"flag": False},
            "states": {"a": {"entry": "mark", "on": {"poke": {"actions": "mark"}}}},
        }, registry)
        leaf = chart.node_by_id["m.a"]

        step = resolve_transition(chart, leaf, chart.nodes[leaf].transitions["poke"], {})

        assert step.is_targetless
        assert step.leaf == leaf
        assert [a.name for a in step_actions(chart, step)] == ["mark"]
