"""Transition resolver

Pure functions over a Chart: given the active leaf, the history records and
an event, find the handling transition and compute the microstep (exit set,
history writes, ordered actions, entry path). Nothing here mutates state;
the interpreter applies the returned Microstep.

Ordering inside one microstep:
1. exit actions, leaf to root
2. transition actions, in declaration order
3. entry actions, root to leaf

A transition targeting its own source (or one of its ancestors) is external:
the source is exited and re-entered, so its entry actions run after the
transition's actions.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .definition import Chart
from .types import Action, Transition


@dataclass(frozen=True)
class Microstep:
    """Result of resolving one transition.

    Attributes:
        transition: the transition taken
        domain: node that is neither exited nor entered (None if targetless)
        exited: nodes exited, leaf to root
        entered: nodes entered, root to leaf (history pseudostates excluded)
        history: history records written by this step {compound id: child key}
        leaf: active leaf after the step
    """
    transition: Transition
    domain: int | None
    exited: tuple[int, ...]
    entered: tuple[int, ...]
    history: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    leaf: int = 0

    @property
    def is_targetless(self) -> bool:
        return self.domain is None


def step_actions(chart: Chart, step: Microstep) -> list[Action]:
    """Actions of a microstep in execution order."""
    actions: list[Action] = []
    for index in step.exited:
        actions.extend(chart.nodes[index].exit)
    actions.extend(step.transition.actions)
    for index in step.entered:
        actions.extend(chart.nodes[index].entry)
    return actions


def find_transition(chart: Chart, leaf: int, event: str) -> Transition | None:
    """Walk from the active leaf towards the root; first handler wins."""
    for index in chart.ancestors(leaf):
        transition = chart.nodes[index].transitions.get(event)
        if transition is not None:
            return transition
    return None


def transition_domain(chart: Chart, source: int, target: int) -> int:
    """Least common compound ancestor bounding the exit/entry sequence.

    A target strictly inside the source keeps the source active; any other
    target (including the source itself) is bounded by a proper ancestor.
    """
    if chart.is_descendant(target, source):
        return source
    for ancestor in chart.ancestors(source)[1:]:
        if chart.is_descendant(target, ancestor):
            return ancestor
    # target 不可能是根节点（构建时已校验）
    return 0


def resolve_entry(
    chart: Chart,
    domain: int | None,
    target: int,
    history: Mapping[str, str],
) -> list[int]:
    """Nodes entered below ``domain`` on the way to ``target``'s leaf.

    A history pseudostate target is replaced by its parent's recorded child,
    or the parent's initial child when nothing is recorded yet. Compound
    nodes are then descended through their initial children.
    """
    path = chart.path_to(target)
    if domain is not None:
        path = path[path.index(domain) + 1:]

    entered = [index for index in path if not chart.nodes[index].is_history]

    current = target
    node = chart.nodes[current]
    if node.is_history:
        parent = chart.nodes[node.parent]
        recorded = history.get(parent.id)
        restored = chart.child(parent.index, recorded) if recorded else None
        current = restored if restored is not None else parent.initial
        entered.append(current)

    while chart.nodes[current].is_compound:
        current = chart.nodes[current].initial
        entered.append(current)
    return entered


def initial_path(chart: Chart) -> list[int]:
    """Root-to-leaf path entered by start()."""
    return resolve_entry(chart, None, 0, {})


def resolve_transition(
    chart: Chart,
    leaf: int,
    transition: Transition,
    history: Mapping[str, str],
) -> Microstep:
    """Compute the microstep for ``transition`` taken while ``leaf`` is active."""
    target = transition.target
    if target is None:
        return Microstep(transition=transition, domain=None, exited=(), entered=(), leaf=leaf)

    domain = transition_domain(chart, transition.source, target)
    exited = [i for i in chart.ancestors(leaf) if chart.is_descendant(i, domain)]

    # 浅历史：只记录退出时的直接子节点
    active = chart.path_to(leaf)
    records: dict[str, str] = {}
    for index in exited:
        node = chart.nodes[index]
        if node.is_compound and node.history is not None:
            child = active[active.index(index) + 1]
            records[node.id] = chart.nodes[child].key

    merged = {**history, **records}
    entered = resolve_entry(chart, domain, target, merged)

    return Microstep(
        transition=transition,
        domain=domain,
        exited=tuple(exited),
        entered=tuple(entered),
        history=MappingProxyType(records),
        leaf=entered[-1],
    )


def done_transition(chart: Chart, leaf: int) -> Transition | None:
    """The parent's on_done transition when ``leaf`` is a nested final state."""
    node = chart.nodes[leaf]
    if not node.is_final or node.parent is None:
        return None
    return chart.nodes[node.parent].on_done
