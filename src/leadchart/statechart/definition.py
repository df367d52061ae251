"""Chart definition

Builds an immutable ``Chart`` (a flat node table addressed by index) from a
nested dict declaration:

    {
        "id": "lead",
        "initial": "active",
        "context": {"follow_ups_stopped": False},
        "states": {
            "active": {"initial": "idle", "states": {...}, "on": {...}},
            "done": {"type": "final"},
        },
    }

Target references are normalized here so the runtime never parses strings:
- "#lead.active.conversion"  absolute (machine id + dotted path)
- ".child"                   descendant of the node declaring the transition
- "sibling[.sub]"            child of the declaring node's parent

Anything malformed raises DefinitionError while building.
"""

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from ..telemetry import get_logger
from .actions import ActionRegistry, Assign
from .errors import DefinitionError
from .types import Action, NodeKind, StateNode, Transition, event_type

logger = get_logger(__name__)

_NODE_KEYS = {
    "id", "type", "initial", "states", "on", "entry", "exit", "tags",
    "description", "history", "on_done", "context",
}
_TRANSITION_KEYS = {"target", "actions", "description"}


@dataclass(frozen=True)
class Chart:
    """Immutable statechart; safe to share between interpreters and threads.

    Attributes:
        id: machine id (also the root node's key)
        nodes: flat node table, root first
        context: context schema with default values
        events: event vocabulary, None when unrestricted
    """
    id: str
    nodes: tuple[StateNode, ...]
    context: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    events: frozenset[str] | None = None
    node_by_id: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def root(self) -> StateNode:
        return self.nodes[0]

    def node(self, node_id: str) -> StateNode:
        """Look up a node by qualified id. Raises KeyError."""
        return self.nodes[self.node_by_id[node_id]]

    def child(self, parent: int, key: str) -> int | None:
        for index in self.nodes[parent].children:
            if self.nodes[index].key == key:
                return index
        return None

    def ancestors(self, index: int) -> list[int]:
        """Indices from ``index`` up to the root (inclusive on both ends)."""
        result = []
        current: int | None = index
        while current is not None:
            result.append(current)
            current = self.nodes[current].parent
        return result

    def path_to(self, index: int) -> list[int]:
        """Indices from the root down to ``index``."""
        return list(reversed(self.ancestors(index)))

    def is_descendant(self, index: int, ancestor: int) -> bool:
        """Strict descendant check."""
        parent = self.nodes[index].parent
        while parent is not None:
            if parent == ancestor:
                return True
            parent = self.nodes[parent].parent
        return False

    def initial_context(self) -> dict[str, Any]:
        return dict(self.context)


@dataclass
class _Draft:
    index: int
    key: str
    id: str
    kind: NodeKind
    parent: int | None
    depth: int
    config: Mapping[str, Any]
    children: list[int] = field(default_factory=list)
    child_keys: dict[str, int] = field(default_factory=dict)


class _ChartBuilder:
    def __init__(
        self,
        config: Mapping[str, Any],
        actions: ActionRegistry,
        events: Iterable["str | Enum"] | None,
    ):
        self._config = config
        self._actions = actions
        self._events = frozenset(event_type(e) for e in events) if events is not None else None
        self._drafts: list[_Draft] = []
        self._machine_id = ""
        self._context: dict[str, Any] = {}

    def build(self) -> Chart:
        if not isinstance(self._config, Mapping):
            raise DefinitionError("chart definition must be a mapping")
        self._machine_id = str(self._config.get("id") or "machine")
        self._context = dict(self._config.get("context") or {})

        if not self._config.get("states"):
            raise DefinitionError("root must declare child states", self._machine_id)

        self._collect(self._machine_id, self._config, parent=None, depth=0)
        nodes = tuple(self._finish(draft) for draft in self._drafts)

        chart = Chart(
            id=self._machine_id,
            nodes=nodes,
            context=MappingProxyType(dict(self._context)),
            events=self._events,
            node_by_id=MappingProxyType({node.id: node.index for node in nodes}),
        )
        logger.debug(f"[Chart:{chart.id}] Built {len(nodes)} nodes")
        return chart

    # === 第一遍：分配索引 ===

    def _collect(self, key: str, cfg: Any, parent: int | None, depth: int) -> int:
        node_id = key if parent is None else f"{self._drafts[parent].id}.{key}"
        if not isinstance(cfg, Mapping):
            raise DefinitionError("node definition must be a mapping", node_id)
        if not key or "." in key or "#" in key:
            raise DefinitionError(f"invalid node key {key!r}", node_id)
        unknown = set(cfg) - _NODE_KEYS
        if unknown:
            raise DefinitionError(f"unknown node fields {sorted(unknown)}", node_id)

        kind = self._node_kind(node_id, cfg)
        if parent is None and kind != NodeKind.COMPOUND:
            raise DefinitionError("root must be a compound node", node_id)
        if parent is None and cfg.get("on_done") is not None:
            raise DefinitionError("'on_done' is not valid on the root", node_id)

        draft = _Draft(
            index=len(self._drafts),
            key=key,
            id=node_id,
            kind=kind,
            parent=parent,
            depth=depth,
            config=cfg,
        )
        self._drafts.append(draft)

        for child_key, child_cfg in (cfg.get("states") or {}).items():
            child = self._collect(str(child_key), child_cfg, draft.index, depth + 1)
            draft.children.append(child)
            draft.child_keys[str(child_key)] = child
        return draft.index

    def _node_kind(self, node_id: str, cfg: Mapping[str, Any]) -> NodeKind:
        declared = cfg.get("type")
        has_states = bool(cfg.get("states"))
        if declared is None:
            return NodeKind.COMPOUND if has_states else NodeKind.ATOMIC
        try:
            kind = NodeKind(declared)
        except ValueError:
            raise DefinitionError(f"unknown node type {declared!r}", node_id) from None

        if kind == NodeKind.COMPOUND and not has_states:
            raise DefinitionError("compound node without child states", node_id)
        if kind != NodeKind.COMPOUND and has_states:
            raise DefinitionError(f"{kind.value} node cannot have child states", node_id)
        if kind in {NodeKind.FINAL, NodeKind.HISTORY} and cfg.get("on"):
            raise DefinitionError(f"{kind.value} node cannot have transitions", node_id)
        if kind == NodeKind.HISTORY:
            if cfg.get("entry") or cfg.get("exit"):
                raise DefinitionError("history node cannot have actions", node_id)
            depth = cfg.get("history", "shallow")
            if depth != "shallow":
                raise DefinitionError(f"unsupported history depth {depth!r}", node_id)
        elif cfg.get("history") is not None:
            raise DefinitionError("'history' is only valid on history nodes", node_id)
        if cfg.get("on_done") is not None and kind != NodeKind.COMPOUND:
            raise DefinitionError("'on_done' is only valid on compound nodes", node_id)
        return kind

    # === 第二遍：解析引用 ===

    def _finish(self, draft: _Draft) -> StateNode:
        cfg = draft.config
        initial = None
        history = None

        if draft.kind == NodeKind.COMPOUND:
            initial = self._initial(draft)
            history_children = [
                c for c in draft.children if self._drafts[c].kind == NodeKind.HISTORY
            ]
            if len(history_children) > 1:
                raise DefinitionError("more than one history node", draft.id)
            history = history_children[0] if history_children else None
        elif cfg.get("initial") is not None:
            raise DefinitionError("'initial' is only valid on compound nodes", draft.id)

        transitions = {}
        for raw_event, declared in (cfg.get("on") or {}).items():
            name = event_type(raw_event)
            if self._events is not None and name not in self._events:
                raise DefinitionError(f"event {name!r} is not in the event vocabulary", draft.id)
            transitions[name] = self._transition(draft, name, declared)

        on_done = None
        if cfg.get("on_done") is not None:
            on_done = self._transition(draft, f"done.state.{draft.id}", cfg["on_done"])
            if on_done.target is None or self._inside(on_done.target, draft.index):
                raise DefinitionError("'on_done' must leave the node it is declared on", draft.id)

        tags = cfg.get("tags") or ()
        if isinstance(tags, (str, Enum)):
            tags = (tags,)

        return StateNode(
            index=draft.index,
            key=draft.key,
            id=draft.id,
            kind=draft.kind,
            parent=draft.parent,
            depth=draft.depth,
            children=tuple(draft.children),
            initial=initial,
            history=history,
            transitions=MappingProxyType(transitions),
            on_done=on_done,
            entry=self._bind_actions(draft, cfg.get("entry")),
            exit=self._bind_actions(draft, cfg.get("exit")),
            tags=frozenset(event_type(t) for t in tags),
            description=str(cfg.get("description", "")),
        )

    def _inside(self, index: int, ancestor: int) -> bool:
        current: int | None = index
        while current is not None:
            if current == ancestor:
                return True
            current = self._drafts[current].parent
        return False

    def _initial(self, draft: _Draft) -> int:
        key = draft.config.get("initial")
        if key is None:
            raise DefinitionError("compound node without an initial child", draft.id)
        index = draft.child_keys.get(str(key))
        if index is None:
            raise DefinitionError(f"initial child {key!r} does not exist", draft.id)
        if self._drafts[index].kind == NodeKind.HISTORY:
            raise DefinitionError(f"initial child {key!r} is a history node", draft.id)
        return index

    def _transition(self, draft: _Draft, event: str, declared: Any) -> Transition:
        if declared is None or isinstance(declared, str):
            target_ref, action_names = declared, None
        elif isinstance(declared, Mapping):
            unknown = set(declared) - _TRANSITION_KEYS
            if unknown:
                raise DefinitionError(
                    f"unknown transition fields {sorted(unknown)} on {event!r}", draft.id
                )
            target_ref, action_names = declared.get("target"), declared.get("actions")
        else:
            raise DefinitionError(f"invalid transition for {event!r}", draft.id)

        target = None if target_ref is None else self._resolve_target(draft, target_ref)
        return Transition(
            event=event,
            source=draft.index,
            target=target,
            actions=self._bind_actions(draft, action_names),
            target_ref=target_ref or "",
        )

    def _resolve_target(self, draft: _Draft, ref: Any) -> int:
        if not isinstance(ref, str) or not ref:
            raise DefinitionError(f"invalid target reference {ref!r}", draft.id)

        if ref.startswith("#"):
            machine, _, rest = ref[1:].partition(".")
            if machine != self._machine_id:
                raise DefinitionError(f"dangling target {ref!r} (unknown machine id)", draft.id)
            current = 0
        elif ref.startswith("."):
            current, rest = draft.index, ref[1:]
        else:
            current = draft.parent if draft.parent is not None else draft.index
            rest = ref

        for key in rest.split(".") if rest else ():
            child = self._drafts[current].child_keys.get(key)
            if child is None:
                raise DefinitionError(f"dangling target {ref!r}", draft.id)
            current = child

        if current == 0:
            raise DefinitionError(f"target {ref!r} refers to the root", draft.id)
        return current

    def _bind_actions(self, draft: _Draft, names: Any) -> tuple[Action, ...]:
        if names is None:
            return ()
        if isinstance(names, str):
            names = [names]

        bound = []
        for name in names:
            if not isinstance(name, str):
                raise DefinitionError(f"action reference must be a name, got {name!r}", draft.id)
            try:
                action = self._actions.resolve(name)
            except KeyError:
                raise DefinitionError(f"unknown action {name!r}", draft.id) from None
            if isinstance(action.fn, Assign):
                missing = set(action.fn.updates) - set(self._context)
                if missing:
                    raise DefinitionError(
                        f"action {name!r} assigns keys outside the context: {sorted(missing)}",
                        draft.id,
                    )
            bound.append(action)
        return tuple(bound)


def build_chart(
    config: Mapping[str, Any],
    actions: ActionRegistry | None = None,
    *,
    events: Iterable["str | Enum"] | None = None,
) -> Chart:
    """Build and validate a chart.

    Args:
        config: nested chart declaration
        actions: registry the chart's action names resolve against
        events: optional event vocabulary

    Returns:
        Immutable Chart

    Raises:
        DefinitionError: if the declaration is malformed
    """
    return _ChartBuilder(config, actions or ActionRegistry(), events).build()


def _reject_duplicates(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise DefinitionError(f"duplicate key {key!r}")
        result[key] = value
    return result


def load_chart_json(
    text: str,
    actions: ActionRegistry | None = None,
    *,
    events: Iterable["str | Enum"] | None = None,
) -> Chart:
    """Build a chart from JSON text, rejecting duplicate sibling ids."""
    try:
        config = json.loads(text, object_pairs_hook=_reject_duplicates)
    except json.JSONDecodeError as e:
        raise DefinitionError(f"invalid chart JSON: {e}") from e
    return build_chart(config, actions, events=events)
