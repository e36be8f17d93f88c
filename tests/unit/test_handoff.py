from __future__ import annotations

from agents.handoff import HandoffOrchestrator
from models.schemas import AgentIdentity, EscalationPayload


class Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_enqueue_is_idempotent_and_ordered():
    clock = Clock()
    handoff = HandoffOrchestrator(clock=clock)
    assert handoff.enqueue("a", EscalationPayload(reason="Pedido de operador")) is not None
    clock.now += 1
    assert handoff.enqueue("b") is not None
    assert handoff.enqueue("a") is None
    assert [e.conversation_id for e in handoff.queue_snapshot()] == ["a", "b"]


def test_double_assign_creates_one_record():
    handoff = HandoffOrchestrator(clock=Clock())
    handoff.enqueue("a", EscalationPayload(category="Plomería"))
    ana = AgentIdentity(agent_id="ag-1", name="Ana")

    first = handoff.assign("a", ana, "ch-1")
    second = handoff.assign("a", ana, "ch-1")

    assert first.created is True
    assert second.created is False
    assert first.payload.topic() == "🛠 Plomería"
    assert handoff.queue_snapshot() == []
    assert handoff.is_human("a")
    assert len(handoff.active_for_agent("ag-1")) == 1


def test_finish_is_idempotent():
    handoff = HandoffOrchestrator(clock=Clock())
    handoff.assign("a", AgentIdentity(agent_id="ag-1"))
    assert handoff.finish("a") is not None
    assert handoff.finish("a") is None
    assert not handoff.is_human("a")


def test_expired_respects_window_touch_and_no_timeout():
    clock = Clock()
    handoff = HandoffOrchestrator(clock=clock, inactivity_seconds=300)
    agent = AgentIdentity(agent_id="ag-1")
    handoff.assign("a", agent)
    handoff.assign("b", agent)
    handoff.assign("c", agent)
    handoff.set_no_timeout("c", True)

    clock.now += 200
    handoff.touch("b")
    clock.now += 101
    assert [r.conversation_id for r in handoff.expired()] == ["a"]

    assert handoff.set_no_timeout_for_agent("ag-1", True) == 3
    assert handoff.expired() == []


def test_agent_reconnect_reattaches_and_disconnect_keeps_records():
    handoff = HandoffOrchestrator(clock=Clock())
    agent = AgentIdentity(agent_id="ag-1", name="Ana")
    handoff.assign("a", agent, "old-ch")

    assert handoff.agent_disconnected("old-ch") == 1
    assert handoff.get("a").agent_channel is None
    assert handoff.is_human("a")

    reattached = handoff.agent_connected("ag-1", "new-ch")
    assert [r.conversation_id for r in reattached] == ["a"]
    assert handoff.get("a").agent_channel == "new-ch"


def test_user_disconnect_only_drops_unclaimed_queue_entry():
    handoff = HandoffOrchestrator(clock=Clock())
    handoff.enqueue("a")
    handoff.assign("b", AgentIdentity(agent_id="ag-1"))
    assert handoff.user_disconnected("a") is True
    assert handoff.user_disconnected("b") is False
    assert handoff.is_human("b")


def test_global_timeout_toggle_only_touches_that_agent():
    handoff = HandoffOrchestrator(clock=Clock())
    handoff.assign("a", AgentIdentity(agent_id="ag-1"))
    handoff.assign("b", AgentIdentity(agent_id="ag-2"))
    assert handoff.set_no_timeout_for_agent("ag-1", True) == 1
    assert [r.conversation_id for r in handoff.active_for_agent("ag-1")] == ["a"]
    assert handoff.get("a").no_timeout is True
    assert handoff.get("b").no_timeout is False
