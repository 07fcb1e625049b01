from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from pyagenthost.context.assembler import ContextAssembler, dependencies, tool_states
from pyagenthost.events.models import (
    MessageCreated,
    PartCreated,
    PartUpdated,
    SessionCreated,
    UnknownEventKind,
    event_from_dict,
)
from pyagenthost.events.recorder import SessionRecorder
from pyagenthost.events.store import EventStore


def test_scenario_single_user_message() -> None:
    events = [
        SessionCreated(session_id="s"),
        MessageCreated(session_id="s", message_id="m1", role="user"),
        PartCreated(session_id="s", message_id="m1", part_id="p1", part_type="text", data={"text": "hi"}),
    ]
    assembled = ContextAssembler().assemble(events)
    assert assembled is not None
    msgs = assembled.conversation.messages
    assert [(m.id, m.role, m.content) for m in msgs] == [("m1", "user", "hi")]


def test_two_calls_one_result() -> None:
    events = [
        SessionCreated(session_id="s"),
        MessageCreated(session_id="s", message_id="m1", role="assistant"),
        PartCreated(session_id="s", message_id="m1", part_id="p1", part_type="tool_call",
                    data={"call_id": "c1", "tool_name": "Read", "input": {"file_path": "a.py"}}),
        PartCreated(session_id="s", message_id="m1", part_id="p2", part_type="tool_call",
                    data={"call_id": "c2", "tool_name": "Bash", "input": {"command": "ls"}}),
        PartCreated(session_id="s", message_id="m1", part_id="p3", part_type="tool_result",
                    data={"call_id": "c1", "output": "print(1)", "status": "success"}),
    ]
    assembled = ContextAssembler().assemble(events)
    calls = {c.id: c for c in assembled.tool_calls}
    assert len(calls) == 2
    assert calls["c1"].status == "success"
    assert calls["c1"].output == "print(1)"
    assert calls["c2"].status == "pending"
    assert calls["c2"].output is None


def test_orphan_result_creates_record() -> None:
    events = [
        SessionCreated(session_id="s"),
        PartCreated(session_id="s", message_id="m1", part_id="p1", part_type="tool_result",
                    data={"call_id": "c9", "tool_name": "Bash", "output": "boom", "error": {"type": "execution_error", "message": "boom"}}),
    ]
    [call] = ContextAssembler().assemble(events).tool_calls
    assert call.id == "c9"
    assert call.status == "error"


def test_text_updates_overwrite() -> None:
    events = [
        SessionCreated(session_id="s"),
        MessageCreated(session_id="s", message_id="m1", role="assistant"),
        PartCreated(session_id="s", message_id="m1", part_id="p1", part_type="text", data={"text": "draft"}),
        PartUpdated(session_id="s", message_id="m1", part_id="p1", part_type="text", data={"text": "final"}),
    ]
    [msg] = ContextAssembler().assemble(events).conversation.messages
    assert msg.content == "final"


def test_assemble_is_pure() -> None:
    events = [
        SessionCreated(session_id="s"),
        MessageCreated(session_id="s", message_id="m1", role="user"),
        PartCreated(session_id="s", message_id="m1", part_id="p1", part_type="text", data={"text": "hi"}),
    ]
    a = ContextAssembler()
    assert a.assemble(events) == a.assemble(events)
    assert a.assemble([]) is None


def test_unknown_event_kind_raises() -> None:
    with pytest.raises(UnknownEventKind):
        event_from_dict({"kind": "session_deleted", "session_id": "s"})


def test_jsonl_round_trip(store: EventStore) -> None:
    rec = SessionRecorder(store)
    written = [rec.create_session(title="t", cwd="/p")]
    for i, role in enumerate(["user", "assistant", "user"]):
        mid = rec.add_message(role, f"m{i}")
        rec.add_text(mid, f"message {i} ünïcode")
    reloaded = store.iter_events()

    assembler = ContextAssembler()
    in_memory = assembler.assemble_layered(reloaded)
    again = assembler.assemble_layered(EventStore.open(store.session_id, store.path.parent).iter_events())
    assert in_memory is not None and again is not None
    assert in_memory.conversation.messages == again.conversation.messages
    assert [m.content for m in again.conversation.messages] == [
        "message 0 ünïcode", "message 1 ünïcode", "message 2 ünïcode",
    ]
    assert reloaded[0] == written[0]
    assert [e.seq for e in reloaded] == list(range(1, len(reloaded) + 1))


def test_round_trip_against_never_persisted_events(store: EventStore) -> None:
    events = [
        SessionCreated(session_id=store.session_id, title="t"),
        MessageCreated(session_id=store.session_id, message_id="m1", role="user"),
        PartCreated(session_id=store.session_id, message_id="m1", part_id="p1", part_type="text", data={"text": "hello"}),
    ]
    for ev in events:
        store.append(ev)
    assembler = ContextAssembler()
    assert (
        assembler.assemble(events).conversation.messages
        == assembler.assemble(store.iter_events()).conversation.messages
    )


def test_concurrent_appends_get_unique_seqs(store: EventStore) -> None:
    rec = SessionRecorder(store)
    rec.create_session()

    def worker(n: int) -> None:
        for i in range(10):
            rec.add_message("user", f"m{n}_{i}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    seqs = [e.seq for e in store.iter_events()]
    assert sorted(seqs) == list(range(1, 42))
    assert seqs == sorted(seqs)


def test_seq_continues_after_reopen(store: EventStore) -> None:
    SessionRecorder(store).create_session()
    reopened = EventStore.open(store.session_id, store.path.parent)
    ev = SessionRecorder(reopened).add_message("user")
    assert [e.seq for e in reopened.iter_events()] == [1, 2]
    assert ev


def test_bad_lines_are_skipped(store: EventStore) -> None:
    rec = SessionRecorder(store)
    rec.create_session()
    with store.path.open("a", encoding="utf-8") as f:
        f.write("{not json\n")
        f.write(json.dumps({"kind": "mystery", "session_id": "x"}) + "\n")
    rec.add_message("user", "m1")
    events = store.iter_events()
    assert [type(e).__name__ for e in events] == ["SessionCreated", "MessageCreated"]


def test_list_sessions(tmp_path: Path) -> None:
    root = tmp_path / "sessions"
    for sid in ("a", "b"):
        SessionRecorder(EventStore.open(sid, root)).create_session()
    assert sorted(EventStore.list_sessions(root)) == ["a", "b"]
    assert EventStore.list_sessions(tmp_path / "missing") == []


def test_layered_context(store: EventStore) -> None:
    rec = SessionRecorder(store)
    rec.create_session(cwd="/p")
    rec.update_session({"permission_mode": "plan"})
    mid = rec.add_message("assistant")
    rec.add_tool_call(mid, "c1", "Edit", {"file_path": "a.py"})
    rec.add_tool_result(mid, "c1", tool_name="Edit", output="ok", success=True)
    rec.add_tool_call(mid, "c2", "Edit", {"file_path": "b.py"})
    rec.add_tool_result(mid, "c2", tool_name="Edit", output="nope", success=False, error={"type": "execution_error", "message": "nope"})

    layered = ContextAssembler().assemble_layered(store.iter_events(), system="be brief", workspace={"branch": "main"}, priority="high")
    assert layered.session.configuration == {"permission_mode": "plan"}
    assert layered.tool.tool_states["Edit"]["calls"] == 2
    assert layered.tool.tool_states["Edit"]["error"] == 1
    assert layered.tool.tool_states["Edit"]["last_status"] == "error"
    assert layered.tool.dependencies == {"c1": ["a.py"], "c2": ["b.py"]}
    assert layered.metadata.priority == "high"
    assert layered.metadata.total_tokens > 0
    assert layered.workspace == {"branch": "main"}
    assert tool_states([]) == {}
    assert dependencies([]) == {}
