"""Tests for SessionManager turn orchestration.

Tests coverage for:
- src/acpbridge/session/session_manager.py
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from acp.schema import ResourceContentBlock

from acpbridge.content.prompt import PromptConverter
from acpbridge.errors import SessionNotFound, UpstreamQueryFailure
from acpbridge.session.audit import AuditLog
from acpbridge.session.session_manager import SessionManager, stop_reason_for
from acpbridge.upstream.events import (
    AssistantEvent,
    RedactedThinkingBlock,
    ResultEvent,
    ThinkingBlock,
)
from tests.utils import (
    FakeQuery,
    FakeQueryFactory,
    UpdateRecorder,
    assistant_text,
    init_event,
    result,
    settle,
    text_prompt,
    tool_result,
    tool_use,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def recorder():
    return UpdateRecorder()


@pytest.fixture
def factory():
    return FakeQueryFactory()


@pytest.fixture
def manager(recorder, factory):
    return SessionManager(notify=recorder, query_factory=factory)


@pytest.fixture
def session(manager):
    return manager.create_session("/work")


def start_prompt(manager: SessionManager, session_id: str, text: str = "hello"):
    return asyncio.create_task(manager.prompt(session_id, text_prompt(text)))


# =============================================================================
# Stop Reasons
# =============================================================================


class TestStopReason:
    """Tests for mapping upstream results to stop reasons."""

    def test_success_is_end_turn(self):
        assert stop_reason_for(ResultEvent(subtype="success")) == "end_turn"

    def test_max_turns(self):
        event = ResultEvent(subtype="error_max_turns", is_error=True)
        assert stop_reason_for(event) == "max_turn_requests"

    def test_other_error(self):
        event = ResultEvent(subtype="error_during_execution", is_error=True)
        assert stop_reason_for(event) == "max_tokens"

    def test_error_flag_without_error_subtype(self):
        assert stop_reason_for(ResultEvent(subtype="success", is_error=True)) == "max_tokens"


# =============================================================================
# Basic Turns
# =============================================================================


class TestPromptTurn:
    """Tests for a single prompt turn."""

    async def test_text_then_result_emits_one_chunk(self, manager, factory, recorder, session):
        """Text then result resolves end_turn after exactly one message chunk."""
        factory.queries.append(FakeQuery([init_event(), assistant_text("Hi"), result()]))

        stop = await manager.prompt(session.session_id, text_prompt())

        assert stop == "end_turn"
        assert recorder.kinds == ["agent_message_chunk"]
        assert recorder.sent[0][0] == session.session_id
        assert recorder.sent[0][1].content.text == "Hi"

    async def test_prompt_content_is_converted(self, manager, factory, session):
        factory.queries.append(FakeQuery([result()]))

        await manager.prompt(session.session_id, text_prompt("look here"))

        assert factory.opened[0].content == [{"type": "text", "text": "look here"}]

    async def test_query_closed_after_turn(self, manager, factory, session):
        query = FakeQuery([result()])
        factory.queries.append(query)

        await manager.prompt(session.session_id, text_prompt())
        await settle()

        assert query.closed
        assert session.active_query is None
        assert session.active_task is None

    async def test_resolution_cleared_after_turn(self, manager, factory, session):
        factory.queries.append(FakeQuery([result()]))

        await manager.prompt(session.session_id, text_prompt())

        assert session.pending_resolution is None
        assert session.pending_cancellation is None

    async def test_thinking_becomes_thought_chunk(self, manager, factory, recorder, session):
        factory.queries.append(
            FakeQuery(
                [
                    AssistantEvent(
                        content=(ThinkingBlock(thinking="hmm"), RedactedThinkingBlock(data="x"))
                    ),
                    result(),
                ]
            )
        )

        await manager.prompt(session.session_id, text_prompt())

        assert recorder.kinds == ["agent_thought_chunk", "agent_thought_chunk"]
        assert recorder.sent[0][1].content.text == "hmm"

    async def test_error_result_stop_reason(self, manager, factory, session):
        factory.queries.append(FakeQuery([result("error_max_turns", is_error=True)]))

        stop = await manager.prompt(session.session_id, text_prompt())

        assert stop == "max_turn_requests"

    async def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.prompt("missing", text_prompt())

    async def test_notify_failure_does_not_break_turn(self, factory):
        notify = AsyncMock(side_effect=ConnectionResetError("gone"))
        manager = SessionManager(notify=notify, query_factory=factory)
        s = manager.create_session("/work")
        factory.queries.append(FakeQuery([assistant_text("Hi"), result()]))

        stop = await manager.prompt(s.session_id, text_prompt())

        assert stop == "end_turn"
        notify.assert_awaited_once()


# =============================================================================
# Upstream Session Binding
# =============================================================================


class TestUpstreamBinding:
    """Tests for binding upstream session ids on system init."""

    async def test_init_binds_upstream_id(self, manager, factory, session):
        factory.queries.append(FakeQuery([init_event("up-1"), result()]))

        await manager.prompt(session.session_id, text_prompt())

        assert session.upstream_session_id == "up-1"
        assert manager.registry.client_for("up-1") == session.session_id

    async def test_reinit_keeps_first_binding(self, manager, factory, session):
        factory.queries.append(
            FakeQuery([init_event("up-1"), init_event("up-2"), result()])
        )

        await manager.prompt(session.session_id, text_prompt())

        assert session.upstream_session_id == "up-1"
        assert manager.registry.client_for("up-2") is None

    async def test_next_turn_resumes_bound_session(self, manager, factory, session):
        factory.queries.append(FakeQuery([init_event("up-1"), result()]))
        factory.queries.append(FakeQuery([init_event("up-1"), result()]))

        await manager.prompt(session.session_id, text_prompt())
        await manager.prompt(session.session_id, text_prompt())

        assert factory.resume_ids == [None, "up-1"]

    async def test_superseded_turn_keeps_upstream_id(self, manager, factory, session):
        factory.queries.append(FakeQuery([init_event("up-1")]))
        factory.queries.append(FakeQuery([init_event("up-1"), result()]))

        first = start_prompt(manager, session.session_id)
        await settle()
        assert manager.registry.client_for("up-1") == session.session_id

        assert await manager.prompt(session.session_id, text_prompt()) == "end_turn"

        assert await first == "cancelled"
        assert factory.resume_ids == [None, "up-1"]
        assert session.upstream_session_id == "up-1"
        assert manager.registry.client_for("up-1") == session.session_id

    async def test_resume_after_cancel(self, manager, factory, session):
        factory.queries.append(FakeQuery([init_event("up-1")]))
        factory.queries.append(FakeQuery([init_event("up-1"), result()]))
        task = start_prompt(manager, session.session_id)
        await settle()

        await manager.cancel(session.session_id)
        assert await task == "cancelled"
        assert manager.registry.upstream_for(session.session_id) is None

        await manager.prompt(session.session_id, text_prompt())

        assert factory.resume_ids == [None, "up-1"]
        assert manager.registry.upstream_for(session.session_id) == "up-1"

    async def test_upstream_id_held_by_other_session(self, manager, factory, session):
        other = manager.create_session("/other")
        factory.queries.append(FakeQuery([init_event("up-1"), result()]))
        factory.queries.append(FakeQuery([init_event("up-1"), result()]))

        await manager.prompt(session.session_id, text_prompt())
        await manager.prompt(other.session_id, text_prompt())

        assert manager.registry.client_for("up-1") == session.session_id
        assert session.upstream_session_id == "up-1"
        assert other.upstream_session_id is None


# =============================================================================
# Tool Calls
# =============================================================================


class TestToolCalls:
    """Tests for tool-call ordering and deferred resolution."""

    async def test_result_waits_for_pending_tools(self, manager, factory, recorder, session):
        """A result with tools still pending must not resolve the prompt."""
        query = FakeQuery([tool_use("t1", "Read", file_path="/a.py"), result()])
        factory.queries.append(query)

        task = start_prompt(manager, session.session_id)
        await settle()
        assert not task.done()
        assert "t1" in session.pending_tool_uses

        query.push(tool_result("t1", "contents"))
        stop = await task

        assert stop == "end_turn"
        assert recorder.kinds == ["tool_call", "tool_call_update"]

    async def test_tool_call_precedes_update(self, manager, factory, recorder, session):
        factory.queries.append(
            FakeQuery(
                [
                    tool_use("t1", "Bash", command="ls"),
                    tool_result("t1", "a\nb"),
                    assistant_text("done"),
                    result(),
                ]
            )
        )

        await manager.prompt(session.session_id, text_prompt())

        ids = [
            (update.session_update, getattr(update, "tool_call_id", None))
            for _, update in recorder.sent
        ]
        assert ids.index(("tool_call", "t1")) < ids.index(("tool_call_update", "t1"))

    async def test_completion_deferred_until_next_chunk(
        self, manager, factory, recorder, session
    ):
        """Completed tools are only reported right before the next text chunk."""
        query = FakeQuery(
            [
                tool_use("e1", "Edit", file_path="/a.py", old_string="x", new_string="y"),
                tool_result("e1", "edited"),
            ]
        )
        factory.queries.append(query)

        task = start_prompt(manager, session.session_id)
        await settle()
        assert recorder.kinds == ["tool_call"]
        assert len(session.completed_tool_queue) == 1

        query.push(assistant_text("done"))
        await settle()
        assert recorder.kinds == ["tool_call", "tool_call_update", "agent_message_chunk"]

        query.push(result())
        assert await task == "end_turn"

    async def test_edit_completion_content(self, manager, factory, recorder, session):
        """Edit completion shows the original diff plus one result text block."""
        factory.queries.append(
            FakeQuery(
                [
                    tool_use("e1", "Edit", file_path="/a.py", old_string="x", new_string="y"),
                    tool_result("e1", "edited"),
                    result(),
                ]
            )
        )

        await manager.prompt(session.session_id, text_prompt())

        (update,) = recorder.of_kind("tool_call_update")
        assert update.status == "completed"
        assert update.title == "Edited"
        assert len(update.content) == 2
        diff, text = update.content
        assert diff.type == "diff"
        assert (diff.path, diff.old_text, diff.new_text) == ("/a.py", "x", "y")
        assert text.type == "content"
        assert text.content.text == "edited"

    async def test_failed_tool(self, manager, factory, recorder, session):
        factory.queries.append(
            FakeQuery(
                [
                    tool_use("b1", "Bash", command="false"),
                    tool_result("b1", "exit 1", is_error=True),
                    result(),
                ]
            )
        )

        await manager.prompt(session.session_id, text_prompt())

        (update,) = recorder.of_kind("tool_call_update")
        assert update.status == "failed"

    async def test_unknown_tool_result_dropped(self, manager, factory, recorder, session):
        factory.queries.append(FakeQuery([tool_result("ghost", "?"), result()]))

        stop = await manager.prompt(session.session_id, text_prompt())

        assert stop == "end_turn"
        assert recorder.sent == []

    async def test_plan_tool(self, manager, factory, recorder, session):
        """The todo tool yields a plan update and no tool_call notifications."""
        todos = [
            {"content": "Fix login error", "status": "in_progress"},
            {"content": "Document API", "status": "pending"},
        ]
        query = FakeQuery([tool_use("p1", "TodoWrite", todos=todos), result()])
        factory.queries.append(query)

        task = start_prompt(manager, session.session_id)
        await settle()
        assert not task.done()

        query.push(tool_result("p1", "ok"))
        assert await task == "end_turn"

        assert recorder.kinds == ["plan"]
        (plan,) = recorder.of_kind("plan")
        assert [e.priority for e in plan.entries] == ["high", "low"]


# =============================================================================
# Cancellation
# =============================================================================


class TestCancel:
    """Tests for cancellation and superseded turns."""

    async def test_cancel_resolves_cancelled_and_clears_state(
        self, manager, factory, session
    ):
        query = FakeQuery(
            [init_event("up-1"), tool_use("t1", "Read", file_path="/a.py")]
        )
        factory.queries.append(query)

        task = start_prompt(manager, session.session_id)
        await settle()
        assert session.pending_tool_uses

        await manager.cancel(session.session_id)

        assert await task == "cancelled"
        assert session.cancelled
        assert session.pending_tool_uses == {}
        assert session.completed_tool_queue == []
        assert session.upstream_session_id == "up-1"
        assert manager.registry.client_for("up-1") is None
        assert session.pending_resolution is None
        assert session.pending_cancellation is None
        assert query.interrupted

        await settle()
        assert query.closed

    async def test_cancel_twice_is_harmless(self, manager, factory, session):
        factory.queries.append(FakeQuery())
        task = start_prompt(manager, session.session_id)
        await settle()

        await manager.cancel(session.session_id)
        await manager.cancel(session.session_id)

        assert await task == "cancelled"

    async def test_events_after_cancel_are_discarded(
        self, manager, factory, recorder, session
    ):
        query = FakeQuery()
        factory.queries.append(query)
        task = start_prompt(manager, session.session_id)
        await settle()

        await manager.cancel(session.session_id)
        query.push(assistant_text("late"), result())
        await settle()

        assert await task == "cancelled"
        assert recorder.sent == []

    async def test_second_prompt_supersedes_first(self, manager, factory, recorder, session):
        first_query = FakeQuery([assistant_text("first")])
        factory.queries.append(first_query)
        factory.queries.append(FakeQuery([assistant_text("second"), result()]))

        first = start_prompt(manager, session.session_id, "one")
        await settle()
        assert session.pending_resolution is not None

        stop = await manager.prompt(session.session_id, text_prompt("two"))

        assert stop == "end_turn"
        assert await first == "cancelled"
        assert first_query.interrupted
        texts = [u.content.text for u in recorder.of_kind("agent_message_chunk")]
        assert texts == ["first", "second"]

    async def test_one_outstanding_resolution(self, manager, factory, session):
        factory.queries.append(FakeQuery())
        factory.queries.append(FakeQuery())

        first = start_prompt(manager, session.session_id)
        await settle()
        first_resolution = session.pending_resolution

        second = start_prompt(manager, session.session_id)
        await settle()

        assert first_resolution.done()
        assert session.pending_resolution is not first_resolution
        assert not session.pending_resolution.done()

        await manager.cancel(session.session_id)
        assert await first == "cancelled"
        assert await second == "cancelled"


    async def test_third_prompt_during_supersede(self, manager, factory, session):
        first_query = FakeQuery()

        async def slow_interrupt():
            await asyncio.sleep(0.05)
            first_query.interrupted = True

        first_query.interrupt = slow_interrupt
        third_query = FakeQuery([assistant_text("third"), result()], end=True)
        factory.queries.extend([first_query, third_query])

        first = start_prompt(manager, session.session_id, "one")
        await settle()
        second = start_prompt(manager, session.session_id, "two")
        await settle()
        third = start_prompt(manager, session.session_id, "three")

        assert await asyncio.wait_for(third, 1) == "end_turn"
        assert await asyncio.wait_for(second, 1) == "cancelled"
        assert await first == "cancelled"
        assert factory.opened == [first_query, third_query]
        assert session.pending_resolution is None
        assert session.pending_cancellation is None

        await settle()
        assert first_query.interrupted
        assert first_query.closed
        assert third_query.closed

    async def test_cancel_during_file_read(self, recorder, factory):
        reading = asyncio.Event()
        release = asyncio.Event()

        async def blocked_reader(session_id, path):
            reading.set()
            await release.wait()
            return "contents"

        manager = SessionManager(
            notify=recorder,
            query_factory=factory,
            converter=PromptConverter(blocked_reader),
        )
        session = manager.create_session("/work")
        link = ResourceContentBlock(type="resource_link", uri="file:///work/a.py", name="a.py")
        task = asyncio.create_task(manager.prompt(session.session_id, [link]))
        await asyncio.wait_for(reading.wait(), 1)

        await manager.cancel(session.session_id)
        assert session.pending_resolution is None
        release.set()

        assert await task == "cancelled"
        assert factory.opened == []
        assert recorder.sent == []
    async def test_cancel_unknown_session(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.cancel("missing")

    async def test_interrupt_failure_is_logged(self, manager, factory, session, caplog):
        query = FakeQuery()
        query.interrupt = AsyncMock(side_effect=RuntimeError("no"))
        factory.queries.append(query)
        task = start_prompt(manager, session.session_id)
        await settle()

        await manager.cancel(session.session_id)

        assert await task == "cancelled"
        assert "interrupt failed" in caplog.text

    async def test_session_reusable_after_cancel(self, manager, factory, session):
        factory.queries.append(FakeQuery())
        factory.queries.append(FakeQuery([assistant_text("again"), result()]))
        task = start_prompt(manager, session.session_id)
        await settle()
        await manager.cancel(session.session_id)
        assert await task == "cancelled"

        assert await manager.prompt(session.session_id, text_prompt()) == "end_turn"
        assert not session.cancelled


# =============================================================================
# Upstream Failures and Stream End
# =============================================================================


class TestUpstreamFailures:
    """Tests for upstream errors and streams that end early."""

    async def test_stream_error_fails_prompt(self, manager, factory, session):
        factory.queries.append(
            FakeQuery([tool_use("t1", "Read", file_path="/a.py"), RuntimeError("boom")])
        )

        with pytest.raises(UpstreamQueryFailure) as exc_info:
            await manager.prompt(session.session_id, text_prompt())

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert session.pending_tool_uses == {}
        assert session.pending_resolution is None

    async def test_next_turn_after_failure(self, manager, factory, session):
        factory.queries.append(FakeQuery([RuntimeError("boom")]))
        factory.queries.append(FakeQuery([result()]))

        with pytest.raises(UpstreamQueryFailure):
            await manager.prompt(session.session_id, text_prompt())

        assert await manager.prompt(session.session_id, text_prompt()) == "end_turn"

    async def test_factory_error_fails_prompt(self, recorder):
        def broken_factory(content, s):
            raise ValueError("no cli")

        manager = SessionManager(notify=recorder, query_factory=broken_factory)
        s = manager.create_session("/work")

        with pytest.raises(UpstreamQueryFailure):
            await manager.prompt(s.session_id, text_prompt())
        assert s.pending_resolution is None

    async def test_stream_end_resolves_end_turn(self, manager, factory, recorder, session):
        factory.queries.append(FakeQuery([assistant_text("partial")], end=True))

        assert await manager.prompt(session.session_id, text_prompt()) == "end_turn"
        assert recorder.kinds == ["agent_message_chunk"]

    async def test_stream_end_drops_pending_tools(self, manager, factory, recorder, session):
        factory.queries.append(
            FakeQuery(
                [
                    tool_use("t1", "Bash", command="ls"),
                    tool_result("t1", "ok"),
                    tool_use("t2", "Bash", command="sleep 100"),
                    result("error_max_turns", is_error=True),
                ],
                end=True,
            )
        )

        stop = await manager.prompt(session.session_id, text_prompt())

        assert stop == "max_turn_requests"
        assert session.pending_tool_uses == {}
        # The completed tool is flushed at resolution
        assert recorder.kinds == ["tool_call", "tool_call", "tool_call_update"]


# =============================================================================
# Session Lifecycle
# =============================================================================


class TestSessionLifecycle:
    """Tests for session creation and teardown."""

    def test_create_session_generates_id(self, manager):
        s = manager.create_session("/work")
        assert s.session_id
        assert s.cwd == "/work"
        assert manager.get_session(s.session_id) is s

    def test_ensure_session_registers_once(self, manager):
        s = manager.ensure_session("fixed", "/work")
        assert manager.ensure_session("fixed", "/elsewhere") is s
        assert manager.list_sessions() == ["fixed"]

    async def test_close_session_cancels_turn(self, manager, factory, session):
        query = FakeQuery([init_event("up-1")])
        factory.queries.append(query)
        task = start_prompt(manager, session.session_id)
        await settle()

        await manager.close_session(session.session_id)

        assert await task == "cancelled"
        assert manager.get_session(session.session_id) is None
        assert manager.registry.client_for("up-1") is None
        assert query.closed

    async def test_close_all(self, manager):
        manager.create_session("/a")
        manager.create_session("/b")

        await manager.close_all()

        assert manager.list_sessions() == []


# =============================================================================
# Audit Records
# =============================================================================


class TestAuditRecords:
    """Tests for the audit records written during a session."""

    async def test_records_in_order(self, tmp_path: Path, recorder, factory):
        manager = SessionManager(
            notify=recorder, query_factory=factory, audit=AuditLog(tmp_path)
        )
        s = manager.create_session("/work")
        factory.queries.append(FakeQuery([init_event("up-9"), result()]))

        await manager.prompt(s.session_id, text_prompt())
        await manager.close_all()

        lines = (tmp_path / f"{s.session_id}.jsonl").read_text().splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["kind"] for r in records] == [
            "session_init",
            "turn_start",
            "upstream_session",
            "turn_end",
            "session_closed",
        ]
        assert records[0]["cwd"] == "/work"
        assert records[2]["upstream_session_id"] == "up-9"
        assert records[3]["stop_reason"] == "end_turn"
