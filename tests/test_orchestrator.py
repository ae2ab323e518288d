"""End-to-end tests for the episode orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from editstream.ai.orchestration import EditStreamOrchestrator, EpisodeConfig
from editstream.ai.orchestration.cancellation import CANCELLATION_SUFFIX
from editstream.ai.orchestration.types import EpisodeState, EpisodeStatus
from editstream.errors import ModelClientError
from editstream.protocol.problems import ProblemReport, parse_problem_reports
from editstream.services import telemetry

from helpers import RecordingObserver, ScriptedAnalyzer, ScriptedModelClient, make_report, reasoning, text

MESSAGES = [{"role": "user", "content": "Create a.ts"}]


def _orchestrator(client, **kwargs) -> tuple[EditStreamOrchestrator, RecordingObserver]:
    observer = RecordingObserver()
    return EditStreamOrchestrator(client, observer=observer, **kwargs), observer


# ============================================================================
# Completed episodes
# ============================================================================


@pytest.mark.asyncio
async def test_simple_episode_completes_and_extracts_edits(event_sink) -> None:
    client = ScriptedModelClient([[reasoning("plan"), text('Done.<write path="a.ts">x</write>')]])
    orchestrator, observer = _orchestrator(client)

    result = await orchestrator.run_episode("chat", MESSAGES)
    await orchestrator.publisher.flush()

    assert result.status is EpisodeStatus.COMPLETED
    assert result.succeeded
    assert result.content == '<think>plan</think>Done.<write path="a.ts">x</write>'
    assert [write.path for write in result.edits.writes] == ["a.ts"]
    assert result.states[0] is EpisodeState.STARTED
    assert result.states[-1] is EpisodeState.FINALIZED
    assert observer.transcripts()[-1] == result.content
    assert len(observer.of_type("end")) == 1
    assert event_sink.names() == [telemetry.EPISODE_STARTED, telemetry.EPISODE_FINISHED]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_observed_checkpoints_form_a_prefix_chain() -> None:
    client = ScriptedModelClient([[text("<write "), text('path="a.ts">'), reasoning("r"), text("body</write>")]])
    orchestrator, observer = _orchestrator(client)

    await orchestrator.run_episode("chat", MESSAGES)
    await orchestrator.publisher.flush()

    seen = observer.transcripts()
    assert seen
    assert all(later.startswith(earlier) for earlier, later in zip(seen, seen[1:]))
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_continuation_then_auto_fix(app_root: Path, event_sink) -> None:
    client = ScriptedModelClient(
        [
            [text('<write path="src/app.py">broken(')],
            [text("</write>")],
            [text('<write path="src/app.py">fixed()</write>')],
        ]
    )
    analyzer = ScriptedAnalyzer([make_report(1), ProblemReport()])
    orchestrator, _ = _orchestrator(client, analyzer=analyzer)

    result = await orchestrator.run_episode("chat", MESSAGES, app_root=app_root)

    assert result.status is EpisodeStatus.COMPLETED
    assert result.continuation_attempts == 1
    assert result.auto_fix_attempts == 1
    assert result.problem_report is not None and not result.problem_report.problems
    assert len(parse_problem_reports(result.content)) == 1
    assert [write.content for write in result.edits.writes] == ["broken(", "fixed()"]
    assert EpisodeState.CONTINUATION_PENDING in result.states
    assert EpisodeState.AUTO_FIX_PENDING in result.states
    assert client.calls[1]["messages"][-1] == {"role": "assistant", "content": '<write path="src/app.py">broken('}
    assert event_sink.names() == [
        telemetry.EPISODE_STARTED,
        telemetry.EPISODE_CONTINUATION,
        telemetry.EPISODE_AUTO_FIX,
        telemetry.EPISODE_FINISHED,
    ]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_ask_mode_skips_continuation_and_auto_fix(app_root: Path) -> None:
    client = ScriptedModelClient([[text('Sketch: <write path="a.ts">x')], [text("</write>")]])
    analyzer = ScriptedAnalyzer([make_report(1)])
    orchestrator, _ = _orchestrator(client, analyzer=analyzer, config=EpisodeConfig(chat_mode="ask"))

    result = await orchestrator.run_episode("chat", MESSAGES, app_root=app_root)

    assert result.status is EpisodeStatus.COMPLETED
    assert client.call_count == 1
    assert analyzer.transcripts == []
    assert result.continuation_attempts == 0
    assert result.auto_fix_attempts == 0
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_auto_fix_disabled_by_config(app_root: Path) -> None:
    client = ScriptedModelClient([[text('<write path="src/app.py">broken(</write>')]])
    analyzer = ScriptedAnalyzer([make_report(1)])
    orchestrator, _ = _orchestrator(client, analyzer=analyzer)

    result = await orchestrator.run_episode(
        "chat", MESSAGES, app_root=app_root, config=EpisodeConfig(enable_auto_fix=False)
    )

    assert result.succeeded
    assert analyzer.transcripts == []
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_auto_fix_failure_keeps_completed_response(app_root: Path) -> None:
    client = ScriptedModelClient([[text('<write path="src/app.py">broken(</write>')]])
    analyzer = ScriptedAnalyzer([RuntimeError("analyzer offline")])
    orchestrator, _ = _orchestrator(client, analyzer=analyzer)

    result = await orchestrator.run_episode("chat", MESSAGES, app_root=app_root)

    assert result.status is EpisodeStatus.COMPLETED
    assert result.content == '<write path="src/app.py">broken(</write>'
    await orchestrator.aclose()


# ============================================================================
# Cancellation
# ============================================================================


@pytest.mark.asyncio
async def test_cancel_mid_write_stores_partial_with_notice(app_root: Path, event_sink) -> None:
    client = ScriptedModelClient([[text('<write path="a.ts">x'), text("never")], [text("</write>")]])
    analyzer = ScriptedAnalyzer([make_report(1)])
    orchestrator, observer = _orchestrator(client, analyzer=analyzer)

    def abort(transcript: str) -> str:
        orchestrator.cancel("chat")
        return transcript

    result = await orchestrator.run_episode("chat", MESSAGES, app_root=app_root, on_update=abort)
    await orchestrator.publisher.flush()

    assert result.status is EpisodeStatus.CANCELLED
    assert result.cancelled
    assert result.content == '<write path="a.ts">x\n\n[Response cancelled by user]'
    assert client.call_count == 1
    assert analyzer.transcripts == []
    assert observer.transcripts()[-1] == result.content
    assert observer.of_type("end")[-1].transcript == result.content
    assert telemetry.EPISODE_CANCELLED in event_sink.names()
    assert telemetry.EPISODE_FINISHED not in event_sink.names()
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_cancel_during_continuation(app_root: Path) -> None:
    orchestrator: EditStreamOrchestrator

    def before_delta(call_index: int, position: int) -> None:
        if call_index == 1:
            orchestrator.cancel("chat")

    client = ScriptedModelClient(
        [[text('<write path="a.ts">x')], [text("y"), text("</write>")], [text("fix")]],
        before_delta=before_delta,
    )
    analyzer = ScriptedAnalyzer([make_report(1)])
    orchestrator, _ = _orchestrator(client, analyzer=analyzer)

    result = await orchestrator.run_episode("chat", MESSAGES, app_root=app_root)

    assert result.cancelled
    assert result.content == '<write path="a.ts">xy' + CANCELLATION_SUFFIX
    assert client.call_count == 2
    assert analyzer.transcripts == []
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_cancelling_one_conversation_leaves_others_running() -> None:
    client = ScriptedModelClient([[text("a1"), text("a2")], [text("b1"), text("b2")]])
    orchestrator, _ = _orchestrator(client)

    def cancel_first(transcript: str) -> str:
        orchestrator.cancel("first")
        return transcript

    first, second = await asyncio.gather(
        orchestrator.run_episode("first", MESSAGES, on_update=cancel_first),
        orchestrator.run_episode("second", MESSAGES),
    )

    assert first.cancelled
    assert second.succeeded
    assert second.content.endswith("2")
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_cancel_unknown_conversation_is_a_no_op() -> None:
    orchestrator, _ = _orchestrator(ScriptedModelClient())

    assert orchestrator.cancel("missing") is False
    await orchestrator.aclose()


# ============================================================================
# Failures and lifecycle
# ============================================================================


@pytest.mark.asyncio
async def test_model_error_fails_episode_with_single_error_event(event_sink) -> None:
    client = ScriptedModelClient([[text("partial"), ModelClientError("provider down", request_id="req-9")]])
    orchestrator, observer = _orchestrator(client)

    result = await orchestrator.run_episode("chat", MESSAGES)
    await orchestrator.publisher.flush()

    assert result.status is EpisodeStatus.FAILED
    assert result.error == "Sorry, there was an error from the AI: [Request ID: req-9] provider down"
    assert result.states[-1] is EpisodeState.FAILED
    [error] = observer.of_type("error")
    assert error.message == result.error
    assert observer.of_type("end") == []
    assert event_sink.tail(1)[0]["request_id"] == "req-9"
    assert not orchestrator.registry.is_active("chat")
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_episode_releases_shared_state() -> None:
    orchestrator, _ = _orchestrator(ScriptedModelClient([[text("hello")]]))

    await orchestrator.run_episode("chat", MESSAGES)

    assert not orchestrator.registry.is_active("chat")
    assert len(orchestrator.registry) == 0
    assert len(orchestrator.partials) == 0
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_new_episode_after_cancellation_gets_fresh_token() -> None:
    client = ScriptedModelClient([[text("one")], [text("two")]])
    orchestrator, _ = _orchestrator(client)

    def abort(transcript: str) -> str:
        orchestrator.cancel("chat")
        return transcript

    first = await orchestrator.run_episode("chat", MESSAGES, on_update=abort)
    second = await orchestrator.run_episode("chat", MESSAGES)

    assert first.cancelled
    assert second.succeeded
    assert client.calls[0]["cancel_token"] is not client.calls[1]["cancel_token"]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_prepare_messages_uses_config() -> None:
    orchestrator, _ = _orchestrator(ScriptedModelClient(), config=EpisodeConfig(chat_mode="ask"))
    history = [{"role": "user", "content": "q"}, {"role": "assistant", "content": 'a <write path="x">y</write>'}]

    messages = orchestrator.prepare_messages(history, codebase="code", system_prompt="sys")

    assert messages[0] == {"role": "system", "content": "sys"}
    assert messages[-1] == {"role": "assistant", "content": "a"}
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_closed_orchestrator_rejects_new_episodes() -> None:
    orchestrator, _ = _orchestrator(ScriptedModelClient())

    await orchestrator.aclose()
    await orchestrator.aclose()

    with pytest.raises(RuntimeError):
        await orchestrator.run_episode("chat", MESSAGES)


@pytest.mark.asyncio
async def test_unexpected_client_error_fails_episode(event_sink) -> None:
    client = ScriptedModelClient([[text("partial"), RuntimeError("socket reset")]])
    orchestrator, observer = _orchestrator(client)

    result = await orchestrator.run_episode("chat", MESSAGES)
    await orchestrator.publisher.flush()

    assert result.status is EpisodeStatus.FAILED
    assert result.error == "Sorry, there was an error from the AI: socket reset"
    assert result.content == "partial"
    assert len(observer.of_type("error")) == 1
    assert event_sink.names()[-1] == telemetry.EPISODE_FAILED
    assert not orchestrator.registry.is_active("chat")
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_failed_fix_stream_never_retracts_checkpoints(app_root: Path) -> None:
    client = ScriptedModelClient(
        [
            [text('<write path="src/app.py">broken(</write>')],
            [text("Fixing now "), text("more"), RuntimeError("boom")],
        ]
    )
    orchestrator, observer = _orchestrator(client, analyzer=ScriptedAnalyzer([make_report(1)]))

    result = await orchestrator.run_episode("chat", MESSAGES, app_root=app_root)
    await orchestrator.publisher.flush()

    assert result.status is EpisodeStatus.COMPLETED
    assert result.content.endswith("</problem-report>Fixing now more")
    assert [write.content for write in result.edits.writes] == ["broken("]
    seen = observer.transcripts()
    assert seen[-1] == result.content
    assert all(later.startswith(earlier) for earlier, later in zip(seen, seen[1:]))
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_failed_continuation_keeps_streamed_text() -> None:
    client = ScriptedModelClient(
        [
            [text('<write path="a.ts">x')],
            [text("yz"), ModelClientError("provider down")],
        ]
    )
    orchestrator, observer = _orchestrator(client)

    result = await orchestrator.run_episode("chat", MESSAGES)
    await orchestrator.publisher.flush()

    assert result.status is EpisodeStatus.FAILED
    assert result.content == '<write path="a.ts">xyz'
    seen = observer.transcripts()
    assert seen[-1] == result.content
    assert all(later.startswith(earlier) for earlier, later in zip(seen, seen[1:]))
    await orchestrator.aclose()
