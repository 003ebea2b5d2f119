import asyncio
from itertools import groupby

import pytest

from gpplus.core.config import Settings
from gpplus.core.exceptions import SessionDisposedError
from gpplus.conversation.replies import GENERIC_ILLNESS, SORE_THROAT_QUESTION
from gpplus.conversation.session import ChatSession
from gpplus.voice.models import Author, ChatMessage, VoiceState
from gpplus.voice.permissions import StaticPermissionGate


@pytest.fixture
def session(provider_factory, settings, permission_gate, stub_metrics):
    return ChatSession(
        provider_factory,
        settings=settings,
        permission_gate=permission_gate,
        session_id="test-session",
        metrics=stub_metrics,
    )


def _states(snapshots):
    return [state for state, _ in groupby(snapshot.state for snapshot in snapshots)]


@pytest.mark.asyncio
async def test_spoken_symptoms_get_a_reply(session, provider):
    snapshots = []
    session.subscribe_snapshots(snapshots.append)

    session.mic_tapped()
    provider.ready()
    provider.partial("I have a fever")
    await session.settle()
    assert session.snapshot.live_transcript == "I have a fever"
    assert session.snapshot.label == "I have a fever"

    provider.final("I have a fever and a headache")
    await session.settle()

    assert session.messages == (
        ChatMessage(Author.USER, "I have a fever and a headache"),
        ChatMessage(Author.ASSISTANT, GENERIC_ILLNESS),
    )
    assert session.snapshot.state is VoiceState.IDLE
    assert session.snapshot.live_transcript is None
    assert _states(snapshots) == [VoiceState.LISTENING, VoiceState.PROCESSING, VoiceState.IDLE]
    assert provider.start_kwargs == [{"language": "en-GB", "partial_results": True}]
    await session.aclose()


@pytest.mark.asyncio
async def test_stop_then_final_is_answered(session, provider):
    session.mic_tapped()
    snapshot = session.stop_listening()

    assert snapshot.state is VoiceState.PROCESSING
    assert provider.count("stop") == 1

    provider.final("sore throat")
    await session.settle()

    assert session.messages[-1] == ChatMessage(Author.ASSISTANT, SORE_THROAT_QUESTION)
    assert session.snapshot.state is VoiceState.IDLE
    await session.aclose()


@pytest.mark.asyncio
async def test_empty_final_adds_no_messages(session, provider, stub_metrics):
    session.mic_tapped()
    provider.final("   ")
    await session.settle()

    assert session.messages == ()
    assert session.snapshot.state is VoiceState.IDLE
    assert session.snapshot.error_message is None
    assert stub_metrics.count("utterance", "empty") == 1
    await session.aclose()


@pytest.mark.asyncio
async def test_recognizer_error_returns_to_idle_and_clears_on_next_tap(session, provider, stub_metrics):
    session.mic_tapped()
    provider.error(7)
    await session.settle()

    assert session.snapshot.state is VoiceState.IDLE
    assert session.snapshot.error_message == "ASR error: 7"
    assert session.messages == ()
    assert stub_metrics.count("recognition_error") == 1

    session.mic_tapped()
    assert session.snapshot.state is VoiceState.LISTENING
    assert session.snapshot.error_message is None
    assert provider.count("start") == 2
    await session.aclose()


@pytest.mark.asyncio
async def test_typed_text_is_answered_without_listening(session, provider):
    session.submit_text("  sore throat ")
    await session.settle()

    assert session.messages == (
        ChatMessage(Author.USER, "sore throat"),
        ChatMessage(Author.ASSISTANT, SORE_THROAT_QUESTION),
    )
    assert session.snapshot.state is VoiceState.IDLE
    assert provider.calls == []
    await session.aclose()


@pytest.mark.asyncio
async def test_permission_denied_requests_prompt_without_touching_recognizer(
    provider_factory, provider, settings, stub_metrics
):
    gate = StaticPermissionGate(granted=False)
    session = ChatSession(provider_factory, settings=settings, permission_gate=gate, metrics=stub_metrics)

    snapshot = session.mic_tapped()

    assert snapshot.state is VoiceState.IDLE
    assert gate.requests == 1
    assert provider_factory.created == []

    gate.granted = True
    assert session.mic_tapped().state is VoiceState.LISTENING
    await session.aclose()


@pytest.mark.asyncio
async def test_auto_rearm_listens_again_after_reply(provider_factory, provider, permission_gate, stub_metrics):
    settings = Settings(REPLY_DELAY_MS=0, AUTO_REARM=True)
    session = ChatSession(provider_factory, settings=settings, permission_gate=permission_gate, metrics=stub_metrics)

    session.mic_tapped()
    provider.final("sore throat")
    await session.settle()

    assert len(session.messages) == 2
    assert session.snapshot.state is VoiceState.LISTENING
    assert provider.count("start") == 2
    await session.aclose()


@pytest.mark.asyncio
async def test_tap_while_awaiting_final_listens_after_reply(session, provider):
    session.mic_tapped()
    session.mic_tapped()
    session.mic_tapped()
    assert session.snapshot.state is VoiceState.PROCESSING

    provider.final("fever and headache")
    await session.settle()

    assert len(session.messages) == 2
    assert session.snapshot.state is VoiceState.LISTENING
    await session.aclose()


@pytest.mark.asyncio
async def test_dispose_suppresses_buffered_events(session, provider):
    snapshots = []
    session.subscribe_snapshots(snapshots.append)
    session.mic_tapped()
    delivered = len(snapshots)

    provider.partial("chest")
    provider.final("chest pain")
    session.dispose()
    await asyncio.sleep(0.01)

    assert len(snapshots) == delivered
    assert session.messages == ()
    assert provider.count("destroy") == 1
    assert session.disposed is True
    with pytest.raises(SessionDisposedError):
        session.mic_tapped()
    await session.aclose()


@pytest.mark.asyncio
async def test_dispose_cancels_pending_reply(provider_factory, provider, permission_gate, stub_metrics):
    settings = Settings(REPLY_DELAY_MS=10000)
    session = ChatSession(provider_factory, settings=settings, permission_gate=permission_gate, metrics=stub_metrics)

    session.submit_text("fever and headache")
    await asyncio.sleep(0.01)
    await asyncio.wait_for(session.aclose(), timeout=1.0)

    assert session.messages == (ChatMessage(Author.USER, "fever and headache"),)
    assert stub_metrics.count("turn_cancelled") == 1


@pytest.mark.asyncio
async def test_context_manager_disposes_session(provider_factory, provider, settings, stub_metrics):
    async with ChatSession(provider_factory, settings=settings, metrics=stub_metrics) as session:
        session.mic_tapped()

    assert session.disposed is True
    assert provider.count("destroy") == 1
    assert provider.count("cancel") == 1


@pytest.mark.asyncio
async def test_repeated_final_without_new_capture_is_answered_once(session, provider):
    session.mic_tapped()
    provider.final("I have a sore throat")
    provider.final("I have a sore throat")
    await session.settle()

    assert session.messages == (
        ChatMessage(Author.USER, "I have a sore throat"),
        ChatMessage(Author.ASSISTANT, SORE_THROAT_QUESTION),
    )
    assert session.snapshot.state is VoiceState.IDLE
    await session.aclose()


@pytest.mark.asyncio
async def test_recognizer_creation_failure_returns_to_idle(settings, permission_gate, stub_metrics):
    def unavailable():
        raise RuntimeError("recognizer unavailable")

    session = ChatSession(unavailable, settings=settings, permission_gate=permission_gate, metrics=stub_metrics)

    session.mic_tapped()
    await session.settle()

    assert session.snapshot.state is VoiceState.IDLE
    assert session.snapshot.error_message == "ASR error: recognizer unavailable"

    session.mic_tapped()
    await session.settle()

    assert session.snapshot.state is VoiceState.IDLE
    assert session.snapshot.error_message == "ASR error: recognizer unavailable"
    assert session.messages == ()
    await session.aclose()
