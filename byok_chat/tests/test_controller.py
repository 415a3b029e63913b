import pytest

from byok_chat.domain.exceptions import (
    ApiError,
    AuthRequired,
    BusinessError,
    GenerationBusyError,
    GenerationCancelled,
    MissingApiKey,
    NetworkError,
    ServerSignaledError,
    StreamInterruptedError,
    ValidationError,
)
from byok_chat.domain.models import Completion, ContentDelta, GenerationState


def _roles_and_content(engine):
    return [(m.role, m.content) for m in engine.messages]


def test_send_streams_reply_and_binds_thread(engine, backend, conversations):
    backend.queue(
        'data: {"content":"Hi"}',
        'data: {"content":" there"}',
        'data: {"done":true,"thread_id":"t1"}',
    )
    assistant = engine.send("hello", provider="openai", model="gpt-4")

    assert _roles_and_content(engine) == [("user", "hello"), ("assistant", "Hi there")]
    assert assistant.is_streaming is False
    assert assistant.provider == "openai"
    assert assistant.model == "gpt-4"
    assert engine.session.thread_id == "t1"
    assert engine.session.active_generation_id is None
    assert conversations.created == ["t1"]

    req, token = backend.requests[0]
    assert token == "token-123"
    assert req.message == "hello"
    assert req.thread_id is None
    assert (req.provider, req.model) == ("openai", "gpt-4")


def test_placeholder_is_streaming_until_completion(engine, backend):
    backend.queue('data: {"content":"Hi"}', 'data: {"done":true}')
    gid = engine.start("hello")
    generation = engine.generation(gid)
    assert generation.state is GenerationState.REQUESTING
    placeholder = engine.messages[-1]
    assert placeholder.id == gid == engine.session.active_generation_id
    assert placeholder.is_streaming and placeholder.content == ""

    events = engine.stream(gid)
    assert next(events) == ContentDelta("Hi")
    assert generation.state is GenerationState.STREAMING
    assert engine.messages[-1].content == "Hi"
    assert engine.messages[-1].is_streaming

    assert list(events) == [Completion(None)]
    assert generation.state is GenerationState.COMPLETED
    assert engine.messages[-1].is_streaming is False


def test_connection_drop_removes_placeholder(engine, backend):
    backend.queue('data: {"content":"Hi"}')
    gid = engine.start("hello", provider="openai", model="gpt-4")
    assert len(engine.messages) == 2

    with pytest.raises(StreamInterruptedError):
        engine.wait(gid)

    assert _roles_and_content(engine) == [("user", "hello")]
    assert engine.session.active_generation_id is None
    assert engine.generation(gid).state is GenerationState.FAILED
    assert engine.session.thread_id is None


def test_server_error_is_reported(engine, backend):
    stream = backend.queue('data: {"content":"partial"}', 'data: {"error":"Invalid API key"}')
    gid = engine.start("hello")
    with pytest.raises(ServerSignaledError) as exc:
        engine.wait(gid)
    assert exc.value.message == "Invalid API key"
    assert _roles_and_content(engine) == [("user", "hello")]
    assert stream.closed


def test_transport_error_mid_stream(engine, backend):
    backend.queue('data: {"content":"Hi"}', error=NetworkError(code="NETWORK_ERROR", message="reset"))
    gid = engine.start("hello")
    with pytest.raises(NetworkError):
        engine.wait(gid)
    assert _roles_and_content(engine) == [("user", "hello")]


def test_non_2xx_fails_synchronously(engine, backend):
    backend.fail_next_open(ApiError(code="API_ERROR", message="HTTP error! status: 500", http_status=500))
    with pytest.raises(ApiError):
        engine.start("hello")
    assert _roles_and_content(engine) == [("user", "hello")]
    assert engine.session.active_generation_id is None


def test_malformed_line_does_not_change_content(engine, backend):
    backend.queue(
        'data: {"content":"Hi"}',
        "data: {oops",
        'data: {"content":" there"}',
        'data: {"done":true}',
    )
    assert engine.send("hello").content == "Hi there"


def test_start_while_active_is_rejected(engine, backend):
    backend.queue('data: {"content":"Hi"}', 'data: {"done":true}')
    gid = engine.start("hello")
    before = engine.messages

    with pytest.raises(GenerationBusyError) as exc:
        engine.start("second")
    assert exc.value.code == "GENERATION_ACTIVE"
    assert engine.messages == before
    assert len(backend.requests) == 1
    engine.wait(gid)


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_empty_input_is_rejected(engine, backend, text):
    with pytest.raises(ValidationError):
        engine.start(text)
    assert engine.messages == []
    assert backend.requests == []


def test_missing_token_is_rejected(engine, backend, credentials):
    credentials.clear()
    with pytest.raises(AuthRequired):
        engine.start("hello")
    assert engine.messages == []
    assert backend.requests == []


def test_missing_api_key_is_rejected(engine, backend):
    with pytest.raises(MissingApiKey):
        engine.start("hello", provider="cohere", model="command")
    assert engine.messages == []
    assert backend.requests == []


def test_cancel_mid_stream(engine, backend):
    stream = backend.queue('data: {"content":"Hi"}', 'data: {"content":" there"}', 'data: {"done":true}')
    gid = engine.start("hello")
    events = engine.stream(gid)
    assert next(events) == ContentDelta("Hi")

    assert engine.cancel(gid) is True
    assert list(events) == []
    assert stream.closed
    assert engine.generation(gid).state is GenerationState.CANCELLED
    assert _roles_and_content(engine) == [("user", "hello")]
    assert engine.session.active_generation_id is None
    assert engine.cancel(gid) is False


def test_wait_after_cancel_raises(engine, backend):
    backend.queue('data: {"content":"Hi"}')
    gid = engine.start("hello")
    engine.cancel(gid)
    with pytest.raises(GenerationCancelled):
        engine.wait(gid)


def test_abandoned_stream_is_cancelled(engine, backend):
    backend.queue('data: {"content":"Hi"}', 'data: {"done":true}')
    gid = engine.start("hello")
    events = engine.stream(gid)
    next(events)
    events.close()
    assert engine.generation(gid).state is GenerationState.CANCELLED
    assert engine.session.active_generation_id is None


def test_second_turn_reuses_bound_thread(engine, backend, conversations):
    backend.queue('data: {"content":"a"}', 'data: {"done":true,"thread_id":"t1"}')
    backend.queue('data: {"content":"b"}', 'data: {"done":true,"thread_id":"t2"}')
    engine.send("one")
    engine.send("two")
    assert backend.requests[1][0].thread_id == "t1"
    assert engine.session.thread_id == "t1"
    assert conversations.created == ["t1"]
    assert _roles_and_content(engine) == [
        ("user", "one"), ("assistant", "a"), ("user", "two"), ("assistant", "b"),
    ]


def test_open_existing_thread_loads_history(engine, backend):
    from byok_chat.domain.models import Message

    backend.thread_messages["t7"] = [
        Message(id="1", role="user", content="old question"),
        Message(id="2", role="assistant", content="old answer"),
    ]
    session = engine.open_session("t7")
    assert session.thread_id == "t7"
    assert [m.content for m in engine.messages] == ["old question", "old answer"]

    backend.queue('data: {"content":"new"}', 'data: {"done":true}')
    engine.send("follow up")
    assert backend.requests[-1][0].thread_id == "t7"


def test_open_session_keeps_running_generation_cancellable(engine, backend):
    stream = backend.queue('data: {"content":"Hi"}', 'data: {"done":true}')
    gid = engine.start("hello")
    previous = engine.session

    engine.open_session()

    assert engine.generation(gid).state is GenerationState.REQUESTING
    assert engine.cancel(gid) is True
    assert stream.closed
    assert previous.active_generation_id is None
    assert [(m.role, m.is_streaming) for m in previous.messages] == [("user", False)]
    assert engine.messages == []


def test_generation_from_previous_session_completes_there(engine, backend, conversations):
    backend.queue('data: {"content":"Hi"}', 'data: {"done":true,"thread_id":"t1"}')
    gid = engine.start("hello")
    previous = engine.session

    engine.open_session()
    assistant = engine.wait(gid)

    assert assistant.content == "Hi"
    assert previous.thread_id == "t1"
    assert previous.active_generation_id is None
    assert engine.session.thread_id is None
    assert engine.messages == []
    assert conversations.created == ["t1"]


def test_completion_records_key_usage(engine, backend, key_lookup):
    backend.queue('data: {"content":"Hi"}', 'data: {"done":true}')
    engine.send("hello", provider="anthropic", model="claude-3-haiku")
    backend.queue('data: {"content":"x"}')
    with pytest.raises(StreamInterruptedError):
        engine.send("again", provider="anthropic", model="claude-3-haiku")
    assert key_lookup.usage == {"anthropic": 1}


def test_finished_generations_are_pruned(engine, backend):
    from byok_chat.engine.controller import MAX_FINISHED_GENERATIONS

    ids = []
    for i in range(MAX_FINISHED_GENERATIONS + 5):
        backend.queue(f'data: {{"content":"{i}"}}', 'data: {"done":true}')
        ids.append(engine.send(f"q{i}").id)

    assert len([gid for gid in ids if gid in engine.controller]) == MAX_FINISHED_GENERATIONS + 1
    assert ids[-1] in engine.controller
    with pytest.raises(BusinessError) as exc:
        engine.generation(ids[0])
    assert exc.value.code == "GENERATION_NOT_FOUND"
    assert engine.generation(ids[-1]).stream is None
