import pytest

from byok_chat.domain.exceptions import (
    GenerationBusyError,
    InvalidRetryTarget,
    MissingApiKey,
    StreamInterruptedError,
    ValidationError,
)


def _first_exchange(engine, backend):
    backend.queue(
        'data: {"content":"Hi"}',
        'data: {"content":" there"}',
        'data: {"done":true,"thread_id":"t1"}',
    )
    return engine.send("hello", provider="openai", model="gpt-4")


def test_retry_with_different_model_replaces_turn(engine, backend):
    first = _first_exchange(engine, backend)
    backend.queue('data: {"content":"Hello from Claude"}', 'data: {"done":true,"thread_id":"t1"}')

    gid = engine.retry_with_model(first.id, "anthropic", "claude-3-haiku")
    assistant = engine.wait(gid)

    messages = engine.messages
    assert [(m.role, m.content) for m in messages] == [("user", "hello"), ("assistant", "Hello from Claude")]
    assert (assistant.provider, assistant.model) == ("anthropic", "claude-3-haiku")
    assert first.id not in [m.id for m in messages]
    assert "Hi there" not in "".join(m.content for m in messages)
    assert (engine.session.provider, engine.session.model) == ("anthropic", "claude-3-haiku")

    req, _ = backend.requests[-1]
    assert req.message == "hello"
    assert req.thread_id == "t1"
    assert (req.provider, req.model) == ("anthropic", "claude-3-haiku")


def test_failed_divert_keeps_default_model(engine, backend):
    first = _first_exchange(engine, backend)
    backend.queue('data: {"content":"partial"}')

    gid = engine.retry_with_model(first.id, "anthropic", "claude-3-haiku")
    with pytest.raises(StreamInterruptedError):
        engine.wait(gid)

    assert [(m.role, m.content) for m in engine.messages] == [("user", "hello")]
    assert (engine.session.provider, engine.session.model) == ("openai", "gpt-4")


def test_retry_same_model_uses_session_selection(engine, backend):
    first = _first_exchange(engine, backend)
    engine.select_model("anthropic", "claude-3-opus")
    backend.queue('data: {"content":"again"}', 'data: {"done":true}')

    assistant = engine.wait(engine.retry_same_model(first.id))

    assert (assistant.provider, assistant.model) == ("anthropic", "claude-3-opus")
    assert [(m.role, m.content) for m in engine.messages] == [("user", "hello"), ("assistant", "again")]


def test_retry_older_turn_keeps_pairing(engine, backend):
    first = _first_exchange(engine, backend)
    backend.queue('data: {"content":"second answer"}', 'data: {"done":true}')
    engine.send("second question")
    backend.queue('data: {"content":"regenerated"}', 'data: {"done":true}')

    engine.wait(engine.retry_same_model(first.id))

    assert [(m.role, m.content) for m in engine.messages] == [
        ("user", "hello"),
        ("assistant", "regenerated"),
        ("user", "second question"),
        ("assistant", "second answer"),
    ]


def test_retry_rejects_invalid_targets(engine, backend):
    _first_exchange(engine, backend)
    user_id = engine.messages[0].id
    before = engine.messages

    with pytest.raises(InvalidRetryTarget):
        engine.retry_same_model(user_id)
    with pytest.raises(InvalidRetryTarget):
        engine.retry_same_model("m-missing")
    assert engine.messages == before


def test_retry_while_generating_is_rejected(engine, backend):
    first = _first_exchange(engine, backend)
    backend.queue('data: {"content":"x"}', 'data: {"done":true}')
    gid = engine.start("another")
    before = engine.messages

    with pytest.raises(GenerationBusyError):
        engine.retry_with_model(first.id, "anthropic", "claude-3-haiku")
    assert engine.messages == before
    engine.wait(gid)


def test_retry_with_unknown_model_is_rejected(engine, backend):
    first = _first_exchange(engine, backend)
    before = engine.messages
    with pytest.raises(ValidationError) as exc:
        engine.retry_with_model(first.id, "anthropic", "gpt-4")
    assert exc.value.code == "MODEL_UNAVAILABLE"
    assert engine.messages == before


def test_retry_without_key_leaves_transcript_unchanged(engine, backend):
    first = _first_exchange(engine, backend)
    before = engine.messages
    with pytest.raises(MissingApiKey):
        engine.retry_with_model(first.id, "google", "gemini-pro")
    assert engine.messages == before
    assert len(backend.requests) == 1


def test_alternatives_exclude_current_model(engine, backend):
    first = _first_exchange(engine, backend)
    options = engine.retry_alternatives(first.id)
    assert ("openai", "gpt-4") not in options
    assert ("anthropic", "claude-3-haiku") in options


def test_prepare_derives_retry_request(engine, backend):
    first = _first_exchange(engine, backend)
    request = engine.retry.prepare(first.id, "anthropic", "claude-3-sonnet")
    assert request.target_message_id == first.id
    assert request.user_text == "hello"
    assert request.user_message_id == engine.messages[0].id
    assert (request.provider, request.model) == ("anthropic", "claude-3-sonnet")
