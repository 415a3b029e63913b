"""Pytest configuration and shared fixtures."""

from typing import Dict, List, Optional

import pytest

from byok_chat.backend.registry import ModelCatalog
from byok_chat.domain.exceptions import NetworkError
from byok_chat.domain.models import Message
from byok_chat.engine.chat_engine import ChatEngine
from byok_chat.infrastructure.credentials import StaticApiKeyLookup, StaticCredentialProvider


class FakeStream:
    """内存中的流式响应：按顺序产出预置字节块，可在末尾抛出错误。"""

    def __init__(self, chunks: List[bytes], error: Optional[Exception] = None):
        self._chunks = list(chunks)
        self._error = error
        self.closed = False

    def iter_bytes(self):
        for chunk in self._chunks:
            if self.closed:
                raise NetworkError(code="NETWORK_ERROR", message="stream closed")
            yield chunk
        if self._error is not None:
            raise self._error

    def close(self):
        self.closed = True


class FakeBackend:
    name = "fake"

    def __init__(self):
        self.requests = []
        self.streams: List[FakeStream] = []
        self.open_errors: List[Exception] = []
        self.thread_messages: Dict[str, List[Message]] = {}

    def queue(self, *lines: str, chunks: Optional[List[bytes]] = None, error: Optional[Exception] = None) -> FakeStream:
        stream = FakeStream(chunks if chunks is not None else [f"{line}\n".encode("utf-8") for line in lines], error)
        self.streams.append(stream)
        return stream

    def fail_next_open(self, error: Exception) -> None:
        self.open_errors.append(error)

    def open_chat_stream(self, req, token):
        self.requests.append((req, token))
        if self.open_errors:
            raise self.open_errors.pop(0)
        return self.streams.pop(0)

    def fetch_thread_messages(self, thread_id, token):
        return list(self.thread_messages.get(thread_id, []))


class RecordingConversations:
    def __init__(self):
        self.created: List[str] = []

    def notify_thread_created(self, thread_id: str) -> None:
        self.created.append(thread_id)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def credentials():
    return StaticCredentialProvider("token-123")


@pytest.fixture
def key_lookup():
    return StaticApiKeyLookup(["openai", "anthropic"])


@pytest.fixture
def conversations():
    return RecordingConversations()


@pytest.fixture
def engine(backend, credentials, key_lookup, conversations):
    return ChatEngine(
        backend=backend,
        credentials=credentials,
        key_lookup=key_lookup,
        catalog=ModelCatalog(),
        conversations=conversations,
        provider="openai",
        model="gpt-4",
    )
