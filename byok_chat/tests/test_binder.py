from byok_chat.engine.binder import ThreadBinder
from byok_chat.engine.session import ChatSession


class Conversations:
    def __init__(self):
        self.created = []

    def notify_thread_created(self, thread_id):
        self.created.append(thread_id)


def test_bind_if_unset_first_bind_wins():
    session = ChatSession(provider="openai", model="gpt-4")
    conversations = Conversations()
    binder = ThreadBinder(session, conversations)

    assert binder.bind_if_unset("t1") is True
    assert session.thread_id == "t1"
    assert binder.bind_if_unset("t1") is False
    assert binder.bind_if_unset("t2") is False
    assert session.thread_id == "t1"
    assert conversations.created == ["t1"]


def test_bind_ignores_empty_candidate():
    session = ChatSession(provider="openai", model="gpt-4")
    binder = ThreadBinder(session)
    assert binder.bind_if_unset(None) is False
    assert binder.bind_if_unset("") is False
    assert session.thread_id is None


def test_existing_thread_is_never_rebound():
    session = ChatSession(provider="openai", model="gpt-4", thread_id="t-old")
    conversations = Conversations()
    assert ThreadBinder(session, conversations).bind_if_unset("t-new") is False
    assert session.thread_id == "t-old"
    assert conversations.created == []
