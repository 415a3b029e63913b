"""Minimal demonstration of a streaming chat turn."""

from byok_chat.api.service import get_default_engine

if __name__ == "__main__":
    engine = get_default_engine()
    question = "用三句话介绍一下你自己"
    gid = engine.start(question)
    print("User:", question)
    print("Assistant: ", end="", flush=True)
    for event in engine.stream(gid):
        text = getattr(event, "text", None)
        if text:
            print(text, end="", flush=True)
    print()
    print("Thread:", engine.session.thread_id)
