"""流式会话引擎。

- transcript: 有序会话记录存储 (TranscriptStore)。
- decoder: SSE 字节流到 StreamEvent 的解码 (StreamDecoder)。
- controller: 单次生成的生命周期与取消 (GenerationController)。
- retry: 同模型/换模型重试 (RetryCoordinator)。
- binder: 后端 thread 绑定 (ThreadBinder)。
- chat_engine: 组装以上组件的门面 (ChatEngine)。
"""

from byok_chat.engine.chat_engine import ChatEngine
from byok_chat.engine.controller import Generation, GenerationController
from byok_chat.engine.decoder import CancellationToken, StreamDecoder
from byok_chat.engine.retry import RetryCoordinator
from byok_chat.engine.binder import ThreadBinder
from byok_chat.engine.session import ChatSession
from byok_chat.engine.transcript import TranscriptStore

__all__ = [
    "CancellationToken",
    "ChatEngine",
    "ChatSession",
    "Generation",
    "GenerationController",
    "RetryCoordinator",
    "StreamDecoder",
    "ThreadBinder",
    "TranscriptStore",
]
