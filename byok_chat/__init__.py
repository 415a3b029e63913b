"""BYOK Chat 顶层包。

该包提供“自带 Key”聊天客户端的核心实现：流式会话引擎
（会话记录、SSE 解码、生成控制、重试与 thread 绑定），
以及配置加载、后端 HTTP 适配、本地 API Key 存储与日志等能力。
"""

from byok_chat.engine import ChatEngine

__all__ = ["ChatEngine"]
