"""聊天后端集成层。

该包下的模块负责：
- 定义后端抽象接口 (base)。
- 维护 provider 与模型目录 (registry)。
- 提供基于 httpx 的具体实现 (http_client)。
"""

from typing import Optional

from byok_chat.config.settings import settings
from byok_chat.backend.base import ChatBackend, ChatStream
from byok_chat.backend.http_client import HttpChatBackend
from byok_chat.backend.registry import ModelCatalog


def create_backend(cfg: Optional[object] = None) -> ChatBackend:
    """根据配置创建后端客户端实例。"""

    return HttpChatBackend(cfg or settings)


__all__ = ["ChatBackend", "ChatStream", "HttpChatBackend", "ModelCatalog", "create_backend"]
