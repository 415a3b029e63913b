"""聊天后端抽象接口。

会话引擎不直接依赖 httpx，而是依赖此协议：

- ChatBackend 负责把 ChatStreamRequest 转成具体的 HTTP 请求，并返回可迭代字节块的 ChatStream。
- 非 2xx 响应、连接失败等在 open_chat_stream 内同步抛出 TransportError 子类。

测试中可以用内存实现替换，不需要真实网络。
"""

from typing import Iterator, List, Protocol

from byok_chat.domain.models import ChatStreamRequest, Message


class ChatStream(Protocol):
    """一次已经建立的流式响应。"""

    def iter_bytes(self) -> Iterator[bytes]:
        """逐块产出响应体原始字节。"""

        ...

    def close(self) -> None:
        """尽力中止底层传输；可重复调用。"""

        ...


class ChatBackend(Protocol):
    """聊天后端客户端协议。

    - name: 后端名称，用于日志。
    - open_chat_stream(req, token): 发起 POST /chat 流式请求。
    - fetch_thread_messages(thread_id, token): 读取已有 thread 的历史消息。
    """

    name: str

    def open_chat_stream(self, req: ChatStreamRequest, token: str) -> ChatStream:
        ...

    def fetch_thread_messages(self, thread_id: str, token: str) -> List[Message]:
        ...
