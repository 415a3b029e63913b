"""会话引擎共享的数据模型。

- Message: 会话记录中的一条消息（user/assistant）。
- ContentDelta / Completion / Failure: 解码器从流中产出的事件（StreamEvent）。
- ChatStreamRequest: 发给后端 /chat 的一次流式请求。
- RetryRequest: 从会话记录推导出的重试请求。
- TranscriptChange: TranscriptStore 在每次变更后发出的通知。

Message 是不可变的：TranscriptStore 在变更时替换实例，
因此其他组件即使持有引用也无法修改会话记录。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union


# 会话消息角色
Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """会话中的一条消息。

    - content: 流式生成期间只追加；is_streaming 变为 False 后冻结。
    - provider/model: 助手消息生成时使用的 provider 与模型，用于 UI 展示。
    """

    id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=utcnow)
    is_streaming: bool = False
    provider: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class ContentDelta:
    """一段增量文本。"""

    text: str


@dataclass(frozen=True)
class Completion:
    """生成正常结束；首轮对话时携带后端分配的 thread_id。"""

    thread_id: Optional[str] = None


@dataclass(frozen=True)
class Failure:
    """生成失败（后端 error 字段）。"""

    message: str


StreamEvent = Union[ContentDelta, Completion, Failure]


@dataclass(frozen=True)
class ChatStreamRequest:
    """一次 /chat 流式请求。

    后端负责按 provider 格式化请求，这里只携带逻辑参数。
    """

    message: str
    provider: str
    model: str
    thread_id: Optional[str] = None


@dataclass(frozen=True)
class RetryRequest:
    """对某条助手消息的重试请求。"""

    target_message_id: str
    provider: str
    model: str
    user_message_id: str
    user_text: str


class GenerationState(str, Enum):
    """单次生成的状态机。

    idle -> requesting -> streaming -> {completed | failed | cancelled}
    """

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationState.COMPLETED, GenerationState.FAILED, GenerationState.CANCELLED)


ChangeKind = Literal["append", "update", "complete", "remove", "reset"]


@dataclass(frozen=True)
class TranscriptChange:
    """TranscriptStore 的变更通知。

    kind 为 "remove" 时 message 是被移除的消息；"reset" 时 message_id/message 为空。
    """

    kind: ChangeKind
    message_id: Optional[str] = None
    message: Optional[Message] = None
