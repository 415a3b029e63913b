"""会话状态。"""

from typing import List, Optional

from byok_chat.domain.exceptions import ValidationError
from byok_chat.domain.models import Message
from byok_chat.engine.transcript import TranscriptStore


class ChatSession:
    """一个正在进行的对话。

    - thread_id: 后端分配的会话标识；首次完成的对话后设置，之后不可更改。
    - active_generation_id: 进行中的生成 id（同时也是占位助手消息的 id）。
    - provider/model: 下一轮新对话默认使用的模型选择。
    """

    def __init__(
        self,
        provider: str,
        model: str,
        thread_id: Optional[str] = None,
        transcript: Optional[TranscriptStore] = None,
    ):
        self.transcript = transcript or TranscriptStore()
        self._thread_id = thread_id
        self.active_generation_id: Optional[str] = None
        self.provider = provider
        self.model = model

    @property
    def thread_id(self) -> Optional[str]:
        return self._thread_id

    @property
    def messages(self) -> List[Message]:
        return self.transcript.messages

    @property
    def is_generating(self) -> bool:
        return self.active_generation_id is not None

    def select_model(self, provider: str, model: str) -> None:
        """切换下一轮对话使用的 provider/model，不影响进行中的生成。"""

        if not provider or not model:
            raise ValidationError(code="INVALID_MODEL", message="provider and model are required")
        self.provider = provider
        self.model = model

    def _assign_thread_id(self, thread_id: str) -> None:
        # 仅供 ThreadBinder 调用
        if self._thread_id is not None:
            raise ValidationError(code="THREAD_ALREADY_BOUND", message=f"Session already bound to {self._thread_id}")
        self._thread_id = thread_id
