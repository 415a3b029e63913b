"""会话记录存储。

TranscriptStore 是 Session.messages 的唯一持有者，提供纯数据层面的变更操作：

- append / insert_after: 追加消息，或紧跟某条消息插入（重试时使用）。
- update_content: 用完整的新内容替换流式消息的 content。
- mark_complete: 结束流式状态，之后内容冻结。
- remove: 移除消息，其余消息相对顺序不变。
- message_before: 查找某条消息之前的一条。

按 id 的查找与变更都是 O(1)：消息保存在 dict 中，顺序通过前驱/后继链接维护，
插入顺序不会被重新排序。每次变更后向订阅者发送 TranscriptChange。
"""

from dataclasses import replace
from typing import Callable, Dict, Iterable, Iterator, List, Optional
from uuid import uuid4

from byok_chat.domain.exceptions import BusinessError, ValidationError
from byok_chat.domain.models import Message, TranscriptChange


TranscriptListener = Callable[[TranscriptChange], None]


class TranscriptStore:
    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._messages: Dict[str, Message] = {}
        self._prev: Dict[str, Optional[str]] = {}
        self._next: Dict[str, Optional[str]] = {}
        self._head: Optional[str] = None
        self._tail: Optional[str] = None
        self._streaming_id: Optional[str] = None
        self._listeners: List[TranscriptListener] = []
        for message in messages or ():
            self._link_last(self._check_new(message))

    # ---- 查询 ----

    @staticmethod
    def new_message_id() -> str:
        return f"m-{uuid4().hex}"

    def get(self, message_id: str) -> Message:
        try:
            return self._messages[message_id]
        except KeyError:
            raise BusinessError(code="MESSAGE_NOT_FOUND", message=message_id, http_status=404)

    def message_before(self, message_id: str) -> Optional[Message]:
        self.get(message_id)
        prev_id = self._prev[message_id]
        return self._messages[prev_id] if prev_id else None

    def streaming_message(self) -> Optional[Message]:
        if self._streaming_id is None:
            return None
        return self._messages[self._streaming_id]

    @property
    def messages(self) -> List[Message]:
        return list(self)

    def __iter__(self) -> Iterator[Message]:
        current = self._head
        while current is not None:
            yield self._messages[current]
            current = self._next[current]

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    # ---- 变更 ----

    def append(self, message: Message) -> Message:
        self._link_last(self._check_new(message))
        self._emit(TranscriptChange(kind="append", message_id=message.id, message=message))
        return message

    def insert_after(self, anchor_id: str, message: Message) -> Message:
        self.get(anchor_id)
        self._check_new(message)
        after = self._next[anchor_id]
        self._messages[message.id] = message
        self._track_streaming(message)
        self._prev[message.id] = anchor_id
        self._next[message.id] = after
        self._next[anchor_id] = message.id
        if after is None:
            self._tail = message.id
        else:
            self._prev[after] = message.id
        self._emit(TranscriptChange(kind="append", message_id=message.id, message=message))
        return message

    def update_content(self, message_id: str, content: str) -> Message:
        current = self.get(message_id)
        if not current.is_streaming:
            raise ValidationError(
                code="MESSAGE_FROZEN",
                message=f"Message {message_id} is complete and can no longer change",
            )
        updated = replace(current, content=content)
        self._messages[message_id] = updated
        self._emit(TranscriptChange(kind="update", message_id=message_id, message=updated))
        return updated

    def mark_complete(self, message_id: str) -> Message:
        current = self.get(message_id)
        updated = replace(current, is_streaming=False)
        self._messages[message_id] = updated
        if self._streaming_id == message_id:
            self._streaming_id = None
        self._emit(TranscriptChange(kind="complete", message_id=message_id, message=updated))
        return updated

    def remove(self, message_id: str) -> Message:
        removed = self.get(message_id)
        before, after = self._prev.pop(message_id), self._next.pop(message_id)
        del self._messages[message_id]
        if self._streaming_id == message_id:
            self._streaming_id = None
        if before is None:
            self._head = after
        else:
            self._next[before] = after
        if after is None:
            self._tail = before
        else:
            self._prev[after] = before
        self._emit(TranscriptChange(kind="remove", message_id=message_id, message=removed))
        return removed

    def reset(self, messages: Iterable[Message] = ()) -> None:
        """整体替换会话记录（加载已有 thread 时使用）。"""

        self._messages.clear()
        self._prev.clear()
        self._next.clear()
        self._head = self._tail = None
        self._streaming_id = None
        for message in messages:
            self._link_last(self._check_new(message))
        self._emit(TranscriptChange(kind="reset"))

    # ---- 订阅 ----

    def subscribe(self, listener: TranscriptListener) -> Callable[[], None]:
        """注册变更监听器，返回取消订阅函数。"""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- 内部 ----

    def _check_new(self, message: Message) -> Message:
        if message.id in self._messages:
            raise ValidationError(code="DUPLICATE_MESSAGE", message=f"Message {message.id} already exists")
        if message.is_streaming:
            streaming = self.streaming_message()
            if streaming is not None:
                raise ValidationError(
                    code="STREAMING_CONFLICT",
                    message=f"Message {streaming.id} is still streaming",
                )
        return message

    def _link_last(self, message: Message) -> None:
        self._messages[message.id] = message
        self._track_streaming(message)
        self._prev[message.id] = self._tail
        self._next[message.id] = None
        if self._tail is None:
            self._head = message.id
        else:
            self._next[self._tail] = message.id
        self._tail = message.id

    def _track_streaming(self, message: Message) -> None:
        if message.is_streaming:
            self._streaming_id = message.id

    def _emit(self, change: TranscriptChange) -> None:
        for listener in list(self._listeners):
            listener(change)
