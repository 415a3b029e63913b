"""SSE 流解码器。

把后端 /chat 返回的原始字节块解码为 StreamEvent 序列：

- 输入按行切分；只有以 "data: " 开头的行有意义，其余行（空行、event:、注释）直接忽略。
- "data: " 之后是一条 JSON 记录，可选字段 content / done / thread_id / error。
- 单条记录格式错误不会终止流：丢弃该行、记录日志、继续处理下一行。
- error 产出 Failure 并终止本次请求的逻辑流；done=true 产出 Completion 同样终止。
- CancellationToken 一旦被触发，解码器立即停止产出事件，即使缓冲区里还有未处理的字节。

每个请求使用一个新的解码器实例。流结束但没有 Completion/Failure 的情况由调用方处理。
"""

import codecs
import json
import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional

from byok_chat.domain.exceptions import ProtocolError
from byok_chat.domain.models import Completion, ContentDelta, Failure, StreamEvent
from byok_chat.infrastructure.logging.logger import logger


DATA_PREFIX = "data: "


class CancellationToken:
    """协作式取消标记，由控制器与解码器共享。"""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def parse_record(payload: str) -> List[StreamEvent]:
    """解析一条 data 记录，返回其中包含的事件（按 error > content > done 的优先级）。

    Raises:
        ProtocolError: JSON 无法解析、不是对象或字段类型不符。
    """

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolError(code="MALFORMED_RECORD", message=f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ProtocolError(code="MALFORMED_RECORD", message="Record is not a JSON object")

    content = _typed_field(data, "content", str)
    done = _typed_field(data, "done", bool)
    thread_id = _typed_field(data, "thread_id", str)
    error = _typed_field(data, "error", str)

    if error:
        return [Failure(message=error)]
    events: List[StreamEvent] = []
    if content:
        events.append(ContentDelta(text=content))
    if done:
        events.append(Completion(thread_id=thread_id or None))
    return events


def _typed_field(data: Dict[str, Any], name: str, expected: type) -> Any:
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, expected):
        raise ProtocolError(
            code="MALFORMED_RECORD",
            message=f"Field {name!r} should be {expected.__name__}, got {type(value).__name__}",
        )
    return value


class StreamDecoder:
    """增量解码器：feed() 接收字节块，flush() 处理流末尾未换行的残余数据。"""

    def __init__(self, cancel_token: Optional[CancellationToken] = None, log_ctx: Optional[Dict[str, Any]] = None):
        self._token = cancel_token or CancellationToken()
        self._log_ctx = dict(log_ctx or {})
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.finished = False
        self.malformed_count = 0

    @property
    def stopped(self) -> bool:
        return self.finished or self._token.cancelled

    def feed(self, chunk: bytes) -> Iterator[StreamEvent]:
        if self.stopped:
            return
        self._buffer += self._text.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            yield from self._decode_line(line)
            if self.stopped:
                self._buffer = ""
                return

    def flush(self) -> Iterator[StreamEvent]:
        if self.stopped:
            return
        rest = self._buffer + self._text.decode(b"", final=True)
        self._buffer = ""
        if rest:
            yield from self._decode_line(rest)

    def decode(self, chunks: Iterable[bytes]) -> Iterator[StreamEvent]:
        """惰性解码整个字节块序列。"""

        for chunk in chunks:
            yield from self.feed(chunk)
            if self.stopped:
                return
        yield from self.flush()

    def _decode_line(self, line: str) -> Iterator[StreamEvent]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return
        try:
            events = parse_record(line[len(DATA_PREFIX):])
        except ProtocolError as e:
            self.malformed_count += 1
            payload = dict(self._log_ctx)
            payload.update({"error": e.message, "line": line[:200]})
            logger.log(logging.WARNING, "Dropped malformed stream record", extra={"extra": payload})
            return
        for event in events:
            # 取消后缓冲区中剩余的事件一律丢弃
            if self._token.cancelled:
                return
            if isinstance(event, (Completion, Failure)):
                self.finished = True
            yield event
            if self.finished:
                return
