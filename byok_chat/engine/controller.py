"""生成控制器。

负责单次生成（一次请求/响应）的完整生命周期：

1. start(): 校验输入与凭证，追加用户消息和流式占位助手消息，发起后端请求。
2. stream(): 读取响应字节，交给 StreamDecoder 解码，并把事件逐个应用到会话记录。
3. Completion: 结束流式状态、绑定 thread、清除 active_generation_id。
4. Failure / 连接中断 / cancel(): 移除占位助手消息（保留用户消息以便重试），
   清除 active_generation_id，并把错误上抛给调用方（取消除外）。

同一会话同一时刻最多只有一个进行中的生成：start() 在 active_generation_id
已设置时直接拒绝，且不修改任何状态。引擎不做自动重试，避免用用户自带的 Key 重复计费。
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional
from uuid import uuid4
import time
import logging

from byok_chat.backend.base import ChatBackend, ChatStream
from byok_chat.domain.collaborators import ApiKeyLookup, CredentialProvider
from byok_chat.domain.exceptions import (
    AuthRequired,
    BusinessError,
    GenerationBusyError,
    GenerationCancelled,
    InvalidRetryTarget,
    MissingApiKey,
    ServerSignaledError,
    StreamInterruptedError,
    ValidationError,
)
from byok_chat.domain.models import (
    ChatStreamRequest,
    Completion,
    ContentDelta,
    Failure,
    GenerationState,
    Message,
    StreamEvent,
)
from byok_chat.engine.binder import ThreadBinder
from byok_chat.engine.decoder import CancellationToken, StreamDecoder
from byok_chat.engine.session import ChatSession
from byok_chat.infrastructure.logging.logger import logger


# 已结束的生成只保留最近这么多条，供 generation() 查询状态
MAX_FINISHED_GENERATIONS = 32


@dataclass
class Generation:
    """一次生成的运行时状态。id 与占位助手消息的 id 相同。"""

    id: str
    user_message_id: str
    provider: str
    model: str
    thread_id: Optional[str] = None
    state: GenerationState = GenerationState.IDLE
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    error: Optional[BaseException] = None
    stream: Optional[ChatStream] = None
    on_complete: List[Callable[["Generation"], None]] = field(default_factory=list)
    trace_id: str = field(default_factory=lambda: f"tr-{uuid4().hex}")
    started_at: float = field(default_factory=time.time)

    @property
    def log_ctx(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "generation_id": self.id,
            "thread_id": self.thread_id,
        }


class GenerationController:
    def __init__(
        self,
        session: ChatSession,
        backend: ChatBackend,
        credentials: CredentialProvider,
        key_lookup: Optional[ApiKeyLookup] = None,
        binder: Optional[ThreadBinder] = None,
    ):
        self._session = session
        self._backend = backend
        self._credentials = credentials
        self._key_lookup = key_lookup
        self._binder = binder or ThreadBinder(session)
        self._generations: Dict[str, Generation] = {}

    @property
    def session(self) -> ChatSession:
        return self._session

    def __contains__(self, generation_id: object) -> bool:
        return generation_id in self._generations

    def generation(self, generation_id: str) -> Generation:
        try:
            return self._generations[generation_id]
        except KeyError:
            raise BusinessError(code="GENERATION_NOT_FOUND", message=generation_id, http_status=404)

    # ---- 发起 ----

    def preflight(self, user_text: str, provider: Optional[str], model: Optional[str]) -> str:
        """在修改任何状态之前完成所有同步校验，返回 Bearer token。"""

        if not user_text or not user_text.strip():
            raise ValidationError(code="EMPTY_MESSAGE", message="Message must not be empty")
        if self._session.active_generation_id is not None:
            raise GenerationBusyError(
                code="GENERATION_ACTIVE",
                message="Another generation is already in progress",
                http_status=409,
                generation_id=self._session.active_generation_id,
            )
        if not provider or not model:
            raise ValidationError(code="INVALID_MODEL", message="provider and model are required")
        token = self._credentials.get_token()
        if not token:
            raise AuthRequired(code="AUTH_REQUIRED", message="Please log in to send messages", http_status=401)
        if self._key_lookup is not None and not self._key_lookup.has_key(provider, model):
            raise MissingApiKey(
                code="MISSING_API_KEY",
                message=f"No API key configured for {provider}/{model}",
                provider=provider,
                model=model,
            )
        return token

    def start(
        self,
        user_text: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        thread_id: Optional[str] = None,
        on_complete: Optional[Callable[[Generation], None]] = None,
    ) -> str:
        """追加一轮新的用户消息并发起生成，返回 generation id。

        Args:
            user_text: 用户输入（去除首尾空白后不能为空）
            provider/model: 本轮使用的模型，默认取会话当前选择
            thread_id: 请求携带的 thread，默认取会话已绑定的 thread
            on_complete: 生成成功完成后调用的回调

        Raises:
            ValidationError / GenerationBusyError / AuthRequired / MissingApiKey:
                同步拒绝，会话记录不变。
            TransportError: 请求未能建立（非 2xx、连接失败），占位消息已移除。
        """

        provider = provider or self._session.provider
        model = model or self._session.model
        token = self.preflight(user_text, provider, model)

        transcript = self._session.transcript
        user_msg = transcript.append(
            Message(id=transcript.new_message_id(), role="user", content=user_text.strip())
        )
        return self._launch(
            user_msg,
            provider,
            model,
            thread_id or self._session.thread_id,
            token,
            on_complete,
            insert_after=None,
        )

    def regenerate(
        self,
        user_message_id: str,
        provider: str,
        model: str,
        on_complete: Optional[Callable[[Generation], None]] = None,
    ) -> str:
        """为已有的用户消息重新生成回答，占位消息紧跟该用户消息插入。"""

        transcript = self._session.transcript
        if user_message_id not in transcript or transcript.get(user_message_id).role != "user":
            raise InvalidRetryTarget(
                code="INVALID_RETRY_TARGET",
                message=f"Message {user_message_id} is not a user turn",
            )
        user_msg = transcript.get(user_message_id)
        token = self.preflight(user_msg.content, provider, model)
        return self._launch(
            user_msg,
            provider,
            model,
            self._session.thread_id,
            token,
            on_complete,
            insert_after=user_msg.id,
        )

    def _launch(
        self,
        user_msg: Message,
        provider: str,
        model: str,
        thread_id: Optional[str],
        token: str,
        on_complete: Optional[Callable[[Generation], None]],
        insert_after: Optional[str],
    ) -> str:
        transcript = self._session.transcript
        placeholder = Message(
            id=transcript.new_message_id(),
            role="assistant",
            content="",
            is_streaming=True,
            provider=provider,
            model=model,
        )
        if insert_after:
            transcript.insert_after(insert_after, placeholder)
        else:
            transcript.append(placeholder)
        self._session.active_generation_id = placeholder.id

        generation = Generation(
            id=placeholder.id,
            user_message_id=user_msg.id,
            provider=provider,
            model=model,
            thread_id=thread_id,
            state=GenerationState.REQUESTING,
        )
        if on_complete is not None:
            generation.on_complete.append(on_complete)
        self._prune()
        self._generations[generation.id] = generation

        self._log(
            logging.INFO,
            "Opening chat stream",
            generation.log_ctx,
            provider=provider,
            model=model,
            user_message_id=user_msg.id,
        )
        req = ChatStreamRequest(message=user_msg.content, provider=provider, model=model, thread_id=thread_id)
        try:
            generation.stream = self._backend.open_chat_stream(req, token)
        except Exception as e:
            self._fail(generation, e)
            raise
        return generation.id

    # ---- 流式处理 ----

    def stream(self, generation_id: str) -> Iterator[StreamEvent]:
        """驱动一次生成，逐个产出已经应用到会话记录的事件。

        调用方可以在两次迭代之间调用 cancel()；取消后迭代正常结束，不抛异常。
        失败（后端 error、连接中断、传输错误）时移除占位消息并抛出对应的 TransportError。
        """

        generation = self.generation(generation_id)
        if generation.state.is_terminal:
            return
        decoder = StreamDecoder(generation.cancel_token, generation.log_ctx)
        events = self._read_events(generation, decoder)
        try:
            for event in events:
                if self._apply(generation, event):
                    yield event
                if generation.state.is_terminal:
                    break
        except GeneratorExit:
            # 调用方放弃迭代，按取消处理
            if not generation.state.is_terminal:
                self._cancel(generation, "abandoned")
            raise
        except BusinessError as e:
            if generation.cancel_token.cancelled:
                return
            if not generation.state.is_terminal:
                self._fail(generation, e)
            raise
        except Exception as e:
            if not generation.state.is_terminal:
                self._fail(generation, e)
            raise
        finally:
            events.close()
            self._close_stream(generation)

        if generation.state is GenerationState.FAILED and generation.error is not None:
            raise generation.error
        if generation.state in (GenerationState.REQUESTING, GenerationState.STREAMING):
            error = StreamInterruptedError(
                code="STREAM_INTERRUPTED",
                message="Connection closed before the response completed",
                generation_id=generation.id,
            )
            self._fail(generation, error)
            raise error

    def wait(self, generation_id: str) -> Message:
        """消费整个流，返回完成后的助手消息。"""

        for _ in self.stream(generation_id):
            pass
        generation = self.generation(generation_id)
        if generation.state is GenerationState.COMPLETED:
            return self._session.transcript.get(generation.id)
        if generation.state is GenerationState.FAILED and generation.error is not None:
            raise generation.error
        raise GenerationCancelled(
            code="GENERATION_CANCELLED",
            message=f"Generation {generation_id} was cancelled",
            generation_id=generation_id,
        )

    def send(self, user_text: str, provider: Optional[str] = None, model: Optional[str] = None) -> Message:
        return self.wait(self.start(user_text, provider=provider, model=model))

    def cancel(self, generation_id: str) -> bool:
        """尽力中止一次生成；按失败同样的方式清理，但不上抛错误。"""

        generation = self._generations.get(generation_id)
        if (
            generation is None
            or generation.state.is_terminal
            or self._session.active_generation_id != generation_id
        ):
            self._log(logging.INFO, "Cancel ignored for inactive generation", {"generation_id": generation_id})
            return False
        self._cancel(generation, "cancelled")
        return True

    def _read_events(self, generation: Generation, decoder: StreamDecoder) -> Iterator[StreamEvent]:
        for chunk in generation.stream.iter_bytes():
            if generation.cancel_token.cancelled:
                return
            if generation.state is GenerationState.REQUESTING:
                generation.state = GenerationState.STREAMING
                self._log(logging.INFO, "Receiving chat stream", generation.log_ctx)
            yield from decoder.feed(chunk)
            if decoder.stopped:
                return
        yield from decoder.flush()

    def _apply(self, generation: Generation, event: StreamEvent) -> bool:
        if generation.cancel_token.cancelled:
            return False
        if (
            generation.state not in (GenerationState.REQUESTING, GenerationState.STREAMING)
            or self._session.active_generation_id != generation.id
        ):
            self._log(
                logging.WARNING,
                "Ignoring unexpected stream event",
                generation.log_ctx,
                state=generation.state.value,
                event=type(event).__name__,
            )
            return False

        if isinstance(event, ContentDelta):
            if generation.state is not GenerationState.STREAMING:
                self._log(logging.WARNING, "Ignoring content before stream start", generation.log_ctx)
                return False
            transcript = self._session.transcript
            current = transcript.get(generation.id)
            transcript.update_content(generation.id, current.content + event.text)
            return True
        if isinstance(event, Completion):
            self._complete(generation, event.thread_id)
            return True
        if isinstance(event, Failure):
            self._fail(
                generation,
                ServerSignaledError(code="SERVER_ERROR", message=event.message, generation_id=generation.id),
            )
            return True
        return False

    # ---- 状态迁移 ----

    def _complete(self, generation: Generation, thread_id: Optional[str]) -> None:
        self._session.transcript.mark_complete(generation.id)
        generation.state = GenerationState.COMPLETED
        if thread_id:
            self._binder.bind_if_unset(thread_id)
        self._clear_active(generation)
        self._log(
            logging.INFO,
            "Completed generation",
            generation.log_ctx,
            elapsed_seconds=round(time.time() - generation.started_at, 2),
            content_length=len(self._session.transcript.get(generation.id).content),
            bound_thread_id=self._session.thread_id,
        )
        self._record_key_usage(generation)
        hooks, generation.on_complete = generation.on_complete, []
        for hook in hooks:
            hook(generation)

    def _record_key_usage(self, generation: Generation) -> None:
        if self._key_lookup is None:
            return
        try:
            self._key_lookup.record_usage(generation.provider, generation.model)
        except BusinessError as e:
            # 生成已经完成，记录失败只影响 last_used
            self._log(
                logging.WARNING,
                "Failed to record key usage",
                generation.log_ctx,
                error_code=e.code,
                error=e.message,
            )

    def _fail(self, generation: Generation, error: BaseException) -> None:
        generation.error = error
        generation.state = GenerationState.FAILED
        self._close_stream(generation)
        self._discard_placeholder(generation)
        self._log(
            logging.WARNING,
            "Generation failed",
            generation.log_ctx,
            error_code=getattr(error, "code", type(error).__name__),
            error=str(error),
        )

    def _cancel(self, generation: Generation, reason: str) -> None:
        generation.cancel_token.cancel(reason)
        generation.state = GenerationState.CANCELLED
        self._close_stream(generation)
        self._discard_placeholder(generation)
        self._log(logging.INFO, "Cancelled generation", generation.log_ctx, reason=reason)

    def _discard_placeholder(self, generation: Generation) -> None:
        transcript = self._session.transcript
        if generation.id in transcript:
            transcript.remove(generation.id)
        self._clear_active(generation)

    def _clear_active(self, generation: Generation) -> None:
        if self._session.active_generation_id == generation.id:
            self._session.active_generation_id = None

    @staticmethod
    def _close_stream(generation: Generation) -> None:
        if generation.stream is not None:
            generation.stream.close()
            generation.stream = None

    def _prune(self) -> None:
        finished = [g.id for g in self._generations.values() if g.state.is_terminal]
        for generation_id in finished[: max(0, len(finished) - MAX_FINISHED_GENERATIONS)]:
            del self._generations[generation_id]

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
