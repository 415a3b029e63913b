"""会话引擎门面。

把 TranscriptStore / GenerationController / RetryCoordinator / ThreadBinder
组装在一起，并负责打开新会话或加载已有 thread。上层只需要持有一个 ChatEngine。
"""

import logging
from typing import Iterator, List, Optional, Tuple

from byok_chat.backend.base import ChatBackend
from byok_chat.backend.registry import ModelCatalog
from byok_chat.domain.collaborators import ApiKeyLookup, ConversationCatalog, CredentialProvider
from byok_chat.domain.exceptions import AuthRequired, ValidationError
from byok_chat.domain.models import Message, StreamEvent
from byok_chat.engine.binder import ThreadBinder
from byok_chat.engine.controller import Generation, GenerationController
from byok_chat.engine.retry import RetryCoordinator
from byok_chat.engine.session import ChatSession
from byok_chat.infrastructure.logging.logger import logger


class ChatEngine:
    def __init__(
        self,
        backend: ChatBackend,
        credentials: CredentialProvider,
        key_lookup: Optional[ApiKeyLookup] = None,
        catalog: Optional[ModelCatalog] = None,
        conversations: Optional[ConversationCatalog] = None,
        provider: str = "openai",
        model: str = "gpt-4",
    ):
        self._backend = backend
        self._credentials = credentials
        self._key_lookup = key_lookup
        self._catalog = catalog
        self._conversations = conversations
        self._background: List[GenerationController] = []
        self.session = ChatSession(provider=provider, model=model)
        self._wire(self.session)

    def _wire(self, session: ChatSession) -> None:
        self.binder = ThreadBinder(session, self._conversations)
        self.controller = GenerationController(
            session,
            self._backend,
            self._credentials,
            key_lookup=self._key_lookup,
            binder=self.binder,
        )
        self.retry = RetryCoordinator(session, self.controller, self._catalog)

    def open_session(self, thread_id: Optional[str] = None) -> ChatSession:
        """打开新会话；给定 thread_id 时从后端加载其历史消息。

        之前会话中进行中的生成不受影响，它们只修改自己的会话；
        其 generation id 仍可通过 stream() / wait() / cancel() / generation() 访问。
        """

        session = ChatSession(provider=self.session.provider, model=self.session.model, thread_id=thread_id)
        if thread_id:
            token = self._credentials.get_token()
            if not token:
                raise AuthRequired(code="AUTH_REQUIRED", message="Please log in to load conversations", http_status=401)
            messages = self._backend.fetch_thread_messages(thread_id, token)
            session.transcript.reset(messages)
            logger.log(
                logging.INFO,
                "Loaded thread messages",
                extra={"extra": {"thread_id": thread_id, "message_count": len(messages)}},
            )
        if self.session.active_generation_id is not None:
            self._background.append(self.controller)
        self._background = [c for c in self._background if c.session.active_generation_id is not None]
        self.session = session
        self._wire(session)
        return session

    def _controller_for(self, generation_id: str) -> GenerationController:
        if generation_id in self.controller:
            return self.controller
        for controller in self._background:
            if generation_id in controller:
                return controller
        return self.controller

    # ---- 模型选择 ----

    def select_model(self, provider: str, model: Optional[str] = None) -> None:
        """切换下一轮使用的模型；只给 provider 时选用该 provider 的第一个模型。"""

        if model is None and self._catalog is not None:
            model = self._catalog.default_model_for(provider)
        if self._catalog is not None and model and not self._catalog.supports(provider, model):
            raise ValidationError(
                code="MODEL_UNAVAILABLE",
                message=f"Model {model} is not available for provider {provider}",
            )
        self.session.select_model(provider, model or "")

    # ---- 生成 ----

    @property
    def messages(self) -> List[Message]:
        return self.session.messages

    def send(self, text: str, provider: Optional[str] = None, model: Optional[str] = None) -> Message:
        return self.controller.send(text, provider=provider, model=model)

    def start(self, text: str, provider: Optional[str] = None, model: Optional[str] = None) -> str:
        return self.controller.start(text, provider=provider, model=model)

    def stream(self, generation_id: str) -> Iterator[StreamEvent]:
        return self._controller_for(generation_id).stream(generation_id)

    def wait(self, generation_id: str) -> Message:
        return self._controller_for(generation_id).wait(generation_id)

    def cancel(self, generation_id: str) -> bool:
        return self._controller_for(generation_id).cancel(generation_id)

    def generation(self, generation_id: str) -> Generation:
        return self._controller_for(generation_id).generation(generation_id)

    def retry_same_model(self, assistant_message_id: str) -> str:
        return self.retry.retry_same_model(assistant_message_id)

    def retry_with_model(self, assistant_message_id: str, provider: str, model: str) -> str:
        return self.retry.retry_with_model(assistant_message_id, provider, model)

    def retry_alternatives(self, assistant_message_id: str) -> List[Tuple[str, str]]:
        return self.retry.alternatives(assistant_message_id)
