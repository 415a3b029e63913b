"""重试协调器。

对某条助手消息重新生成：

- retry_same_model: 使用会话当前选择的 provider/model。
- retry_with_model: 换到指定的 provider/model（“换模型重试”）；
  仅在新的生成成功完成后才把它设为会话默认选择，失败不改变默认值。

两者都会先找到目标助手消息之前的用户消息，移除目标助手消息（其内容直接丢弃，
不会追加到历史中），再让 GenerationController 紧跟该用户消息重新生成。
所有校验（目标合法性、凭证、API Key）都在移除之前完成，失败时会话记录不变。
"""

import logging
from typing import List, Optional, Tuple

from byok_chat.backend.registry import ModelCatalog
from byok_chat.domain.exceptions import GenerationBusyError, InvalidRetryTarget, ValidationError
from byok_chat.domain.models import RetryRequest
from byok_chat.engine.controller import Generation, GenerationController
from byok_chat.engine.session import ChatSession
from byok_chat.infrastructure.logging.logger import logger


class RetryCoordinator:
    def __init__(
        self,
        session: ChatSession,
        controller: GenerationController,
        catalog: Optional[ModelCatalog] = None,
    ):
        self._session = session
        self._controller = controller
        self._catalog = catalog

    def prepare(
        self,
        assistant_message_id: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> RetryRequest:
        """从会话记录推导重试请求，不修改任何状态。"""

        if self._session.active_generation_id is not None:
            raise GenerationBusyError(
                code="GENERATION_ACTIVE",
                message="Cannot retry while a generation is in progress",
                http_status=409,
                generation_id=self._session.active_generation_id,
            )
        transcript = self._session.transcript
        if assistant_message_id not in transcript:
            raise InvalidRetryTarget(
                code="INVALID_RETRY_TARGET",
                message=f"Message {assistant_message_id} not found",
            )
        target = transcript.get(assistant_message_id)
        prior = transcript.message_before(assistant_message_id)
        if target.role != "assistant" or prior is None or prior.role != "user":
            raise InvalidRetryTarget(
                code="INVALID_RETRY_TARGET",
                message=f"No user turn precedes message {assistant_message_id}",
            )
        return RetryRequest(
            target_message_id=assistant_message_id,
            provider=provider or self._session.provider,
            model=model or self._session.model,
            user_message_id=prior.id,
            user_text=prior.content,
        )

    def retry_same_model(self, assistant_message_id: str) -> str:
        request = self.prepare(assistant_message_id)
        return self._run(request)

    def retry_with_model(self, assistant_message_id: str, provider: str, model: str) -> str:
        if not provider or not model:
            raise ValidationError(code="INVALID_MODEL", message="provider and model are required")
        if self._catalog is not None and not self._catalog.supports(provider, model):
            raise ValidationError(
                code="MODEL_UNAVAILABLE",
                message=f"Model {model} is not available for provider {provider}",
            )
        request = self.prepare(assistant_message_id, provider, model)

        def adopt_model(generation: Generation) -> None:
            self._session.select_model(generation.provider, generation.model)

        return self._run(request, on_complete=adopt_model)

    def alternatives(self, assistant_message_id: str) -> List[Tuple[str, str]]:
        """列出可用于换模型重试的 (provider, model) 组合。"""

        transcript = self._session.transcript
        if assistant_message_id not in transcript:
            raise InvalidRetryTarget(
                code="INVALID_RETRY_TARGET",
                message=f"Message {assistant_message_id} not found",
            )
        target = transcript.get(assistant_message_id)
        options = []
        if self._catalog is not None:
            options = self._catalog.alternatives(
                target.provider or self._session.provider,
                target.model or self._session.model,
            )
        if not options:
            raise ValidationError(code="NO_ALTERNATE_MODEL", message="No alternate model available")
        return options

    def _run(self, request: RetryRequest, on_complete=None) -> str:
        self._controller.preflight(request.user_text, request.provider, request.model)
        self._session.transcript.remove(request.target_message_id)
        logger.log(
            logging.INFO,
            "Retrying assistant turn",
            extra={"extra": {
                "target_message_id": request.target_message_id,
                "user_message_id": request.user_message_id,
                "provider": request.provider,
                "model": request.model,
                "thread_id": self._session.thread_id,
            }},
        )
        return self._controller.regenerate(
            request.user_message_id,
            request.provider,
            request.model,
            on_complete=on_complete,
        )
