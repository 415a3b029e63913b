"""对外 API 服务模块。

提供简化的函数接口供上层应用调用。
"""

from typing import Optional, Dict, Any

from byok_chat.config.settings import settings
from byok_chat.backend.http_client import HttpChatBackend
from byok_chat.backend.registry import ModelCatalog
from byok_chat.domain.exceptions import TransportError
from byok_chat.domain.models import Message
from byok_chat.engine.chat_engine import ChatEngine
from byok_chat.infrastructure.credentials import StaticCredentialProvider
from byok_chat.infrastructure.storage.key_store import JsonApiKeyStore
from byok_chat.infrastructure.logging.logger import logger


_engine: Optional[ChatEngine] = None
_catalog: Optional[ModelCatalog] = None


def load_model_catalog(backend: HttpChatBackend) -> ModelCatalog:
    """内置目录合并后端 /providers-and-models 的结果；后端不可用时只用内置目录。"""
    catalog = ModelCatalog()
    try:
        catalog.merge_remote(backend.fetch_model_catalog())
    except TransportError as e:
        logger.warning(f"Falling back to built-in model catalog: {e}", extra={"extra": {
            "error_code": e.code,
            "error": e.message,
        }})
    return catalog


def get_default_catalog() -> ModelCatalog:
    """获取默认模型目录（单例）。"""
    global _catalog
    if _catalog is None:
        _catalog = load_model_catalog(HttpChatBackend(settings))
    return _catalog


def get_default_engine() -> ChatEngine:
    """获取默认的会话引擎实例（单例）。"""
    global _engine
    if _engine is None:
        _engine = ChatEngine(
            backend=HttpChatBackend(settings),
            credentials=StaticCredentialProvider(settings.auth_token),
            key_lookup=JsonApiKeyStore(root=settings.storage_root),
            catalog=get_default_catalog(),
            provider=settings.default_provider,
            model=settings.default_model,
        )
    return _engine


def _message_to_dict(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "created_at": m.created_at.isoformat(),
        "is_streaming": m.is_streaming,
        "provider": m.provider,
        "model": m.model,
    }


def send_chat_message(
    text: str,
    thread_id: Optional[str] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """发送一条消息并等待流式回答完成。

    Args:
        text: 用户输入内容
        thread_id: 会话ID（可选；与当前会话不同时先加载该会话）
        provider/model: 本轮使用的模型（可选，默认取会话当前选择）

    Returns:
        包含 thread_id 与助手消息的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    engine = get_default_engine()
    try:
        if thread_id and thread_id != engine.session.thread_id:
            engine.open_session(thread_id)
        assistant = engine.send(text, provider=provider, model=model)
        return {
            "thread_id": engine.session.thread_id,
            "assistant_message": _message_to_dict(assistant),
        }
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "thread_id": thread_id,
            "provider": provider,
            "model": model,
            "error": str(e),
        }})
        raise


def retry_message(
    message_id: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """重试某条助手消息；给定 provider/model 时换模型重试。"""
    engine = get_default_engine()
    try:
        if provider and model:
            generation_id = engine.retry_with_model(message_id, provider, model)
        else:
            generation_id = engine.retry_same_model(message_id)
        assistant = engine.wait(generation_id)
        return {
            "thread_id": engine.session.thread_id,
            "assistant_message": _message_to_dict(assistant),
            "selected_provider": engine.session.provider,
            "selected_model": engine.session.model,
        }
    except Exception as e:
        logger.error(f"Retry failed: {e}", extra={"extra": {
            "message_id": message_id,
            "provider": provider,
            "model": model,
            "error": str(e),
        }})
        raise


def get_thread_messages(thread_id: str) -> list[Dict[str, Any]]:
    """加载并返回某个会话的所有消息。"""
    engine = get_default_engine()
    session = engine.open_session(thread_id)
    return [_message_to_dict(m) for m in session.messages]


def list_providers_and_models() -> Dict[str, Any]:
    """列出可选的 provider 与模型。

    Returns:
        {"providers": [{"id", "name"}], "models_by_provider": {id: [model, ...]}}
    """
    return get_default_catalog().to_dict()
