"""HTTP 聊天后端适配器。

- 流式对话: POST {base_url}/chat，响应体是逐行的 "data: <json>"。
- 历史消息: GET {base_url}/threads/{thread_id}/messages
- 模型目录: GET {base_url}/providers-and-models
- 认证: Authorization: Bearer <token>

请求体只携带逻辑参数 {message, thread_id, provider, model_name, stream}，
具体厂商的请求格式由后端负责。
"""

from contextlib import ExitStack
from datetime import datetime
from typing import Any, Dict, Iterator, List

import httpx

from byok_chat.config.settings import settings
from byok_chat.domain.exceptions import ApiError, NetworkError, RateLimitError
from byok_chat.domain.models import ChatStreamRequest, Message, utcnow
from byok_chat.infrastructure.logging.logger import logger


class HttpChatStream:
    """对 httpx 流式响应的包装；close() 会关闭响应和底层连接。"""

    def __init__(self, stack: ExitStack, response):
        self._stack = stack
        self._response = response
        self.closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    def iter_bytes(self) -> Iterator[bytes]:
        try:
            for chunk in self._response.iter_bytes():
                if chunk:
                    yield chunk
        except (httpx.RequestError, httpx.StreamError) as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._stack.close()
        except httpx.HTTPError as e:
            logger.warning(f"Error while closing chat stream: {e}")


class HttpChatBackend:
    """基于 httpx 的聊天后端客户端。"""

    name = "http"

    def __init__(self, cfg=settings):
        self._settings = cfg

    # ---- 流式对话 ----

    def open_chat_stream(self, req: ChatStreamRequest, token: str) -> HttpChatStream:
        payload = self._build_payload(req)
        stack = ExitStack()
        try:
            client = stack.enter_context(httpx.Client(timeout=self._settings.http_timeout, trust_env=False))
            resp = stack.enter_context(
                client.stream("POST", f"{self._base_url}/chat", json=payload, headers=self._headers(token))
            )
        except httpx.RequestError as e:
            stack.close()
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        except BaseException:
            stack.close()
            raise

        if not 200 <= resp.status_code < 300:
            try:
                resp.read()
                detail = resp.text
            except httpx.HTTPError:
                detail = ""
            finally:
                stack.close()
            self._raise_for_status(resp.status_code, detail)
        return HttpChatStream(stack, resp)

    # ---- 普通请求 ----

    def fetch_thread_messages(self, thread_id: str, token: str) -> List[Message]:
        data = self._get_json(f"/threads/{thread_id}/messages", token) or []
        if not isinstance(data, list):
            raise self._invalid_response(f"/threads/{thread_id}/messages", "expected a list of messages")
        try:
            return [self._to_message(item) for item in data]
        except (KeyError, TypeError, AttributeError) as e:
            raise self._invalid_response(f"/threads/{thread_id}/messages", f"malformed message: {e!r}")

    def fetch_model_catalog(self) -> Dict[str, Any]:
        """读取后端支持的 provider 与模型，格式 {providers: [...], models_by_provider: {...}}。"""

        data = self._get_json("/providers-and-models", None) or {}
        if not isinstance(data, dict):
            raise self._invalid_response("/providers-and-models", "expected an object")
        return data

    # ---- 辅助方法 ----

    @property
    def _base_url(self) -> str:
        return str(getattr(self._settings, "backend_base_url", None) or "http://localhost:8000").rstrip("/")

    @staticmethod
    def _headers(token) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _build_payload(req: ChatStreamRequest) -> dict:
        return {
            "message": req.message,
            "thread_id": req.thread_id,
            "provider": req.provider,
            "model_name": req.model,
            "stream": True,
        }

    def _get_json(self, path: str, token) -> Any:
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.get(f"{self._base_url}{path}", headers=self._headers(token))
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if not 200 <= resp.status_code < 300:
            self._raise_for_status(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError:
            raise self._invalid_response(path, "response body is not JSON")

    @staticmethod
    def _invalid_response(path: str, detail: str) -> ApiError:
        return ApiError(code="INVALID_RESPONSE", message=f"Invalid response from {path}: {detail}", http_status=502)

    @staticmethod
    def _raise_for_status(status_code: int, detail: str) -> None:
        if status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Backend rate limit", http_status=429)
        raise ApiError(
            code="API_ERROR",
            message=detail or f"HTTP error! status: {status_code}",
            http_status=status_code,
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> Message:
        created_raw = data.get("created_at")
        created_at = utcnow()
        if isinstance(created_raw, str) and created_raw:
            try:
                created_at = datetime.fromisoformat(created_raw.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable created_at on message {data.get('id')}: {created_raw}")
        return Message(
            id=str(data["id"]),
            role="assistant" if data.get("role") == "assistant" else "user",
            content=data.get("content") or "",
            created_at=created_at,
            is_streaming=False,
            provider=data.get("provider"),
            model=data.get("model") or data.get("model_name"),
        )
