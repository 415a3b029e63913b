from typing import Optional, Protocol


class CredentialProvider(Protocol):
    """提供访问后端所需的 Bearer token；返回 None 表示未登录。"""

    def get_token(self) -> Optional[str]:
        ...


class ApiKeyLookup(Protocol):
    """查询某个 provider/model 是否有用户自带的可用 API Key。"""

    def has_key(self, provider: str, model: str) -> bool:
        ...

    def record_usage(self, provider: str, model: str) -> None:
        """一次生成成功完成后调用，记录该 Key 的最近使用时间。"""
        ...


class ConversationCatalog(Protocol):
    """会话列表维护方；新 thread 绑定后被通知以便刷新列表。"""

    def notify_thread_created(self, thread_id: str) -> None:
        ...
