from typing import Dict, Iterable, Optional


class StaticCredentialProvider:
    """固定 Bearer token 的凭证提供方（token 由配置或登录流程给出）。"""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token or None

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class StaticApiKeyLookup:
    """按 provider 判断是否有可用 Key；模型不参与判断。"""

    def __init__(self, providers: Iterable[str] = ()):
        self._providers = {p.lower() for p in providers}
        self.usage: Dict[str, int] = {}

    def has_key(self, provider: str, model: str) -> bool:
        return provider.lower() in self._providers

    def record_usage(self, provider: str, model: str) -> None:
        key = provider.lower()
        self.usage[key] = self.usage.get(key, 0) + 1
