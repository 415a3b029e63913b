"""Provider 与模型目录。

后端支持哪些 provider、每个 provider 下有哪些模型，集中在这里配置。
上层（重试换模型、模型选择）只通过 ModelCatalog 查询，不直接依赖具体列表；
后端 /providers-and-models 返回的数据可以通过 merge_remote 合并进来。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass
class ProviderConfig:
    """某个 Provider 的配置。"""

    id: str
    name: str
    models: List[str] = field(default_factory=list)
    description: str = ""


OPENAI_CONFIG = ProviderConfig(
    id="openai",
    name="OpenAI",
    models=["gpt-4", "gpt-4-turbo", "gpt-3.5-turbo"],
    description="GPT-4, GPT-3.5-turbo, and other OpenAI models",
)

ANTHROPIC_CONFIG = ProviderConfig(
    id="anthropic",
    name="Anthropic",
    models=["claude-3-opus", "claude-3-sonnet", "claude-3-haiku"],
    description="Claude 3 Opus, Sonnet, and Haiku models",
)

GOOGLE_CONFIG = ProviderConfig(
    id="google",
    name="Google",
    models=["gemini-pro", "gemini-pro-vision"],
    description="Gemini Pro and Gemini Pro Vision",
)

COHERE_CONFIG = ProviderConfig(
    id="cohere",
    name="Cohere",
    models=["command", "command-light"],
    description="Command and Command Light models",
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "anthropic": ANTHROPIC_CONFIG,
    "google": GOOGLE_CONFIG,
    "cohere": COHERE_CONFIG,
}


class ModelCatalog:
    """可查询的 provider/model 目录。"""

    def __init__(self, providers: Optional[Mapping[str, ProviderConfig]] = None):
        self._providers: Dict[str, ProviderConfig] = {
            k.lower(): ProviderConfig(id=v.id, name=v.name, models=list(v.models), description=v.description)
            for k, v in (providers if providers is not None else PROVIDER_REGISTRY).items()
        }

    def get_provider(self, provider: str) -> ProviderConfig:
        """根据名称获取 ProviderConfig，名称不区分大小写。"""

        try:
            return self._providers[provider.lower()]
        except KeyError:
            raise KeyError(f"Unknown provider: {provider!r}")

    def providers(self) -> List[ProviderConfig]:
        return list(self._providers.values())

    def models_for(self, provider: str) -> List[str]:
        cfg = self._providers.get(provider.lower())
        return list(cfg.models) if cfg else []

    def default_model_for(self, provider: str) -> Optional[str]:
        """切换 provider 时默认选中的模型（列表第一个）。"""

        models = self.models_for(provider)
        return models[0] if models else None

    def supports(self, provider: str, model: str) -> bool:
        return model in self.models_for(provider)

    def alternatives(self, provider: Optional[str], model: Optional[str]) -> List[Tuple[str, str]]:
        """除当前 provider/model 外的所有可选组合。"""

        return [
            (cfg.id, m)
            for cfg in self._providers.values()
            for m in cfg.models
            if not (cfg.id == provider and m == model)
        ]

    def merge_remote(self, data: Mapping[str, Any]) -> None:
        """合并后端 /providers-and-models 的返回结果。"""

        models_by_provider = data.get("models_by_provider") or {}
        for item in data.get("providers") or []:
            pid = str(item.get("id") or "").strip()
            if not pid:
                continue
            models = [str(m) for m in models_by_provider.get(pid) or []]
            existing = self._providers.get(pid.lower())
            if existing is None:
                self._providers[pid.lower()] = ProviderConfig(id=pid, name=item.get("name") or pid, models=models)
            else:
                existing.name = item.get("name") or existing.name
                if models:
                    existing.models = models

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providers": [{"id": cfg.id, "name": cfg.name} for cfg in self._providers.values()],
            "models_by_provider": {cfg.id: list(cfg.models) for cfg in self._providers.values()},
        }
