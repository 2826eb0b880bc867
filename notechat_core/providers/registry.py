"""Provider 预置配置。

多个托管服务共用 OpenAI 兼容方言，区别只在默认 base_url 和少量附加请求头。
本模块把这些差异集中在一处：

- get_provider_preset: 按名称取预置（设置界面的下拉框）。
- find_preset_for_endpoint: 按 URL 主机名反查预置，用于补充附加请求头。
- effective_endpoint: api_endpoint 为空时回落到预置的 base_url。
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

from notechat_core.providers.dialect import Dialect


@dataclass(frozen=True)
class ProviderPreset:
    """某个 Provider 的预置配置。"""

    name: str
    base_url: str
    dialect: Dialect
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def host(self) -> str:
        return (urlsplit(self.base_url).hostname or "").lower()


OLLAMA_PRESET = ProviderPreset(
    name="ollama",
    base_url="http://localhost:11434",
    dialect=Dialect.LOCAL,
)

OPENAI_PRESET = ProviderPreset(
    name="openai",
    base_url="https://api.openai.com/v1",
    dialect=Dialect.OPENAI_COMPATIBLE,
)

# OpenRouter 用这两个头做应用归属统计
OPENROUTER_PRESET = ProviderPreset(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
    dialect=Dialect.OPENAI_COMPATIBLE,
    extra_headers={
        "HTTP-Referer": "https://obsidian.md",
        "X-Title": "NoteChat",
    },
)

ANTHROPIC_PRESET = ProviderPreset(
    name="anthropic",
    base_url="https://api.anthropic.com/v1",
    dialect=Dialect.OPENAI_COMPATIBLE,
)


PROVIDER_REGISTRY: Mapping[str, ProviderPreset] = {
    "ollama": OLLAMA_PRESET,
    "openai": OPENAI_PRESET,
    "openrouter": OPENROUTER_PRESET,
    "anthropic": ANTHROPIC_PRESET,
}


def get_provider_preset(name: str) -> ProviderPreset:
    """根据名称获取 ProviderPreset，名称不区分大小写。"""

    key = name.lower()
    for k, preset in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return preset
    raise KeyError(f"Unknown provider: {name!r}")


def find_preset_for_endpoint(endpoint: str) -> Optional[ProviderPreset]:
    host = (urlsplit((endpoint or "").strip()).hostname or "").lower()
    if not host:
        return None
    for preset in PROVIDER_REGISTRY.values():
        if preset.dialect is Dialect.OPENAI_COMPATIBLE and preset.host == host:
            return preset
    return None


def effective_endpoint(cfg) -> str:
    """返回实际使用的 API 基础 URL。"""

    endpoint = (getattr(cfg, "api_endpoint", "") or "").strip()
    if endpoint:
        return endpoint
    provider = getattr(cfg, "provider", None)
    if provider:
        return get_provider_preset(provider).base_url
    return OLLAMA_PRESET.base_url
